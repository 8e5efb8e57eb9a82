"""Folder hierarchy construction and duplicate analysis."""
