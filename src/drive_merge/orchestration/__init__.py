"""Iterative duplicate resolution."""
