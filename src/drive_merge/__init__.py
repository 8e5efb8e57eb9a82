"""Duplicate-folder detection and transactional merge engine for OneDrive / SharePoint."""

__version__ = "0.1.0"
