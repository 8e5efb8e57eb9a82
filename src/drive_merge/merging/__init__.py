"""Folder merging, verification and rollback journaling."""
