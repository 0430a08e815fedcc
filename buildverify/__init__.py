"""Idempotent dispatch and status tracking for program build verification."""

__version__ = "0.1.0"
