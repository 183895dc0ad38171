"""Admission control and abuse detection for the backend API."""

__version__ = "0.1.0"
