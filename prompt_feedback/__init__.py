"""Resumable prompt-feedback streaming service."""

__version__ = "0.1.0"
