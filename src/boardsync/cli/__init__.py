"""Command-line entry point (``boardsync``)."""

from .app import app, main

__all__ = ["app", "main"]
