"""Roshnii personal photo backend."""

__version__ = "0.1.0"
