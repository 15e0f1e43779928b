"""Parley - chat with a hosted model about the files in your workspace."""

__version__ = "0.1.0"
