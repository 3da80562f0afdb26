"""Ganesh — credential access control for agent runtimes."""

__version__ = "0.1.0"
