# vmpkg/__init__.py
"""vmpkg - very minimal user-space package manager."""

__version__ = "1.2.0"
