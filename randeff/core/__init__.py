# randeff/core/__init__.py
"""Core computational modules for randeff."""
from . import linalg, partition

__all__ = ["linalg", "partition"]
