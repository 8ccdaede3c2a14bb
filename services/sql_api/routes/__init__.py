"""SQL API route modules."""

from . import sql

__all__ = ["sql"]
