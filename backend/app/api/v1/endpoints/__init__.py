"""API endpoints package."""

from . import proctoring

__all__ = [
    "proctoring",
]
