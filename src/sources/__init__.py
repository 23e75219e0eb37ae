"""Repository discovery."""

from .lister import SourceLister

__all__ = ["SourceLister"]
