"""Loaders for writing imported records into the identity store."""

from .base import BaseLoader
from .store_loader import GroupLoader, UserLoader

__all__ = ["BaseLoader", "GroupLoader", "UserLoader"]
