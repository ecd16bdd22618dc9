"""HTTP API for imports, previews, tasks and connections."""

from .main import create_app

__all__ = ["create_app"]
