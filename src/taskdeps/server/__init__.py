"""HTTP adapter for the dependency engine."""

from .api import create_app

__all__ = ["create_app"]
