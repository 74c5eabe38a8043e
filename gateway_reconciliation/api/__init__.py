"""HTTP surface for the reconciliation engine."""
from .main import create_app

__all__ = ["create_app"]
