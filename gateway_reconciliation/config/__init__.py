"""Configuration package for gateway reconciliation."""
from .settings import FIELD_DELIMITER, Settings, get_settings

__all__ = ["FIELD_DELIMITER", "Settings", "get_settings"]
