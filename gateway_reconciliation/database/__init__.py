"""Database package for gateway reconciliation."""
from .connection import close_db, get_engine, get_session_factory, init_db
from .models import (
    Base,
    CartItemRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
    TransactionRecord,
)

__all__ = [
    "Base",
    "CartItemRecord",
    "OrderItemRecord",
    "OrderRecord",
    "ProductRecord",
    "TransactionRecord",
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
