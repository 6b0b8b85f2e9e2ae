"""
Database components for the BIM element store.
"""

from .element_store import ElementStore, InMemoryElementStore, SqlElementStore
from .engine import DatabaseManager
from .models import Base, BimElement

__all__ = [
    "Base",
    "BimElement",
    "DatabaseManager",
    "ElementStore",
    "InMemoryElementStore",
    "SqlElementStore",
]
