from .database import Database
from .store import Store, StoreTransaction
from .memory_store import MemoryStore
from .postgres_store import PostgresStore

__all__ = [
    'Database',
    'Store',
    'StoreTransaction',
    'MemoryStore',
    'PostgresStore',
]
