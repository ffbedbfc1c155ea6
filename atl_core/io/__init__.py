"""
I/O Module: Data store collaborators.

- DataStore: interface the pipeline consumes
- InMemoryDataStore: dictionary-backed store (tests, simulation)
- SQLiteDataStore: SQLite file store with store-owned ID sequences
"""

from .store import (
    DataStore,
    InMemoryDataStore,
    IdSequence,
    StoreError,
    RetrievalError,
    PersistenceError,
)
from .sqlite_store import SQLiteDataStore

__all__ = [
    'DataStore',
    'InMemoryDataStore',
    'IdSequence',
    'StoreError',
    'RetrievalError',
    'PersistenceError',
    'SQLiteDataStore',
]
