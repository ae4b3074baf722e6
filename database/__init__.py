"""
Database layer — Tenants, call history and call-attempt audit rows.

Backends:
  - SQL (PostgreSQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  tenant = await store.get_tenant("t1")
"""
from database.store_base import AttemptTransitionError, BaseCallStore
from database.store_memory import InMemoryCallStore
from database.store_factory import create_store

__all__ = [
    "AttemptTransitionError", "BaseCallStore",
    "InMemoryCallStore", "create_store",
]
