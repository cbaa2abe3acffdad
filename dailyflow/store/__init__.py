"""Data store backends: typed CRUD plus session authentication."""

from typing import Literal, Optional

from dailyflow.config import load_config
from dailyflow.store.base import IDataStore, NotAuthenticated, StoreError, require_session


def get_store(name: Optional[Literal["local", "supabase"]] = None) -> IDataStore:
    """Get a data store backend by name (defaults to STORE_BACKEND)."""
    config = load_config()
    name = name or config.store_backend
    if name == "local":
        from dailyflow.store.local_backend import LocalDataStore
        return LocalDataStore(config.store_path)
    elif name == "supabase":
        from dailyflow.store.supabase_backend import SupabaseDataStore
        return SupabaseDataStore(config.supabase_url, config.supabase_anon_key)
    raise ValueError(f"Unknown store backend: {name}")


__all__ = [
    "IDataStore",
    "NotAuthenticated",
    "StoreError",
    "get_store",
    "require_session",
]
