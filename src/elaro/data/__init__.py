"""Data access layer: durable storage, Supabase access and cached views."""

from __future__ import annotations

from .storage import FileStore, KeyValueStore, MemoryStore, load_versioned, save_versioned
from .supabase import SupabaseGateway, SupabaseNotInitializedError, SupabaseSessionMissingError
from .backend import SupabaseTaskBackend, TaskBackend, translate_error
from .cache import ViewCache

__all__ = [
    "FileStore",
    "KeyValueStore",
    "MemoryStore",
    "SupabaseGateway",
    "SupabaseNotInitializedError",
    "SupabaseSessionMissingError",
    "SupabaseTaskBackend",
    "TaskBackend",
    "ViewCache",
    "load_versioned",
    "save_versioned",
    "translate_error",
]
