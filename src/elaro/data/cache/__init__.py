from __future__ import annotations

from .view_cache import ViewCache

__all__ = ["ViewCache"]
