"""Elaro offline-aware task mutation and synchronization core."""

from __future__ import annotations

__all__ = ["main"]


def main() -> int:
    from .cli import main as run_cli

    return run_cli()
