"""Tests for core/temp_ids.py — temporary id generation and resolution."""

from __future__ import annotations

import asyncio

import pytest

from elaro.core import TEMP_ID_PREFIX, TemporaryIdResolver, generate_temp_id, is_temporary
from elaro.data import MemoryStore
from elaro.domain import ResourceType


class TestTemporaryIds:
    def test_generated_ids_are_temporary_and_unique(self):
        first, second = generate_temp_id(), generate_temp_id()
        assert first.startswith(TEMP_ID_PREFIX)
        assert is_temporary(first)
        assert first != second

    def test_server_ids_are_not_temporary(self):
        assert not is_temporary("7d1c3c2e-4c8e-4b1f-9a43-5b1f2f0f6a10")
        assert not is_temporary(None)
        assert not is_temporary(42)


class TestResolver:
    def test_resolves_only_after_recording(self):
        async def scenario():
            resolver = TemporaryIdResolver(MemoryStore())
            assert resolver.resolve("tmp_abc") == "tmp_abc"
            assert resolver.is_pending("tmp_abc")
            await resolver.record("tmp_abc", "r1", ResourceType.ASSIGNMENT)
            return [resolver.resolve("tmp_abc") for _ in range(3)], resolver.is_pending("tmp_abc")

        resolved, pending = asyncio.run(scenario())
        assert resolved == ["r1", "r1", "r1"]
        assert pending is False

    def test_mapping_is_write_once(self):
        async def scenario():
            resolver = TemporaryIdResolver(MemoryStore())
            await resolver.record("tmp_abc", "r1", ResourceType.LECTURE)
            again = await resolver.record("tmp_abc", "r2", ResourceType.LECTURE)
            return again, resolver.resolve("tmp_abc")

        assert asyncio.run(scenario()) == ("r1", "r1")

    def test_resource_type_mismatch_stays_pending(self):
        async def scenario():
            resolver = TemporaryIdResolver(MemoryStore())
            await resolver.record("tmp_abc", "r1", ResourceType.LECTURE)
            return resolver.resolve("tmp_abc", ResourceType.ASSIGNMENT)

        assert asyncio.run(scenario()) == "tmp_abc"

    def test_real_ids_pass_through(self):
        resolver = TemporaryIdResolver(MemoryStore())
        assert resolver.resolve("r9", ResourceType.ASSIGNMENT) == "r9"
        assert not resolver.is_pending("r9")

    def test_record_rejects_real_ids(self):
        resolver = TemporaryIdResolver(MemoryStore())
        with pytest.raises(ValueError):
            asyncio.run(resolver.record("r1", "r2", ResourceType.ASSIGNMENT))

    def test_mapping_survives_reload(self):
        async def scenario():
            store = MemoryStore()
            await TemporaryIdResolver(store).record("tmp_abc", "r1", ResourceType.STUDY_SESSION)
            reloaded = TemporaryIdResolver(store)
            await reloaded.load()
            return reloaded.resolve("tmp_abc", ResourceType.STUDY_SESSION), len(reloaded)

        assert asyncio.run(scenario()) == ("r1", 1)
