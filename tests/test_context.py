"""Tests for services/context.py — wiring, session restore and the default store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from types import SimpleNamespace

from conftest import build_settings
from elaro.config import SupabaseSettings
from elaro.data import FileStore, SupabaseSessionMissingError
from elaro.services import ServiceContext
from elaro.services import context as context_module


def _signed_settings(**tokens):
    supabase = SupabaseSettings(url="https://example.supabase.co", anon_key="anon", **tokens)
    return replace(build_settings(), supabase=supabase)


class TestSignIn:
    def test_without_tokens_nothing_is_restored(self, make_context):
        context = make_context(context_settings=_signed_settings())
        calls = []
        context.gateway.restore_session = lambda *args: calls.append(args)
        assert asyncio.run(context.sign_in()) is False
        assert calls == []

    def test_stored_tokens_bind_the_session(self, make_context):
        context = make_context(context_settings=_signed_settings(access_token="a", refresh_token="r"))

        def restore_session(access_token, refresh_token):
            context.gateway.set_session(SimpleNamespace(user=SimpleNamespace(id="u1")))

        context.gateway.restore_session = restore_session
        assert asyncio.run(context.sign_in()) is True
        assert context.gateway.current_user_id() == "u1"

    def test_rejected_tokens_are_logged_not_raised(self, make_context, caplog):
        context = make_context(context_settings=_signed_settings(access_token="a", refresh_token="r"))

        def restore_session(access_token, refresh_token):
            raise SupabaseSessionMissingError("expired")

        context.gateway.restore_session = restore_session
        with caplog.at_level(logging.WARNING, logger="elaro.services.context"):
            assert asyncio.run(context.sign_in()) is False
        assert "Could not restore the Supabase session" in caplog.text


class TestDefaultStore:
    def test_state_directory_is_created_up_front(self, tmp_path, monkeypatch):
        monkeypatch.setattr(context_module, "DATA_DIR", tmp_path / "data")
        context = ServiceContext(settings=build_settings())
        assert isinstance(context.store, FileStore)
        assert (tmp_path / "data" / "state").is_dir()
