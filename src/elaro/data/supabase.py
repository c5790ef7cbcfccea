from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from supabase import Client, create_client

from ..config.settings import SupabaseSettings


class SupabaseNotInitializedError(RuntimeError):
    """Raised when the Supabase client is needed but settings are incomplete."""


class SupabaseSessionMissingError(RuntimeError):
    """Raised when a user-scoped call runs without an authenticated session."""


@dataclass
class SupabaseGateway:
    """Lazily created Supabase client plus the signed-in user's session."""

    settings: SupabaseSettings
    _client: Optional[Client] = None
    _session: Optional[Any] = None

    def ensure_client(self) -> Client:
        if self._client is None:
            if not self.settings.is_configured:
                missing = ", ".join(self.settings.missing_env_vars)
                raise SupabaseNotInitializedError(f"Supabase is not configured; missing {missing}.")
            self._client = create_client(self.settings.url, self.settings.anon_key)
        return self._client

    def set_session(self, session: Any) -> None:
        self._session = session

    def restore_session(self, access_token: str, refresh_token: str) -> Any:
        """Rebuild the signed-in session from stored tokens."""

        response = self.ensure_client().auth.set_session(access_token, refresh_token)
        session = getattr(response, "session", None)
        if session is None:
            raise SupabaseSessionMissingError("Supabase did not accept the stored session tokens.")
        self.set_session(session)
        return session

    def clear_session(self) -> None:
        self._session = None

    def current_user_id(self) -> str:
        if self._session is None:
            raise SupabaseSessionMissingError("No Supabase session; sign in first.")
        identifier = getattr(getattr(self._session, "user", None), "id", None)
        if not identifier:
            raise SupabaseSessionMissingError("Supabase session has no user id.")
        return str(identifier)

    def is_ready(self) -> bool:
        return self._client is not None and self._session is not None

    def table(self, name: str):
        return self.ensure_client().table(name)
