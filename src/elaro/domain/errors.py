"""Error taxonomy shared by the queue, cache layer and facade.

Lower layers raise these; only the facade and the HTTP surface turn them into
user-facing messages via ``user_message``.
"""

from __future__ import annotations

from typing import Optional


class SyncError(RuntimeError):
    """Base class for every failure raised by the sync core."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.user_message = user_message or self.default_message


class TransientBackendError(SyncError):
    """Connectivity problem or timeout; the action can be retried later."""

    default_message = "You appear to be offline. Changes will sync when you are back online."


class SessionRequiredError(TransientBackendError):
    """No signed-in session or configured client; nothing was sent to the server."""

    default_message = "Please sign in again to sync your changes."


class RetryableBackendError(SyncError):
    """Server-side failure that is neither a network issue nor a validation error."""

    default_message = "The server could not process this change right now. It will be retried."


class PermanentBackendError(SyncError):
    """Validation or authorization failure; retrying will not help."""

    default_message = "This change could not be saved."


class ResourceConflictError(PermanentBackendError):
    """The target resource is missing or already in the requested state."""

    default_message = "This item no longer exists."


class TierLimitExceededError(PermanentBackendError):
    """The current subscription tier does not allow another item."""

    default_message = "You have reached the limit for your plan. Upgrade to add more."


class TaskStateError(SyncError):
    """An operation is not allowed from the item's current state."""

    default_message = "This action is not available for this item."
