"""Pure scheduling logic, temporary-id resolution and local paths."""

from .config import (
    APP_NAME,
    DATA_DIR,
    ID_MAPPING_KEY,
    ID_MAPPING_SCHEMA_VERSION,
    QUEUE_KEY,
    QUEUE_SCHEMA_VERSION,
    VIEW_KEY_PREFIX,
    VIEW_SCHEMA_VERSION,
    ensure_data_dir,
)
from .scheduler import compute_reminder_times, jitter_for
from .temp_ids import TEMP_ID_PREFIX, TemporaryIdResolver, generate_temp_id, is_temporary

__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "ID_MAPPING_KEY",
    "ID_MAPPING_SCHEMA_VERSION",
    "QUEUE_KEY",
    "QUEUE_SCHEMA_VERSION",
    "TEMP_ID_PREFIX",
    "TemporaryIdResolver",
    "VIEW_KEY_PREFIX",
    "VIEW_SCHEMA_VERSION",
    "compute_reminder_times",
    "ensure_data_dir",
    "generate_temp_id",
    "is_temporary",
    "jitter_for",
]
