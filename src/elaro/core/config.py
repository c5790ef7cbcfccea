from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir

APP_NAME = "Elaro"
APP_AUTHOR = "Elaro"
DATA_DIR = Path(os.getenv("ELARO_DATA_DIR") or user_data_dir(APP_NAME, APP_AUTHOR))

QUEUE_KEY = "offline_queue"
ID_MAPPING_KEY = "id_mapping"
VIEW_KEY_PREFIX = "view:"

QUEUE_SCHEMA_VERSION = 1
ID_MAPPING_SCHEMA_VERSION = 1
VIEW_SCHEMA_VERSION = 1


def ensure_data_dir(path: Path | None = None) -> Path:
    target = path or DATA_DIR
    target.mkdir(parents=True, exist_ok=True)
    return target
