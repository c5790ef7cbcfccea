from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_LEVEL = os.getenv("ELARO_LOG_LEVEL", "INFO").upper()
LOG_DIR = Path(os.getenv("ELARO_LOG_DIR", Path.cwd() / "logs"))

_CONFIGURED = False


def configure_logging(*, level: Optional[str] = None, log_dir: Optional[Path] = None) -> None:
    """Route application logs to the console and a dated file under ``log_dir``."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    target_dir = log_dir or LOG_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    log_path = target_dir / f"elaro-{stamp}.log"

    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        logging.FileHandler(log_path, encoding="utf-8"),
    ]

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=handlers,
    )
    _CONFIGURED = True
    logging.getLogger(__name__).debug("Logging configured. Output file: %s", log_path)
