from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Optional

from app.config import env_str

_CONFIGURED = False


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line for `backend.jsonl`."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    """Configure the root logger once: console, plus LOG_DIR/backend.jsonl when set."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    level_name = (level or env_str("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(console)

    log_dir = log_dir or os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "backend.jsonl"), encoding="utf-8")
        file_handler.setFormatter(JsonLineFormatter())
        root.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _CONFIGURED = True
    root.info("Logging initialized at level: %s", logging.getLevelName(log_level))
