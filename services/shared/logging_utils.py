from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


logging.basicConfig(level=logging.INFO, stream=sys.stdout)
logger = logging.getLogger("image_pipeline")

_CONTEXT_KEYS = ("trace_id", "message_id", "file_name", "queue")


def log_event(level: str, message: str, **kwargs: Any) -> None:
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "message": message,
    }
    for key in _CONTEXT_KEYS:
        payload[key] = kwargs.pop(key, None)
    payload.update(kwargs)
    line = json.dumps(payload, ensure_ascii=True, default=str)
    if level.lower() == "error":
        logger.error(line)
    elif level.lower() == "warning":
        logger.warning(line)
    else:
        logger.info(line)
