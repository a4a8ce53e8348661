"""Structured JSON-lines event logging for pipeline runs."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class EventLogger:
    """Append one JSON object per event to a log file.

    Each line carries a UTC ``timestamp``, the ``event`` name and any extra
    fields. Writes are serialised with a lock so worker threads can share a
    single logger.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log(self, event: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        payload: Dict[str, Any] = {"event": event}
        if extra:
            payload.update(extra)
        line = json.dumps({"timestamp": timestamp, **payload}, ensure_ascii=False, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
