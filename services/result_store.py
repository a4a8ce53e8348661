"""Persistence of evaluation outcomes keyed by meeting session id."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models import EvaluationStatus
from utils import io_utils


Outcome = Literal["evaluated", "not_conducted", "generator_error"]


class ResultStoreError(RuntimeError):
    """Raised when the stored results cannot be read."""


class StoredEvaluation(BaseModel):
    """One persisted evaluation outcome.

    ``evaluation`` holds the camelCase JSON of the parsed result; it is empty
    for meetings that were never sent to the generator.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: str = Field(min_length=1)
    outcome: Outcome
    final_score: int
    status: EvaluationStatus
    evaluation: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    raw_text: Optional[str] = None
    error: Optional[str] = None
    evaluated_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class ResultStore(Protocol):
    def get(self, session_id: str) -> Optional[StoredEvaluation]: ...

    def upsert(self, record: StoredEvaluation) -> None: ...

    def session_ids(self) -> List[str]: ...


def prior_score(store: ResultStore, session_id: str) -> Optional[int]:
    """Return the stored score for ``session_id`` unless it was a total failure."""

    record = store.get(session_id)
    if record is None or record.status == "total_failure":
        return None
    return record.final_score


class JsonResultStore:
    """File-backed store holding one JSON object keyed by session id.

    Every upsert rewrites the whole file atomically, so a reader either sees
    the previous content or the new one.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._records: Dict[str, StoredEvaluation] = self._load()

    def get(self, session_id: str) -> Optional[StoredEvaluation]:
        with self._lock:
            return self._records.get(session_id)

    def upsert(self, record: StoredEvaluation) -> None:
        with self._lock:
            self._records[record.session_id] = record
            payload = {key: value.model_dump(mode="json") for key, value in self._records.items()}
            io_utils.write_json(self.path, payload)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def prior_score(self, session_id: str) -> Optional[int]:
        return prior_score(self, session_id)

    def _load(self) -> Dict[str, StoredEvaluation]:
        if not self.path.exists():
            return {}
        try:
            payload = io_utils.read_json_file(str(self.path))
        except ValueError as exc:
            raise ResultStoreError(f"Result store is not valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise ResultStoreError(f"Result store must contain a JSON object: {self.path}")
        try:
            return {
                str(key): StoredEvaluation.model_validate(value)
                for key, value in payload.items()
            }
        except ValidationError as exc:
            raise ResultStoreError(f"Result store has invalid entries: {exc}") from exc
