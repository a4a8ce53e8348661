"""Batch evaluation of meeting records."""

from __future__ import annotations

import csv
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from models import EvaluationResult, RubricSchema
from utils import ai_client, io_utils
from utils.evaluation_parser import parse_evaluation
from utils.event_log import EventLogger
from utils.prompts import render_meeting_prompt
from utils.rubric_loader import read_rubric
from utils.score_reconciler import ReconciliationPolicy

from .result_store import ResultStore, StoredEvaluation, prior_score


Generator = Callable[[str], str]

DEFAULT_NOT_CONDUCTED_SUMMARY = "No summary available due to limited meeting data."
NOT_CONDUCTED_NOTE = "Not conducted (the meeting summary reported limited meeting data)."


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class PipelineConfig:
    """Environment-driven runtime settings."""

    output_dir: Path = Path("data/evaluations")
    rubric_path: Path = Path("rubrics/mentoring_meeting.json")
    max_workers: int = 4
    reevaluate: bool = False
    score_precedence: str = "structural_first"
    generator_retry: int = 1
    not_conducted_summary: str = DEFAULT_NOT_CONDUCTED_SUMMARY

    @classmethod
    def load(cls) -> "PipelineConfig":
        load_dotenv()
        return cls(
            output_dir=Path(os.getenv("EVAL_OUTPUT_DIR", "data/evaluations")),
            rubric_path=Path(os.getenv("EVAL_RUBRIC_PATH", "rubrics/mentoring_meeting.json")),
            max_workers=max(_int_env("EVAL_MAX_WORKERS", 4), 1),
            reevaluate=_bool_env("EVAL_REEVALUATE", False),
            score_precedence=os.getenv("EVAL_SCORE_PRECEDENCE", "structural_first").strip(),
            generator_retry=max(_int_env("EVAL_GENERATOR_RETRY", 1), 0),
            not_conducted_summary=os.getenv(
                "EVAL_NOT_CONDUCTED_SUMMARY", DEFAULT_NOT_CONDUCTED_SUMMARY
            ).strip(),
        )

    @property
    def policy(self) -> ReconciliationPolicy:
        return ReconciliationPolicy(precedence=self.score_precedence)  # type: ignore[arg-type]


class MeetingRecord(BaseModel):
    """A meeting as received from the meeting platform export."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    session_id: str = Field(min_length=1)
    transcript: Optional[str] = None
    summary: Optional[str] = None
    meeting_title: Optional[str] = None
    owner_name: Optional[str] = None
    start_time: Optional[str] = None


@dataclass
class JobState:
    """Mutable snapshot of a running or completed evaluation job."""

    job_id: str
    job_dir: Path
    total: int
    processed: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    skipped: int = 0
    status: str = "running"
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None
    error: Optional[str] = None
    artifacts: Dict[str, str] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def snapshot(self) -> Dict[str, Any]:
        """Return a copy of the counters that is safe to hand to other threads."""

        with self.lock:
            data: Dict[str, Any] = {
                "job_id": self.job_id,
                "status": self.status,
                "total": self.total,
                "processed": self.processed,
                "succeeded": self.succeeded,
                "partial": self.partial,
                "failed": self.failed,
                "skipped": self.skipped,
                "artifacts": self.artifacts.copy(),
                "started_at": self.started_at,
                "finished_at": self.finished_at,
            }
            if self.error:
                data["error"] = self.error
            return data


def default_generator(retry: int = 1) -> Generator:
    """Return a generator callable backed by :mod:`utils.ai_client`."""

    def generate(prompt: str) -> str:
        return ai_client.generate_evaluation_text(prompt, retry=retry).text

    return generate


class EvaluationPipeline:
    """Send meetings to the generator, parse the answers and store outcomes."""

    def __init__(
        self,
        store: ResultStore,
        rubric: RubricSchema,
        generator: Optional[Generator] = None,
        config: Optional[PipelineConfig] = None,
        rubric_warnings: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.rubric = rubric
        self.rubric_warnings = tuple(rubric_warnings)
        self.config = config or PipelineConfig()
        self.generator = generator or default_generator(self.config.generator_retry)
        self.policy = self.config.policy

    @classmethod
    def from_config(
        cls,
        store: ResultStore,
        config: Optional[PipelineConfig] = None,
        generator: Optional[Generator] = None,
    ) -> "EvaluationPipeline":
        """Build a pipeline around the rubric file named by ``config.rubric_path``."""

        config = config or PipelineConfig.load()
        loaded = read_rubric(config.rubric_path)
        assert loaded.rubric is not None
        return cls(
            store,
            loaded.rubric,
            generator=generator,
            config=config,
            rubric_warnings=loaded.warnings,
        )

    def run(self, records: Iterable[MeetingRecord], job_name: Optional[str] = None) -> JobState:
        meetings = _unique_by_session(records)

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = _slugify(job_name)
        job_id = f"{timestamp}-{slug}" if slug else timestamp
        job_dir = self.config.output_dir / job_id
        logs_dir = job_dir / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)

        state = JobState(job_id=job_id, job_dir=job_dir, total=len(meetings))
        events = EventLogger(logs_dir / "pipeline.log")
        events.log("job_started", extra={"job_id": job_id, "total": len(meetings)})
        if self.rubric_warnings:
            events.log("rubric_converted", extra={"warnings": list(self.rubric_warnings)})
        _write_state_snapshot(state)

        summary_builder = _SummaryBuilder(self.rubric)
        pending: List[MeetingRecord] = []
        for meeting in meetings:
            if self.config.reevaluate or self.store.get(meeting.session_id) is None:
                pending.append(meeting)
                continue
            events.log("meeting_skipped_existing", extra={"session_id": meeting.session_id})
            with state.lock:
                state.skipped += 1

        results_path = logs_dir / "results.jsonl"
        results_lock = threading.Lock()
        try:
            with results_path.open("a", encoding="utf-8") as results_log:

                def process(meeting: MeetingRecord) -> None:
                    start = time.perf_counter()
                    record = self._evaluate(meeting, events)
                    self.store.upsert(record)
                    duration_ms = int((time.perf_counter() - start) * 1000)
                    with results_lock:
                        io_utils.append_jsonl(
                            results_log,
                            {
                                **record.model_dump(mode="json"),
                                "duration_ms": duration_ms,
                            },
                        )
                    summary_builder.add(meeting, record)
                    _update_counters(state, record)
                    _write_state_snapshot(state)

                with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                    # list() re-raises the first worker exception, if any
                    list(executor.map(process, pending))

            summary_path = job_dir / "summary.csv"
            _write_summary_csv(summary_path, summary_builder)
            with state.lock:
                state.artifacts["csv"] = str(summary_path)
                state.artifacts["results"] = str(results_path)
                state.artifacts["log"] = str(events.path)
        except Exception as exc:
            events.log("job_failed", extra={"job_id": job_id, "error": str(exc)})
            _finalise_state(state, "failed", error=str(exc))
            raise

        _finalise_state(state, "completed")
        events.log("job_completed", extra=state.snapshot())
        return state

    def _evaluate(self, meeting: MeetingRecord, events: EventLogger) -> StoredEvaluation:
        session_id = meeting.session_id
        marker = self.config.not_conducted_summary
        if marker and (meeting.summary or "").strip() == marker:
            events.log("meeting_not_conducted", extra={"session_id": session_id})
            return StoredEvaluation(
                session_id=session_id,
                outcome="not_conducted",
                final_score=0,
                status="ok",
                note=NOT_CONDUCTED_NOTE,
            )

        prior = prior_score(self.store, session_id) if self.config.reevaluate else None
        raw_text: Optional[str] = None
        error: Optional[str] = None
        try:
            prompt = render_meeting_prompt(meeting, self.rubric)
            raw_text = self.generator(prompt)
        except Exception as exc:  # recorded on the stored outcome
            error = str(exc) or exc.__class__.__name__
            events.log(
                "generator_failed",
                extra={"session_id": session_id, "error": error},
            )

        result = parse_evaluation(raw_text, self.rubric, prior, policy=self.policy)
        if result.unclassified_lines:
            events.log(
                "parse_diagnostics",
                extra={
                    "session_id": session_id,
                    "unclassified_lines": list(result.unclassified_lines),
                },
            )
        events.log(
            "meeting_evaluated",
            extra={
                "session_id": session_id,
                "status": result.status,
                "final_score": result.final_score,
                "score_source": result.score_source,
            },
        )
        return StoredEvaluation(
            session_id=session_id,
            outcome="generator_error" if error is not None else "evaluated",
            final_score=result.final_score,
            status=result.status,
            evaluation=result.to_json_dict(),
            raw_text=raw_text,
            error=error,
        )


def _unique_by_session(records: Iterable[MeetingRecord]) -> List[MeetingRecord]:
    seen: Dict[str, MeetingRecord] = {}
    for record in records:
        seen.setdefault(record.session_id, record)
    return list(seen.values())


def _write_state_snapshot(state: JobState) -> None:
    io_utils.write_json(state.job_dir / "logs" / "state.json", state.snapshot())


def _update_counters(state: JobState, record: StoredEvaluation) -> None:
    with state.lock:
        state.processed += 1
        if record.status == "ok":
            state.succeeded += 1
        elif record.status == "partial_failure":
            state.partial += 1
        else:
            state.failed += 1


def _finalise_state(state: JobState, status: str, error: Optional[str] = None) -> None:
    with state.lock:
        state.status = status
        state.finished_at = datetime.now(timezone.utc).isoformat()
        state.error = error
    _write_state_snapshot(state)


def _write_summary_csv(target: Path, summary: "_SummaryBuilder") -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=summary.headers)
        writer.writeheader()
        for row in summary.rows():
            writer.writerow(row)


def _slugify(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    slug = "".join(ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in name.strip())
    slug = slug.strip("-_")
    return slug or None


class _SummaryBuilder:
    """Accumulates rows for the summary CSV."""

    def __init__(self, rubric: RubricSchema) -> None:
        self.section_titles: List[str] = [section.title for section in rubric.sections]
        self.points_possible = rubric.points_possible
        self.headers: List[str] = [
            "session_id",
            "meeting_title",
            "owner_name",
            "start_time",
            "outcome",
            "status",
            "final_score",
            "points_possible",
        ] + [f"section_{title}" for title in self.section_titles]
        self._rows: List[Dict[str, object]] = []
        self._lock = threading.Lock()

    def add(self, meeting: MeetingRecord, record: StoredEvaluation) -> None:
        failed = record.status == "total_failure"
        row: Dict[str, object] = {
            "session_id": meeting.session_id,
            "meeting_title": meeting.meeting_title or "",
            "owner_name": meeting.owner_name or "",
            "start_time": meeting.start_time or "",
            "outcome": record.outcome,
            "status": record.status,
            "final_score": "" if failed else record.final_score,
            "points_possible": self.points_possible,
        }
        awarded = self._section_scores(record)
        for title in self.section_titles:
            value = awarded.get(title.casefold())
            row[f"section_{title}"] = "" if value is None else value
        with self._lock:
            self._rows.append(row)

    def rows(self) -> List[Dict[str, object]]:
        with self._lock:
            return sorted(self._rows, key=lambda value: str(value["session_id"]))

    @staticmethod
    def _section_scores(record: StoredEvaluation) -> Dict[str, int]:
        if not record.evaluation:
            return {}
        result = EvaluationResult.model_validate(record.evaluation)
        return {section.title.casefold(): section.awarded_points for section in result.sections}
