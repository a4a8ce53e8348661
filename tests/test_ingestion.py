"""
Tests for the batch evaluation pipeline.

The generator is an in-memory fake keyed on the transcript embedded in the
rendered prompt, and results go to a JSON store under ``tmp_path``.
"""

import csv
import json
import threading

import pytest

from services.ingestion import (
    DEFAULT_NOT_CONDUCTED_SUMMARY,
    EvaluationPipeline,
    MeetingRecord,
    PipelineConfig,
)
from services.result_store import JsonResultStore, StoredEvaluation
from utils.ai_client import AIClientError


class FakeGenerator:
    """Returns canned answers based on a token found in the prompt."""

    def __init__(self, answers):
        self.answers = answers
        self.prompts = []
        self._lock = threading.Lock()

    def __call__(self, prompt):
        with self._lock:
            self.prompts.append(prompt)
        for token, answer in self.answers.items():
            if token in prompt:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return "resposta sem estrutura"


@pytest.fixture
def store(tmp_path):
    return JsonResultStore(tmp_path / "results.json")


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(output_dir=tmp_path / "out", max_workers=2)


def _read_events(state):
    path = state.job_dir / "logs" / "pipeline.log"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _read_csv(state):
    with open(state.artifacts["csv"], encoding="utf-8", newline="") as handle:
        return list(csv.DictReader(handle))


class TestPipelineRun:
    """A mixed batch end to end."""

    def test_mixed_batch(self, store, config, sample_rubric, sample_response):
        generator = FakeGenerator(
            {
                "TRANSCRIPT-GOOD": sample_response,
                "TRANSCRIPT-BOOM": AIClientError("timeout"),
            }
        )
        records = [
            MeetingRecord(session_id="s1", transcript="TRANSCRIPT-GOOD", owner_name="Ana"),
            MeetingRecord(session_id="s2", summary=DEFAULT_NOT_CONDUCTED_SUMMARY),
            MeetingRecord(session_id="s3", transcript="TRANSCRIPT-BOOM"),
            MeetingRecord(session_id="s1", transcript="TRANSCRIPT-GOOD"),
        ]
        pipeline = EvaluationPipeline(store, sample_rubric, generator, config)

        state = pipeline.run(records, job_name="semana 1")

        snapshot = state.snapshot()
        assert snapshot["status"] == "completed"
        assert state.job_id.endswith("-semana-1")
        assert (snapshot["total"], snapshot["processed"]) == (3, 3)
        assert (snapshot["succeeded"], snapshot["failed"]) == (2, 1)
        assert len(generator.prompts) == 2

        good = store.get("s1")
        assert (good.outcome, good.status, good.final_score) == ("evaluated", "ok", 85)
        assert good.evaluation["finalScore"] == 85
        assert good.raw_text == sample_response

        skipped = store.get("s2")
        assert (skipped.outcome, skipped.status, skipped.final_score) == ("not_conducted", "ok", 0)
        assert skipped.evaluation is None

        failed = store.get("s3")
        assert (failed.outcome, failed.status, failed.final_score) == (
            "generator_error",
            "total_failure",
            -1,
        )
        assert failed.error == "timeout"

        rows = {row["session_id"]: row for row in _read_csv(state)}
        assert rows["s1"]["final_score"] == "85"
        assert rows["s1"]["section_Progresso do Aluno"] == "40"
        assert rows["s1"]["owner_name"] == "Ana"
        assert rows["s2"]["final_score"] == "0"
        assert rows["s3"]["final_score"] == ""

        events = [entry["event"] for entry in _read_events(state)]
        assert events[0] == "job_started"
        assert events[-1] == "job_completed"
        assert "meeting_not_conducted" in events
        assert "generator_failed" in events

        state_file = json.loads((state.job_dir / "logs" / "state.json").read_text(encoding="utf-8"))
        assert state_file["status"] == "completed"
        results = (state.job_dir / "logs" / "results.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(results) == 3

    def test_unclassified_lines_are_logged(self, store, config, two_section_rubric):
        generator = FakeGenerator({"T": "- Pergunta? (10 pontos): 10\nlinha estranha"})
        pipeline = EvaluationPipeline(store, two_section_rubric, generator, config)

        state = pipeline.run([MeetingRecord(session_id="s1", transcript="T")])

        diagnostics = [e for e in _read_events(state) if e["event"] == "parse_diagnostics"]
        assert diagnostics[0]["unclassified_lines"] == ["linha estranha"]


class TestReevaluation:
    """Stored meetings are skipped unless re-evaluation is requested."""

    def test_stored_meetings_are_skipped(self, store, config, two_section_rubric):
        store.upsert(
            StoredEvaluation(session_id="s1", outcome="evaluated", final_score=9, status="ok")
        )
        generator = FakeGenerator({})
        pipeline = EvaluationPipeline(store, two_section_rubric, generator, config)

        state = pipeline.run([MeetingRecord(session_id="s1", transcript="T")])

        assert generator.prompts == []
        assert state.snapshot()["skipped"] == 1
        assert store.get("s1").final_score == 9
        assert "meeting_skipped_existing" in [e["event"] for e in _read_events(state)]

    def test_prior_score_survives_generator_failure(self, store, tmp_path, two_section_rubric):
        store.upsert(
            StoredEvaluation(session_id="s1", outcome="evaluated", final_score=9, status="ok")
        )
        config = PipelineConfig(output_dir=tmp_path / "out", reevaluate=True)
        generator = FakeGenerator({"T": AIClientError("quota exceeded")})
        pipeline = EvaluationPipeline(store, two_section_rubric, generator, config)

        pipeline.run([MeetingRecord(session_id="s1", transcript="T")])

        record = store.get("s1")
        assert (record.outcome, record.status, record.final_score) == (
            "generator_error",
            "partial_failure",
            9,
        )
        assert record.evaluation["scoreSource"] == "prior"


class TestPipelineConfig:
    """Environment-driven settings."""

    def test_load_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("EVAL_OUTPUT_DIR", str(tmp_path / "x"))
        monkeypatch.setenv("EVAL_MAX_WORKERS", "0")
        monkeypatch.setenv("EVAL_REEVALUATE", "yes")
        monkeypatch.setenv("EVAL_SCORE_PRECEDENCE", "declared_first")
        monkeypatch.setenv("EVAL_GENERATOR_RETRY", "not-a-number")

        config = PipelineConfig.load()

        assert config.output_dir == tmp_path / "x"
        assert config.max_workers == 1
        assert config.reevaluate is True
        assert config.policy.precedence == "declared_first"
        assert config.generator_retry == 1

    def test_unknown_precedence_is_rejected(self):
        with pytest.raises(ValueError):
            PipelineConfig(score_precedence="random").policy


class TestFromConfig:
    """Pipelines built from the configured rubric file."""

    def test_loads_configured_rubric(self, store, tmp_path, sample_rubric_path, sample_response):
        config = PipelineConfig(output_dir=tmp_path / "out", rubric_path=sample_rubric_path)
        generator = FakeGenerator({"T": sample_response})
        pipeline = EvaluationPipeline.from_config(store, config, generator)

        assert pipeline.rubric.points_possible == 100
        pipeline.run([MeetingRecord(session_id="s1", transcript="T")])
        assert store.get("s1").final_score == 85

    def test_conversion_warnings_are_logged(self, store, tmp_path):
        rubric_path = tmp_path / "legacy.json"
        rubric_path.write_text(
            json.dumps(
                {"sections": [{"name": "A", "weight": 10, "items": [{"name": "Pergunta?", "points": 10}]}]}
            ),
            encoding="utf-8",
        )
        config = PipelineConfig(output_dir=tmp_path / "out", rubric_path=rubric_path)
        pipeline = EvaluationPipeline.from_config(store, config, FakeGenerator({}))

        state = pipeline.run([MeetingRecord(session_id="s1", transcript="T")])

        converted = [e for e in _read_events(state) if e["event"] == "rubric_converted"]
        assert any("renamed to title" in warning for warning in converted[0]["warnings"])

    def test_rubric_path_from_environment(self, monkeypatch, tmp_path, store, sample_rubric_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("EVAL_OUTPUT_DIR", str(tmp_path / "out"))
        monkeypatch.setenv("EVAL_RUBRIC_PATH", str(sample_rubric_path))

        pipeline = EvaluationPipeline.from_config(store, generator=FakeGenerator({}))

        assert pipeline.config.rubric_path == sample_rubric_path
        assert pipeline.rubric.final_score_pattern == "FINAL_SCORE"
