"""Prompt templates sent to the generator."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound

from models import RubricSchema

if TYPE_CHECKING:  # pragma: no cover
    from services.ingestion import MeetingRecord


MEETING_PROMPT = "meeting_evaluation.md"


class PromptNotFoundError(FileNotFoundError):
    """Raised when a prompt template cannot be located."""


class PromptRenderError(RuntimeError):
    """Raised when a prompt template cannot be rendered."""


def prompts_dir() -> Path:
    override = os.getenv("PROMPTS_DIR")
    if override:
        return Path(override)
    return Path(__file__).resolve().parent.parent / "prompts"


def _environment(base: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(base)),
        undefined=StrictUndefined,
        autoescape=False,
    )


def load_prompt(name: str, context: Optional[Dict[str, Any]] = None) -> str:
    """Render the template ``name`` (``.md`` may be omitted) from the prompts directory."""

    base = prompts_dir()
    env = _environment(base)
    candidates: List[str] = [name] if name.endswith(".md") else [name, f"{name}.md"]
    for candidate in candidates:
        try:
            return env.get_template(candidate).render(**(context or {}))
        except TemplateNotFound as exc:
            if exc.name != candidate:
                raise PromptRenderError(f"Failed to render prompt '{name}': {exc}") from exc
            continue
        except TemplateError as exc:
            raise PromptRenderError(f"Failed to render prompt '{name}': {exc}") from exc
    raise PromptNotFoundError(f"Prompt template not found: {name} (searched {base})")


def render_meeting_prompt(meeting: "MeetingRecord", rubric: RubricSchema) -> str:
    """Render the scoring prompt for one meeting."""

    sections = [
        {
            "title": section.title,
            "max_points": section.max_points,
            "is_penalty": section.is_penalty,
            "criteria": [
                {"label": criterion.label, "max_points": criterion.max_points}
                for criterion in section.criteria
            ],
        }
        for section in rubric.sections
    ]
    return load_prompt(
        MEETING_PROMPT,
        {
            "sections": sections,
            "points_possible": rubric.points_possible,
            "summary_label": rubric.summary_pattern,
            "final_score_label": rubric.final_score_pattern,
            "meeting_title": meeting.meeting_title or "",
            "meeting_summary": meeting.summary or "",
            "transcript": meeting.transcript or "",
        },
    )
