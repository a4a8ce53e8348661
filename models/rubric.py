"""Rubric schema models: declarative section and criterion descriptions."""

from __future__ import annotations

import re
from functools import lru_cache
from re import Pattern
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_POINT_WORDS = ["pontos", "ponto", "pts", "pt", "points", "point"]
DEFAULT_CEILING_WORDS = ["máximo", "maximo", "max", "maximum", "peso total", "peso", "total"]
DEFAULT_JUSTIFICATION_WORDS = ["justificativa", "justificação", "justificacao", "justification", "motivo", "reason"]

PENALTY_SECTION_TITLE = "Penalties"


@lru_cache(maxsize=None)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _check_pattern(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        re.compile(stripped)
    except re.error as exc:
        raise ValueError(f"invalid regular expression {stripped!r}: {exc}") from exc
    return stripped


def _loose_literal(text: str) -> str:
    """Escape ``text`` for regex use while tolerating whitespace variations."""

    parts = [re.escape(part) for part in text.split()]
    return r"\s+".join(parts)


class CriterionSpec(BaseModel):
    """One expected rubric criterion and its point ceiling."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str = Field(min_length=1)
    pattern: Optional[str] = None
    max_points: int

    @field_validator("label", mode="after")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("label must not be blank")
        return value.strip()

    @field_validator("pattern", mode="after")
    @classmethod
    def _valid_pattern(cls, value: Optional[str]) -> Optional[str]:
        return _check_pattern(value)

    @property
    def match_pattern(self) -> str:
        return self.pattern or _loose_literal(self.label)

    @property
    def regex(self) -> Pattern[str]:
        return _compile(self.match_pattern)


class SectionSpec(BaseModel):
    """Expected rubric section with its criteria."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str = Field(min_length=1)
    title_pattern: Optional[str] = None
    max_points: int
    is_penalty: bool = False
    criteria: List[CriterionSpec] = Field(default_factory=list)

    @field_validator("title", mode="after")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()

    @field_validator("title_pattern", mode="after")
    @classmethod
    def _valid_pattern(cls, value: Optional[str]) -> Optional[str]:
        return _check_pattern(value)

    @model_validator(mode="after")
    def _check_penalty(self) -> "SectionSpec":
        if self.is_penalty:
            if self.max_points > 0:
                raise ValueError(
                    f"Penalty section '{self.title}' must declare a non-positive max_points"
                )
            for criterion in self.criteria:
                if criterion.max_points > 0:
                    raise ValueError(
                        f"Penalty criterion '{criterion.label}' must declare a non-positive max_points"
                    )
        else:
            for criterion in self.criteria:
                if criterion.max_points < 0:
                    raise ValueError(
                        f"Criterion '{criterion.label}' has a negative max_points outside a penalty section"
                    )
        return self

    @property
    def title_regex(self) -> Pattern[str]:
        if self.title_pattern:
            return _compile(self.title_pattern)
        return _compile(rf"^{_loose_literal(self.title)}$")

    def matches_title(self, title: str) -> bool:
        return bool(self.title_regex.search(title))


class RubricSchema(BaseModel):
    """Complete rubric configuration consumed by the evaluation parser."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    sections: List[SectionSpec]
    summary_pattern: Optional[str] = None
    final_score_pattern: Optional[str] = None
    point_words: List[str] = Field(default_factory=lambda: list(DEFAULT_POINT_WORDS))
    ceiling_words: List[str] = Field(default_factory=lambda: list(DEFAULT_CEILING_WORDS))
    justification_words: List[str] = Field(
        default_factory=lambda: list(DEFAULT_JUSTIFICATION_WORDS)
    )
    implicit_section_title: str = "General Criteria"
    no_summary_text: str = "No summary available."
    failure_summary_text: str = (
        "The evaluation text could not be parsed. Original text:\n{raw_text}"
    )
    failure_sentinel: int = -1

    @field_validator("summary_pattern", "final_score_pattern", mode="after")
    @classmethod
    def _valid_pattern(cls, value: Optional[str]) -> Optional[str]:
        return _check_pattern(value)

    @field_validator("point_words", "ceiling_words", "justification_words", mode="after")
    @classmethod
    def _clean_words(cls, value: List[str]) -> List[str]:
        words = [word.strip() for word in value if word and word.strip()]
        if not words:
            raise ValueError("at least one word is required")
        return words

    @field_validator("implicit_section_title", "no_summary_text", mode="after")
    @classmethod
    def _non_blank_text(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be blank")
        return text

    @field_validator("failure_sentinel", mode="after")
    @classmethod
    def _negative_sentinel(cls, value: int) -> int:
        if value >= 0:
            raise ValueError("failure_sentinel must be negative")
        return value

    @field_validator("failure_summary_text", mode="after")
    @classmethod
    def _embeds_raw_text(cls, value: str) -> str:
        if "{raw_text}" not in value:
            raise ValueError("failure_summary_text must contain the {raw_text} placeholder")
        return value

    @model_validator(mode="after")
    def _validate_internal(self) -> "RubricSchema":
        if not self.sections:
            raise ValueError("Rubric must include at least one section")
        seen: Set[str] = set()
        for section in self.sections:
            key = section.title.casefold()
            if key in seen:
                raise ValueError(f"Duplicate section title detected: {section.title}")
            seen.add(key)
        return self

    @property
    def penalty_sections(self) -> List[SectionSpec]:
        return [section for section in self.sections if section.is_penalty]

    @property
    def points_possible(self) -> int:
        return sum(section.max_points for section in self.sections if not section.is_penalty)

    def section_for_title(self, title: str) -> Optional[SectionSpec]:
        """Return the configured section whose title pattern matches ``title``."""

        for section in self.sections:
            if section.matches_title(title):
                return section
        return None

    def criterion_for(self, text: str) -> Optional[Tuple[SectionSpec, CriterionSpec]]:
        """Return the first configured criterion whose pattern matches ``text``."""

        for section in self.sections:
            for criterion in section.criteria:
                if criterion.regex.search(text):
                    return section, criterion
        return None

    def iter_criteria(self) -> Iterator[Tuple[SectionSpec, CriterionSpec]]:
        for section in self.sections:
            for criterion in section.criteria:
                yield section, criterion


SectionInput = Union[SectionSpec, Dict[str, Any]]


def define_rubric(sections: Sequence[SectionInput], **options: Any) -> RubricSchema:
    """Build a validated :class:`RubricSchema`.

    ``sections`` may mix :class:`SectionSpec` instances and plain mappings.
    Keyword options are forwarded to the schema (``summary_pattern``,
    ``final_score_pattern``, ``failure_sentinel`` and so on). Invalid
    configuration raises :class:`pydantic.ValidationError`.
    """

    payload = [
        section if isinstance(section, SectionSpec) else SectionSpec.model_validate(section)
        for section in sections
    ]
    return RubricSchema(sections=payload, **options)
