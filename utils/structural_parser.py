"""Fold classified evaluation lines into ordered rubric sections."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from functools import partial, reduce
from typing import List, Optional, Tuple

from models import Criterion, RubricSchema, RubricSection
from models.rubric import PENALTY_SECTION_TITLE

from .line_classifier import (
    Blank,
    CriterionLine,
    FinalScoreMarker,
    JustificationLine,
    LineContext,
    PenaltyLine,
    SectionHeader,
    SummaryMarker,
    Token,
    Unclassified,
    classify_line,
)

_EXTRA_BLANKS = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class StructuralParse:
    """Everything the structural pass could recover from a text."""

    sections: Tuple[RubricSection, ...]
    summary: Optional[str]
    declared_score: Optional[int]
    unclassified_lines: Tuple[str, ...]

    @property
    def structural_sum(self) -> Optional[int]:
        if not self.sections:
            return None
        return sum(section.awarded_points for section in self.sections)


@dataclass(frozen=True)
class _OpenSection:
    title: str
    max_points: Optional[int]
    is_penalty: bool
    source_line: Optional[str] = None
    criteria: Tuple[Criterion, ...] = ()


@dataclass(frozen=True)
class _FoldState:
    sections: Tuple[RubricSection, ...] = ()
    current: Optional[_OpenSection] = None
    summary_lines: Tuple[str, ...] = ()
    in_summary: bool = False
    declared_score: Optional[int] = None
    unclassified: Tuple[str, ...] = ()

    @property
    def context(self) -> LineContext:
        return LineContext(open_penalty=bool(self.current and self.current.is_penalty))


def split_lines(text: str) -> List[str]:
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def parse_structure(text: str, rubric: RubricSchema) -> StructuralParse:
    """Run the structural pass over ``text``."""

    state = reduce(partial(_step, rubric), split_lines(text or ""), _FoldState())
    state = _close(state)
    summary = _EXTRA_BLANKS.sub("\n\n", "\n".join(state.summary_lines)).strip()
    return StructuralParse(
        sections=state.sections,
        summary=summary or None,
        declared_score=state.declared_score,
        unclassified_lines=state.unclassified,
    )


def _step(rubric: RubricSchema, state: _FoldState, line: str) -> _FoldState:
    token = classify_line(line, rubric, state.context)
    return _apply(rubric, state, token, line.strip())


def _apply(rubric: RubricSchema, state: _FoldState, token: Token, line: str) -> _FoldState:
    if isinstance(token, Blank):
        if state.in_summary:
            return replace(state, summary_lines=state.summary_lines + ("",))
        return state

    if isinstance(token, Unclassified):
        if state.in_summary:
            return replace(state, summary_lines=state.summary_lines + (token.raw,))
        return replace(state, unclassified=state.unclassified + (token.raw,))

    if isinstance(token, SummaryMarker):
        state = _close(state)
        lines = state.summary_lines
        if lines:
            lines = lines + ("",)
        if token.leading_text:
            lines = lines + (token.leading_text,)
        return replace(state, summary_lines=lines, in_summary=True)

    # only another marker or a header ends a summary
    if state.in_summary and not isinstance(token, (SectionHeader, FinalScoreMarker)):
        return replace(state, summary_lines=state.summary_lines + (line,))

    state = replace(state, in_summary=False)

    if isinstance(token, FinalScoreMarker):
        return replace(state, declared_score=token.value)

    if isinstance(token, SectionHeader):
        state = _close(state)
        return replace(
            state,
            current=_OpenSection(
                title=token.title,
                max_points=token.max_points,
                is_penalty=token.is_penalty,
                source_line=line,
            ),
        )

    if isinstance(token, JustificationLine):
        return _attach_justification(state, token, line)

    if isinstance(token, PenaltyLine):
        if state.current is None or not state.current.is_penalty:
            state = _open_for(rubric, _close(state), token.section_title, penalty=True)
        return _append(state, token)

    if isinstance(token, CriterionLine):
        if state.current is None or state.current.is_penalty:
            state = _open_for(rubric, _close(state), token.section_title, penalty=False)
        return _append(state, token)

    return replace(state, unclassified=state.unclassified + (line,))


def _open_for(
    rubric: RubricSchema, state: _FoldState, section_title: Optional[str], *, penalty: bool
) -> _FoldState:
    configured = rubric.section_for_title(section_title) if section_title else None
    if configured is None and penalty and rubric.penalty_sections:
        configured = rubric.penalty_sections[0]
    if configured is not None:
        opened = _OpenSection(
            title=configured.title,
            max_points=configured.max_points,
            is_penalty=configured.is_penalty,
        )
    else:
        title = PENALTY_SECTION_TITLE if penalty else rubric.implicit_section_title
        opened = _OpenSection(title=title, max_points=None, is_penalty=penalty)
    return replace(state, current=opened)


def _append(state: _FoldState, token: Token) -> _FoldState:
    assert state.current is not None
    criterion = Criterion(
        text=token.text,
        awarded_points=token.awarded,
        max_points=token.max_points,
        justification=token.justification,
    )
    current = replace(state.current, criteria=state.current.criteria + (criterion,))
    return replace(state, current=current)


def _attach_justification(
    state: _FoldState, token: JustificationLine, line: str
) -> _FoldState:
    current = state.current
    if current is None or not current.criteria:
        return replace(state, unclassified=state.unclassified + (line,))
    last = current.criteria[-1]
    text = f"{last.justification} {token.text}".strip()
    updated = last.model_copy(update={"justification": text})
    current = replace(current, criteria=current.criteria[:-1] + (updated,))
    return replace(state, current=current)


def _close(state: _FoldState) -> _FoldState:
    current = state.current
    if current is None:
        return state
    if not current.criteria:
        dropped = state.unclassified
        if current.source_line:
            dropped = dropped + (current.source_line,)
        return replace(state, current=None, unclassified=dropped)
    max_points = current.max_points
    if max_points is None:
        max_points = sum(criterion.max_points for criterion in current.criteria)
    section = RubricSection(
        title=current.title,
        max_points=max_points,
        is_penalty=current.is_penalty,
        criteria=current.criteria,
    )
    return replace(state, sections=state.sections + (section,), current=None)
