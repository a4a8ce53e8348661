"""Line-level classification of free-form rubric evaluation text.

Each non-empty line of a generator response is turned into exactly one
token. Recognition is table driven: :func:`build_pattern_table` pairs a
compiled regular expression with a token constructor, and
:func:`classify_line` walks the table in priority order. The constructors
may still reject a match (for example a criterion whose label contains no
letters), in which case the next rule is tried.

The only context a line needs is whether the currently open section is a
penalty section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from re import Match, Pattern
from typing import Callable, Optional, Tuple, Union

from models import RubricSchema


@dataclass(frozen=True)
class SectionHeader:
    title: str
    max_points: int
    is_penalty: bool


@dataclass(frozen=True)
class CriterionLine:
    text: str
    awarded: int
    max_points: int
    justification: str = ""
    section_title: Optional[str] = None


@dataclass(frozen=True)
class PenaltyLine:
    text: str
    awarded: int
    max_points: int
    justification: str = ""
    section_title: Optional[str] = None


@dataclass(frozen=True)
class JustificationLine:
    text: str


@dataclass(frozen=True)
class SummaryMarker:
    leading_text: str


@dataclass(frozen=True)
class FinalScoreMarker:
    value: int


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Unclassified:
    raw: str


Token = Union[
    SectionHeader,
    CriterionLine,
    PenaltyLine,
    JustificationLine,
    SummaryMarker,
    FinalScoreMarker,
    Blank,
    Unclassified,
]


@dataclass(frozen=True)
class LineContext:
    """State of the parser that a single line may depend on."""

    open_penalty: bool = False


@dataclass(frozen=True)
class PreparedLine:
    raw: str
    body: str
    bulleted: bool


Builder = Callable[[Match[str], PreparedLine, RubricSchema, LineContext], Optional[Token]]


@dataclass(frozen=True)
class PatternRule:
    """One entry of the classification table."""

    name: str
    regex: Pattern[str]
    build: Builder
    bullet: Optional[bool] = None
    search: bool = False

    def apply(
        self, line: PreparedLine, rubric: RubricSchema, context: LineContext
    ) -> Optional[Token]:
        if self.bullet is not None and self.bullet != line.bulleted:
            return None
        match = self.regex.search(line.body) if self.search else self.regex.match(line.body)
        if match is None:
            return None
        return self.build(match, line, rubric, context)


_MARKUP = re.compile(r"\*\*|__")
_HEADING = re.compile(r"^#+\s*")
_BULLET = re.compile(r"^(?:[-*•+–]|\d+\))\s+")
_NUMBERING = re.compile(r"^\d+[.)]\s*")
_SPACES = re.compile(r"\s+")
_LETTER = re.compile(r"[^\W\d_]")
_EDGE_NOISE = " \t*#:;,-–."
_MAX_DIGITS = 9


def prepare_line(raw: str) -> PreparedLine:
    """Strip markup, heading hashes and bullets from ``raw``."""

    text = _MARKUP.sub("", raw.strip())
    text = _HEADING.sub("", text)
    text = _SPACES.sub(" ", text).strip()
    bullet = _BULLET.match(text)
    if bullet:
        return PreparedLine(raw=raw, body=text[bullet.end():].strip(), bulleted=True)
    return PreparedLine(raw=raw, body=text, bulleted=False)


def to_points(value: Optional[str]) -> Optional[int]:
    """Convert a captured number, or return ``None`` when it is too long to be a score."""

    if value is None:
        return None
    digits = value.lstrip("+-")
    if not digits or len(digits) > _MAX_DIGITS:
        return None
    return int(value)


def _words_alternation(words: Tuple[str, ...]) -> str:
    ordered = sorted(words, key=len, reverse=True)
    parts = [r"\s+".join(re.escape(piece) for piece in word.split()) for word in ordered]
    return "(?:" + "|".join(parts) + ")"


def _clean_label(value: str) -> str:
    text = _NUMBERING.sub("", value.strip())
    text = text.replace("*", "").strip(_EDGE_NOISE.replace(".", ""))
    return _SPACES.sub(" ", text).strip()


def _clean_title(value: str) -> str:
    text = _NUMBERING.sub("", value.strip())
    return _SPACES.sub(" ", text.replace("*", "")).strip(_EDGE_NOISE)


def _clean_justification(value: Optional[str]) -> str:
    text = (value or "").replace("*", "").strip()
    text = text.lstrip(":;,.-– \t").strip()
    while text.startswith("(") and text.endswith(")") and _balanced(text[1:-1]):
        text = text[1:-1].strip()
    return text


def _balanced(text: str) -> bool:
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _criterion(
    label: str,
    awarded: Optional[int],
    max_points: Optional[int],
    rest: Optional[str],
    rubric: RubricSchema,
    context: LineContext,
) -> Optional[Token]:
    if awarded is None:
        return None
    text = _clean_label(label)
    if not text or not _LETTER.search(text):
        return None
    configured = rubric.criterion_for(text)
    if max_points is None:
        if configured is None:
            max_points = awarded
        else:
            max_points = configured[1].max_points
    # an award above its own ceiling is a misread, not a score
    if abs(awarded) > abs(max_points):
        return None
    justification = _clean_justification(rest)

    configured_penalty = configured is not None and configured[0].is_penalty
    if configured is None:
        penalty = max_points < 0 or context.open_penalty
    else:
        penalty = configured_penalty
    if penalty:
        return PenaltyLine(
            text=text,
            awarded=-abs(awarded),
            max_points=-abs(max_points),
            justification=justification,
            section_title=configured[0].title if configured_penalty else None,
        )
    if awarded < 0 or max_points < 0:
        return None
    return CriterionLine(
        text=text,
        awarded=awarded,
        max_points=max_points,
        justification=justification,
        section_title=configured[0].title if configured else None,
    )


def _paren_has_points(match: Match[str]) -> bool:
    return bool(match.group("unit") or match.group("ceil") or match.group("b"))


def _build_header(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    if not _paren_has_points(match) or match.group("note").strip() and not match.group("unit"):
        return None
    title = _clean_title(match.group("title"))
    if not title or not _LETTER.search(title):
        return None
    configured = rubric.section_for_title(title)
    # "1. Perguntou ...? (5/5)" is a numbered criterion, not a header
    if configured is None and rubric.criterion_for(title) is not None:
        return None
    first = to_points(match.group("a"))
    second = match.group("b")
    max_points = to_points(second) if second is not None else first
    if max_points is None:
        return None
    is_penalty = configured.is_penalty if configured else max_points < 0
    if is_penalty:
        max_points = -abs(max_points)
    return SectionHeader(title=title, max_points=max_points, is_penalty=is_penalty)


def _build_configured_header(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    title = _clean_title(match.group("title"))
    configured = rubric.section_for_title(title) if title else None
    if configured is None:
        return None
    return SectionHeader(
        title=title, max_points=configured.max_points, is_penalty=configured.is_penalty
    )


def _build_final_score(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    value = to_points(match.group("value"))
    if value is None:
        return None
    return FinalScoreMarker(value=value)


def _build_summary(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    return SummaryMarker(leading_text=_clean_justification(match.group("rest")))


def _build_justification(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    text = _clean_justification(match.group("text"))
    if not text:
        return None
    return JustificationLine(text=text)


def _build_ceiling_then_award(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "Label (10 pontos): 10" / "Label (Máximo: 10 pontos): 10"
    if match.group("b") is not None:
        return None
    if match.group("note").strip() and not match.group("unit"):
        return None
    ceiling = to_points(match.group("a"))
    if ceiling is None:
        return None
    return _criterion(
        match.group("label"),
        to_points(match.group("award")),
        ceiling,
        match.group("rest"),
        rubric,
        context,
    )


def _build_slash_paren(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "Label (7/10 pts): justification"
    if match.group("b") is None or match.group("ceil"):
        return None
    ceiling = to_points(match.group("b"))
    if ceiling is None:
        return None
    return _criterion(
        match.group("label"),
        to_points(match.group("a")),
        ceiling,
        match.group("rest"),
        rubric,
        context,
    )


def _build_inline_slash(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "- Label: 7/10"
    ceiling = to_points(match.group("b"))
    if ceiling is None:
        return None
    return _criterion(
        match.group("label"),
        to_points(match.group("a")),
        ceiling,
        match.group("rest"),
        rubric,
        context,
    )


def _build_award_with_unit(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "- Label: 5 pontos"
    return _criterion(
        match.group("label"),
        to_points(match.group("award")),
        None,
        match.group("rest"),
        rubric,
        context,
    )


def _build_configured_award(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "- Label: 5" is only trusted when the label is a configured criterion.
    if rubric.criterion_for(_clean_label(match.group("label"))) is None:
        return None
    return _criterion(
        match.group("label"),
        to_points(match.group("award")),
        None,
        match.group("rest"),
        rubric,
        context,
    )


def _build_points_only(
    match: Match[str], line: PreparedLine, rubric: RubricSchema, context: LineContext
) -> Optional[Token]:
    # "- Label (5 pontos)" awards the points in the parenthesis.
    if match.group("b") is not None or match.group("ceil") or not match.group("unit"):
        return None
    if match.group("note").strip():
        return None
    return _criterion(
        match.group("label"),
        to_points(match.group("a")),
        None,
        match.group("rest"),
        rubric,
        context,
    )


_LABEL = r"(?P<label>(?:[^()]|\([^()]*\))*?)"
_TAIL = r"(?P<rest>(?:[\s:;,.\-–(].*)?)"


@lru_cache(maxsize=32)
def _pattern_table(
    point_words: Tuple[str, ...],
    ceiling_words: Tuple[str, ...],
    justification_words: Tuple[str, ...],
    summary_pattern: Optional[str],
    final_score_pattern: Optional[str],
) -> Tuple[PatternRule, ...]:
    units = _words_alternation(point_words) + r"\b\.?"
    ceiling = _words_alternation(ceiling_words)
    paren = (
        rf"\(\s*(?:(?P<ceil>{ceiling})\s*:?\s*)?"
        r"(?P<a>[+-]?\d+)\s*(?:/\s*(?P<b>[+-]?\d+)\s*)?"
        rf"(?P<unit>{units})?(?P<note>[^()]*)\)"
    )

    def compile_(pattern: str) -> Pattern[str]:
        return re.compile(pattern, re.IGNORECASE)

    rules = [
        PatternRule(
            "section_header",
            compile_(
                rf"^(?:\d+[.)]\s*)?(?P<title>(?:[^()]|\([^()]*\))+?)\s*{paren}\s*[:.\-–]?\s*$"
            ),
            _build_header,
            bullet=False,
        ),
        PatternRule(
            "configured_section_header",
            compile_(r"^(?:\d+[.)]\s*)?(?P<title>[^()]+?)\s*:?\s*$"),
            _build_configured_header,
            bullet=False,
        ),
    ]
    if final_score_pattern:
        rules.append(
            PatternRule(
                "final_score",
                compile_(rf"(?:{final_score_pattern})\s*[:=\-–]?\s*(?P<value>\d+)\b"),
                _build_final_score,
                search=True,
            )
        )
    if summary_pattern:
        rules.append(
            PatternRule(
                "summary",
                compile_(rf"^(?:\d+[.)]\s*)?(?:{summary_pattern})\s*[:.\-–]?(?P<rest>.*)$"),
                _build_summary,
            )
        )
    rules.extend(
        [
            PatternRule(
                "justification",
                compile_(rf"^{_words_alternation(justification_words)}\s*:\s*(?P<text>.+)$"),
                _build_justification,
            ),
            PatternRule(
                "ceiling_then_award",
                compile_(
                    rf"^{_LABEL}\s*{paren}\s*[:=\-–]?\s*(?P<award>[+-]?\d+)"
                    rf"(?:\s*/\s*\d+)?\s*(?:{units})?{_TAIL}$"
                ),
                _build_ceiling_then_award,
            ),
            PatternRule(
                "slash_paren",
                compile_(rf"^{_LABEL}\s*{paren}\s*[:.\-–]?\s*(?P<rest>.*)$"),
                _build_slash_paren,
            ),
            PatternRule(
                "inline_slash",
                compile_(
                    r"^(?P<label>.+?)\s*[:\-–]\s*(?P<a>[+-]?\d+)\s*/\s*(?P<b>[+-]?\d+)"
                    rf"\s*(?:{units})?{_TAIL}$"
                ),
                _build_inline_slash,
                bullet=True,
            ),
            PatternRule(
                "award_with_unit",
                compile_(
                    rf"^(?P<label>.+?)\s*[:\-–]\s*(?P<award>[+-]?\d+)\s*{units}{_TAIL}$"
                ),
                _build_award_with_unit,
                bullet=True,
            ),
            PatternRule(
                "configured_award",
                compile_(
                    r"^(?P<label>.+?)\s*[:\-–]\s*(?P<award>[+-]?\d+)"
                    r"(?P<rest>(?:\s*[(\-–].*)?)$"
                ),
                _build_configured_award,
                bullet=True,
            ),
            PatternRule(
                "points_only",
                compile_(rf"^{_LABEL}\s*{paren}(?P<rest>(?:\s*(?:\(.*\)|[\-–].*))?)\s*$"),
                _build_points_only,
                bullet=True,
            ),
        ]
    )
    return tuple(rules)


def build_pattern_table(rubric: RubricSchema) -> Tuple[PatternRule, ...]:
    """Return the ordered classification table for ``rubric``."""

    return _pattern_table(
        tuple(rubric.point_words),
        tuple(rubric.ceiling_words),
        tuple(rubric.justification_words),
        rubric.summary_pattern,
        rubric.final_score_pattern,
    )


def classify_line(
    line: str, rubric: RubricSchema, context: Optional[LineContext] = None
) -> Token:
    """Classify a single line of evaluation text."""

    prepared = prepare_line(line)
    if not prepared.body:
        return Blank()

    context = context or LineContext()
    for rule in build_pattern_table(rubric):
        token = rule.apply(prepared, rubric, context)
        if token is not None:
            return token
    return Unclassified(raw=line.strip())
