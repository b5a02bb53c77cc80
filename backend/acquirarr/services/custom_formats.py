"""
Custom Format Engine

Evaluates declarative custom format specifications against a release title
(and size) and turns the matching formats into a score for a quality
profile.

Features:
- Eight specification kinds (release title, source, resolution, release
  group, language, indexer flag, size, quality modifier)
- Negate flag per specification
- Required specifications gate the format; optional ones need one hit
- Profile specific scores (CustomFormatScore rows)
- Score breakdown for interactive search results
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from acquirarr.models.custom_format import CustomFormat, CustomFormatScore
from acquirarr.services import release_parser

logger = logging.getLogger(__name__)

GB = 1024 ** 3


class SpecificationKind(str, Enum):
    RELEASE_TITLE = "release_title"
    SOURCE = "source"
    RESOLUTION = "resolution"
    RELEASE_GROUP = "release_group"
    LANGUAGE = "language"
    INDEXER_FLAG = "indexer_flag"
    SIZE = "size"
    QUALITY_MODIFIER = "quality_modifier"

    @classmethod
    def parse(cls, value: str) -> Optional['SpecificationKind']:
        """Accept 'release_title' as well as 'ReleaseTitleSpecification'."""
        if not value:
            return None
        key = re.sub(r"specification$", "", value.replace("_", "").lower())
        for kind in cls:
            if kind.value.replace("_", "") == key:
                return kind
        return None


# Source specification values -> title test
SOURCE_PATTERNS = {
    1: re.compile(r"\b(?:cam|camrip|hdcam)\b", re.IGNORECASE),
    2: re.compile(r"\b(?:ts|telesync|hdts)\b", re.IGNORECASE),
    3: re.compile(r"\b(?:tc|telecine)\b", re.IGNORECASE),
    4: re.compile(r"\bworkprint\b", re.IGNORECASE),
    5: re.compile(r"\b(?:dvdrip|dvd-?r|dvd)\b", re.IGNORECASE),
    6: re.compile(r"\b(?:hdtv|pdtv|dsr)\b", re.IGNORECASE),
    7: re.compile(r"\bweb[- ]?dl\b", re.IGNORECASE),
    8: re.compile(r"\bweb[- ]?rip\b", re.IGNORECASE),
    9: re.compile(r"\b(?:blu-?ray|bdrip|brrip)\b", re.IGNORECASE),
}

SOURCE_NAMES = {
    "cam": 1, "telesync": 2, "telecine": 3, "workprint": 4, "dvd": 5,
    "tv": 6, "webdl": 7, "webrip": 8, "bluray": 9,
}

RESOLUTION_PATTERNS = {
    2160: re.compile(r"\b(?:2160p|4k|uhd)\b", re.IGNORECASE),
    1080: re.compile(r"\b1080[pi]\b", re.IGNORECASE),
    720: re.compile(r"\b720p\b", re.IGNORECASE),
    576: re.compile(r"\b576p\b", re.IGNORECASE),
    480: re.compile(r"\b(?:480p|sd)\b", re.IGNORECASE),
}

LANGUAGE_VALUES = {
    1: "English", 3: "French", 4: "German", 5: "Spanish", 6: "Italian",
    8: "Japanese", 10: "Korean", 11: "Russian", 12: "Chinese", 13: "Hindi",
    14: "Portuguese",
}

QUALITY_MODIFIER_PATTERNS = {
    1: re.compile(r"\bremux\b", re.IGNORECASE),
    2: re.compile(r"\bproper\b", re.IGNORECASE),
    3: re.compile(r"\b(?:repack|rerip)\b", re.IGNORECASE),
    4: re.compile(r"\bREAL\b"),
}

FREELEECH_PATTERN = re.compile(r"\bfree-?leech\b", re.IGNORECASE)


@dataclass(frozen=True)
class Specification:
    """One rule of a custom format. Immutable."""
    name: str
    kind: Optional[SpecificationKind]
    negate: bool = False
    required: bool = False
    value: Any = None
    min: Optional[float] = None
    max: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Specification':
        """
        Build from stored JSON.

        `fields` may be a mapping ({"value": ...}) or the list form exported
        by other *arr applications ([{"name": "value", "value": ...}]).
        """
        fields = data.get("fields") or {}
        if isinstance(fields, list):
            fields = {f.get("name"): f.get("value") for f in fields if isinstance(f, dict)}
        return cls(
            name=data.get("name", ""),
            kind=SpecificationKind.parse(data.get("implementation") or data.get("kind") or ""),
            negate=bool(data.get("negate", False)),
            required=bool(data.get("required", False)),
            value=fields.get("value"),
            min=fields.get("min"),
            max=fields.get("max"),
        )


@dataclass
class FormatMatch:
    custom_format_id: int
    name: str
    score: int


@dataclass
class ScoreBreakdown:
    total: int = 0
    matches: List[FormatMatch] = field(default_factory=list)

    @property
    def format_names(self) -> List[str]:
        return [m.name for m in self.matches]


# ============================================================================
# Specification evaluation
# ============================================================================

def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _regex_search(pattern: Any, text: str) -> bool:
    if not pattern or text is None:
        return False
    try:
        return re.search(str(pattern), text, re.IGNORECASE) is not None
    except re.error as e:
        logger.debug(f"Invalid custom format regex {pattern!r}: {e}")
        return False


def _matches_source(title: str, value: Any) -> bool:
    code = _as_int(value)
    if code is None and isinstance(value, str):
        code = SOURCE_NAMES.get(re.sub(r"[^a-z]", "", value.lower()))
    if code == 8:
        return bool(SOURCE_PATTERNS[8].search(title)) and not SOURCE_PATTERNS[7].search(title)
    if code in SOURCE_PATTERNS:
        return bool(SOURCE_PATTERNS[code].search(title))
    return bool(value) and str(value).lower() in title.lower()


def _matches_resolution(title: str, value: Any) -> bool:
    code = _as_int(str(value).rstrip("pP")) if value is not None else None
    if code in RESOLUTION_PATTERNS:
        return bool(RESOLUTION_PATTERNS[code].search(title))
    return code is not None and re.search(rf"\b{code}p\b", title, re.IGNORECASE) is not None


def _matches_language(title: str, value: Any) -> bool:
    code = _as_int(value)
    language = LANGUAGE_VALUES.get(code) if code is not None else str(value or "").title()
    if not language:
        return True
    detected = release_parser.parse_languages(title)
    if language == "English":
        return not detected
    if language not in LANGUAGE_VALUES.values():
        return True
    return language in detected


def _matches_size(size: Optional[int], minimum: Optional[float], maximum: Optional[float]) -> bool:
    if not size:
        return True
    size_gb = size / GB
    if minimum is not None and size_gb < float(minimum):
        return False
    if maximum is not None and float(maximum) > 0 and size_gb > float(maximum):
        return False
    return True


def matches_specification(title: str, spec: Specification, size: Optional[int] = None) -> bool:
    """
    Evaluate one specification, negate applied.

    An unknown kind evaluates to no match, so a negated one matches.
    """
    text = re.sub(r"[._]+", " ", title or "")
    kind = spec.kind

    if kind is SpecificationKind.RELEASE_TITLE:
        result = _regex_search(spec.value, title)
    elif kind is SpecificationKind.RELEASE_GROUP:
        group = release_parser.parse_release_group(title)
        result = group is not None and _regex_search(spec.value, group)
    elif kind is SpecificationKind.SOURCE:
        result = _matches_source(text, spec.value)
    elif kind is SpecificationKind.RESOLUTION:
        result = _matches_resolution(text, spec.value)
    elif kind is SpecificationKind.LANGUAGE:
        result = _matches_language(title, spec.value)
    elif kind is SpecificationKind.INDEXER_FLAG:
        result = _as_int(spec.value) == 1 and bool(FREELEECH_PATTERN.search(text))
    elif kind is SpecificationKind.SIZE:
        result = _matches_size(size, spec.min, spec.max)
    elif kind is SpecificationKind.QUALITY_MODIFIER:
        pattern = QUALITY_MODIFIER_PATTERNS.get(_as_int(spec.value))
        result = bool(pattern and pattern.search(text))
    else:
        result = False

    return not result if spec.negate else result


def matches_format(title: str, specs: Iterable[Union[Specification, Dict[str, Any]]],
                   size: Optional[int] = None) -> bool:
    """
    A format matches when every required specification matches and, if it
    has optional specifications, at least one of them matches.

    A format without specifications matches every release.
    """
    specs = [s if isinstance(s, Specification) else Specification.from_dict(s) for s in specs or []]

    required = [s for s in specs if s.required]
    optional = [s for s in specs if not s.required]

    if not all(matches_specification(title, s, size) for s in required):
        return False
    if optional and not any(matches_specification(title, s, size) for s in optional):
        return False
    return True


# ============================================================================
# Scoring
# ============================================================================

def score_formats(
    title: str,
    formats: Iterable[CustomFormat],
    scores: Dict[int, int],
    size: Optional[int] = None,
    media_type: Optional[str] = None,
) -> ScoreBreakdown:
    """Sum of profile scores over matching formats; unassigned formats score 0."""
    breakdown = ScoreBreakdown()
    for custom_format in formats:
        if not custom_format.applies_to(media_type):
            continue
        if not matches_format(title, custom_format.specifications or [], size):
            continue
        score = scores.get(custom_format.id, 0)
        breakdown.matches.append(FormatMatch(custom_format.id, custom_format.name, score))
        breakdown.total += score
    return breakdown


def score_breakdown(db: Session, title: str, profile_id: Optional[int], size: Optional[int] = None,
                    media_type: Optional[str] = None) -> ScoreBreakdown:
    scores = CustomFormatScore.scores_for_profile(db, profile_id) if profile_id else {}
    return score_formats(title, CustomFormat.get_all(db), scores, size, media_type)


def calculate_release_score(db: Session, title: str, profile_id: Optional[int],
                            size: Optional[int] = None, media_type: Optional[str] = None) -> int:
    """
    Custom format score of a release for one quality profile.

    Args:
        db: Database session
        title: Release title
        profile_id: Quality profile whose scores apply
        size: Release size in bytes, if known
        media_type: 'movie' or 'series' to skip formats of the other kind

    Returns:
        Summed score (0 when nothing matches)
    """
    return score_breakdown(db, title, profile_id, size, media_type).total
