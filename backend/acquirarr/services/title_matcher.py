"""
Title Matcher

Decides whether a release title plausibly names a wanted movie or series.
A false positive downloads the wrong thing and a false negative misses
content, so every rule here is a guard against one of those.

Rules, applied in order:
    1. Normalize both sides (lower case, & -> and, A.I. -> ai, punctuation out)
    2. Movie context (year given): reject TV episode markers
    3. Expected words split into content words and optional articles
    4. At least 80% of content words present as whole tokens
    5. First matched content word near the start of the release title
    6. Bounded number of extra (unexpected) words
    7. Year within +/-1; no year at all rejects upcoming titles

The strictness differs per caller; MatchOptions carries it and the three
presets below are the ones the engine uses.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Pattern

from acquirarr.services.release_parser import extract_title_prefix, extract_years

ARTICLES = frozenset({"the", "a", "an", "and", "of", "in", "on", "at", "to", "for"})

TV_MARKERS: List[Pattern] = [
    re.compile(r"\bS\d{1,2}\s*E\d{1,3}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}x\d{1,3}\b", re.IGNORECASE),
    re.compile(r"\bSeason\s*\d+\s*Episode\s*\d+", re.IGNORECASE),
    re.compile(r"\bComplete\s*Season", re.IGNORECASE),
    re.compile(r"\bEpisode\s*\d+", re.IGNORECASE),
]

# Extra markers used by the RSS loop, where a stray season pack is costlier
STRICT_TV_MARKERS: List[Pattern] = [
    re.compile(r"\bS\d{1,2}\b(?!\d)", re.IGNORECASE),
    re.compile(r"\bSeason\s*\d+", re.IGNORECASE),
    re.compile(r"\bComplete\s*Series", re.IGNORECASE),
    re.compile(r"\bMini[\s-]*Series", re.IGNORECASE),
]


@dataclass(frozen=True)
class MatchOptions:
    """
    Strictness knobs of title_matches.

    Extra words allowed = max(min_extra_words, floor(basis * extra_word_factor))
    where basis is the matched content word count, or the total content word
    count when extra_words_from_content is set.
    """
    min_coverage: float = 0.8
    max_first_word_index: int = 2
    extra_word_factor: float = 2.0
    extra_words_from_content: bool = False
    min_extra_words: int = 2
    strict_short_titles: bool = False
    short_title_words: int = 2
    short_title_max_first_index: int = 1
    short_title_max_extra: int = 1
    strict_tv_markers: bool = False


# RSS feeds carry everything an indexer sees, so be strict
RSS_MATCH = MatchOptions(
    extra_word_factor=0.5,
    strict_short_titles=True,
    strict_tv_markers=True,
)

# Results of a targeted indexer search
SEARCH_FILTER = MatchOptions(
    extra_word_factor=1.0,
    extra_words_from_content=True,
)

# Validation while ranking automatic search results
AUTO_SEARCH = MatchOptions(extra_word_factor=2.0)


def normalize_title(title: str) -> str:
    text = (title or "").lower()
    text = re.sub(r"\ba\.i\.", "ai", text)
    text = text.replace("&", " and ")
    text = re.sub(r"['‘’`]", "", text)
    text = re.sub(r"[^\w\s]|_", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def tokenize(title: str) -> List[str]:
    normalized = normalize_title(title)
    return normalized.split(" ") if normalized else []


def _strip_trailing_year(title: str) -> str:
    """'Doctor Who (2005)' -> 'Doctor Who'; a title that is only a year stays."""
    stripped = re.sub(r"\s*\(?(?:19|20)\d{2}\)?\s*$", "", title or "")
    return stripped if stripped.strip() else title


def has_tv_marker(release_title: str, strict: bool = False) -> bool:
    text = re.sub(r"[._]+", " ", release_title or "")
    markers = TV_MARKERS + STRICT_TV_MARKERS if strict else TV_MARKERS
    return any(p.search(text) for p in markers)


def year_matches(release_title: str, expected_year: int, current_year: Optional[int] = None) -> bool:
    """
    Any year in the release within +/-1 of the expected year.

    A release without any year only passes for titles that are already out;
    for this year's and upcoming titles it is too likely a different work.
    """
    years = extract_years(release_title)
    if years:
        return any(abs(year - expected_year) <= 1 for year in years)
    if current_year is None:
        current_year = datetime.utcnow().year
    return expected_year < current_year


def title_matches(
    release_title: str,
    expected_title: str,
    expected_year: Optional[int] = None,
    options: MatchOptions = AUTO_SEARCH,
    current_year: Optional[int] = None,
) -> bool:
    """
    Check whether a release title names the expected movie or series.

    Args:
        release_title: Raw release title from an indexer
        expected_title: Library title
        expected_year: Release year for movies, None for series
        options: Strictness preset
        current_year: Override for the calendar year (tests)

    Returns:
        True only when every applicable rule passes
    """
    if not release_title or not expected_title:
        return False

    if expected_year is not None and has_tv_marker(release_title, strict=options.strict_tv_markers):
        return False

    release_tokens = tokenize(extract_title_prefix(release_title))
    expected_tokens = tokenize(_strip_trailing_year(expected_title))
    if not release_tokens or not expected_tokens:
        return False

    significant = [w for w in expected_tokens if len(w) > 1] or expected_tokens
    content_words = [w for w in significant if w not in ARTICLES] or significant
    release_set = set(release_tokens)

    matched = [w for w in content_words if w in release_set]
    if len(matched) / len(content_words) < options.min_coverage:
        return False

    content_set = set(content_words)
    first_index = next(i for i, token in enumerate(release_tokens) if token in content_set)
    short_title = options.strict_short_titles and len(content_words) <= options.short_title_words
    max_first_index = options.short_title_max_first_index if short_title else options.max_first_word_index
    if first_index > max_first_index:
        return False

    expected_set = set(expected_tokens)
    extra_words = [t for t in release_tokens if t not in expected_set]
    if short_title:
        max_extra = options.short_title_max_extra
    else:
        basis = len(content_words) if options.extra_words_from_content else len(matched)
        max_extra = max(options.min_extra_words, math.floor(basis * options.extra_word_factor))
    if len(extra_words) > max_extra:
        return False

    if expected_year is not None and not year_matches(release_title, expected_year, current_year):
        return False

    return True


def category_matches(categories: Iterable[str], media_kind: str) -> bool:
    """
    Reject releases filed only under the other media kind.

    Labels are either names ('Movies/HD') or raw Newznab codes ('2040').
    Releases without any recognizable category pass.
    """
    has_movie = has_tv = False
    for category in categories or []:
        label = str(category).lower()
        code = int(label) if label.isdigit() else None
        if "movie" in label or (code is not None and 2000 <= code < 3000):
            has_movie = True
        if label.startswith("tv") or (code is not None and 5000 <= code < 6000):
            has_tv = True

    if media_kind == "movie" and has_tv and not has_movie:
        return False
    if media_kind == "tv" and has_movie and not has_tv:
        return False
    return True
