"""
Release Parser

Pure functions that pull structured facts out of free-text release titles
such as ``Show.Name.S03E07.1080p.WEB-DL.DDP5.1.x264-GROUP``.

Every detector is driven by an ordered pattern table: the first entry that
matches wins, so precedence is visible in one place and each table can be
unit tested on its own.

Features:
- Composite quality labels (``Remux-2160p``, ``WEBDL-1080p``, ``SDTV`` ...)
- PROPER / REPACK / REAL flags
- Season/episode extraction (SxxExx, multi-digit, AxB, long form, 3-digit)
- Season pack detection (bare ``Sxx`` marker)
- Title prefix extraction (everything before year/season/quality tokens)
- Codec, audio, channel, dynamic range, language and release group parsing
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple


def _compile(table: List[Tuple[str, str]]) -> List[Tuple[str, Pattern]]:
    return [(name, re.compile(pattern, re.IGNORECASE)) for name, pattern in table]


def _first_match(table: List[Tuple[str, Pattern]], text: str) -> Optional[str]:
    for name, pattern in table:
        if pattern.search(text):
            return name
    return None


def _spaced(title: str) -> str:
    """Dots and underscores to spaces so word boundaries behave."""
    return re.sub(r"[._]+", " ", title or "")


# ============================================================================
# Pattern Tables
# ============================================================================

# Pre-release and low grade sources short-circuit everything else
LOW_GRADE_SOURCES = _compile([
    ("WORKPRINT", r"\bWORKPRINT\b"),
    ("CAM", r"\b(?:CAM|CAMRIP|HDCAM)\b"),
    ("TELESYNC", r"\b(?:TELESYNC|HDTS|PDVD|TS)\b"),
    ("TELECINE", r"\b(?:TELECINE|TC)\b"),
    ("DVDSCR", r"\b(?:DVDSCR|SCREENER)\b"),
    ("REGIONAL", r"\bR5\b"),
])

RESOLUTIONS = _compile([
    ("2160p", r"\b(?:2160p|4k|uhd)\b"),
    ("1080p", r"\b1080[pi]\b"),
    ("720p", r"\b720p\b"),
    ("576p", r"\b576p\b"),
    ("480p", r"\b(?:480p|640x480|848x480)\b"),
])

# Precedence when several source tokens are present
SOURCES = _compile([
    ("Remux", r"\bremux\b"),
    ("Bluray", r"\b(?:blu-?ray|bdrip|brrip|bd(?:25|50|66|100)?)\b"),
    ("WEBDL", r"\bweb[- ]?dl\b"),
    ("WEBRip", r"\bweb[- ]?rip\b"),
    ("WEBDL", r"\bweb\b"),
    ("HDTV", r"\b(?:hdtv|pdtv|dsr)\b"),
    ("DVD", r"\b(?:dvdrip|dvd-?r|dvd5|dvd9|dvd)\b"),
    ("SDTV", r"\bsdtv\b"),
])

VIDEO_CODECS = _compile([
    ("x265", r"\b(?:x265|h 265|h265|hevc)\b"),
    ("x264", r"\b(?:x264|h 264|h264|avc)\b"),
    ("XviD", r"\bxvid\b"),
    ("AV1", r"\bav1\b"),
])

AUDIO_CODECS = _compile([
    ("TrueHD Atmos", r"\btruehd\b.*\batmos\b|\batmos\b.*\btruehd\b"),
    ("TrueHD", r"\btruehd\b"),
    ("DTS-HD MA", r"\bdts-?hd[ -]?ma\b"),
    ("DTS-X", r"\bdts-?x\b"),
    ("DTS", r"\bdts\b"),
    ("EAC3", r"\b(?:eac3|ddp|dd\+|ddp\d)"),
    ("AC3", r"\b(?:ac3|dd)(?:\d)?\b"),
    ("FLAC", r"\bflac\b"),
    ("AAC", r"\baac"),
])

AUDIO_CHANNELS = _compile([
    ("7.1", r"(?<!\d)7[ .]1(?!\d)"),
    ("5.1", r"(?<!\d)5[ .]1(?!\d)"),
    ("2.0", r"(?<!\d)2[ .]0(?!\d)"),
])

DYNAMIC_RANGES = _compile([
    ("Dolby Vision", r"\b(?:dv|dovi|dolby ?vision)\b"),
    ("HDR10+", r"\bhdr10(?:\+|plus)"),
    ("HDR10", r"\bhdr(?:10)?\b"),
    ("HLG", r"\bhlg\b"),
])

LANGUAGES = _compile([
    ("German", r"\b(?:german|deutsch|ger)\b"),
    ("French", r"\b(?:french|fran[cç]ais|vff|vfi|vf2|truefrench)\b"),
    ("Spanish", r"\b(?:spanish|espa[nñ]ol|latino)\b"),
    ("Italian", r"\b(?:italian|italiano|ita)\b"),
    ("Japanese", r"\b(?:japanese|jpn)\b"),
    ("Korean", r"\bkorean\b"),
    ("Chinese", r"\b(?:chinese|mandarin)\b"),
    ("Hindi", r"\bhindi\b"),
    ("Russian", r"\b(?:russian|rus)\b"),
    ("Portuguese", r"\bportuguese\b"),
])

MULTI_LANGUAGE = re.compile(r"\b(?:multi|dual)\b", re.IGNORECASE)

# (season group, episode group) patterns, first match wins
EPISODE_PATTERNS: List[Pattern] = [
    re.compile(r"\bS(\d{1,2})[ ._-]?E(\d{1,3})(?!\d)", re.IGNORECASE),
    re.compile(r"\bS(\d{1,4})[ ._-]?E(\d{1,4})(?!\d)", re.IGNORECASE),
    re.compile(r"(?<![\dx])(\d{1,2})x(\d{1,3})(?![\dp])", re.IGNORECASE),
    re.compile(r"\bSeason[ ._-]*(\d{1,2})[ ._-]*Episode[ ._-]*(\d{1,3})\b", re.IGNORECASE),
    # Show.307.HDTV -> S03E07; H.264 style codec numbers are excluded
    re.compile(r"(?<![hx])[ ._-]([1-9])(\d{2})(?=[ ._-]|$)", re.IGNORECASE),
]

SEASON_PACK_PATTERNS: List[Pattern] = [
    re.compile(r"\bS(\d{1,2})(?![E\d])", re.IGNORECASE),
    re.compile(r"\bSeason[ ._-]*(\d{1,2})\b(?![ ._-]*Episode)", re.IGNORECASE),
]

# Tokens that end the human title part of a release name
TITLE_TERMINATORS: List[Pattern] = [
    re.compile(r"(?<=\s)\(?(?:19|20)\d{2}\)?(?=\s|$)"),
    re.compile(r"(?<=\s)S\d{1,2}(?:E\d{1,3})?\b", re.IGNORECASE),
    re.compile(r"(?<=\s)\d{1,2}x\d{1,3}\b", re.IGNORECASE),
    re.compile(r"(?<=\s)Season\s*\d+", re.IGNORECASE),
    re.compile(r"\b(?:2160p|1080[pi]|720p|576p|480p|4k|uhd)\b", re.IGNORECASE),
    # Bare WEB is left out: it is also an ordinary title word
    re.compile(r"\b(?:web[- ]?dl|web[- ]?rip|hdtv|blu-?ray|bdrip|brrip|remux|dvdrip|hdrip)\b", re.IGNORECASE),
    re.compile(r"\b(?:x264|x265|h 264|h 265|hevc|xvid)\b", re.IGNORECASE),
    re.compile(r"\b(?:dts|ac3|aac|flac|truehd|atmos|eac3|ddp?5 1)\b", re.IGNORECASE),
]

PROPER_PATTERN = re.compile(r"\bPROPER\b", re.IGNORECASE)
REPACK_PATTERN = re.compile(r"\b(?:REPACK|RERIP)\b", re.IGNORECASE)
REAL_PATTERN = re.compile(r"\bREAL\b")
YEAR_PATTERN = re.compile(r"\b((?:19|20)\d{2})\b")
RELEASE_GROUP_PATTERN = re.compile(r"-([A-Za-z0-9]+)(?:\.[A-Za-z0-9]{2,4})?$")

# Trailing tokens that look like a group after a dash but are not
NOT_A_GROUP = {"dl", "rip", "hd", "ma", "x"}


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class EpisodeInfo:
    season: int
    episode: int


@dataclass
class ParsedRelease:
    """Everything the parser can tell about one release title."""
    title: str
    title_prefix: str
    quality: str
    resolution: Optional[str] = None
    source: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_channels: Optional[str] = None
    dynamic_range: Optional[str] = None
    release_group: Optional[str] = None
    languages: List[str] = field(default_factory=list)
    years: List[int] = field(default_factory=list)
    episode: Optional[EpisodeInfo] = None
    season_pack: Optional[int] = None
    is_proper: bool = False
    is_repack: bool = False


# ============================================================================
# Quality
# ============================================================================

def parse_resolution(title: str) -> Optional[str]:
    return _first_match(RESOLUTIONS, _spaced(title))


def parse_source(title: str) -> Optional[str]:
    return _first_match(SOURCES, _spaced(title))


def detect_quality(title: str) -> str:
    """
    Composite quality label for a release title.

    Low grade sources (CAM, TELESYNC ...) win outright. Otherwise the
    resolution is combined with the highest precedence source token:
    Remux > Bluray > WEBDL > WEBRip > HDTV. A missing resolution defaults
    to 1080p for HD sources.

    Args:
        title: Raw release title

    Returns:
        Label such as 'Remux-1080p', 'WEBDL-2160p', 'SDTV' or 'Unknown'
    """
    text = _spaced(title)

    low_grade = _first_match(LOW_GRADE_SOURCES, text)
    if low_grade:
        return low_grade

    resolution = _first_match(RESOLUTIONS, text)
    source = _first_match(SOURCES, text)

    if source in ("DVD", "SDTV"):
        return source

    if resolution in ("480p", "576p"):
        if source in ("Bluray", "Remux"):
            return f"Bluray-{resolution}"
        if source in ("WEBDL", "WEBRip"):
            return f"{source}-480p"
        return "SDTV"

    if resolution is None:
        if source is None:
            return "Unknown"
        resolution = "1080p"

    if source is None:
        source = "HDTV"

    return f"{source}-{resolution}"


def is_proper(title: str) -> bool:
    return bool(PROPER_PATTERN.search(_spaced(title)))


def is_repack(title: str) -> bool:
    """REPACK or RERIP."""
    return bool(REPACK_PATTERN.search(_spaced(title)))


def is_real(title: str) -> bool:
    # Case sensitive: scene rules put REAL in upper case
    return bool(REAL_PATTERN.search(_spaced(title)))


# ============================================================================
# Episodes
# ============================================================================

def parse_episode(title: str) -> Optional[EpisodeInfo]:
    """
    Season/episode numbers of a single-episode release.

    Tries SxxExx, SxxxExxx, AxB, 'Season N Episode M' and the 3-digit
    'SEE' form in that order.

    Returns:
        EpisodeInfo or None when no episode marker is present
    """
    if not title:
        return None
    text = _spaced(title)
    for pattern in EPISODE_PATTERNS:
        match = pattern.search(text)
        if match:
            season, episode = int(match.group(1)), int(match.group(2))
            if episode == 0 and pattern is EPISODE_PATTERNS[-1]:
                continue
            return EpisodeInfo(season=season, episode=episode)
    return None


def parse_season_pack(title: str) -> Optional[int]:
    """Season number of a full-season release, None for single episodes."""
    if not title or parse_episode(title):
        return None
    text = _spaced(title)
    for pattern in SEASON_PACK_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def parse_episode_from_filename(filename: str) -> Optional[EpisodeInfo]:
    """Episode numbers from a file name inside a season pack."""
    text = _spaced(filename)
    for pattern in EPISODE_PATTERNS[:3]:
        match = pattern.search(text)
        if match:
            return EpisodeInfo(season=int(match.group(1)), episode=int(match.group(2)))
    return None


# ============================================================================
# Title
# ============================================================================

def extract_title_prefix(title: str) -> str:
    """
    Human title part of a release name.

    Dots and underscores become spaces, then everything from the first
    year, season marker, resolution, source, codec or audio token onward is
    dropped.
    """
    text = re.sub(r"\s+", " ", _spaced(title)).strip()
    cut = len(text)
    for pattern in TITLE_TERMINATORS:
        match = pattern.search(text)
        if match and match.start() < cut:
            cut = match.start()
    prefix = text[:cut] if cut > 0 else text
    return prefix.strip(" -([")


def extract_years(title: str) -> List[int]:
    return [int(y) for y in YEAR_PATTERN.findall(_spaced(title))]


# ============================================================================
# Other attributes
# ============================================================================

def parse_video_codec(title: str) -> Optional[str]:
    return _first_match(VIDEO_CODECS, _spaced(title))


def parse_audio_codec(title: str) -> Optional[str]:
    return _first_match(AUDIO_CODECS, _spaced(title))


def parse_audio_channels(title: str) -> Optional[str]:
    # Channel layouts keep their dot ("5.1"), so match on the raw title
    return _first_match(AUDIO_CHANNELS, title or "")


def parse_dynamic_range(title: str) -> Optional[str]:
    return _first_match(DYNAMIC_RANGES, _spaced(title))


def parse_languages(title: str) -> List[str]:
    text = _spaced(title)
    return [name for name, pattern in LANGUAGES if pattern.search(text)]


def is_multi_language(title: str) -> bool:
    return bool(MULTI_LANGUAGE.search(_spaced(title)))


def parse_release_group(title: str) -> Optional[str]:
    """Group after the last dash: 'Movie.2020.1080p.BluRay.x264-SPARKS' -> 'SPARKS'."""
    match = RELEASE_GROUP_PATTERN.search((title or "").strip())
    if not match:
        return None
    group = match.group(1)
    if group.lower() in NOT_A_GROUP:
        return None
    return group


def parse_release(title: str) -> ParsedRelease:
    """Run every detector over one title."""
    return ParsedRelease(
        title=title,
        title_prefix=extract_title_prefix(title),
        quality=detect_quality(title),
        resolution=parse_resolution(title),
        source=parse_source(title),
        video_codec=parse_video_codec(title),
        audio_codec=parse_audio_codec(title),
        audio_channels=parse_audio_channels(title),
        dynamic_range=parse_dynamic_range(title),
        release_group=parse_release_group(title),
        languages=parse_languages(title),
        years=extract_years(title),
        episode=parse_episode(title),
        season_pack=parse_season_pack(title),
        is_proper=is_proper(title),
        is_repack=is_repack(title),
    )
