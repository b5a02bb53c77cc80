"""
Release value object and Newznab category labels.

A Release is one candidate result from an indexer. It is immutable and
carries everything the matching, scoring and grab steps need.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

PROTOCOL_TORRENT = "torrent"
PROTOCOL_USENET = "usenet"

MOVIE_CATEGORIES = "2000,2010,2020,2030,2040,2045,2050,2060"
TV_CATEGORIES = "5000,5010,5020,5030,5040,5045,5050,5060,5070,5080"
RSS_CATEGORIES = "2000,5000"

CATEGORY_LABELS = {
    "2000": "Movies",
    "2010": "Movies/Foreign",
    "2020": "Movies/Other",
    "2030": "Movies/SD",
    "2040": "Movies/HD",
    "2045": "Movies/UHD",
    "2050": "Movies/BluRay",
    "2060": "Movies/3D",
    "5000": "TV",
    "5010": "TV/WEB-DL",
    "5020": "TV/Foreign",
    "5030": "TV/SD",
    "5040": "TV/HD",
    "5045": "TV/UHD",
    "5050": "TV/Other",
    "5060": "TV/Sport",
    "5070": "TV/Anime",
    "5080": "TV/Documentary",
}


def category_label(code: Any) -> str:
    """Label for a Newznab category code; unknown codes come back as-is."""
    key = str(code).strip()
    return CATEGORY_LABELS.get(key, key)


@dataclass(frozen=True)
class Release:
    guid: str
    title: str
    download_url: str
    size: int = 0
    seeders: int = 0
    leechers: int = 0
    grabs: int = 0
    info_url: Optional[str] = None
    indexer: str = ""
    indexer_id: Optional[int] = None
    indexer_kind: Optional[str] = None
    protocol: str = PROTOCOL_TORRENT
    quality: str = "Unknown"
    publish_date: Optional[datetime] = None
    categories: Tuple[str, ...] = field(default_factory=tuple)
    download_volume_factor: Optional[float] = None

    @property
    def is_usenet(self) -> bool:
        return self.protocol == PROTOCOL_USENET

    @property
    def is_freeleech(self) -> bool:
        return self.download_volume_factor is not None and self.download_volume_factor == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guid": self.guid,
            "title": self.title,
            "download_url": self.download_url,
            "size": self.size,
            "seeders": self.seeders,
            "leechers": self.leechers,
            "grabs": self.grabs,
            "info_url": self.info_url,
            "indexer": self.indexer,
            "indexer_id": self.indexer_id,
            "indexer_kind": self.indexer_kind,
            "protocol": self.protocol,
            "quality": self.quality,
            "publish_date": self.publish_date.isoformat() if self.publish_date else None,
            "categories": list(self.categories),
            "freeleech": self.is_freeleech,
        }


def sort_by_seeders(releases: Iterable[Release]) -> List[Release]:
    return sorted(releases, key=lambda r: r.seeders or 0, reverse=True)
