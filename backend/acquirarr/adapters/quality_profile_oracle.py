"""
Quality Profile Oracle for Acquirarr

The acquisition engine never reads quality profiles directly. It asks this
oracle two questions: "is quality Q allowed for profile P" and "should a
candidate release replace the file we already have". Profile data is owned
by the library side; the default implementation reads the quality_profiles
table through a SQLAlchemy session.

Contract Methods:
    - meets_profile(): quality allowed by the profile
    - should_upgrade(): candidate should replace the current file
    - meets_cutoff(): current file already at or above the cutoff
    - upgrade_allowed(): profile lets upgrades happen at all
    - min_custom_format_score(): custom format gate of the profile
    - cutoff_quality(): cutoff label of the profile
    - quality_weight() / cutoff_weight(): ranking helpers for scoring

Quality Ranking:
    Labels produced by the release parser are ranked by QUALITY_WEIGHTS.
    WEBDL and WEBRip of the same resolution share the WEB-<res> group
    weight. Unknown labels fall back to the lowest weight of their
    resolution, then to 0.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import Session

from acquirarr.models.quality_profile import QualityProfile
from acquirarr.models.settings import (
    PROPERS_DO_NOT_PREFER, PROPERS_PREFER_AND_UPGRADE, Settings,
)

logger = logging.getLogger(__name__)


QUALITY_WEIGHTS: Dict[str, int] = {
    "Unknown": 0,
    "WORKPRINT": 1,
    "CAM": 2,
    "TELESYNC": 3,
    "TELECINE": 4,
    "REGIONAL": 5,
    "DVDSCR": 6,
    "SDTV": 7,
    "DVD": 8,
    "WEB-480p": 10,
    "Bluray-480p": 11,
    "Bluray-576p": 12,
    "HDTV-720p": 13,
    "WEB-720p": 14,
    "Bluray-720p": 15,
    "HDTV-1080p": 16,
    "WEB-1080p": 17,
    "Bluray-1080p": 18,
    "Remux-1080p": 19,
    "HDTV-2160p": 20,
    "WEB-2160p": 21,
    "Bluray-2160p": 22,
    "Remux-2160p": 23,
}

_WEB_LABEL = re.compile(r"^(?:WEBDL|WEBRip)-(480p|576p|720p|1080p|2160p)$")
_RESOLUTION = re.compile(r"(480p|576p|720p|1080p|2160p)$")


def quality_group(quality: str) -> str:
    """WEBDL-1080p / WEBRip-1080p -> WEB-1080p; other labels unchanged."""
    match = _WEB_LABEL.match(quality or "")
    return f"WEB-{match.group(1)}" if match else quality


def quality_weight(quality: Optional[str]) -> int:
    """
    Rank of a quality label; higher is better.

    Args:
        quality: Label such as 'Bluray-1080p'

    Returns:
        Weight from QUALITY_WEIGHTS, 0 when the label is unknown
    """
    if not quality:
        return 0
    if quality in QUALITY_WEIGHTS:
        return QUALITY_WEIGHTS[quality]
    group = quality_group(quality)
    if group in QUALITY_WEIGHTS:
        return QUALITY_WEIGHTS[group]
    match = _RESOLUTION.search(quality)
    if match:
        same_resolution = [w for label, w in QUALITY_WEIGHTS.items() if label.endswith(match.group(1))]
        if same_resolution:
            return min(same_resolution)
    return 0


@dataclass(frozen=True)
class UpgradeFlags:
    current_is_proper: bool = False
    current_is_repack: bool = False
    new_is_proper: bool = False
    new_is_repack: bool = False

    @property
    def current_is_fix(self) -> bool:
        return self.current_is_proper or self.current_is_repack

    @property
    def new_is_fix(self) -> bool:
        return self.new_is_proper or self.new_is_repack


class QualityProfileOracle(ABC):
    """Decisions the engine delegates to the quality profile owner."""

    @abstractmethod
    def meets_profile(self, profile_id: Optional[int], quality: str) -> bool:
        """True when the profile allows the quality."""

    @abstractmethod
    def should_upgrade(self, profile_id: Optional[int], current_quality: Optional[str],
                       candidate_quality: str, flags: UpgradeFlags = UpgradeFlags()) -> bool:
        """
        True when a candidate should replace the current file.

        Equal weight only upgrades for a PROPER/REPACK candidate over a plain
        current release, depending on the propers preference.
        """

    @abstractmethod
    def meets_cutoff(self, profile_id: Optional[int], current_quality: Optional[str]) -> bool:
        """True when the current file is at or above the cutoff."""

    @abstractmethod
    def upgrade_allowed(self, profile_id: Optional[int]) -> bool:
        pass

    @abstractmethod
    def min_custom_format_score(self, profile_id: Optional[int]) -> int:
        pass

    @abstractmethod
    def cutoff_quality(self, profile_id: Optional[int]) -> Optional[str]:
        pass

    def cutoff_weight(self, profile_id: Optional[int]) -> int:
        return quality_weight(self.cutoff_quality(profile_id))

    def quality_weight(self, quality: Optional[str]) -> int:
        return quality_weight(quality)


class DatabaseQualityProfileOracle(QualityProfileOracle):
    """
    Oracle backed by the quality_profiles table.

    Profiles are cached for the lifetime of the instance, which is one
    sync/search cycle (one session).
    """

    def __init__(self, db: Session, propers_preference: Optional[str] = None):
        self.db = db
        self._propers_preference = propers_preference
        self._profiles: Dict[int, Optional[QualityProfile]] = {}

    @property
    def propers_preference(self) -> str:
        if self._propers_preference is None:
            self._propers_preference = Settings.get_settings(self.db).propers_repacks_preference
        return self._propers_preference

    def _profile(self, profile_id: Optional[int]) -> Optional[QualityProfile]:
        if profile_id is None:
            return None
        if profile_id not in self._profiles:
            self._profiles[profile_id] = QualityProfile.get_by_id(self.db, profile_id)
        return self._profiles[profile_id]

    def meets_profile(self, profile_id: Optional[int], quality: str) -> bool:
        profile = self._profile(profile_id)
        if not profile or not quality:
            return False

        group = quality_group(quality)
        for item in profile.items or []:
            name = item.get("quality")
            members = item.get("qualities") or []
            if name == quality or name == group or quality in members:
                return bool(item.get("allowed", False))
        return False

    def should_upgrade(self, profile_id: Optional[int], current_quality: Optional[str],
                       candidate_quality: str, flags: UpgradeFlags = UpgradeFlags()) -> bool:
        profile = self._profile(profile_id)
        if not profile or not profile.upgrade_allowed:
            return False

        current_weight = quality_weight(current_quality)
        new_weight = quality_weight(candidate_quality)
        cutoff = quality_weight(profile.cutoff)

        if new_weight == current_weight:
            if flags.current_is_fix:
                return False
            if flags.new_is_fix and self.propers_preference in (
                PROPERS_PREFER_AND_UPGRADE, PROPERS_DO_NOT_PREFER
            ):
                return self.meets_profile(profile_id, candidate_quality)
            return False

        if current_weight >= cutoff:
            return False
        if new_weight <= current_weight:
            return False
        return self.meets_profile(profile_id, candidate_quality)

    def meets_cutoff(self, profile_id: Optional[int], current_quality: Optional[str]) -> bool:
        profile = self._profile(profile_id)
        if not profile:
            return False
        cutoff = quality_weight(profile.cutoff)
        current = quality_weight(current_quality)
        if cutoff == 0 or current == 0:
            return False
        return current >= cutoff

    def upgrade_allowed(self, profile_id: Optional[int]) -> bool:
        profile = self._profile(profile_id)
        return bool(profile and profile.upgrade_allowed)

    def min_custom_format_score(self, profile_id: Optional[int]) -> int:
        profile = self._profile(profile_id)
        return profile.min_custom_format_score if profile else 0

    def cutoff_quality(self, profile_id: Optional[int]) -> Optional[str]:
        profile = self._profile(profile_id)
        return profile.cutoff if profile else None
