"""
Automatic Search Service

Searches the indexers for one movie, episode or season, ranks what comes
back and grabs the best release. The batch variants drive the periodic
"missing" and "cutoff unmet" searches.

Ranking (base score):
    - title must match (AUTO_SEARCH strictness), release year within +/-1
    - quality must be allowed by the profile: +100
    - distance to the cutoff: +50 at cutoff, penalty below or above
    - seeders: +seeders/2, at most +50
    - size far from what the resolution usually weighs: -20 / -50
    - WEB-DL / BluRay sources: +20
Custom format score is added on top and must reach the profile minimum.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from acquirarr.adapters.library_adapter import LibraryAdapter, WantedEpisode, WantedMovie
from acquirarr.adapters.quality_profile_oracle import (
    DatabaseQualityProfileOracle,
    QualityProfileOracle,
    UpgradeFlags,
)
from acquirarr.adapters.sql_library_adapter import SqlLibraryAdapter
from acquirarr.config import Config
from acquirarr.models.blacklist import BlacklistEntry, normalize_release_title
from acquirarr.models.download import Download, MediaKind
from acquirarr.services import release_parser
from acquirarr.services.custom_formats import calculate_release_score
from acquirarr.services.grab_service import GrabService, GrabTarget, get_grab_service
from acquirarr.services.indexer_gateway import IndexerGateway, get_indexer_gateway
from acquirarr.services.releases import Release
from acquirarr.services.title_matcher import AUTO_SEARCH, title_matches

logger = logging.getLogger(__name__)

MB = 1024 ** 2
GB = 1024 ** 3

EXPECTED_MOVIE_SIZES = {"480p": 700 * MB, "720p": 1.5 * GB, "1080p": 3 * GB, "2160p": 10 * GB}
EXPECTED_EPISODE_SIZES = {"480p": 200 * MB, "720p": 500 * MB, "1080p": 1 * GB, "2160p": 3 * GB}

PREFERRED_SOURCE = re.compile(r"WEB-?DL|BluRay|BRRip", re.IGNORECASE)


@dataclass
class ScoredRelease:
    release: Release
    score: float
    custom_format_score: int = 0

    @property
    def total_score(self) -> float:
        return self.score + self.custom_format_score

    @property
    def title(self) -> str:
        return self.release.title


def expected_size(quality: str, media_kind: str) -> float:
    """Typical size of a release of this quality; 1080p when unknown."""
    resolution = quality.rsplit("-", 1)[-1] if "-" in quality else quality
    sizes = EXPECTED_EPISODE_SIZES if media_kind == MediaKind.TV.value else EXPECTED_MOVIE_SIZES
    return sizes.get(resolution, sizes["1080p"])


def base_score(release: Release, profile_id: Optional[int], oracle: QualityProfileOracle,
               expected_title: Optional[str] = None, expected_year: Optional[int] = None,
               media_kind: str = MediaKind.MOVIE.value) -> float:
    """Quality-profile score of a release; 0 means rejected."""
    if expected_title and not title_matches(release.title, expected_title, None, AUTO_SEARCH):
        logger.debug(f"[SCORE] Rejected - title mismatch: '{release.title}' vs '{expected_title}'")
        return 0

    if expected_year:
        years = release_parser.extract_years(release.title)
        if years and not any(abs(year - expected_year) <= 1 for year in years):
            logger.debug(f"[SCORE] Rejected - year mismatch, expected {expected_year}: '{release.title}'")
            return 0

    quality = release_parser.detect_quality(release.title)
    if not oracle.meets_profile(profile_id, quality):
        logger.debug(f"[SCORE] Rejected - quality {quality} not allowed: '{release.title}'")
        return 0

    score = 100.0
    weight = oracle.quality_weight(quality)
    cutoff = oracle.cutoff_weight(profile_id)
    if weight == cutoff:
        score += 50
    elif weight < cutoff:
        score -= min((cutoff - weight) * 5, 40)
    else:
        score -= min((weight - cutoff) * 2, 20)

    score += min((release.seeders or 0) / 2, 50)

    if release.size:
        ratio = release.size / expected_size(quality, media_kind)
        if ratio < 0.3 or ratio > 3:
            score -= 50
        elif ratio < 0.5 or ratio > 2:
            score -= 20

    if PREFERRED_SOURCE.search(release.title):
        score += 20

    return max(score, 0)


def score_releases(
    db: Session,
    releases: Iterable[Release],
    profile_id: Optional[int],
    oracle: QualityProfileOracle,
    expected_title: Optional[str] = None,
    blacklisted_titles: Iterable[str] = (),
    expected_year: Optional[int] = None,
    media_kind: str = MediaKind.MOVIE.value,
) -> List[ScoredRelease]:
    """
    Rank releases for a target, best first.

    Blacklisted titles, releases scoring 0 and releases under the profile's
    minimum custom format score are dropped.
    """
    blacklist = {normalize_release_title(t) for t in blacklisted_titles}
    min_cf_score = oracle.min_custom_format_score(profile_id) or 0
    cf_media_type = "series" if media_kind == MediaKind.TV.value else "movie"

    ranked = []
    for release in releases:
        if normalize_release_title(release.title) in blacklist:
            logger.debug(f"[SCORE] Rejected - blacklisted release: '{release.title}'")
            continue
        score = base_score(release, profile_id, oracle, expected_title, expected_year, media_kind)
        if score <= 0:
            continue
        cf_score = calculate_release_score(db, release.title, profile_id, release.size, cf_media_type) \
            if profile_id else 0
        if cf_score < min_cf_score:
            logger.debug(f"[SCORE] Rejected - custom format score {cf_score} below {min_cf_score}: '{release.title}'")
            continue
        ranked.append(ScoredRelease(release, score, cf_score))

    ranked.sort(key=lambda r: r.total_score, reverse=True)
    return ranked


def upgrade_flags(current_is_proper: bool, current_is_repack: bool, candidate_title: str) -> UpgradeFlags:
    return UpgradeFlags(
        current_is_proper=current_is_proper,
        current_is_repack=current_is_repack,
        new_is_proper=release_parser.is_proper(candidate_title),
        new_is_repack=release_parser.is_repack(candidate_title),
    )


class AutoSearchService:
    """
    Search-and-grab for library targets.

    Args:
        gateway: Indexer gateway (search queue + rate limiter inside)
        grab_service: Grab orchestrator
        library_factory: Builds the LibraryAdapter for a session
        oracle_factory: Builds the QualityProfileOracle for a session
        batch_delay: Pause between two targets of a batch search
    """

    def __init__(
        self,
        gateway: Optional[IndexerGateway] = None,
        grab_service: Optional[GrabService] = None,
        library_factory: Callable[[Session], LibraryAdapter] = SqlLibraryAdapter,
        oracle_factory: Callable[[Session], QualityProfileOracle] = DatabaseQualityProfileOracle,
        batch_delay: Optional[float] = None,
    ):
        self.gateway = gateway or get_indexer_gateway()
        self.grab_service = grab_service or get_grab_service()
        self.library_factory = library_factory
        self.oracle_factory = oracle_factory
        self.batch_delay = Config.BATCH_SEARCH_DELAY if batch_delay is None else batch_delay

    # ===========================================================================
    # Single targets
    # ===========================================================================

    def _skip_existing_file(self, oracle: QualityProfileOracle, profile_id: Optional[int],
                            current_quality: Optional[str], label: str, force: bool) -> bool:
        """True when a target with a file should not be searched."""
        if force:
            return False
        if not oracle.upgrade_allowed(profile_id):
            logger.info(f"Skipping upgrade search for {label} - upgrades not allowed")
            return True
        if oracle.meets_cutoff(profile_id, current_quality):
            logger.info(f"Skipping upgrade search for {label} - already at cutoff ({current_quality})")
            return True
        return False

    async def search_and_grab_movie(self, db: Session, movie_id: int,
                                    force: bool = False) -> Optional[Download]:
        """
        Search the best release for a movie and grab it.

        Args:
            db: Database session
            movie_id: Library movie id
            force: Search even when the profile forbids upgrades or the cutoff is met

        Returns:
            The created Download, or None when nothing was grabbed
        """
        library = self.library_factory(db)
        oracle = self.oracle_factory(db)
        movie = library.get_movie(movie_id)
        if not movie:
            logger.error(f"Movie not found: {movie_id}")
            return None

        active = Download.find_active_for_movie(db, movie.id)
        if active:
            logger.info(f"Movie {movie.title} already has an active download: {active.title} ({active.status})")
            return None

        label = f"{movie.title} ({movie.year})"
        if movie.has_file:
            if self._skip_existing_file(oracle, movie.quality_profile_id, movie.current_quality, label, force):
                return None
            logger.info(f"Searching for upgrade for movie: {label} (current: {movie.current_quality})")
        else:
            logger.info(f"Auto-searching for movie: {label}")

        releases = await self.gateway.search_movies(db, movie.title, movie.year)
        if not releases:
            logger.warning(f"No releases found for: {label}")
            return None

        ranked = score_releases(
            db, releases, movie.quality_profile_id, oracle, movie.title,
            BlacklistEntry.titles_for_movie(db, movie.id), movie.year, MediaKind.MOVIE.value,
        )
        if not ranked:
            logger.warning(f"No suitable releases found for: {label}")
            return None

        best = ranked[0]
        if movie.has_file:
            flags = upgrade_flags(movie.current_is_proper, movie.current_is_repack, best.title)
            if not oracle.should_upgrade(movie.quality_profile_id, movie.current_quality,
                                         best.release.quality, flags):
                logger.info(f"No quality upgrade available for {label} "
                            f"(current: {movie.current_quality}, best: {best.release.quality})")
                return None

        logger.info(f"Selected best release: {best.title} (score: {best.total_score:.0f}, "
                    f"protocol: {best.release.protocol})")
        return await self.grab_service.grab(db, best.release, GrabTarget.for_movie(movie))

    async def search_and_grab_episode(self, db: Session, series_id: int, season_number: int,
                                      episode_number: int, force: bool = False) -> Optional[Download]:
        library = self.library_factory(db)
        oracle = self.oracle_factory(db)
        episode = library.get_episode(series_id, season_number, episode_number)
        if not episode:
            logger.error(f"Episode not found: series {series_id} S{season_number:02d}E{episode_number:02d}")
            return None

        label = f"{episode.series_title} S{season_number:02d}E{episode_number:02d}"
        active = Download.find_active_for_episode(db, series_id, season_number, episode_number)
        if active:
            logger.info(f"{label} already has an active download: {active.title} ({active.status})")
            return None

        if episode.has_file:
            if self._skip_existing_file(oracle, episode.quality_profile_id, episode.current_quality, label, force):
                return None
            logger.info(f"Searching for upgrade for: {label} (current: {episode.current_quality})")
        else:
            logger.info(f"Auto-searching for: {label}")

        releases = await self.gateway.search_tv(db, episode.series_title, season_number, episode_number)
        releases = [r for r in releases if release_parser.parse_episode(r.title) ==
                    release_parser.EpisodeInfo(season_number, episode_number)]
        if not releases:
            logger.warning(f"No releases found for: {label}")
            return None

        ranked = score_releases(
            db, releases, episode.quality_profile_id, oracle, episode.series_title,
            BlacklistEntry.titles_for_episode(db, series_id, season_number, episode_number),
            None, MediaKind.TV.value,
        )
        if not ranked:
            logger.warning(f"No suitable releases found for: {label}")
            return None

        best = ranked[0]
        if episode.has_file:
            flags = upgrade_flags(episode.current_is_proper, episode.current_is_repack, best.title)
            if not oracle.should_upgrade(episode.quality_profile_id, episode.current_quality,
                                         best.release.quality, flags):
                logger.info(f"No quality upgrade available for {label} "
                            f"(current: {episode.current_quality}, best: {best.release.quality})")
                return None

        logger.info(f"Selected best release: {best.title} (score: {best.total_score:.0f})")
        return await self.grab_service.grab(db, best.release, GrabTarget.for_episode(episode))

    async def search_and_grab_season(self, db: Session, series_id: int,
                                     season_number: int) -> Optional[Download]:
        """
        Grab a season pack.

        A season qualifies when an episode lacks a file, or when the profile
        allows upgrades at all (per-episode cutoffs are not consulted).
        """
        library = self.library_factory(db)
        oracle = self.oracle_factory(db)
        season = library.get_season(series_id, season_number)
        if not season:
            logger.error(f"Season not found: series {series_id} S{season_number:02d}")
            return None

        label = f"{season.series_title} S{season_number:02d}"
        if Download.find_active_for_season(db, series_id, season_number):
            logger.info(f"{label} already has an active download")
            return None
        if not season.has_missing and not oracle.upgrade_allowed(season.quality_profile_id):
            logger.info(f"Skipping {label} - no missing episodes and upgrades not allowed")
            return None

        releases = await self.gateway.search_tv(db, season.series_title, season_number)
        releases = [r for r in releases if release_parser.parse_season_pack(r.title) == season_number]
        ranked = score_releases(
            db, releases, season.quality_profile_id, oracle, season.series_title,
            BlacklistEntry.titles_for_episode(db, series_id, season_number, None),
            None, MediaKind.TV.value,
        )
        if not ranked:
            logger.warning(f"No suitable season pack found for: {label}")
            return None

        best = ranked[0]
        logger.info(f"Selected season pack: {best.title} (score: {best.total_score:.0f})")
        return await self.grab_service.grab(db, best.release, GrabTarget.for_season(season))

    # ===========================================================================
    # Batches
    # ===========================================================================

    @staticmethod
    def _is_searchable_episode(episode: WantedEpisode) -> bool:
        if episode.season_number == 0:
            return False
        return episode.air_date is None or episode.air_date <= date.today()

    async def _run_batch(self, name: str, items: List, search) -> Dict[str, int]:
        stats = {"total": len(items), "searched": 0, "found": 0}
        if not items:
            logger.info(f"{name}: nothing to search")
            return stats
        logger.info(f"{name}: {len(items)} item(s) to search")
        for index, item in enumerate(items):
            try:
                if await search(item):
                    stats["found"] += 1
            except Exception as e:
                logger.error(f"{name}: search failed for {item}: {type(e).__name__}: {e}")
            stats["searched"] += 1
            if index + 1 < len(items) and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
        logger.info(f"{name} complete: {stats['searched']} searched, {stats['found']} found")
        return stats

    def _movie_wanted(self, library: LibraryAdapter, movie: WantedMovie) -> bool:
        return not (movie.tmdb_id and library.is_excluded(movie.tmdb_id, "movie"))

    async def search_all_missing(self, db: Session) -> Dict[str, Dict[str, int]]:
        """Every monitored movie and aired episode without a file."""
        library = self.library_factory(db)
        movies = [m for m in library.find_missing_movies() if self._movie_wanted(library, m)]
        episodes = [e for e in library.find_missing_episodes() if self._is_searchable_episode(e)]

        movie_stats = await self._run_batch(
            "Missing movie search", movies,
            lambda m: self.search_and_grab_movie(db, m.id),
        )
        episode_stats = await self._run_batch(
            "Missing episode search", episodes,
            lambda e: self.search_and_grab_episode(db, e.series_id, e.season_number, e.episode_number),
        )
        return {"movies": movie_stats, "episodes": episode_stats}

    async def search_all_cutoff_unmet(self, db: Session) -> Dict[str, Dict[str, int]]:
        """Targets with a file below their profile cutoff, where upgrades are allowed."""
        library = self.library_factory(db)
        oracle = self.oracle_factory(db)

        def below_cutoff(profile_id, quality) -> bool:
            return oracle.upgrade_allowed(profile_id) and not oracle.meets_cutoff(profile_id, quality)

        movies = [
            m for m in library.find_upgradable_movies()
            if below_cutoff(m.quality_profile_id, m.current_quality) and self._movie_wanted(library, m)
        ]
        episodes = [
            e for e in library.find_upgradable_episodes()
            if self._is_searchable_episode(e) and below_cutoff(e.quality_profile_id, e.current_quality)
        ]

        movie_stats = await self._run_batch(
            "Cutoff unmet movie search", movies,
            lambda m: self.search_and_grab_movie(db, m.id),
        )
        episode_stats = await self._run_batch(
            "Cutoff unmet episode search", episodes,
            lambda e: self.search_and_grab_episode(db, e.series_id, e.season_number, e.episode_number),
        )
        return {"movies": movie_stats, "episodes": episode_stats}


_auto_search: Optional[AutoSearchService] = None


def get_auto_search_service() -> AutoSearchService:
    global _auto_search
    if _auto_search is None:
        _auto_search = AutoSearchService()
    return _auto_search
