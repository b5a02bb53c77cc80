"""
RSS Sync Service

Polls the RSS feed of every RSS-enabled indexer and grabs new releases that
match a monitored movie, episode or season.

Per cycle:
    1. fetch each feed (rate limited, no search queue)
    2. cache every item keyed by (indexer, guid); only new items go further
    3. match: movie -> episode (SxxExx) -> season pack (Sxx, no episode)
    4. grab the first candidate passing every check
    5. purge cache entries older than the retention window

Candidate checks, in order: title, quality allowed by the profile, upgrade
over the current file, blacklist, custom format minimum, active download,
same source URL.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from acquirarr.adapters.library_adapter import LibraryAdapter, WantedEpisode, WantedMovie, WantedSeason
from acquirarr.adapters.quality_profile_oracle import DatabaseQualityProfileOracle, QualityProfileOracle
from acquirarr.adapters.sql_library_adapter import SqlLibraryAdapter
from acquirarr.config import Config
from acquirarr.models.blacklist import BlacklistEntry, normalize_release_title
from acquirarr.models.indexer import Indexer
from acquirarr.models.rss_cache import RssCacheEntry
from acquirarr.services import release_parser
from acquirarr.services.auto_search import upgrade_flags
from acquirarr.services.custom_formats import calculate_release_score
from acquirarr.services.grab_service import GrabService, GrabTarget, find_conflict, get_grab_service
from acquirarr.services.indexer_gateway import IndexerGateway, get_indexer_gateway
from acquirarr.services.releases import Release
from acquirarr.services.title_matcher import RSS_MATCH, title_matches

logger = logging.getLogger(__name__)

Candidate = Union[WantedMovie, WantedEpisode, WantedSeason]


class RssSyncService:
    """
    RSS ingestion loop.

    Args:
        gateway: Indexer gateway used for feed fetches
        grab_service: Grab orchestrator
        library_factory: Builds the LibraryAdapter for a session
        oracle_factory: Builds the QualityProfileOracle for a session
        retention_days: Age after which cache entries are purged
    """

    def __init__(
        self,
        gateway: Optional[IndexerGateway] = None,
        grab_service: Optional[GrabService] = None,
        library_factory: Callable[[Session], LibraryAdapter] = SqlLibraryAdapter,
        oracle_factory: Callable[[Session], QualityProfileOracle] = DatabaseQualityProfileOracle,
        retention_days: Optional[int] = None,
    ):
        self.gateway = gateway or get_indexer_gateway()
        self.grab_service = grab_service or get_grab_service()
        self.library_factory = library_factory
        self.oracle_factory = oracle_factory
        self.retention_days = retention_days or Config.RSS_CACHE_RETENTION_DAYS
        self._sync_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._sync_lock.locked()

    async def sync_all(self, db: Session) -> Dict[str, Any]:
        """
        Run one RSS cycle over every RSS-enabled indexer.

        A call made while a cycle is already running returns immediately
        with skipped=True.

        Returns:
            Dict with indexers_checked, releases_found and grabbed counts
        """
        if self._sync_lock.locked():
            logger.info("[RSS] Sync already in progress, skipping")
            return {"indexers_checked": 0, "releases_found": 0, "grabbed": 0, "skipped": True}

        async with self._sync_lock:
            return await self._sync(db)

    async def _sync(self, db: Session) -> Dict[str, Any]:
        logger.info("[RSS] Starting RSS sync...")
        indexers = Indexer.get_rss_enabled(db)
        if not indexers:
            logger.info("[RSS] No indexers enabled for RSS")
            return {"indexers_checked": 0, "releases_found": 0, "grabbed": 0}

        library = self.library_factory(db)
        oracle = self.oracle_factory(db)
        total_releases = 0
        total_grabbed = 0

        for indexer in indexers:
            releases = await self.gateway.fetch_rss(indexer)
            if not releases:
                logger.info(f"[RSS] No releases from {indexer.name}")
                continue
            total_releases += len(releases)

            for release in releases:
                try:
                    if not self.cache_release(db, indexer.id, release):
                        continue
                    grabbed = await self.process_release(db, release, library, oracle)
                    RssCacheEntry.mark(db, indexer.id, release.guid, grabbed=grabbed)
                    if grabbed:
                        total_grabbed += 1
                except Exception as e:
                    db.rollback()
                    logger.error(f"[RSS] Error processing '{release.title}' from {indexer.name}: "
                                 f"{type(e).__name__}: {e}")

        purged = RssCacheEntry.purge_older_than(db, self.retention_days)
        if purged:
            logger.info(f"[RSS] Purged {purged} cached releases older than {self.retention_days} days")

        logger.info(
            f"[RSS] Sync complete: {len(indexers)} indexers, {total_releases} releases, "
            f"{total_grabbed} grabbed"
        )
        return {
            "indexers_checked": len(indexers),
            "releases_found": total_releases,
            "grabbed": total_grabbed,
        }

    @staticmethod
    def cache_release(db: Session, indexer_id: int, release: Release) -> bool:
        """Insert-or-ignore into the RSS cache; True when the item is new."""
        return RssCacheEntry.insert_if_new(
            db,
            indexer_id=indexer_id,
            guid=release.guid,
            title=release.title,
            download_url=release.download_url,
            size=release.size,
            publish_date=release.publish_date,
            categories=list(release.categories),
            protocol=release.protocol,
        )

    # ===========================================================================
    # Matching
    # ===========================================================================

    async def process_release(self, db: Session, release: Release, library: LibraryAdapter,
                              oracle: QualityProfileOracle) -> bool:
        """Try movie, then episode, then season pack. True when grabbed."""
        if await self.match_movie(db, release, library, oracle):
            return True

        episode = release_parser.parse_episode(release.title)
        if episode:
            return await self.match_episode(db, release, episode, library, oracle)

        season = release_parser.parse_season_pack(release.title)
        if season is not None:
            return await self.match_season_pack(db, release, season, library, oracle)
        return False

    def _passes_checks(self, db: Session, release: Release, candidate: Candidate, target: GrabTarget,
                       oracle: QualityProfileOracle, blacklisted: List[str]) -> bool:
        profile_id = candidate.quality_profile_id
        quality = release_parser.detect_quality(release.title)
        if not oracle.meets_profile(profile_id, quality):
            logger.debug(f"[RSS] Quality {quality} not allowed for {target.label}")
            return False

        if getattr(candidate, "has_file", False) and candidate.current_quality:
            flags = upgrade_flags(candidate.current_is_proper, candidate.current_is_repack, release.title)
            if not oracle.should_upgrade(profile_id, candidate.current_quality, quality, flags):
                logger.debug(f"[RSS] Not an upgrade for {target.label} "
                             f"(current: {candidate.current_quality}, new: {quality})")
                return False
            logger.info(f"[RSS] Upgrade available for {target.label}: {candidate.current_quality} -> {quality}")

        if normalize_release_title(release.title) in blacklisted:
            logger.debug(f"[RSS] Release blacklisted for {target.label}: {release.title}")
            return False

        cf_media_type = "movie" if target.is_movie else "series"
        cf_score = calculate_release_score(db, release.title, profile_id, release.size, cf_media_type)
        min_score = oracle.min_custom_format_score(profile_id) or 0
        if cf_score < min_score:
            logger.debug(f"[RSS] Custom format score {cf_score} below minimum {min_score} for {target.label}")
            return False

        conflict = find_conflict(db, target, release.download_url)
        if conflict:
            existing, reason = conflict
            if reason == "active":
                logger.debug(f"[RSS] {target.label} already has an active download: "
                             f"{existing.title} ({existing.status})")
            else:
                logger.debug(f"[RSS] Release already downloading: {release.title}")
            return False
        return True

    async def _grab(self, db: Session, release: Release, target: GrabTarget, upgrading: bool) -> bool:
        action = "Upgrading" if upgrading else "Grabbing"
        logger.info(f"[RSS] {action} release for {target.label}: {release.title}")
        download = await self.grab_service.grab(db, release, target)
        return download is not None

    async def match_movie(self, db: Session, release: Release, library: LibraryAdapter,
                          oracle: QualityProfileOracle) -> bool:
        for movie in library.find_wanted_movies():
            if not title_matches(release.title, movie.title, movie.year, RSS_MATCH):
                continue
            if movie.tmdb_id and library.is_excluded(movie.tmdb_id, "movie"):
                continue
            logger.info(f"[RSS] Potential match for movie '{movie.title}': {release.title}")
            target = GrabTarget.for_movie(movie)
            blacklisted = BlacklistEntry.titles_for_movie(db, movie.id)
            if not self._passes_checks(db, release, movie, target, oracle, blacklisted):
                continue
            if await self._grab(db, release, target, movie.has_file):
                return True
        return False

    async def match_episode(self, db: Session, release: Release, episode: release_parser.EpisodeInfo,
                            library: LibraryAdapter, oracle: QualityProfileOracle) -> bool:
        for wanted in library.find_wanted_episodes(episode.season, episode.episode):
            if not title_matches(release.title, wanted.series_title, None, RSS_MATCH):
                continue
            target = GrabTarget.for_episode(wanted)
            logger.info(f"[RSS] Potential match for {target.label}: {release.title}")
            blacklisted = BlacklistEntry.titles_for_episode(
                db, wanted.series_id, wanted.season_number, wanted.episode_number
            )
            if not self._passes_checks(db, release, wanted, target, oracle, blacklisted):
                continue
            if await self._grab(db, release, target, wanted.has_file):
                return True
        return False

    async def match_season_pack(self, db: Session, release: Release, season_number: int,
                                library: LibraryAdapter, oracle: QualityProfileOracle) -> bool:
        """Season packs go to seasons with a missing episode, or whose profile allows upgrades."""
        for season in library.find_wanted_seasons(season_number):
            if not season.has_missing and not oracle.upgrade_allowed(season.quality_profile_id):
                continue
            if not title_matches(release.title, season.series_title, None, RSS_MATCH):
                continue
            target = GrabTarget.for_season(season)
            logger.info(f"[RSS] Potential season pack match for {target.label}: {release.title}")
            blacklisted = BlacklistEntry.titles_for_episode(db, season.series_id, season_number, None)
            if not self._passes_checks(db, release, season, target, oracle, blacklisted):
                continue
            if await self._grab(db, release, target, not season.has_missing):
                return True
        return False

    # ===========================================================================
    # Cache views
    # ===========================================================================

    @staticmethod
    def get_recent_releases(db: Session, limit: int = 100) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in RssCacheEntry.get_recent(db, limit)]

    @staticmethod
    def get_stats(db: Session) -> Dict[str, int]:
        return RssCacheEntry.get_stats(db)

    def get_status(self) -> Dict[str, Any]:
        return {"running": self.is_running, "retention_days": self.retention_days}


_rss_sync: Optional[RssSyncService] = None


def get_rss_sync_service() -> RssSyncService:
    global _rss_sync
    if _rss_sync is None:
        _rss_sync = RssSyncService()
    return _rss_sync
