"""
Grab Orchestrator

Turns a chosen release into a Download row and a job on a download client.
Used by interactive grabs, automatic searches, RSS sync and redownloads.

Guarantees:
    - at most one active download per movie / episode (season packs cover
      every episode of their season)
    - no second download from the same source URL unless the first failed
    - the check and the row creation form one critical section
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from acquirarr.adapters.library_adapter import WantedEpisode, WantedMovie, WantedSeason
from acquirarr.adapters.notifier import NotificationEvent, Notifier, build_notifier
from acquirarr.config import Config
from acquirarr.database import SessionLocal
from acquirarr.models.activity_log import ActivityEvent, ActivityLog
from acquirarr.models.download import Download, DownloadStatus, MediaKind
from acquirarr.models.settings import Settings
from acquirarr.services.background import TaskSupervisor, get_task_supervisor
from acquirarr.services.download_clients import DownloadClientService
from acquirarr.services.exceptions import DownloadClientError, DuplicateDownloadError
from acquirarr.services.releases import PROTOCOL_TORRENT, Release
from acquirarr.services.structured_logging import CorrelationContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrabTarget:
    """What a grab is for: a movie, one episode, or a whole season."""
    media_kind: str
    title: str
    movie_id: Optional[int] = None
    series_id: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    year: Optional[int] = None
    folder_path: Optional[str] = None

    @classmethod
    def for_movie(cls, movie: WantedMovie) -> 'GrabTarget':
        return cls(MediaKind.MOVIE.value, movie.title, movie_id=movie.id,
                   year=movie.year, folder_path=movie.folder_path)

    @classmethod
    def for_episode(cls, episode: WantedEpisode) -> 'GrabTarget':
        return cls(MediaKind.TV.value, episode.series_title, series_id=episode.series_id,
                   season_number=episode.season_number, episode_number=episode.episode_number,
                   folder_path=episode.folder_path)

    @classmethod
    def for_season(cls, season: WantedSeason) -> 'GrabTarget':
        return cls(MediaKind.TV.value, season.series_title, series_id=season.series_id,
                   season_number=season.season_number, folder_path=season.folder_path)

    @property
    def is_movie(self) -> bool:
        return self.media_kind == MediaKind.MOVIE.value

    @property
    def label(self) -> str:
        if self.is_movie:
            return f"{self.title} ({self.year})" if self.year else self.title
        if self.episode_number is None:
            return f"{self.title} S{self.season_number:02d}"
        return f"{self.title} S{self.season_number:02d}E{self.episode_number:02d}"

    @property
    def entity(self) -> Tuple[str, int]:
        """(entity type, id) used for activity log entries."""
        if self.is_movie:
            return "movie", self.movie_id
        return "series", self.series_id


def _safe_folder_name(name: str) -> str:
    return re.sub(r'[<>:"/\\|?*]', "", name).strip() or "Unknown"


def find_conflict(db: Session, target: GrabTarget,
                  download_url: Optional[str]) -> Optional[Tuple[Download, str]]:
    """Existing download that blocks a new grab, with the reason."""
    if target.is_movie:
        active = Download.find_active_for_movie(db, target.movie_id)
    elif target.episode_number is None:
        active = Download.find_active_for_season(db, target.series_id, target.season_number)
    else:
        active = Download.find_active_for_episode(
            db, target.series_id, target.season_number, target.episode_number
        )
    if active:
        return active, "active"

    same_url = Download.find_by_download_url(db, download_url)
    if same_url:
        return same_url, "same_url"
    return None


class GrabService:
    """
    Creates downloads and submits them.

    Args:
        transport: httpx transport override for the download clients (tests)
        notifier: Notification sink; built from Settings when not given
        supervisor: Owner of the background handle-discovery tasks
        session_factory: Sessions for background work outliving the caller's session
        hash_poll_attempts / hash_poll_interval: torrent handle discovery window
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        notifier: Optional[Notifier] = None,
        supervisor: Optional[TaskSupervisor] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        hash_poll_attempts: int = 5,
        hash_poll_interval: float = 2.0,
    ):
        self.transport = transport
        self.notifier = notifier
        self.supervisor = supervisor or get_task_supervisor()
        self.session_factory = session_factory
        self.hash_poll_attempts = hash_poll_attempts
        self.hash_poll_interval = hash_poll_interval
        self._lock = asyncio.Lock()

    def _notifier(self, db: Session) -> Notifier:
        if self.notifier is None:
            settings = Settings.get_settings(db)
            return build_notifier(settings.discord_webhook_url, self.supervisor)
        return self.notifier

    @staticmethod
    def save_path_for(db: Session, target: GrabTarget) -> str:
        """Library folder of the target, else a folder under the configured root."""
        if target.folder_path:
            return target.folder_path
        settings = Settings.get_settings(db)
        if target.is_movie:
            return os.path.join(settings.movies_root or Config.MOVIES_ROOT, _safe_folder_name(target.title))
        return os.path.join(settings.tv_root or Config.TV_ROOT, _safe_folder_name(target.title))

    async def _reserve(self, db: Session, release: Release, target: GrabTarget,
                       save_path: str, interactive: bool) -> Optional[Download]:
        """Conflict check plus row creation, under the lock."""
        async with self._lock:
            conflict = find_conflict(db, target, release.download_url)
            if conflict:
                existing, reason = conflict
                message = (
                    f"{target.label} already has an active download (#{existing.id})"
                    if reason == "active"
                    else f"Release already grabbed as download #{existing.id}"
                )
                if interactive:
                    raise DuplicateDownloadError(message, existing_download_id=existing.id, reason=reason)
                logger.info(f"Skipping grab of '{release.title}': {message}")
                return None

            download = Download(
                media_kind=target.media_kind,
                movie_id=target.movie_id,
                series_id=target.series_id,
                season_number=target.season_number,
                episode_number=target.episode_number,
                title=release.title,
                download_url=release.download_url,
                indexer=release.indexer,
                quality=release.quality,
                protocol=release.protocol,
                size=release.size,
                seeders=release.seeders,
                save_path=save_path,
                status=DownloadStatus.QUEUED.value,
                progress=0.0,
            )
            db.add(download)
            db.commit()
            db.refresh(download)
            return download

    async def grab(self, db: Session, release: Release, target: GrabTarget,
                   interactive: bool = False) -> Optional[Download]:
        """
        Grab a release for a target.

        Args:
            db: Database session
            release: Release to download
            target: Movie, episode or season it is for
            interactive: Operator initiated; conflicts and client errors raise

        Returns:
            The downloading Download, or None when an automatic grab was
            skipped or the client refused it

        Raises:
            DuplicateDownloadError: interactive grab for a covered target
            DownloadClientError: interactive grab the client refused
        """
        save_path = self.save_path_for(db, target)
        download = await self._reserve(db, release, target, save_path, interactive)
        if download is None:
            return None

        with CorrelationContext(download_id=download.id):
            service = DownloadClientService(db, transport=self.transport)
            result = await service.add_download(
                release.download_url, target.media_kind, save_path, protocol=release.protocol
            )

            entity_type, entity_id = target.entity
            if not result.success:
                logger.error(f"Download client refused '{release.title}': {result.message}")
                download.set_status(DownloadStatus.FAILED, result.message)
                db.commit()
                ActivityLog.create_log(
                    db, entity_type, entity_id, ActivityEvent.FAILED,
                    f"Failed to send {release.title} to download client: {result.message}",
                    {"download_id": download.id, "indexer": release.indexer},
                )
                if interactive:
                    raise DownloadClientError(result.message)
                return None

            download.download_client_id = result.client_id
            download.client_handle = result.download_id
            download.set_status(DownloadStatus.DOWNLOADING)
            db.commit()
            db.refresh(download)
            logger.info(f"Grabbed '{release.title}' for {target.label} (download {download.id})")

            ActivityLog.create_log(
                db, entity_type, entity_id, ActivityEvent.GRABBED,
                f"Grabbed {release.title} from {release.indexer}",
                {
                    "download_id": download.id,
                    "indexer": release.indexer,
                    "quality": release.quality,
                    "size": release.size,
                    "protocol": release.protocol,
                },
            )
            self._notifier(db).notify(
                NotificationEvent.GRAB,
                "Release Grabbed",
                f"{release.title} ({release.quality})",
                media_type=target.media_kind,
                media_title=target.label,
            )

            if not download.client_handle and release.protocol == PROTOCOL_TORRENT:
                self.supervisor.spawn(
                    self.discover_handle(download.id, result.client_id, release.title,
                                         result.extra.get("category")),
                    name=f"discover-handle:{download.id}",
                )
        return download

    async def discover_handle(self, download_id: int, client_id: int, title: str,
                              category: Optional[str] = None) -> Optional[str]:
        """
        Find the torrent hash of a grab whose client did not return one.

        Gives up after the poll window; the sync engine then matches by title.
        """
        db = self.session_factory()
        try:
            service = DownloadClientService(db, transport=self.transport)
            handle = await service.find_handle(
                client_id, title, category, self.hash_poll_attempts, self.hash_poll_interval
            )
            download = Download.get_by_id(db, download_id)
            if handle and download and not download.client_handle:
                download.client_handle = handle
                db.commit()
                logger.info(f"Download {download_id}: client handle {handle}")
            elif not handle:
                logger.warning(f"Download {download_id}: no client handle found for '{title}'")
            return handle
        finally:
            db.close()


_grab_service: Optional[GrabService] = None


def get_grab_service() -> GrabService:
    global _grab_service
    if _grab_service is None:
        _grab_service = GrabService()
    return _grab_service
