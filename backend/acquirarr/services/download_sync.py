"""
Download Sync Service

Follows every active download on its download client and moves it through
the lifecycle:

    queued -> downloading -> completed -> importing -> imported
    any of the above -> failed

Each cycle lists the items of every enabled client once, then syncs every
download against that listing. One download failing to sync is logged and
does not stop the others.

Failures blacklist the release for the target and, when the
redownload_failed setting is on, start a new search for the same target in
the background.
"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from acquirarr.adapters.importer import FileSystemImporter, MediaImporter
from acquirarr.adapters.library_adapter import LibraryAdapter
from acquirarr.adapters.notifier import NotificationEvent, Notifier, build_notifier
from acquirarr.adapters.sql_library_adapter import SqlLibraryAdapter
from acquirarr.database import SessionLocal
from acquirarr.models.activity_log import ActivityEvent, ActivityLog
from acquirarr.models.blacklist import BlacklistEntry
from acquirarr.models.download import Download, DownloadStatus, MediaKind
from acquirarr.models.download_client import DownloadClient, DownloadClientKind
from acquirarr.models.settings import Settings
from acquirarr.services.auto_search import AutoSearchService, get_auto_search_service
from acquirarr.services.background import TaskSupervisor, get_task_supervisor
from acquirarr.services.download_clients import (
    ITEM_COMPLETED,
    ITEM_DOWNLOADING,
    ITEM_FAILED,
    ClientItem,
    DownloadClientService,
    match_item_by_title,
)
from acquirarr.services.structured_logging import CorrelationContext

logger = logging.getLogger(__name__)

# client id -> {handle (lowercase) -> item}; None when the listing failed
ClientListing = Dict[int, Optional[Dict[str, ClientItem]]]


def _entity(download: Download):
    if download.media_kind == MediaKind.MOVIE.value:
        return "movie", download.movie_id
    return "series", download.series_id


def _media_title(download: Download) -> str:
    if download.media_kind == MediaKind.MOVIE.value:
        return download.title
    if download.episode_number is None:
        return f"{download.title} (S{download.season_number:02d})"
    return f"{download.title} (S{download.season_number:02d}E{download.episode_number:02d})"


class DownloadSyncService:
    """
    Download lifecycle engine.

    Args:
        transport: httpx transport override for the download clients (tests)
        importer: Moves completed content into the library
        library_factory: Builds the LibraryAdapter used to record imported files
        notifier: Notification sink; built from Settings when not given
        supervisor: Owner of the background re-search tasks
        session_factory: Sessions for the background re-search
        search_service_factory: Returns the AutoSearchService used for re-searches
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        importer: Optional[MediaImporter] = None,
        library_factory: Callable[[Session], LibraryAdapter] = SqlLibraryAdapter,
        notifier: Optional[Notifier] = None,
        supervisor: Optional[TaskSupervisor] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        search_service_factory: Optional[Callable[[], AutoSearchService]] = None,
    ):
        self.transport = transport
        self.importer = importer or FileSystemImporter()
        self.library_factory = library_factory
        self.notifier = notifier
        self.supervisor = supervisor or get_task_supervisor()
        self.session_factory = session_factory
        self.search_service_factory = search_service_factory

    def _notifier(self, db: Session) -> Notifier:
        if self.notifier is None:
            settings = Settings.get_settings(db)
            return build_notifier(settings.discord_webhook_url, self.supervisor)
        return self.notifier

    def _search_service(self) -> AutoSearchService:
        if self.search_service_factory is not None:
            return self.search_service_factory()
        return get_auto_search_service()

    # ===========================================================================
    # Sync
    # ===========================================================================

    async def gather_client_items(self, db: Session, service: DownloadClientService) -> ClientListing:
        """List every enabled client once; a failing client maps to None."""
        listing: ClientListing = {}
        for client in DownloadClient.get_enabled(db):
            try:
                items = await service.driver_for(client).list_items()
                listing[client.id] = {item.handle.lower(): item for item in items if item.handle}
            except Exception as e:
                logger.error(f"[DownloadSync] Failed to list items of {client.name}: {type(e).__name__}: {e}")
                listing[client.id] = None
        return listing

    async def sync_all(self, db: Session) -> Dict[str, int]:
        """
        Sync every download still followed on a client.

        Returns:
            Dict with synced and error counts
        """
        downloads = Download.get_syncable(db)
        if not downloads:
            return {"synced": 0, "errors": 0}

        service = DownloadClientService(db, transport=self.transport)
        listing = await self.gather_client_items(db, service)

        synced = 0
        errors = 0
        for download in downloads:
            download_id, title = download.id, download.title
            try:
                with CorrelationContext(download_id=download_id):
                    await self.sync_download(db, download, listing, service)
                synced += 1
            except Exception as e:
                errors += 1
                db.rollback()
                logger.error(f"[DownloadSync] Error syncing download {download_id} ({title}): "
                             f"{type(e).__name__}: {e}")
        return {"synced": synced, "errors": errors}

    async def sync_download(self, db: Session, download: Download, listing: ClientListing,
                            service: DownloadClientService) -> None:
        """Apply the client's view of one download."""
        if download.status == DownloadStatus.IMPORTING.value:
            return
        if download.download_client_id not in listing:
            logger.debug(f"[DownloadSync] Download {download.id}: client {download.download_client_id} not enabled")
            return
        items = listing[download.download_client_id]
        if items is None:
            return

        client = DownloadClient.get_by_id(db, download.download_client_id)
        if not download.client_handle:
            item = match_item_by_title(download.title, items.values())
            if not item:
                return
            download.client_handle = item.handle
            db.commit()
            logger.info(f"[DownloadSync] Download {download.id}: matched client item {item.handle} by title")
        else:
            item = items.get(download.client_handle.lower())

        if item is None:
            await self._handle_missing_item(db, download, client)
            return

        if download.status == DownloadStatus.COMPLETED.value:
            if item.status == ITEM_COMPLETED and Settings.get_settings(db).auto_import_enabled:
                await self.handle_completed(db, download, item, service)
            return

        if item.status == ITEM_FAILED:
            reason = item.error or f"Download client reported state '{item.state}'"
            if client and client.remove_failed:
                await self._remove_from_client(service, download, delete_files=True)
            await self.handle_failed(db, download, reason)
            return

        if item.status == ITEM_COMPLETED:
            download.progress = 100.0
            if Settings.get_settings(db).auto_import_enabled:
                await self.handle_completed(db, download, item, service)
            else:
                download.set_status(DownloadStatus.COMPLETED)
                db.commit()
                logger.info(f"[DownloadSync] Download {download.id} completed, waiting for manual import")
            return

        if download.status == DownloadStatus.QUEUED.value and (item.progress > 0 or item.status == ITEM_DOWNLOADING):
            download.set_status(DownloadStatus.DOWNLOADING)
        if item.progress != download.progress:
            download.progress = round(item.progress, 1)
        db.commit()

    async def _handle_missing_item(self, db: Session, download: Download,
                                   client: Optional[DownloadClient]) -> None:
        """Handle known to us but absent from the client listing."""
        download_id, handle = download.id, download.client_handle
        db.expire(download)
        if Download.get_by_id(db, download_id) is None:
            # cancelled while the listing was in flight
            logger.info(f"[DownloadSync] Download {download_id} ({handle}) already cancelled, skipping")
            return
        if client and client.kind == DownloadClientKind.SABNZBD.value:
            if download.status == DownloadStatus.DOWNLOADING.value:
                # left the queue and the history window
                download.progress = 100.0
                download.set_status(DownloadStatus.COMPLETED)
                db.commit()
                logger.info(f"[DownloadSync] NZB {download.client_handle} no longer listed, marking completed")
            return
        if download.status == DownloadStatus.COMPLETED.value:
            return
        logger.info(f"[DownloadSync] Torrent {download.client_handle} removed from client, marking download as failed")
        await self.handle_failed(db, download, "Torrent removed from client")

    async def _remove_from_client(self, service: DownloadClientService, download: Download,
                                  delete_files: bool) -> None:
        try:
            await service.remove(download.download_client_id, download.client_handle, delete_files)
        except Exception as e:
            logger.error(f"[DownloadSync] Failed to remove {download.client_handle} from client: {e}")

    # ===========================================================================
    # Completion
    # ===========================================================================

    async def handle_completed(self, db: Session, download: Download, item: ClientItem,
                               service: Optional[DownloadClientService] = None) -> bool:
        """
        Import a finished download into the library.

        Returns:
            True when the import succeeded
        """
        service = service or DownloadClientService(db, transport=self.transport)
        entity_type, entity_id = _entity(download)
        notifier = self._notifier(db)

        download.set_status(DownloadStatus.IMPORTING)
        download.progress = 100.0
        db.commit()
        ActivityLog.create_log(
            db, entity_type, entity_id, ActivityEvent.DOWNLOADED,
            f"Download completed: {download.title}", {"download_id": download.id},
        )
        notifier.notify(
            NotificationEvent.DOWNLOAD_COMPLETE, "Download Complete", download.title,
            media_type=download.media_kind, media_title=_media_title(download),
        )

        try:
            result = await self.importer.import_download(download, item.content_path, download.save_path)
            library = self.library_factory(db)
            for imported in result.files:
                if download.media_kind == MediaKind.MOVIE.value:
                    library.mark_movie_file(download.movie_id, imported.destination_path, imported.quality)
                elif imported.season_number is not None and imported.episode_number is not None:
                    library.mark_episode_file(download.series_id, imported.season_number,
                                              imported.episode_number, imported.destination_path,
                                              imported.quality)
        except Exception as e:
            db.rollback()
            logger.error(f"[Import] Failed to import '{download.title}': {type(e).__name__}: {e}")
            download.set_status(DownloadStatus.FAILED, f"Import error: {e}")
            db.commit()
            client = DownloadClient.get_by_id(db, download.download_client_id)
            if client and client.remove_failed and download.client_handle:
                await self._remove_from_client(service, download, delete_files=True)
            await self.handle_failed(db, download, "Import failed")
            return False

        download.set_status(DownloadStatus.IMPORTED)
        db.commit()
        logger.info(f"[Import] Imported '{download.title}' ({len(result.files)} file(s))")
        ActivityLog.create_log(
            db, entity_type, entity_id, ActivityEvent.IMPORTED,
            f"Imported {download.title}",
            {
                "download_id": download.id,
                "files": [f.destination_path for f in result.files],
                "quality": result.files[0].quality if result.files else download.quality,
                "release_group": result.files[0].release_group if result.files else None,
            },
        )
        notifier.notify(
            NotificationEvent.IMPORT_COMPLETE, "Import Complete", download.title,
            media_type=download.media_kind, media_title=_media_title(download),
        )

        client = DownloadClient.get_by_id(db, download.download_client_id)
        if client and client.remove_completed and download.client_handle:
            await self._remove_from_client(service, download, delete_files=False)
        return True

    # ===========================================================================
    # Failure
    # ===========================================================================

    async def handle_failed(self, db: Session, download: Download, reason: str) -> None:
        """
        Mark a download failed, blacklist its release and maybe search again.

        The blacklist entry keeps the same release title from being grabbed
        again for this target by RSS or by the re-search.
        """
        entity_type, entity_id = _entity(download)
        logger.warning(f"[DownloadSync] Download {download.id} failed: {reason}")

        BlacklistEntry.add(
            db,
            release_title=download.title,
            movie_id=download.movie_id,
            series_id=download.series_id,
            season_number=download.season_number,
            episode_number=download.episode_number,
            indexer=download.indexer,
            reason=reason,
        )
        if download.status != DownloadStatus.FAILED.value or not download.error_message:
            download.set_status(DownloadStatus.FAILED, reason)
        db.commit()

        ActivityLog.create_log(
            db, entity_type, entity_id, ActivityEvent.FAILED,
            f"Download failed: {download.title} ({reason})",
            {"download_id": download.id, "reason": reason, "blacklisted": True},
        )
        self._notifier(db).notify(
            NotificationEvent.DOWNLOAD_FAILED, "Download Failed", f"{download.title}: {reason}",
            media_type=download.media_kind, media_title=_media_title(download),
        )

        if not Settings.get_settings(db).redownload_failed:
            logger.info(f"[Redownload] Disabled - not searching for alternative for '{download.title}'")
            return
        self.supervisor.spawn(
            self.redownload(download.id, download.media_kind, download.movie_id, download.series_id,
                            download.season_number, download.episode_number, download.title),
            name=f"redownload:{download.id}",
        )

    async def redownload(self, download_id: int, media_kind: str, movie_id: Optional[int],
                         series_id: Optional[int], season_number: Optional[int],
                         episode_number: Optional[int], failed_title: str) -> Optional[Download]:
        """Search an alternative release for the target of a failed download."""
        logger.info(f"[Redownload] Searching for alternative release for '{failed_title}'")
        search = self._search_service()
        db = self.session_factory()
        try:
            if media_kind == MediaKind.MOVIE.value:
                result = await search.search_and_grab_movie(db, movie_id)
                entity_type, entity_id = "movie", movie_id
            elif episode_number is None:
                result = await search.search_and_grab_season(db, series_id, season_number)
                entity_type, entity_id = "series", series_id
            else:
                result = await search.search_and_grab_episode(db, series_id, season_number, episode_number)
                entity_type, entity_id = "series", series_id

            if not result:
                logger.warning(f"[Redownload] No alternative found for '{failed_title}'")
                return None

            logger.info(f"[Redownload] Found alternative: '{result.title}'")
            ActivityLog.create_log(
                db, entity_type, entity_id, ActivityEvent.GRABBED,
                f"Redownload: {result.title}",
                {"download_id": result.id, "replaces": download_id, "failed_release": failed_title},
            )
            return result
        finally:
            db.close()

    # ===========================================================================
    # Cancel
    # ===========================================================================

    async def cancel_download(self, db: Session, download_id: int, delete_files: bool = False) -> bool:
        """
        Remove a download from its client and delete the row.

        Returns:
            False when the download does not exist
        """
        download = Download.get_by_id(db, download_id)
        if not download:
            return False

        if download.client_handle and download.download_client_id:
            service = DownloadClientService(db, transport=self.transport)
            await self._remove_from_client(service, download, delete_files)

        logger.info(f"Cancelled download {download.id} ({download.title}), delete_files={delete_files}")
        db.delete(download)
        db.commit()
        return True

    def get_status(self) -> Dict[str, Any]:
        return {"background_tasks": self.supervisor.pending, "failures": self.supervisor.recent_failures()}


_download_sync: Optional[DownloadSyncService] = None


def get_download_sync_service() -> DownloadSyncService:
    global _download_sync
    if _download_sync is None:
        _download_sync = DownloadSyncService()
    return _download_sync
