"""
Download Client Service for Acquirarr

Submits grabs to the configured download clients and reports what they are
doing. One driver per client kind, selected once from the client row.

Drivers:
    - QBittorrentDriver: Web API v2 with session cookie authentication;
      infohash computed up front (torf) for magnets and .torrent files
    - SabnzbdDriver: JSON API; the NZB is fetched and uploaded, with the
      addurl mode as fallback

API References:
    https://github.com/qbittorrent/qBittorrent/wiki/WebUI-API-(qBittorrent-4.1)
    https://sabnzbd.org/wiki/configuration/4.3/api
"""

import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import torf
from sqlalchemy.orm import Session

from acquirarr.config import Config
from acquirarr.models.download_client import DownloadClient, DownloadClientKind
from acquirarr.services.exceptions import DownloadClientAuthError, DownloadClientError

logger = logging.getLogger(__name__)

# Normalized item status reported by every driver
ITEM_QUEUED = "queued"
ITEM_DOWNLOADING = "downloading"
ITEM_COMPLETED = "completed"
ITEM_FAILED = "failed"

TORRENT_ERROR_STATES = {"error", "missingFiles", "unknown"}
TORRENT_COMPLETE_STATES = {"uploading", "pausedUP", "stalledUP", "queuedUP", "forcedUP", "stoppedUP"}
TORRENT_QUEUED_STATES = {"queuedDL", "metaDL", "allocating", "checkingResumeData"}


@dataclass
class ClientItem:
    """One torrent or NZB as the client reports it."""
    handle: str
    name: str
    progress: float
    state: str
    status: str
    save_path: Optional[str] = None
    content_path: Optional[str] = None
    client_id: Optional[int] = None
    from_history: bool = False
    error: Optional[str] = None


@dataclass
class AddDownloadResult:
    success: bool
    message: str
    download_id: Optional[str] = None
    client_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def title_words(title: str) -> List[str]:
    return [w for w in re.split(r"[\s._\-\[\]()]+", (title or "").lower()) if len(w) > 2]


def match_item_by_title(title: str, items: Iterable[ClientItem]) -> Optional[ClientItem]:
    """
    Client item whose name shares enough words with a release title.

    Words shorter than three characters are ignored; an item matches when at
    least min(3, 60% of the title words) of them appear in its name.
    """
    words = title_words(title)
    if not words:
        return None
    needed = min(3, len(words) * 0.6)
    for item in items:
        name = (item.name or "").lower()
        hits = sum(1 for word in words if word in name)
        if hits >= needed:
            return item
    return None


def infohash_from_magnet(url: str) -> Optional[str]:
    """Lower-case hex infohash of a magnet link, None when it has none."""
    try:
        return str(torf.Magnet.from_string(url).infohash).lower()
    except (torf.TorfError, ValueError) as e:
        logger.debug(f"Could not read infohash from magnet: {e}")
        return None


def infohash_from_torrent(data: bytes) -> Optional[str]:
    try:
        return str(torf.Torrent.read_stream(io.BytesIO(data), validate=False).infohash).lower()
    except (torf.TorfError, ValueError) as e:
        logger.debug(f"Could not read infohash from .torrent: {e}")
        return None


class DownloadClientDriver(ABC):
    """Operations the engine needs from one download client."""

    def __init__(self, client: DownloadClient, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: Optional[float] = None):
        self.client = client
        self.transport = transport
        self.timeout = timeout or Config.DOWNLOAD_CLIENT_TIMEOUT

    @property
    def name(self) -> str:
        return self.client.name

    def _http(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport)

    @abstractmethod
    async def add(self, url: str, category: Optional[str], save_path: Optional[str]) -> AddDownloadResult:
        """Submit a release. download_id carries the handle when known."""

    @abstractmethod
    async def list_items(self, category: Optional[str] = None) -> List[ClientItem]:
        """
        Everything the client currently tracks.

        Raises:
            DownloadClientError: client unreachable; callers must not read
                this as "every item is gone"
        """

    @abstractmethod
    async def remove(self, handle: str, delete_files: bool = False) -> bool:
        pass

    @abstractmethod
    async def test_connection(self) -> Dict[str, Any]:
        pass

    async def find_handle(self, title: str, category: Optional[str] = None,
                          attempts: int = 5, interval: float = 2.0) -> Optional[str]:
        """Poll the client listing for an item named like the release."""
        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(interval)
            try:
                item = match_item_by_title(title, await self.list_items(category))
            except DownloadClientError as e:
                logger.warning(f"{self.name}: handle lookup failed ({e})")
                continue
            if item:
                return item.handle
        return None


class QBittorrentDriver(DownloadClientDriver):
    """qBittorrent Web API v2."""

    async def _authenticate(self, http: httpx.AsyncClient) -> httpx.Cookies:
        """
        Log in and return the session cookies.

        Raises:
            DownloadClientAuthError: credentials rejected
        """
        logger.debug(f"Authenticating with qBittorrent at {self.client.base_url}")
        response = await http.post(
            f"{self.client.base_url}/api/v2/auth/login",
            data={"username": self.client.username or "", "password": self.client.password or ""},
            headers={"Referer": self.client.base_url},
        )
        if response.status_code == 403:
            raise DownloadClientAuthError("qBittorrent banned this IP after failed logins",
                                          client=self.name, status_code=403)
        if response.text != "Ok.":
            raise DownloadClientAuthError(f"qBittorrent authentication failed: {response.text}",
                                          client=self.name)
        return response.cookies

    async def _fetch_torrent(self, http: httpx.AsyncClient, url: str):
        """
        Resolve an indexer download link.

        Returns:
            (torrent bytes, None) for a .torrent file, (None, magnet) when the
            indexer redirects to a magnet, (None, None) when neither worked
        """
        try:
            response = await http.get(url, follow_redirects=False)
        except httpx.HTTPError as e:
            logger.warning(f"Could not fetch torrent from indexer: {e}")
            return None, None
        location = response.headers.get("location", "")
        if response.is_redirect and location.startswith("magnet:"):
            return None, location
        if response.is_redirect and location:
            try:
                response = await http.get(location, follow_redirects=True)
            except httpx.HTTPError as e:
                logger.warning(f"Could not follow torrent redirect: {e}")
                return None, None
        if response.status_code == 200 and response.content[:1] == b"d":
            return response.content, None
        return None, None

    async def add(self, url: str, category: Optional[str], save_path: Optional[str]) -> AddDownloadResult:
        data = {}
        if category:
            data["category"] = category
        if save_path and save_path.strip():
            data["savepath"] = save_path
        if self.client.tags:
            data["tags"] = self.client.tags

        try:
            async with self._http(timeout=Config.API_REQUEST_TIMEOUT) as http:
                torrent_data = None
                magnet = url if url.startswith("magnet:") else None
                if not magnet:
                    torrent_data, magnet = await self._fetch_torrent(http, url)

                infohash = None
                files = None
                if torrent_data:
                    infohash = infohash_from_torrent(torrent_data)
                    files = {"torrents": ("release.torrent", torrent_data, "application/x-bittorrent")}
                else:
                    data["urls"] = magnet or url
                    if magnet:
                        infohash = infohash_from_magnet(magnet)

                cookies = await self._authenticate(http)
                logger.info(f"Adding torrent to qBittorrent {self.name}: category={category}, save_path={save_path}")
                response = await http.post(
                    f"{self.client.base_url}/api/v2/torrents/add",
                    cookies=cookies,
                    data=data,
                    files=files,
                )
        except DownloadClientAuthError as e:
            return AddDownloadResult(False, str(e.message))
        except httpx.HTTPError as e:
            return AddDownloadResult(False, f"qBittorrent connection error: {e}")

        if response.status_code == 200 and response.text.strip() in ("Ok.", ""):
            return AddDownloadResult(True, "Torrent added successfully", download_id=infohash)
        if response.text.strip() == "Fails.":
            return AddDownloadResult(False, "qBittorrent rejected the torrent (duplicate or invalid)")
        return AddDownloadResult(False, f"Unexpected response when adding torrent: HTTP {response.status_code}")

    @staticmethod
    def _normalize(torrent: Dict[str, Any]) -> str:
        state = torrent.get("state", "")
        progress = float(torrent.get("progress") or 0) * 100
        if state in TORRENT_ERROR_STATES:
            return ITEM_FAILED
        if state in TORRENT_COMPLETE_STATES or progress >= 100:
            return ITEM_COMPLETED
        if state in TORRENT_QUEUED_STATES and progress == 0:
            return ITEM_QUEUED
        return ITEM_DOWNLOADING

    async def list_items(self, category: Optional[str] = None) -> List[ClientItem]:
        params = {"category": category} if category else None
        try:
            async with self._http() as http:
                cookies = await self._authenticate(http)
                response = await http.get(
                    f"{self.client.base_url}/api/v2/torrents/info", params=params, cookies=cookies
                )
        except httpx.HTTPError as e:
            raise DownloadClientError(f"qBittorrent connection error: {e}", client=self.name) from e

        if response.status_code != 200:
            raise DownloadClientError("Failed to list torrents", client=self.name,
                                      status_code=response.status_code)

        items = []
        for torrent in response.json() or []:
            items.append(ClientItem(
                handle=str(torrent.get("hash", "")).lower(),
                name=torrent.get("name", ""),
                progress=round(float(torrent.get("progress") or 0) * 100, 1),
                state=torrent.get("state", ""),
                status=self._normalize(torrent),
                save_path=torrent.get("save_path"),
                content_path=torrent.get("content_path"),
                client_id=self.client.id,
            ))
        return items

    async def remove(self, handle: str, delete_files: bool = False) -> bool:
        try:
            async with self._http() as http:
                cookies = await self._authenticate(http)
                response = await http.post(
                    f"{self.client.base_url}/api/v2/torrents/delete",
                    cookies=cookies,
                    data={"hashes": handle, "deleteFiles": "true" if delete_files else "false"},
                )
        except (httpx.HTTPError, DownloadClientAuthError) as e:
            logger.error(f"[qBittorrent] {self.name}: Failed to remove torrent - {e}")
            return False
        return response.status_code == 200

    async def test_connection(self) -> Dict[str, Any]:
        try:
            async with self._http() as http:
                cookies = await self._authenticate(http)
                version_response = await http.get(
                    f"{self.client.base_url}/api/v2/app/version", cookies=cookies
                )
                version = version_response.text if version_response.status_code == 200 else 'unknown'
                return {'success': True, 'message': f'Connected to qBittorrent {version}', 'version': version}
        except DownloadClientAuthError as e:
            return {'success': False, 'message': e.message}
        except httpx.HTTPError as e:
            return {'success': False, 'message': f'Connection failed: {e}'}


class SabnzbdDriver(DownloadClientDriver):
    """SABnzbd JSON API (apikey authentication)."""

    HISTORY_LIMIT = 50

    def _params(self, **params) -> Dict[str, Any]:
        return {"apikey": self.client.api_key or "", "output": "json", **params}

    async def _api(self, http: httpx.AsyncClient, **params) -> Dict[str, Any]:
        response = await http.get(f"{self.client.base_url}/api", params=self._params(**params))
        if response.status_code == 403:
            raise DownloadClientAuthError("SABnzbd refused the API key", client=self.name, status_code=403)
        if response.status_code != 200:
            raise DownloadClientError(f"SABnzbd returned HTTP {response.status_code}",
                                      client=self.name, status_code=response.status_code)
        return response.json()

    @staticmethod
    def nzb_filename(url: str) -> str:
        filename = "download.nzb"
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        candidate = (query.get("file") or query.get("title") or [parsed.path.rsplit("/", 1)[-1]])[0]
        if candidate:
            filename = candidate
        if not filename.endswith(".nzb"):
            filename += ".nzb"
        return re.sub(r"[^a-zA-Z0-9._-]", "_", filename)

    @staticmethod
    def _accepted(payload: Dict[str, Any]) -> Optional[str]:
        """nzo id of an accepted NZB, '' when accepted without one, None when refused."""
        nzo_ids = payload.get("nzo_ids") or []
        if nzo_ids:
            return nzo_ids[0]
        if payload.get("status") is True:
            return ""
        return None

    async def add(self, url: str, category: Optional[str], save_path: Optional[str]) -> AddDownloadResult:
        category = category.strip() if category and category.strip() else None
        logger.info(f"[SABnzbd] Adding NZB to {self.name} (category: {category or 'default'})")

        try:
            async with self._http(timeout=Config.API_REQUEST_TIMEOUT) as http:
                nzb = None
                try:
                    nzb_response = await http.get(url, headers={"Accept": "application/x-nzb, */*"},
                                                  follow_redirects=True)
                    if nzb_response.status_code == 200 and nzb_response.content:
                        nzb = nzb_response.content
                except httpx.HTTPError as e:
                    logger.warning(f"[SABnzbd] Failed to fetch NZB: {e}")

                if nzb:
                    params = self._params(mode="addfile")
                    if category:
                        params["cat"] = category
                    upload = await http.post(
                        f"{self.client.base_url}/api",
                        params=params,
                        files={"nzbfile": (self.nzb_filename(url), nzb, "application/x-nzb")},
                    )
                    if upload.status_code == 200:
                        nzo_id = self._accepted(upload.json())
                        if nzo_id is not None:
                            logger.info(f"[SABnzbd] NZB uploaded (nzo_id: {nzo_id})")
                            return AddDownloadResult(True, "NZB added to SABnzbd", download_id=nzo_id or None)
                    logger.warning("[SABnzbd] Upload refused, trying addurl")

                params = {"mode": "addurl", "name": url}
                if category:
                    params["cat"] = category
                payload = await self._api(http, **params)
        except DownloadClientError as e:
            return AddDownloadResult(False, e.message)
        except httpx.HTTPError as e:
            return AddDownloadResult(False, f"SABnzbd connection error: {e}")

        nzo_id = self._accepted(payload)
        if nzo_id is not None:
            logger.info(f"[SABnzbd] NZB added via URL (nzo_id: {nzo_id})")
            return AddDownloadResult(True, "NZB added to SABnzbd", download_id=nzo_id or None)
        return AddDownloadResult(False, payload.get("error") or "SABnzbd did not accept the NZB")

    @staticmethod
    def _queue_progress(slot: Dict[str, Any]) -> float:
        if slot.get("percentage") not in (None, ""):
            return float(slot["percentage"])
        total = float(slot.get("mb") or 0)
        left = float(slot.get("mbleft") or 0)
        return round((total - left) / total * 100, 1) if total else 0.0

    async def list_items(self, category: Optional[str] = None) -> List[ClientItem]:
        try:
            async with self._http() as http:
                queue = (await self._api(http, mode="queue")).get("queue") or {}
                history = (await self._api(http, mode="history", limit=self.HISTORY_LIMIT)).get("history") or {}
        except httpx.HTTPError as e:
            raise DownloadClientError(f"SABnzbd connection error: {e}", client=self.name) from e

        items = []
        for slot in queue.get("slots") or []:
            if category and slot.get("cat") not in (category, None):
                continue
            state = slot.get("status", "")
            progress = self._queue_progress(slot)
            items.append(ClientItem(
                handle=slot.get("nzo_id", ""),
                name=slot.get("filename", ""),
                progress=progress,
                state=state,
                status=ITEM_QUEUED if state == "Queued" and progress == 0 else ITEM_DOWNLOADING,
                client_id=self.client.id,
            ))

        for slot in history.get("slots") or []:
            if category and slot.get("category") not in (category, None):
                continue
            state = slot.get("status", "")
            if state == "Completed":
                status = ITEM_COMPLETED
            elif state == "Failed":
                status = ITEM_FAILED
            else:
                # Post-processing (Verifying, Extracting, Moving...)
                status = ITEM_DOWNLOADING
            items.append(ClientItem(
                handle=slot.get("nzo_id", ""),
                name=slot.get("name", ""),
                progress=100.0,
                state=state,
                status=status,
                save_path=slot.get("storage"),
                content_path=slot.get("storage"),
                client_id=self.client.id,
                from_history=True,
                error=slot.get("fail_message") or None,
            ))
        return items

    async def remove(self, handle: str, delete_files: bool = False) -> bool:
        try:
            async with self._http() as http:
                for mode in ("queue", "history"):
                    payload = await self._api(http, mode=mode, name="delete", value=handle,
                                              del_files=1 if delete_files else 0)
                    if payload.get("status") is True:
                        logger.info(f"[SABnzbd] Removed {handle} from {mode}")
                        return True
        except (httpx.HTTPError, DownloadClientError) as e:
            logger.error(f"[SABnzbd] {self.name}: Failed to remove NZB - {e}")
            return False
        logger.warning(f"[SABnzbd] Failed to remove {handle}")
        return False

    async def test_connection(self) -> Dict[str, Any]:
        try:
            async with self._http() as http:
                version = (await self._api(http, mode="version")).get("version", "unknown")
                await self._api(http, mode="queue", limit=1)
        except DownloadClientError as e:
            return {'success': False, 'message': e.message}
        except httpx.HTTPError as e:
            return {'success': False, 'message': f'Connection failed: {e}'}
        return {'success': True, 'message': f'Connected to SABnzbd {version}', 'version': version}


DRIVERS = {
    DownloadClientKind.QBITTORRENT.value: QBittorrentDriver,
    DownloadClientKind.SABNZBD.value: SabnzbdDriver,
}


class DownloadClientService:
    """
    Client selection plus the add / list / remove operations.

    Args:
        db: Database session
        transport: httpx transport override for every driver (tests)
    """

    def __init__(self, db: Session, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self.transport = transport
        self._drivers: Dict[int, DownloadClientDriver] = {}

    def driver_for(self, client: DownloadClient) -> DownloadClientDriver:
        if client.id not in self._drivers:
            driver_class = DRIVERS.get(client.kind)
            if driver_class is None:
                raise DownloadClientError(f"Unknown client type: {client.kind}", client=client.name)
            self._drivers[client.id] = driver_class(client, transport=self.transport)
        return self._drivers[client.id]

    def primary_client(self, kind: Optional[str] = None) -> Optional[DownloadClient]:
        for client in DownloadClient.get_enabled(self.db):
            if kind is None or client.kind == kind:
                return client
        return None

    def select_client(self, url: str, client_id: Optional[int] = None,
                      protocol: Optional[str] = None) -> Optional[DownloadClient]:
        """
        Explicit client, else the first enabled client for the protocol.

        Without a protocol, NZB-looking URLs go to SABnzbd and everything
        else to qBittorrent; the other kind is used when the preferred one
        is not configured.
        """
        if client_id:
            return DownloadClient.get_by_id(self.db, client_id)

        if protocol == "torrent":
            preferred = DownloadClientKind.QBITTORRENT.value
        elif protocol == "usenet":
            preferred = DownloadClientKind.SABNZBD.value
        else:
            lowered = url.lower()
            is_nzb = ".nzb" in lowered or "sabnzbd" in lowered or "nzbget" in lowered
            preferred = DownloadClientKind.SABNZBD.value if is_nzb else DownloadClientKind.QBITTORRENT.value

        client = self.primary_client(preferred)
        if client is None and protocol is None:
            client = self.primary_client()
        elif client is None:
            logger.warning(f"No {preferred} client configured for a {protocol} release")
        return client

    async def add_download(self, url: str, media_kind: str, save_path: Optional[str],
                           client_id: Optional[int] = None,
                           protocol: Optional[str] = None) -> AddDownloadResult:
        client = self.select_client(url, client_id, protocol)
        if not client:
            return AddDownloadResult(False, "No download client configured")

        category = client.category_for(media_kind) or ""
        if client.kind == DownloadClientKind.QBITTORRENT.value and not category:
            category = "movies" if media_kind == "movie" else "tv"

        logger.info(f"Using {client.kind} client '{client.name}' for {protocol or 'unknown'} download")
        driver = self.driver_for(client)
        result = await driver.add(url, category, save_path)
        if result.success:
            result.client_id = client.id
            result.extra["category"] = category
        return result

    async def list_active(self, client_id: int, category: Optional[str] = None) -> List[ClientItem]:
        client = DownloadClient.get_by_id(self.db, client_id)
        if not client:
            return []
        return await self.driver_for(client).list_items(category)

    async def remove(self, client_id: int, handle: str, delete_files: bool = False) -> bool:
        client = DownloadClient.get_by_id(self.db, client_id)
        if not client:
            return False
        return await self.driver_for(client).remove(handle, delete_files)

    async def find_handle(self, client_id: int, title: str, category: Optional[str] = None,
                          attempts: int = 5, interval: float = 2.0) -> Optional[str]:
        client = DownloadClient.get_by_id(self.db, client_id)
        if not client:
            return None
        return await self.driver_for(client).find_handle(title, category, attempts, interval)

    async def test_client(self, client: DownloadClient) -> Dict[str, Any]:
        return await self.driver_for(client).test_connection()
