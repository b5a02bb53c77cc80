"""
Indexer drivers (Torznab / Newznab)

One driver instance per configured indexer, chosen once from the indexer
kind. A driver knows how to build the query for each search verb and how to
turn whatever the indexer answers into Release values.

Response formats accepted:
    - RSS XML with torznab:attr / newznab:attr extensions (or un-namespaced attr)
    - JSON array of items
    - JSON object wrapping the items in 'results', 'data' or 'items'

A single malformed item is skipped; the rest of the response is kept.
"""

import json
import logging
import random
import re
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional

import httpx

from acquirarr.models.indexer import Indexer, IndexerKind
from acquirarr.services.exceptions import (
    IndexerError,
    NetworkRetryableError,
    classify_http_error,
    parse_retry_after,
    retry_on_network_error,
)
from acquirarr.services.release_parser import detect_quality
from acquirarr.services.releases import (
    MOVIE_CATEGORIES,
    PROTOCOL_TORRENT,
    PROTOCOL_USENET,
    RSS_CATEGORIES,
    TV_CATEGORIES,
    Release,
    category_label,
)

logger = logging.getLogger(__name__)

TORZNAB_NS = '{http://torznab.com/schemas/2015/feed}attr'
NEWZNAB_NS = '{http://www.newznab.com/DTD/2010/feeds/attributes/}attr'

SEARCH_LIMIT = 100

_ARTICLES = re.compile(r"\b(the|a|an)\b\s*", re.IGNORECASE)


def query_variations(title: str) -> List[str]:
    """
    Query strings tried in order for a movie search.

    'A Quiet Place' -> ['A Quiet Place', 'A.Quiet.Place', 'Quiet Place', 'Quiet.Place']
    """
    without_articles = re.sub(r"\s+", " ", _ARTICLES.sub("", title)).strip()
    variations = [
        title,
        re.sub(r"\s+", ".", title),
        without_articles,
        re.sub(r"\s+", ".", without_articles),
    ]
    unique = []
    for query in variations:
        if query and query not in unique:
            unique.append(query)
    return unique


def _parse_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _parse_date(value: Optional[str]):
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _first(item: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return default


def _fallback_guid(indexer_name: str) -> str:
    return f"{indexer_name}-{int(time.time() * 1000)}-{random.random()}"


class IndexerDriver(ABC):
    """
    Search verbs and response parsing for one indexer.

    HTTP goes through the httpx.AsyncClient handed in by the gateway, which
    also owns rate limiting and per-indexer error isolation.
    """

    kind: IndexerKind

    def __init__(self, indexer: Indexer):
        self.indexer = indexer

    @property
    def name(self) -> str:
        return self.indexer.name

    @property
    @abstractmethod
    def default_protocol(self) -> Optional[str]:
        """Protocol implied by the indexer kind, None when it must be inferred."""

    # ===========================================================================
    # HTTP
    # ===========================================================================

    @retry_on_network_error(max_retries=1, base_delay=3.0)
    async def request(self, client: httpx.AsyncClient, params: Dict[str, Any]) -> List[Release]:
        """
        GET {indexer}/api with the API key and parse the answer.

        Raises:
            IndexerError: 4xx/5xx, or an error document from the indexer
            NetworkRetryableError: timeouts, connection errors, 429/502/503/504
        """
        query = dict(params)
        if self.indexer.api_key:
            query['apikey'] = self.indexer.api_key

        try:
            response = await client.get(self.indexer.api_url, params=query)
        except httpx.TimeoutException as e:
            raise NetworkRetryableError(f"Timeout querying {self.name}: {e}", original_exception=e)
        except httpx.TransportError as e:
            raise NetworkRetryableError(f"Cannot connect to {self.name}: {e}", original_exception=e)

        if response.status_code >= 400:
            raise classify_http_error(
                response.status_code,
                f"{self.name}: {response.text[:200]}",
                error_class=IndexerError,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        return self.parse_response(response.text)

    async def search_movie(self, client: httpx.AsyncClient, title: str,
                           year: Optional[int] = None) -> List[Release]:
        """
        Movie search: t=movie over the query variations, then t=search.

        The first variation that returns anything wins.
        """
        variations = query_variations(title)
        for verb in ('movie', 'search'):
            for query in variations:
                params = {'t': verb, 'q': query, 'cat': MOVIE_CATEGORIES, 'limit': SEARCH_LIMIT}
                try:
                    results = await self.request(client, params)
                except (IndexerError, NetworkRetryableError) as e:
                    logger.debug(f"[SEARCH] {self.name}: t={verb} failed for '{query}' ({e})")
                    continue
                if results:
                    logger.info(f"[SEARCH] {self.name}: {len(results)} results for t={verb} '{query}'")
                    return results
            if verb == 'movie':
                logger.info(f"[SEARCH] {self.name}: t=movie returned 0 results, trying t=search")
        return []

    async def search_tv(self, client: httpx.AsyncClient, title: str, season: Optional[int] = None,
                        episode: Optional[int] = None) -> List[Release]:
        """tvsearch with season/ep; on zero results or error, t=search 'Title SxxEyy'."""
        params = {'t': 'tvsearch', 'q': title, 'cat': TV_CATEGORIES, 'limit': SEARCH_LIMIT}
        if season is not None:
            params['season'] = season
        if episode is not None:
            params['ep'] = episode

        try:
            results = await self.request(client, params)
            if results:
                return results
            logger.info(f"[SEARCH] {self.name}: t=tvsearch returned 0 results, trying t=search")
        except (IndexerError, NetworkRetryableError) as e:
            logger.warning(f"[SEARCH] {self.name}: t=tvsearch failed ({e}), trying t=search")

        query = title
        if season is not None and episode is not None:
            query = f"{title} S{season:02d}E{episode:02d}"
        return await self.request(
            client, {'t': 'search', 'q': query, 'cat': TV_CATEGORIES, 'limit': SEARCH_LIMIT}
        )

    async def fetch_rss(self, client: httpx.AsyncClient, limit: int = SEARCH_LIMIT) -> List[Release]:
        return await self.request(client, {'t': 'search', 'cat': RSS_CATEGORIES, 'limit': limit})

    async def test(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        """Capabilities request; any 200 answer counts as connected."""
        params = {'t': 'caps'}
        if self.indexer.api_key:
            params['apikey'] = self.indexer.api_key
        try:
            response = await client.get(self.indexer.api_url, params=params)
        except httpx.HTTPError as e:
            return {'success': False, 'message': f'Connection failed: {e}'}
        if response.status_code == 200:
            return {'success': True, 'message': 'Indexer connected successfully'}
        return {'success': False, 'message': f'Invalid response from indexer (HTTP {response.status_code})'}

    # ===========================================================================
    # Parsing
    # ===========================================================================

    def parse_response(self, text: str) -> List[Release]:
        """Dispatch on the payload shape: JSON first, XML otherwise."""
        data = (text or '').strip()
        if not data:
            logger.warning(f"[SEARCH] Empty response from {self.name}")
            return []

        if data[0] in '[{':
            try:
                payload = json.loads(data)
            except ValueError as e:
                logger.error(f"[SEARCH] Failed to parse JSON from {self.name}: {e}")
                return []
            if isinstance(payload, list):
                return self.parse_json_items(payload)
            items = payload.get('results') or payload.get('data') or payload.get('items') or []
            return self.parse_json_items(items if isinstance(items, list) else [])

        return self.parse_xml(data)

    def parse_xml(self, xml_text: str) -> List[Release]:
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            logger.error(f"[SEARCH] Failed to parse XML from {self.name}: {e}")
            logger.debug(f"XML content (first 200 chars): {xml_text[:200]}")
            return []

        if root.tag == 'error':
            raise IndexerError(
                f"{self.name}: {root.get('description') or 'error'} (code {root.get('code')})",
                indexer=self.name,
            )

        results = []
        for item in root.findall('.//item'):
            try:
                release = self._parse_xml_item(item)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"[SEARCH] {self.name}: skipping malformed item ({e})")
                continue
            if release:
                results.append(release)
        return results

    def _xml_attrs(self, item) -> Iterable:
        yield from item.findall(TORZNAB_NS)
        yield from item.findall(NEWZNAB_NS)
        yield from item.findall('attr')

    def _parse_xml_item(self, item) -> Optional[Release]:
        title = (item.findtext('title') or '').strip()
        if not title:
            return None

        enclosure = item.find('enclosure')
        enclosure_url = enclosure.get('url') if enclosure is not None else None
        size = _parse_int(enclosure.get('length')) if enclosure is not None else 0
        link = (item.findtext('link') or '').strip()

        seeders = 0
        peers = None
        grabs = 0
        volume_factor = None
        categories: List[str] = []

        for attr in self._xml_attrs(item):
            name = attr.get('name')
            value = attr.get('value')
            if name == 'seeders':
                seeders = _parse_int(value)
            elif name == 'peers':
                peers = _parse_int(value)
            elif name == 'size':
                size = _parse_int(value, size)
            elif name == 'grabs':
                grabs = _parse_int(value)
            elif name == 'downloadvolumefactor':
                volume_factor = float(value)
            elif name == 'category':
                label = category_label(value)
                if label not in categories:
                    categories.append(label)

        for element in item.findall('category'):
            label = (element.text or '').strip()
            if label and label not in categories:
                categories.append(label)

        download_url = enclosure_url or link
        if self.default_protocol:
            protocol = self.default_protocol
        elif '.nzb' in download_url.lower() or (seeders == 0 and volume_factor is None):
            protocol = PROTOCOL_USENET
        else:
            protocol = PROTOCOL_TORRENT

        return Release(
            guid=(item.findtext('guid') or '').strip() or _fallback_guid(self.name),
            title=title,
            download_url=download_url,
            size=size,
            seeders=seeders,
            leechers=max(0, (peers or 0) - seeders) if peers is not None else 0,
            grabs=grabs,
            info_url=(item.findtext('comments') or '').strip() or link or None,
            indexer=self.name,
            indexer_id=self.indexer.id,
            indexer_kind=self.kind.value,
            protocol=protocol,
            quality=detect_quality(title),
            publish_date=_parse_date(item.findtext('pubDate')),
            categories=tuple(categories),
            download_volume_factor=volume_factor,
        )

    def parse_json_items(self, items: List[Any]) -> List[Release]:
        results = []
        for item in items:
            try:
                release = self._parse_json_item(item)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"[SEARCH] {self.name}: skipping malformed item ({e})")
                continue
            if release:
                results.append(release)
        return results

    def _parse_json_item(self, item: Dict[str, Any]) -> Optional[Release]:
        title = _first(item, 'title', 'Title', default='')
        if not title:
            return None
        download_url = _first(item, 'downloadUrl', 'DownloadUrl', 'link', 'Link', default='')

        raw_categories = _first(item, 'categories', 'Categories')
        if isinstance(raw_categories, list):
            categories = []
            for category in raw_categories:
                if isinstance(category, dict):
                    category = _first(category, 'name', 'Name', 'id', default='')
                label = category_label(category)
                if label and label not in categories:
                    categories.append(label)
        elif item.get('category') is not None:
            categories = [category_label(item['category'])]
        else:
            categories = []

        explicit = _first(item, 'protocol', 'Protocol')
        if explicit:
            protocol = PROTOCOL_USENET if str(explicit).lower() == 'usenet' else PROTOCOL_TORRENT
        elif self.default_protocol:
            protocol = self.default_protocol
        elif '.nzb' in download_url.lower():
            protocol = PROTOCOL_USENET
        else:
            protocol = PROTOCOL_TORRENT

        volume_factor = _first(item, 'downloadVolumeFactor', 'DownloadVolumeFactor')
        return Release(
            guid=str(_first(item, 'guid', 'id', default='') or _fallback_guid(self.name)),
            title=title,
            download_url=download_url,
            size=_parse_int(_first(item, 'size', 'Size', default=0)),
            seeders=_parse_int(_first(item, 'seeders', 'Seeders', default=0)),
            leechers=_parse_int(_first(item, 'leechers', 'Leechers', 'peers', default=0)),
            grabs=_parse_int(_first(item, 'grabs', 'Grabs', default=0)),
            info_url=_first(item, 'infoUrl', 'InfoUrl', 'guid'),
            indexer=self.name,
            indexer_id=self.indexer.id,
            indexer_kind=self.kind.value,
            protocol=protocol,
            quality=detect_quality(title),
            publish_date=_parse_date(_first(item, 'pubDate', 'publishDate')),
            categories=tuple(categories),
            download_volume_factor=float(volume_factor) if volume_factor is not None else None,
        )


class TorznabDriver(IndexerDriver):
    """Torrent indexers (Jackett, Prowlarr torznab feeds)."""

    kind = IndexerKind.TORZNAB

    @property
    def default_protocol(self) -> Optional[str]:
        return None


class NewznabDriver(IndexerDriver):
    """Usenet indexers; everything they return is an NZB."""

    kind = IndexerKind.NEWZNAB

    @property
    def default_protocol(self) -> Optional[str]:
        return PROTOCOL_USENET


DRIVERS = {
    IndexerKind.TORZNAB.value: TorznabDriver,
    IndexerKind.NEWZNAB.value: NewznabDriver,
}


def build_driver(indexer: Indexer) -> IndexerDriver:
    """Pick the driver class for an indexer row."""
    kind = indexer.kind.value if isinstance(indexer.kind, IndexerKind) else str(indexer.kind or '')
    driver_class = DRIVERS.get(kind.lower())
    if driver_class is None:
        raise IndexerError(f"Unsupported indexer kind: {indexer.kind}", indexer=indexer.name)
    return driver_class(indexer)
