"""
Indexer Gateway

Entry point for every indexer query: interactive and automatic searches,
RSS feed fetches and connection tests.

Searches:
    - run inside the SearchQueue (one logical search at a time)
    - fan out to every indexer enabled for the capability, in priority order
    - take one IndexerRateLimiter slot per indexer
    - isolate indexers: one failing indexer yields zero results, not an error
    - filter the merged results by title and category, best seeded first

RSS fetches do not use the SearchQueue; they only take a rate limiter slot.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from acquirarr.config import Config
from acquirarr.models.download import MediaKind
from acquirarr.models.indexer import Indexer
from acquirarr.services.indexer_drivers import IndexerDriver, build_driver
from acquirarr.services.rate_limiter import (
    IndexerRateLimiter,
    SearchQueue,
    get_rate_limiter,
    get_search_queue,
)
from acquirarr.services.releases import Release, sort_by_seeders
from acquirarr.services.title_matcher import SEARCH_FILTER, category_matches, title_matches

logger = logging.getLogger(__name__)

DriverCall = Callable[[IndexerDriver, httpx.AsyncClient], Awaitable[List[Release]]]


class IndexerGateway:
    """
    Searches and RSS fetches across the configured indexers.

    Args:
        rate_limiter: Gate in front of every indexer request
        search_queue: Serializes logical searches
        transport: httpx transport override (tests use httpx.MockTransport)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        rate_limiter: Optional[IndexerRateLimiter] = None,
        search_queue: Optional[SearchQueue] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.search_queue = search_queue or get_search_queue()
        self.transport = transport
        self.timeout = timeout or Config.API_REQUEST_TIMEOUT

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True)

    @staticmethod
    def indexers_for_search(db: Session, interactive: bool) -> List[Indexer]:
        if interactive:
            return Indexer.get_interactive_search_enabled(db)
        return Indexer.get_automatic_search_enabled(db)

    async def _fan_out(self, indexers: List[Indexer], call: DriverCall) -> List[Release]:
        """Query each indexer in order; failures are logged and skipped."""
        results: List[Release] = []
        async with self._client() as client:
            for indexer in indexers:
                try:
                    driver = build_driver(indexer)
                    await self.rate_limiter.acquire_slot(indexer.id)
                    found = await call(driver, client)
                    logger.debug(f"[SEARCH] {indexer.name}: {len(found)} raw results")
                    results.extend(found)
                except Exception as e:
                    logger.error(f"[SEARCH] Error searching {indexer.name}: {type(e).__name__}: {e}")
        return results

    # ===========================================================================
    # Searches
    # ===========================================================================

    async def search_movies(self, db: Session, title: str, year: Optional[int] = None,
                            interactive: bool = False) -> List[Release]:
        """
        Search every movie-capable indexer.

        Returns:
            Matching releases, most seeders first
        """
        indexers = self.indexers_for_search(db, interactive)
        if not indexers:
            logger.warning("[SEARCH] No indexers enabled for search")
            return []

        async def run() -> List[Release]:
            logger.info(f"[SEARCH] Movie search '{title}' ({year}) on {len(indexers)} indexer(s)")
            releases = await self._fan_out(
                indexers, lambda driver, client: driver.search_movie(client, title, year)
            )
            return self.filter_releases(releases, title, year, MediaKind.MOVIE.value)

        return await self.search_queue.execute(run)

    async def search_tv(self, db: Session, title: str, season: Optional[int] = None,
                        episode: Optional[int] = None, interactive: bool = False) -> List[Release]:
        indexers = self.indexers_for_search(db, interactive)
        if not indexers:
            logger.warning("[SEARCH] No indexers enabled for search")
            return []

        async def run() -> List[Release]:
            logger.info(
                f"[SEARCH] TV search '{title}' season={season} episode={episode} "
                f"on {len(indexers)} indexer(s)"
            )
            releases = await self._fan_out(
                indexers, lambda driver, client: driver.search_tv(client, title, season, episode)
            )
            return self.filter_releases(releases, title, None, MediaKind.TV.value)

        return await self.search_queue.execute(run)

    @staticmethod
    def filter_releases(releases: List[Release], title: str, year: Optional[int],
                        media_kind: str) -> List[Release]:
        """Drop releases naming something else or filed under the other media kind."""
        kept = [
            r for r in releases
            if title_matches(r.title, title, year, SEARCH_FILTER)
            and category_matches(r.categories, media_kind)
        ]
        if len(kept) != len(releases):
            logger.info(f"[SEARCH] Filtered {len(releases) - len(kept)} of {len(releases)} results for '{title}'")
        return sort_by_seeders(kept)

    # ===========================================================================
    # RSS / test
    # ===========================================================================

    async def fetch_rss(self, indexer: Indexer, limit: Optional[int] = None) -> List[Release]:
        """Latest releases of one indexer; errors yield an empty list."""
        try:
            driver = build_driver(indexer)
            await self.rate_limiter.acquire_slot(indexer.id)
            async with self._client() as client:
                releases = await driver.fetch_rss(client, limit or Config.RSS_FETCH_LIMIT)
        except Exception as e:
            logger.error(f"[RSS] Failed to fetch RSS from {indexer.name}: {type(e).__name__}: {e}")
            return []
        logger.info(f"[RSS] {indexer.name}: {len(releases)} releases")
        return releases

    async def test_indexer(self, indexer: Indexer) -> Dict[str, Any]:
        driver = build_driver(indexer)
        await self.rate_limiter.acquire_slot(indexer.id)
        async with self._client() as client:
            result = await driver.test(client)
        log = logger.info if result['success'] else logger.warning
        log(f"Indexer test {indexer.name}: {result['message']}")
        return result


_gateway: Optional[IndexerGateway] = None


def get_indexer_gateway() -> IndexerGateway:
    global _gateway
    if _gateway is None:
        _gateway = IndexerGateway()
    return _gateway
