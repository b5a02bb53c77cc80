"""
Unit tests for the Torznab / Newznab drivers and the indexer gateway

HTTP is served by httpx.MockTransport; no network access.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from acquirarr.models.indexer import Indexer
from acquirarr.services.exceptions import IndexerError
from acquirarr.services.indexer_drivers import (
    NewznabDriver,
    TorznabDriver,
    build_driver,
    query_variations,
)
from acquirarr.services.indexer_gateway import IndexerGateway

TORZNAB_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:torznab="http://torznab.com/schemas/2015/feed">
  <channel>
    <item>
      <title>Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP</title>
      <guid>https://tracker.local/details/1</guid>
      <link>https://tracker.local/download/1.torrent</link>
      <comments>https://tracker.local/details/1</comments>
      <pubDate>Fri, 05 Jun 2026 10:00:00 +0000</pubDate>
      <enclosure url="https://tracker.local/download/1.torrent" length="3221225472" type="application/x-bittorrent"/>
      <torznab:attr name="seeders" value="120"/>
      <torznab:attr name="peers" value="150"/>
      <torznab:attr name="category" value="2040"/>
      <torznab:attr name="downloadvolumefactor" value="0"/>
    </item>
    <item>
      <title></title>
      <guid>empty-title</guid>
    </item>
    <item>
      <title>Masters.of.the.Universe.2026.720p.WEB-DL.x264-GRP</title>
      <guid>https://tracker.local/details/2</guid>
      <enclosure url="https://tracker.local/download/2.torrent" length="1073741824"/>
      <torznab:attr name="seeders" value="5"/>
      <torznab:attr name="peers" value="6"/>
      <torznab:attr name="downloadvolumefactor" value="1"/>
    </item>
  </channel>
</rss>
"""

NEWZNAB_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:newznab="http://www.newznab.com/DTD/2010/feeds/attributes/">
  <channel>
    <item>
      <title>The.Expanse.S03E07.1080p.WEB-DL.DDP5.1.H.264-NTb</title>
      <guid>nzb-1</guid>
      <link>https://nzb.local/getnzb/abc</link>
      <newznab:attr name="size" value="2147483648"/>
      <newznab:attr name="category" value="5040"/>
    </item>
  </channel>
</rss>
"""

ERROR_DOC = '<?xml version="1.0"?><error code="100" description="Incorrect user credentials"/>'


def torznab(indexer_id=1, name="Jackett"):
    return Indexer(id=indexer_id, name=name, kind="torznab", url="http://indexer.local", api_key="secret")


class TestQueryVariations:

    def test_articles_and_dots(self):
        assert query_variations("A Quiet Place") == ["A Quiet Place", "A.Quiet.Place", "Quiet Place", "Quiet.Place"]

    def test_no_duplicates(self):
        assert query_variations("Dune") == ["Dune"]


class TestXmlParsing:

    def test_torznab_items(self):
        releases = TorznabDriver(torznab()).parse_response(TORZNAB_FEED)

        assert len(releases) == 2
        first = releases[0]
        assert first.title == "Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP"
        assert first.seeders == 120
        assert first.leechers == 30
        assert first.size == 3221225472
        assert first.protocol == "torrent"
        assert first.quality == "WEBDL-1080p"
        assert first.categories == ("Movies/HD",)
        assert first.is_freeleech
        assert first.publish_date is not None
        assert not releases[1].is_freeleech

    def test_newznab_is_always_usenet(self):
        indexer = Indexer(id=2, name="NZBgeek", kind="newznab", url="https://nzb.local")
        releases = NewznabDriver(indexer).parse_response(NEWZNAB_FEED)

        assert len(releases) == 1
        assert releases[0].protocol == "usenet"
        assert releases[0].size == 2147483648
        assert releases[0].download_url == "https://nzb.local/getnzb/abc"
        assert releases[0].categories == ("TV/HD",)

    def test_torznab_without_seeders_is_inferred_usenet(self):
        feed = """<rss><channel><item>
            <title>Movie.2020.1080p.BluRay-GRP</title><guid>x</guid>
            <link>https://nzb.local/get/x</link>
        </item></channel></rss>"""
        releases = TorznabDriver(torznab()).parse_response(feed)
        assert releases[0].protocol == "usenet"

    def test_error_document_raises(self):
        with pytest.raises(IndexerError):
            TorznabDriver(torznab()).parse_response(ERROR_DOC)

    def test_invalid_xml_yields_nothing(self):
        assert TorznabDriver(torznab()).parse_response("<rss><channel><item>") == []

    def test_empty_body(self):
        assert TorznabDriver(torznab()).parse_response("  ") == []


class TestJsonParsing:

    def test_wrapped_results(self):
        payload = json.dumps({"results": [
            {
                "title": "Dune.2021.2160p.UHD.BluRay.x265-GRP",
                "guid": "j1",
                "downloadUrl": "https://tracker.local/dl/j1",
                "size": 30000000000,
                "seeders": 40,
                "leechers": 3,
                "categories": [{"id": 2045, "name": "Movies/UHD"}],
                "protocol": "torrent",
            },
            {"title": "", "guid": "skipped"},
        ]})
        releases = TorznabDriver(torznab()).parse_response(payload)

        assert len(releases) == 1
        assert releases[0].quality == "Bluray-2160p"
        assert releases[0].categories == ("Movies/UHD",)

    def test_bare_array_with_explicit_usenet(self):
        payload = json.dumps([{"Title": "Show.S01E01.720p.HDTV-GRP", "Link": "https://x/1", "Protocol": "usenet"}])
        releases = TorznabDriver(torznab()).parse_response(payload)
        assert releases[0].protocol == "usenet"

    def test_nzb_link_is_usenet(self):
        payload = json.dumps([{"title": "Show.S01E01.720p.HDTV-GRP", "link": "https://x/show.nzb"}])
        assert TorznabDriver(torznab()).parse_response(payload)[0].protocol == "usenet"

    def test_malformed_json(self):
        assert TorznabDriver(torznab()).parse_response("{not json") == []


class TestBuildDriver:

    def test_kinds(self):
        assert isinstance(build_driver(torznab()), TorznabDriver)
        assert isinstance(build_driver(Indexer(name="n", kind="Newznab", url="x")), NewznabDriver)

    def test_unknown_kind(self):
        with pytest.raises(IndexerError):
            build_driver(Indexer(name="odd", kind="rarbg", url="x"))


class TestDriverRequests:

    @pytest.mark.asyncio
    async def test_movie_search_falls_back_to_generic_search(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            if request.url.params["t"] == "movie":
                return httpx.Response(200, text="<rss><channel></channel></rss>")
            return httpx.Response(200, text=TORZNAB_FEED)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            releases = await TorznabDriver(torznab()).search_movie(client, "Masters of the Universe", 2026)

        assert len(releases) == 2
        assert seen[0]["apikey"] == "secret"
        assert {p["t"] for p in seen} == {"movie", "search"}

    @pytest.mark.asyncio
    async def test_tvsearch_passes_season_and_episode(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, text=NEWZNAB_FEED)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await TorznabDriver(torznab()).search_tv(client, "The Expanse", 3, 7)

        assert seen[0]["t"] == "tvsearch"
        assert seen[0]["season"] == "3"
        assert seen[0]["ep"] == "7"

    @pytest.mark.asyncio
    async def test_unavailable_indexer_is_retried_once(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, text="maintenance")

        with patch("asyncio.sleep", new=AsyncMock()):
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                with pytest.raises(Exception):
                    await TorznabDriver(torznab()).fetch_rss(client)

        assert calls == 2


class TestIndexerGateway:

    @pytest.mark.asyncio
    async def test_failing_indexer_does_not_break_the_search(self, db, make_indexer, rate_limiter, search_queue):
        good = make_indexer(name="Good", url="http://good.local", priority=1)
        make_indexer(name="Broken", url="http://broken.local", priority=2)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken.local":
                return httpx.Response(401, text="bad key")
            return httpx.Response(200, text=TORZNAB_FEED)

        gateway = IndexerGateway(rate_limiter, search_queue, transport=httpx.MockTransport(handler))
        releases = await gateway.search_movies(db, "Masters of the Universe", 2026)

        assert [r.seeders for r in releases] == [120, 5]
        assert all(r.indexer_id == good.id for r in releases)

    @pytest.mark.asyncio
    async def test_results_filtered_by_title(self, db, make_indexer, rate_limiter, search_queue):
        make_indexer()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=TORZNAB_FEED)

        gateway = IndexerGateway(rate_limiter, search_queue, transport=httpx.MockTransport(handler))
        releases = await gateway.search_movies(db, "Some Other Film", 2026)
        assert releases == []

    @pytest.mark.asyncio
    async def test_only_enabled_capability(self, db, make_indexer, rate_limiter, search_queue):
        make_indexer(enable_automatic_search=False)
        gateway = IndexerGateway(rate_limiter, search_queue, transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text=TORZNAB_FEED)
        ))

        assert await gateway.search_movies(db, "Masters of the Universe", 2026) == []
        assert len(await gateway.search_movies(db, "Masters of the Universe", 2026, interactive=True)) == 2

    @pytest.mark.asyncio
    async def test_rss_fetch_errors_yield_empty_list(self, db, make_indexer, rate_limiter):
        indexer = make_indexer()
        gateway = IndexerGateway(rate_limiter, transport=httpx.MockTransport(
            lambda request: httpx.Response(400, text="nope")
        ))
        assert await gateway.fetch_rss(indexer) == []
