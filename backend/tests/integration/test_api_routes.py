"""
Integration tests for the HTTP API

Routes run through FastAPI's TestClient against the per-test database.
The grab route uses the real GrabService with a mocked qBittorrent; search,
sync and automation services are replaced with in-memory doubles.

Tests cover:
    - Liveness and readiness probes
    - Grab: 201, 404 for unknown targets, 409 on duplicates, 502 on client refusal
    - Interactive search responses
    - Download listing and cancellation
    - Manual automation triggers
"""

from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from acquirarr.database import get_db
from acquirarr.main import app
from acquirarr.models.download import Download, DownloadStatus
from acquirarr.services.auto_search import get_auto_search_service
from acquirarr.services.download_sync import get_download_sync_service
from acquirarr.services.grab_service import GrabService, get_grab_service
from acquirarr.services.indexer_gateway import get_indexer_gateway
from acquirarr.services.releases import Release
from acquirarr.services.rss_sync import get_rss_sync_service

pytestmark = pytest.mark.integration

MAGNET = "magnet:?xt=urn:btih:c12fe1c06bba254a9dc9f519b335aa7c1367a88a&dn=Masters"
TITLE = "Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP"


def qbit(add_response="Ok."):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v2/torrents/add":
            return httpx.Response(200, text=add_response)
        return httpx.Response(200, text="Ok.")
    return httpx.MockTransport(handler)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def services(supervisor, session_factory):
    gateway = Mock()
    gateway.search_movies = AsyncMock(return_value=[
        Release(guid="g1", title=TITLE, download_url=MAGNET, size=4 * 1024 ** 3, seeders=42,
                indexer="Jackett", indexer_id=1, quality="WEBDL-1080p"),
    ])
    gateway.search_tv = AsyncMock(return_value=[])

    sync = Mock()
    sync.sync_all = AsyncMock(return_value={"synced": 2, "errors": 0})
    sync.cancel_download = AsyncMock(side_effect=lambda db, download_id, delete_files=False: download_id == 1)

    rss = Mock()
    rss.sync_all = AsyncMock(return_value={"indexers_checked": 1, "releases_found": 5, "grabbed": 1})
    rss.get_stats = Mock(return_value={"total": 5, "grabbed": 1, "processed": 5})
    rss.get_recent_releases = Mock(return_value=[])

    counts = {"total": 1, "searched": 1, "found": 0}
    search = Mock()
    search.search_all_missing = AsyncMock(return_value={"movies": counts, "episodes": counts})
    search.search_all_cutoff_unmet = AsyncMock(return_value={"movies": counts, "episodes": counts})

    return {
        "grab": GrabService(transport=qbit(), notifier=Mock(), supervisor=supervisor,
                            session_factory=session_factory),
        "gateway": gateway,
        "sync": sync,
        "rss": rss,
        "search": search,
    }


@pytest.fixture
def client(db, services):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_grab_service] = lambda: services["grab"]
    app.dependency_overrides[get_indexer_gateway] = lambda: services["gateway"]
    app.dependency_overrides[get_download_sync_service] = lambda: services["sync"]
    app.dependency_overrides[get_rss_sync_service] = lambda: services["rss"]
    app.dependency_overrides[get_auto_search_service] = lambda: services["search"]
    try:
        # No context manager: the lifespan (real database, scheduler) stays off
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def grab_body(**target):
    return {"release": {"title": TITLE, "download_url": MAGNET, "indexer": "Jackett", "seeders": 42},
            **target}


# ============================================================================
# Health
# ============================================================================

class TestHealth:

    def test_liveness(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "database": "connected"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health/ready", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


# ============================================================================
# Grab
# ============================================================================

class TestGrab:

    def test_grab_movie(self, client, make_movie, make_client):
        movie = make_movie()
        make_client()

        response = client.post("/api/grab", json=grab_body(movie_id=movie.id))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == DownloadStatus.DOWNLOADING.value
        assert data["quality"] == "WEBDL-1080p"
        assert data["client_handle"] == "c12fe1c06bba254a9dc9f519b335aa7c1367a88a"

    def test_unknown_movie(self, client):
        response = client.post("/api/grab", json=grab_body(movie_id=404))
        assert response.status_code == 404

    def test_unknown_episode(self, client, make_series):
        series = make_series()
        response = client.post("/api/grab", json=grab_body(series_id=series.id, season_number=1,
                                                            episode_number=9))
        assert response.status_code == 404

    def test_invalid_target(self, client):
        assert client.post("/api/grab", json=grab_body()).status_code == 422
        assert client.post("/api/grab", json=grab_body(series_id=1)).status_code == 422

    def test_duplicate_grab_conflicts(self, client, make_movie, make_client):
        movie = make_movie()
        make_client()
        first = client.post("/api/grab", json=grab_body(movie_id=movie.id)).json()

        response = client.post("/api/grab", json=grab_body(movie_id=movie.id))

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["existing_download_id"] == first["id"]
        assert detail["reason"] == "active"

    def test_client_refusal(self, client, services, supervisor, session_factory, make_movie, make_client):
        movie = make_movie()
        make_client()
        app.dependency_overrides[get_grab_service] = lambda: GrabService(
            transport=qbit(add_response="Fails."), notifier=Mock(), supervisor=supervisor,
            session_factory=session_factory,
        )

        response = client.post("/api/grab", json=grab_body(movie_id=movie.id))
        assert response.status_code == 502


# ============================================================================
# Search
# ============================================================================

class TestSearch:

    def test_movie_search(self, client, services):
        response = client.post("/api/search/movie", json={"title": "Masters of the Universe", "year": 2026})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["releases"][0]["title"] == TITLE
        assert data["releases"][0]["seeders"] == 42
        assert services["gateway"].search_movies.await_args.kwargs == {"interactive": True}

    def test_episode_requires_season(self, client):
        response = client.post("/api/search/episode", json={"title": "The Expanse", "episode": 2})
        assert response.status_code == 422

    def test_episode_search(self, client, services):
        response = client.post("/api/search/episode", json={"title": "The Expanse", "season": 3, "episode": 7})
        assert response.json() == {"total": 0, "releases": []}
        assert services["gateway"].search_tv.await_args.args[1:] == ("The Expanse", 3, 7)


# ============================================================================
# Downloads
# ============================================================================

class TestDownloads:

    def test_list_and_filter(self, client, db):
        db.add_all([
            Download(media_kind="movie", movie_id=1, title="A", status=DownloadStatus.DOWNLOADING.value),
            Download(media_kind="movie", movie_id=2, title="B", status=DownloadStatus.FAILED.value),
        ])
        db.commit()

        assert client.get("/api/downloads").json()["total"] == 2
        failed = client.get("/api/downloads", params={"status": "failed"}).json()
        assert [d["title"] for d in failed["downloads"]] == ["B"]

    def test_cancel(self, client, services):
        response = client.delete("/api/downloads/1", params={"delete_files": True})
        assert response.json()["success"] is True
        assert services["sync"].cancel_download.await_args.args[1:] == (1, True)

    def test_cancel_unknown(self, client):
        assert client.delete("/api/downloads/77").status_code == 404

    def test_sync(self, client):
        assert client.post("/api/downloads/sync").json() == {"synced": 2, "errors": 0}


# ============================================================================
# Automation
# ============================================================================

class TestAutomation:

    def test_rss_sync(self, client):
        data = client.post("/api/automation/rss-sync").json()
        assert data["grabbed"] == 1
        assert data["skipped"] is False

    def test_missing_and_cutoff_search(self, client, services):
        assert client.post("/api/automation/search-missing").json()["movies"]["searched"] == 1
        assert client.post("/api/automation/search-cutoff").status_code == 200
        services["search"].search_all_cutoff_unmet.assert_awaited_once()

    def test_rss_stats(self, client):
        assert client.get("/api/automation/rss/stats").json() == {"total": 5, "grabbed": 1, "processed": 5}
