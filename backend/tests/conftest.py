"""
Pytest configuration for backend tests.

This file configures pytest for the backend test suite, including
fixtures and test discovery settings.

Every test gets a fresh in-memory SQLite database. StaticPool keeps a single
connection so sessions opened by background work (re-search after a failed
download, scheduler runs) see the same data as the test session.
"""

import os
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add backend directory to Python path for imports
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from acquirarr.models import (  # noqa: E402
    Base, DownloadClient, Episode, Indexer, Movie, QualityProfile, Series,
)
from acquirarr.services.background import TaskSupervisor  # noqa: E402
from acquirarr.services.rate_limiter import IndexerRateLimiter, SearchQueue  # noqa: E402

HD_ITEMS = [
    {"quality": "HDTV-720p", "allowed": True},
    {"quality": "WEB-720p", "allowed": True, "qualities": ["WEBDL-720p", "WEBRip-720p"]},
    {"quality": "Bluray-720p", "allowed": True},
    {"quality": "HDTV-1080p", "allowed": True},
    {"quality": "WEB-1080p", "allowed": True, "qualities": ["WEBDL-1080p", "WEBRip-1080p"]},
    {"quality": "Bluray-1080p", "allowed": True},
    {"quality": "Remux-1080p", "allowed": False},
    {"quality": "WEB-2160p", "allowed": False, "qualities": ["WEBDL-2160p", "WEBRip-2160p"]},
    {"quality": "CAM", "allowed": False},
]


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# Throttling (no real waiting in tests)
# ============================================================================

@pytest.fixture
def rate_limiter():
    return IndexerRateLimiter(global_interval=0, indexer_interval=0)


@pytest.fixture
def search_queue():
    return SearchQueue(min_interval=0)


@pytest.fixture
def supervisor():
    return TaskSupervisor()


# ============================================================================
# Model factories
# ============================================================================

@pytest.fixture
def make_profile(db):
    def _make(name="HD-1080p", cutoff="Bluray-1080p", upgrade_allowed=True,
              min_custom_format_score=0, items=None, media_type="both"):
        profile = QualityProfile(
            name=name,
            media_type=media_type,
            cutoff=cutoff,
            upgrade_allowed=upgrade_allowed,
            min_custom_format_score=min_custom_format_score,
            items=items if items is not None else HD_ITEMS,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile
    return _make


@pytest.fixture
def make_movie(db, make_profile):
    def _make(title="Masters of the Universe", year=2026, profile=None, **fields):
        profile = profile or make_profile()
        movie = Movie(
            tmdb_id=fields.pop("tmdb_id", 1000),
            title=title,
            year=year,
            monitored=fields.pop("monitored", True),
            quality_profile_id=profile.id,
            folder_path=fields.pop("folder_path", f"/data/movies/{title}"),
            **fields,
        )
        db.add(movie)
        db.commit()
        db.refresh(movie)
        return movie
    return _make


@pytest.fixture
def make_series(db, make_profile):
    def _make(title="The Expanse", profile=None, episodes=((1, 1), (1, 2)), aired=True, **fields):
        profile = profile or make_profile()
        series = Series(
            tvdb_id=fields.pop("tvdb_id", 2000),
            title=title,
            year=fields.pop("year", 2015),
            monitored=True,
            quality_profile_id=profile.id,
            folder_path=f"/data/tv/{title}",
        )
        db.add(series)
        db.commit()
        air_date = date.today() - timedelta(days=30) if aired else date.today() + timedelta(days=30)
        for season_number, episode_number in episodes:
            db.add(Episode(
                series_id=series.id,
                season_number=season_number,
                episode_number=episode_number,
                title=f"Episode {episode_number}",
                air_date=air_date,
                monitored=True,
            ))
        db.commit()
        db.refresh(series)
        return series
    return _make


@pytest.fixture
def make_indexer(db):
    def _make(name="Jackett", kind="torznab", url="http://indexer.local", **fields):
        indexer = Indexer(name=name, kind=kind, url=url, api_key=fields.pop("api_key", "secret"), **fields)
        db.add(indexer)
        db.commit()
        db.refresh(indexer)
        return indexer
    return _make


@pytest.fixture
def make_client(db):
    def _make(name="qBittorrent", kind="qbittorrent", host="qbit.local", port=8080, **fields):
        client = DownloadClient(
            name=name,
            kind=kind,
            host=host,
            port=port,
            username=fields.pop("username", "admin"),
            password=fields.pop("password", "adminadmin"),
            **fields,
        )
        db.add(client)
        db.commit()
        db.refresh(client)
        return client
    return _make
