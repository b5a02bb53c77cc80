"""
Download Database Model

One row per grab, from submission to the download client through import
into the library.

Lifecycle:
    QUEUED -> DOWNLOADING -> COMPLETED -> IMPORTING -> IMPORTED
                   |             |            |
                   +-------------+------------+--> FAILED

    Cancelling removes the item from the client and deletes the row, so
    there is no persisted CANCELLED state.

At most one active (QUEUED, DOWNLOADING or IMPORTING) download may exist per
target: a movie, or a (series, season, episode) triple. Season packs use
episode_number NULL and cover the whole season.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Session

from .base import Base


class DownloadStatus(str, Enum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    IMPORTING = "importing"
    IMPORTED = "imported"
    FAILED = "failed"


class MediaKind(str, Enum):
    MOVIE = "movie"
    TV = "tv"


ACTIVE_STATUSES = (
    DownloadStatus.QUEUED.value,
    DownloadStatus.DOWNLOADING.value,
    DownloadStatus.IMPORTING.value,
)

# Statuses the sync engine still polls the client for
SYNCABLE_STATUSES = ACTIVE_STATUSES + (DownloadStatus.COMPLETED.value,)


class Download(Base):
    """Persisted download lifecycle record."""

    __tablename__ = 'downloads'

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Target
    media_kind = Column(String(10), nullable=False, default=MediaKind.MOVIE.value)
    movie_id = Column(Integer, nullable=True, index=True)
    series_id = Column(Integer, nullable=True, index=True)
    season_number = Column(Integer, nullable=True)
    episode_number = Column(Integer, nullable=True)

    # Release
    title = Column(String(500), nullable=False)
    download_url = Column(Text, nullable=True)
    indexer = Column(String(100), nullable=True)
    quality = Column(String(50), nullable=True)
    protocol = Column(String(10), nullable=True)
    size = Column(BigInteger, nullable=True)
    seeders = Column(Integer, nullable=True)

    # Client side
    download_client_id = Column(Integer, nullable=True)
    client_handle = Column(String(100), nullable=True, index=True)
    save_path = Column(String(1000), nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=DownloadStatus.QUEUED.value, index=True)
    progress = Column(Float, nullable=False, default=0.0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_season_pack(self) -> bool:
        return self.media_kind == MediaKind.TV.value and self.episode_number is None

    def set_status(self, status: DownloadStatus, error_message: Optional[str] = None) -> None:
        """Move to a new status, stamping completion time on terminal success."""
        self.status = status.value
        if error_message is not None:
            self.error_message = error_message
        if status in (DownloadStatus.COMPLETED, DownloadStatus.IMPORTED) and not self.completed_at:
            self.completed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'media_kind': self.media_kind,
            'movie_id': self.movie_id,
            'series_id': self.series_id,
            'season_number': self.season_number,
            'episode_number': self.episode_number,
            'title': self.title,
            'download_url': self.download_url,
            'indexer': self.indexer,
            'quality': self.quality,
            'protocol': self.protocol,
            'size': self.size,
            'seeders': self.seeders,
            'download_client_id': self.download_client_id,
            'client_handle': self.client_handle,
            'save_path': self.save_path,
            'status': self.status,
            'progress': self.progress,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }

    # ===========================================================================
    # Query Methods
    # ===========================================================================

    @classmethod
    def get_by_id(cls, db: Session, download_id: int) -> Optional['Download']:
        return db.query(cls).filter(cls.id == download_id).first()

    @classmethod
    def find_active_for_movie(cls, db: Session, movie_id: int) -> Optional['Download']:
        return (
            db.query(cls)
            .filter(cls.movie_id == movie_id, cls.status.in_(ACTIVE_STATUSES))
            .first()
        )

    @classmethod
    def find_active_for_episode(cls, db: Session, series_id: int, season_number: int,
                                episode_number: int) -> Optional['Download']:
        """
        Active download covering one episode.

        A season pack for the same season also covers the episode.
        """
        return (
            db.query(cls)
            .filter(
                cls.series_id == series_id,
                cls.season_number == season_number,
                (cls.episode_number == episode_number) | (cls.episode_number.is_(None)),
                cls.status.in_(ACTIVE_STATUSES),
            )
            .first()
        )

    @classmethod
    def find_active_for_season(cls, db: Session, series_id: int,
                               season_number: int) -> Optional['Download']:
        """Any active download (single episode or pack) inside a season."""
        return (
            db.query(cls)
            .filter(
                cls.series_id == series_id,
                cls.season_number == season_number,
                cls.status.in_(ACTIVE_STATUSES),
            )
            .first()
        )

    @classmethod
    def find_by_download_url(cls, db: Session, download_url: str) -> Optional['Download']:
        """Non-failed download grabbed from the same source URL."""
        if not download_url:
            return None
        return (
            db.query(cls)
            .filter(
                cls.download_url == download_url,
                cls.status != DownloadStatus.FAILED.value,
            )
            .first()
        )

    @classmethod
    def get_syncable(cls, db: Session) -> List['Download']:
        """Downloads the sync engine still has to follow on the client."""
        return (
            db.query(cls)
            .filter(cls.status.in_(SYNCABLE_STATUSES))
            .order_by(cls.created_at.asc())
            .all()
        )

    @classmethod
    def get_recent(cls, db: Session, limit: int = 50,
                   status: Optional[str] = None) -> List['Download']:
        query = db.query(cls)
        if status:
            query = query.filter(cls.status == status)
        return query.order_by(cls.created_at.desc()).limit(limit).all()

    def __repr__(self) -> str:
        return f"<Download(id={self.id}, title='{self.title}', status={self.status})>"
