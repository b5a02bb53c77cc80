"""
Download Client Database Model

Connection details for the torrent (qBittorrent) and usenet (SABnzbd)
clients grabs are submitted to.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import Session

from .base import Base


class DownloadClientKind(str, Enum):
    QBITTORRENT = "qbittorrent"
    SABNZBD = "sabnzbd"

    @property
    def protocol(self) -> str:
        return "torrent" if self is DownloadClientKind.QBITTORRENT else "usenet"


class DownloadClient(Base):
    """
    A configured download client.

    remove_completed / remove_failed control whether the sync engine removes
    the item from the client once it is imported or has failed.
    """

    __tablename__ = 'download_clients'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    kind = Column(String(20), nullable=False, default=DownloadClientKind.QBITTORRENT.value)

    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=8080)
    use_ssl = Column(Boolean, nullable=False, default=False)
    url_base = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    password = Column(String(255), nullable=True)
    api_key = Column(String(255), nullable=True)

    category = Column(String(100), nullable=True)
    category_movies = Column(String(100), nullable=True)
    category_tv = Column(String(100), nullable=True)
    tags = Column(String(255), nullable=True)

    priority = Column(Integer, nullable=False, default=1)
    enabled = Column(Boolean, nullable=False, default=True)
    remove_completed = Column(Boolean, nullable=False, default=False)
    remove_failed = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def base_url(self) -> str:
        """scheme://host:port[/url_base] without a trailing slash."""
        scheme = "https" if self.use_ssl else "http"
        host = self.host
        if host.startswith("http://") or host.startswith("https://"):
            host = host.split("://", 1)[1]
        host = host.rstrip("/")
        url = f"{scheme}://{host}:{self.port}"
        if self.url_base:
            url = f"{url}/{self.url_base.strip('/')}"
        return url

    def category_for(self, media_kind: str) -> Optional[str]:
        """Client category for a media kind, falling back to the generic category."""
        if media_kind == "movie" and self.category_movies:
            return self.category_movies
        if media_kind == "tv" and self.category_tv:
            return self.category_tv
        return self.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind,
            'host': self.host,
            'port': self.port,
            'use_ssl': self.use_ssl,
            'url_base': self.url_base,
            'category': self.category,
            'category_movies': self.category_movies,
            'category_tv': self.category_tv,
            'priority': self.priority,
            'enabled': self.enabled,
            'remove_completed': self.remove_completed,
            'remove_failed': self.remove_failed,
        }

    @classmethod
    def get_enabled(cls, db: Session) -> List['DownloadClient']:
        return (
            db.query(cls)
            .filter(cls.enabled == True)  # noqa: E712
            .order_by(cls.priority.asc(), cls.id.asc())
            .all()
        )

    @classmethod
    def get_by_id(cls, db: Session, client_id: int) -> Optional['DownloadClient']:
        return db.query(cls).filter(cls.id == client_id).first()

    def __repr__(self) -> str:
        return f"<DownloadClient(id={self.id}, name='{self.name}', kind={self.kind})>"
