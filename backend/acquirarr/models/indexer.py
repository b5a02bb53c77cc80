"""
Indexer Database Model

Stores the Torznab/Newznab endpoints releases are searched on.

Features:
- Three independent capability flags (RSS, automatic search, interactive search)
- Priority ordering (lower value is queried first)
- API URL normalization (every Torznab/Newznab endpoint lives under /api)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import Session

from .base import Base


class IndexerKind(str, Enum):
    """Indexer protocol families."""
    TORZNAB = "torznab"
    NEWZNAB = "newznab"


class Indexer(Base):
    """
    A configured search endpoint.

    Rows are managed by an operator; the acquisition engine only reads them
    and orders them by priority.
    """

    __tablename__ = 'indexers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    kind = Column(String(20), nullable=False, default=IndexerKind.TORZNAB.value)
    url = Column(String(500), nullable=False)
    api_key = Column(String(255), nullable=True)

    enabled = Column(Boolean, nullable=False, default=True)
    enable_rss = Column(Boolean, nullable=False, default=True)
    enable_automatic_search = Column(Boolean, nullable=False, default=True)
    enable_interactive_search = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=50)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def api_url(self) -> str:
        """Base URL with a trailing /api segment."""
        base = (self.url or "").rstrip("/")
        if not base.endswith("/api"):
            base = f"{base}/api"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind,
            'url': self.url,
            'api_key': '***' if self.api_key else None,
            'enabled': self.enabled,
            'enable_rss': self.enable_rss,
            'enable_automatic_search': self.enable_automatic_search,
            'enable_interactive_search': self.enable_interactive_search,
            'priority': self.priority,
        }

    # ===========================================================================
    # Query Methods
    # ===========================================================================

    @classmethod
    def _enabled_query(cls, db: Session):
        return db.query(cls).filter(cls.enabled == True)  # noqa: E712

    @classmethod
    def _ordered(cls, query) -> List['Indexer']:
        return query.order_by(cls.priority.asc(), cls.name.asc()).all()

    @classmethod
    def get_rss_enabled(cls, db: Session) -> List['Indexer']:
        """Indexers polled by the RSS loop, in priority order."""
        return cls._ordered(cls._enabled_query(db).filter(cls.enable_rss == True))  # noqa: E712

    @classmethod
    def get_automatic_search_enabled(cls, db: Session) -> List['Indexer']:
        return cls._ordered(
            cls._enabled_query(db).filter(cls.enable_automatic_search == True)  # noqa: E712
        )

    @classmethod
    def get_interactive_search_enabled(cls, db: Session) -> List['Indexer']:
        return cls._ordered(
            cls._enabled_query(db).filter(cls.enable_interactive_search == True)  # noqa: E712
        )

    @classmethod
    def get_by_id(cls, db: Session, indexer_id: int) -> 'Indexer':
        return db.query(cls).filter(cls.id == indexer_id).first()

    def __repr__(self) -> str:
        return f"<Indexer(id={self.id}, name='{self.name}', kind={self.kind}, priority={self.priority})>"
