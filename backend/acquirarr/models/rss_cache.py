"""
RSS Cache Model

Remembers every feed item seen per indexer so a polling cycle only matches
items it has not processed before. Rows are purged after a retention window.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Integer, JSON, String, Text, UniqueConstraint, func
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base import Base


class RssCacheEntry(Base):
    __tablename__ = 'rss_releases'
    __table_args__ = (
        UniqueConstraint('indexer_id', 'guid', name='uq_rss_indexer_guid'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    indexer_id = Column(Integer, nullable=False, index=True)
    guid = Column(String(500), nullable=False)
    title = Column(String(500), nullable=False)
    download_url = Column(Text, nullable=True)
    size = Column(BigInteger, nullable=True)
    publish_date = Column(DateTime, nullable=True)
    categories = Column(JSON, nullable=True)
    protocol = Column(String(10), nullable=True)
    grabbed = Column(Boolean, nullable=False, default=False)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'indexer_id': self.indexer_id,
            'guid': self.guid,
            'title': self.title,
            'download_url': self.download_url,
            'size': self.size,
            'publish_date': self.publish_date.isoformat() if self.publish_date else None,
            'categories': self.categories or [],
            'protocol': self.protocol,
            'grabbed': self.grabbed,
            'processed': self.processed,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    # ===========================================================================
    # Query Methods
    # ===========================================================================

    @classmethod
    def insert_if_new(
        cls,
        db: Session,
        indexer_id: int,
        guid: str,
        title: str,
        download_url: Optional[str] = None,
        size: Optional[int] = None,
        publish_date: Optional[datetime] = None,
        categories: Optional[List[str]] = None,
        protocol: Optional[str] = None,
    ) -> bool:
        """
        Insert-or-ignore keyed by (indexer_id, guid).

        Returns:
            True only when a new row was written
        """
        exists = (
            db.query(cls.id)
            .filter(cls.indexer_id == indexer_id, cls.guid == guid)
            .first()
        )
        if exists:
            return False

        db.add(cls(
            indexer_id=indexer_id,
            guid=guid,
            title=title,
            download_url=download_url,
            size=size,
            publish_date=publish_date,
            categories=categories or [],
            protocol=protocol,
        ))
        try:
            db.commit()
        except IntegrityError:
            # Concurrent insert of the same pair won the race
            db.rollback()
            return False
        return True

    @classmethod
    def mark(cls, db: Session, indexer_id: int, guid: str, grabbed: bool = False) -> None:
        """Flag an item as processed, and grabbed when a download was created."""
        values = {'processed': True}
        if grabbed:
            values['grabbed'] = True
        db.query(cls).filter(cls.indexer_id == indexer_id, cls.guid == guid).update(values)
        db.commit()

    @classmethod
    def purge_older_than(cls, db: Session, days: int) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        deleted = db.query(cls).filter(cls.created_at < cutoff).delete(synchronize_session=False)
        db.commit()
        return deleted

    @classmethod
    def get_recent(cls, db: Session, limit: int = 100) -> List['RssCacheEntry']:
        return db.query(cls).order_by(cls.created_at.desc()).limit(limit).all()

    @classmethod
    def get_stats(cls, db: Session) -> Dict[str, int]:
        total = db.query(func.count(cls.id)).scalar() or 0
        grabbed = db.query(func.count(cls.id)).filter(cls.grabbed == True).scalar() or 0  # noqa: E712
        processed = db.query(func.count(cls.id)).filter(cls.processed == True).scalar() or 0  # noqa: E712
        return {'total': total, 'grabbed': grabbed, 'processed': processed}

    def __repr__(self) -> str:
        return f"<RssCacheEntry(indexer_id={self.indexer_id}, guid='{self.guid}', grabbed={self.grabbed})>"
