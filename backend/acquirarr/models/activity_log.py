"""
Activity Log Model

User-visible history of what the acquisition engine did to library items:
grabs, completed downloads, imports and failures.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Session

from .base import Base


class ActivityEvent(str, Enum):
    GRABBED = "grabbed"
    DOWNLOADED = "downloaded"
    IMPORTED = "imported"
    FAILED = "failed"
    BLACKLISTED = "blacklisted"


class ActivityLog(Base):
    __tablename__ = 'activity_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(20), nullable=False)  # movie, series, episode
    entity_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'event_type': self.event_type,
            'message': self.message,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def create_log(
        cls,
        db: Session,
        entity_type: str,
        entity_id: int,
        event_type: ActivityEvent,
        message: str,
        details: Optional[dict] = None,
    ) -> 'ActivityLog':
        log = cls(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type.value if isinstance(event_type, ActivityEvent) else event_type,
            message=message,
            details=details,
        )
        db.add(log)
        db.commit()
        db.refresh(log)
        return log

    @classmethod
    def get_recent(cls, db: Session, limit: int = 50) -> List['ActivityLog']:
        return db.query(cls).order_by(cls.created_at.desc()).limit(limit).all()

    @classmethod
    def get_for_entity(cls, db: Session, entity_type: str, entity_id: int,
                       limit: int = 50) -> List['ActivityLog']:
        return (
            db.query(cls)
            .filter(cls.entity_type == entity_type, cls.entity_id == entity_id)
            .order_by(cls.created_at.desc())
            .limit(limit)
            .all()
        )

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, {self.entity_type}:{self.entity_id}, event={self.event_type})>"
