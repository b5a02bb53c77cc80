"""
Quality Profile Model

Policy object attached to every movie and series: which quality tiers are
acceptable, the tier at which upgrading stops (cutoff) and the minimum
custom format score a release needs.

Item JSON shape:
    [{"quality": "Bluray-1080p", "allowed": true},
     {"quality": "WEB-1080p", "allowed": true, "qualities": ["WEBDL-1080p", "WEBRip-1080p"]}]

A grouped item ("qualities" present) allows every member quality.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from sqlalchemy.orm import Session

from .base import Base


class QualityProfile(Base):
    __tablename__ = 'quality_profiles'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    media_type = Column(String(10), nullable=False, default='both')
    cutoff = Column(String(50), nullable=False)
    upgrade_allowed = Column(Boolean, nullable=False, default=True)
    min_custom_format_score = Column(Integer, nullable=False, default=0)
    items = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'media_type': self.media_type,
            'cutoff': self.cutoff,
            'upgrade_allowed': self.upgrade_allowed,
            'min_custom_format_score': self.min_custom_format_score,
            'items': self.items or [],
        }

    @classmethod
    def get_by_id(cls, db: Session, profile_id: int) -> Optional['QualityProfile']:
        return db.query(cls).filter(cls.id == profile_id).first()

    def __repr__(self) -> str:
        return f"<QualityProfile(id={self.id}, name='{self.name}', cutoff={self.cutoff})>"
