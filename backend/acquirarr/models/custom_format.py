"""
Custom Format Models

A custom format is a named set of specifications evaluated against a release
title (and size). How much a matching format is worth is decided per quality
profile through CustomFormatScore rows, so the same format can be a bonus in
one profile and a penalty in another.

Specification JSON shape (one entry of `specifications`):
    {
        "name": "x265",
        "implementation": "ReleaseTitleSpecification",
        "negate": false,
        "required": false,
        "fields": {"value": "x265|HEVC"}
    }
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Session

from .base import Base


class CustomFormat(Base):
    __tablename__ = 'custom_formats'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    media_type = Column(String(10), nullable=False, default='both')  # movie, series, both
    specifications = Column(JSON, nullable=False, default=list)
    trash_id = Column(String(100), nullable=True)
    include_when_renaming = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def applies_to(self, media_type: Optional[str]) -> bool:
        if not media_type or self.media_type in (None, 'both'):
            return True
        return self.media_type == media_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'media_type': self.media_type,
            'specifications': self.specifications or [],
            'trash_id': self.trash_id,
            'include_when_renaming': self.include_when_renaming,
        }

    @classmethod
    def get_all(cls, db: Session) -> List['CustomFormat']:
        return db.query(cls).order_by(cls.name.asc()).all()

    def __repr__(self) -> str:
        return f"<CustomFormat(id={self.id}, name='{self.name}')>"


class CustomFormatScore(Base):
    """Score a quality profile assigns to a custom format."""

    __tablename__ = 'custom_format_scores'
    __table_args__ = (
        UniqueConstraint('quality_profile_id', 'custom_format_id', name='uq_profile_format'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    quality_profile_id = Column(Integer, ForeignKey('quality_profiles.id', ondelete='CASCADE'), nullable=False)
    custom_format_id = Column(Integer, ForeignKey('custom_formats.id', ondelete='CASCADE'), nullable=False)
    score = Column(Integer, nullable=False, default=0)

    @classmethod
    def scores_for_profile(cls, db: Session, profile_id: int) -> Dict[int, int]:
        """custom_format_id -> score for one profile."""
        rows = db.query(cls).filter(cls.quality_profile_id == profile_id).all()
        return {row.custom_format_id: row.score for row in rows}

    @classmethod
    def set_score(cls, db: Session, profile_id: int, custom_format_id: int, score: int) -> 'CustomFormatScore':
        row = (
            db.query(cls)
            .filter(cls.quality_profile_id == profile_id, cls.custom_format_id == custom_format_id)
            .first()
        )
        if row:
            row.score = score
        else:
            row = cls(quality_profile_id=profile_id, custom_format_id=custom_format_id, score=score)
            db.add(row)
        db.commit()
        db.refresh(row)
        return row
