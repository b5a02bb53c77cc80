"""
Release Blacklist Model

Releases that failed for a target and must not be grabbed again for it.
Entries never expire; deleting one is an operator decision.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Session

from .base import Base


def normalize_release_title(title: str) -> str:
    return (title or "").strip().lower()


class BlacklistEntry(Base):
    """
    A blacklisted release title for a movie or an episode/season.

    For TV entries, a NULL season or episode acts as a wildcard so a
    blacklisted season pack also blocks the same title for each episode.
    """

    __tablename__ = 'release_blacklist'

    id = Column(Integer, primary_key=True, autoincrement=True)
    movie_id = Column(Integer, nullable=True, index=True)
    series_id = Column(Integer, nullable=True, index=True)
    season_number = Column(Integer, nullable=True)
    episode_number = Column(Integer, nullable=True)
    release_title = Column(String(500), nullable=False)
    indexer = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'movie_id': self.movie_id,
            'series_id': self.series_id,
            'season_number': self.season_number,
            'episode_number': self.episode_number,
            'release_title': self.release_title,
            'indexer': self.indexer,
            'reason': self.reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def add(
        cls,
        db: Session,
        release_title: str,
        movie_id: Optional[int] = None,
        series_id: Optional[int] = None,
        season_number: Optional[int] = None,
        episode_number: Optional[int] = None,
        indexer: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> 'BlacklistEntry':
        entry = cls(
            release_title=release_title.strip(),
            movie_id=movie_id,
            series_id=series_id,
            season_number=season_number,
            episode_number=episode_number,
            indexer=indexer,
            reason=reason,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    @classmethod
    def is_blacklisted_for_movie(cls, db: Session, movie_id: int, release_title: str) -> bool:
        return (
            db.query(cls.id)
            .filter(
                cls.movie_id == movie_id,
                func.lower(func.trim(cls.release_title)) == normalize_release_title(release_title),
            )
            .first()
            is not None
        )

    @classmethod
    def is_blacklisted_for_episode(cls, db: Session, series_id: int, season_number: Optional[int],
                                   episode_number: Optional[int], release_title: str) -> bool:
        query = db.query(cls.id).filter(
            cls.series_id == series_id,
            func.lower(func.trim(cls.release_title)) == normalize_release_title(release_title),
        )
        if season_number is not None:
            query = query.filter((cls.season_number.is_(None)) | (cls.season_number == season_number))
        if episode_number is not None:
            query = query.filter((cls.episode_number.is_(None)) | (cls.episode_number == episode_number))
        return query.first() is not None

    @classmethod
    def titles_for_movie(cls, db: Session, movie_id: int) -> List[str]:
        rows = db.query(cls.release_title).filter(cls.movie_id == movie_id).all()
        return [normalize_release_title(r[0]) for r in rows]

    @classmethod
    def titles_for_episode(cls, db: Session, series_id: int, season_number: int,
                           episode_number: Optional[int]) -> List[str]:
        query = db.query(cls.release_title).filter(
            cls.series_id == series_id,
            (cls.season_number.is_(None)) | (cls.season_number == season_number),
        )
        if episode_number is not None:
            query = query.filter((cls.episode_number.is_(None)) | (cls.episode_number == episode_number))
        return [normalize_release_title(r[0]) for r in query.all()]

    def __repr__(self) -> str:
        return f"<BlacklistEntry(id={self.id}, title='{self.release_title}')>"
