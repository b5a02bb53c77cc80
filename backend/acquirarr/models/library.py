"""
Library Read Models

Minimal tables behind the default SQL library adapter. The acquisition
engine never creates library entries; it reads wanted items and flips the
"has file" state after a successful import.
"""

from datetime import date, datetime
from typing import Any, Dict

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base


class Movie(Base):
    __tablename__ = 'movies'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=True, index=True)
    title = Column(String(500), nullable=False)
    year = Column(Integer, nullable=True)
    monitored = Column(Boolean, nullable=False, default=True)
    quality_profile_id = Column(Integer, ForeignKey('quality_profiles.id'), nullable=True)
    folder_path = Column(String(1000), nullable=True)
    has_file = Column(Boolean, nullable=False, default=False)
    file_path = Column(String(1000), nullable=True)
    file_quality = Column(String(50), nullable=True)
    added_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tmdb_id': self.tmdb_id,
            'title': self.title,
            'year': self.year,
            'monitored': self.monitored,
            'quality_profile_id': self.quality_profile_id,
            'has_file': self.has_file,
            'file_quality': self.file_quality,
        }

    def __repr__(self) -> str:
        return f"<Movie(id={self.id}, title='{self.title}', year={self.year})>"


class Series(Base):
    __tablename__ = 'series'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tvdb_id = Column(Integer, nullable=True, index=True)
    title = Column(String(500), nullable=False)
    year = Column(Integer, nullable=True)
    monitored = Column(Boolean, nullable=False, default=True)
    quality_profile_id = Column(Integer, ForeignKey('quality_profiles.id'), nullable=True)
    folder_path = Column(String(1000), nullable=True)
    added_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    episodes = relationship('Episode', back_populates='series', cascade='all, delete-orphan')

    def __repr__(self) -> str:
        return f"<Series(id={self.id}, title='{self.title}')>"


class Episode(Base):
    __tablename__ = 'episodes'
    __table_args__ = (
        UniqueConstraint('series_id', 'season_number', 'episode_number', name='uq_episode_number'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    series_id = Column(Integer, ForeignKey('series.id', ondelete='CASCADE'), nullable=False, index=True)
    season_number = Column(Integer, nullable=False)
    episode_number = Column(Integer, nullable=False)
    title = Column(String(500), nullable=True)
    air_date = Column(Date, nullable=True)
    monitored = Column(Boolean, nullable=False, default=True)
    has_file = Column(Boolean, nullable=False, default=False)
    file_path = Column(String(1000), nullable=True)
    file_quality = Column(String(50), nullable=True)

    series = relationship('Series', back_populates='episodes')

    @property
    def has_aired(self) -> bool:
        return self.air_date is not None and self.air_date <= date.today()

    def __repr__(self) -> str:
        return (
            f"<Episode(id={self.id}, series_id={self.series_id}, "
            f"S{self.season_number:02d}E{self.episode_number:02d})>"
        )


class LibraryExclusion(Base):
    """External catalog ids the operator never wants acquired."""

    __tablename__ = 'library_exclusions'
    __table_args__ = (
        UniqueConstraint('external_id', 'media_type', name='uq_exclusion'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)  # movie, tv
    title = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
