"""
SQL Library Adapter

Default LibraryAdapter reading the movies/series/episodes tables of the
application database.
"""

import os
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from acquirarr.adapters.library_adapter import (
    LibraryAdapter, WantedEpisode, WantedMovie, WantedSeason,
)
from acquirarr.models.library import Episode, LibraryExclusion, Movie, Series
from acquirarr.services.release_parser import is_proper, is_repack


class SqlLibraryAdapter(LibraryAdapter):

    def __init__(self, db: Session):
        self.db = db

    # ===========================================================================
    # Snapshot builders
    # ===========================================================================

    @staticmethod
    def _movie_snapshot(movie: Movie) -> WantedMovie:
        file_name = os.path.basename(movie.file_path) if movie.file_path else ""
        return WantedMovie(
            id=movie.id,
            title=movie.title,
            year=movie.year,
            quality_profile_id=movie.quality_profile_id,
            monitored=movie.monitored,
            has_file=movie.has_file,
            current_quality=movie.file_quality,
            current_is_proper=is_proper(file_name),
            current_is_repack=is_repack(file_name),
            folder_path=movie.folder_path,
            tmdb_id=movie.tmdb_id,
        )

    @staticmethod
    def _episode_snapshot(episode: Episode, series: Series) -> WantedEpisode:
        file_name = os.path.basename(episode.file_path) if episode.file_path else ""
        return WantedEpisode(
            id=episode.id,
            series_id=series.id,
            series_title=series.title,
            season_number=episode.season_number,
            episode_number=episode.episode_number,
            quality_profile_id=series.quality_profile_id,
            monitored=episode.monitored,
            has_file=episode.has_file,
            current_quality=episode.file_quality,
            current_is_proper=is_proper(file_name),
            current_is_repack=is_repack(file_name),
            folder_path=series.folder_path,
            air_date=episode.air_date,
        )

    def _monitored_episodes(self):
        return (
            self.db.query(Episode, Series)
            .join(Series, Episode.series_id == Series.id)
            .filter(Episode.monitored == True, Series.monitored == True)  # noqa: E712
        )

    @staticmethod
    def _season_snapshots(rows) -> List[WantedSeason]:
        grouped: Dict[tuple, list] = defaultdict(list)
        series_by_key = {}
        for episode, series in rows:
            key = (series.id, episode.season_number)
            grouped[key].append(episode)
            series_by_key[key] = series

        seasons = []
        for key, episodes in grouped.items():
            series = series_by_key[key]
            seasons.append(WantedSeason(
                series_id=series.id,
                series_title=series.title,
                season_number=key[1],
                quality_profile_id=series.quality_profile_id,
                folder_path=series.folder_path,
                episode_numbers=sorted(e.episode_number for e in episodes),
                missing_episode_numbers=sorted(e.episode_number for e in episodes if not e.has_file),
            ))
        return seasons

    # ===========================================================================
    # LibraryAdapter
    # ===========================================================================

    def find_wanted_movies(self) -> List[WantedMovie]:
        movies = self.db.query(Movie).filter(Movie.monitored == True).all()  # noqa: E712
        return [self._movie_snapshot(m) for m in movies]

    def find_wanted_episodes(self, season_number: Optional[int] = None,
                             episode_number: Optional[int] = None) -> List[WantedEpisode]:
        query = self._monitored_episodes()
        if season_number is not None:
            query = query.filter(Episode.season_number == season_number)
        if episode_number is not None:
            query = query.filter(Episode.episode_number == episode_number)
        return [self._episode_snapshot(e, s) for e, s in query.all()]

    def find_wanted_seasons(self, season_number: int) -> List[WantedSeason]:
        rows = self._monitored_episodes().filter(Episode.season_number == season_number).all()
        return self._season_snapshots(rows)

    def get_movie(self, movie_id: int) -> Optional[WantedMovie]:
        movie = self.db.query(Movie).filter(Movie.id == movie_id).first()
        return self._movie_snapshot(movie) if movie else None

    def get_episode(self, series_id: int, season_number: int,
                    episode_number: int) -> Optional[WantedEpisode]:
        row = (
            self.db.query(Episode, Series)
            .join(Series, Episode.series_id == Series.id)
            .filter(
                Series.id == series_id,
                Episode.season_number == season_number,
                Episode.episode_number == episode_number,
            )
            .first()
        )
        return self._episode_snapshot(*row) if row else None

    def get_season(self, series_id: int, season_number: int) -> Optional[WantedSeason]:
        rows = (
            self._monitored_episodes()
            .filter(Series.id == series_id, Episode.season_number == season_number)
            .all()
        )
        seasons = self._season_snapshots(rows)
        return seasons[0] if seasons else None

    def find_missing_movies(self) -> List[WantedMovie]:
        movies = (
            self.db.query(Movie)
            .filter(Movie.monitored == True, Movie.has_file == False)  # noqa: E712
            .order_by(Movie.added_at.desc())
            .all()
        )
        return [self._movie_snapshot(m) for m in movies]

    def find_missing_episodes(self) -> List[WantedEpisode]:
        rows = (
            self._monitored_episodes()
            .filter(
                Episode.has_file == False,  # noqa: E712
                Episode.season_number > 0,
                Episode.air_date.isnot(None),
                Episode.air_date <= date.today(),
            )
            .order_by(Episode.air_date.desc())
            .all()
        )
        return [self._episode_snapshot(e, s) for e, s in rows]

    def find_upgradable_movies(self) -> List[WantedMovie]:
        movies = (
            self.db.query(Movie)
            .filter(Movie.monitored == True, Movie.has_file == True)  # noqa: E712
            .all()
        )
        return [self._movie_snapshot(m) for m in movies]

    def find_upgradable_episodes(self) -> List[WantedEpisode]:
        rows = (
            self._monitored_episodes()
            .filter(Episode.has_file == True, Episode.season_number > 0)  # noqa: E712
            .all()
        )
        return [self._episode_snapshot(e, s) for e, s in rows]

    def is_excluded(self, external_id: int, media_type: str) -> bool:
        return (
            self.db.query(LibraryExclusion.id)
            .filter(
                LibraryExclusion.external_id == external_id,
                LibraryExclusion.media_type == media_type,
            )
            .first()
            is not None
        )

    def mark_movie_file(self, movie_id: int, file_path: str, quality: str) -> None:
        movie = self.db.query(Movie).filter(Movie.id == movie_id).first()
        if not movie:
            return
        movie.has_file = True
        movie.file_path = file_path
        movie.file_quality = quality
        self.db.commit()

    def mark_episode_file(self, series_id: int, season_number: int, episode_number: int,
                          file_path: str, quality: str) -> None:
        episode = (
            self.db.query(Episode)
            .filter(
                Episode.series_id == series_id,
                Episode.season_number == season_number,
                Episode.episode_number == episode_number,
            )
            .first()
        )
        if not episode:
            return
        episode.has_file = True
        episode.file_path = file_path
        episode.file_quality = quality
        self.db.commit()
