"""
LibraryAdapter Abstract Base Class for Acquirarr

The library (movies, series, episodes, their files and quality profiles) is
owned by another part of the system. The acquisition engine reads snapshots
of wanted items at the start of each cycle through this interface and
reports imported files back through it.

Architecture Pattern:
    - RSS sync, automatic search and import depend only on LibraryAdapter
    - SqlLibraryAdapter is the default implementation (library tables in the
      same database)
    - Tests substitute in-memory fakes or mocks

Contract Methods:
    - find_wanted_movies(): monitored movies (with or without a file)
    - find_wanted_episodes(): monitored episodes of monitored series
    - find_wanted_seasons(): seasons with monitored episodes
    - get_movie() / get_episode() / get_season(): single item snapshots
    - find_missing_*() / find_upgradable_*(): batch search inputs
    - is_excluded(): operator exclusion list
    - mark_movie_file() / mark_episode_file(): record an imported file
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass(frozen=True)
class WantedMovie:
    id: int
    title: str
    year: Optional[int]
    quality_profile_id: Optional[int]
    monitored: bool = True
    has_file: bool = False
    current_quality: Optional[str] = None
    current_is_proper: bool = False
    current_is_repack: bool = False
    folder_path: Optional[str] = None
    tmdb_id: Optional[int] = None


@dataclass(frozen=True)
class WantedEpisode:
    id: int
    series_id: int
    series_title: str
    season_number: int
    episode_number: int
    quality_profile_id: Optional[int]
    monitored: bool = True
    has_file: bool = False
    current_quality: Optional[str] = None
    current_is_proper: bool = False
    current_is_repack: bool = False
    folder_path: Optional[str] = None
    air_date: Optional[date] = None


@dataclass(frozen=True)
class WantedSeason:
    series_id: int
    series_title: str
    season_number: int
    quality_profile_id: Optional[int]
    folder_path: Optional[str] = None
    episode_numbers: List[int] = field(default_factory=list)
    missing_episode_numbers: List[int] = field(default_factory=list)

    @property
    def has_missing(self) -> bool:
        return bool(self.missing_episode_numbers)


class LibraryAdapter(ABC):
    """
    Read access to wanted library items plus file bookkeeping after import.

    Implementations return immutable snapshots; the engine never mutates
    library rows except through mark_*_file().
    """

    @abstractmethod
    def find_wanted_movies(self) -> List[WantedMovie]:
        """Monitored movies, including those that already have a file."""

    @abstractmethod
    def find_wanted_episodes(self, season_number: Optional[int] = None,
                             episode_number: Optional[int] = None) -> List[WantedEpisode]:
        """
        Monitored episodes of monitored series.

        Args:
            season_number: Only this season when given
            episode_number: Only this episode number when given
        """

    @abstractmethod
    def find_wanted_seasons(self, season_number: int) -> List[WantedSeason]:
        """Monitored series that have monitored episodes in the given season."""

    @abstractmethod
    def get_movie(self, movie_id: int) -> Optional[WantedMovie]:
        pass

    @abstractmethod
    def get_episode(self, series_id: int, season_number: int,
                    episode_number: int) -> Optional[WantedEpisode]:
        pass

    @abstractmethod
    def get_season(self, series_id: int, season_number: int) -> Optional[WantedSeason]:
        pass

    @abstractmethod
    def find_missing_movies(self) -> List[WantedMovie]:
        pass

    @abstractmethod
    def find_missing_episodes(self) -> List[WantedEpisode]:
        """Monitored, aired, regular-season episodes without a file."""

    @abstractmethod
    def find_upgradable_movies(self) -> List[WantedMovie]:
        """Monitored movies with a file; the caller checks the cutoff."""

    @abstractmethod
    def find_upgradable_episodes(self) -> List[WantedEpisode]:
        pass

    @abstractmethod
    def is_excluded(self, external_id: int, media_type: str) -> bool:
        pass

    @abstractmethod
    def mark_movie_file(self, movie_id: int, file_path: str, quality: str) -> None:
        pass

    @abstractmethod
    def mark_episode_file(self, series_id: int, season_number: int, episode_number: int,
                          file_path: str, quality: str) -> None:
        pass
