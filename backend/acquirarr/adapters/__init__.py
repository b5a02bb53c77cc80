"""
Collaborator Adapters for Acquirarr

The acquisition core talks to everything it does not own through these
contracts, so each can be replaced without touching the engine:

    - LibraryAdapter: wanted movies/episodes/seasons, exclusions, imported files
    - QualityProfileOracle: profile, cutoff and upgrade decisions
    - MediaImporter: moves completed downloads into the library
    - Notifier: fire-and-forget event notifications

Default implementations are backed by the local database and filesystem.
"""

from .library_adapter import LibraryAdapter, WantedEpisode, WantedMovie, WantedSeason
from .sql_library_adapter import SqlLibraryAdapter
from .quality_profile_oracle import DatabaseQualityProfileOracle, QualityProfileOracle, UpgradeFlags
from .importer import FileSystemImporter, ImportedFile, ImportResult, MediaImporter
from .notifier import DiscordNotifier, LogNotifier, NotificationEvent, Notifier, build_notifier

__all__ = [
    'LibraryAdapter',
    'WantedMovie',
    'WantedEpisode',
    'WantedSeason',
    'SqlLibraryAdapter',
    'QualityProfileOracle',
    'DatabaseQualityProfileOracle',
    'UpgradeFlags',
    'MediaImporter',
    'FileSystemImporter',
    'ImportedFile',
    'ImportResult',
    'Notifier',
    'LogNotifier',
    'DiscordNotifier',
    'NotificationEvent',
    'build_notifier',
]
