"""
Database models for Acquirarr
"""

from .base import Base
from .indexer import Indexer, IndexerKind
from .download_client import DownloadClient, DownloadClientKind
from .download import Download, DownloadStatus, MediaKind, ACTIVE_STATUSES
from .blacklist import BlacklistEntry
from .rss_cache import RssCacheEntry
from .custom_format import CustomFormat, CustomFormatScore
from .quality_profile import QualityProfile
from .library import Movie, Series, Episode, LibraryExclusion
from .activity_log import ActivityLog, ActivityEvent
from .settings import Settings

__all__ = [
    'Base', 'Indexer', 'IndexerKind', 'DownloadClient', 'DownloadClientKind',
    'Download', 'DownloadStatus', 'MediaKind', 'ACTIVE_STATUSES', 'BlacklistEntry',
    'RssCacheEntry', 'CustomFormat', 'CustomFormatScore', 'QualityProfile',
    'Movie', 'Series', 'Episode', 'LibraryExclusion', 'ActivityLog', 'ActivityEvent',
    'Settings',
]
