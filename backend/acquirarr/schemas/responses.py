"""
API Response Schemas

Pydantic models for API responses.
Used for OpenAPI documentation and response validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SuccessResponse(BaseModel):
    """Standard success response."""
    success: bool = Field(True, description="Operation success status")
    message: str = Field(..., description="Success message")


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = Field(False, description="Operation success status")
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    error_code: Optional[str] = Field(None, description="Error code for programmatic handling")


# ============================================================================
# Search
# ============================================================================

class ReleaseResponse(BaseModel):
    guid: str
    title: str
    download_url: str
    size: int = 0
    seeders: int = 0
    leechers: int = 0
    grabs: int = 0
    info_url: Optional[str] = None
    indexer: str = ""
    indexer_id: Optional[int] = None
    indexer_kind: Optional[str] = None
    protocol: str = "torrent"
    quality: str = "Unknown"
    publish_date: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    freeleech: bool = False


class SearchResponse(BaseModel):
    total: int = Field(..., description="Number of releases")
    releases: List[ReleaseResponse]


# ============================================================================
# Downloads
# ============================================================================

class DownloadResponse(BaseModel):
    id: int
    media_kind: str
    movie_id: Optional[int] = None
    series_id: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    title: str
    download_url: Optional[str] = None
    indexer: Optional[str] = None
    quality: Optional[str] = None
    protocol: Optional[str] = None
    size: Optional[int] = None
    seeders: Optional[int] = None
    download_client_id: Optional[int] = None
    client_handle: Optional[str] = None
    save_path: Optional[str] = None
    status: str
    progress: float = 0.0
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class DownloadListResponse(BaseModel):
    total: int
    downloads: List[DownloadResponse]


class SyncResponse(BaseModel):
    synced: int = 0
    errors: int = 0


# ============================================================================
# Automation
# ============================================================================

class RssSyncResponse(BaseModel):
    indexers_checked: int = 0
    releases_found: int = 0
    grabbed: int = 0
    skipped: bool = False


class BatchCounts(BaseModel):
    total: int = 0
    searched: int = 0
    found: int = 0


class BatchSearchResponse(BaseModel):
    movies: BatchCounts
    episodes: BatchCounts


class RssStatsResponse(BaseModel):
    total: int
    grabbed: int
    processed: int


class StatusResponse(BaseModel):
    version: str
    scheduler: Dict[str, Any]
    rate_limiter: Dict[str, Any]
    search_queue: Dict[str, Any]
    rss: Dict[str, Any]
    background: Dict[str, Any]
