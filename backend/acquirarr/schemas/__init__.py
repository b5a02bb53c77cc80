"""
API Schemas Package

Contains Pydantic models for API requests and responses.
These schemas are used for OpenAPI documentation and validation.
"""

from acquirarr.schemas.responses import (
    SuccessResponse,
    ErrorResponse,
    ReleaseResponse,
    SearchResponse,
    DownloadResponse,
    DownloadListResponse,
    SyncResponse,
    RssSyncResponse,
    BatchSearchResponse,
    RssStatsResponse,
    StatusResponse,
)

from acquirarr.schemas.requests import (
    MovieSearchRequest,
    EpisodeSearchRequest,
    ReleasePayload,
    GrabRequest,
)

__all__ = [
    # Responses
    'SuccessResponse',
    'ErrorResponse',
    'ReleaseResponse',
    'SearchResponse',
    'DownloadResponse',
    'DownloadListResponse',
    'SyncResponse',
    'RssSyncResponse',
    'BatchSearchResponse',
    'RssStatsResponse',
    'StatusResponse',
    # Requests
    'MovieSearchRequest',
    'EpisodeSearchRequest',
    'ReleasePayload',
    'GrabRequest',
]
