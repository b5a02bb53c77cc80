"""
API Request Schemas

Pydantic models for API requests.
Used for OpenAPI documentation and request validation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Search Requests
# ============================================================================

class MovieSearchRequest(BaseModel):
    """Interactive movie search."""
    title: str = Field(..., min_length=1, max_length=500, examples=["Masters of the Universe"])
    year: Optional[int] = Field(None, ge=1880, le=2100, examples=[2024])


class EpisodeSearchRequest(BaseModel):
    """Interactive TV search for an episode, a season, or a whole series."""
    title: str = Field(..., min_length=1, max_length=500, examples=["The Expanse"])
    season: Optional[int] = Field(None, ge=0, examples=[3])
    episode: Optional[int] = Field(None, ge=0, examples=[7])

    @model_validator(mode="after")
    def episode_needs_season(self):
        if self.episode is not None and self.season is None:
            raise ValueError("episode requires season")
        return self


# ============================================================================
# Grab Requests
# ============================================================================

class ReleasePayload(BaseModel):
    """A release as returned by a search."""
    guid: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    download_url: str = Field(..., min_length=1)
    size: int = Field(0, ge=0)
    seeders: int = Field(0, ge=0)
    leechers: int = Field(0, ge=0)
    indexer: str = ""
    indexer_id: Optional[int] = None
    protocol: str = Field("torrent", pattern="^(torrent|usenet)$")
    quality: Optional[str] = None
    categories: List[str] = Field(default_factory=list)


class GrabRequest(BaseModel):
    """
    Grab a release for a movie, an episode, or a season pack.

    Exactly one of movie_id / series_id. For TV, season_number is required;
    leave episode_number empty for a season pack.
    """
    release: ReleasePayload
    movie_id: Optional[int] = Field(None, ge=1)
    series_id: Optional[int] = Field(None, ge=1)
    season_number: Optional[int] = Field(None, ge=0)
    episode_number: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def one_target(self):
        if (self.movie_id is None) == (self.series_id is None):
            raise ValueError("exactly one of movie_id and series_id is required")
        if self.series_id is not None and self.season_number is None:
            raise ValueError("season_number is required for TV grabs")
        return self
