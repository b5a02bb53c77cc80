"""
Interactive Search API Routes

Operator-initiated searches across every indexer enabled for interactive
search. Searches go through the search queue and the rate limiter like the
automatic ones.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from acquirarr.database import get_db
from acquirarr.schemas.requests import EpisodeSearchRequest, MovieSearchRequest
from acquirarr.schemas.responses import SearchResponse
from acquirarr.services.indexer_gateway import IndexerGateway, get_indexer_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.post("/movie", response_model=SearchResponse)
async def search_movie(
    request: MovieSearchRequest,
    db: Session = Depends(get_db),
    gateway: IndexerGateway = Depends(get_indexer_gateway),
):
    releases = await gateway.search_movies(db, request.title, request.year, interactive=True)
    return {"total": len(releases), "releases": [r.to_dict() for r in releases]}


@router.post("/episode", response_model=SearchResponse)
async def search_episode(
    request: EpisodeSearchRequest,
    db: Session = Depends(get_db),
    gateway: IndexerGateway = Depends(get_indexer_gateway),
):
    """Episode, season (no episode) or series (no season) search."""
    releases = await gateway.search_tv(db, request.title, request.season, request.episode, interactive=True)
    return {"total": len(releases), "releases": [r.to_dict() for r in releases]}
