"""
Automation API Routes

Manual triggers for the periodic jobs, plus views of the RSS cache.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from acquirarr.database import get_db
from acquirarr.schemas.responses import BatchSearchResponse, RssStatsResponse, RssSyncResponse
from acquirarr.services.auto_search import AutoSearchService, get_auto_search_service
from acquirarr.services.rss_sync import RssSyncService, get_rss_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation", tags=["automation"])


@router.post("/rss-sync", response_model=RssSyncResponse)
async def trigger_rss_sync(
    db: Session = Depends(get_db),
    rss: RssSyncService = Depends(get_rss_sync_service),
):
    logger.info("Manual RSS sync requested")
    return await rss.sync_all(db)


@router.post("/search-missing", response_model=BatchSearchResponse)
async def trigger_missing_search(
    db: Session = Depends(get_db),
    search: AutoSearchService = Depends(get_auto_search_service),
):
    logger.info("Manual missing content search requested")
    return await search.search_all_missing(db)


@router.post("/search-cutoff", response_model=BatchSearchResponse)
async def trigger_cutoff_search(
    db: Session = Depends(get_db),
    search: AutoSearchService = Depends(get_auto_search_service),
):
    logger.info("Manual cutoff unmet search requested")
    return await search.search_all_cutoff_unmet(db)


@router.get("/rss/recent")
async def recent_rss_releases(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    rss: RssSyncService = Depends(get_rss_sync_service),
):
    return rss.get_recent_releases(db, limit)


@router.get("/rss/stats", response_model=RssStatsResponse)
async def rss_stats(
    db: Session = Depends(get_db),
    rss: RssSyncService = Depends(get_rss_sync_service),
):
    return rss.get_stats(db)
