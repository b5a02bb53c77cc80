"""
Download API Routes

Queue view, cancellation and an on-demand sync of the download lifecycle.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from acquirarr.database import get_db
from acquirarr.models.download import Download, DownloadStatus
from acquirarr.schemas.responses import DownloadListResponse, SuccessResponse, SyncResponse
from acquirarr.services.download_sync import DownloadSyncService, get_download_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/downloads", tags=["downloads"])


@router.get("", response_model=DownloadListResponse)
async def list_downloads(
    status: Optional[DownloadStatus] = Query(None, description="Only downloads in this status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    downloads = Download.get_recent(db, limit=limit, status=status.value if status else None)
    return {"total": len(downloads), "downloads": [d.to_dict() for d in downloads]}


@router.delete("/{download_id}", response_model=SuccessResponse)
async def cancel_download(
    download_id: int,
    delete_files: bool = Query(False, description="Also delete downloaded data"),
    db: Session = Depends(get_db),
    sync_service: DownloadSyncService = Depends(get_download_sync_service),
):
    if not await sync_service.cancel_download(db, download_id, delete_files):
        raise HTTPException(status_code=404, detail=f"Download {download_id} not found")
    return {"success": True, "message": f"Download {download_id} cancelled"}


@router.post("/sync", response_model=SyncResponse)
async def sync_downloads(
    db: Session = Depends(get_db),
    sync_service: DownloadSyncService = Depends(get_download_sync_service),
):
    return await sync_service.sync_all(db)
