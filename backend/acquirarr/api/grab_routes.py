"""
Grab API Routes

Sends an operator-chosen release to a download client.

Errors:
- 404: movie, episode or season not in the library
- 409: the target already has an active download, or the release was grabbed
- 502: the download client refused the release
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from acquirarr.adapters.sql_library_adapter import SqlLibraryAdapter
from acquirarr.database import get_db
from acquirarr.schemas.requests import GrabRequest
from acquirarr.schemas.responses import DownloadResponse
from acquirarr.services import release_parser
from acquirarr.services.exceptions import DownloadClientError, DuplicateDownloadError
from acquirarr.services.grab_service import GrabService, GrabTarget, get_grab_service
from acquirarr.services.releases import Release

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["grab"])


def _target(db: Session, request: GrabRequest) -> GrabTarget:
    library = SqlLibraryAdapter(db)
    if request.movie_id is not None:
        movie = library.get_movie(request.movie_id)
        if not movie:
            raise HTTPException(status_code=404, detail=f"Movie {request.movie_id} not found")
        return GrabTarget.for_movie(movie)

    if request.episode_number is None:
        season = library.get_season(request.series_id, request.season_number)
        if not season:
            raise HTTPException(
                status_code=404,
                detail=f"Season {request.season_number} of series {request.series_id} not found",
            )
        return GrabTarget.for_season(season)

    episode = library.get_episode(request.series_id, request.season_number, request.episode_number)
    if not episode:
        raise HTTPException(
            status_code=404,
            detail=f"Episode S{request.season_number:02d}E{request.episode_number:02d} "
                   f"of series {request.series_id} not found",
        )
    return GrabTarget.for_episode(episode)


@router.post("/grab", response_model=DownloadResponse, status_code=201)
async def grab_release(
    request: GrabRequest,
    db: Session = Depends(get_db),
    grab_service: GrabService = Depends(get_grab_service),
):
    target = _target(db, request)
    payload = request.release
    release = Release(
        guid=payload.guid or payload.download_url,
        title=payload.title,
        download_url=payload.download_url,
        size=payload.size,
        seeders=payload.seeders,
        leechers=payload.leechers,
        indexer=payload.indexer,
        indexer_id=payload.indexer_id,
        protocol=payload.protocol,
        quality=payload.quality or release_parser.detect_quality(payload.title),
        categories=tuple(payload.categories),
    )

    try:
        download = await grab_service.grab(db, release, target, interactive=True)
    except DuplicateDownloadError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": e.message, "existing_download_id": e.existing_download_id, "reason": e.reason},
        )
    except DownloadClientError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return download.to_dict()
