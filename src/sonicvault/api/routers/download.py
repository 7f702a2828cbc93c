"""Track acquisition ("download") endpoint."""

import logging

from fastapi import APIRouter, Depends

from sonicvault.api.dependencies import get_acquire_track_use_case, get_session_user_id
from sonicvault.api.schemas import DownloadRequest, DownloadResponse, SongSchema
from sonicvault.application.use_cases import AcquireTrackRequest, AcquireTrackUseCase

logger = logging.getLogger(__name__)

router = APIRouter()


# Hey future me - this blocks until the MP3 is fetched AND stored (can be tens of seconds).
# Failures come back through the AcquisitionError handler as {"detail", "stage", "track_id"}.
# Calling it again for a song that's already stored is free: no provider call at all.
@router.post("/download", response_model=DownloadResponse)
async def download(
    body: DownloadRequest,
    user_id: str = Depends(get_session_user_id),
    use_case: AcquireTrackUseCase = Depends(get_acquire_track_use_case),
) -> DownloadResponse:
    """Acquire a track for the session user."""
    result = await use_case.execute(
        AcquireTrackRequest(
            user_id=user_id,
            track_reference=body.track_id,
            catalog_url_hint=body.spotify_url,
        )
    )
    return DownloadResponse(
        success=True,
        created=result.created,
        message=None if result.created else "Song already downloaded",
        song=SongSchema.from_record(result.record),
    )
