"""Acquired-song library endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends

from sonicvault.api.dependencies import (
    get_duration_backfill,
    get_library_service,
    get_session_user_id,
)
from sonicvault.api.schemas import SongListResponse, SongSchema
from sonicvault.application.services import DurationBackfill, LibraryService

router = APIRouter()


# Yo, the listing answers straight from our table. Songs still stored with duration 0 get
# their length fetched from Spotify AFTER the response is sent; the next listing shows it.
@router.get("/my-songs", response_model=SongListResponse)
async def my_songs(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_session_user_id),
    library: LibraryService = Depends(get_library_service),
    backfill: DurationBackfill = Depends(get_duration_backfill),
) -> SongListResponse:
    """List the session user's songs, newest first."""
    records = await library.list_songs(user_id)

    missing = LibraryService.missing_durations(records)
    if missing:
        background_tasks.add_task(backfill.run, user_id, missing)

    return SongListResponse(songs=[SongSchema.from_record(r) for r in records])
