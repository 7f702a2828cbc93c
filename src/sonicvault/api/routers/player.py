"""Player endpoints: one playback queue per session.

Every endpoint answers with the full snapshot so the client can mirror it into its
<audio> element (source_url, paused, position) in one go.
"""

from fastapi import APIRouter, Depends

from sonicvault.api.dependencies import get_player_session
from sonicvault.api.schemas import (
    PlayerSnapshot,
    PlayRequest,
    ProgressRequest,
    SeekRequest,
)
from sonicvault.application.player import PlayerSession

router = APIRouter()


def _snapshot(player: PlayerSession) -> PlayerSnapshot:
    return PlayerSnapshot(**player.snapshot())


@router.get("", response_model=PlayerSnapshot)
async def get_player(player: PlayerSession = Depends(get_player_session)) -> PlayerSnapshot:
    return _snapshot(player)


@router.post("/play", response_model=PlayerSnapshot)
async def play(
    body: PlayRequest, player: PlayerSession = Depends(get_player_session)
) -> PlayerSnapshot:
    """Install a new queue and play body.track from it."""
    queue = [t.to_descriptor() for t in body.queue] if body.queue else None
    player.queue.play(body.track.to_descriptor(), queue)
    return _snapshot(player)


@router.post("/toggle", response_model=PlayerSnapshot)
async def toggle(player: PlayerSession = Depends(get_player_session)) -> PlayerSnapshot:
    player.queue.toggle_play()
    return _snapshot(player)


@router.post("/next", response_model=PlayerSnapshot)
async def next_track(
    player: PlayerSession = Depends(get_player_session),
) -> PlayerSnapshot:
    player.queue.next()
    return _snapshot(player)


@router.post("/previous", response_model=PlayerSnapshot)
async def previous_track(
    player: PlayerSession = Depends(get_player_session),
) -> PlayerSnapshot:
    player.queue.previous()
    return _snapshot(player)


@router.post("/ended", response_model=PlayerSnapshot)
async def track_ended(
    player: PlayerSession = Depends(get_player_session),
) -> PlayerSnapshot:
    """Client's <audio> fired 'ended'."""
    player.queue.on_track_ended()
    return _snapshot(player)


@router.post("/repeat", response_model=PlayerSnapshot)
async def toggle_repeat(
    player: PlayerSession = Depends(get_player_session),
) -> PlayerSnapshot:
    player.queue.toggle_repeat_policy()
    return _snapshot(player)


@router.post("/seek", response_model=PlayerSnapshot)
async def seek(
    body: SeekRequest, player: PlayerSession = Depends(get_player_session)
) -> PlayerSnapshot:
    player.queue.seek(body.time)
    return _snapshot(player)


# Hey future me - previous() decides between "restart" and "go back" by position, so the
# client has to keep reporting where it is. Cheap, no state transition.
@router.post("/progress", response_model=PlayerSnapshot)
async def progress(
    body: ProgressRequest, player: PlayerSession = Depends(get_player_session)
) -> PlayerSnapshot:
    player.sink.report_progress(body.position, body.duration)
    return _snapshot(player)
