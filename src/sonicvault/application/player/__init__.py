"""Playback queue state machine and per-session player registry."""

from sonicvault.application.player.playback_queue import (
    PlaybackQueue,
    PlayerSession,
    PlayerSessionRegistry,
    SessionAudioSink,
)

__all__ = [
    "PlaybackQueue",
    "PlayerSession",
    "PlayerSessionRegistry",
    "SessionAudioSink",
]
