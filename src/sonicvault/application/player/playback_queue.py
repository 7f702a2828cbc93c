"""Playback queue state machine.

Hey future me - this is the server-side model of "what is playing, from which queue, with
which repeat mode". It drives exactly ONE audio sink. For the web app that sink is a
SessionAudioSink, a plain record of what the browser's <audio> element should be doing;
the client mirrors it and reports its position back.

Rules worth remembering:
- play() ALWAYS installs a brand new queue tuple. Nothing ever mutates a queue in place, so
  an index can never point past the end.
- previous() past the 3 second mark restarts the current track instead of going back.
- Nothing in here raises for bad indices or calls in the wrong state; those are no-ops.
- Every transition is a plain synchronous method. On the event loop that means a transition
  runs to completion before the next request touches the same queue.
"""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from sonicvault.domain.entities import PlayerState, RepeatPolicy, TrackDescriptor
from sonicvault.domain.ports import IAudioSink

logger = logging.getLogger(__name__)


class SessionAudioSink(IAudioSink):
    """Audio sink state for one browser session."""

    def __init__(self) -> None:
        self.source_url: str | None = None
        self.paused = True
        self._position = 0.0
        self._duration: float | None = None

    def load(self, source_url: str) -> None:
        self.source_url = source_url
        self.paused = True
        self._position = 0.0
        self._duration = None

    def play(self) -> None:
        if self.source_url is not None:
            self.paused = False

    def pause(self) -> None:
        self.paused = True

    def seek(self, seconds: float) -> None:
        self._position = max(0.0, seconds)

    def report_progress(self, position: float, duration: float | None = None) -> None:
        """Client-side <audio> reports where it is."""
        self._position = max(0.0, position)
        if duration is not None and duration > 0:
            self._duration = duration

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float | None:
        return self._duration


class PlaybackQueue:
    """Queue + repeat policy + playing flag over a single audio sink."""

    # previous() within this many seconds goes to the prior track, after it restarts
    RESTART_THRESHOLD_SECONDS = 3.0

    def __init__(self, sink: IAudioSink) -> None:
        self._sink = sink
        self._tracks: tuple[TrackDescriptor, ...] = ()
        self._index = -1
        self._current: TrackDescriptor | None = None
        self._repeat_policy = RepeatPolicy.NONE
        self._playing = False

    @property
    def sink(self) -> IAudioSink:
        return self._sink

    @property
    def state(self) -> PlayerState:
        return PlayerState.LOADED if self._index >= 0 else PlayerState.IDLE

    @property
    def tracks(self) -> tuple[TrackDescriptor, ...]:
        return self._tracks

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_track(self) -> TrackDescriptor | None:
        return self._current

    @property
    def repeat_policy(self) -> RepeatPolicy:
        return self._repeat_policy

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _start_current(self) -> None:
        self._start(self._tracks[self._index])

    def _start(self, track: TrackDescriptor) -> None:
        self._current = track
        # load() replaces the source, it never queues behind the old one
        self._sink.load(track.playable_url)
        self._sink.play()
        self._playing = True

    def play(
        self, track: TrackDescriptor, queue: Sequence[TrackDescriptor] | None = None
    ) -> None:
        """Install a new queue and start playing track from it."""
        tracks = tuple(queue) if queue else (track,)
        # A track missing from its queue still plays; navigation then continues from index 0
        index = next((i for i, t in enumerate(tracks) if t.id == track.id), 0)
        self._tracks = tracks
        self._index = index
        self._start(track)
        logger.debug("Playing %s (%d/%d)", track.id, index + 1, len(tracks))

    def toggle_play(self) -> None:
        if self.state is PlayerState.IDLE:
            return
        if self._playing:
            self._sink.pause()
        else:
            self._sink.play()
        self._playing = not self._playing

    def next(self) -> None:
        if self.state is PlayerState.IDLE:
            return
        if self._index + 1 < len(self._tracks):
            self._index += 1
            self._start_current()
        elif self._repeat_policy is RepeatPolicy.REPEAT_QUEUE:
            self._index = 0
            self._start_current()
        else:
            # End of queue: keep the queue and the index, just stop
            self._sink.pause()
            self._playing = False

    def previous(self) -> None:
        if self.state is PlayerState.IDLE:
            return
        if self._sink.position > self.RESTART_THRESHOLD_SECONDS:
            self._sink.seek(0.0)
        elif self._index - 1 >= 0:
            self._index -= 1
            self._start_current()

    def on_track_ended(self) -> None:
        if self.state is PlayerState.IDLE:
            return
        if self._repeat_policy is RepeatPolicy.REPEAT_TRACK:
            self._sink.seek(0.0)
            self._sink.play()
            self._playing = True
        else:
            self.next()

    def seek(self, seconds: float) -> None:
        if self.state is PlayerState.IDLE:
            return
        duration = self._sink.duration
        if duration is None and self.current_track is not None:
            duration = self.current_track.duration_seconds
        target = max(0.0, seconds)
        if duration is not None:
            target = min(target, duration)
        self._sink.seek(target)

    def toggle_repeat_policy(self) -> RepeatPolicy:
        self._repeat_policy = self._repeat_policy.next_policy()
        return self._repeat_policy

    def snapshot(self) -> dict[str, Any]:
        """Read-only view for the API."""
        current = self.current_track
        return {
            "state": self.state.value,
            "playing": self._playing,
            "current_index": self._index,
            "current_track": asdict(current) if current else None,
            "queue": [asdict(t) for t in self._tracks],
            "repeat_policy": self._repeat_policy.value,
            "position": self._sink.position,
            "duration": self._sink.duration
            if self._sink.duration is not None
            else (current.duration_seconds if current else None),
        }


@dataclass
class PlayerSession:
    """One browser session's queue and the sink it drives."""

    sink: SessionAudioSink = field(default_factory=SessionAudioSink)
    queue: PlaybackQueue = field(init=False)

    def __post_init__(self) -> None:
        self.queue = PlaybackQueue(self.sink)

    def snapshot(self) -> dict[str, Any]:
        data = self.queue.snapshot()
        data["source_url"] = self.sink.source_url
        data["paused"] = self.sink.paused
        return data


class PlayerSessionRegistry:
    """Owns the player sessions, keyed by session user id.

    Created once per app (app.state.player_sessions) and handed to routes through a
    dependency. Sessions only live in this process's memory.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PlayerSession] = {}

    def get(self, session_id: str) -> PlayerSession:
        """Get the session's player, creating an idle one on first use."""
        session = self._sessions.get(session_id)
        if session is None:
            session = PlayerSession()
            self._sessions[session_id] = session
        return session

    def discard(self, session_id: str) -> None:
        """Tear down a session's player (logout)."""
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
