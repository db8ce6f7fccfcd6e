"""Playback source interface consumed by the sampler.

A playback source is anything that can report lifecycle events and expose
readable player state: a media player binding, an HLS client, or a test
double. Subscribing returns an unsubscribe handle; nothing relies on
listener identity for removal.
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class PlaybackEvent(str, Enum):
    """Lifecycle events a playback source may emit."""

    LOAD_START = "loadstart"
    READY = "canplay"
    PLAY = "play"
    PAUSE = "pause"
    ENDED = "ended"
    ERROR = "error"
    WAITING = "waiting"
    STALLED = "stalled"
    PROGRESS = "progress"
    QUALITY_CHANGE = "qualitychange"


# Events that mean playback ran out of buffered media
BUFFERING_EVENTS = frozenset({PlaybackEvent.WAITING, PlaybackEvent.STALLED})

EventCallback = Callable[[PlaybackEvent, Any], None]
Unsubscribe = Callable[[], None]


class PlaybackSource(ABC):
    """Event subscription plus readable playback state.

    Optional capabilities (frame counters, video resolution) return None
    when the underlying player cannot report them.
    """

    @abstractmethod
    def subscribe(self, event: PlaybackEvent, callback: EventCallback) -> Unsubscribe:
        """Register a callback for one event type.

        Returns:
            A handle that removes exactly this registration when called.
        """
        pass

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current play position in seconds."""
        pass

    @property
    @abstractmethod
    def buffered(self) -> list[tuple[float, float]]:
        """Buffered (start, end) ranges in seconds, in ascending order."""
        pass

    @property
    @abstractmethod
    def duration(self) -> float | None:
        """Total media duration in seconds, None while unknown."""
        pass

    @property
    @abstractmethod
    def playback_rate(self) -> float:
        """Playback speed multiplier, 1.0 is normal."""
        pass

    @property
    def decoded_frames(self) -> int | None:
        """Cumulative decoded frame count, if exposed."""
        return None

    @property
    def dropped_frames(self) -> int | None:
        """Cumulative dropped frame count, if exposed."""
        return None

    @property
    def video_resolution(self) -> tuple[int, int] | None:
        """Current (width, height) of the video track, if exposed."""
        return None


class EventEmitterSource(PlaybackSource):
    """Playback source whose state is pushed in by the host player.

    Player bindings update the public attributes and call emit(); the
    sampler reads the same attributes on each tick.
    """

    def __init__(self) -> None:
        self._listeners: dict[PlaybackEvent, list[EventCallback]] = {}
        self._lock = threading.Lock()
        self.position: float = 0.0
        self.buffered_ranges: list[tuple[float, float]] = []
        self.media_duration: float | None = None
        self.rate: float = 1.0
        self.decoded_frame_count: int | None = None
        self.dropped_frame_count: int | None = None
        self.resolution: tuple[int, int] | None = None

    def subscribe(self, event: PlaybackEvent, callback: EventCallback) -> Unsubscribe:
        with self._lock:
            self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._listeners.get(event, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def listener_count(self, event: PlaybackEvent | None = None) -> int:
        """Number of registered callbacks, for one event or in total."""
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event, []))
            return sum(len(callbacks) for callbacks in self._listeners.values())

    def emit(self, event: PlaybackEvent, detail: Any = None) -> None:
        """Deliver an event to every current subscriber."""
        with self._lock:
            callbacks = list(self._listeners.get(event, []))
        for callback in callbacks:
            callback(event, detail)

    @property
    def current_time(self) -> float:
        return self.position

    @property
    def buffered(self) -> list[tuple[float, float]]:
        return list(self.buffered_ranges)

    @property
    def duration(self) -> float | None:
        return self.media_duration

    @property
    def playback_rate(self) -> float:
        return self.rate

    @property
    def decoded_frames(self) -> int | None:
        return self.decoded_frame_count

    @property
    def dropped_frames(self) -> int | None:
        return self.dropped_frame_count

    @property
    def video_resolution(self) -> tuple[int, int] | None:
        return self.resolution
