# Collection, encoding and delivery pipeline

from .batcher import Batcher
from .cmcd_codec import CMCD_HEADER, decode, encode
from .playback import EventEmitterSource, PlaybackEvent, PlaybackSource
from .sampler import Sampler
from .session import SessionRecorder
from .tracker import Tracker, TrackerConfig
from .transport import DeliveryTransport, HttpTransport, LocalLogTransport, build_transport

__all__ = [
    "Batcher",
    "CMCD_HEADER",
    "decode",
    "encode",
    "EventEmitterSource",
    "PlaybackEvent",
    "PlaybackSource",
    "Sampler",
    "SessionRecorder",
    "Tracker",
    "TrackerConfig",
    "DeliveryTransport",
    "HttpTransport",
    "LocalLogTransport",
    "build_transport",
]
