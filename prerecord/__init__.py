"""
prerecord - Pre-event circular video recorder

Keeps the last few seconds of encoded video in memory and writes them to a
file when a trigger fires.
"""

from .main import PreEventRecorder
from .core import CircularBuffer, StreamSegment, TriggerWait, flush_to_disk
from .utils import RecorderConfig

__version__ = "0.1.0"

__all__ = [
    'PreEventRecorder', 'CircularBuffer', 'StreamSegment', 'TriggerWait',
    'flush_to_disk', 'RecorderConfig',
]
