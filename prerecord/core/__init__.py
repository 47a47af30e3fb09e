"""prerecord - Core Package"""

from .data_models import StreamSegment, FlushResult, RecorderState
from .circular_buffer import (
    CircularBuffer, BufferReader,
    CircularBufferError, BufferClosedError, PositionEvictedError,
)
from .trigger import TriggerWait
from .flush import flush_to_disk, check_disk_space, FlushError, InsufficientDiskSpaceError
from .event_monitor import (
    EventEmitter, PollingMonitor,
    EVENT_INPUT_CHANGE, EVENT_INPUT_ACTIVE, EVENT_INPUT_INACTIVE,
    EVENT_TRIGGER, EVENT_STATE_CHANGE, EVENT_FLUSH_COMPLETE, EVENT_FLUSH_FAILED,
    EVENT_ERROR,
)

__all__ = [
    'StreamSegment', 'FlushResult', 'RecorderState',
    'CircularBuffer', 'BufferReader',
    'CircularBufferError', 'BufferClosedError', 'PositionEvictedError',
    'TriggerWait',
    'flush_to_disk', 'check_disk_space', 'FlushError', 'InsufficientDiskSpaceError',
    'EventEmitter', 'PollingMonitor',
    'EVENT_INPUT_CHANGE', 'EVENT_INPUT_ACTIVE', 'EVENT_INPUT_INACTIVE',
    'EVENT_TRIGGER', 'EVENT_STATE_CHANGE', 'EVENT_FLUSH_COMPLETE', 'EVENT_FLUSH_FAILED',
    'EVENT_ERROR',
]
