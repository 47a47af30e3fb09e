"""prerecord - Live segment sources"""

from .base import SegmentSource
from .h264_source import H264StreamSource, CommandSource
from .opencv_source import OpenCVSource

__all__ = ['SegmentSource', 'H264StreamSource', 'CommandSource', 'OpenCVSource']
