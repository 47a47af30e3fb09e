"""
opencv_source.py — Camera frames captured with OpenCV, buffered as MJPEG.

Every frame is JPEG-encoded independently, so each segment is a keyframe and
a flushed window decodes from its first byte. The clip on disk is a raw MJPEG
stream (``ffmpeg -f mjpeg -i clip.mjpeg ...`` converts it).

Reconnect waits use the source's stop event rather than ``time.sleep()`` so
:meth:`stop` is never held up by a dead camera.
"""

from __future__ import annotations

import time
from typing import Iterator, Optional, Union

import cv2  # type: ignore

from ..core.data_models import StreamSegment
from .base import SegmentSource


def _parse_device(device: Union[int, str]) -> Union[int, str]:
    """``"0"`` names a local camera index; anything else is a URL or path."""
    if isinstance(device, str) and device.isdigit():
        return int(device)
    return device


class OpenCVSource(SegmentSource):
    """Read frames from a camera index, RTSP/HTTP URL or file via OpenCV.

    Args:
        device: Camera index (``0``), or stream URL passed to
            ``cv2.VideoCapture``.
        fps_fallback: Frame rate used for segment durations when the device
            reports none.
        jpeg_quality: ``cv2.IMWRITE_JPEG_QUALITY`` for each encoded frame.
        reconnect_delay_sec: Wait between reconnection attempts.
        name: Identifier for logs and the capture thread.
    """

    def __init__(
        self,
        device: Union[int, str] = 0,
        fps_fallback: float = 30.0,
        jpeg_quality: int = 85,
        reconnect_delay_sec: float = 3.0,
        name: str = "opencv",
    ) -> None:
        super().__init__(name=name)
        self.device = _parse_device(device)
        self.fps_fallback = fps_fallback
        self.jpeg_quality = jpeg_quality
        self.reconnect_delay_sec = reconnect_delay_sec

        self.connects = 0
        self.encode_failures = 0
        self._fps = fps_fallback
        self._frame_shape: Optional[tuple] = None
        self._encode_params = [int(cv2.IMWRITE_JPEG_QUALITY), int(jpeg_quality)]

    @property
    def fps(self) -> float:
        """Frame rate reported by the device, or ``fps_fallback``."""
        return self._fps

    @property
    def frame_shape(self) -> Optional[tuple]:
        """``(height, width, channels)`` of the latest frame, once one arrives."""
        return self._frame_shape

    def _connect(self):
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            self._log.error(
                "Could not open camera",
                extra={"source": self.name, "device": str(self.device)},
            )
            return None

        reported = cap.get(cv2.CAP_PROP_FPS) or 0.0
        self._fps = reported if reported > 0 else self.fps_fallback
        self.connects += 1
        self._log.info(
            "Camera connected",
            extra={
                "source": self.name,
                "device": str(self.device),
                "fps": self._fps,
                "connects": self.connects,
            },
        )
        return cap

    def _frames(self, cap) -> Iterator:
        """Yield decoded frames until the device stops delivering them."""
        while self._running:
            if not cap.grab():
                return
            ok, frame = cap.retrieve()
            if ok and frame is not None:
                yield frame

    def _to_segment(self, frame) -> Optional[StreamSegment]:
        ok, jpeg = cv2.imencode(".jpg", frame, self._encode_params)
        if not ok:
            self.encode_failures += 1
            self._log.warning("JPEG encode failed", extra={"source": self.name})
            return None
        return StreamSegment(
            data=jpeg.tobytes(),
            keyframe=True,
            duration=1.0 / self._fps,
            timestamp=time.monotonic(),
        )

    def _capture_loop(self) -> None:
        while self._running:
            cap = self._connect()
            if cap is not None:
                try:
                    for frame in self._frames(cap):
                        self._frame_shape = frame.shape
                        segment = self._to_segment(frame)
                        if segment is not None and not self._emit(segment):
                            return
                finally:
                    cap.release()
                if self._running:
                    self._log.warning("Camera stream ended, reconnecting", extra={"source": self.name})

            self._stop_event.wait(timeout=self.reconnect_delay_sec)
