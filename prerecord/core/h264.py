"""
h264.py — Split an H.264 Annex-B byte stream into access units.

Only the NAL unit header and the first bit of a slice header are inspected;
payloads are never decoded.  Bytes are passed through untouched, so the
concatenation of every emitted unit equals the input stream.

An access unit is reported as a keyframe boundary when it carries a sequence
parameter set (NAL type 7).  Encoders must therefore repeat their headers in
band before each IDR frame (``rpicam-vid --inline``, ``raspivid -ih``);
otherwise no replay point is ever found and flushes start at the buffer head.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

START_CODE = b"\x00\x00\x01"

NAL_SLICE = 1
NAL_IDR = 5
NAL_SEI = 6
NAL_SPS = 7
NAL_PPS = 8
NAL_AUD = 9

_VCL_TYPES = frozenset(range(1, 6))
# Non-VCL NAL types that may only appear before the first VCL NAL of an
# access unit, so seeing one after a VCL NAL opens the next unit.
_AU_OPENING_TYPES = frozenset({NAL_SEI, NAL_SPS, NAL_PPS, NAL_AUD, 14, 15, 16, 17, 18})


def _start_code_length(unit: bytes | bytearray) -> int:
    if unit.startswith(START_CODE):
        return 3
    if unit.startswith(b"\x00" + START_CODE):
        return 4
    return 0


def nal_type(unit: bytes) -> Optional[int]:
    """Return the ``nal_unit_type`` of a start-code-prefixed NAL unit.

    Returns ``None`` for bytes that do not begin with a start code (leading
    garbage before the first NAL) or that are too short to carry a header.
    """
    offset = _start_code_length(unit)
    if offset == 0 or len(unit) <= offset:
        return None
    return unit[offset] & 0x1F


def _starts_new_picture(unit: bytes) -> bool:
    """True when a VCL NAL's ``first_mb_in_slice`` is zero."""
    offset = _start_code_length(unit) + 1
    if len(unit) <= offset:
        return True
    # first_mb_in_slice is ue(v); a leading '1' bit encodes zero.
    return bool(unit[offset] & 0x80)


class NalSplitter:
    """Incrementally cut a byte stream at Annex-B start codes.

    Start codes split across :meth:`feed` calls are handled; each returned
    unit begins with its own start code (3 or 4 bytes).
    """

    def __init__(self) -> None:
        self._buf = bytearray()
        self._scan_from = 0

    def feed(self, data: bytes) -> List[bytes]:
        """Append ``data`` and return every NAL unit now known to be complete."""
        self._buf += data
        units: List[bytes] = []
        while True:
            own = _start_code_length(self._buf)
            idx = self._buf.find(START_CODE, max(own, self._scan_from))
            if idx < 0:
                # Keep the last two bytes scannable: they may open a start code.
                self._scan_from = max(own, len(self._buf) - 2)
                return units
            cut = idx
            if idx - 1 >= own and self._buf[idx - 1] == 0:
                cut = idx - 1
            units.append(bytes(self._buf[:cut]))
            del self._buf[:cut]
            self._scan_from = 0

    def flush(self) -> List[bytes]:
        """Return whatever remains buffered as a final unit."""
        if not self._buf:
            return []
        unit = bytes(self._buf)
        self._buf.clear()
        self._scan_from = 0
        return [unit]


class AccessUnitAssembler:
    """Group NAL units into access units (one coded picture each)."""

    def __init__(self) -> None:
        self._nals: List[bytes] = []
        self._has_vcl = False
        self._has_sps = False

    def push(self, unit: bytes) -> Optional[Tuple[bytes, bool]]:
        """Add one NAL unit.

        Returns:
            ``(payload, keyframe)`` for the access unit this NAL closed, or
            ``None`` if the current unit is still open.
        """
        kind = nal_type(unit)
        is_vcl = kind in _VCL_TYPES

        completed = None
        if self._has_vcl and (
            (is_vcl and _starts_new_picture(unit)) or kind in _AU_OPENING_TYPES
        ):
            completed = self._emit()

        self._nals.append(unit)
        if is_vcl:
            self._has_vcl = True
        if kind == NAL_SPS:
            self._has_sps = True
        return completed

    def flush(self) -> Optional[Tuple[bytes, bool]]:
        """Emit the partially assembled unit, if any."""
        if not self._nals:
            return None
        return self._emit()

    def _emit(self) -> Tuple[bytes, bool]:
        payload = b"".join(self._nals)
        keyframe = self._has_sps
        self._nals = []
        self._has_vcl = False
        self._has_sps = False
        return payload, keyframe


class H264Splitter:
    """Feed raw Annex-B bytes, get ``(payload, keyframe)`` access units back."""

    def __init__(self) -> None:
        self._nals = NalSplitter()
        self._units = AccessUnitAssembler()

    def feed(self, data: bytes) -> List[Tuple[bytes, bool]]:
        out = []
        for nal in self._nals.feed(data):
            done = self._units.push(nal)
            if done is not None:
                out.append(done)
        return out

    def flush(self) -> List[Tuple[bytes, bool]]:
        out = []
        for nal in self._nals.flush():
            done = self._units.push(nal)
            if done is not None:
                out.append(done)
        last = self._units.flush()
        if last is not None:
            out.append(last)
        return out
