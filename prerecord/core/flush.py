"""
flush.py — Materialise a buffer's pre-trigger window as a file.

The caller is responsible for stopping (or deliberately not stopping) the
producer first.  ``flush_to_disk`` then:

  1. locates the earliest replay point in the buffer,
  2. opens the destination for exclusive write (an existing file is an error),
  3. streams the buffered payloads to it in fixed-size chunks,
  4. closes the file.

A failure while opening leaves no file behind and the buffer untouched.  A
failure while writing leaves a truncated file; treat the output path as
valid only when ``flush_to_disk`` returns normally.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

from .circular_buffer import CircularBuffer, CircularBufferError
from .data_models import FlushResult
from .jsonlog import build_logger

log = build_logger("prerecord.flush")

DEFAULT_CHUNK_SIZE = 64 * 1024


class FlushError(OSError):
    """Raised when the buffered window cannot be written to disk.

    Subclasses :class:`OSError` so callers handling plain I/O errors also
    catch it.

    Args:
        message: Human-readable description of the failure.
        path: Destination path of the failed flush.
        cause: The original exception, if any.
    """

    def __init__(
        self,
        message: str,
        path: Optional[Path] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.__cause__ = cause


class InsufficientDiskSpaceError(FlushError):
    """Raised before opening the output when free space is below the floor."""


def check_disk_space(directory: str | Path, min_free_mb: float) -> float:
    """Ensure ``directory`` has at least ``min_free_mb`` megabytes free.

    Args:
        directory: Directory the clip will be written into.
        min_free_mb: Minimum free space in MB.  ``0`` disables the check.

    Returns:
        Free space in MB.

    Raises:
        InsufficientDiskSpaceError: If free space is below ``min_free_mb``.
        FlushError: If disk usage cannot be queried.
    """
    try:
        free_mb = shutil.disk_usage(str(directory)).free / (1024 * 1024)
    except OSError as exc:
        raise FlushError(
            f"Cannot query disk usage for '{directory}': {exc}", cause=exc
        ) from exc

    if min_free_mb and free_mb < min_free_mb:
        log.error(
            "Insufficient disk space — flush aborted",
            extra={
                "free_mb": round(free_mb, 1),
                "required_mb": min_free_mb,
                "output_dir": str(directory),
            },
        )
        raise InsufficientDiskSpaceError(
            f"Only {free_mb:.1f} MB free in '{directory}', need {min_free_mb} MB"
        )
    return free_mb


def flush_to_disk(
    buffer: CircularBuffer,
    path: str | Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    source: Optional[str] = None,
    fsync: bool = False,
) -> FlushResult:
    """Write the buffer's contents from its earliest keyframe to ``path``.

    Args:
        buffer: An open :class:`CircularBuffer`.
        path: Destination file.  Must not already exist.
        chunk_size: Size of each write in bytes.
        source: Trigger source label recorded in the result.
        fsync: Force the file to stable storage before returning.

    Returns:
        A :class:`FlushResult` describing what was written.

    Raises:
        FlushError: If the buffer cannot be read, or the destination cannot
            be opened or written.
        ValueError: If ``chunk_size`` is not positive.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size!r}")

    path = Path(path)
    try:
        start, reader = buffer.read_from_replay_point(payloads=False)
    except CircularBufferError as exc:
        raise FlushError(f"Cannot read buffer for '{path}': {exc}", path=path, cause=exc) from exc

    try:
        fh = open(path, "xb")
    except OSError as exc:
        reader.close()
        log.error(
            "Cannot open flush destination",
            extra={"path": str(path), "error": str(exc)},
        )
        raise FlushError(f"Cannot open '{path}' for writing: {exc}", path=path, cause=exc) from exc

    written = 0
    segments = 0
    duration = 0.0
    starts_at_keyframe = False
    pending = bytearray()

    try:
        with fh, reader:
            for segment in reader:
                if segments == 0:
                    starts_at_keyframe = segment.keyframe
                segments += 1
                duration += segment.duration
                pending += segment.data
                while len(pending) >= chunk_size:
                    fh.write(pending[:chunk_size])
                    written += chunk_size
                    del pending[:chunk_size]
            if pending:
                fh.write(pending)
                written += len(pending)
            fh.flush()
            if fsync:
                os.fsync(fh.fileno())
    except OSError as exc:
        log.error(
            "Flush interrupted — output truncated",
            extra={"path": str(path), "bytes_written": written, "error": str(exc)},
        )
        raise FlushError(f"Write to '{path}' failed: {exc}", path=path, cause=exc) from exc
    except CircularBufferError as exc:
        log.error(
            "Buffer became unreadable during flush",
            extra={"path": str(path), "bytes_written": written, "error": str(exc)},
        )
        raise FlushError(f"Buffer read for '{path}' failed: {exc}", path=path, cause=exc) from exc

    if segments and not starts_at_keyframe:
        log.warning(
            "No keyframe buffered yet — output may not decode from its start",
            extra={"path": str(path), "start_position": start},
        )

    result = FlushResult(
        path=path,
        bytes_written=written,
        segments_written=segments,
        start_position=start,
        starts_at_keyframe=starts_at_keyframe,
        duration=duration,
        source=source,
    )
    log.info("Buffer flushed to disk", extra=result.to_dict())
    return result
