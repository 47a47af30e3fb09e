"""
runner.py — Process entry point: build a recorder from config and run it.

Run
───
    prerecord --recorder front_door --config ./recorders.json

Drop a trigger into a running recorder's hot folder:
    prerecord-trigger --dir ./trigger_queue

Wiring
──────

    recorders.json
          │
          ▼
    JsonFileConfigProvider ──► RecorderConfig
          │
          ├──► SegmentSource (command | stdin | opencv) ──append──► CircularBuffer
          │
          ├──► InputTrigger ─────┐
          ├──► HotFolderTrigger ─┼──fire──► TriggerWait ──wait──► PreEventRecorder
          └──► WebUI (POST) ─────┘                                     │
                                                                       ▼
                                                               flush_to_disk → clip

Shutdown order
──────────────
1. Stop trigger sources  → no new triggers
2. Stop the recorder     → source stopped, buffer closed
3. sys.exit(0)
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.jsonlog import build_logger, configure_root_logger
from .core.trigger import TriggerWait
from .main import PreEventRecorder
from .sources import CommandSource, H264StreamSource, OpenCVSource, SegmentSource
from .triggers import HotFolderTrigger, InputTrigger, file_input_reader, write_trigger_file
from .ui import WebUI
from .utils.config_manager import ConfigProviderError, JsonFileConfigProvider, RecorderConfig

log = build_logger("prerecord.runner")


def build_source(source_cfg: Dict[str, Any], name: str = "camera") -> SegmentSource:
    """Construct the segment source described by a validated ``source`` block.

    Raises:
        ValueError: If the source type is unknown.
    """
    kind = source_cfg.get("type")
    if kind == "command":
        return CommandSource(
            source_cfg["command"],
            fps=float(source_cfg.get("fps", 30.0)),
            name=name,
        )
    if kind == "stdin":
        return H264StreamSource(
            sys.stdin.buffer,
            fps=float(source_cfg.get("fps", 30.0)),
            name=name,
        )
    if kind == "opencv":
        return OpenCVSource(
            source_cfg["device"],
            fps_fallback=float(source_cfg.get("fps_fallback", 30.0)),
            jpeg_quality=int(source_cfg.get("jpeg_quality", 85)),
            name=name,
        )
    raise ValueError(f"Unknown source type: {kind!r}")


class RecorderRunner:
    """Owns the lifecycle of the recorder and its trigger sources.

    Construction is separated from startup so the object can be inspected or
    tested before any threads are launched.

    Args:
        recorder_id: Key of the recorder block in the config file.
        config_path: Path to the recorders JSON file.
        max_clips: Overrides the configured ``max_clips``.
        enable_web: Start the web UI when the config has a ``web_ui`` block.

    Raises:
        SystemExit: If the config file is unusable or the recorder ID is not
            found.
    """

    def __init__(
        self,
        recorder_id: str,
        config_path: str | Path = "./recorders.json",
        max_clips: Optional[int] = None,
        enable_web: bool = True,
    ) -> None:
        self._recorder_id = recorder_id
        self._max_clips = max_clips
        self._shutdown_event = threading.Event()

        log.info(
            "Loading configuration",
            extra={"config_path": str(config_path), "recorder_id": recorder_id},
        )
        try:
            provider = JsonFileConfigProvider(config_path)
        except ConfigProviderError as exc:
            log.error("Failed to load configuration", extra={"error": str(exc)})
            sys.exit(1)

        try:
            raw_cfg = provider.get_recorder_config(recorder_id)
        except KeyError:
            log.error(
                "Recorder not found in config",
                extra={"recorder_id": recorder_id, "available": provider.list_recorder_ids()},
            )
            sys.exit(1)

        self.config = RecorderConfig.from_dict(raw_cfg)
        self.trigger = TriggerWait(name=recorder_id)
        self.source = build_source(raw_cfg["source"], name=recorder_id)
        self.recorder = PreEventRecorder(self.config, self.source, self.trigger)

        triggers_cfg: dict = raw_cfg.get("triggers", {})
        self._monitors: List[Any] = []

        input_cfg = triggers_cfg.get("input")
        if input_cfg:
            self._monitors.append(
                InputTrigger(
                    file_input_reader(input_cfg["path"], bool(input_cfg.get("active_low", False))),
                    self.trigger,
                    poll_interval=float(input_cfg.get("poll_interval_sec", 0.02)),
                )
            )

        hot_cfg = triggers_cfg.get("hot_folder")
        if hot_cfg:
            self._monitors.append(
                HotFolderTrigger(
                    hot_cfg.get("dir", "./trigger_queue"),
                    self.trigger,
                    poll_interval=float(hot_cfg.get("poll_interval_sec", 2.0)),
                )
            )

        self.web_ui = None
        web_cfg = triggers_cfg.get("web_ui")
        if web_cfg and enable_web:
            self.web_ui = WebUI(
                self.recorder,
                host=web_cfg.get("host", "0.0.0.0"),
                port=int(web_cfg.get("port", 5000)),
            )

        if not self._monitors and self.web_ui is None:
            log.warning(
                "No trigger sources configured — only signals will end the run",
                extra={"recorder_id": recorder_id},
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start everything and block until shutdown or the clip limit."""
        log.info("Starting recorder", extra={"recorder_id": self._recorder_id})

        recorder_thread = threading.Thread(
            target=self._run_recorder, name="recorder", daemon=True
        )
        recorder_thread.start()

        for monitor in self._monitors:
            monitor.start()
        if self.web_ui is not None:
            self.web_ui.start()

        self._shutdown_event.wait()
        log.info("Shutdown event received — tearing down", extra={"recorder_id": self._recorder_id})
        self._teardown()
        recorder_thread.join(timeout=10.0)

    def shutdown(self) -> None:
        """Begin an ordered teardown.  Idempotent."""
        self._shutdown_event.set()

    def _run_recorder(self) -> None:
        try:
            self.recorder.run(max_clips=self._max_clips)
        except Exception:  # noqa: BLE001
            log.exception("Recorder crashed", extra={"recorder_id": self._recorder_id})
        finally:
            self._shutdown_event.set()

    def _teardown(self) -> None:
        for monitor in self._monitors:
            try:
                monitor.stop()
            except Exception as exc:  # noqa: BLE001
                log.error("Error stopping trigger source", extra={"error": str(exc)})
        if self.web_ui is not None:
            self.web_ui.stop()
        self.recorder.stop()
        log.info("Teardown complete", extra={"recorder_id": self._recorder_id})


# ---------------------------------------------------------------------------
# Signal handling
# ---------------------------------------------------------------------------

def _install_signal_handlers(runner: RecorderRunner) -> None:
    """Route SIGINT and SIGTERM to :meth:`RecorderRunner.shutdown`."""
    def _handler(signum: int, _frame: Any) -> None:
        log.info("Signal received — initiating graceful shutdown",
                 extra={"signal": signal.Signals(signum).name})
        runner.shutdown()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ---------------------------------------------------------------------------
# CLI entry-points
# ---------------------------------------------------------------------------

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Pre-event circular video recorder",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--recorder", default="camera", help="recorder_id to run.")
    parser.add_argument(
        "--config", default="./recorders.json", help="Path to the recorders JSON file."
    )
    parser.add_argument(
        "--max-clips", type=int, default=None, dest="max_clips",
        help="Exit after this many clips (overrides the config).",
    )
    parser.add_argument("--no-web", action="store_true", dest="no_web", help="Disable the web UI.")
    parser.add_argument(
        "--log-level", default="INFO", dest="log_level",
        help="Root log level (DEBUG, INFO, WARNING, ...).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Parse arguments, build the runner, install signal handlers, and run."""
    args = _parse_args(argv)
    configure_root_logger(args.log_level, {"recorder_id": args.recorder})
    runner = RecorderRunner(
        recorder_id=args.recorder,
        config_path=args.config,
        max_clips=args.max_clips,
        enable_web=not args.no_web,
    )
    _install_signal_handlers(runner)
    runner.run()
    sys.exit(0)


def trigger_main(argv: Optional[List[str]] = None) -> None:
    """Drop one flush trigger file into a hot folder."""
    parser = argparse.ArgumentParser(
        description="Send a flush trigger to a running recorder's hot folder",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--dir", default="./trigger_queue", help="Hot folder directory.")
    parser.add_argument("--reason", default="manual", help="Free-form reason stored in the file.")
    parser.add_argument("--timezone", default="UTC", help="IANA zone for the filename timestamp.")
    args = parser.parse_args(argv)
    configure_root_logger("INFO")

    try:
        path = write_trigger_file(args.dir, timezone_name=args.timezone, reason=args.reason)
    except OSError as exc:
        log.error("Failed to write trigger file", extra={"dir": args.dir, "error": str(exc)})
        sys.exit(1)
    log.info("Trigger file written", extra={"path": str(path)})


if __name__ == "__main__":
    main()
