# tests/test_web_ui.py
import json
import urllib.request

import pytest

from prerecord.main import PreEventRecorder
from prerecord.sources.base import SegmentSource
from prerecord.ui import WebUI
from prerecord.utils.config_manager import RecorderConfig


class IdleSource(SegmentSource):
    def _capture_loop(self):
        self._stop_event.wait()


@pytest.fixture
def recorder(tmp_path):
    config = RecorderConfig(output_dir=str(tmp_path / "clips"), recorder_id="porch")
    return PreEventRecorder(config, IdleSource(name="idle"))


@pytest.fixture
def client(recorder):
    ui = WebUI(recorder, host="127.0.0.1", port=0)
    ui.flask_app.testing = True
    return ui.flask_app.test_client()


def test_index_lists_endpoints(client):
    body = client.get("/").get_json()
    assert body["recorder_id"] == "porch"
    assert "/api/trigger" in body["endpoints"]


def test_trigger_endpoint_fires(client, recorder):
    resp = client.post("/api/trigger")
    assert resp.status_code == 202
    assert resp.get_json() == {"success": True, "queued": True}
    assert recorder.trigger.pending
    assert recorder.trigger.wait(timeout=0.1)
    assert recorder.trigger.last_source == "http"


def test_second_trigger_is_coalesced(client, recorder):
    client.post("/api/trigger")
    resp = client.post("/api/trigger")
    assert resp.status_code == 202
    assert resp.get_json()["queued"] is False
    assert recorder.trigger.dropped == 1


def test_trigger_requires_post(client):
    assert client.get("/api/trigger").status_code == 405


def test_status(client):
    body = client.get("/api/status").get_json()
    assert body["recorder_id"] == "porch"
    assert body["state"] == "IDLE"
    assert body["buffer"] is None
    assert body["trigger"]["pending"] is False
    assert body["source"]["running"] is False


def test_clips(client, tmp_path):
    assert client.get("/api/clips").get_json() == {"clips": []}
    (tmp_path / "clips" / "clip_20251019T120000000000_0001.h264").write_bytes(b"\x00" * 10)
    clips = client.get("/api/clips").get_json()["clips"]
    assert clips[0]["name"] == "clip_20251019T120000000000_0001.h264"
    assert clips[0]["bytes"] == 10


def test_health(client):
    assert client.get("/health").get_json() == {"ok": True, "state": "IDLE"}


def test_trigger_accepts_reason_body(client, recorder):
    resp = client.post("/api/trigger", json={"reason": "doorbell"})
    assert resp.status_code == 202
    assert recorder.trigger.last_source == "http"


def test_clip_download(client, tmp_path):
    name = "clip_20251019T120000000000_0001.h264"
    (tmp_path / "clips" / name).write_bytes(b"\x00\x00\x00\x01\x67")
    resp = client.get(f"/api/clips/{name}")
    assert resp.status_code == 200
    assert resp.data == b"\x00\x00\x00\x01\x67"
    assert "attachment" in resp.headers["Content-Disposition"]
    resp.close()


def test_clip_download_rejects_unknown_names(client, tmp_path):
    (tmp_path / "clips" / "notes.txt").write_text("not a clip")
    assert client.get("/api/clips/notes.txt").status_code == 404
    assert client.get("/api/clips/missing.h264").status_code == 404


def test_server_start_and_stop(recorder):
    ui = WebUI(recorder, host="127.0.0.1", port=0)
    ui.start()
    try:
        assert ui.port != 0
        with urllib.request.urlopen(f"http://127.0.0.1:{ui.port}/health", timeout=5) as resp:
            assert json.load(resp)["ok"] is True
    finally:
        ui.stop()
    assert ui._thread is None
    ui.stop()
