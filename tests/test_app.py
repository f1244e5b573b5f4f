"""Tests for the HTTP surface of the scan engine."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from barcode_recorder import app as app_module
from barcode_recorder.catalog import GroupEntry
from barcode_recorder.devices import SyntheticBackend
from barcode_recorder.export import BOM, parse_csv

from fakes import FakeBackend


@pytest.fixture
def client(tmp_path: Path):
    application = app_module.create_app(
        tmp_path / "config.json",
        state_path=tmp_path / "state.json",
        backend=SyntheticBackend(),
    )
    with TestClient(application) as test_client:
        yield test_client


def test_app_startup_survives_missing_camera(tmp_path: Path) -> None:
    application = app_module.create_app(
        tmp_path / "config.json", state_path=tmp_path / "state.json", backend=FakeBackend([])
    )

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        for handler in application.router.on_startup:
            loop.run_until_complete(handler())
        status = application.state.engine.status()
        assert status["camera"]["active"] is None
        assert status["camera"]["error"]
        for handler in application.router.on_shutdown:
            loop.run_until_complete(handler())
    finally:
        asyncio.set_event_loop(None)
        loop.close()


def test_state_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    state_path = tmp_path / "elsewhere" / "state.json"
    monkeypatch.setenv("BARCODE_STATE_PATH", str(state_path))
    application = app_module.create_app(tmp_path / "config.json", backend=SyntheticBackend())
    application.state.engine.group_names.add("Dock")
    assert state_path.exists()


def test_status_reports_active_camera(client: TestClient) -> None:
    response = client.get("/api/status")
    assert response.status_code == 200
    payload = response.json()
    assert payload["camera"]["active"]["id"] == "synthetic"
    assert payload["recording"]["state"] == "idle"
    assert payload["version"]
    assert {option["value"] for option in payload["backend"]["options"]} >= {"auto", "synthetic"}


def test_devices_listing(client: TestClient) -> None:
    payload = client.get("/api/devices").json()
    assert payload["active"] == "synthetic"
    assert payload["devices"][0]["facing"] == "unknown"


def test_switch_to_unknown_device_is_rejected(client: TestClient) -> None:
    response = client.post("/api/camera", json={"device_id": "missing"})
    assert response.status_code == 400


def test_switch_to_same_device(client: TestClient) -> None:
    response = client.post("/api/camera", json={"device_id": "synthetic"})
    assert response.status_code == 200
    assert response.json()["active"]["id"] == "synthetic"


def test_recording_flow(client: TestClient) -> None:
    engine = client.app.state.engine

    response = client.post("/api/recording/start", json={"group": "Pallet1"})
    assert response.json() == {"status": "started", "group": "Pallet1"}

    engine.session.on_detection("111")
    engine.session.on_detection("222")

    response = client.post("/api/recording/stop")
    payload = response.json()
    assert payload["status"] == "committed"
    assert payload["entry"] == {"group": "Pallet1", "barcodes": ["111", "222"]}
    assert payload["groups"]["rows"] == [
        {"barcode": "111", "group": "Pallet1"},
        {"barcode": "222", "group": "Pallet1"},
    ]

    duplicate = client.post("/api/recording/start", json={"group": "Pallet1"})
    assert duplicate.json()["status"] == "duplicate_group"


def test_recording_requires_group_name(client: TestClient) -> None:
    response = client.post("/api/recording/start", json={"group": "   "})
    assert response.status_code == 400


def test_stop_without_recording(client: TestClient) -> None:
    payload = client.post("/api/recording/stop").json()
    assert payload["status"] == "not_recording"
    assert payload["entry"] is None


def test_groups_listing_and_clear(client: TestClient) -> None:
    client.app.state.engine.catalog.append(GroupEntry("Bin", ("X1",)))

    payload = client.get("/api/groups").json()
    assert payload["entries"] == [{"group": "Bin", "barcodes": ["X1"]}]
    assert payload["preview"] == "barcode,group\nX1,Bin\n"

    cleared = client.delete("/api/groups").json()
    assert cleared["entries"] == []


def test_group_names(client: TestClient) -> None:
    assert client.get("/api/group-names").json() == {"names": []}
    assert client.post("/api/group-names", json={"name": "Dock 4"}).json() == {
        "added": True,
        "names": ["Dock 4"],
    }
    assert client.post("/api/group-names", json={"name": "Dock 4"}).json()["added"] is False
    assert client.delete("/api/group-names/Dock 4").json() == {"removed": True, "names": []}


def test_export_empty_catalog(client: TestClient) -> None:
    response = client.post("/api/export", json={})
    assert response.status_code == 200
    assert response.json()["outcome"] == "nothing_to_export"


def test_export_returns_csv_attachment(client: TestClient) -> None:
    client.app.state.engine.catalog.append(GroupEntry("Line, 1", ('A"1', "B2")))

    response = client.post("/api/export", json={"share": False})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    disposition = response.headers["content-disposition"]
    assert 'filename="BARCODE_EXPORT_' in disposition
    text = response.content.decode("utf-8")
    assert text.startswith(BOM)
    assert parse_csv(text) == [('A"1', "Line, 1"), ("B2", "Line, 1")]


def test_snapshot_returns_jpeg(client: TestClient) -> None:
    pytest.importorskip("simplejpeg")
    response = client.get("/api/snapshot")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.content[:2] == b"\xff\xd8"


def test_cli_parser_defaults() -> None:
    from barcode_recorder.__main__ import build_parser

    args = build_parser().parse_args([])
    assert args.port == 8000
    assert args.config == Path("data/config.json")
    assert args.camera is None

    args = build_parser().parse_args(["--camera", "synthetic", "--port", "9000"])
    assert args.camera == "synthetic"
    assert args.port == 9000


def test_settings_round_trip(client: TestClient, tmp_path: Path) -> None:
    payload = client.get("/api/settings").json()
    assert payload["scan"] == {"interval_seconds": 0.5, "dedup_window_seconds": 1.0}
    assert "handheld" in payload["options"]["form_factor"]

    response = client.post(
        "/api/settings",
        json={
            "scan": {"interval_seconds": 0.3},
            "form_factor": "handheld",
            "export": {"prefix": "DOCK"},
        },
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["scan"]["interval_seconds"] == 0.3
    assert updated["restart_required"] is False

    engine = client.app.state.engine
    assert engine.capture.mirrored is False
    engine.catalog.append(GroupEntry("G", ("1",)))
    export = client.post("/api/export", json={})
    assert 'filename="DOCK_' in export.headers["content-disposition"]

    reloaded = app_module.create_app(
        tmp_path / "config.json", state_path=tmp_path / "state.json", backend=SyntheticBackend()
    )
    assert reloaded.state.engine.capture.form_factor == "handheld"


def test_settings_rejects_invalid_values(client: TestClient) -> None:
    assert client.post("/api/settings", json={}).status_code == 400
    assert client.post("/api/settings", json={"scan": {"interval_seconds": 2.0}}).status_code == 400
    assert client.post("/api/settings", json={"camera": "webcam-9000x"}).status_code == 400


def test_settings_camera_change_requires_restart(client: TestClient) -> None:
    response = client.post("/api/settings", json={"camera": "opencv"})
    assert response.json()["restart_required"] is True
