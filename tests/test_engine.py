"""End-to-end behaviour of the scan engine with fake cameras and decoders."""

from __future__ import annotations

import asyncio
import json
import time

import pytest

from barcode_recorder.camera import NoDeviceError, StreamSwitchError
from barcode_recorder.catalog import CATALOG_KEY, GroupEntry
from barcode_recorder.config import ConfigManager, ExportSettings, Resolution, ScanSettings
from barcode_recorder.devices import CaptureDevice, DeviceDirectory, Facing, SyntheticBackend
from barcode_recorder.engine import RecordingStartStatus, RecordingStopStatus, ScanEngine
from barcode_recorder.export import (
    BOM,
    ExportCancelled,
    ExportOutcome,
    SaveChannel,
    parse_csv,
)
from barcode_recorder.store import JsonFileStore, MemoryStore

from fakes import FakeBackend, FakeClock, ScriptedStrategy

DEVICES = [
    CaptureDevice("front", "Front Camera", Facing.FRONT),
    CaptureDevice("back", "Rear Camera", Facing.BACK),
]


def _engine(values, *, backend=None, store=None, clock=None, **kwargs) -> ScanEngine:
    return ScanEngine(
        DeviceDirectory(backend or FakeBackend(DEVICES)),
        store if store is not None else MemoryStore(),
        strategies=[ScriptedStrategy(list(values))],
        clock=clock or FakeClock(),
        **kwargs,
    )


async def _scan(engine: ScanEngine, clock: FakeClock, count: int, step: float = 0.6) -> None:
    for _ in range(count):
        await engine.orchestrator.tick()
        clock.advance(step)


def test_recording_collects_unique_codes() -> None:
    clock = FakeClock()
    engine = _engine(["111", "111", "222"], clock=clock)

    async def runner():
        await engine.capture.start()
        assert engine.start_recording("Pallet1").status is RecordingStartStatus.STARTED
        await engine.orchestrator.tick()
        clock.advance(0.2)
        await engine.orchestrator.tick()
        clock.advance(0.2)
        await engine.orchestrator.tick()
        return engine.stop_recording()

    stop = asyncio.run(runner())

    assert stop.status is RecordingStopStatus.COMMITTED
    assert stop.entry == GroupEntry("Pallet1", ("111", "222"))
    assert engine.catalog.entries == (GroupEntry("Pallet1", ("111", "222")),)
    assert engine.last_detection.value == "222"


def test_repeated_group_name_creates_separate_entries() -> None:
    clock = FakeClock()
    engine = _engine(["A1", "A2"], clock=clock)

    async def runner():
        await engine.capture.start()
        engine.start_recording("Line1")
        await _scan(engine, clock, 1)
        engine.stop_recording()

        duplicate = engine.start_recording("Line1")
        assert duplicate.status is RecordingStartStatus.DUPLICATE_GROUP
        assert engine.session.active is False

        confirmed = engine.start_recording("Line1", confirm_duplicate=True)
        assert confirmed.status is RecordingStartStatus.STARTED
        await _scan(engine, clock, 1)
        engine.stop_recording()

    asyncio.run(runner())

    assert engine.catalog.entries == (
        GroupEntry("Line1", ("A1",)),
        GroupEntry("Line1", ("A2",)),
    )
    assert engine.catalog.to_table() == [("A1", "Line1"), ("A2", "Line1")]


def test_stop_without_codes_does_not_touch_catalog() -> None:
    store = MemoryStore()
    engine = _engine([], store=store)

    assert engine.stop_recording().status is RecordingStopStatus.NOT_RECORDING
    engine.start_recording("Empty")
    assert engine.stop_recording().status is RecordingStopStatus.NOTHING_COLLECTED
    assert len(engine.catalog) == 0
    assert store.get(CATALOG_KEY) is None


def test_restart_discards_uncommitted_codes() -> None:
    clock = FakeClock()
    engine = _engine(["X"], clock=clock)

    async def runner():
        await engine.capture.start()
        engine.start_recording("First")
        await _scan(engine, clock, 1)
        assert engine.start_recording("Second").status is RecordingStartStatus.RESTARTED
        return engine.stop_recording()

    assert asyncio.run(runner()).status is RecordingStopStatus.NOTHING_COLLECTED


def test_detections_outside_recording_are_not_collected() -> None:
    clock = FakeClock()
    engine = _engine(["111", "222"], clock=clock)

    async def runner():
        await engine.capture.start()
        await _scan(engine, clock, 1)
        engine.start_recording("Later")
        await _scan(engine, clock, 1)
        return engine.stop_recording()

    assert asyncio.run(runner()).entry.barcodes == ("222",)


def test_switch_camera_keeps_session_and_resumes_scanning() -> None:
    clock = FakeClock()
    backend = FakeBackend(DEVICES)
    engine = _engine(["111", "222"], backend=backend, clock=clock)

    async def runner():
        await engine.start()
        await engine.orchestrator.stop()
        engine.start_recording("Mixed")
        await _scan(engine, clock, 1)

        device = await engine.switch_camera("front")
        assert device.id == "front"
        assert engine.orchestrator.paused is False
        await _scan(engine, clock, 1)
        return engine.stop_recording()

    stop = asyncio.run(runner())

    assert stop.entry.barcodes == ("111", "222")
    assert [camera.device_id for camera in backend.live_streams()] == ["front"]


def test_failed_switch_reports_error_and_keeps_previous_camera() -> None:
    backend = FakeBackend(DEVICES, failures={"front": NoDeviceError("unplugged")})
    engine = _engine([], backend=backend)

    async def runner():
        await engine.start()
        with pytest.raises(StreamSwitchError):
            await engine.switch_camera("front")
        status = engine.status()
        await engine.stop()
        return status

    status = asyncio.run(runner())

    assert status["camera"]["active"]["id"] == "back"
    assert "unplugged" in status["camera"]["error"]
    assert backend.live_streams() == []


def test_start_without_devices_records_error() -> None:
    engine = _engine([], backend=FakeBackend([]))

    with pytest.raises(NoDeviceError):
        asyncio.run(engine.start())

    status = engine.status()
    assert status["camera"]["error"]
    assert status["scanning"] is False


def test_stop_releases_stream_and_scanning() -> None:
    backend = FakeBackend(DEVICES)
    engine = _engine([], backend=backend)

    async def runner():
        await engine.start()
        assert engine.orchestrator.running is True
        await engine.stop()

    asyncio.run(runner())

    assert engine.orchestrator.running is False
    assert backend.live_streams() == []
    assert engine.capture.active_device is None


def test_switch_waits_for_in_flight_frame_read() -> None:
    backend = FakeBackend(DEVICES, frame_delay=0.1)
    engine = _engine([], backend=backend)

    async def runner():
        await engine.capture.start()
        tick = asyncio.create_task(engine.orchestrator.tick())
        await asyncio.sleep(0.01)
        await engine.switch_camera("front")
        await tick
        await engine.capture.stop()

    asyncio.run(runner())

    previous = backend.opened[0]
    assert previous.device_id == "back"
    assert previous.closed is True
    assert previous.closed_while_reading is False


class BlockingStrategy(ScriptedStrategy):
    def try_decode(self, raster):
        self.calls += 1
        time.sleep(0.2)
        return None


def test_stop_during_decode_releases_stream_and_starts_no_new_attempt() -> None:
    backend = FakeBackend(DEVICES)
    strategy = BlockingStrategy()
    engine = ScanEngine(
        DeviceDirectory(backend),
        MemoryStore(),
        scan=ScanSettings(interval_seconds=0.2),
        strategies=[strategy],
    )

    async def runner():
        await engine.start()
        for _ in range(100):
            if strategy.calls:
                break
            await asyncio.sleep(0.01)
        assert strategy.calls == 1
        await engine.stop()
        assert backend.live_streams() == []
        calls = strategy.calls
        await asyncio.sleep(0.6)
        return calls

    calls = asyncio.run(runner())

    assert strategy.calls == calls == 1
    assert engine.orchestrator.running is False


def test_state_persists_across_engines(tmp_path) -> None:
    path = tmp_path / "state.json"
    clock = FakeClock()
    engine = _engine(["CODE-1"], store=JsonFileStore(path), clock=clock)

    async def runner():
        await engine.capture.start()
        engine.start_recording("Shelf")
        await _scan(engine, clock, 1)
        engine.stop_recording()
        engine.group_names.add("Shelf")

    asyncio.run(runner())

    reloaded = _engine([], store=JsonFileStore(path))
    assert reloaded.catalog.entries == (GroupEntry("Shelf", ("CODE-1",)),)
    assert reloaded.group_names.names == ("Shelf",)
    assert json.loads(JsonFileStore(path).get(CATALOG_KEY))[0]["group"] == "Shelf"


class CancellingSave(SaveChannel):
    async def save(self, document):
        raise ExportCancelled("dismissed")


def test_export_cancellation_skips_download() -> None:
    engine = _engine([], save=CancellingSave())
    engine.catalog.append(GroupEntry("G", ("1",)))

    result = asyncio.run(engine.export())

    assert result.outcome is ExportOutcome.CANCELLED
    assert engine.download.last_document is None


def test_export_downloads_rendered_catalog() -> None:
    engine = _engine([])
    engine.catalog.append(GroupEntry("G, 1", ('say "x"',)))

    result = asyncio.run(engine.export())

    assert result.outcome is ExportOutcome.DOWNLOADED
    document = engine.download.last_document
    assert document.text.startswith(BOM)
    assert parse_csv(document.text) == engine.catalog.to_table()


def test_from_config_applies_settings(tmp_path) -> None:
    config = ConfigManager(tmp_path / "config.json")
    config.set_scan_settings(ScanSettings(interval_seconds=0.3, dedup_window_seconds=2.0))
    config.set_export_settings({"prefix": "SCANS", "directory": str(tmp_path / "exports")})
    config.set_form_factor("desktop")

    engine = ScanEngine.from_config(config, MemoryStore(), backend=SyntheticBackend())
    engine.catalog.append(GroupEntry("G", ("1",)))

    result = asyncio.run(engine.export())

    assert result.outcome is ExportOutcome.SAVED
    assert result.filename.startswith("SCANS_")
    assert (tmp_path / "exports" / result.filename).exists()


def test_snapshot_encodes_jpeg() -> None:
    pytest.importorskip("simplejpeg")
    engine = _engine([], backend=SyntheticBackend())

    async def runner():
        await engine.capture.start()
        data = await engine.snapshot()
        await engine.capture.stop()
        return data

    data = asyncio.run(runner())
    assert data[:2] == b"\xff\xd8"


def test_apply_settings_updates_running_engine(tmp_path) -> None:
    engine = _engine([], backend=FakeBackend(DEVICES))
    engine.catalog.append(GroupEntry("G", ("1",)))

    engine.apply_settings(
        resolution=Resolution(640, 480),
        scan=ScanSettings(interval_seconds=0.2, dedup_window_seconds=3.0),
        form_factor="desktop",
        export=ExportSettings(prefix="BIN", directory=str(tmp_path / "out")),
    )

    assert engine.capture.resolution == (640, 480)
    assert engine.orchestrator.dedup_window == 3.0
    assert engine.capture.mirrored is True

    result = asyncio.run(engine.export())
    assert result.outcome is ExportOutcome.SAVED
    assert result.filename.startswith("BIN_")
    assert (tmp_path / "out" / result.filename).exists()

    engine.apply_settings(export=ExportSettings())
    assert asyncio.run(engine.export()).outcome is ExportOutcome.DOWNLOADED
