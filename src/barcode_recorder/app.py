"""FastAPI application exposing the scan-and-record engine."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel

from .camera import CAMERA_SOURCES, CameraError, StreamSwitchError
from .config import FORM_FACTORS, RESOLUTION_PRESETS, ConfigManager
from .devices import CameraBackend
from .engine import ScanEngine
from .export import ExportOutcome, MemoryDownloadChannel
from .store import JsonFileStore
from .version import APP_VERSION


class CameraSwitchPayload(BaseModel):
    device_id: str


class RecordingStartPayload(BaseModel):
    group: str
    confirm_duplicate: bool = False


class GroupNamePayload(BaseModel):
    name: str


class ExportPayload(BaseModel):
    share: bool = False


class SettingsPayload(BaseModel):
    camera: str | None = None
    resolution: str | dict[str, int] | None = None
    form_factor: str | None = None
    scan: dict[str, float] | None = None
    export: dict[str, Any] | None = None


def _default_state_path(config_path: Path) -> Path:
    override = os.getenv("BARCODE_STATE_PATH")
    if override:
        return Path(override)
    return config_path.with_name("state.json")


def create_app(
    config_path: Path | str = Path("data/config.json"),
    *,
    state_path: Path | str | None = None,
    backend: CameraBackend | None = None,
) -> FastAPI:
    app = FastAPI(title="BarcodeRecorder", version=APP_VERSION)

    logger = logging.getLogger(__name__)

    config_path = Path(config_path)
    config_manager = ConfigManager(config_path)
    store = JsonFileStore(Path(state_path) if state_path is not None else _default_state_path(config_path))
    engine = ScanEngine.from_config(config_manager, store, backend=backend)
    app.state.engine = engine

    def _groups_payload() -> dict[str, object]:
        return {
            "entries": [entry.to_dict() for entry in engine.catalog],
            "rows": [
                {"barcode": barcode, "group": group}
                for barcode, group in engine.catalog.to_table()
            ],
            "preview": engine.exporter.preview(),
        }

    def _settings_payload() -> dict[str, object]:
        return {
            "camera": config_manager.get_camera(),
            "resolution": config_manager.get_resolution().key(),
            "form_factor": config_manager.get_form_factor(),
            "scan": config_manager.get_scan_settings().to_dict(),
            "export": config_manager.get_export_settings().to_dict(),
            "options": {
                "camera": list(CAMERA_SOURCES),
                "resolution": list(RESOLUTION_PRESETS),
                "form_factor": list(FORM_FACTORS),
            },
        }

    @app.on_event("startup")
    async def startup() -> None:  # pragma: no cover - framework hook
        try:
            await engine.start()
        except CameraError as exc:
            logger.error("Scanning unavailable at startup: %s", exc)

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - framework hook
        await engine.stop()

    @app.get("/api/status")
    async def get_status() -> dict[str, object]:
        status = engine.status()
        status["version"] = APP_VERSION
        status["backend"] = {
            "selected": config_manager.get_camera(),
            "options": [{"value": value, "label": label} for value, label in CAMERA_SOURCES.items()],
        }
        return status

    @app.get("/api/settings")
    async def get_settings() -> dict[str, object]:
        return _settings_payload()

    @app.post("/api/settings")
    async def update_settings(payload: SettingsPayload) -> dict[str, object]:
        data = payload.model_dump(exclude_none=True)
        if not data:
            raise HTTPException(status_code=400, detail="No settings provided")
        previous_camera = config_manager.get_camera()
        try:
            if "camera" in data:
                config_manager.set_camera(data["camera"])
            resolution = (
                config_manager.set_resolution(data["resolution"]) if "resolution" in data else None
            )
            scan = config_manager.set_scan_settings(data["scan"]) if "scan" in data else None
            form_factor = (
                config_manager.set_form_factor(data["form_factor"]) if "form_factor" in data else None
            )
            export = config_manager.set_export_settings(data["export"]) if "export" in data else None
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        engine.apply_settings(
            resolution=resolution, scan=scan, form_factor=form_factor, export=export
        )
        response = _settings_payload()
        # The camera backend is chosen when the engine is built.
        response["restart_required"] = config_manager.get_camera() != previous_camera
        return response

    @app.get("/api/devices")
    async def get_devices() -> dict[str, object]:
        active = engine.capture.active_device
        return {
            "devices": [device.to_dict() for device in engine.capture.devices],
            "active": active.id if active is not None else None,
        }

    @app.post("/api/camera/start")
    async def restart_camera() -> dict[str, object]:
        try:
            await engine.start()
        except CameraError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return engine.status()

    @app.post("/api/camera")
    async def switch_camera(payload: CameraSwitchPayload) -> dict[str, object]:
        try:
            device = await engine.switch_camera(payload.device_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StreamSwitchError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"active": device.to_dict() if device is not None else None}

    @app.post("/api/recording/start")
    async def start_recording(payload: RecordingStartPayload) -> dict[str, object]:
        try:
            result = engine.start_recording(
                payload.group, confirm_duplicate=payload.confirm_duplicate
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_dict()

    @app.post("/api/recording/stop")
    async def stop_recording() -> dict[str, object]:
        result = engine.stop_recording()
        response = result.to_dict()
        response["groups"] = _groups_payload()
        return response

    @app.get("/api/groups")
    async def get_groups() -> dict[str, object]:
        return _groups_payload()

    @app.delete("/api/groups")
    async def clear_groups() -> dict[str, object]:
        engine.clear_catalog()
        return _groups_payload()

    @app.get("/api/group-names")
    async def get_group_names() -> dict[str, object]:
        return {"names": list(engine.group_names.names)}

    @app.post("/api/group-names")
    async def add_group_name(payload: GroupNamePayload) -> dict[str, object]:
        added = engine.group_names.add(payload.name)
        return {"added": added, "names": list(engine.group_names.names)}

    @app.delete("/api/group-names/{name}")
    async def remove_group_name(name: str) -> dict[str, object]:
        removed = engine.group_names.remove(name)
        return {"removed": removed, "names": list(engine.group_names.names)}

    @app.post("/api/export")
    async def export_groups(payload: ExportPayload | None = None):
        share = payload.share if payload is not None else False
        result = await engine.export(share=share)
        download = engine.download
        if (
            result.outcome is ExportOutcome.DOWNLOADED
            and isinstance(download, MemoryDownloadChannel)
            and download.last_document is not None
        ):
            document = download.last_document
            return Response(
                content=document.payload,
                media_type=document.media_type,
                headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
            )
        return result.to_dict()

    @app.get("/api/snapshot")
    async def get_snapshot() -> Response:
        try:
            payload = await engine.snapshot()
        except CameraError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return Response(content=payload, media_type="image/jpeg")

    return app


__all__ = ["create_app"]
