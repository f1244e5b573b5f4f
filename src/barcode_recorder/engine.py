"""Scan-and-record engine wiring capture, decoding, recording and export."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from .camera import CameraError, summarise_exception
from .capture import CapturePipeline
from .catalog import GroupCatalog, GroupEntry, SavedGroupNames
from .config import (
    DEFAULT_EXPORT_SETTINGS,
    DEFAULT_RESOLUTION,
    DEFAULT_SCAN_SETTINGS,
    ConfigManager,
    ExportSettings,
    Resolution,
    ScanSettings,
)
from .decoding import DecodeOrchestrator, DecodeStrategy, Detection
from .devices import CameraBackend, CaptureDevice, DeviceDirectory, create_backend
from .export import (
    DirectorySaveChannel,
    DownloadChannel,
    ExportPipeline,
    ExportResult,
    MemoryDownloadChannel,
    SaveChannel,
    ShareSurface,
)
from .preview import encode_frame_to_jpeg, present_frame
from .session import RecordingSession, normalise_group_name
from .store import KeyValueStore

logger = logging.getLogger(__name__)


class RecordingStartStatus(str, Enum):
    STARTED = "started"
    RESTARTED = "restarted"
    DUPLICATE_GROUP = "duplicate_group"


class RecordingStopStatus(str, Enum):
    COMMITTED = "committed"
    NOTHING_COLLECTED = "nothing_collected"
    NOT_RECORDING = "not_recording"


@dataclass(frozen=True, slots=True)
class RecordingStart:
    status: RecordingStartStatus
    group: str

    def to_dict(self) -> dict[str, object]:
        return {"status": self.status.value, "group": self.group}


@dataclass(frozen=True, slots=True)
class RecordingStop:
    status: RecordingStopStatus
    entry: GroupEntry | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "entry": self.entry.to_dict() if self.entry is not None else None,
        }


class ScanEngine:
    """Single owned context for one scanning station."""

    def __init__(
        self,
        directory: DeviceDirectory,
        store: KeyValueStore,
        *,
        resolution: Resolution = DEFAULT_RESOLUTION,
        scan: ScanSettings = DEFAULT_SCAN_SETTINGS,
        form_factor: str = "auto",
        export: ExportSettings = DEFAULT_EXPORT_SETTINGS,
        strategies: Sequence[DecodeStrategy] | None = None,
        download: DownloadChannel | None = None,
        save: SaveChannel | None = None,
        share: ShareSurface | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capture = CapturePipeline(
            directory, resolution=resolution.as_tuple(), form_factor=form_factor
        )
        self.orchestrator = DecodeOrchestrator(
            self.capture.read_frame,
            strategies,
            interval=scan.interval_seconds,
            dedup_window=scan.dedup_window_seconds,
            clock=clock,
        )
        self.orchestrator.add_listener(self._handle_detection)
        self.session = RecordingSession()
        self.catalog = GroupCatalog(store)
        self.group_names = SavedGroupNames(store)
        self.download = download if download is not None else MemoryDownloadChannel()
        self._custom_save = save
        self.exporter = ExportPipeline(
            self.catalog.to_table,
            self.download,
            save=self._save_channel_for(export),
            share=share,
            prefix=export.prefix,
            header=export.header,
        )
        self._last_detection: Detection | None = None
        self._camera_error: str | None = None

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        store: KeyValueStore,
        *,
        backend: CameraBackend | None = None,
        **kwargs: object,
    ) -> "ScanEngine":
        export_settings = config.get_export_settings()
        return cls(
            DeviceDirectory(backend or create_backend(config.get_camera())),
            store,
            resolution=config.get_resolution(),
            scan=config.get_scan_settings(),
            form_factor=config.get_form_factor(),
            export=export_settings,
            **kwargs,
        )

    # ------------------------------ settings -------------------------------
    def _save_channel_for(self, export: ExportSettings) -> SaveChannel | None:
        if self._custom_save is not None:
            return self._custom_save
        if export.directory:
            return DirectorySaveChannel.for_directory(Path(export.directory))
        return None

    def apply_settings(
        self,
        *,
        resolution: Resolution | None = None,
        scan: ScanSettings | None = None,
        form_factor: str | None = None,
        export: ExportSettings | None = None,
    ) -> None:
        """Apply updated settings to the running engine.

        A new resolution is requested the next time a stream is acquired.
        """

        if resolution is not None:
            self.capture.resolution = resolution.as_tuple()
        if scan is not None:
            self.orchestrator.apply_settings(
                interval=scan.interval_seconds, dedup_window=scan.dedup_window_seconds
            )
        if form_factor is not None:
            self.capture.form_factor = form_factor
        if export is not None:
            self.exporter.configure(
                prefix=export.prefix, header=export.header, save=self._save_channel_for(export)
            )

    # ------------------------------ lifecycle ------------------------------
    async def start(self) -> None:
        """Acquire the default camera and begin scanning.

        Camera errors are recorded for status reporting and re-raised.
        """

        try:
            await self.capture.start()
        except CameraError as exc:
            self._camera_error = summarise_exception(exc)
            logger.error("Camera unavailable: %s", self._camera_error)
            raise
        self._camera_error = None
        await self.orchestrator.start()

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.capture.stop()

    async def switch_camera(self, device: CaptureDevice | str) -> CaptureDevice | None:
        """Move scanning to *device*; the recording session is left untouched."""

        async with self.orchestrator.paused_scanning():
            try:
                await self.capture.switch_to(device)
            except CameraError as exc:
                self._camera_error = summarise_exception(exc)
                raise
        self._camera_error = None
        return self.capture.active_device

    # ------------------------------ detections -----------------------------
    def _handle_detection(self, detection: Detection) -> None:
        self._last_detection = detection
        self.session.on_detection(detection.value)

    @property
    def last_detection(self) -> Detection | None:
        return self._last_detection

    # ------------------------------ recording ------------------------------
    def start_recording(self, group_name: str, *, confirm_duplicate: bool = False) -> RecordingStart:
        name = normalise_group_name(group_name)
        if self.catalog.has_group(name) and not confirm_duplicate:
            return RecordingStart(RecordingStartStatus.DUPLICATE_GROUP, name)
        restarted = self.session.active
        self.session.begin(name)
        logger.info("Recording started for group %r", name)
        status = RecordingStartStatus.RESTARTED if restarted else RecordingStartStatus.STARTED
        return RecordingStart(status, name)

    def stop_recording(self) -> RecordingStop:
        if not self.session.active:
            return RecordingStop(RecordingStopStatus.NOT_RECORDING)
        entry = self.session.end()
        if entry is None:
            logger.info("Recording stopped without any codes")
            return RecordingStop(RecordingStopStatus.NOTHING_COLLECTED)
        self.catalog.append(entry)
        return RecordingStop(RecordingStopStatus.COMMITTED, entry)

    def clear_catalog(self) -> None:
        self.catalog.clear()

    # ------------------------------ export ---------------------------------
    async def export(self, *, share: bool = False) -> ExportResult:
        return await self.exporter.export(share=share)

    async def snapshot(self, *, quality: int = 85) -> bytes:
        frame = await self.capture.read_frame()
        if frame is None:
            raise CameraError("No camera frame available")
        return encode_frame_to_jpeg(
            present_frame(frame, mirrored=self.capture.mirrored), quality=quality
        )

    def status(self) -> dict[str, object]:
        device = self.capture.active_device
        detection = self._last_detection
        return {
            "scanning": self.orchestrator.running and not self.orchestrator.paused,
            "camera": {
                "active": device.to_dict() if device is not None else None,
                "devices": [candidate.to_dict() for candidate in self.capture.devices],
                "mirrored": self.capture.mirrored,
                "error": self._camera_error,
            },
            "recording": self.session.snapshot(),
            "last_detection": detection.to_dict() if detection is not None else None,
            "groups": len(self.catalog),
            "rows": len(self.catalog.to_table()),
        }


__all__ = [
    "RecordingStart",
    "RecordingStartStatus",
    "RecordingStop",
    "RecordingStopStatus",
    "ScanEngine",
]
