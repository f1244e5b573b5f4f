"""Ownership of the active camera stream."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import numpy as np

from .camera import BaseCamera, CameraError, NoDeviceError, StreamSwitchError, summarise_exception
from .devices import CaptureDevice, DeviceDirectory, StreamRequest, is_handheld

logger = logging.getLogger(__name__)

DEFAULT_TARGET_RESOLUTION = (1280, 720)


class CapturePipeline:
    """Acquires, switches and releases the single active camera stream."""

    def __init__(
        self,
        directory: DeviceDirectory,
        *,
        resolution: tuple[int, int] | None = DEFAULT_TARGET_RESOLUTION,
        form_factor: str = "auto",
    ) -> None:
        self._directory = directory
        self._resolution = resolution
        self._form_factor = form_factor
        self._lock = asyncio.Lock()
        self._camera: Optional[BaseCamera] = None
        self._device: Optional[CaptureDevice] = None
        self._devices: list[CaptureDevice] = []

    @property
    def devices(self) -> list[CaptureDevice]:
        return list(self._devices)

    @property
    def active_device(self) -> CaptureDevice | None:
        return self._device

    @property
    def active_stream(self) -> BaseCamera | None:
        return self._camera

    @property
    def form_factor(self) -> str:
        return self._form_factor

    @form_factor.setter
    def form_factor(self, value: str) -> None:
        self._form_factor = value

    @property
    def resolution(self) -> tuple[int, int] | None:
        """Target resolution requested the next time a stream is acquired."""

        return self._resolution

    @resolution.setter
    def resolution(self, value: tuple[int, int] | None) -> None:
        self._resolution = value

    @property
    def mirrored(self) -> bool:
        """Whether previews should be mirrored for the current form factor."""

        if self._form_factor == "handheld":
            return False
        if self._form_factor == "desktop":
            return True
        return not is_handheld(self._devices)

    async def start(self) -> BaseCamera:
        """Enumerate devices and bind a stream on the default one.

        ``PermissionDeniedError`` and ``NoDeviceError`` propagate unchanged;
        the caller decides whether to retry.
        """

        async with self._lock:
            self._devices = await self._directory.list_devices()
            device = await self._directory.select_default(
                self._devices, resolution=self._resolution
            )
            await self._release_locked()
            camera = await self._acquire(device)
            self._bind_locked(device, camera)
            logger.info("Camera stream started on %s (%s)", device.label, device.id)
            return camera

    async def switch_to(self, device: CaptureDevice | str) -> BaseCamera:
        """Replace the active stream with one on *device*.

        The current stream is released before the new one is acquired. When
        acquisition fails the previous device is re-acquired where possible and
        :class:`StreamSwitchError` is raised.
        """

        async with self._lock:
            target = self._resolve_device(device)
            previous = self._device
            await self._release_locked()
            try:
                camera = await self._acquire(target)
            except CameraError as exc:
                detail = summarise_exception(exc)
                logger.error("Failed to switch camera to %s: %s", target.label, detail)
                if previous is not None:
                    await self._restore_locked(previous)
                raise StreamSwitchError(
                    f"Unable to switch to {target.label}: {detail}"
                ) from exc
            self._bind_locked(target, camera)
            logger.info("Switched camera stream to %s (%s)", target.label, target.id)
            return camera

    async def read_frame(self) -> np.ndarray | None:
        """Return the current frame, or ``None`` when no frame is ready.

        Reads hold the pipeline lock, so a switch or stop never releases a
        stream while a frame is being read from it.
        """

        async with self._lock:
            camera = self._camera
            if camera is None:
                return None
            try:
                return await camera.get_frame()
            except CameraError as exc:
                logger.debug("Frame not ready: %s", exc)
                return None

    async def stop(self) -> None:
        async with self._lock:
            await self._release_locked()

    def _resolve_device(self, device: CaptureDevice | str) -> CaptureDevice:
        if isinstance(device, CaptureDevice):
            return device
        for candidate in self._devices:
            if candidate.id == device:
                return candidate
        raise ValueError(f"Unknown capture device: {device}")

    async def _acquire(self, device: CaptureDevice) -> BaseCamera:
        request = StreamRequest(device_id=device.id, resolution=self._resolution)
        backend = self._directory.backend
        try:
            return await asyncio.to_thread(backend.open_stream, request)
        except CameraError:
            raise
        except Exception as exc:
            raise NoDeviceError(f"Failed to open {device.label}: {exc}") from exc

    async def _restore_locked(self, device: CaptureDevice) -> None:
        try:
            camera = await self._acquire(device)
        except CameraError as exc:
            logger.error("Failed to restore camera %s: %s", device.label, exc)
            return
        self._bind_locked(device, camera)
        logger.info("Restored camera stream on %s", device.label)

    def _bind_locked(self, device: CaptureDevice, camera: BaseCamera) -> None:
        self._device = device
        self._camera = camera

    async def _release_locked(self) -> None:
        camera = self._camera
        self._camera = None
        self._device = None
        if camera is None:
            return
        try:
            await camera.close()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            logger.warning("Failed to close camera stream: %s", exc)


__all__ = ["CapturePipeline", "DEFAULT_TARGET_RESOLUTION"]
