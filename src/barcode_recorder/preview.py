"""Preview frame presentation helpers."""
from __future__ import annotations

import inspect

import numpy as np

try:  # pragma: no cover - dependency availability varies by platform
    import simplejpeg
except ImportError as exc:  # pragma: no cover - dependency availability varies
    simplejpeg = None
    _SIMPLEJPEG_IMPORT_ERROR = exc
    _SIMPLEJPEG_ENCODE_KWARGS: set[str] = set()
else:  # pragma: no cover - dependency availability varies
    _SIMPLEJPEG_IMPORT_ERROR = None
    try:  # pragma: no cover - dependency availability varies
        _SIMPLEJPEG_ENCODE_KWARGS = set(
            inspect.signature(simplejpeg.encode_jpeg).parameters
        )
    except (TypeError, ValueError):  # pragma: no cover - C-extension signature unsupported
        _SIMPLEJPEG_ENCODE_KWARGS = set()


def prepare_rgb_frame(frame: np.ndarray | list) -> np.ndarray:
    """Return a contiguous uint8 RGB frame."""

    array = np.asarray(frame)
    if array.ndim == 2:
        array = np.repeat(array[:, :, np.newaxis], 3, axis=2)
    elif array.ndim == 3:
        if array.shape[2] == 1:
            array = np.repeat(array, 3, axis=2)
        elif array.shape[2] > 3:
            array = array[:, :, :3]
    else:
        raise ValueError("Expected a 2D or 3D frame for preview")

    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    if not array.flags["C_CONTIGUOUS"]:
        array = np.ascontiguousarray(array)

    return array


def present_frame(frame: np.ndarray | list, *, mirrored: bool) -> np.ndarray:
    """Apply the cosmetic preview transform; decoding never sees this frame."""

    array = prepare_rgb_frame(frame)
    if mirrored:
        array = np.ascontiguousarray(np.flip(array, axis=1))
    return array


def encode_frame_to_jpeg(frame: np.ndarray | list, *, quality: int = 85) -> bytes:
    """Encode an RGB frame into JPEG bytes using the configured quality."""

    if simplejpeg is None:  # pragma: no cover - dependency availability varies
        raise RuntimeError(
            "simplejpeg is required for JPEG encoding"
        ) from _SIMPLEJPEG_IMPORT_ERROR

    array = prepare_rgb_frame(frame)
    encode_kwargs: dict[str, object] = {
        "quality": int(quality),
        "colorspace": "RGB",
    }
    if "fastdct" in _SIMPLEJPEG_ENCODE_KWARGS:
        encode_kwargs["fastdct"] = True
    return simplejpeg.encode_jpeg(array, **encode_kwargs)


__all__ = ["encode_frame_to_jpeg", "prepare_rgb_frame", "present_frame"]
