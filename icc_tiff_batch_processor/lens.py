"""Barrel lens-distortion correction.

The radial model matches the common ``barrel a b c`` convention: for every
destination pixel at normalised radius ``r`` the source is sampled at radius
``r * (a*r**3 + b*r**2 + c*r + d)``. The radius is measured from the image
centre and normalised to half the shorter side.
"""
from __future__ import annotations

import logging

import numpy as np
from PIL import Image
from scipy import ndimage

from .config import LensCorrectionParams

LOGGER = logging.getLogger("icc_tiff_batch_processor")


def barrel_source_coordinates(height: int, width: int, params: LensCorrectionParams) -> np.ndarray:
    """Return ``(2, height, width)`` source row/column coordinates for each output pixel."""

    rows, cols = np.indices((height, width), dtype=np.float64)
    centre_y = (height - 1) / 2.0
    centre_x = (width - 1) / 2.0
    norm = max(min(width, height) / 2.0, 1.0)

    offset_y = rows - centre_y
    offset_x = cols - centre_x
    radius = np.hypot(offset_y, offset_x) / norm
    scale = ((params.a * radius + params.b) * radius + params.c) * radius + params.d

    return np.stack([centre_y + offset_y * scale, centre_x + offset_x * scale])


def _resample_channel(channel: np.ndarray, coords: np.ndarray, order: int) -> np.ndarray:
    resampled = ndimage.map_coordinates(
        channel.astype(np.float64, copy=False), coords, order=order, mode="nearest"
    )
    if np.issubdtype(channel.dtype, np.integer):
        info = np.iinfo(channel.dtype)
        resampled = np.clip(np.round(resampled), info.min, info.max)
    return resampled.astype(channel.dtype)


def warp_pixels(pixels: np.ndarray, params: LensCorrectionParams, order: int = 1) -> np.ndarray:
    """Apply the barrel model to a ``(h, w)`` or ``(h, w, samples)`` array, keeping its dtype."""

    height, width = pixels.shape[:2]
    coords = barrel_source_coordinates(height, width, params)
    if pixels.ndim == 2:
        return _resample_channel(pixels, coords, order)
    return np.stack(
        [_resample_channel(pixels[:, :, idx], coords, order) for idx in range(pixels.shape[2])],
        axis=2,
    )


def apply_barrel_distortion(image: Image.Image, params: LensCorrectionParams) -> Image.Image:
    """Warp *image* with the barrel model, keeping its size, mode and info."""

    bilevel = image.mode == "1"
    working = image.convert("L") if bilevel else image
    # Palette indices and bilevel pixels cannot be blended.
    order = 0 if bilevel or image.mode == "P" else 1

    LOGGER.debug(
        "Applying barrel distortion %s to %sx%s %s image",
        params.as_tuple(),
        image.width,
        image.height,
        image.mode,
    )
    warped = warp_pixels(np.asarray(working), params, order=order)

    corrected = Image.frombytes(working.mode, working.size, np.ascontiguousarray(warped).tobytes())
    if image.mode == "P":
        corrected.putpalette(image.getpalette())
    elif bilevel:
        corrected = corrected.convert("1", dither=Image.Dither.NONE)
    corrected.info.update(image.info)
    return corrected


__all__ = ["apply_barrel_distortion", "barrel_source_coordinates", "warp_pixels"]
