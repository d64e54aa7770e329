"""ICC profile handling built on :mod:`PIL.ImageCms` (littleCMS).

Images that already carry a profile are transformed into the target colour
space; untagged images simply receive the target profile so their pixel values
are left exactly as they were.

littleCMS is only reachable through 8-bit Pillow modes, so pixel arrays with a
higher bit depth are converted through a lookup table: littleCMS maps a regular
lattice of 8-bit colours and the table is interpolated at full precision.
"""
from __future__ import annotations

import dataclasses
import enum
import io
import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image, ImageCms
from scipy import ndimage

from .errors import ProfileLoadError

LOGGER = logging.getLogger("icc_tiff_batch_processor")

EMBEDDED_PROFILE_KEY = "icc_profile"
HIGH_PRECISION_FLAGS = ImageCms.Flags.HIGHRESPRECALC

# 255 == 5 * 51, so the lattice nodes land on exact 8-bit values.
LATTICE_STEP = 5
LATTICE_NODES = 255 // LATTICE_STEP + 1

# ICC header colour spaces mapped to the Pillow mode littleCMS writes for them.
_COLOR_SPACE_MODES = {
    "RGB": "RGB",
    "GRAY": "L",
    "CMYK": "CMYK",
    "Lab": "LAB",
}


class ColorOutcome(enum.Enum):
    TRANSFORMED = "transformed"
    EMBEDDED = "embedded"
    TRANSFORM_FAILED = "transform_failed"


@dataclasses.dataclass(frozen=True)
class ColorResult:
    """Pixels produced by :func:`apply_color_profile` or :func:`apply_color_profile_array`.

    Attributes:
        image: Image (or high bit depth pixel array) to export.
        icc_profile: Profile bytes to embed in the exported file.
        outcome: Which branch was taken.
    """

    image: Union[Image.Image, np.ndarray]
    icc_profile: Optional[bytes]
    outcome: ColorOutcome


def load_color_profile(path: Path) -> ImageCms.ImageCmsProfile:
    """Read an ICC profile from disk.

    Raises:
        ProfileLoadError: If the file is not a valid ICC profile.
    """
    try:
        return ImageCms.getOpenProfile(str(path))
    except (ImageCms.PyCMSError, OSError) as exc:
        raise ProfileLoadError(f"Unable to load colour profile '{path}': {exc}") from exc


def profile_description(profile: ImageCms.ImageCmsProfile) -> str:
    try:
        return ImageCms.getProfileDescription(profile).strip()
    except ImageCms.PyCMSError:
        return "<unnamed profile>"


def embedded_profile(image: Image.Image) -> Optional[bytes]:
    """Return the ICC profile embedded in *image*, if any."""

    data = image.info.get(EMBEDDED_PROFILE_KEY)
    return data or None


def _target_mode(profile: ImageCms.ImageCmsProfile) -> Optional[str]:
    return _COLOR_SPACE_MODES.get(profile.profile.xcolor_space.strip())


def output_mode_for(image: Image.Image, profile: ImageCms.ImageCmsProfile) -> str:
    """Pick the Pillow mode the transformed image should have."""

    mode = _target_mode(profile)
    if mode is None:
        return image.mode
    if mode == "RGB" and "A" in image.getbands():
        return "RGBA"
    return mode


def transform_color_space(
    image: Image.Image,
    source_icc: bytes,
    target: ImageCms.ImageCmsProfile,
) -> Optional[Image.Image]:
    """Convert *image* from its embedded profile into *target*.

    Uses the high-precision transform (``HIGHRESPRECALC``). Returns ``None``
    when littleCMS cannot build or apply the transform instead of raising.
    """
    try:
        source = ImageCms.ImageCmsProfile(io.BytesIO(source_icc))
        return ImageCms.profileToProfile(
            image,
            source,
            target,
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            outputMode=output_mode_for(image, target),
            flags=HIGH_PRECISION_FLAGS,
        )
    except (ImageCms.PyCMSError, OSError) as exc:
        LOGGER.debug("Colour transform failed for %s image: %s", image.mode, exc)
        return None


def apply_color_profile(image: Image.Image, target: ImageCms.ImageCmsProfile) -> ColorResult:
    """Transform into or tag *image* with the *target* profile."""

    target_bytes = target.tobytes()
    source_icc = embedded_profile(image)

    if source_icc is None:
        return ColorResult(image=image, icc_profile=target_bytes, outcome=ColorOutcome.EMBEDDED)

    transformed = transform_color_space(image, source_icc, target)
    if transformed is None:
        return ColorResult(
            image=image, icc_profile=source_icc, outcome=ColorOutcome.TRANSFORM_FAILED
        )
    return ColorResult(image=transformed, icc_profile=target_bytes, outcome=ColorOutcome.TRANSFORMED)


def _lattice(colour_samples: int) -> Image.Image:
    nodes = np.arange(0, 256, LATTICE_STEP, dtype=np.uint8)
    if colour_samples == 1:
        return Image.fromarray(nodes.reshape(1, LATTICE_NODES))
    grid = np.stack(np.meshgrid(nodes, nodes, nodes, indexing="ij"), axis=-1)
    return Image.fromarray(np.ascontiguousarray(grid.reshape(LATTICE_NODES**2, LATTICE_NODES, 3)))


def _sample_range(dtype: np.dtype) -> float:
    if np.issubdtype(dtype, np.integer):
        return float(np.iinfo(dtype).max)
    return 1.0


def transform_pixel_array(
    pixels: np.ndarray,
    source_icc: bytes,
    target: ImageCms.ImageCmsProfile,
) -> Optional[np.ndarray]:
    """Convert a greyscale or RGB array of any bit depth into *target*.

    Extra samples (alpha) pass through untouched and the dtype is preserved.
    Returns ``None`` when the transform cannot be built, including targets
    whose colour space has a different number of channels than *pixels*.
    """
    colour_samples = 3 if pixels.ndim == 3 and pixels.shape[2] >= 3 else 1
    mode = "RGB" if colour_samples == 3 else "L"
    if _target_mode(target) != mode:
        LOGGER.debug("Cannot map %s-channel pixels into a %s profile", colour_samples, _target_mode(target))
        return None

    try:
        source = ImageCms.ImageCmsProfile(io.BytesIO(source_icc))
        mapped = ImageCms.profileToProfile(
            _lattice(colour_samples),
            source,
            target,
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            outputMode=mode,
            flags=HIGH_PRECISION_FLAGS,
        )
    except (ImageCms.PyCMSError, OSError) as exc:
        LOGGER.debug("Colour transform failed for %s pixels: %s", pixels.dtype, exc)
        return None

    table = np.asarray(mapped, dtype=np.float64) / 255.0
    sample_range = _sample_range(pixels.dtype)
    if pixels.ndim == 2:
        colour = pixels[:, :, None]
    else:
        colour = pixels[:, :, :colour_samples]
    coords = np.clip(colour.astype(np.float64) / sample_range, 0.0, 1.0) * (LATTICE_NODES - 1)

    if colour_samples == 1:
        converted = np.interp(coords, np.arange(LATTICE_NODES), table.ravel())
    else:
        cube = table.reshape(LATTICE_NODES, LATTICE_NODES, LATTICE_NODES, 3)
        grid = np.moveaxis(coords, -1, 0)
        converted = np.stack(
            [ndimage.map_coordinates(cube[..., idx], grid, order=1, mode="nearest") for idx in range(3)],
            axis=-1,
        )

    converted = converted * sample_range
    if np.issubdtype(pixels.dtype, np.integer):
        converted = np.clip(np.round(converted), 0, sample_range)
    converted = converted.astype(pixels.dtype)

    if pixels.ndim == 2:
        return converted[:, :, 0]
    return np.concatenate([converted, pixels[:, :, colour_samples:]], axis=2)


def apply_color_profile_array(
    pixels: np.ndarray,
    source_icc: Optional[bytes],
    target: ImageCms.ImageCmsProfile,
) -> ColorResult:
    """High bit depth counterpart of :func:`apply_color_profile`."""

    target_bytes = target.tobytes()
    if source_icc is None:
        return ColorResult(image=pixels, icc_profile=target_bytes, outcome=ColorOutcome.EMBEDDED)

    transformed = transform_pixel_array(pixels, source_icc, target)
    if transformed is None:
        return ColorResult(
            image=pixels, icc_profile=source_icc, outcome=ColorOutcome.TRANSFORM_FAILED
        )
    return ColorResult(image=transformed, icc_profile=target_bytes, outcome=ColorOutcome.TRANSFORMED)


__all__ = [
    "ColorOutcome",
    "ColorResult",
    "apply_color_profile",
    "apply_color_profile_array",
    "embedded_profile",
    "load_color_profile",
    "output_mode_for",
    "profile_description",
    "transform_color_space",
    "transform_pixel_array",
]
