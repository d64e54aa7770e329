"""File input/output helpers for the ICC TIFF batch processor.

Functions
---------

staged_output
    Context manager that writes to a hidden temporary file beside the
    destination and moves it into place only when the block succeeds.

read_high_bit_depth
    Decode TIFF files with more than 8 bits per sample through :mod:`tifffile`
    so that their full precision survives the round trip.

save_image
    Encode a Pillow image as TIFF with an embedded ICC profile and the
    descriptive tags of its source.

save_array
    Encode a high bit depth pixel array with :func:`tifffile.imwrite`, passing
    the ICC profile and the copied tags as ``extratags``.

write_text
    Atomically replace a text file.
"""
from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

import numpy as np
import tifffile
from PIL import Image

LOGGER = logging.getLogger("icc_tiff_batch_processor")

ICC_PROFILE_TAG = 34675

# Tags Pillow derives from the pixel data, plus offsets into the source file
# that would dangle once copied.
STRUCTURAL_TIFF_TAGS = frozenset(
    {
        254,  # NewSubfileType
        256,  # ImageWidth
        257,  # ImageLength
        258,  # BitsPerSample
        259,  # Compression
        262,  # PhotometricInterpretation
        273,  # StripOffsets
        277,  # SamplesPerPixel
        278,  # RowsPerStrip
        279,  # StripByteCounts
        284,  # PlanarConfiguration
        288,  # FreeOffsets
        289,  # FreeByteCounts
        317,  # Predictor
        320,  # ColorMap
        322,  # TileWidth
        323,  # TileLength
        324,  # TileOffsets
        325,  # TileByteCounts
        330,  # SubIFDs
        338,  # ExtraSamples
        339,  # SampleFormat
        513,  # JPEGInterchangeFormat
        514,  # JPEGInterchangeFormatLength
        34665,  # ExifIFD
        34675,  # InterColorProfile
        34853,  # GPSIFD
    }
)

_COMPRESSION_ALIASES = {
    "none": "raw",
    "raw": "raw",
    "tiff_none": "raw",
    "lzw": "tiff_lzw",
    "tiff_lzw": "tiff_lzw",
    "deflate": "tiff_adobe_deflate",
    "zip": "tiff_adobe_deflate",
    "adobe_deflate": "tiff_adobe_deflate",
    "tiff_adobe_deflate": "tiff_adobe_deflate",
    "tiff_deflate": "tiff_deflate",
    "packbits": "packbits",
    "jpeg": "jpeg",
    "tiff_jpeg": "jpeg",
}

# Compression tag values mapped to the names Pillow reports in ``info``.
_SOURCE_COMPRESSION = {
    1: "raw",
    5: "tiff_lzw",
    8: "tiff_adobe_deflate",
    32773: "packbits",
    32946: "tiff_deflate",
}

# Pillow compression names mapped to tifffile writer names.
_TIFFFILE_COMPRESSION = {
    "raw": None,
    "tiff_lzw": "lzw",
    "tiff_adobe_deflate": "adobe_deflate",
    "tiff_deflate": "deflate",
    "packbits": "packbits",
}

_RESOLUTION_TAGS = frozenset({282, 283, 296})

# IFD and IFD8 typed tags cannot be written through extratags.
_UNCOPYABLE_DTYPES = frozenset({13, 18})

ExtraTag = Tuple[int, int, int, Any, bool]


@dataclasses.dataclass(frozen=True)
class HighBitDepthRaster:
    """First page of a TIFF file decoded at its stored precision.

    Attributes:
        pixels: ``(height, width)`` or ``(height, width, samples)`` array in the
            source dtype.
        icc_profile: Embedded ICC profile, if any.
        extratags: Descriptive source tags ready for :func:`tifffile.imwrite`.
        compression: Source compression as a Pillow-style name.
    """

    pixels: np.ndarray
    icc_profile: Optional[bytes]
    extratags: Tuple[ExtraTag, ...]
    compression: str


@contextlib.contextmanager
def staged_output(destination: Path, suffix: str = ".tmp") -> Iterator[Path]:
    """Yield a temporary path that replaces *destination* on success.

    The staged file lives in the destination directory under a dotted name so
    an interrupted run never leaves a half-written ``*_icc.tif`` behind.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    staged = destination.parent / f".{destination.name}{suffix}-{uuid.uuid4().hex}"
    try:
        yield staged
        os.replace(staged, destination)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            staged.unlink()
        raise


def normalise_compression(name: str) -> str:
    """Map user-facing compression names to Pillow's TIFF encoder names."""

    return _COMPRESSION_ALIASES.get(name.lower(), name.lower())


def resolve_compression(source_info: Mapping[str, Any], requested: Optional[str]) -> str:
    """Return the requested compression, or the one the source was stored with."""

    if requested:
        return normalise_compression(requested)
    return normalise_compression(str(source_info.get("compression") or "raw"))


def compression_for_tifffile(compression: str) -> Optional[str]:
    """Map a Pillow compression name to the tifffile writer name.

    Schemes tifffile cannot apply to high bit depth data fall back to
    uncompressed output.
    """
    name = normalise_compression(compression)
    if name not in _TIFFFILE_COMPRESSION:
        LOGGER.debug("Compression %s unavailable for high bit depth output; writing uncompressed", name)
    return _TIFFFILE_COMPRESSION.get(name)


def sanitize_tiff_metadata(raw_metadata: Optional[Mapping[int, Any]]) -> Optional[Dict[int, Any]]:
    """Keep the descriptive tags of *raw_metadata* that can be copied verbatim."""

    if raw_metadata is None:
        return None
    safe: Dict[int, Any] = {}
    try:
        for tag in raw_metadata:
            if tag in STRUCTURAL_TIFF_TAGS:
                continue
            safe[tag] = raw_metadata[tag]
    except (TypeError, ValueError, KeyError):  # pragma: no cover - metadata best effort
        LOGGER.debug("Unable to sanitise TIFF metadata", exc_info=True)
        return None
    return safe or None


def _extratag_for(tag: tifffile.TiffTag) -> Optional[ExtraTag]:
    """Convert a source tag into a tifffile extratag tuple when it can be copied."""

    dtype = int(tag.dtype)
    if tag.code in STRUCTURAL_TIFF_TAGS or dtype in _UNCOPYABLE_DTYPES:
        return None
    value = tag.value
    if isinstance(value, dict):
        return None
    if isinstance(value, np.ndarray):
        value = tuple(value.ravel().tolist())

    if dtype == 2:
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        return (tag.code, dtype, 0, data, False)
    if isinstance(value, (bytes, bytearray)):
        return (tag.code, dtype, len(value), bytes(value), False)
    if dtype in (5, 10):
        flat = tuple(int(item) for item in np.asarray(value).ravel().tolist())
        return (tag.code, dtype, len(flat) // 2, flat, False)
    if isinstance(value, (tuple, list)):
        return (tag.code, dtype, len(value), tuple(value), False)
    return (tag.code, dtype, 1, value, False)


def read_high_bit_depth(source: Path) -> Optional[HighBitDepthRaster]:
    """Decode the first page of *source* when it stores more than 8 bits per sample.

    Returns ``None`` for 8-bit (and bilevel) files, which Pillow decodes
    losslessly.

    Raises:
        ValueError: If a high bit depth page uses a photometric interpretation
            other than greyscale or RGB.
    """
    with tifffile.TiffFile(source) as tif:
        page = tif.pages[0]
        if page.bitspersample <= 8:
            return None
        if page.photometric not in (tifffile.PHOTOMETRIC.MINISBLACK, tifffile.PHOTOMETRIC.RGB):
            raise ValueError(
                f"{page.bitspersample}-bit TIFF files with {page.photometric.name} "
                "photometric interpretation are not supported"
            )
        pixels = page.asarray()
        if page.planarconfig == tifffile.PLANARCONFIG.SEPARATE and pixels.ndim == 3:
            pixels = np.moveaxis(pixels, 0, -1)

        icc_tag = page.tags.get(ICC_PROFILE_TAG)
        extratags = tuple(
            extratag
            for extratag in (_extratag_for(tag) for tag in page.tags.values())
            if extratag is not None
        )
        return HighBitDepthRaster(
            pixels=np.ascontiguousarray(pixels),
            icc_profile=bytes(icc_tag.value) if icc_tag is not None and icc_tag.value else None,
            extratags=extratags,
            compression=_SOURCE_COMPRESSION.get(int(page.compression), "raw"),
        )


def save_image(
    destination: Path,
    image: Image.Image,
    *,
    icc_profile: Optional[bytes],
    metadata: Optional[Mapping[int, Any]] = None,
    compression: str = "raw",
) -> None:
    """Write *image* as a TIFF file at *destination*."""

    save_kwargs: Dict[str, Any] = {"compression": compression}
    tiffinfo = sanitize_tiff_metadata(metadata)
    if tiffinfo:
        save_kwargs["tiffinfo"] = tiffinfo
    if icc_profile:
        save_kwargs["icc_profile"] = icc_profile
    image.save(os.fspath(destination), format="TIFF", **save_kwargs)


def save_array(
    destination: Path,
    pixels: np.ndarray,
    *,
    icc_profile: Optional[bytes],
    extratags: Iterable[ExtraTag] = (),
    compression: str = "raw",
) -> None:
    """Write a greyscale or RGB array, with optional extra samples, via tifffile."""

    extra_samples = 0
    photometric = "minisblack"
    if pixels.ndim == 3:
        colour_samples = 3 if pixels.shape[2] >= 3 else 1
        photometric = "rgb" if colour_samples == 3 else "minisblack"
        extra_samples = pixels.shape[2] - colour_samples

    by_code = {tag[0]: tag for tag in extratags}
    # tifffile always writes its own resolution tags; route the source values through them.
    tags = [tag for code, tag in by_code.items() if code not in _RESOLUTION_TAGS and code != ICC_PROFILE_TAG]
    if icc_profile:
        tags.append((ICC_PROFILE_TAG, 7, len(icc_profile), icc_profile, False))

    tiff_kwargs: Dict[str, Any] = {
        "photometric": photometric,
        "compression": compression_for_tifffile(compression),
        "metadata": None,
        "software": False,
        "extratags": tags,
    }
    if 282 in by_code and 283 in by_code:
        tiff_kwargs["resolution"] = (tuple(by_code[282][3][:2]), tuple(by_code[283][3][:2]))
        if 296 in by_code:
            tiff_kwargs["resolutionunit"] = int(by_code[296][3])
    if extra_samples:
        tiff_kwargs["extrasamples"] = ["unassalpha"] * extra_samples
    tifffile.imwrite(os.fspath(destination), pixels, **tiff_kwargs)


def write_text(destination: Path, text: str) -> None:
    with staged_output(destination) as staged:
        staged.write_text(text, encoding="utf-8")


__all__ = [
    "HighBitDepthRaster",
    "ICC_PROFILE_TAG",
    "STRUCTURAL_TIFF_TAGS",
    "compression_for_tifffile",
    "normalise_compression",
    "read_high_bit_depth",
    "resolve_compression",
    "sanitize_tiff_metadata",
    "save_array",
    "save_image",
    "staged_output",
    "write_text",
]
