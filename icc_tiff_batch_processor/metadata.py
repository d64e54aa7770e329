"""Image attribute extraction into ``.exif.json`` sidecars.

Attributes are read from the first image directory of the TIFF with
:mod:`tifffile` and flattened into ``prefix:Name`` string pairs:

- ``tiff:*`` for baseline and extension TIFF tags,
- ``exif:*`` for the EXIF (and interoperability) sub-directory,
- ``gps:*`` for the GPS sub-directory.

Binary payloads (ICC, XMP, IPTC, Photoshop resources) and strip/tile offsets
are left out; they describe the container rather than the picture.
"""
from __future__ import annotations

import enum
import json
import logging
from pathlib import Path
from typing import Any, Dict

import numpy as np
import tifffile

from .io_utils import write_text

LOGGER = logging.getLogger("icc_tiff_batch_processor")

ExifRecord = Dict[str, str]

EXIF_IFD_TAG = 34665
GPS_IFD_TAG = 34853
_RATIONAL_TYPES = frozenset({5, 10})

SKIPPED_TAGS = frozenset(
    {
        273,  # StripOffsets
        279,  # StripByteCounts
        320,  # ColorMap
        324,  # TileOffsets
        325,  # TileByteCounts
        700,  # XMP
        33723,  # IPTC
        34377,  # Photoshop
        34675,  # InterColorProfile
    }
)


def _stringify(value: Any) -> str:
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace").strip("\x00").strip()
    if isinstance(value, str):
        return value.strip("\x00").strip()
    if isinstance(value, np.ndarray):
        value = value.tolist()
    if isinstance(value, dict):
        return ", ".join(f"{key}={_stringify(item)}" for key, item in value.items())
    if isinstance(value, (tuple, list)):
        return ", ".join(_stringify(item) for item in value)
    return str(value)


def _format_rational(value: Any) -> str:
    flat = list(np.asarray(value).ravel().tolist())
    if len(flat) % 2:
        return _stringify(value)
    pairs = zip(flat[0::2], flat[1::2])
    return ", ".join(f"{numerator}/{denominator}" for numerator, denominator in pairs)


def _tag_value(tag: tifffile.TiffTag) -> str:
    if int(tag.dtype) in _RATIONAL_TYPES:
        return _format_rational(tag.value)
    return _stringify(tag.value)


def extract_metadata(source: Path) -> ExifRecord:
    """Collect the attributes of the first image in *source*.

    Returns:
        Mapping of attribute name to string value, in directory order.
    """
    record: ExifRecord = {}
    with tifffile.TiffFile(source) as tif:
        record["tiff:endian"] = "msb" if tif.byteorder == ">" else "lsb"
        page = tif.pages[0]
        for tag in page.tags.values():
            if tag.code in SKIPPED_TAGS:
                continue
            if isinstance(tag.value, dict):
                prefix = "gps" if tag.code == GPS_IFD_TAG else "exif"
                for name, value in tag.value.items():
                    record[f"{prefix}:{name}"] = _stringify(value)
                continue
            record[f"tiff:{tag.name}"] = _tag_value(tag)
    return record


def write_metadata_sidecar(record: ExifRecord, destination: Path) -> None:
    """Serialise *record* to *destination*, replacing any previous file."""

    write_text(destination, json.dumps(record, indent=2, ensure_ascii=False) + "\n")


__all__ = [
    "EXIF_IFD_TAG",
    "ExifRecord",
    "GPS_IFD_TAG",
    "SKIPPED_TAGS",
    "extract_metadata",
    "write_metadata_sidecar",
]
