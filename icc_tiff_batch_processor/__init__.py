"""ICC colour profile batch processing for folders of TIFF images.

Every ``.tif`` file of a folder is decoded, optionally corrected for barrel
lens distortion, transformed into (or tagged with) a target ICC profile, and
written next to its source as ``<name>_icc.tif``. Its attributes are exported
to a ``<name>.exif.json`` sidecar.

Module Organization
-------------------

config
    Input validation, lens parameter parsing, and the immutable ``RunConfig``.

color
    ICC profile loading, colour-space transform and profile embedding
    through ``PIL.ImageCms``, with a lookup-table path for 16-bit pixels.

lens
    Barrel distortion correction resampled with ``scipy.ndimage``.

metadata
    TIFF/EXIF/GPS attribute extraction with ``tifffile`` and JSON sidecars.

io_utils
    Staged (atomic) writes, TIFF encoding with Pillow, and high bit depth
    decoding and encoding with ``tifffile``.

pipeline
    File discovery, the per-file pipeline, and the thread-pool dispatcher.

reporting
    Outcome summary and elapsed-time reporting.

cli
    Command-line entry point.

Example Usage
-------------

    from pathlib import Path
    from icc_tiff_batch_processor import collect_images, run_batch, validate_inputs

    config = validate_inputs(Path("scans"), Path("AdobeRGB1998.icc"), "0.0, -0.02, 0.0")
    results = run_batch(collect_images(config.source_dir), config)
"""
from __future__ import annotations

import logging

from .cli import main, parse_args, run_pipeline
from .color import ColorOutcome, ColorResult, apply_color_profile, load_color_profile
from .config import (
    LensCorrectionParams,
    RunConfig,
    build_run_config,
    parse_lens_params,
    validate_inputs,
)
from .errors import (
    DirectoryNotFound,
    InvalidLensParams,
    InvalidProfileExtension,
    ProfileLoadError,
    ProfileNotFound,
    ValidationError,
)
from .lens import apply_barrel_distortion
from .metadata import extract_metadata, write_metadata_sidecar
from .pipeline import (
    FileOutcome,
    FileResult,
    FileTask,
    collect_images,
    output_path_for,
    process_file,
    run_batch,
    sidecar_path_for,
)
from .reporting import BatchSummary, format_elapsed, summarise

LOGGER = logging.getLogger("icc_tiff_batch_processor")

__all__ = [
    "BatchSummary",
    "ColorOutcome",
    "ColorResult",
    "DirectoryNotFound",
    "FileOutcome",
    "FileResult",
    "FileTask",
    "InvalidLensParams",
    "InvalidProfileExtension",
    "LensCorrectionParams",
    "ProfileLoadError",
    "ProfileNotFound",
    "RunConfig",
    "ValidationError",
    "apply_barrel_distortion",
    "apply_color_profile",
    "build_run_config",
    "collect_images",
    "extract_metadata",
    "format_elapsed",
    "load_color_profile",
    "main",
    "output_path_for",
    "parse_args",
    "parse_lens_params",
    "process_file",
    "run_batch",
    "run_pipeline",
    "sidecar_path_for",
    "summarise",
    "validate_inputs",
    "write_metadata_sidecar",
]
