"""File discovery, the per-file pipeline, and the thread-pool dispatcher."""
from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from PIL import Image
from tqdm import tqdm

from .color import ColorOutcome, apply_color_profile, apply_color_profile_array
from .config import RunConfig
from .io_utils import (
    HighBitDepthRaster,
    read_high_bit_depth,
    resolve_compression,
    save_array,
    save_image,
    staged_output,
)
from .lens import apply_barrel_distortion, warp_pixels
from .metadata import extract_metadata, write_metadata_sidecar

LOGGER = logging.getLogger("icc_tiff_batch_processor")
WORKER_LOGGER = LOGGER.getChild("worker")

SOURCE_PATTERN = "*.tif"
OUTPUT_MARKER = "_icc"
GENERATED_SUFFIX = f"{OUTPUT_MARKER}.tif"
SIDECAR_SUFFIX = ".exif.json"


def _tqdm_progress(
    iterable: Iterable[object], *, total: Optional[int], description: Optional[str]
) -> Iterable[object]:
    return tqdm(iterable, total=total, desc=description, unit="image")


_PROGRESS_WRAPPER = _tqdm_progress


def _wrap_with_progress(
    iterable: Iterable[object],
    *,
    total: Optional[int],
    description: str,
    enabled: bool,
) -> Iterable[object]:
    """Return *iterable* wrapped with the progress helper when enabled."""

    if not enabled:
        return iterable
    return _PROGRESS_WRAPPER(iterable, total=total, description=description)


def output_path_for(source: Path) -> Path:
    return source.with_name(f"{source.stem}{OUTPUT_MARKER}{source.suffix}")


def sidecar_path_for(source: Path) -> Path:
    return source.with_name(f"{source.stem}{SIDECAR_SUFFIX}")


def is_generated_output(path: Path) -> bool:
    """``True`` for files written by a previous run (``*_icc.tif``)."""

    return path.name.lower().endswith(GENERATED_SUFFIX)


def collect_images(folder: Path) -> List[Path]:
    """List the ``.tif`` files directly inside *folder* that still need processing."""

    return sorted(
        path
        for path in folder.glob(SOURCE_PATTERN)
        if path.is_file() and not is_generated_output(path)
    )


@dataclasses.dataclass(frozen=True)
class FileTask:
    """One source file plus the run configuration shared by all workers."""

    source: Path
    config: RunConfig

    @property
    def output_path(self) -> Path:
        return output_path_for(self.source)

    @property
    def sidecar_path(self) -> Path:
        return sidecar_path_for(self.source)


class FileOutcome(enum.Enum):
    PROCESSED = "processed"
    TRANSFORM_FAILED = "transform_failed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclasses.dataclass(frozen=True)
class FileResult:
    task: FileTask
    outcome: FileOutcome
    message: Optional[str] = None

    @property
    def wrote_output(self) -> bool:
        return self.outcome in (FileOutcome.PROCESSED, FileOutcome.TRANSFORM_FAILED)


def _export_standard(task: FileTask) -> ColorOutcome:
    """Decode with Pillow, correct, and stage the 8-bit output."""

    config = task.config
    with Image.open(task.source) as image:
        image.load()
        metadata = None
        with contextlib.suppress(AttributeError):
            metadata = image.tag_v2
        compression = resolve_compression(image.info, config.compression)

        working = image
        if config.lens is not None:
            working = apply_barrel_distortion(working, config.lens)
        color = apply_color_profile(working, config.profile)

        with staged_output(task.output_path) as staged_path:
            save_image(
                staged_path,
                color.image,
                icc_profile=color.icc_profile,
                metadata=metadata,
                compression=compression,
            )
    return color.outcome


def _export_high_bit_depth(task: FileTask, raster: HighBitDepthRaster) -> ColorOutcome:
    """Correct and stage a high bit depth output at the source precision."""

    config = task.config
    pixels = raster.pixels
    if config.lens is not None:
        LOGGER.debug("Applying barrel distortion %s to %s pixels", config.lens.as_tuple(), pixels.dtype)
        pixels = warp_pixels(pixels, config.lens)
    color = apply_color_profile_array(pixels, raster.icc_profile, config.profile)

    with staged_output(task.output_path) as staged_path:
        save_array(
            staged_path,
            color.image,
            icc_profile=color.icc_profile,
            extratags=raster.extratags,
            compression=resolve_compression({"compression": raster.compression}, config.compression),
        )
    return color.outcome


def _process_task(task: FileTask) -> FileOutcome:
    """Run every step for *task*, raising on the first failure.

    All reads and transforms happen before the first write, so a failure leaves
    neither output behind.
    """
    WORKER_LOGGER.info("Processing file %s", task.source)

    raster = read_high_bit_depth(task.source)
    record = extract_metadata(task.source)
    if raster is None:
        outcome = _export_standard(task)
    else:
        outcome = _export_high_bit_depth(task, raster)

    if outcome is ColorOutcome.TRANSFORM_FAILED:
        WORKER_LOGGER.warning(
            "Colour space transform failed for %s; keeping its original colours and profile",
            task.source,
        )
    WORKER_LOGGER.info("New file created: %s", task.output_path)

    WORKER_LOGGER.info("Writing EXIF metadata file %s", task.sidecar_path)
    write_metadata_sidecar(record, task.sidecar_path)

    if outcome is ColorOutcome.TRANSFORM_FAILED:
        return FileOutcome.TRANSFORM_FAILED
    return FileOutcome.PROCESSED


def process_file(task: FileTask) -> FileResult:
    """Process one file; failures are logged and returned, never raised."""

    if task.config.dry_run:
        WORKER_LOGGER.info(
            "Dry run: would process %s -> %s, %s", task.source, task.output_path, task.sidecar_path
        )
        return FileResult(task, FileOutcome.SKIPPED)

    try:
        outcome = _process_task(task)
    except Exception as exc:  # pylint: disable=broad-except
        WORKER_LOGGER.error("Error processing file %s: %s", task.source, exc)
        WORKER_LOGGER.debug("Traceback for %s", task.source, exc_info=True)
        return FileResult(task, FileOutcome.FAILED, message=str(exc))
    return FileResult(task, outcome)


def run_batch(files: Sequence[Path], config: RunConfig) -> List[FileResult]:
    """Process every file on a shared thread pool and wait for all of them."""

    LOGGER.info("%s files to process", len(files))
    if not files:
        return []

    tasks = [FileTask(source=path, config=config) for path in files]
    results: List[FileResult] = []
    with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="icc-worker") as executor:
        futures = [executor.submit(process_file, task) for task in tasks]
        completed = _wrap_with_progress(
            as_completed(futures),
            total=len(futures),
            description="Processing images",
            enabled=config.show_progress,
        )
        for future in completed:
            results.append(future.result())
    return results


__all__ = [
    "FileOutcome",
    "FileResult",
    "FileTask",
    "collect_images",
    "is_generated_output",
    "output_path_for",
    "process_file",
    "run_batch",
    "sidecar_path_for",
]
