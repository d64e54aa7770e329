"""End-of-run reporting: outcome counts and elapsed wall-clock time."""
from __future__ import annotations

import collections
import dataclasses
import logging
from typing import Iterable

from .pipeline import FileOutcome, FileResult

LOGGER = logging.getLogger("icc_tiff_batch_processor")


@dataclasses.dataclass(frozen=True)
class BatchSummary:
    total: int
    processed: int
    transform_failed: int
    failed: int
    skipped: int


def summarise(results: Iterable[FileResult]) -> BatchSummary:
    results = list(results)
    counts = collections.Counter(result.outcome for result in results)
    return BatchSummary(
        total=len(results),
        processed=counts[FileOutcome.PROCESSED],
        transform_failed=counts[FileOutcome.TRANSFORM_FAILED],
        failed=counts[FileOutcome.FAILED],
        skipped=counts[FileOutcome.SKIPPED],
    )


def format_elapsed(seconds: float) -> str:
    """Render *seconds* as whole minutes and seconds (truncated)."""

    minutes, remainder = divmod(int(max(seconds, 0.0)), 60)
    return f"{minutes} minutes and {remainder} seconds"


def log_summary(summary: BatchSummary) -> None:
    LOGGER.info(
        "Finished %s file(s): %s processed, %s written without colour transform, %s failed, %s skipped",
        summary.total,
        summary.processed,
        summary.transform_failed,
        summary.failed,
        summary.skipped,
    )
    if summary.transform_failed:
        LOGGER.warning(
            "%s file(s) kept their original colours because the colour transform failed",
            summary.transform_failed,
        )
    if summary.failed:
        LOGGER.warning("%s file(s) could not be processed; see errors above", summary.failed)


def log_elapsed(seconds: float) -> None:
    LOGGER.info("Execution terminated in %s", format_elapsed(seconds))


__all__ = ["BatchSummary", "format_elapsed", "log_elapsed", "log_summary", "summarise"]
