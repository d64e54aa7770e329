"""Run configuration and input validation for the ICC TIFF batch processor.

Everything a batch run needs is resolved up front into a frozen
:class:`RunConfig`. Validation failures raise a :class:`ValidationError`
subclass before any file is touched, so a bad invocation never leaves partial
output behind.

Example Usage
-------------

    from icc_tiff_batch_processor.config import validate_inputs

    config = validate_inputs(
        Path("~/scans").expanduser(),
        Path("AdobeRGB1998.icc"),
        lens_params="0.1, -0.2, 0.3",
    )
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import math
import os
import re
from pathlib import Path
from typing import Optional

from PIL import ImageCms

from .color import load_color_profile
from .errors import (
    DirectoryNotFound,
    InvalidLensParams,
    InvalidProfileExtension,
    ProfileLoadError,
    ProfileNotFound,
    ValidationError,
)

LOGGER = logging.getLogger("icc_tiff_batch_processor")

PROFILE_EXTENSION = ".icc"
LENS_PARAM_COUNT = 3

_LENS_SEPARATORS = re.compile(r"[,\s]+")


def default_worker_count() -> int:
    return max(1, min(8, os.cpu_count() or 4))


@dataclasses.dataclass(frozen=True)
class LensCorrectionParams:
    """Barrel distortion coefficients.

    The destination radius ``r`` (normalised to half the shorter image side)
    samples the source at ``r * (a*r**3 + b*r**2 + c*r + d)`` where
    ``d = 1 - (a + b + c)`` keeps the image scale constant.
    """

    a: float = 0.0
    b: float = 0.0
    c: float = 0.0

    @property
    def d(self) -> float:
        return 1.0 - (self.a + self.b + self.c)

    @property
    def is_identity(self) -> bool:
        return self.a == 0.0 and self.b == 0.0 and self.c == 0.0

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.a, self.b, self.c)


@dataclasses.dataclass(frozen=True)
class RunConfig:
    """Immutable settings shared by every worker of a batch run.

    Attributes:
        source_dir: Directory scanned for ``.tif`` files.
        profile_path: Location of the target ICC profile.
        profile: Loaded target profile.
        lens: Barrel correction coefficients, ``None`` to skip the step.
        workers: Size of the thread pool.
        compression: TIFF compression for outputs, ``None`` keeps the source's.
        dry_run: Plan the work without decoding or writing anything.
        show_progress: Display a progress bar while waiting on workers.
    """

    source_dir: Path
    profile_path: Path
    profile: ImageCms.ImageCmsProfile
    lens: Optional[LensCorrectionParams] = None
    workers: int = dataclasses.field(default_factory=default_worker_count)
    compression: Optional[str] = None
    dry_run: bool = False
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be a positive integer, got {self.workers}")


def parse_lens_params(raw: str) -> LensCorrectionParams:
    """Parse ``"a, b, c"`` (commas and/or whitespace) into coefficients.

    Raises:
        InvalidLensParams: If the string does not hold exactly three finite numbers.
    """
    tokens = [token for token in _LENS_SEPARATORS.split(raw) if token]
    if len(tokens) != LENS_PARAM_COUNT:
        raise InvalidLensParams(
            f"Expected {LENS_PARAM_COUNT} lens correction parameters, "
            f"received {len(tokens)}: '{raw}'"
        )

    values = []
    for token in tokens:
        try:
            value = float(token)
        except ValueError as exc:
            raise InvalidLensParams(
                f"Lens correction parameter '{token}' in '{raw}' is not a number"
            ) from exc
        if not math.isfinite(value):
            raise InvalidLensParams(
                f"Lens correction parameter '{token}' in '{raw}' must be finite"
            )
        values.append(value)

    return LensCorrectionParams(*values)


def validate_inputs(
    source_dir: Path,
    profile_path: Path,
    lens_params: Optional[str] = None,
    *,
    workers: Optional[int] = None,
    compression: Optional[str] = None,
    dry_run: bool = False,
    show_progress: bool = True,
) -> RunConfig:
    """Check the run inputs and load the target profile.

    Checks run in the order an operator would fix them: directory, profile
    presence, profile extension, lens parameters, then profile contents.

    Raises:
        DirectoryNotFound: If *source_dir* is not a directory.
        ProfileNotFound: If *profile_path* is not a file.
        InvalidProfileExtension: If *profile_path* is not an ``.icc`` file.
        InvalidLensParams: If *lens_params* is malformed.
        ProfileLoadError: If the profile cannot be parsed.
    """
    source_dir = Path(source_dir)
    profile_path = Path(profile_path)

    if not source_dir.is_dir():
        raise DirectoryNotFound(f"Directory '{source_dir.resolve()}' does not exist")
    if not profile_path.is_file():
        raise ProfileNotFound(f"File '{profile_path.resolve()}' does not exist")
    if profile_path.suffix.lower() != PROFILE_EXTENSION:
        raise InvalidProfileExtension(
            f"Colour profile must be an '{PROFILE_EXTENSION}' file, got '{profile_path.name}'"
        )

    lens = parse_lens_params(lens_params) if lens_params is not None else None
    profile = load_color_profile(profile_path)

    config = RunConfig(
        source_dir=source_dir,
        profile_path=profile_path,
        profile=profile,
        lens=lens,
        workers=workers if workers is not None else default_worker_count(),
        compression=compression,
        dry_run=dry_run,
        show_progress=show_progress,
    )
    LOGGER.debug("Using run configuration: %s", config)
    return config


def build_run_config(args: argparse.Namespace) -> RunConfig:
    """Construct the run configuration from parsed command-line arguments."""

    return validate_inputs(
        args.source,
        args.profile,
        args.lens_params,
        workers=args.workers,
        compression=args.compression,
        dry_run=args.dry_run,
        show_progress=not args.no_progress,
    )


__all__ = [
    "DirectoryNotFound",
    "InvalidLensParams",
    "InvalidProfileExtension",
    "LensCorrectionParams",
    "ProfileLoadError",
    "ProfileNotFound",
    "RunConfig",
    "ValidationError",
    "build_run_config",
    "default_worker_count",
    "parse_lens_params",
    "validate_inputs",
]
