"""Command-line interface wiring for the ICC TIFF batch processor."""
from __future__ import annotations

import argparse
import logging
import re
import sys
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .color import profile_description
from .config import build_run_config, default_worker_count
from .errors import ValidationError
from .pipeline import FileResult, collect_images, run_batch
from .reporting import log_elapsed, log_summary, summarise

LOGGER = logging.getLogger("icc_tiff_batch_processor")
LOG_FORMAT = "%(levelname)s: %(message)s"

_VALUE_OPTIONS = ("--workers", "--compression", "--log-level")
_NEGATIVE_VALUE = re.compile(r"-\.?\d")

_EPILOG = """\
example:
  icc-tiff-batch ~/scans ~/profiles/AdobeRGB1998.icc "0.1, -0.2, 0.3"

Lens parameters are the barrel distortion coefficients a, b and c separated by
commas and/or spaces, e.g. "-0.1,0.2,0.3".
"""


def _options_first(argv: Sequence[str]) -> List[str]:
    """Move options ahead of a ``--`` separator.

    Coefficient lists such as ``-0.1,0.2,0.3`` start with a dash, so argparse
    would otherwise treat them as unknown options.
    """
    options: List[str] = []
    positionals: List[str] = []
    tokens = iter(argv)
    for token in tokens:
        if token == "--":
            positionals.extend(tokens)
            break
        if not token.startswith("-") or token == "-" or _NEGATIVE_VALUE.match(token):
            positionals.append(token)
            continue
        options.append(token)
        takes_value = "=" not in token and any(name.startswith(token) for name in _VALUE_OPTIONS)
        if takes_value and len(token) > 2:
            value = next(tokens, None)
            if value is not None:
                options.append(value)
    return options + ["--"] + positionals


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="icc-tiff-batch",
        description=(
            "Apply an ICC colour profile to every TIFF file in a folder, optionally "
            "correcting barrel lens distortion, and export their metadata as JSON."
        ),
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("source", type=Path, help="Folder that contains the source .tif files")
    parser.add_argument("profile", type=Path, help="ICC profile (.icc) to apply")
    parser.add_argument(
        "lens_params",
        nargs="?",
        default=None,
        help="Optional barrel distortion coefficients 'a, b, c'",
    )
    parser.add_argument("extra", nargs="*", help=argparse.SUPPRESS)
    parser.add_argument(
        "--workers",
        type=int,
        default=default_worker_count(),
        help="Number of worker threads (default: %(default)s)",
    )
    parser.add_argument(
        "--compression",
        default=None,
        help="TIFF compression for the output files (e.g. lzw, deflate, none); "
        "defaults to the compression of each source file",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="List the work without writing any files"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar (useful for non-interactive environments)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: %(default)s)",
    )

    tokens = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(_options_first(tokens))
    if args.workers < 1:
        parser.error("--workers must be a positive integer")
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    if args.extra:
        LOGGER.warning("Ignoring %s unexpected argument(s): %s", len(args.extra), " ".join(args.extra))
    return args


def run_pipeline(args: argparse.Namespace) -> List[FileResult]:
    """Validate the inputs, then process every TIFF file of the source folder.

    Raises:
        ValidationError: If the inputs cannot start a run. Nothing is processed.
    """
    config = build_run_config(args)
    LOGGER.info(
        "Applying colour profile '%s' to TIFF files in %s",
        profile_description(config.profile),
        config.source_dir,
    )
    if config.lens is not None:
        LOGGER.info(
            "Barrel distortion correction a=%s b=%s c=%s", config.lens.a, config.lens.b, config.lens.c
        )

    images = collect_images(config.source_dir)
    return run_batch(images, config)


def main(argv: Optional[Iterable[str]] = None) -> int:
    started = time.perf_counter()
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        if not exc.code:
            raise
        # Usage errors are validation failures too.
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        log_elapsed(time.perf_counter() - started)
        return exc.code if isinstance(exc.code, int) else 2

    exit_code = 0
    try:
        results = run_pipeline(args)
    except ValidationError as exc:
        LOGGER.error("%s", exc)
        exit_code = 1
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Unexpected error, batch run aborted")
        exit_code = 1
    else:
        log_summary(summarise(results))

    log_elapsed(time.perf_counter() - started)
    return exit_code


__all__ = ["main", "parse_args", "run_pipeline"]
