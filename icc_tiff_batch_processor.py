"""Script entry point for running the batch processor from a checkout.

``python icc_tiff_batch_processor.py <folder> <profile.icc> [lens]`` behaves
like the installed ``icc-tiff-batch`` command; the implementation lives in
``icc_tiff_batch_processor.cli``.
"""
from __future__ import annotations

from icc_tiff_batch_processor.cli import main


if __name__ == "__main__":  # pragma: no cover - exercised via integration test
    raise SystemExit(main())
