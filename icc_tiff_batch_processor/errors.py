"""Exceptions raised while validating a batch run."""
from __future__ import annotations


class ValidationError(ValueError):
    """Raised when the command-line inputs cannot start a batch run."""


class DirectoryNotFound(ValidationError):
    """The source directory does not exist."""


class ProfileNotFound(ValidationError):
    """The ICC profile path does not point at a file."""


class InvalidProfileExtension(ValidationError):
    """The ICC profile path does not end in ``.icc``."""


class InvalidLensParams(ValidationError):
    """The lens correction string is not three numbers."""


class ProfileLoadError(ValidationError):
    """The ICC profile file exists but cannot be parsed."""


__all__ = [
    "DirectoryNotFound",
    "InvalidLensParams",
    "InvalidProfileExtension",
    "ProfileLoadError",
    "ProfileNotFound",
    "ValidationError",
]
