"""Exception types raised by the conversion layer."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class ConversionError(Exception):
    """Base class for every failure the conversion layer raises."""


class InputNotFoundError(ConversionError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Input file does not exist: {path}")
        self.path = path


class UnsupportedConversionError(ConversionError):
    def __init__(self, path: Path, target: str) -> None:
        super().__init__(f"Cannot convert {path.name} to {target}")
        self.path = path
        self.target = target


class CodecError(ConversionError):
    """The codec process ran but failed (I/O error, crash, rename failure)."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class OutputDirectoryError(ConversionError):
    def __init__(self, path: Path, reason: str = "") -> None:
        msg = f"Failed to create converted directory: {path}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.path = path


class PoolClosedError(ConversionError, RuntimeError):
    """Raised when work is submitted after the worker pool was shut down."""
