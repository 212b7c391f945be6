"""Destination path resolution for converted files."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import ConversionSettings
from .errors import OutputDirectoryError


CONVERTED_DIR_SUFFIX = "-converted"
CONVERTED_NAME_SUFFIX = "_converted"

# Many filesystems have a 255 byte/char filename limit per path segment.
_MAX_SEGMENT_LEN = 255


def is_converted_dir(name: str) -> bool:
    return name.endswith(CONVERTED_DIR_SUFFIX)


def converted_dir_for(source_dir: Path) -> Path:
    """Sibling output directory for a source folder: Music/Album -> Music/Album-converted.

    Relative folders are made absolute first; a filesystem root has no sibling.
    """
    source_dir = Path(source_dir).absolute()
    if not source_dir.name:
        raise OutputDirectoryError(source_dir, "no parent directory to hold a sibling")
    return source_dir.parent / f"{source_dir.name}{CONVERTED_DIR_SUFFIX}"


def converted_file_name(input_name: str, target_ext: str) -> str:
    """'01 Intro.flac' -> '01 Intro_converted.wav', truncated to the segment limit."""
    dot = input_name.rfind(".")
    base = input_name[:dot] if dot > 0 else input_name
    suffix = f"{CONVERTED_NAME_SUFFIX}.{target_ext.lstrip('.').lower()}"
    if len(base) + len(suffix) > _MAX_SEGMENT_LEN:
        base = base[: _MAX_SEGMENT_LEN - len(suffix)]
    return base + suffix


def ensure_dir(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputDirectoryError(path, str(e)) from e
    if not path.is_dir():
        raise OutputDirectoryError(path, "not a directory")
    return path


def resolve_output_path(
    input_path: Path,
    settings: ConversionSettings,
    output_dir: Optional[Path] = None,
) -> Path:
    """Return `<dir>/<stem>_converted.<ext>` for `input_path`.

    `dir` is `output_dir` when given, else the settings override (created when
    missing), else the input's own directory. The input is never touched.
    """
    if output_dir is not None:
        out_dir = ensure_dir(output_dir)
    elif settings.output_directory is not None:
        out_dir = ensure_dir(settings.output_directory)
    else:
        out_dir = input_path.parent
    return out_dir / converted_file_name(input_path.name, settings.target_format.extension)


__all__ = [
    "CONVERTED_DIR_SUFFIX",
    "CONVERTED_NAME_SUFFIX",
    "converted_dir_for",
    "converted_file_name",
    "ensure_dir",
    "is_converted_dir",
    "resolve_output_path",
]
