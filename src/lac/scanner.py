"""Source scanner for convertible audio files (standard library only)."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, List

from loguru import logger

from .formats import file_extension, is_convertible
from .paths import is_converted_dir


def _on_walk_error(err: OSError) -> None:
    # Unreadable directories count as empty.
    logger.debug(f"scan: skipping unreadable directory {err.filename}: {err.strerror}")


def scan_audio_files(
    root: Path,
    predicate: Callable[[str], bool] = is_convertible,
) -> List[Path]:
    """Recursively collect files under `root` whose extension satisfies `predicate`.

    Subdirectories named `*-converted` hold our own outputs and are never
    descended into. Results are sorted by path so progress order is stable.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_walk_error):
        # Prune in place so os.walk does not descend into converted outputs
        dirnames[:] = sorted(d for d in dirnames if not is_converted_dir(d))
        d = Path(dirpath)
        for name in filenames:
            if predicate(file_extension(name)):
                full = d / name
                if full.is_file():
                    found.append(full)

    found.sort(key=lambda p: str(p))
    return found
