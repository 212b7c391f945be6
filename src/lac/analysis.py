"""Directory analysis: how much of a folder tree needs converting."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .formats import file_extension, is_audio, is_compatible, is_convertible
from .scanner import scan_audio_files

if TYPE_CHECKING:
    from .tracker import ConversionTracker


@dataclass(frozen=True)
class ConversionAnalysis:
    total_audio_files: int = 0
    convertible_files: int = 0
    files_to_convert: Tuple[Path, ...] = ()
    by_directory: Mapping[Path, Tuple[Path, ...]] = field(default_factory=dict)
    already_converted: int = 0

    @property
    def per_directory_counts(self) -> Dict[Path, int]:
        return {d: len(files) for d, files in self.by_directory.items()}

    @property
    def has_convertible_files(self) -> bool:
        return self.convertible_files > 0

    @property
    def convertible_percentage(self) -> float:
        if self.total_audio_files <= 0:
            return 0.0
        return self.convertible_files / self.total_audio_files * 100

    def __str__(self) -> str:
        return (
            f"Total audio files: {self.total_audio_files}, "
            f"Convertible: {self.convertible_files} ({self.convertible_percentage:.1f}%)"
        )


def analyze_directory(root: Path, tracker: Optional["ConversionTracker"] = None) -> ConversionAnalysis:
    """Scan `root` and summarize which files still need converting.

    Every audio file (legacy or already compatible) counts towards the total.
    With a tracker, files whose album was converted before are left out of
    `files_to_convert` and counted in `already_converted` instead.
    """
    root = Path(root)
    if not root.is_dir():
        return ConversionAnalysis()

    audio = scan_audio_files(root, predicate=is_audio)
    convertible: List[Path] = []
    for p in audio:
        ext = file_extension(p)
        if is_convertible(ext) and not is_compatible(ext):
            convertible.append(p)

    pending = convertible
    if tracker is not None:
        pending = tracker.filter_unconverted_files(convertible)

    groups: Dict[Path, List[Path]] = {}
    for p in pending:
        groups.setdefault(p.parent, []).append(p)
    by_directory = {d: tuple(groups[d]) for d in sorted(groups, key=str)}

    result = ConversionAnalysis(
        total_audio_files=len(audio),
        convertible_files=len(convertible),
        files_to_convert=tuple(pending),
        by_directory=by_directory,
        already_converted=len(convertible) - len(pending),
    )
    logger.debug(f"analyze {root}: {result}")
    return result
