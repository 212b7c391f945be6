from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Song:
    """Library view of one track: where it lives plus the tags we key albums on."""

    file_path: Path
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ConversionJob:
    input_path: Path
    output_dir: Optional[Path] = None  # explicit destination dir (auto "-converted" mode)
    output_path: Optional[Path] = None
    status: JobStatus = JobStatus.PENDING
    result: Optional[Path] = None
    error: Optional[str] = None
    skip_reason: Optional[str] = None
