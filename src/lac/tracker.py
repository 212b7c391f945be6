"""Album-level conversion history.

Remembers which albums were already converted so users are not prompted to
convert them again. One record per album key, persisted as pretty-printed
JSON and rewritten in full on every mutation.

Album keys come from the (artist, album) tag pair when both are known and
fall back to the containing directory name, so a `Song` from the library and
the bare file on disk map to the same key whenever the file carries tags.

The tracker does no locking of its own; callers must serialize mutations
(the engine funnels its writes through a single lock).
"""
from __future__ import annotations

import json
import os
import re
import unicodedata
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_serializer, field_validator

from .formats import file_extension
from .models import Song


DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_KEY_STRIP_RE = re.compile(r"[^a-z0-9\s-]")

TagReader = Callable[[Path], Optional[Tuple[str, str]]]
AlbumRef = Union[Song, Path, str]


class ConversionRecord(BaseModel):
    """One converted album; serialized with the camelCase keys of the history file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    album_key: str = Field(alias="albumKey")
    original_format: str = Field(alias="originalFormat")
    converted_format: str = Field(alias="convertedFormat")
    original_file_path: str = Field(alias="originalFilePath")
    converted_file_path: Optional[str] = Field(alias="convertedFilePath")
    conversion_date: datetime = Field(alias="conversionDate")

    @field_validator("conversion_date", mode="before")
    @classmethod
    def _parse_date(cls, v):
        if isinstance(v, str):
            return datetime.strptime(v, DATE_FORMAT)
        return v

    @field_serializer("conversion_date")
    def _format_date(self, v: datetime) -> str:
        return v.strftime(DATE_FORMAT)

    def converted_exists(self) -> bool:
        return bool(self.converted_file_path) and Path(self.converted_file_path).exists()

    def __str__(self) -> str:
        return (
            f"ConversionRecord(albumKey='{self.album_key}', {self.original_format}->{self.converted_format}, "
            f"date={self.conversion_date:%Y-%m-%d %H:%M})"
        )


_HISTORY_ADAPTER = TypeAdapter(Dict[str, ConversionRecord])


def normalize_key(text: str) -> str:
    """Lowercase, fold accents to ASCII, keep only [a-z0-9], whitespace and '-'."""
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _KEY_STRIP_RE.sub("", folded.lower()).strip()


def album_key_from_tags(artist: Optional[str], album: Optional[str]) -> Optional[str]:
    """Key for an (artist, album) pair, or None unless both normalize to something."""
    a = normalize_key(artist or "")
    b = normalize_key(album or "")
    if not a or not b:
        return None
    return f"{a} - {b}"


def album_key_from_path(path: Path) -> str:
    """Key for the directory a file lives in; the file stem if it has no named parent."""
    parent = path.parent
    key = normalize_key(parent.name) if parent.name else ""
    if not key:
        key = normalize_key(path.stem)
    return key or "unknown"


class ConversionTracker:
    """Persistent album key -> ConversionRecord map with lazy staleness purging."""

    def __init__(self, path: Path, *, tag_reader: Optional[TagReader] = None) -> None:
        self.path = Path(path)
        self._tag_reader = tag_reader
        self._records: Dict[str, ConversionRecord] = {}
        self._load()

    # -- keys --------------------------------------------------------------

    def album_key(self, ref: AlbumRef) -> str:
        if isinstance(ref, Song):
            key = album_key_from_tags(ref.artist, ref.album)
            return key or album_key_from_path(Path(ref.file_path))
        path = Path(ref)
        if self._tag_reader is not None:
            try:
                tags = self._tag_reader(path)
            except Exception as e:
                logger.debug(f"tag read failed for {path.name}: {e}")
                tags = None
            if tags:
                key = album_key_from_tags(*tags)
                if key:
                    return key
        return album_key_from_path(path)

    # -- queries -----------------------------------------------------------

    def _lookup(self, key: str) -> Optional[ConversionRecord]:
        record = self._records.get(key)
        if record is None:
            return None
        if not record.converted_exists():
            logger.info(f"Converted file missing, purging stale record for album: {key}")
            del self._records[key]
            self._save()
            return None
        return record

    def is_album_converted(self, ref: AlbumRef) -> bool:
        """True if the album was converted and its output is still on disk.

        A record whose converted file disappeared is deleted (and the history
        rewritten) as a side effect.
        """
        return self._lookup(self.album_key(ref)) is not None

    def get_conversion_record(self, ref: AlbumRef) -> Optional[ConversionRecord]:
        return self._lookup(self.album_key(ref))

    def filter_unconverted_files(self, files: Iterable[Path]) -> List[Path]:
        return [f for f in files if not self.is_album_converted(f)]

    def filter_unconverted_songs(self, songs: Iterable[Song]) -> List[Song]:
        return [s for s in songs if not self.is_album_converted(s)]

    def all_records(self) -> Dict[str, ConversionRecord]:
        return dict(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, album_key: object) -> bool:
        return album_key in self._records

    # -- mutations ---------------------------------------------------------

    def record_conversion(
        self,
        original: AlbumRef,
        converted_path: Path,
        converted_format: str,
        original_format: Optional[str] = None,
    ) -> ConversionRecord:
        """Upsert the record for `original`'s album; the previous record, if any, is replaced."""
        src = Path(original.file_path) if isinstance(original, Song) else Path(original)
        key = self.album_key(original)
        record = ConversionRecord(
            album_key=key,
            original_format=original_format or file_extension(src),
            converted_format=converted_format,
            original_file_path=str(src.absolute()),
            converted_file_path=str(Path(converted_path).absolute()),
            conversion_date=datetime.now().replace(microsecond=0),
        )
        self._records[key] = record
        self._save()
        logger.info(f"Recorded conversion: {record}")
        return record

    def remove_conversion_record(self, ref: AlbumRef) -> bool:
        return self.remove_album_key(self.album_key(ref))

    def remove_album_key(self, key: str) -> bool:
        if self._records.pop(key, None) is None:
            return False
        self._save()
        logger.info(f"Removed conversion record for album: {key}")
        return True

    def clear_history(self) -> None:
        self._records.clear()
        self._save()
        logger.info("Cleared all conversion history")

    # -- persistence -------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            logger.info("No existing conversion history found, starting fresh")
            self._records = {}
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._records = _HISTORY_ADAPTER.validate_python(raw)
        except (OSError, ValueError, ValidationError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            logger.warning(f"Failed to load conversion history from {self.path}: {e}")
            self._records = {}
            return
        logger.info(f"Loaded {len(self._records)} conversion records")

    def _save(self) -> None:
        tmp = self.path.with_name(f"{self.path.name}.part-{os.getpid()}-{uuid.uuid4().hex[:8]}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = _HISTORY_ADAPTER.dump_python(self._records, mode="json", by_alias=True)
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(str(tmp), str(self.path))
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save conversion history to {self.path}: {e}")
            try:
                if tmp.exists():
                    tmp.unlink()
            except OSError:
                pass
            return
        logger.debug(f"Saved conversion history with {len(self._records)} records")
