"""Format classification and target codec capabilities.

Convertible formats decode fine but lack full feature support in the playback
engine (no visualizer, partial seeking). Compatible formats are the PCM
containers the engine handles natively; they are the conversion targets.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Union


CONVERTIBLE_FORMATS: FrozenSet[str] = frozenset({"mp3", "flac", "ogg", "opus", "wma", "m4a"})
COMPATIBLE_FORMATS: FrozenSet[str] = frozenset({"wav", "aiff", "aif"})


def _norm_ext(ext: str) -> str:
    return ext.strip().lstrip(".").lower()


def is_convertible(ext: str) -> bool:
    """True if `ext` names a source format we know how to convert."""
    return _norm_ext(ext) in CONVERTIBLE_FORMATS


def is_compatible(ext: str) -> bool:
    """True if `ext` is already fully supported by the playback engine."""
    return _norm_ext(ext) in COMPATIBLE_FORMATS


def is_audio(ext: str) -> bool:
    return is_convertible(ext) or is_compatible(ext)


def file_extension(path: Union[str, Path]) -> str:
    """Lowercase extension without the dot; '' for names like 'README' or '.hidden'."""
    name = Path(path).name
    dot = name.rfind(".")
    if dot <= 0:
        return ""
    return name[dot + 1:].lower()


class TargetFormat(str, Enum):
    WAV = "wav"
    AIFF = "aiff"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union[str, "TargetFormat"]) -> "TargetFormat":
        if isinstance(value, TargetFormat):
            return value
        key = _norm_ext(str(value))
        if key == "aif":
            key = "aiff"
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        raise ValueError(f"Unknown target format: {value!r}")


@dataclass(frozen=True)
class CodecCapability:
    """What ffmpeg needs to write one target container."""

    muxer: str
    pcm_codecs: Dict[int, str]  # bit depth -> ffmpeg PCM encoder

    def pcm_codec(self, bit_depth: int) -> Optional[str]:
        return self.pcm_codecs.get(bit_depth)


# WAV is little-endian (8-bit is unsigned by convention), AIFF is big-endian.
CODEC_TABLE: Dict[TargetFormat, CodecCapability] = {
    TargetFormat.WAV: CodecCapability(
        muxer="wav",
        pcm_codecs={8: "pcm_u8", 16: "pcm_s16le", 24: "pcm_s24le", 32: "pcm_s32le"},
    ),
    TargetFormat.AIFF: CodecCapability(
        muxer="aiff",
        pcm_codecs={8: "pcm_s8", 16: "pcm_s16be", 24: "pcm_s24be", 32: "pcm_s32be"},
    ),
}

# Intermediate format used when a direct transcode is refused.
BRIDGE_PCM_CODEC = "pcm_s16le"


__all__ = [
    "BRIDGE_PCM_CODEC",
    "CODEC_TABLE",
    "COMPATIBLE_FORMATS",
    "CONVERTIBLE_FORMATS",
    "CodecCapability",
    "TargetFormat",
    "file_extension",
    "is_audio",
    "is_compatible",
    "is_convertible",
]
