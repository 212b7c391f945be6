"""FFmpeg preflight checks.

A usable ffmpeg needs the target muxer (wav/aiff) plus the PCM encoder for the
chosen bit depth, and `pcm_s16le` for the bridge path used when a direct
encode is rejected.
"""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from .formats import BRIDGE_PCM_CODEC, CODEC_TABLE, TargetFormat


@dataclass
class FFmpegStatus:
    available: bool
    ffmpeg_path: Optional[str] = None
    ffmpeg_version: Optional[str] = None
    muxers: Dict[TargetFormat, bool] = field(default_factory=dict)
    error: Optional[str] = None
    pcm_encoders: FrozenSet[str] = frozenset()

    def supports(self, target: TargetFormat, bit_depth: Optional[int] = None) -> bool:
        """True if ffmpeg can mux `target` (and encode `bit_depth` PCM, when given)."""
        if not self.available or not self.muxers.get(target, False):
            return False
        if bit_depth is None:
            return True
        codec = CODEC_TABLE[target].pcm_codec(bit_depth)
        return codec is not None and codec in self.pcm_encoders

    @property
    def has_bridge(self) -> bool:
        return self.available and BRIDGE_PCM_CODEC in self.pcm_encoders


def _run(cmd: list[str]) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            text=True,
        )
        return proc.returncode, proc.stdout, proc.stderr
    except OSError as exc:
        return 1, "", str(exc)


def _muxer_names(formats_text: str) -> set[str]:
    """Parse `ffmpeg -formats` output lines like ' DE wav   WAV / WAVE'."""
    names: set[str] = set()
    for line in formats_text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and set(parts[0]) <= {"D", "E", "d"} and "E" in parts[0]:
            names.update(parts[1].split(","))
    return names


def _pcm_encoder_names(encoders_text: str) -> FrozenSet[str]:
    """PCM encoders from `ffmpeg -encoders` lines like ' A....D pcm_s16le  PCM ...'."""
    names = set()
    for line in encoders_text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].startswith("A") and parts[1].startswith("pcm_"):
            names.add(parts[1])
    return frozenset(names)


def probe_ffmpeg(ffmpeg_path: Optional[str] = None) -> FFmpegStatus:
    path = ffmpeg_path or shutil.which("ffmpeg")
    if not path:
        return FFmpegStatus(available=False, error="ffmpeg not found in PATH")

    rc_v, out_v, err_v = _run([path, "-version"])
    if rc_v != 0:
        return FFmpegStatus(available=False, ffmpeg_path=path, error=err_v or "ffmpeg -version failed")
    version = out_v.splitlines()[0].strip() if out_v else None

    rc_f, out_f, _ = _run([path, "-hide_banner", "-formats"])
    muxers = _muxer_names(out_f) if rc_f == 0 else set()
    rc_e, out_e, _ = _run([path, "-hide_banner", "-encoders"])

    return FFmpegStatus(
        available=True,
        ffmpeg_path=path,
        ffmpeg_version=version,
        muxers={t: CODEC_TABLE[t].muxer in muxers for t in TargetFormat},
        pcm_encoders=_pcm_encoder_names(out_e) if rc_e == 0 else frozenset(),
    )
