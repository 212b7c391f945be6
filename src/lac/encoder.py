"""Codec provider: ffmpeg command construction and execution.

- Direct: one ffmpeg process decodes the source and writes PCM in the target
  container at the requested rate/depth/channels.
- Bridge: ffmpeg decodes to 16-bit PCM WAV on stdout (source rate and
  channels) and a second ffmpeg reads that pipe and writes the final target.

Outputs are written to a temporary file in the destination directory and
renamed on success, so truncated files aren't left behind on failure.

`transcode()` returns False when ffmpeg reports that it cannot handle the
input or output (the engine then tries the bridge) and raises `CodecError`
for any other failure.
"""
from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from loguru import logger

from .config import ConversionSettings
from .errors import CodecError
from .formats import BRIDGE_PCM_CODEC, CODEC_TABLE, TargetFormat
from .logging import truncate


@dataclass(frozen=True)
class AudioSpec:
    """Target stream description handed to the codec provider."""

    target_format: TargetFormat
    sample_rate: int
    bit_depth: int
    channels: int

    @classmethod
    def from_settings(cls, settings: ConversionSettings) -> "AudioSpec":
        return cls(
            target_format=settings.target_format,
            sample_rate=settings.sample_rate,
            bit_depth=settings.bit_depth,
            channels=settings.channels,
        )

    def __str__(self) -> str:
        return f"{self.target_format.name} {self.sample_rate} Hz/{self.bit_depth}-bit/{self.channels}ch"


class CodecProvider(Protocol):
    def transcode(self, src: Path, dest: Path, spec: AudioSpec, *, bridge: bool = False) -> bool: ...


# ffmpeg stderr fragments that mean "this conversion is not possible" rather
# than "something broke while converting".
_UNSUPPORTED_MARKERS = (
    "invalid data found when processing input",
    "decoder not found",
    "unknown encoder",
    "encoder not found",
    "could not find codec parameters",
    "not supported",
    "does not support",
    "not currently supported",
    "unsupported codec",
    "no decoder",
)


def is_unsupported_error(stderr: str) -> bool:
    low = (stderr or "").lower()
    return any(marker in low for marker in _UNSUPPORTED_MARKERS)


def cmd_to_string(cmd: List[str]) -> str:
    return " ".join(shlex.quote(p) for p in cmd)


def _temp_out_path(final_path: Path) -> Path:
    """Return a unique temp file path in the same directory as final_path.

    The real suffix is kept last so ffmpeg still picks the right muxer if the
    explicit -f flag is ever dropped.
    """
    tag = f".part-{os.getpid()}-{uuid.uuid4().hex[:8]}"
    return final_path.with_name(final_path.stem + tag + final_path.suffix)


def _discard(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logger.warning(f"Could not remove partial output {path}: {e}")


def build_ffmpeg_cmd(ffmpeg: str, src: Path | str, out_tmp: Path, spec: AudioSpec) -> Optional[List[str]]:
    """Build the direct decode+encode command; None if the target has no PCM codec for the bit depth."""
    cap = CODEC_TABLE[spec.target_format]
    pcm = cap.pcm_codec(spec.bit_depth)
    if pcm is None:
        return None
    return [
        ffmpeg,
        "-nostdin",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(src),
        "-map",
        "0:a:0",  # first audio stream only
        "-vn",  # drop embedded cover art streams
        "-map_metadata",
        "-1",  # tags are copied separately
        "-ar",
        str(spec.sample_rate),
        "-ac",
        str(spec.channels),
        "-c:a",
        pcm,
        "-f",
        cap.muxer,
        str(out_tmp),
    ]


def build_ffmpeg_decode_wav_cmd(ffmpeg: str, src: Path, *, pcm_codec: str = BRIDGE_PCM_CODEC) -> List[str]:
    """Build ffmpeg command to decode input audio to WAV on stdout at source rate/channels."""
    return [
        ffmpeg,
        "-nostdin",
        "-hide_banner",
        "-loglevel",
        "error",
        "-vn",
        "-sn",
        "-dn",
        "-i",
        str(src),
        "-map",
        "0:a:0",
        "-acodec",
        pcm_codec,
        "-f",
        "wav",
        "-",
    ]


def run_ffmpeg(cmd: List[str]) -> tuple[int, str]:
    """Run ffmpeg and return the exit code and stderr."""
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except OSError as e:
        raise CodecError(f"Could not start {cmd[0]}: {e}") from e
    return proc.returncode, proc.stderr or ""


def run_ffmpeg_pipe(decode_cmd: List[str], encode_cmd: List[str]) -> tuple[int, str]:
    """Pipe decode_cmd's stdout into encode_cmd; returns (rc, combined stderr).

    rc is the encoder's exit code unless the encoder succeeded and the decoder failed.
    """
    try:
        p_dec = subprocess.Popen(decode_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise CodecError(f"Could not start {decode_cmd[0]}: {e}") from e
    try:
        try:
            p_enc = subprocess.Popen(
                encode_cmd,
                stdin=p_dec.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise CodecError(f"Could not start {encode_cmd[0]}: {e}") from e
        # Let the decoder receive SIGPIPE if the encoder exits early
        if p_dec.stdout is not None:
            p_dec.stdout.close()
        _, err_enc = p_enc.communicate()
        _, err_dec = p_dec.communicate()
        err = (
            f"decode:\n{(err_dec or b'').decode('utf-8', errors='replace')}\n\n"
            f"encode:\n{(err_enc or b'').decode('utf-8', errors='replace')}"
        )
        rc = p_enc.returncode or 0
        if rc == 0 and p_dec.returncode:
            rc = p_dec.returncode
        return rc, err
    finally:
        if p_dec.poll() is None:
            p_dec.kill()


class FfmpegCodec:
    """Codec provider that shells out to ffmpeg."""

    def __init__(self, ffmpeg_path: Optional[str] = None) -> None:
        self._ffmpeg_path = ffmpeg_path

    @property
    def ffmpeg(self) -> str:
        path = self._ffmpeg_path or shutil.which("ffmpeg")
        if not path:
            raise CodecError("ffmpeg not found in PATH")
        return path

    def transcode(self, src: Path, dest: Path, spec: AudioSpec, *, bridge: bool = False) -> bool:
        ffmpeg = self.ffmpeg
        out_tmp = _temp_out_path(dest)
        if bridge:
            encode_cmd = build_ffmpeg_cmd(ffmpeg, "-", out_tmp, spec)
            if encode_cmd is None:
                return False
            decode_cmd = build_ffmpeg_decode_wav_cmd(ffmpeg, src)
            logger.debug("Running ffmpeg (bridge decode): {}", cmd_to_string(decode_cmd))
            logger.debug("Running ffmpeg (bridge encode): {}", cmd_to_string(encode_cmd))
            rc, err = run_ffmpeg_pipe(decode_cmd, encode_cmd)
        else:
            cmd = build_ffmpeg_cmd(ffmpeg, src, out_tmp, spec)
            if cmd is None:
                return False
            logger.debug("Running ffmpeg: {}", cmd_to_string(cmd))
            rc, err = run_ffmpeg(cmd)

        if rc != 0:
            _discard(out_tmp)
            if is_unsupported_error(err):
                logger.debug(f"ffmpeg cannot convert {src.name} ({'bridge' if bridge else 'direct'}): {truncate(err, max_lines=3)}")
                return False
            raise CodecError(
                f"ffmpeg failed with exit code {rc}: {truncate(err, max_len=512, max_lines=5)}",
                returncode=rc,
                stderr=err,
            )
        try:
            os.replace(str(out_tmp), str(dest))
        except OSError as e:
            _discard(out_tmp)
            raise CodecError(f"Rename failed: {e}") from e
        return True
