from pathlib import Path

import pytest

from lac import encoder
from lac.encoder import AudioSpec, FfmpegCodec, build_ffmpeg_cmd, build_ffmpeg_decode_wav_cmd, is_unsupported_error
from lac.errors import CodecError
from lac.formats import TargetFormat


SPEC = AudioSpec(TargetFormat.WAV, 44100, 16, 2)


def test_build_direct_cmd():
    cmd = build_ffmpeg_cmd("ffmpeg", Path("in.flac"), Path("out.part.wav"), SPEC)
    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-ar") + 1] == "44100"
    assert cmd[cmd.index("-ac") + 1] == "2"
    assert cmd[cmd.index("-c:a") + 1] == "pcm_s16le"
    assert cmd[cmd.index("-f") + 1] == "wav"
    assert cmd[-1] == "out.part.wav"


def test_build_aiff_cmd_is_big_endian():
    spec = AudioSpec(TargetFormat.AIFF, 48000, 24, 1)
    cmd = build_ffmpeg_cmd("ffmpeg", Path("in.mp3"), Path("o.aiff"), spec)
    assert cmd[cmd.index("-c:a") + 1] == "pcm_s24be"
    assert cmd[cmd.index("-f") + 1] == "aiff"


def test_unknown_bit_depth_has_no_cmd():
    assert build_ffmpeg_cmd("ffmpeg", Path("a"), Path("b"), AudioSpec(TargetFormat.WAV, 44100, 12, 2)) is None


def test_decode_cmd_writes_16_bit_wav_to_stdout():
    cmd = build_ffmpeg_decode_wav_cmd("ffmpeg", Path("in.wma"))
    assert cmd[cmd.index("-acodec") + 1] == "pcm_s16le"
    assert cmd[-1] == "-"


def test_unsupported_markers():
    assert is_unsupported_error("in.wma: Invalid data found when processing input")
    assert is_unsupported_error("Decoder (codec wmapro) not found for input stream")
    assert not is_unsupported_error("No space left on device")
    assert not is_unsupported_error("")


def _fake_run(rc, err="", write=True):
    def run(cmd):
        if write and rc == 0:
            Path(cmd[-1]).write_bytes(b"RIFF")
        return rc, err
    return run


def test_transcode_success_renames_temp(tmp_path, monkeypatch):
    monkeypatch.setattr(encoder, "run_ffmpeg", _fake_run(0))
    dest = tmp_path / "a_converted.wav"
    assert FfmpegCodec("ffmpeg").transcode(tmp_path / "a.mp3", dest, SPEC) is True
    assert dest.read_bytes() == b"RIFF"
    assert [p.name for p in tmp_path.iterdir()] == ["a_converted.wav"]


def test_transcode_unsupported_returns_false(tmp_path, monkeypatch):
    monkeypatch.setattr(encoder, "run_ffmpeg", _fake_run(1, "Invalid data found when processing input"))
    dest = tmp_path / "a_converted.wav"
    assert FfmpegCodec("ffmpeg").transcode(tmp_path / "a.mp3", dest, SPEC) is False
    assert list(tmp_path.iterdir()) == []


def test_transcode_failure_raises(tmp_path, monkeypatch):
    def run(cmd):
        Path(cmd[-1]).write_bytes(b"half")
        return 1, "av_interleaved_write_frame(): No space left on device"

    monkeypatch.setattr(encoder, "run_ffmpeg", run)
    with pytest.raises(CodecError) as ei:
        FfmpegCodec("ffmpeg").transcode(tmp_path / "a.mp3", tmp_path / "o.wav", SPEC)
    assert ei.value.returncode == 1
    assert "No space left" in ei.value.stderr
    assert list(tmp_path.iterdir()) == []


def test_bridge_pipes_two_processes(tmp_path, monkeypatch):
    seen = {}

    def pipe(decode_cmd, encode_cmd):
        seen["decode"], seen["encode"] = decode_cmd, encode_cmd
        Path(encode_cmd[-1]).write_bytes(b"RIFF")
        return 0, ""

    monkeypatch.setattr(encoder, "run_ffmpeg_pipe", pipe)
    dest = tmp_path / "o.wav"
    assert FfmpegCodec("ffmpeg").transcode(tmp_path / "a.wma", dest, SPEC, bridge=True)
    assert seen["decode"][-1] == "-"
    assert seen["encode"][seen["encode"].index("-i") + 1] == "-"
    assert dest.exists()


def test_bit_depth_without_codec_is_unsupported(tmp_path):
    spec = AudioSpec(TargetFormat.AIFF, 44100, 20, 2)
    assert FfmpegCodec("ffmpeg").transcode(tmp_path / "a.mp3", tmp_path / "o.aiff", spec) is False


def test_missing_ffmpeg(tmp_path, monkeypatch):
    monkeypatch.setattr(encoder.shutil, "which", lambda name: None)
    with pytest.raises(CodecError):
        FfmpegCodec().transcode(tmp_path / "a.mp3", tmp_path / "o.wav", SPEC)
