import json

import pytest

from lac import cli
from lac.config import LacSettings
from lac.scheduler import DEFAULT_DEPTH
from lac.tracker import ConversionTracker

from conftest import FakeCodec, FakeMetadata, touch


@pytest.fixture
def base_args(tmp_path):
    return [
        "--config",
        str(tmp_path / "config.toml"),
        "--history",
        str(tmp_path / "history.json"),
        "--log-level",
        "ERROR",
    ]


@pytest.fixture
def fake_codec(monkeypatch):
    codec = FakeCodec()
    monkeypatch.setattr(cli, "FfmpegCodec", lambda ffmpeg_path=None: codec)
    monkeypatch.setattr(cli, "MutagenMetadata", FakeMetadata)
    return codec


def test_write_config(tmp_path, base_args, capsys):
    rc = cli.main(base_args + ["--write-config", "history", "list"])
    assert rc == cli.EXIT_OK
    text = (tmp_path / "config.toml").read_text(encoding="utf-8")
    assert 'target_format = "wav"' in text
    assert "Config written to" in capsys.readouterr().out


def test_analyze_empty_directory(tmp_path, base_args):
    (tmp_path / "music").mkdir()
    assert cli.main(base_args + ["analyze", str(tmp_path / "music")]) == cli.EXIT_OK


def test_convert_files(tmp_path, base_args, fake_codec):
    src = touch(tmp_path / "Album" / "01.flac")
    rc = cli.main(base_args + ["convert", str(src), "--format", "aiff"])

    assert rc == cli.EXIT_OK
    out = tmp_path / "Album" / "01_converted.aiff"
    assert out.exists()
    assert src.exists()
    history = json.loads((tmp_path / "history.json").read_text(encoding="utf-8"))
    assert list(history) == ["album"]
    assert history["album"]["convertedFormat"] == "aiff"


def test_convert_keys_history_by_provider_tags(tmp_path, base_args, monkeypatch):
    codec = FakeCodec()
    tags = {"01.flac": ("Band", "Record")}
    monkeypatch.setattr(cli, "FfmpegCodec", lambda ffmpeg_path=None: codec)
    monkeypatch.setattr(cli, "MutagenMetadata", lambda: FakeMetadata(tags=tags))
    src = touch(tmp_path / "Album" / "01.flac")

    assert cli.main(base_args + ["convert", str(src)]) == cli.EXIT_OK
    history = json.loads((tmp_path / "history.json").read_text(encoding="utf-8"))
    assert list(history) == ["band - record"]


def test_engine_pool_depth_is_fixed(tmp_path):
    (tmp_path / "config.toml").write_text("workers = 8\n", encoding="utf-8")
    cfg = LacSettings.load(config_path=tmp_path / "config.toml")
    engine = cli._build_engine(cfg, None)
    try:
        assert engine.pool.depth == DEFAULT_DEPTH == 2
    finally:
        engine.shutdown()
    assert "workers" not in cfg.to_toml()


def test_convert_reports_file_errors(tmp_path, base_args, fake_codec):
    rc = cli.main(base_args + ["convert", str(tmp_path / "missing.mp3")])
    assert rc == cli.EXIT_WITH_FILE_ERRORS


def test_convert_dir_auto_directory(tmp_path, base_args, fake_codec):
    touch(tmp_path / "music" / "Live" / "a.ogg")
    touch(tmp_path / "music" / "Live" / "b.wav")
    rc = cli.main(base_args + ["convert-dir", str(tmp_path / "music"), "--auto-dir", "--delete-originals"])

    assert rc == cli.EXIT_OK
    assert (tmp_path / "music" / "Live-converted" / "a_converted.wav").exists()
    assert not (tmp_path / "music" / "Live" / "a.ogg").exists()
    assert (tmp_path / "music" / "Live" / "b.wav").exists()


def test_history_remove_and_clear(tmp_path, base_args):
    history = tmp_path / "history.json"
    tracker = ConversionTracker(history)
    one = touch(tmp_path / "One" / "x.mp3")
    two = touch(tmp_path / "Two" / "y.mp3")
    tracker.record_conversion(one, touch(tmp_path / "One" / "x_converted.wav"), "wav")
    tracker.record_conversion(two, touch(tmp_path / "Two" / "y_converted.wav"), "wav")

    assert cli.main(base_args + ["history", "list"]) == cli.EXIT_OK
    assert cli.main(base_args + ["history", "remove", "one"]) == cli.EXIT_OK
    assert set(ConversionTracker(history).all_records()) == {"two"}

    assert cli.main(base_args + ["history", "remove"]) == 1
    assert cli.main(base_args + ["history", "clear"]) == cli.EXIT_OK
    assert len(ConversionTracker(history)) == 0


def test_preflight_without_ffmpeg(tmp_path, base_args, monkeypatch):
    from lac.ffmpeg_check import FFmpegStatus

    monkeypatch.setattr(
        cli,
        "probe_ffmpeg",
        lambda path=None: FFmpegStatus(False, None, None, {}, "ffmpeg not found in PATH"),
    )
    assert cli.main(base_args + ["preflight"]) == cli.EXIT_PREFLIGHT_FAILED
