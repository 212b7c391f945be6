from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .analysis import analyze_directory
from .config import LacSettings, cli_overrides_from_args
from .encoder import FfmpegCodec
from .engine import BatchResult, ConversionEngine
from .events import CallbackListener
from .ffmpeg_check import probe_ffmpeg
from .formats import BRIDGE_PCM_CODEC, TargetFormat
from .logging import bind_run, configure_logging
from .metadata import MetadataProvider, MutagenMetadata
from .scheduler import DEFAULT_DEPTH, WorkerPool
from .tracker import ConversionTracker


EXIT_OK = 0
EXIT_WITH_FILE_ERRORS = 2
EXIT_PREFLIGHT_FAILED = 3


def _open_tracker(cfg: LacSettings, metadata: Optional[MetadataProvider] = None) -> ConversionTracker:
    # Album keys from tags must come from the same provider the engine copies tags with
    metadata = metadata or MutagenMetadata()
    return ConversionTracker(cfg.resolved_history_path(), tag_reader=metadata.read_album_tags)


def _build_engine(
    cfg: LacSettings, tracker: Optional[ConversionTracker], metadata: Optional[MetadataProvider] = None
) -> ConversionEngine:
    return ConversionEngine(
        cfg.snapshot(),
        codec=FfmpegCodec(cfg.ffmpeg_path),
        metadata=metadata or MutagenMetadata(),
        tracker=tracker,
        pool=WorkerPool(DEFAULT_DEPTH),
    )


def _log_progress(name: str, index: int, total: int, percent: float) -> None:
    logger.info(f"[{index}/{total}] {percent:5.1f}% {name}")


def _report(result: BatchResult) -> int:
    logger.info(f"converted={result.succeeded} skipped={result.skipped} failed={result.failed}")
    for err in result.errors:
        logger.error(err)
    return EXIT_OK if result.ok else EXIT_WITH_FILE_ERRORS


def cmd_preflight(cfg: LacSettings) -> int:
    st = probe_ffmpeg(cfg.ffmpeg_path)
    if not st.available:
        logger.error("ffmpeg: NOT FOUND")
        if st.error:
            logger.error(st.error)
        return EXIT_PREFLIGHT_FAILED
    logger.info(f"ffmpeg: {st.ffmpeg_path}")
    logger.info(f"version: {st.ffmpeg_version}")
    for target in TargetFormat:
        logger.info(f"{target.name} muxer: {'YES' if st.supports(target) else 'NO'}")
    logger.info(f"PCM bridge ({BRIDGE_PCM_CODEC}): {'YES' if st.has_bridge else 'NO'}")
    target = TargetFormat.parse(cfg.target_format)
    if not st.supports(target, cfg.bit_depth):
        logger.error(f"ffmpeg cannot write {cfg.bit_depth}-bit {target.name}; install a full ffmpeg build")
        return EXIT_PREFLIGHT_FAILED
    return EXIT_OK


def cmd_analyze(cfg: LacSettings, root: str, *, use_history: bool) -> int:
    tracker = _open_tracker(cfg) if use_history else None
    analysis = analyze_directory(Path(root), tracker)
    logger.info(str(analysis))
    if tracker is not None:
        logger.info(f"Already converted (from history): {analysis.already_converted}")
    for directory, count in analysis.per_directory_counts.items():
        logger.info(f"  {directory}: {count}")
    return EXIT_OK


def cmd_convert(cfg: LacSettings, files: List[str], *, auto_dir: bool) -> int:
    metadata = MutagenMetadata()
    tracker = _open_tracker(cfg, metadata)
    listener = CallbackListener(on_progress=_log_progress)
    with _build_engine(cfg, tracker, metadata) as engine:
        if auto_dir:
            fut = engine.convert_files_with_auto_directory(files, listener)
        else:
            fut = engine.convert_files(files, listener)
        result = fut.result()
    return _report(result)


def cmd_convert_dir(cfg: LacSettings, root: str, *, auto_dir: bool, include_converted: bool) -> int:
    metadata = MutagenMetadata()
    tracker = _open_tracker(cfg, metadata)
    listener = CallbackListener(on_progress=_log_progress)
    with _build_engine(cfg, tracker, metadata) as engine:
        if auto_dir:
            analysis = analyze_directory(Path(root), None if include_converted else tracker)
            fut = engine.convert_files_with_auto_directory(analysis.files_to_convert, listener)
        else:
            fut = engine.convert_directory(root, listener, skip_converted_albums=not include_converted)
        result = fut.result()
    return _report(result)


def cmd_history(cfg: LacSettings, action: str, album_key: Optional[str]) -> int:
    tracker = _open_tracker(cfg)
    if action == "list":
        records = tracker.all_records()
        if not records:
            logger.info("No conversion history")
        for key in sorted(records):
            r = records[key]
            state = "ok" if r.converted_exists() else "missing"
            logger.info(f"{r} [{state}] {r.converted_file_path}")
        return EXIT_OK
    if action == "remove":
        if not album_key:
            logger.error("history remove needs an album key")
            return 1
        if not tracker.remove_album_key(album_key):
            logger.warning(f"No record for album key: {album_key}")
        return EXIT_OK
    if action == "clear":
        tracker.clear_history()
        return EXIT_OK
    return 1


def _add_conversion_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--format",
        dest="target_format",
        choices=[t.value for t in TargetFormat],
        default=None,
        help="Output container (default from settings: wav)",
    )
    p.add_argument("--sample-rate", type=int, default=None, help="Output sample rate in Hz")
    p.add_argument("--bit-depth", type=int, choices=[8, 16, 24, 32], default=None, help="Output PCM bit depth")
    p.add_argument("--channels", type=int, default=None, help="Output channel count")
    p.add_argument(
        "--output-dir",
        dest="output_directory",
        default=None,
        help="Write outputs here instead of next to each source",
    )
    originals = p.add_mutually_exclusive_group()
    originals.add_argument(
        "--keep-originals",
        dest="preserve_originals",
        action="store_const",
        const=True,
        default=None,
        help="Keep source files after conversion (default)",
    )
    originals.add_argument(
        "--delete-originals",
        dest="preserve_originals",
        action="store_const",
        const=False,
        help="Delete each source file after it converted successfully",
    )
    p.add_argument(
        "--auto-dir",
        action="store_true",
        help="Write each folder's outputs into a sibling '<folder>-converted' directory",
    )


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="legacy-audio-converter")
    p.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ~/.config/legacy-audio-converter/config.toml)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write current effective settings to the config file and exit",
    )
    p.add_argument("--log-level", default=None, help="Console log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--log-json", dest="log_json", default=None, help="Path to write JSON lines log")
    p.add_argument("--history", dest="history_path", default=None, help="Conversion history JSON file")
    p.add_argument("--ffmpeg", dest="ffmpeg_path", default=None, help="ffmpeg binary to use")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("preflight", help="Check that ffmpeg can write the target format")

    p_an = sub.add_parser("analyze", help="Count convertible files under a directory")
    p_an.add_argument("root", help="Directory to scan")
    p_an.add_argument("--no-history", action="store_true", help="Ignore the conversion history")

    p_conv = sub.add_parser("convert", help="Convert the given files")
    p_conv.add_argument("files", nargs="+", help="Audio files to convert")
    _add_conversion_options(p_conv)

    p_dir = sub.add_parser("convert-dir", help="Convert every legacy file under a directory")
    p_dir.add_argument("root", help="Directory to scan")
    p_dir.add_argument(
        "--include-converted",
        action="store_true",
        help="Also convert albums the history says were converted already",
    )
    _add_conversion_options(p_dir)

    p_hist = sub.add_parser("history", help="Inspect or edit the conversion history")
    p_hist.add_argument("action", choices=["list", "remove", "clear"])
    p_hist.add_argument("album_key", nargs="?", default=None, help="Album key for 'remove'")

    args = p.parse_args(argv)
    overrides = cli_overrides_from_args(args)
    config_path = Path(args.config_path).expanduser() if args.config_path else None
    cfg = LacSettings.load(config_path=config_path, overrides=overrides)

    if args.write_config:
        written = cfg.write(config_path)
        print(f"Config written to: {written}")
        return EXIT_OK

    configure_logging(cfg.log_level, cfg.log_json)
    bind_run()
    if args.cmd == "preflight":
        return cmd_preflight(cfg)
    if args.cmd == "analyze":
        return cmd_analyze(cfg, args.root, use_history=not args.no_history)
    if args.cmd == "convert":
        return cmd_convert(cfg, args.files, auto_dir=args.auto_dir)
    if args.cmd == "convert-dir":
        return cmd_convert_dir(cfg, args.root, auto_dir=args.auto_dir, include_converted=args.include_converted)
    if args.cmd == "history":
        return cmd_history(cfg, args.action, args.album_key)
    p.error("unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
