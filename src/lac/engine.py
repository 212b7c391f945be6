"""Conversion orchestration: single files, batches and whole directories.

All public entry points return a `concurrent.futures.Future` and run as one
task on the worker pool. Batches iterate their inputs sequentially inside that
task; only separate top-level calls run concurrently (up to the pool depth).

Events go to the optional listener on the worker thread. Within a batch,
`Progress` events follow input order and exactly one `Complete` is emitted
after every item was attempted, however many failed.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger

from .analysis import analyze_directory
from .config import ConversionSettings
from .encoder import AudioSpec, CodecProvider, FfmpegCodec
from .errors import CodecError, ConversionError, InputNotFoundError, OutputDirectoryError, UnsupportedConversionError
from .events import Complete, ConversionEvent, Error, Listener, Progress
from .formats import file_extension, is_compatible, is_convertible
from .logging import log_event
from .metadata import MetadataProvider, MutagenMetadata
from .models import ConversionJob, JobStatus
from .paths import converted_dir_for, ensure_dir, resolve_output_path
from .scheduler import DEFAULT_DEPTH, WorkerPool
from .tracker import ConversionTracker


PathLike = Union[str, Path]


@dataclass
class BatchResult:
    converted: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    jobs: List[ConversionJob] = field(default_factory=list)

    def _count(self, status: JobStatus) -> int:
        return sum(1 for j in self.jobs if j.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(JobStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(JobStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors


def _emit(listener: Optional[Listener], event: ConversionEvent) -> None:
    if listener is None:
        return
    try:
        listener(event)
    except Exception:
        # A broken listener must not abort the batch it is observing.
        logger.exception(f"listener raised while handling {type(event).__name__}")


class ConversionEngine:
    def __init__(
        self,
        settings: Optional[ConversionSettings] = None,
        *,
        codec: Optional[CodecProvider] = None,
        metadata: Optional[MetadataProvider] = None,
        tracker: Optional[ConversionTracker] = None,
        pool: Optional[WorkerPool] = None,
    ) -> None:
        # Replace the whole snapshot between runs; each task captures the one current at submission.
        self.settings = settings or ConversionSettings()
        self.codec: CodecProvider = codec or FfmpegCodec()
        self.metadata: MetadataProvider = metadata or MutagenMetadata()
        self.tracker = tracker
        self._pool = pool or WorkerPool(DEFAULT_DEPTH)
        # Serializes every tracker call that may write (records and stale purges).
        self._tracker_lock = threading.RLock()

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    # -- public async API ----------------------------------------------------

    def convert_file(self, path: PathLike, listener: Optional[Listener] = None) -> Future:
        """Convert one file; the future resolves to the output path, the original, or None."""
        return self._pool.submit(self._convert_one, Path(path), listener, self.settings)

    def convert_files(self, paths: Iterable[PathLike], listener: Optional[Listener] = None) -> Future:
        """Convert `paths` one after another; the future resolves to a `BatchResult`."""
        inputs = [Path(p) for p in paths]
        return self._pool.submit(self._run_batch, inputs, listener, self.settings)

    def convert_files_with_auto_directory(
        self, paths: Iterable[PathLike], listener: Optional[Listener] = None
    ) -> Future:
        """Convert each source folder's files into a sibling `<folder>-converted` directory."""
        inputs = [Path(p).absolute() for p in paths]
        return self._pool.submit(self._run_auto_directory, inputs, listener, self.settings)

    def convert_directory(
        self,
        root: PathLike,
        listener: Optional[Listener] = None,
        *,
        skip_converted_albums: bool = True,
    ) -> Future:
        """Scan `root` and convert every legacy file of albums not converted yet."""
        return self._pool.submit(self._run_directory, Path(root), listener, self.settings, skip_converted_albums)

    def auto_convert_imported(
        self, paths: Iterable[PathLike], listener: Optional[Listener] = None
    ) -> Optional[Future]:
        """Import hook: queue freshly imported legacy files when auto-convert is on.

        Returns None when the setting is off or nothing needs converting.
        """
        if not self.settings.auto_convert_on_import:
            return None
        candidates = [Path(p) for p in paths if is_convertible(file_extension(p)) and not is_compatible(file_extension(p))]
        if self.tracker is not None and candidates:
            with self._tracker_lock:
                candidates = self.tracker.filter_unconverted_files(candidates)
        if not candidates:
            return None
        logger.info(f"Auto-converting {len(candidates)} imported file(s)")
        return self.convert_files(candidates, listener)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; in-flight conversions finish first when `wait` is True."""
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "ConversionEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)

    # -- synchronous core ----------------------------------------------------

    def convert_file_sync(self, path: PathLike, *, output_dir: Optional[Path] = None) -> Optional[Path]:
        """Run one conversion on the calling thread.

        Returns the new file, the existing output, the input itself when it is
        already compatible, or None when the format is not convertible.
        Raises `ConversionError` (or the codec's own exception) on failure.
        """
        job = self.run_job(ConversionJob(input_path=Path(path), output_dir=output_dir))
        return job.result

    def run_job(self, job: ConversionJob, settings: Optional[ConversionSettings] = None) -> ConversionJob:
        settings = settings or self.settings
        src = job.input_path

        if not src.exists():
            err = InputNotFoundError(src)
            self._mark_failed(job, err)
            raise err

        ext = file_extension(src)
        if is_compatible(ext):
            logger.info(f"File already compatible, skipping: {src.name}")
            return self._skip(job, "already compatible", result=src)
        if not is_convertible(ext):
            logger.info(f"File format not convertible, skipping: {src.name}")
            return self._skip(job, "not convertible", result=None)

        try:
            out = resolve_output_path(src, settings, job.output_dir)
        except OutputDirectoryError as e:
            self._mark_failed(job, e)
            raise
        job.output_path = out

        if out.exists():
            logger.info(f"Converted file already exists: {out.name}")
            return self._skip(job, "output exists", result=out)

        job.status = JobStatus.RUNNING
        spec = AudioSpec.from_settings(settings)
        logger.info(f"Converting: {src.name} -> {out.name} ({spec})")
        try:
            if not self.codec.transcode(src, out, spec):
                logger.debug(f"Direct conversion unsupported for {src.name}; retrying via 16-bit PCM bridge")
                if not self.codec.transcode(src, out, spec, bridge=True):
                    raise UnsupportedConversionError(src, str(spec))
            if not out.is_file() or out.stat().st_size == 0:
                raise CodecError(f"Codec produced no output for {src.name}")
        except Exception as e:
            self._discard_partial(out)
            self._mark_failed(job, e)
            raise

        self._copy_metadata(src, out)
        job.status = JobStatus.SUCCEEDED
        job.result = out
        logger.info(f"Successfully converted: {out.name}")

        if self.tracker is not None:
            with self._tracker_lock:
                self.tracker.record_conversion(src, out, settings.target_format.extension, ext)
        if not settings.preserve_originals:
            self._remove_original(src)
        return job

    # -- job helpers -----------------------------------------------------------

    @staticmethod
    def _skip(job: ConversionJob, reason: str, *, result: Optional[Path]) -> ConversionJob:
        job.status = JobStatus.SKIPPED
        job.skip_reason = reason
        job.result = result
        return job

    @staticmethod
    def _mark_failed(job: ConversionJob, exc: BaseException) -> None:
        job.status = JobStatus.FAILED
        job.error = str(exc)

    @staticmethod
    def _discard_partial(out: Path) -> None:
        try:
            if out.exists():
                out.unlink()
                logger.debug(f"Removed partial output {out.name}")
        except OSError as e:
            logger.error(f"Could not remove partial output {out}: {e}")

    def _copy_metadata(self, src: Path, out: Path) -> None:
        try:
            self.metadata.copy_tags(src, out)
        except Exception as e:
            log_event("tags", file=src.name, status="warn", reason=str(e), level="DEBUG", msg="tags copy failed")

    @staticmethod
    def _remove_original(src: Path) -> None:
        try:
            src.unlink()
            logger.info(f"Removed original: {src.name}")
        except OSError as e:
            logger.warning(f"Could not remove original {src}: {e}")

    # -- pool tasks ------------------------------------------------------------

    def _convert_one(self, src: Path, listener: Optional[Listener], settings: ConversionSettings) -> Optional[Path]:
        try:
            return self.run_job(ConversionJob(input_path=src), settings).result
        except Exception as e:
            _emit(listener, Error(src.name, e))
            raise

    def _attempt(
        self,
        job: ConversionJob,
        settings: ConversionSettings,
        result: BatchResult,
        listener: Optional[Listener],
    ) -> None:
        result.jobs.append(job)
        try:
            self.run_job(job, settings)
        except Exception as e:
            logger.warning(f"Failed to convert: {job.input_path.name}: {e}")
            result.errors.append(f"{job.input_path.name}: {e}")
            _emit(listener, Error(job.input_path.name, e))
            return
        if job.result is not None:
            result.converted.append(job.result)

    def _finish(self, result: BatchResult, listener: Optional[Listener]) -> BatchResult:
        log_event(
            "batch_done",
            converted=result.succeeded,
            skipped=result.skipped,
            failed=result.failed,
            msg=f"Batch complete: {result.succeeded} converted, {result.skipped} skipped, {result.failed} failed",
        )
        _emit(listener, Complete(tuple(result.converted), tuple(result.errors)))
        return result

    def _run_batch(
        self, inputs: Sequence[Path], listener: Optional[Listener], settings: ConversionSettings
    ) -> BatchResult:
        result = BatchResult()
        total = len(inputs)
        log_event("batch_start", total=total, target=settings.describe())
        for i, src in enumerate(inputs):
            _emit(listener, Progress(src.name, i + 1, total, i / total * 100))
            self._attempt(ConversionJob(input_path=src), settings, result, listener)
        return self._finish(result, listener)

    def _run_auto_directory(
        self, inputs: Sequence[Path], listener: Optional[Listener], settings: ConversionSettings
    ) -> BatchResult:
        result = BatchResult()
        total = len(inputs)
        log_event("batch_start", total=total, target=settings.describe(), mode="auto-directory")

        groups: Dict[Path, List[Path]] = {}
        for src in inputs:
            groups.setdefault(src.parent, []).append(src)

        done = 0
        for source_dir, files in groups.items():
            try:
                out_dir = ensure_dir(converted_dir_for(source_dir))
            except OutputDirectoryError as e:
                logger.error(str(e))
                result.errors.append(str(e))
                _emit(listener, Error(source_dir.name or str(source_dir), e))
                done += len(files)
                continue
            for src in files:
                _emit(listener, Progress(src.name, done + 1, total, done / total * 100))
                self._attempt(ConversionJob(input_path=src, output_dir=out_dir), settings, result, listener)
                done += 1
        return self._finish(result, listener)

    def _run_directory(
        self,
        root: Path,
        listener: Optional[Listener],
        settings: ConversionSettings,
        skip_converted_albums: bool,
    ) -> BatchResult:
        if self.tracker is not None and skip_converted_albums:
            with self._tracker_lock:
                analysis = analyze_directory(root, self.tracker)
        else:
            analysis = analyze_directory(root)
        logger.info(f"{root}: {analysis}; {analysis.already_converted} already converted")
        return self._run_batch(list(analysis.files_to_convert), listener, settings)


__all__ = ["BatchResult", "ConversionEngine", "ConversionError"]
