import threading
from pathlib import Path

import pytest
from loguru import logger

from lac.config import ConversionSettings
from lac.engine import ConversionEngine
from lac.scheduler import WorkerPool
from lac.tracker import ConversionTracker


class FakeCodec:
    """Codec provider that writes a few bytes instead of running ffmpeg."""

    def __init__(self, direct=True, bridge=True, exc=None, payload=b"RIFF\x00\x00\x00\x00WAVE"):
        self.direct = direct
        self.bridge = bridge
        self.exc = exc
        self.payload = payload
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def transcode(self, src, dest, spec, *, bridge=False):
        with self._lock:
            self.calls.append((Path(src), Path(dest), bridge))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.exc is not None:
                dest.write_bytes(b"partial")
                raise self.exc
            ok = self.bridge if bridge else self.direct
            if ok:
                dest.write_bytes(self.payload)
            return ok
        finally:
            with self._lock:
                self.active -= 1


class FakeMetadata:
    def __init__(self, exc=None, tags=None):
        self.exc = exc
        self.tags = tags or {}
        self.copied = []

    def copy_tags(self, src, dest):
        if self.exc is not None:
            raise self.exc
        self.copied.append((Path(src), Path(dest)))

    def read_album_tags(self, path):
        return self.tags.get(Path(path).name)


class Recorder:
    """Listener that keeps every event it receives."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


@pytest.fixture(autouse=True)
def quiet_logger():
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def codec():
    return FakeCodec()


@pytest.fixture
def metadata():
    return FakeMetadata()


@pytest.fixture
def tracker(tmp_path):
    return ConversionTracker(tmp_path / "state" / "conversion-history.json")


@pytest.fixture
def make_engine(codec, metadata):
    engines = []

    def _make(settings=None, **kwargs):
        kwargs.setdefault("codec", codec)
        kwargs.setdefault("metadata", metadata)
        kwargs.setdefault("pool", WorkerPool(2))
        engine = ConversionEngine(settings or ConversionSettings(), **kwargs)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown(wait=True)


def touch(path: Path, data: bytes = b"audio") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
