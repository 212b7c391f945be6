"""Conversion events delivered to listeners.

A listener is any callable taking one event. Listeners run on pool worker
threads; anything touching UI state must hop back to its own thread, which is
what `QueueListener` is for.
"""
from __future__ import annotations

import queue
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Progress:
    file_name: str
    index: int  # 1-based position in the batch
    total: int
    percent: float  # share of the batch finished before this file


@dataclass(frozen=True)
class Complete:
    converted: Tuple[Path, ...]
    errors: Tuple[str, ...]


@dataclass(frozen=True)
class Error:
    """Informational; the authoritative failure list is `Complete.errors`."""

    file_name: str
    exception: BaseException


ConversionEvent = Union[Progress, Complete, Error]
Listener = Callable[[ConversionEvent], None]


class CallbackListener:
    """Adapts the three-callback interface (progress/complete/error) to a listener."""

    def __init__(
        self,
        on_progress: Optional[Callable[[str, int, int, float], None]] = None,
        on_complete: Optional[Callable[[List[Path], List[str]], None]] = None,
        on_error: Optional[Callable[[str, BaseException], None]] = None,
    ) -> None:
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_error = on_error

    def __call__(self, event: ConversionEvent) -> None:
        if isinstance(event, Progress):
            if self.on_progress:
                self.on_progress(event.file_name, event.index, event.total, event.percent)
        elif isinstance(event, Complete):
            if self.on_complete:
                self.on_complete(list(event.converted), list(event.errors))
        elif isinstance(event, Error):
            if self.on_error:
                self.on_error(event.file_name, event.exception)


class QueueListener:
    """Pushes events onto a queue so another thread can consume them in order."""

    def __init__(self, q: Optional["queue.Queue[ConversionEvent]"] = None) -> None:
        self.queue: "queue.Queue[ConversionEvent]" = q if q is not None else queue.Queue()

    def __call__(self, event: ConversionEvent) -> None:
        self.queue.put(event)

    def drain(self) -> List[ConversionEvent]:
        events: List[ConversionEvent] = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events
