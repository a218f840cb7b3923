"""
Progress event bus and observer utilities.

Pipeline stages outside the reconstruction core emit progress events through
this module, while host environments (CLI, services) subscribe with their own
renderers.  The core functions themselves take no callbacks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence
import sys
import threading
import time

from core.errors import ExtractionCancelled


@dataclass(frozen=True)
class ProgressEvent:
    """Immutable progress payload."""

    percent: int
    message: str
    stage: Optional[str] = None
    channel: str = "stage"  # "stage" | "dag" | custom
    timestamp: float = field(default_factory=time.time)


class ProgressObserver(Protocol):
    """Observer protocol for progress events."""

    def on_progress(self, event: ProgressEvent) -> None:
        ...


class ProgressBus:
    """
    Observer-style event bus for progress propagation.

    Loader workers may report from several threads; the observer list is
    guarded and observers are called outside the lock.
    """

    def __init__(self) -> None:
        self._observers: list[Callable[[ProgressEvent], None] | ProgressObserver] = []
        self._lock = threading.Lock()

    def subscribe(self, observer: Callable[[ProgressEvent], None] | ProgressObserver) -> "ProgressBus":
        with self._lock:
            self._observers.append(observer)
        return self

    def unsubscribe(self, observer: Callable[[ProgressEvent], None] | ProgressObserver) -> "ProgressBus":
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
        return self

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            observers = tuple(self._observers)
        for observer in observers:
            if hasattr(observer, "on_progress"):
                observer.on_progress(event)  # type: ignore[attr-defined]
            else:
                observer(event)  # type: ignore[misc]

    def stage_callback(self, stage: str) -> Callable[[int, str], None]:
        def callback(percent: int, message: str) -> None:
            p = max(0, min(100, int(percent)))
            self.emit(ProgressEvent(percent=p, message=message, stage=stage, channel="stage"))

        return callback

    def dag_callback(self) -> Callable[[int, str], None]:
        def callback(percent: int, message: str) -> None:
            p = max(0, min(100, int(percent)))
            self.emit(ProgressEvent(percent=p, message=message, stage=None, channel="dag"))

        return callback


class StageProgressMapper:
    """
    Map per-stage local percentage [0..100] into pipeline-global [0..100].
    """

    def __init__(self, stages: Sequence[str]) -> None:
        stage_list = list(stages)
        self._count = max(len(stage_list), 1)
        self._index = {name: idx for idx, name in enumerate(stage_list)}

    def map(self, stage: Optional[str], local_percent: int) -> int:
        if not stage or stage not in self._index:
            return max(0, min(100, int(local_percent)))

        idx = self._index[stage]
        local = max(0, min(100, int(local_percent)))
        return min(100, (idx * 100 + local) // self._count)


class CancelEventObserver:
    """
    Stops a pipeline at its next progress report once ``event`` is set.

    The same event is handed to the extractor, which checks it between cube
    layers; this observer covers the stages in between.
    """

    def __init__(self, event: threading.Event, message: str = "Reconstruction cancelled.") -> None:
        self.event = event
        self._message = message

    def on_progress(self, _event: ProgressEvent) -> None:
        if self.event.is_set():
            raise ExtractionCancelled(self._message)


class TerminalProgressObserver:
    """
    Text renderer for CLI usage.

    With a ``mapper``, stage lines also show the pipeline-wide percentage.
    """

    def __init__(self, bar_width: int = 30, stream=None,
                 mapper: Optional[StageProgressMapper] = None) -> None:
        self.bar_width = bar_width
        self.stream = stream or sys.stdout
        self._mapper = mapper

    def on_progress(self, event: ProgressEvent) -> None:
        if event.channel == "dag":
            self.stream.write(f"  [DAG {event.percent:3d}%] {event.message}\n")
            self.stream.flush()
            return

        stage = event.stage or "task"
        filled = int(self.bar_width * event.percent / 100)
        bar = "#" * filled + "." * (self.bar_width - filled)
        total = ""
        if self._mapper is not None:
            total = f" (total {self._mapper.map(event.stage, event.percent):3d}%)"
        self.stream.write(f"\r  [{stage}] [{bar}] {event.percent:3d}%{total}  {event.message:<48}")
        if event.percent >= 100:
            self.stream.write("\n")
        self.stream.flush()


__all__ = [
    "ProgressEvent",
    "ProgressObserver",
    "ProgressBus",
    "StageProgressMapper",
    "CancelEventObserver",
    "TerminalProgressObserver",
]
