import queue
import threading
from collections.abc import Callable, Iterator

from .models import ProgressEvent, ProgressPhase

Subscriber = Callable[[ProgressEvent], None]

# Scanning progress never reaches 100 before the walk finishes.
SCANNING_CEILING: int = 95


def estimate_percent(processed: int) -> int:
    """
    Heuristic progress for a walk whose total size is unknown up front.

    Grows with the number of processed entries but stays at or below
    SCANNING_CEILING. It is an approximation, not a measurement.
    """
    if processed <= 0:
        return 0
    return min(SCANNING_CEILING, (processed * 100) // max(processed + 100, 1000))


class ProgressReporter:
    """
    Progress channel for a single live scan.

    The scanner publishes events; the caller either polls, iterates (blocking
    until the complete event or close()), or subscribes callbacks. A bounded
    `maxsize` makes publish() block when the consumer falls behind. With
    `buffered=False` events only reach subscribers and nothing is queued.
    """

    def __init__(self, maxsize: int = 0, *, buffered: bool = True) -> None:
        self.buffered: bool = buffered
        self._queue: queue.Queue[ProgressEvent | None] = queue.Queue(maxsize=maxsize)
        self._subscribers: list[Subscriber] = []
        self._lock: threading.Lock = threading.Lock()
        self._last_percent: int = 0
        self._processed: int = 0
        self.closed: bool = False

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    @property
    def last_percent(self) -> int:
        return self._last_percent

    def publish(self, event: ProgressEvent) -> ProgressEvent:
        with self._lock:
            percent: int = event.progress_percent
            if event.phase is ProgressPhase.COMPLETE:
                percent = 100
            percent = max(self._last_percent, min(percent, 100))
            self._last_percent = percent

        if percent != event.progress_percent:
            event = ProgressEvent(
                phase=event.phase,
                progress_percent=percent,
                message=event.message,
                current_path=event.current_path,
                files_found=event.files_found,
                folders_found=event.folders_found,
            )

        if self.buffered:
            self._queue.put(event)
        for callback in self._subscribers:
            callback(event)

        return event

    def start(self, root: str) -> None:
        self.publish(ProgressEvent(phase=ProgressPhase.START, progress_percent=0, message=f"Scanning {root}"))

    def advance(self, *, processed: int, current_path: str, files_found: int, folders_found: int) -> None:
        self._processed += processed
        self.publish(
            ProgressEvent(
                phase=ProgressPhase.SCANNING,
                progress_percent=estimate_percent(self._processed),
                message=f"Scanning {current_path}",
                current_path=current_path,
                files_found=files_found,
                folders_found=folders_found,
            )
        )

    def complete(self, *, files_found: int, folders_found: int, message: str | None = None) -> None:
        self.publish(
            ProgressEvent(
                phase=ProgressPhase.COMPLETE,
                progress_percent=100,
                message=message or f"Scan complete: {files_found} files, {folders_found} folders",
                files_found=files_found,
                folders_found=folders_found,
            )
        )
        self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            if self.buffered:
                self._queue.put(None)

    def poll(self) -> list[ProgressEvent]:
        """Return every event published since the last poll without blocking."""
        events: list[ProgressEvent] = []
        while True:
            try:
                item: ProgressEvent | None = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                events.append(item)
        return events

    def __iter__(self) -> Iterator[ProgressEvent]:
        if not self.buffered:
            return
        while True:
            if self.closed and self._queue.empty():
                return
            item: ProgressEvent | None = self._queue.get()
            if item is None:
                return
            yield item
