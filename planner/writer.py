from __future__ import annotations
import logging, queue, threading
from concurrent.futures import Future
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class WriteQueue(threading.Thread):
    """Runs store writes one at a time on a background thread.

    Callers get a Future immediately. Because a single worker drains the
    queue, read-modify-write jobs on a template's date sets never interleave.
    """

    def __init__(self, name: str = "planner-writer"):
        super().__init__(name=name, daemon=True)
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._stop_event = threading.Event()
        self._start_lock = threading.Lock()

    def submit(self, fn: Callable[[], Any]) -> Future:
        if self._stop_event.is_set():
            raise RuntimeError("write queue is stopped")
        with self._start_lock:
            if self.ident is None:
                self.start()
        fut: Future = Future()
        self._jobs.put((fn, fut))
        return fut

    def stop(self, timeout: Optional[float] = None) -> None:
        """Finish queued writes, then end the thread."""
        self._stop_event.set()
        if self.is_alive():
            self._jobs.put(_STOP)
            self.join(timeout)

    def run(self):
        while True:
            item = self._jobs.get()
            if item is _STOP:
                break
            fn, fut = item
            if not fut.set_running_or_notify_cancel():
                continue
            try:
                fut.set_result(fn())
            except Exception as e:
                logger.exception("write job failed unexpectedly")
                fut.set_exception(e)


class ImmediateWriter:
    """Runs each job on the calling thread; handy for scripts and tests."""

    def submit(self, fn: Callable[[], Any]) -> Future:
        fut: Future = Future()
        try:
            fut.set_result(fn())
        except Exception as e:
            fut.set_exception(e)
        return fut

    def stop(self, timeout: Optional[float] = None) -> None:
        pass
