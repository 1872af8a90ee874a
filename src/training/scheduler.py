# ABOUTME: Runs the retrain trigger policy on a background daemon thread.
# ABOUTME: Stopping the scheduler also cancels any in-flight training run.

from __future__ import annotations

import threading
from typing import Callable, List, Optional, Sequence

from src.common.console import log, warn
from src.common.schemas import InteractionRecord

from .pipeline import TrainingPipeline, TrainingReport


class TrainingScheduler:
    """
    Daemon thread that evaluates retrain triggers every ``interval_seconds``.

    Serving never waits on this thread. A run only swaps in a new model after
    validation, so ``stop()`` can interrupt it at any point.
    """

    def __init__(
        self,
        pipeline: TrainingPipeline,
        history_source: Callable[[], Sequence[InteractionRecord]],
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.pipeline = pipeline
        self._history_source = history_source
        self._interval = (
            interval_seconds if interval_seconds is not None else pipeline.config.training.check_interval_seconds
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="challenge-trainer", daemon=True)
        self._thread.start()
        log("scheduler", f"started (interval={self._interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        log("scheduler", "stopped")

    def run_once(self) -> List[TrainingReport]:
        """Evaluate triggers and train every due target, sequentially."""
        return self.pipeline.run_due(list(self._history_source()), cancel_event=self._stop)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception as exc:  # keep the background thread alive
                warn("scheduler", f"training cycle failed: {exc!r}")
