"""
Periodic re-analysis of running experiments.

:class:`AnalysisScheduler` runs a daemon thread that wakes every
``interval`` seconds and re-analyzes each running experiment that has
results newer than its last analysis. Experiments already being analyzed
by a client call are skipped rather than waited on. ``stop()`` halts the
thread deterministically.
"""

import logging
import threading
from typing import List, Optional

from .experiments import ExperimentRegistry

_log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0


class AnalysisScheduler:
    """Background sweep over an :class:`ExperimentRegistry`."""

    def __init__(self, registry: ExperimentRegistry, interval: float = DEFAULT_INTERVAL):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.registry = registry
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweep thread (no-op if already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="aurora-analysis-sweep", daemon=True)
        self._thread.start()
        _log.info("Experiment analysis sweep started (every %.0fs)", self.interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the sweep thread to exit and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                # Keep the handle so start() cannot spawn a second sweep.
                _log.warning("Experiment analysis sweep did not stop within %ss", timeout)
                return
            self._thread = None
            _log.info("Experiment analysis sweep stopped")

    def __enter__(self) -> "AnalysisScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception as exc:
                _log.warning("Experiment analysis sweep failed: %s", exc)

    def run_once(self) -> List[str]:
        """Run one sweep.

        Returns:
            Ids of the experiments that were analyzed.
        """
        analyzed = []
        for experiment in self.registry.running_tests():
            if not experiment.has_new_results():
                continue
            analysis = self.registry.analyze_test(experiment.id, blocking=False)
            if analysis is not None:
                analyzed.append(experiment.id)
                _log.debug("Re-analyzed experiment %s: %s", experiment.id, analysis.status.value)
        return analyzed
