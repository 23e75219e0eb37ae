"""Background refresh job manager for PipelineWatch.

Runs one aggregation session in a background daemon thread (with its own
event loop) so the web server stays responsive, and keeps the latest
snapshot around for polling clients.
"""

import asyncio
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from ..config import PipelineConfig
from ..engine.aggregator import StreamingAggregator
from ..runner.process import ProcessRunner
from ..runs.models import AggregateResult, Snapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefreshJob:
    """Represents a single background aggregation run."""

    job_id: str
    status: str = "idle"  # idle | running | completed | failed
    started_at: str | None = None
    completed_at: str | None = None
    snapshot: dict | None = None
    result: dict | None = None
    error: str | None = None
    snapshots_received: int = 0
    log: deque = field(default_factory=lambda: deque(maxlen=200))

    def to_dict(self) -> dict:
        """Convert the job state to a plain dictionary."""
        return {
            "job_id": self.job_id,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "snapshot": self.snapshot,
            "result": self.result,
            "error": self.error,
            "snapshots_received": self.snapshots_received,
            "log": list(self.log),
        }


class RefreshManager:
    """Manages background aggregation runs.

    Only one refresh runs at a time; a second start while one is in
    flight is refused rather than spawning a duplicate session.

    Usage::

        manager = RefreshManager(config)
        result = manager.start()
        status = manager.get_status()
    """

    def __init__(
        self,
        config: PipelineConfig,
        runner_factory: Callable[[], ProcessRunner] | None = None,
    ):
        self.config = config
        self.runner_factory = runner_factory
        self.job: RefreshJob = RefreshJob(job_id="none")
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def is_running(self) -> bool:
        """Return True if a refresh is currently executing.

        Also recovers from stale "running" state if the thread has died.
        """
        if self.job.status == "running":
            if self._thread is None or not self._thread.is_alive():
                self.job.status = "failed"
                self.job.error = self.job.error or "Refresh thread died unexpectedly"
                self.job.completed_at = _utcnow().isoformat()
                self._log("Recovered from stale running state (thread dead)")
                return False
            return True
        return False

    def get_status(self) -> dict:
        """Return the current job state as a plain dict."""
        with self._lock:
            return self.job.to_dict()

    def start(self) -> dict:
        """Kick off a new refresh in a background thread.

        Returns an error dict if a refresh is already running, otherwise
        returns the initial job state.
        """
        with self._lock:
            if self.is_running():
                return {
                    "error": "A refresh is already running",
                    "job": self.job.to_dict(),
                }

            job_id = uuid.uuid4().hex[:12]
            self.job = RefreshJob(
                job_id=job_id,
                status="running",
                started_at=_utcnow().isoformat(),
            )
            self._log("Refresh started")

            self._thread = threading.Thread(
                target=self._run,
                args=(self.job,),
                name=f"refresh-{job_id}",
                daemon=True,
            )
            self._thread.start()

            return self.job.to_dict()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current refresh thread exits."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log(self, message: str) -> None:
        """Append a timestamped message to the job log."""
        timestamp = _utcnow().strftime("%H:%M:%S")
        self.job.log.append(f"[{timestamp}] {message}")

    def _on_progress(self, job: RefreshJob, snapshot: Snapshot) -> None:
        with self._lock:
            job.snapshot = snapshot.to_dict()
            job.snapshots_received += 1

    def _on_complete(self, job: RefreshJob, result: AggregateResult | None, error: str | None) -> None:
        with self._lock:
            job.result = result.to_dict() if result is not None else None
            job.error = error
            job.status = "failed" if result is None else "completed"
            job.completed_at = _utcnow().isoformat()
            if result is not None:
                self._log(f"Collected {len(result.active)} active, {len(result.recent)} recent runs")
            if error:
                self._log(f"Errors: {error}")

    def _run(self, job: RefreshJob) -> None:
        """Execute one aggregation session (runs in a daemon thread)."""
        runner = self.runner_factory() if self.runner_factory else None
        aggregator = StreamingAggregator(self.config, runner=runner)
        try:
            asyncio.run(aggregator.aggregate(
                on_progress=lambda snapshot: self._on_progress(job, snapshot),
                on_complete=lambda result, error: self._on_complete(job, result, error),
            ))
        except Exception as exc:
            with self._lock:
                job.status = "failed"
                job.error = str(exc)
                job.completed_at = _utcnow().isoformat()
                self._log(f"Refresh failed: {exc}")
