"""Job lifecycle manager: single-flight pipeline runs in a child process."""

import logging
import os
import subprocess
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from flashfungi.core.config import SETTINGS_ENV, RunConfig
from flashfungi.core.database import JobConflictError, SpecimenDatabase
from flashfungi.pipeline import PROGRESS_PREFIX, ProgressEvent, RunStats

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = [sys.executable, "-m", "flashfungi.run", "--progress"]

__all__ = ["JobConflictError", "JobManager", "JobNotFoundError"]


class JobNotFoundError(LookupError):
    """Raised for an unknown job id, or stopping a job that is not running."""


@dataclass
class _Job:
    id: str
    process: subprocess.Popen
    started_at: datetime
    config: dict
    logs: list[dict] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)
    stop_requested: bool = False
    stopped_by: Optional[str] = None
    ended_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    status: str = "running"
    threads: list[threading.Thread] = field(default_factory=list)
    done: threading.Event = field(default_factory=threading.Event)


# ── JobManager ───────────────────────────────────────────────────────


class JobManager:
    """Start, watch and stop pipeline runs; at most one runs at a time.

    The child's stdout and stderr are read line by line. Lines carrying a
    progress event update the job's counters; all other lines are kept as
    the job's log (stdout as "info", stderr as "error") and persisted.
    """

    def __init__(
        self,
        db: SpecimenDatabase,
        command: list[str] | None = None,
        grace_period: float = 5.0,
        settings_path: str | None = None,
        recent_log_limit: int = 50,
    ):
        self.db = db
        self.command = list(command or DEFAULT_COMMAND)
        self.grace_period = grace_period
        self.settings_path = settings_path
        self.recent_log_limit = recent_log_limit

        self._lock = threading.RLock()
        self._running: dict[str, _Job] = {}
        self._history: dict[str, _Job] = {}

        with self._lock:
            self.db.fail_orphaned_jobs()

    # ── Start ────────────────────────────────────────────────

    def start(self, config: RunConfig, started_by: str | None = None) -> str:
        """Spawn a run and return its job id. Raises JobConflictError if one is running."""
        with self._lock:
            if self._running or self.db.has_running_job():
                raise JobConflictError("Pipeline is already running. Please wait for it to complete.")

            job_id = f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
            config_data = config.model_dump(by_alias=True)
            self.db.create_job(job_id, config_data, started_by)

            env = {**os.environ, **config.to_env(), "PYTHONUNBUFFERED": "1"}
            if self.settings_path:
                env[SETTINGS_ENV] = str(self.settings_path)
            try:
                process = subprocess.Popen(
                    self.command,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    bufsize=1,
                )
            except OSError as exc:
                logger.error("Could not start pipeline process: %s", exc)
                self.db.finish_job(job_id, "failed", stats=RunStats().as_dict())
                raise

            job = _Job(
                id=job_id,
                process=process,
                started_at=datetime.now(timezone.utc),
                config=config_data,
            )
            self._running[job_id] = job

            job.threads = [
                threading.Thread(target=self._read_stream, args=(job, process.stdout, "info"), daemon=True),
                threading.Thread(target=self._read_stream, args=(job, process.stderr, "error"), daemon=True),
            ]
            for t in job.threads:
                t.start()
            threading.Thread(target=self._wait, args=(job,), daemon=True).start()

        logger.info("Started job %s (pid %d) by %s", job_id, process.pid, started_by or "unknown")
        return job_id

    # ── Queries ──────────────────────────────────────────────

    def status(self, job_id: str) -> dict:
        with self._lock:
            job = self._running.get(job_id)
            if job is not None:
                return {
                    "status": "running",
                    "startedAt": job.started_at.isoformat(),
                    "stats": job.stats.as_dict(),
                    "recentLogs": job.logs[-self.recent_log_limit:],
                }
            job = self._history.get(job_id)
            if job is not None:
                return {
                    "status": job.status,
                    "startedAt": job.started_at.isoformat(),
                    "endedAt": job.ended_at.isoformat() if job.ended_at else None,
                    "stats": job.stats.as_dict(),
                    "exitCode": job.exit_code,
                }
            row = self.db.get_job(job_id)
        if row is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return {
            "status": row["status"],
            "startedAt": row["started_at"],
            "endedAt": row["ended_at"],
            "stats": row["stats"],
            "exitCode": row["exit_code"],
        }

    def logs(self, job_id: str, limit: int = 100, offset: int = 0) -> dict:
        with self._lock:
            job = self._running.get(job_id)
            if job is not None:
                return {"logs": job.logs[offset:offset + limit], "total": len(job.logs)}
            if self.db.get_job(job_id) is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            logs, total = self.db.get_job_logs(job_id, limit, offset)
        return {"logs": logs, "total": total}

    def history(self, limit: int = 20, offset: int = 0) -> dict:
        with self._lock:
            runs, total = self.db.list_jobs(limit, offset)
        return {"runs": runs, "total": total, "limit": limit, "offset": offset}

    def health(self) -> dict:
        with self._lock:
            return {
                "status": "healthy",
                "runningJobs": len(self._running),
                "historicalJobs": len(self._history),
            }

    # ── Stop ─────────────────────────────────────────────────

    def stop(self, job_id: str, stopped_by: str | None = None) -> bool:
        """SIGTERM the run, SIGKILL it after the grace period, wait for it to be recorded.

        Returns False if the job was not finalized within the grace period
        after the process exited; it is still recorded once its output closes.
        """
        with self._lock:
            job = self._running.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found or already stopped: {job_id}")
            job.stop_requested = True
            job.stopped_by = stopped_by

        logger.info("Stopping job %s", job_id)
        process = job.process
        process.terminate()
        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Job %s did not exit within %.1fs, killing", job_id, self.grace_period
            )
            process.kill()
            process.wait()

        finalized = job.done.wait(timeout=self.grace_period)
        if not finalized:
            logger.warning("Job %s exited but is not finalized yet (output still open)", job_id)
        return finalized

    def join(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job has been finalized. Returns False on timeout."""
        with self._lock:
            job = self._running.get(job_id) or self._history.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job.done.wait(timeout)

    # ── Child Process IO ─────────────────────────────────────

    def _read_stream(self, job: _Job, stream, log_type: str) -> None:
        for raw in stream:
            line = raw.rstrip("\n")
            if line.strip():
                self._handle_line(job, line, log_type)
        stream.close()

    def _handle_line(self, job: _Job, line: str, log_type: str) -> None:
        if log_type == "info" and line.startswith(PROGRESS_PREFIX):
            try:
                event = ProgressEvent.from_line(line)
            except ValidationError as exc:
                logger.warning("Job %s: malformed progress line: %s", job.id, exc)
            else:
                with self._lock:
                    job.stats = job.stats.apply(event)
                return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": line,
            "type": log_type,
        }
        with self._lock:
            job.logs.append(entry)
            self.db.add_job_log(job.id, line, log_type)

    def _wait(self, job: _Job) -> None:
        exit_code = job.process.wait()
        for t in job.threads:
            t.join()

        ended_at = datetime.now(timezone.utc)
        with self._lock:
            if job.stop_requested:
                status = "stopped"
            elif exit_code == 0:
                status = "completed"
            else:
                status = "failed"
            job.status = status
            job.exit_code = exit_code
            job.ended_at = ended_at
            self.db.finish_job(
                job.id,
                status,
                stats=job.stats.as_dict(),
                exit_code=exit_code,
                duration_seconds=int((ended_at - job.started_at).total_seconds()),
                stopped_by=job.stopped_by,
            )
            self._history[job.id] = job
            self._running.pop(job.id, None)
        job.done.set()
        logger.info("Job %s %s (exit code %s)", job.id, status, exit_code)
