from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional

logger = logging.getLogger(__name__)

JobState = Literal["queued", "running", "done", "failed"]
MAX_MESSAGE_LENGTH = 2000

ProgressCallback = Callable[[int, int], None]
JobTask = Callable[[ProgressCallback], Dict[str, object]]


def _now_iso() -> str:
    """Return current UTC timestamp as ISO string with second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _trim_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Clamp message length to avoid unbounded memory growth."""
    if len(text) <= limit:
        return text
    return text[-limit:]


def _summary_message(result: Dict[str, object]) -> str:
    errors = result.get("errors") or []
    warnings = result.get("warnings") or []
    return f"Imported {result.get('imported', 0)} rows ({len(errors)} errors, {len(warnings)} warnings)"


@dataclass
class ImportJob:
    id: str
    kind: str
    filename: str
    state: JobState = "queued"
    created_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    progress_current: int = 0
    progress_total: int = 0
    message: str = ""
    result: Optional[Dict[str, object]] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind,
            "filename": self.filename,
            "state": self.state,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "progress": {"current": self.progress_current, "total": self.progress_total},
            "message": self.message,
            "result": self.result,
        }


class JobStore:
    """In-memory import job registry with background execution threads."""

    def __init__(self) -> None:
        self._jobs: Dict[str, ImportJob] = {}
        self._tasks: Dict[str, JobTask] = {}
        self._lock = threading.Lock()

    def create_job(self, kind: str, filename: str, task: JobTask) -> ImportJob:
        job = ImportJob(id=str(uuid.uuid4()), kind=kind, filename=filename)
        with self._lock:
            self._jobs[job.id] = job
            self._tasks[job.id] = task
        return copy.deepcopy(job)

    def start_job(self, job: ImportJob) -> threading.Thread:
        thread = threading.Thread(target=self._run_job, args=(job.id,), daemon=True)
        thread.start()
        return thread

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(self) -> List[ImportJob]:
        with self._lock:
            jobs = list(self._jobs.values())
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(job) for job in jobs]

    def _update_job(self, job_id: str, **changes: object) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in changes.items():
                if key == "message" and isinstance(value, str):
                    value = _trim_message(value)
                setattr(job, key, value)

    def _run_job(self, job_id: str) -> None:
        self._update_job(job_id, state="running", started_at=_now_iso())
        with self._lock:
            task = self._tasks.pop(job_id)

        def report(current: int, total: int) -> None:
            self._update_job(job_id, progress_current=current, progress_total=total)

        try:
            result = task(report)
        except Exception as exc:  # recorded on the job; the thread has no caller to raise to
            logger.warning("import job %s failed: %s", job_id, exc)
            self._update_job(job_id, state="failed", finished_at=_now_iso(), message=str(exc))
            return
        self._update_job(
            job_id,
            state="done",
            finished_at=_now_iso(),
            result=result,
            message=_summary_message(result),
        )
