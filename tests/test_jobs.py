from __future__ import annotations

from webapp.jobs import MAX_MESSAGE_LENGTH, JobStore


def test_job_runs_task_and_records_progress() -> None:
    store = JobStore()

    def task(report):
        report(1, 4)
        report(4, 4)
        return {"imported": 3, "errors": [{"row": 2}], "warnings": []}

    job = store.create_job("teams", "teams.csv", task)
    assert job.state == "queued"

    store.start_job(job).join(timeout=5)

    finished = store.get_job(job.id)
    assert finished.state == "done"
    assert finished.started_at and finished.finished_at
    assert (finished.progress_current, finished.progress_total) == (4, 4)
    assert finished.message == "Imported 3 rows (1 errors, 0 warnings)"
    assert finished.to_dict()["progress"] == {"current": 4, "total": 4}


def test_failing_task_marks_job_failed() -> None:
    store = JobStore()

    def task(report):
        raise RuntimeError("x" * (MAX_MESSAGE_LENGTH + 10))

    job = store.create_job("people", "people.csv", task)
    store.start_job(job).join(timeout=5)

    failed = store.get_job(job.id)
    assert failed.state == "failed"
    assert failed.result is None
    assert len(failed.message) == MAX_MESSAGE_LENGTH


def test_returned_jobs_are_copies() -> None:
    store = JobStore()
    job = store.create_job("projects", "p.csv", lambda report: {"imported": 0})

    job.state = "failed"

    assert store.get_job(job.id).state == "queued"
    assert store.get_job("missing") is None
    assert [j.id for j in store.list_jobs()] == [job.id]
