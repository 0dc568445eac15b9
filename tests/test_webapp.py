from __future__ import annotations

import io
import time
from pathlib import Path

from flask.testing import FlaskClient

from resource_planner.io_utils import load_dataset


def _wait_for_job(client: FlaskClient, job_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        job = client.get(f"/api/imports/{job_id}").get_json()
        if job["state"] in {"done", "failed"} or time.monotonic() > deadline:
            return job
        time.sleep(0.02)


def test_team_capacity(client: FlaskClient) -> None:
    response = client.get("/api/teams/t1/capacity?iteration=1&quarter=q1")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["allocated_percentage"] == 110
    assert payload["available_percentage"] == 0
    assert payload["is_over_allocated"] is True
    assert payload["quarter"]["average_utilization"] == 75
    assert payload["quarter"]["over_allocated_sprints"] == [1]


def test_capacity_errors(client: FlaskClient) -> None:
    assert client.get("/api/teams/nope/capacity").status_code == 404
    assert client.get("/api/teams/t1/capacity?quarter=q9").status_code == 404
    response = client.get("/api/teams/t1/capacity?iteration=first")
    assert response.status_code == 400
    assert response.get_json() == {"error": "iteration must be an integer"}


def test_project_cost(client: FlaskClient) -> None:
    payload = client.get("/api/projects/pr1/cost?fy=fy24").get_json()

    assert payload["total_cost"] == 15600
    assert payload["budget_variance"] == 184400
    assert payload["financial_year"]["quarterly_costs"] == {"Q1 2024": 15600}
    assert client.get("/api/projects/pr1/cost?fy=fy99").status_code == 404


def test_recommendations_and_gaps(client: FlaskClient) -> None:
    payload = client.get("/api/projects/pr1/recommendations?top=1").get_json()

    assert payload["project_id"] == "pr1"
    assert [(r["rank"], r["team_id"]) for r in payload["recommendations"]] == [(1, "t1")]
    assert payload["recommendations"][0]["compatibility"]["recommendation"] == "excellent"

    gaps = client.get("/api/projects/pr1/skill-gaps").get_json()
    assert gaps["recommendations"]["best_team"] == "t1"
    assert client.get("/api/projects/nope/skill-gaps").status_code == 404


def test_scenario_listing_starts_live(client: FlaskClient) -> None:
    payload = client.get("/api/scenarios").get_json()

    assert payload["is_live"] is True
    assert payload["scenarios"] == []
    assert [t["id"] for t in payload["templates"]] == ["budget-cut-10", "team-expansion", "project-delay"]


def test_create_scenario_validation(client: FlaskClient) -> None:
    response = client.post("/api/scenarios", json={})
    assert response.status_code == 400
    assert response.get_json() == {"error": "scenario name is required"}

    missing = client.post("/api/scenarios", json={"template_id": "nope"})
    assert missing.status_code == 404
    assert missing.get_json() == {"error": "template 'nope' not found"}


def test_scenario_workflow(client: FlaskClient, tmp_path: Path) -> None:
    created = client.post(
        "/api/scenarios", json={"template_id": "budget-cut-10", "parameters": {"budgetReduction": 10}}
    )
    assert created.status_code == 201
    scenario = created.get_json()
    assert scenario["name"] == "Budget Reduction Scenario"
    assert scenario["total_modifications"] == 2

    activated = client.post(f"/api/scenarios/{scenario['id']}/activate").get_json()
    assert activated["is_live"] is False
    assert activated["active_scenario_id"] == scenario["id"]
    assert client.get("/api/projects/pr1/cost").get_json()["budget_variance"] == 180000 - 15600

    comparison = client.get(f"/api/scenarios/{scenario['id']}/comparison").get_json()
    assert comparison["summary"]["total_changes"] == 2

    renamed = client.patch(f"/api/scenarios/{scenario['id']}", json={"name": "Lean year"}).get_json()
    assert renamed["name"] == "Lean year"

    assert client.post("/api/scenarios/save").status_code == 200
    assert client.post("/api/scenarios/discard").get_json()["has_unsaved_changes"] is False
    assert client.post("/api/scenarios/live").get_json()["is_live"] is True
    assert (tmp_path / "scenarios.json").exists()

    deleted = client.delete(f"/api/scenarios/{scenario['id']}")
    assert deleted.status_code == 200
    assert client.get(f"/api/scenarios/{scenario['id']}/comparison").status_code == 404


def test_working_set_routes_need_active_scenario(client: FlaskClient) -> None:
    response = client.post("/api/scenarios/save")

    assert response.status_code == 400
    assert response.get_json() == {"error": "no active scenario to save"}
    assert client.post("/api/scenarios/missing/activate").status_code == 404


def test_cleanup_reports_count(client: FlaskClient) -> None:
    client.post("/api/scenarios", json={"name": "Fresh"})

    assert client.post("/api/scenarios/cleanup").get_json() == {"removed": 0}


def test_json_import_job_updates_live_data(client: FlaskClient, data_file: Path) -> None:
    response = client.post("/api/imports", json={"kind": "projects", "csv": "name,budget\nWarehouse,5000\n"})

    assert response.status_code == 202
    accepted = response.get_json()
    assert accepted["status_url"] == f"/api/imports/{accepted['job_id']}"

    job = _wait_for_job(client, accepted["job_id"])
    assert job["state"] == "done"
    assert job["kind"] == "projects"
    assert job["filename"] == "inline.csv"
    assert job["result"]["imported"] == 1
    assert job["message"] == "Imported 1 rows (0 errors, 0 warnings)"
    assert [p.name for p in load_dataset(data_file).projects] == ["Billing Revamp", "Mobile App", "Warehouse"]


def test_upload_import_job(client: FlaskClient) -> None:
    upload = {
        "kind": "teams",
        "file": (io.BytesIO(b"team_id,team_name,division_id,capacity\nt9,Data,d1,20\n"), "teams.csv"),
    }

    response = client.post("/api/imports", data=upload, content_type="multipart/form-data")

    job = _wait_for_job(client, response.get_json()["job_id"])
    assert job["state"] == "done"
    assert job["filename"] == "teams.csv"
    assert client.get("/api/teams/t9/capacity").status_code == 200


def test_failed_import_job(client: FlaskClient) -> None:
    response = client.post(
        "/api/imports",
        json={"kind": "projects", "csv": "name,status\nBroken,paused\n", "allow_partial": False},
    )

    job = _wait_for_job(client, response.get_json()["job_id"])
    assert job["state"] == "failed"
    assert job["message"].startswith("Import failed at row 2")
    listed = client.get("/api/imports").get_json()["jobs"]
    assert [j["id"] for j in listed] == [job["id"]]


def test_import_request_validation(client: FlaskClient) -> None:
    bad_kind = client.post("/api/imports", json={"kind": "widgets", "csv": "a\n1\n"})
    no_csv = client.post("/api/imports", json={"kind": "teams"})

    assert bad_kind.status_code == 400
    assert bad_kind.get_json()["error"].startswith("kind must be one of")
    assert no_csv.get_json() == {"error": "csv content is required"}
    assert client.get("/api/imports/missing").status_code == 404
