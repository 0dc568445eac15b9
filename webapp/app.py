from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple

from flask import Flask, jsonify, request, url_for

from resource_planner.capacity import calculate_team_capacity, calculate_team_capacity_utilization
from resource_planner.csv_import import IMPORTERS, CsvParseOptions, merge_import, run_import
from resource_planner.finance import calculate_project_cost, calculate_project_cost_for_year
from resource_planner.io_utils import load_config, load_dataset, save_dataset
from resource_planner.models import Dataset
from resource_planner.scenarios import (
    InMemoryScenarioStore,
    JsonFileScenarioStore,
    LiveDataRepository,
    NoActiveScenarioError,
    ScenarioManager,
    ScenarioNotFoundError,
)
from resource_planner.skills import analyze_project_skill_gaps, recommend_teams_for_project
from resource_planner.templates import TemplateNotFoundError

from .jobs import ImportJob, JobStore


def _resolve_path(explicit: Optional[str], env_name: str) -> Optional[Path]:
    value = explicit or os.getenv(env_name)
    if not value:
        return None
    return Path(value).expanduser().resolve()


def _load_live(data_path: Optional[Path]) -> Dataset:
    if data_path is None or not data_path.exists():
        return Dataset()
    return load_dataset(data_path)


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _json_body() -> Dict[str, object]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def _import_request() -> Tuple[str, str, str, bool]:
    upload = request.files.get("file")
    if upload is not None:
        kind = request.form.get("kind", "")
        content = upload.read().decode("utf-8")
        filename = upload.filename or "upload.csv"
        allow_partial = request.form.get("allow_partial", "true").lower() in {"1", "true", "yes"}
    else:
        data = _json_body()
        kind = str(data.get("kind") or "")
        content = data.get("csv")
        filename = str(data.get("filename") or "inline.csv")
        allow_partial = bool(data.get("allow_partial", True))
        if not isinstance(content, str) or not content.strip():
            raise ValueError("csv content is required")
    if kind not in IMPORTERS:
        raise ValueError(f"kind must be one of: {', '.join(sorted(IMPORTERS))}")
    return kind, content, filename, allow_partial


def create_app(
    data_path: Optional[str] = None,
    scenarios_path: Optional[str] = None,
    config_path: Optional[str] = None,
) -> Flask:
    app = Flask(__name__)
    resolved_data = _resolve_path(data_path, "PLANNER_DATA")
    resolved_scenarios = _resolve_path(scenarios_path, "PLANNER_SCENARIOS")
    resolved_config = _resolve_path(config_path, "PLANNER_CONFIG")
    config = load_config(resolved_config)

    live = LiveDataRepository(_load_live(resolved_data))
    store = JsonFileScenarioStore(resolved_scenarios) if resolved_scenarios else InMemoryScenarioStore()
    manager = ScenarioManager(live, store, config=config)
    job_store = JobStore()
    live_lock = threading.Lock()

    app.config["PLANNER_DATA"] = resolved_data
    app.config["PLANNER_SCENARIOS"] = resolved_scenarios
    app.config["PLANNING_CONFIG"] = config
    app.config["SCENARIO_MANAGER"] = manager
    app.config["JOB_STORE"] = job_store

    @app.errorhandler(ScenarioNotFoundError)
    @app.errorhandler(TemplateNotFoundError)
    def not_found(exc: KeyError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValueError)
    @app.errorhandler(NoActiveScenarioError)
    def bad_request(exc: Exception):
        return jsonify({"error": str(exc)}), 400

    # calculators

    @app.get("/api/teams/<team_id>/capacity")
    def team_capacity(team_id: str):
        data = manager.current_data()
        team = data.find_team(team_id)
        if team is None:
            return jsonify({"error": f"team '{team_id}' not found"}), 404
        iteration = _int_arg("iteration", 1)
        check = calculate_team_capacity(
            team, iteration, data.allocations, data.iterations(), data.quarters()
        )
        payload: Dict[str, object] = {
            "team_id": check.team_id,
            "iteration_number": check.iteration_number,
            "allocated_percentage": check.allocated_percentage,
            "available_percentage": check.available_percentage(),
            "capacity_hours": check.capacity_hours,
            "is_over_allocated": check.is_over_allocated,
            "is_under_allocated": check.is_under_allocated,
        }
        quarter_id = request.args.get("quarter")
        if quarter_id:
            quarter = data.find_cycle(quarter_id)
            if quarter is None:
                return jsonify({"error": f"quarter '{quarter_id}' not found"}), 404
            utilization = calculate_team_capacity_utilization(
                team,
                quarter,
                data.allocations,
                data.cycles,
                data.epics,
                under_threshold=config.under_allocation_threshold,
            )
            payload["quarter"] = {
                "cycle_id": utilization.cycle_id,
                "average_utilization": utilization.average_utilization,
                "peak_utilization": utilization.peak_utilization,
                "min_utilization": utilization.min_utilization,
                "utilization_trend": utilization.utilization_trend,
                "over_allocated_sprints": utilization.over_allocated_sprints,
                "under_allocated_sprints": utilization.under_allocated_sprints,
                "recommendations": utilization.recommendations,
                "warnings": utilization.warnings,
            }
        return jsonify(payload)

    @app.get("/api/projects/<project_id>/cost")
    def project_cost(project_id: str):
        data = manager.current_data()
        project = data.find_project(project_id)
        if project is None:
            return jsonify({"error": f"project '{project_id}' not found"}), 404
        cost = calculate_project_cost(
            project, data.epics, data.allocations, data.cycles, data.people, data.roles, data.teams, config
        )
        payload = cost.to_dict()
        fy_id = request.args.get("fy")
        if fy_id:
            financial_year = data.find_financial_year(fy_id)
            if financial_year is None:
                return jsonify({"error": f"financial year '{fy_id}' not found"}), 404
            payload["financial_year"] = calculate_project_cost_for_year(
                project, data.epics, data.allocations, data.cycles, data.people, data.roles, financial_year, config
            )
        return jsonify(payload)

    @app.get("/api/projects/<project_id>/recommendations")
    def project_recommendations(project_id: str):
        data = manager.current_data()
        project = data.find_project(project_id)
        if project is None:
            return jsonify({"error": f"project '{project_id}' not found"}), 404
        ranked = recommend_teams_for_project(
            project,
            data.teams,
            data.project_skills,
            data.solutions,
            data.skills,
            _int_arg("top", 3),
            data.project_solutions,
            data.people,
            data.person_skills,
        )
        return jsonify(
            {
                "project_id": project.id,
                "recommendations": [
                    {
                        "rank": item.rank,
                        "team_id": item.team.id,
                        "team_name": item.team.name,
                        "recommendation": item.recommendation,
                        "compatibility": item.compatibility.to_dict(),
                    }
                    for item in ranked
                ],
            }
        )

    @app.get("/api/projects/<project_id>/skill-gaps")
    def project_skill_gaps(project_id: str):
        data = manager.current_data()
        project = data.find_project(project_id)
        if project is None:
            return jsonify({"error": f"project '{project_id}' not found"}), 404
        return jsonify(
            analyze_project_skill_gaps(
                project,
                data.teams,
                data.project_skills,
                data.solutions,
                data.skills,
                data.project_solutions,
                data.people,
                data.person_skills,
            )
        )

    # scenarios

    def _state() -> Dict[str, object]:
        return {
            "is_live": manager.is_live,
            "active_scenario_id": manager.active_scenario_id,
            "has_unsaved_changes": manager.has_unsaved_changes(),
        }

    @app.get("/api/scenarios")
    def list_scenarios():
        payload = _state()
        payload["scenarios"] = [s.summary() for s in manager.list_scenarios()]
        payload["templates"] = manager.list_templates()
        return jsonify(payload)

    @app.post("/api/scenarios")
    def create_scenario():
        data = _json_body()
        template_id = data.get("template_id")
        if template_id:
            parameters = data.get("parameters") or {}
            if not isinstance(parameters, dict):
                raise ValueError("parameters must be an object")
            scenario = manager.create_scenario_from_template(
                str(template_id), parameters, name=data.get("name"), description=data.get("description")
            )
        else:
            scenario = manager.create_scenario(str(data.get("name") or ""), data.get("description"))
        return jsonify(scenario.summary()), 201

    @app.post("/api/scenarios/<scenario_id>/activate")
    def activate_scenario(scenario_id: str):
        scenario = manager.switch_to_scenario(scenario_id)
        payload = _state()
        payload["scenario"] = scenario.summary()
        return jsonify(payload)

    @app.post("/api/scenarios/live")
    def switch_to_live():
        manager.switch_to_live()
        return jsonify(_state())

    @app.post("/api/scenarios/save")
    def save_scenario():
        scenario = manager.save_current_scenario()
        return jsonify(scenario.summary())

    @app.post("/api/scenarios/discard")
    def discard_changes():
        manager.discard_changes()
        return jsonify(_state())

    @app.patch("/api/scenarios/<scenario_id>")
    def update_scenario(scenario_id: str):
        data = _json_body()
        scenario = manager.update_scenario(scenario_id, name=data.get("name"), description=data.get("description"))
        return jsonify(scenario.summary())

    @app.delete("/api/scenarios/<scenario_id>")
    def delete_scenario(scenario_id: str):
        manager.delete_scenario(scenario_id)
        return jsonify(_state())

    @app.get("/api/scenarios/<scenario_id>/comparison")
    def scenario_comparison(scenario_id: str):
        return jsonify(manager.get_scenario_comparison(scenario_id).to_dict())

    @app.post("/api/scenarios/cleanup")
    def cleanup_scenarios():
        return jsonify({"removed": manager.cleanup_expired_scenarios()})

    # imports

    def _job_to_dict(job: ImportJob) -> Dict[str, object]:
        payload = job.to_dict()
        payload["status_url"] = url_for("import_status", job_id=job.id)
        return payload

    @app.post("/api/imports")
    def start_import():
        kind, content, filename, allow_partial = _import_request()
        options_base = CsvParseOptions(
            allow_partial_imports=allow_partial,
            chunk_size=config.csv_chunk_size,
            max_file_bytes=config.csv_max_file_bytes,
            progress_interval=config.progress_interval,
        )

        def task(report) -> Dict[str, object]:
            options_base.on_progress = report
            with live_lock:
                result = run_import(kind, content, live.get(), options_base)
                merged = merge_import(live.get(), kind, result)
                live.replace(merged)
                if resolved_data is not None:
                    save_dataset(merged, resolved_data)
            return result.to_dict()

        job = job_store.create_job(kind, filename, task)
        job_store.start_job(job)
        return jsonify({"job_id": job.id, "status_url": url_for("import_status", job_id=job.id)}), 202

    @app.get("/api/imports/<job_id>")
    def import_status(job_id: str):
        job = job_store.get_job(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(_job_to_dict(job))

    @app.get("/api/imports")
    def list_imports():
        return jsonify({"jobs": [_job_to_dict(job) for job in job_store.list_jobs()]})

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
