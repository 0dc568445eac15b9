from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pandas as pd
import pytest

from resource_planner.io_utils import load_dataset, save_dataset
from resource_planner.main import main
from resource_planner.models import Dataset


def _run(*argv: str) -> None:
    main(list(argv))


def test_capacity_report(data_file: Path, tmp_path: Path, capsys) -> None:
    outdir = tmp_path / "out"

    _run(
        "capacity",
        "--data",
        str(data_file),
        "--team",
        "t1",
        "--iteration",
        "1",
        "--quarter",
        "q1",
        "--outdir",
        str(outdir),
    )

    out = capsys.readouterr().out
    assert "Platform iteration 1: 110% allocated, 80 hours capacity (over-allocated)" in out
    assert "Q1 2024: average 75.0%, peak 110%, trend declining" in out
    frame = pd.read_csv(outdir / "capacity_t1_q1.csv")
    assert frame["allocated_percentage"].tolist() == [110, 40, 0]


def test_dry_run_writes_nothing(data_file: Path, tmp_path: Path, capsys) -> None:
    outdir = tmp_path / "out"

    _run("cost", "--data", str(data_file), "--project", "pr1", "--outdir", str(outdir), "--dry-run")

    assert "Billing Revamp: total $15,600.00" in capsys.readouterr().out
    assert not outdir.exists()


def test_cost_reports(data_file: Path, tmp_path: Path, capsys) -> None:
    outdir = tmp_path / "out"

    _run("cost", "--data", str(data_file), "--project", "pr1", "--fy", "fy24", "--outdir", str(outdir))

    out = capsys.readouterr().out
    assert "Budget variance: $184,400.00" in out
    assert "- Q1 2024: $15,600.00" in out
    assert sorted(p.name for p in outdir.iterdir()) == ["cost_pr1_fy24.csv", "cost_pr1_people.csv", "cost_pr1_teams.csv"]
    people = pd.read_csv(outdir / "cost_pr1_people.csv")
    assert people["person_id"].tolist() == ["p1", "p2"]


def test_cost_uses_config_currency(data_file: Path, tmp_path: Path, capsys) -> None:
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"currency_symbol": "€"}))

    _run("cost", "--data", str(data_file), "--config", str(config), "--project", "pr1", "--dry-run")

    assert "total €15,600.00" in capsys.readouterr().out


def test_recommend(data_file: Path, tmp_path: Path, capsys) -> None:
    outdir = tmp_path / "out"

    _run("recommend", "--data", str(data_file), "--project", "pr1", "--top", "1", "--outdir", str(outdir))

    assert "1. Platform (100%, excellent): Excellent match - highly recommended" in capsys.readouterr().out
    assert pd.read_csv(outdir / "recommendations_pr1.csv")["team_id"].tolist() == ["t1"]


def test_diff(data_file: Path, tmp_path: Path, dataset: Dataset, capsys) -> None:
    scenario_file = tmp_path / "scenario.json"
    projects = [replace(p, budget=180000.0) if p.id == "pr1" else p for p in dataset.projects]
    save_dataset(dataset.with_collection("projects", projects), scenario_file)

    _run("diff", "--data", str(data_file), "--scenario-data", str(scenario_file), "--outdir", str(tmp_path / "out"))

    out = capsys.readouterr().out
    assert "[high] Project \"Billing Revamp\" modified: Budget: $200,000 → $180,000 (-$20,000)" in out
    assert "1 changes" in out
    assert (tmp_path / "out" / "scenario_changes.csv").exists()


def test_import_merges_into_output(data_file: Path, tmp_path: Path, capsys) -> None:
    csv_path = tmp_path / "projects.csv"
    csv_path.write_text("name,status,priority\nWarehouse,active,2\nBroken,paused,\n")
    merged_path = tmp_path / "merged.json"

    _run(
        "import",
        "--data",
        str(data_file),
        "--kind",
        "projects",
        "--csv",
        str(csv_path),
        "--allow-partial",
        "--out",
        str(merged_path),
        "--outdir",
        str(tmp_path / "out"),
    )

    out = capsys.readouterr().out
    assert "Imported 1 of 2 rows (1 errors, 0 warnings)" in out
    assert "- row 3 [status]: Invalid project status: 'paused'" in out
    assert [p.name for p in load_dataset(merged_path).projects][-1] == "Warehouse"
    assert (tmp_path / "out" / "import_projects_errors.csv").exists()


def test_import_without_partial_exits_1(data_file: Path, tmp_path: Path, capsys) -> None:
    csv_path = tmp_path / "projects.csv"
    csv_path.write_text("name,status\nBroken,paused\n")

    with pytest.raises(SystemExit) as excinfo:
        _run("import", "--data", str(data_file), "--kind", "projects", "--csv", str(csv_path))

    assert excinfo.value.code == 1
    assert "Import failed at row 2" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv, message",
    [
        (["capacity", "--team", "nope", "--iteration", "1"], "team 'nope' not found"),
        (["cost", "--project", "pr1", "--fy", "fy99"], "financial year 'fy99' not found"),
        (["recommend", "--project", "pr1", "--top", "0"], "--top must be at least 1"),
        (["diff", "--scenario-data", "missing.json"], "scenario data file not found"),
    ],
)
def test_bad_arguments_exit_2(data_file: Path, capsys, argv: list, message: str) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([argv[0], "--data", str(data_file), "--dry-run"] + argv[1:])

    assert excinfo.value.code == 2
    assert message in capsys.readouterr().err


def test_missing_data_file_exits_2(tmp_path: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        _run("capacity", "--data", str(tmp_path / "nope.json"), "--team", "t1", "--iteration", "1")

    assert excinfo.value.code == 2
    assert "data file not found" in capsys.readouterr().err


def test_invalid_config_exits_2(data_file: Path, tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"working_hours_per_day": -1}))

    with pytest.raises(SystemExit) as excinfo:
        _run("cost", "--data", str(data_file), "--config", str(config), "--project", "pr1")

    assert excinfo.value.code == 2
