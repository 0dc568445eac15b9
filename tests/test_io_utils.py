from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from resource_planner.io_utils import (
    dataset_from_dict,
    dataset_to_dict,
    load_config,
    load_dataset,
    save_dataset,
    write_csv,
)
from resource_planner.models import Dataset


def test_dataset_survives_json_file(tmp_path: Path, dataset: Dataset) -> None:
    path = tmp_path / "nested" / "planning.json"

    save_dataset(dataset, path)

    assert load_dataset(path) == dataset
    assert not [p for p in path.parent.iterdir() if p.name.startswith(".")]


def test_dates_and_lists_are_serialized(dataset: Dataset) -> None:
    payload = dataset_to_dict(dataset)

    assert payload["projects"][0]["start_date"] == "2024-01-01"
    assert payload["teams"][0]["target_skills"] == ["s-py"]
    assert payload["financial_years"][0]["quarter_ids"] == ["q1"]


def test_minimal_payload_fills_defaults() -> None:
    data = dataset_from_dict(
        {
            "teams": [{"id": "t", "name": "T", "capacity": 10, "target_skills": "a; b"}],
            "projects": [{"id": "p", "name": "P", "start_date": "2024-02-01", "end_date": ""}],
        }
    )

    assert data.teams[0].target_skills == ("a", "b")
    assert data.projects[0].start_date == date(2024, 2, 1)
    assert data.projects[0].end_date is None
    assert data.people == ()


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"widgets": []}, "unknown collections"),
        ({"teams": {}}, "must be an array"),
        ({"teams": [{"id": "t", "name": "T", "capacity": 1, "size": 3}]}, "unknown fields"),
        ({"teams": [{"id": "t"}]}, "invalid teams entry"),
        ({"projects": [{"id": "p", "name": "P", "start_date": "soon"}]}, "invalid date"),
    ],
)
def test_bad_payloads_are_rejected(payload: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        dataset_from_dict(payload)


def test_default_config() -> None:
    cfg = load_config(None)

    assert cfg.hours_per_year() == 2080
    assert cfg.scenario_expiry_days == 60


def test_config_overrides(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"working_hours_per_day": 7.5, "currency_symbol": "€", "logging_level": "debug"}))

    cfg = load_config(path)

    assert cfg.working_hours_per_day == 7.5
    assert cfg.currency_symbol == "€"
    assert cfg.logging_level == "DEBUG"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"bogus": 1}, "unknown config keys"),
        ({"working_days_per_year": 0}, "must be positive"),
        ({"scenario_expiry_days": 1.5}, "positive integer"),
        ({"under_allocation_threshold": 120}, "under_allocation_threshold"),
        ({"logging_level": "loud"}, "logging_level"),
    ],
)
def test_invalid_config(tmp_path: Path, overrides: dict, message: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(overrides))

    with pytest.raises(ValueError, match=message):
        load_config(path)


def test_write_csv_creates_parent(tmp_path: Path) -> None:
    path = tmp_path / "reports" / "out.csv"

    write_csv(pd.DataFrame([{"a": 1}]), path)

    assert path.read_text().splitlines() == ["a", "1"]
