from __future__ import annotations

from dataclasses import replace
from datetime import date

from resource_planner.models import Allocation, Dataset, Project, Team
from resource_planner.scenario_diff import compare_scenario, format_amount


def _with_project(data: Dataset, project_id: str, **changes: object) -> Dataset:
    projects = [replace(p, **changes) if p.id == project_id else p for p in data.projects]
    return data.with_collection("projects", projects)


def test_identical_snapshot_has_no_changes(dataset: Dataset) -> None:
    comparison = compare_scenario(dataset, dataset.snapshot())

    assert comparison.changes == []
    assert comparison.summary == {"total_changes": 0, "by_category": {}, "by_impact": {}}


def test_budget_change_description(dataset: Dataset) -> None:
    scenario = _with_project(dataset, "pr1", budget=180000.0)

    [change] = compare_scenario(dataset, scenario).changes

    assert change.type == "modified"
    assert change.impact == "high"
    assert change.description == (
        'Project "Billing Revamp" modified: Budget: $200,000 → $180,000 (-$20,000)'
    )


def test_budget_increase_uses_currency_symbol(dataset: Dataset) -> None:
    scenario = _with_project(dataset, "pr2", budget=180500.5)

    [change] = compare_scenario(dataset, scenario, currency="£").changes

    assert change.description.endswith("Budget: £180,000 → £180,500.5 (+£500.5)")


def test_status_only_change_is_medium(dataset: Dataset) -> None:
    scenario = _with_project(dataset, "pr2", status="active")

    [change] = compare_scenario(dataset, scenario).changes

    assert change.impact == "medium"
    assert "Status: planning → active" in change.description


def test_date_shift_is_high_impact(dataset: Dataset) -> None:
    scenario = _with_project(dataset, "pr1", end_date=date(2024, 4, 14))

    [change] = compare_scenario(dataset, scenario).changes

    assert change.impact == "high"
    assert "End Date: 2024-03-31 → 2024-04-14" in change.description


def test_added_and_removed_entities(dataset: Dataset) -> None:
    scenario = dataset.with_collection("teams", [dataset.teams[0], Team("t3", "Data", 20.0)])
    scenario = scenario.with_collection("projects", list(scenario.projects) + [Project("pr3", "Warehouse")])

    comparison = compare_scenario(dataset, scenario)

    assert [(c.type, c.category, c.entity) for c in comparison.changes] == [
        ("added", "teams", "Data"),
        ("removed", "teams", "Mobile"),
        ("added", "projects", "Warehouse"),
    ]
    assert comparison.summary["by_category"] == {"teams": 2, "projects": 1}
    assert comparison.summary["by_impact"] == {"medium": 1, "high": 2}


def test_team_with_two_field_changes_is_high(dataset: Dataset) -> None:
    teams = [replace(dataset.teams[0], name="Core Platform", capacity=35.0), dataset.teams[1]]

    [change] = compare_scenario(dataset, dataset.with_collection("teams", teams)).changes

    assert change.impact == "high"
    assert change.details["modifications"] == ['Name: "Platform" → "Core Platform"', "Capacity: 40 → 35"]


def test_allocations_are_aggregated(dataset: Dataset) -> None:
    allocations = [replace(a, percentage=30.0) if a.id == "a2" else a for a in dataset.allocations if a.id != "a4"]
    allocations.append(Allocation("a5", "t2", "i2", 2, 50.0, epic_id="e2"))

    [change] = compare_scenario(dataset, dataset.with_collection("allocations", allocations)).changes

    assert change.entity == "Resource Allocations"
    assert change.description == "Allocation changes: 1 added, 1 removed, 1 modified"
    assert change.impact == "medium"


def test_many_allocation_changes_are_high_impact(dataset: Dataset) -> None:
    extra = [Allocation(f"n{i}", "t2", "i3", 3, 5.0, epic_id="e2") for i in range(11)]

    [change] = compare_scenario(
        dataset, dataset.with_collection("allocations", list(dataset.allocations) + extra)
    ).changes

    assert change.impact == "high"


def test_format_amount() -> None:
    assert format_amount(1234567) == "1,234,567"
    assert format_amount(0.1234) == "0.123"
    assert format_amount(-20000.0) == "-20,000"
