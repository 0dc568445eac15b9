from __future__ import annotations

from dataclasses import replace

import pytest

from resource_planner.filters import (
    SearchFilters,
    apply_filters,
    create_filter_summary,
    get_default_filter_presets,
    matches_allocation_status,
    sort_projects_by_priority,
    sort_teams_by_allocation,
    sort_teams_by_name,
    validate_filters,
)
from resource_planner.models import Dataset


def _filter(data: Dataset, filters: SearchFilters, cycle_id: str = "i1"):
    return apply_filters(
        data.teams, data.projects, data.epics, data.allocations, data.iterations(), filters, cycle_id
    )


def _ids(items) -> list:
    return [item.id for item in items]


def test_no_filters_limits_allocations_to_cycle(dataset: Dataset) -> None:
    result = _filter(dataset, SearchFilters())

    assert _ids(result.teams) == ["t1", "t2"]
    assert _ids(result.projects) == ["pr1", "pr2"]
    assert _ids(result.allocations) == ["a1", "a2", "a4"]


def test_search_matches_descriptions_and_prunes_orphans(dataset: Dataset) -> None:
    result = _filter(dataset, SearchFilters(search_query="  INVOIC "))

    assert result.teams == []
    assert _ids(result.projects) == ["pr1"]
    assert _ids(result.epics) == ["e1"]
    assert result.allocations == []


def test_search_by_team_name(dataset: Dataset) -> None:
    result = _filter(dataset, SearchFilters(search_query="platform"))

    assert _ids(result.teams) == ["t1"]
    # a1 points at an epic the search removed
    assert _ids(result.allocations) == ["a2"]


def test_division_filter(dataset: Dataset) -> None:
    assert _filter(dataset, SearchFilters(division_ids=("d2",))).teams == []
    assert _ids(_filter(dataset, SearchFilters(division_ids=("d1",))).teams) == ["t1", "t2"]


def test_project_filter_narrows_epics(dataset: Dataset) -> None:
    result = _filter(dataset, SearchFilters(project_ids=("pr2",)))

    assert _ids(result.projects) == ["pr2"]
    assert _ids(result.epics) == ["e2"]
    assert _ids(result.allocations) == ["a2", "a4"]


def test_epic_filter_keeps_run_work(dataset: Dataset) -> None:
    result = _filter(dataset, SearchFilters(epic_ids=("e1",)))

    assert _ids(result.epics) == ["e1"]
    assert _ids(result.allocations) == ["a1", "a2"]


@pytest.mark.parametrize(
    "status, expected",
    [("overallocated", ["t1"]), ("optimal", ["t2"]), ("allocated", ["t1", "t2"]), ("unallocated", ["t1", "t2"])],
)
def test_allocation_status_filter(dataset: Dataset, status: str, expected: list) -> None:
    assert _ids(_filter(dataset, SearchFilters(allocation_status=status)).teams) == expected


def test_status_boundaries() -> None:
    assert matches_allocation_status(80, "optimal")
    assert matches_allocation_status(100, "optimal")
    assert not matches_allocation_status(100.5, "optimal")
    assert not matches_allocation_status(100, "overallocated")
    assert matches_allocation_status(0, "unallocated")
    assert matches_allocation_status(55, "all")


def test_unknown_status_is_rejected() -> None:
    with pytest.raises(ValueError):
        SearchFilters(allocation_status="busy")
    with pytest.raises(ValueError):
        SearchFilters(date_range="last-decade")


def test_default_presets() -> None:
    presets = get_default_filter_presets()

    assert [p.id for p in presets] == ["overallocated-teams", "unplanned-teams", "optimal-teams"]
    assert all(p.is_default and p.filters.date_range == "current-quarter" for p in presets)


def test_filter_summary() -> None:
    filters = SearchFilters(
        search_query="api",
        team_ids=("t1", "t2"),
        project_ids=("p",),
        allocation_status="overallocated",
        date_range="current-quarter",
    )

    assert create_filter_summary(filters) == '"api", 2 teams, 1 project, overallocated, current quarter'
    assert create_filter_summary(SearchFilters()) == "No filters applied"


def test_validate_filters_warnings() -> None:
    assert validate_filters(SearchFilters())["warnings"] == ["No filters applied - showing all data"]
    assert validate_filters(SearchFilters(project_ids=("p",), epic_ids=("e",)))["warnings"] == [
        "Both project and epic filters are active - results may be limited"
    ]


def test_sorting_helpers(dataset: Dataset) -> None:
    reordered = [replace(dataset.projects[1], priority_order=0.5), dataset.projects[0]]

    assert _ids(sort_projects_by_priority(dataset.projects)) == ["pr1", "pr2"]
    assert _ids(sort_projects_by_priority(reordered)) == ["pr2", "pr1"]
    assert _ids(sort_teams_by_name(dataset.teams)) == ["t2", "t1"]
    assert _ids(sort_teams_by_allocation(dataset.teams, 1, dataset.allocations, dataset.iterations())) == ["t1", "t2"]
    assert _ids(
        sort_teams_by_allocation(dataset.teams, 1, dataset.allocations, dataset.iterations(), descending=False)
    ) == ["t2", "t1"]
