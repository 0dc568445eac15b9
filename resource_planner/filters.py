from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .capacity import calculate_team_capacity
from .models import Allocation, Cycle, Epic, Project, Team

ALLOCATION_STATUSES = ("all", "allocated", "unallocated", "overallocated", "optimal")
DATE_RANGES = ("all", "current-quarter", "next-quarter", "current-year")


@dataclass(frozen=True)
class SearchFilters:
    search_query: str = ""
    division_ids: Tuple[str, ...] = ()
    team_ids: Tuple[str, ...] = ()
    project_ids: Tuple[str, ...] = ()
    epic_ids: Tuple[str, ...] = ()
    allocation_status: str = "all"
    date_range: str = "all"

    def __post_init__(self) -> None:
        if self.allocation_status not in ALLOCATION_STATUSES:
            raise ValueError(f"unknown allocation status '{self.allocation_status}'")
        if self.date_range not in DATE_RANGES:
            raise ValueError(f"unknown date range '{self.date_range}'")


@dataclass
class FilteredData:
    teams: List[Team] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)
    epics: List[Epic] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)


@dataclass(frozen=True)
class FilterPreset:
    id: str
    name: str
    filters: SearchFilters
    is_default: bool = False


def matches_allocation_status(percentage: float, status: str) -> bool:
    if status == "allocated":
        return percentage > 0
    if status == "unallocated":
        return percentage == 0
    if status == "overallocated":
        return percentage > 100
    if status == "optimal":
        return 80 <= percentage <= 100
    return True


def _contains(text: Optional[str], query: str) -> bool:
    return bool(text) and query in text.lower()


def apply_filters(
    teams: Sequence[Team],
    projects: Sequence[Project],
    epics: Sequence[Epic],
    allocations: Sequence[Allocation],
    iterations: Sequence[Cycle],
    filters: SearchFilters,
    selected_cycle_id: str,
) -> FilteredData:
    """Narrow the list views to what the filters select within one cycle.

    Allocations are first limited to the selected cycle. After every filter
    has run, allocations and epics that point at a filtered-out team, epic or
    project are dropped too.
    """
    teams = list(teams)
    projects = list(projects)
    epics = list(epics)
    relevant = [a for a in allocations if a.cycle_id == selected_cycle_id]

    query = filters.search_query.strip().lower()
    if query:
        teams = [t for t in teams if query in t.name.lower()]
        projects = [p for p in projects if _contains(p.name, query) or _contains(p.description, query)]
        epics = [e for e in epics if _contains(e.name, query) or _contains(e.description, query)]
        team_ids = {t.id for t in teams}
        epic_ids = {e.id for e in epics}
        relevant = [a for a in relevant if a.team_id in team_ids or (a.epic_id and a.epic_id in epic_ids)]

    if filters.division_ids:
        teams = [t for t in teams if t.division_id in filters.division_ids]
    if filters.team_ids:
        teams = [t for t in teams if t.id in filters.team_ids]
    if filters.project_ids:
        projects = [p for p in projects if p.id in filters.project_ids]
        epics = [e for e in epics if e.project_id in filters.project_ids]
    if filters.epic_ids:
        epics = [e for e in epics if e.id in filters.epic_ids]
        relevant = [a for a in relevant if not a.epic_id or a.epic_id in filters.epic_ids]

    if filters.allocation_status != "all":
        teams = [
            team
            for team in teams
            if any(
                matches_allocation_status(
                    calculate_team_capacity(team, number, relevant, iterations).allocated_percentage,
                    filters.allocation_status,
                )
                for number in range(1, len(iterations) + 1)
            )
        ]

    final_team_ids = {t.id for t in teams}
    final_project_ids = {p.id for p in projects}
    final_epic_ids = {e.id for e in epics}
    relevant = [
        a for a in relevant if a.team_id in final_team_ids and (not a.epic_id or a.epic_id in final_epic_ids)
    ]
    epics = [e for e in epics if e.project_id in final_project_ids]
    return FilteredData(teams=teams, projects=projects, epics=epics, allocations=relevant)


def get_default_filter_presets() -> List[FilterPreset]:
    current = "current-quarter"
    return [
        FilterPreset(
            "overallocated-teams",
            "Over-allocated Teams",
            SearchFilters(allocation_status="overallocated", date_range=current),
            True,
        ),
        FilterPreset(
            "unplanned-teams",
            "Unplanned Teams",
            SearchFilters(allocation_status="unallocated", date_range=current),
            True,
        ),
        FilterPreset(
            "optimal-teams",
            "Optimal Teams",
            SearchFilters(allocation_status="optimal", date_range=current),
            True,
        ),
    ]


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def create_filter_summary(filters: SearchFilters) -> str:
    parts: List[str] = []
    if filters.search_query:
        parts.append(f'"{filters.search_query}"')
    for ids, noun in (
        (filters.division_ids, "division"),
        (filters.team_ids, "team"),
        (filters.project_ids, "project"),
        (filters.epic_ids, "epic"),
    ):
        if ids:
            parts.append(_plural(len(ids), noun))
    if filters.allocation_status != "all":
        parts.append(filters.allocation_status)
    if filters.date_range != "all":
        parts.append(filters.date_range.replace("-", " ", 1))
    return ", ".join(parts) if parts else "No filters applied"


def validate_filters(filters: SearchFilters) -> Dict[str, object]:
    warnings: List[str] = []
    if filters.project_ids and filters.epic_ids:
        warnings.append("Both project and epic filters are active - results may be limited")
    if filters == SearchFilters():
        warnings.append("No filters applied - showing all data")
    return {"is_valid": True, "warnings": warnings}


def sort_projects_by_priority(projects: Sequence[Project]) -> List[Project]:
    """Lowest priority order first; ties keep name order."""
    return sorted(projects, key=lambda p: (p.effective_priority(), p.name.lower()))


def sort_teams_by_name(teams: Sequence[Team]) -> List[Team]:
    return sorted(teams, key=lambda t: t.name.lower())


def sort_teams_by_allocation(
    teams: Sequence[Team],
    iteration_number: int,
    allocations: Sequence[Allocation],
    iterations: Sequence[Cycle],
    descending: bool = True,
    quarters: Sequence[Cycle] = (),
) -> List[Team]:
    def allocated(team: Team) -> float:
        return calculate_team_capacity(team, iteration_number, allocations, iterations, quarters).allocated_percentage

    return sorted(teams, key=allocated, reverse=descending)
