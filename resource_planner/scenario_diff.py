from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import Allocation, Dataset, Project, Team

ARROW = "→"
ALLOCATION_HIGH_IMPACT_THRESHOLD = 10


@dataclass(frozen=True)
class ChangeItem:
    type: str  # "added", "removed", "modified"
    category: str
    entity: str
    description: str
    impact: str  # "low", "medium", "high"
    details: Dict[str, object] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type,
            "category": self.category,
            "entity": self.entity,
            "description": self.description,
            "impact": self.impact,
        }


@dataclass(frozen=True)
class ScenarioComparison:
    changes: List[ChangeItem]
    summary: Dict[str, object]

    def to_dict(self) -> Dict[str, object]:
        return {"changes": [c.to_dict() for c in self.changes], "summary": self.summary}


def format_amount(value: float) -> str:
    """Thousands-separated amount with at most three decimals."""
    rounded = round(float(value), 3)
    if rounded == int(rounded):
        return f"{int(rounded):,}"
    return f"{rounded:,.3f}".rstrip("0").rstrip(".")


def _format_date(value: object) -> str:
    if value is None:
        return "None"
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def _budget_change(live: Optional[float], scenario: Optional[float], currency: str) -> str:
    before = live or 0
    after = scenario or 0
    delta = after - before
    sign = "+" if delta > 0 else "-"
    return (
        f"Budget: {currency}{format_amount(before)} {ARROW} {currency}{format_amount(after)} "
        f"({sign}{currency}{format_amount(abs(delta))})"
    )


def _diff_teams(live: Sequence[Team], scenario: Sequence[Team]) -> List[ChangeItem]:
    live_by_id = {t.id: t for t in live}
    scenario_ids = {t.id for t in scenario}
    changes: List[ChangeItem] = []
    for team in scenario:
        before = live_by_id.get(team.id)
        if before is None:
            changes.append(
                ChangeItem("added", "teams", team.name, f'New team "{team.name}" added', "medium")
            )
            continue
        modifications = []
        if before.name != team.name:
            modifications.append(f'Name: "{before.name}" {ARROW} "{team.name}"')
        if before.capacity != team.capacity:
            modifications.append(f"Capacity: {before.capacity:g} {ARROW} {team.capacity:g}")
        if before.status != team.status:
            modifications.append(f"Status: {before.status} {ARROW} {team.status}")
        if modifications:
            changes.append(
                ChangeItem(
                    "modified",
                    "teams",
                    team.name,
                    f'Team "{team.name}" modified: {", ".join(modifications)}',
                    "high" if len(modifications) > 1 else "medium",
                    {"modifications": modifications},
                )
            )
    for team in live:
        if team.id not in scenario_ids:
            changes.append(ChangeItem("removed", "teams", team.name, f'Team "{team.name}" removed', "high"))
    return changes


def _diff_projects(live: Sequence[Project], scenario: Sequence[Project], currency: str) -> List[ChangeItem]:
    live_by_id = {p.id: p for p in live}
    scenario_ids = {p.id for p in scenario}
    changes: List[ChangeItem] = []
    for project in scenario:
        before = live_by_id.get(project.id)
        if before is None:
            changes.append(
                ChangeItem("added", "projects", project.name, f'New project "{project.name}" added', "high")
            )
            continue
        modifications = []
        critical = False
        if before.name != project.name:
            modifications.append(f'Name: "{before.name}" {ARROW} "{project.name}"')
        if before.budget != project.budget:
            modifications.append(_budget_change(before.budget, project.budget, currency))
            critical = True
        if before.status != project.status:
            modifications.append(f"Status: {before.status} {ARROW} {project.status}")
        if before.start_date != project.start_date:
            modifications.append(
                f"Start Date: {_format_date(before.start_date)} {ARROW} {_format_date(project.start_date)}"
            )
            critical = True
        if before.end_date != project.end_date:
            modifications.append(
                f"End Date: {_format_date(before.end_date)} {ARROW} {_format_date(project.end_date)}"
            )
            critical = True
        if modifications:
            changes.append(
                ChangeItem(
                    "modified",
                    "projects",
                    project.name,
                    f'Project "{project.name}" modified: {", ".join(modifications)}',
                    "high" if critical else "medium",
                    {"modifications": modifications},
                )
            )
    for project in live:
        if project.id not in scenario_ids:
            changes.append(
                ChangeItem("removed", "projects", project.name, f'Project "{project.name}" removed', "high")
            )
    return changes


def _diff_allocations(live: Sequence[Allocation], scenario: Sequence[Allocation]) -> List[ChangeItem]:
    live_by_id = {a.id: a for a in live}
    scenario_by_id = {a.id: a for a in scenario}
    added = sum(1 for a_id in scenario_by_id if a_id not in live_by_id)
    removed = sum(1 for a_id in live_by_id if a_id not in scenario_by_id)
    modified = sum(
        1
        for a_id, alloc in scenario_by_id.items()
        if a_id in live_by_id and live_by_id[a_id].percentage != alloc.percentage
    )
    total = added + removed + modified
    if total == 0:
        return []
    return [
        ChangeItem(
            "modified",
            "allocations",
            "Resource Allocations",
            f"Allocation changes: {added} added, {removed} removed, {modified} modified",
            "high" if total > ALLOCATION_HIGH_IMPACT_THRESHOLD else "medium",
            {"added": added, "removed": removed, "modified": modified},
        )
    ]


def summarize_changes(changes: Sequence[ChangeItem]) -> Dict[str, object]:
    return {
        "total_changes": len(changes),
        "by_category": dict(Counter(c.category for c in changes)),
        "by_impact": dict(Counter(c.impact for c in changes)),
    }


def compare_scenario(live: Dataset, scenario: Dataset, currency: str = "$") -> ScenarioComparison:
    changes: List[ChangeItem] = []
    changes.extend(_diff_teams(live.teams, scenario.teams))
    changes.extend(_diff_projects(live.projects, scenario.projects, currency))
    changes.extend(_diff_allocations(live.allocations, scenario.allocations))
    return ScenarioComparison(changes=changes, summary=summarize_changes(changes))
