from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .models import Allocation, Cycle, Epic, FinancialYear, Team

DEFAULT_ITERATION_WEEKS = 2
UNDER_ALLOCATION_THRESHOLD = 80.0


@dataclass(frozen=True)
class CapacityCheck:
    team_id: str
    iteration_number: int
    allocated_percentage: float
    capacity_hours: float
    is_over_allocated: bool
    is_under_allocated: bool

    def available_percentage(self) -> float:
        return max(100.0 - self.allocated_percentage, 0.0)


@dataclass(frozen=True)
class IterationUtilization:
    iteration_number: int
    cycle_id: Optional[str]
    capacity_hours: float
    allocated_percentage: float
    is_over_allocated: bool
    is_under_allocated: bool


@dataclass
class TeamCapacityUtilization:
    team_id: str
    cycle_id: str
    total_capacity_hours: float
    average_utilization: float
    peak_utilization: float
    min_utilization: float
    utilization_trend: str
    over_allocated_sprints: List[int] = field(default_factory=list)
    under_allocated_sprints: List[int] = field(default_factory=list)
    skill_gaps: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    iteration_breakdown: List[IterationUtilization] = field(default_factory=list)


def _iteration_weeks(iteration: Optional[Cycle]) -> int:
    if iteration is None:
        return DEFAULT_ITERATION_WEEKS
    return math.ceil(iteration.duration_days() / 7)


def _allocations_for_iteration(
    team_id: str,
    iteration_number: int,
    iteration: Optional[Cycle],
    iterations: Sequence[Cycle],
    quarters: Sequence[Cycle],
    allocations: Sequence[Allocation],
) -> List[Allocation]:
    """Match by iteration cycle id first, then by iteration number.

    The number lookup only applies to rows that do not point at one of the
    supplied iterations. A row with no cycle id (or an unknown one) matches
    on the global iteration number. A row pinned to a quarter matches only
    when that quarter contains the iteration and the row's number is the
    iteration's position inside the quarter.
    """
    team_allocations = [a for a in allocations if a.team_id == team_id]
    iteration_ids = {c.id for c in iterations}
    quarters_by_id = {q.id: q for q in quarters}
    by_cycle = [a for a in team_allocations if iteration is not None and a.cycle_id == iteration.id]

    positions: Dict[str, int] = {}
    if iteration is not None:
        for quarter in quarters:
            ordered = iterations_in_quarter(quarter, iterations)
            if iteration in ordered:
                positions[quarter.id] = ordered.index(iteration) + 1

    by_number = []
    for a in team_allocations:
        if a.cycle_id in iteration_ids:
            continue
        if a.cycle_id in quarters_by_id:
            if positions.get(a.cycle_id) == a.iteration_number:
                by_number.append(a)
        elif a.iteration_number == iteration_number:
            by_number.append(a)
    return by_cycle + by_number


def calculate_team_capacity(
    team: Team,
    iteration_number: int,
    allocations: Sequence[Allocation],
    iterations: Sequence[Cycle],
    quarters: Sequence[Cycle] = (),
) -> CapacityCheck:
    iteration = iterations[iteration_number - 1] if 0 < iteration_number <= len(iterations) else None
    matched = _allocations_for_iteration(team.id, iteration_number, iteration, iterations, quarters, allocations)
    allocated = float(sum(a.percentage for a in matched))
    capacity_hours = float(team.capacity) * _iteration_weeks(iteration)
    return CapacityCheck(
        team_id=team.id,
        iteration_number=iteration_number,
        allocated_percentage=allocated,
        capacity_hours=capacity_hours,
        is_over_allocated=allocated > 100,
        is_under_allocated=0 < allocated < 100,
    )


def iterations_in_quarter(quarter: Cycle, cycles: Sequence[Cycle]) -> List[Cycle]:
    contained = [c for c in cycles if c.is_iteration() and quarter.contains(c)]
    return sorted(contained, key=lambda c: c.start_date)


def _utilization_trend(percentages: Sequence[float]) -> str:
    if len(percentages) < 3:
        return "stable"
    first = percentages[0]
    last = percentages[-1]
    middle = percentages[len(percentages) // 2]
    if last > first and last > middle:
        return "increasing"
    if last < first and last < middle:
        return "declining"
    if first > middle > last:
        return "decreasing"
    return "stable"


def _skill_gaps(
    team: Team,
    allocations: Sequence[Allocation],
    epics: Sequence[Epic],
    required_skills_by_project: Dict[str, Tuple[str, ...]],
) -> List[str]:
    epics_by_id = {epic.id: epic for epic in epics}
    team_skills = set(team.target_skills)
    gaps: List[str] = []
    for allocation in allocations:
        project_id = allocation.project_id
        if allocation.epic_id and allocation.epic_id in epics_by_id:
            project_id = epics_by_id[allocation.epic_id].project_id
        for skill in required_skills_by_project.get(project_id or "", ()):
            if skill not in team_skills and skill not in gaps:
                gaps.append(skill)
    return gaps


def calculate_team_capacity_utilization(
    team: Team,
    quarter: Cycle,
    allocations: Sequence[Allocation],
    cycles: Sequence[Cycle],
    epics: Sequence[Epic] = (),
    required_skills_by_project: Optional[Dict[str, Tuple[str, ...]]] = None,
    under_threshold: float = UNDER_ALLOCATION_THRESHOLD,
) -> TeamCapacityUtilization:
    iterations = iterations_in_quarter(quarter, cycles)
    iteration_ids = {c.id for c in iterations}
    quarter_allocations = [
        a
        for a in allocations
        if a.team_id == team.id and (a.cycle_id == quarter.id or a.cycle_id in iteration_ids)
    ]

    breakdown: List[IterationUtilization] = []
    over: List[int] = []
    under: List[int] = []
    for number, iteration in enumerate(iterations, start=1):
        matched = [
            a
            for a in quarter_allocations
            if a.cycle_id == iteration.id or (a.cycle_id == quarter.id and a.iteration_number == number)
        ]
        pct = float(sum(a.percentage for a in matched))
        is_under = 0 < pct < under_threshold
        breakdown.append(
            IterationUtilization(
                iteration_number=number,
                cycle_id=iteration.id,
                capacity_hours=float(team.capacity) * _iteration_weeks(iteration),
                allocated_percentage=pct,
                is_over_allocated=pct > 100,
                is_under_allocated=is_under,
            )
        )
        if pct > 100:
            over.append(number)
        elif is_under:
            under.append(number)

    worked = [item.allocated_percentage for item in breakdown if item.allocated_percentage > 0]
    average = sum(worked) / len(worked) if worked else 0.0
    peak = max((item.allocated_percentage for item in breakdown), default=0.0)
    minimum = min(worked) if worked else 0.0

    recommendations: List[str] = []
    warnings: List[str] = []
    if average == 0:
        recommendations.append("Team appears to have no work allocated")
    if team.capacity <= 0:
        warnings.append("Team has zero capacity")
    gaps = _skill_gaps(team, quarter_allocations, epics, required_skills_by_project or {})
    if gaps:
        recommendations.append(f"Consider training team members in {', '.join(gaps)} skills")
    if over and under:
        recommendations.append(f"Redistribute work from Sprint {over[0]} to Sprint {under[0]}")

    return TeamCapacityUtilization(
        team_id=team.id,
        cycle_id=quarter.id,
        total_capacity_hours=sum(item.capacity_hours for item in breakdown),
        average_utilization=average,
        peak_utilization=peak,
        min_utilization=minimum,
        utilization_trend=_utilization_trend([item.allocated_percentage for item in breakdown]),
        over_allocated_sprints=over,
        under_allocated_sprints=under,
        skill_gaps=gaps,
        recommendations=recommendations,
        warnings=warnings,
        iteration_breakdown=breakdown,
    )


def calculate_financial_year_utilization(
    team: Team,
    financial_year: FinancialYear,
    allocations: Sequence[Allocation],
    cycles: Sequence[Cycle],
) -> Dict[str, object]:
    cycles_by_id = {c.id: c for c in cycles}
    quarters = [cycles_by_id[qid] for qid in financial_year.quarter_ids if qid in cycles_by_id]
    if not quarters:
        quarters = sorted(
            (
                c
                for c in cycles
                if c.is_quarter() and financial_year.start_date <= c.start_date <= financial_year.end_date
            ),
            key=lambda c: c.start_date,
        )
    per_quarter = []
    for quarter in quarters:
        utilization = calculate_team_capacity_utilization(team, quarter, allocations, cycles)
        per_quarter.append(
            {
                "quarter_id": quarter.id,
                "quarter_name": quarter.name,
                "average_utilization": utilization.average_utilization,
                "peak_utilization": utilization.peak_utilization,
                "over_allocated_sprints": list(utilization.over_allocated_sprints),
            }
        )
    active = [q["average_utilization"] for q in per_quarter if q["average_utilization"] > 0]
    return {
        "team_id": team.id,
        "financial_year_id": financial_year.id,
        "quarters": per_quarter,
        "average_utilization": sum(active) / len(active) if active else 0.0,
    }


def validate_allocation_consistency(
    allocations: Sequence[Allocation],
    teams: Sequence[Team],
    epics: Sequence[Epic],
    cycles: Sequence[Cycle],
    under_threshold: float = UNDER_ALLOCATION_THRESHOLD,
) -> Dict[str, object]:
    team_ids = {t.id for t in teams}
    epic_ids = {e.id for e in epics}
    cycle_ids = {c.id for c in cycles}
    orphaned: List[Dict[str, str]] = []
    totals: Dict[Tuple[str, Optional[str], int], float] = defaultdict(float)

    for allocation in allocations:
        if allocation.team_id not in team_ids:
            orphaned.append({"allocation_id": allocation.id, "reason": "Team not found"})
            continue
        if allocation.epic_id and allocation.epic_id not in epic_ids:
            orphaned.append({"allocation_id": allocation.id, "reason": "Epic not found"})
            continue
        if allocation.cycle_id not in cycle_ids:
            orphaned.append({"allocation_id": allocation.id, "reason": "Cycle not found"})
            continue
        totals[(allocation.team_id, allocation.cycle_id, allocation.iteration_number)] += allocation.percentage

    errors: List[Dict[str, object]] = []
    warnings: List[Dict[str, object]] = []
    for (team_id, cycle_id, iteration_number), total in totals.items():
        if total > 100:
            errors.append(
                {
                    "type": "over_allocation",
                    "team_id": team_id,
                    "cycle_id": cycle_id,
                    "iteration_number": iteration_number,
                    "total_percentage": total,
                    "message": f"Team {team_id} is over-allocated in iteration {iteration_number}: {total:g}%",
                }
            )
        elif 0 < total < under_threshold:
            warnings.append(
                {
                    "type": "capacity_warning",
                    "team_id": team_id,
                    "message": f"Team {team_id} is under-allocated in iteration {iteration_number}: {total:g}%",
                }
            )

    return {
        "is_valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "orphaned_allocations": orphaned,
    }
