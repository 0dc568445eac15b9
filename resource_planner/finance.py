from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from .capacity import iterations_in_quarter
from .models import (
    Allocation,
    Cycle,
    Epic,
    FinancialYear,
    Person,
    PlanningConfig,
    Project,
    Role,
    Team,
)

AVERAGE_DAYS_PER_MONTH = 365.25 / 12


@dataclass(frozen=True)
class PersonCost:
    person_id: str
    cost_per_hour: float
    cost_per_day: float
    cost_per_week: float
    cost_per_month: float
    cost_per_year: float
    rate_source: str
    effective_rate: float
    rate_type: str


@dataclass
class PersonCostBreakdown:
    person_id: str
    person_name: str
    rate_source: str
    effective_rate: float
    rate_type: str
    total_cost: float = 0.0
    allocations: List[Dict[str, object]] = field(default_factory=list)


@dataclass(frozen=True)
class TeamCostBreakdown:
    team_id: str
    team_name: str
    total_cost: float


@dataclass(frozen=True)
class ProjectCost:
    project_id: str
    total_cost: float
    breakdown: List[PersonCostBreakdown]
    team_breakdown: List[TeamCostBreakdown]
    monthly_burn_rate: float
    total_duration_in_days: int
    budget_variance: Optional[float]

    def to_dict(self) -> Dict[str, object]:
        return {
            "project_id": self.project_id,
            "total_cost": self.total_cost,
            "monthly_burn_rate": self.monthly_burn_rate,
            "total_duration_in_days": self.total_duration_in_days,
            "budget_variance": self.budget_variance,
            "breakdown": [
                {
                    "person_id": entry.person_id,
                    "person_name": entry.person_name,
                    "total_cost": entry.total_cost,
                    "rate_source": entry.rate_source,
                    "effective_rate": entry.effective_rate,
                    "rate_type": entry.rate_type,
                    "allocations": list(entry.allocations),
                }
                for entry in self.breakdown
            ],
            "team_breakdown": [
                {"team_id": t.team_id, "team_name": t.team_name, "total_cost": t.total_cost}
                for t in self.team_breakdown
            ],
        }


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _to_hourly(rate: float, rate_type: str, config: PlanningConfig) -> float:
    if rate_type == "annual":
        return rate / config.hours_per_year()
    if rate_type == "daily":
        return rate / config.working_hours_per_day
    return rate


def _resolve_rate(person: Person, role: Role) -> tuple:
    """Return (rate, rate_type, rate_source) by employment-type priority."""
    if person.is_contractor():
        if _positive(person.hourly_rate):
            return person.hourly_rate, "hourly", "personal"
        if _positive(person.daily_rate):
            return person.daily_rate, "daily", "personal"
        if _positive(role.default_hourly_rate):
            return role.default_hourly_rate, "hourly", "role-default"
        if _positive(role.default_daily_rate):
            return role.default_daily_rate, "daily", "role-default"
    else:
        if _positive(person.annual_salary):
            return person.annual_salary, "annual", "personal"
        if _positive(role.default_annual_salary):
            return role.default_annual_salary, "annual", "role-default"
    if _positive(role.default_rate):
        return role.default_rate, role.rate_type, "legacy-fallback"
    return 0.0, "hourly", "legacy-fallback"


def calculate_person_cost(person: Person, role: Role, config: Optional[PlanningConfig] = None) -> PersonCost:
    cfg = config or PlanningConfig()
    rate, rate_type, source = _resolve_rate(person, role)
    per_hour = _finite(_to_hourly(float(rate), rate_type, cfg))
    per_day = per_hour * cfg.working_hours_per_day
    return PersonCost(
        person_id=person.id,
        cost_per_hour=per_hour,
        cost_per_day=per_day,
        cost_per_week=per_day * cfg.working_days_per_week,
        cost_per_month=per_day * cfg.working_days_per_month,
        cost_per_year=per_day * cfg.working_days_per_year,
        rate_source=source,
        effective_rate=float(rate),
        rate_type=rate_type,
    )


def _roles_by_id(roles: Iterable[Role]) -> Dict[str, Role]:
    return {role.id: role for role in roles}


def _active_members(team_id: str, people: Iterable[Person]) -> List[Person]:
    return [p for p in people if p.team_id == team_id and p.is_active]


def calculate_allocation_cost(
    allocation: Allocation,
    cycle: Cycle,
    team_members: Sequence[Person],
    roles: Sequence[Role],
    config: Optional[PlanningConfig] = None,
) -> float:
    roles_by_id = _roles_by_id(roles)
    total = 0.0
    for person in team_members:
        role = roles_by_id.get(person.role_id or "")
        if role is None:
            continue
        cost = calculate_person_cost(person, role, config)
        total += _finite(cost.cost_per_day * cycle.duration_days() * allocation.percentage / 100)
    return total


def project_allocations(
    project: Project, epics: Sequence[Epic], allocations: Sequence[Allocation]
) -> List[Allocation]:
    epic_ids = {epic.id for epic in epics if epic.project_id == project.id}
    return [
        a for a in allocations if a.project_id == project.id or (a.epic_id is not None and a.epic_id in epic_ids)
    ]


def _project_duration_days(
    project: Project, epics: Sequence[Epic], span_start: Optional[date], span_end: Optional[date]
) -> int:
    start = project.start_date or span_start
    end = project.end_date
    if end is None:
        epic_ends = [e.end_date() for e in epics if e.project_id == project.id and e.end_date()]
        end = max(epic_ends) if epic_ends else None
    if start is None or end is None:
        start, end = span_start, span_end
    if start is None or end is None:
        return 0
    return max((end - start).days, 0)


def calculate_project_cost(
    project: Project,
    epics: Sequence[Epic],
    allocations: Sequence[Allocation],
    cycles: Sequence[Cycle],
    people: Sequence[Person],
    roles: Sequence[Role],
    teams: Sequence[Team],
    config: Optional[PlanningConfig] = None,
) -> ProjectCost:
    cfg = config or PlanningConfig()
    cycles_by_id = {c.id: c for c in cycles}
    teams_by_id = {t.id: t for t in teams}
    roles_by_id = _roles_by_id(roles)

    total_cost = 0.0
    breakdown: Dict[str, PersonCostBreakdown] = {}
    team_totals: Dict[str, float] = {}
    span_start: Optional[date] = None
    span_end: Optional[date] = None

    for allocation in project_allocations(project, epics, allocations):
        cycle = cycles_by_id.get(allocation.cycle_id or "")
        if cycle is None:
            continue
        span_start = cycle.start_date if span_start is None else min(span_start, cycle.start_date)
        span_end = cycle.end_date if span_end is None else max(span_end, cycle.end_date)

        for person in _active_members(allocation.team_id, people):
            role = roles_by_id.get(person.role_id or "")
            if role is None:
                continue
            person_cost = calculate_person_cost(person, role, cfg)
            cost = _finite(person_cost.cost_per_day * cycle.duration_days() * allocation.percentage / 100)
            total_cost += cost

            entry = breakdown.get(person.id)
            if entry is None:
                entry = PersonCostBreakdown(
                    person_id=person.id,
                    person_name=person.name,
                    rate_source=person_cost.rate_source,
                    effective_rate=person_cost.effective_rate,
                    rate_type=person_cost.rate_type,
                )
                breakdown[person.id] = entry
            entry.total_cost += cost
            entry.allocations.append(
                {
                    "allocation_id": allocation.id,
                    "cycle_name": cycle.name,
                    "percentage": allocation.percentage,
                    "cost": cost,
                }
            )
            if allocation.team_id in teams_by_id:
                team_totals[allocation.team_id] = team_totals.get(allocation.team_id, 0.0) + cost

    span_days = (span_end - span_start).days if span_start and span_end else 0
    duration_days = _project_duration_days(project, epics, span_start, span_end)
    duration_months = duration_days / AVERAGE_DAYS_PER_MONTH
    monthly_burn = _finite(total_cost / duration_months) if duration_months > 0 else 0.0

    team_breakdown = sorted(
        (
            TeamCostBreakdown(team_id=team_id, team_name=teams_by_id[team_id].name, total_cost=value)
            for team_id, value in team_totals.items()
        ),
        key=lambda item: item.total_cost,
        reverse=True,
    )
    total_cost = _finite(total_cost)
    return ProjectCost(
        project_id=project.id,
        total_cost=total_cost,
        breakdown=list(breakdown.values()),
        team_breakdown=team_breakdown,
        monthly_burn_rate=monthly_burn,
        total_duration_in_days=max(span_days, 0),
        budget_variance=calculate_budget_variance(project, total_cost),
    )


def calculate_budget_variance(project: Project, total_cost: float) -> Optional[float]:
    if project.budget is None:
        return None
    return project.budget - total_cost


def _team_cost(
    team_members: Sequence[Person], roles: Sequence[Role], config: Optional[PlanningConfig], attr: str
) -> float:
    roles_by_id = _roles_by_id(roles)
    total = 0.0
    for person in team_members:
        role = roles_by_id.get(person.role_id or "")
        if role is not None:
            total += getattr(calculate_person_cost(person, role, config), attr)
    return total


def calculate_team_weekly_cost(
    team_members: Sequence[Person], roles: Sequence[Role], config: Optional[PlanningConfig] = None
) -> float:
    return _team_cost(team_members, roles, config, "cost_per_week")


def calculate_team_monthly_cost(
    team_members: Sequence[Person], roles: Sequence[Role], config: Optional[PlanningConfig] = None
) -> float:
    return _team_cost(team_members, roles, config, "cost_per_month")


def calculate_team_quarterly_cost(
    team_members: Sequence[Person], roles: Sequence[Role], config: Optional[PlanningConfig] = None
) -> float:
    return calculate_team_monthly_cost(team_members, roles, config) * 3


def calculate_team_annual_cost(
    team_members: Sequence[Person], roles: Sequence[Role], config: Optional[PlanningConfig] = None
) -> float:
    return _team_cost(team_members, roles, config, "cost_per_year")


def calculate_project_cost_for_year(
    project: Project,
    epics: Sequence[Epic],
    allocations: Sequence[Allocation],
    cycles: Sequence[Cycle],
    people: Sequence[Person],
    roles: Sequence[Role],
    financial_year: FinancialYear,
    config: Optional[PlanningConfig] = None,
) -> Dict[str, object]:
    cycles_by_id = {c.id: c for c in cycles}
    quarters = [cycles_by_id[qid] for qid in financial_year.quarter_ids if qid in cycles_by_id]
    relevant = project_allocations(project, epics, allocations)
    quarterly_costs: Dict[str, float] = {}
    total = 0.0

    for quarter in quarters:
        iterations = iterations_in_quarter(quarter, cycles)
        iteration_ids = {c.id for c in iterations}
        quarter_cost = 0.0
        for allocation in relevant:
            if allocation.cycle_id in iteration_ids:
                cycle = cycles_by_id[allocation.cycle_id]
            elif allocation.cycle_id == quarter.id:
                if 0 < allocation.iteration_number <= len(iterations):
                    cycle = iterations[allocation.iteration_number - 1]
                elif not iterations:
                    cycle = quarter
                else:
                    continue
            else:
                continue
            members = _active_members(allocation.team_id, people)
            quarter_cost += calculate_allocation_cost(allocation, cycle, members, roles, config)
        quarterly_costs[quarter.name] = quarter_cost
        total += quarter_cost

    return {"total_annual_cost": total, "quarterly_costs": quarterly_costs}


def validate_rate_configuration(person: Person, role: Role) -> Dict[str, object]:
    warnings: List[str] = []
    suggestions: List[str] = []
    if person.is_contractor():
        has_personal = _positive(person.hourly_rate) or _positive(person.daily_rate)
        has_role_default = _positive(role.default_hourly_rate) or _positive(role.default_daily_rate)
        if not has_personal and not has_role_default and not _positive(role.default_rate):
            warnings.append("No contractor rate information available")
            suggestions.append("Set either personal hourly/daily rate or role default rates")
    else:
        if not (
            _positive(person.annual_salary)
            or _positive(role.default_annual_salary)
            or _positive(role.default_rate)
        ):
            warnings.append("No salary information available")
            suggestions.append("Set either personal annual salary or role default salary")
    return {"is_valid": not warnings, "warnings": warnings, "suggestions": suggestions}
