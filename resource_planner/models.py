from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Dict, Iterable, Mapping, Optional, Tuple


RateType = str
EmploymentType = str

RATE_TYPES = ("hourly", "daily", "annual")
PROJECT_STATUSES = ("planning", "active", "completed", "cancelled")


@dataclass(frozen=True)
class Division:
    id: str
    name: str


@dataclass(frozen=True)
class Role:
    """Role with a legacy default rate and optional per-type defaults."""

    id: str
    name: str
    rate_type: RateType = "hourly"
    default_rate: Optional[float] = None
    default_annual_salary: Optional[float] = None
    default_hourly_rate: Optional[float] = None
    default_daily_rate: Optional[float] = None


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    capacity: float
    division_id: Optional[str] = None
    target_skills: Tuple[str, ...] = ()
    status: str = "active"


@dataclass(frozen=True)
class Person:
    id: str
    name: str
    role_id: Optional[str]
    team_id: Optional[str] = None
    email: str = ""
    is_active: bool = True
    employment_type: EmploymentType = "permanent"
    start_date: Optional[date] = None
    annual_salary: Optional[float] = None
    hourly_rate: Optional[float] = None
    daily_rate: Optional[float] = None

    def is_contractor(self) -> bool:
        return self.employment_type == "contractor"


@dataclass(frozen=True)
class Milestone:
    id: str
    project_id: str
    name: str
    due_date: Optional[date] = None
    status: str = "not-started"


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    status: str = "planning"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = None
    priority: int = 2
    priority_order: Optional[float] = None
    description: str = ""
    milestones: Tuple[Milestone, ...] = ()
    financial_year_budgets: Mapping[str, float] = field(default_factory=dict)
    solution_ids: Tuple[str, ...] = ()

    def effective_priority(self) -> float:
        return self.priority_order if self.priority_order is not None else float(self.priority)


@dataclass(frozen=True)
class Epic:
    id: str
    project_id: str
    name: str
    description: str = ""
    estimated_effort: float = 0.0
    status: str = "todo"
    target_end_date: Optional[date] = None
    actual_end_date: Optional[date] = None

    def end_date(self) -> Optional[date]:
        return self.actual_end_date or self.target_end_date


@dataclass(frozen=True)
class Cycle:
    """A quarter or an iteration; quarters contain iterations by date range."""

    id: str
    name: str
    type: str
    start_date: date
    end_date: date
    financial_year_id: Optional[str] = None

    def duration_days(self) -> int:
        return max((self.end_date - self.start_date).days, 0)

    def contains(self, other: "Cycle") -> bool:
        return self.start_date <= other.start_date and other.end_date <= self.end_date

    def is_iteration(self) -> bool:
        return self.type == "iteration"

    def is_quarter(self) -> bool:
        return self.type == "quarterly"


@dataclass(frozen=True)
class FinancialYear:
    id: str
    name: str
    start_date: date
    end_date: date
    quarter_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RunWorkCategory:
    id: str
    name: str


@dataclass(frozen=True)
class Allocation:
    id: str
    team_id: str
    cycle_id: Optional[str]
    iteration_number: int
    percentage: float
    epic_id: Optional[str] = None
    project_id: Optional[str] = None
    run_work_category_id: Optional[str] = None
    notes: str = ""

    def __post_init__(self) -> None:
        targets = [value for value in (self.epic_id, self.project_id, self.run_work_category_id) if value]
        if len(targets) > 1:
            raise ValueError(
                f"allocation {self.id} must target at most one of epic, project or run-work category"
            )

    def is_run_work(self) -> bool:
        return not self.epic_id and not self.project_id


@dataclass(frozen=True)
class ActualAllocation:
    id: str
    team_id: str
    cycle_id: Optional[str]
    iteration_number: int
    actual_percentage: float
    epic_id: Optional[str] = None
    run_work_category_id: Optional[str] = None
    variance_reason: str = ""
    notes: str = ""


@dataclass(frozen=True)
class Skill:
    id: str
    name: str
    category: str = "general"


@dataclass(frozen=True)
class PersonSkill:
    person_id: str
    skill_id: str
    proficiency: str = "intermediate"


@dataclass(frozen=True)
class Solution:
    id: str
    name: str
    skill_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProjectSolution:
    project_id: str
    solution_id: str


@dataclass(frozen=True)
class ProjectSkill:
    project_id: str
    skill_id: str


ENTITY_TYPES: Dict[str, type] = {
    "divisions": Division,
    "roles": Role,
    "teams": Team,
    "people": Person,
    "projects": Project,
    "epics": Epic,
    "cycles": Cycle,
    "financial_years": FinancialYear,
    "run_work_categories": RunWorkCategory,
    "allocations": Allocation,
    "actual_allocations": ActualAllocation,
    "skills": Skill,
    "person_skills": PersonSkill,
    "solutions": Solution,
    "project_solutions": ProjectSolution,
    "project_skills": ProjectSkill,
}


@dataclass(frozen=True)
class Dataset:
    """Immutable snapshot of every planning collection."""

    divisions: Tuple[Division, ...] = ()
    roles: Tuple[Role, ...] = ()
    teams: Tuple[Team, ...] = ()
    people: Tuple[Person, ...] = ()
    projects: Tuple[Project, ...] = ()
    epics: Tuple[Epic, ...] = ()
    cycles: Tuple[Cycle, ...] = ()
    financial_years: Tuple[FinancialYear, ...] = ()
    run_work_categories: Tuple[RunWorkCategory, ...] = ()
    allocations: Tuple[Allocation, ...] = ()
    actual_allocations: Tuple[ActualAllocation, ...] = ()
    skills: Tuple[Skill, ...] = ()
    person_skills: Tuple[PersonSkill, ...] = ()
    solutions: Tuple[Solution, ...] = ()
    project_solutions: Tuple[ProjectSolution, ...] = ()
    project_skills: Tuple[ProjectSkill, ...] = ()

    def snapshot(self) -> "Dataset":
        return replace(self, **{f.name: tuple(getattr(self, f.name)) for f in fields(self)})

    def with_collection(self, name: str, items: Iterable[object]) -> "Dataset":
        if name not in ENTITY_TYPES:
            raise KeyError(f"unknown collection '{name}'")
        return replace(self, **{name: tuple(items)})

    def collection(self, name: str) -> Tuple[object, ...]:
        if name not in ENTITY_TYPES:
            raise KeyError(f"unknown collection '{name}'")
        return getattr(self, name)

    def find_team(self, team_id: Optional[str]) -> Optional[Team]:
        return _find(self.teams, team_id)

    def find_project(self, project_id: Optional[str]) -> Optional[Project]:
        return _find(self.projects, project_id)

    def find_cycle(self, cycle_id: Optional[str]) -> Optional[Cycle]:
        return _find(self.cycles, cycle_id)

    def find_financial_year(self, fy_id: Optional[str]) -> Optional[FinancialYear]:
        return _find(self.financial_years, fy_id)

    def iterations(self) -> Tuple[Cycle, ...]:
        return tuple(sorted((c for c in self.cycles if c.is_iteration()), key=lambda c: c.start_date))

    def quarters(self) -> Tuple[Cycle, ...]:
        return tuple(sorted((c for c in self.cycles if c.is_quarter()), key=lambda c: c.start_date))


def _find(items: Iterable[object], item_id: Optional[str]):
    if not item_id:
        return None
    for item in items:
        if getattr(item, "id", None) == item_id:
            return item
    return None


@dataclass(frozen=True)
class PlanningConfig:
    working_hours_per_day: float = 8.0
    working_days_per_week: float = 5.0
    working_days_per_month: float = 22.0
    working_days_per_year: float = 260.0
    currency_symbol: str = "$"
    default_iteration_weeks: int = 2
    under_allocation_threshold: float = 80.0
    scenario_expiry_days: int = 60
    csv_chunk_size: int = 1000
    csv_max_file_bytes: int = 50 * 1024 * 1024
    progress_interval: int = 100
    logging_level: str = "INFO"

    def hours_per_year(self) -> float:
        return self.working_days_per_year * self.working_hours_per_day
