from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from flask.testing import FlaskClient

from resource_planner.io_utils import save_dataset
from resource_planner.models import (
    Allocation,
    Cycle,
    Dataset,
    Division,
    Epic,
    FinancialYear,
    Person,
    PersonSkill,
    Project,
    ProjectSkill,
    ProjectSolution,
    Role,
    RunWorkCategory,
    Skill,
    Solution,
    Team,
)
from webapp.app import create_app


def build_dataset() -> Dataset:
    return Dataset(
        divisions=(Division("d1", "Engineering"),),
        roles=(
            Role("r-dev", "Developer", rate_type="hourly", default_rate=100.0, default_annual_salary=104000.0),
            Role("r-con", "Contract Developer", default_hourly_rate=120.0),
        ),
        teams=(
            Team("t1", "Platform", 40.0, division_id="d1", target_skills=("s-py",)),
            Team("t2", "Mobile", 30.0, division_id="d1", target_skills=("s-swift",)),
        ),
        people=(
            Person("p1", "Alice", "r-dev", team_id="t1", email="alice@example.com", annual_salary=104000.0),
            Person(
                "p2",
                "Bob",
                "r-con",
                team_id="t1",
                email="bob@example.com",
                employment_type="contractor",
                hourly_rate=100.0,
            ),
            Person("p3", "Carol", "r-dev", team_id="t2", email="carol@example.com"),
        ),
        projects=(
            Project(
                "pr1",
                "Billing Revamp",
                status="active",
                start_date=date(2024, 1, 1),
                end_date=date(2024, 3, 31),
                budget=200000.0,
                priority=1,
                description="Replace the invoicing stack",
            ),
            Project("pr2", "Mobile App", start_date=date(2024, 4, 1), budget=180000.0, priority=3),
        ),
        epics=(
            Epic("e1", "pr1", "Invoices", target_end_date=date(2024, 3, 15)),
            Epic("e2", "pr2", "Onboarding"),
        ),
        cycles=(
            Cycle("q1", "Q1 2024", "quarterly", date(2024, 1, 1), date(2024, 3, 31), "fy24"),
            Cycle("i1", "Sprint 1", "iteration", date(2024, 1, 1), date(2024, 1, 14), "fy24"),
            Cycle("i2", "Sprint 2", "iteration", date(2024, 1, 15), date(2024, 1, 28), "fy24"),
            Cycle("i3", "Sprint 3", "iteration", date(2024, 1, 29), date(2024, 2, 11), "fy24"),
        ),
        financial_years=(
            FinancialYear("fy24", "FY 2024", date(2024, 1, 1), date(2024, 12, 31), quarter_ids=("q1",)),
        ),
        run_work_categories=(RunWorkCategory("rw1", "Support"),),
        allocations=(
            Allocation("a1", "t1", "i1", 1, 60.0, epic_id="e1"),
            Allocation("a2", "t1", "i1", 1, 50.0, run_work_category_id="rw1"),
            Allocation("a3", "t1", "i2", 2, 40.0, epic_id="e1"),
            Allocation("a4", "t2", "i1", 1, 80.0, epic_id="e2"),
        ),
        skills=(
            Skill("s-py", "Python", "backend"),
            Skill("s-sql", "SQL", "backend"),
            Skill("s-swift", "Swift", "mobile"),
        ),
        person_skills=(
            PersonSkill("p1", "s-py", "expert"),
            PersonSkill("p2", "s-sql"),
            PersonSkill("p3", "s-swift"),
        ),
        solutions=(Solution("sol1", "Payments Platform", skill_ids=("s-sql",)),),
        project_solutions=(ProjectSolution("pr1", "sol1"),),
        project_skills=(ProjectSkill("pr1", "s-py"),),
    )


class FixedClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def dataset() -> Dataset:
    return build_dataset()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def data_file(tmp_path: Path, dataset: Dataset) -> Path:
    path = tmp_path / "planning.json"
    save_dataset(dataset, path)
    return path


@pytest.fixture()
def client(tmp_path: Path, data_file: Path) -> Generator[FlaskClient, None, None]:
    app = create_app(data_path=str(data_file), scenarios_path=str(tmp_path / "scenarios.json"))
    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client
