from __future__ import annotations

import pytest

from resource_planner.models import Allocation, Dataset, Person, Team
from resource_planner.validation import (
    ValidationContext,
    ValidationResult,
    ValidationRule,
    get_rules,
    validate_batch,
    validate_item,
)


@pytest.fixture()
def context(dataset: Dataset) -> ValidationContext:
    return ValidationContext(existing=dataset)


def _messages(result) -> list:
    return [e.message for e in result.errors]


def test_valid_person(context: ValidationContext) -> None:
    person = Person("p9", "Dana", "r-dev", team_id="t1", email="dana@example.com")

    result = validate_item(person, "person", context)

    assert result.is_valid
    assert result.errors == [] and result.warnings == []


def test_person_required_fields(context: ValidationContext) -> None:
    result = validate_item(Person("p9", " ", None), "person", context)

    assert [(e.column, e.message) for e in result.errors] == [
        ("name", "Person name is required"),
        ("email", "Person email is required"),
        ("role", "Person role is required"),
        ("team", "Person team is required"),
    ]


def test_person_reference_and_format_checks(context: ValidationContext) -> None:
    person = Person("p9", "Dana", "r-x", team_id="t9", email="dana@")

    assert _messages(validate_item(person, "person", context)) == [
        "Invalid email format: dana@",
        "Role with ID 'r-x' does not exist",
        "Team with ID 't9' does not exist",
    ]


def test_duplicate_email_is_case_insensitive(context: ValidationContext) -> None:
    newcomer = Person("p9", "Alicia", "r-dev", team_id="t1", email="ALICE@example.com")
    same_person = Person("p1", "Alice", "r-dev", team_id="t1", email="alice@example.com")

    assert _messages(validate_item(newcomer, "person", context)) == [
        "Email 'ALICE@example.com' is already used by Alice"
    ]
    assert validate_item(same_person, "person", context).is_valid


def test_team_rules(context: ValidationContext) -> None:
    assert _messages(validate_item(Team("t9", "Data", 0.0, division_id="d1"), "team", context)) == [
        "Team capacity must be greater than 0"
    ]
    assert _messages(validate_item(Team("t9", "platform", 10.0, division_id="d1"), "team", context)) == [
        "Team name 'platform' already exists in this division"
    ]
    assert _messages(validate_item(Team("t9", "Platform", 10.0, division_id="d9"), "team", context)) == [
        "Division with ID 'd9' does not exist"
    ]


@pytest.mark.parametrize("percentage", [0.0, 150.0])
def test_allocation_percentage_range(context: ValidationContext, percentage: float) -> None:
    allocation = Allocation("a9", "t2", "i2", 2, percentage, epic_id="e2")

    assert _messages(validate_item(allocation, "allocation", context)) == ["Percentage must be between 1 and 100"]


def test_allocation_references(context: ValidationContext) -> None:
    allocation = Allocation("a9", "t9", "i9", 1, 10.0, epic_id="e9")

    assert _messages(validate_item(allocation, "allocation", context)) == [
        "Team with ID 't9' does not exist",
        "Cycle with ID 'i9' does not exist",
        "Epic with ID 'e9' does not exist",
    ]


def test_allocation_over_total_is_a_warning(context: ValidationContext) -> None:
    result = validate_item(Allocation("a9", "t1", "i1", 1, 10.0, epic_id="e1"), "allocation", context)

    assert result.is_valid
    assert [w.message for w in result.warnings] == [
        "Total allocation for team/iteration will exceed 100% (120.0%)"
    ]
    assert result.warnings[0].data == {"total_percentage": "120.0"}


def test_failing_rule_becomes_general_error(context: ValidationContext) -> None:
    def explode(item: object, ctx: ValidationContext) -> ValidationResult:
        raise ValueError("boom")

    rules = [ValidationRule("boom", "Boom", "always fails", "error", explode)]

    result = validate_item(object(), "person", context, rules)

    assert [(e.column, e.message) for e in result.errors] == [("general", "Validation rule 'Boom' failed: boom")]


def test_unknown_item_type_has_no_rules(context: ValidationContext) -> None:
    assert get_rules("widget") == ()
    assert validate_item(object(), "widget", context).is_valid


def test_batch_numbers_rows_after_header(context: ValidationContext) -> None:
    progress = []
    items = [
        Allocation("n1", "t2", "i2", 2, 50.0, epic_id="e2"),
        Allocation("n2", "t2", "i2", 2, 0.0, epic_id="e2"),
        Allocation("n3", "t1", "i1", 1, 10.0, epic_id="e1"),
    ]

    batch = validate_batch(items, "allocation", context, on_progress=lambda done, total: progress.append((done, total)))

    assert [(e.row, e.column) for e in batch.errors] == [(3, "percentage")]
    assert [w.row for w in batch.warnings] == [4]
    assert {k: batch.summary[k] for k in ("total_items", "valid_items", "error_items", "warning_items")} == {
        "total_items": 3,
        "valid_items": 2,
        "error_items": 1,
        "warning_items": 1,
    }
    assert batch.summary["processing_time"] >= 0
    assert not batch.is_valid
    assert progress == [(0, 3)]
