"""
Rule tables for validating imported people, teams and allocations.

Each rule looks at one record against the existing dataset and reports
row-level issues. Row numbers are filled in by ``validate_batch`` (data row
``i`` is spreadsheet row ``i + 2``, after the header).
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence

from .models import Allocation, Dataset, Person, Team

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PROGRESS_INTERVAL = 100

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class CsvParseError:
    row: int
    column: str
    message: str
    severity: str = "error"
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "row": self.row,
            "column": self.column,
            "message": self.message,
            "severity": self.severity,
            "value": self.value,
        }


@dataclass(frozen=True)
class CsvParseWarning:
    row: int
    column: str
    message: str
    data: Dict[str, object] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, object]:
        return {"row": self.row, "column": self.column, "message": self.message}


@dataclass
class ValidationResult:
    errors: List[CsvParseError] = field(default_factory=list)
    warnings: List[CsvParseWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(e.severity == "error" for e in self.errors)

    def error(self, column: str, message: str) -> None:
        self.errors.append(CsvParseError(row=0, column=column, message=message))

    def warning(self, column: str, message: str, **data: object) -> None:
        self.warnings.append(CsvParseWarning(row=0, column=column, message=message, data=data))


@dataclass(frozen=True)
class ValidationContext:
    existing: Dataset
    strict_validation: bool = False
    allow_partial_imports: bool = True
    skip_empty_rows: bool = True


@dataclass(frozen=True)
class ValidationRule:
    id: str
    name: str
    description: str
    severity: str
    validate: Callable[[object, ValidationContext], ValidationResult]


@dataclass
class BatchValidationResult:
    errors: List[CsvParseError]
    warnings: List[CsvParseWarning]
    summary: Dict[str, float]

    @property
    def is_valid(self) -> bool:
        return self.summary["error_items"] == 0


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


# people


def _person_required(person: Person, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if _blank(person.name):
        result.error("name", "Person name is required")
    if _blank(person.email):
        result.error("email", "Person email is required")
    if _blank(person.role_id):
        result.error("role", "Person role is required")
    if _blank(person.team_id):
        result.error("team", "Person team is required")
    return result


def _person_email_format(person: Person, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if person.email and not EMAIL_PATTERN.match(person.email):
        result.error("email", f"Invalid email format: {person.email}")
    return result


def _person_role_exists(person: Person, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if person.role_id and not any(r.id == person.role_id for r in context.existing.roles):
        result.error("role", f"Role with ID '{person.role_id}' does not exist")
    return result


def _person_team_exists(person: Person, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if person.team_id and context.existing.find_team(person.team_id) is None:
        result.error("team", f"Team with ID '{person.team_id}' does not exist")
    return result


def _person_duplicate_email(person: Person, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if not person.email:
        return result
    email = person.email.lower()
    for other in context.existing.people:
        if other.id != person.id and (other.email or "").lower() == email:
            result.error("email", f"Email '{person.email}' is already used by {other.name}")
            break
    return result


# teams


def _team_required(team: Team, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if _blank(team.name):
        result.error("name", "Team name is required")
    if team.capacity <= 0:
        result.error("capacity", "Team capacity must be greater than 0")
    return result


def _team_division_exists(team: Team, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if team.division_id and not any(d.id == team.division_id for d in context.existing.divisions):
        result.error("division", f"Division with ID '{team.division_id}' does not exist")
    return result


def _team_duplicate_name(team: Team, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if not team.name:
        return result
    name = team.name.lower()
    for other in context.existing.teams:
        if other.id != team.id and other.division_id == team.division_id and other.name.lower() == name:
            result.error("name", f"Team name '{team.name}' already exists in this division")
            break
    return result


# allocations


def _allocation_required(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if _blank(allocation.team_id):
        result.error("team", "Team is required")
    if _blank(allocation.cycle_id):
        result.error("cycle", "Cycle is required")
    if allocation.iteration_number <= 0:
        result.error("iteration", "Iteration number must be greater than 0")
    if allocation.percentage <= 0 or allocation.percentage > 100:
        result.error("percentage", "Percentage must be between 1 and 100")
    return result


def _allocation_team_exists(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if allocation.team_id and context.existing.find_team(allocation.team_id) is None:
        result.error("team", f"Team with ID '{allocation.team_id}' does not exist")
    return result


def _allocation_cycle_exists(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if allocation.cycle_id and context.existing.find_cycle(allocation.cycle_id) is None:
        result.error("cycle", f"Cycle with ID '{allocation.cycle_id}' does not exist")
    return result


def _allocation_epic_exists(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if allocation.epic_id and not any(e.id == allocation.epic_id for e in context.existing.epics):
        result.error("epic", f"Epic with ID '{allocation.epic_id}' does not exist")
    return result


def _allocation_run_work_exists(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    category_id = allocation.run_work_category_id
    if category_id and not any(c.id == category_id for c in context.existing.run_work_categories):
        result.error("run_work_category", f"Run work category with ID '{category_id}' does not exist")
    return result


def _allocation_total_percentage(allocation: Allocation, context: ValidationContext) -> ValidationResult:
    result = ValidationResult()
    if not (allocation.team_id and allocation.cycle_id and allocation.iteration_number):
        return result
    total = allocation.percentage + sum(
        a.percentage
        for a in context.existing.allocations
        if a.team_id == allocation.team_id
        and a.cycle_id == allocation.cycle_id
        and a.iteration_number == allocation.iteration_number
        and a.id != allocation.id
    )
    if total > 100:
        result.warning(
            "percentage",
            f"Total allocation for team/iteration will exceed 100% ({total:.1f}%)",
            total_percentage=f"{total:.1f}",
        )
    return result


PEOPLE_RULES = (
    ValidationRule(
        "person-required-fields",
        "Required Fields",
        "Person must have name, email, role, and team",
        "error",
        _person_required,
    ),
    ValidationRule(
        "person-email-format", "Email Format", "Email must be in valid format", "error", _person_email_format
    ),
    ValidationRule(
        "person-role-exists", "Role Exists", "Person role must exist in the system", "error", _person_role_exists
    ),
    ValidationRule(
        "person-team-exists", "Team Exists", "Person team must exist in the system", "error", _person_team_exists
    ),
    ValidationRule(
        "person-duplicate-email",
        "Duplicate Email",
        "Person email must be unique",
        "error",
        _person_duplicate_email,
    ),
)

TEAM_RULES = (
    ValidationRule(
        "team-required-fields", "Required Fields", "Team must have name and capacity", "error", _team_required
    ),
    ValidationRule(
        "team-division-exists",
        "Division Exists",
        "Team division must exist in the system",
        "error",
        _team_division_exists,
    ),
    ValidationRule(
        "team-duplicate-name",
        "Duplicate Name",
        "Team name must be unique within division",
        "error",
        _team_duplicate_name,
    ),
)

ALLOCATION_RULES = (
    ValidationRule(
        "allocation-required-fields",
        "Required Fields",
        "Allocation must have team, cycle, iteration, and percentage",
        "error",
        _allocation_required,
    ),
    ValidationRule(
        "allocation-team-exists",
        "Team Exists",
        "Allocation team must exist in the system",
        "error",
        _allocation_team_exists,
    ),
    ValidationRule(
        "allocation-cycle-exists",
        "Cycle Exists",
        "Allocation cycle must exist in the system",
        "error",
        _allocation_cycle_exists,
    ),
    ValidationRule(
        "allocation-epic-exists",
        "Epic Exists",
        "Allocation epic must exist in the system",
        "error",
        _allocation_epic_exists,
    ),
    ValidationRule(
        "allocation-runwork-exists",
        "Run Work Category Exists",
        "Allocation run work category must exist in the system",
        "error",
        _allocation_run_work_exists,
    ),
    ValidationRule(
        "allocation-total-percentage",
        "Total Percentage",
        "Total allocation percentage for team/iteration should not exceed 100%",
        "warning",
        _allocation_total_percentage,
    ),
)

RULES_BY_TYPE: Dict[str, Sequence[ValidationRule]] = {
    "person": PEOPLE_RULES,
    "team": TEAM_RULES,
    "allocation": ALLOCATION_RULES,
}


def get_rules(item_type: str) -> Sequence[ValidationRule]:
    return RULES_BY_TYPE.get(item_type, ())


def validate_item(
    item: object,
    item_type: str,
    context: ValidationContext,
    rules: Optional[Sequence[ValidationRule]] = None,
) -> ValidationResult:
    """Run every rule for ``item_type``; item types without rules are valid."""
    combined = ValidationResult()
    for rule in rules if rules is not None else get_rules(item_type):
        try:
            result = rule.validate(item, context)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.debug("rule %s raised on %r", rule.id, item, exc_info=True)
            combined.error("general", f"Validation rule '{rule.name}' failed: {exc}")
            continue
        combined.errors.extend(result.errors)
        combined.warnings.extend(result.warnings)
    return combined


def validate_batch(
    items: Sequence[object],
    item_type: str,
    context: ValidationContext,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchValidationResult:
    started = time.perf_counter()
    errors: List[CsvParseError] = []
    warnings: List[CsvParseWarning] = []
    valid_items = error_items = warning_items = 0

    for index, item in enumerate(items):
        result = validate_item(item, item_type, context)
        row = index + 2
        errors.extend(replace(e, row=row) for e in result.errors)
        warnings.extend(replace(w, row=row) for w in result.warnings)
        if result.is_valid:
            valid_items += 1
        else:
            error_items += 1
        if result.warnings:
            warning_items += 1
        if on_progress is not None and index % PROGRESS_INTERVAL == 0:
            on_progress(index, len(items))

    summary = {
        "total_items": len(items),
        "valid_items": valid_items,
        "error_items": error_items,
        "warning_items": warning_items,
        "processing_time": time.perf_counter() - started,
    }
    logger.info(
        "validated %d %s records: %d valid, %d with errors", len(items), item_type, valid_items, error_items
    )
    return BatchValidationResult(errors=errors, warnings=warnings, summary=summary)
