"""
CSV import for allocations, teams, people and projects.

Text is read with pandas (every column as a string, no NA coercion), headers
are normalized to lower_snake_case, and rows are handed one at a time to a
row parser. Row problems are collected as ``CsvParseError`` records keyed by
spreadsheet row number (header is row 1). Parsed records then go through the
rule tables in ``validation``.
"""

from __future__ import annotations

import io
import logging
import math
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    PROJECT_STATUSES,
    ActualAllocation,
    Allocation,
    Dataset,
    Division,
    Person,
    Project,
    Team,
)
from .validation import (
    CsvParseError,
    CsvParseWarning,
    ProgressCallback,
    ValidationContext,
    validate_batch,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1000
MAX_FILE_BYTES = 50 * 1024 * 1024
PROGRESS_INTERVAL = 100
MALFORMED_MARKER = "\x00malformed:"
RUN_WORK_EPIC_TYPE = "run work"
EMPLOYMENT_TYPES = ("permanent", "contractor")

PLANNING_ALLOCATION_COLUMNS = (
    "team_name",
    "quarter",
    "iteration_number",
    "epic_name",
    "epic_type",
    "percentage",
    "notes",
)
ACTUAL_ALLOCATION_COLUMNS = PLANNING_ALLOCATION_COLUMNS + ("actual_percentage", "variance_reason")
TEAM_COLUMNS = ("team_id", "team_name", "division_id", "division_name", "capacity")
PEOPLE_COLUMNS = (
    "name",
    "email",
    "role",
    "team_name",
    "employment_type",
    "annual_salary",
    "hourly_rate",
    "daily_rate",
    "start_date",
    "is_active",
)
PROJECT_COLUMNS = ("name", "description", "status", "start_date", "end_date", "budget", "priority")


class CsvImportError(RuntimeError):
    pass


class CsvRowError(ValueError):
    """Raised by row parsers for a problem tied to one column."""

    def __init__(self, column: str, message: str, value: Optional[str] = None) -> None:
        super().__init__(message)
        self.column = column
        self.message = message
        self.value = value


@dataclass(frozen=True)
class ParsedValue:
    value: object
    error: Optional[CsvParseError] = None


@dataclass
class CsvParseOptions:
    max_rows: Optional[int] = None
    skip_empty_rows: bool = True
    allow_partial_imports: bool = True
    strict_validation: bool = False
    on_progress: Optional[ProgressCallback] = None
    chunk_size: int = CHUNK_SIZE
    max_file_bytes: int = MAX_FILE_BYTES
    progress_interval: int = PROGRESS_INTERVAL


@dataclass
class CsvParseResult:
    data: List[object] = field(default_factory=list)
    errors: List[CsvParseError] = field(default_factory=list)
    warnings: List[CsvParseWarning] = field(default_factory=list)
    summary: Dict[str, float] = field(default_factory=dict)
    rows: List[int] = field(default_factory=list)
    related: Dict[str, List[object]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, object]:
        return {
            "imported": len(self.data),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": dict(self.summary),
        }


RowParser = Callable[[Dict[str, str], int], Optional[object]]


def normalize_header(header: str) -> str:
    return re.sub(r"\s+", "_", str(header).strip().lower())


def read_csv_frame(content: str, malformed: Optional[Dict[int, str]] = None) -> pd.DataFrame:
    """Read CSV text into an all-string frame with normalized headers.

    The header line is read as data against positional names so pandas never
    takes a long first row for an index column. Lines with more fields than
    the header keep their position as a blank row; their frame index and a
    description land in ``malformed`` when given.
    """
    try:
        width = len(pd.read_csv(io.StringIO(content), nrows=0, skipinitialspace=True).columns)
    except pd.errors.EmptyDataError as exc:
        raise CsvImportError("CSV file is empty") from exc
    bad_lines: List[List[str]] = []

    def keep_position(fields: List[str]) -> List[str]:
        bad_lines.append(fields)
        return [f"{MALFORMED_MARKER}{len(bad_lines) - 1}"] + [""] * (width - 1)

    try:
        raw = pd.read_csv(
            io.StringIO(content),
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            skipinitialspace=True,
            engine="python",
            on_bad_lines=keep_position,
        )
    except pd.errors.EmptyDataError as exc:
        raise CsvImportError("CSV file is empty") from exc
    except pd.errors.ParserError as exc:
        raise CsvImportError(f"CSV file could not be read: {exc}") from exc
    raw = raw.fillna("")
    frame = raw.iloc[1:].reset_index(drop=True)
    frame.columns = [normalize_header(c) for c in raw.iloc[0]]

    if bad_lines:
        marks = frame.iloc[:, 0].str.startswith(MALFORMED_MARKER)
        for index in frame.index[marks]:
            fields = bad_lines[int(frame.iat[index, 0][len(MALFORMED_MARKER) :])]
            frame.iloc[index, :] = ""
            if malformed is not None:
                malformed[int(index)] = f"Malformed row: expected {width} fields, saw {len(fields)}"
    return frame


def _iter_rows(frame: pd.DataFrame, chunk_size: int) -> Iterator[Tuple[int, Dict[str, str]]]:
    for start in range(0, len(frame), chunk_size):
        chunk = frame.iloc[start : start + chunk_size]
        for offset, record in enumerate(chunk.to_dict(orient="records")):
            yield start + offset, {k: str(v).strip() for k, v in record.items()}


def parse_csv(content: str, row_parser: RowParser, options: Optional[CsvParseOptions] = None) -> CsvParseResult:
    options = options or CsvParseOptions()
    started = time.perf_counter()
    file_size = len(content.encode("utf-8"))
    if file_size > options.max_file_bytes:
        raise CsvImportError(
            f"File size ({file_size / 1024 / 1024:.2f}MB) exceeds maximum allowed size "
            f"({options.max_file_bytes / 1024 / 1024:g}MB)"
        )

    malformed: Dict[int, str] = {}
    frame = read_csv_frame(content, malformed)
    total = len(frame)
    result = CsvParseResult()
    error_rows = 0

    for index, values in _iter_rows(frame, options.chunk_size):
        row_number = index + 2
        if options.on_progress is not None and index % options.progress_interval == 0:
            options.on_progress(index, total)
        if index in malformed:
            result.errors.append(CsvParseError(row=row_number, column="general", message=malformed[index]))
            error_rows += 1
            logger.debug("row %d rejected: %s", row_number, malformed[index])
            if not options.allow_partial_imports:
                raise CsvImportError(f"Import failed at row {row_number}: {malformed[index]}")
            continue
        if not any(values.values()) and options.skip_empty_rows:
            continue
        try:
            parsed = row_parser(values, row_number)
        except ValueError as exc:
            column = getattr(exc, "column", "general")
            result.errors.append(
                CsvParseError(row=row_number, column=column, message=str(exc), value=getattr(exc, "value", None))
            )
            error_rows += 1
            logger.debug("row %d rejected (%s): %s", row_number, column, exc)
            if not options.allow_partial_imports:
                raise CsvImportError(f"Import failed at row {row_number}: {exc}") from exc
            continue
        if parsed is None:
            if options.skip_empty_rows:
                continue
            result.errors.append(CsvParseError(row=row_number, column="general", message="Row could not be parsed"))
            error_rows += 1
            continue
        result.data.append(parsed)
        result.rows.append(row_number)
        if options.max_rows and len(result.data) >= options.max_rows:
            result.warnings.append(
                CsvParseWarning(
                    row=row_number,
                    column="general",
                    message=f"Import limited to {options.max_rows} rows due to configuration",
                    data={"max_rows": options.max_rows},
                )
            )
            break

    result.summary = {
        "total_rows": total,
        "successful_rows": len(result.data),
        "error_rows": error_rows,
        "warning_rows": len(result.warnings),
        "processing_time": time.perf_counter() - started,
        "file_size": file_size,
    }
    return result


def get_value(values: Dict[str, str], field_name: str) -> str:
    return (values.get(field_name) or "").strip()


def validate_required_fields(values: Dict[str, str], required: Sequence[str], row: int) -> List[CsvParseError]:
    return [
        CsvParseError(row=row, column=name, message=f"Required field '{name}' is missing or empty")
        for name in required
        if not get_value(values, name)
    ]


def parse_number(value: str, field_name: str, row: int) -> ParsedValue:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isnan(number):
        return ParsedValue(
            0.0, CsvParseError(row=row, column=field_name, message=f"Invalid number format: '{value}'", value=value)
        )
    return ParsedValue(number)


def parse_date(value: str, field_name: str, row: int) -> ParsedValue:
    if not value or not value.strip():
        return ParsedValue(None)
    try:
        return ParsedValue(dateparser.isoparse(value.strip()).date())
    except ValueError:
        return ParsedValue(
            None,
            CsvParseError(
                row=row,
                column=field_name,
                message=f"Invalid date format: '{value}'. Expected YYYY-MM-DD",
                value=value,
            ),
        )


def parse_boolean(value: str, field_name: str, row: int) -> ParsedValue:
    lowered = (value or "").strip().lower()
    if lowered in {"true", "1", "yes"}:
        return ParsedValue(True)
    if lowered in {"false", "0", "no", ""}:
        return ParsedValue(False)
    return ParsedValue(
        False,
        CsvParseError(
            row=row,
            column=field_name,
            message=f"Invalid boolean format: '{value}'. Expected true/false, 1/0, or yes/no",
            value=value,
        ),
    )


def validate_csv_structure(content: str, expected_columns: Sequence[str]) -> Dict[str, object]:
    text = content.strip()
    if len(text.splitlines()) < 2:
        return {
            "is_valid": False,
            "errors": ["CSV file must have at least a header row and one data row"],
            "warnings": [],
            "detected_columns": [],
        }
    frame = read_csv_frame(text)
    detected = list(frame.columns)
    errors: List[str] = []
    warnings: List[str] = []
    missing = [c for c in expected_columns if c not in detected]
    if missing:
        errors.append(f"Missing required columns: {', '.join(missing)}")
    unexpected = [c for c in detected if c not in expected_columns]
    if unexpected:
        warnings.append(f"Unexpected columns detected: {', '.join(unexpected)}")
    empty_rows = int((frame == "").all(axis=1).sum())
    if empty_rows:
        warnings.append(f"{empty_rows} empty rows detected")
    return {"is_valid": not errors, "errors": errors, "warnings": warnings, "detected_columns": detected}


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _by_name(items: Sequence[object]) -> Dict[str, object]:
    return {str(getattr(item, "name", "")).strip().lower(): item for item in items}


def _require(values: Dict[str, str], required: Sequence[str], row: int) -> None:
    missing = validate_required_fields(values, required, row)
    if missing:
        raise CsvRowError(missing[0].column, missing[0].message)


def _number(values: Dict[str, str], name: str, row: int) -> float:
    parsed = parse_number(get_value(values, name), name, row)
    if parsed.error is not None:
        raise CsvRowError(name, parsed.error.message, get_value(values, name))
    return float(parsed.value)


def _optional_number(values: Dict[str, str], name: str, row: int) -> Optional[float]:
    return _number(values, name, row) if get_value(values, name) else None


def _date(values: Dict[str, str], name: str, row: int) -> Optional[date]:
    parsed = parse_date(get_value(values, name), name, row)
    if parsed.error is not None:
        raise CsvRowError(name, parsed.error.message, get_value(values, name))
    return parsed.value


def _iteration_number(values: Dict[str, str], row: int) -> int:
    number = _number(values, "iteration_number", row)
    if not number.is_integer():
        raise CsvRowError("iteration_number", f"Iteration number must be a whole number: '{number:g}'")
    return int(number)


def _validated(
    result: CsvParseResult,
    item_type: str,
    context: ValidationContext,
    options: CsvParseOptions,
) -> CsvParseResult:
    """Run the rule table over parsed records and drop those with errors."""
    batch = validate_batch(result.data, item_type, context, options.on_progress)
    rejected = set()
    for error in batch.errors:
        position = error.row - 2
        row_number = result.rows[position]
        result.errors.append(replace(error, row=row_number))
        if error.severity == "error":
            rejected.add(position)
    for warning in batch.warnings:
        result.warnings.append(replace(warning, row=result.rows[warning.row - 2]))
    if rejected and not options.allow_partial_imports:
        row_number = result.rows[min(rejected)]
        first = next(e for e in result.errors if e.row == row_number and e.severity == "error")
        raise CsvImportError(f"Import failed at row {first.row}: {first.message}")

    kept = [(item, row) for i, (item, row) in enumerate(zip(result.data, result.rows)) if i not in rejected]
    result.data = [item for item, _ in kept]
    result.rows = [row for _, row in kept]
    result.summary["successful_rows"] = len(result.data)
    result.summary["error_rows"] = result.summary.get("error_rows", 0) + len(rejected)
    result.summary["warning_rows"] = len(result.warnings)
    return result


def _options_context(existing: Dataset, options: CsvParseOptions) -> ValidationContext:
    return ValidationContext(
        existing=existing,
        strict_validation=options.strict_validation,
        allow_partial_imports=options.allow_partial_imports,
        skip_empty_rows=options.skip_empty_rows,
    )


def _allocation_target(
    values: Dict[str, str], existing: Dataset
) -> Tuple[Optional[str], Optional[str]]:
    epic_name = get_value(values, "epic_name")
    if not epic_name:
        return None, None
    if get_value(values, "epic_type").lower() == RUN_WORK_EPIC_TYPE:
        category = _by_name(existing.run_work_categories).get(epic_name.lower())
        if category is None:
            raise CsvRowError("epic_name", f"Run work category '{epic_name}' not found", epic_name)
        return None, category.id
    epic = _by_name(existing.epics).get(epic_name.lower())
    if epic is None:
        raise CsvRowError("epic_name", f"Epic '{epic_name}' not found", epic_name)
    return epic.id, None


def _team_and_cycle(values: Dict[str, str], existing: Dataset) -> Tuple[Team, object]:
    team_name = get_value(values, "team_name")
    team = _by_name(existing.teams).get(team_name.lower())
    if team is None:
        raise CsvRowError("team_name", f"Team '{team_name}' not found", team_name)
    quarter = get_value(values, "quarter")
    cycle = _by_name(existing.cycles).get(quarter.lower())
    if cycle is None:
        raise CsvRowError("quarter", f"Cycle '{quarter}' not found", quarter)
    return team, cycle


def import_planning_allocations(
    content: str, existing: Dataset, options: Optional[CsvParseOptions] = None
) -> CsvParseResult:
    options = options or CsvParseOptions()

    def parse_row(values: Dict[str, str], row: int) -> Allocation:
        _require(values, ("team_name", "quarter", "iteration_number", "percentage"), row)
        team, cycle = _team_and_cycle(values, existing)
        epic_id, run_work_id = _allocation_target(values, existing)
        return Allocation(
            id=_new_id("allocation"),
            team_id=team.id,
            cycle_id=cycle.id,
            iteration_number=_iteration_number(values, row),
            percentage=_number(values, "percentage", row),
            epic_id=epic_id,
            run_work_category_id=run_work_id,
            notes=get_value(values, "notes"),
        )

    result = parse_csv(content, parse_row, options)
    context_data = existing.with_collection("allocations", list(existing.allocations) + result.data)
    result = _validated(result, "allocation", _options_context(context_data, options), options)
    logger.info("planning allocations import: %d rows imported, %d errors", len(result.data), len(result.errors))
    return result


def import_actual_allocations(
    content: str, existing: Dataset, options: Optional[CsvParseOptions] = None
) -> CsvParseResult:
    options = options or CsvParseOptions()

    def parse_row(values: Dict[str, str], row: int) -> ActualAllocation:
        _require(values, ("team_name", "quarter", "iteration_number", "actual_percentage"), row)
        team, cycle = _team_and_cycle(values, existing)
        epic_id, run_work_id = _allocation_target(values, existing)
        actual = _number(values, "actual_percentage", row)
        if actual < 0:
            raise CsvRowError("actual_percentage", "Actual percentage cannot be negative")
        return ActualAllocation(
            id=_new_id("actual"),
            team_id=team.id,
            cycle_id=cycle.id,
            iteration_number=_iteration_number(values, row),
            actual_percentage=actual,
            epic_id=epic_id,
            run_work_category_id=run_work_id,
            variance_reason=get_value(values, "variance_reason"),
            notes=get_value(values, "notes"),
        )

    result = parse_csv(content, parse_row, options)
    logger.info("actual allocations import: %d rows imported, %d errors", len(result.data), len(result.errors))
    return result


def import_teams(content: str, existing: Dataset, options: Optional[CsvParseOptions] = None) -> CsvParseResult:
    options = options or CsvParseOptions()
    divisions: Dict[str, Division] = {d.id: d for d in existing.divisions}
    created: List[Division] = []

    def resolve_division(values: Dict[str, str]) -> Optional[str]:
        division_id = get_value(values, "division_id")
        division_name = get_value(values, "division_name")
        if division_id and division_id in divisions:
            return division_id
        if division_name:
            match = _by_name(divisions.values()).get(division_name.lower())
            if match is not None:
                return match.id
            division = Division(id=division_id or _new_id("division"), name=division_name)
            divisions[division.id] = division
            created.append(division)
            return division.id
        return division_id or None

    def parse_row(values: Dict[str, str], row: int) -> Team:
        _require(values, ("team_name", "capacity"), row)
        return Team(
            id=get_value(values, "team_id") or _new_id("team"),
            name=get_value(values, "team_name"),
            capacity=_number(values, "capacity", row),
            division_id=resolve_division(values),
        )

    result = parse_csv(content, parse_row, options)
    result.related["divisions"] = created
    others = [t for t in existing.teams if t.id not in {team.id for team in result.data}]
    context_data = replace(
        existing, teams=tuple(others) + tuple(result.data), divisions=tuple(divisions.values())
    )
    result = _validated(result, "team", _options_context(context_data, options), options)
    logger.info(
        "teams import: %d teams imported, %d divisions created, %d errors",
        len(result.data),
        len(created),
        len(result.errors),
    )
    return result


def import_people(content: str, existing: Dataset, options: Optional[CsvParseOptions] = None) -> CsvParseResult:
    options = options or CsvParseOptions()
    roles = _by_name(existing.roles)
    teams = _by_name(existing.teams)

    def parse_row(values: Dict[str, str], row: int) -> Person:
        _require(values, ("name", "email", "role"), row)
        role_name = get_value(values, "role")
        role = roles.get(role_name.lower())
        if role is None:
            raise CsvRowError("role", f"Role '{role_name}' not found", role_name)
        team_name = get_value(values, "team_name")
        team = teams.get(team_name.lower()) if team_name else None
        if team_name and team is None:
            raise CsvRowError("team_name", f"Team '{team_name}' not found", team_name)
        employment_type = get_value(values, "employment_type").lower() or "permanent"
        if employment_type not in EMPLOYMENT_TYPES:
            raise CsvRowError("employment_type", f"Invalid employment type: '{employment_type}'", employment_type)
        is_active = True
        if get_value(values, "is_active"):
            parsed = parse_boolean(get_value(values, "is_active"), "is_active", row)
            if parsed.error is not None:
                raise CsvRowError("is_active", parsed.error.message, get_value(values, "is_active"))
            is_active = bool(parsed.value)
        return Person(
            id=_new_id("person"),
            name=get_value(values, "name"),
            email=get_value(values, "email"),
            role_id=role.id,
            team_id=team.id if team else None,
            is_active=is_active,
            employment_type=employment_type,
            start_date=_date(values, "start_date", row),
            annual_salary=_optional_number(values, "annual_salary", row),
            hourly_rate=_optional_number(values, "hourly_rate", row),
            daily_rate=_optional_number(values, "daily_rate", row),
        )

    result = parse_csv(content, parse_row, options)
    context_data = existing.with_collection("people", list(existing.people) + result.data)
    result = _validated(result, "person", _options_context(context_data, options), options)
    logger.info("people import: %d people imported, %d errors", len(result.data), len(result.errors))
    return result


def import_projects(content: str, existing: Dataset, options: Optional[CsvParseOptions] = None) -> CsvParseResult:
    options = options or CsvParseOptions()

    def parse_row(values: Dict[str, str], row: int) -> Project:
        _require(values, ("name",), row)
        status = get_value(values, "status").lower() or "planning"
        if status not in PROJECT_STATUSES:
            raise CsvRowError("status", f"Invalid project status: '{status}'", status)
        priority = 2
        if get_value(values, "priority"):
            number = _number(values, "priority", row)
            if not number.is_integer() or not 1 <= number <= 4:
                raise CsvRowError("priority", "Priority must be a whole number between 1 and 4")
            priority = int(number)
        start = _date(values, "start_date", row)
        end = _date(values, "end_date", row)
        if start and end and end < start:
            raise CsvRowError("end_date", "End date must not be before start date")
        return Project(
            id=_new_id("project"),
            name=get_value(values, "name"),
            description=get_value(values, "description"),
            status=status,
            start_date=start,
            end_date=end,
            budget=_optional_number(values, "budget", row),
            priority=priority,
        )

    result = parse_csv(content, parse_row, options)
    logger.info("projects import: %d projects imported, %d errors", len(result.data), len(result.errors))
    return result


# kind -> (importer, target collection, expected columns)
IMPORTERS: Dict[str, Tuple[Callable[..., CsvParseResult], str, Tuple[str, ...]]] = {
    "allocations": (import_planning_allocations, "allocations", PLANNING_ALLOCATION_COLUMNS),
    "actuals": (import_actual_allocations, "actual_allocations", ACTUAL_ALLOCATION_COLUMNS),
    "teams": (import_teams, "teams", TEAM_COLUMNS),
    "people": (import_people, "people", PEOPLE_COLUMNS),
    "projects": (import_projects, "projects", PROJECT_COLUMNS),
}


def run_import(
    kind: str, content: str, existing: Dataset, options: Optional[CsvParseOptions] = None
) -> CsvParseResult:
    if kind not in IMPORTERS:
        raise ValueError(f"unknown import kind '{kind}' (expected one of: {', '.join(IMPORTERS)})")
    importer, _, _ = IMPORTERS[kind]
    return importer(content, existing, options)


def merge_import(existing: Dataset, kind: str, result: CsvParseResult) -> Dataset:
    """Upsert imported records (and any records created alongside) by id."""
    _, collection, _ = IMPORTERS[kind]
    merged = existing
    for name, items in [(collection, result.data)] + list(result.related.items()):
        incoming = {item.id: item for item in items}
        kept = [item for item in merged.collection(name) if item.id not in incoming]
        merged = merged.with_collection(name, kept + list(incoming.values()))
    return merged
