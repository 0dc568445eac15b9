"""
Scenario templates and the modification engine that applies them.

A template is a list of modifications (create, update, delete, bulk-update)
against one dataset collection, with ``{{param}}`` placeholders resolved from
user parameters. Applying a template never mutates its input: every change
produces new frozen records via ``dataclasses.replace`` and a new Dataset.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from .models import ENTITY_TYPES, Dataset

ParamValue = object

CHANGE_OPERATIONS = ("set", "add", "subtract", "multiply")
MODIFICATION_OPERATIONS = ("create", "update", "delete", "bulk-update")


class TemplateNotFoundError(KeyError):
    def __init__(self, template_id: str) -> None:
        super().__init__(template_id)
        self.template_id = template_id

    def __str__(self) -> str:
        return f"template '{self.template_id}' not found"


@dataclass(frozen=True)
class EntityFilter:
    field: str
    operator: str
    value: ParamValue
    second_value: Optional[ParamValue] = None


@dataclass(frozen=True)
class FieldChange:
    field: str
    operation: str
    value: ParamValue


@dataclass(frozen=True)
class TemplateModification:
    entity_type: str
    operation: str
    changes: Tuple[FieldChange, ...] = ()
    filter: Optional[EntityFilter] = None


@dataclass(frozen=True)
class ConditionalRule:
    entity_type: str
    condition: EntityFilter
    actions: Tuple[TemplateModification, ...]


@dataclass(frozen=True)
class TemplateParameter:
    id: str
    name: str
    type: str
    required: bool = False
    default_value: Optional[ParamValue] = None
    min: Optional[float] = None
    max: Optional[float] = None
    description: str = ""


@dataclass(frozen=True)
class ScenarioTemplate:
    id: str
    name: str
    description: str
    category: str
    modifications: Tuple[TemplateModification, ...]
    parameters: Tuple[TemplateParameter, ...] = ()
    conditional_logic: Tuple[ConditionalRule, ...] = ()


@dataclass(frozen=True)
class ScenarioModification:
    id: str
    timestamp: str
    type: str  # "create", "update", "delete"
    entity_type: str
    entity_id: str
    entity_name: str
    description: str
    changes: Tuple[Dict[str, object], ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "description": self.description,
            "changes": [
                {key: value.isoformat() if isinstance(value, date) else value for key, value in c.items()}
                for c in self.changes
            ],
        }


@dataclass
class ModificationResult:
    data: Dataset
    modifications: List[ScenarioModification] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


BUILTIN_TEMPLATES: Tuple[ScenarioTemplate, ...] = (
    ScenarioTemplate(
        id="budget-cut-10",
        name="Budget Reduction",
        description="Reduce project budgets by a specified percentage",
        category="budget",
        modifications=(
            TemplateModification(
                entity_type="projects",
                operation="bulk-update",
                filter=EntityFilter(field="budget", operator="greater-than", value=0),
                changes=(FieldChange(field="budget", operation="multiply", value="{{budgetMultiplier}}"),),
            ),
        ),
        parameters=(
            TemplateParameter(
                id="budgetReduction",
                name="Budget Reduction %",
                type="percentage",
                required=True,
                default_value=10,
                min=0,
                max=50,
                description="Percentage to reduce budgets by",
            ),
            TemplateParameter(
                id="budgetMultiplier",
                name="Budget Multiplier",
                type="number",
                default_value=0.9,
                description="Calculated from budget reduction",
            ),
        ),
    ),
    ScenarioTemplate(
        id="team-expansion",
        name="Team Expansion",
        description="Add new team members to specific teams",
        category="team-changes",
        modifications=(
            TemplateModification(
                entity_type="people",
                operation="create",
                changes=(
                    FieldChange(field="name", operation="set", value="{{newPersonName}}"),
                    FieldChange(field="team_id", operation="set", value="{{targetTeamId}}"),
                    FieldChange(field="role_id", operation="set", value="{{roleId}}"),
                ),
            ),
        ),
        parameters=(
            TemplateParameter(id="targetTeamId", name="Target Team", type="select", required=True),
            TemplateParameter(id="roleId", name="Role", type="select", required=True),
            TemplateParameter(
                id="newPersonName",
                name="New Person Name",
                type="text",
                required=True,
                default_value="New Team Member",
            ),
        ),
    ),
    ScenarioTemplate(
        id="project-delay",
        name="Project Timeline Delay",
        description="Delay project timelines by a specified number of weeks",
        category="project-timeline",
        modifications=(
            TemplateModification(
                entity_type="projects",
                operation="bulk-update",
                changes=(
                    FieldChange(field="start_date", operation="add", value="{{delayWeeks}}"),
                    FieldChange(field="end_date", operation="add", value="{{delayWeeks}}"),
                ),
            ),
        ),
        parameters=(
            TemplateParameter(
                id="delayWeeks",
                name="Delay (weeks)",
                type="number",
                required=True,
                default_value=2,
                min=1,
                max=26,
            ),
        ),
    ),
)

# derived multiplier -> (source parameter, sign applied to the percentage)
DERIVED_MULTIPLIERS: Dict[str, Tuple[str, int]] = {
    "budgetMultiplier": ("budgetReduction", -1),
    "capacityMultiplier": ("capacityIncrease", 1),
    "remoteProductivityMultiplier": ("productivityChange", 1),
    "learningCurveMultiplier": ("learningCurveImpact", -1),
    "riskBufferMultiplier": ("riskBuffer", 1),
}


def get_template(template_id: str, templates: Sequence[ScenarioTemplate] = BUILTIN_TEMPLATES) -> ScenarioTemplate:
    for template in templates:
        if template.id == template_id:
            return template
    raise TemplateNotFoundError(template_id)


def process_template_parameters(
    template: ScenarioTemplate, parameters: Mapping[str, ParamValue]
) -> Dict[str, ParamValue]:
    processed: Dict[str, ParamValue] = {}
    for param in template.parameters:
        if param.id in DERIVED_MULTIPLIERS:
            continue
        value = parameters.get(param.id, param.default_value)
        if value is None or (isinstance(value, str) and not value.strip()):
            if param.required:
                raise ValueError(f"parameter '{param.id}' is required for template '{template.id}'")
            continue
        if param.type in {"number", "percentage"}:
            try:
                value = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"parameter '{param.id}' must be a number") from exc
            if param.min is not None and value < param.min:
                raise ValueError(f"parameter '{param.id}' must be >= {param.min:g}")
            if param.max is not None and value > param.max:
                raise ValueError(f"parameter '{param.id}' must be <= {param.max:g}")
        processed[param.id] = value
    for key, value in parameters.items():
        processed.setdefault(key, value)

    for param in template.parameters:
        derived = DERIVED_MULTIPLIERS.get(param.id)
        if derived is None:
            continue
        source, sign = derived
        if source in processed:
            processed[param.id] = (100 + sign * float(processed[source])) / 100
        elif param.id not in processed and param.default_value is not None:
            processed[param.id] = param.default_value
    return processed


def resolve_parameter_value(value: ParamValue, parameters: Mapping[str, ParamValue]) -> ParamValue:
    if not isinstance(value, str) or "{{" not in value:
        return value
    resolved = value
    for key, param_value in parameters.items():
        resolved = resolved.replace("{{" + key + "}}", str(param_value))
    if resolved == value:
        return resolved
    try:
        number = float(resolved)
    except ValueError:
        if resolved == "true":
            return True
        if resolved == "false":
            return False
        return resolved
    return int(number) if number.is_integer() and "." not in resolved else number


def apply_change(current: object, operation: str, value: ParamValue) -> object:
    if operation == "set":
        return value
    if operation not in CHANGE_OPERATIONS:
        raise ValueError(f"Unknown change operation: {operation}")
    if isinstance(current, date):
        weeks = float(value)
        if operation == "add":
            return current + relativedelta(days=round(weeks * 7))
        if operation == "subtract":
            return current - relativedelta(days=round(weeks * 7))
        raise ValueError(f"cannot {operation} a date")
    base = current or 0
    if operation == "add":
        return base + value
    if operation == "subtract":
        return base - value
    return base * value


def evaluate_filter(entity: object, entity_filter: EntityFilter) -> bool:
    entity_value = getattr(entity, entity_filter.field, None)
    expected = entity_filter.value
    operator = entity_filter.operator
    if operator == "equals":
        return entity_value == expected
    if operator == "not-equals":
        return entity_value != expected
    if operator == "contains":
        return str(expected).lower() in str(entity_value).lower()
    try:
        number = float(entity_value)
    except (TypeError, ValueError):
        return False
    if operator == "greater-than":
        return number > float(expected)
    if operator == "less-than":
        return number < float(expected)
    if operator == "in-range":
        return float(expected) <= number <= float(entity_filter.second_value)
    return False


def _display_name(entity: object) -> str:
    return str(getattr(entity, "name", None) or getattr(entity, "id", ""))


def _updated(
    entity: object, changes: Sequence[FieldChange], parameters: Mapping[str, ParamValue]
) -> Tuple[object, List[Dict[str, object]]]:
    details: List[Dict[str, object]] = []
    for change in changes:
        if not hasattr(entity, change.field):
            raise ValueError(f"{type(entity).__name__} has no field '{change.field}'")
        old_value = getattr(entity, change.field)
        if old_value is None and change.field.endswith("_date") and change.operation in {"add", "subtract"}:
            # unset optional dates stay unset
            details.append({"field": change.field, "old_value": None, "new_value": None})
            continue
        new_value = apply_change(old_value, change.operation, resolve_parameter_value(change.value, parameters))
        entity = replace(entity, **{change.field: new_value})
        details.append({"field": change.field, "old_value": old_value, "new_value": new_value})
    return entity, details


class ModificationEngine:
    """Applies template modifications to a dataset, recording each change."""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    def apply_template(
        self, template: ScenarioTemplate, parameters: Mapping[str, ParamValue], data: Dataset
    ) -> ModificationResult:
        processed = process_template_parameters(template, parameters)
        result = ModificationResult(data=data)
        for modification in template.modifications:
            self._apply(modification, processed, result)
        for rule in template.conditional_logic:
            items = result.data.collection(rule.entity_type)
            if any(evaluate_filter(item, rule.condition) for item in items):
                for action in rule.actions:
                    self._apply(action, processed, result)
        return result

    def apply_modification(
        self, modification: TemplateModification, parameters: Mapping[str, ParamValue], data: Dataset
    ) -> ModificationResult:
        result = ModificationResult(data=data)
        self._apply(modification, dict(parameters), result)
        return result

    def _record(
        self,
        kind: str,
        modification: TemplateModification,
        entity: object,
        description: str,
        changes: Sequence[Dict[str, object]],
    ) -> ScenarioModification:
        return ScenarioModification(
            id=self._new_id(),
            timestamp=self._clock().isoformat(timespec="seconds"),
            type=kind,
            entity_type=modification.entity_type,
            entity_id=str(getattr(entity, "id", "")),
            entity_name=_display_name(entity),
            description=description,
            changes=tuple(changes),
        )

    def _apply(
        self,
        modification: TemplateModification,
        parameters: Mapping[str, ParamValue],
        result: ModificationResult,
    ) -> None:
        if modification.operation not in MODIFICATION_OPERATIONS:
            raise ValueError(f"Unknown operation: {modification.operation}")
        entity_type = modification.entity_type
        items = list(result.data.collection(entity_type))
        matches = (
            [item for item in items if evaluate_filter(item, modification.filter)]
            if modification.filter is not None
            else None
        )

        if modification.operation == "create":
            values: Dict[str, object] = {"id": self._new_id()}
            for change in modification.changes:
                resolved = resolve_parameter_value(change.value, parameters)
                values[change.field] = apply_change(values.get(change.field), change.operation, resolved)
            entity_cls = ENTITY_TYPES[entity_type]
            known = {f.name for f in fields(entity_cls)}
            unknown = set(values) - known
            if unknown:
                raise ValueError(f"{entity_cls.__name__} has no field(s): {', '.join(sorted(unknown))}")
            try:
                entity = entity_cls(**values)
            except TypeError as exc:
                raise ValueError(f"cannot create {entity_type}: {exc}") from exc
            items.append(entity)
            result.modifications.append(
                self._record(
                    "create",
                    modification,
                    entity,
                    f"Created new {entity_type}",
                    [{"field": c.field, "old_value": None, "new_value": values[c.field]} for c in modification.changes],
                )
            )
        elif modification.operation == "update":
            target = matches[0] if matches else None
            if target is None:
                result.warnings.append(f"No entity found to update for {entity_type}")
                return
            updated, details = _updated(target, modification.changes, parameters)
            items[items.index(target)] = updated
            result.modifications.append(
                self._record("update", modification, updated, f"Updated {entity_type}", details)
            )
        elif modification.operation == "delete":
            if not matches:
                result.warnings.append(f"No entities found to delete for {entity_type}")
                return
            for entity in matches:
                items.remove(entity)
                result.modifications.append(self._record("delete", modification, entity, f"Deleted {entity_type}", []))
        else:
            targets = items if matches is None else matches
            if not targets:
                result.warnings.append(f"No entities found for bulk update of {entity_type}")
                return
            target_ids = {id(entity) for entity in targets}
            for index, entity in enumerate(items):
                if id(entity) not in target_ids:
                    continue
                updated, details = _updated(entity, modification.changes, parameters)
                items[index] = updated
                result.modifications.append(
                    self._record("update", modification, updated, f"Bulk updated {entity_type}", details)
                )
        result.data = result.data.with_collection(entity_type, items)
