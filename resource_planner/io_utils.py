from __future__ import annotations

import json
import os
import tempfile
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pandas as pd
from dateutil import parser as dateparser

from .models import ENTITY_TYPES, Dataset, Milestone, PlanningConfig

_POSITIVE_NUMBER_FIELDS = (
    "working_hours_per_day",
    "working_days_per_week",
    "working_days_per_month",
    "working_days_per_year",
)
_POSITIVE_INT_FIELDS = (
    "default_iteration_weeks",
    "scenario_expiry_days",
    "csv_chunk_size",
    "csv_max_file_bytes",
    "progress_interval",
)
_LOGGING_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip() == "":
        return None
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _coerce_field(type_name: str, field_name: str, value: object) -> object:
    if "Milestone" in type_name:
        return tuple(_build_entity(Milestone, item, "milestones") for item in (value or ()))
    if "date" in type_name:
        return _parse_optional_date(value, field_name)
    if type_name.startswith("Tuple"):
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(";") if part.strip())
        return tuple(str(item) for item in value)
    if type_name.startswith("Mapping"):
        return {str(k): float(v) for k, v in (value or {}).items()}
    return value


def _build_entity(cls: type, payload: Mapping[str, object], collection: str) -> object:
    if not isinstance(payload, Mapping):
        raise ValueError(f"{collection} entries must be objects")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(payload) - set(known))
    if unknown:
        raise ValueError(f"{collection} entry has unknown fields: {', '.join(unknown)}")
    kwargs = {
        name: _coerce_field(str(known[name].type), name, value) for name, value in payload.items()
    }
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"invalid {collection} entry {payload.get('id', '')!s}: {exc}") from exc


def dataset_from_dict(data: Mapping[str, object]) -> Dataset:
    if not isinstance(data, Mapping):
        raise ValueError("dataset must be a JSON object")
    unknown = sorted(set(data) - set(ENTITY_TYPES))
    if unknown:
        raise ValueError(f"dataset has unknown collections: {', '.join(unknown)}")
    collections = {}
    for name, cls in ENTITY_TYPES.items():
        items = data.get(name) or []
        if not isinstance(items, list):
            raise ValueError(f"'{name}' must be an array")
        collections[name] = tuple(_build_entity(cls, item, name) for item in items)
    return Dataset(**collections)


def _to_jsonable(value: object) -> object:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, tuple) and value and hasattr(value[0], "__dataclass_fields__"):
        return [_entity_to_dict(item) for item in value]
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, Mapping):
        return dict(value)
    return value


def _entity_to_dict(entity: object) -> Dict[str, object]:
    return {f.name: _to_jsonable(getattr(entity, f.name)) for f in fields(entity)}


def dataset_to_dict(dataset: Dataset) -> Dict[str, List[Dict[str, object]]]:
    return {name: [_entity_to_dict(item) for item in getattr(dataset, name)] for name in ENTITY_TYPES}


def load_dataset(path: str | Path) -> Dataset:
    return dataset_from_dict(json.loads(Path(path).read_text()))


def save_dataset(dataset: Dataset, path: str | Path) -> None:
    write_json_atomic(dataset_to_dict(dataset), path)


def write_json_atomic(payload: object, path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "w") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_name, target)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_config(path: Optional[str | Path] = None) -> PlanningConfig:
    if path is None:
        return PlanningConfig()
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config must be a JSON object")
    defaults = PlanningConfig()
    known = {f.name for f in fields(PlanningConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(unknown)}")

    values: Dict[str, object] = {}
    for name in _POSITIVE_NUMBER_FIELDS:
        value = data.get(name, getattr(defaults, name))
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(f"{name} must be a number")
        if value <= 0:
            raise ValueError(f"{name} must be positive")
        values[name] = float(value)
    for name in _POSITIVE_INT_FIELDS:
        value = data.get(name, getattr(defaults, name))
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"{name} must be a positive integer")
        values[name] = value

    threshold = data.get("under_allocation_threshold", defaults.under_allocation_threshold)
    if not isinstance(threshold, (int, float)) or not (0 < threshold <= 100):
        raise ValueError("under_allocation_threshold must be in (0, 100]")
    values["under_allocation_threshold"] = float(threshold)

    currency = data.get("currency_symbol", defaults.currency_symbol)
    if not isinstance(currency, str):
        raise ValueError("currency_symbol must be a string")
    values["currency_symbol"] = currency

    logging_level = str(data.get("logging_level", defaults.logging_level)).upper()
    if logging_level not in _LOGGING_LEVELS:
        raise ValueError(f"logging_level must be one of {', '.join(sorted(_LOGGING_LEVELS))}")
    values["logging_level"] = logging_level
    return PlanningConfig(**values)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
