"""
Scenario lifecycle: what-if copies of the live dataset.

The manager is the only component that talks to the persistence and
notification ports. States are ``live`` (no active scenario) and
``scenario-active`` with an in-memory working set that is either saved back
into the scenario snapshot or discarded. Confirming the loss of unsaved
changes before switching is left to the caller (see ``has_unsaved_changes``).
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .io_utils import dataset_from_dict, dataset_to_dict, write_json_atomic
from .models import Dataset, PlanningConfig
from .scenario_diff import ScenarioComparison, compare_scenario
from .templates import (
    BUILTIN_TEMPLATES,
    ModificationEngine,
    ScenarioModification,
    ScenarioTemplate,
    get_template,
)

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "scenarios": "planning-scenarios",
    "active_scenario": "planning-active-scenario",
    "templates": "planning-scenario-templates",
}


class ScenarioNotFoundError(KeyError):
    def __init__(self, scenario_id: str) -> None:
        super().__init__(scenario_id)
        self.scenario_id = scenario_id

    def __str__(self) -> str:
        return f"scenario '{self.scenario_id}' not found"


class NoActiveScenarioError(RuntimeError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@dataclass(frozen=True)
class ScenarioMetadata:
    created_from_live_state: bool
    live_state_snapshot_date: str
    total_modifications: int
    last_access_date: str


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    created_date: str
    last_modified: str
    expires_at: str
    data: Dataset
    metadata: ScenarioMetadata
    description: Optional[str] = None
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    modifications: Tuple[ScenarioModification, ...] = ()

    def is_expired(self, now: datetime) -> bool:
        return _as_utc(dateparser.isoparse(self.expires_at)) < _as_utc(now)

    def summary(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_date": self.created_date,
            "last_modified": self.last_modified,
            "expires_at": self.expires_at,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "total_modifications": self.metadata.total_modifications,
            "last_access_date": self.metadata.last_access_date,
        }

    def to_dict(self) -> Dict[str, object]:
        payload = self.summary()
        payload["data"] = dataset_to_dict(self.data)
        payload["modifications"] = [m.to_dict() for m in self.modifications]
        payload["metadata"] = {
            "created_from_live_state": self.metadata.created_from_live_state,
            "live_state_snapshot_date": self.metadata.live_state_snapshot_date,
            "total_modifications": self.metadata.total_modifications,
            "last_access_date": self.metadata.last_access_date,
        }
        del payload["total_modifications"]
        del payload["last_access_date"]
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Scenario":
        try:
            meta = payload["metadata"]
            return cls(
                id=str(payload["id"]),
                name=str(payload["name"]),
                description=payload.get("description"),
                created_date=str(payload["created_date"]),
                last_modified=str(payload["last_modified"]),
                expires_at=str(payload["expires_at"]),
                template_id=payload.get("template_id"),
                template_name=payload.get("template_name"),
                data=dataset_from_dict(payload.get("data") or {}),
                modifications=tuple(
                    ScenarioModification(**{**m, "changes": tuple(m.get("changes", ()))})
                    for m in payload.get("modifications", ())
                ),
                metadata=ScenarioMetadata(**meta),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid scenario record: {exc}") from exc


class InMemoryScenarioStore:
    """Keeps scenarios, the active id and template usage in process memory."""

    def __init__(self) -> None:
        self._scenarios: Dict[str, Scenario] = {}
        self._active_id: Optional[str] = None
        self._template_usage: Dict[str, Dict[str, object]] = {}
        self._lock = threading.Lock()

    def load_scenarios(self) -> List[Scenario]:
        with self._lock:
            return list(self._scenarios.values())

    def save_scenarios(self, scenarios: List[Scenario]) -> None:
        with self._lock:
            self._scenarios = {s.id: s for s in scenarios}
        self._persist()

    def load_active_id(self) -> Optional[str]:
        with self._lock:
            return self._active_id

    def save_active_id(self, scenario_id: Optional[str]) -> None:
        with self._lock:
            self._active_id = scenario_id
        self._persist()

    def template_usage(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return copy.deepcopy(self._template_usage)

    def record_template_usage(self, template_id: str, used_at: str) -> None:
        with self._lock:
            entry = self._template_usage.setdefault(template_id, {"usage_count": 0, "last_used": None})
            entry["usage_count"] = int(entry["usage_count"]) + 1
            entry["last_used"] = used_at
        self._persist()

    def _persist(self) -> None:
        pass


class JsonFileScenarioStore(InMemoryScenarioStore):
    """Scenario store backed by one JSON file, rewritten atomically on change."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            raw = json.loads(self.path.read_text())
            if not isinstance(raw, dict):
                raise ValueError(f"scenario store {self.path} must contain a JSON object")
            scenarios = [Scenario.from_dict(item) for item in raw.get(STORAGE_KEYS["scenarios"], [])]
            self._scenarios = {s.id: s for s in scenarios}
            self._active_id = raw.get(STORAGE_KEYS["active_scenario"])
            self._template_usage = dict(raw.get(STORAGE_KEYS["templates"], {}))

    def _persist(self) -> None:
        with self._lock:
            payload = {
                STORAGE_KEYS["scenarios"]: [s.to_dict() for s in self._scenarios.values()],
                STORAGE_KEYS["active_scenario"]: self._active_id,
                STORAGE_KEYS["templates"]: copy.deepcopy(self._template_usage),
            }
        write_json_atomic(payload, self.path)


class LoggingNotifier:
    def notify(self, title: str, message: str, level: str = "info") -> None:
        log = logger.warning if level == "error" else logger.info
        log("%s: %s", title, message)


class LiveDataRepository:
    """Holds the live dataset; scenarios never write to it."""

    def __init__(self, dataset: Optional[Dataset] = None) -> None:
        self._dataset = dataset or Dataset()
        self._lock = threading.Lock()

    def get(self) -> Dataset:
        with self._lock:
            return self._dataset

    def replace(self, dataset: Dataset) -> None:
        with self._lock:
            self._dataset = dataset


@dataclass
class _WorkingSet:
    scenario_id: str
    data: Dataset
    pending_modifications: List[ScenarioModification] = field(default_factory=list)


class ScenarioManager:
    def __init__(
        self,
        live: LiveDataRepository,
        store: Optional[InMemoryScenarioStore] = None,
        notifier: Optional[LoggingNotifier] = None,
        config: Optional[PlanningConfig] = None,
        clock: Callable[[], datetime] = _now,
        templates: Tuple[ScenarioTemplate, ...] = BUILTIN_TEMPLATES,
    ) -> None:
        self._live = live
        self._store = store or InMemoryScenarioStore()
        self._notifier = notifier or LoggingNotifier()
        self._config = config or PlanningConfig()
        self._clock = clock
        self._templates = templates
        self._engine = ModificationEngine(clock=clock)
        self._working: Optional[_WorkingSet] = None
        self._lock = threading.RLock()
        active_id = self._store.load_active_id()
        if active_id:
            scenario = self._find(active_id)
            if scenario is None:
                logger.warning("stored active scenario %s no longer exists; starting on live data", active_id)
                self._store.save_active_id(None)
            else:
                self._working = _WorkingSet(scenario.id, scenario.data.snapshot())

    @property
    def is_live(self) -> bool:
        return self._working is None

    @property
    def active_scenario_id(self) -> Optional[str]:
        return self._working.scenario_id if self._working else None

    def list_scenarios(self) -> List[Scenario]:
        return sorted(self._store.load_scenarios(), key=lambda s: s.created_date, reverse=True)

    def list_templates(self) -> List[Dict[str, object]]:
        usage = self._store.template_usage()
        return [
            {
                "id": t.id,
                "name": t.name,
                "description": t.description,
                "category": t.category,
                "usage_count": usage.get(t.id, {}).get("usage_count", 0),
                "last_used": usage.get(t.id, {}).get("last_used"),
            }
            for t in self._templates
        ]

    def get_scenario(self, scenario_id: str) -> Scenario:
        scenario = self._find(scenario_id)
        if scenario is None:
            raise ScenarioNotFoundError(scenario_id)
        return scenario

    def current_data(self) -> Dataset:
        with self._lock:
            return self._working.data if self._working else self._live.get()

    def has_unsaved_changes(self) -> bool:
        with self._lock:
            if self._working is None:
                return False
            scenario = self._find(self._working.scenario_id)
            return scenario is None or scenario.data != self._working.data

    def _find(self, scenario_id: str) -> Optional[Scenario]:
        for scenario in self._store.load_scenarios():
            if scenario.id == scenario_id:
                return scenario
        return None

    def _put(self, scenario: Scenario) -> None:
        scenarios = [s for s in self._store.load_scenarios() if s.id != scenario.id]
        scenarios.append(scenario)
        self._store.save_scenarios(scenarios)

    def _new_scenario(
        self,
        name: str,
        description: Optional[str],
        data: Dataset,
        modifications: Tuple[ScenarioModification, ...] = (),
        template: Optional[ScenarioTemplate] = None,
    ) -> Scenario:
        now = self._clock()
        stamp = _iso(now)
        return Scenario(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            created_date=stamp,
            last_modified=stamp,
            expires_at=_iso(now + relativedelta(days=self._config.scenario_expiry_days)),
            template_id=template.id if template else None,
            template_name=template.name if template else None,
            data=data,
            modifications=modifications,
            metadata=ScenarioMetadata(
                created_from_live_state=True,
                live_state_snapshot_date=stamp,
                total_modifications=len(modifications),
                last_access_date=stamp,
            ),
        )

    def create_scenario(self, name: str, description: Optional[str] = None) -> Scenario:
        with self._lock:
            if not name or not name.strip():
                raise ValueError("scenario name is required")
            scenario = self._new_scenario(name.strip(), description, self._live.get().snapshot())
            self._put(scenario)
            logger.info("created scenario %s (%s)", scenario.id, scenario.name)
            self._notifier.notify("Scenario Created", f'Scenario "{scenario.name}" has been created successfully.')
            return scenario

    def create_scenario_from_template(
        self,
        template_id: str,
        parameters: Optional[Mapping[str, object]] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Scenario:
        with self._lock:
            template = get_template(template_id, self._templates)
            result = self._engine.apply_template(template, parameters or {}, self._live.get().snapshot())
            for warning in result.warnings:
                logger.warning("template %s: %s", template.id, warning)
            scenario = self._new_scenario(
                name or f"{template.name} Scenario",
                description or f"Created from {template.name} template",
                result.data,
                tuple(result.modifications),
                template,
            )
            self._put(scenario)
            self._store.record_template_usage(template.id, scenario.created_date)
            logger.info(
                "created scenario %s from template %s with %d modifications",
                scenario.id,
                template.id,
                len(result.modifications),
            )
            self._notifier.notify("Scenario Created", f'Scenario "{scenario.name}" created from template.')
            return scenario

    def switch_to_scenario(self, scenario_id: str) -> Scenario:
        with self._lock:
            scenario = self.get_scenario(scenario_id)
            touched = replace(
                scenario, metadata=replace(scenario.metadata, last_access_date=_iso(self._clock()))
            )
            self._put(touched)
            self._working = _WorkingSet(touched.id, touched.data.snapshot())
            self._store.save_active_id(touched.id)
            self._notifier.notify("Switched to Scenario", f'Now viewing scenario "{touched.name}".')
            return touched

    def switch_to_live(self) -> None:
        with self._lock:
            self._working = None
            self._store.save_active_id(None)
            self._notifier.notify("Switched to Live Data", "Now viewing live planning data.")

    def update_working_data(
        self, data: Dataset, modifications: Tuple[ScenarioModification, ...] = ()
    ) -> None:
        with self._lock:
            if self._working is None:
                raise NoActiveScenarioError("no active scenario to modify")
            self._working.data = data
            self._working.pending_modifications.extend(modifications)

    def apply_template_to_current(
        self, template_id: str, parameters: Optional[Mapping[str, object]] = None
    ) -> List[ScenarioModification]:
        with self._lock:
            if self._working is None:
                raise NoActiveScenarioError("no active scenario to modify")
            template = get_template(template_id, self._templates)
            result = self._engine.apply_template(template, parameters or {}, self._working.data)
            self.update_working_data(result.data, tuple(result.modifications))
            return result.modifications

    def save_current_scenario(self) -> Scenario:
        with self._lock:
            if self._working is None:
                raise NoActiveScenarioError("no active scenario to save")
            scenario = self.get_scenario(self._working.scenario_id)
            modifications = scenario.modifications + tuple(self._working.pending_modifications)
            saved = replace(
                scenario,
                data=self._working.data.snapshot(),
                last_modified=_iso(self._clock()),
                modifications=modifications,
                metadata=replace(scenario.metadata, total_modifications=len(modifications)),
            )
            self._put(saved)
            self._working.pending_modifications.clear()
            self._notifier.notify("Scenario Saved", f'Changes to "{saved.name}" have been saved.')
            return saved

    def discard_changes(self) -> None:
        with self._lock:
            if self._working is None:
                raise NoActiveScenarioError("no active scenario to revert")
            scenario = self.get_scenario(self._working.scenario_id)
            self._working = _WorkingSet(scenario.id, scenario.data.snapshot())
            self._notifier.notify("Changes Discarded", "All unsaved changes have been discarded.")

    def update_scenario(
        self, scenario_id: str, name: Optional[str] = None, description: Optional[str] = None
    ) -> Scenario:
        with self._lock:
            scenario = self.get_scenario(scenario_id)
            changes: Dict[str, object] = {"last_modified": _iso(self._clock())}
            if name is not None:
                if not name.strip():
                    raise ValueError("scenario name must not be empty")
                changes["name"] = name.strip()
            if description is not None:
                changes["description"] = description
            updated = replace(scenario, **changes)
            self._put(updated)
            return updated

    def delete_scenario(self, scenario_id: str) -> None:
        with self._lock:
            scenario = self.get_scenario(scenario_id)
            remaining = [s for s in self._store.load_scenarios() if s.id != scenario_id]
            self._store.save_scenarios(remaining)
            if self.active_scenario_id == scenario_id:
                self._working = None
                self._store.save_active_id(None)
            self._notifier.notify("Scenario Deleted", f'Scenario "{scenario.name}" has been deleted.')

    def cleanup_expired_scenarios(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            moment = now or self._clock()
            scenarios = self._store.load_scenarios()
            expired = [s for s in scenarios if s.is_expired(moment)]
            if not expired:
                return 0
            expired_ids = {s.id for s in expired}
            self._store.save_scenarios([s for s in scenarios if s.id not in expired_ids])
            if self.active_scenario_id in expired_ids:
                self._working = None
                self._store.save_active_id(None)
            logger.info("removed %d expired scenarios", len(expired))
            self._notifier.notify("Expired Scenarios Cleaned", f"Removed {len(expired)} expired scenarios.")
            return len(expired)

    def get_scenario_comparison(self, scenario_id: str) -> ScenarioComparison:
        with self._lock:
            scenario = self.get_scenario(scenario_id)
            data = self._working.data if self.active_scenario_id == scenario_id else scenario.data
            return compare_scenario(self._live.get(), data, self._config.currency_symbol)
