"""Tiered per-area state cache with deferred write-back.

The cache is a pure memo: it never knows how a fact is computed. Callers hand
it a ``compute`` callable and the cache decides whether the stored value is
still fresh, whether the budget monitor allows recomputing it at the fact's
priority tier, and what to answer when recomputation is not possible.

Each fact category has a fixed time-to-live. Structural categories (construction
and repair backlogs, source layout) stretch their TTL automatically when the
budget is under pressure and in early progression stages, where change is rare.

Writes land in the in-process state immediately so same-tick readers see them.
Propagation to the durable store is deferred to a single batched ``flush()``
per tick, run from the host's post-tick hook when one exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Union

from pydantic import BaseModel

from .budget import BudgetMonitor
from .host import ColonyHost
from .logging_utils import DiagnosticLog, log_deterministic, log_error
from .persistence import AreaRecord, AreaStore
from .schemas import (
    AreaState,
    CacheEntry,
    CacheState,
    ConstructionBacklog,
    DeliveryTargets,
    EnergySources,
    FactCategory,
    Pressure,
    Priority,
    RepairBacklog,
    SourceLayout,
    SourceStatus,
    ThreatStatus,
)


def _default_ttls() -> Dict[FactCategory, int]:
    return {
        FactCategory.ROLE_COUNTS: 1,
        FactCategory.ENERGY_SOURCES: 3,
        FactCategory.DELIVERY_TARGETS: 3,
        FactCategory.ACTIVE_SOURCES: 5,
        FactCategory.THREATS: 5,
        FactCategory.CONSTRUCTION_BACKLOG: 10,
        FactCategory.REPAIR_BACKLOG: 10,
        FactCategory.SOURCE_LAYOUT: 50,
    }


def _default_priorities() -> Dict[FactCategory, Priority]:
    return {
        FactCategory.ROLE_COUNTS: Priority.CRITICAL,
        FactCategory.ENERGY_SOURCES: Priority.HIGH,
        FactCategory.DELIVERY_TARGETS: Priority.HIGH,
        FactCategory.THREATS: Priority.HIGH,
        FactCategory.ACTIVE_SOURCES: Priority.MEDIUM,
        FactCategory.CONSTRUCTION_BACKLOG: Priority.MEDIUM,
        FactCategory.REPAIR_BACKLOG: Priority.MEDIUM,
        FactCategory.SOURCE_LAYOUT: Priority.LOW,
    }


def _default_pressure_scale() -> Dict[Pressure, float]:
    return {
        Pressure.NONE: 1.0,
        Pressure.ELEVATED: 2.0,
        Pressure.HIGH: 2.5,
        Pressure.CRITICAL: 5.0,
    }


def _default_durable_fields() -> Dict[FactCategory, str]:
    return {
        FactCategory.ENERGY_SOURCES: "energy_sources",
        FactCategory.ACTIVE_SOURCES: "active_sources",
        FactCategory.CONSTRUCTION_BACKLOG: "construction_backlog",
        FactCategory.REPAIR_BACKLOG: "repair_targets",
    }


@dataclass(frozen=True)
class CachePolicy:
    """Fixed TTL and priority policy per fact category."""

    ttls: Dict[FactCategory, int] = field(default_factory=_default_ttls)
    priorities: Dict[FactCategory, Priority] = field(default_factory=_default_priorities)
    structural: FrozenSet[FactCategory] = frozenset(
        {
            FactCategory.CONSTRUCTION_BACKLOG,
            FactCategory.REPAIR_BACKLOG,
            FactCategory.SOURCE_LAYOUT,
        }
    )
    pressure_scale: Dict[Pressure, float] = field(default_factory=_default_pressure_scale)
    early_stage: int = 2
    early_stage_scale: float = 1.5
    max_ttl: int = 500
    # Categories copied to the durable store on flush, and the field name used
    durable_fields: Dict[FactCategory, str] = field(default_factory=_default_durable_fields)


# Safe answer per category when nothing is known yet
_DEFAULT_MODELS: Dict[FactCategory, type[BaseModel]] = {
    FactCategory.ENERGY_SOURCES: EnergySources,
    FactCategory.DELIVERY_TARGETS: DeliveryTargets,
    FactCategory.ACTIVE_SOURCES: SourceStatus,
    FactCategory.THREATS: ThreatStatus,
    FactCategory.CONSTRUCTION_BACKLOG: ConstructionBacklog,
    FactCategory.REPAIR_BACKLOG: RepairBacklog,
    FactCategory.SOURCE_LAYOUT: SourceLayout,
}


def default_value(category: FactCategory) -> Any:
    """Return the documented safe default for a category (zero counts, empty backlog)."""

    model = _DEFAULT_MODELS.get(category)
    if model is None:
        return {}
    return model().model_dump(mode="json")


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


@dataclass
class CacheStats:
    """Per-process counters (not part of the snapshot)."""

    hits: int = 0
    recomputes: int = 0
    deferred: int = 0
    fallbacks: int = 0
    flushes: int = 0


class TieredCache:
    """Per-area multi-TTL memo with a global once-per-tick memo and batched write-back."""

    def __init__(
        self,
        host: ColonyHost,
        store: AreaStore,
        monitor: Optional[BudgetMonitor] = None,
        policy: Optional[CachePolicy] = None,
        state: Optional[CacheState] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ):
        self.host = host
        self.store = store
        self.monitor = monitor
        self.policy = policy or CachePolicy()
        self.state = state or CacheState()
        self.diagnostics = diagnostics or DiagnosticLog()
        self.stats = CacheStats()
        self._last_tick = 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def current_tick(self) -> int:
        try:
            self._last_tick = int(self.host.tick())
        except Exception as exc:
            log_error(f"[Cache] Tick counter unavailable, reusing {self._last_tick}: {exc}")
        return self._last_tick

    def area(self, area_id: str) -> AreaState:
        """Return the area's state, creating it on first reference."""

        area = self.state.areas.get(area_id)
        if area is None:
            area = AreaState(area_id=area_id)
            self.state.areas[area_id] = area
        return area

    def _mark_dirty(self, area_id: str) -> None:
        if area_id not in self.state.dirty:
            self.state.dirty.append(area_id)

    def ttl_for(self, area_id: str, category: FactCategory) -> int:
        """Policy TTL for a category, stretched for structural facts under pressure."""

        policy = self.policy
        base = policy.ttls[category]
        if category not in policy.structural:
            return base

        pressure = self.monitor.pressure() if self.monitor is not None else Pressure.NONE
        scaled = base * policy.pressure_scale.get(pressure, 1.0)

        stage = self.area(area_id).mirror.get("stage", 1)
        if isinstance(stage, int) and stage <= policy.early_stage:
            scaled *= policy.early_stage_scale

        return max(1, min(int(round(scaled)), policy.max_ttl))

    def _fallback(self, area_id: str, category: FactCategory, entry: Optional[CacheEntry]) -> Any:
        self.stats.fallbacks += 1
        if entry is not None:
            return entry.value
        return default_value(category)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def peek(self, area_id: str, category: FactCategory) -> Optional[CacheEntry]:
        area = self.state.areas.get(area_id)
        if area is None:
            return None
        return area.entries.get(category)

    def is_fresh(self, area_id: str, category: FactCategory) -> bool:
        entry = self.peek(area_id, category)
        return entry is not None and entry.is_fresh(self.current_tick())

    def get(
        self,
        area_id: str,
        category: FactCategory,
        compute: Optional[Callable[[], Any]] = None,
        *,
        priority: Optional[Union[Priority, str]] = None,
    ) -> Any:
        """Return the freshest known value for ``(area_id, category)``.

        A fresh entry is returned as-is. A stale or missing entry is recomputed
        via ``compute`` when one is given and the budget monitor permits work at
        the category's tier (or ``priority``). Otherwise, or when ``compute``
        fails, the last known value or the category's safe default is returned.
        """

        tick = self.current_tick()
        entry = self.peek(area_id, category)
        if entry is not None and entry.is_fresh(tick):
            self.stats.hits += 1
            return entry.value

        if compute is None:
            if entry is not None:
                return entry.value
            return default_value(category)

        tier = self.policy.priorities[category]
        if priority is not None:
            try:
                tier = Priority(priority)
            except ValueError:
                log_error(f"[Cache] Unknown priority {priority!r}; treating as low")
                tier = Priority.LOW
        if self.monitor is not None and not self.monitor.should_run(tier):
            self.stats.deferred += 1
            self.diagnostics.emit(
                f"cache.deferred.{category.value}",
                f"[Cache] Serving stale {category.value} for {area_id}: "
                f"{tier.value} work throttled",
                tick=tick,
                sink=log_deterministic,
            )
            return self._fallback(area_id, category, entry)

        try:
            value = compute()
        except Exception as exc:
            self.diagnostics.emit(
                f"cache.error.{category.value}.{area_id}",
                f"[Cache] Failed to compute {category.value} for {area_id}: {exc}",
                tick=tick,
                sink=log_error,
            )
            return self._fallback(area_id, category, entry)

        if value is None:
            self.diagnostics.emit(
                f"cache.empty.{category.value}.{area_id}",
                f"[Cache] {category.value} for {area_id} returned nothing; using last known value",
                tick=tick,
                sink=log_error,
            )
            return self._fallback(area_id, category, entry)

        self.stats.recomputes += 1
        return self.put(area_id, category, value)

    def put(
        self,
        area_id: str,
        category: FactCategory,
        value: Any,
        ttl: Optional[int] = None,
    ) -> Any:
        """Overwrite the entry, stamped with the current tick. Returns the stored value.

        Pydantic models are stored as their JSON-mode dump so the cache only
        ever holds plain data.
        """

        tick = self.current_tick()
        if ttl is None:
            ttl = self.ttl_for(area_id, category)
        stored = _plain(value)
        self.area(area_id).entries[category] = CacheEntry(
            value=stored,
            computed_at=tick,
            ttl=max(1, int(ttl)),
        )
        self._mark_dirty(area_id)
        return stored

    def memo(
        self,
        key: str,
        compute: Callable[[], Any],
        *,
        category: FactCategory = FactCategory.ROLE_COUNTS,
    ) -> Any:
        """Global (not area-scoped) memo: ``compute`` runs at most once per TTL process-wide."""

        tick = self.current_tick()
        entry = self.state.globals.get(key)
        if entry is not None and entry.is_fresh(tick):
            self.stats.hits += 1
            return entry.value

        tier = self.policy.priorities[category]
        if self.monitor is not None and not self.monitor.should_run(tier):
            self.stats.deferred += 1
            return entry.value if entry is not None else default_value(category)

        try:
            value = compute()
        except Exception as exc:
            self.diagnostics.emit(
                f"cache.error.{key}",
                f"[Cache] Failed to compute global {key}: {exc}",
                tick=tick,
                sink=log_error,
            )
            self.stats.fallbacks += 1
            return entry.value if entry is not None else default_value(category)

        stored = _plain(value)
        self.state.globals[key] = CacheEntry(
            value=stored,
            computed_at=tick,
            ttl=self.policy.ttls[category],
        )
        self.stats.recomputes += 1
        return stored

    def mirror(self, area_id: str, **fields: Any) -> None:
        """Write always-fresh facts for an area (no TTL, overwritten every tick)."""

        area = self.area(area_id)
        for name, value in fields.items():
            area.mirror[name] = _plain(value)
        self._mark_dirty(area_id)

    def recall(self, area_id: str, name: str, default: Any = None) -> Any:
        """Read a mirrored field, falling back to the durable store."""

        area = self.state.areas.get(area_id)
        if area is not None and name in area.mirror:
            return area.mirror[name]
        try:
            return self.store.read_area(area_id).get(name, default)
        except Exception as exc:
            log_error(f"[Cache] Durable read failed for {area_id}.{name}: {exc}")
            return default

    # ------------------------------------------------------------------
    # Write-back
    # ------------------------------------------------------------------

    def schedule_flush(self) -> bool:
        """Register ``flush`` with the host's post-tick hook once per tick.

        Returns True when the flush is (already) scheduled; False means the
        host has no hook and the caller must call ``flush()`` itself.
        """

        tick = self.current_tick()
        if self.state.flush_scheduled_tick == tick:
            return True
        try:
            accepted = self.host.register_post_tick(self.flush)
        except Exception as exc:
            log_error(f"[Cache] Post-tick hook registration failed: {exc}")
            accepted = False
        if accepted:
            self.state.flush_scheduled_tick = tick
        return accepted

    def _record(self, area: AreaState) -> AreaRecord:
        record: AreaRecord = dict(area.mirror)
        for category, name in self.policy.durable_fields.items():
            entry = area.entries.get(category)
            if entry is None:
                continue
            record[name] = entry.value
            record[f"{name}_time"] = entry.computed_at
        return record

    def flush(self) -> int:
        """Write every dirty area to the durable store in one batch.

        Returns the number of areas written. A failed write leaves the areas
        dirty so the next flush retries them.
        """

        self.state.flush_scheduled_tick = None
        if not self.state.dirty:
            return 0

        records = {
            area_id: self._record(self.area(area_id))
            for area_id in self.state.dirty
        }
        try:
            self.store.write_areas(records)
        except Exception as exc:
            log_error(f"[Cache] Durable write of {len(records)} area(s) failed: {exc}")
            return 0

        self.state.dirty = []
        self.stats.flushes += 1
        return len(records)

    def prune(self) -> int:
        """Drop stale global memo entries. Returns how many were removed."""

        tick = self.current_tick()
        stale = [key for key, entry in self.state.globals.items() if not entry.is_fresh(tick)]
        for key in stale:
            del self.state.globals[key]
        return len(stale)
