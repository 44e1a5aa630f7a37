"""Per-area intelligence: keeps each area's cached facts warm.

``AreaIntel.refresh`` runs once per area per tick. It mirrors the cheap,
always-fresh readings (energy, progression stage, role counts), asks the cache
for every surveyed fact category (the cache decides whether a survey actually
runs this tick), and derives the area's work priorities. ``area_facts`` then
assembles the planner's inputs purely from what the cache holds.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .cache import TieredCache
from .host import ColonyHost
from .logging_utils import DiagnosticLog, log_error
from .schemas import (
    AreaFacts,
    ConstructionBacklog,
    FactCategory,
    Priority,
    RepairBacklog,
    RoleCensus,
    SourceLayout,
    SourceStatus,
    ThreatStatus,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

ROLE_COUNTS_KEY = "role_counts"


class AreaIntel:
    """Refreshes cached facts for managed areas and derives planner inputs."""

    def __init__(
        self,
        host: ColonyHost,
        cache: TieredCache,
        diagnostics: Optional[DiagnosticLog] = None,
    ):
        self.host = host
        self.cache = cache
        self.diagnostics = diagnostics or cache.diagnostics
        # Last tick each area was refreshed (process-local, rebuilt every tick)
        self._refreshed: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Role counts (one pass over all units per tick, shared by all areas)
    # ------------------------------------------------------------------

    def _count_units(self) -> Dict[str, Any]:
        censuses: Dict[str, RoleCensus] = {}
        for unit in self.host.list_units():
            census = censuses.setdefault(unit.home_area, RoleCensus())
            census.counts[unit.role] = census.counts.get(unit.role, 0) + 1
            census.work_parts[unit.role] = census.work_parts.get(unit.role, 0) + unit.work_parts
            if unit.ticks_to_live is not None:
                census.ticks_to_live.setdefault(unit.role, []).append(unit.ticks_to_live)
        return {
            area_id: census.model_dump(mode="json")
            for area_id, census in censuses.items()
        }

    def census(self, area_id: str) -> RoleCensus:
        """Return role counts for an area, computed at most once per tick for all areas."""

        counts = self.cache.memo(ROLE_COUNTS_KEY, self._count_units)
        raw = counts.get(area_id) if isinstance(counts, dict) else None
        if raw is None:
            return RoleCensus()
        return RoleCensus.model_validate(raw)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def _surveys(self, area_id: str) -> Dict[FactCategory, Callable[[], Any]]:
        host = self.host
        return {
            FactCategory.ENERGY_SOURCES: lambda: host.survey_energy_sources(area_id),
            FactCategory.DELIVERY_TARGETS: lambda: host.survey_delivery_targets(area_id),
            FactCategory.ACTIVE_SOURCES: lambda: host.survey_active_sources(area_id),
            FactCategory.THREATS: lambda: host.survey_threats(area_id),
            FactCategory.CONSTRUCTION_BACKLOG: lambda: host.survey_construction(area_id),
            FactCategory.REPAIR_BACKLOG: lambda: host.survey_repairs(area_id),
            FactCategory.SOURCE_LAYOUT: lambda: host.survey_layout(area_id),
        }

    def refresh(self, area_id: str) -> None:
        """Bring an area's cache up to date for this tick. Never raises."""

        tick = self.cache.current_tick()
        if self._refreshed.get(area_id) == tick:
            return
        self._refreshed[area_id] = tick

        try:
            available, capacity = self.host.energy(area_id)
            self.cache.mirror(
                area_id,
                energy_available=int(available),
                energy_capacity=int(capacity),
                stage=int(self.host.stage(area_id)),
            )
            self.cache.mirror(area_id, role_counts=self.census(area_id))

            for category, survey in self._surveys(area_id).items():
                self.cache.get(area_id, category, survey)

            construction = self._load(area_id, FactCategory.CONSTRUCTION_BACKLOG, ConstructionBacklog)
            self.cache.mirror(
                area_id,
                construction_sites=construction.count,
                construction_site_ids=list(construction.site_ids),
                sites_by_type=dict(construction.by_type),
                priorities={
                    name: tier.value for name, tier in self.priorities(area_id).items()
                },
            )
        except Exception as exc:
            self.diagnostics.emit(
                f"intel.refresh.{area_id}",
                f"[Intel] Error refreshing area {area_id}: {exc}",
                tick=tick,
                sink=log_error,
            )
            mirror = self.cache.area(area_id).mirror
            if "role_counts" not in mirror:
                self.cache.mirror(area_id, role_counts=RoleCensus())
            mirror.setdefault("energy_available", 0)
            mirror.setdefault("energy_capacity", 0)

    def _load(self, area_id: str, category: FactCategory, model: Type[ModelT]) -> ModelT:
        return model.model_validate(self.cache.get(area_id, category))

    def priorities(self, area_id: str) -> Dict[str, Priority]:
        """Derive coarse work priorities for an area from cached facts."""

        stage = self.cache.recall(area_id, "stage", 1)
        construction = self._load(area_id, FactCategory.CONSTRUCTION_BACKLOG, ConstructionBacklog)
        repairs = self._load(area_id, FactCategory.REPAIR_BACKLOG, RepairBacklog)
        threats = self._load(area_id, FactCategory.THREATS, ThreatStatus)
        return {
            "upgrade": Priority.HIGH if stage < 2 else Priority.MEDIUM,
            "build": Priority.HIGH if construction.count > 0 else Priority.LOW,
            "repair": Priority.MEDIUM if repairs.count > 0 else Priority.LOW,
            "defend": Priority.HIGH if threats.hostile_count > 0 else Priority.LOW,
        }

    # ------------------------------------------------------------------
    # Planner inputs
    # ------------------------------------------------------------------

    def area_facts(self, area_id: str) -> AreaFacts:
        """Assemble planner inputs from cached facts only.

        Facts that were never computed fall back to defaults and mark the
        result incomplete.
        """

        complete = True

        def load(category: FactCategory, model: Type[ModelT]) -> ModelT:
            nonlocal complete
            entry = self.cache.peek(area_id, category)
            if entry is None:
                complete = False
                return model()
            try:
                return model.model_validate(entry.value)
            except ValidationError as exc:
                complete = False
                log_error(f"[Intel] Discarding malformed {category.value} for {area_id}: {exc}")
                return model()

        raw_census = self.cache.recall(area_id, "role_counts")
        try:
            census = RoleCensus.model_validate(raw_census) if raw_census is not None else None
        except ValidationError:
            census = None
        if census is None:
            complete = False
            census = RoleCensus()

        layout = load(FactCategory.SOURCE_LAYOUT, SourceLayout)
        sources = load(FactCategory.ACTIVE_SOURCES, SourceStatus)
        construction = load(FactCategory.CONSTRUCTION_BACKLOG, ConstructionBacklog)
        repairs = load(FactCategory.REPAIR_BACKLOG, RepairBacklog)
        threats = load(FactCategory.THREATS, ThreatStatus)

        source_count = len(layout.sources) or len(sources.source_ids) or 1

        return AreaFacts(
            area_id=area_id,
            census=census,
            energy_available=int(self.cache.recall(area_id, "energy_available", 0) or 0),
            energy_capacity=int(self.cache.recall(area_id, "energy_capacity", 0) or 0),
            source_count=source_count,
            average_distance=layout.average_distance,
            storage=layout.storage,
            controller_containers=layout.controller_containers,
            stage=int(self.cache.recall(area_id, "stage", 1) or 1),
            construction_backlog=construction.count,
            repair_backlog=repairs.count,
            critical_repairs=len(repairs.critical_ids),
            hostiles=threats.hostile_count,
            complete=complete,
        )
