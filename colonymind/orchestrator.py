"""
Per-tick driver for the colony decision core.

Owns the budget monitor, the tiered cache, area intel and the population
planner, and passes them to each other explicitly. All dependencies (the host
adapter, the durable store, policies) are injected by the caller.

Each call to ``run_tick()``:
1. Samples the budget gauge and advances the recovery state machine
2. Refreshes every managed area's cached facts
3. Plans spawns per area (collapse cases always; otherwise gated at high
   priority and throttled by the current pressure level)
4. Records this tick's budget consumption
5. Prunes stale global memos and schedules (or runs) the batched write-back
6. Saves a plain-data snapshot of the whole core for the next tick
7. Invokes tick listeners
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .budget import BudgetMonitor, RecoveryPolicy
from .cache import CachePolicy, TieredCache
from .host import ColonyHost
from .intel import AreaIntel
from .logging_utils import DiagnosticLog, log_error, log_throttle
from .persistence import AreaStore, InMemoryAreaStore
from .population import PlannerPolicy, PopulationPlanner
from .schemas import CoreSnapshot, ManualOverride, Pressure, Priority, SpawnPlan


class TickReport(BaseModel):
    """Summary of one ``run_tick()`` call, handed to tick listeners."""

    tick: int
    recovering: bool = False
    recovery_factor: float = 1.0
    pressure: Pressure = Pressure.NONE
    plans: Dict[str, SpawnPlan] = Field(default_factory=dict)
    gated: List[str] = Field(default_factory=list, description="Areas whose planning was throttled")
    errors: Dict[str, str] = Field(default_factory=dict, description="Per-area failures")
    flush_deferred: bool = False
    flushed: int = 0


TickListener = Callable[[TickReport], None]


class ColonyOrchestrator:
    """Runs the decision core once per host tick."""

    def __init__(
        self,
        host: ColonyHost,
        store: Optional[AreaStore] = None,
        *,
        overrides: Optional[Dict[str, ManualOverride]] = None,
        recovery_policy: Optional[RecoveryPolicy] = None,
        cache_policy: Optional[CachePolicy] = None,
        planner_policy: Optional[PlannerPolicy] = None,
        tick_listeners: Optional[List[TickListener]] = None,
    ):
        """Build the core, resuming from the store's last snapshot if it has one.

        Args:
            host: Adapter over the host simulation
            store: Durable per-area store (defaults to an initialized InMemoryAreaStore)
            overrides: Optional operator-pinned targets keyed by area id
            recovery_policy: Budget monitor constants
            cache_policy: Cache TTL and priority constants
            planner_policy: Population planner constants
            tick_listeners: Callables invoked with each TickReport. Listener
                failures are logged and ignored.
        """
        self.host = host
        if store is None:
            store = InMemoryAreaStore()
            store.initialize()
        self.store = store
        self.overrides: Dict[str, ManualOverride] = dict(overrides or {})
        self.tick_listeners = tick_listeners or []

        snapshot = self._load_snapshot()

        # One rate limiter shared by every component so keys never collide
        self.diagnostics = DiagnosticLog(
            last_emitted=snapshot.diagnostics if snapshot is not None else None
        )
        self.monitor = BudgetMonitor(
            host,
            policy=recovery_policy,
            state=snapshot.monitor if snapshot is not None else None,
            diagnostics=self.diagnostics,
        )
        self.cache = TieredCache(
            host,
            store,
            monitor=self.monitor,
            policy=cache_policy,
            state=snapshot.cache if snapshot is not None else None,
            diagnostics=self.diagnostics,
        )
        self.intel = AreaIntel(host, self.cache, diagnostics=self.diagnostics)
        self.planner = PopulationPlanner(
            policy=planner_policy,
            state=snapshot.planner if snapshot is not None else None,
            diagnostics=self.diagnostics,
        )

    def _load_snapshot(self) -> Optional[CoreSnapshot]:
        try:
            return self.store.load_snapshot()
        except Exception as exc:
            log_error(f"[Core] Could not restore snapshot, starting fresh: {exc}")
            return None

    def set_override(self, area_id: str, override: Optional[ManualOverride]) -> None:
        """Pin (or with None, unpin) targets for an area."""
        if override is None:
            self.overrides.pop(area_id, None)
        else:
            self.overrides[area_id] = override

    def _area_ids(self) -> List[str]:
        try:
            return list(self.host.area_ids())
        except Exception as exc:
            log_error(f"[Core] Area enumeration failed: {exc}")
            return []

    def run_tick(self) -> TickReport:
        """Run the decision core for the current host tick. Never raises."""

        tick = self.cache.current_tick()
        report = TickReport(tick=tick)

        # 1. Budget first: every later step consults the gates it sets
        self.monitor.update()
        report.recovering = self.monitor.recovering
        report.recovery_factor = self.monitor.recovery_factor()
        report.pressure = self.monitor.pressure()

        # 2-3. Areas are independent; one failing area never aborts the tick
        for area_id in self._area_ids():
            try:
                self.intel.refresh(area_id)
                facts = self.intel.area_facts(area_id)
                override = self.overrides.get(area_id)

                tier = Priority.CRITICAL if self.planner.in_collapse(facts) else Priority.HIGH
                if not self.monitor.should_run(tier):
                    report.gated.append(area_id)
                    continue

                report.plans[area_id] = self.planner.plan(
                    area_id, facts, override, tick=tick, pressure=report.pressure
                )
            except Exception as exc:
                report.errors[area_id] = str(exc)
                self.diagnostics.emit(
                    f"core.area.{area_id}",
                    f"[Core] Area {area_id} failed at tick {tick}: {exc}",
                    tick=tick,
                    sink=log_error,
                )

        if report.gated:
            self.diagnostics.emit(
                "core.gated",
                f"[Core] Planning throttled for {len(report.gated)} area(s); "
                f"operations: {self.monitor.operations_status()}",
                tick=tick,
                sink=log_throttle,
            )

        # 4. Consumption so far this tick feeds the low-usage override
        try:
            self.monitor.record_usage(self.host.usage())
        except Exception as exc:
            log_error(f"[Core] Usage reading failed: {exc}")

        # 5. Write-back runs after the host's post-tick work when possible
        self.cache.prune()
        if self.cache.schedule_flush():
            report.flush_deferred = True
        else:
            report.flushed = self.cache.flush()

        # 6. Snapshot for the next tick
        snapshot = self.snapshot()
        if report.flush_deferred:
            # The scheduled flush writes these areas once the host's tick ends
            snapshot.cache = snapshot.cache.model_copy(
                update={"dirty": [], "flush_scheduled_tick": None}
            )
        try:
            self.store.save_snapshot(snapshot)
        except Exception as exc:
            log_error(f"[Core] Snapshot save failed at tick {tick}: {exc}")

        # 7. Listener failures are logged but don't abort the tick
        for listener in self.tick_listeners:
            try:
                listener(report)
            except Exception as exc:
                log_error(f"[Core] Tick listener failed: {exc}")

        return report

    def snapshot(self) -> CoreSnapshot:
        """The whole core as plain data."""

        return CoreSnapshot(
            tick=self.cache.current_tick(),
            monitor=self.monitor.state,
            cache=self.cache.state,
            planner=self.planner.state,
            diagnostics=dict(self.diagnostics.last_emitted),
        )

    def status_report(self) -> str:
        return self.monitor.status_report()
