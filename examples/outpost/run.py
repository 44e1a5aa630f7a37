"""
Outpost: a toy colony driven by the colonymind decision core.

A tiny deterministic host simulates a few areas: harvesters turn source
regeneration into energy, every tick's work drains the budget gauge, and the
core's spawn plans are carried out by the host. Run with a low --refill to
watch the monitor open a recovery episode and throttle planning.

Run: python examples/outpost/run.py --ticks 400 --refill 30
"""

import argparse
import random
from typing import Callable, Dict, List, Optional, Tuple

from colonymind import (
    ColonyHost,
    ColonyOrchestrator,
    JsonAreaStore,
    InMemoryAreaStore,
    ManualOverride,
    Role,
    TickReport,
    UnitInfo,
)
from colonymind.budget import RecoveryPolicy
from colonymind.schemas import BodyPart, ConstructionBacklog, SourceLayout, SourceSpot

UNIT_LIFETIME = 1500
SOURCE_REGEN = 10


class OutpostHost(ColonyHost):
    """Deterministic in-process world for demonstrating the core."""

    def __init__(self, areas: List[str], *, refill: float, seed: int):
        self.rng = random.Random(seed)
        self.now = 0
        self.refill = refill
        self.gauge = 10000.0
        self.spent = 0.0
        self.areas = areas
        self.units: List[UnitInfo] = []
        self.energy_store: Dict[str, int] = {area: 300 for area in areas}
        self.capacity: Dict[str, int] = {area: 300 for area in areas}
        self.sites: Dict[str, int] = {area: self.rng.randint(0, 6) for area in areas}
        self.hooks: List[Callable[[], None]] = []
        self.spawned = 0

    # Ambient readings -------------------------------------------------

    def tick(self) -> int:
        return self.now

    def budget(self) -> Optional[float]:
        return self.gauge

    def usage(self) -> Optional[float]:
        return min(self.spent / 20.0, 2.0)

    def area_ids(self) -> List[str]:
        return list(self.areas)

    def list_units(self) -> List[UnitInfo]:
        self.spent += 0.2 * len(self.units)
        return list(self.units)

    def energy(self, area_id: str) -> Tuple[int, int]:
        return self.energy_store[area_id], self.capacity[area_id]

    def stage(self, area_id: str) -> int:
        return 1 + self.capacity[area_id] // 400

    # Surveys ----------------------------------------------------------

    def survey_construction(self, area_id: str) -> ConstructionBacklog:
        self.spent += 1.0
        return ConstructionBacklog(site_ids=[f"{area_id}-site{i}" for i in range(self.sites[area_id])])

    def survey_layout(self, area_id: str) -> SourceLayout:
        self.spent += 3.0
        return SourceLayout(
            sources={"a": SourceSpot(x=8, y=10), "b": SourceSpot(x=40, y=36)},
            average_distance=24.0,
        )

    def register_post_tick(self, callback: Callable[[], None]) -> bool:
        self.hooks.append(callback)
        return True

    # World step -------------------------------------------------------

    def apply(self, report: TickReport) -> None:
        """Carry out spawn plans, age units and advance the world one tick."""

        for area_id, plan in report.plans.items():
            if not plan.should_spawn or plan.energy > self.energy_store[area_id]:
                continue
            self.energy_store[area_id] -= plan.energy
            self.spawned += 1
            self.units.append(
                UnitInfo(
                    name=f"{plan.role.value}{self.spawned}",
                    role=plan.role,
                    home_area=area_id,
                    work_parts=plan.body.count(BodyPart.WORK),
                    ticks_to_live=UNIT_LIFETIME,
                )
            )

        for area_id in self.areas:
            work = sum(
                unit.work_parts
                for unit in self.units
                if unit.home_area == area_id and unit.role is Role.HARVESTER
            )
            income = min(work * 2, 2 * SOURCE_REGEN)
            self.energy_store[area_id] = min(self.energy_store[area_id] + income, self.capacity[area_id])
            if self.sites[area_id] and self.rng.random() < 0.05:
                self.sites[area_id] -= 1
                self.capacity[area_id] += 50

        survivors = []
        for unit in self.units:
            remaining = (unit.ticks_to_live or UNIT_LIFETIME) - 1
            if remaining > 0:
                survivors.append(unit.model_copy(update={"ticks_to_live": remaining}))
        self.units = survivors

        for hook in self.hooks:
            hook()
        self.hooks = []

        self.spent += 0.5 * len(self.units)
        self.gauge = max(0.0, min(10000.0, self.gauge + self.refill - self.spent))
        self.spent = 0.0
        self.now += 1


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a toy colony with the colonymind core")
    parser.add_argument("--ticks", type=int, default=300, help="Ticks to simulate")
    parser.add_argument("--areas", type=int, default=2, help="Number of managed areas")
    parser.add_argument("--refill", type=float, default=40.0, help="Budget refill per tick")
    parser.add_argument("--seed", type=int, default=7, help="Random seed for construction backlogs")
    parser.add_argument("--state-dir", default=None, help="Persist state as JSON in this directory")
    parser.add_argument(
        "--pin-builders",
        type=int,
        default=None,
        help="Operator override for the builder target in every area",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    areas = [f"W{index + 1}N1" for index in range(args.areas)]
    host = OutpostHost(areas, refill=args.refill, seed=args.seed)

    store = JsonAreaStore(args.state_dir) if args.state_dir else InMemoryAreaStore()
    store.initialize()

    overrides = None
    if args.pin_builders is not None:
        overrides = {area: ManualOverride(targets={Role.BUILDER: args.pin_builders}) for area in areas}

    core = ColonyOrchestrator(
        host,
        store,
        overrides=overrides,
        recovery_policy=RecoveryPolicy(budget_max=10000),
    )

    try:
        for _ in range(args.ticks):
            report = core.run_tick()
            host.apply(report)
            if report.tick % 50 == 0:
                counts: Dict[str, int] = {}
                for unit in host.units:
                    counts[unit.role.value] = counts.get(unit.role.value, 0) + 1
                print(
                    f"=== Tick {report.tick}: budget {host.gauge:.0f}, "
                    f"factor {report.recovery_factor:.2f}, units {counts} ==="
                )

        print()
        print(core.status_report())
    finally:
        store.close()


if __name__ == "__main__":
    main()
