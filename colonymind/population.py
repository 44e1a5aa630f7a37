"""Population planner: how many workers of each role, and which one next.

Targets are a pure function of an area's cached facts. Choosing the next role
runs in three steps:

1. Hard floor. Any role with no units but a target of at least one is returned
   immediately, in the fixed order harvester, hauler, upgrader, builder. This is
   what pulls an area back from total collapse.
2. Cap. Nothing is chosen once the area's total meets its target total.
3. Weighted deficit. Each role below target scores
   ``(target - current) / target * 100`` scaled by role-specific weights, and
   the highest score wins (ties go to the fixed order).

Spawn timing trades urgency against accumulated energy: urgent roles spawn on
less energy and wait less. Collapse cases bypass the delay entirely.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .logging_utils import DiagnosticLog, log_deterministic, log_throttle
from .schemas import (
    ROLE_ORDER,
    AreaFacts,
    BodyPart,
    DeficitItem,
    ManualOverride,
    PlannerState,
    PopulationTarget,
    Pressure,
    Role,
    RoleCensus,
    SpawnDecision,
    SpawnPlan,
    SpawnWait,
)

Counts = Union[RoleCensus, Mapping[Role, int]]


def _default_body_ratios() -> Dict[Role, Tuple[int, int, int]]:
    # WORK : CARRY : MOVE
    return {
        Role.HARVESTER: (2, 1, 1),
        Role.HAULER: (0, 2, 2),
        Role.UPGRADER: (1, 1, 1),
        Role.BUILDER: (2, 2, 2),
    }


def _default_part_costs() -> Dict[BodyPart, int]:
    return {BodyPart.WORK: 100, BodyPart.CARRY: 50, BodyPart.MOVE: 50}


@dataclass(frozen=True)
class PlannerPolicy:
    """Tunable constants for targets, role weighting, spawn timing and bodies."""

    # Harvesters
    regen_per_source: int = 10
    yield_per_work: int = 2
    harvester_cap: int = 6
    harvester_set_cost: int = 250
    work_per_set: int = 2
    max_work_parts: int = 32

    # Haulers
    energy_per_hauler: int = 50
    reference_distance: float = 15.0
    stage_factors: Tuple[Tuple[int, float], ...] = ((2, 1.0), (4, 1.2))
    late_stage_factor: float = 1.5

    # Builders and upgraders
    builder_baseline: int = 1
    builder_with_backlog: int = 2
    builder_large_backlog: int = 3
    large_backlog: int = 5
    upgrader_target: int = 1

    hard_floor: int = 1

    # Deficit weights
    harvester_weight: float = 1.5
    hauler_weight: float = 1.3
    builder_construction_weight: float = 1.3
    builder_repair_weight: float = 1.5
    upgrader_construction_weight: float = 0.7
    upgrader_construction_stage: int = 3
    upgrader_late_weight: float = 1.2
    upgrader_late_stage: int = 7

    # Urgency
    unit_lifetime: int = 1500
    deficit_weight: float = 0.6
    expiry_weight: float = 0.4

    # Spawn timing
    base_fraction: float = 0.8
    urgency_discount: float = 0.5
    min_spawn_cost: int = 250
    base_wait: float = 50.0
    wait_discount: float = 0.8

    # Under high or critical budget pressure (collapse recovery exempt)
    pressure_max_total: int = 5
    pressure_energy_fraction: float = 0.7

    # Bodies
    body_ratios: Dict[Role, Tuple[int, int, int]] = field(default_factory=_default_body_ratios)
    part_costs: Dict[BodyPart, int] = field(default_factory=_default_part_costs)
    max_parts: int = 50
    min_body_cost: int = 250

    def stage_factor(self, stage: int) -> float:
        for ceiling, factor in self.stage_factors:
            if stage <= ceiling:
                return factor
        return self.late_stage_factor


def _count(current: Counts, role: Role) -> int:
    if isinstance(current, RoleCensus):
        return current.count(role)
    return int(current.get(role, 0))


def _total(current: Counts) -> int:
    return sum(_count(current, role) for role in ROLE_ORDER)


def body_cost(body: Sequence[BodyPart], costs: Optional[Mapping[BodyPart, int]] = None) -> int:
    costs = costs or _default_part_costs()
    return sum(costs[part] for part in body)


class PopulationPlanner:
    """Derives per-role targets and decides what an area should produce next."""

    def __init__(
        self,
        policy: Optional[PlannerPolicy] = None,
        state: Optional[PlannerState] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ):
        self.policy = policy or PlannerPolicy()
        self.state = state or PlannerState()
        self.diagnostics = diagnostics or DiagnosticLog()
        self._bodies: Dict[Tuple[Role, int], Tuple[BodyPart, ...]] = {}

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def harvester_target(self, facts: AreaFacts) -> int:
        """Harvesters needed to match source regeneration with WORK parts."""

        policy = self.policy
        current = facts.census.count(Role.HARVESTER)
        work_parts = facts.census.work_parts.get(Role.HARVESTER, 0)

        required = facts.source_count * policy.regen_per_source
        realized = work_parts * policy.yield_per_work
        if realized >= required:
            return max(facts.source_count, current)

        parts_needed = math.ceil(required / policy.yield_per_work)
        sets = facts.energy_capacity // policy.harvester_set_cost
        parts_per_new = max(1, min(sets * policy.work_per_set, policy.max_work_parts))
        additional = math.ceil((parts_needed - work_parts) / parts_per_new)
        return min(current + additional, policy.harvester_cap)

    def hauler_target(self, facts: AreaFacts) -> int:
        policy = self.policy
        energy_per_tick = facts.source_count * policy.regen_per_source
        base = math.ceil(energy_per_tick / policy.energy_per_hauler)
        distance_mult = max(1.0, facts.average_distance / policy.reference_distance)
        by_distance = math.ceil(base * distance_mult)
        infra = facts.source_count + int(facts.storage) + min(1, facts.controller_containers)
        return math.ceil(max(by_distance, infra) * policy.stage_factor(facts.stage))

    def builder_target(self, facts: AreaFacts) -> int:
        """Builders also repair, so both backlogs count toward the target."""

        policy = self.policy
        backlog = facts.construction_backlog + facts.repair_backlog
        if backlog >= policy.large_backlog:
            return policy.builder_large_backlog
        if backlog > 0:
            return policy.builder_with_backlog
        return policy.builder_baseline

    def minimal_targets(self, facts: AreaFacts) -> Dict[Role, int]:
        """Conservative targets used when the area's facts are incomplete."""

        floor = self.policy.hard_floor
        return {
            Role.HARVESTER: max(floor, facts.source_count),
            Role.HAULER: floor,
            Role.UPGRADER: floor,
            Role.BUILDER: floor,
        }

    def compute_targets(
        self,
        facts: AreaFacts,
        override: Optional[ManualOverride] = None,
        *,
        tick: int = 0,
    ) -> PopulationTarget:
        """Target count per role for an area, with manual overrides applied.

        Pinned roles replace their computed value. When any role is pinned the
        total becomes the sum of the final counts unless the total itself is
        pinned too.
        """

        if facts.complete:
            counts = {
                Role.HARVESTER: self.harvester_target(facts),
                Role.HAULER: self.hauler_target(facts),
                Role.UPGRADER: self.policy.upgrader_target,
                Role.BUILDER: self.builder_target(facts),
            }
        else:
            counts = self.minimal_targets(facts)

        total = sum(counts.values())
        overridden: List[Role] = []

        if override is not None:
            for role in ROLE_ORDER:
                if role not in override.targets:
                    continue
                pinned = max(0, int(override.targets[role]))
                if pinned < self.policy.hard_floor and counts[role] >= self.policy.hard_floor:
                    self.diagnostics.emit(
                        f"planner.override.{facts.area_id}.{role.value}",
                        f"[Planner] Override pins {role.value} to {pinned} in {facts.area_id}, "
                        f"below the floor of {self.policy.hard_floor} (computed {counts[role]})",
                        tick=tick,
                        sink=log_throttle,
                    )
                counts[role] = pinned
                overridden.append(role)

            if override.total is not None:
                total = max(0, int(override.total))
            elif overridden:
                total = sum(counts.values())

        return PopulationTarget(counts=counts, total=total, overridden=overridden)

    # ------------------------------------------------------------------
    # Role selection
    # ------------------------------------------------------------------

    def floor_role(self, current: Counts, target: PopulationTarget) -> Optional[Role]:
        """First role (fixed order) with fewer units than the floor and a nonzero target."""

        floor = self.policy.hard_floor
        for role in ROLE_ORDER:
            wanted = min(target.target(role), floor)
            if wanted >= 1 and _count(current, role) < wanted:
                return role
        return None

    def _weight(self, role: Role, score: float, current: Counts, facts: AreaFacts) -> float:
        policy = self.policy
        have = _count(current, role)

        if role is Role.HARVESTER:
            return score * policy.harvester_weight

        if role is Role.HAULER:
            if _count(current, Role.HARVESTER) > 0:
                score *= policy.hauler_weight
            return score

        if role is Role.BUILDER:
            # A lone builder splits its time between both backlogs
            if have < 2:
                if facts.construction_backlog > 0:
                    score *= policy.builder_construction_weight
                if facts.repair_backlog > 0 or facts.critical_repairs > 0:
                    score *= policy.builder_repair_weight
            return score

        if facts.construction_backlog > 0 and facts.stage <= policy.upgrader_construction_stage:
            score *= policy.upgrader_construction_weight
        elif facts.stage >= policy.upgrader_late_stage:
            score *= policy.upgrader_late_weight
        return score

    def deficits(
        self,
        current: Counts,
        target: PopulationTarget,
        facts: AreaFacts,
    ) -> List[DeficitItem]:
        """Roles below target, ranked by weighted deficit (ties in fixed order)."""

        items = []
        for role in ROLE_ORDER:
            have = _count(current, role)
            wanted = target.target(role)
            if have >= wanted:
                continue
            score = (wanted - have) / wanted * 100
            items.append(
                DeficitItem(
                    role=role,
                    current=have,
                    maximum=wanted,
                    weighted_deficit=self._weight(role, score, current, facts),
                )
            )
        # sort is stable, so equal scores keep the fixed order
        items.sort(key=lambda item: -item.weighted_deficit)
        return items

    def pick_next_role(
        self,
        current: Counts,
        target: PopulationTarget,
        facts: Optional[AreaFacts] = None,
    ) -> Optional[Role]:
        """Return the role most in need of a new unit, or None."""

        role = self.floor_role(current, target)
        if role is not None:
            return role

        if _total(current) >= target.total:
            return None

        if facts is None or not facts.complete:
            for role in ROLE_ORDER:
                if _count(current, role) < target.target(role):
                    return role
            return None

        ranked = self.deficits(current, target, facts)
        return ranked[0].role if ranked else None

    def in_collapse(self, facts: AreaFacts, target: Optional[PopulationTarget] = None) -> bool:
        """True when a foundational role (harvester or hauler) has no units."""

        for role in (Role.HARVESTER, Role.HAULER):
            needed = target.target(role) >= 1 if target is not None else True
            if needed and facts.census.count(role) == 0:
                return True
        return False

    # ------------------------------------------------------------------
    # Spawn timing
    # ------------------------------------------------------------------

    def spawn_urgency(
        self,
        role: Role,
        current: int,
        target: int,
        ticks_to_live: Sequence[int] = (),
    ) -> float:
        """Blend of deficit fraction and how close existing units are to expiring."""

        if target <= 0:
            return 0.0
        if current <= 0:
            return 1.0

        policy = self.policy
        deficit_fraction = max(0, target - current) / target
        expiry = 0.0
        if ticks_to_live:
            remaining = min(ticks_to_live) / policy.unit_lifetime
            expiry = 1.0 - min(max(remaining, 0.0), 1.0)

        urgency = policy.deficit_weight * deficit_fraction + policy.expiry_weight * expiry
        return min(max(urgency, 0.0), 1.0)

    def should_spawn_now(
        self,
        role: Role,
        urgency: float,
        available: int,
        capacity: int,
        *,
        current: int,
        waited: int = 0,
    ) -> SpawnDecision:
        policy = self.policy
        urgency = min(max(urgency, 0.0), 1.0)

        threshold = capacity * policy.base_fraction * (1 - urgency * policy.urgency_discount)
        threshold = max(threshold, min(policy.min_spawn_cost, capacity))
        max_wait = policy.base_wait * (1 - urgency * policy.wait_discount)

        if current == 0:
            reason, spawn = "collapse", True
        elif available >= threshold:
            reason, spawn = "energy", True
        elif waited >= max_wait:
            reason, spawn = "waited", True
        else:
            reason, spawn = "accumulating", False

        return SpawnDecision(
            spawn=spawn,
            reason=reason,
            urgency=urgency,
            threshold=threshold,
            max_wait=max_wait,
        )

    # ------------------------------------------------------------------
    # Bodies
    # ------------------------------------------------------------------

    def _balanced(self, energy: int, ratio: Tuple[int, int, int]) -> List[BodyPart]:
        costs = self.policy.part_costs
        work, carry, move = ratio
        set_cost = work * costs[BodyPart.WORK] + carry * costs[BodyPart.CARRY] + move * costs[BodyPart.MOVE]
        parts_per_set = work + carry + move
        if set_cost == 0 or parts_per_set == 0:
            return []

        sets = min(energy // set_cost, self.policy.max_parts // parts_per_set)
        if sets == 0:
            return []
        return (
            [BodyPart.WORK] * (sets * work)
            + [BodyPart.CARRY] * (sets * carry)
            + [BodyPart.MOVE] * (sets * move)
        )

    def compose_body(self, role: Role, energy: int) -> List[BodyPart]:
        """Largest body with the role's part ratio that ``energy`` can pay for.

        Returns an empty list below the minimum viable cost. Results are
        memoized per (role, energy).
        """

        key = (role, int(energy))
        cached = self._bodies.get(key)
        if cached is not None:
            return list(cached)

        policy = self.policy
        if energy < policy.min_body_cost:
            return []

        body = self._balanced(energy, policy.body_ratios[role])

        if role is Role.HAULER and body:
            spare = energy - body_cost(body, policy.part_costs)
            if spare >= policy.part_costs[BodyPart.WORK] and len(body) < policy.max_parts:
                body.insert(0, BodyPart.WORK)

        if not body:
            if role is Role.HAULER:
                body = [BodyPart.CARRY, BodyPart.CARRY, BodyPart.MOVE]
            else:
                body = [BodyPart.WORK, BodyPart.CARRY, BodyPart.MOVE]

        self._bodies[key] = tuple(body)
        return list(body)

    # ------------------------------------------------------------------
    # Per-area plan
    # ------------------------------------------------------------------

    def plan(
        self,
        area_id: str,
        facts: AreaFacts,
        override: Optional[ManualOverride] = None,
        *,
        tick: int = 0,
        pressure: Pressure = Pressure.NONE,
    ) -> SpawnPlan:
        """Decide whether an area should produce a unit this tick, and which.

        Under ``high`` pressure nothing spawns once the area holds more than
        ``pressure_max_total`` units, and under ``critical`` pressure nothing
        spawns at all. Either way bodies are sized from at most
        ``pressure_energy_fraction`` of capacity. An area in collapse is exempt.
        """

        target = self.compute_targets(facts, override, tick=tick)
        census = facts.census
        role = self.pick_next_role(census, target, facts)
        if role is None:
            self.state.waits.pop(area_id, None)
            return SpawnPlan(area_id=area_id, target=target)

        wait = self.state.waits.get(area_id)
        if wait is None or wait.role != role:
            wait = SpawnWait(role=role, since=tick)
            self.state.waits[area_id] = wait
        waited = max(0, tick - wait.since)

        current = census.count(role)
        urgency = self.spawn_urgency(
            role,
            current,
            target.target(role),
            census.ticks_to_live.get(role, []),
        )
        decision = self.should_spawn_now(
            role,
            urgency,
            facts.energy_available,
            facts.energy_capacity,
            current=current,
            waited=waited,
        )

        policy = self.policy
        spend = facts.energy_available
        if pressure in (Pressure.HIGH, Pressure.CRITICAL) and not self.in_collapse(facts, target):
            cap = int(facts.energy_capacity * policy.pressure_energy_fraction)
            spend = min(spend, max(cap, policy.min_body_cost))
            if decision.spawn and (
                pressure is Pressure.CRITICAL or census.total > policy.pressure_max_total
            ):
                decision = decision.model_copy(update={"spawn": False, "reason": "pressure"})

        body: List[BodyPart] = []
        energy = 0
        if decision.spawn:
            body = self.compose_body(role, spend)
            energy = body_cost(body, policy.part_costs)

        plan = SpawnPlan(
            area_id=area_id,
            role=role,
            decision=decision,
            body=body,
            energy=energy,
            target=target,
        )
        if plan.should_spawn:
            self.state.waits.pop(area_id, None)

        self.diagnostics.emit(
            f"planner.spawn.{area_id}",
            f"[Planner] {area_id}: next {role.value} "
            f"({current}/{target.target(role)}, total {census.total}/{target.total}), "
            f"urgency {decision.urgency:.2f}, {decision.reason}, "
            f"energy {facts.energy_available}/{decision.threshold:.0f}",
            tick=tick,
            sink=log_deterministic,
        )
        return plan
