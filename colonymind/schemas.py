"""
Pydantic schemas for the colonymind decision core.

All data structures that cross a tick boundary are defined here.

Design Philosophy:
- Closed enums for roles, priority tiers and fact categories (no ad hoc string keys)
- Plain data only: every model dumps to scalars, lists and dicts, so the host can
  snapshot the whole core between ticks and rebuild it on the next one
- No live host handles: areas, units, sites and sources are referenced by ID
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Enumerations
# ============================================================================

class Priority(str, Enum):
    """Ordered priority tiers used to gate work through the budget monitor."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for critical, 3 for low."""
        return PRIORITY_ORDER.index(self)


PRIORITY_ORDER = (Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW)


class Role(str, Enum):
    """Worker specializations the population planner produces."""

    HARVESTER = "harvester"  # primary extraction
    HAULER = "hauler"        # transport
    UPGRADER = "upgrader"    # generic improver
    BUILDER = "builder"      # construction and repair


# Fixed priority order used for the hard floor and for tie-breaking.
ROLE_ORDER = (Role.HARVESTER, Role.HAULER, Role.UPGRADER, Role.BUILDER)


class FactCategory(str, Enum):
    """Cached fact categories. Each has a fixed TTL and priority tier."""

    ROLE_COUNTS = "role_counts"
    ENERGY_SOURCES = "energy_sources"
    DELIVERY_TARGETS = "delivery_targets"
    ACTIVE_SOURCES = "active_sources"
    THREATS = "threats"
    CONSTRUCTION_BACKLOG = "construction_backlog"
    REPAIR_BACKLOG = "repair_backlog"
    SOURCE_LAYOUT = "source_layout"


class Pressure(str, Enum):
    """Coarse budget pressure level derived from the recovery controller."""

    NONE = "none"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"


class BodyPart(str, Enum):
    WORK = "work"
    CARRY = "carry"
    MOVE = "move"


# ============================================================================
# Budget Monitor State
# ============================================================================

class BudgetSample(BaseModel):
    """One sampled budget-gauge reading."""

    tick: int = Field(..., description="Tick the reading was taken on")
    budget: float = Field(..., description="Budget gauge value at that tick")


class RecoveryEpisode(BaseModel):
    """A bounded period during which low-priority work is throttled.

    ``drain_count`` is the consecutive-drain counter; it lives here because it
    is the signal that opens an episode, and it is cleared together with the
    other fields when the episode closes.
    """

    active: bool = False
    start_tick: int = 0
    start_budget: float = 0.0
    rate: float = Field(0.0, description="Blended budget recovery rate (units per tick)")
    drain_count: int = Field(0, description="Consecutive sampled drains observed")


class MonitorState(BaseModel):
    """Everything the budget monitor needs to resume on the next tick."""

    samples: List[BudgetSample] = Field(default_factory=list, description="Bounded ring of recent samples")
    previous_budget: Optional[float] = Field(None, description="Last valid sampled reading")
    last_sample_tick: Optional[int] = None
    # Per-tick consumption as a fraction of the per-tick allowance (0..1+)
    usage: List[float] = Field(default_factory=list)
    episode: RecoveryEpisode = Field(default_factory=RecoveryEpisode)
    episodes_started: int = 0
    last_episode_end: Optional[int] = None


# ============================================================================
# Cache State
# ============================================================================

class CacheEntry(BaseModel):
    """A memoized value stamped with the tick it was computed on."""

    value: Any = None
    computed_at: int
    ttl: int = Field(..., ge=1)

    def is_fresh(self, tick: int) -> bool:
        """Fresh for ticks ``[computed_at, computed_at + ttl)``."""
        return tick - self.computed_at < self.ttl


class AreaState(BaseModel):
    """Per-area cache: one entry per fact category plus always-fresh mirrors."""

    area_id: str
    entries: Dict[FactCategory, CacheEntry] = Field(default_factory=dict)
    # Cheap facts re-read from the host every tick (energy, role counts, priorities)
    mirror: Dict[str, Any] = Field(default_factory=dict)


class CacheState(BaseModel):
    areas: Dict[str, AreaState] = Field(default_factory=dict)
    globals: Dict[str, CacheEntry] = Field(default_factory=dict)
    dirty: List[str] = Field(default_factory=list, description="Areas awaiting write-back")
    flush_scheduled_tick: Optional[int] = None


# ============================================================================
# Fact Payloads (what collaborators report about an area)
# ============================================================================

class UnitInfo(BaseModel):
    """Summary of one live worker, as reported by the host."""

    name: str
    role: Role
    home_area: str
    work_parts: int = 0
    ticks_to_live: Optional[int] = None


class RoleCensus(BaseModel):
    """Worker counts for one area, keyed by role."""

    counts: Dict[Role, int] = Field(default_factory=lambda: {role: 0 for role in ROLE_ORDER})
    work_parts: Dict[Role, int] = Field(default_factory=dict)
    ticks_to_live: Dict[Role, List[int]] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, role: Role) -> int:
        return self.counts.get(role, 0)


class EnergySources(BaseModel):
    """Pick-up points for loose energy (dropped piles, containers, storage)."""

    dropped_ids: List[str] = Field(default_factory=list)
    container_ids: List[str] = Field(default_factory=list)
    storage_id: Optional[str] = None
    amount: int = 0


class DeliveryTargets(BaseModel):
    """Structures that still accept energy."""

    spawn_ids: List[str] = Field(default_factory=list)
    tower_ids: List[str] = Field(default_factory=list)
    container_ids: List[str] = Field(default_factory=list)
    storage_id: Optional[str] = None
    free_capacity: int = 0


class SourceStatus(BaseModel):
    source_ids: List[str] = Field(default_factory=list)
    active_ids: List[str] = Field(default_factory=list)


class ThreatStatus(BaseModel):
    hostile_ids: List[str] = Field(default_factory=list)

    @property
    def hostile_count(self) -> int:
        return len(self.hostile_ids)


class ConstructionBacklog(BaseModel):
    site_ids: List[str] = Field(default_factory=list)
    by_type: Dict[str, int] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.site_ids)


class RepairBacklog(BaseModel):
    """Damaged structures, most urgent first."""

    target_ids: List[str] = Field(default_factory=list)
    # Spawns, extensions and towers below the repair threshold
    critical_ids: List[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.target_ids)


class SourceSpot(BaseModel):
    x: int
    y: int
    available_spots: int = 1


class SourceLayout(BaseModel):
    """Slow-changing economic geography of an area."""

    sources: Dict[str, SourceSpot] = Field(default_factory=dict)
    average_distance: float = Field(0.0, description="Mean source-to-spawn distance")
    storage: bool = False
    controller_containers: int = 0


class AreaFacts(BaseModel):
    """Planner inputs assembled from cached facts.

    ``complete`` is False when any input fell back to a default; the planner
    then prefers the fixed role order over weighted deficits.
    """

    area_id: str
    census: RoleCensus = Field(default_factory=RoleCensus)
    energy_available: int = 0
    energy_capacity: int = 0
    source_count: int = 1
    average_distance: float = 0.0
    storage: bool = False
    controller_containers: int = 0
    stage: int = 1
    construction_backlog: int = 0
    repair_backlog: int = 0
    critical_repairs: int = 0
    hostiles: int = 0
    complete: bool = True


# ============================================================================
# Planner Records
# ============================================================================

class ManualOverride(BaseModel):
    """Operator-pinned targets for an area. Pinned values always win."""

    targets: Dict[Role, int] = Field(default_factory=dict)
    total: Optional[int] = None


class PopulationTarget(BaseModel):
    counts: Dict[Role, int] = Field(default_factory=dict)
    total: int = 0
    overridden: List[Role] = Field(default_factory=list)

    def target(self, role: Role) -> int:
        return self.counts.get(role, 0)


class DeficitItem(BaseModel):
    role: Role
    current: int
    maximum: int
    weighted_deficit: float


class SpawnDecision(BaseModel):
    spawn: bool
    reason: str
    urgency: float
    threshold: float
    max_wait: float


class SpawnWait(BaseModel):
    role: Role
    since: int


class PlannerState(BaseModel):
    waits: Dict[str, SpawnWait] = Field(default_factory=dict, description="Pending role per area")


class SpawnPlan(BaseModel):
    """What the planner wants an area to produce this tick (if anything)."""

    area_id: str
    role: Optional[Role] = None
    decision: Optional[SpawnDecision] = None
    body: List[BodyPart] = Field(default_factory=list)
    energy: int = 0
    target: PopulationTarget = Field(default_factory=PopulationTarget)

    @property
    def should_spawn(self) -> bool:
        return bool(self.role and self.decision and self.decision.spawn and self.body)


# ============================================================================
# Snapshot
# ============================================================================

class CoreSnapshot(BaseModel):
    """The whole decision core as plain data, saved once per tick."""

    tick: int
    monitor: MonitorState = Field(default_factory=MonitorState)
    cache: CacheState = Field(default_factory=CacheState)
    planner: PlannerState = Field(default_factory=PlannerState)
    diagnostics: Dict[str, int] = Field(default_factory=dict)
