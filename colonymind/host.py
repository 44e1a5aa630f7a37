"""
ColonyHost interface between the decision core and the host simulation.

The core never talks to the simulation directly. Everything it needs (the
ambient tick counter, the budget gauge, area enumeration and the summarized
facts produced by layout, combat and economy collaborators) arrives through
this adapter, and every call returns plain data keyed by identifiers.

Key responsibilities:
- Report the current tick and budget-gauge reading
- Enumerate managed areas and live workers
- Survey one area for one fact category (the expensive scans the cache memoizes)
- Optionally accept an end-of-tick callback for deferred write-back

Design principle: live handles stay on the host side of this boundary. Anything
returned here may be cached and snapshotted across ticks.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from .schemas import (
    ConstructionBacklog,
    DeliveryTargets,
    EnergySources,
    RepairBacklog,
    SourceLayout,
    SourceStatus,
    ThreatStatus,
    UnitInfo,
)


class ColonyHost(ABC):
    """Abstract adapter over the host simulation's query API.

    Subclasses implement the abstract readings; the survey hooks default to
    "nothing found" so partial hosts (tests, early prototypes) still work.

    Method categories:
    1. Ambient readings: tick(), budget(), usage()
    2. Enumeration: area_ids(), list_units()
    3. Always-fresh area facts: energy(), stage()
    4. Surveys (cached): survey_* methods
    5. Lifecycle: register_post_tick()
    """

    @abstractmethod
    def tick(self) -> int:
        """Return the monotonically increasing tick counter."""

    @abstractmethod
    def budget(self) -> Optional[float]:
        """Return the current budget-gauge reading, or None if unavailable."""

    @abstractmethod
    def area_ids(self) -> List[str]:
        """Return identifiers of every area the agent manages."""

    @abstractmethod
    def list_units(self) -> List[UnitInfo]:
        """Return a summary of every live worker across all areas."""

    @abstractmethod
    def energy(self, area_id: str) -> Tuple[int, int]:
        """Return ``(available, capacity)`` production energy for an area."""

    def usage(self) -> Optional[float]:
        """Fraction of this tick's allowance consumed so far (0..1+), if known."""
        return None

    def stage(self, area_id: str) -> int:
        """Progression stage of an area (1 = freshly founded)."""
        return 1

    # ------------------------------------------------------------------
    # Surveys (expensive scans memoized by the cache)
    # ------------------------------------------------------------------

    def survey_energy_sources(self, area_id: str) -> EnergySources:
        return EnergySources()

    def survey_delivery_targets(self, area_id: str) -> DeliveryTargets:
        return DeliveryTargets()

    def survey_active_sources(self, area_id: str) -> SourceStatus:
        return SourceStatus()

    def survey_threats(self, area_id: str) -> ThreatStatus:
        return ThreatStatus()

    def survey_construction(self, area_id: str) -> ConstructionBacklog:
        return ConstructionBacklog()

    def survey_repairs(self, area_id: str) -> RepairBacklog:
        return RepairBacklog()

    def survey_layout(self, area_id: str) -> SourceLayout:
        return SourceLayout()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register_post_tick(self, callback: Callable[[], None]) -> bool:
        """Register ``callback`` to run after the tick's work is done.

        Returns True if the host accepted the callback. The default host has no
        such hook, so the caller must run the work synchronously instead.
        """
        return False
