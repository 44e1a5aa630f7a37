"""Shared fixtures: a scriptable in-process host and a counting store."""

from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from colonymind.host import ColonyHost
from colonymind.persistence import InMemoryAreaStore
from colonymind.schemas import (
    ConstructionBacklog,
    DeliveryTargets,
    EnergySources,
    RepairBacklog,
    Role,
    SourceLayout,
    SourceStatus,
    ThreatStatus,
    UnitInfo,
)


_SURVEY_DEFAULTS = {
    "energy_sources": EnergySources,
    "delivery_targets": DeliveryTargets,
    "active_sources": SourceStatus,
    "threats": ThreatStatus,
    "construction": ConstructionBacklog,
    "repairs": RepairBacklog,
    "layout": SourceLayout,
}


class FakeHost(ColonyHost):
    """Host whose readings are plain attributes tests can set between ticks."""

    def __init__(
        self,
        *,
        tick: int = 100,
        budget: Optional[float] = 10000.0,
        areas: Tuple[str, ...] = ("W1N1",),
        accepts_hook: bool = False,
    ):
        self.now = tick
        self.budget_reading = budget
        self.usage_reading: Optional[float] = None
        self.areas: List[str] = list(areas)
        self.units: List[UnitInfo] = []
        self.energy_by_area: Dict[str, Tuple[int, int]] = {}
        self.stages: Dict[str, int] = {}
        # survey name -> area id -> returned value
        self.surveys: Dict[str, Dict[str, Any]] = {}
        self.failing: Set[str] = set()
        self.calls: Counter = Counter()
        self.accepts_hook = accepts_hook
        self.post_tick: List[Callable[[], None]] = []

    # Ambient readings -------------------------------------------------

    def tick(self) -> int:
        if "tick" in self.failing:
            raise RuntimeError("tick unavailable")
        return self.now

    def budget(self) -> Optional[float]:
        if "budget" in self.failing:
            raise RuntimeError("gauge unavailable")
        return self.budget_reading

    def usage(self) -> Optional[float]:
        return self.usage_reading

    def area_ids(self) -> List[str]:
        return list(self.areas)

    def list_units(self) -> List[UnitInfo]:
        self.calls["list_units"] += 1
        return list(self.units)

    def energy(self, area_id: str) -> Tuple[int, int]:
        if "energy" in self.failing:
            raise RuntimeError(f"energy unavailable for {area_id}")
        return self.energy_by_area.get(area_id, (300, 300))

    def stage(self, area_id: str) -> int:
        return self.stages.get(area_id, 1)

    # Surveys ----------------------------------------------------------

    def _survey(self, name: str, area_id: str) -> Any:
        self.calls[name] += 1
        if name in self.failing:
            raise RuntimeError(f"{name} survey failed for {area_id}")
        return self.surveys.get(name, {}).get(area_id, _SURVEY_DEFAULTS[name]())

    def survey_energy_sources(self, area_id):
        return self._survey("energy_sources", area_id)

    def survey_delivery_targets(self, area_id):
        return self._survey("delivery_targets", area_id)

    def survey_active_sources(self, area_id):
        return self._survey("active_sources", area_id)

    def survey_threats(self, area_id):
        return self._survey("threats", area_id)

    def survey_construction(self, area_id):
        return self._survey("construction", area_id)

    def survey_repairs(self, area_id):
        return self._survey("repairs", area_id)

    def survey_layout(self, area_id):
        return self._survey("layout", area_id)

    # Lifecycle --------------------------------------------------------

    def register_post_tick(self, callback: Callable[[], None]) -> bool:
        if not self.accepts_hook:
            return False
        self.post_tick.append(callback)
        return True

    # Test helpers -----------------------------------------------------

    def set_survey(self, name: str, area_id: str, value: Any) -> None:
        self.surveys.setdefault(name, {})[area_id] = value

    def add_units(
        self,
        area_id: str,
        role: Role,
        count: int = 1,
        *,
        work_parts: int = 2,
        ticks_to_live: Optional[int] = None,
    ) -> None:
        start = len(self.units)
        for index in range(count):
            self.units.append(
                UnitInfo(
                    name=f"{role.value}{start + index}",
                    role=role,
                    home_area=area_id,
                    work_parts=work_parts,
                    ticks_to_live=ticks_to_live,
                )
            )

    def end_tick(self) -> None:
        """Run registered post-tick callbacks, as the host would after its own work."""
        callbacks, self.post_tick = self.post_tick, []
        for callback in callbacks:
            callback()

    def advance(self, ticks: int = 1) -> int:
        self.now += ticks
        return self.now


@pytest.fixture(autouse=True)
def no_color(monkeypatch):
    monkeypatch.setenv("COLONYMIND_NO_COLOR", "1")


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def store() -> InMemoryAreaStore:
    store = InMemoryAreaStore()
    store.initialize()
    return store


@pytest.fixture
def make_host() -> Callable[..., FakeHost]:
    return FakeHost
