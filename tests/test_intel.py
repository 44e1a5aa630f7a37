"""Tests for per-area fact refresh and planner input assembly."""

from colonymind.cache import TieredCache
from colonymind.intel import AreaIntel
from colonymind.schemas import (
    ConstructionBacklog,
    FactCategory,
    RepairBacklog,
    Role,
    SourceLayout,
    SourceSpot,
    ThreatStatus,
)


def make_intel(host, store):
    cache = TieredCache(host, store)
    return AreaIntel(host, cache), cache


def test_refresh_mirrors_cheap_facts(host, store):
    host.energy_by_area["W1N1"] = (420, 800)
    host.stages["W1N1"] = 3
    host.add_units("W1N1", Role.HARVESTER, 2, work_parts=5)
    host.add_units("W1N1", Role.HAULER, ticks_to_live=300)
    intel, cache = make_intel(host, store)

    intel.refresh("W1N1")

    mirror = cache.area("W1N1").mirror
    assert mirror["energy_available"] == 420
    assert mirror["energy_capacity"] == 800
    assert mirror["stage"] == 3
    assert mirror["role_counts"]["counts"]["harvester"] == 2
    assert mirror["role_counts"]["work_parts"]["harvester"] == 10
    assert mirror["role_counts"]["ticks_to_live"]["hauler"] == [300]


def test_refresh_populates_every_surveyed_category(host, store):
    intel, cache = make_intel(host, store)

    intel.refresh("W1N1")

    for category in FactCategory:
        if category is FactCategory.ROLE_COUNTS:
            continue
        assert cache.peek("W1N1", category) is not None


def test_refresh_runs_once_per_tick(host, store):
    intel, _ = make_intel(host, store)

    intel.refresh("W1N1")
    intel.refresh("W1N1")
    assert host.calls["threats"] == 1

    # threats stay fresh for 5 ticks
    host.advance(1)
    intel.refresh("W1N1")
    assert host.calls["threats"] == 1

    host.advance(4)
    intel.refresh("W1N1")
    assert host.calls["threats"] == 2


def test_units_are_counted_once_for_all_areas(make_host, store):
    host = make_host(areas=("W1N1", "W2N1"))
    host.add_units("W1N1", Role.HARVESTER)
    host.add_units("W2N1", Role.BUILDER, 2)
    intel, _ = make_intel(host, store)

    intel.refresh("W1N1")
    intel.refresh("W2N1")

    assert host.calls["list_units"] == 1
    assert intel.census("W2N1").count(Role.BUILDER) == 2
    assert intel.census("W1N1").count(Role.BUILDER) == 0


def test_priorities_are_mirrored_as_plain_strings(host, store):
    host.set_survey("construction", "W1N1", ConstructionBacklog(site_ids=["s1"]))
    host.set_survey("threats", "W1N1", ThreatStatus(hostile_ids=["h1"]))
    intel, cache = make_intel(host, store)

    intel.refresh("W1N1")

    assert cache.area("W1N1").mirror["priorities"] == {
        "upgrade": "high",
        "build": "high",
        "repair": "low",
        "defend": "high",
    }
    assert cache.area("W1N1").mirror["construction_sites"] == 1
    assert cache.area("W1N1").mirror["construction_site_ids"] == ["s1"]


def test_survey_failure_keeps_refresh_alive(host, store):
    host.failing.add("layout")
    intel, cache = make_intel(host, store)

    intel.refresh("W1N1")

    assert cache.peek("W1N1", FactCategory.SOURCE_LAYOUT) is None
    assert cache.peek("W1N1", FactCategory.THREATS) is not None
    assert intel.area_facts("W1N1").complete is False


def test_host_failure_falls_back_to_basic_mirror(host, store):
    host.failing.add("energy")
    intel, cache = make_intel(host, store)

    intel.refresh("W1N1")

    mirror = cache.area("W1N1").mirror
    assert mirror["energy_available"] == 0
    assert mirror["energy_capacity"] == 0
    assert "role_counts" in mirror


def test_area_facts_from_cache(host, store):
    host.energy_by_area["W1N1"] = (300, 550)
    host.stages["W1N1"] = 2
    host.add_units("W1N1", Role.HARVESTER, 2, work_parts=4)
    host.set_survey(
        "layout",
        "W1N1",
        SourceLayout(
            sources={"src1": SourceSpot(x=10, y=12), "src2": SourceSpot(x=40, y=8)},
            average_distance=22.5,
            storage=True,
            controller_containers=1,
        ),
    )
    host.set_survey("construction", "W1N1", ConstructionBacklog(site_ids=["a", "b", "c"]))
    host.set_survey("repairs", "W1N1", RepairBacklog(target_ids=["r1", "r2"], critical_ids=["r1"]))
    intel, _ = make_intel(host, store)

    intel.refresh("W1N1")
    facts = intel.area_facts("W1N1")

    assert facts.complete
    assert facts.census.count(Role.HARVESTER) == 2
    assert facts.census.work_parts[Role.HARVESTER] == 8
    assert facts.energy_available == 300
    assert facts.energy_capacity == 550
    assert facts.source_count == 2
    assert facts.average_distance == 22.5
    assert facts.storage is True
    assert facts.stage == 2
    assert facts.construction_backlog == 3
    assert facts.repair_backlog == 2
    assert facts.critical_repairs == 1
    assert facts.hostiles == 0


def test_area_facts_before_refresh_are_conservative(host, store):
    intel, _ = make_intel(host, store)

    facts = intel.area_facts("W1N1")

    assert facts.complete is False
    assert facts.source_count == 1
    assert facts.census.total == 0
