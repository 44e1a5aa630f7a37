"""Tests for drain detection, recovery episodes and priority gating."""

import math

import pytest

from colonymind.budget import BudgetMonitor, RecoveryPolicy
from colonymind.schemas import MonitorState, Pressure, Priority, RecoveryEpisode


POLICY = RecoveryPolicy(budget_max=10000, sample_every=2)


def feed(monitor, host, readings, *, start=100, step=2):
    """Sample one reading per ``step`` ticks; returns the last tick used."""
    tick = start
    for index, reading in enumerate(readings):
        tick = start + index * step
        host.now = tick
        host.budget_reading = reading
        monitor.update()
    return tick


def start_episode(monitor, host, *, tick=100, budget=500.0):
    host.now = tick
    host.budget_reading = budget
    monitor.state.episode = RecoveryEpisode(active=True, start_tick=tick, start_budget=budget)
    monitor.state.previous_budget = budget


def test_sustained_drain_below_low_water_enters_recovery(host):
    monitor = BudgetMonitor(host, policy=POLICY)

    feed(monitor, host, [9000, 8000, 7000, 6000, 5000])
    assert not monitor.recovering

    host.now = 110
    host.budget_reading = 4000
    monitor.update()

    assert monitor.recovering
    assert monitor.episode.start_tick == 110
    assert monitor.episode.start_budget == 4000
    assert monitor.state.episodes_started == 1
    assert len(monitor.state.samples) == 1

    assert monitor.should_run(Priority.LOW) is False
    assert monitor.should_run("critical") is True


def test_continued_drain_does_not_open_second_episode(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000, 6000, 5000, 4000, 3900, 3800, 3700, 3600, 3500, 3400])

    assert monitor.recovering
    assert monitor.state.episodes_started == 1


def test_drain_above_low_water_does_not_enter_recovery(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [10000, 9800, 9600, 9400, 9200, 9000, 8800])

    assert not monitor.recovering
    assert monitor.episode.drain_count == 6


def test_off_sample_ticks_are_ignored(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000, 6000, 5000])

    host.now = 109
    host.budget_reading = 100
    monitor.update()

    assert not monitor.recovering
    assert monitor.state.last_sample_tick == 108
    assert monitor.state.previous_budget == 5000


@pytest.mark.parametrize("reading", [None, float("nan"), float("inf"), -5, "9000", True])
def test_anomalous_reading_resets_drain_streak(host, reading):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000, 4000])
    assert monitor.episode.drain_count == 3

    host.now = 108
    host.budget_reading = reading
    monitor.update()

    assert monitor.episode.drain_count == 0
    assert not monitor.recovering


def test_non_monotonic_tick_is_treated_as_no_drain(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000])

    host.now = 102
    host.budget_reading = 1000
    monitor.update()

    assert monitor.episode.drain_count == 0
    assert monitor.state.last_sample_tick == 104


def test_unreadable_host_never_raises(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    host.failing.update({"tick", "budget"})

    monitor.update()
    assert monitor.should_run(Priority.LOW) is True
    assert monitor.pressure() is Pressure.NONE


def test_critical_runs_on_every_tick_of_an_episode(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000, 6000, 5000, 4000])
    assert monitor.recovering

    for budget in [3000, 100, 0, 50, 20]:
        host.now += 2
        host.budget_reading = budget
        monitor.update()
        assert monitor.recovering
        assert monitor.should_run(Priority.CRITICAL)


@pytest.mark.parametrize("rate", [-3.0, 0.0, 2.0, 12.0])
@pytest.mark.parametrize("elapsed", [0, 150, 499, 800])
def test_recovery_factor_bounded_and_monotonic_in_budget(host, rate, elapsed):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=1000)
    monitor.state.episode.rate = rate
    host.now = 1000 + elapsed

    factors = [monitor.recovery_factor(budget) for budget in range(0, 10001, 250)]

    assert all(0.2 <= factor <= 1.0 for factor in factors)
    assert all(later >= earlier for earlier, later in zip(factors, factors[1:]))


def test_recovery_factor_is_one_outside_episode(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    assert monitor.recovery_factor(100) == 1.0


def test_recovery_factor_curve(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=200, budget=4000)

    assert monitor.recovery_factor(4000) == pytest.approx(0.9 * math.sqrt(0.4))

    monitor.state.episode.rate = 10
    assert monitor.recovery_factor(4000) == pytest.approx(0.9 * math.sqrt(0.4) + 0.1)

    host.now = 450
    assert monitor.recovery_factor(4000) == pytest.approx(0.9 * math.sqrt(0.4) + 0.1 + 0.15)


def test_exit_at_high_water_with_non_negative_rate(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    last = feed(monitor, host, [9000, 8000, 7000, 6000, 5000, 4000])
    assert monitor.recovering

    feed(monitor, host, [6000, 7500, 8500], start=last + 2)

    assert not monitor.recovering
    assert monitor.state.last_episode_end == last + 6
    assert monitor.episode.drain_count == 0


def test_exit_at_mid_water_only_after_min_duration(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=1000, budget=3000)

    feed(monitor, host, [4500], start=1100)
    assert monitor.recovering

    feed(monitor, host, [4500], start=1200)
    assert not monitor.recovering


def test_exit_when_episode_hits_ceiling(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=1000, budget=1000)

    feed(monitor, host, [1000], start=1498)
    assert monitor.recovering

    feed(monitor, host, [1000], start=1500)
    assert not monitor.recovering


def test_tier_gates_during_recovery(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=100, budget=2000)

    # factor 0.9 * sqrt(0.2) ~= 0.40
    assert monitor.should_run(Priority.HIGH)
    assert not monitor.should_run(Priority.MEDIUM)
    assert not monitor.should_run(Priority.LOW)


def test_low_usage_opens_gates(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=100, budget=4000)
    assert not monitor.should_run(Priority.LOW)

    for _ in range(3):
        monitor.record_usage(0.1)

    assert monitor.low_usage()
    assert monitor.should_run(Priority.LOW)


def test_unknown_priority_is_treated_as_low(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=100, budget=4000)

    assert monitor.should_run("urgent") is False
    assert monitor.should_run(Priority.LOW) is False


def test_any_positive_rate_nudges_the_factor_up(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    start_episode(monitor, host, tick=200, budget=4000)
    base = 0.9 * math.sqrt(0.4)

    monitor.state.episode.rate = 0.5
    assert monitor.recovery_factor(4000) == pytest.approx(base + 0.1)

    monitor.state.episode.rate = 0.0
    assert monitor.recovery_factor(4000) == pytest.approx(base)

    monitor.state.episode.rate = -0.5
    assert monitor.recovery_factor(4000) == pytest.approx(base - 0.1)


def test_everything_runs_outside_recovery(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    host.budget_reading = 50

    for priority in Priority:
        assert monitor.should_run(priority)


def test_pressure_levels(host):
    monitor = BudgetMonitor(host, policy=POLICY)

    host.budget_reading = 9000
    assert monitor.pressure() is Pressure.NONE

    host.budget_reading = 2000
    assert monitor.pressure() is Pressure.ELEVATED

    start_episode(monitor, host, tick=100, budget=4000)
    assert monitor.pressure() is Pressure.HIGH

    host.budget_reading = 100
    assert monitor.pressure() is Pressure.CRITICAL


def test_low_gauge_is_high_pressure_without_an_episode(host):
    monitor = BudgetMonitor(host, policy=POLICY)

    host.budget_reading = 700
    assert monitor.pressure() is Pressure.HIGH

    host.budget_reading = 250
    assert monitor.pressure() is Pressure.CRITICAL


def test_heavy_usage_raises_pressure_on_a_healthy_gauge(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    host.budget_reading = 2500
    for _ in range(10):
        monitor.record_usage(0.95)

    assert not monitor.recovering
    assert monitor.pressure() is Pressure.HIGH

    host.budget_reading = 9000
    assert monitor.pressure() is Pressure.HIGH

    for _ in range(10):
        monitor.record_usage(0.5)
    assert monitor.pressure() is Pressure.NONE


def test_rings_are_bounded(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [10000 - i for i in range(0, 60, 2)] + [10000] * 10)
    assert len(monitor.state.samples) == POLICY.history_length

    for _ in range(25):
        monitor.record_usage(0.5)
    monitor.record_usage(None)
    assert len(monitor.state.usage) == POLICY.usage_length


def test_status_report(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    assert "INACTIVE" in monitor.status_report()
    assert "never" in monitor.status_report()

    start_episode(monitor, host, tick=100, budget=4000)
    host.now = 150
    report = monitor.status_report()
    assert "ACTIVE (50 ticks)" in report
    assert "4000 / 10000" in report


def test_state_survives_plain_data_round_trip(host):
    monitor = BudgetMonitor(host, policy=POLICY)
    feed(monitor, host, [9000, 8000, 7000, 6000, 5000, 4000])

    restored = BudgetMonitor(
        host,
        policy=POLICY,
        state=MonitorState.model_validate(monitor.state.model_dump(mode="json")),
    )
    assert restored.recovering
    assert restored.state == monitor.state
