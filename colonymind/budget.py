"""Budget monitor and recovery controller.

The host replenishes a budget gauge every tick and decrements it by the work
the agent performs. When the gauge drains for several consecutive samples and
sits below a low-water mark, the monitor opens a recovery episode and starts
answering "no" to lower-priority work until the gauge climbs back.

Sampling happens on alternating ticks only, so the monitor's own overhead is
halved. All state lives in :class:`~colonymind.schemas.MonitorState`, which the
tick driver snapshots between ticks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from .config import Config
from .host import ColonyHost
from .logging_utils import DiagnosticLog, log_error, log_success, log_throttle
from .schemas import BudgetSample, MonitorState, Pressure, Priority, RecoveryEpisode


@dataclass(frozen=True)
class TierGate:
    """Thresholds that open the gate for one priority tier during recovery.

    Budget floors are fractions of ``RecoveryPolicy.budget_max``.
    """

    min_factor: float
    budget_floor: float
    low_usage_floor: float


def _default_gates() -> Dict[Priority, TierGate]:
    return {
        Priority.HIGH: TierGate(min_factor=0.3, budget_floor=0.10, low_usage_floor=0.03),
        Priority.MEDIUM: TierGate(min_factor=0.5, budget_floor=0.30, low_usage_floor=0.05),
        Priority.LOW: TierGate(min_factor=0.7, budget_floor=0.50, low_usage_floor=0.08),
    }


@dataclass(frozen=True)
class RecoveryPolicy:
    """Tunable constants for drain detection, recovery and gating."""

    budget_max: float = field(default_factory=lambda: float(Config.BUDGET_MAX))
    sample_every: int = field(default_factory=lambda: Config.SAMPLE_EVERY)
    history_length: int = 20
    usage_length: int = 10

    # Entry: this many consecutive drains while below low_water
    drain_threshold: int = 5
    low_water: float = 0.5

    # Exit marks (fractions of budget_max) and durations (ticks)
    high_water: float = 0.8
    mid_water: float = 0.4
    min_duration: int = 200
    max_duration: int = 500

    # Recovery rate blend
    short_window: int = 5
    short_weight: float = 0.7

    # Recovery factor curve
    damping: float = 0.9
    good_rate: float = 0.0
    rate_nudge: float = 0.1
    time_bonus: float = 0.3
    min_factor: float = 0.2
    max_factor: float = 1.0

    # Rolling consumption average below this counts as "demonstrably cheap"
    low_usage: float = 0.3

    # Pressure levels
    elevated_below: float = 0.3
    high_below: float = 0.08
    critical_below: float = 0.03
    critical_factor: float = 0.3
    # Rolling consumption above this is high pressure even on a healthy gauge
    heavy_usage: float = 0.9

    gates: Dict[Priority, TierGate] = field(default_factory=_default_gates)


def _valid_number(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def _window_rate(samples: list[BudgetSample]) -> float:
    if len(samples) < 2:
        return 0.0
    span = samples[-1].tick - samples[0].tick
    if span <= 0:
        return 0.0
    return (samples[-1].budget - samples[0].budget) / span


class BudgetMonitor:
    """Tracks the budget gauge and gates work by priority tier.

    The monitor reads the ambient tick and budget from the injected host on
    every call and never raises: unreadable or nonsensical readings are treated
    as "no drain", which errs on the side of under-throttling.
    """

    def __init__(
        self,
        host: ColonyHost,
        policy: Optional[RecoveryPolicy] = None,
        state: Optional[MonitorState] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ):
        self.host = host
        self.policy = policy or RecoveryPolicy()
        self.state = state or MonitorState()
        self.diagnostics = diagnostics or DiagnosticLog()

    @property
    def recovering(self) -> bool:
        return self.state.episode.active

    @property
    def episode(self) -> RecoveryEpisode:
        return self.state.episode

    # ------------------------------------------------------------------
    # Ambient readings
    # ------------------------------------------------------------------

    def _read_tick(self) -> Optional[int]:
        try:
            tick = self.host.tick()
        except Exception as exc:
            log_error(f"[Budget] Tick counter unavailable: {exc}")
            return None
        if isinstance(tick, bool) or not isinstance(tick, int):
            return None
        return tick

    def _read_budget(self) -> Optional[float]:
        try:
            reading = self.host.budget()
        except Exception as exc:
            log_error(f"[Budget] Budget gauge unavailable: {exc}")
            return None
        return _valid_number(reading)

    def _current_budget(self) -> float:
        """Best available budget reading for gating decisions."""
        budget = self._read_budget()
        if budget is None:
            budget = self.state.previous_budget
        return budget if budget is not None else 0.0

    # ------------------------------------------------------------------
    # Per-tick update
    # ------------------------------------------------------------------

    def update(self) -> None:
        """Sample the gauge (alternating ticks) and advance the episode state machine."""

        tick = self._read_tick()
        if tick is None:
            return
        if tick % max(1, self.policy.sample_every) != 0:
            return

        budget = self._read_budget()
        last_tick = self.state.last_sample_tick
        if budget is None or (last_tick is not None and tick <= last_tick):
            # Anomalous reading: assume no drain
            self.state.episode.drain_count = 0
            return

        self._append_sample(tick, budget)

        previous = self.state.previous_budget
        if previous is not None and budget < previous:
            self.state.episode.drain_count += 1
        else:
            self.state.episode.drain_count = 0
        self.state.previous_budget = budget

        if self.state.episode.active:
            self._update_rate(tick)
            self._check_recovery_complete(tick, budget)
        elif (
            self.state.episode.drain_count >= self.policy.drain_threshold
            and budget < self.policy.low_water * self.policy.budget_max
        ):
            self._start_recovery(tick, budget)

    def record_usage(self, fraction: Optional[float]) -> None:
        """Record this tick's consumption as a fraction of the per-tick allowance."""

        value = _valid_number(fraction)
        if value is None:
            return
        self.state.usage.append(value)
        overflow = len(self.state.usage) - self.policy.usage_length
        if overflow > 0:
            del self.state.usage[:overflow]

    def _append_sample(self, tick: int, budget: float) -> None:
        self.state.samples.append(BudgetSample(tick=tick, budget=budget))
        overflow = len(self.state.samples) - self.policy.history_length
        if overflow > 0:
            del self.state.samples[:overflow]
        self.state.last_sample_tick = tick

    def _start_recovery(self, tick: int, budget: float) -> None:
        self.state.episode = RecoveryEpisode(
            active=True,
            start_tick=tick,
            start_budget=budget,
            rate=0.0,
            drain_count=0,
        )
        self.state.samples = [BudgetSample(tick=tick, budget=budget)]
        self.state.episodes_started += 1
        log_throttle(
            f"[Budget] Starting adaptive recovery at tick {tick}, budget: {budget:.0f}"
        )

    def _update_rate(self, tick: int) -> None:
        samples = self.state.samples
        if len(samples) < 2:
            return

        short_rate = _window_rate(samples[-self.policy.short_window:])
        long_rate = _window_rate(samples)
        weight = self.policy.short_weight
        self.state.episode.rate = short_rate * weight + long_rate * (1 - weight)

        self.diagnostics.emit(
            "budget.recovery_rate",
            f"[Budget] Recovery rate: {self.state.episode.rate:.2f}/tick, "
            f"budget: {samples[-1].budget:.0f}, "
            f"recovery time: {tick - self.state.episode.start_tick} ticks",
            tick=tick,
            sink=log_throttle,
        )

    def _check_recovery_complete(self, tick: int, budget: float) -> None:
        policy = self.policy
        episode = self.state.episode
        elapsed = tick - episode.start_tick

        recovered = budget > policy.high_water * policy.budget_max and episode.rate >= 0
        settled = budget > policy.mid_water * policy.budget_max and elapsed >= policy.min_duration
        timed_out = elapsed >= policy.max_duration

        if recovered or settled or timed_out:
            log_success(
                f"[Budget] Recovery complete after {elapsed} ticks. "
                f"Budget: {budget:.0f}, final rate: {episode.rate:.2f}"
            )
            self.state.episode = RecoveryEpisode()
            self.state.last_episode_end = tick

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recovery_factor(self, budget: Optional[float] = None) -> float:
        """Return the recovery factor in [min_factor, max_factor].

        1.0 when no episode is active. Otherwise a damped square-root of the
        budget fraction, nudged by the recovery rate, plus a bonus that grows
        with time spent recovering.
        """

        episode = self.state.episode
        if not episode.active:
            return 1.0

        policy = self.policy
        if budget is None:
            budget = self._current_budget()

        fraction = min(max(budget / policy.budget_max, 0.0), 1.0)
        factor = policy.damping * math.sqrt(fraction)

        if episode.rate > policy.good_rate:
            factor += policy.rate_nudge
        elif episode.rate < 0:
            factor -= policy.rate_nudge

        tick = self._read_tick()
        elapsed = max(0, tick - episode.start_tick) if tick is not None else 0
        factor += policy.time_bonus * min(elapsed / max(1, policy.max_duration), 1.0)

        return max(policy.min_factor, min(factor, policy.max_factor))

    def usage_average(self) -> Optional[float]:
        if not self.state.usage:
            return None
        return sum(self.state.usage) / len(self.state.usage)

    def low_usage(self) -> bool:
        average = self.usage_average()
        return average is not None and average < self.policy.low_usage

    def should_run(self, priority: Union[Priority, str]) -> bool:
        """Return True if work at ``priority`` may run this tick."""

        try:
            tier = Priority(priority)
        except ValueError:
            log_error(f"[Budget] Unknown priority {priority!r}; treating as low")
            tier = Priority.LOW

        if tier is Priority.CRITICAL:
            return True
        if not self.state.episode.active:
            return True

        budget = self._current_budget()
        factor = self.recovery_factor(budget)
        gate = self.policy.gates[tier]
        ceiling = self.policy.budget_max

        if factor > gate.min_factor:
            return True
        if budget > gate.budget_floor * ceiling:
            return True
        return self.low_usage() and budget > gate.low_usage_floor * ceiling

    def pressure(self) -> Pressure:
        """Coarse pressure level.

        The cache stretches structural TTLs with it and the planner throttles
        spawning at ``high`` and above. Sustained heavy consumption raises the
        level to at least ``high`` even while the gauge looks healthy.
        """

        level = self._budget_pressure()
        average = self.usage_average()
        if (
            average is not None
            and average > self.policy.heavy_usage
            and level in (Pressure.NONE, Pressure.ELEVATED)
        ):
            return Pressure.HIGH
        return level

    def _budget_pressure(self) -> Pressure:
        budget = self._read_budget()
        if budget is None:
            return Pressure.NONE

        policy = self.policy
        ceiling = policy.budget_max
        if budget < policy.critical_below * ceiling:
            return Pressure.CRITICAL
        if self.state.episode.active:
            if self.recovery_factor(budget) < policy.critical_factor:
                return Pressure.CRITICAL
            return Pressure.HIGH
        if budget < policy.high_below * ceiling:
            return Pressure.HIGH
        if budget < policy.elevated_below * ceiling:
            return Pressure.ELEVATED
        return Pressure.NONE

    def operations_status(self) -> str:
        factor = self.recovery_factor()
        if factor < 0.3:
            return "Critical Only"
        if factor < 0.5:
            return "Critical + High"
        if factor < 0.7:
            return "Critical + High + Medium"
        if factor < 0.9:
            return "Most Operations"
        return "All Operations"

    def status_report(self) -> str:
        """Return a multi-line status summary for operators."""

        tick = self._read_tick() or 0
        budget = self._current_budget()
        ceiling = self.policy.budget_max
        lines = ["Recovery Status:"]

        episode = self.state.episode
        if episode.active:
            lines.extend(
                [
                    f"- Status: ACTIVE ({tick - episode.start_tick} ticks)",
                    f"- Budget: {budget:.0f} / {ceiling:.0f}",
                    f"- Recovery Rate: {episode.rate:.2f}/tick",
                    f"- Recovery Factor: {self.recovery_factor(budget) * 100:.0f}%",
                    f"- Operations: {self.operations_status()}",
                ]
            )
        else:
            last_end = self.state.last_episode_end
            since = f"{tick - last_end} ticks ago" if last_end is not None else "never"
            lines.extend(
                [
                    "- Status: INACTIVE",
                    f"- Budget: {budget:.0f} / {ceiling:.0f}",
                    f"- Drain streak: {episode.drain_count}",
                    f"- Last Recovery: {since}",
                ]
            )
        return "\n".join(lines)
