"""
Capacitor stability simulation for the fitting engine.

This module answers whether a fit's capacitor is sustainable:
- Active modules drain a fixed amount per cycle
- Energy transfer modules feed energy back at the end of each activation
- Capacitor boosters inject charges, amortised over their reload cycle
- The capacitor recharges naturally along the in-game recovery curve

Stability Test:
1. Sum per-second drain and boost of every active module
2. Compare against natural recharge at its peak (25% capacitor)
3. Stable fits: bisect the recharge curve for the equilibrium level
4. Unstable fits: run a discrete-event simulation until the capacitor
   runs dry, or until the time/step budget is exhausted
"""

from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .attributes import (
    GROUP_CAPACITOR_BOOSTER,
    GROUP_ENERGY_NOSFERATU,
    ResolvedModule,
    ResolvedShip,
)
from .config import DEFAULT_CONFIG, EngineConfig

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Time constant of the recovery curve is a fifth of the nominal recharge time
RECHARGE_TAU_FACTOR = 5.0

# Event kinds; transfers landing at the same instant are credited first
_EVENT_TRANSFER = 0
_EVENT_ACTIVATION = 1


# =============================================================================
# RECHARGE CURVE
# =============================================================================

def peak_recharge_rate(
    capacity: float,
    recharge_time_s: float,
    fraction: float = 0.25,
) -> float:
    """
    Natural recharge rate at a given capacitor fraction.

    GJ/s = 10 * capacity / rechargeTime * sqrt(x) * (1 - sqrt(x))

    Args:
        capacity: Capacitor size (GJ).
        recharge_time_s: Nominal recharge time (seconds).
        fraction: Capacitor level as a fraction of capacity (0.0 to 1.0).

    Returns:
        Recharge rate in GJ/s, or 0 if the recharge time is not positive.
    """
    if recharge_time_s <= 0 or capacity <= 0:
        return 0.0
    root = math.sqrt(min(1.0, max(0.0, fraction)))
    return 10.0 * capacity / recharge_time_s * root * (1.0 - root)


def recharge_curve(
    capacity: float,
    recharge_time_s: float,
    fractions: np.ndarray,
) -> np.ndarray:
    """Vectorised recharge rate over an array of capacitor fractions."""
    fractions = np.clip(np.asarray(fractions, dtype=float), 0.0, 1.0)
    if recharge_time_s <= 0 or capacity <= 0:
        return np.zeros_like(fractions)
    roots = np.sqrt(fractions)
    return 10.0 * capacity / recharge_time_s * roots * (1.0 - roots)


def recharge_level(
    level: float,
    capacity: float,
    recharge_time_s: float,
    dt: float,
) -> float:
    """
    Capacitor level after recharging naturally for dt seconds.

    cap(t) = (1 + (sqrt(cap0 / capacity) - 1) * e^(-t / tau))^2 * capacity
    with tau = rechargeTime / 5.
    """
    if capacity <= 0 or recharge_time_s <= 0 or dt <= 0:
        return level
    tau = recharge_time_s / RECHARGE_TAU_FACTOR
    root = math.sqrt(min(1.0, max(0.0, level / capacity)))
    return ((1.0 + (root - 1.0) * math.exp(-dt / tau)) ** 2) * capacity


# =============================================================================
# MODULE DRAINS
# =============================================================================

@dataclass
class CapacitorDrain:
    """
    Capacitor usage of one active module.

    Attributes:
        name: Module display name.
        cycle_time_s: Full cycle (activation plus reactivation delay) in seconds.
        activation_time_s: Activation duration alone, in seconds.
        cap_need: Capacitor consumed at the start of each cycle (GJ).
        transfer_amount: Capacitor gained at the end of each activation (GJ).
    """
    name: str
    cycle_time_s: float
    activation_time_s: float
    cap_need: float
    transfer_amount: float = 0.0

    @property
    def use_per_second(self) -> float:
        return self.cap_need / self.cycle_time_s

    @property
    def transfer_per_second(self) -> float:
        return self.transfer_amount / self.cycle_time_s


@dataclass
class CapacitorBudget:
    """Per-second totals of every active module."""
    drains: List[CapacitorDrain] = field(default_factory=list)
    total_use: float = 0.0
    booster_rate: float = 0.0
    transfer_rate: float = 0.0

    @property
    def total_boost(self) -> float:
        return self.booster_rate + self.transfer_rate


def capacitor_booster_rate(module: ResolvedModule) -> float:
    """
    Continuous capacitor injection of a loaded capacitor booster.

    The booster fires its whole clip, then reloads:
    cycle = activation * (charges / chargeRate) + reloadTime

    Args:
        module: Capacitor booster module with a loaded charge.

    Returns:
        Injected capacitor per second (GJ/s).
    """
    charge = module.charge
    if charge is None:
        return 0.0

    capacitor_bonus = charge.attributes.get("capacitorBonus", 0.0)
    charge_quantity = float(charge.quantity or 0)

    activation_s = max(
        module.attributes.get("speed", 0.0),
        module.attributes.get("duration", 0.0),
    ) / 1000.0
    reload_s = module.attributes.get("reloadTime", 0.0) / 1000.0
    charge_rate = module.attributes.get("chargeRate", 1.0) or 1.0

    cycles = charge_quantity / charge_rate
    cycle_time = activation_s * cycles + reload_s
    if cycle_time <= 0:
        return 0.0

    rate = charge_quantity * capacitor_bonus / cycle_time
    logger.debug(
        "Capacitor booster %s: %s x %.1f GJ over %.1f s -> %.3f GJ/s",
        module.name, charge.quantity, capacitor_bonus, cycle_time, rate,
    )
    return rate


def collect_capacitor_drains(modules: Iterable[ResolvedModule]) -> CapacitorBudget:
    """
    Build the capacitor budget of the active modules.

    Capacitor boosters with a loaded charge only contribute to the boost
    rate. Every other active module with a cycle duration becomes a drain;
    energy transfer modules also credit their transfer amount.

    Args:
        modules: Fitted modules of the ship.

    Returns:
        CapacitorBudget with drains and per-second totals.
    """
    budget = CapacitorBudget()

    for module in modules:
        if not module.is_active:
            continue

        if module.group_id == GROUP_CAPACITOR_BOOSTER and module.charge is not None:
            budget.booster_rate += capacitor_booster_rate(module)
            continue

        cap_need = module.attributes.get("capacitorNeed", 0.0)
        transfer = 0.0
        if module.group_id == GROUP_ENERGY_NOSFERATU:
            transfer = module.attributes.get("powerTransferAmount", 0.0)

        activation_s = module.cycle_duration_ms / 1000.0
        if activation_s <= 0:
            continue
        delay_s = module.attributes.get("moduleReactivationDelay", 0.0) / 1000.0

        drain = CapacitorDrain(
            name=module.name,
            cycle_time_s=activation_s + delay_s,
            activation_time_s=activation_s,
            cap_need=cap_need,
            transfer_amount=transfer,
        )
        budget.drains.append(drain)
        budget.total_use += drain.use_per_second
        budget.transfer_rate += drain.transfer_per_second

        logger.debug(
            "Capacitor drain %s: %.1f GJ per %.2f s (transfer %.1f GJ)",
            drain.name, cap_need, drain.cycle_time_s, transfer,
        )

    return budget


# =============================================================================
# EQUILIBRIUM SEARCH
# =============================================================================

def find_stable_level(
    capacity: float,
    recharge_time_s: float,
    net_use: float,
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """
    Find the capacitor fraction where natural recharge balances net use.

    The recharge curve rises to its peak at 25% and falls back to zero at
    100%. The fit settles on the falling branch, so the curve is sampled
    between the peak and full to bracket the crossing before bisecting.

    Args:
        capacity: Capacitor size (GJ).
        recharge_time_s: Nominal recharge time (seconds).
        net_use: Drain minus boost (GJ/s).
        config: Search parameters.

    Returns:
        Equilibrium capacitor fraction (0.0 to 1.0). With no net drain
        there is nothing to balance and the lower bound 0.0 is returned.
    """
    if net_use <= 0:
        return 0.0

    peak = config.peak_recharge_fraction
    samples = np.linspace(peak, 1.0, config.bracket_samples)
    residual = recharge_curve(capacity, recharge_time_s, samples) - net_use

    crossings = np.flatnonzero(residual <= 0)
    if crossings.size == 0:
        return 1.0
    upper_index = int(crossings[0])
    if upper_index == 0:
        # Drain at or above the peak: the fit balances exactly at the peak
        return float(peak)

    low = float(samples[upper_index - 1])
    high = float(samples[upper_index])

    for iteration in range(config.bisection_max_iterations):
        mid = (low + high) / 2.0
        diff = peak_recharge_rate(capacity, recharge_time_s, mid) - net_use
        if abs(diff) < config.bisection_tolerance:
            logger.debug("Stable level converged after %d iterations", iteration + 1)
            return mid
        if diff > 0:
            low = mid
        else:
            high = mid

    return (low + high) / 2.0


# =============================================================================
# DEPLETION SIMULATION
# =============================================================================

@dataclass
class DepletionTrace:
    """
    Outcome of a depletion simulation.

    Attributes:
        lasts_seconds: Time until the capacitor ran dry (inf if it never did).
        steps: Events processed.
        hit_simulation_limit: True if the time or step budget ran out.
        final_level: Capacitor level when the simulation stopped (GJ).
        levels: (time, level) after each event, when recording was requested.
    """
    lasts_seconds: float
    steps: int
    hit_simulation_limit: bool = False
    final_level: float = 0.0
    levels: List[Tuple[float, float]] = field(default_factory=list)


def simulate_depletion(
    capacity: float,
    recharge_time_s: float,
    drains: Sequence[CapacitorDrain],
    boost_rate: float = 0.0,
    config: EngineConfig = DEFAULT_CONFIG,
    starting_fraction: float = 1.0,
    record_levels: bool = False,
) -> DepletionTrace:
    """
    Simulate module activations until the capacitor runs dry.

    Every drain activates at t=0 and then once per full cycle. Between
    events the capacitor follows the natural recovery curve plus the
    linear boost from capacitor boosters.

    Args:
        capacity: Capacitor size (GJ).
        recharge_time_s: Nominal recharge time (seconds).
        drains: Active module drains.
        boost_rate: Continuous injection (GJ/s), e.g. from capacitor boosters.
        config: Simulation ceilings.
        starting_fraction: Initial capacitor level as a fraction of capacity.
        record_levels: Keep the (time, level) series in the trace.

    Returns:
        DepletionTrace with the time the capacitor lasted.
    """
    level = capacity * starting_fraction
    now = 0.0
    trace = DepletionTrace(lasts_seconds=math.inf, steps=0, final_level=level)

    queue: List[Tuple[float, int, int, int]] = []
    sequence = 0
    for index, drain in enumerate(drains):
        if drain.cap_need > 0 or drain.transfer_amount > 0:
            queue.append((0.0, _EVENT_ACTIVATION, sequence, index))
            sequence += 1
    heapq.heapify(queue)

    if not queue:
        logger.info("No capacitor events to simulate, treating fit as stable")
        return trace

    while trace.steps < config.max_simulation_steps:
        event_time, kind, _, index = heapq.heappop(queue)
        if event_time >= config.max_simulation_time_s:
            break

        dt = event_time - now
        if dt > 0:
            recharged = recharge_level(level, capacity, recharge_time_s, dt)
            level = min(recharged + boost_rate * dt, capacity)
            now = event_time

        drain = drains[index]
        if kind == _EVENT_TRANSFER:
            level = min(level + drain.transfer_amount, capacity)
        else:
            level -= drain.cap_need
            if level < 0:
                trace.steps += 1
                trace.lasts_seconds = now
                trace.final_level = level
                if record_levels:
                    trace.levels.append((now, level))
                logger.info("Capacitor depleted after %.1f s (%d events)", now, trace.steps)
                return trace

            heapq.heappush(queue, (now + drain.cycle_time_s, _EVENT_ACTIVATION, sequence, index))
            sequence += 1
            if drain.transfer_amount > 0:
                heapq.heappush(queue, (now + drain.activation_time_s, _EVENT_TRANSFER, sequence, index))
                sequence += 1

        trace.steps += 1
        if record_levels:
            trace.levels.append((now, level))

    trace.hit_simulation_limit = True
    trace.final_level = level
    logger.warning(
        "Capacitor simulation budget exhausted at %.0f s after %d events "
        "(%.1f GJ left); reporting as stable",
        now, trace.steps, level,
    )
    return trace


# =============================================================================
# STABILITY ENTRY POINT
# =============================================================================

@dataclass
class CapacitorResult:
    """
    Capacitor stability of a fit.

    Attributes:
        is_stable: Whether the capacitor never runs dry.
        stable_level_fraction: Equilibrium level as a fraction of capacity.
        lasts_seconds: Time until empty (inf for stable fits).
        net_delta_per_second: Peak recharge plus boost minus use (GJ/s).
        capacity: Capacitor size (GJ).
        peak_recharge_rate: Natural recharge at the peak fraction (GJ/s).
        total_use: Capacitor consumed per second (GJ/s).
        total_boost: Capacitor injected or transferred per second (GJ/s).
        energy_warfare_resistance: Fraction of hostile drain resisted.
        hit_simulation_limit: Stability assumed because the simulation
            budget ran out, not proven analytically.
        steps: Events processed by the depletion simulation.
    """
    is_stable: bool
    stable_level_fraction: float
    lasts_seconds: float
    net_delta_per_second: float
    capacity: float = 0.0
    peak_recharge_rate: float = 0.0
    total_use: float = 0.0
    total_boost: float = 0.0
    energy_warfare_resistance: float = 0.0
    hit_simulation_limit: bool = False
    steps: int = 0

    @property
    def stable_level_percent(self) -> float:
        return self.stable_level_fraction * 100.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "is_stable": self.is_stable,
            "stable_level_percent": round(self.stable_level_percent, 2),
            "lasts_seconds": None if math.isinf(self.lasts_seconds) else round(self.lasts_seconds, 1),
            "net_delta_per_second": round(self.net_delta_per_second, 3),
            "capacity": self.capacity,
            "peak_recharge_rate": round(self.peak_recharge_rate, 3),
            "total_use": round(self.total_use, 3),
            "total_boost": round(self.total_boost, 3),
            "energy_warfare_resistance": self.energy_warfare_resistance,
            "hit_simulation_limit": self.hit_simulation_limit,
        }


def simulate_capacitor(
    ship: ResolvedShip,
    modules: Iterable[ResolvedModule],
    config: Optional[EngineConfig] = None,
) -> CapacitorResult:
    """
    Determine capacitor stability of a resolved fit.

    Args:
        ship: Resolved hull with capacitorCapacity and rechargeRate.
        modules: Fitted modules.
        config: Engine configuration (defaults apply when omitted).

    Returns:
        CapacitorResult for the fit.
    """
    config = config or DEFAULT_CONFIG

    capacity = ship.capacity
    recharge_time_s = ship.recharge_time_s
    budget = collect_capacitor_drains(modules)

    peak_rate = peak_recharge_rate(capacity, recharge_time_s, config.peak_recharge_fraction)
    delta = peak_rate + budget.total_boost - budget.total_use

    logger.debug(
        "Capacitor %.1f GJ, recharge %.1f s: peak %.3f GJ/s, use %.3f GJ/s, boost %.3f GJ/s",
        capacity, recharge_time_s, peak_rate, budget.total_use, budget.total_boost,
    )

    result = CapacitorResult(
        is_stable=delta >= 0,
        stable_level_fraction=0.0,
        lasts_seconds=math.inf,
        net_delta_per_second=delta,
        capacity=capacity,
        peak_recharge_rate=peak_rate,
        total_use=budget.total_use,
        total_boost=budget.total_boost,
        energy_warfare_resistance=ship.energy_warfare_resistance,
    )

    if result.is_stable:
        result.stable_level_fraction = find_stable_level(
            capacity,
            recharge_time_s,
            budget.total_use - budget.total_boost,
            config,
        )
        logger.info("Capacitor stable at %.1f%%", result.stable_level_percent)
        return result

    trace = simulate_depletion(
        capacity,
        recharge_time_s,
        budget.drains,
        boost_rate=budget.booster_rate,
        config=config,
    )
    result.steps = trace.steps
    result.lasts_seconds = trace.lasts_seconds

    if trace.hit_simulation_limit or math.isinf(trace.lasts_seconds):
        result.is_stable = True
        result.hit_simulation_limit = trace.hit_simulation_limit
        if capacity > 0:
            result.stable_level_fraction = max(0.0, min(1.0, trace.final_level / capacity))

    return result
