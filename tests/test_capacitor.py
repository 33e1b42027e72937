"""
Tests for the capacitor stability simulator.

Tests cover:
- Natural recharge curve (scalar and vectorised)
- Drain collection from active modules, boosters and energy transfers
- Equilibrium search for stable fits
- Depletion simulation for unstable fits
- Simulation budget exhaustion
"""

import logging
import math

import numpy as np
import pytest

from fitengine.attributes import (
    GROUP_CAPACITOR_BOOSTER,
    GROUP_ENERGY_NOSFERATU,
    Charge,
    ModuleStatus,
    ResolvedModule,
    ResolvedShip,
)
from fitengine.capacitor import (
    CapacitorDrain,
    capacitor_booster_rate,
    collect_capacitor_drains,
    find_stable_level,
    peak_recharge_rate,
    recharge_curve,
    recharge_level,
    simulate_capacitor,
    simulate_depletion,
)
from fitengine.config import EngineConfig


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def cruiser():
    """1000 GJ capacitor recharging in 300 s."""
    return ResolvedShip(
        type_id=1,
        name="Cruiser",
        attributes={"capacitorCapacity": 1000.0, "rechargeRate": 300_000.0},
    )


@pytest.fixture
def frigate():
    """Small, slow-recharging capacitor: 400 GJ over 2000 s."""
    return ResolvedShip(
        type_id=2,
        name="Frigate",
        attributes={"capacitorCapacity": 400.0, "rechargeRate": 2_000_000.0},
    )


def make_module(name="Module", cap_need=10.0, duration_ms=2000.0, status=ModuleStatus.ACTIVE,
                group_id=0, **attributes):
    attrs = {"capacitorNeed": cap_need, "duration": duration_ms}
    attrs.update(attributes)
    return ResolvedModule(type_id=100, name=name, status=status, group_id=group_id, attributes=attrs)


@pytest.fixture
def heavy_weapon():
    """10 GJ every 2 seconds = 5 GJ/s."""
    return make_module(name="Heavy Weapon", cap_need=10.0, duration_ms=2000.0)


@pytest.fixture
def nosferatu():
    """Transfers 5 GJ at the end of each 5 s activation, costs nothing."""
    return make_module(
        name="Nosferatu",
        cap_need=0.0,
        duration_ms=5000.0,
        group_id=GROUP_ENERGY_NOSFERATU,
        powerTransferAmount=5.0,
    )


@pytest.fixture
def cap_booster():
    """Ten 100 GJ charges, 10 s per activation, 10 s reload."""
    return ResolvedModule(
        type_id=200,
        name="Capacitor Booster",
        status=ModuleStatus.ACTIVE,
        group_id=GROUP_CAPACITOR_BOOSTER,
        attributes={"duration": 10_000.0, "reloadTime": 10_000.0, "chargeRate": 1.0},
        charge=Charge(type_id=201, name="Cap Booster 100", attributes={"capacitorBonus": 100.0}, quantity=10),
    )


# ============================================================================
# RECHARGE CURVE
# ============================================================================

class TestRechargeCurve:
    """Tests for the natural recharge rate and level functions."""

    def test_peak_rate_at_quarter(self):
        """Peak recharge is 10 * C / T * 0.5 * 0.5 at 25%."""
        rate = peak_recharge_rate(1000.0, 300.0, 0.25)
        assert rate == pytest.approx(10.0 * 1000.0 / 300.0 * 0.25)
        assert rate == pytest.approx(8.333, abs=1e-3)

    def test_peak_is_maximum(self):
        """No fraction recharges faster than 25%."""
        peak = peak_recharge_rate(1000.0, 300.0, 0.25)
        for fraction in (0.0, 0.1, 0.2, 0.3, 0.5, 0.9, 1.0):
            assert peak_recharge_rate(1000.0, 300.0, fraction) <= peak

    def test_empty_and_full_do_not_recharge(self):
        """Rate is zero at both ends of the curve."""
        assert peak_recharge_rate(1000.0, 300.0, 0.0) == 0.0
        assert peak_recharge_rate(1000.0, 300.0, 1.0) == 0.0

    def test_zero_recharge_time(self):
        """Non-positive recharge time means no natural recharge."""
        assert peak_recharge_rate(1000.0, 0.0) == 0.0
        assert peak_recharge_rate(1000.0, -5.0) == 0.0

    def test_vectorised_curve_matches_scalar(self):
        """recharge_curve agrees with peak_recharge_rate pointwise."""
        fractions = np.linspace(0.0, 1.0, 11)
        rates = recharge_curve(1000.0, 300.0, fractions)
        expected = [peak_recharge_rate(1000.0, 300.0, f) for f in fractions]
        assert rates.tolist() == pytest.approx(expected)

    def test_vectorised_curve_without_recharge(self):
        """Zero recharge time gives an all-zero curve."""
        rates = recharge_curve(1000.0, 0.0, np.array([0.25, 0.5]))
        assert np.all(rates == 0.0)

    def test_recharge_level_full_stays_full(self):
        """A full capacitor stays full."""
        assert recharge_level(1000.0, 1000.0, 300.0, 10.0) == pytest.approx(1000.0)

    def test_recharge_level_rises(self):
        """Level grows monotonically over time."""
        after_10 = recharge_level(100.0, 1000.0, 300.0, 10.0)
        after_60 = recharge_level(100.0, 1000.0, 300.0, 60.0)
        assert 100.0 < after_10 < after_60 < 1000.0

    def test_recharge_level_approaches_capacity(self):
        """After many recharge times the capacitor is practically full."""
        assert recharge_level(0.0, 1000.0, 300.0, 3000.0) == pytest.approx(1000.0, rel=1e-6)

    def test_recharge_level_without_recharge(self):
        """Zero recharge time leaves the level untouched."""
        assert recharge_level(250.0, 1000.0, 0.0, 100.0) == 250.0


# ============================================================================
# DRAIN COLLECTION
# ============================================================================

class TestCollectDrains:
    """Tests for building the capacitor budget from modules."""

    def test_active_module_is_drain(self, heavy_weapon):
        """Active module contributes cap need / cycle time."""
        budget = collect_capacitor_drains([heavy_weapon])
        assert len(budget.drains) == 1
        assert budget.total_use == pytest.approx(5.0)
        assert budget.total_boost == 0.0

    def test_inactive_modules_ignored(self):
        """Offline and online modules do not consume capacitor."""
        modules = [
            make_module(status=ModuleStatus.OFFLINE),
            make_module(status=ModuleStatus.ONLINE),
        ]
        budget = collect_capacitor_drains(modules)
        assert budget.drains == []
        assert budget.total_use == 0.0

    def test_overloaded_module_counts(self):
        """Overloaded modules still cycle."""
        budget = collect_capacitor_drains([make_module(status=ModuleStatus.OVERLOAD)])
        assert budget.total_use == pytest.approx(5.0)

    def test_reactivation_delay_extends_cycle(self):
        """Reactivation delay is part of the cycle time."""
        module = make_module(cap_need=10.0, duration_ms=2000.0, moduleReactivationDelay=3000.0)
        budget = collect_capacitor_drains([module])
        assert budget.drains[0].cycle_time_s == pytest.approx(5.0)
        assert budget.drains[0].activation_time_s == pytest.approx(2.0)
        assert budget.total_use == pytest.approx(2.0)

    def test_zero_duration_skipped(self):
        """Modules without a cycle duration are not drains."""
        budget = collect_capacitor_drains([make_module(duration_ms=0.0)])
        assert budget.drains == []

    def test_duration_from_any_attribute(self):
        """The largest populated duration attribute is used."""
        module = ResolvedModule(
            type_id=1,
            status=ModuleStatus.ACTIVE,
            attributes={"capacitorNeed": 12.0, "durationECMJammerBurstProjector": 6000.0},
        )
        budget = collect_capacitor_drains([module])
        assert budget.total_use == pytest.approx(2.0)

    def test_nosferatu_adds_transfer(self, nosferatu):
        """Energy transfer counts as boost."""
        budget = collect_capacitor_drains([nosferatu])
        assert budget.transfer_rate == pytest.approx(1.0)
        assert budget.total_boost == pytest.approx(1.0)
        assert budget.drains[0].transfer_amount == 5.0

    def test_booster_is_boost_not_drain(self, cap_booster):
        """Loaded capacitor boosters raise total_boost and are not drains."""
        budget = collect_capacitor_drains([cap_booster])
        assert budget.drains == []
        assert budget.booster_rate == pytest.approx(1000.0 / 110.0)
        assert budget.total_boost == pytest.approx(1000.0 / 110.0)

    def test_booster_rate_without_charge(self, cap_booster):
        """Empty booster injects nothing."""
        cap_booster.charge = None
        assert capacitor_booster_rate(cap_booster) == 0.0


# ============================================================================
# EQUILIBRIUM SEARCH
# ============================================================================

class TestFindStableLevel:
    """Tests for the equilibrium bisection."""

    def test_zero_net_use(self):
        """Nothing to balance: the lower bound is returned."""
        assert find_stable_level(1000.0, 300.0, 0.0) == 0.0
        assert find_stable_level(1000.0, 300.0, -3.0) == 0.0

    def test_residual_within_tolerance(self):
        """Recharge at the found level balances the net use."""
        level = find_stable_level(1000.0, 300.0, 2.0)
        assert abs(peak_recharge_rate(1000.0, 300.0, level) - 2.0) < 1e-3

    def test_level_on_upper_branch(self):
        """The equilibrium is above the peak."""
        level = find_stable_level(1000.0, 300.0, 2.0)
        assert 0.25 < level < 1.0
        # sqrt(x) = (1 + sqrt(1 - 4 * 0.06)) / 2
        expected = ((1.0 + math.sqrt(1.0 - 0.24)) / 2.0) ** 2
        assert level == pytest.approx(expected, abs=1e-3)

    def test_drain_equal_to_peak(self):
        """A drain exactly at peak recharge settles at the peak."""
        peak = peak_recharge_rate(1000.0, 300.0, 0.25)
        assert find_stable_level(1000.0, 300.0, peak) == pytest.approx(0.25)

    def test_heavier_drain_lowers_level(self):
        """More drain means a lower equilibrium."""
        light = find_stable_level(1000.0, 300.0, 1.0)
        heavy = find_stable_level(1000.0, 300.0, 6.0)
        assert heavy < light


# ============================================================================
# DEPLETION SIMULATION
# ============================================================================

class TestSimulateDepletion:
    """Tests for the discrete-event depletion simulation."""

    def test_no_recharge_exact_depletion(self):
        """Without recharge, 400 GJ at 10 GJ per 2 s runs dry on the 41st activation."""
        drains = [CapacitorDrain("gun", cycle_time_s=2.0, activation_time_s=2.0, cap_need=10.0)]
        trace = simulate_depletion(400.0, 0.0, drains)
        assert trace.lasts_seconds == pytest.approx(80.0)
        assert trace.steps == 41
        assert trace.hit_simulation_limit is False

    def test_no_events_never_depletes(self):
        """Nothing to simulate: capacitor never runs dry."""
        trace = simulate_depletion(400.0, 100.0, [])
        assert math.isinf(trace.lasts_seconds)
        assert trace.steps == 0

    def test_boost_extends_lifetime(self):
        """Continuous boost delays depletion."""
        drains = [CapacitorDrain("gun", cycle_time_s=2.0, activation_time_s=2.0, cap_need=10.0)]
        plain = simulate_depletion(400.0, 0.0, drains)
        boosted = simulate_depletion(400.0, 0.0, drains, boost_rate=2.0)
        assert boosted.lasts_seconds > plain.lasts_seconds

    def test_record_levels(self):
        """Level series is recorded on request."""
        drains = [CapacitorDrain("gun", cycle_time_s=2.0, activation_time_s=2.0, cap_need=10.0)]
        trace = simulate_depletion(100.0, 0.0, drains, record_levels=True)
        assert trace.levels[0] == (0.0, 90.0)
        assert trace.levels[-1][1] < 0
        assert len(trace.levels) == trace.steps

    def test_level_non_negative_until_depletion(self, frigate, heavy_weapon, nosferatu):
        """With recharge and several drains, only the final sample dips below zero."""
        budget = collect_capacitor_drains([heavy_weapon, nosferatu])
        trace = simulate_depletion(
            frigate.capacity,
            frigate.recharge_time_s,
            budget.drains,
            boost_rate=budget.booster_rate,
            record_levels=True,
        )
        assert math.isfinite(trace.lasts_seconds)
        assert len(trace.levels) > 2
        assert all(level >= 0 for _, level in trace.levels[:-1])
        assert trace.levels[-1][1] <= 0
        assert trace.levels[-1][0] == trace.lasts_seconds

    def test_step_budget(self, caplog):
        """Running out of steps is flagged and logged."""
        config = EngineConfig(max_simulation_steps=5)
        drains = [CapacitorDrain("gun", cycle_time_s=2.0, activation_time_s=2.0, cap_need=10.0)]
        with caplog.at_level(logging.WARNING, logger="fitengine.capacitor"):
            trace = simulate_depletion(400.0, 0.0, drains, config=config)
        assert trace.hit_simulation_limit is True
        assert trace.steps == 5
        assert math.isinf(trace.lasts_seconds)
        assert "budget exhausted" in caplog.text


# ============================================================================
# STABILITY ENTRY POINT
# ============================================================================

class TestSimulateCapacitor:
    """Tests for simulate_capacitor end to end."""

    def test_no_modules_is_stable(self, cruiser):
        """1000 GJ / 300 s with nothing active: stable with zero cost."""
        result = simulate_capacitor(cruiser, [])
        assert result.is_stable is True
        assert result.peak_recharge_rate == pytest.approx(8.333, abs=1e-3)
        assert result.net_delta_per_second == pytest.approx(8.333, abs=1e-3)
        assert result.stable_level_fraction == 0.0
        assert math.isinf(result.lasts_seconds)
        assert result.hit_simulation_limit is False

    def test_stable_fit_finds_equilibrium(self, cruiser):
        """Stable fit with drain reports the balancing level."""
        module = make_module(cap_need=10.0, duration_ms=5000.0)
        result = simulate_capacitor(cruiser, [module])
        assert result.is_stable is True
        assert result.total_use == pytest.approx(2.0)
        residual = peak_recharge_rate(1000.0, 300.0, result.stable_level_fraction) - 2.0
        assert abs(residual) < 1e-3
        assert result.stable_level_percent == pytest.approx(result.stable_level_fraction * 100)

    def test_unstable_fit_depletes(self, frigate, heavy_weapon):
        """400 GJ / 2000 s against 5 GJ/s runs dry well within the time ceiling."""
        result = simulate_capacitor(frigate, [heavy_weapon])
        assert result.peak_recharge_rate == pytest.approx(0.5)
        assert result.peak_recharge_rate < 5.0
        assert result.is_stable is False
        assert result.net_delta_per_second < 0
        assert 78.0 <= result.lasts_seconds < 28800.0
        assert result.lasts_seconds < 100.0
        assert result.hit_simulation_limit is False

    def test_transfer_lengthens_lifetime(self, frigate, heavy_weapon, nosferatu):
        """Energy transfer credited each activation delays depletion."""
        without = simulate_capacitor(frigate, [heavy_weapon])
        with_transfer = simulate_capacitor(frigate, [heavy_weapon, nosferatu])
        assert with_transfer.is_stable is False
        assert with_transfer.total_boost == pytest.approx(1.0)
        assert with_transfer.lasts_seconds > without.lasts_seconds

    def test_booster_can_stabilise(self, frigate, heavy_weapon, cap_booster):
        """A booster outpacing the drain makes the fit stable."""
        result = simulate_capacitor(frigate, [heavy_weapon, cap_booster])
        assert result.total_boost == pytest.approx(1000.0 / 110.0)
        assert result.is_stable is True
        assert result.hit_simulation_limit is False

    def test_online_modules_do_not_drain(self, frigate):
        """Status at or below online is ignored."""
        module = make_module(cap_need=10.0, duration_ms=2000.0, status=ModuleStatus.ONLINE)
        result = simulate_capacitor(frigate, [module])
        assert result.total_use == 0.0
        assert result.is_stable is True

    def test_time_budget_reports_stable_with_flag(self, frigate, heavy_weapon, caplog):
        """Exhausting the time ceiling is stable by assumption, not by proof."""
        config = EngineConfig(max_simulation_time_s=10.0)
        with caplog.at_level(logging.WARNING, logger="fitengine.capacitor"):
            result = simulate_capacitor(frigate, [heavy_weapon], config=config)
        assert result.is_stable is True
        assert result.hit_simulation_limit is True
        assert math.isinf(result.lasts_seconds)
        assert 0.0 < result.stable_level_fraction < 1.0
        assert "budget exhausted" in caplog.text

    def test_zero_recharge_time(self, heavy_weapon):
        """No natural recharge: depletes after capacity / cost activations."""
        ship = ResolvedShip(attributes={"capacitorCapacity": 400.0, "rechargeRate": 0.0})
        result = simulate_capacitor(ship, [heavy_weapon])
        assert result.peak_recharge_rate == 0.0
        assert result.is_stable is False
        assert result.lasts_seconds == pytest.approx(80.0)

    def test_energy_warfare_resistance(self, cruiser):
        """Resistance is reported as the resisted fraction."""
        cruiser.attributes["energyWarfareResistance"] = 0.6
        result = simulate_capacitor(cruiser, [])
        assert result.energy_warfare_resistance == pytest.approx(0.4)

    def test_deterministic(self, frigate, heavy_weapon, nosferatu):
        """Identical inputs give identical results."""
        first = simulate_capacitor(frigate, [heavy_weapon, nosferatu])
        second = simulate_capacitor(frigate, [heavy_weapon, nosferatu])
        assert first == second

    def test_to_dict(self, cruiser, frigate, heavy_weapon):
        """Infinite lifetime serialises as None."""
        stable = simulate_capacitor(cruiser, []).to_dict()
        assert stable["is_stable"] is True
        assert stable["lasts_seconds"] is None

        unstable = simulate_capacitor(frigate, [heavy_weapon]).to_dict()
        assert unstable["is_stable"] is False
        assert isinstance(unstable["lasts_seconds"], float)
