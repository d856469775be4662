import pytest

from solar_tea.financials import (
    PROJECT_YEARS,
    build_financials,
    capex_for,
    compute_savings,
    incentive_ladder,
)
from solar_tea.models import AnalysisAssumptions, SystemSizing
from solar_tea.simulate import simulate
from solar_tea.yield_strategy import SystemLossParams, solar_cost_per_w, tiered_solar_cost_per_w


def _sim(profile, assumptions, sizing):
    return simulate(
        profile,
        pv_size_kw=sizing.pv_size_kw,
        batt_energy_kwh=sizing.batt_energy_kwh,
        batt_power_kw=sizing.batt_power_kw,
        demand_threshold_kw=sizing.demand_shaving_setpoint_kw,
        yield_factor=1.0,
        system_params=SystemLossParams.from_assumptions(assumptions),
    )


@pytest.mark.parametrize(
    "pv_kw, price",
    [(50, 2.30), (99.9, 2.30), (100, 2.15), (499, 2.15), (500, 2.00), (1000, 1.85), (2999, 1.85), (3000, 1.70)],
)
def test_tiered_solar_pricing(pv_kw, price):
    assert tiered_solar_cost_per_w(pv_kw) == price


def test_override_and_bifacial_premium(assumptions):
    assert solar_cost_per_w(200, assumptions.with_overrides({"solar_cost_per_w": 1.5})) == pytest.approx(1.5)
    assert solar_cost_per_w(200, assumptions.with_overrides({"bifacial_enabled": True})) == pytest.approx(2.25)


def test_incentive_ladder_hybrid(assumptions):
    sizing = SystemSizing(pv_size_kw=100, batt_energy_kwh=100, batt_power_kw=50)
    capex_pv, capex_batt = capex_for(sizing, assumptions)
    assert capex_pv == pytest.approx(215_000)
    assert capex_batt == pytest.approx(95_000)

    b = incentive_ladder(capex_pv, capex_batt, 100, 100, assumptions)
    assert b.capex_gross == pytest.approx(310_000)
    assert b.cap_40_percent == pytest.approx(124_000)
    assert b.actual_hq_solar == pytest.approx(100_000)
    assert b.actual_hq_battery == pytest.approx(24_000)
    assert b.itc_amount == pytest.approx(55_800)
    assert b.depreciable_basis == pytest.approx(130_200)
    assert b.tax_shield == pytest.approx(130_200 * 0.265 * 0.90)
    assert b.equity_initial == pytest.approx(310_000 - 100_000 - 12_000)
    assert b.battery_rebate_year0 == pytest.approx(12_000)
    assert b.battery_rebate_year1 == pytest.approx(12_000)
    assert b.capex_net == pytest.approx(310_000 - 124_000 - 55_800 - 130_200 * 0.265 * 0.90)


def test_solar_rebate_capped_at_forty_percent(assumptions):
    b = incentive_ladder(100_000.0, 0.0, 100, 0, assumptions)
    assert b.potential_hq_solar == pytest.approx(100_000)
    assert b.actual_hq_solar == pytest.approx(40_000)
    assert b.actual_hq_battery == 0.0


def test_solar_rebate_limited_to_program_capacity(assumptions):
    b = incentive_ladder(1500 * 1000 * 1.85, 0.0, 1500, 0, assumptions)
    assert b.potential_hq_solar == pytest.approx(1_000_000)
    assert b.actual_hq_solar == pytest.approx(1_000_000)


def test_battery_only_gets_no_utility_rebate(assumptions):
    b = incentive_ladder(0.0, 95_000.0, 0, 100, assumptions)
    assert b.total_hq == 0.0
    assert b.actual_hq_battery == 0.0
    assert b.itc_amount == pytest.approx(0.30 * 95_000)


def test_cashflow_timing(year_profile, assumptions):
    sizing = SystemSizing.for_candidate(100.0, 100.0, 50.0, year_profile.max_peak_kw)
    sim = _sim(year_profile, assumptions, sizing)
    stack = build_financials(sim, sizing, year_profile.max_peak_kw, 1_500_000.0, assumptions)
    b = stack.breakdown
    rows = stack.cashflows

    assert len(rows) == PROJECT_YEARS + 1
    assert rows[0].net_cashflow == pytest.approx(-b.equity_initial)
    assert rows[0].cumulative == pytest.approx(-b.equity_initial)
    assert rows[1].dpa == pytest.approx(b.tax_shield)
    assert rows[1].incentives == pytest.approx(b.battery_rebate_year1)
    assert rows[2].incentives == pytest.approx(b.itc_amount)
    assert all(r.dpa == 0.0 for r in rows[2:])
    assert all(r.incentives == 0.0 for r in rows[3:])
    assert all(r.opex <= 0.0 for r in rows[1:])

    replacements = [r.year for r in rows if r.investment < 0 and r.year > 0]
    assert replacements == [10, 20, 30]

    running = 0.0
    for r in rows:
        running += r.net_cashflow
        assert r.cumulative == pytest.approx(running)
        if r.year > 0:
            assert r.net_cashflow == pytest.approx(r.ebitda + r.investment + r.dpa + r.incentives)


def test_surplus_revenue_starts_in_year_three(year_profile, assumptions):
    sizing = SystemSizing.for_candidate(800.0, 0.0, 0.0, year_profile.max_peak_kw)
    sim = _sim(year_profile, assumptions, sizing)
    stack = build_financials(sim, sizing, year_profile.max_peak_kw, 1_500_000.0, assumptions)
    savings = stack.savings
    assert savings.annual_surplus_revenue > 0
    rows = stack.cashflows
    assert rows[1].revenue == pytest.approx(savings.annual_savings)
    assert rows[3].revenue == pytest.approx(
        (savings.annual_savings + savings.annual_surplus_revenue) * (1 - 0.005) ** 2 * 1.048**2
    )
    assert all(r.investment == 0.0 for r in rows[1:])


def test_savings_components(year_profile, assumptions):
    peak = year_profile.max_peak_kw
    sizing = SystemSizing.for_candidate(200.0, 200.0, 100.0, peak)
    sim = _sim(year_profile, assumptions, sizing)
    s = compute_savings(sim, peak, 1_000_000.0, assumptions)
    assert s.energy_savings == pytest.approx(sim.total_self_consumption_kwh * assumptions.tariff_energy)
    assert s.annual_savings == pytest.approx(s.energy_savings - s.grid_charging_cost + s.demand_savings)
    assert s.annual_cost_after == pytest.approx(s.annual_cost_before - s.annual_savings)
    assert s.annual_demand_reduction_kw == pytest.approx(peak - sim.peak_after_kw)


def test_zero_capex_short_circuits(year_profile, assumptions):
    sizing = SystemSizing()
    sim = _sim(year_profile, assumptions, sizing)
    stack = build_financials(sim, sizing, 100.0, 1_000_000.0, assumptions)
    assert stack.breakdown.capex_gross == 0.0
    assert stack.breakdown.capex_net == 0.0
    assert len(stack.cashflows) == PROJECT_YEARS + 1
    assert all(r.net_cashflow == 0.0 and r.cumulative == 0.0 for r in stack.cashflows)


def test_custom_replacement_year(year_profile):
    assumptions = AnalysisAssumptions(battery_replacement_year=12)
    sizing = SystemSizing.for_candidate(100.0, 200.0, 100.0, year_profile.max_peak_kw)
    sim = _sim(year_profile, assumptions, sizing)
    stack = build_financials(sim, sizing, year_profile.max_peak_kw, 1_500_000.0, assumptions)
    assert [r.year for r in stack.cashflows if r.investment < 0 and r.year > 0] == [12, 20, 30]
    expected = -stack.breakdown.capex_battery * 0.60 * (1 + 0.048 - 0.05) ** 12
    assert stack.cashflows[12].investment == pytest.approx(expected)
