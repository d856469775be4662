import numpy as np
import pytest

from conftest import make_profile
from solar_tea.financials import compute_savings
from solar_tea.simulate import simulate, solar_production
from solar_tea.yield_strategy import SystemLossParams


def _run(profile, assumptions, *, pv=0.0, energy=0.0, power=0.0, threshold=None, source="default", snow="none"):
    return simulate(
        profile,
        pv_size_kw=pv,
        batt_energy_kwh=energy,
        batt_power_kw=power,
        demand_threshold_kw=threshold if threshold is not None else profile.max_peak_kw,
        yield_factor=1.0,
        system_params=SystemLossParams.from_assumptions(assumptions),
        yield_source=source,
        snow_loss_profile=snow,
    )


def test_reference_production_within_five_percent(lossless):
    profile = make_profile(200.0)
    sim = _run(profile, lossless, pv=500.0, source="manual")
    assert sim.total_production_kwh == pytest.approx(575_000, rel=0.05)
    assert sim.clipping_loss_kwh == 0.0


def test_reference_scenario_with_default_losses(assumptions):
    # load large enough that every produced kWh is self-consumed
    profile = make_profile(1000.0)
    tariffs = assumptions.with_overrides({"tariff_energy": 0.06})
    sim = _run(profile, tariffs, pv=500.0)
    assert sim.total_production_kwh == pytest.approx(575_000, rel=0.05)
    assert sim.total_self_consumption_kwh == pytest.approx(sim.total_production_kwh)

    savings = compute_savings(sim, 1000.0, 8_760_000.0, tariffs)
    assert savings.energy_savings == pytest.approx(575_000 * 0.06, rel=0.05)
    assert savings.demand_savings == 0.0
    assert savings.annual_savings == pytest.approx(savings.energy_savings)
    assert savings.annual_demand_reduction_kw == 0.0


def test_production_zero_outside_daylight(lossless):
    profile = make_profile(100.0)
    sim = _run(profile, lossless, pv=100.0, source="manual")
    night = (profile.hour < 5) | (profile.hour > 20)
    assert (sim.production_kw[night] == 0).all()
    assert (sim.production_kw >= 0).all()


def test_self_consumption_never_exceeds_production(year_profile, assumptions):
    peak = year_profile.max_peak_kw
    sim = _run(year_profile, assumptions, pv=300.0, energy=400.0, power=200.0, threshold=round(0.9 * peak))
    assert sim.total_self_consumption_kwh <= sim.total_production_kwh
    assert sim.total_grid_charging_kwh > 0


def test_zero_battery_matches_plain_solar_offset(year_profile, assumptions):
    sim = _run(year_profile, assumptions, pv=250.0)
    production, _ = solar_production(
        year_profile,
        pv_size_kw=250.0,
        yield_factor=1.0,
        system_params=SystemLossParams.from_assumptions(assumptions),
        yield_source="default",
    )
    expected = np.minimum(year_profile.consumption_kwh, production).sum()
    assert sim.total_self_consumption_kwh == pytest.approx(expected)
    assert sim.total_grid_charging_kwh == 0.0
    assert sim.monthly_peaks_after == sim.monthly_peaks_before


def test_zero_battery_power_is_treated_as_no_battery(year_profile, assumptions):
    with_energy_only = _run(year_profile, assumptions, pv=250.0, energy=500.0, power=0.0)
    none = _run(year_profile, assumptions, pv=250.0)
    assert with_energy_only.total_self_consumption_kwh == pytest.approx(none.total_self_consumption_kwh)
    assert with_energy_only.peak_after_kw == none.peak_after_kw


def test_clipping_with_high_inverter_load_ratio(lossless):
    profile = make_profile(200.0)
    clipped = lossless.with_overrides({"inverter_load_ratio": 2.0})
    sim = _run(profile, clipped, pv=500.0, source="manual")
    unclipped = _run(profile, lossless, pv=500.0, source="manual")
    assert sim.clipping_loss_kwh > 0
    assert sim.production_kw.max() <= 250.0 + 1e-9
    assert sim.total_production_kwh + sim.clipping_loss_kwh == pytest.approx(unclipped.total_production_kwh)


def test_temperature_correction_skipped_for_manual_and_google(assumptions):
    profile = make_profile(100.0)
    manual = _run(profile, assumptions, pv=100.0, source="manual")
    google = _run(profile, assumptions, pv=100.0, source="google")
    default = _run(profile, assumptions, pv=100.0, source="default")
    assert manual.total_production_kwh == pytest.approx(google.total_production_kwh)
    # cold January boosts output, hot July derates it
    jan = profile.month == 1
    jul = profile.month == 7
    assert default.production_kw[jan].sum() > manual.production_kw[jan].sum()
    assert default.production_kw[jul].sum() < manual.production_kw[jul].sum()


def test_snow_losses_reduce_winter_only(lossless):
    profile = make_profile(100.0)
    clear = _run(profile, lossless, pv=100.0, source="manual")
    snowy = _run(profile, lossless, pv=100.0, source="manual", snow="flat_roof")
    jan = profile.month == 1
    jul = profile.month == 7
    assert snowy.production_kw[jan].sum() == pytest.approx(0.45 * clear.production_kw[jan].sum())
    assert snowy.production_kw[jul].sum() == pytest.approx(clear.production_kw[jul].sum())


def test_unknown_snow_profile_rejected(lossless):
    with pytest.raises(ValueError):
        _run(make_profile(100.0), lossless, pv=100.0, snow="glacier")


def test_battery_shaves_daily_peak_and_respects_soc_bounds(assumptions):
    consumption = np.full(8760, 100.0)
    peak = np.full(8760, 100.0)
    peak[np.arange(17, 8760, 24)] = 180.0
    profile = make_profile(consumption, peak)
    sim = _run(profile, assumptions, energy=200.0, power=50.0, threshold=150.0)
    assert sim.peak_after_kw == pytest.approx(150.0)
    assert max(sim.monthly_peaks_after) < max(sim.monthly_peaks_before)
    assert sim.battery_soc_kwh.min() >= 0.0
    assert sim.battery_soc_kwh.max() <= 200.0


def test_secondary_peak_holds_charge_for_higher_peak(assumptions):
    consumption = np.full(8760, 100.0)
    peak = np.full(8760, 100.0)
    peak[np.arange(14, 8760, 24)] = 170.0  # secondary peak
    peak[np.arange(17, 8760, 24)] = 200.0  # daily maximum three hours later
    profile = make_profile(consumption, peak)
    sim = _run(profile, assumptions, energy=60.0, power=100.0, threshold=150.0)
    # day 2 starts after a night of grid charging with a full battery
    assert sim.peak_after_hourly_kw[24 + 14] == pytest.approx(170.0)
    assert sim.battery_soc_kwh[24 + 14] == pytest.approx(60.0)
    assert sim.peak_after_hourly_kw[24 + 17] == pytest.approx(150.0)


def test_secondary_peak_without_higher_peak_ahead_uses_half_soc(assumptions):
    consumption = np.full(8760, 100.0)
    peak = np.full(8760, 100.0)
    peak[np.arange(2, 8760, 24)] = 170.0  # secondary peak, daily maximum 8 hours later
    peak[np.arange(10, 8760, 24)] = 200.0
    profile = make_profile(consumption, peak)
    sim = _run(profile, assumptions, energy=20.0, power=100.0, threshold=150.0)
    assert sim.peak_after_hourly_kw[24 + 2] == pytest.approx(160.0)
    assert sim.battery_soc_kwh[24 + 2] == pytest.approx(10.0)
    # the priority peak gets whatever is left
    assert sim.peak_after_hourly_kw[24 + 10] == pytest.approx(190.0)


def test_peak_week_window_around_max_peak(year_profile, assumptions):
    sim = _run(year_profile, assumptions, pv=100.0)
    week = sim.peak_week()
    assert 1 <= len(week) <= 80
    assert max(row["peak_before"] for row in week) == pytest.approx(year_profile.max_peak_kw)


def test_hourly_summary_has_24_rows(year_profile, assumptions):
    sim = _run(year_profile, assumptions, pv=100.0)
    summary = sim.hourly_summary()
    assert [row["hour"] for row in summary] == list(range(24))
    assert all(row["consumption_after"] <= row["consumption_before"] for row in summary)


def test_simulation_is_deterministic(year_profile, assumptions):
    a = _run(year_profile, assumptions, pv=200.0, energy=300.0, power=150.0, threshold=200.0)
    b = _run(year_profile, assumptions, pv=200.0, energy=300.0, power=150.0, threshold=200.0)
    assert a.total_self_consumption_kwh == b.total_self_consumption_kwh
    assert np.array_equal(a.peak_after_hourly_kw, b.peak_after_hourly_kw)
    assert np.array_equal(a.battery_soc_kwh, b.battery_soc_kwh)
