from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .financials import FinancialStack, build_financials
from .metrics import compute_metrics
from .models import (
    DEFAULT_ASSUMPTIONS,
    AnalysisAssumptions,
    ForcedSizing,
    GoogleSolarEstimate,
    MeterReading,
    SystemSizing,
    round_half_up,
    scenario_type,
)
from .profiles import HourlyProfile, annualize, build_hourly_profile, data_span_days
from .results import (
    AnalysisResult,
    FrontierPoint,
    OptimalScenario,
    ScenarioMetrics,
    SensitivityAnalysis,
    SweepPoint,
)
from .simulate import SimulationResult, simulate
from .yield_strategy import SystemLossParams, YieldStrategy, effective_snow_profile, resolve_yield_strategy

log = logging.getLogger(__name__)

CURRENT_CONFIG_ID = "current-config"
MAX_REFINEMENT_ITERATIONS = 2

# Roof area to PV capacity
SQFT_PER_M2 = 10.764
M2_PER_KWP = 3.71
ROOF_PACKING_FACTOR = 0.660

# Auto-sizing
PV_OVERSIZE = 1.2
BATTERY_POWER_SHARE_OF_PEAK = 0.3
BATTERY_DURATION_HOURS = 2.0

# Sweep grids
SWEEP_STEPS = 20
SOLAR_MIN_STEP_KW = 5
BATTERY_MIN_STEP_KWH = 10
BATTERY_SWEEP_FLOOR_KWH = 500.0
SOLAR_SWEEP_UPPER = 1.5
ROOF_SWEEP_UPPER = 1.1
UNCONFIGURED_SOLAR_SHARE_OF_ROOF = 0.5
HYBRID_GRID_STEPS = 5
HYBRID_PV_MIN_STEP_KW = 10
HYBRID_BATTERY_MIN_STEP_KWH = 20
HYBRID_BATTERY_FLOOR_KWH = 200.0


@dataclass(frozen=True)
class ScenarioResult:
    sizing: SystemSizing
    simulation: SimulationResult
    financials: FinancialStack
    metrics: ScenarioMetrics


def evaluate_scenario(
    profile: HourlyProfile,
    sizing: SystemSizing,
    *,
    peak_kw: float,
    annual_consumption_kwh: float,
    assumptions: AnalysisAssumptions,
    strategy: YieldStrategy,
) -> ScenarioResult:
    """Simulate, build the financial stack and compute metrics for one sizing."""
    sim = simulate(
        profile,
        pv_size_kw=sizing.pv_size_kw,
        batt_energy_kwh=sizing.batt_energy_kwh,
        batt_power_kw=sizing.batt_power_kw,
        demand_threshold_kw=sizing.demand_shaving_setpoint_kw,
        yield_factor=strategy.yield_factor,
        system_params=SystemLossParams.from_assumptions(assumptions),
        yield_source=strategy.yield_source,
        snow_loss_profile=effective_snow_profile(assumptions, strategy),
    )
    stack = build_financials(sim, sizing, peak_kw, annual_consumption_kwh, assumptions)
    metrics = compute_metrics(stack, sim, sizing, strategy, annual_consumption_kwh, assumptions)
    return ScenarioResult(sizing=sizing, simulation=sim, financials=stack, metrics=metrics)


def roof_capacity_kw(assumptions: AnalysisAssumptions) -> float:
    usable_m2 = assumptions.roof_area_sqft / SQFT_PER_M2 * assumptions.roof_utilization_ratio
    return usable_m2 / M2_PER_KWP * ROOF_PACKING_FACTOR


def auto_size(
    annual_consumption_kwh: float, peak_kw: float, strategy: YieldStrategy, roof_max_kw: float
) -> SystemSizing:
    """
    First sizing guess: PV covers 120% of consumption within the roof
    ceiling; the battery shaves 30% of the peak over two hours.
    """
    pv = 0.0
    if strategy.effective_yield > 0:
        pv = round_half_up(annual_consumption_kwh / strategy.effective_yield * PV_OVERSIZE)
    pv = max(0.0, min(pv, round_half_up(roof_max_kw)))
    power = round_half_up(peak_kw * BATTERY_POWER_SHARE_OF_PEAK)
    energy = round_half_up(power * BATTERY_DURATION_HOURS)
    return SystemSizing.for_candidate(pv, energy, power, peak_kw)


def _forced_sizing(forced: ForcedSizing, auto: SystemSizing, peak_kw: float) -> SystemSizing:
    """Forced values, rounded to whole kW/kWh, with unset fields taken from auto-sizing."""
    pv = round_half_up(forced.force_pv_size) if forced.force_pv_size is not None else auto.pv_size_kw
    if forced.force_battery_size is not None:
        energy = round_half_up(forced.force_battery_size)
    else:
        energy = auto.batt_energy_kwh
    if forced.force_battery_power is not None:
        power = round_half_up(forced.force_battery_power)
    elif forced.force_battery_size is not None:
        power = round_half_up(energy / BATTERY_DURATION_HOURS)
    else:
        power = auto.batt_power_kw
    if energy <= 0:
        power = 0.0
    return SystemSizing.for_candidate(pv, energy, power, peak_kw)


def _fmt(value: float) -> str:
    return f"{value:g}"


def _label(pv: float, energy: float, current: bool = False) -> str:
    kind = scenario_type(pv, energy)
    if kind == "hybrid":
        text = f"{_fmt(pv)}kW PV + {_fmt(energy)}kWh"
    elif kind == "solar":
        text = f"{_fmt(pv)}kW solar only"
    else:
        text = f"{_fmt(energy)}kWh storage only"
    return f"{text} (Current)" if current else text


def _frontier_point(point_id: str, result: ScenarioResult, sweep_source: str, current: bool = False) -> FrontierPoint:
    s = result.sizing
    m = result.metrics
    return FrontierPoint(
        id=point_id,
        type=scenario_type(s.pv_size_kw, s.batt_energy_kwh),
        label=_label(s.pv_size_kw, s.batt_energy_kwh, current),
        pv_size_kw=s.pv_size_kw,
        batt_energy_kwh=s.batt_energy_kwh,
        batt_power_kw=s.batt_power_kw,
        capex_net=result.financials.breakdown.capex_net,
        npv25=m.npv25,
        irr25=m.irr25,
        simple_payback_years=m.simple_payback_years,
        self_sufficiency_percent=m.self_sufficiency_percent,
        annual_savings=result.financials.savings.annual_savings,
        total_production_kwh=result.simulation.total_production_kwh,
        co2_avoided_tonnes_per_year=m.co2_avoided_tonnes_per_year,
        sweep_source=sweep_source,
    )


def _grid(upper: float, min_step: int) -> List[float]:
    """0..upper on roughly SWEEP_STEPS steps rounded to multiples of min_step."""
    if upper <= 0:
        return [0.0]
    step = max(min_step, int(round_half_up(upper / SWEEP_STEPS / min_step)) * min_step)
    return [float(step * k) for k in range(int(math.floor(upper / step)) + 1)]


def solar_sweep_upper(configured_pv_kw: float, roof_max_kw: float) -> float:
    if configured_pv_kw > 0:
        return min(configured_pv_kw * SOLAR_SWEEP_UPPER, roof_max_kw * ROOF_SWEEP_UPPER)
    return roof_max_kw * UNCONFIGURED_SOLAR_SHARE_OF_ROOF


def solar_sweep_sizes(configured_pv_kw: float, roof_max_kw: float) -> List[float]:
    return _grid(solar_sweep_upper(configured_pv_kw, roof_max_kw), SOLAR_MIN_STEP_KW)


def battery_sweep_sizes(configured_energy_kwh: float) -> List[float]:
    return _grid(max(2.0 * configured_energy_kwh, BATTERY_SWEEP_FLOOR_KWH), BATTERY_MIN_STEP_KWH)


def _coarse_steps(upper: float, steps: int, min_step: int) -> List[float]:
    """Multiples of a rounded step from one step up to upper; zero is excluded."""
    if upper <= 0:
        return []
    step = max(min_step, int(round_half_up(upper / steps / min_step)) * min_step)
    return [float(step * k) for k in range(1, int(math.floor(upper / step)) + 1)]


def hybrid_grid_sizes(
    configured_pv_kw: float, configured_energy_kwh: float, peak_kw: float, roof_max_kw: float
) -> List[Tuple[float, float]]:
    """
    Coarse PV x battery grid off the two sweep axes.

    PV spans the solar sweep range on HYBRID_GRID_STEPS steps of at least
    10 kW. Energy runs up to max(2 x peak, 2 x configured, 200 kWh) on steps
    of at least 20 kWh.
    """
    pv_sizes = _coarse_steps(
        solar_sweep_upper(configured_pv_kw, roof_max_kw), HYBRID_GRID_STEPS, HYBRID_PV_MIN_STEP_KW
    )
    battery_upper = max(2.0 * peak_kw, 2.0 * configured_energy_kwh, HYBRID_BATTERY_FLOOR_KWH)
    energies = _coarse_steps(battery_upper, HYBRID_GRID_STEPS, HYBRID_BATTERY_MIN_STEP_KWH)
    return [(pv, energy) for pv in pv_sizes for energy in energies]


def _flag_optimal_curve(points: List[SweepPoint]) -> Tuple[SweepPoint, ...]:
    if not points:
        return ()
    best = max(range(len(points)), key=lambda k: (points[k].npv25, -k))
    return tuple(replace(p, is_optimal=(k == best)) for k, p in enumerate(points))


def _select_optima(frontier: List[FrontierPoint]) -> Dict[str, FrontierPoint]:
    optima: Dict[str, FrontierPoint] = {}
    if not frontier:
        return optima

    def first_max(points: List[FrontierPoint], key) -> Optional[FrontierPoint]:
        best = None
        for p in points:
            if best is None or key(p) > key(best):
                best = p
        return best

    optima["best_npv"] = first_max(frontier, lambda p: p.npv25)
    best_irr = first_max([p for p in frontier if p.npv25 > 0 and math.isfinite(p.irr25)], lambda p: p.irr25)
    if best_irr is not None:
        optima["best_irr"] = best_irr
    best_self = first_max(
        [p for p in frontier if p.pv_size_kw > 0 or p.batt_energy_kwh > 0], lambda p: p.self_sufficiency_percent
    )
    if best_self is not None:
        optima["max_self_sufficiency"] = best_self
    return optima


def run_sensitivity(
    profile: HourlyProfile,
    configured: ScenarioResult,
    *,
    peak_kw: float,
    annual_consumption_kwh: float,
    assumptions: AnalysisAssumptions,
    strategy: YieldStrategy,
    roof_max_kw: float,
) -> SensitivityAnalysis:
    """
    Build the sizing frontier around the configured point.

    The configured result is reused verbatim as the ``current-config``
    point. Every other point runs through ``evaluate_scenario`` so that all
    figures come from the same pipeline as the headline.
    """
    base = configured.sizing
    cache: Dict[Tuple[float, float, float], ScenarioResult] = {
        (base.pv_size_kw, base.batt_energy_kwh, base.batt_power_kw): configured
    }

    def run(pv: float, energy: float, power: float) -> ScenarioResult:
        if energy <= 0:
            power = 0.0
        key = (pv, energy, power)
        if key not in cache:
            sizing = SystemSizing.for_candidate(pv, energy, power, peak_kw)
            cache[key] = evaluate_scenario(
                profile,
                sizing,
                peak_kw=peak_kw,
                annual_consumption_kwh=annual_consumption_kwh,
                assumptions=assumptions,
                strategy=strategy,
            )
        return cache[key]

    frontier: List[FrontierPoint] = [_frontier_point(CURRENT_CONFIG_ID, configured, "configured", current=True)]
    results: Dict[str, ScenarioResult] = {CURRENT_CONFIG_ID: configured}
    seen = {(base.pv_size_kw, base.batt_energy_kwh)}

    def add(point_id: str, result: ScenarioResult, source: str) -> None:
        key = (result.sizing.pv_size_kw, result.sizing.batt_energy_kwh)
        if key in seen:
            return
        seen.add(key)
        frontier.append(_frontier_point(point_id, result, source))
        results[point_id] = result

    # PV sweep: at the configured battery and at zero battery
    pv_sizes = sorted(set(solar_sweep_sizes(base.pv_size_kw, roof_max_kw)) | {base.pv_size_kw})
    solar_curve: List[SweepPoint] = []
    for pv in pv_sizes:
        hybrid = run(pv, base.batt_energy_kwh, base.batt_power_kw)
        solar_curve.append(
            SweepPoint(
                size=pv,
                npv25=hybrid.metrics.npv25,
                self_sufficiency_percent=hybrid.metrics.self_sufficiency_percent,
                annual_savings=hybrid.financials.savings.annual_savings,
            )
        )
        if pv > 0 and base.batt_energy_kwh > 0:
            add(f"hybrid-pv{_fmt(pv)}", hybrid, "solar_sweep")
        if pv > 0:
            add(f"solar-{_fmt(pv)}", run(pv, 0.0, 0.0), "solar_sweep")

    # Battery sweep at the configured PV
    battery_sizes = sorted(set(battery_sweep_sizes(base.batt_energy_kwh)) | {base.batt_energy_kwh})
    battery_curve: List[SweepPoint] = []
    for energy in battery_sizes:
        power = base.batt_power_kw if energy == base.batt_energy_kwh else round_half_up(energy / 2.0)
        result = run(base.pv_size_kw, energy, power)
        battery_curve.append(
            SweepPoint(
                size=energy,
                npv25=result.metrics.npv25,
                self_sufficiency_percent=result.metrics.self_sufficiency_percent,
                annual_savings=result.financials.savings.annual_savings,
                peak_reduction_kw=result.financials.savings.annual_demand_reduction_kw,
            )
        )
        if energy > 0:
            prefix = "hybrid-batt" if base.pv_size_kw > 0 else "battery-"
            add(f"{prefix}{_fmt(energy)}", result, "battery_sweep")

    # Sparse battery-only sweep
    for energy in battery_sizes[::2]:
        if energy > 0:
            add(f"battery-{_fmt(energy)}", run(0.0, energy, round_half_up(energy / 2.0)), "battery_only_sweep")

    # Hybrid grid: only profitable points join the frontier
    for pv, energy in hybrid_grid_sizes(base.pv_size_kw, base.batt_energy_kwh, peak_kw, roof_max_kw):
        if (pv, energy) in seen:
            continue
        result = run(pv, energy, round_half_up(energy / 2.0))
        if result.metrics.npv25 > 0:
            add(f"hybrid-grid-pv{_fmt(pv)}-batt{_fmt(energy)}", result, "hybrid_grid")
        else:
            seen.add((pv, energy))

    log.debug("sensitivity: %d frontier points from %d simulations", len(frontier), len(cache))

    optima = _select_optima(frontier)
    best_npv = optima.get("best_npv")
    optimal_id = best_npv.id if best_npv is not None else None
    frontier = [replace(p, is_optimal=(p.id == optimal_id)) for p in frontier]
    by_id = {p.id: p for p in frontier}

    scenarios = {}
    for objective, point in optima.items():
        result = results[point.id]
        scenarios[objective] = OptimalScenario(
            objective=objective,
            point=by_id[point.id],
            metrics=result.metrics,
            breakdown=result.financials.breakdown,
            cashflows=result.financials.cashflows,
            savings=result.financials.savings,
        )

    return SensitivityAnalysis(
        frontier=tuple(frontier),
        solar_sweep=_flag_optimal_curve(solar_curve),
        battery_sweep=_flag_optimal_curve(battery_curve),
        optimal_scenario_id=optimal_id,
        optimal_scenarios=scenarios,
    )


def _merge_assumptions(
    assumptions: Union[AnalysisAssumptions, Mapping[str, Any], None]
) -> AnalysisAssumptions:
    if assumptions is None:
        return DEFAULT_ASSUMPTIONS
    if isinstance(assumptions, AnalysisAssumptions):
        return assumptions
    return DEFAULT_ASSUMPTIONS.with_overrides(assumptions)


def run_analysis(
    readings: Iterable[MeterReading],
    assumptions: Union[AnalysisAssumptions, Mapping[str, Any], None] = None,
    *,
    forced_sizing: Optional[ForcedSizing] = None,
    roof_max_kw: Optional[float] = None,
    span_days: Optional[float] = None,
    google_estimate: Optional[GoogleSolarEstimate] = None,
) -> AnalysisResult:
    """
    Full analysis: profile, annualize, size, simulate and sweep.

    Without forced sizing, the frontier's best-NPV sizing replaces the
    headline whenever it beats the headline NPV, for at most
    MAX_REFINEMENT_ITERATIONS rounds.
    """
    readings = list(readings)
    merged = _merge_assumptions(assumptions)

    profile = build_hourly_profile(readings)
    total_kwh = sum(r.kwh for r in readings if r.kwh is not None)
    peak_kw = max((r.kw for r in readings if r.kw is not None), default=0.0)
    peak_kw = max(peak_kw, 0.0)
    span = span_days if span_days is not None else data_span_days(readings)
    annual = annualize(total_kwh, span)
    log.info(
        "annualized %.0f kWh over %.1f days to %.0f kWh/year (peak %.1f kW)", total_kwh, span, annual, peak_kw
    )

    strategy = resolve_yield_strategy(merged, google_estimate)
    roof_max = roof_max_kw if roof_max_kw is not None else roof_capacity_kw(merged)

    sizing = auto_size(annual, peak_kw, strategy, roof_max)
    forced = forced_sizing is not None and forced_sizing.is_forced
    if forced:
        sizing = _forced_sizing(forced_sizing, sizing, peak_kw)
    log.info(
        "sizing (%s): pv=%.0f kW battery=%.0f kWh / %.0f kW",
        "forced" if forced else "auto",
        sizing.pv_size_kw,
        sizing.batt_energy_kwh,
        sizing.batt_power_kw,
    )

    def headline_and_frontier(candidate: SystemSizing) -> Tuple[ScenarioResult, SensitivityAnalysis]:
        result = evaluate_scenario(
            profile, candidate, peak_kw=peak_kw, annual_consumption_kwh=annual, assumptions=merged, strategy=strategy
        )
        sens = run_sensitivity(
            profile,
            result,
            peak_kw=peak_kw,
            annual_consumption_kwh=annual,
            assumptions=merged,
            strategy=strategy,
            roof_max_kw=roof_max,
        )
        return result, sens

    headline, sensitivity = headline_and_frontier(sizing)
    iterations = 0
    while not forced and iterations < MAX_REFINEMENT_ITERATIONS:
        best = sensitivity.best_npv
        if best is None or best.id == CURRENT_CONFIG_ID or best.npv25 <= headline.metrics.npv25:
            break
        iterations += 1
        log.info(
            "refinement %d: adopting %s (NPV25 %.0f > %.0f)", iterations, best.id, best.npv25, headline.metrics.npv25
        )
        sizing = SystemSizing.for_candidate(best.pv_size_kw, best.batt_energy_kwh, best.batt_power_kw, peak_kw)
        headline, sensitivity = headline_and_frontier(sizing)

    sim = headline.simulation
    stack = headline.financials
    return AnalysisResult(
        sizing=headline.sizing,
        annual_consumption_kwh=annual,
        peak_demand_kw=peak_kw,
        data_span_days=span,
        yield_strategy=strategy,
        assumptions=merged,
        total_production_kwh=sim.total_production_kwh,
        self_consumption_kwh=sim.total_self_consumption_kwh,
        total_exported_kwh=sim.total_exported_kwh,
        total_grid_charging_kwh=sim.total_grid_charging_kwh,
        clipping_loss_kwh=sim.clipping_loss_kwh,
        peak_after_kw=sim.peak_after_kw,
        savings=stack.savings,
        breakdown=stack.breakdown,
        cashflows=stack.cashflows,
        metrics=headline.metrics,
        sensitivity=sensitivity,
        hourly_profile=sim.hourly_rows(),
        peak_week=sim.peak_week(),
        hourly_summary=sim.hourly_summary(),
        interpolated_months=profile.interpolated_months,
        refinement_iterations=iterations,
        forced_sizing=forced,
    )
