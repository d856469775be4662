from __future__ import annotations

import logging
import math
from typing import Sequence

from .financials import FinancialStack
from .models import AnalysisAssumptions, SystemSizing
from .results import ScenarioMetrics
from .simulate import SimulationResult
from .yield_strategy import YieldStrategy

log = logging.getLogger(__name__)

NPV_HORIZONS = (10, 20, 25, 30)
PAYBACK_HORIZON = 25
PAYBACK_NOT_REACHED = 30.0

_NEWTON_START = 0.1
_NEWTON_MAX_ITER = 200
_NEWTON_TOL = 1e-4
_MIN_DERIVATIVE = 1e-10
_RATE_BOUNDS = (-0.99, 5.0)
_BISECTION_BOUNDS = (-0.99, 2.0)
_BISECTION_SCAN_STEP = 0.1
_BISECTION_MAX_ITER = 100


def npv(cashflows: Sequence[float], rate: float, horizon: int) -> float:
    """Discounted sum of cashflows for years 0..horizon (bounded by the series length)."""
    last = min(horizon, len(cashflows) - 1)
    return sum(cashflows[y] / (1.0 + rate) ** y for y in range(last + 1))


def _clamp_unit(rate: float) -> float:
    return max(0.0, min(1.0, rate))


def _npv_at(cashflows: Sequence[float], rate: float) -> float:
    return sum(cf / (1.0 + rate) ** t for t, cf in enumerate(cashflows))


def bisection_irr(cashflows: Sequence[float]) -> float:
    low, high = _BISECTION_BOUNDS
    npv_low = _npv_at(cashflows, low)

    # scan for a sign change unless the end points already bracket the root
    if npv_low * _npv_at(cashflows, high) >= 0:
        found = False
        rate = low
        while rate <= high:
            npv_rate = _npv_at(cashflows, rate)
            if npv_low * npv_rate < 0:
                high = rate
                found = True
                break
            low, npv_low = rate, npv_rate
            rate += _BISECTION_SCAN_STEP
        if not found:
            return 0.0

    mid = (low + high) / 2.0
    for _ in range(_BISECTION_MAX_ITER):
        mid = (low + high) / 2.0
        npv_mid = _npv_at(cashflows, mid)
        if abs(npv_mid) < _NEWTON_TOL or (high - low) / 2.0 < _NEWTON_TOL:
            break
        if npv_mid * npv_low < 0:
            high = mid
        else:
            low, npv_low = mid, npv_mid
    return _clamp_unit(mid)


def irr(cashflows: Sequence[float]) -> float:
    """
    Internal rate of return, clamped to [0, 1].

    Series without a sign change return 1.0 (all gains) or 0.0 without
    solving. Otherwise Newton-Raphson from 10%, falling back to bisection
    when the derivative vanishes or a step is not finite.
    """
    flows = [float(c) for c in cashflows]
    if len(flows) < 2:
        return 0.0
    has_positive = any(c > 0 for c in flows)
    has_negative = any(c < 0 for c in flows)
    if not (has_positive and has_negative):
        return 1.0 if has_positive else 0.0

    rate = _NEWTON_START
    lo, hi = _RATE_BOUNDS
    for _ in range(_NEWTON_MAX_ITER):
        value = 0.0
        derivative = 0.0
        for t, cf in enumerate(flows):
            value += cf / (1.0 + rate) ** t
            if t > 0:
                derivative -= t * cf / (1.0 + rate) ** (t + 1)
        if abs(derivative) < _MIN_DERIVATIVE:
            return bisection_irr(flows)
        step = rate - value / derivative
        if not math.isfinite(step):
            return bisection_irr(flows)
        step = max(lo, min(hi, step))
        if abs(step - rate) < _NEWTON_TOL:
            return _clamp_unit(step)
        rate = step
    log.debug("IRR Newton did not converge after %d iterations, bisecting", _NEWTON_MAX_ITER)
    return bisection_irr(flows)


def simple_payback(cashflows: Sequence[float], horizon: int = PAYBACK_HORIZON) -> float:
    """First year with non-negative cumulative cashflow, else the beyond-horizon sentinel."""
    if not cashflows:
        return PAYBACK_NOT_REACHED
    cumulative = cashflows[0]
    for year in range(1, min(len(cashflows), horizon + 1)):
        cumulative += cashflows[year]
        if cumulative >= 0:
            return float(year)
    return PAYBACK_NOT_REACHED


def lcoe(
    capex_net: float, opex_base: float, annual_production_kwh: float, degradation_rate: float, horizon: int
) -> float:
    """Levelised cost ($/kWh): lifetime cost over degraded lifetime production."""
    production = sum(annual_production_kwh * (1.0 - degradation_rate) ** (y - 1) for y in range(1, horizon + 1))
    if production <= 0:
        return 0.0
    return (capex_net + opex_base * horizon) / production


def compute_metrics(
    stack: FinancialStack,
    sim: SimulationResult,
    sizing: SystemSizing,
    strategy: YieldStrategy,
    annual_consumption_kwh: float,
    assumptions: AnalysisAssumptions,
) -> ScenarioMetrics:
    if stack.breakdown.capex_gross <= 0:
        return ScenarioMetrics()

    flows = stack.net_cashflows
    rate = assumptions.discount_rate
    annual_production = sizing.pv_size_kw * strategy.effective_yield
    degradation = assumptions.degradation_rate_percent
    self_consumption = sim.total_self_consumption_kwh
    return ScenarioMetrics(
        npv10=npv(flows, rate, 10),
        npv20=npv(flows, rate, 20),
        npv25=npv(flows, rate, 25),
        npv30=npv(flows, rate, 30),
        irr10=irr(flows[:11]),
        irr20=irr(flows[:21]),
        irr25=irr(flows[:26]),
        irr30=irr(flows[:31]),
        simple_payback_years=simple_payback(flows, assumptions.analysis_years),
        lcoe=lcoe(stack.breakdown.capex_net, stack.opex_base, annual_production, degradation, assumptions.analysis_years),
        lcoe30=lcoe(stack.breakdown.capex_net, stack.opex_base, annual_production, degradation, 30),
        self_sufficiency_percent=(
            self_consumption / annual_consumption_kwh * 100.0 if annual_consumption_kwh > 0 else 0.0
        ),
        co2_avoided_tonnes_per_year=self_consumption * assumptions.co2_factor_kg_per_kwh / 1000.0,
    )
