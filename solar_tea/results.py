"""
Analysis Results
================

Structured containers for the financial stack, scenario metrics, the
sensitivity frontier and the complete analysis, each serialisable with
``to_dict``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models import AnalysisAssumptions, ScenarioType, SystemSizing
from .yield_strategy import YieldStrategy


@dataclass(frozen=True)
class CashflowEntry:
    """One project year. Outflows are negative (opex, investment)."""
    year: int
    revenue: float = 0.0
    opex: float = 0.0
    ebitda: float = 0.0
    investment: float = 0.0
    dpa: float = 0.0          # tax shield from capital cost allowance
    incentives: float = 0.0
    net_cashflow: float = 0.0
    cumulative: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FinancialBreakdown:
    """How gross CAPEX is reduced by the incentive ladder."""
    capex_solar: float = 0.0
    capex_battery: float = 0.0
    capex_gross: float = 0.0

    potential_hq_solar: float = 0.0
    potential_hq_battery: float = 0.0
    cap_40_percent: float = 0.0
    actual_hq_solar: float = 0.0
    actual_hq_battery: float = 0.0
    total_hq: float = 0.0

    itc_basis: float = 0.0
    itc_amount: float = 0.0
    depreciable_basis: float = 0.0
    tax_shield: float = 0.0

    equity_initial: float = 0.0
    battery_rebate_year0: float = 0.0
    battery_rebate_year1: float = 0.0
    capex_net: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SavingsSummary:
    """Year-1 bill impact of a simulated system."""
    energy_savings: float = 0.0
    demand_savings: float = 0.0
    grid_charging_cost: float = 0.0
    annual_savings: float = 0.0
    annual_cost_before: float = 0.0
    annual_cost_after: float = 0.0
    annual_surplus_revenue: float = 0.0
    annual_demand_reduction_kw: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ScenarioMetrics:
    npv10: float = 0.0
    npv20: float = 0.0
    npv25: float = 0.0
    npv30: float = 0.0
    irr10: float = 0.0
    irr20: float = 0.0
    irr25: float = 0.0
    irr30: float = 0.0
    simple_payback_years: float = 0.0
    lcoe: float = 0.0
    lcoe30: float = 0.0
    self_sufficiency_percent: float = 0.0
    co2_avoided_tonnes_per_year: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FrontierPoint:
    """One evaluated sizing on the cost/value frontier."""
    id: str
    type: ScenarioType
    label: str
    pv_size_kw: float
    batt_energy_kwh: float
    batt_power_kw: float
    capex_net: float
    npv25: float
    irr25: float
    simple_payback_years: float
    self_sufficiency_percent: float
    annual_savings: float
    total_production_kwh: float
    co2_avoided_tonnes_per_year: float
    sweep_source: str
    is_optimal: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SweepPoint:
    """A point on a one-dimensional NPV curve (solar or battery sweep)."""
    size: float
    npv25: float
    self_sufficiency_percent: float
    annual_savings: float
    peak_reduction_kw: float = 0.0
    is_optimal: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OptimalScenario:
    objective: str
    point: FrontierPoint
    metrics: ScenarioMetrics
    breakdown: FinancialBreakdown
    cashflows: Tuple[CashflowEntry, ...]
    savings: SavingsSummary

    def to_dict(self) -> dict:
        return {
            "objective": self.objective,
            "id": self.point.id,
            "type": self.point.type,
            "label": self.point.label,
            "sizing": {
                "pv_size_kw": self.point.pv_size_kw,
                "batt_energy_kwh": self.point.batt_energy_kwh,
                "batt_power_kw": self.point.batt_power_kw,
            },
            "metrics": self.metrics.to_dict(),
            "scenario_breakdown": self.breakdown.to_dict(),
            "savings": self.savings.to_dict(),
            "cashflows": [c.to_dict() for c in self.cashflows],
        }


@dataclass(frozen=True)
class SensitivityAnalysis:
    frontier: Tuple[FrontierPoint, ...] = ()
    solar_sweep: Tuple[SweepPoint, ...] = ()
    battery_sweep: Tuple[SweepPoint, ...] = ()
    optimal_scenario_id: Optional[str] = None
    optimal_scenarios: Dict[str, OptimalScenario] = field(default_factory=dict)

    def point(self, point_id: str) -> Optional[FrontierPoint]:
        return next((p for p in self.frontier if p.id == point_id), None)

    @property
    def best_npv(self) -> Optional[FrontierPoint]:
        if self.optimal_scenario_id is None:
            return None
        return self.point(self.optimal_scenario_id)

    def to_dict(self) -> dict:
        return {
            "frontier": [p.to_dict() for p in self.frontier],
            "solar_sweep": [p.to_dict() for p in self.solar_sweep],
            "battery_sweep": [p.to_dict() for p in self.battery_sweep],
            "optimal_scenario_id": self.optimal_scenario_id,
            "optimal_scenarios": {k: v.to_dict() for k, v in self.optimal_scenarios.items()},
        }


@dataclass(frozen=True)
class AnalysisResult:
    """
    Complete outbound result of one analysis request.

    Contains:
    - Chosen sizing and consumption statistics
    - Energy KPIs of the headline simulation
    - Financial breakdown, 31-year cashflows and metrics at every horizon
    - Hourly, peak-week and average-day profiles
    - Sensitivity frontier with the optimal scenarios
    """
    sizing: SystemSizing
    annual_consumption_kwh: float
    peak_demand_kw: float
    data_span_days: float
    yield_strategy: YieldStrategy
    assumptions: AnalysisAssumptions

    total_production_kwh: float
    self_consumption_kwh: float
    total_exported_kwh: float
    total_grid_charging_kwh: float
    clipping_loss_kwh: float
    peak_after_kw: float

    savings: SavingsSummary
    breakdown: FinancialBreakdown
    cashflows: Tuple[CashflowEntry, ...]
    metrics: ScenarioMetrics
    sensitivity: SensitivityAnalysis

    hourly_profile: List[Dict[str, float]] = field(default_factory=list)
    peak_week: List[Dict[str, float]] = field(default_factory=list)
    hourly_summary: List[Dict[str, float]] = field(default_factory=list)
    interpolated_months: Tuple[int, ...] = ()
    refinement_iterations: int = 0
    forced_sizing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sizing": {
                **self.sizing.model_dump(),
                "system_type": self.sizing.system_type,
            },
            "annual_consumption_kwh": self.annual_consumption_kwh,
            "peak_demand_kw": self.peak_demand_kw,
            "data_span_days": self.data_span_days,
            "yield_strategy": self.yield_strategy.to_dict(),
            "assumptions": self.assumptions.model_dump(),
            "energy": {
                "total_production_kwh": self.total_production_kwh,
                "self_consumption_kwh": self.self_consumption_kwh,
                "total_exported_kwh": self.total_exported_kwh,
                "total_grid_charging_kwh": self.total_grid_charging_kwh,
                "clipping_loss_kwh": self.clipping_loss_kwh,
                "peak_after_kw": self.peak_after_kw,
            },
            "savings": self.savings.to_dict(),
            "breakdown": self.breakdown.to_dict(),
            "cashflows": [c.to_dict() for c in self.cashflows],
            "metrics": self.metrics.to_dict(),
            "sensitivity": self.sensitivity.to_dict(),
            "hourly_profile": self.hourly_profile,
            "peak_week": self.peak_week,
            "hourly_summary": self.hourly_summary,
            "interpolated_months": list(self.interpolated_months),
            "refinement_iterations": self.refinement_iterations,
            "forced_sizing": self.forced_sizing,
        }
