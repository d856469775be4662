from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, confloat, model_validator

YieldSource = Literal["google", "manual", "default"]
SnowLossProfile = Literal["none", "flat_roof", "tilted", "ballasted_10deg"]
ScenarioType = Literal["solar", "battery", "hybrid"]

# Fraction of the historical peak the battery tries to hold demand under.
DEMAND_SHAVING_RATIO = 0.90


def round_half_up(value: float) -> float:
    """Round to the nearest integer, halves away from zero for positives."""
    return float(math.floor(value + 0.5))


def scenario_type(pv_size_kw: float, batt_energy_kwh: float) -> ScenarioType:
    if pv_size_kw > 0 and batt_energy_kwh > 0:
        return "hybrid"
    if pv_size_kw > 0:
        return "solar"
    return "battery"


class MeterReading(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Start of the metering interval (local wall clock).")
    kwh: Optional[float] = Field(None, description="Energy consumed during the interval (kWh).")
    kw: Optional[float] = Field(None, description="Demand registered during the interval (kW).")
    granularity: Optional[str] = Field(
        None, description="Source granularity tag, e.g. HOUR or FIFTEEN_MIN."
    )


class AnalysisAssumptions(BaseModel):
    """
    Named scalars driving the simulation and the financial stack.

    Every field has a default. Use ``with_overrides`` to merge a partial
    override mapping; instances are frozen and never mutated in place.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Tariffs
    tariff_energy: confloat(ge=0) = Field(0.06061, description="Energy tariff ($/kWh).")
    tariff_power: confloat(ge=0) = Field(17.573, description="Demand tariff ($/kW-month).")

    # Yield
    solar_yield_kwh_per_kwp: PositiveFloat = Field(1150.0, description="Specific yield (kWh/kWp/year).")
    yield_source: YieldSource = Field("default", description="Where the yield figure comes from.")
    use_manual_yield: bool = Field(False, description="Force the configured yield as a manual figure.")
    orientation_factor: PositiveFloat = Field(
        1.0, description="Orientation derate, clamped to [0.6, 1.0]. Ignored for google yield."
    )

    # System modeling
    inverter_load_ratio: PositiveFloat = Field(1.2, description="DC/AC ratio.")
    temperature_coefficient: confloat(le=0) = Field(-0.004, description="Power coefficient (1/degC).")
    wire_loss_percent: confloat(ge=0, lt=1) = Field(0.02, description="DC wiring loss (fraction).")
    lid_loss_percent: confloat(ge=0, lt=1) = Field(0.01, description="Light induced degradation (fraction).")
    mismatch_loss_percent: confloat(ge=0, lt=1) = Field(0.02, description="Module mismatch loss (fraction).")
    mismatch_strings_loss_percent: confloat(ge=0, lt=1) = Field(
        0.0015, description="String mismatch loss (fraction)."
    )
    module_quality_gain_percent: confloat(ge=0, lt=1) = Field(
        0.0075, description="Module quality gain (fraction, applied as a negative loss)."
    )
    snow_loss_profile: SnowLossProfile = Field("none", description="Monthly snow-loss table.")

    # Lifetime
    degradation_rate_percent: confloat(ge=0, lt=1) = Field(0.005, description="Annual PV degradation.")
    analysis_years: int = Field(25, ge=1, le=30, description="Standard reporting horizon (years).")

    # Finance
    inflation_rate: confloat(gt=-1) = Field(0.048, description="Tariff inflation.")
    discount_rate: confloat(gt=-1) = Field(0.08, description="Discount rate (WACC).")
    tax_rate: confloat(ge=0, le=1) = Field(0.265, description="Corporate tax rate.")

    # CAPEX
    solar_cost_per_w: Optional[PositiveFloat] = Field(
        None, description="Flat solar price ($/W). If omitted, tiered pricing by system size applies."
    )
    bifacial_enabled: bool = Field(False, description="Bifacial modules (+15% yield, cost premium).")
    bifacial_cost_premium: confloat(ge=0) = Field(0.10, description="Bifacial premium ($/W).")
    battery_capacity_cost: confloat(ge=0) = Field(550.0, description="Battery energy cost ($/kWh).")
    battery_power_cost: confloat(ge=0) = Field(800.0, description="Battery power cost ($/kW).")

    # O&M
    om_solar_percent: confloat(ge=0) = Field(0.01, description="Solar O&M (fraction of solar CAPEX).")
    om_battery_percent: confloat(ge=0) = Field(0.005, description="Battery O&M (fraction of battery CAPEX).")
    om_escalation: confloat(gt=-1) = Field(0.025, description="Annual O&M escalation.")

    # Battery lifecycle
    battery_replacement_year: int = Field(10, ge=1, le=30, description="First battery replacement year.")
    battery_replacement_cost_factor: confloat(ge=0) = Field(
        0.60, description="Replacement cost as a fraction of the initial battery CAPEX."
    )
    battery_price_decline_rate: confloat(ge=0) = Field(0.05, description="Annual battery price decline.")

    # Incentives
    hq_solar_rebate_per_kw: confloat(ge=0) = Field(1000.0, description="Utility solar rebate ($/kW).")
    hq_program_cap_kw: confloat(ge=0) = Field(1000.0, description="Rebate-eligible PV capacity (kW).")
    hq_capex_cap_percent: confloat(ge=0, le=1) = Field(0.40, description="Utility rebate cap (fraction of CAPEX).")
    itc_rate: confloat(ge=0, le=1) = Field(0.30, description="Federal investment tax credit rate.")
    cca_fraction: confloat(ge=0, le=1) = Field(
        0.90, description="Share of the depreciable basis recovered through the tax shield."
    )
    hq_surplus_compensation_rate: confloat(ge=0) = Field(
        0.0454, description="Compensation for exported surplus ($/kWh), paid from year 3."
    )

    # Roof
    roof_area_sqft: confloat(ge=0) = Field(100000.0, description="Gross roof area (sq ft).")
    roof_utilization_ratio: confloat(ge=0, le=1) = Field(0.80, description="Usable share of the roof.")

    # Environment
    co2_factor_kg_per_kwh: confloat(ge=0) = Field(0.002, description="Grid emission factor (kg CO2/kWh).")

    def with_overrides(self, overrides: Optional[Mapping[str, Any]] = None) -> "AnalysisAssumptions":
        if not overrides:
            return self
        merged: Dict[str, Any] = self.model_dump()
        merged.update(overrides)
        return AnalysisAssumptions.model_validate(merged)


DEFAULT_ASSUMPTIONS = AnalysisAssumptions()


class ForcedSizing(BaseModel):
    model_config = ConfigDict(frozen=True)

    force_pv_size: Optional[confloat(ge=0)] = Field(None, description="Explicit PV size (kWp).")
    force_battery_size: Optional[confloat(ge=0)] = Field(None, description="Explicit battery energy (kWh).")
    force_battery_power: Optional[confloat(ge=0)] = Field(None, description="Explicit battery power (kW).")

    @model_validator(mode="after")
    def _check_battery(self) -> "ForcedSizing":
        if self.force_battery_size == 0 and (self.force_battery_power or 0) > 0:
            raise ValueError("force_battery_power requires a non-zero force_battery_size")
        return self

    @property
    def is_forced(self) -> bool:
        return (
            self.force_pv_size is not None
            or self.force_battery_size is not None
            or self.force_battery_power is not None
        )


class GoogleSolarEstimate(BaseModel):
    """Pre-fetched output of the external roof/solar service."""

    model_config = ConfigDict(frozen=True)

    yearly_energy_ac_kwh: Optional[confloat(ge=0)] = None
    system_size_kw: Optional[confloat(ge=0)] = None
    max_sunshine_hours_per_year: Optional[confloat(ge=0)] = None


class SystemSizing(BaseModel):
    model_config = ConfigDict(frozen=True)

    pv_size_kw: confloat(ge=0) = 0.0
    batt_energy_kwh: confloat(ge=0) = 0.0
    batt_power_kw: confloat(ge=0) = 0.0
    demand_shaving_setpoint_kw: confloat(ge=0) = 0.0

    @classmethod
    def for_candidate(
        cls, pv_size_kw: float, batt_energy_kwh: float, batt_power_kw: float, peak_kw: float
    ) -> "SystemSizing":
        setpoint = round_half_up(peak_kw * DEMAND_SHAVING_RATIO) if batt_power_kw > 0 else peak_kw
        return cls(
            pv_size_kw=pv_size_kw,
            batt_energy_kwh=batt_energy_kwh,
            batt_power_kw=batt_power_kw,
            demand_shaving_setpoint_kw=setpoint,
        )

    @property
    def system_type(self) -> ScenarioType:
        return scenario_type(self.pv_size_kw, self.batt_energy_kwh)

    @property
    def has_battery(self) -> bool:
        return self.batt_energy_kwh > 0 and self.batt_power_kw > 0


class AnalysisRequest(BaseModel):
    """JSON request accepted by the command line entry point."""

    name: str = Field("SiteAnalysis", description="Analysis name.")
    readings: List[MeterReading] = Field(default_factory=list)
    assumptions: Dict[str, Any] = Field(default_factory=dict, description="Partial assumption overrides.")
    forced_sizing: Optional[ForcedSizing] = None
    roof_capacity_kw: Optional[confloat(ge=0)] = Field(
        None, description="Roof PV ceiling from the roof-geometry service (kW)."
    )
    data_span_days: Optional[PositiveFloat] = Field(
        None, description="Span of the raw readings, when computed upstream."
    )
    deduplicate: bool = Field(True, description="Collapse readings to one per calendar hour first.")
    google_estimate: Optional[GoogleSolarEstimate] = None
