from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from .models import AnalysisAssumptions, GoogleSolarEstimate, SnowLossProfile, YieldSource

log = logging.getLogger(__name__)

BASELINE_YIELD = 1150.0  # kWh/kWp/year the production shape is calibrated against
BIFACIAL_BOOST = 1.15
ORIENTATION_FACTOR_RANGE = (0.6, 1.0)

# Monthly mean ambient temperature (degC), Jan..Dec.
MONTHLY_AMBIENT_TEMPS = np.array(
    [-10.5, -9.2, -2.8, 5.7, 13.1, 18.2, 21.0, 19.8, 14.8, 8.2, 1.4, -7.0]
)
STC_CELL_TEMP = 25.0
# Cell heating above ambient at the production peak.
IRRADIANCE_CELL_HEATING = 25.0

SNOW_LOSS_PROFILES: Dict[str, np.ndarray] = {
    "none": np.zeros(12),
    "flat_roof": np.array([0.55, 0.45, 0.30, 0.05, 0, 0, 0, 0, 0, 0, 0.10, 0.40]),
    "tilted": np.array([0.30, 0.25, 0.15, 0.02, 0, 0, 0, 0, 0, 0, 0.05, 0.20]),
    "ballasted_10deg": np.array([0.18, 0.14, 0.10, 0.02, 0, 0, 0, 0, 0, 0, 0.03, 0.13]),
}

# (minimum system size in kW, $/W), checked top-down.
SOLAR_PRICE_TIERS = (
    (3000.0, 1.70),
    (1000.0, 1.85),
    (500.0, 2.00),
    (100.0, 2.15),
    (0.0, 2.30),
)


def tiered_solar_cost_per_w(pv_size_kw: float) -> float:
    for min_kw, price in SOLAR_PRICE_TIERS:
        if pv_size_kw >= min_kw:
            return price
    return SOLAR_PRICE_TIERS[-1][1]


def solar_cost_per_w(pv_size_kw: float, assumptions: AnalysisAssumptions) -> float:
    base = assumptions.solar_cost_per_w
    if base is None:
        base = tiered_solar_cost_per_w(pv_size_kw)
    if assumptions.bifacial_enabled:
        base += assumptions.bifacial_cost_premium
    return base


@dataclass(frozen=True)
class YieldStrategy:
    """Resolved specific yield and where it came from."""

    effective_yield: float
    yield_source: YieldSource
    base_yield: float
    bifacial_boost: float = 1.0
    orientation_factor: float = 1.0

    @property
    def yield_factor(self) -> float:
        return self.effective_yield / BASELINE_YIELD

    @property
    def skip_temperature_correction(self) -> bool:
        # google and manual figures already include thermal losses
        return self.yield_source in ("google", "manual")

    def to_dict(self) -> dict:
        return {
            "effective_yield": self.effective_yield,
            "yield_source": self.yield_source,
            "base_yield": self.base_yield,
            "bifacial_boost": self.bifacial_boost,
            "orientation_factor": self.orientation_factor,
            "yield_factor": self.yield_factor,
            "skip_temperature_correction": self.skip_temperature_correction,
        }


def _google_yield(estimate: Optional[GoogleSolarEstimate]) -> Optional[float]:
    if estimate is None:
        return None
    if estimate.yearly_energy_ac_kwh and estimate.system_size_kw:
        return estimate.yearly_energy_ac_kwh / estimate.system_size_kw
    if estimate.max_sunshine_hours_per_year:
        return estimate.max_sunshine_hours_per_year
    return None


def resolve_yield_strategy(
    assumptions: AnalysisAssumptions, google_estimate: Optional[GoogleSolarEstimate] = None
) -> YieldStrategy:
    """
    Decide which specific yield drives the analysis.

    Priority: an explicit google source, a fresh roof-service estimate, an
    explicit manual figure, a configured yield different from the baseline,
    then the baseline default. Bifacial gain applies to every source; the
    orientation derate does not apply to google yields, which already
    account for roof orientation.
    """
    configured = assumptions.solar_yield_kwh_per_kwp
    source: YieldSource
    if assumptions.yield_source == "google" and not assumptions.use_manual_yield:
        source, base = "google", configured
    elif not assumptions.use_manual_yield and _google_yield(google_estimate) is not None:
        source, base = "google", _google_yield(google_estimate)
    elif assumptions.use_manual_yield or assumptions.yield_source == "manual":
        source, base = "manual", configured
    elif configured != BASELINE_YIELD:
        source, base = "manual", configured
    else:
        source, base = "default", BASELINE_YIELD

    bifacial = BIFACIAL_BOOST if assumptions.bifacial_enabled else 1.0
    if source == "google":
        orientation = 1.0
    else:
        lo, hi = ORIENTATION_FACTOR_RANGE
        orientation = min(hi, max(lo, assumptions.orientation_factor))

    strategy = YieldStrategy(
        effective_yield=base * bifacial * orientation,
        yield_source=source,
        base_yield=base,
        bifacial_boost=bifacial,
        orientation_factor=orientation,
    )
    log.info(
        "yield strategy: source=%s base=%.1f effective=%.1f kWh/kWp",
        strategy.yield_source,
        strategy.base_yield,
        strategy.effective_yield,
    )
    return strategy


def effective_snow_profile(assumptions: AnalysisAssumptions, strategy: YieldStrategy) -> SnowLossProfile:
    # roof-service yields carry no snow modelling; assume a low-tilt racking
    if strategy.yield_source == "google" and assumptions.snow_loss_profile == "none":
        return "ballasted_10deg"
    return assumptions.snow_loss_profile


@dataclass(frozen=True)
class SystemLossParams:
    inverter_load_ratio: float = 1.2
    temperature_coefficient: float = -0.004
    wire_loss: float = 0.02
    lid_loss: float = 0.01
    mismatch_loss: float = 0.02
    mismatch_strings_loss: float = 0.0015
    module_quality_gain: float = 0.0075

    @classmethod
    def from_assumptions(cls, assumptions: AnalysisAssumptions) -> "SystemLossParams":
        return cls(
            inverter_load_ratio=assumptions.inverter_load_ratio,
            temperature_coefficient=assumptions.temperature_coefficient,
            wire_loss=assumptions.wire_loss_percent,
            lid_loss=assumptions.lid_loss_percent,
            mismatch_loss=assumptions.mismatch_loss_percent,
            mismatch_strings_loss=assumptions.mismatch_strings_loss_percent,
            module_quality_gain=assumptions.module_quality_gain_percent,
        )

    @property
    def loss_multiplier(self) -> float:
        return (
            (1.0 - self.wire_loss)
            * (1.0 - self.lid_loss)
            * (1.0 - self.mismatch_loss)
            * (1.0 - self.mismatch_strings_loss)
            * (1.0 + self.module_quality_gain)
        )
