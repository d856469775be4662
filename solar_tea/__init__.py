"""
Solar + Storage Techno-Economic Analysis
========================================

Sizing and bankability engine for behind-the-meter solar and battery
systems:
- Hourly consumption profile from metered readings (8760 hours)
- Solar production and peak-shaving battery dispatch simulation
- Incentive stacking (utility rebate, ITC, tax shield) and 30-year cashflows
- NPV / IRR / LCOE / payback metrics
- Sensitivity frontier with multi-objective optimal scenarios

Architecture:
- models: request and assumption models (pydantic)
- profiles: profile builder and reading deduplication
- yield_strategy: specific-yield resolution, loss parameters, pricing tiers
- simulate: dispatch simulator
- financials / metrics: financial stack and metrics engine
- sizer: sizing, sensitivity sweep and the ``run_analysis`` entry point
"""

from .models import AnalysisAssumptions, AnalysisRequest, ForcedSizing, MeterReading, SystemSizing
from .profiles import HourlyProfile, build_hourly_profile, deduplicate_readings
from .results import AnalysisResult
from .sizer import evaluate_scenario, run_analysis, run_sensitivity
from .yield_strategy import YieldStrategy, resolve_yield_strategy

__version__ = "1.0.0"

__all__ = [
    "AnalysisAssumptions",
    "AnalysisRequest",
    "AnalysisResult",
    "ForcedSizing",
    "HourlyProfile",
    "MeterReading",
    "SystemSizing",
    "YieldStrategy",
    "build_hourly_profile",
    "deduplicate_readings",
    "evaluate_scenario",
    "resolve_yield_strategy",
    "run_analysis",
    "run_sensitivity",
]
