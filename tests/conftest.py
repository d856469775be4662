from __future__ import annotations

from datetime import datetime, timedelta
from typing import List

import numpy as np
import pytest

from solar_tea.models import AnalysisAssumptions, MeterReading
from solar_tea.profiles import DAYS_IN_MONTH, HourlyProfile, build_hourly_profile

YEAR_START = datetime(2023, 1, 1)


def commercial_load(ts: datetime) -> float:
    """Weekday daytime bump over a base load, slightly higher in summer."""
    base = 120.0 + 15.0 * np.cos((ts.month - 7) * 2 * np.pi / 12)
    if ts.weekday() < 5 and 8 <= ts.hour <= 18:
        base += 80.0 + 10.0 * (ts.day % 3)
    return float(round(base, 3))


def make_year_readings(start: datetime = YEAR_START, hours: int = 8760) -> List[MeterReading]:
    out = []
    for i in range(hours):
        ts = start + timedelta(hours=i)
        kwh = commercial_load(ts)
        out.append(MeterReading(timestamp=ts, kwh=kwh, kw=kwh * 1.1, granularity="HOUR"))
    return out


def make_profile(consumption, peak=None) -> HourlyProfile:
    """Flat or array-valued 8760 profile built directly from numpy arrays."""
    months = np.repeat(np.arange(1, 13), np.array(DAYS_IN_MONTH) * 24)
    hours = np.tile(np.arange(24), 365)
    cons = np.broadcast_to(np.asarray(consumption, dtype=float), (8760,)).copy()
    pk = cons.copy() if peak is None else np.broadcast_to(np.asarray(peak, dtype=float), (8760,)).copy()
    return HourlyProfile(hour=hours, month=months, consumption_kwh=cons, peak_kw=pk)


@pytest.fixture(scope="session")
def year_readings() -> List[MeterReading]:
    return make_year_readings()


@pytest.fixture(scope="session")
def year_profile(year_readings) -> HourlyProfile:
    return build_hourly_profile(year_readings)


@pytest.fixture
def assumptions() -> AnalysisAssumptions:
    return AnalysisAssumptions()


@pytest.fixture
def lossless() -> AnalysisAssumptions:
    """Manual 1150 kWh/kWp yield with every loss and the clipping disabled."""
    return AnalysisAssumptions(
        yield_source="manual",
        inverter_load_ratio=1.0,
        wire_loss_percent=0.0,
        lid_loss_percent=0.0,
        mismatch_loss_percent=0.0,
        mismatch_strings_loss_percent=0.0,
        module_quality_gain_percent=0.0,
        snow_loss_profile="none",
    )
