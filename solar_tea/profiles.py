from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .models import MeterReading

log = logging.getLogger(__name__)

HOURS_PER_YEAR = 8760
DAYS_PER_YEAR = 365
# Non-leap reference year for days-per-month expansion.
_REFERENCE_YEAR = 2025
DAYS_IN_MONTH = tuple(calendar.monthrange(_REFERENCE_YEAR, m)[1] for m in range(1, 13))

HOUR_GRANULARITY = "HOUR"


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class HourlyProfile:
    hour: np.ndarray             # 0..23
    month: np.ndarray            # 1..12
    consumption_kwh: np.ndarray
    peak_kw: np.ndarray
    interpolated_months: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        n = len(self.hour)
        for name in ("month", "consumption_kwh", "peak_kw"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"{name} must have the same length as hour ({n})")

    def __len__(self) -> int:
        return len(self.hour)

    @property
    def total_consumption_kwh(self) -> float:
        return float(self.consumption_kwh.sum())

    @property
    def max_peak_kw(self) -> float:
        return float(self.peak_kw.max()) if len(self) else 0.0


def _neighbour_months(month: int, months_with_data: Sequence[int]) -> Tuple[Optional[int], Optional[int]]:
    """Nearest earlier and later months holding data, wrapping around the year."""
    prev_month = next_month = None
    for offset in range(1, 12):
        candidate = (month - 1 - offset) % 12 + 1
        if candidate in months_with_data:
            prev_month = candidate
            break
    for offset in range(1, 12):
        candidate = (month - 1 + offset) % 12 + 1
        if candidate in months_with_data:
            next_month = candidate
            break
    return prev_month, next_month


def build_hourly_profile(readings: Iterable[MeterReading]) -> HourlyProfile:
    """
    Build the 8760-hour consumption/demand profile from metered readings.

    Readings are bucketed by (month, hour-of-day). Each bucket yields the
    mean kWh (missing kWh counts as zero) and the max kW. Months without a
    single reading are filled from the nearest months on either side, and
    the resulting 12x24 grid is expanded over the days of a non-leap year.
    """
    kwh_grid = np.zeros((12, 24), dtype=float)
    kw_grid = np.zeros((12, 24), dtype=float)
    has_bucket = np.zeros((12, 24), dtype=bool)

    rows = [
        (r.timestamp.month, r.timestamp.hour, r.kwh if r.kwh is not None else 0.0, r.kw if r.kw is not None else 0.0)
        for r in readings
    ]
    if rows:
        frame = pd.DataFrame(rows, columns=["month", "hour", "kwh", "kw"])
        buckets = frame.groupby(["month", "hour"]).agg(kwh=("kwh", "mean"), kw=("kw", "max"))
        for (month, hour), bucket in buckets.iterrows():
            kwh_grid[month - 1, hour] = bucket["kwh"]
            kw_grid[month - 1, hour] = max(bucket["kw"], 0.0)
            has_bucket[month - 1, hour] = True

    months_with_data = [m for m in range(1, 13) if has_bucket[m - 1].any()]
    interpolated: List[int] = []
    for month in range(1, 13):
        if month in months_with_data:
            continue
        interpolated.append(month)
        prev_month, next_month = _neighbour_months(month, months_with_data)
        sources = [m for m in (prev_month, next_month) if m is not None]
        if next_month == prev_month:
            sources = sources[:1]
        for hour in range(24):
            available = [m for m in sources if has_bucket[m - 1, hour]]
            if not available:
                continue
            kwh_grid[month - 1, hour] = np.mean([kwh_grid[m - 1, hour] for m in available])
            kw_grid[month - 1, hour] = np.mean([kw_grid[m - 1, hour] for m in available])

    if interpolated:
        log.info("interpolated %d month(s) without readings: %s", len(interpolated), interpolated)

    months = np.repeat(np.arange(1, 13), np.array(DAYS_IN_MONTH) * 24)
    hours = np.tile(np.arange(24), DAYS_PER_YEAR)
    month_idx = months - 1
    return HourlyProfile(
        hour=_readonly(hours.astype(int)),
        month=_readonly(months.astype(int)),
        consumption_kwh=_readonly(kwh_grid[month_idx, hours].astype(float)),
        peak_kw=_readonly(kw_grid[month_idx, hours].astype(float)),
        interpolated_months=tuple(interpolated),
    )


def data_span_days(readings: Sequence[MeterReading]) -> float:
    """Span covered by the readings in days (at least 1); 365 when there are none."""
    if not readings:
        return float(DAYS_PER_YEAR)
    stamps = [r.timestamp for r in readings]
    span = (max(stamps) - min(stamps)).total_seconds() / 86400.0
    return max(1.0, span)


def annualize(total_kwh: float, span_days: float) -> float:
    if span_days <= 0:
        return float(total_kwh)
    return float(total_kwh) * DAYS_PER_YEAR / span_days


def _hour_key(ts: datetime) -> Tuple[int, int, int, int]:
    return (ts.year, ts.month, ts.day, ts.hour)


def deduplicate_readings(raw: Sequence[MeterReading]) -> Tuple[List[MeterReading], float]:
    """
    Collapse raw readings to one reading per calendar hour.

    An HOUR-granularity reading carrying kWh wins its hour, with the max kW
    of finer-grained readings in the same hour merged in. Without one, kWh
    values are summed and the max kW kept.

    Returns the deduplicated readings (chronological) and the data span in
    days, measured on the raw readings before deduplication.
    """
    span = data_span_days(raw)
    by_hour: Dict[Tuple[int, int, int, int], List[MeterReading]] = {}
    for r in raw:
        by_hour.setdefault(_hour_key(r.timestamp), []).append(r)

    out: List[MeterReading] = []
    for key in sorted(by_hour):
        group = by_hour[key]
        hourly = next(
            (r for r in group if r.granularity == HOUR_GRANULARITY and r.kwh is not None),
            None,
        )
        max_kw = max((r.kw or 0.0 for r in group), default=0.0)
        if hourly is not None:
            merged_kw = max(hourly.kw or 0.0, max_kw)
            out.append(hourly.model_copy(update={"kw": merged_kw if merged_kw > 0 else hourly.kw}))
            continue
        kwh_values = [r.kwh for r in group if r.kwh is not None]
        out.append(
            MeterReading(
                timestamp=group[0].timestamp.replace(minute=0, second=0, microsecond=0),
                kwh=sum(kwh_values) if kwh_values else None,
                kw=max_kw if max_kw > 0 else None,
                granularity=HOUR_GRANULARITY,
            )
        )

    if len(out) != len(raw):
        log.info("deduplicated %d readings into %d hourly readings", len(raw), len(out))
    return out, span
