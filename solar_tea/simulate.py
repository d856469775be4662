from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

import numpy as np

from .models import YieldSource
from .profiles import HOURS_PER_YEAR, HourlyProfile
from .yield_strategy import (
    IRRADIANCE_CELL_HEATING,
    MONTHLY_AMBIENT_TEMPS,
    SNOW_LOSS_PROFILES,
    STC_CELL_TEMP,
    SystemLossParams,
)

BASELINE_CAPACITY_FACTOR = 0.645
SOLAR_NOON_HOUR = 13.0
PRODUCTION_HOURS = (5, 20)
GRID_CHARGE_FROM_HOUR = 22
INITIAL_SOC_FRACTION = 0.5
# Secondary peaks look this far ahead for a higher peak before committing SOC.
PEAK_LOOKAHEAD_HOURS = 6
SECONDARY_PEAK_SOC_SHARE = 0.5
PEAK_WEEK_HALF_WINDOW = 40


@dataclass(frozen=True)
class SimulationResult:
    profile: HourlyProfile
    total_self_consumption_kwh: float
    total_production_kwh: float
    total_exported_kwh: float
    total_grid_charging_kwh: float
    peak_after_kw: float
    clipping_loss_kwh: float
    monthly_peaks_before: Tuple[float, ...]
    monthly_peaks_after: Tuple[float, ...]
    production_kw: np.ndarray
    peak_after_hourly_kw: np.ndarray
    battery_soc_kwh: np.ndarray
    max_peak_index: int

    def hourly_rows(self, start: int = 0, stop: int = HOURS_PER_YEAR) -> List[Dict[str, float]]:
        p = self.profile
        lo, hi = max(0, start), min(len(p), stop)
        columns = zip(
            p.hour[lo:hi].tolist(),
            p.month[lo:hi].tolist(),
            p.consumption_kwh[lo:hi].tolist(),
            self.production_kw[lo:hi].tolist(),
            p.peak_kw[lo:hi].tolist(),
            self.peak_after_hourly_kw[lo:hi].tolist(),
            self.battery_soc_kwh[lo:hi].tolist(),
        )
        keys = ("hour", "month", "consumption", "production", "peak_before", "peak_after", "battery_soc")
        return [dict(zip(keys, row)) for row in columns]

    def peak_week(self) -> List[Dict[str, float]]:
        """80 hours centred on the highest-demand hour of the year."""
        return self.hourly_rows(
            self.max_peak_index - PEAK_WEEK_HALF_WINDOW, self.max_peak_index + PEAK_WEEK_HALF_WINDOW
        )

    def hourly_summary(self) -> List[Dict[str, float]]:
        """Average day: mean consumption and demand per hour-of-day, before and after solar."""
        p = self.profile
        rows = []
        for hour in range(24):
            mask = p.hour == hour
            if not mask.any():
                rows.append(
                    {"hour": hour, "consumption_before": 0.0, "consumption_after": 0.0,
                     "peak_before": 0.0, "peak_after": 0.0}
                )
                continue
            cons = float(p.consumption_kwh[mask].mean())
            prod = float(self.production_kw[mask].mean())
            peak = float(p.peak_kw[mask].mean())
            rows.append(
                {
                    "hour": hour,
                    "consumption_before": round(cons),
                    "consumption_after": round(max(0.0, cons - prod)),
                    "peak_before": round(peak),
                    "peak_after": round(max(0.0, peak - prod)),
                }
            )
        return rows


def solar_production(
    profile: HourlyProfile,
    *,
    pv_size_kw: float,
    yield_factor: float,
    system_params: SystemLossParams,
    yield_source: YieldSource,
    snow_loss_profile: str = "none",
) -> Tuple[np.ndarray, float]:
    """
    Hourly AC production (kW) and the energy lost to inverter clipping (kWh).

    A Gaussian day shape centred on 13:00 with a cosine seasonal swing is
    scaled so that ``yield_factor == 1`` reproduces the baseline specific
    yield. Thermal derating uses monthly ambient temperatures and is skipped
    for google/manual yields, which already include it.
    """
    if pv_size_kw <= 0:
        return np.zeros(len(profile)), 0.0

    hour = profile.hour.astype(float)
    month_idx = profile.month - 1
    bell = np.exp(-((hour - SOLAR_NOON_HOUR) ** 2) / 8.0)
    season = 1.0 + 0.4 * np.cos((profile.month - 6) * 2.0 * math.pi / 12.0)
    daylight = (hour >= PRODUCTION_HOURS[0]) & (hour <= PRODUCTION_HOURS[1])

    dc = pv_size_kw * bell * season * BASELINE_CAPACITY_FACTOR * yield_factor
    dc = np.where(daylight, dc, 0.0)

    if yield_source not in ("google", "manual"):
        cell_temp = MONTHLY_AMBIENT_TEMPS[month_idx] + IRRADIANCE_CELL_HEATING * bell
        dc = dc * (1.0 + system_params.temperature_coefficient * (cell_temp - STC_CELL_TEMP))

    dc = dc * system_params.loss_multiplier
    snow = SNOW_LOSS_PROFILES.get(snow_loss_profile)
    if snow is None:
        raise ValueError(f"unknown snow loss profile: {snow_loss_profile!r}")
    dc = dc * (1.0 - snow[month_idx])

    ac_capacity = pv_size_kw / system_params.inverter_load_ratio
    clipped = np.maximum(dc - ac_capacity, 0.0)
    ac = np.maximum(np.minimum(dc, ac_capacity), 0.0)
    return ac, float(clipped.sum())


def _priority_peak_indices(peaks: List[float], threshold: float) -> Set[int]:
    """Index of the highest-demand hour of each 24-hour day, when above threshold."""
    out: Set[int] = set()
    for start in range(0, len(peaks), 24):
        day = peaks[start:start + 24]
        best = max(range(len(day)), key=lambda k: (day[k], -k))
        if day[best] > threshold:
            out.add(start + best)
    return out


def _higher_peak_ahead(peaks: List[float], i: int, peak: float) -> bool:
    for j in range(i + 1, min(i + 1 + PEAK_LOOKAHEAD_HOURS, len(peaks))):
        if peaks[j] > peak:
            return True
    return False


def _monthly_max(values: np.ndarray, month: np.ndarray) -> Tuple[float, ...]:
    out = []
    for m in range(1, 13):
        mask = month == m
        out.append(float(values[mask].max()) if mask.any() else 0.0)
    return tuple(out)


def simulate(
    profile: HourlyProfile,
    *,
    pv_size_kw: float,
    batt_energy_kwh: float,
    batt_power_kw: float,
    demand_threshold_kw: float,
    yield_factor: float,
    system_params: SystemLossParams,
    yield_source: YieldSource = "default",
    snow_loss_profile: str = "none",
) -> SimulationResult:
    """
    Hour-by-hour solar + battery dispatch over one year.

    Battery rules:
    - Hours above the demand threshold discharge. The daily priority peak
      (highest hour of the day) gets min(excess, power, soc). A secondary
      peak holds its charge while a higher peak is coming within the
      lookahead window, and otherwise releases at most half the SOC.
    - Otherwise charge from solar surplus, or from the grid from 22:00.
      Grid charging raises that hour's demand.
    """
    production, clipping_kwh = solar_production(
        profile,
        pv_size_kw=pv_size_kw,
        yield_factor=yield_factor,
        system_params=system_params,
        yield_source=yield_source,
        snow_loss_profile=snow_loss_profile,
    )
    consumption = profile.consumption_kwh
    peak = profile.peak_kw
    n = len(profile)

    has_battery = batt_power_kw > 0 and batt_energy_kwh > 0
    if not has_battery:
        self_cons = np.minimum(consumption, production)
        exported = np.maximum(0.0, production - self_cons)
        peak_after = peak.astype(float).copy()
        soc_trace = np.zeros(n)
        grid_charging = 0.0
    else:
        cons_l = consumption.tolist()
        prod_l = production.tolist()
        peak_l = peak.tolist()
        hour_l = profile.hour.tolist()
        priority = _priority_peak_indices(peak_l, demand_threshold_kw)

        self_l = [0.0] * n
        export_l = [0.0] * n
        after_l = [0.0] * n
        soc_l = [0.0] * n
        soc = INITIAL_SOC_FRACTION * batt_energy_kwh
        grid_charging = 0.0

        for i in range(n):
            cons, prod, pk = cons_l[i], prod_l[i], peak_l[i]
            charge = discharge = 0.0
            from_grid = False

            is_priority = i in priority
            shave = (
                pk > demand_threshold_kw
                and soc > 0
                and (is_priority or not _higher_peak_ahead(peak_l, i, pk))
            )
            if shave:
                excess = pk - demand_threshold_kw
                if is_priority:
                    discharge = min(excess, batt_power_kw, soc)
                else:
                    discharge = min(excess, batt_power_kw, soc * SECONDARY_PEAK_SOC_SHARE)
            elif prod > cons and soc < batt_energy_kwh:
                charge = min(prod - cons, batt_power_kw, batt_energy_kwh - soc)
            elif hour_l[i] >= GRID_CHARGE_FROM_HOUR and soc < batt_energy_kwh:
                charge = min(batt_power_kw, batt_energy_kwh - soc)
                from_grid = True
                grid_charging += charge

            soc = min(max(soc + charge - discharge, 0.0), batt_energy_kwh)

            if discharge > 0:
                after_l[i] = max(0.0, pk - discharge)
            elif from_grid:
                after_l[i] = pk + charge
            else:
                after_l[i] = pk

            sc = min(cons, prod + discharge)
            self_l[i] = sc
            export_l[i] = max(0.0, prod - sc - (0.0 if from_grid else charge))
            soc_l[i] = soc

        self_cons = np.array(self_l)
        exported = np.array(export_l)
        peak_after = np.array(after_l)
        soc_trace = np.array(soc_l)

    total_production = float(production.sum())
    total_self = min(float(self_cons.sum()), total_production)

    return SimulationResult(
        profile=profile,
        total_self_consumption_kwh=total_self,
        total_production_kwh=total_production,
        total_exported_kwh=float(exported.sum()),
        total_grid_charging_kwh=float(grid_charging),
        peak_after_kw=float(peak_after.max()) if n else 0.0,
        clipping_loss_kwh=clipping_kwh,
        monthly_peaks_before=_monthly_max(peak, profile.month),
        monthly_peaks_after=_monthly_max(peak_after, profile.month),
        production_kw=production,
        peak_after_hourly_kw=peak_after,
        battery_soc_kwh=soc_trace,
        max_peak_index=int(np.argmax(peak)) if n else 0,
    )
