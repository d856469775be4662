from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from .models import AnalysisAssumptions, SystemSizing
from .results import CashflowEntry, FinancialBreakdown, SavingsSummary
from .simulate import SimulationResult
from .yield_strategy import solar_cost_per_w

PROJECT_YEARS = 30
SURPLUS_COMPENSATION_FROM_YEAR = 3
LATER_REPLACEMENT_YEARS = (20, 30)
BATTERY_REBATE_YEAR0_SHARE = 0.5


@dataclass(frozen=True)
class FinancialStack:
    breakdown: FinancialBreakdown
    cashflows: Tuple[CashflowEntry, ...]
    savings: SavingsSummary
    opex_base: float = 0.0

    @property
    def net_cashflows(self) -> List[float]:
        return [c.net_cashflow for c in self.cashflows]


def compute_savings(
    sim: SimulationResult, peak_kw: float, annual_consumption_kwh: float, assumptions: AnalysisAssumptions
) -> SavingsSummary:
    demand_cost_before = 0.0
    demand_savings = 0.0
    for before, after in zip(sim.monthly_peaks_before, sim.monthly_peaks_after):
        demand_cost_before += before * assumptions.tariff_power
        demand_savings += max(0.0, before - after) * assumptions.tariff_power

    energy_savings = sim.total_self_consumption_kwh * assumptions.tariff_energy
    grid_charging_cost = sim.total_grid_charging_kwh * assumptions.tariff_energy
    annual_savings = energy_savings - grid_charging_cost + demand_savings
    cost_before = annual_consumption_kwh * assumptions.tariff_energy + demand_cost_before
    return SavingsSummary(
        energy_savings=energy_savings,
        demand_savings=demand_savings,
        grid_charging_cost=grid_charging_cost,
        annual_savings=annual_savings,
        annual_cost_before=cost_before,
        annual_cost_after=cost_before - annual_savings,
        annual_surplus_revenue=sim.total_exported_kwh * assumptions.hq_surplus_compensation_rate,
        annual_demand_reduction_kw=peak_kw - sim.peak_after_kw,
    )


def capex_for(sizing: SystemSizing, assumptions: AnalysisAssumptions) -> Tuple[float, float]:
    """(solar CAPEX, battery CAPEX) in dollars."""
    capex_pv = sizing.pv_size_kw * 1000.0 * solar_cost_per_w(sizing.pv_size_kw, assumptions)
    capex_battery = (
        sizing.batt_energy_kwh * assumptions.battery_capacity_cost
        + sizing.batt_power_kw * assumptions.battery_power_cost
    )
    return capex_pv, capex_battery


def incentive_ladder(
    capex_pv: float,
    capex_battery: float,
    pv_size_kw: float,
    batt_energy_kwh: float,
    assumptions: AnalysisAssumptions,
) -> FinancialBreakdown:
    """
    Apply utility rebate, investment tax credit and tax shield in order.

    The utility rebate pays per eligible solar kW up to a share of gross
    CAPEX; battery CAPEX only draws on what is left of that cap, and only
    when paired with solar. The ITC applies to CAPEX net of the rebate and
    the tax shield to what remains after the ITC.
    """
    gross = capex_pv + capex_battery
    if gross <= 0:
        return FinancialBreakdown()

    potential_solar = min(pv_size_kw, assumptions.hq_program_cap_kw) * assumptions.hq_solar_rebate_per_kw
    cap = gross * assumptions.hq_capex_cap_percent
    hq_solar = min(potential_solar, cap)
    hq_battery = 0.0
    if pv_size_kw > 0 and batt_energy_kwh > 0:
        hq_battery = min(max(0.0, cap - hq_solar), capex_battery)
    total_hq = hq_solar + hq_battery

    itc_basis = gross - total_hq
    itc = itc_basis * assumptions.itc_rate
    depreciable = max(0.0, gross - total_hq - itc)
    tax_shield = depreciable * assumptions.tax_rate * assumptions.cca_fraction

    rebate_y0 = hq_battery * BATTERY_REBATE_YEAR0_SHARE
    return FinancialBreakdown(
        capex_solar=capex_pv,
        capex_battery=capex_battery,
        capex_gross=gross,
        potential_hq_solar=potential_solar,
        potential_hq_battery=0.0,
        cap_40_percent=cap,
        actual_hq_solar=hq_solar,
        actual_hq_battery=hq_battery,
        total_hq=total_hq,
        itc_basis=itc_basis,
        itc_amount=itc,
        depreciable_basis=depreciable,
        tax_shield=tax_shield,
        equity_initial=gross - hq_solar - rebate_y0,
        battery_rebate_year0=rebate_y0,
        battery_rebate_year1=hq_battery - rebate_y0,
        capex_net=gross - total_hq - itc - tax_shield,
    )


def build_cashflows(
    breakdown: FinancialBreakdown,
    savings: SavingsSummary,
    opex_base: float,
    batt_energy_kwh: float,
    assumptions: AnalysisAssumptions,
) -> Tuple[CashflowEntry, ...]:
    """Year 0 equity outflow followed by 30 operating years."""
    year0 = -breakdown.equity_initial
    rows = [CashflowEntry(year=0, investment=year0, net_cashflow=year0, cumulative=year0)]
    cumulative = year0
    replacement_years = {assumptions.battery_replacement_year, *LATER_REPLACEMENT_YEARS}

    for y in range(1, PROJECT_YEARS + 1):
        growth = (1.0 - assumptions.degradation_rate_percent) ** (y - 1) * (1.0 + assumptions.inflation_rate) ** (y - 1)
        revenue = savings.annual_savings * growth
        if y >= SURPLUS_COMPENSATION_FROM_YEAR:
            revenue += savings.annual_surplus_revenue * growth
        opex = opex_base * (1.0 + assumptions.om_escalation) ** (y - 1)
        ebitda = revenue - opex

        dpa = breakdown.tax_shield if y == 1 else 0.0
        incentives = 0.0
        if y == 1:
            incentives = breakdown.battery_rebate_year1
        elif y == 2:
            incentives = breakdown.itc_amount

        investment = 0.0
        if y in replacement_years and batt_energy_kwh > 0:
            price_change = (1.0 + assumptions.inflation_rate - assumptions.battery_price_decline_rate) ** y
            investment = -breakdown.capex_battery * assumptions.battery_replacement_cost_factor * price_change

        net = ebitda + investment + dpa + incentives
        cumulative += net
        rows.append(
            CashflowEntry(
                year=y,
                revenue=revenue,
                opex=-opex,
                ebitda=ebitda,
                investment=investment,
                dpa=dpa,
                incentives=incentives,
                net_cashflow=net,
                cumulative=cumulative,
            )
        )
    return tuple(rows)


def _zero_stack() -> FinancialStack:
    return FinancialStack(
        breakdown=FinancialBreakdown(),
        cashflows=tuple(CashflowEntry(year=y) for y in range(PROJECT_YEARS + 1)),
        savings=SavingsSummary(),
    )


def build_financials(
    sim: SimulationResult,
    sizing: SystemSizing,
    peak_kw: float,
    annual_consumption_kwh: float,
    assumptions: AnalysisAssumptions,
) -> FinancialStack:
    capex_pv, capex_battery = capex_for(sizing, assumptions)
    if capex_pv + capex_battery <= 0:
        return _zero_stack()

    savings = compute_savings(sim, peak_kw, annual_consumption_kwh, assumptions)
    breakdown = incentive_ladder(capex_pv, capex_battery, sizing.pv_size_kw, sizing.batt_energy_kwh, assumptions)
    opex_base = capex_pv * assumptions.om_solar_percent + capex_battery * assumptions.om_battery_percent
    cashflows = build_cashflows(breakdown, savings, opex_base, sizing.batt_energy_kwh, assumptions)
    return FinancialStack(breakdown=breakdown, cashflows=cashflows, savings=savings, opex_base=opex_base)
