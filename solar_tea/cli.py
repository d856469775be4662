from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from .models import AnalysisRequest, DEFAULT_ASSUMPTIONS
from .profiles import deduplicate_readings
from .sizer import run_analysis


def load_request(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input JSON not found: {path}")
    return json.loads(p.read_text())


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Solar + battery techno-economic analysis (sizing, dispatch, 30-year cashflows)."
    )
    parser.add_argument("--input", "-i", required=True, help="Path to the analysis request JSON.")
    parser.add_argument(
        "--output",
        "-o",
        default="analysis_output.json",
        help="Path to write the analysis result JSON.",
    )
    parser.add_argument(
        "--no-hourly",
        action="store_true",
        help="Omit the 8760-row hourly profile from the output.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr.")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        raw = load_request(args.input)
        request = AnalysisRequest.model_validate(raw)
        assumptions = DEFAULT_ASSUMPTIONS.with_overrides(request.assumptions)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        print(f"Input error: {e}", file=sys.stderr)
        return 2
    except ValidationError as e:
        print("Input validation error:", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    readings = request.readings
    span = request.data_span_days
    if request.deduplicate:
        readings, raw_span = deduplicate_readings(readings)
        if span is None:
            span = raw_span

    result = run_analysis(
        readings,
        assumptions,
        forced_sizing=request.forced_sizing,
        roof_max_kw=request.roof_capacity_kw,
        span_days=span,
        google_estimate=request.google_estimate,
    )

    out = result.to_dict()
    out["name"] = request.name
    if args.no_hourly:
        out.pop("hourly_profile", None)
    Path(args.output).write_text(json.dumps(out, indent=2))

    # Minimal console summary
    s = result.sizing
    m = result.metrics
    print(f"Analysis: {request.name}")
    print(f"Annual consumption: {result.annual_consumption_kwh:,.0f} kWh, peak {result.peak_demand_kw:,.1f} kW")
    battery = f"{s.batt_energy_kwh:.0f} kWh / {s.batt_power_kw:.0f} kW" if s.has_battery else "none"
    print(f"System ({s.system_type}): PV {s.pv_size_kw:.0f} kW, battery {battery}")
    print(f"Production: {result.total_production_kwh:,.0f} kWh, self-sufficiency {m.self_sufficiency_percent:.1f}%")
    print(f"Net CAPEX: ${result.breakdown.capex_net:,.0f}, annual savings ${result.savings.annual_savings:,.0f}")
    print(f"NPV25: ${m.npv25:,.0f}, IRR25: {m.irr25*100:.1f}%, payback {m.simple_payback_years:.0f} years")
    if result.interpolated_months:
        months = ", ".join(str(mo) for mo in result.interpolated_months)
        print(f"\nWarning: interpolated months without readings: {months}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
