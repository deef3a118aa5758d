from __future__ import annotations

import math
from typing import Any

MIN_DAYS = 1
MAX_DAYS = 365 * 100
DEFAULT_DAYS = 30


def _non_negative_int(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, math.floor(number))


def normalize_duration_parts(raw: Any) -> dict:
    raw = raw if isinstance(raw, dict) else {}
    return {
        "years": _non_negative_int(raw.get("years")),
        "months": _non_negative_int(raw.get("months")),
        "days": _non_negative_int(raw.get("days")),
    }


def duration_parts_to_days(parts: Any) -> int:
    p = normalize_duration_parts(parts)
    total = p["years"] * 365 + p["months"] * 30 + p["days"]
    return max(MIN_DAYS, min(MAX_DAYS, total))


def days_to_duration_parts(raw_days: Any) -> dict:
    days = _non_negative_int(raw_days) or DEFAULT_DAYS
    days = max(MIN_DAYS, min(MAX_DAYS, days))
    years, rest = divmod(days, 365)
    months, days = divmod(rest, 30)
    return {"years": years, "months": months, "days": days}


def format_duration_parts(parts: Any) -> str:
    p = normalize_duration_parts(parts)
    segments = []
    if p["years"]:
        segments.append(f"{p['years']} {'ano' if p['years'] == 1 else 'anos'}")
    if p["months"]:
        segments.append(f"{p['months']} {'mês' if p['months'] == 1 else 'meses'}")
    if p["days"] or not segments:
        segments.append(f"{p['days']} {'dia' if p['days'] == 1 else 'dias'}")
    return ", ".join(segments)
