"""
Pricing helpers: effective labour rates for a job and the estimate range
shown to tradies and clients.
"""
import json
import logging
import math
import re

logger = logging.getLogger(__name__)

GST_RATE = 0.10

_DOLLAR_AMOUNT = re.compile(r"\$[\d,]+\.?\d*")
_CURRENCY_NOISE = re.compile(r"[$,£€¥\s]")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def get_effective_rates(user: dict, job: dict = None) -> dict:
    """
    Rates used for quote generation. Job-level overrides take precedence
    over the business profile.
    """
    user = user or {}
    job = job or {}
    rates = {}

    if job.get("labour_rate_per_hour") is not None:
        rates["hourly_rate"] = job["labour_rate_per_hour"]
    elif user.get("hourly_rate") is not None:
        rates["hourly_rate"] = user["hourly_rate"]

    if job.get("helper_rate_per_hour") is not None:
        rates["helper_hourly_rate"] = job["helper_rate_per_hour"]
    elif user.get("helper_hourly_rate") is not None:
        rates["helper_hourly_rate"] = user["helper_hourly_rate"]

    for name in ("rate_per_m2_interior", "rate_per_m2_exterior", "rate_per_lm_trim",
                 "callout_fee", "material_markup_percent"):
        if user.get(name) is not None:
            rates[name] = user[name]

    return rates


def _money(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def format_rates_for_display(rates: dict) -> str:
    parts = []
    if rates.get("hourly_rate"):
        parts.append(f"${_money(rates['hourly_rate'])}/hr")
    if rates.get("helper_hourly_rate"):
        parts.append(f"${_money(rates['helper_hourly_rate'])}/hr helper")
    if rates.get("rate_per_m2_interior"):
        parts.append(f"${_money(rates['rate_per_m2_interior'])}/m² interior")
    if rates.get("rate_per_m2_exterior"):
        parts.append(f"${_money(rates['rate_per_m2_exterior'])}/m² exterior")
    if rates.get("rate_per_lm_trim"):
        parts.append(f"${_money(rates['rate_per_lm_trim'])}/lm")
    if rates.get("callout_fee"):
        parts.append(f"${_money(rates['callout_fee'])} callout")

    return ", ".join(parts) if parts else "default rates"


def extract_numeric_value(currency_string):
    """'$1,385.50' -> 1385.5; None when nothing numeric is left."""
    if currency_string is None:
        return None
    if isinstance(currency_string, (int, float)):
        return float(currency_string)
    cleaned = _CURRENCY_NOISE.sub("", str(currency_string))
    match = re.match(r"-?\d+(\.\d+)?", cleaned)
    return float(match.group(0)) if match else None


def format_whole_dollars(value: float) -> str:
    return f"${_round_half_up(value):,}"


def load_quote(quote):
    if not quote:
        return None
    if isinstance(quote, dict):
        return quote
    try:
        parsed = json.loads(quote)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _empty_range() -> dict:
    return {
        "base_total": None,
        "low_estimate": None,
        "high_estimate": None,
        "formatted_range": "N/A",
    }


def quote_block(quote: dict, key: str) -> dict:
    block = quote.get(key)
    return block if isinstance(block, dict) else {}


def quote_amount(block, *keys):
    """
    First non-empty value under `keys` of a quote block. The model
    sometimes answers with a bare amount instead of an object; that amount
    is used as is. Anything else gives None.
    """
    if isinstance(block, dict):
        for key in keys:
            if block.get(key):
                return block[key]
        return None
    if isinstance(block, (str, int, float)) and not isinstance(block, bool):
        return block
    return None


def quoted_materials_cost(quote: dict):
    return extract_numeric_value(
        quote_amount(quote.get("materials"), "totalMaterialsCost", "cost")
    )


def _base_total(quote: dict):
    text = quote_amount(quote.get("totalEstimate"), "totalJobEstimate", "total")

    base = None
    if isinstance(text, (int, float)):
        base = float(text)
    elif isinstance(text, str) and text:
        amounts = _DOLLAR_AMOUNT.findall(text)
        if amounts:
            first = extract_numeric_value(amounts[0])
            second = extract_numeric_value(amounts[1]) if len(amounts) > 1 else None
            if first is not None:
                # A real range is averaged; "$X – $X" collapses to X.
                if second is not None and abs(first - second) > 1:
                    base = (first + second) / 2
                else:
                    base = first
        else:
            base = extract_numeric_value(text)

    if base is None:
        labour = extract_numeric_value(quote_amount(quote.get("labour"), "total")) or 0
        materials = quoted_materials_cost(quote) or 0
        if labour > 0 or materials > 0:
            base = labour + materials

    return base


def calculate_estimate_range(quote) -> dict:
    """
    Derive a realistic range around the quoted total: 5% below and 10%
    above, each rounded to the nearest $10.
    """
    parsed = load_quote(quote)
    if parsed is None:
        return _empty_range()

    base = _base_total(parsed)
    if base is None or base <= 0:
        return _empty_range()

    low = _round_half_up(base * 0.95 / 10) * 10
    high = _round_half_up(base * 1.10 / 10) * 10

    if low >= high:
        low = max(0, _round_half_up(base - 50))
        high = _round_half_up(base + 50)

    return {
        "base_total": base,
        "low_estimate": low,
        "high_estimate": high,
        "formatted_range": f"{format_whole_dollars(low)} – {format_whole_dollars(high)}",
    }


def gst_breakdown(subtotal):
    if subtotal is None:
        return {"subtotal": None, "gst_amount": None, "total_incl_gst": None}
    subtotal = round(float(subtotal), 2)
    gst = round(subtotal * GST_RATE, 2)
    return {
        "subtotal": subtotal,
        "gst_amount": gst,
        "total_incl_gst": round(subtotal + gst, 2),
    }


def _materials_items(raw) -> list:
    if isinstance(raw, list):
        return raw
    if not raw or not isinstance(raw, str):
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    return parsed if isinstance(parsed, list) else []


def materials_totals(job: dict, markup_percent=None) -> dict:
    """
    Materials subtotal from the priced materials list (the quoted materials
    cost when no line is priced), plus the business markup on top.
    """
    subtotal = 0.0
    for item in _materials_items(job.get("ai_materials")):
        if not isinstance(item, dict):
            continue
        cost = extract_numeric_value(item.get("estimatedCost"))
        if cost and cost > 0:
            subtotal += cost

    if not subtotal:
        subtotal = quoted_materials_cost(load_quote(job.get("ai_quote")) or {}) or 0

    if subtotal <= 0:
        return {"materials_subtotal": None, "materials_markup_total": None, "materials_total": None}

    markup = subtotal * float(markup_percent or 0) / 100
    return {
        "materials_subtotal": round(subtotal, 2),
        "materials_markup_total": round(markup, 2),
        "materials_total": round(subtotal + markup, 2),
    }


def apply_materials_totals(job: dict, markup_percent=None) -> dict:
    job.update(materials_totals(job, markup_percent))
    return job
