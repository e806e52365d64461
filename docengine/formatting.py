"""Australian display formats (ABN, AUD currency, dates) and list coercion."""
import re
from datetime import date, datetime

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def format_abn(abn) -> str:
    """'51824753556' -> '51 824 753 556'; anything not 11 digits is returned as-is."""
    if not abn:
        return ""
    abn = str(abn)
    cleaned = re.sub(r"\s", "", abn)
    if len(cleaned) == 11:
        return f"{cleaned[0:2]} {cleaned[2:5]} {cleaned[5:8]} {cleaned[8:11]}"
    return abn


def format_aud(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def parse_amount(value):
    """Loose number parse for user-entered amounts ('$1,200.50' -> 1200.5)."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(_NON_NUMERIC.sub("", str(value)))
    except ValueError:
        return None


def parse_date(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_au_date(value) -> str:
    """DD/MM/YYYY, or the input unchanged when it is not a date."""
    parsed = parse_date(value)
    if parsed is None:
        return "" if value is None else str(value)
    return parsed.strftime("%d/%m/%Y")


def format_long_date(value, default: str = "Not provided") -> str:
    """'2026-03-05' -> '5 March 2026'."""
    if not value:
        return default
    parsed = parse_date(value)
    if parsed is None:
        return str(value)
    return f"{parsed.day} {parsed.strftime('%B %Y')}"


def format_long_datetime(value) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return "" if value is None else str(value)
    return f"{parsed.day} {parsed.strftime('%B %Y, %I:%M %p')}"


def yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def text_list(value) -> list:
    """A bare string becomes a one-item list; non-string list items and other types are dropped."""
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []
