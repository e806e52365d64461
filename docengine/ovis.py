"""
OVIS checks.

Each template carries rules in a small DSL; a rule that evaluates true
raises a warning for the user. Warnings flag possibly missing or invalid
data only and are never a statement of compliance.

Supported rules:
    exists(path)         value present and not empty
    empty(path)          value missing, None, "" or an empty list
    len(path) < N        string or list shorter than N (non-sized counts as empty)
    len(path) == N       string or list of exactly N (also written ===)
    equals(path, value)  value as text equals the literal
"""
import logging
import re

from docengine.merge import get_value_by_path

logger = logging.getLogger(__name__)

_PATH = r"""["']?([^"')]+)["']?"""

EXISTS_RE = re.compile(rf"^exists\({_PATH}\)$")
EMPTY_RE = re.compile(rf"^empty\({_PATH}\)$")
LEN_LESS_RE = re.compile(rf"^len\({_PATH}\)\s*<\s*(\d+)$")
LEN_EQUAL_RE = re.compile(rf"^len\({_PATH}\)\s*={{2,3}}\s*(\d+)$")
EQUALS_RE = re.compile(rf"""^equals\({_PATH},\s*["']?([^"')]*)["']?\)$""")


def _is_empty(value) -> bool:
    return value is None or value == "" or (isinstance(value, list) and not value)


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def evaluate_rule(rule: str, data: dict) -> bool:
    trimmed = rule.strip()

    match = EXISTS_RE.match(trimmed)
    if match:
        return not _is_empty(get_value_by_path(data, match.group(1)))

    match = EMPTY_RE.match(trimmed)
    if match:
        return _is_empty(get_value_by_path(data, match.group(1)))

    match = LEN_LESS_RE.match(trimmed)
    if match:
        value = get_value_by_path(data, match.group(1))
        if isinstance(value, (str, list)):
            return len(value) < int(match.group(2))
        return True

    match = LEN_EQUAL_RE.match(trimmed)
    if match:
        value = get_value_by_path(data, match.group(1))
        if isinstance(value, (str, list)):
            return len(value) == int(match.group(2))
        return False

    match = EQUALS_RE.match(trimmed)
    if match:
        value = get_value_by_path(data, match.group(1))
        return _as_text(value) == match.group(2)

    # Unknown syntax never raises a warning.
    logger.warning("[OVIS] Unknown rule syntax: %s", rule)
    return False


def evaluate_ovis(template: dict, merged_data: dict) -> list:
    warnings = []
    for check in template.get("ovisChecks", []):
        if evaluate_rule(check["rule"], merged_data):
            warnings.append({
                "id": check["id"],
                "severity": check["severity"],
                "message": check["message"],
            })
    return warnings
