"""
Render model generation.

Turns a template plus merged data into a plain dict that both the JSON
API and the PDF renderer consume.
"""
import secrets
import string
from datetime import datetime, timezone

from docengine.formatting import format_abn, format_au_date, format_aud, parse_amount, parse_date, yes_no
from docengine.merge import get_value_by_path, merge_data
from docengine.ovis import evaluate_ovis

_RECORD_ALPHABET = string.ascii_uppercase + string.digits


def generate_record_id(doc_type: str, now: datetime = None) -> str:
    """Format: OX-<docType>-<YYYYMMDD>-<6 chars>."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_RECORD_ALPHABET) for _ in range(6))
    return f"OX-{doc_type}-{now.strftime('%Y%m%d')}-{suffix}"


def format_field_value(value, field_type: str, field_id: str = None):
    if value is None or value == "" or value == []:
        return None

    if field_id and "abn" in field_id.lower():
        return format_abn(str(value))

    if isinstance(value, bool):
        return yes_no(value)

    if field_type == "currency":
        if isinstance(value, (int, float)):
            return format_aud(value)
        return str(value)

    if field_type == "number":
        if isinstance(value, (int, float)):
            return value
        return parse_amount(value)

    if field_type == "date":
        if parse_date(value) is not None:
            return format_au_date(value)
        return str(value)

    if isinstance(value, list):
        return ", ".join(str(v) for v in value)

    return str(value)


def _render_field(field: dict, merged: dict) -> dict:
    raw = get_value_by_path(merged, field.get("dataPath") or field["id"])
    return {
        "id": field["id"],
        "label": field["label"],
        "type": field["type"],
        "value": format_field_value(raw, field["type"], field["id"]),
        "required": bool(field.get("required", False)),
        "placeholder": field.get("placeholder"),
        "options": field.get("options"),
    }


def _render_table(table: dict, merged: dict) -> dict:
    columns = table["columns"]
    rows_data = get_value_by_path(merged, table["rowsKey"]) or []

    rows = []
    if isinstance(rows_data, list):
        for row in rows_data:
            if not isinstance(row, dict):
                # Plain strings fill the first column.
                row = {columns[0]["id"]: row}
            rendered = {}
            for col in columns:
                raw = row.get(col["id"])
                if raw is None or raw == "":
                    raw = get_value_by_path(row, col["id"])
                rendered[col["id"]] = format_field_value(
                    raw, col.get("type") or "text", col["id"]
                )
            rows.append(rendered)

    min_rows = table.get("minRows") or 0
    while len(rows) < min_rows:
        rows.append({col["id"]: None for col in columns})

    return {
        "id": table["id"],
        "columns": columns,
        "rows": rows,
        "min_rows": min_rows,
    }


def generate_render_model(template: dict, job_data: dict, overrides: dict = None) -> dict:
    merged = merge_data(template, job_data, overrides)
    ovis_warnings = evaluate_ovis(template, merged)

    # sorted() is stable, so sections without an order keep template order.
    sections = sorted(template["sections"], key=lambda s: s.get("order") or 0)

    rendered_sections = []
    for section in sections:
        rendered = {"id": section["id"], "title": section["title"]}
        if section.get("fields") is not None:
            rendered["fields"] = [_render_field(f, merged) for f in section["fields"]]
        if section.get("table"):
            rendered["table"] = _render_table(section["table"], merged)
        rendered_sections.append(rendered)

    return {
        "doc_type": template["docType"],
        "title": template["title"],
        "disclaimer": template["disclaimer"],
        "record_id": generate_record_id(template["docType"]),
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "sections": rendered_sections,
        "ovis_warnings": ovis_warnings,
    }
