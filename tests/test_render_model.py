import re

from docengine.formatting import text_list
from docengine.loader import load_template
from docengine.render_model import format_field_value, generate_record_id, generate_render_model

TEMPLATE = {
    "schemaVersion": "1.0",
    "docType": "VARIATION_CHANGE_ORDER",
    "jurisdiction": "AU",
    "title": "Variation",
    "disclaimer": "Draft. Review required.",
    "sections": [
        {"id": "second", "title": "Second", "order": 2, "fields": [
            {"id": "cost", "label": "Cost", "type": "currency"},
        ]},
        {"id": "first", "title": "First", "order": 1, "fields": [
            {"id": "companyABN", "label": "ABN", "type": "text"},
            {"id": "date", "label": "Date", "type": "date", "required": True},
        ]},
        {"id": "also_first", "title": "Also first", "order": 1, "table": {
            "id": "items", "rowsKey": "items", "minRows": 3,
            "columns": [
                {"id": "description", "label": "Description"},
                {"id": "amount", "label": "Amount", "type": "currency"},
            ],
        }},
    ],
    "ovisChecks": [
        {"id": "no_cost", "severity": "medium", "rule": "empty(cost)", "message": "Cost is TBC"},
    ],
}


def test_record_id_format():
    assert re.fullmatch(r"OX-SWMS-\d{8}-[A-Z0-9]{6}", generate_record_id("SWMS"))


def test_format_field_value():
    assert format_field_value(None, "text") is None
    assert format_field_value("", "text") is None
    assert format_field_value("51824753556", "text", "companyABN") == "51 824 753 556"
    assert format_field_value(1234.5, "currency") == "$1,234.50"
    assert format_field_value("TBC", "currency") == "TBC"
    assert format_field_value("12", "number") == 12.0
    assert format_field_value("abc", "number") is None
    assert format_field_value("2026-03-05", "date") == "05/03/2026"
    assert format_field_value("next week", "date") == "next week"
    assert format_field_value(["Gloves", "Glasses"], "multiSelect") == "Gloves, Glasses"
    assert format_field_value(True, "select") == "Yes"
    assert format_field_value(False, "text") == "No"


def test_render_model_sorts_formats_and_pads():
    model = generate_render_model(TEMPLATE, {
        "companyABN": "51824753556",
        "date": "2026-03-05",
        "items": [{"description": "Extra coat", "amount": 250}],
    })

    assert model["doc_type"] == "VARIATION_CHANGE_ORDER"
    assert [s["id"] for s in model["sections"]] == ["first", "also_first", "second"]

    first = model["sections"][0]["fields"]
    assert first[0]["value"] == "51 824 753 556"
    assert first[1]["value"] == "05/03/2026"
    assert first[1]["required"] is True

    table = model["sections"][1]["table"]
    assert len(table["rows"]) == 3
    assert table["rows"][0] == {"description": "Extra coat", "amount": "$250.00"}
    assert table["rows"][2] == {"description": None, "amount": None}

    assert model["sections"][2]["fields"][0]["value"] is None
    assert model["ovis_warnings"] == [{"id": "no_cost", "severity": "medium", "message": "Cost is TBC"}]
    assert model["record_id"].startswith("OX-VARIATION_CHANGE_ORDER-")


def test_overrides_are_rendered():
    model = generate_render_model(TEMPLATE, {"cost": 100}, {"cost": 150})
    second = [s for s in model["sections"] if s["id"] == "second"][0]
    assert second["fields"][0]["value"] == "$150.00"
    assert model["ovis_warnings"] == []


def test_real_template_renders_with_empty_data():
    model = generate_render_model(load_template("SWMS"), {})
    hazards = [s for s in model["sections"] if s.get("table") and s["table"]["id"] == "hazards"][0]
    assert len(hazards["table"]["rows"]) == 3
    assert any(w["id"] == "swms_no_hazards" for w in model["ovis_warnings"])


def test_text_list():
    assert text_list("Gloves") == ["Gloves"]
    assert text_list("  ") == []
    assert text_list(["Gloves", 3, None, "Boots"]) == ["Gloves", "Boots"]
    assert text_list({"ppe": "Gloves"}) == []
    assert text_list(None) == []
