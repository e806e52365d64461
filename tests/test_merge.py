import copy

from docengine.merge import get_value_by_path, merge_data, set_value_by_path

TEMPLATE = {
    "sections": [
        {"id": "a", "title": "A", "fields": [
            {"id": "clientName", "label": "Client", "type": "text"},
            {"id": "cost", "label": "Cost", "type": "currency"},
            {"id": "tags", "label": "Tags", "type": "multiSelect", "options": ["x"]},
            {"id": "defects", "label": "Defects", "type": "textarea", "defaultValue": "None"},
            {"id": "city", "label": "City", "type": "text", "dataPath": "site.city"},
        ]},
        {"id": "b", "title": "B", "table": {"id": "t", "rowsKey": "rows",
                                             "columns": [{"id": "c", "label": "C"}]}},
    ]
}


def test_path_helpers():
    data = {"client": {"name": "Jane"}, "rows": [{"task": "Sand"}]}
    assert get_value_by_path(data, "client.name") == "Jane"
    assert get_value_by_path(data, "rows.0.task") == "Sand"
    assert get_value_by_path(data, "rows.5.task") is None
    assert get_value_by_path(data, "client.phone.mobile") is None

    set_value_by_path(data, "site.address.suburb", "Fremantle")
    assert data["site"]["address"]["suburb"] == "Fremantle"


def test_empty_fields_get_defaults_and_type_empties():
    merged = merge_data(TEMPLATE, {"clientName": "Jane"})
    assert merged["clientName"] == "Jane"
    assert merged["cost"] is None
    assert merged["tags"] == []
    assert merged["defects"] == "None"
    assert merged["site"]["city"] == ""
    assert merged["rows"] == []


def test_overrides_win():
    merged = merge_data(TEMPLATE, {"clientName": "Jane", "defects": "Scuff"},
                        {"clientName": "Janet"})
    assert merged["clientName"] == "Janet"
    assert merged["defects"] == "Scuff"


def test_inputs_are_not_mutated():
    job_data = {"clientName": "", "rows": [{"c": 1}]}
    overrides = {"cost": 10}
    before = (copy.deepcopy(job_data), copy.deepcopy(overrides))
    merged = merge_data(TEMPLATE, job_data, overrides)
    merged["rows"].append({"c": 2})
    assert (job_data, overrides) == before
