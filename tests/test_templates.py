import copy

import pytest

from docengine.loader import TemplateNotFoundError, available_doc_types, load_template
from docengine.schema import DOC_TYPES
from docengine.validate import TemplateValidationError, validate_template

MINIMAL = {
    "schemaVersion": "1.0",
    "docType": "SWMS",
    "jurisdiction": "AU-WA",
    "title": "SWMS",
    "disclaimer": "Draft only. Review required.",
    "sections": [
        {
            "id": "s1",
            "title": "Section",
            "fields": [{"id": "f1", "label": "Field", "type": "text"}],
        }
    ],
    "ovisChecks": [],
}


def _template(**changes):
    template = copy.deepcopy(MINIMAL)
    template.update(changes)
    return template


def test_every_doc_type_has_a_valid_template():
    assert sorted(available_doc_types()) == sorted(DOC_TYPES)
    for doc_type in DOC_TYPES:
        template = load_template(doc_type)
        assert template["docType"] == doc_type
        assert validate_template(template) is True


def test_load_template_returns_fresh_copy():
    first = load_template("SWMS")
    first["title"] = "changed"
    assert load_template("SWMS")["title"] != "changed"


def test_unknown_doc_type():
    with pytest.raises(TemplateNotFoundError):
        load_template("NOT_A_DOC")


def test_minimal_template_is_valid():
    assert validate_template(MINIMAL) is True


@pytest.mark.parametrize("key", ["schemaVersion", "jurisdiction", "title", "disclaimer"])
def test_required_strings(key):
    template = _template()
    del template[key]
    with pytest.raises(TemplateValidationError, match=key):
        validate_template(template)


def test_doc_type_must_be_known():
    with pytest.raises(TemplateValidationError, match="docType"):
        validate_template(_template(docType="INVOICE"))


def test_disclaimer_must_flag_draft_or_review():
    with pytest.raises(TemplateValidationError, match="disclaimer"):
        validate_template(_template(disclaimer="Official certified document."))


def test_sections_must_not_be_empty():
    with pytest.raises(TemplateValidationError, match="at least one section"):
        validate_template(_template(sections=[]))


def test_select_field_needs_options_and_reports_path():
    sections = [{"id": "s1", "title": "S", "fields": [
        {"id": "ok", "label": "Ok", "type": "text"},
        {"id": "choice", "label": "Choice", "type": "select"},
    ]}]
    with pytest.raises(TemplateValidationError) as exc:
        validate_template(_template(sections=sections))
    assert exc.value.path == "sections[0].fields[1]"
    assert "options" in exc.value.message


def test_section_needs_fields_or_table():
    with pytest.raises(TemplateValidationError, match="either 'fields' or 'table'"):
        validate_template(_template(sections=[{"id": "s1", "title": "S"}]))


def test_table_needs_columns_and_rows_key():
    no_columns = [{"id": "s1", "title": "S", "table": {"id": "t", "rowsKey": "rows", "columns": []}}]
    with pytest.raises(TemplateValidationError, match="columns"):
        validate_template(_template(sections=no_columns))

    no_rows_key = [{"id": "s1", "title": "S", "table": {
        "id": "t", "columns": [{"id": "c", "label": "C"}]}}]
    with pytest.raises(TemplateValidationError, match="rowsKey"):
        validate_template(_template(sections=no_rows_key))


def test_ovis_check_severity():
    checks = [{"id": "x", "severity": "critical", "rule": "empty(a)", "message": "m"}]
    with pytest.raises(TemplateValidationError) as exc:
        validate_template(_template(ovisChecks=checks))
    assert exc.value.path == "ovisChecks[0]"
