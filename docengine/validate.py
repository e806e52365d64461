"""
Template schema validation.

Templates are checked when loaded and fail fast with a readable message
and the path of the offending node.
"""
from docengine.schema import DOC_TYPES, FIELD_TYPES, OVIS_SEVERITIES, SELECT_FIELD_TYPES


class TemplateValidationError(ValueError):
    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.message = message
        self.path = path


def _is_text(value) -> bool:
    return isinstance(value, str) and value != ""


def validate_template(template) -> bool:
    if not isinstance(template, dict):
        raise TemplateValidationError("Template must be an object")

    for key in ("schemaVersion", "jurisdiction"):
        if not _is_text(template.get(key)):
            raise TemplateValidationError(f"Template must have a '{key}' string field")

    if template.get("docType") not in DOC_TYPES:
        raise TemplateValidationError(
            "Template must have a 'docType' field with value: " + ", ".join(DOC_TYPES)
        )

    for key in ("title", "disclaimer"):
        if not _is_text(template.get(key)):
            raise TemplateValidationError(f"Template must have a '{key}' string field")

    disclaimer = template["disclaimer"].lower()
    if "draft" not in disclaimer and "review" not in disclaimer:
        raise TemplateValidationError("Template disclaimer must mention 'draft' or 'review required'")

    sections = template.get("sections")
    if not isinstance(sections, list):
        raise TemplateValidationError("Template must have a 'sections' array")
    if not sections:
        raise TemplateValidationError("Template must have at least one section")
    for index, section in enumerate(sections):
        _validate_section(section, f"sections[{index}]")

    checks = template.get("ovisChecks")
    if not isinstance(checks, list):
        raise TemplateValidationError("Template must have an 'ovisChecks' array")
    for index, check in enumerate(checks):
        _validate_ovis_check(check, f"ovisChecks[{index}]")

    return True


def _validate_section(section, path: str):
    if not isinstance(section, dict):
        raise TemplateValidationError(f"Section at {path} must be an object", path)
    if not _is_text(section.get("id")):
        raise TemplateValidationError(f"Section at {path} must have an 'id' string field", path)
    if not _is_text(section.get("title")):
        raise TemplateValidationError(f"Section at {path} must have a 'title' string field", path)

    fields = section.get("fields")
    table = section.get("table")
    if fields is None and not table:
        raise TemplateValidationError(f"Section at {path} must have either 'fields' or 'table'", path)

    if fields is not None:
        if not isinstance(fields, list):
            raise TemplateValidationError(f"Section at {path}.fields must be an array", path)
        for index, field in enumerate(fields):
            _validate_field(field, f"{path}.fields[{index}]")

    if table:
        _validate_table(table, f"{path}.table")


def _validate_field(field, path: str):
    if not isinstance(field, dict):
        raise TemplateValidationError(f"Field at {path} must be an object", path)
    if not _is_text(field.get("id")):
        raise TemplateValidationError(f"Field at {path} must have an 'id' string field", path)
    if not _is_text(field.get("label")):
        raise TemplateValidationError(f"Field at {path} must have a 'label' string field", path)

    field_type = field.get("type")
    if field_type not in FIELD_TYPES:
        raise TemplateValidationError(
            f"Field at {path} must have a 'type' field with value: {', '.join(FIELD_TYPES)}", path
        )

    options = field.get("options")
    if options is not None and not isinstance(options, list):
        raise TemplateValidationError(f"Field at {path}.options must be an array", path)
    if field_type in SELECT_FIELD_TYPES and not options:
        raise TemplateValidationError(
            f"Field at {path} with type '{field_type}' must have 'options' array", path
        )


def _validate_table(table, path: str):
    if not isinstance(table, dict):
        raise TemplateValidationError(f"Table at {path} must be an object", path)
    if not _is_text(table.get("id")):
        raise TemplateValidationError(f"Table at {path} must have an 'id' string field", path)

    columns = table.get("columns")
    if not isinstance(columns, list) or not columns:
        raise TemplateValidationError(
            f"Table at {path} must have a 'columns' array with at least one column", path
        )
    for index, column in enumerate(columns):
        column_path = f"{path}.columns[{index}]"
        if not isinstance(column, dict) or not _is_text(column.get("id")):
            raise TemplateValidationError(
                f"Table column at {column_path} must have an 'id' string field", path
            )
        if not _is_text(column.get("label")):
            raise TemplateValidationError(
                f"Table column at {column_path} must have a 'label' string field", path
            )
        if column.get("type") is not None and column["type"] not in FIELD_TYPES:
            raise TemplateValidationError(
                f"Table column at {column_path} has an unknown 'type'", path
            )

    if not _is_text(table.get("rowsKey")):
        raise TemplateValidationError(f"Table at {path} must have a 'rowsKey' string field", path)


def _validate_ovis_check(check, path: str):
    if not isinstance(check, dict):
        raise TemplateValidationError(f"OVIS check at {path} must be an object", path)
    if not _is_text(check.get("id")):
        raise TemplateValidationError(f"OVIS check at {path} must have an 'id' string field", path)
    if check.get("severity") not in OVIS_SEVERITIES:
        raise TemplateValidationError(
            f"OVIS check at {path} must have a 'severity' field with value: "
            + ", ".join(OVIS_SEVERITIES),
            path,
        )
    for key in ("rule", "message"):
        if not _is_text(check.get(key)):
            raise TemplateValidationError(f"OVIS check at {path} must have a '{key}' string field", path)
