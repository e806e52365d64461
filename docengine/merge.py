import copy

_MISSING = object()


def get_value_by_path(obj, path: str):
    """Dot-path lookup ('client.name'); None when any step is missing."""
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def set_value_by_path(obj: dict, path: str, value):
    parts = path.split(".")
    current = obj
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def is_blank(value) -> bool:
    return value is None or value == ""


def _empty_value(field_type: str):
    if field_type in ("number", "currency"):
        return None
    if field_type == "multiSelect":
        return []
    return ""


def merge_data(template: dict, job_data: dict, overrides: dict = None) -> dict:
    """
    Merge job data and user overrides for a template. Overrides win;
    blank fields fall back to the template default or a type-appropriate
    empty value, and table rows default to an empty list. Inputs are
    never mutated.
    """
    merged = copy.deepcopy(job_data or {})
    if overrides:
        merged.update(copy.deepcopy(overrides))

    for section in template.get("sections", []):
        for field in section.get("fields") or []:
            path = field.get("dataPath") or field["id"]
            if is_blank(get_value_by_path(merged, path)):
                default = field.get("defaultValue", _MISSING)
                if default is _MISSING:
                    set_value_by_path(merged, path, _empty_value(field["type"]))
                else:
                    set_value_by_path(merged, path, default)

        table = section.get("table")
        if table and not get_value_by_path(merged, table["rowsKey"]):
            set_value_by_path(merged, table["rowsKey"], [])

    return merged
