import json
from functools import lru_cache
from pathlib import Path

from docengine.validate import TemplateValidationError, validate_template

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

TEMPLATE_FILES = {
    "SWMS": "swms_au_wa.json",
    "PAYMENT_CLAIM_WA": "payment_claim_au_wa.json",
    "TOOLBOX_TALK": "toolbox_talk_au.json",
    "VARIATION_CHANGE_ORDER": "variation_change_order_au.json",
    "EXTENSION_OF_TIME": "extension_of_time_au.json",
    "PROGRESS_CLAIM_TAX_INVOICE": "progress_claim_tax_invoice_au.json",
    "HANDOVER_PRACTICAL_COMPLETION": "handover_practical_completion_au.json",
    "MAINTENANCE_CARE_GUIDE": "maintenance_care_guide_au.json",
}


class TemplateNotFoundError(LookupError):
    pass


@lru_cache(maxsize=None)
def _read_template(doc_type: str) -> str:
    filename = TEMPLATE_FILES.get(doc_type)
    if not filename:
        raise TemplateNotFoundError(f"Template not found for document type: {doc_type}")
    path = TEMPLATES_DIR / filename
    if not path.exists():
        raise TemplateNotFoundError(f"Template not found for document type: {doc_type}")
    return path.read_text(encoding="utf-8")


def load_template(doc_type: str) -> dict:
    """
    Load and validate a template by document type. Each call returns a
    fresh dict so callers may mutate it.
    """
    template = json.loads(_read_template(doc_type))
    try:
        validate_template(template)
    except TemplateValidationError as e:
        where = f" (at {e.path})" if e.path else ""
        raise TemplateValidationError(
            f"Template validation failed for {doc_type}: {e.message}{where}", e.path
        ) from e
    return template


def available_doc_types() -> list:
    return list(TEMPLATE_FILES)
