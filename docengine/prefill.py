"""
Prefill mappers: job + business profile -> template data.

Keys are the template field ids. Values are raw (ISO dates, floats);
formatting happens in the render model.
"""
import json
from datetime import date, timedelta

from pricing import (
    extract_numeric_value,
    gst_breakdown,
    load_quote,
    quote_amount,
    quote_block,
    quoted_materials_cost,
)

from docengine.formatting import format_long_date, parse_date, text_list
from docengine.issuer import format_business_address, extract_issuer_from_user

STATUS_DISPLAY = {
    "DRAFT": "Draft",
    "PENDING_APPROVAL": "Pending Approval",
    "APPROVED": "Approved",
    "REJECTED": "Rejected",
}

DEFAULT_PAYMENT_TERMS = "Payment due within 14 days"
DEFAULT_RECOAT_INTERVAL = "5-7 years (interior)"
INVOICE_DUE_DAYS = 7
EOT_COMPLETION_DAYS = 14


def _sequence(prefix: str, existing_count: int, width: int) -> str:
    return f"{prefix}-{existing_count + 1:0{width}d}"


def _json_value(raw):
    if not raw:
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def map_common(job: dict, user: dict, today: date = None) -> dict:
    today = today or date.today()
    issuer = extract_issuer_from_user(user)
    return {
        "companyLegalName": issuer["legal_name"],
        "companyABN": issuer["abn"] or "",
        "companyAddress": format_business_address(issuer),
        "companyEmail": issuer["email"] or "",
        "companyPhone": issuer["phone"] or "",

        "clientName": job.get("client_name") or "",
        "clientEmail": job.get("client_email") or "",
        "clientPhone": "",
        "clientBillingAddress": job.get("address") or "",

        "jobId": job.get("id") or "",
        "jobTitle": job.get("title") or "",
        "siteAddress": job.get("address") or "",
        "jobSummary": job.get("ai_summary") or job.get("notes") or "",
        "tradeType": job.get("trade_type") or "",
        "propertyType": job.get("property_type") or "",

        "dateIssued": today.isoformat(),
    }


def map_variation(job: dict, common: dict, existing_count: int = 0) -> dict:
    scope = []
    if job.get("ai_scope_of_work"):
        scope.append(f"Scope: {job['ai_scope_of_work']}")
    if job.get("ai_inclusions"):
        scope.append(f"Inclusions: {job['ai_inclusions']}")
    if job.get("ai_exclusions"):
        scope.append(f"Exclusions: {job['ai_exclusions']}")

    return {
        **common,
        "variationNumber": _sequence("VAR", existing_count, 3),
        "variationDate": common["dateIssued"],
        "contractReference": job.get("quote_number") or job.get("id") or "",
        "originalScopeReference": "\n\n".join(scope),
        "variationDescription": "",
        "variationReason": "",
        "costImpact": None,
        "costImpactDisplay": "TBC",
        "timeImpactDays": None,
        "timeImpactDisplay": "TBC",
        "status": "DRAFT",
        "statusDisplay": STATUS_DISPLAY["DRAFT"],
    }


def map_eot(job: dict, common: dict, existing_count: int = 0) -> dict:
    created = parse_date(job.get("created_at"))
    original_completion = None
    if created is not None:
        original_completion = (created + timedelta(days=EOT_COMPLETION_DAYS)).date().isoformat()

    return {
        **common,
        "eotNumber": _sequence("EOT", existing_count, 3),
        "eotDate": common["dateIssued"],
        "contractReference": job.get("quote_number") or job.get("id") or "",
        "delayCause": "",
        "delayCircumstances": "",
        "originalCompletionDate": original_completion,
        "originalCompletionDisplay": format_long_date(original_completion),
        "revisedCompletionDate": None,
        "revisedCompletionDisplay": "TBC",
        "daysRequested": None,
        "timeImpactDisplay": "TBC",
        "evidenceReference": "None attached",
        "status": "DRAFT",
        "statusDisplay": STATUS_DISPLAY["DRAFT"],
    }


def invoice_pricing(job: dict, include_markup: bool = False) -> dict:
    """
    Labour and materials amounts for invoice line items. Client-facing
    invoices use the materials subtotal (no markup) unless asked otherwise.
    """
    quote = load_quote(job.get("ai_quote")) or {}
    total = quote_block(quote, "totalEstimate")

    labour = extract_numeric_value(
        total.get("labourSubtotal") or quote_amount(quote.get("labour"), "total")
    )
    quoted_materials = extract_numeric_value(total.get("materialsTotal")) or quoted_materials_cost(quote)
    if include_markup:
        materials = job.get("materials_total") or quoted_materials
    else:
        materials = job.get("materials_subtotal") or quoted_materials

    return {"labour": labour, "materials": materials}


def _line_item(description: str, amount) -> dict:
    return {"description": description, "quantity": None, "unit": "Item", "rate": None, "amount": amount}


def map_invoice(job: dict, common: dict, existing_count: int = 0,
                include_markup: bool = False, today: date = None) -> dict:
    today = today or date.today()
    pricing = invoice_pricing(job, include_markup)

    line_items = []
    if pricing["labour"] and pricing["labour"] > 0:
        line_items.append(_line_item("Labour", pricing["labour"]))
    if pricing["materials"] and pricing["materials"] > 0:
        line_items.append(_line_item("Materials", pricing["materials"]))
    if not line_items:
        line_items.append({"description": "", "quantity": None, "unit": "", "rate": None, "amount": None})

    subtotal = sum(item["amount"] for item in line_items if item["amount"]) or None
    totals = gst_breakdown(subtotal)

    return {
        **common,
        "invoiceNumber": _sequence("INV", existing_count, 4),
        "claimNumber": _sequence("PC", existing_count, 3),
        "issueDate": today.isoformat(),
        "dueDate": (today + timedelta(days=INVOICE_DUE_DAYS)).isoformat(),
        "period": "",
        "lineItems": line_items,
        "subtotal": totals["subtotal"],
        "gstAmount": totals["gst_amount"],
        "totalInclGst": totals["total_incl_gst"],
        "paymentTerms": DEFAULT_PAYMENT_TERMS,
        "includeMaterialsMarkup": include_markup,
    }


def map_payment_claim(job: dict, common: dict, existing_count: int = 0,
                      include_markup: bool = False, today: date = None) -> dict:
    data = map_invoice(job, common, existing_count, include_markup, today)
    data["contractReference"] = job.get("quote_number") or job.get("id") or ""
    data["claimedAmount"] = data["totalInclGst"]
    data["dueDate"] = None
    return data


def map_handover(job: dict, common: dict) -> dict:
    parts = [p for p in (job.get("ai_scope_of_work"), job.get("ai_summary")) if p]
    return {
        **common,
        "completionDate": common["dateIssued"],
        "summaryOfWorks": "\n\n".join(parts) if parts else job.get("notes") or "",
        "defects": "None",
        "documentsHandedOver": "",
        "keysReturned": False,
        "manualsProvided": False,
    }


def _materials_list(job: dict) -> str:
    if job.get("materials_override_text"):
        return job["materials_override_text"]
    materials = _json_value(job.get("ai_materials"))
    if materials is None:
        return ""
    if isinstance(materials, list):
        names = []
        for m in materials:
            if isinstance(m, dict):
                names.append(str(m.get("item") or m.get("name") or ""))
            else:
                names.append(str(m))
        return ", ".join(n for n in names if n)
    return str(materials)


def map_maintenance(job: dict, common: dict) -> dict:
    return {
        **common,
        "materialsUsed": _materials_list(job),
        "finishes": "",
        "generalCare": "",
        "specificInstructions": "",
        "recoatInterval": DEFAULT_RECOAT_INTERVAL,
        "warrantyInfo": "",
    }


def map_swms(job: dict, common: dict) -> dict:
    swms = _json_value(job.get("ai_swms"))
    if not isinstance(swms, dict):
        swms = {}

    raw_hazards = swms.get("hazards")
    hazards = []
    for index, hazard in enumerate(raw_hazards if isinstance(raw_hazards, list) else [], start=1):
        if not isinstance(hazard, dict):
            continue
        hazards.append({
            "step": str(index),
            "task": hazard.get("task") or "",
            "hazard": hazard.get("hazard") or "",
            "riskBefore": hazard.get("riskBefore") or "",
            "controls": hazard.get("controls") or "",
            "riskAfter": hazard.get("riskAfter") or "",
            "responsible": hazard.get("responsible") or "",
        })

    return {
        **common,
        "principalContractor": common["companyLegalName"],
        "workActivity": job.get("ai_scope_of_work") or job.get("title") or "",
        "highRiskWork": text_list(swms.get("highRiskWork")),
        "ppe": ", ".join(text_list(swms.get("ppe"))),
        "hazards": hazards,
        "preparedBy": "",
        "reviewDate": None,
    }


def map_toolbox_talk(job: dict, common: dict) -> dict:
    return {
        **common,
        "talkDate": common["dateIssued"],
        "topic": "",
        "presenter": common["companyLegalName"],
        "keyPoints": "",
        "attendees": [],
    }


def prefill_for_doc(doc_type: str, job: dict, user: dict,
                    existing_count: int = 0, include_markup: bool = False) -> dict:
    common = map_common(job, user)

    if doc_type == "VARIATION_CHANGE_ORDER":
        return map_variation(job, common, existing_count)
    if doc_type == "EXTENSION_OF_TIME":
        return map_eot(job, common, existing_count)
    if doc_type == "PROGRESS_CLAIM_TAX_INVOICE":
        return map_invoice(job, common, existing_count, include_markup)
    if doc_type == "PAYMENT_CLAIM_WA":
        return map_payment_claim(job, common, existing_count, include_markup)
    if doc_type == "HANDOVER_PRACTICAL_COMPLETION":
        return map_handover(job, common)
    if doc_type == "MAINTENANCE_CARE_GUIDE":
        return map_maintenance(job, common)
    if doc_type == "SWMS":
        return map_swms(job, common)
    if doc_type == "TOOLBOX_TALK":
        return map_toolbox_talk(job, common)

    raise ValueError(f"Unsupported document type: {doc_type}")
