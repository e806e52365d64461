"""
Issuer (business profile) checks before a document is issued to a client.
"""
import re

from docengine.formatting import format_abn
from docengine.schema import ABN_RECOMMENDED_DOC_TYPES, ABN_REQUIRED_DOC_TYPES

__all__ = [
    "extract_issuer_from_user",
    "format_abn",
    "format_business_address",
    "validate_issuer_for_doc",
]


def _blank(value) -> bool:
    return value is None or str(value).strip() == ""


def validate_issuer_for_doc(doc_type: str, issuer: dict, strict: bool = True) -> dict:
    """
    With strict=True a missing ABN blocks tax invoices and payment claims;
    otherwise it is downgraded to a recommendation with a warning.
    """
    if not issuer:
        return {
            "is_valid": False,
            "missing_required": ["Business profile not configured"],
            "missing_recommended": [],
            "warnings": ["Please complete your business profile in Settings before issuing documents."],
            "can_issue": False,
        }

    missing_required = []
    missing_recommended = []
    warnings = []

    if _blank(issuer.get("legal_name")):
        missing_required.append("Business legal name")

    abn_required = doc_type in ABN_REQUIRED_DOC_TYPES
    abn = issuer.get("abn")
    if _blank(abn):
        if abn_required:
            if strict:
                missing_required.append("ABN (required for tax invoices)")
            else:
                missing_recommended.append("ABN")
                warnings.append(
                    "ABN is strongly recommended for tax invoices. Without it, the "
                    "document may not be legally valid for tax purposes."
                )
        elif doc_type in ABN_RECOMMENDED_DOC_TYPES:
            missing_recommended.append("ABN")
    elif not re.fullmatch(r"\d{11}", re.sub(r"\s", "", abn)):
        warnings.append("ABN format appears invalid. Expected 11 digits.")

    if not issuer.get("email") and not issuer.get("phone"):
        missing_recommended.append("Contact details (email or phone)")

    if not issuer.get("address_line1") and not issuer.get("suburb"):
        missing_recommended.append("Business address")

    if abn_required and not _blank(abn) and not issuer.get("gst_registered"):
        warnings.append("If registered for GST, ensure your profile indicates GST registration.")

    is_valid = not missing_required
    return {
        "is_valid": is_valid,
        "missing_required": missing_required,
        "missing_recommended": missing_recommended,
        "warnings": warnings,
        "can_issue": is_valid,
    }


def extract_issuer_from_user(user: dict) -> dict:
    user = user or {}
    return {
        "legal_name": user.get("business_name") or "",
        "trading_name": user.get("trading_name") or None,
        "abn": user.get("abn") or None,
        "email": user.get("email") or None,
        "phone": user.get("business_phone") or None,
        "address_line1": user.get("business_address_line1") or None,
        "address_line2": user.get("business_address_line2") or None,
        "suburb": user.get("business_suburb") or None,
        "state": user.get("business_state") or None,
        "postcode": user.get("business_postcode") or None,
        "logo_url": user.get("business_logo_url") or None,
        "gst_registered": bool(user.get("gst_registered")),
    }


def format_business_address(issuer: dict) -> str:
    parts = [p for p in (issuer.get("address_line1"), issuer.get("address_line2")) if p]
    locality = [p for p in (issuer.get("suburb"), issuer.get("state"), issuer.get("postcode")) if p]
    if locality:
        parts.append(" ".join(locality))
    return ", ".join(parts)
