"""
Document drafts: one row per (job, doc type) moving DRAFT -> CONFIRMED -> ISSUED.
"""
import json
import logging
import secrets
import string
import time

from db import new_id, utc_now_iso

from docengine.issuer import extract_issuer_from_user, validate_issuer_for_doc
from docengine.schema import DOC_STATUS_CONFIRMED, DOC_STATUS_DRAFT, DOC_STATUS_ISSUED

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


class DraftNotFound(LookupError):
    pass


class IssuerIncomplete(ValueError):
    """Raised when the business profile is not good enough to issue."""

    def __init__(self, validation: dict):
        super().__init__("Cannot issue document due to missing business details")
        self.validation = validation


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_issued_record_id(doc_type: str) -> str:
    prefix = doc_type[:3].upper()
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{stamp}-{suffix}"


def _decode(row) -> dict:
    if row is None:
        return None
    draft = dict(row)
    try:
        draft["data"] = json.loads(draft.pop("data_json"))
    except ValueError:
        draft["data"] = None
    issuer_json = draft.pop("issuer_data_json", None)
    draft["issuer"] = json.loads(issuer_json) if issuer_json else None
    draft["approved"] = bool(draft["approved"])
    return draft


def get_draft(conn, job_id: str, doc_type: str):
    row = conn.execute(
        "SELECT * FROM document_drafts WHERE job_id = ? AND doc_type = ?",
        (job_id, doc_type),
    ).fetchone()
    return _decode(row)


def require_draft(conn, job_id: str, doc_type: str) -> dict:
    draft = get_draft(conn, job_id, doc_type)
    if draft is None:
        raise DraftNotFound("Document draft not found. Please create a draft first.")
    return draft


def count_drafts(conn, job_id: str, doc_type: str = None) -> int:
    if doc_type is None:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM document_drafts WHERE job_id = ?", (job_id,)
        ).fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM document_drafts WHERE job_id = ? AND doc_type = ?",
            (job_id, doc_type),
        ).fetchone()
    return row["n"]


def save_draft(conn, job_id: str, doc_type: str, data, approved: bool = False) -> dict:
    """
    Upsert the draft data. `approved` can only be switched on here; an
    existing approval is never cleared by a later save.
    """
    data_json = data if isinstance(data, str) else json.dumps(data)
    now = utc_now_iso()
    approved_at = now if approved else None

    conn.execute("""
        INSERT INTO document_drafts
            (id, job_id, doc_type, data_json, status, approved, approved_at, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(job_id, doc_type) DO UPDATE SET
            data_json = excluded.data_json,
            approved = MAX(document_drafts.approved, excluded.approved),
            approved_at = COALESCE(excluded.approved_at, document_drafts.approved_at),
            updated_at = excluded.updated_at
    """, (new_id(), job_id, doc_type, data_json, DOC_STATUS_DRAFT,
          1 if approved else 0, approved_at, now, now))
    conn.commit()
    return get_draft(conn, job_id, doc_type)


def confirm_draft(conn, job_id: str, doc_type: str, user_id: str):
    """Returns (draft, already_confirmed)."""
    draft = require_draft(conn, job_id, doc_type)
    if draft["approved"] and draft["status"] != DOC_STATUS_DRAFT:
        return draft, True

    now = utc_now_iso()
    conn.execute("""
        UPDATE document_drafts
        SET status = ?, confirmed_at = ?, approved = 1, approved_at = ?,
            approved_by_user_id = ?, updated_at = ?
        WHERE id = ?
    """, (DOC_STATUS_CONFIRMED, now, now, user_id, now, draft["id"]))
    conn.commit()
    logger.info("Confirmed %s draft for job %s", doc_type, job_id)
    return get_draft(conn, job_id, doc_type), False


def issue_draft(conn, job_id: str, doc_type: str, user: dict, strict: bool = True):
    """
    Issue a draft under the user's business profile. Returns
    (draft, issuer, validation); raises IssuerIncomplete when the profile
    is missing required details.
    """
    draft = require_draft(conn, job_id, doc_type)

    issuer = extract_issuer_from_user(user)
    validation = validate_issuer_for_doc(doc_type, issuer, strict)
    if not validation["can_issue"]:
        raise IssuerIncomplete(validation)

    now = utc_now_iso()
    record_id = generate_issued_record_id(doc_type)
    conn.execute("""
        UPDATE document_drafts
        SET status = ?, issued_at = ?, issued_record_id = ?, issuer_data_json = ?,
            approved = 1, approved_at = COALESCE(approved_at, ?),
            confirmed_at = COALESCE(confirmed_at, ?), updated_at = ?
        WHERE id = ?
    """, (DOC_STATUS_ISSUED, now, record_id, json.dumps(issuer), now, now, now, draft["id"]))
    conn.commit()
    logger.info("Issued %s %s for job %s", doc_type, record_id, job_id)
    return get_draft(conn, job_id, doc_type), issuer, validation
