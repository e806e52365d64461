"""
Job storage and the client-facing quote workflow.

Client status moves draft -> sent -> accepted | declined. Acceptance is
tied to the quote version that was sent, and books the job; a decline
cancels it. Resending never overrides an accepted or declined quote.
"""
import json
import logging

from accounts import is_valid_email
from db import (
    compute_content_hash,
    iso_in_days,
    new_accept_token,
    new_id,
    parse_iso,
    utc_now,
    utc_now_iso,
)
from job_packs import DEFAULT_TRADE, TRADE_TYPES
from pricing import apply_materials_totals, calculate_estimate_range, gst_breakdown

logger = logging.getLogger(__name__)

JOB_STATUSES = ("draft", "ai_pending", "ai_complete", "ai_failed")
CLIENT_STATUSES = ("draft", "sent", "accepted", "declined", "cancelled")
JOB_WORKFLOW_STATUSES = ("pending", "booked", "completed", "cancelled")
AI_REVIEW_STATUSES = ("pending", "confirmed")

JOB_COLUMNS = (
    "id", "user_id", "created_at", "updated_at", "title", "trade_type",
    "property_type", "address", "notes", "client_name", "client_email",
    "labour_rate_per_hour", "helper_rate_per_hour", "materials_rough_estimate",
    "status", "ai_summary", "ai_quote", "ai_scope_of_work", "ai_inclusions",
    "ai_exclusions", "ai_materials", "ai_client_notes", "ai_swms",
    "materials_subtotal", "materials_markup_total", "materials_total",
    "materials_override_text", "quote_number", "quote_version",
    "quote_expiry_at", "client_status", "client_status_updated_at",
    "job_status", "ai_review_status", "sent_to_client_at",
    "client_accepted_at", "client_declined_at", "client_signed_name",
    "client_signed_email", "client_acceptance_note",
    "client_accepted_quote_version", "client_decline_reason",
    "client_signature_id", "responded_ip", "accept_token",
    "accept_expires_at",
)

MIN_SIGNED_NAME = 2
MAX_SIGNED_NAME = 100


class JobNotFound(LookupError):
    pass


class JobAccessDenied(PermissionError):
    pass


class JobValidationError(ValueError):
    pass


class WorkflowError(Exception):
    def __init__(self, code: str, message: str, status: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


# --------------------
# CRUD
# --------------------
def _clean(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_rate(name: str, value):
    if value is None or value == "":
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise JobValidationError(f"{name} must be a positive number")
    if rate <= 0:
        raise JobValidationError(f"{name} must be a positive number")
    return rate


def validate_job_input(data: dict) -> dict:
    title = _clean(data.get("title"))
    if not title:
        raise JobValidationError("Title is required")

    property_type = _clean(data.get("property_type"))
    if not property_type:
        raise JobValidationError("Property type is required")

    trade_type = data.get("trade_type")
    if trade_type not in (None, "") and trade_type not in TRADE_TYPES:
        raise JobValidationError(
            "Invalid trade type. Must be one of: " + ", ".join(TRADE_TYPES)
        )

    client_email = _clean(data.get("client_email"))
    if client_email and not is_valid_email(client_email):
        raise JobValidationError("Please enter a valid email address")

    return {
        "title": title,
        "trade_type": trade_type or DEFAULT_TRADE,
        "property_type": property_type,
        "address": _clean(data.get("address")),
        "notes": _clean(data.get("notes")),
        "client_name": _clean(data.get("client_name")) or "",
        "client_email": (client_email or "").lower(),
        "labour_rate_per_hour": _parse_rate("Labour rate", data.get("labour_rate_per_hour")),
        "helper_rate_per_hour": _parse_rate("Helper rate", data.get("helper_rate_per_hour")),
        "materials_rough_estimate": 1 if data.get("materials_rough_estimate") is True else 0,
    }


def _insert_job(conn, job: dict):
    columns = [c for c in JOB_COLUMNS if c in job]
    conn.execute(
        f"INSERT INTO jobs ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
        [job[c] for c in columns],
    )


def create_job(conn, user_id: str, data: dict, status: str = "ai_pending") -> dict:
    """Create a job; the AI pack is generated afterwards by the caller."""
    job = validate_job_input(data)
    now = utc_now_iso()
    job.update({
        "id": new_id(),
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
        "status": status,
        "client_status": "draft",
        "job_status": "pending",
        "ai_review_status": "pending",
    })
    _insert_job(conn, job)
    conn.commit()
    return get_job(conn, job["id"])


def get_job(conn, job_id: str):
    row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return dict(row) if row else None


def require_job(conn, job_id: str, user_id: str) -> dict:
    job = get_job(conn, job_id)
    if not job:
        raise JobNotFound(job_id)
    if job["user_id"] != user_id:
        raise JobAccessDenied(job_id)
    return job


def list_jobs_for_user(conn, user_id: str) -> list:
    rows = conn.execute(
        "SELECT * FROM jobs WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
        (user_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def save_job(conn, job: dict) -> dict:
    job["updated_at"] = utc_now_iso()
    columns = [c for c in JOB_COLUMNS if c in job and c != "id"]
    conn.execute(
        f"UPDATE jobs SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
        [job[c] for c in columns] + [job["id"]],
    )
    conn.commit()
    return job


def delete_job(conn, job_id: str):
    conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
    conn.commit()


def duplicate_job(conn, job: dict) -> dict:
    copy = {
        "title": f"{job['title']} (copy)",
        "trade_type": job.get("trade_type"),
        "property_type": job.get("property_type"),
        "address": job.get("address"),
        "notes": job.get("notes"),
        "client_name": job.get("client_name"),
        "client_email": job.get("client_email"),
        "labour_rate_per_hour": job.get("labour_rate_per_hour"),
        "helper_rate_per_hour": job.get("helper_rate_per_hour"),
    }
    return create_job(conn, job["user_id"], copy, status="draft")


def public_job(job: dict) -> dict:
    """Job as returned by the API: secrets removed, JSON fields decoded."""
    out = {k: v for k, v in job.items() if k not in ("accept_token",)}
    for name in ("ai_quote", "ai_materials", "ai_swms"):
        raw = out.get(name)
        if raw:
            try:
                out[name] = json.loads(raw)
            except ValueError:
                pass
    out["materials_rough_estimate"] = bool(out.get("materials_rough_estimate"))
    return out


# --------------------
# Status updates
# --------------------
def update_status(job: dict, job_status=None, ai_review_status=None) -> dict:
    if job_status is None and ai_review_status is None:
        raise JobValidationError("No valid status fields provided")
    if job_status is not None:
        if job_status not in JOB_WORKFLOW_STATUSES:
            raise JobValidationError(
                "Invalid job status. Must be one of: " + ", ".join(JOB_WORKFLOW_STATUSES)
            )
        job["job_status"] = job_status
    if ai_review_status is not None:
        if ai_review_status not in AI_REVIEW_STATUSES:
            raise JobValidationError(
                "Invalid AI review status. Must be one of: " + ", ".join(AI_REVIEW_STATUSES)
            )
        job["ai_review_status"] = ai_review_status
    return job


def update_client_details(job: dict, client_name=None, client_email=None) -> dict:
    if client_email is not None:
        client_email = client_email.strip().lower()
        if client_email and not is_valid_email(client_email):
            raise JobValidationError("Please enter a valid email address")
        job["client_email"] = client_email
    if client_name is not None:
        job["client_name"] = client_name.strip()
    return job


def _required_text(data: dict, name: str, label: str) -> str:
    value = data[name]
    if not isinstance(value, str) or not value.strip():
        raise JobValidationError(f"{label} must be a non-empty string")
    return value.strip()


def update_job_details(job: dict, data: dict) -> dict:
    """Edit job inputs; only the keys present in `data` change."""
    changed = False

    if "title" in data:
        job["title"] = _required_text(data, "title", "Title")
        changed = True
    if "property_type" in data:
        job["property_type"] = _required_text(data, "property_type", "Property type")
        changed = True
    if "trade_type" in data:
        if data["trade_type"] not in TRADE_TYPES:
            raise JobValidationError(
                "Invalid trade type. Must be one of: " + ", ".join(TRADE_TYPES)
            )
        job["trade_type"] = data["trade_type"]
        changed = True
    for name in ("address", "notes"):
        if name in data:
            job[name] = _clean(data[name])
            changed = True
    if "labour_rate_per_hour" in data:
        job["labour_rate_per_hour"] = _parse_rate("Labour rate", data["labour_rate_per_hour"])
        changed = True
    if "helper_rate_per_hour" in data:
        job["helper_rate_per_hour"] = _parse_rate("Helper rate", data["helper_rate_per_hour"])
        changed = True
    if "client_name" in data:
        job["client_name"] = _required_text(data, "client_name", "Client name")
        changed = True
    if "client_email" in data:
        email = _required_text(data, "client_email", "Client email").lower()
        if not is_valid_email(email):
            raise JobValidationError("Please enter a valid email address")
        job["client_email"] = email
        changed = True

    if not changed:
        raise JobValidationError("No valid fields to update")
    return job


PACK_SECTION_FIELDS = (
    "ai_summary",
    "ai_scope_of_work",
    "ai_inclusions",
    "ai_exclusions",
    "ai_materials",
    "ai_quote",
    "ai_client_notes",
)

# Stored as JSON text
PACK_JSON_FIELDS = ("ai_materials", "ai_quote")


def update_pack_sections(job: dict, data: dict, markup_percent=None) -> dict:
    """
    Edit the generated pack before it is sent. Empty values clear a section;
    lists for text sections are stored one item per line. Editing the
    materials or quote recomputes the materials totals.
    """
    changed = []
    for name in PACK_SECTION_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if value is None or value == "":
            job[name] = None
        elif name in PACK_JSON_FIELDS and isinstance(value, (dict, list)):
            job[name] = json.dumps(value)
        elif isinstance(value, list):
            job[name] = "\n".join(str(v) for v in value)
        else:
            job[name] = str(value)
        changed.append(name)

    if not changed:
        raise JobValidationError("No valid fields to update")
    if "ai_materials" in changed or "ai_quote" in changed:
        apply_materials_totals(job, markup_percent)
    return job


def set_materials_override(job: dict, text) -> dict:
    if text is not None and not isinstance(text, str):
        raise JobValidationError("Invalid materials override text")
    job["materials_override_text"] = (text or "").strip() or None
    return job


# --------------------
# Quotes
# --------------------
def ensure_quote_number(conn, job: dict) -> str:
    """Format: Q-{YYYY}-{NNNN}, sequential within the year."""
    if job.get("quote_number"):
        return job["quote_number"]

    year = utc_now().year
    prefix = f"Q-{year}-"
    row = conn.execute(
        "SELECT MAX(CAST(substr(quote_number, ?) AS INTEGER)) AS n "
        "FROM jobs WHERE quote_number LIKE ?",
        (len(prefix) + 1, prefix + "%"),
    ).fetchone()
    sequence = (row["n"] or 0) + 1
    job["quote_number"] = f"{prefix}{sequence:04d}"
    return job["quote_number"]


def materials_text(job: dict) -> str:
    if job.get("materials_override_text"):
        return job["materials_override_text"]
    raw = job.get("ai_materials")
    if not raw:
        return ""
    try:
        materials = json.loads(raw) if isinstance(raw, str) else raw
    except ValueError:
        return raw
    if not isinstance(materials, list):
        return str(materials)

    lines = []
    for m in materials:
        if isinstance(m, dict):
            parts = [m.get("item") or m.get("name") or ""]
            if m.get("quantity"):
                parts.append(str(m["quantity"]))
            if m.get("estimatedCost"):
                parts.append(str(m["estimatedCost"]))
            lines.append(" - ".join(p for p in parts if p))
        else:
            lines.append(str(m))
    return "\n".join(lines)


def next_quote_version(conn, job_id: str) -> int:
    row = conn.execute(
        "SELECT MAX(version) AS v FROM quote_versions WHERE job_id = ?", (job_id,)
    ).fetchone()
    return (row["v"] or 0) + 1


def snapshot_quote_version(conn, job: dict) -> dict:
    version = next_quote_version(conn, job["id"])
    estimate = calculate_estimate_range(job.get("ai_quote"))
    totals = gst_breakdown(estimate["base_total"])

    snapshot = {
        "id": new_id(),
        "job_id": job["id"],
        "version": version,
        "sent_at": utc_now_iso(),
        "quote_expiry_at": job.get("quote_expiry_at"),
        "total_incl_gst": totals["total_incl_gst"],
        "summary": job.get("ai_summary"),
        "scope_of_work": job.get("ai_scope_of_work"),
        "inclusions": job.get("ai_inclusions"),
        "exclusions": job.get("ai_exclusions"),
        "materials_text": materials_text(job),
        "client_notes": job.get("ai_client_notes"),
    }
    snapshot["content_hash"] = compute_content_hash(
        snapshot["summary"], snapshot["scope_of_work"], snapshot["inclusions"],
        snapshot["exclusions"], snapshot["materials_text"], snapshot["client_notes"],
    )
    columns = list(snapshot)
    conn.execute(
        f"INSERT INTO quote_versions ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})",
        [snapshot[c] for c in columns],
    )
    job["quote_version"] = version
    return snapshot


def list_quote_versions(conn, job_id: str) -> list:
    rows = conn.execute(
        "SELECT * FROM quote_versions WHERE job_id = ? ORDER BY version DESC",
        (job_id,),
    ).fetchall()
    return [dict(r) for r in rows]


# --------------------
# Client workflow
# --------------------
def mark_sent(conn, job: dict, quote_valid_days: int = 30, accept_token_days: int = 30) -> dict:
    """Record a send: fresh acceptance link, quote expiry and version snapshot."""
    now = utc_now_iso()
    ensure_quote_number(conn, job)
    job["sent_to_client_at"] = now
    job["quote_expiry_at"] = iso_in_days(quote_valid_days)
    job["accept_token"] = new_accept_token()
    job["accept_expires_at"] = iso_in_days(accept_token_days)
    snapshot_quote_version(conn, job)

    if not job.get("client_status") or job["client_status"] == "draft":
        job["client_status"] = "sent"
        job["client_status_updated_at"] = now

    return save_job(conn, job)


def find_job_by_accept_token(conn, token: str):
    if not token:
        return None
    row = conn.execute(
        "SELECT * FROM jobs WHERE accept_token = ?", (token,)
    ).fetchone()
    return dict(row) if row else None


def _is_past(iso_value) -> bool:
    expires = parse_iso(iso_value)
    return expires is not None and utc_now() > expires


def check_can_respond(job: dict):
    status = job.get("client_status") or "draft"
    if status == "accepted":
        raise WorkflowError("ALREADY_ACCEPTED", "This job pack has already been accepted", 409)
    if status in ("declined", "cancelled"):
        raise WorkflowError(
            "QUOTE_DECLINED",
            "This job pack was declined; contact your tradie for a new quote.",
        )
    if _is_past(job.get("quote_expiry_at")) or _is_past(job.get("accept_expires_at")):
        raise WorkflowError(
            "QUOTE_EXPIRED",
            "This quote has expired. Please contact your tradie to get an updated job pack.",
            410,
        )


def _store_signature(conn, job_id: str, kind: str, signed_name: str, data_url: str) -> str:
    signature_id = new_id()
    conn.execute(
        """
        INSERT INTO signatures (id, job_id, kind, signed_name, image_data_url, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (signature_id, job_id, kind, signed_name, data_url, utc_now_iso()),
    )
    return signature_id


def accept_quote(conn, job: dict, full_name: str, confirm: bool, note: str = None,
                 signature_data_url: str = None, ip: str = None) -> dict:
    check_can_respond(job)

    full_name = (full_name or "").strip() if isinstance(full_name, str) else ""
    if not full_name:
        raise WorkflowError("INVALID_NAME", "Full name is required")
    if not MIN_SIGNED_NAME <= len(full_name) <= MAX_SIGNED_NAME:
        raise WorkflowError(
            "INVALID_NAME",
            f"Full name must be between {MIN_SIGNED_NAME} and {MAX_SIGNED_NAME} characters",
        )
    if confirm is not True:
        raise WorkflowError("CONFIRMATION_REQUIRED", "You must confirm your agreement to proceed")

    now = utc_now_iso()
    job["client_status"] = "accepted"
    job["client_accepted_at"] = now
    job["client_status_updated_at"] = now
    job["client_signed_name"] = full_name
    job["client_signed_email"] = job.get("client_email")
    job["client_acceptance_note"] = note.strip() if isinstance(note, str) and note.strip() else None
    job["client_accepted_quote_version"] = job.get("quote_version") or 1
    job["responded_ip"] = ip
    job["accept_token"] = None

    if isinstance(signature_data_url, str) and signature_data_url.startswith("data:image/"):
        job["client_signature_id"] = _store_signature(
            conn, job["id"], "quote_acceptance", full_name, signature_data_url
        )

    if not job.get("job_status") or job["job_status"] == "pending":
        job["job_status"] = "booked"

    logger.info("quote accepted for job %s (version %s)", job["id"],
                job["client_accepted_quote_version"])
    return save_job(conn, job)


def decline_quote(conn, job: dict, reason: str = None, ip: str = None) -> dict:
    status = job.get("client_status") or "draft"
    if status == "declined":
        raise WorkflowError("ALREADY_DECLINED", "This job pack has already been declined", 409)
    if status == "accepted":
        raise WorkflowError(
            "ALREADY_ACCEPTED",
            "Cannot decline a job pack that has already been accepted",
            409,
        )

    now = utc_now_iso()
    job["client_status"] = "declined"
    job["client_declined_at"] = now
    job["client_status_updated_at"] = now
    job["client_decline_reason"] = reason.strip() if isinstance(reason, str) and reason.strip() else None
    job["responded_ip"] = ip
    job["accept_token"] = None

    if not job.get("job_status") or job["job_status"] == "pending":
        job["job_status"] = "cancelled"

    logger.info("quote declined for job %s", job["id"])
    return save_job(conn, job)
