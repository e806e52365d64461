# db.py
import sqlite3
from pathlib import Path
import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
import re

from config import settings


def get_db(path=None):
    conn = sqlite3.connect(Path(path or settings.database_path))
    conn.row_factory = sqlite3.Row
    # Better durability than default for a web app:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(path=None):
    conn = get_db(path)

    # 1) users: tradies and their business profile (document issuer)
    conn.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,         -- stored lowercase
        password_hash TEXT NOT NULL,
        business_name TEXT,
        trading_name TEXT,
        abn TEXT,
        business_phone TEXT,
        business_address_line1 TEXT,
        business_address_line2 TEXT,
        business_suburb TEXT,
        business_state TEXT,
        business_postcode TEXT,
        business_logo_url TEXT,
        gst_registered INTEGER NOT NULL DEFAULT 0,

        -- === Pricing profile ===
        hourly_rate REAL,
        helper_hourly_rate REAL,
        callout_fee REAL,
        rate_per_m2_interior REAL,
        rate_per_m2_exterior REAL,
        rate_per_lm_trim REAL,
        material_markup_percent REAL
    );
    """)

    # 2) jobs: one job pack per job, plus the client workflow state
    conn.execute("""
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        title TEXT NOT NULL,
        trade_type TEXT NOT NULL,
        property_type TEXT NOT NULL,
        address TEXT,
        notes TEXT,
        client_name TEXT,
        client_email TEXT,
        labour_rate_per_hour REAL,
        helper_rate_per_hour REAL,
        materials_rough_estimate INTEGER NOT NULL DEFAULT 0,

        status TEXT NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft','ai_pending','ai_complete','ai_failed')),
        ai_summary TEXT,
        ai_quote TEXT,                      -- JSON
        ai_scope_of_work TEXT,
        ai_inclusions TEXT,
        ai_exclusions TEXT,
        ai_materials TEXT,                  -- JSON list
        ai_client_notes TEXT,

        materials_subtotal REAL,
        materials_markup_total REAL,
        materials_total REAL,

        quote_number TEXT,
        quote_version INTEGER,
        quote_expiry_at TEXT,

        client_status TEXT NOT NULL DEFAULT 'draft'
            CHECK (client_status IN ('draft','sent','accepted','declined','cancelled')),
        client_status_updated_at TEXT,
        job_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (job_status IN ('pending','booked','completed','cancelled')),
        ai_review_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (ai_review_status IN ('pending','confirmed')),

        sent_to_client_at TEXT,
        client_accepted_at TEXT,
        client_declined_at TEXT,
        client_signed_name TEXT,
        client_signed_email TEXT,
        client_acceptance_note TEXT,
        client_accepted_quote_version INTEGER,
        client_decline_reason TEXT,
        client_signature_id TEXT,
        responded_ip TEXT,

        -- === Acceptance security ===
        accept_token TEXT,                  -- single-use secret
        accept_expires_at TEXT              -- ISO UTC expiry
    );
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_user ON jobs(user_id, created_at);"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_accept_token ON jobs(accept_token);"
    )

    # 3) quote_versions: immutable snapshot of what was sent each time
    conn.execute("""
    CREATE TABLE IF NOT EXISTS quote_versions (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        version INTEGER NOT NULL,
        sent_at TEXT NOT NULL,
        quote_expiry_at TEXT,
        total_incl_gst REAL,
        summary TEXT,
        scope_of_work TEXT,
        inclusions TEXT,
        exclusions TEXT,
        materials_text TEXT,
        client_notes TEXT,
        content_hash TEXT NOT NULL,
        UNIQUE (job_id, version)
    );
    """)

    # 4) document_drafts: one per job + document type
    conn.execute("""
    CREATE TABLE IF NOT EXISTS document_drafts (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        doc_type TEXT NOT NULL,
        data_json TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'DRAFT'
            CHECK (status IN ('DRAFT','CONFIRMED','ISSUED')),
        approved INTEGER NOT NULL DEFAULT 0,
        approved_at TEXT,
        approved_by_user_id TEXT,
        confirmed_at TEXT,
        issued_at TEXT,
        issued_record_id TEXT,
        issuer_data_json TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (job_id, doc_type)
    );
    """)

    # 5) signatures: drawn signatures captured on acceptance
    conn.execute("""
    CREATE TABLE IF NOT EXISTS signatures (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        kind TEXT NOT NULL,
        signed_name TEXT,
        image_data_url TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """)

    # 6) AI job pack cache (performance)
    conn.execute("""
    CREATE TABLE IF NOT EXISTS ai_pack_cache (
        input_hash TEXT PRIMARY KEY,     -- ai_input_hash(data)
        pack_text TEXT NOT NULL,         -- raw model output (JSON)
        trade TEXT NOT NULL,             -- for analytics/debugging
        created_at TEXT NOT NULL,        -- ISO UTC
        last_used_at TEXT NOT NULL       -- ISO UTC
    );
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_ai_cache_last_used "
        "ON ai_pack_cache(last_used_at);"
    )

    # ---- migrations ----
    ensure_columns(conn, "jobs", {
        "ai_swms": "TEXT",
        "materials_override_text": "TEXT",
    })

    conn.commit()
    conn.close()


def ensure_columns(conn, table: str, columns: dict):
    existing = {
        row["name"]
        for row in conn.execute(f"PRAGMA table_info({table})")
    }
    for name, ddl in columns.items():
        if name not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
    conn.commit()


def utc_now():
    return datetime.now(timezone.utc)


def utc_now_iso():
    return utc_now().isoformat(timespec="seconds")


def iso_in_days(days: int) -> str:
    return (utc_now() + timedelta(days=days)).isoformat(timespec="seconds")


def parse_iso(value):
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_id():
    return str(uuid.uuid4())


def new_accept_token():
    # longer, single-use secret
    return secrets.token_urlsafe(32)


def compute_content_hash(*parts: str) -> str:
    joined = "\n".join([p.strip() for p in parts if p is not None])
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


AI_CACHE_VERSION = "v1"


def _normalize(text) -> str:
    if text is None or text == "":
        return ""
    text = str(text).strip().lower()
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\s+", " ", text)
    return text


def ai_input_hash(data: dict) -> str:
    """
    Deterministic hash of AI-relevant inputs only.
    Changing this function invalidates the cache contract.
    """
    parts = [
        AI_CACHE_VERSION,

        _normalize(data.get("trade_type")),
        _normalize(data.get("title")),
        _normalize(data.get("property_type")),
        _normalize(data.get("address")),
        _normalize(data.get("notes")),
        _normalize(data.get("rates")),
    ]

    joined = "\n".join(parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def get_cached_pack(conn, input_hash: str):
    row = conn.execute(
        "SELECT pack_text FROM ai_pack_cache WHERE input_hash = ?",
        (input_hash,)
    ).fetchone()
    if not row:
        return None
    conn.execute(
        "UPDATE ai_pack_cache SET last_used_at = ? WHERE input_hash = ?",
        (utc_now_iso(), input_hash),
    )
    return row["pack_text"]


def store_cached_pack(conn, input_hash: str, pack_text: str, trade: str):
    now = utc_now_iso()
    conn.execute("""
        INSERT INTO ai_pack_cache (input_hash, pack_text, trade, created_at, last_used_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(input_hash) DO UPDATE SET
            pack_text = excluded.pack_text,
            last_used_at = excluded.last_used_at
    """, (input_hash, pack_text, trade or "Other", now, now))


def evict_old_ai_cache(conn, days: int = 30):
    """
    Remove AI cache entries not used within `days`.
    Safe to call frequently.
    """
    cutoff_iso = (utc_now() - timedelta(days=days)).isoformat(timespec="seconds")

    conn.execute(
        """
        DELETE FROM ai_pack_cache
        WHERE last_used_at < ?
        """,
        (cutoff_iso,),
    )
