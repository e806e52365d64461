import re

from werkzeug.security import check_password_hash, generate_password_hash

from db import new_id, utc_now_iso

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

PROFILE_TEXT_FIELDS = (
    "business_name",
    "trading_name",
    "abn",
    "business_phone",
    "business_address_line1",
    "business_address_line2",
    "business_suburb",
    "business_state",
    "business_postcode",
    "business_logo_url",
)

PROFILE_RATE_FIELDS = (
    "hourly_rate",
    "helper_hourly_rate",
    "callout_fee",
    "rate_per_m2_interior",
    "rate_per_m2_exterior",
    "rate_per_lm_trim",
    "material_markup_percent",
)


class AccountError(ValueError):
    pass


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email.strip()))


def public_user(user: dict) -> dict:
    """User row without secrets, safe to return from the API."""
    if user is None:
        return None
    out = dict(user)
    out.pop("password_hash", None)
    out["gst_registered"] = bool(out.get("gst_registered"))
    return out


def get_user(conn, user_id: str):
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return dict(row) if row else None


def get_user_by_email(conn, email: str):
    row = conn.execute(
        "SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),)
    ).fetchone()
    return dict(row) if row else None


def create_user(conn, email: str, password: str, business_name: str = "", **profile) -> dict:
    email = (email or "").strip().lower()
    if not is_valid_email(email):
        raise AccountError("Please enter a valid email address")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise AccountError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_user_by_email(conn, email):
        raise AccountError("An account with this email already exists")

    user_id = new_id()
    conn.execute(
        """
        INSERT INTO users (id, created_at, email, password_hash, business_name)
        VALUES (?, ?, ?, ?, ?)
        """,
        (user_id, utc_now_iso(), email, generate_password_hash(password),
         (business_name or "").strip()),
    )
    if profile:
        update_business_profile(conn, user_id, profile)
    conn.commit()
    return get_user(conn, user_id)


def authenticate(conn, email: str, password: str):
    user = get_user_by_email(conn, email)
    if not user or not check_password_hash(user["password_hash"], password or ""):
        return None
    return user


def _coerce_rate(name: str, value):
    if value is None or value == "":
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise AccountError(f"{name} must be a number")
    if rate < 0:
        raise AccountError(f"{name} cannot be negative")
    return rate


def update_business_profile(conn, user_id: str, fields: dict) -> dict:
    updates = {}
    for name in PROFILE_TEXT_FIELDS:
        if name in fields:
            value = fields[name]
            updates[name] = str(value).strip() if value is not None else None
    if updates.get("abn"):
        # stored as bare digits; formatting happens on output
        updates["abn"] = re.sub(r"\D", "", updates["abn"]) or None
    for name in PROFILE_RATE_FIELDS:
        if name in fields:
            updates[name] = _coerce_rate(name, fields[name])
    if "gst_registered" in fields:
        updates["gst_registered"] = 1 if fields["gst_registered"] else 0

    if updates:
        assignments = ", ".join(f"{name} = ?" for name in updates)
        conn.execute(
            f"UPDATE users SET {assignments} WHERE id = ?",
            (*updates.values(), user_id),
        )
        conn.commit()
    return get_user(conn, user_id)
