from flask import Flask, g, jsonify, redirect, render_template, request, send_file, session, url_for
import io
import logging
import os
import time
from collections import defaultdict, deque
from functools import wraps

from itsdangerous import URLSafeSerializer, BadSignature

from config import settings
from monitoring import init_logging, init_sentry
from db import evict_old_ai_cache, get_db, init_db
from accounts import (
    AccountError,
    authenticate,
    create_user,
    get_user,
    public_user,
    update_business_profile,
)
from ai_engine import AIGenerationError
from job_packs import build_job_pack, build_swms
from jobs import (
    JobAccessDenied,
    JobNotFound,
    JobValidationError,
    WorkflowError,
    accept_quote,
    check_can_respond,
    create_job,
    decline_quote,
    delete_job,
    duplicate_job,
    find_job_by_accept_token,
    get_job,
    list_jobs_for_user,
    list_quote_versions,
    mark_sent,
    materials_text,
    public_job,
    require_job,
    save_job,
    set_materials_override,
    update_client_details,
    update_job_details,
    update_pack_sections,
    update_status,
)
from mailer import MailError, build_job_pack_email_html, build_job_pack_email_text, send_email
from pack_pdf import build_job_pack_pdf
from pricing import calculate_estimate_range, gst_breakdown
from docengine.drafts import (
    DraftNotFound,
    IssuerIncomplete,
    confirm_draft,
    count_drafts,
    get_draft,
    issue_draft,
    save_draft,
)
from docengine.issuer import extract_issuer_from_user
from docengine.loader import TemplateNotFoundError, available_doc_types, load_template
from docengine.prefill import prefill_for_doc
from docengine.render_model import generate_render_model
from docengine.render_pdf import render_model_to_pdf
from docengine.schema import AUDIENCES, AUDIENCE_INTERNAL, DOC_STATUS_ISSUED, DOC_TYPES
from docengine.validate import TemplateValidationError

init_logging(settings.log_level)
init_sentry()

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Set SECRET_KEY in production; sessions and response receipts are signed with it.
app.secret_key = settings.secret_key
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=settings.is_production,
)
_signer = URLSafeSerializer(app.secret_key, salt="quote-response")


# --------------------
# Config
# --------------------
BUSINESS_PROFILE_URL = "/settings/business-profile"

# In-memory per-IP request timestamps
_ip_hits = defaultdict(deque)

# Database files already migrated by this process
_initialized = set()


# --------------------
# Helpers
# --------------------
def is_rate_limited(ip: str) -> bool:
    now = time.time()
    window_start = now - 60  # 60 seconds
    q = _ip_hits[ip]

    # Remove old timestamps
    while q and q[0] < window_start:
        q.popleft()

    if len(q) >= settings.rate_limit_per_minute:
        return True

    q.append(now)
    return False


def client_ip() -> str:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"
    return ip.split(",")[0].strip()


def get_conn():
    if "db" not in g:
        path = str(settings.database_path)
        first_use = path not in _initialized
        if first_use:
            init_db(path)
        g.db = get_db(path)
        if first_use:
            evict_old_ai_cache(g.db)
            g.db.commit()
            _initialized.add(path)
    return g.db


@app.teardown_appcontext
def close_conn(exc):
    conn = g.pop("db", None)
    if conn is not None:
        conn.close()


def error(message: str, code: str, status: int = 400, **extra):
    return jsonify({"error": message, "code": code, **extra}), status


def body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def current_user():
    if "user" not in g:
        user_id = session.get("user_id")
        g.user = get_user(get_conn(), user_id) if user_id else None
    return g.user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_user() is None:
            return error("Unauthorized", "UNAUTHORIZED", 401)
        return view(*args, **kwargs)
    return wrapped


def doc_engine_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not settings.doc_engine_enabled:
            return error("Document engine is not enabled", "DOC_ENGINE_DISABLED", 403)
        return view(*args, **kwargs)
    return wrapped


def owned_job(job_id: str) -> dict:
    return require_job(get_conn(), job_id, current_user()["id"])


def accept_url(job: dict) -> str:
    return f"{settings.app_base_url}/q/{job['accept_token']}"


# --------------------
# Error mapping
# --------------------
@app.errorhandler(JobNotFound)
def handle_job_not_found(e):
    return error("Job not found", "NOT_FOUND", 404)


@app.errorhandler(JobAccessDenied)
def handle_job_forbidden(e):
    return error("Forbidden", "FORBIDDEN", 403)


@app.errorhandler(JobValidationError)
@app.errorhandler(AccountError)
def handle_validation(e):
    return error(str(e), "VALIDATION_ERROR", 400)


@app.errorhandler(WorkflowError)
def handle_workflow(e):
    return error(e.message, e.code, e.status)


@app.errorhandler(AIGenerationError)
def handle_ai_error(e):
    logger.error("AI generation failed: %s", e)
    return error("Failed to generate with AI. Please try again.", "AI_ERROR", 502)


@app.errorhandler(MailError)
def handle_mail_error(e):
    logger.error("Email send failed: %s", e)
    return error(str(e), "EMAIL_FAILED", 502)


@app.errorhandler(DraftNotFound)
def handle_draft_not_found(e):
    return error(str(e), "DRAFT_NOT_FOUND", 404)


@app.errorhandler(TemplateNotFoundError)
def handle_template_not_found(e):
    return error(str(e), "TEMPLATE_NOT_FOUND", 404)


@app.errorhandler(TemplateValidationError)
def handle_template_invalid(e):
    logger.error("%s", e.message)
    return error("Document template validation failed. Please contact support.",
                 "TEMPLATE_INVALID", 500)


@app.errorhandler(IssuerIncomplete)
def handle_issuer_incomplete(e):
    return error(
        str(e),
        "ISSUER_INCOMPLETE",
        400,
        validation={
            "missing_required": e.validation["missing_required"],
            "missing_recommended": e.validation["missing_recommended"],
            "warnings": e.validation["warnings"],
        },
        redirect_to=BUSINESS_PROFILE_URL,
    )


@app.errorhandler(500)
def handle_internal_error(e):
    # Flask has already logged the traceback of the original exception
    return error("Internal server error", "INTERNAL_ERROR", 500)


# --------------------
# Auth
# --------------------
@app.post("/api/auth/register")
def register():
    data = body()
    user = create_user(
        get_conn(),
        data.get("email"),
        data.get("password"),
        business_name=data.get("business_name") or "",
    )
    session.clear()
    session["user_id"] = user["id"]
    logger.info("registered user %s", user["id"])
    return jsonify({"user": public_user(user)}), 201


@app.post("/api/auth/login")
def login():
    data = body()
    user = authenticate(get_conn(), data.get("email"), data.get("password"))
    if user is None:
        return error("Invalid email or password", "INVALID_CREDENTIALS", 401)
    session.clear()
    session["user_id"] = user["id"]
    return jsonify({"user": public_user(user)})


@app.post("/api/auth/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@app.get("/api/auth/me")
@login_required
def me():
    return jsonify({"user": public_user(current_user())})


@app.patch("/api/me/business-profile")
@login_required
def patch_business_profile():
    user = update_business_profile(get_conn(), current_user()["id"], body())
    return jsonify({"user": public_user(user)})


# --------------------
# Jobs
# --------------------
@app.post("/api/jobs")
@login_required
def post_job():
    if is_rate_limited(client_ip()):
        return error("Too many requests. Please wait a minute and try again.", "RATE_LIMITED", 429)

    conn = get_conn()
    user = current_user()
    job = create_job(conn, user["id"], body())

    try:
        build_job_pack(conn, job, user)
    except AIGenerationError as e:
        logger.error("job pack generation failed for job %s: %s", job["id"], e)
        job["status"] = "ai_failed"
    save_job(conn, job)

    return jsonify({"job": public_job(job)}), 201


@app.get("/api/jobs")
@login_required
def get_jobs():
    jobs = list_jobs_for_user(get_conn(), current_user()["id"])
    return jsonify({"jobs": [public_job(j) for j in jobs]})


@app.get("/api/jobs/<job_id>")
@login_required
def get_one_job(job_id):
    return jsonify({"job": public_job(owned_job(job_id))})


@app.delete("/api/jobs/<job_id>")
@login_required
def remove_job(job_id):
    job = owned_job(job_id)
    delete_job(get_conn(), job["id"])
    return jsonify({"ok": True})


@app.post("/api/jobs/<job_id>/duplicate")
@login_required
def post_duplicate(job_id):
    copy = duplicate_job(get_conn(), owned_job(job_id))
    return jsonify({"job": public_job(copy)}), 201


@app.post("/api/jobs/<job_id>/regenerate")
@login_required
def post_regenerate(job_id):
    conn = get_conn()
    job = owned_job(job_id)
    try:
        build_job_pack(conn, job, current_user(), use_cache=False)
    except AIGenerationError:
        job["status"] = "ai_failed"
        save_job(conn, job)
        raise
    save_job(conn, job)
    return jsonify({"job": public_job(job)})


@app.patch("/api/jobs/<job_id>")
@login_required
def patch_job(job_id):
    job = update_job_details(owned_job(job_id), body())
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.patch("/api/jobs/<job_id>/pack-sections")
@login_required
def patch_pack_sections(job_id):
    job = update_pack_sections(
        owned_job(job_id), body(), current_user().get("material_markup_percent")
    )
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.patch("/api/jobs/<job_id>/materials")
@login_required
def patch_materials(job_id):
    data = body()
    if "materials_override_text" not in data:
        return error("materials_override_text is required", "VALIDATION_ERROR")
    job = set_materials_override(owned_job(job_id), data["materials_override_text"])
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.patch("/api/jobs/<job_id>/status")
@login_required
def patch_status(job_id):
    data = body()
    job = update_status(
        owned_job(job_id),
        job_status=data.get("job_status"),
        ai_review_status=data.get("ai_review_status"),
    )
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.patch("/api/jobs/<job_id>/client-details")
@login_required
def patch_client_details(job_id):
    data = body()
    job = update_client_details(
        owned_job(job_id),
        client_name=data.get("client_name"),
        client_email=data.get("client_email"),
    )
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.get("/api/jobs/<job_id>/estimate")
@login_required
def get_estimate(job_id):
    estimate = calculate_estimate_range(owned_job(job_id).get("ai_quote"))
    return jsonify({"estimate": estimate, "gst": gst_breakdown(estimate["base_total"])})


@app.get("/api/jobs/<job_id>/quote-versions")
@login_required
def get_quote_versions(job_id):
    job = owned_job(job_id)
    return jsonify({"versions": list_quote_versions(get_conn(), job["id"])})


@app.post("/api/jobs/<job_id>/send-to-client")
@login_required
def send_to_client(job_id):
    conn = get_conn()
    user = current_user()
    job = owned_job(job_id)
    data = body()

    if data.get("client_name") is not None or data.get("client_email") is not None:
        update_client_details(job, data.get("client_name"), data.get("client_email"))
    if not job.get("client_email"):
        return error("Client email is required to send the job pack", "MISSING_CLIENT_EMAIL")
    if job.get("status") != "ai_complete":
        return error("Generate the job pack before sending it", "PACK_NOT_READY")

    mark_sent(conn, job, settings.quote_valid_days, settings.accept_token_days)

    price_range = calculate_estimate_range(job.get("ai_quote"))["formatted_range"]
    price_range = "" if price_range == "N/A" else price_range
    materials = materials_text(job)
    custom_message = (data.get("message") or "").strip()
    link = accept_url(job)
    subject = f"Job pack: {job['title']}"
    if user.get("business_name"):
        subject += f" from {user['business_name']}"

    send_email(
        job["client_email"],
        subject,
        build_job_pack_email_text(job, price_range, materials, custom_message, link),
        build_job_pack_email_html(job, price_range, materials, custom_message, link),
    )
    logger.info("job pack %s sent (version %s)", job["id"], job.get("quote_version"))
    return jsonify({"job": public_job(job), "accept_url": link})


@app.post("/api/jobs/<job_id>/generate-swms")
@login_required
def post_generate_swms(job_id):
    job = build_swms(owned_job(job_id))
    save_job(get_conn(), job)
    return jsonify({"job": public_job(job)})


@app.get("/api/jobs/<job_id>/pack-pdf")
@login_required
def get_pack_pdf(job_id):
    job = owned_job(job_id)
    estimate = calculate_estimate_range(job.get("ai_quote"))
    pdf = build_job_pack_pdf(
        job,
        business_name=current_user().get("business_name") or "",
        price_range=estimate["formatted_range"],
        materials=materials_text(job),
    )
    return send_file(
        io.BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"job-pack-{job.get('quote_number') or job['id'][:8]}.pdf",
    )


# --------------------
# Documents
# --------------------
def doc_request(data: dict):
    """Validated (job, doc_type) for a docs request, or an error response."""
    job_id = data.get("job_id")
    doc_type = data.get("doc_type")
    if not job_id or not doc_type:
        return None, None, error("job_id and doc_type are required", "VALIDATION_ERROR")
    if doc_type not in DOC_TYPES:
        return None, None, error(
            "Invalid doc_type. Must be one of: " + ", ".join(DOC_TYPES), "VALIDATION_ERROR"
        )
    return owned_job(job_id), doc_type, None


@app.get("/api/docs/types")
@login_required
@doc_engine_required
def get_doc_types():
    types = []
    for doc_type in available_doc_types():
        template = load_template(doc_type)
        types.append({"doc_type": doc_type, "title": template["title"],
                      "jurisdiction": template["jurisdiction"]})
    return jsonify({"types": types})


@app.post("/api/docs/prefill")
@login_required
@doc_engine_required
def post_prefill():
    data = body()
    job, doc_type, err = doc_request(data)
    if err:
        return err

    existing = count_drafts(get_conn(), job["id"], doc_type)
    prefill = prefill_for_doc(
        doc_type, job, current_user(), existing,
        include_markup=data.get("include_materials_markup") is True,
    )
    model = generate_render_model(load_template(doc_type), prefill)
    return jsonify({"data": prefill, "model": model})


@app.get("/api/docs/draft")
@login_required
@doc_engine_required
def get_doc_draft():
    job, doc_type, err = doc_request(request.args)
    if err:
        return err
    return jsonify({"draft": get_draft(get_conn(), job["id"], doc_type)})


@app.post("/api/docs/draft")
@login_required
@doc_engine_required
def post_doc_draft():
    data = body()
    job, doc_type, err = doc_request(data)
    if err:
        return err
    if not data.get("data") or not isinstance(data["data"], dict):
        return error("data must be a non-empty object", "VALIDATION_ERROR")

    draft = save_draft(get_conn(), job["id"], doc_type, data["data"],
                       approved=data.get("approved") is True)
    return jsonify({"draft": draft})


@app.post("/api/docs/confirm")
@login_required
@doc_engine_required
def post_doc_confirm():
    job, doc_type, err = doc_request(body())
    if err:
        return err
    draft, already = confirm_draft(get_conn(), job["id"], doc_type, current_user()["id"])
    return jsonify({"draft": draft, "already_confirmed": already})


@app.post("/api/docs/issue")
@login_required
@doc_engine_required
def post_doc_issue():
    data = body()
    job, doc_type, err = doc_request(data)
    if err:
        return err
    draft, issuer, validation = issue_draft(
        get_conn(), job["id"], doc_type, current_user(), strict=data.get("strict", True) is not False
    )
    return jsonify({
        "draft": draft,
        "issuer": issuer,
        "validation": {
            "missing_recommended": validation["missing_recommended"],
            "warnings": validation["warnings"],
        },
    })


@app.post("/api/docs/render")
@login_required
@doc_engine_required
def post_doc_render():
    data = body()
    job, doc_type, err = doc_request(data)
    if err:
        return err
    audience = data.get("audience") or AUDIENCE_INTERNAL
    if audience not in AUDIENCES:
        return error("audience must be one of: " + ", ".join(AUDIENCES), "VALIDATION_ERROR")
    overrides = data.get("overrides")
    if overrides is not None and not isinstance(overrides, dict):
        return error("overrides must be an object", "VALIDATION_ERROR")

    conn = get_conn()
    user = current_user()
    draft = get_draft(conn, job["id"], doc_type)
    if draft and draft.get("data"):
        job_data = draft["data"]
    else:
        job_data = prefill_for_doc(doc_type, job, user, count_drafts(conn, job["id"], doc_type))

    model = generate_render_model(load_template(doc_type), job_data, overrides)
    issuer = extract_issuer_from_user(user)
    if draft and draft["status"] == DOC_STATUS_ISSUED:
        model["record_id"] = draft["issued_record_id"]
        issuer = draft["issuer"] or issuer

    pdf = render_model_to_pdf(
        model,
        approved=bool(draft and draft["approved"]),
        audience=audience,
        issuer=issuer,
    )
    return send_file(
        io.BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{doc_type.lower()}-{model['record_id']}.pdf",
    )


# --------------------
# Client quote pages (public)
# --------------------
def quote_context(job: dict) -> dict:
    owner = get_user(get_conn(), job["user_id"]) or {}
    return {
        "job": job,
        "business_name": owner.get("business_name") or "Your tradie",
        "price_range": calculate_estimate_range(job.get("ai_quote"))["formatted_range"],
        "materials": materials_text(job),
    }


def response_receipt(job: dict, outcome: str) -> str:
    return url_for("quote_done", receipt=_signer.dumps({"job_id": job["id"], "outcome": outcome}))


@app.get("/q/<token>")
def quote_page(token):
    job = find_job_by_accept_token(get_conn(), token)
    if job is None:
        return render_template("quote.html", job=None,
                               error="This link is invalid or has already been used."), 404

    problem = None
    try:
        check_can_respond(job)
    except WorkflowError as e:
        problem = e.message
    return render_template("quote.html", error=problem, token=token, **quote_context(job))


def _respond(token, action):
    """Run accept/decline for JSON or form posts; errors re-render the page for forms."""
    conn = get_conn()
    job = find_job_by_accept_token(conn, token)
    if job is None:
        if request.is_json:
            return error("Invalid or expired link", "INVALID_TOKEN", 404)
        return render_template("quote.html", job=None,
                               error="This link is invalid or has already been used."), 404

    try:
        outcome = action(conn, job)
    except WorkflowError as e:
        if request.is_json:
            raise
        return render_template("quote.html", error=e.message, token=token,
                               **quote_context(job)), e.status

    receipt = response_receipt(job, outcome)
    if request.is_json:
        return jsonify({"ok": True, "client_status": job["client_status"],
                        "job_status": job["job_status"], "receipt_url": receipt})
    return redirect(receipt)


@app.post("/q/<token>/accept")
def quote_accept(token):
    data = body() if request.is_json else request.form

    def action(conn, job):
        confirm = data.get("confirm")
        accept_quote(
            conn,
            job,
            data.get("full_name"),
            confirm is True or confirm in ("on", "true", "1"),
            note=data.get("note"),
            signature_data_url=data.get("signature"),
            ip=client_ip(),
        )
        return "accepted"

    return _respond(token, action)


@app.post("/q/<token>/decline")
def quote_decline(token):
    data = body() if request.is_json else request.form

    def action(conn, job):
        decline_quote(conn, job, data.get("reason"), ip=client_ip())
        return "declined"

    return _respond(token, action)


@app.get("/q/done/<receipt>")
def quote_done(receipt):
    try:
        payload = _signer.loads(receipt)
    except BadSignature:
        return render_template("quote.html", job=None, error="This link is not valid."), 404

    job = get_job(get_conn(), payload.get("job_id"))
    if job is None:
        return render_template("quote.html", job=None, error="This job no longer exists."), 404
    return render_template("quote_done.html", outcome=payload.get("outcome"), **quote_context(job))


@app.get("/health")
def health():
    return jsonify({"status": "ok"})


# --------------------
# Local dev entrypoint
# --------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
