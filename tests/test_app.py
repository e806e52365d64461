import pytest

import app as app_module
from config import settings
from mailer import MailError


@pytest.fixture
def client(db_path, fake_ai, monkeypatch):
    app_module._ip_hits.clear()
    app_module.app.config["TESTING"] = True
    sent = []
    monkeypatch.setattr(app_module, "send_email",
                        lambda to, subject, text, html=None: sent.append((to, subject, text)))
    with app_module.app.test_client() as c:
        c.sent = sent
        yield c


def register(client, email="tradie@example.com", **extra):
    resp = client.post("/api/auth/register", json={"email": email, "password": "correct-horse", **extra})
    assert resp.status_code == 201
    return resp.get_json()["user"]


def setup_profile(client):
    resp = client.patch("/api/me/business-profile", json={
        "business_name": "Smith Painting Pty Ltd",
        "abn": "51 824 753 556",
        "business_phone": "0400 000 000",
        "business_suburb": "Fremantle",
        "business_state": "WA",
        "business_postcode": "6160",
        "gst_registered": True,
        "hourly_rate": 85,
    })
    assert resp.status_code == 200
    return resp.get_json()["user"]


def new_job(client, **extra):
    data = {
        "title": "Bedroom repaint",
        "trade_type": "Painter",
        "property_type": "House",
        "address": "12 High St, Fremantle WA",
        "client_name": "Jane Client",
        "client_email": "jane@example.com",
        **extra,
    }
    resp = client.post("/api/jobs", json=data)
    assert resp.status_code == 201
    return resp.get_json()["job"]


def send(client, job_id):
    resp = client.post(f"/api/jobs/{job_id}/send-to-client", json={"message": "Thanks!"})
    assert resp.status_code == 200
    return resp.get_json()


def token_from(url):
    return url.rsplit("/", 1)[-1]


# --------------------
# Auth
# --------------------
def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_requires_login(client):
    resp = client.get("/api/jobs")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "UNAUTHORIZED"


def test_register_login_logout(client):
    user = register(client, business_name="Smith Painting")
    assert "password_hash" not in user
    assert client.get("/api/auth/me").get_json()["user"]["email"] == "tradie@example.com"

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": "tradie@example.com", "password": "nope"})
    assert bad.status_code == 401
    assert bad.get_json()["code"] == "INVALID_CREDENTIALS"

    ok = client.post("/api/auth/login", json={"email": "Tradie@Example.com", "password": "correct-horse"})
    assert ok.status_code == 200


def test_duplicate_register(client):
    register(client)
    resp = client.post("/api/auth/register", json={"email": "tradie@example.com", "password": "correct-horse"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_business_profile(client):
    register(client)
    user = setup_profile(client)
    assert user["abn"] == "51824753556"
    assert user["gst_registered"] is True


# --------------------
# Jobs
# --------------------
def test_create_and_list_jobs(client, fake_ai):
    register(client)
    job = new_job(client)
    assert job["status"] == "ai_complete"
    assert job["ai_quote"]["totalEstimate"]["total"] == "$1,780"
    assert "accept_token" not in job
    assert fake_ai["pack"] == 1

    jobs = client.get("/api/jobs").get_json()["jobs"]
    assert [j["id"] for j in jobs] == [job["id"]]
    assert client.get(f"/api/jobs/{job['id']}").get_json()["job"]["title"] == "Bedroom repaint"


def test_create_job_validation(client):
    register(client)
    resp = client.post("/api/jobs", json={"property_type": "House"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Title is required", "code": "VALIDATION_ERROR"}


def test_create_job_ai_failure(client, monkeypatch):
    import job_packs
    from ai_engine import AIGenerationError

    def boom(data):
        raise AIGenerationError("AI generation failed: APIConnectionError")

    monkeypatch.setattr(job_packs, "generate_job_pack_ai", boom)
    register(client)
    job = new_job(client)
    assert job["status"] == "ai_failed"

    resp = client.post(f"/api/jobs/{job['id']}/regenerate")
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "AI_ERROR"


def test_regenerate_bypasses_cache(client, fake_ai):
    register(client)
    job = new_job(client)
    resp = client.post(f"/api/jobs/{job['id']}/regenerate")
    assert resp.status_code == 200
    assert fake_ai["pack"] == 2


def test_rate_limit(client, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_per_minute", 1)
    register(client)
    new_job(client)
    resp = client.post("/api/jobs", json={"title": "Again", "property_type": "House"})
    assert resp.status_code == 429
    assert resp.get_json()["code"] == "RATE_LIMITED"


def test_job_ownership(client):
    register(client)
    job = new_job(client)
    client.post("/api/auth/logout")
    register(client, email="other@example.com")

    assert client.get(f"/api/jobs/{job['id']}").status_code == 403
    assert client.delete(f"/api/jobs/{job['id']}").status_code == 403
    assert client.get("/api/jobs/missing").get_json()["code"] == "NOT_FOUND"


def test_delete_and_duplicate(client):
    register(client)
    job = new_job(client)
    copy = client.post(f"/api/jobs/{job['id']}/duplicate")
    assert copy.status_code == 201
    assert copy.get_json()["job"]["title"] == "Bedroom repaint (copy)"

    assert client.delete(f"/api/jobs/{job['id']}").get_json() == {"ok": True}
    assert client.get(f"/api/jobs/{job['id']}").status_code == 404


def test_status_and_client_details(client):
    register(client)
    job = new_job(client)
    resp = client.patch(f"/api/jobs/{job['id']}/status", json={"job_status": "completed"})
    assert resp.get_json()["job"]["job_status"] == "completed"

    bad = client.patch(f"/api/jobs/{job['id']}/status", json={"job_status": "lost"})
    assert bad.status_code == 400

    resp = client.patch(f"/api/jobs/{job['id']}/client-details",
                        json={"client_name": " Bob ", "client_email": "BOB@example.com"})
    updated = resp.get_json()["job"]
    assert (updated["client_name"], updated["client_email"]) == ("Bob", "bob@example.com")


def test_edit_job_details(client):
    register(client)
    job = new_job(client)
    resp = client.patch(f"/api/jobs/{job['id']}", json={"title": "Hall repaint", "labour_rate_per_hour": 95})
    assert resp.status_code == 200
    updated = resp.get_json()["job"]
    assert (updated["title"], updated["labour_rate_per_hour"]) == ("Hall repaint", 95.0)
    assert client.get(f"/api/jobs/{job['id']}").get_json()["job"]["title"] == "Hall repaint"

    bad = client.patch(f"/api/jobs/{job['id']}", json={"title": ""})
    assert bad.status_code == 400
    assert bad.get_json()["code"] == "VALIDATION_ERROR"

    client.post("/api/auth/logout")
    register(client, email="other@example.com")
    assert client.patch(f"/api/jobs/{job['id']}", json={"title": "Mine"}).status_code == 403
    assert client.patch(f"/api/jobs/{job['id']}/pack-sections",
                        json={"ai_summary": "Mine"}).status_code == 403


def test_edit_pack_sections_before_send(client):
    register(client)
    job = new_job(client)
    resp = client.patch(f"/api/jobs/{job['id']}/pack-sections", json={
        "ai_summary": "Repaint two bedrooms only.",
        "ai_quote": {"totalEstimate": "$1,500", "labour": 1200, "materials": "$300"},
    })
    assert resp.status_code == 200
    updated = resp.get_json()["job"]
    assert updated["ai_quote"]["totalEstimate"] == "$1,500"
    assert updated["materials_total"] == 420.0

    data = client.get(f"/api/jobs/{job['id']}/estimate").get_json()
    assert data["estimate"]["base_total"] == 1500
    assert data["gst"]["total_incl_gst"] == 1650.0

    empty = client.patch(f"/api/jobs/{job['id']}/pack-sections", json={"status": "x"})
    assert empty.status_code == 400

    send(client, job["id"])
    _, _, text = client.sent[0]
    assert "Repaint two bedrooms only." in text


def test_materials_override(client):
    register(client)
    job = new_job(client)
    missing = client.patch(f"/api/jobs/{job['id']}/materials", json={})
    assert missing.status_code == 400
    assert missing.get_json()["code"] == "VALIDATION_ERROR"

    bad = client.patch(f"/api/jobs/{job['id']}/materials", json={"materials_override_text": 5})
    assert bad.status_code == 400

    resp = client.patch(f"/api/jobs/{job['id']}/materials",
                        json={"materials_override_text": " Dulux Wash&Wear "})
    assert resp.get_json()["job"]["materials_override_text"] == "Dulux Wash&Wear"
    send(client, job["id"])
    assert "Dulux Wash&Wear" in client.sent[0][2]


def test_estimate(client):
    register(client)
    job = new_job(client)
    data = client.get(f"/api/jobs/{job['id']}/estimate").get_json()
    assert data["estimate"]["formatted_range"] == "$1,690 – $1,960"
    assert data["gst"]["total_incl_gst"] == 1958.0


def test_generate_swms(client, fake_ai):
    register(client)
    job = new_job(client)
    resp = client.post(f"/api/jobs/{job['id']}/generate-swms")
    assert resp.status_code == 200
    assert resp.get_json()["job"]["ai_swms"]["hazards"][0]["hazard"] == "Fall from ladder"


def test_pack_pdf(client):
    register(client, business_name="Smith Painting")
    job = new_job(client)
    resp = client.get(f"/api/jobs/{job['id']}/pack-pdf")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF")


# --------------------
# Sending and client responses
# --------------------
def test_send_and_accept(client):
    register(client, business_name="Smith Painting")
    job = new_job(client)
    sent = send(client, job["id"])

    assert sent["job"]["client_status"] == "sent"
    assert sent["job"]["quote_version"] == 1
    to, subject, text = client.sent[0]
    assert to == "jane@example.com"
    assert subject == "Job pack: Bedroom repaint from Smith Painting"
    assert sent["accept_url"] in text

    token = token_from(sent["accept_url"])
    page = client.get(f"/q/{token}")
    assert page.status_code == 200
    assert b"Bedroom repaint" in page.data
    assert b"Smith Painting" in page.data

    resp = client.post(f"/q/{token}/accept", json={"full_name": "Jane Client", "confirm": True})
    assert resp.status_code == 200
    result = resp.get_json()
    assert (result["client_status"], result["job_status"]) == ("accepted", "booked")

    done = client.get(result["receipt_url"])
    assert done.status_code == 200
    assert b"Quote accepted" in done.data
    assert b"has been recorded" in done.data

    reused = client.post(f"/q/{token}/accept", json={"full_name": "Jane Client", "confirm": True})
    assert reused.status_code == 404
    assert reused.get_json()["code"] == "INVALID_TOKEN"
    assert client.get(f"/q/{token}").status_code == 404

    versions = client.get(f"/api/jobs/{job['id']}/quote-versions").get_json()["versions"]
    assert len(versions) == 1


def test_accept_requires_confirmation_json(client):
    register(client)
    job = new_job(client)
    token = token_from(send(client, job["id"])["accept_url"])
    resp = client.post(f"/q/{token}/accept", json={"full_name": "Jane Client"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "CONFIRMATION_REQUIRED"


def test_form_accept_without_confirm(client):
    register(client)
    job = new_job(client)
    token = token_from(send(client, job["id"])["accept_url"])
    resp = client.post(f"/q/{token}/accept", data={"full_name": "Jane Client"})
    assert resp.status_code == 400
    assert b"You must confirm your agreement to proceed" in resp.data


def test_form_decline_redirects(client):
    register(client)
    job = new_job(client)
    token = token_from(send(client, job["id"])["accept_url"])
    resp = client.post(f"/q/{token}/decline", data={"reason": "Going with someone else"})
    assert resp.status_code == 302

    done = client.get(resp.headers["Location"])
    assert b"Quote declined" in done.data

    updated = client.get(f"/api/jobs/{job['id']}").get_json()["job"]
    assert updated["client_status"] == "declined"
    assert updated["job_status"] == "cancelled"
    assert updated["client_decline_reason"] == "Going with someone else"


def test_tampered_receipt(client):
    assert client.get("/q/done/not-a-real-receipt").status_code == 404


def test_send_requires_client_email(client):
    register(client)
    job = new_job(client, client_email="")
    resp = client.post(f"/api/jobs/{job['id']}/send-to-client", json={})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "MISSING_CLIENT_EMAIL"
    assert client.sent == []


def test_send_email_failure(client, monkeypatch):
    def fail(to, subject, text, html=None):
        raise MailError("Email failed to send: SMTPServerDisconnected")

    monkeypatch.setattr(app_module, "send_email", fail)
    register(client)
    job = new_job(client)
    resp = client.post(f"/api/jobs/{job['id']}/send-to-client", json={})
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "EMAIL_FAILED"


# --------------------
# Documents
# --------------------
def test_doc_types(client):
    register(client)
    types = client.get("/api/docs/types").get_json()["types"]
    assert len(types) == 8
    assert {t["doc_type"] for t in types} >= {"SWMS", "VARIATION_CHANGE_ORDER"}


def test_doc_engine_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "doc_engine_enabled", False)
    register(client)
    resp = client.get("/api/docs/types")
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "DOC_ENGINE_DISABLED"


def test_prefill(client):
    register(client)
    setup_profile(client)
    job = new_job(client)
    resp = client.post("/api/docs/prefill", json={"job_id": job["id"], "doc_type": "VARIATION_CHANGE_ORDER"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["data"]["variationNumber"] == "VAR-001"
    assert data["data"]["companyLegalName"] == "Smith Painting Pty Ltd"
    assert data["model"]["doc_type"] == "VARIATION_CHANGE_ORDER"
    assert data["model"]["record_id"].startswith("OX-VARIATION_CHANGE_ORDER-")


def test_prefill_rejects_unknown_type(client):
    register(client)
    job = new_job(client)
    resp = client.post("/api/docs/prefill", json={"job_id": job["id"], "doc_type": "RECEIPT"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"

    resp = client.post("/api/docs/prefill", json={"doc_type": "SWMS"})
    assert resp.status_code == 400


def test_draft_confirm_issue_render(client):
    register(client)
    setup_profile(client)
    job = new_job(client)
    key = {"job_id": job["id"], "doc_type": "PROGRESS_CLAIM_TAX_INVOICE"}

    missing = client.post("/api/docs/confirm", json=key)
    assert missing.status_code == 404
    assert missing.get_json()["code"] == "DRAFT_NOT_FOUND"

    prefill = client.post("/api/docs/prefill", json=key).get_json()["data"]
    saved = client.post("/api/docs/draft", json={**key, "data": prefill}).get_json()["draft"]
    assert saved["status"] == "DRAFT"
    assert saved["approved"] is False
    assert saved["data"]["invoiceNumber"] == "INV-0001"

    fetched = client.get("/api/docs/draft", query_string=key).get_json()["draft"]
    assert fetched["id"] == saved["id"]

    confirmed = client.post("/api/docs/confirm", json=key).get_json()
    assert confirmed["already_confirmed"] is False
    assert confirmed["draft"]["status"] == "CONFIRMED"
    assert client.post("/api/docs/confirm", json=key).get_json()["already_confirmed"] is True

    issued = client.post("/api/docs/issue", json=key).get_json()
    assert issued["draft"]["status"] == "ISSUED"
    assert issued["draft"]["issued_record_id"].startswith("PRO-")
    assert issued["issuer"]["abn"] == "51824753556"

    pdf = client.post("/api/docs/render", json={**key, "audience": "CLIENT"})
    assert pdf.status_code == 200
    assert pdf.mimetype == "application/pdf"
    assert pdf.data.startswith(b"%PDF")
    assert issued["draft"]["issued_record_id"] in pdf.headers["Content-Disposition"]


def test_issue_without_abn(client):
    register(client)
    job = new_job(client)
    key = {"job_id": job["id"], "doc_type": "PROGRESS_CLAIM_TAX_INVOICE"}
    client.post("/api/docs/draft", json={**key, "data": {"invoiceNumber": "INV-0001"}})

    resp = client.post("/api/docs/issue", json=key)
    assert resp.status_code == 400
    data = resp.get_json()
    assert data["code"] == "ISSUER_INCOMPLETE"
    assert data["redirect_to"] == "/settings/business-profile"
    assert "Business legal name" in data["validation"]["missing_required"]


def test_draft_requires_data(client):
    register(client)
    job = new_job(client)
    resp = client.post("/api/docs/draft", json={"job_id": job["id"], "doc_type": "SWMS"})
    assert resp.status_code == 400

    for data in ([1, 2], {}, "text"):
        resp = client.post("/api/docs/draft", json={"job_id": job["id"], "doc_type": "SWMS", "data": data})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_render_without_draft(client):
    register(client)
    job = new_job(client)
    resp = client.post("/api/docs/render", json={"job_id": job["id"], "doc_type": "SWMS"})
    assert resp.status_code == 200
    assert resp.data.startswith(b"%PDF")

    bad = client.post("/api/docs/render", json={"job_id": job["id"], "doc_type": "SWMS",
                                                "audience": "PUBLIC"})
    assert bad.status_code == 400

    bad = client.post("/api/docs/render", json={"job_id": job["id"], "doc_type": "SWMS",
                                                "overrides": "x"})
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "overrides must be an object"
