import json

import pytest

import job_packs
from accounts import create_user
from config import settings
from db import get_db, init_db
from jobs import create_job, save_job

SAMPLE_PACK = {
    "summary": "Repaint two bedrooms and a hallway, walls and ceilings.",
    "quote": {
        "labour": {"description": "2 painters, 2 days", "rate": "$85/hr", "total": "$1,360"},
        "materials": {"description": "Paint and sundries", "cost": "$420"},
        "totalEstimate": {"description": "Total job estimate", "total": "$1,780"},
    },
    "scopeOfWork": ["Patch and sand walls", "Apply two coats to walls and ceilings"],
    "inclusions": ["All paint and materials", "Clean up"],
    "exclusions": ["Furniture removal"],
    "materials": [
        {"item": "Low sheen acrylic", "quantity": "20L", "estimatedCost": "$300"},
        {"item": "Ceiling white", "quantity": "10L", "estimatedCost": "$120"},
    ],
    "clientNotes": "50% deposit on booking.",
}

SAMPLE_SWMS = {
    "highRiskWork": ["Working at heights above 2m"],
    "ppe": ["Safety glasses", "Gloves"],
    "hazards": [
        {
            "task": "Painting stairwell ceiling",
            "hazard": "Fall from ladder",
            "riskBefore": "High",
            "controls": "Use platform ladder with handrails",
            "riskAfter": "Low",
            "responsible": "Lead painter",
        }
    ],
}


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "jobpacks.db"
    monkeypatch.setattr(settings, "database_path", path)
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    c = get_db(db_path)
    yield c
    c.close()


@pytest.fixture
def user(conn):
    return create_user(
        conn,
        "Tradie@Example.com",
        "correct-horse",
        business_name="Smith Painting Pty Ltd",
        abn="51824753556",
        business_phone="0400 000 000",
        business_suburb="Fremantle",
        business_state="WA",
        business_postcode="6160",
        gst_registered=True,
        hourly_rate=85,
    )


@pytest.fixture
def fake_ai(monkeypatch):
    calls = {"pack": 0, "swms": 0}

    def fake_pack(data):
        calls["pack"] += 1
        return json.dumps(SAMPLE_PACK)

    def fake_swms(data):
        calls["swms"] += 1
        return json.dumps(SAMPLE_SWMS)

    monkeypatch.setattr(job_packs, "generate_job_pack_ai", fake_pack)
    monkeypatch.setattr(job_packs, "generate_swms_ai", fake_swms)
    return calls


@pytest.fixture
def job(conn, user, fake_ai):
    created = create_job(conn, user["id"], {
        "title": "Bedroom repaint",
        "trade_type": "Painter",
        "property_type": "House",
        "address": "12 High St, Fremantle WA",
        "notes": "Two bedrooms and hallway",
        "client_name": "Jane Client",
        "client_email": "jane@example.com",
    })
    job_packs.build_job_pack(conn, created, user)
    return save_job(conn, created)
