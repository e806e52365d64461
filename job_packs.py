import json
import logging

from ai_engine import AIGenerationError, generate_job_pack_ai, generate_swms_ai
from db import ai_input_hash, get_cached_pack, store_cached_pack
from docengine.formatting import text_list
from pricing import apply_materials_totals, format_rates_for_display, get_effective_rates

logger = logging.getLogger(__name__)

TRADE_TYPES = (
    "Painter",
    "Plasterer",
    "Carpenter",
    "Electrician",
    "Roofer",
    "Plumber",
    "Concreter",
    "HVAC",
    "Flooring",
    "Landscaper",
    "Other",
)

DEFAULT_TRADE = "Painter"

# Trade-specific language profiles
TRADE_PROFILES = {
    "Painter": """
Trade-Specific Context (Painter):
- This is a painting job in Australia
- Common work includes: interior painting, exterior painting, preparation, repairs
- Surface types: plasterboard, timber, metal, rendered surfaces
- Paint types: water-based (most common), oil-based (trim work)
- Finishes: Flat/Matt, Low Sheen, Semi-Gloss, Gloss
- Safety: lead paint testing (pre-1970 buildings), working at heights, respiratory protection
""",

    "Plasterer": """
Trade-Specific Context (Plasterer):
- Plasterboard supply, hanging, setting and sanding
- Cornice, patching and water-damage repairs
- Moisture-resistant board in wet areas
- Level 4 finish unless stated otherwise
""",

    "Carpenter": """
Trade-Specific Context (Carpenter):
- Framing, decking, doors, skirting, architraves and general fit-out
- Treated timber to the correct H-class for the location
- Balustrades and stairs must meet dimensional requirements
""",

    "Electrician": """
Trade-Specific Context (Electrician):
- Work must be performed by a licensed electrician
- Use language such as: supply and install, test and commission
- Assume existing wiring is serviceable unless stated otherwise
- Certificate of Compliance required for notifiable work
""",

    "Roofer": """
Trade-Specific Context (Roofer):
- Metal and tile roofing, gutters, downpipes and flashings
- Working at heights controls are mandatory above 2m
- Bushfire-prone area requirements may apply
""",

    "Plumber": """
Trade-Specific Context (Plumber):
- Use language such as: isolate water supply, replace fittings, pressure test
- Assume existing pipework is serviceable unless stated otherwise
- WaterMark certified products only
""",

    "Concreter": """
Trade-Specific Context (Concreter):
- Slabs, footings, paths and driveways
- Site classification affects slab design; engineer required for H1+ and P class
- Curing for a minimum of 7 days
""",

    "HVAC": """
Trade-Specific Context (HVAC):
- Supply and install, system commissioning, manufacturer specifications
- ARC licence required for refrigerant handling
- Electrical connection may require a licensed electrician
""",

    "Flooring": """
Trade-Specific Context (Flooring):
- Timber, hybrid, vinyl, carpet and tile floors
- Moisture testing on concrete slabs, acclimatisation before install
- Expansion gaps of at least 10mm
""",

    "Landscaper": """
Trade-Specific Context (Landscaper):
- Retaining walls, paving, turf, garden beds and irrigation
- Dial Before You Dig is mandatory before excavation
- Retaining walls over 600-1000mm need engineering
""",
}

GENERIC_PROFILE = """
Trade-Specific Context:
- Australian construction/trades job
- Must comply with relevant Building Code of Australia provisions
- Follow applicable Australian Standards
- Safety: general construction site safety requirements
"""

COMPLIANCE_NOTES = {
    "Painter": [
        "AS 2311 - Guide to the painting of buildings",
        "Lead paint regulations (pre-1970 buildings)",
        "VOC emissions compliance",
        "Surface preparation standards",
    ],
    "Plasterer": [
        "AS/NZS 2589 - Gypsum linings application and finishing",
        "AS/NZS 2588 - Gypsum plasterboard product standard",
        "AS 3740 - Waterproofing of wet areas (moisture-resistant board)",
        "Building Code of Australia fire-rating requirements",
    ],
    "Carpenter": [
        "AS 1684 - Residential timber-framed construction",
        "AS 1604 - Timber preservative treatment (H-class)",
        "AS 1657 - Stairs, walkways, balustrades",
        "Balustrades: 1000mm min height, 125mm max gap",
    ],
    "Electrician": [
        "AS/NZS 3000 - Electrical installations (Wiring Rules)",
        "AS/NZS 3008 - Selection of cables",
        "Certificate of Compliance (CoC) for notifiable work",
        "RCDs mandatory on all residential circuits",
    ],
    "Roofer": [
        "AS 1562.1 - Sheet roof and wall cladding (Metal)",
        "AS 3959 - Construction in bushfire-prone areas",
        "AS/NZS 3500.3 - Stormwater drainage",
        "Working at Heights regulations (mandatory above 2m)",
    ],
    "Plumber": [
        "AS/NZS 3500 - Plumbing and Drainage Code",
        "WaterMark certification required for all products",
        "Tempering valves (TMV) mandatory in bathrooms",
        "Compliance certificate for notifiable work",
    ],
    "Concreter": [
        "AS 3600 - Concrete structures",
        "AS 2870 - Residential slabs and footings",
        "Site classification (A, S, M, H1, H2, E, P)",
        "Curing requirements (minimum 7 days)",
    ],
    "HVAC": [
        "ARC (Australian Refrigeration Council) license required",
        "AS/NZS 5149 - Refrigerating systems safety",
        "GEMS energy efficiency registration",
    ],
    "Flooring": [
        "AS 1884 - Resilient flooring installation",
        "AS 4586 - Slip resistance classification",
        "Moisture testing required (concrete slabs)",
        "Asbestos check before old floor removal",
    ],
    "Landscaper": [
        "AS 1926.1 - Pool fencing (1200mm min, self-closing gate)",
        "AS 4678 - Retaining walls",
        "Dial Before You Dig (mandatory excavation)",
    ],
}

GENERIC_COMPLIANCE_NOTES = [
    "Building Code of Australia",
    "Relevant Australian Standards",
    "State SafeWork requirements",
]


class AIResponseFormatError(ValueError):
    pass


def trade_prompt_context(trade_type: str) -> str:
    return TRADE_PROFILES.get(trade_type or "", GENERIC_PROFILE)


def trade_compliance_notes(trade_type: str) -> list:
    return list(COMPLIANCE_NOTES.get(trade_type or "", GENERIC_COMPLIANCE_NOTES))


def strip_code_fences(text: str) -> str:
    clean = (text or "").strip()
    if clean.startswith("```json"):
        clean = clean[7:]
    if clean.startswith("```"):
        clean = clean[3:]
    if clean.endswith("```"):
        clean = clean[:-3]
    return clean.strip()


def parse_pack_response(text: str) -> dict:
    try:
        parsed = json.loads(strip_code_fences(text))
    except ValueError as e:
        raise AIResponseFormatError("AI response was not valid JSON") from e
    if not isinstance(parsed, dict):
        raise AIResponseFormatError("AI response was not a JSON object")
    return parsed


def _lines(value) -> str:
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    return value or ""


def apply_pack(job: dict, pack: dict) -> dict:
    job["ai_summary"] = pack.get("summary") or ""
    job["ai_quote"] = json.dumps(pack["quote"]) if pack.get("quote") else ""
    job["ai_scope_of_work"] = _lines(pack.get("scopeOfWork"))
    job["ai_inclusions"] = _lines(pack.get("inclusions"))
    job["ai_exclusions"] = _lines(pack.get("exclusions"))
    job["ai_materials"] = json.dumps(pack["materials"]) if pack.get("materials") else ""
    job["ai_client_notes"] = pack.get("clientNotes") or ""
    job["status"] = "ai_complete"
    return job


def pack_prompt_data(job: dict, user: dict) -> dict:
    rates = get_effective_rates(user, job)
    trade = job.get("trade_type") or DEFAULT_TRADE
    return {
        "title": job.get("title"),
        "trade_type": trade,
        "property_type": job.get("property_type"),
        "address": job.get("address"),
        "notes": job.get("notes"),
        "created_at": job.get("created_at"),
        "rates": json.dumps(rates, sort_keys=True),
        "rates_text": format_rates_for_display(rates),
        "trade_context": trade_prompt_context(trade),
        "compliance_notes": trade_compliance_notes(trade),
    }


def build_job_pack(conn, job: dict, user: dict, use_cache: bool = True) -> dict:
    """
    Generate the AI job pack for a job and apply it in place.

    Raises AIGenerationError when the model call fails; the caller decides
    how to persist the failure. An unparseable answer is kept as the
    summary and the job is marked ai_failed.
    """
    data = pack_prompt_data(job, user)
    input_hash = ai_input_hash(data)

    text = get_cached_pack(conn, input_hash) if use_cache else None
    if text is None:
        text = generate_job_pack_ai(data)
        from_cache = False
    else:
        logger.info("job pack cache hit for job %s", job.get("id"))
        from_cache = True

    try:
        pack = parse_pack_response(text)
    except AIResponseFormatError:
        logger.warning("Failed to parse AI response as JSON for job %s", job.get("id"))
        job["ai_summary"] = text
        job["status"] = "ai_failed"
        return job

    if not from_cache:
        store_cached_pack(conn, input_hash, text, data["trade_type"])

    apply_pack(job, pack)
    return apply_materials_totals(job, (user or {}).get("material_markup_percent"))


def build_swms(job: dict) -> dict:
    """Generate SWMS hazards for a job; stored as JSON in job['ai_swms']."""
    trade = job.get("trade_type") or DEFAULT_TRADE
    text = generate_swms_ai({
        "title": job.get("title"),
        "trade_type": trade,
        "property_type": job.get("property_type"),
        "address": job.get("address"),
        "notes": job.get("notes"),
        "scope_of_work": job.get("ai_scope_of_work"),
        "trade_context": trade_prompt_context(trade),
    })
    try:
        swms = parse_pack_response(text)
    except AIResponseFormatError as e:
        raise AIGenerationError("SWMS response was not valid JSON") from e

    hazards = swms.get("hazards")
    swms["hazards"] = [h for h in hazards if isinstance(h, dict)] if isinstance(hazards, list) else []
    swms["highRiskWork"] = text_list(swms.get("highRiskWork"))
    swms["ppe"] = text_list(swms.get("ppe"))
    job["ai_swms"] = json.dumps(swms)
    return job
