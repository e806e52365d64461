import logging

from openai import OpenAI

from config import settings

logger = logging.getLogger(__name__)

_client = None


class AIGenerationError(RuntimeError):
    pass


def get_client() -> OpenAI:
    global _client
    if not settings.openai_api_key:
        raise AIGenerationError(
            "OpenAI API key is not configured. Set OPENAI_API_KEY to use AI features."
        )
    if _client is None:
        _client = OpenAI(api_key=settings.openai_api_key)
    return _client


INSTRUCTIONS = (
    "You are an expert estimator for Australian residential trades. "
    "Speak in clear, practical language that tradies understand. "
    "All prices are in Australian Dollars (AUD) and exclude GST unless stated. "
    "Do not mention AI or automation. "
    "Write in Australian English."
)


def _complete(prompt: str, *, temperature: float, max_output_tokens: int) -> str:
    client = get_client()
    try:
        resp = client.responses.create(
            model=settings.openai_model,
            instructions=INSTRUCTIONS,
            input=prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
    except Exception as e:
        logger.exception("AI request failed")
        raise AIGenerationError(f"AI generation failed: {type(e).__name__}") from e

    text = (resp.output_text or "").strip()
    if not text:
        raise AIGenerationError("AI generation returned an empty response")
    return text


def generate_job_pack_ai(data: dict) -> str:
    """
    Ask the model for a complete job pack. Returns the raw model text,
    which should be a single JSON object (see job_packs.parse_pack_response).
    """
    compliance = "\n".join(f"- {note}" for note in data.get("compliance_notes") or [])

    prompt = f"""
{data.get("trade_context", "").strip()}

Relevant standards and compliance notes:
{compliance or "- Building Code of Australia"}

Job Title: {data.get("title") or "Untitled job"}
Trade Type: {data.get("trade_type") or "Other"}
Property Type: {data.get("property_type") or "Not specified"}
Address: {data.get("address") or "Not specified"}
Job Created: {data.get("created_at") or ""}
Rates to use: {data.get("rates_text") or "default rates"}

Job Details/Notes:
{data.get("notes") or "No additional details provided"}

Task:
Generate a complete job pack for this job.

Hard rules:
- Respond with ONLY valid JSON (no markdown, no code blocks).
- Use the rates given above when pricing labour.
- Do NOT claim compliance certification; list standards as references only.

JSON format:
{{
  "summary": "A brief 2-3 sentence overview of the job for quick reference",
  "quote": {{
    "labour": {{ "description": "Labour description", "rate": "$XX/hr", "total": "$XXXX" }},
    "materials": {{ "description": "Materials description", "cost": "$XXXX" }},
    "totalEstimate": {{ "description": "Total job estimate", "total": "$XXXX - $XXXX" }}
  }},
  "scopeOfWork": ["Step 1 description", "Step 2 description"],
  "inclusions": ["Inclusion 1", "Inclusion 2"],
  "exclusions": ["Exclusion 1", "Exclusion 2"],
  "materials": [
    {{ "item": "Material name", "quantity": "Amount needed", "estimatedCost": "$XX" }}
  ],
  "clientNotes": "Notes for the client about payment terms, timeline and important considerations"
}}
""".strip()

    return _complete(prompt, temperature=0.4, max_output_tokens=2000)


def generate_swms_ai(data: dict) -> str:
    """
    Ask the model for the hazard table of a Safe Work Method Statement.
    """
    prompt = f"""
{data.get("trade_context", "").strip()}

Job Title: {data.get("title") or "Untitled job"}
Trade Type: {data.get("trade_type") or "Other"}
Property Type: {data.get("property_type") or "Not specified"}
Address: {data.get("address") or "Not specified"}

Scope of Work:
{data.get("scope_of_work") or data.get("notes") or "Not provided"}

Task:
Draft the high-risk work steps for a Safe Work Method Statement (SWMS)
under Western Australian / national WHS requirements.

Hard rules:
- Respond with ONLY valid JSON (no markdown, no code blocks).
- Each hazard must be tied to a step from the scope above.
- Risk ratings are one of: Low, Medium, High, Extreme.
- This is a draft for the tradie to review, not a compliance assertion.

JSON format:
{{
  "highRiskWork": ["Working at heights above 2m"],
  "ppe": ["Safety glasses", "Gloves"],
  "hazards": [
    {{
      "task": "Job step",
      "hazard": "What could go wrong",
      "riskBefore": "High",
      "controls": "Control measures in order of the hierarchy of controls",
      "riskAfter": "Low",
      "responsible": "Who is responsible"
    }}
  ]
}}
""".strip()

    return _complete(prompt, temperature=0.2, max_output_tokens=1500)
