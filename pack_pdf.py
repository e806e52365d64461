import io

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from docengine.schema import DRAFT_FOOTER

MARGIN_X = 50
TOP = 60
BOTTOM = 60
LINE_HEIGHT = 14


def wrap_line(s, max_len=90):
    out = []
    while len(s) > max_len:
        cut = s.rfind(" ", 0, max_len)
        if cut == -1:
            cut = max_len
        out.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    out.append(s)
    return out


def _pack_sections(job: dict, price_range: str, materials: str) -> list:
    sections = [
        ("Summary", job.get("ai_summary")),
        ("Scope of Work", job.get("ai_scope_of_work")),
        ("Inclusions", job.get("ai_inclusions")),
        ("Exclusions", job.get("ai_exclusions")),
        ("Materials", materials),
    ]
    if price_range and price_range != "N/A":
        sections.append(("Estimated Price", f"{price_range} (excl. GST)"))
    sections.append(("Notes", job.get("ai_client_notes")))
    return [(heading, body) for heading, body in sections if body]


def build_job_pack_pdf(job: dict, business_name: str = "", price_range: str = "",
                       materials: str = "") -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(job.get("title") or "Job Pack")

    width, height = A4
    y = height - TOP

    def new_page():
        c.setFont("Helvetica", 7)
        c.drawCentredString(width / 2, 30, DRAFT_FOOTER)
        c.showPage()
        return height - TOP

    c.setFont("Helvetica-Bold", 16)
    c.drawString(MARGIN_X, y, job.get("title") or "Job Pack")
    y -= 20

    header = [business_name, job.get("quote_number"), job.get("client_name"), job.get("address")]
    c.setFont("Helvetica", 9)
    for line in filter(None, header):
        c.drawString(MARGIN_X, y, line)
        y -= 12
    y -= 10

    for heading, body in _pack_sections(job, price_range, materials):
        if y < BOTTOM + 40:
            y = new_page()
        c.setFont("Helvetica-Bold", 12)
        c.drawString(MARGIN_X, y, heading)
        y -= 18

        c.setFont("Helvetica", 10)
        for raw in str(body).splitlines():
            for ln in wrap_line(raw):
                if y < BOTTOM:
                    y = new_page()
                    c.setFont("Helvetica", 10)
                c.drawString(MARGIN_X, y, ln)
                y -= LINE_HEIGHT
        y -= 10

    # Last page footer; save() closes the page without a trailing blank one.
    c.setFont("Helvetica", 7)
    c.drawCentredString(width / 2, 30, DRAFT_FOOTER)
    c.save()
    return buffer.getvalue()
