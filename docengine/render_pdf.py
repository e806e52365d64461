"""
PDF rendering of a render model with reportlab.

INTERNAL exports carry the draft disclaimer, OVIS warnings and a draft
footer line; approved CLIENT exports drop all three and lead with the
business header instead.
"""
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from docengine.formatting import format_abn, format_long_datetime
from docengine.issuer import format_business_address
from docengine.schema import AUDIENCE_CLIENT, DRAFT_FOOTER

MARGIN = 20 * mm
EMPTY_VALUE = "—"

SLATE_900 = colors.HexColor("#0f172a")
SLATE_500 = colors.HexColor("#64748b")
SLATE_400 = colors.HexColor("#94a3b8")
AMBER_50 = colors.HexColor("#fffbeb")
AMBER_900 = colors.HexColor("#92400e")
HEADER_BG = colors.HexColor("#e2e8f0")


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("DocTitle", parent=base["Title"], fontSize=18, alignment=0,
                                textColor=SLATE_900, spaceAfter=4),
        "meta": ParagraphStyle("Meta", parent=base["Normal"], fontSize=8, textColor=SLATE_500),
        "heading": ParagraphStyle("Section", parent=base["Heading2"], fontSize=12,
                                  textColor=SLATE_900, spaceBefore=8, spaceAfter=4),
        "label": ParagraphStyle("Label", parent=base["Normal"], fontName="Helvetica-Bold",
                                fontSize=8, textColor=SLATE_500),
        "value": ParagraphStyle("Value", parent=base["Normal"], fontSize=9, textColor=SLATE_900),
        "empty": ParagraphStyle("Empty", parent=base["Normal"], fontSize=9, textColor=SLATE_400),
        "warning": ParagraphStyle("Warning", parent=base["Normal"], fontSize=8, textColor=AMBER_900),
        "cell": ParagraphStyle("Cell", parent=base["Normal"], fontSize=8, leading=10),
        "business": ParagraphStyle("Business", parent=base["Normal"], fontName="Helvetica-Bold",
                                   fontSize=12, textColor=SLATE_900),
    }


def _text(value) -> str:
    return escape(str(value)).replace("\n", "<br/>")


def _numbered_canvas(footer_lines):
    """Canvas class that stamps `footer_lines` plus 'Page N of M' on every page."""

    class NumberedCanvas(canvas.Canvas):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._saved_pages = []

        def showPage(self):
            self._saved_pages.append(dict(self.__dict__))
            self._startPage()

        def save(self):
            total = len(self._saved_pages)
            for state in self._saved_pages:
                self.__dict__.update(state)
                self._draw_footer(total)
                super().showPage()
            super().save()

        def _draw_footer(self, total):
            width, _ = self._pagesize
            self.setFont("Helvetica", 7)
            self.setFillColor(SLATE_500)
            y = 10 * mm
            for line in reversed(footer_lines):
                text = line.format(page=self._pageNumber, total=total)
                self.drawCentredString(width / 2, y, text)
                y += 4 * mm

    return NumberedCanvas


def _business_header(issuer: dict, styles: dict) -> list:
    lines = [Paragraph(_text(issuer.get("trading_name") or issuer.get("legal_name") or ""),
                       styles["business"])]
    details = []
    if issuer.get("trading_name") and issuer.get("legal_name"):
        details.append(issuer["legal_name"])
    if issuer.get("abn"):
        details.append(f"ABN {format_abn(issuer['abn'])}")
    address = format_business_address(issuer)
    if address:
        details.append(address)
    contact = " | ".join(p for p in (issuer.get("phone"), issuer.get("email")) if p)
    if contact:
        details.append(contact)
    for detail in details:
        lines.append(Paragraph(_text(detail), styles["meta"]))
    lines.append(Spacer(1, 4 * mm))
    return lines


def _boxed(flowables: list, width: float) -> Table:
    box = Table([[flowables]], colWidths=[width])
    box.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), AMBER_50),
        ("BOX", (0, 0), (-1, -1), 0.75, AMBER_900),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
    ]))
    return box


def _field_cell(field: dict, styles: dict) -> list:
    label = field["label"] + (" *" if field.get("required") else "")
    value = field.get("value")
    if value is None or value == "":
        shown = Paragraph(_text(field.get("placeholder") or EMPTY_VALUE), styles["empty"])
    else:
        shown = Paragraph(_text(value), styles["value"])
    return [Paragraph(_text(label), styles["label"]), shown]


def _fields_grid(fields: list, width: float, styles: dict) -> Table:
    rows = []
    for i in range(0, len(fields), 2):
        pair = fields[i:i + 2]
        row = [_field_cell(f, styles) for f in pair]
        if len(row) == 1:
            row.append("")
        rows.append(row)
    grid = Table(rows, colWidths=[width / 2, width / 2])
    grid.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    return grid


def _table(table: dict, width: float, styles: dict) -> list:
    columns = table["columns"]
    if not table["rows"]:
        return [Paragraph("No items added yet.", styles["value"])]

    weights = [c.get("width") or 100 / len(columns) for c in columns]
    total = sum(weights)
    col_widths = [w / total * width for w in weights]

    data = [[Paragraph(_text(c["label"]), styles["label"]) for c in columns]]
    for row in table["rows"]:
        cells = []
        for col in columns:
            value = row.get(col["id"])
            cells.append(Paragraph(_text(EMPTY_VALUE if value is None or value == "" else value),
                                   styles["cell"]))
        data.append(cells)

    grid = Table(data, colWidths=col_widths, repeatRows=1)
    grid.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
        ("GRID", (0, 0), (-1, -1), 0.5, SLATE_400),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    return [grid]


def render_model_to_pdf(model: dict, approved: bool = False, audience: str = "INTERNAL",
                        issuer: dict = None) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN + 6 * mm,
        title=model["title"],
    )
    styles = _styles()
    width = doc.width
    generated = format_long_datetime(model.get("timestamp"))
    story = []

    if audience == AUDIENCE_CLIENT and issuer:
        story.extend(_business_header(issuer, styles))

    story.append(Paragraph(_text(model["title"]), styles["title"]))
    story.append(Paragraph(f"Record ID: {_text(model['record_id'])}", styles["meta"]))
    story.append(Paragraph(f"Generated: {_text(generated)}", styles["meta"]))
    story.append(Spacer(1, 4 * mm))

    if not approved:
        notice = [Paragraph("<b>Review required</b>", styles["warning"]),
                  Paragraph(_text(model["disclaimer"]), styles["warning"])]
        story.append(_boxed(notice, width))
        story.append(Spacer(1, 3 * mm))

        warnings = model.get("ovis_warnings") or []
        if warnings and audience != AUDIENCE_CLIENT:
            items = [Paragraph("<b>Check before sending</b>", styles["warning"])]
            for w in warnings:
                items.append(Paragraph(f"[{_text(w['severity']).upper()}] {_text(w['message'])}",
                                       styles["warning"]))
            story.append(_boxed(items, width))
            story.append(Spacer(1, 3 * mm))

    for section in model["sections"]:
        story.append(Paragraph(_text(section["title"]), styles["heading"]))
        if section.get("fields"):
            story.append(_fields_grid(section["fields"], width, styles))
        if section.get("table"):
            story.extend(_table(section["table"], width, styles))
            min_rows = section["table"].get("min_rows") or 0
            filled = [r for r in section["table"]["rows"] if any(v is not None for v in r.values())]
            if len(filled) < min_rows:
                plural = "s" if min_rows != 1 else ""
                story.append(Paragraph(f"Note: Minimum {min_rows} row{plural} required.",
                                       styles["warning"]))
        story.append(Spacer(1, 4 * mm))

    footer = []
    if not approved:
        footer.append(DRAFT_FOOTER)
    record = model["record_id"].replace("{", "{{").replace("}", "}}")
    footer.append(f"Record ID: {record} | Generated: {generated} | Page {{page}} of {{total}}")

    doc.build(story, canvasmaker=_numbered_canvas(footer))
    return buffer.getvalue()
