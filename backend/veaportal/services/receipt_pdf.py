# services/receipt_pdf.py → SCHOOL FEE RECEIPT PDF
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from veaportal.models.receipt_model import Receipt

styles = getSampleStyleSheet()
title_style = ParagraphStyle(
    "ReceiptTitle",
    parent=styles["Heading1"],
    fontSize=24,
    spaceAfter=20,
    textColor=colors.HexColor("#1a1a1a"),
    alignment=1,
)
subtitle_style = ParagraphStyle(
    "ReceiptSubtitle",
    parent=styles["Normal"],
    fontSize=12,
    textColor=colors.grey,
    alignment=1,
)
footer_style = ParagraphStyle("ReceiptFooter", parent=styles["Normal"], alignment=1)


def render_receipt_pdf(receipt: Receipt, *, school_name: str, currency_symbol: str = "₦", portal_url: str = "") -> BytesIO:
    """Build the PDF into a buffer positioned at 0, ready for StreamingResponse."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=1 * inch, bottomMargin=1 * inch)
    story = []

    story.append(Paragraph(escape(school_name), title_style))
    story.append(Paragraph("Official School Fee Receipt", subtitle_style))
    story.append(Spacer(1, 30))

    meta = receipt.metadata or {}
    rows = [
        ["Receipt No.", receipt.receipt_number],
        ["Date", receipt.date_issued.strftime("%B %d, %Y at %I:%M %p")],
        ["Student", receipt.student_name],
        ["Amount Paid", f"{currency_symbol}{receipt.amount:,.2f}"],
    ]
    if meta.get("paymentType"):
        rows.append(["Payment Type", str(meta["paymentType"]).replace("_", " ").title()])
    if meta.get("term"):
        rows.append(["Term", str(meta["term"])])
    if meta.get("session"):
        rows.append(["Session", str(meta["session"])])
    if meta.get("channel"):
        rows.append(["Channel", str(meta["channel"]).title()])
    if receipt.reference:
        rows.append(["Reference", receipt.reference])
    rows.append(["Issued By", receipt.issued_by or "Bursary"])

    table = Table(rows, colWidths=[2.5 * inch, 4 * inch])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f0f0f0")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, 1), (0, -1), "Helvetica-Bold"),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("BOX", (0, 0), (-1, -1), 1, colors.black),
    ]))
    story.append(table)
    story.append(Spacer(1, 40))

    story.append(Paragraph(
        "<font size='13'><b>Thank you for your payment!</b></font><br/><br/>"
        "<font size='10'>Keep this receipt for your records. The receipt number "
        "never changes, even if the payment is re-verified.</font>",
        styles["Normal"],
    ))
    story.append(Spacer(1, 50))

    if portal_url:
        story.append(Paragraph(f"<font size='9' color='grey'>{escape(portal_url)}</font>", footer_style))

    doc.build(story)
    buffer.seek(0)
    return buffer
