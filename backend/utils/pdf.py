# backend/utils/pdf.py
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from models.invoice import Invoice

FONT_REGULAR_NAME = "Helvetica"
FONT_BOLD_NAME = "Helvetica-Bold"


def pdf_filename(invoice: Invoice) -> str:
    return f"{invoice.full_number}.pdf"


def _party_name(user) -> str:
    if user is None:
        return "-"
    if user.company_name:
        return user.company_name
    full = " ".join(p for p in (user.first_name, user.last_name) if p)
    return full or user.email


def render_invoice_pdf(invoice: Invoice, vendor=None, project=None, order=None) -> bytes:
    """
    Renders a vendor invoice as a single A4 document:
    - Header with number, issue and due dates
    - Vendor (left) and project / purchase order (right)
    - Line items copied from the accepted quotation
    - Totals with tax and discount
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    currency = invoice.currency

    # Helper for positioned text
    def draw_text(x, y, text, font=FONT_REGULAR_NAME, size=10, align="left"):
        c.setFont(font, size)
        text_str = str(text) if text is not None else ""
        if align == "right":
            c.drawRightString(x, y, text_str)
        elif align == "center":
            c.drawCentredString(x, y, text_str)
        else:
            c.drawString(x, y, text_str)

    # --- 1. Header ---
    y = height - 20 * mm
    draw_text(190 * mm, y, f"Invoice: {invoice.full_number}", font=FONT_BOLD_NAME, size=16, align="right")
    y -= 8 * mm
    draw_text(190 * mm, y, f"Issued: {invoice.created_at:%Y-%m-%d}", align="right")
    y -= 5 * mm
    draw_text(190 * mm, y, f"Due: {invoice.due_date:%Y-%m-%d}", align="right")
    y -= 6 * mm
    c.setLineWidth(0.5)
    c.line(20 * mm, y, 190 * mm, y)
    y -= 10 * mm

    # --- 2. Parties ---
    draw_text(20 * mm, y, "VENDOR:", font=FONT_BOLD_NAME)
    draw_text(110 * mm, y, "BILLED FOR:", font=FONT_BOLD_NAME)
    y -= 5 * mm
    draw_text(20 * mm, y, _party_name(vendor))
    draw_text(110 * mm, y, project.title if project else f"Project #{invoice.project_id}")
    y -= 5 * mm
    if vendor is not None:
        draw_text(20 * mm, y, vendor.email)
    po_label = order.order_number if order is not None and order.order_number else f"#{invoice.order_id}"
    draw_text(110 * mm, y, f"Purchase order: {po_label}")
    y -= 5 * mm
    draw_text(110 * mm, y, invoice.title[:45])
    y -= 15 * mm

    # --- 3. Items table ---
    c.setFillColorRGB(0.95, 0.95, 0.95)
    c.rect(20 * mm, y - 2 * mm, 170 * mm, 8 * mm, fill=1, stroke=0)
    c.setFillColorRGB(0, 0, 0)
    c.setFont(FONT_BOLD_NAME, 9)
    c.drawString(22 * mm, y, "No.")
    c.drawString(32 * mm, y, "Item")
    c.drawRightString(115 * mm, y, "Qty")
    c.drawRightString(150 * mm, y, "Unit price")
    c.drawRightString(185 * mm, y, "Total")
    y -= 8 * mm

    c.setFont(FONT_REGULAR_NAME, 9)
    for idx, it in enumerate(invoice.items, start=1):
        qty = f"{it.quantity:g} {it.unit or ''}".strip()
        c.drawString(22 * mm, y, str(idx))
        c.drawString(32 * mm, y, str(it.name)[:45])
        c.drawRightString(115 * mm, y, qty)
        c.drawRightString(150 * mm, y, f"{it.unit_price:.2f}")
        c.drawRightString(185 * mm, y, f"{it.total:.2f}")
        c.setLineWidth(0.1)
        c.line(20 * mm, y - 2 * mm, 190 * mm, y - 2 * mm)
        y -= 6 * mm

        # New page when the table runs out of room
        if y < 40 * mm:
            c.showPage()
            y = height - 20 * mm
            c.setFont(FONT_REGULAR_NAME, 9)

    if not invoice.items:
        draw_text(32 * mm, y, "Lump sum as quoted", size=9)
        y -= 6 * mm

    # --- 4. Totals ---
    y -= 5 * mm
    if y < 50 * mm:
        c.showPage()
        y = height - 30 * mm

    rows = [
        ("Subtotal:", invoice.subtotal),
        (f"Tax ({invoice.tax_rate:g}%):", invoice.tax_amount),
        ("Discount:", -invoice.discount),
    ]
    c.setFont(FONT_BOLD_NAME, 10)
    for label, value in rows:
        c.drawRightString(150 * mm, y, label)
        c.drawRightString(185 * mm, y, f"{value:.2f} {currency}")
        y -= 5 * mm
    y -= 1 * mm
    c.setFont(FONT_BOLD_NAME, 12)
    c.drawRightString(150 * mm, y, "TOTAL:")
    c.drawRightString(185 * mm, y, f"{invoice.total_amount:.2f} {currency}")
    y -= 6 * mm
    c.setFont(FONT_REGULAR_NAME, 10)
    c.drawRightString(150 * mm, y, "Amount due:")
    c.drawRightString(185 * mm, y, f"{invoice.amount_due:.2f} {currency}")

    if invoice.notes:
        y -= 12 * mm
        draw_text(20 * mm, y, f"Notes: {invoice.notes[:90]}", size=9)

    c.showPage()
    c.save()
    return buf.getvalue()
