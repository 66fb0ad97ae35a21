from __future__ import annotations

# =========================================
# pdf_utils.py
# Optical Portal - PDF generation helpers
# =========================================
# Produces a printable, letter-size order sheet using ReportLab:
# patient, prescription, frame, lenses, Regular vs. Your Price pricing,
# warranty copays, other charges and payment for the saved payment mode.
# =========================================

from io import BytesIO
from datetime import datetime

from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from .pricing import PriceBreakdown, round2, to_decimal

OTHER_CHARGE_LABELS = {
    "exam_copay": "Exam Copay",
    "cl_exam": "CL Exam",
}


def _safe(s) -> str:
    if s is None:
        return ""
    return str(s)


def _money(v) -> str:
    return f"${float(v or 0):,.2f}"


def wrap(text: str, max_chars: int) -> list[str]:
    if len(text) <= max_chars:
        return [text]
    words = text.split()
    lines, cur = [], ""
    for w in words:
        if len(cur) + len(w) + 1 <= max_chars:
            cur = (cur + " " + w).strip()
        else:
            if cur:
                lines.append(cur)
            cur = w
    if cur:
        lines.append(cur)
    return lines


def frame_discount_amount(order: dict):
    """Dollars taken off by the insurance discount, after the allowance."""
    after_allowance = to_decimal(order.get("frame_price")) - to_decimal(order.get("frame_allowance"))
    return round2(after_allowance * to_decimal(order.get("frame_discount_percent")) / 100)


class _Sheet:
    """Tracks the cursor and starts a new page when the bottom margin is reached."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.width, self.height = letter
        self.margin = 0.6 * inch
        self.y = self.height - self.margin
        self.section_title = ""

    def ensure(self, needed: float):
        if self.y - needed < self.margin + 0.5 * inch:
            self.c.showPage()
            self.y = self.height - self.margin
            if self.section_title:
                self.heading(f"{self.section_title} (cont.)", remember=False)

    def heading(self, title: str, remember: bool = True):
        if remember:
            self.section_title = title
            self.ensure(0.5 * inch)
        self.y -= 0.06 * inch
        self.c.setFont("Helvetica-Bold", 11)
        self.c.drawString(self.margin, self.y, title)
        self.y -= 0.06 * inch
        self.c.setLineWidth(0.5)
        self.c.line(self.margin, self.y, self.width - self.margin, self.y)
        self.y -= 0.18 * inch
        self.c.setFont("Helvetica", 9)

    def line(self, text: str, amount: str | None = None, bold: bool = False):
        self.ensure(0.16 * inch)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", 9)
        self.c.drawString(self.margin, self.y, text)
        if amount is not None:
            self.c.drawRightString(self.width - self.margin, self.y, amount)
        self.y -= 0.16 * inch

    def columns(self, cells: list[str], xs: list[float], bold: bool = False):
        self.ensure(0.16 * inch)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", 9)
        for text, x in zip(cells, xs):
            if x < 0:
                self.c.drawRightString(self.width - self.margin + x + 1, self.y, text)
            else:
                self.c.drawString(self.margin + x, self.y, text)
        self.y -= 0.16 * inch

    def paragraph(self, text: str, max_chars: int = 100):
        for row in wrap(_safe(text), max_chars):
            self.line(row)


def pricing_rows(order: dict, breakdown: PriceBreakdown) -> list[tuple]:
    """(label, regular, your price) rows of the pricing table, before Final Price."""
    rows = [
        ("Total Glasses Price", breakdown.regular_price, breakdown.insurance_regular_price),
        ("Material Copay", order.get("material_copay"), order.get("material_copay")),
        ("Sales Tax", breakdown.sales_tax_regular, breakdown.sales_tax_insurance),
        # regular path pays list price for the frame
        ("You Saved Today", 0, breakdown.you_saved),
        ("You Pay", breakdown.you_pay_regular, breakdown.you_pay_insurance),
    ]
    if order.get("other_charges_adjustment"):
        rows.insert(3, ("Other Charges", order["other_charges_adjustment"], order["other_charges_adjustment"]))
    warranty_type = order.get("warranty_type") or "None"
    if warranty_type != "None":
        rows.append((f"Warranty ({warranty_type})", order.get("warranty_price"), order.get("warranty_price")))
    return rows


def build_order_pdf_bytes(order: dict, lens_items: list[dict], breakdown: PriceBreakdown,
                          company_name: str = "Optical Shop") -> bytes:
    """
    Returns PDF bytes.
    order: orders.order_to_dict() output
    lens_items: orders.lens_items() rows (label/value/price/insurance_price)
    breakdown: freshly computed PriceBreakdown for the order
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    s = _Sheet(c)

    # ---- Header
    c.setFont("Helvetica-Bold", 16)
    c.drawCentredString(s.width / 2, s.y, _safe(company_name))
    s.y -= 0.24 * inch
    c.setFont("Helvetica", 11)
    c.drawCentredString(s.width / 2, s.y, "Optical Order")
    s.y -= 0.30 * inch

    c.setFont("Helvetica", 10)
    c.drawString(s.margin, s.y, f"Order Number: {_safe(order.get('order_number'))}")
    c.drawRightString(s.width - s.margin, s.y, f"Date: {_safe(order.get('order_date'))}")
    s.y -= 0.24 * inch

    # ---- Patient
    s.heading("Patient Information")
    s.line(f"Patient: {_safe(order.get('patient_name'))}")
    s.line(f"Account #: {order.get('account_number') or 'N/A'}")
    s.line(f"Doctor: {order.get('doctor_name') or 'N/A'}")
    s.line(f"Insurance: {order.get('insurance') or 'N/A'}")
    sold_by = order.get("employee_name") or order.get("sold_by") or "N/A"
    s.line(f"Sold By: {sold_by}")

    # ---- Prescription
    s.heading("Prescription Details")
    xs = [0, 0.6 * inch, 1.5 * inch, 2.4 * inch, 3.2 * inch, 4.0 * inch, 4.8 * inch, 5.6 * inch]
    s.columns(["", "Sphere", "Cylinder", "Axis", "Prism", "Base", "Add", "PD / Seg"], xs, bold=True)
    for eye in ("od", "os"):
        s.columns([
            eye.upper(),
            _safe(order.get(f"{eye}_sphere")),
            _safe(order.get(f"{eye}_cylinder")),
            _safe(order.get(f"{eye}_axis")),
            _safe(order.get(f"{eye}_prism")),
            _safe(order.get(f"{eye}_base")),
            _safe(order.get(f"{eye}_add")),
            f"{_safe(order.get(f'{eye}_pd'))} / {_safe(order.get(f'{eye}_seg_height'))}",
        ], xs)
    if order.get("binocular_pd"):
        s.line(f"Binocular PD: {order['binocular_pd']}")

    # ---- Frame
    s.heading("Frame Selection")
    if order.get("use_own_frame"):
        s.line("Patient's own frame")
    else:
        s.line(f"Frame SKU #: {order.get('frame_sku') or 'N/A'}")
        s.line(f"Frame Material: {order.get('frame_material') or 'N/A'}")
        s.line(f"Frame Name/Description: {order.get('frame_name') or 'N/A'}")
        s.line(f"Formula Used: {order.get('frame_formula') or 'N/A'}")
        s.line("Frame Price:", _money(order.get("frame_price")))
        if order.get("frame_allowance"):
            s.line("Insurance Allowance:", f"-{_money(order.get('frame_allowance'))}")
        if order.get("frame_discount_percent"):
            s.line(f"Insurance Discount ({order['frame_discount_percent']:g}%):",
                   f"-{_money(frame_discount_amount(order))}")
        s.line("Final Frame Price:", _money(breakdown.final_frame_price), bold=True)

    # ---- Lenses
    s.heading("Lenses")
    # negative x = right-aligned from the right margin
    lx = [0, 2.2 * inch, -1.1 * inch, -0.001]
    s.columns(["Category", "Selection", "Regular", "Your Price"], lx, bold=True)
    shown = [item for item in lens_items if item.get("value") and item.get("value") != "None"]
    if not shown:
        s.line("(No lens options selected)")
    for item in shown:
        s.columns([
            _safe(item.get("label")),
            _safe(item.get("value"))[:48],
            _money(item.get("price")),
            _money(item.get("insurance_price")),
        ], lx)
    s.columns([
        "Total Lens Charges", "",
        _money(breakdown.total_lens_charges_regular),
        _money(breakdown.total_lens_charges_insurance),
    ], lx, bold=True)

    # ---- Pricing, both paths side by side
    s.heading("Pricing")
    px = [0, -1.1 * inch, -0.001]
    s.columns(["", "Regular Price", "Your Price"], px, bold=True)
    for label, regular, insurance in pricing_rows(order, breakdown):
        s.columns([label, _money(regular), _money(insurance)], px)
    s.columns(["Final Price", _money(breakdown.final_price_regular), _money(breakdown.final_price_insurance)],
              px, bold=True)

    if breakdown.warranty_copay:
        s.line(
            "If Warranty Accepted - Copays: "
            f"Frame {_money(breakdown.warranty_copay.frame_replacement_copay)} | "
            f"Lens {_money(breakdown.warranty_copay.lens_replacement_copay)}"
        )

    # ---- Other charges
    with_insurance = (order.get("payment_mode") or "with_insurance") == "with_insurance"
    percent = order.get("other_percent_adjustment") or 0
    extras = []
    if percent:
        adj = breakdown.percent_adjustment_insurance if with_insurance else breakdown.percent_adjustment_regular
        extras.append((f"Other % Adjustment ({percent:g}%)", f"-{_money(adj)}"))
    if order.get("iwellness") == "yes":
        extras.append(("iWellness", _money(order.get("iwellness_price"))))
    for n in (1, 2):
        kind = order.get(f"other_charge_{n}_type") or "none"
        price = order.get(f"other_charge_{n}_price") or 0
        if kind != "none" and price:
            extras.append((OTHER_CHARGE_LABELS.get(kind, "Other Charge"), _money(price)))
    if extras or order.get("other_charges_notes"):
        s.heading("Other Charges")
        for label, amount in extras:
            s.line(f"{label}:", amount)
        if order.get("other_charges_notes"):
            s.paragraph(f"Notes: {order['other_charges_notes']}")

    # ---- Payment
    s.heading("Payment")
    s.line(f"Payment Mode: {'With Insurance' if with_insurance else 'Without Insurance'}")
    total_balance = breakdown.total_balance_insurance if with_insurance else breakdown.total_balance_regular
    balance_due = breakdown.balance_due_insurance if with_insurance else breakdown.balance_due_regular
    s.line("Balance:", _money(total_balance))
    s.line("Today's Payment:", _money(order.get("payment_today")))
    s.line("Balance Due at Pick Up:", _money(balance_due), bold=True)

    # ---- Notes
    if order.get("special_notes"):
        s.heading("Special Notes")
        s.paragraph(order["special_notes"])

    if order.get("verified_by"):
        s.section_title = ""
        s.line(f"Verified By (Initials): {order['verified_by']}")

    # ---- Footer note
    c.setFont("Helvetica-Oblique", 8)
    c.drawString(s.margin, s.margin * 0.8,
                 f"Generated {datetime.now().strftime('%m-%d-%Y %H:%M')} by Optical Portal")

    c.showPage()
    c.save()

    buf.seek(0)
    return buf.read()
