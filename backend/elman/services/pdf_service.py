"""
Printable documents: sales receipt, expense voucher, inventory movement history.

Only the content is fixed here; layout is plain ReportLab platypus.
"""
import io

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from elman.time_utils import parse_iso_datetime, utcnow


SHOP_NAME = "ELMAN"


def money(cents) -> str:
    return f"{(cents or 0) / 100:,.2f}"


def _fmt_date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        value = parse_iso_datetime(value)
    return value.strftime("%Y-%m-%d %H:%M UTC")


class PDFDocumentBuilder:
    """Small wrapper around a platypus story with the shop's styles."""

    def __init__(self, title: str):
        self.title = title
        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            name='DocTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            spaceAfter=12,
        ))
        self.styles.add(ParagraphStyle(
            name='KVLabel',
            parent=self.styles['Normal'],
            fontSize=8,
            textColor=colors.HexColor('#64748b'),
        ))
        self.story = [Paragraph(f"{SHOP_NAME} - {title}", self.styles['DocTitle'])]

    def kv_block(self, pairs) -> None:
        rows = [[Paragraph(label.upper(), self.styles['KVLabel']), value or "-"] for label, value in pairs]
        table = Table(rows, colWidths=[110, 360], hAlign='LEFT')
        table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('FONTNAME', (1, 0), (1, -1), 'Helvetica'),
            ('FONTSIZE', (1, 0), (1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
        ]))
        self.story.append(table)
        self.story.append(Spacer(1, 12))

    def table(self, header, rows, col_widths, numeric_from: int | None = None) -> None:
        table = Table([header] + rows, colWidths=col_widths, repeatRows=1, hAlign='LEFT')
        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#0f172a')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 6),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
        ]
        if numeric_from is not None:
            style.append(('ALIGN', (numeric_from, 1), (-1, -1), 'RIGHT'))
        table.setStyle(TableStyle(style))
        self.story.append(table)
        self.story.append(Spacer(1, 12))

    def build(self) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            title=self.title,
            rightMargin=48,
            leftMargin=48,
            topMargin=48,
            bottomMargin=48,
        )
        doc.build(self.story)
        return buffer.getvalue()


def render_sale_receipt(sale: dict) -> bytes:
    """sale is the dict from sales_service.get_sale_by_receipt()."""
    pdf = PDFDocumentBuilder("Sales Receipt")
    pdf.kv_block([
        ("Receipt Ref", sale["receipt_ref"]),
        ("Date", _fmt_date(sale["sale_date"])),
        ("Cashier", sale["cashier"]),
        ("Customer", sale.get("customer") or ""),
        ("Payment", sale["payment_method"]),
    ])
    pdf.table(
        ["Item", "Qty", "Unit", "Total"],
        [
            [item["product_name"], str(item["quantity"]), money(item["unit_price_cents"]),
             money(item["line_total_cents"])]
            for item in sale["items"]
        ],
        [240, 60, 90, 90],
        numeric_from=1,
    )
    totals = [
        ("Subtotal", money(sale["subtotal_cents"])),
        ("Discount", money(sale["discount_cents"])),
        ("Total", money(sale["total_cents"])),
    ]
    if sale.get("refunded_total_cents"):
        totals.append(("Refunded", money(sale["refunded_total_cents"])))
    if sale.get("unpaid"):
        totals.append(("Status", "UNPAID"))
    pdf.kv_block(totals)
    return pdf.build()


def render_expense_voucher(expense: dict) -> bytes:
    pdf = PDFDocumentBuilder("Expense Voucher")
    pdf.kv_block([
        ("Expense ID", str(expense["id"])),
        ("Date", _fmt_date(expense["expense_date"])),
        ("Category", expense["category"]),
        ("Vendor", expense.get("vendor") or ""),
        ("Notes", expense.get("notes") or ""),
    ])
    if expense["items"]:
        pdf.table(
            ["Item", "Qty", "Unit", "Total"],
            [
                [item["item_name"], f"{item['quantity']:g}", money(item["unit_price_cents"]),
                 money(item["line_total_cents"])]
                for item in expense["items"]
            ],
            [240, 60, 90, 90],
            numeric_from=1,
        )
    pdf.kv_block([("Total Amount", money(expense["total_amount_cents"]))])
    return pdf.build()


def render_inventory_history(summary: dict) -> bytes:
    """summary is the dict from reporting_service.inventory_summary()."""
    pdf = PDFDocumentBuilder("Inventory Movement History")
    pdf.kv_block([("Printed", _fmt_date(utcnow()))])
    pdf.table(
        ["Date", "Product", "Change", "Reason"],
        [
            [_fmt_date(entry["created_at"]), entry["product_name"], f"{entry['qty_change']:+d}", entry["reason"]]
            for entry in summary["history"]
        ],
        [120, 170, 60, 170],
    )
    totals = summary["totals"]
    pdf.kv_block([
        ("Total Products", str(totals["total_products"])),
        ("Low Stock Items", str(totals["low_stock_items"])),
        ("Inventory Value", money(totals["total_inventory_value_cents"])),
    ])
    return pdf.build()
