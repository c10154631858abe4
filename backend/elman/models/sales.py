from __future__ import annotations

from ..extensions import db
from elman.time_utils import to_utc_z, utcnow


PAYMENT_METHODS = ("Cash", "Zaad", "Edahab")


class Sale(db.Model):
    """
    Completed sale, looked up externally by receipt_ref.

    Totals are fixed at creation. Only the refund processor touches
    refunded_total_cents / fully_refunded, and only upward.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_ref", name="uq_sales_receipt_ref"),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_sales_subtotal_non_negative"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sales_discount_non_negative"),
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_non_negative"),
        db.CheckConstraint("refunded_total_cents >= 0", name="ck_sales_refunded_non_negative"),
        db.Index("ix_sales_sale_date", "sale_date"),
        db.Index("ix_sales_customer", "customer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable reference (e.g., "RCPT-20260118-AB12CD")
    receipt_ref = db.Column(db.String(64), nullable=False)

    sale_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    cashier = db.Column(db.String(120), nullable=False)

    # Name snapshot; customer_id is kept only for traceability
    customer = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    unpaid = db.Column(db.Boolean, nullable=False, default=False)

    refunded_total_cents = db.Column(db.Integer, nullable=False, default=0)
    fully_refunded = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        order_by="SaleLine.line_number",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} receipt_ref={self.receipt_ref!r} total_cents={self.total_cents}>"

    def summary_dict(self) -> dict:
        return {
            "receipt_ref": self.receipt_ref,
            "sale_date": to_utc_z(self.sale_date),
            "cashier": self.cashier,
            "customer": self.customer,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "unpaid": self.unpaid,
            "refunded_total_cents": self.refunded_total_cents,
            "fully_refunded": self.fully_refunded,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_ref": self.receipt_ref,
            "sale_date": to_utc_z(self.sale_date),
            "cashier": self.cashier,
            "customer": self.customer,
            "customer_id": self.customer_id,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "unpaid": self.unpaid,
            "refunded_total_cents": self.refunded_total_cents,
            "fully_refunded": self.fully_refunded,
            "created_at": to_utc_z(self.created_at),
            "items": [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    """Line item on a sale; price and name are captured at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_lines_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Refund(db.Model):
    """
    Immutable refund record. Many refunds may reference one sale; per product,
    the refunded quantities across all of them never exceed what was sold.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.Index("ix_refunds_receipt_date", "receipt_ref", "refund_date"),
        db.CheckConstraint("total_refund_cents >= 0", name="ck_refunds_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    receipt_ref = db.Column(db.String(64), nullable=False)

    refund_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    cashier = db.Column(db.String(120), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    total_refund_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))
    lines = db.relationship("RefundLine", backref="refund", order_by="RefundLine.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "receipt_ref": self.receipt_ref,
            "refund_date": to_utc_z(self.refund_date),
            "cashier": self.cashier,
            "reason": self.reason,
            "total_refund_cents": self.total_refund_cents,
            "items": [line.to_dict() for line in self.lines],
        }


class RefundLine(db.Model):
    __tablename__ = "refund_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_refund_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
