from __future__ import annotations

from ..extensions import db
from elman.time_utils import to_utc_z, utcnow


EXPENSE_CATEGORIES = (
    "Inventory Purchase",
    "Vendor Bill",
    "Electricity",
    "Rent",
    "Other",
)


class Expense(db.Model):
    """
    Shop expense. Either itemized (total = sum of lines) or a flat amount
    such as a utility bill (no lines).
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_date", "expense_date"),
        db.Index("ix_expenses_category", "category"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_expenses_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    category = db.Column(db.String(32), nullable=False)
    vendor = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    lines = db.relationship("ExpenseLine", backref="expense", order_by="ExpenseLine.id", lazy=True)

    def summary_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_date": to_utc_z(self.expense_date),
            "category": self.category,
            "vendor": self.vendor,
            "notes": self.notes,
            "total_amount_cents": self.total_amount_cents,
            "items_count": len(self.lines),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_date": to_utc_z(self.expense_date),
            "category": self.category,
            "vendor": self.vendor,
            "notes": self.notes,
            "total_amount_cents": self.total_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "items": [line.to_dict() for line in self.lines],
        }


class ExpenseLine(db.Model):
    __tablename__ = "expense_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    # Fractional quantities allowed (e.g., 2.5 kg)
    quantity = db.Column(db.Float, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
