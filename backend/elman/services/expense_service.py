# Overview: Shop expenses (itemized purchases or flat bills), consumed by the profit report.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import or_

from ..errors import ExpenseNotFoundError, ValidationError
from ..extensions import db
from ..models import Expense, ExpenseLine
from ..models.expenses import EXPENSE_CATEGORIES
from ..validation import (
    MAX_MONEY_CENTS,
    money_cents,
    optional_string,
    parse_datetime_field,
    require_choice,
    require_string,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry


EXPENSE_LIST_LIMIT = 300


def _parse_quantity(value, field: str) -> Decimal:
    """Fractional quantities are allowed (2.5 kg); must be > 0."""
    if value is None:
        return Decimal(1)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        qty = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not qty.is_finite() or qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    return qty


def _line_total_cents(quantity: Decimal, unit_price_cents: int) -> int:
    return int((quantity * unit_price_cents).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _parse_lines(payload: dict) -> list[dict]:
    raw_items = payload.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        quantity = _parse_quantity(raw.get("quantity"), f"items[{index}].quantity")
        unit_price = raw.get("unit_price_cents")
        unit_price_cents = money_cents(unit_price, f"items[{index}].unit_price_cents") if unit_price is not None else 0
        lines.append({
            "item_name": require_string(raw, "item_name"),
            "quantity": float(quantity),
            "unit_price_cents": unit_price_cents,
            "line_total_cents": _line_total_cents(quantity, unit_price_cents),
        })
    return lines


def create_expense(payload: dict) -> dict:
    """
    Record an expense.

    amount_cents, when given, is the total and overrides the item sum
    (utility bills usually have no items). Without it, at least one item
    is required.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    category = require_choice(payload.get("category"), "category", EXPENSE_CATEGORIES)
    lines = _parse_lines(payload)

    amount = payload.get("amount_cents")
    if amount is None and not lines:
        raise ValidationError("Please add items or enter an amount")
    if amount is not None:
        total = money_cents(amount, "amount_cents")
    else:
        total = sum(line["line_total_cents"] for line in lines)
        if total > MAX_MONEY_CENTS:
            raise ValidationError("Invalid total amount")

    expense_date = payload.get("expense_date")
    expense_date = parse_datetime_field(expense_date, "expense_date") if expense_date else utcnow()

    def _op() -> dict:
        expense = Expense(
            expense_date=expense_date,
            category=category,
            vendor=optional_string(payload, "vendor"),
            notes=optional_string(payload, "notes", max_length=2000),
            total_amount_cents=total,
        )
        db.session.add(expense)
        db.session.flush()
        for line in lines:
            db.session.add(ExpenseLine(expense_id=expense.id, **line))
        db.session.commit()
        return expense.to_dict()

    return run_with_retry(_op)


def list_expenses(search: str | None = None) -> list[dict]:
    query = db.session.query(Expense)
    q = (search or "").strip()
    if q:
        pattern = f"%{q}%"
        query = query.filter(
            or_(Expense.category.ilike(pattern), Expense.vendor.ilike(pattern), Expense.notes.ilike(pattern))
        )
    rows = query.order_by(Expense.expense_date.desc(), Expense.id.desc()).limit(EXPENSE_LIST_LIMIT).all()
    return [e.summary_dict() for e in rows]


def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise ExpenseNotFoundError(expense_id)
    return expense
