# Overview: Customer directory (CRM) reads and writes.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import CustomerNotFoundError
from ..extensions import db
from ..models import Customer
from .concurrency import run_with_retry


CUSTOMER_LIST_LIMIT = 200

CUSTOMER_MUTABLE_FIELDS = {"name", "phone", "email", "address", "notes"}


def _apply_customer_patch(customer: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_MUTABLE_FIELDS:
            continue
        # Blank optional contact fields are stored as NULL
        if k != "name" and v == "":
            v = None
        setattr(customer, k, v)


def get_customer_name(customer_id) -> str | None:
    """Current name of a customer, or None when the id is unknown."""
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    return customer.name if customer else None


def list_customers(search: str | None = None) -> list[dict]:
    query = db.session.query(Customer)
    q = (search or "").strip()
    if q:
        pattern = f"%{q}%"
        query = query.filter(
            or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern), Customer.email.ilike(pattern))
        )
    rows = (
        query.order_by(Customer.created_at.desc(), Customer.id.desc())
        .limit(CUSTOMER_LIST_LIMIT)
        .all()
    )
    return [c.to_dict() for c in rows]


def create_customer(*, patch: dict) -> dict:
    def _op() -> dict:
        customer = Customer()
        _apply_customer_patch(customer, patch)
        db.session.add(customer)
        db.session.commit()
        return customer.to_dict()

    return run_with_retry(_op)


def update_customer(customer_id: int, *, patch: dict) -> dict:
    """
    Edits the directory entry only. Past sales keep the name they were
    recorded with.
    """
    def _op() -> dict:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        _apply_customer_patch(customer, patch)
        db.session.commit()
        return customer.to_dict()

    return run_with_retry(_op)
