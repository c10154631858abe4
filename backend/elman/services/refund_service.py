# Overview: Partial and full refunds against a recorded sale.

"""
Refund processing.

CRITICAL: Per product per sale, the quantities refunded across all refunds
never exceed the quantity sold. Reading the already-refunded totals and
writing the new refund happen under the per-sale lock (BEGIN IMMEDIATE on
SQLite, SELECT ... FOR UPDATE on the sale row elsewhere), so two concurrent
refunds of the same receipt cannot both pass the check.

Prices always come from the sale lines, never the current catalog.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..errors import (
    ItemNotOnSaleError,
    RefundExceedsAvailableError,
    SaleNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Refund, RefundLine, Sale
from ..models.inventory import INVENTORY_CHANGE_REFUND
from ..validation import coerce_int, optional_string, require_item_list, require_positive_int
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import append_inventory_log, increment_stock


DEFAULT_REFUND_CASHIER = "Main Cashier"
DEFAULT_REFUND_REASON = "Refund"


@dataclass(frozen=True)
class RefundItem:
    product_id: int
    quantity: int


def parse_refund_items(payload: dict) -> list[RefundItem]:
    """Validate request lines; repeated product ids are merged, first-seen order kept."""
    merged: dict[int, int] = {}
    for index, raw in enumerate(require_item_list(payload)):
        product_id = coerce_int(raw.get("product_id"), f"items[{index}].product_id")
        quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return [RefundItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def _refunded_quantities(sale_id: int) -> dict[int, int]:
    rows = (
        db.session.query(RefundLine.product_id, func.coalesce(func.sum(RefundLine.quantity), 0))
        .join(Refund, Refund.id == RefundLine.refund_id)
        .filter(Refund.sale_id == sale_id)
        .group_by(RefundLine.product_id)
        .all()
    )
    return {product_id: int(qty) for product_id, qty in rows}


def _allocate_to_sale_lines(sale_lines, already_refunded: int, quantity: int) -> list[tuple]:
    """
    Split a refund quantity over the sale lines of one product, in line order.

    Earlier refunds are assumed to have consumed the earliest lines first.
    Returns [(sale_line, qty), ...].
    """
    allocations = []
    skip = already_refunded
    remaining = quantity
    for line in sale_lines:
        available = line.quantity
        if skip:
            used = min(skip, available)
            skip -= used
            available -= used
        if available <= 0:
            continue
        take = min(available, remaining)
        allocations.append((line, take))
        remaining -= take
        if remaining == 0:
            break
    return allocations


def refund_sale(receipt_ref: str, payload: dict) -> dict:
    """
    Refund some or all items of a sale.

    Raises SaleNotFoundError, ItemNotOnSaleError, RefundExceedsAvailableError, ConflictError,
    ValidationError or TransientStoreError. On any of them nothing is persisted.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    items = parse_refund_items(payload)
    cashier = optional_string(payload, "cashier", max_length=120) or DEFAULT_REFUND_CASHIER
    reason = optional_string(payload, "reason") or DEFAULT_REFUND_REASON

    def _op() -> dict:
        begin_write()
        sale = lock_for_update(
            db.session.query(Sale).populate_existing().filter(Sale.receipt_ref == receipt_ref)
        ).first()
        if sale is None:
            raise SaleNotFoundError(receipt_ref)

        lines_by_product: dict[int, list] = {}
        for line in sale.lines:
            lines_by_product.setdefault(line.product_id, []).append(line)

        refunded = _refunded_quantities(sale.id)

        # Fail fast on the first violation, before any write
        plan = []
        for item in items:
            sale_lines = lines_by_product.get(item.product_id)
            if not sale_lines:
                raise ItemNotOnSaleError(item.product_id, receipt_ref)
            sold = sum(line.quantity for line in sale_lines)
            already = refunded.get(item.product_id, 0)
            refundable = sold - already
            if item.quantity > refundable:
                raise RefundExceedsAvailableError(
                    sale_lines[0].product_name,
                    product_id=item.product_id,
                    requested=item.quantity,
                    refundable=refundable,
                )
            plan.append((item, _allocate_to_sale_lines(sale_lines, already, item.quantity)))

        refund = Refund(
            sale_id=sale.id,
            receipt_ref=sale.receipt_ref,
            cashier=cashier,
            reason=reason,
            total_refund_cents=0,
        )
        db.session.add(refund)
        db.session.flush()

        total = 0
        for item, allocations in plan:
            for sale_line, qty in allocations:
                line_total = sale_line.unit_price_cents * qty
                total += line_total
                db.session.add(RefundLine(
                    refund_id=refund.id,
                    product_id=item.product_id,
                    product_name=sale_line.product_name,
                    quantity=qty,
                    unit_price_cents=sale_line.unit_price_cents,
                    line_total_cents=line_total,
                ))

            product = increment_stock(item.product_id, item.quantity)
            append_inventory_log(
                product=product,
                change_type=INVENTORY_CHANGE_REFUND,
                qty_change=item.quantity,
                reason=f"{reason} ({sale.receipt_ref})",
            )

        refund.total_refund_cents = total
        sale.refunded_total_cents = (sale.refunded_total_cents or 0) + total
        sale.fully_refunded = sale.refunded_total_cents >= sale.total_cents

        db.session.commit()
        return {
            "refund_id": refund.id,
            "receipt_ref": sale.receipt_ref,
            "total_refund_cents": total,
            "refunded_total_cents": sale.refunded_total_cents,
            "fully_refunded": sale.fully_refunded,
        }

    return run_with_retry(_op)
