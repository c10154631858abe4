"""
Sales Service - cart validation, pricing and atomic sale commit

WHY: A sale is the only path that removes stock for revenue. It must never
oversell, and it must never leave a sale without its stock movements (or the
reverse). Everything below runs as one DB transaction inside run_with_retry.

Flow:
1. parse_sale_request(): shape checks only, no DB access.
2. price_cart(): point-in-time catalog read; existence, archived flag, stock.
3. commit: insert Sale + lines, guarded stock decrement per line, SALE log
   entry per line, commit once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateReceiptError,
    InsufficientStockError,
    ProductArchivedError,
    ProductNotFoundError,
    SaleNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, Sale, SaleLine
from ..models.inventory import INVENTORY_CHANGE_SALE
from ..models.sales import PAYMENT_METHODS
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    MAX_MONEY_CENTS,
    coerce_int,
    money_cents,
    optional_bool,
    optional_string,
    parse_datetime_field,
    require_choice,
    require_item_list,
    require_positive_int,
    require_string,
)
from .concurrency import begin_write, run_with_retry
from .customer_service import get_customer_name
from .document_service import make_receipt_ref
from .inventory_service import append_inventory_log, decrement_stock_guarded


logger = logging.getLogger(__name__)

RECEIPT_ATTEMPTS = 5
SALES_HISTORY_LIMIT = 200


@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass(frozen=True)
class SaleRequest:
    cashier: str
    payment_method: str
    items: tuple[CartItem, ...]
    discount_cents: int = 0
    customer_id: int | None = None
    customer: str | None = None
    sale_date: datetime | None = None
    unpaid: bool = False


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[PricedLine, ...]
    subtotal_cents: int
    discount_cents: int
    total_cents: int


# =============================================================================
# VALIDATION + PRICING
# =============================================================================

def parse_sale_request(payload: dict) -> SaleRequest:
    """Reject malformed input before any database work."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    items = []
    for index, raw in enumerate(require_item_list(payload)):
        unit_price = raw.get("unit_price_cents")
        items.append(CartItem(
            product_id=coerce_int(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=require_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
            unit_price_cents=(
                money_cents(unit_price, f"items[{index}].unit_price_cents")
                if unit_price is not None else None
            ),
        ))

    discount = payload.get("discount_cents")
    customer_id = payload.get("customer_id")
    sale_date = payload.get("sale_date")

    return SaleRequest(
        cashier=require_string(payload, "cashier", max_length=120),
        payment_method=require_choice(payload.get("payment_method"), "payment_method", PAYMENT_METHODS),
        items=tuple(items),
        discount_cents=money_cents(discount, "discount_cents") if discount is not None else 0,
        customer_id=coerce_int(customer_id, "customer_id") if customer_id not in (None, "") else None,
        customer=optional_string(payload, "customer"),
        sale_date=parse_datetime_field(sale_date, "sale_date") if sale_date else None,
        unpaid=optional_bool(payload, "unpaid", default=False),
    )


def price_cart(items, discount_cents: int = 0) -> PricedCart:
    """
    Resolve each cart item against the catalog and compute totals.

    Unit price is the override when given, else the catalog price now.
    total = max(0, subtotal - discount); a discount above the subtotal floors at 0.
    The subtotal may not exceed MAX_MONEY_CENTS.

    Quantities are checked per product across the whole cart. This is a
    point-in-time read; the commit re-guards stock in the UPDATE itself.
    """
    requested: dict[int, int] = {}
    lines: list[PricedLine] = []
    subtotal = 0

    for item in items:
        product = db.session.get(Product, item.product_id)
        if product is None:
            raise ProductNotFoundError(item.product_id)
        if product.is_archived:
            raise ProductArchivedError(product.id, product.name)

        requested[product.id] = requested.get(product.id, 0) + item.quantity
        if requested[product.id] > product.stock:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}. Available: {product.stock}",
                product_id=product.id,
                requested=requested[product.id],
                available=product.stock,
            )

        unit_price = item.unit_price_cents if item.unit_price_cents is not None else product.price_cents
        line_total = unit_price * item.quantity
        subtotal += line_total
        if subtotal > MAX_MONEY_CENTS:
            raise ValidationError(f"Sale total cannot exceed {MAX_MONEY_CENTS} ({MAX_MONEY_CENTS / 100:,.2f})")
        lines.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            quantity=item.quantity,
            unit_price_cents=unit_price,
            line_total_cents=line_total,
        ))

    return PricedCart(
        lines=tuple(lines),
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        total_cents=max(0, subtotal - discount_cents),
    )


# =============================================================================
# COMMIT
# =============================================================================

def _insert_sale_header(request: SaleRequest, cart: PricedCart, customer_name: str | None,
                        customer_id: int | None) -> Sale:
    """
    Insert the Sale row under a fresh receipt reference.

    Each attempt runs in a SAVEPOINT so a unique-constraint collision only
    discards that attempt, not the surrounding transaction (and its write lock).
    """
    sale_date = request.sale_date or utcnow()
    receipt_ref = None
    for attempt in range(RECEIPT_ATTEMPTS):
        receipt_ref = make_receipt_ref()
        sale = Sale(
            receipt_ref=receipt_ref,
            sale_date=sale_date,
            cashier=request.cashier,
            customer=customer_name,
            customer_id=customer_id,
            payment_method=request.payment_method,
            subtotal_cents=cart.subtotal_cents,
            discount_cents=cart.discount_cents,
            total_cents=cart.total_cents,
            unpaid=request.unpaid,
            refunded_total_cents=0,
            fully_refunded=False,
        )
        try:
            with db.session.begin_nested():
                db.session.add(sale)
                db.session.flush()
        except IntegrityError:
            logger.warning("Receipt reference collision on %s (attempt %d/%d)",
                           receipt_ref, attempt + 1, RECEIPT_ATTEMPTS)
            continue
        return sale
    raise DuplicateReceiptError(receipt_ref)


def create_sale(payload: dict) -> dict:
    """
    Validate, price and commit a sale atomically.

    Raises ValidationError, ProductNotFoundError, ProductArchivedError,
    InsufficientStockError, DuplicateReceiptError or TransientStoreError.
    On any of them nothing is persisted.
    """
    request = parse_sale_request(payload)

    def _op() -> dict:
        begin_write()
        cart = price_cart(request.items, request.discount_cents)

        # Unknown customer_id falls back to the free-text name
        customer_name = get_customer_name(request.customer_id)
        customer_id = request.customer_id if customer_name is not None else None
        if customer_name is None:
            customer_name = request.customer

        sale = _insert_sale_header(request, cart, customer_name, customer_id)

        for number, line in enumerate(cart.lines, start=1):
            db.session.add(SaleLine(
                sale_id=sale.id,
                line_number=number,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        for line in cart.lines:
            product = decrement_stock_guarded(
                line.product_id,
                line.quantity,
                insufficient_message="Insufficient stock for {name}. Available: {available}",
            )
            append_inventory_log(
                product=product,
                change_type=INVENTORY_CHANGE_SALE,
                qty_change=-line.quantity,
                reason=f"Sale {sale.receipt_ref}",
            )

        db.session.commit()
        return {
            "sale_id": sale.id,
            "receipt_ref": sale.receipt_ref,
            "subtotal_cents": sale.subtotal_cents,
            "discount_cents": sale.discount_cents,
            "total_cents": sale.total_cents,
            "sale_date": to_utc_z(sale.sale_date),
        }

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def find_sale(receipt_ref: str) -> Sale | None:
    return db.session.query(Sale).filter(Sale.receipt_ref == receipt_ref).first()


def get_sale_by_receipt(receipt_ref: str) -> dict:
    """Full sale with lines and every refund recorded against it."""
    sale = find_sale(receipt_ref)
    if sale is None:
        raise SaleNotFoundError(receipt_ref)
    data = sale.to_dict()
    data["refunds"] = [refund.to_dict() for refund in sale.refunds]
    return data


def get_sales_history(search: str | None = None, limit: int = SALES_HISTORY_LIMIT) -> list[dict]:
    """Newest first; search matches receipt reference or customer name."""
    query = db.session.query(Sale)
    q = (search or "").strip()
    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(Sale.receipt_ref.ilike(pattern), Sale.customer.ilike(pattern)))
    rows = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).limit(limit).all()
    return [sale.summary_dict() for sale in rows]
