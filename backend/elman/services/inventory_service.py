# Overview: Product catalog and stock mutation; every stock change lands in the inventory log.

"""
Elman Inventory Invariants (authoritative)

Stock model:
- Product.stock is a materialized counter in [0, MAX_QUANTITY] (CHECK constraints).
- It changes only through single-statement updates issued here:
    guarded decrement: UPDATE ... SET stock = stock - q WHERE id = ? AND stock >= q
    increment:         UPDATE ... SET stock = stock + q WHERE id = ? AND stock <= MAX_QUANTITY - q
- Catalog create/update never write stock, except the initial stock at creation.

Ledger:
- Each stock change appends exactly one InventoryLog row with the same signed delta,
  in the same DB transaction.
- For every product: SUM(InventoryLog.qty_change) == Product.stock.
  The initial stock is logged as RESTOCK "Initial stock" so the sum starts at zero.
"""

from __future__ import annotations

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InsufficientStockError, ProductNotFoundError
from ..extensions import db
from ..models import InventoryLog, Product
from ..models.inventory import (
    INVENTORY_CHANGE_ADJUSTMENT,
    INVENTORY_CHANGE_RESTOCK,
)
from ..validation import MAX_QUANTITY, require_positive_int
from .concurrency import begin_write, run_with_retry


DEFAULT_RESTOCK_REASON = "Restock"
DEFAULT_DECREASE_REASON = "Stock adjustment"
INITIAL_STOCK_REASON = "Initial stock"

STOCK_HISTORY_LIMIT = 200

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "category",
    "price_cents",
    "unit_cost_cents",
    "low_stock_threshold",
}


# =============================================================================
# READS
# =============================================================================

def get_product(product_id: int) -> Product | None:
    """Point-in-time catalog read. None when the product does not exist."""
    return db.session.get(Product, product_id)


def require_product(product_id: int) -> Product:
    product = get_product(product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def list_products(*, include_archived: bool = False, search: str | None = None) -> list[dict]:
    query = db.session.query(Product)
    if not include_archived:
        query = query.filter(Product.is_archived.is_(False))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.category.ilike(pattern))
        )
    products = query.order_by(Product.name.asc(), Product.id.asc()).all()
    return [p.to_dict() for p in products]


def product_stock_history(product_id: int, limit: int = STOCK_HISTORY_LIMIT) -> list[dict]:
    require_product(product_id)
    rows = (
        db.session.query(InventoryLog)
        .filter(InventoryLog.product_id == product_id)
        .order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .limit(limit)
        .all()
    )
    return [row.to_dict() for row in rows]


def ledger_stock_total(product_id: int) -> int:
    """SUM(qty_change) for one product. Equals Product.stock when the ledger is consistent."""
    total = (
        db.session.query(func.coalesce(func.sum(InventoryLog.qty_change), 0))
        .filter(InventoryLog.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# LEDGER + GUARDED STOCK UPDATES (caller owns the transaction)
# =============================================================================

def append_inventory_log(*, product: Product, change_type: str, qty_change: int, reason: str) -> InventoryLog:
    """Append one ledger row. Does not commit."""
    entry = InventoryLog(
        product_id=product.id,
        product_name=product.name,
        change_type=change_type,
        qty_change=qty_change,
        reason=reason,
    )
    db.session.add(entry)
    return entry


def decrement_stock_guarded(product_id: int, qty: int, *, insufficient_message: str) -> Product:
    """
    Atomically remove qty from stock, or fail without touching it.

    CRITICAL: The stock check and the write are one statement, so two
    concurrent callers can never both pass the check on the same units.

    When no row matches, the product is re-read to tell "gone" from "not
    enough". insufficient_message may contain {name} and {available}.
    Does not commit.
    """
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= qty)
        .values(stock=Product.stock - qty)
        .execution_options(synchronize_session=False)
    )
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFoundError(product_id)
    if result.rowcount != 1:
        raise InsufficientStockError(
            insufficient_message.format(name=product.name, available=product.stock),
            product_id=product_id,
            requested=qty,
            available=product.stock,
        )
    return product


def increment_stock(product_id: int, qty: int) -> Product:
    """Atomically add qty to stock, up to MAX_QUANTITY. Does not commit."""
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock <= MAX_QUANTITY - qty)
        .values(stock=Product.stock + qty)
        .execution_options(synchronize_session=False)
    )
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFoundError(product_id)
    if result.rowcount != 1:
        raise ConflictError(
            f"Stock for {product.name} cannot exceed {MAX_QUANTITY}",
            details={"product_id": product_id, "requested": qty, "available": product.stock},
        )
    return product


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def restock(product_id: int, qty, reason: str | None = None) -> dict:
    """Add stock and log a RESTOCK entry."""
    qty = require_positive_int(qty, "qty")
    reason = (reason or "").strip() or DEFAULT_RESTOCK_REASON

    def _op() -> dict:
        begin_write()
        product = increment_stock(product_id, qty)
        append_inventory_log(
            product=product,
            change_type=INVENTORY_CHANGE_RESTOCK,
            qty_change=qty,
            reason=reason,
        )
        db.session.commit()
        return product.to_dict()

    return run_with_retry(_op)


def decrease_stock(product_id: int, qty, reason: str | None = None) -> dict:
    """Remove stock (damage, shrinkage, counting error) and log an ADJUSTMENT entry."""
    qty = require_positive_int(qty, "qty")
    reason = (reason or "").strip() or DEFAULT_DECREASE_REASON

    def _op() -> dict:
        begin_write()
        product = decrement_stock_guarded(
            product_id,
            qty,
            insufficient_message="Insufficient stock to remove that quantity. Available: {available}",
        )
        append_inventory_log(
            product=product,
            change_type=INVENTORY_CHANGE_ADJUSTMENT,
            qty_change=-qty,
            reason=reason,
        )
        db.session.commit()
        return product.to_dict()

    return run_with_retry(_op)


# =============================================================================
# CATALOG
# =============================================================================

def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        if k == "sku" and not v:
            v = None
        setattr(p, k, v)


def _ensure_sku_free(sku: str | None, *, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("SKU already exists.", details={"sku": sku})


def create_product(*, patch: dict) -> dict:
    """
    Create a catalog entry from a validated patch.

    Initial stock is the one place stock is set directly; it is logged as
    RESTOCK "Initial stock" in the same transaction.
    """
    initial_stock = int(patch.get("stock") or 0)

    def _op() -> dict:
        _ensure_sku_free(patch.get("sku"))

        p = Product(stock=initial_stock)
        apply_product_patch(p, patch)
        db.session.add(p)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError("SKU already exists.", details={"sku": patch.get("sku")}) from exc

        if initial_stock > 0:
            append_inventory_log(
                product=p,
                change_type=INVENTORY_CHANGE_RESTOCK,
                qty_change=initial_stock,
                reason=INITIAL_STOCK_REASON,
            )

        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def update_product(product_id: int, *, patch: dict) -> dict:
    """Update catalog fields. Stock is not in PRODUCT_MUTABLE_FIELDS."""
    def _op() -> dict:
        p = require_product(product_id)
        if "sku" in patch:
            _ensure_sku_free(patch["sku"], exclude_id=p.id)
        apply_product_patch(p, patch)
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def archive_product(product_id: int) -> dict:
    """
    Soft-delete: archived products stay readable (history, reports, refunds)
    but can no longer be sold.
    """
    def _op() -> dict:
        p = require_product(product_id)
        p.is_archived = True
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)
