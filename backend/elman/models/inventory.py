from __future__ import annotations

from ..extensions import db
from elman.time_utils import to_utc_z, utcnow
from elman.validation import MAX_QUANTITY


INVENTORY_CHANGE_SALE = "SALE"
INVENTORY_CHANGE_RESTOCK = "RESTOCK"
INVENTORY_CHANGE_ADJUSTMENT = "ADJUSTMENT"
INVENTORY_CHANGE_REFUND = "REFUND"

INVENTORY_CHANGE_TYPES = (
    INVENTORY_CHANGE_SALE,
    INVENTORY_CHANGE_RESTOCK,
    INVENTORY_CHANGE_ADJUSTMENT,
    INVENTORY_CHANGE_REFUND,
)


class Product(db.Model):
    """
    Product catalog entry.

    STOCK: `stock` is a materialized counter. It is never written by catalog
    create/update; only the guarded updates in inventory_service change it, and
    each change appends an InventoryLog row with the same signed delta.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint(f"stock <= {MAX_QUANTITY}", name="ck_products_stock_max"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("unit_cost_cents >= 0", name="ck_products_cost_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "stock": self.stock,
            "low_stock_threshold": self.low_stock_threshold,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Append-only stock movement log.

    Never updated or deleted. product_name is a snapshot taken at write time.
    For every product, SUM(qty_change) equals Product.stock.
    """
    __tablename__ = "inventory_log"
    __table_args__ = (
        db.Index("ix_inventory_log_created", "created_at"),
        db.Index("ix_inventory_log_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    # SALE, RESTOCK, ADJUSTMENT, REFUND
    change_type = db.Column(db.String(16), nullable=False)
    qty_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("inventory_log", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "change_type": self.change_type,
            "qty_change": self.qty_change,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
