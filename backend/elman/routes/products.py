# Overview: Flask API routes for the product catalog and stock adjustments.

"""
Product management routes.

SECURITY: All routes require authentication.
- Listing is open to owner and cashier (the POS needs the catalog)
- Everything else is owner-only
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models import Product
from ..models.auth import ROLE_CASHIER, ROLE_OWNER
from ..services import audit_service, inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "price_cents", "unit_cost_cents", "stock", "low_stock_threshold"},
    required_on_create={"name", "category", "price_cents"},
)

# No stock: it only moves through restock, decrease, sales and refunds
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "price_cents", "unit_cost_cents", "low_stock_threshold"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def list_products_route():
    """
    Query params:
    - include_archived: "1"/"true" to include archived products
    - search: matches name, SKU or category
    """
    include_archived = (request.args.get("include_archived") or "").lower() in ("1", "true", "yes")
    return jsonify(inventory_service.list_products(
        include_archived=include_archived,
        search=request.args.get("search"),
    ))


@products_bp.post("")
@require_auth
@require_role(ROLE_OWNER)
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        created = inventory_service.create_product(patch=patch)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("product.create", "product", created["id"], meta=payload)
    return jsonify(created), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_OWNER)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = inventory_service.update_product(product_id, patch=patch)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("product.update", "product", product_id, meta=payload)
    return jsonify(updated)


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_OWNER)
def archive_product_route(product_id: int):
    """Archives rather than deletes; sales and the inventory log keep referencing the row."""
    try:
        archived = inventory_service.archive_product(product_id)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to archive product")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("product.archive", "product", product_id)
    return jsonify({"ok": True, "product": archived})


@products_bp.post("/<int:product_id>/restock")
@require_auth
@require_role(ROLE_OWNER)
def restock_route(product_id: int):
    """Request body: {"qty": 5, "reason": "Supplier delivery"}"""
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.restock(product_id, data.get("qty"), data.get("reason"))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock product")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("product.restock", "product", product_id,
                         meta={"qty": data.get("qty"), "reason": data.get("reason")})
    return jsonify({"ok": True, "product": product})


@products_bp.post("/<int:product_id>/decrease")
@require_auth
@require_role(ROLE_OWNER)
def decrease_route(product_id: int):
    """Request body: {"qty": 2, "reason": "Damaged"}"""
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.decrease_stock(product_id, data.get("qty"), data.get("reason"))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to decrease stock")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("product.decrease", "product", product_id,
                         meta={"qty": data.get("qty"), "reason": data.get("reason")})
    return jsonify({"ok": True, "product": product})


@products_bp.get("/<int:product_id>/history")
@require_auth
@require_role(ROLE_OWNER)
def stock_history_route(product_id: int):
    try:
        return jsonify(inventory_service.product_stock_history(product_id))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
