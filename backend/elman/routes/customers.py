# Overview: Flask API routes for the customer directory.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models import Customer
from ..models.auth import ROLE_CASHIER, ROLE_OWNER
from ..services import audit_service, customer_service
from ..validation import ModelValidationPolicy, enforce_rules_customer, validate_payload

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address", "notes"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def list_customers_route():
    """Query params: search (name, phone or email)."""
    return jsonify(customer_service.list_customers(request.args.get("search")))


@customers_bp.post("")
@require_auth
@require_role(ROLE_OWNER)
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        created = customer_service.create_customer(patch=patch)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("customer.create", "customer", created["id"], meta={"name": created["name"]})
    return jsonify(created), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_role(ROLE_OWNER)
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        updated = customer_service.update_customer(customer_id, patch=patch)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("customer.update", "customer", customer_id, meta=payload)
    return jsonify(updated)
