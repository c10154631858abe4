# Overview: Flask API routes for sales, refunds and receipts.

"""
Sales API Routes

WHY: The POS screen posts a whole cart at once; the sale, its lines, the
stock decrements and the inventory log entries are committed together or not
at all (see sales_service.create_sale).

SECURITY:
- Owner and cashier may sell, look up receipts and refund
- Every sale and refund is written to the audit log
"""

from flask import Blueprint, Response, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models.auth import ROLE_CASHIER, ROLE_OWNER
from ..services import audit_service, pdf_service, refund_service, sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def create_sale_route():
    """
    Request body:
    {
        "cashier": "Amina",                          (optional, default: current user)
        "payment_method": "Cash" | "Zaad" | "Edahab",
        "items": [{"product_id": 1, "quantity": 3, "unit_price_cents": 500}],
        "discount_cents": 0,                          (optional)
        "customer_id": 4,                             (optional)
        "customer": "Walk-in name",                   (optional)
        "sale_date": "2026-01-18T10:00:00Z",          (optional)
        "unpaid": false                               (optional)
    }

    Returns:
        201: {sale_id, receipt_ref, subtotal_cents, discount_cents, total_cents, sale_date}
        400: Invalid input
        404: Product not found
        409: Archived product, insufficient stock, receipt collision
        503: Database busy; safe to retry
    """
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and not payload.get("cashier"):
        payload = {**payload, "cashier": g.current_user.username}

    try:
        result = sales_service.create_sale(payload)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("sale.create", "sale", result["receipt_ref"], meta={
        "total_cents": result["total_cents"],
        "items": len(payload.get("items") or []),
    })
    return jsonify(result), 201


@sales_bp.get("/history")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def sales_history_route():
    """Query params: search (receipt ref or customer name)."""
    return jsonify(sales_service.get_sales_history(
        request.args.get("search"),
        limit=current_app.config["SALES_HISTORY_LIMIT"],
    ))


@sales_bp.get("/<receipt_ref>")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def get_sale_route(receipt_ref: str):
    try:
        return jsonify(sales_service.get_sale_by_receipt(receipt_ref))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/<receipt_ref>/refund")
@require_auth
@require_role(ROLE_OWNER, ROLE_CASHIER)
def refund_sale_route(receipt_ref: str):
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "reason": "Damaged",                  (optional, default: "Refund")
        "cashier": "Amina"                    (optional, default: current user)
    }
    """
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and not payload.get("cashier"):
        payload = {**payload, "cashier": g.current_user.username}

    try:
        result = refund_service.refund_sale(receipt_ref, payload)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("sale.refund", "sale", receipt_ref, meta={
        "total_refund_cents": result["total_refund_cents"],
        "reason": payload.get("reason"),
    })
    return jsonify(result)


@sales_bp.get("/<receipt_ref>/pdf")
@require_auth(allow_query_token=True)
@require_role(ROLE_OWNER, ROLE_CASHIER)
def sale_pdf_route(receipt_ref: str):
    try:
        sale = sales_service.get_sale_by_receipt(receipt_ref)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code

    pdf_bytes = pdf_service.render_sale_receipt(sale)
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'inline; filename="receipt-{receipt_ref}.pdf"'},
    )
