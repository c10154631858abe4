# Overview: Flask API routes for shop expenses (owner only).

from flask import Blueprint, Response, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models.auth import ROLE_OWNER
from ..services import audit_service, expense_service, pdf_service

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
@require_auth
@require_role(ROLE_OWNER)
def list_expenses_route():
    """Query params: search (category, vendor or notes)."""
    return jsonify(expense_service.list_expenses(request.args.get("search")))


@expenses_bp.post("")
@require_auth
@require_role(ROLE_OWNER)
def create_expense_route():
    """
    Request body:
    {
        "category": "Inventory Purchase",
        "vendor": "Hargeisa Wholesale",       (optional)
        "notes": "...",                        (optional)
        "expense_date": "2026-01-18T09:00Z",   (optional, default: now)
        "amount_cents": 12000,                 (optional, overrides item sum)
        "items": [{"item_name": "Rice", "quantity": 2.5, "unit_price_cents": 400}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        created = expense_service.create_expense(payload)
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500

    audit_service.record("expense.create", "expense", created["id"], meta={
        "category": created["category"],
        "total_amount_cents": created["total_amount_cents"],
    })
    return jsonify(created), 201


@expenses_bp.get("/<int:expense_id>")
@require_auth
@require_role(ROLE_OWNER)
def get_expense_route(expense_id: int):
    try:
        return jsonify(expense_service.get_expense(expense_id).to_dict())
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@expenses_bp.get("/<int:expense_id>/pdf")
@require_auth(allow_query_token=True)
@require_role(ROLE_OWNER)
def expense_pdf_route(expense_id: int):
    try:
        expense = expense_service.get_expense(expense_id).to_dict()
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code

    pdf_bytes = pdf_service.render_expense_voucher(expense)
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'inline; filename="expense-{expense_id}.pdf"'},
    )
