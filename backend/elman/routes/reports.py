# Overview: Flask API routes for owner reports.

from flask import Blueprint, Response, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import DomainError
from ..models.auth import ROLE_OWNER
from ..services import pdf_service, reporting_service

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _period_report(report_fn):
    period = request.args.get("period") or "daily"
    try:
        return jsonify(report_fn(period))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@reports_bp.get("/sales")
@require_auth
@require_role(ROLE_OWNER)
def sales_report_route():
    """Query params: period = daily | weekly | monthly (default daily)."""
    return _period_report(reporting_service.sales_report)


@reports_bp.get("/profit")
@require_auth
@require_role(ROLE_OWNER)
def profit_report_route():
    return _period_report(reporting_service.profit_report)


@reports_bp.get("/top-products")
@require_auth
@require_role(ROLE_OWNER)
def top_products_route():
    return _period_report(reporting_service.top_products_report)


@reports_bp.get("/customer-insights")
@require_auth
@require_role(ROLE_OWNER)
def customer_insights_route():
    return _period_report(reporting_service.customer_insights_report)


@reports_bp.get("/low-stock")
@require_auth
@require_role(ROLE_OWNER)
def low_stock_route():
    return jsonify(reporting_service.low_stock_report())


@reports_bp.get("/inventory")
@require_auth
@require_role(ROLE_OWNER)
def inventory_summary_route():
    return jsonify(reporting_service.inventory_summary())


@reports_bp.get("/inventory/pdf")
@require_auth(allow_query_token=True)
@require_role(ROLE_OWNER)
def inventory_pdf_route():
    pdf_bytes = pdf_service.render_inventory_history(reporting_service.inventory_summary())
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": 'inline; filename="inventory-history.pdf"'},
    )
