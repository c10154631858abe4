# Overview: Read-only report projections over sales, refunds, expenses, products and the inventory log.

from __future__ import annotations

import math
from collections import OrderedDict
from datetime import datetime, timedelta

from sqlalchemy import BigInteger, case, cast, func

from elman.errors import ValidationError
from elman.extensions import db
from elman.models import Expense, InventoryLog, Product, Refund, Sale, SaleLine
from elman.time_utils import day_key, start_of_day, to_utc_z, utcnow


REPORT_PERIODS = ("daily", "weekly", "monthly")
NO_CUSTOMER = "(No customer)"

SALES_REPORT_BEST_LIMIT = 10
TOP_PRODUCTS_LIMIT = 20
CUSTOMER_INSIGHTS_LIMIT = 20
INVENTORY_HISTORY_LIMIT = 50


def period_start(period: str, now: datetime | None = None) -> datetime:
    """
    daily   -> today 00:00 UTC
    weekly  -> now - 7 days
    monthly -> first day of the current month, 00:00 UTC
    """
    if period not in REPORT_PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(REPORT_PERIODS)}")
    now = now or utcnow()
    if period == "daily":
        return start_of_day(now)
    if period == "weekly":
        return now - timedelta(days=7)
    return start_of_day(now.replace(day=1))


def _gross_profit_expr():
    # Current unit cost; products removed from the catalog count as zero cost
    unit_cost = func.coalesce(Product.unit_cost_cents, 0)
    return (SaleLine.unit_price_cents - unit_cost) * SaleLine.quantity


def sales_report(period: str) -> dict:
    start = period_start(period)

    transactions, revenue = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(Sale.sale_date >= start).one()

    total_sold = func.sum(SaleLine.quantity).label("total_sold")
    best = (
        db.session.query(
            SaleLine.product_name,
            total_sold,
            func.coalesce(func.sum(SaleLine.line_total_cents), 0).label("revenue_cents"),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(Sale.sale_date >= start)
        .group_by(SaleLine.product_name)
        .order_by(total_sold.desc(), SaleLine.product_name.asc())
        .limit(SALES_REPORT_BEST_LIMIT)
        .all()
    )

    return {
        "period": period,
        "start": to_utc_z(start),
        "totals": {"transactions": int(transactions), "revenue_cents": int(revenue)},
        "best": [
            {
                "product_name": row.product_name,
                "total_sold": int(row.total_sold or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in best
        ],
    }


def profit_report(period: str) -> dict:
    """
    Revenue, refunds, expenses and estimated gross profit, in total and per day.

    gross profit = SUM((sold unit price - current unit cost) * qty)
    net profit          = revenue - expenses
    net after refunds   = net profit - refunds
    """
    start = period_start(period)

    days: "OrderedDict[str, dict]" = OrderedDict()

    def _day(key: str) -> dict:
        if key not in days:
            days[key] = {
                "day": key,
                "revenue_cents": 0,
                "transactions": 0,
                "refunds_cents": 0,
                "expenses_cents": 0,
                "gross_profit_cents": 0,
            }
        return days[key]

    for sale_date, total in db.session.query(Sale.sale_date, Sale.total_cents).filter(Sale.sale_date >= start):
        bucket = _day(day_key(sale_date))
        bucket["revenue_cents"] += total
        bucket["transactions"] += 1

    gross_rows = (
        db.session.query(Sale.sale_date, _gross_profit_expr())
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .outerjoin(Product, Product.id == SaleLine.product_id)
        .filter(Sale.sale_date >= start)
    )
    for sale_date, gross in gross_rows:
        _day(day_key(sale_date))["gross_profit_cents"] += int(gross or 0)

    for refund_date, amount in db.session.query(Refund.refund_date, Refund.total_refund_cents).filter(
        Refund.refund_date >= start
    ):
        _day(day_key(refund_date))["refunds_cents"] += amount

    for expense_date, amount in db.session.query(Expense.expense_date, Expense.total_amount_cents).filter(
        Expense.expense_date >= start
    ):
        _day(day_key(expense_date))["expenses_cents"] += amount

    series = []
    totals = {
        "revenue_cents": 0,
        "transactions": 0,
        "refunds_cents": 0,
        "expenses_cents": 0,
        "gross_profit_cents": 0,
    }
    for key in sorted(days):
        bucket = days[key]
        bucket["net_profit_cents"] = bucket["revenue_cents"] - bucket["expenses_cents"]
        bucket["net_after_refunds_cents"] = bucket["net_profit_cents"] - bucket["refunds_cents"]
        series.append(bucket)
        for field in totals:
            totals[field] += bucket[field]
    totals["net_profit_cents"] = totals["revenue_cents"] - totals["expenses_cents"]
    totals["net_after_refunds_cents"] = totals["net_profit_cents"] - totals["refunds_cents"]

    return {"period": period, "start": to_utc_z(start), "totals": totals, "series": series}


def top_products_report(period: str) -> dict:
    start = period_start(period)

    qty_sold = func.sum(SaleLine.quantity).label("qty_sold")
    rows = (
        db.session.query(
            SaleLine.product_id,
            func.max(SaleLine.product_name).label("product_name"),
            qty_sold,
            func.sum(SaleLine.line_total_cents).label("revenue_cents"),
            func.sum(_gross_profit_expr()).label("profit_cents"),
        )
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .outerjoin(Product, Product.id == SaleLine.product_id)
        .filter(Sale.sale_date >= start)
        .group_by(SaleLine.product_id)
        .order_by(qty_sold.desc(), SaleLine.product_id.asc())
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )

    return {
        "period": period,
        "start": to_utc_z(start),
        "rows": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "qty_sold": int(row.qty_sold or 0),
                "revenue_cents": int(row.revenue_cents or 0),
                "profit_cents": int(row.profit_cents or 0),
            }
            for row in rows
        ],
    }


def customer_insights_report(period: str) -> dict:
    now = utcnow()
    start = period_start(period, now)
    days = max(1, math.ceil((now - start).total_seconds() / 86400))

    revenue = func.sum(Sale.total_cents).label("revenue_cents")
    rows = (
        db.session.query(
            Sale.customer,
            func.count(Sale.id).label("transactions"),
            revenue,
            func.sum(case((Sale.unpaid.is_(True), Sale.total_cents), else_=0)).label("unpaid_total_cents"),
            func.max(Sale.sale_date).label("last_purchase"),
        )
        .filter(Sale.sale_date >= start)
        .group_by(Sale.customer)
        .order_by(revenue.desc())
        .limit(CUSTOMER_INSIGHTS_LIMIT)
        .all()
    )

    return {
        "period": period,
        "start": to_utc_z(start),
        "days": days,
        "rows": [
            {
                "customer": row.customer or NO_CUSTOMER,
                "transactions": int(row.transactions),
                "revenue_cents": int(row.revenue_cents or 0),
                "unpaid_total_cents": int(row.unpaid_total_cents or 0),
                "last_purchase": to_utc_z(row.last_purchase),
                "purchase_frequency_per_day": round(int(row.transactions) / days, 3),
            }
            for row in rows
        ],
    }


def suggested_restock(stock: int, threshold: int) -> int:
    target = max(threshold * 3, threshold + 10, 10)
    return max(0, target - stock)


def low_stock_report() -> dict:
    products = (
        db.session.query(Product)
        .filter(Product.is_archived.is_(False), Product.stock <= Product.low_stock_threshold)
        .all()
    )
    rows = [
        {
            "id": p.id,
            "name": p.name,
            "category": p.category,
            "sku": p.sku,
            "price_cents": p.price_cents,
            "unit_cost_cents": p.unit_cost_cents,
            "stock": p.stock,
            "low_stock_threshold": p.low_stock_threshold,
            "suggested_restock": suggested_restock(p.stock, p.low_stock_threshold),
        }
        for p in products
    ]
    rows.sort(key=lambda r: (r["stock"] - r["low_stock_threshold"], r["name"]))
    return {"total_low_stock": len(rows), "rows": rows}


def inventory_summary() -> dict:
    total_products, low_stock_items, total_value = db.session.query(
        func.count(Product.id),
        func.coalesce(func.sum(case((Product.stock <= Product.low_stock_threshold, 1), else_=0)), 0),
        func.coalesce(func.sum(cast(Product.stock, BigInteger) * Product.price_cents), 0),
    ).filter(Product.is_archived.is_(False)).one()

    history = (
        db.session.query(InventoryLog)
        .order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .limit(INVENTORY_HISTORY_LIMIT)
        .all()
    )

    return {
        "totals": {
            "total_products": int(total_products),
            "low_stock_items": int(low_stock_items),
            "total_inventory_value_cents": int(total_value),
        },
        "history": [entry.to_dict() for entry in history],
    }
