"""
Report projection tests.
"""

from datetime import datetime

import pytest

from conftest import make_product
from elman.errors import ValidationError
from elman.services import (
    expense_service,
    inventory_service,
    refund_service,
    reporting_service,
    sales_service,
)


def _sell(product_id, quantity, **extra):
    payload = {
        "cashier": "Amina",
        "payment_method": "Zaad",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    payload.update(extra)
    return sales_service.create_sale(payload)


class TestPeriods:

    def test_period_starts(self):
        now = datetime(2026, 3, 18, 15, 30)
        assert reporting_service.period_start("daily", now) == datetime(2026, 3, 18)
        assert reporting_service.period_start("weekly", now) == datetime(2026, 3, 11, 15, 30)
        assert reporting_service.period_start("monthly", now) == datetime(2026, 3, 1)

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            reporting_service.period_start("yearly")


class TestReports:

    def test_sales_report(self, db_session):
        rice = make_product(name="Rice", price_cents=500, stock=20)
        oil = make_product(name="Oil", price_cents=300, stock=20)
        _sell(rice["id"], 3)
        _sell(oil["id"], 1)

        report = reporting_service.sales_report("daily")
        assert report["totals"] == {"transactions": 2, "revenue_cents": 1800}
        assert [row["product_name"] for row in report["best"]] == ["Rice", "Oil"]
        assert report["best"][0]["total_sold"] == 3

    def test_profit_report_nets_expenses_and_reports_refunds_separately(self, db_session):
        p = make_product(price_cents=500, unit_cost_cents=300, stock=20)
        sale = _sell(p["id"], 3)
        refund_service.refund_sale(sale["receipt_ref"], {"items": [{"product_id": p["id"], "quantity": 1}]})
        expense_service.create_expense({"category": "Rent", "amount_cents": 200})

        totals = reporting_service.profit_report("daily")["totals"]
        assert totals["revenue_cents"] == 1500
        assert totals["refunds_cents"] == 500
        assert totals["expenses_cents"] == 200
        assert totals["gross_profit_cents"] == 600
        assert totals["net_profit_cents"] == 1300
        assert totals["net_after_refunds_cents"] == 800

    def test_top_products(self, db_session):
        p = make_product(price_cents=500, unit_cost_cents=300, stock=20)
        _sell(p["id"], 2)
        _sell(p["id"], 1)

        rows = reporting_service.top_products_report("monthly")["rows"]
        assert rows == [{
            "product_id": p["id"],
            "product_name": p["name"],
            "qty_sold": 3,
            "revenue_cents": 1500,
            "profit_cents": 600,
        }]

    def test_customer_insights(self, db_session):
        p = make_product(price_cents=100, stock=50)
        _sell(p["id"], 5, customer="Hodan", unpaid=True)
        _sell(p["id"], 1, customer="Hodan")
        _sell(p["id"], 2)

        rows = reporting_service.customer_insights_report("daily")["rows"]
        assert [r["customer"] for r in rows] == ["Hodan", "(No customer)"]
        assert rows[0]["transactions"] == 2
        assert rows[0]["revenue_cents"] == 600
        assert rows[0]["unpaid_total_cents"] == 500

    def test_low_stock(self, db_session):
        make_product(name="Plenty", stock=50, low_stock_threshold=5)
        make_product(name="Scarce", stock=1, low_stock_threshold=5)
        archived = make_product(name="Gone", stock=0, low_stock_threshold=5)
        inventory_service.archive_product(archived["id"])

        report = reporting_service.low_stock_report()
        assert report["total_low_stock"] == 1
        assert report["rows"][0]["name"] == "Scarce"
        assert report["rows"][0]["suggested_restock"] == 14

    def test_suggested_restock(self):
        assert reporting_service.suggested_restock(0, 0) == 10
        assert reporting_service.suggested_restock(3, 10) == 27
        assert reporting_service.suggested_restock(40, 10) == 0

    def test_inventory_summary(self, db_session):
        make_product(price_cents=200, stock=5, low_stock_threshold=1)
        make_product(name="Low", price_cents=100, stock=1, low_stock_threshold=1)

        summary = reporting_service.inventory_summary()
        assert summary["totals"] == {
            "total_products": 2,
            "low_stock_items": 1,
            "total_inventory_value_cents": 1100,
        }
        assert len(summary["history"]) == 2


class TestReportsApi:

    def test_period_param(self, client, owner_headers):
        assert client.get("/api/reports/sales?period=weekly", headers=owner_headers).status_code == 200
        assert client.get("/api/reports/sales?period=hourly", headers=owner_headers).status_code == 400

    def test_inventory_pdf(self, client, owner_headers, product):
        resp = client.get("/api/reports/inventory/pdf", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.data.startswith(b"%PDF")
