"""
Sale and refund tests for Elman.

Verifies:
- Sale totals use the price captured on the line, not the catalog
- Oversell and over-refund are rejected without side effects
- Stock and the inventory log move together (ledger reconciliation)
- A failure part-way through a sale or refund leaves nothing behind
- A busy database surfaces as a retryable 503 once retries run out
"""

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_product, sell
from elman.errors import (
    DuplicateReceiptError,
    InsufficientStockError,
    ItemNotOnSaleError,
    RefundExceedsAvailableError,
    TransientStoreError,
    ValidationError,
)
from elman.extensions import db
from elman.models import InventoryLog, Product, Refund, Sale, SaleLine
from elman.services import concurrency, inventory_service, refund_service, sales_service
from elman.validation import MAX_MONEY_CENTS, MAX_QUANTITY


def _sale_payload(product_id, quantity, **extra):
    payload = {
        "cashier": "Amina",
        "payment_method": "Cash",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    payload.update(extra)
    return payload


def _stock(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock


# =============================================================================
# EXAMPLE SCENARIOS (cents: price 500, total 1500, refund 1000)
# =============================================================================


class TestSaleScenarios:

    def test_sale_decrements_stock_and_logs(self, db_session, product):
        result = sales_service.create_sale(_sale_payload(product["id"], 3))

        assert result["subtotal_cents"] == 1500
        assert result["discount_cents"] == 0
        assert result["total_cents"] == 1500
        assert result["receipt_ref"].startswith("RCPT-")
        assert _stock(product["id"]) == 7

        sale_logs = db_session.query(InventoryLog).filter_by(
            product_id=product["id"], change_type="SALE"
        ).all()
        assert len(sale_logs) == 1
        assert sale_logs[0].qty_change == -3
        assert sale_logs[0].reason == f"Sale {result['receipt_ref']}"

    def test_oversell_rejected_with_available_count(self, db_session, product):
        sales_service.create_sale(_sale_payload(product["id"], 3))

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale(_sale_payload(product["id"], 8))

        assert "Available: 7" in exc_info.value.message
        assert _stock(product["id"]) == 7
        assert db_session.query(Sale).count() == 1

    def test_partial_refund(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))

        result = refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 2}],
            "reason": "damaged",
        })

        assert result["total_refund_cents"] == 1000
        assert result["refunded_total_cents"] == 1000
        assert result["fully_refunded"] is False
        assert _stock(product["id"]) == 9

        refund_logs = db_session.query(InventoryLog).filter_by(
            product_id=product["id"], change_type="REFUND"
        ).all()
        assert [log.qty_change for log in refund_logs] == [2]
        assert refund_logs[0].reason == f"damaged ({sale['receipt_ref']})"

    def test_refund_beyond_sold_quantity_rejected(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))
        refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 2}],
        })

        with pytest.raises(RefundExceedsAvailableError) as exc_info:
            refund_service.refund_sale(sale["receipt_ref"], {
                "items": [{"product_id": product["id"], "quantity": 2}],
            })

        assert "Max refundable: 1" in exc_info.value.message
        assert _stock(product["id"]) == 9
        assert db_session.query(Refund).count() == 1


# =============================================================================
# CART VALIDATION + PRICING
# =============================================================================


class TestCartPricing:

    def test_price_override_is_captured_on_line(self, db_session, product):
        payload = _sale_payload(product["id"], 2)
        payload["items"][0]["unit_price_cents"] = 450
        result = sales_service.create_sale(payload)

        assert result["total_cents"] == 900
        line = db_session.query(SaleLine).one()
        assert line.unit_price_cents == 450
        assert line.line_total_cents == 900

    def test_sale_total_above_money_cap_rejected(self, db_session):
        p = make_product(name="Generator", price_cents=MAX_MONEY_CENTS, stock=5)

        with pytest.raises(ValidationError):
            sales_service.create_sale(_sale_payload(p["id"], 2))
        assert _stock(p["id"]) == 5
        assert db_session.query(Sale).count() == 0

        result = sales_service.create_sale(_sale_payload(p["id"], 1))
        assert result["total_cents"] == MAX_MONEY_CENTS

    @pytest.mark.parametrize("item", [
        {"product_id": 10**19, "quantity": 1},
        {"product_id": 1, "quantity": MAX_QUANTITY + 1},
    ])
    def test_out_of_range_cart_values_rejected(self, db_session, item):
        payload = _sale_payload(1, 1)
        payload["items"] = [item]
        with pytest.raises(ValidationError):
            sales_service.parse_sale_request(payload)

    def test_catalog_price_change_does_not_touch_recorded_sale(self, db_session, product):
        result = sales_service.create_sale(_sale_payload(product["id"], 2))
        inventory_service.update_product(product["id"], patch={"price_cents": 900})

        sale = sales_service.get_sale_by_receipt(result["receipt_ref"])
        assert sale["items"][0]["unit_price_cents"] == 500
        assert sale["total_cents"] == 1000

    def test_discount_above_subtotal_floors_total_at_zero(self, db_session, product):
        result = sales_service.create_sale(_sale_payload(product["id"], 1, discount_cents=800))
        assert result["subtotal_cents"] == 500
        assert result["discount_cents"] == 800
        assert result["total_cents"] == 0

    def test_repeated_product_checked_against_stock_across_cart(self, db_session):
        p = make_product(stock=5)
        payload = _sale_payload(p["id"], 3)
        payload["items"].append({"product_id": p["id"], "quantity": 3})

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(payload)
        assert _stock(p["id"]) == 5

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            {"cashier": "Amina", "payment_method": "Cash", "items": []},
            {"cashier": "Amina", "payment_method": "Card", "items": [{"product_id": 1, "quantity": 1}]},
            {"cashier": "Amina", "payment_method": "Cash", "items": [{"product_id": 1, "quantity": 0}]},
            {"cashier": "Amina", "payment_method": "Cash", "items": [{"product_id": 1, "quantity": 1.5}]},
            {"cashier": "", "payment_method": "Cash", "items": [{"product_id": 1, "quantity": 1}]},
            {"cashier": "Amina", "payment_method": "Cash", "items": [{"product_id": 1, "quantity": 1}],
             "discount_cents": -5},
        ],
    )
    def test_malformed_requests_rejected(self, db_session, payload):
        with pytest.raises(ValidationError):
            sales_service.parse_sale_request(payload)

    def test_unknown_customer_id_falls_back_to_free_text(self, db_session, product):
        result = sales_service.create_sale(
            _sale_payload(product["id"], 1, customer_id=9999, customer="Walk-in Hodan")
        )
        sale = sales_service.get_sale_by_receipt(result["receipt_ref"])
        assert sale["customer"] == "Walk-in Hodan"
        assert sale["customer_id"] is None


# =============================================================================
# REFUND RULES
# =============================================================================


class TestRefundRules:

    def test_item_not_on_sale_rejected(self, db_session, product):
        other = make_product(name="Sugar 1kg", price_cents=200)
        sale = sales_service.create_sale(_sale_payload(product["id"], 1))

        with pytest.raises(ItemNotOnSaleError):
            refund_service.refund_sale(sale["receipt_ref"], {
                "items": [{"product_id": other["id"], "quantity": 1}],
            })

    def test_full_refund_marks_sale(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))
        result = refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 3}],
        })
        assert result["fully_refunded"] is True
        assert result["refunded_total_cents"] == 1500

    def test_refund_uses_sale_price_not_catalog(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 2))
        inventory_service.update_product(product["id"], patch={"price_cents": 2000})

        result = refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 1}],
        })
        assert result["total_refund_cents"] == 500

    def test_duplicate_request_lines_are_merged(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))

        with pytest.raises(RefundExceedsAvailableError):
            refund_service.refund_sale(sale["receipt_ref"], {
                "items": [
                    {"product_id": product["id"], "quantity": 2},
                    {"product_id": product["id"], "quantity": 2},
                ],
            })
        assert _stock(product["id"]) == 7

    def test_refund_spanning_two_lines_of_same_product(self, db_session, product):
        payload = _sale_payload(product["id"], 1)
        payload["items"].append({"product_id": product["id"], "quantity": 2, "unit_price_cents": 400})
        sale = sales_service.create_sale(payload)

        first = refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 2}],
        })
        # One unit from the 500 line, one from the 400 line
        assert first["total_refund_cents"] == 900

        second = refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 1}],
        })
        assert second["total_refund_cents"] == 400
        assert second["fully_refunded"] is True

    def test_refund_defaults(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 1))
        refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 1}],
        })
        refund = db_session.query(Refund).one()
        assert refund.cashier == "Main Cashier"
        assert refund.reason == "Refund"


# =============================================================================
# ATOMICITY, RECEIPTS, READ-BACK
# =============================================================================


class TestSaleAtomicity:

    def test_failure_mid_commit_leaves_nothing(self, db_session, monkeypatch):
        a = make_product(name="Tea", price_cents=100, stock=5)
        b = make_product(name="Milk", price_cents=150, stock=5)

        calls = []
        real_append = sales_service.append_inventory_log

        def flaky_append(**kwargs):
            calls.append(kwargs["product"].id)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real_append(**kwargs)

        monkeypatch.setattr(sales_service, "append_inventory_log", flaky_append)

        payload = _sale_payload(a["id"], 2)
        payload["items"].append({"product_id": b["id"], "quantity": 1})
        with pytest.raises(RuntimeError):
            sales_service.create_sale(payload)

        assert _stock(a["id"]) == 5
        assert _stock(b["id"]) == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0
        assert db_session.query(InventoryLog).filter_by(change_type="SALE").count() == 0

    def test_receipt_collision_retries_with_fresh_reference(self, db_session, product, monkeypatch):
        refs = iter(["RCPT-20260101-AAAAAA", "RCPT-20260101-AAAAAA", "RCPT-20260101-BBBBBB"])
        monkeypatch.setattr(sales_service, "make_receipt_ref", lambda: next(refs))

        first = sales_service.create_sale(_sale_payload(product["id"], 1))
        second = sales_service.create_sale(_sale_payload(product["id"], 1))

        assert first["receipt_ref"] == "RCPT-20260101-AAAAAA"
        assert second["receipt_ref"] == "RCPT-20260101-BBBBBB"
        assert _stock(product["id"]) == 8

    def test_receipt_collision_gives_up(self, db_session, product, monkeypatch):
        monkeypatch.setattr(sales_service, "make_receipt_ref", lambda: "RCPT-20260101-CCCCCC")
        sales_service.create_sale(_sale_payload(product["id"], 1))

        with pytest.raises(DuplicateReceiptError):
            sales_service.create_sale(_sale_payload(product["id"], 1))
        assert _stock(product["id"]) == 9
        assert db_session.query(Sale).count() == 1

    def test_read_back_matches_submitted_sale(self, db_session):
        tea = make_product(name="Tea", price_cents=100, stock=10)
        milk = make_product(name="Milk", price_cents=150, stock=10)
        payload = _sale_payload(tea["id"], 2, discount_cents=50)
        payload["items"].append({"product_id": milk["id"], "quantity": 3, "unit_price_cents": 120})

        result = sales_service.create_sale(payload)
        sale = sales_service.get_sale_by_receipt(result["receipt_ref"])

        assert [(i["product_id"], i["quantity"], i["unit_price_cents"]) for i in sale["items"]] == [
            (tea["id"], 2, 100),
            (milk["id"], 3, 120),
        ]
        assert sale["discount_cents"] == 50
        assert sale["subtotal_cents"] == 560 == result["subtotal_cents"]
        assert sale["total_cents"] == 510 == result["total_cents"]
        assert sale["cashier"] == "Amina"
        assert sale["payment_method"] == "Cash"
        assert sales_service.get_sale_by_receipt(result["receipt_ref"]) == sale

    def test_refund_failure_mid_commit_leaves_nothing(self, db_session, product, monkeypatch):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))
        real_append = refund_service.append_inventory_log

        def failing_append(**kwargs):
            real_append(**kwargs)
            db.session.flush()
            raise RuntimeError("disk full")

        monkeypatch.setattr(refund_service, "append_inventory_log", failing_append)

        with pytest.raises(RuntimeError):
            refund_service.refund_sale(sale["receipt_ref"], {
                "items": [{"product_id": product["id"], "quantity": 2}],
            })

        assert _stock(product["id"]) == 7
        assert db_session.query(Refund).count() == 0
        assert db_session.query(InventoryLog).filter_by(change_type="REFUND").count() == 0
        stored = db_session.query(Sale).populate_existing().one()
        assert stored.refunded_total_cents == 0
        assert stored.fully_refunded is False
        assert inventory_service.ledger_stock_total(product["id"]) == 7

    def test_ledger_reconciles_after_mixed_activity(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload(product["id"], 4))
        inventory_service.restock(product["id"], 6, "Supplier delivery")
        inventory_service.decrease_stock(product["id"], 1, "Damaged")
        refund_service.refund_sale(sale["receipt_ref"], {
            "items": [{"product_id": product["id"], "quantity": 2}],
        })

        assert _stock(product["id"]) == 13
        assert inventory_service.ledger_stock_total(product["id"]) == 13


class TestTransientStoreErrors:

    @pytest.fixture(autouse=True)
    def _no_backoff(self, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)

    @staticmethod
    def _locked_database(monkeypatch, module):
        calls = []

        def locked():
            calls.append(1)
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))

        monkeypatch.setattr(module, "begin_write", locked)
        return calls

    def test_sale_gives_up_after_retries(self, db_session, product, monkeypatch):
        calls = self._locked_database(monkeypatch, sales_service)

        with pytest.raises(TransientStoreError) as exc_info:
            sales_service.create_sale(_sale_payload(product["id"], 2))

        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"attempts": 3}
        assert len(calls) == 3
        assert _stock(product["id"]) == 10
        assert db_session.query(Sale).count() == 0

    def test_retry_succeeds_once_lock_clears(self, db_session, product, monkeypatch):
        real_begin = sales_service.begin_write
        calls = []

        def locked_once():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
            real_begin()

        monkeypatch.setattr(sales_service, "begin_write", locked_once)

        result = sales_service.create_sale(_sale_payload(product["id"], 2))
        assert len(calls) == 2
        assert result["total_cents"] == 1000
        assert _stock(product["id"]) == 8
        assert db_session.query(Sale).count() == 1

    def test_refund_gives_up_after_retries(self, db_session, product, monkeypatch):
        sale = sales_service.create_sale(_sale_payload(product["id"], 3))
        self._locked_database(monkeypatch, refund_service)

        with pytest.raises(TransientStoreError):
            refund_service.refund_sale(sale["receipt_ref"], {
                "items": [{"product_id": product["id"], "quantity": 1}],
            })
        assert _stock(product["id"]) == 7
        assert db_session.query(Refund).count() == 0

    def test_api_returns_503(self, client, cashier_headers, product, monkeypatch):
        self._locked_database(monkeypatch, sales_service)

        resp = sell(client, cashier_headers, product["id"], 1)

        assert resp.status_code == 503
        assert resp.get_json() == {
            "error": "The database is busy; please retry",
            "details": {"attempts": 3},
        }
        assert _stock(product["id"]) == 10


# =============================================================================
# HTTP
# =============================================================================


class TestSalesApi:

    def test_create_sale_defaults_cashier_to_current_user(self, client, cashier_headers, product):
        resp = sell(client, cashier_headers, product["id"], 3)
        assert resp.status_code == 201
        ref = resp.get_json()["receipt_ref"]

        sale = client.get(f"/api/sales/{ref}", headers=cashier_headers).get_json()
        assert sale["cashier"] == "amina"
        assert sale["total_cents"] == 1500
        assert sale["refunds"] == []

    def test_oversell_returns_409(self, client, cashier_headers, product):
        resp = sell(client, cashier_headers, product["id"], 11)
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["error"] == "Insufficient stock for Rice 5kg. Available: 10"
        assert body["details"]["available"] == 10

    def test_archived_product_cannot_be_sold(self, client, owner_headers, product):
        client.delete(f"/api/products/{product['id']}", headers=owner_headers)
        resp = sell(client, owner_headers, product["id"], 1)
        assert resp.status_code == 409

    def test_unknown_product_returns_404(self, client, cashier_headers, db_session):
        resp = sell(client, cashier_headers, 424242, 1)
        assert resp.status_code == 404

    def test_unknown_receipt_returns_404(self, client, cashier_headers):
        resp = client.get("/api/sales/RCPT-19990101-000000", headers=cashier_headers)
        assert resp.status_code == 404

    def test_refund_flow(self, client, cashier_headers, product):
        ref = sell(client, cashier_headers, product["id"], 3).get_json()["receipt_ref"]

        resp = client.post(f"/api/sales/{ref}/refund", json={
            "items": [{"product_id": product["id"], "quantity": 2}],
            "reason": "damaged",
        }, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total_refund_cents"] == 1000

        resp = client.post(f"/api/sales/{ref}/refund", json={
            "items": [{"product_id": product["id"], "quantity": 2}],
        }, headers=cashier_headers)
        assert resp.status_code == 409
        assert "Max refundable: 1" in resp.get_json()["error"]

        sale = client.get(f"/api/sales/{ref}", headers=cashier_headers).get_json()
        assert len(sale["refunds"]) == 1
        assert sale["refunds"][0]["cashier"] == "amina"

    def test_refund_of_product_not_on_sale_returns_400(self, client, cashier_headers, product):
        other = make_product(name="Oil 1L", price_cents=300)
        ref = sell(client, cashier_headers, product["id"], 1).get_json()["receipt_ref"]
        resp = client.post(f"/api/sales/{ref}/refund", json={
            "items": [{"product_id": other["id"], "quantity": 1}],
        }, headers=cashier_headers)
        assert resp.status_code == 400

    def test_history_search(self, client, cashier_headers, product):
        sell(client, cashier_headers, product["id"], 1, customer="Hodan")
        sell(client, cashier_headers, product["id"], 1, customer="Farah")

        rows = client.get("/api/sales/history?search=hod", headers=cashier_headers).get_json()
        assert [row["customer"] for row in rows] == ["Hodan"]

    def test_receipt_pdf_accepts_query_token(self, client, cashier_headers, product):
        ref = sell(client, cashier_headers, product["id"], 2).get_json()["receipt_ref"]
        token = cashier_headers["Authorization"].split(" ", 1)[1]

        resp = client.get(f"/api/sales/{ref}/pdf?token={token}")
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")

    def test_sale_is_audited(self, client, cashier_headers, owner_headers, product):
        ref = sell(client, cashier_headers, product["id"], 1).get_json()["receipt_ref"]
        rows = client.get("/api/audit?action=sale.create", headers=owner_headers).get_json()
        assert rows[0]["entity_id"] == ref
        assert rows[0]["username"] == "amina"
