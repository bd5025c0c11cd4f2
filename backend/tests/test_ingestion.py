"""
Sale ingestion tests.

Verifies:
- Offline (bulk) sales are applied to stock exactly once per offline_id
- A failing item never affects its siblings
- Return sign: returns restock, sales deplete
- Online sales preflight stock for trusted roles; helper sales land pending
- The server recomputes totals
"""

import pytest

from kassa.models import Receipt, StockMovement
from kassa.services import ingestion_service


def bulk_sale(offline_id, lines, **extra):
    sale = {"offline_id": offline_id, "line_items": lines, "payment_method": "cash"}
    sale.update(extra)
    return sale


# =============================================================================
# BULK / OFFLINE SYNC
# =============================================================================


class TestBulkSync:

    def test_sale_decrements_stock(self, client, cashier_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("a1", [line(product, 2)])]},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        body = resp.json
        assert body["synced"] == 1
        assert body["results"][0]["status"] == "synced"
        assert body["results"][0]["receipt_status"] == "completed"
        assert stock_of(product.id) == 3

    def test_return_increments_stock(self, client, cashier_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("r1", [line(product, 2)], is_return=True)]},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert stock_of(product.id) == 7

    def test_replay_is_already_synced_without_second_stock_effect(
        self, client, cashier_headers, product, line, stock_of, db_session
    ):
        payload = {"sales": [bulk_sale("dup-1", [line(product, 1)])]}

        first = client.post("/api/receipts/bulk", json=payload, headers=cashier_headers)
        second = client.post("/api/receipts/bulk", json=payload, headers=cashier_headers)

        assert first.json["results"][0]["status"] == "synced"
        assert second.json["results"][0]["status"] == "already_synced"
        assert second.json["results"][0]["receipt_id"] == first.json["results"][0]["receipt_id"]
        assert stock_of(product.id) == 4
        assert db_session.query(Receipt).filter_by(offline_id="dup-1").count() == 1

    def test_duplicate_inside_one_batch_counts_once(self, client, cashier_headers, product, line, stock_of):
        sale = bulk_sale("same", [line(product, 1)])
        resp = client.post("/api/receipts/bulk", json={"sales": [sale, sale]}, headers=cashier_headers)

        statuses = [r["status"] for r in resp.json["results"]]
        assert statuses == ["synced", "already_synced"]
        assert stock_of(product.id) == 4

    def test_partial_batch_is_isolated(self, client, cashier_headers, make_product, line, stock_of):
        tea = make_product(name="Tea", quantity=10)
        bun = make_product(name="Bun", quantity=10)
        missing = {"product_id": 99999, "name": "Ghost", "unit_price_cents": 100, "quantity": 1}

        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [
                bulk_sale("ok-1", [line(tea, 1)]),
                bulk_sale("bad-1", [missing]),
                bulk_sale("ok-2", [line(bun, 3)]),
            ]},
            headers=cashier_headers,
        )

        assert resp.status_code == 200
        results = resp.json["results"]
        assert [r["status"] for r in results] == ["synced", "error", "synced"]
        assert results[1]["offline_id"] == "bad-1"
        assert results[1]["error"] == "not_found"
        assert resp.json["synced"] == 2
        assert resp.json["failed"] == 1
        assert stock_of(tea.id) == 9
        assert stock_of(bun.id) == 7

    @pytest.mark.parametrize("field", ["product_id", "customer_id"])
    def test_oversized_id_is_isolated(self, client, cashier_headers, product, line, stock_of, field):
        bad_line = line(product, 1)
        extra = {}
        if field == "product_id":
            bad_line["product_id"] = 2**70
        else:
            extra["customer_id"] = 2**70

        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [
                bulk_sale("big-ok-1", [line(product, 1)]),
                bulk_sale("big-bad", [bad_line], **extra),
                bulk_sale("big-ok-2", [line(product, 1)]),
            ]},
            headers=cashier_headers,
        )

        assert resp.status_code == 200
        results = resp.json["results"]
        assert [r["status"] for r in results] == ["synced", "error", "synced"]
        assert results[1]["error"] == "validation_error"
        assert stock_of(product.id) == 3

    def test_non_positive_product_id_is_rejected(self, client, cashier_headers, product, line):
        bad_line = line(product, 1)
        bad_line["product_id"] = 0
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("zero", [bad_line])]},
            headers=cashier_headers,
        )
        assert resp.json["results"][0]["error"] == "validation_error"

    def test_malformed_item_reports_validation_error(self, client, cashier_headers, product, line):
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [
                {"line_items": [line(product, 1)]},
                bulk_sale("q0", [line(product, 0)]),
                bulk_sale("ok", [line(product, 1)]),
            ]},
            headers=cashier_headers,
        )
        results = resp.json["results"]
        assert results[0]["status"] == "error"
        assert results[0]["error"] == "validation_error"
        assert results[1]["status"] == "error"
        assert results[2]["status"] == "synced"

    def test_offline_sale_skips_stock_check(self, client, cashier_headers, make_product, line, stock_of):
        scarce = make_product(name="Last Loaf", quantity=1)
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("over", [line(scarce, 3)])]},
            headers=cashier_headers,
        )
        assert resp.json["results"][0]["status"] == "synced"
        assert stock_of(scarce.id) == -2

    def test_helper_sale_lands_pending_without_stock_effect(self, client, helper_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("h1", [line(product, 2)])]},
            headers=helper_headers,
        )
        result = resp.json["results"][0]
        assert result["status"] == "synced"
        assert result["receipt_status"] == "pending"
        assert stock_of(product.id) == 5

    def test_sales_must_be_non_empty_list(self, client, cashier_headers):
        for body in ({"sales": []}, {"sales": "nope"}, {}):
            resp = client.post("/api/receipts/bulk", json=body, headers=cashier_headers)
            assert resp.status_code == 400
            assert resp.json["error"] == "validation_error"
            assert resp.json["success"] is False

    def test_batch_size_is_capped(self, app, client, cashier_headers, product, line):
        limit = app.config["MAX_BULK_SALES"]
        sales = [bulk_sale(f"s{i}", [line(product, 1)]) for i in range(limit + 1)]
        resp = client.post("/api/receipts/bulk", json={"sales": sales}, headers=cashier_headers)
        assert resp.status_code == 400

    def test_requires_auth(self, client, db_session):
        resp = client.post("/api/receipts/bulk", json={"sales": []})
        assert resp.status_code == 401

    def test_created_at_from_till_is_kept(self, client, cashier_headers, product, line):
        resp = client.post(
            "/api/receipts/bulk",
            json={"sales": [bulk_sale("t1", [line(product, 1)], created_at="2026-03-01T09:15:00Z")]},
            headers=cashier_headers,
        )
        receipt_id = resp.json["results"][0]["receipt_id"]
        got = client.get(f"/api/receipts/{receipt_id}", headers=cashier_headers)
        assert got.json["receipt"]["created_at"] == "2026-03-01T09:15:00Z"
        assert got.json["receipt"]["synced_at"] is not None


# =============================================================================
# ONLINE SALES
# =============================================================================


class TestOnlineSale:

    def test_cashier_sale_is_completed(self, client, cashier_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 2)], "payment_method": "card"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        receipt = resp.json["receipt"]
        assert receipt["status"] == "completed"
        assert receipt["payment_method"] == "card"
        assert receipt["synced_at"] is None
        assert stock_of(product.id) == 3

    def test_insufficient_stock_is_rejected(self, client, cashier_headers, product, line, stock_of, db_session):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 6)]},
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "insufficient_stock"
        assert resp.json["details"]["items"][0]["on_hand"] == 5
        assert stock_of(product.id) == 5
        assert db_session.query(Receipt).count() == 0

    def test_lines_of_one_product_are_checked_together(self, client, cashier_headers, product, line):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 3), line(product, 3)]},
            headers=cashier_headers,
        )
        assert resp.status_code == 409

    def test_return_is_not_stock_checked(self, client, cashier_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 20)], "is_return": True},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        assert stock_of(product.id) == 25

    def test_helper_sale_is_pending(self, client, helper_headers, product, line, stock_of):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 50)]},
            headers=helper_headers,
        )
        assert resp.status_code == 201
        assert resp.json["receipt"]["status"] == "pending"
        assert stock_of(product.id) == 5

    def test_offline_id_deduplicates_online_sale(self, client, cashier_headers, product, line, stock_of):
        payload = {"offline_id": "k-1", "line_items": [line(product, 1)]}
        first = client.post("/api/receipts", json=payload, headers=cashier_headers)
        second = client.post("/api/receipts", json=payload, headers=cashier_headers)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json["status"] == "already_synced"
        assert stock_of(product.id) == 4

    def test_total_is_recomputed(self, client, cashier_headers, make_product, line):
        tea = make_product(name="Tea", price_cents=250)
        bun = make_product(name="Bun", price_cents=1200)
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(tea, 2), line(bun, 1)], "total_cents": 1},
            headers=cashier_headers,
        )
        assert resp.json["receipt"]["total_cents"] == 1700
        assert [ln["line_total_cents"] for ln in resp.json["receipt"]["lines"]] == [500, 1200]

    def test_unknown_customer_is_not_found(self, client, cashier_headers, product, line):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 1)], "customer_id": 4242},
            headers=cashier_headers,
        )
        assert resp.status_code == 404

    def test_customer_sale(self, client, cashier_headers, product, customer, line):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 1)], "customer_id": customer.id},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        assert resp.json["receipt"]["customer_id"] == customer.id

    @pytest.mark.parametrize("payment_method", ["bitcoin", "voucher"])
    def test_unknown_payment_method(self, client, cashier_headers, product, line, payment_method):
        resp = client.post(
            "/api/receipts",
            json={"line_items": [line(product, 1)], "payment_method": payment_method},
            headers=cashier_headers,
        )
        assert resp.status_code == 400


# =============================================================================
# SERVICE LEVEL
# =============================================================================


class TestIngestionService:

    def test_ingest_bulk_writes_one_movement_per_line(self, cashier_user, make_product, line, db_session):
        tea = make_product(name="Tea", quantity=10)
        bun = make_product(name="Bun", quantity=10)

        outcomes = ingestion_service.ingest_bulk(
            [bulk_sale("m1", [line(tea, 1), line(bun, 2)])],
            cashier_user,
        )

        assert outcomes[0].ok
        movements = db_session.query(StockMovement).order_by(StockMovement.line_no).all()
        assert [(m.line_no, m.quantity_delta, m.reason) for m in movements] == [
            (1, -1, "SALE"),
            (2, -2, "SALE"),
        ]

    def test_summarize_counts(self, cashier_user, product, line):
        outcomes = ingestion_service.ingest_bulk(
            [bulk_sale("x1", [line(product, 1)]), {"offline_id": "x2"}],
            cashier_user,
        )
        summary = ingestion_service.summarize(outcomes)
        assert summary["synced"] == 1
        assert summary["failed"] == 1
        assert summary["results"][1]["offline_id"] == "x2"

    def test_storage_failure_is_isolated(self, cashier_user, product, line, stock_of, monkeypatch):
        real_ensure = ingestion_service.inventory_service.ensure_products_exist
        calls = []

        def flaky_ensure(product_ids):
            calls.append(1)
            if len(calls) == 2:
                raise OverflowError("Python int too large to convert to SQLite INTEGER")
            return real_ensure(product_ids)

        monkeypatch.setattr(ingestion_service.inventory_service, "ensure_products_exist", flaky_ensure)

        outcomes = ingestion_service.ingest_bulk(
            [
                bulk_sale("st-1", [line(product, 1)]),
                bulk_sale("st-2", [line(product, 1)]),
                bulk_sale("st-3", [line(product, 1)]),
            ],
            cashier_user,
        )

        assert [o.status for o in outcomes] == ["synced", "error", "synced"]
        assert outcomes[1].error.code == "validation_error"
        assert stock_of(product.id) == 3

    def test_lost_insert_race_reports_already_synced(
        self, cashier_user, product, line, stock_of, db_session, monkeypatch
    ):
        sale = bulk_sale("race-1", [line(product, 2)])
        first = ingestion_service.ingest_bulk([sale], cashier_user)
        assert first[0].status == "synced"
        first_receipt_id = first[0].receipt.id

        # The pre-insert lookup misses, as if the winning commit landed just after it
        real_find = ingestion_service.find_by_offline_id
        lookups = []

        def late_find(offline_id):
            lookups.append(offline_id)
            if len(lookups) == 1:
                return None
            return real_find(offline_id)

        monkeypatch.setattr(ingestion_service, "find_by_offline_id", late_find)

        submission = ingestion_service.parse_sale_submission(sale, require_offline_id=True)
        outcome = ingestion_service.ingest(submission, cashier_user, offline=True)

        assert outcome.status == "already_synced"
        assert outcome.receipt.id == first_receipt_id
        assert len(lookups) == 2
        assert db_session.query(Receipt).filter_by(offline_id="race-1").count() == 1
        assert db_session.query(StockMovement).filter_by(receipt_id=outcome.receipt.id).count() == 1
        assert stock_of(product.id) == 3
