"""
Sync coordinator tests against the in-process server.

Verifies:
- No-loss: sales stay in the journal until the server has them
- Exactly-once: a replay after a lost response does not move stock twice
- Partial batch isolation: [synced, error, synced]
- A transport failure keeps that batch and every later batch pending
- Only one pass runs at a time
"""

import httpx
import pytest

from kassa.terminal.api_client import ServerClient
from kassa.terminal.config import MAX_SYNC_BATCH_SIZE, TerminalConfig
from kassa.terminal.errors import NetworkError
from kassa.terminal.records import LineItem, SaleDraft
from kassa.terminal.sync import SyncCoordinator

SERVER_URL = "http://testserver"
PASSWORD = "Password123"


def item(product, quantity=1):
    return LineItem(product.id, product.name, product.price_cents, quantity)


class FlakyTransport(httpx.BaseTransport):
    """Forwards to the app, failing bulk calls on demand."""

    def __init__(self, inner):
        self.inner = inner
        self.offline = False
        self.fail_bulk_calls = set()
        self.drop_bulk_responses = set()
        self.bulk_calls = 0

    def handle_request(self, request):
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)

        is_bulk = request.url.path == "/api/receipts/bulk"
        if is_bulk:
            self.bulk_calls += 1
            if self.bulk_calls in self.fail_bulk_calls:
                raise httpx.ConnectError("connection reset", request=request)

        response = self.inner.handle_request(request)

        if is_bulk and self.bulk_calls in self.drop_bulk_responses:
            response.read()
            raise httpx.ReadTimeout("response lost", request=request)
        return response


@pytest.fixture
def flaky(wsgi_transport):
    return FlakyTransport(wsgi_transport)


@pytest.fixture
def till_client(flaky, cashier_user):
    client = ServerClient(SERVER_URL, transport=flaky)
    client.login("cashier", PASSWORD)
    yield client
    client.close()


class TestSyncPass:

    def test_nothing_pending(self, journal, till_client, flaky):
        result = SyncCoordinator(journal, till_client).sync()
        assert (result.synced, result.failed, result.errors, result.skipped) == (0, 0, [], False)
        assert flaky.bulk_calls == 0

    def test_offline_sales_reach_server(self, journal, till_client, make_product, stock_of, client, cashier_headers):
        tea = make_product(name="Tea", quantity=5)
        sale_id = journal.append(SaleDraft([item(tea, 2)]))
        return_id = journal.append(SaleDraft([item(tea, 1)], is_return=True))

        result = SyncCoordinator(journal, till_client).sync()

        assert result.synced == 2
        assert result.failed == 0
        assert journal.count_pending() == 0
        assert journal.get(sale_id) is None
        assert stock_of(tea.id) == 4

        listed = client.get("/api/receipts", headers=cashier_headers).json["receipts"]
        assert {r["offline_id"] for r in listed} == {sale_id, return_id}

    def test_partial_batch(self, journal, till_client, make_product, stock_of):
        tea = make_product(name="Tea", quantity=10)
        bun = make_product(name="Bun", quantity=10)
        ghost = LineItem(99999, "Ghost", 100, 1)

        ok_1 = journal.append(SaleDraft([item(tea, 1)]))
        bad = journal.append(SaleDraft([ghost]))
        ok_2 = journal.append(SaleDraft([item(bun, 2)]))

        result = SyncCoordinator(journal, till_client).sync()

        assert result.synced == 2
        assert result.failed == 1
        assert result.errors[0]["local_id"] == bad
        assert result.errors[0]["error"] == "not_found"
        assert journal.get(ok_1) is None
        assert journal.get(ok_2) is None
        failed = journal.get(bad)
        assert failed.sync_status == "failed"
        assert failed.attempts == 1
        assert stock_of(tea.id) == 9
        assert stock_of(bun.id) == 8

    def test_failed_sale_is_retried(self, journal, till_client, make_product):
        make_product(name="Tea", quantity=10)
        bad = journal.append(SaleDraft([LineItem(99999, "Ghost", 100, 1)]))
        coordinator = SyncCoordinator(journal, till_client)

        coordinator.sync()
        coordinator.sync()

        assert journal.get(bad).attempts == 2

    def test_network_down_keeps_everything(self, journal, till_client, flaky, product, stock_of):
        ids = [journal.append(SaleDraft([item(product, 1)])) for _ in range(3)]
        flaky.offline = True

        result = SyncCoordinator(journal, till_client).sync()

        assert result.synced == 0
        assert result.failed == 3
        assert result.errors[0]["error"] == "network_error"
        assert [r.local_id for r in journal.list_pending()] == ids
        assert all(r.sync_status == "pending" for r in journal.list_pending())
        assert stock_of(product.id) == 5

        flaky.offline = False
        result = SyncCoordinator(journal, till_client).sync()
        assert result.synced == 3
        assert stock_of(product.id) == 2

    def test_lost_response_is_replayed_once(self, journal, till_client, flaky, product, stock_of):
        local_id = journal.append(SaleDraft([item(product, 2)]))
        flaky.drop_bulk_responses = {1}
        coordinator = SyncCoordinator(journal, till_client)

        first = coordinator.sync()
        assert first.synced == 0
        assert journal.get(local_id) is not None
        # The server stored it even though the till never heard back.
        assert stock_of(product.id) == 3

        second = coordinator.sync()
        assert second.synced == 1
        assert journal.get(local_id) is None
        assert stock_of(product.id) == 3

    def test_failure_mid_run_keeps_later_batches(self, journal, till_client, flaky, product, stock_of):
        ids = [journal.append(SaleDraft([item(product, 1)])) for _ in range(5)]
        flaky.fail_bulk_calls = {2}

        result = SyncCoordinator(journal, till_client, batch_size=2).sync()

        assert result.synced == 2
        assert result.failed == 3
        assert [r.local_id for r in journal.list_pending()] == ids[2:]
        assert stock_of(product.id) == 3

    def test_helper_sales_sync_as_pending(self, journal, helper_client, product, stock_of, client, admin_headers):
        journal.append(SaleDraft([item(product, 1)]))

        result = SyncCoordinator(journal, helper_client).sync()

        assert result.synced == 1
        staff = client.get("/api/receipts/staff", headers=admin_headers).json
        assert staff["pending_count"] == 1
        assert stock_of(product.id) == 5

    def test_batch_size_validated(self, journal, till_client):
        with pytest.raises(ValueError):
            SyncCoordinator(journal, till_client, batch_size=0)


class ReentrantClient:
    """Calls back into the coordinator while a pass is in flight."""

    def __init__(self):
        self.coordinator = None
        self.nested = None

    def push_sales(self, payloads):
        self.nested = self.coordinator.sync()
        return [{"offline_id": p["offline_id"], "status": "synced"} for p in payloads]


def test_concurrent_sync_is_skipped(journal):
    journal.append(SaleDraft([LineItem(1, "Tea", 250, 1)]))
    client = ReentrantClient()
    coordinator = SyncCoordinator(journal, client)
    client.coordinator = coordinator

    result = coordinator.sync()

    assert result.synced == 1
    assert client.nested.skipped is True
    assert client.nested.synced == 0
    assert coordinator.is_running is False


def test_client_wraps_server_errors(flaky):
    client = ServerClient(SERVER_URL, transport=flaky)
    flaky.offline = True
    with pytest.raises(NetworkError):
        client.push_sales([])
    assert client.ping() is False


@pytest.mark.parametrize("raw, expected", [
    ("500", MAX_SYNC_BATCH_SIZE),
    ("0", 1),
    ("-3", 1),
    ("75", 75),
])
def test_batch_size_env_is_clamped(raw, expected):
    config = TerminalConfig.from_env({"KASSA_SYNC_BATCH_SIZE": raw})
    assert config.sync_batch_size == expected


def test_default_batch_fits_server_limit(app, journal, till_client, product):
    assert MAX_SYNC_BATCH_SIZE <= app.config["MAX_BULK_SALES"]
    for _ in range(MAX_SYNC_BATCH_SIZE):
        journal.append(SaleDraft([item(product)]))

    result = SyncCoordinator(journal, till_client, batch_size=MAX_SYNC_BATCH_SIZE).sync()

    assert result.synced == MAX_SYNC_BATCH_SIZE
    assert result.failed == 0
