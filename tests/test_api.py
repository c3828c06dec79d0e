"""
Tests for the HTTP and WebSocket API.
"""
import json
import time

import pytest
from fastapi.testclient import TestClient

from swap_engine.api.dependencies import app_state
from swap_engine.api.main import app
from swap_engine.config.settings import Config
from swap_engine.database import RedisManager
from swap_engine.jobs import JobQueue, JobState
from swap_engine.models import OrderStatus, StatusUpdate
from swap_engine.pubsub import StatusChannel, SubscriptionRelay


ORDER = {
    "userId": 1,
    "walletAddress": "Wa11et1111111111111111111111111111111111111",
    "tokenIn": "SOL",
    "tokenOut": "USDC",
    "amount": "1.5",
}


@pytest.fixture
def client(fake_redis, store, registry):
    """App wired to in-memory Redis and order store."""
    app_state.config = Config(log_file=None, default_slippage=0.02)
    app_state.redis = RedisManager("redis://test", client=fake_redis)
    app_state.store = store
    app_state.queue = JobQueue(fake_redis)
    app_state.channel = StatusChannel(fake_redis)
    app_state.relay = SubscriptionRelay()
    app_state.registry = registry
    app_state.ready = True

    with TestClient(app) as test_client:
        yield test_client

    app_state.__init__()


def submit(client, **overrides):
    return client.post("/api/orders/execute", json={**ORDER, **overrides})


# ============================================================================
# Orders
# ============================================================================

class TestExecuteOrder:
    """POST /api/orders/execute"""

    def test_accepted(self, client, store, fake_redis):
        response = submit(client)

        assert response.status_code == 201
        body = response.json()
        order_id = body["orderId"]
        assert body["status"] == "pending"
        assert body["jobId"] == order_id
        assert body["created"] is True

        assert store.orders[order_id].status == OrderStatus.PENDING
        assert store.orders[order_id].token_in == "SOL"

        job = json.loads(fake_redis.hashes[f"order-queue:job:{order_id}"]["data"])
        assert job["walletAddress"] == ORDER["walletAddress"]
        assert job["slippage"] == 0.02
        assert fake_redis.hashes[f"order-queue:job:{order_id}"]["state"] == JobState.WAITING

        envelope = json.loads(fake_redis.published[0][1])
        assert envelope["orderId"] == order_id
        assert envelope["update"]["status"] == "pending"

    def test_explicit_slippage(self, client, fake_redis):
        order_id = submit(client, slippage=0.05).json()["orderId"]

        job = json.loads(fake_redis.hashes[f"order-queue:job:{order_id}"]["data"])
        assert job["slippage"] == 0.05

    def test_lowercase_symbols(self, client, store):
        order_id = submit(client, tokenIn="sol", tokenOut="usdt").json()["orderId"]

        assert store.orders[order_id].token_out == "USDT"

    @pytest.mark.parametrize("overrides, detail", [
        ({"tokenIn": "DOGE"}, "Token DOGE not supported"),
        ({"tokenOut": "SOL"}, "Token input and output must be different"),
        ({"amount": "0"}, "Amount must be greater than 0"),
        ({"amount": "-3"}, "Amount must be greater than 0"),
        ({"slippage": 1.5}, "Slippage must be between 0 and 1"),
    ])
    def test_rejected(self, client, store, overrides, detail):
        response = submit(client, **overrides)

        assert response.status_code == 400
        assert response.json()["detail"] == detail
        assert store.orders == {}

    def test_missing_fields(self, client):
        response = client.post("/api/orders/execute", json={"userId": 1})
        assert response.status_code == 422


class TestReadOrders:
    """GET /api/orders and /api/orders/{id}"""

    def test_get_order(self, client):
        order_id = submit(client).json()["orderId"]

        response = client.get(f"/api/orders/{order_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == order_id
        assert body["status"] == "pending"
        assert body["amountIn"] == "1.5"
        assert body["selectedDex"] is None

    def test_unknown_order(self, client):
        assert client.get("/api/orders/does-not-exist").status_code == 404

    def test_list_by_user(self, client):
        submit(client)
        submit(client)
        submit(client, userId=2)

        assert len(client.get("/api/orders", params={"user_id": 1}).json()) == 2
        assert len(client.get("/api/orders").json()) == 3
        assert len(client.get("/api/orders", params={"limit": 1}).json()) == 1

    def test_list_limit_bounds(self, client):
        assert client.get("/api/orders", params={"limit": 0}).status_code == 422


class TestDeleteOrders:
    """POST /api/orders/delete"""

    def test_only_finished_orders_deleted(self, client, store):
        done = submit(client).json()["orderId"]
        live = submit(client).json()["orderId"]
        other_user = submit(client, userId=2).json()["orderId"]
        for order_id in (done, other_user):
            store.orders[order_id].status = OrderStatus.FAILED

        response = client.post("/api/orders/delete", json={"userId": 1, "orderIds": [done, live, other_user]})

        assert response.json() == {"success": True, "deletedCount": 1}
        assert done not in store.orders
        assert live in store.orders
        assert other_user in store.orders

    def test_empty_list(self, client):
        response = client.post("/api/orders/delete", json={"userId": 1, "orderIds": []})
        assert response.status_code == 400


# ============================================================================
# System
# ============================================================================

class TestSystem:

    def test_health(self, client):
        submit(client)

        body = client.get("/api/health").json()

        assert body["status"] == "ok"
        assert body["redis"] is True
        assert body["database"] is True
        assert body["queue"][JobState.WAITING] == 1

    def test_root(self, client):
        body = client.get("/").json()
        assert body["name"] == "Swap Engine API"
        assert body["event"] == "order:update"


# ============================================================================
# WebSocket
# ============================================================================

def wait_for_listener(fake_redis, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not fake_redis.pubsubs and time.monotonic() < deadline:
        time.sleep(0.01)
    assert fake_redis.pubsubs, "status listener did not subscribe"


class TestOrdersWebSocket:
    """/ws/orders subscriptions"""

    def test_subscribe_and_receive(self, client, fake_redis):
        wait_for_listener(fake_redis)

        with client.websocket_connect("/ws/orders") as ws:
            ws.send_json({"action": "subscribe", "orderId": "o1"})
            assert ws.receive_json() == {"event": "subscribed", "orderId": "o1"}

            client.portal.call(
                app_state.channel.publish, "o1", StatusUpdate(order_id="o1", status=OrderStatus.ROUTING),
            )

            assert ws.receive_json() == {
                "event": "order:update",
                "data": {"orderId": "o1", "status": "routing"},
            }

            ws.send_json({"action": "unsubscribe", "orderId": "o1"})
            assert ws.receive_json() == {"event": "unsubscribed", "orderId": "o1"}

        assert app_state.relay is None or app_state.relay.get_subscriber_count() == 0

    def test_bad_messages(self, client):
        with client.websocket_connect("/ws/orders") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"action": "dance", "orderId": "o1"})
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"action": "subscribe"})
            assert ws.receive_json()["event"] == "error"
