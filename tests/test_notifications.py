import asyncio

from starlette.websockets import WebSocketState

from notifications import OrderEventHub, order_event
from tests.conftest import SHIPPING


class FakeSocket:
    def __init__(self, state=WebSocketState.CONNECTED, fail=False):
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)


def test_order_event_shape():
    event = order_event("new_order", "abc")
    assert event["type"] == "new_order"
    assert event["orderId"] == "abc"
    assert event["timestamp"].endswith("+00:00")


def test_broadcast_skips_closed_and_drops_failing_clients():
    hub = OrderEventHub()
    live, closed, broken = FakeSocket(), FakeSocket(WebSocketState.DISCONNECTED), FakeSocket(fail=True)
    hub.clients = {"live": live, "closed": closed, "broken": broken}

    asyncio.run(hub.broadcast({"type": "order_update", "orderId": "o1"}))

    assert live.sent == [{"type": "order_update", "orderId": "o1"}]
    assert closed.sent == []
    assert set(hub.clients) == {"live", "closed"}


def test_publish_without_clients_is_a_no_op():
    hub = OrderEventHub()
    hub.notify_new_order("o1")
    hub.notify_order_update("o1")
    assert hub.clients == {}


def test_disconnect_unknown_id():
    hub = OrderEventHub()
    hub.disconnect("missing")
    assert hub.clients == {}


def test_websocket_receives_order_events(admin_client, make_product):
    with admin_client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert len(hello["connectionId"]) == 8

        admin_client.post("/api/cart", json={"productId": str(make_product()["_id"])})
        order = admin_client.post("/api/orders", json=SHIPPING).json()
        event = ws.receive_json()
        assert event["type"] == "new_order"
        assert event["orderId"] == order["id"]

        admin_client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "processing"})
        event = ws.receive_json()
        assert event["type"] == "order_update"
        assert event["orderId"] == order["id"]


def test_every_connected_client_gets_the_event(admin_client, make_product):
    admin_client.post("/api/cart", json={"productId": str(make_product()["_id"])})
    order = admin_client.post("/api/orders", json=SHIPPING).json()

    with admin_client.websocket_connect("/ws") as first, admin_client.websocket_connect("/ws") as second:
        ids = {first.receive_json()["connectionId"], second.receive_json()["connectionId"]}
        assert len(ids) == 2

        admin_client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "shipped"})
        for ws in (first, second):
            event = ws.receive_json()
            assert event["type"] == "order_update"
            assert event["orderId"] == order["id"]
