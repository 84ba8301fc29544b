from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from elibrary.api.dependencies import get_cart_registry, get_library_client
from elibrary.main import app
from elibrary.schemas.cart import CartItem
from elibrary.services.cart_registry import CartStoreRegistry


def hours_ago(hours):
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


@pytest.fixture
def library(fake_client, make_book):
    fake_client.books = {
        "b1": make_book("b1", copies=2, price="250.00"),
        "b2": make_book("b2", copies=1, price="400.00"),
    }
    fake_client.orders = {
        "o1": {
            "_id": "o1",
            "status": "pending",
            "createdAt": hours_ago(23),
            "items": [{"book_id": "b1", "quantity": 1, "priceAtOrder": 250}],
        },
        "o2": {
            "_id": "o2",
            "status": "delivered",
            "createdAt": hours_ago(72),
            "deliveredAt": hours_ago(24),
            "items": [{"book_id": "b2", "quantity": 1, "priceAtOrder": 400}],
        },
        "o3": {
            "_id": "o3",
            "status": "refund_initiated",
            "returnReason": "Damaged Book",
            "createdAt": hours_ago(24 * 12),
            "items": [{"book_id": "b2", "quantity": 1, "priceAtOrder": 400}],
        },
    }
    return fake_client


@pytest.fixture
async def registry(storage, library):
    registry = CartStoreRegistry(storage, library)
    app.dependency_overrides[get_cart_registry] = lambda: registry
    app.dependency_overrides[get_library_client] = lambda: library
    yield registry
    await registry.close()
    app.dependency_overrides.clear()


@pytest.fixture
async def open_client(registry):
    clients = []

    async def _open():
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        clients.append(client)
        return client

    yield _open
    for client in clients:
        await client.aclose()


@pytest.fixture
async def api(open_client):
    return await open_client()


async def login(api, library, user_id="u1", role="user", membership="premium"):
    token = f"tok-{user_id}-{role}"
    library.users[token] = {"_id": user_id, "role": role, "membership_id": {"name": membership}}
    response = await api.post("/api/session", json={"token": token})
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health(api):
    response = await api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_anonymous_cart_is_capped_and_priced(api):
    for _ in range(4):
        response = await api.post("/api/cart/add", json={"book_id": "b1"})

    body = response.json()
    assert body["items"][0]["quantity"] == 2
    assert Decimal(body["summary"]["subtotal"]) == 500
    assert Decimal(body["summary"]["delivery_fee"]) == 0

    response = await api.post("/api/cart/b1/decrease")
    assert Decimal(response.json()["summary"]["delivery_fee"]) == 50

    response = await api.delete("/api/cart/b1")
    assert response.json()["items"] == []


@pytest.mark.asyncio
async def test_unknown_book_returns_upstream_status(api):
    response = await api.post("/api/cart/add", json={"book_id": "nope"})

    assert response.status_code == 404
    assert "Book not found" in response.json()["detail"]


@pytest.mark.asyncio
async def test_anonymous_carts_are_private_to_each_browser(open_client, library):
    alice = await open_client()
    bob = await open_client()

    await alice.post("/api/cart/add", json={"book_id": "b1"})

    assert (await bob.get("/api/cart")).json()["items"] == []

    session = await login(bob, library, user_id="u2")
    assert session["cart_count"] == 0

    alice_items = (await alice.get("/api/cart")).json()["items"]
    assert [(i["book_id"], i["quantity"]) for i in alice_items] == [("b1", 1)]


@pytest.mark.asyncio
async def test_login_carries_offline_cart(api, library):
    await api.post("/api/cart/add", json={"book_id": "b2"})

    anonymous = (await api.get("/api/session")).json()
    assert anonymous["authenticated"] is False
    assert anonymous["cart_count"] == 1

    session = await login(api, library)

    assert session["authenticated"] is True
    assert session["user_id"] == "u1"
    assert session["cart_count"] == 1

    response = await api.post("/api/cart/b2/increase")
    assert response.json()["items"][0]["quantity"] == 1


@pytest.mark.asyncio
async def test_login_keeps_stored_user_cart_when_remote_fetch_fails(api, library, storage, make_book):
    await storage.write("borrowCart_u1", [CartItem(book=make_book("b1", copies=2), quantity=2)])
    library.fail_get_cart = True
    await api.post("/api/cart/add", json={"book_id": "b2"})

    session = await login(api, library)

    assert session["cart_count"] == 3
    stored = await storage.read("borrowCart_u1")
    assert [(i.book.id, i.quantity) for i in stored] == [("b1", 2), ("b2", 1)]


@pytest.mark.asyncio
async def test_identity_comes_from_library_profile(api, library):
    library.users["tok"] = {"_id": "u7", "role": "user", "membership_id": {"name": "basic"}}

    response = await api.post("/api/session", json={"token": "tok", "user_id": "u1", "role": "admin"})
    body = response.json()

    assert body["user_id"] == "u7"
    assert body["role"] == "user"
    assert body["membership"] == "basic"

    response = await api.patch("/api/orders/admin/o1/status", json={"status": "processing"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_token_is_rejected(api):
    response = await api.post("/api/session", json={"token": "forged"})

    assert response.status_code == 401
    assert (await api.get("/api/session")).json()["authenticated"] is False


@pytest.mark.asyncio
async def test_checkout_requires_items(api, library):
    await login(api, library)

    response = await api.post("/api/cart/checkout", json={"address_id": "addr-1"})
    assert response.status_code == 400

    await api.post("/api/cart/add", json={"book_id": "b1"})
    response = await api.post("/api/cart/checkout", json={"address_id": "addr-1"})

    assert response.status_code == 201
    assert library.placed_orders == [([("b1", 1)], "addr-1")]
    assert (await api.get("/api/cart")).json()["items"] == []


@pytest.mark.asyncio
async def test_orders_require_session(api):
    response = await api.get("/api/orders/o1")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_order_detail_includes_progress_and_countdown(api, library):
    await login(api, library, membership="premium")

    response = await api.get("/api/orders/o1")
    body = response.json()

    assert response.status_code == 200
    assert body["order"]["_id"] == "o1"
    assert body["progress"]["step"] == 1
    assert body["countdown"]["urgency"] == "urgent"
    assert body["countdown"]["overdue"] is False
    assert body["estimated_delivery"] == body["countdown"]["deadline"]


@pytest.mark.asyncio
async def test_my_orders_lists_views(api, library):
    await login(api, library, membership="basic")

    response = await api.get("/api/orders/my-orders")

    assert response.status_code == 200
    assert response.json()[0]["countdown"]["urgency"] == "normal"


@pytest.mark.asyncio
async def test_admin_status_update_checks_transition(api, library):
    await login(api, library)
    response = await api.patch("/api/orders/admin/o1/status", json={"status": "processing"})
    assert response.status_code == 403

    await api.delete("/api/session")
    await login(api, library, user_id="admin-1", role="admin")

    response = await api.patch("/api/orders/admin/o1/status", json={"status": "delivered"})
    assert response.status_code == 400
    assert library.status_updates == []

    response = await api.patch("/api/orders/admin/o1/status", json={"status": "processing"})
    assert response.status_code == 200
    assert response.json()["progress"]["step"] == 2
    assert library.status_updates == [("o1", "processing")]


@pytest.mark.asyncio
async def test_refund_needs_bank_details(api, library):
    await login(api, library, user_id="admin-1", role="admin")

    response = await api.patch("/api/orders/admin/o3/status", json={"status": "refunded"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot mark as Refunded. Bank details missing."

    options = (await api.get("/api/orders/o3")).json()["status_options"]
    assert {o["value"]: o["allowed"] for o in options}["refunded"] is False

    await api.delete("/api/session")
    await login(api, library)
    response = await api.put("/api/orders/o3/refund-details", json={
        "accountName": "Asha Rao", "bankName": "State Bank",
        "accountNumber": "0012345678", "ifscCode": "SBIN0000123"
    })
    assert response.status_code == 200
    assert response.json()["order"]["refundDetails"]["accountNumber"] == "0012345678"

    await api.delete("/api/session")
    await login(api, library, user_id="admin-1", role="admin")
    response = await api.patch("/api/orders/admin/o3/status", json={"status": "refunded"})
    assert response.status_code == 200
    assert response.json()["progress"]["terminal"] is None
    assert library.status_updates == [("o3", "refunded")]


@pytest.mark.asyncio
async def test_refund_details_only_after_refund_initiated(api, library):
    await login(api, library)

    response = await api.put("/api/orders/o2/refund-details", json={
        "accountName": "Asha Rao", "bankName": "State Bank",
        "accountNumber": "0012345678", "ifscCode": "SBIN0000123"
    })

    assert response.status_code == 400
    assert response.json()["detail"] == "Refund not initiated"


@pytest.mark.asyncio
async def test_admin_lists_all_orders(api, library):
    await login(api, library, user_id="admin-1", role="admin")

    response = await api.get("/api/orders/admin/all", params={"status": "all", "search": "asha", "page": 2})
    body = response.json()

    assert response.status_code == 200
    assert body["total_orders"] == 3
    assert [o["order"]["_id"] for o in body["orders"]] == ["o1", "o2", "o3"]
    assert library.order_filters["search"] == "asha"
    assert library.order_filters["page"] == 2


@pytest.mark.asyncio
async def test_user_cancels_own_order_while_not_shipped(api, library):
    await login(api, library)

    response = await api.patch("/api/orders/o1/cancel")
    assert response.status_code == 200
    assert response.json()["progress"]["terminal"] == "cancelled"

    response = await api.patch("/api/orders/o2/cancel")
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot cancel order in delivered status"
    assert library.status_updates == [("o1", "cancelled")]


@pytest.mark.asyncio
async def test_exchange_request_moves_order_to_exchange_track(api, library):
    await login(api, library)

    response = await api.post("/api/orders/o1/exchange", json={"reason": "Damaged Book"})
    assert response.status_code == 400

    response = await api.post("/api/orders/o2/exchange", json={"reason": "Damaged Book"})
    body = response.json()
    assert response.status_code == 200
    assert body["progress"]["track"] == "exchange"
    assert body["progress"]["step"] == 0


@pytest.mark.asyncio
async def test_exchange_window_closes_after_a_week(api, library):
    library.orders["o2"]["deliveredAt"] = hours_ago(24 * 8)
    await login(api, library)

    response = await api.post("/api/orders/o2/exchange", json={"reason": "Pages Missing"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Exchange window has expired"

    response = await api.post("/api/orders/o2/exchange", json={"reason": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_invoice_download(api, library):
    await login(api, library)

    response = await api.get("/api/orders/o1/invoice")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content == b"%PDF-1.4 invoice"
