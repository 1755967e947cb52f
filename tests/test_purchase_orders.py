"""Purchase order lifecycle and receiving."""

from core import ledger


async def _create_order(client, headers, catalog, quantity=10, unit_cost=None):
    item = {"product_id": str(catalog.product.id), "quantity": quantity}
    if unit_cost is not None:
        item["unit_cost"] = unit_cost
    r = await client.post(
        "/purchase-orders/",
        json={
            "supplier_id": str(catalog.supplier.id),
            "location_id": str(catalog.warehouse.id),
            "items": [item],
        },
        headers=headers.manager,
    )
    assert r.status_code == 201, r.text
    return r.json()


async def _set_status(client, headers, order_id, new_status):
    return await client.post(f"/purchase-orders/{order_id}/status", json={"status": new_status}, headers=headers.manager)


class TestCreate:
    async def test_draft_with_default_unit_cost(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog, quantity=12)
        assert order["status"] == "DRAFT"
        assert order["reference"].startswith("PO-")
        assert order["items"][0]["unit_cost"] == 0.35
        assert order["items"][0]["quantity_received"] == 0

    async def test_duplicate_products_invalid(self, client, headers, catalog):
        item = {"product_id": str(catalog.product.id), "quantity": 1}
        r = await client.post(
            "/purchase-orders/",
            json={
                "supplier_id": str(catalog.supplier.id),
                "location_id": str(catalog.warehouse.id),
                "items": [item, item],
            },
            headers=headers.manager,
        )
        assert r.status_code == 422

    async def test_currency_follows_products(self, client, headers, catalog, session):
        order = await _create_order(client, headers, catalog)
        assert order["currency"] == "USD"

        catalog.product.currency = "EUR"
        await session.commit()
        order = await _create_order(client, headers, catalog)
        assert order["currency"] == "EUR"

    async def test_update_strips_notes(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog)
        r = await client.patch(
            f"/purchase-orders/{order['id']}", json={"notes": "  call before delivery  "}, headers=headers.manager
        )
        assert r.status_code == 200, r.text
        assert r.json()["notes"] == "call before delivery"

    async def test_staff_cannot_create(self, client, headers, catalog):
        r = await client.post(
            "/purchase-orders/",
            json={
                "supplier_id": str(catalog.supplier.id),
                "location_id": str(catalog.warehouse.id),
                "items": [{"product_id": str(catalog.product.id), "quantity": 1}],
            },
            headers=headers.staff,
        )
        assert r.status_code == 403


class TestTransitions:
    async def test_illegal_transition_conflicts(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog)
        r = await _set_status(client, headers, order["id"], "RECEIVED")
        assert r.status_code == 409

    async def test_items_locked_after_ordering(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog)
        r = await _set_status(client, headers, order["id"], "ORDERED")
        assert r.status_code == 200
        assert r.json()["ordered_at"] is not None

        r = await client.patch(
            f"/purchase-orders/{order['id']}",
            json={"items": [{"product_id": str(catalog.product.id), "quantity": 99}]},
            headers=headers.manager,
        )
        assert r.status_code == 409

        r = await client.delete(f"/purchase-orders/{order['id']}", headers=headers.manager)
        assert r.status_code == 409

    async def test_draft_cannot_be_received(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog)
        r = await client.post(f"/purchase-orders/{order['id']}/receive", json={}, headers=headers.manager)
        assert r.status_code == 409


class TestReceiving:
    async def test_partial_then_full_receipt(self, client, headers, catalog, session):
        order = await _create_order(client, headers, catalog, quantity=10)
        await _set_status(client, headers, order["id"], "ORDERED")
        item_id = order["items"][0]["id"]

        r = await client.post(
            f"/purchase-orders/{order['id']}/receive",
            json={"lines": [{"item_id": item_id, "quantity": 4}]},
            headers=headers.manager,
        )
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "PARTIALLY_RECEIVED"
        assert r.json()["items"][0]["quantity_received"] == 4

        # No lines: receive everything still outstanding
        r = await client.post(f"/purchase-orders/{order['id']}/receive", json={}, headers=headers.manager)
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "RECEIVED"
        assert r.json()["received_at"] is not None

        assert await ledger.current_quantity(session, catalog.product.id, catalog.warehouse.id) == 10
        assert await ledger.find_ledger_mismatches(session) == []

        r = await client.get(
            "/inventory/movements",
            params={"source_type": "purchase_order", "source_id": order["id"]},
            headers=headers.staff,
        )
        assert sorted(m["change"] for m in r.json()) == [4, 6]

    async def test_over_receipt_rejected(self, client, headers, catalog, session):
        order = await _create_order(client, headers, catalog, quantity=5)
        await _set_status(client, headers, order["id"], "ORDERED")
        item_id = order["items"][0]["id"]

        r = await client.post(
            f"/purchase-orders/{order['id']}/receive",
            json={"lines": [{"item_id": item_id, "quantity": 6}]},
            headers=headers.manager,
        )
        assert r.status_code == 409
        assert await ledger.current_quantity(session, catalog.product.id, catalog.warehouse.id) == 0

    async def test_cancelled_order_cannot_be_received(self, client, headers, catalog):
        order = await _create_order(client, headers, catalog)
        await _set_status(client, headers, order["id"], "ORDERED")
        r = await _set_status(client, headers, order["id"], "CANCELLED")
        assert r.json()["status"] == "CANCELLED"

        r = await client.post(f"/purchase-orders/{order['id']}/receive", json={}, headers=headers.manager)
        assert r.status_code == 409
