"""Sales: completion takes stock out through the ledger, refunds put it back."""

from sqlalchemy import func, select

from core import ledger
from db.database import InventoryMovement, Product


async def _stock(session, catalog, quantity, product_id=None):
    await ledger.apply_movement(
        session,
        product_id=product_id or catalog.product.id,
        location_id=catalog.shop.id,
        change=quantity,
        movement_type="RECEIPT",
    )
    await session.commit()


async def _product(session, catalog, sku, *, price_minor=500, currency="USD"):
    product = Product(
        sku=sku,
        name=sku.title(),
        category_id=catalog.category.id,
        supplier_id=catalog.supplier.id,
        cost_price_minor=200,
        sale_price_minor=price_minor,
        currency=currency,
        default_reorder_level=0,
    )
    session.add(product)
    await session.commit()
    return product


async def _create_sale(client, headers, catalog, quantity=3, **item_extra):
    r = await client.post(
        "/sales/",
        json={
            "location_id": str(catalog.shop.id),
            "customer_name": "  Walk-in ",
            "items": [{"product_id": str(catalog.product.id), "quantity": quantity, **item_extra}],
        },
        headers=headers.staff,
    )
    assert r.status_code == 201, r.text
    return r.json()


class TestSaleLifecycle:
    async def test_create_uses_product_price(self, client, headers, catalog):
        sale = await _create_sale(client, headers, catalog, quantity=3)
        assert sale["status"] == "DRAFT"
        assert sale["reference"].startswith("SO-")
        assert sale["customer_name"] == "Walk-in"
        assert sale["items"][0]["unit_price"] == 1.20
        assert sale["total"] == 3.60

    async def test_complete_takes_stock(self, client, headers, catalog, session):
        await _stock(session, catalog, 5)
        sale = await _create_sale(client, headers, catalog, quantity=3)

        r = await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "COMPLETED"
        assert r.json()["completed_at"] is not None

        assert await ledger.current_quantity(session, catalog.product.id, catalog.shop.id) == 2
        assert await ledger.find_ledger_mismatches(session) == []

    async def test_shortage_writes_nothing(self, client, headers, catalog, session):
        await _stock(session, catalog, 2)
        sale = await _create_sale(client, headers, catalog, quantity=3)

        r = await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)
        assert r.status_code == 409
        assert "Available=2" in r.json()["detail"]

        r = await client.get(f"/sales/{sale['id']}", headers=headers.staff)
        assert r.json()["status"] == "DRAFT"
        assert await ledger.current_quantity(session, catalog.product.id, catalog.shop.id) == 2

    async def test_shortage_on_second_line_writes_nothing(self, client, headers, catalog, session):
        chips = await _product(session, catalog, "SNK-CHIPS-150")
        await _stock(session, catalog, 5)
        await _stock(session, catalog, 1, product_id=chips.id)

        r = await client.post(
            "/sales/",
            json={
                "location_id": str(catalog.shop.id),
                "items": [
                    {"product_id": str(catalog.product.id), "quantity": 2},
                    {"product_id": str(chips.id), "quantity": 3},
                ],
            },
            headers=headers.staff,
        )
        sale = r.json()

        r = await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)
        assert r.status_code == 409

        assert await ledger.current_quantity(session, catalog.product.id, catalog.shop.id) == 5
        assert await ledger.current_quantity(session, chips.id, catalog.shop.id) == 1
        sales_booked = (
            await session.execute(
                select(func.count(InventoryMovement.id)).where(InventoryMovement.movement_type == "SALE")
            )
        ).scalar_one()
        assert sales_booked == 0
        assert await ledger.find_ledger_mismatches(session) == []

    async def test_update_strips_customer_and_notes(self, client, headers, catalog):
        sale = await _create_sale(client, headers, catalog)
        r = await client.patch(
            f"/sales/{sale['id']}", json={"customer_name": "  Ada  ", "notes": "   "}, headers=headers.staff
        )
        assert r.status_code == 200, r.text
        assert r.json()["customer_name"] == "Ada"
        assert r.json()["notes"] is None

    async def test_completed_sale_is_frozen(self, client, headers, catalog, session):
        await _stock(session, catalog, 5)
        sale = await _create_sale(client, headers, catalog, quantity=1)
        await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)

        r = await client.patch(f"/sales/{sale['id']}", json={"notes": "late edit"}, headers=headers.staff)
        assert r.status_code == 409
        r = await client.delete(f"/sales/{sale['id']}", headers=headers.staff)
        assert r.status_code == 409
        r = await client.post(f"/sales/{sale['id']}/cancel", headers=headers.staff)
        assert r.status_code == 409

    async def test_cancel_draft(self, client, headers, catalog):
        sale = await _create_sale(client, headers, catalog)
        r = await client.post(f"/sales/{sale['id']}/cancel", headers=headers.staff)
        assert r.json()["status"] == "CANCELLED"


class TestRefund:
    async def test_refund_restores_stock(self, client, headers, catalog, session):
        await _stock(session, catalog, 5)
        sale = await _create_sale(client, headers, catalog, quantity=4)
        await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)

        r = await client.post(f"/sales/{sale['id']}/refund", headers=headers.staff)
        assert r.status_code == 403

        r = await client.post(f"/sales/{sale['id']}/refund", headers=headers.manager)
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "REFUNDED"
        assert await ledger.current_quantity(session, catalog.product.id, catalog.shop.id) == 5

        r = await client.get(
            "/inventory/movements", params={"source_id": sale["id"]}, headers=headers.staff
        )
        assert sorted((m["movement_type"], m["change"]) for m in r.json()) == [("RETURN", 4), ("SALE", -4)]

    async def test_draft_cannot_be_refunded(self, client, headers, catalog):
        sale = await _create_sale(client, headers, catalog)
        r = await client.post(f"/sales/{sale['id']}/refund", headers=headers.manager)
        assert r.status_code == 409


class TestSaleCurrency:
    async def test_currency_follows_products(self, client, headers, catalog, session):
        croissant = await _product(session, catalog, "BAK-CROISSANT", currency="EUR")
        r = await client.post(
            "/sales/",
            json={"location_id": str(catalog.shop.id), "items": [{"product_id": str(croissant.id), "quantity": 1}]},
            headers=headers.staff,
        )
        assert r.status_code == 201, r.text
        assert r.json()["currency"] == "EUR"
        assert r.json()["total"] == 5.0

    async def test_mixed_currencies_rejected(self, client, headers, catalog, session):
        croissant = await _product(session, catalog, "BAK-CROISSANT", currency="EUR")
        r = await client.post(
            "/sales/",
            json={
                "location_id": str(catalog.shop.id),
                "items": [
                    {"product_id": str(catalog.product.id), "quantity": 1},
                    {"product_id": str(croissant.id), "quantity": 1},
                ],
            },
            headers=headers.staff,
        )
        assert r.status_code == 409
        assert "EUR, USD" in r.json()["detail"]

        sale = await _create_sale(client, headers, catalog)
        r = await client.patch(
            f"/sales/{sale['id']}",
            json={"items": [{"product_id": str(catalog.product.id), "quantity": 1}, {"product_id": str(croissant.id), "quantity": 1}]},
            headers=headers.staff,
        )
        assert r.status_code == 409
