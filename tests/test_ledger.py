"""Stock ledger: every quantity change is a movement and the totals always agree."""

import pytest
from fastapi import HTTPException
from sqlalchemy import select, update

from core import ledger
from db.database import InventoryMovement, Stock


async def _quantity(session, product, location) -> int:
    return await ledger.current_quantity(session, product.id, location.id)


class TestApplyMovement:
    async def test_receipt_creates_stock_row(self, session, catalog):
        out = await ledger.apply_movement(
            session,
            product_id=catalog.product.id,
            location_id=catalog.warehouse.id,
            change=25,
            movement_type="receipt",
        )
        await session.commit()

        assert out["movement"]["movement_type"] == "RECEIPT"
        assert out["stock"]["quantity"] == 25
        assert await _quantity(session, catalog.product, catalog.warehouse) == 25

    async def test_mixed_operations_keep_invariant(self, session, catalog):
        p, wh, shop = catalog.product, catalog.warehouse, catalog.shop
        await ledger.apply_movement(session, product_id=p.id, location_id=wh.id, change=100, movement_type="RECEIPT")
        await ledger.apply_movement(session, product_id=p.id, location_id=wh.id, change=-7, movement_type="SALE")
        await ledger.apply_movement(session, product_id=p.id, location_id=wh.id, change=2, movement_type="RETURN")
        await ledger.transfer(session, product_id=p.id, from_location_id=wh.id, to_location_id=shop.id, quantity=30)
        await ledger.apply_movement(session, product_id=p.id, location_id=shop.id, change=-4, movement_type="ADJUSTMENT")
        await session.commit()

        assert await _quantity(session, p, wh) == 65
        assert await _quantity(session, p, shop) == 26
        assert await ledger.find_ledger_mismatches(session) == []

    async def test_zero_change_rejected(self, session, catalog):
        with pytest.raises(HTTPException) as exc:
            await ledger.apply_movement(
                session,
                product_id=catalog.product.id,
                location_id=catalog.warehouse.id,
                change=0,
                movement_type="ADJUSTMENT",
            )
        assert exc.value.status_code == 400

    async def test_unknown_type_rejected(self, session, catalog):
        with pytest.raises(HTTPException) as exc:
            await ledger.apply_movement(
                session,
                product_id=catalog.product.id,
                location_id=catalog.warehouse.id,
                change=5,
                movement_type="GIFT",
            )
        assert exc.value.status_code == 400

    async def test_negative_stock_rejected_without_writing(self, session, catalog):
        # Rollback expires loaded objects; keep plain ids
        product_id, location_id = catalog.product.id, catalog.warehouse.id
        await ledger.apply_movement(session, product_id=product_id, location_id=location_id, change=3, movement_type="RECEIPT")
        await session.commit()

        with pytest.raises(HTTPException) as exc:
            await ledger.apply_movement(session, product_id=product_id, location_id=location_id, change=-4, movement_type="SALE")
        assert exc.value.status_code == 409
        assert "Available=3 requested=4" in exc.value.detail
        await session.rollback()

        count = (await session.execute(select(InventoryMovement.id))).all()
        assert len(count) == 1
        assert await ledger.current_quantity(session, product_id, location_id) == 3


class TestTransfer:
    async def test_two_legs_share_transfer_id(self, session, catalog):
        p, wh, shop = catalog.product, catalog.warehouse, catalog.shop
        await ledger.apply_movement(session, product_id=p.id, location_id=wh.id, change=10, movement_type="RECEIPT")
        out = await ledger.transfer(session, product_id=p.id, from_location_id=wh.id, to_location_id=shop.id, quantity=4)
        await session.commit()

        legs = (
            await session.execute(
                select(InventoryMovement.movement_type, InventoryMovement.change).where(
                    InventoryMovement.transfer_id == out["transfer_id"]
                )
            )
        ).all()
        assert sorted(legs) == [("TRANSFER_IN", 4), ("TRANSFER_OUT", -4)]

    async def test_same_location_rejected(self, session, catalog):
        with pytest.raises(HTTPException) as exc:
            await ledger.transfer(
                session,
                product_id=catalog.product.id,
                from_location_id=catalog.warehouse.id,
                to_location_id=catalog.warehouse.id,
                quantity=1,
            )
        assert exc.value.status_code == 400

    async def test_transfer_beyond_source_stock_rejected(self, session, catalog):
        with pytest.raises(HTTPException) as exc:
            await ledger.transfer(
                session,
                product_id=catalog.product.id,
                from_location_id=catalog.warehouse.id,
                to_location_id=catalog.shop.id,
                quantity=1,
            )
        assert exc.value.status_code == 409


class TestLedgerCheck:
    async def test_detects_direct_quantity_edit(self, session, catalog):
        p, wh = catalog.product, catalog.warehouse
        await ledger.apply_movement(session, product_id=p.id, location_id=wh.id, change=10, movement_type="RECEIPT")
        await session.commit()

        # Bypass the ledger on purpose
        await session.execute(
            update(Stock).where(Stock.product_id == p.id, Stock.location_id == wh.id).values(quantity=12)
        )
        await session.commit()

        mismatches = await ledger.find_ledger_mismatches(session)
        assert len(mismatches) == 1
        assert mismatches[0]["stock_quantity"] == 12
        assert mismatches[0]["movement_total"] == 10
        assert mismatches[0]["difference"] == 2

    async def test_endpoint_requires_manager(self, client, headers, catalog):
        r = await client.get("/inventory/ledger-check", headers=headers.staff)
        assert r.status_code == 403

        r = await client.get("/inventory/ledger-check", headers=headers.manager)
        assert r.status_code == 200
        assert r.json() == {"ok": True, "mismatches": []}


class TestInventoryRoutes:
    async def test_adjustment_and_stock_listing(self, client, headers, catalog):
        body = {
            "product_id": str(catalog.product.id),
            "location_id": str(catalog.warehouse.id),
            "change": 8,
            "reason": "Cycle count",
        }
        r = await client.post("/inventory/adjustments", json=body, headers=headers.manager)
        assert r.status_code == 201, r.text
        assert r.json()["stock"]["quantity"] == 8

        r = await client.get("/inventory/stock", params={"low_only": True}, headers=headers.staff)
        assert r.status_code == 200
        rows = r.json()
        # default_reorder_level=10 on the product, so 8 on hand is low
        assert len(rows) == 1
        assert rows[0]["is_low"] is True
        assert rows[0]["reorder_level"] == 10

    async def test_adjustment_requires_reason(self, client, headers, catalog):
        body = {
            "product_id": str(catalog.product.id),
            "location_id": str(catalog.warehouse.id),
            "change": 8,
            "reason": "  ",
        }
        r = await client.post("/inventory/adjustments", json=body, headers=headers.manager)
        assert r.status_code == 422

    async def test_staff_cannot_adjust(self, client, headers, catalog):
        body = {
            "product_id": str(catalog.product.id),
            "location_id": str(catalog.warehouse.id),
            "change": 1,
            "reason": "found one",
        }
        r = await client.post("/inventory/adjustments", json=body, headers=headers.staff)
        assert r.status_code == 403

    async def test_reorder_level_override(self, client, headers, catalog):
        url = f"/inventory/stock/{catalog.product.id}/{catalog.shop.id}"
        r = await client.patch(url, json={"reorder_level": 0}, headers=headers.manager)
        assert r.status_code == 200, r.text
        assert r.json()["quantity"] == 0
        assert r.json()["reorder_level"] == 0
        assert r.json()["is_low"] is True

    async def test_transfer_route_and_movement_history(self, client, headers, catalog):
        await client.post(
            "/inventory/adjustments",
            json={
                "product_id": str(catalog.product.id),
                "location_id": str(catalog.warehouse.id),
                "change": 20,
                "reason": "Opening count",
            },
            headers=headers.manager,
        )
        r = await client.post(
            "/inventory/transfers",
            json={
                "product_id": str(catalog.product.id),
                "from_location_id": str(catalog.warehouse.id),
                "to_location_id": str(catalog.shop.id),
                "quantity": 5,
            },
            headers=headers.manager,
        )
        assert r.status_code == 201, r.text

        r = await client.get(f"/inventory/stock/{catalog.product.id}", headers=headers.staff)
        assert r.json()["total_quantity"] == 20
        by_code = {row["location_code"]: row["quantity"] for row in r.json()["locations"]}
        assert by_code == {"WH-MAIN": 15, "SHOP-1": 5}

        r = await client.get(
            "/inventory/movements", params={"product_id": str(catalog.product.id)}, headers=headers.staff
        )
        types = {m["movement_type"] for m in r.json()}
        assert types == {"ADJUSTMENT", "TRANSFER_OUT", "TRANSFER_IN"}
