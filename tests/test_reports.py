"""Reports and CSV/PDF exports."""

import csv
import io
from datetime import date, timedelta

from core import ledger


async def _receive(session, catalog, location, quantity):
    await ledger.apply_movement(
        session,
        product_id=catalog.product.id,
        location_id=location.id,
        change=quantity,
        movement_type="RECEIPT",
    )
    await session.commit()


async def _completed_sale(client, headers, catalog, quantity):
    sale = (
        await client.post(
            "/sales/",
            json={
                "location_id": str(catalog.shop.id),
                "items": [{"product_id": str(catalog.product.id), "quantity": quantity}],
            },
            headers=headers.staff,
        )
    ).json()
    r = await client.post(f"/sales/{sale['id']}/complete", headers=headers.staff)
    assert r.status_code == 200, r.text
    return r.json()


class TestLowStock:
    async def test_only_pairs_at_or_below_level(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.warehouse, 50)
        await _receive(session, catalog, catalog.shop, 10)

        r = await client.get("/reports/low-stock", headers=headers.staff)
        assert r.status_code == 200
        rows = r.json()
        assert [row["location_code"] for row in rows] == ["SHOP-1"]
        assert rows[0]["shortfall"] == 0


class TestValuation:
    async def test_staff_forbidden(self, client, headers, catalog):
        r = await client.get("/reports/stock-valuation", headers=headers.staff)
        assert r.status_code == 403

    async def test_totals_at_cost(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.warehouse, 100)
        await _receive(session, catalog, catalog.shop, 20)

        r = await client.get("/reports/stock-valuation", headers=headers.manager)
        assert r.status_code == 200
        body = r.json()
        assert body["total_quantity"] == 120
        assert body["total_value"] == 42.0
        assert body["totals_by_currency"] == {"USD": 42.0}
        assert {row["location_code"]: row["value"] for row in body["rows"]} == {"SHOP-1": 7.0, "WH-MAIN": 35.0}


class TestSummaries:
    async def test_sales_summary_excludes_refunds(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.shop, 20)
        await _completed_sale(client, headers, catalog, 2)
        refunded = await _completed_sale(client, headers, catalog, 5)
        await client.post(f"/sales/{refunded['id']}/refund", headers=headers.manager)

        today = date.today()
        params = {"start": str(today - timedelta(days=1)), "end": str(today + timedelta(days=1))}
        r = await client.get("/reports/sales-summary", params=params, headers=headers.staff)
        assert r.status_code == 200
        body = r.json()
        assert body["sale_count"] == 1
        assert body["units_sold"] == 2
        assert body["revenue"] == 2.4
        assert body["revenue_by_currency"] == {"USD": 2.4}
        assert body["top_products"][0]["sku"] == "BEV-COLA-330"

    async def test_end_before_start_rejected(self, client, headers, users):
        r = await client.get(
            "/reports/sales-summary", params={"start": "2024-02-01", "end": "2024-01-01"}, headers=headers.staff
        )
        assert r.status_code == 400

    async def test_movements_summary(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.shop, 20)
        await _completed_sale(client, headers, catalog, 3)

        r = await client.get("/reports/movements-summary", headers=headers.staff)
        body = r.json()
        assert body["by_type"]["RECEIPT"] == {"count": 1, "net_change": 20}
        assert body["by_type"]["SALE"] == {"count": 1, "net_change": -3}
        assert body["net_change"] == 17


class TestExports:
    async def test_stock_csv(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.warehouse, 30)

        r = await client.get("/reports/stock.csv", headers=headers.staff)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert 'filename="stock.csv"' in r.headers["content-disposition"]

        rows = list(csv.DictReader(io.StringIO(r.text)))
        assert rows == [
            {
                "location_code": "WH-MAIN",
                "sku": "BEV-COLA-330",
                "name": "Cola 330ml",
                "quantity": "30",
                "reorder_level": "10",
                "is_low": "no",
            }
        ]

    async def test_movements_and_sales_csv(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.shop, 5)
        sale = await _completed_sale(client, headers, catalog, 2)

        r = await client.get("/reports/movements.csv", headers=headers.staff)
        kinds = [row["movement_type"] for row in csv.DictReader(io.StringIO(r.text))]
        assert sorted(kinds) == ["RECEIPT", "SALE"]

        r = await client.get("/reports/sales.csv", headers=headers.staff)
        rows = list(csv.DictReader(io.StringIO(r.text)))
        assert [(row["reference"], row["quantity"], row["line_total"]) for row in rows] == [
            (sale["reference"], "2", "2.4")
        ]

    async def test_stock_pdf(self, client, headers, catalog, session):
        await _receive(session, catalog, catalog.warehouse, 3)

        r = await client.get("/reports/stock.pdf", headers=headers.staff)
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert r.content.startswith(b"%PDF")
