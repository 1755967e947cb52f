"""Categories, suppliers and locations."""


class TestCategories:
    async def test_create_strips_and_rejects_duplicates(self, client, headers, users):
        r = await client.post("/categories/", json={"name": "  Snacks  "}, headers=headers.manager)
        assert r.status_code == 201, r.text
        assert r.json()["name"] == "Snacks"

        r = await client.post("/categories/", json={"name": "snacks"}, headers=headers.manager)
        assert r.status_code == 409

    async def test_blank_name_is_invalid(self, client, headers, users):
        r = await client.post("/categories/", json={"name": "   "}, headers=headers.manager)
        assert r.status_code == 422

    async def test_staff_cannot_write(self, client, headers, users):
        r = await client.post("/categories/", json={"name": "Snacks"}, headers=headers.staff)
        assert r.status_code == 403

    async def test_anonymous_cannot_read(self, client, users):
        r = await client.get("/categories/")
        assert r.status_code == 401

    async def test_parent_cycle_rejected(self, client, headers, users):
        parent = (await client.post("/categories/", json={"name": "Food"}, headers=headers.manager)).json()
        child = (
            await client.post(
                "/categories/", json={"name": "Snacks", "parent_id": parent["id"]}, headers=headers.manager
            )
        ).json()

        r = await client.patch(f"/categories/{parent['id']}", json={"parent_id": child["id"]}, headers=headers.manager)
        assert r.status_code == 400

        r = await client.patch(f"/categories/{child['id']}", json={"parent_id": child["id"]}, headers=headers.manager)
        assert r.status_code == 400

    async def test_delete_blocked_while_in_use(self, client, headers, catalog, users):
        r = await client.delete(f"/categories/{catalog.category.id}", headers=headers.manager)
        assert r.status_code == 409

        empty = (await client.post("/categories/", json={"name": "Seasonal"}, headers=headers.manager)).json()
        r = await client.delete(f"/categories/{empty['id']}", headers=headers.manager)
        assert r.status_code == 204
        r = await client.get(f"/categories/{empty['id']}", headers=headers.staff)
        assert r.status_code == 404


class TestSuppliers:
    async def test_crud_and_soft_delete(self, client, headers, users):
        r = await client.post(
            "/suppliers/",
            json={"name": "Contoso Wholesale", "email": "sales@contoso.example", "contact_name": "Li Wei"},
            headers=headers.manager,
        )
        assert r.status_code == 201, r.text
        supplier_id = r.json()["id"]

        r = await client.patch(f"/suppliers/{supplier_id}", json={"phone": "+1 555 0100"}, headers=headers.manager)
        assert r.json()["phone"] == "+1 555 0100"

        r = await client.delete(f"/suppliers/{supplier_id}", headers=headers.manager)
        assert r.status_code == 204

        listed = (await client.get("/suppliers/", headers=headers.staff)).json()
        assert listed == []
        listed = (await client.get("/suppliers/", params={"include_inactive": True}, headers=headers.staff)).json()
        assert [s["is_active"] for s in listed] == [False]

    async def test_invalid_email(self, client, headers, users):
        r = await client.post("/suppliers/", json={"name": "Bad", "email": "not-an-email"}, headers=headers.manager)
        assert r.status_code == 422

    async def test_search(self, client, headers, catalog, users):
        r = await client.get("/suppliers/", params={"q": "north"}, headers=headers.staff)
        assert [s["name"] for s in r.json()] == ["Northwind Traders"]


class TestLocations:
    async def test_code_is_upper_cased_and_unique(self, client, headers, users):
        r = await client.post("/locations/", json={"code": "wh-east", "name": "East warehouse"}, headers=headers.manager)
        assert r.status_code == 201, r.text
        assert r.json()["code"] == "WH-EAST"

        r = await client.post("/locations/", json={"code": "WH-EAST", "name": "Again"}, headers=headers.manager)
        assert r.status_code == 409

    async def test_inactive_location_refuses_stock(self, client, headers, catalog):
        r = await client.delete(f"/locations/{catalog.shop.id}", headers=headers.manager)
        assert r.status_code == 204

        r = await client.post(
            "/inventory/adjustments",
            json={
                "product_id": str(catalog.product.id),
                "location_id": str(catalog.shop.id),
                "change": 1,
                "reason": "count",
            },
            headers=headers.manager,
        )
        assert r.status_code == 409
