KITCHEN = {
    "name": "kitchen",
    "slug": "kitchen",
    "description": "Mugs, plates and kitchenware",
    "image": "https://cdn.example.com/kitchen.png",
}
BAGS = {"name": "bags", "slug": "bags", "description": "Totes and backpacks"}


def _create(client, headers, payload):
    return client.post("/api/admin/categories", json=payload, headers=headers)


class TestPublicListing:
    def test_lists_with_product_counts(self, client, admin_headers, product):
        _create(client, admin_headers, KITCHEN)
        _create(client, admin_headers, BAGS)

        categories = client.get("/api/categories").json()
        assert [(c["name"], c["product_count"]) for c in categories] == [("bags", 0), ("kitchen", 1)]


class TestCategoryAdmin:
    def test_create_and_get(self, client, admin_headers, product):
        response = _create(client, admin_headers, KITCHEN)
        assert response.status_code == 201
        category = response.json()
        assert category["product_count"] == 1

        response = client.get(f"/api/admin/categories/{category['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["slug"] == "kitchen"

    def test_duplicate_slug_or_name(self, client, admin_headers):
        _create(client, admin_headers, KITCHEN)
        assert _create(client, admin_headers, dict(KITCHEN, name="Kitchenware")).status_code == 400
        assert _create(client, admin_headers, dict(KITCHEN, slug="kitchen-2")).status_code == 400

    def test_invalid_payload(self, client, admin_headers):
        assert _create(client, admin_headers, dict(KITCHEN, slug="Not A Slug")).status_code == 400
        assert _create(client, admin_headers, dict(KITCHEN, description="   ")).status_code == 400

    def test_customer_cannot_manage(self, client, user_headers, admin_headers):
        assert _create(client, user_headers, KITCHEN).status_code == 403
        category_id = _create(client, admin_headers, KITCHEN).json()["id"]
        assert client.delete(f"/api/admin/categories/{category_id}", headers=user_headers).status_code == 403
        assert client.get("/api/admin/categories/search?q=kit").status_code == 401

    def test_rename_moves_products(self, client, store, admin_headers, product):
        category_id = _create(client, admin_headers, KITCHEN).json()["id"]

        response = client.put(
            f"/api/admin/categories/{category_id}",
            json=dict(KITCHEN, name="kitchenware", slug="kitchenware"),
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["product_count"] == 1
        assert store.get_document("products", product["id"])["categories"] == ["kitchenware"]

    def test_update_keeps_own_slug(self, client, admin_headers):
        category_id = _create(client, admin_headers, KITCHEN).json()["id"]
        response = client.put(
            f"/api/admin/categories/{category_id}",
            json=dict(KITCHEN, description="Everything for the kitchen"),
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["description"] == "Everything for the kitchen"

    def test_missing_category(self, client, admin_headers):
        assert client.get("/api/admin/categories/nope", headers=admin_headers).status_code == 404
        assert client.put("/api/admin/categories/nope", json=KITCHEN, headers=admin_headers).status_code == 404
        assert client.delete("/api/admin/categories/nope", headers=admin_headers).status_code == 404

    def test_delete_and_bulk_delete(self, client, store, admin_headers):
        first = _create(client, admin_headers, KITCHEN).json()["id"]
        second = _create(client, admin_headers, BAGS).json()["id"]

        assert client.delete(f"/api/admin/categories/{first}", headers=admin_headers).json() == {"deleted": True}
        response = client.post(
            "/api/admin/categories/bulk-delete", json={"ids": [first, second]}, headers=admin_headers
        )
        assert response.json() == {"deleted": 1}
        assert store.count_documents("categories") == 0


class TestCategorySearch:
    def test_matches_name_description_and_slug(self, client, user_headers, admin_headers):
        _create(client, admin_headers, KITCHEN)
        _create(client, admin_headers, BAGS)

        found = client.get("/api/admin/categories/search?q=BACKPACK", headers=user_headers).json()
        assert [c["name"] for c in found["categories"]] == ["bags"]
        found = client.get("/api/admin/categories/search?q=kit", headers=user_headers).json()
        assert [c["name"] for c in found["categories"]] == ["kitchen"]

    def test_blank_query_returns_nothing(self, client, user_headers, admin_headers):
        _create(client, admin_headers, KITCHEN)
        assert client.get("/api/admin/categories/search?q=%20", headers=user_headers).json() == {"categories": []}

    def test_limit(self, client, user_headers, admin_headers):
        _create(client, admin_headers, KITCHEN)
        _create(client, admin_headers, BAGS)
        found = client.get("/api/admin/categories/search?q=a&limit=1", headers=user_headers).json()
        assert len(found["categories"]) == 1
