import os


def _png(name="cover.png"):
    return (name, b"\x89PNG\r\n\x1a\nfake", "image/png")


class TestProductCrud:
    def test_create_and_get(self, client, product):
        response = client.get(f"/products/{product['_id']}")

        assert response.status_code == 200
        assert response.json()["name"] == "LED Strip"
        assert response.json()["price"] == 19.5

    def test_create_requires_name_and_price(self, client):
        response = client.post("/products", json={"description": "nameless"})

        assert response.status_code == 400

    def test_negative_price_rejected(self, client):
        response = client.post("/products", json={"name": "Bad", "price": -3})

        assert response.status_code == 400

    def test_list_returns_everything(self, client, product):
        client.post("/products", json={"name": "Bulb", "price": 2})

        names = {p["name"] for p in client.get("/products").json()}

        assert names == {"LED Strip", "Bulb"}

    def test_related_filter(self, client, product):
        other = client.post("/products", json={"name": "Lamp", "price": 30, "category": "Lighting"}).json()
        client.post("/products", json={"name": "Cable", "price": 5, "category": "Wiring"})

        related = client.get("/products", params={"category": "Lighting", "exclude": product["_id"]}).json()

        assert [p["_id"] for p in related] == [other["_id"]]

    def test_update_is_a_patch(self, client, product):
        response = client.put(f"/products/{product['_id']}", json={"price": 25})

        assert response.status_code == 200
        assert response.json()["price"] == 25
        assert response.json()["name"] == "LED Strip"

    def test_update_missing_product(self, client):
        assert client.put("/products/64b7f0c2a1b2c3d4e5f60718", json={"price": 1}).status_code == 404
        assert client.put("/products/not-an-id", json={"price": 1}).status_code == 404

    def test_get_malformed_id_is_404(self, client):
        assert client.get("/products/not-an-id").status_code == 404

    def test_delete_is_idempotent_in_outcome(self, client, product):
        assert client.delete(f"/products/{product['_id']}").status_code == 200
        assert client.delete(f"/products/{product['_id']}").status_code == 404
        assert client.delete(f"/products/{product['_id']}").status_code == 404

    def test_legacy_field_names_are_accepted(self, client):
        response = client.post("/products", json={"nombre": "Tira LED", "precio": 1000, "categoria": "Luces LED"})

        assert response.status_code == 201
        body = response.json()
        assert (body["name"], body["price"], body["category"]) == ("Tira LED", 1000, "Luces LED")


class TestProductImages:
    def test_create_with_cover_upload(self, client, upload_dir):
        response = client.post(
            "/products",
            data={"name": "Lamp", "price": "30", "quantity": "2"},
            files={"cover_image": _png()},
        )

        assert response.status_code == 201
        cover = response.json()["cover_image"]
        assert cover.endswith(".png")
        assert os.path.exists(upload_dir / "products" / cover)

    def test_update_with_new_cover_replaces_it(self, client):
        created = client.post("/products", data={"name": "Lamp", "price": "30"}, files={"cover_image": _png()}).json()

        updated = client.put(f"/products/{created['_id']}", data={"name": "Lamp"}, files={"cover_image": _png("new.png")})

        assert updated.status_code == 200
        assert updated.json()["cover_image"] != created["cover_image"]

    def test_update_without_cover_preserves_it(self, client):
        created = client.post("/products", data={"name": "Lamp", "price": "30"}, files={"cover_image": _png()}).json()

        updated = client.put(f"/products/{created['_id']}", json={"price": 35})

        assert updated.json()["cover_image"] == created["cover_image"]
        assert updated.json()["price"] == 35

    def test_gallery_upload(self, client):
        response = client.post(
            "/products/upload/gallery",
            files=[("gallery", _png("a.png")), ("gallery", _png("b.png"))],
        )

        assert response.status_code == 200
        assert len(response.json()["gallery"]) == 2

    def test_cover_upload_requires_a_file(self, client):
        assert client.post("/products/upload/cover").status_code == 400

    def test_non_image_rejected(self, client):
        response = client.post("/products/upload/cover", files={"cover_image": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 400


class TestProductUpdateShape:
    def test_null_required_fields_are_rejected(self, client, product):
        response = client.put(f"/products/{product['_id']}", json={"price": None, "name": None})

        assert response.status_code == 400
        stored = client.get(f"/products/{product['_id']}").json()
        assert (stored["name"], stored["price"]) == ("LED Strip", 19.5)

    def test_null_quantity_and_gallery_are_rejected(self, client, product):
        assert client.put(f"/products/{product['_id']}", json={"quantity": None}).status_code == 400
        assert client.put(f"/products/{product['_id']}", json={"gallery": None}).status_code == 400

    def test_optional_text_can_be_cleared(self, client, product):
        response = client.put(f"/products/{product['_id']}", json={"description": None})

        assert response.status_code == 200
        assert response.json()["description"] is None

    def test_stored_price_still_feeds_the_cart(self, client, product):
        client.put(f"/products/{product['_id']}", json={"price": None})

        response = client.post("/cart/add", json={"user_id": "u1", "product_id": product["_id"]})

        assert response.json()["total"] == 19.5


class TestProductWritesRunInThreadpool:
    def test_create_and_update_leave_the_event_loop(self, client, monkeypatch):
        import main

        offloaded = []

        async def recording_threadpool(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return func(*args, **kwargs)

        monkeypatch.setattr(main, "run_in_threadpool", recording_threadpool)

        created = client.post("/products", data={"name": "Lamp", "price": "30"}, files={"cover_image": _png()})
        client.put(f"/products/{created.json()['_id']}", json={"price": 31})

        assert created.status_code == 201
        assert offloaded == ["_insert_product", "_patch_product"]
