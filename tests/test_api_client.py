import pytest
import requests
import responses

from api_client import SAMPLE_PRODUCTS, ApiError, ClientSession, StorefrontClient, resolve_base_url

BASE = "http://api.test"


@pytest.fixture()
def api():
    return StorefrontClient(base_url=BASE)


class TestBaseUrl:
    def test_explicit_url_is_trimmed(self):
        assert resolve_base_url({"STOREFRONT_API_URL": "  https://shop.example.com/ "}) == "https://shop.example.com"

    def test_development_default(self):
        assert resolve_base_url({"ENVIRONMENT": "development"}) == "http://localhost:8000"

    def test_production_requires_url(self):
        with pytest.raises(ApiError):
            resolve_base_url({"ENVIRONMENT": "production"})


class TestTransport:
    @responses.activate
    def test_bearer_token_attached(self, api):
        responses.get(f"{BASE}/users/me", json={"name": "Ana"})
        api.session.token = "tok"

        api.me()

        assert responses.calls[0].request.headers["Authorization"] == "Bearer tok"

    @responses.activate
    def test_no_token_no_header(self, api):
        responses.get(f"{BASE}/categories", json=[])

        api.get_categories()

        assert "Authorization" not in responses.calls[0].request.headers

    @responses.activate
    def test_login_stores_credentials(self, api):
        responses.post(f"{BASE}/users/login", json={"access_token": "tok", "token_type": "bearer", "user": {"_id": "1", "role": "admin"}})

        api.login("a@b.co", "pw")

        assert api.session.token == "tok"
        assert api.session.is_admin

    @responses.activate
    def test_unauthorized_clears_session_and_calls_hook(self):
        redirected = []
        api = StorefrontClient(base_url=BASE, session=ClientSession(token="old", user={"_id": "1"}), on_unauthorized=lambda: redirected.append(True))
        responses.get(f"{BASE}/users/me", json={"detail": "Invalid or expired token"}, status=401)

        with pytest.raises(ApiError) as exc:
            api.me()

        assert exc.value.status_code == 401
        assert exc.value.message == "Invalid or expired token"
        assert api.session.token is None
        assert not api.session.is_authenticated
        assert redirected == [True]

    @responses.activate
    def test_network_error_raises_api_error(self, api):
        responses.get(f"{BASE}/orders", body=requests.ConnectionError("refused"))

        with pytest.raises(ApiError) as exc:
            api.get_orders()

        assert exc.value.status_code is None

    @responses.activate
    def test_validation_errors_are_joined(self, api):
        responses.post(f"{BASE}/categories", json={"detail": [{"msg": "Field required"}, {"msg": "Too short"}]}, status=400)

        with pytest.raises(ApiError) as exc:
            api.create_category({})

        assert exc.value.message == "Field required | Too short"


class TestProducts:
    @responses.activate
    def test_products_fall_back_to_samples(self, api):
        responses.get(f"{BASE}/products", body=requests.ConnectionError("down"))

        products = api.get_products()

        assert products == SAMPLE_PRODUCTS
        assert products is not SAMPLE_PRODUCTS

    @responses.activate
    def test_single_product_errors_propagate(self, api):
        responses.get(f"{BASE}/products/x", json={"detail": "Product not found"}, status=404)

        with pytest.raises(ApiError):
            api.get_product("x")

    @responses.activate
    def test_related_products(self, api):
        responses.get(
            f"{BASE}/products",
            json=[
                {"_id": "1", "category": "Lighting"},
                {"_id": "2", "category": "Lighting"},
                {"_id": "3", "category": "Wiring"},
            ],
        )

        related = api.get_related_products("Lighting", "1")

        assert [p["_id"] for p in related] == ["2"]

    @responses.activate
    def test_update_with_cover_is_multipart(self, api):
        responses.put(f"{BASE}/products/1", json={"_id": "1", "cover_image": "abc.png"})

        api.update_product("1", {"name": "Lamp"}, cover_image=("lamp.png", b"img", "image/png"))

        assert responses.calls[0].request.headers["Content-Type"].startswith("multipart/form-data")

    def test_image_url(self, api):
        assert api.image_url("abc.png") == f"{BASE}/uploads/products/abc.png"
        assert api.image_url("https://cdn.example.com/x.png") == "https://cdn.example.com/x.png"
        assert api.image_url(None).startswith("https://via.placeholder.com")


class TestCart:
    @responses.activate
    def test_add_creates_cart_and_retries_once(self, api):
        responses.post(f"{BASE}/cart/add", json={"detail": "Cart not found"}, status=404)
        responses.post(f"{BASE}/cart/add", json={"user_id": "u1", "product_ids": ["p1"], "total": 10})
        responses.post(f"{BASE}/cart", json={"user_id": "u1", "product_ids": [], "total": 0}, status=201)

        cart = api.add_to_cart("u1", "p1", 10)

        assert cart["product_ids"] == ["p1"]
        assert [c.request.url for c in responses.calls] == [f"{BASE}/cart/add", f"{BASE}/cart", f"{BASE}/cart/add"]

    @responses.activate
    def test_second_failure_propagates(self, api):
        responses.post(f"{BASE}/cart/add", json={"detail": "Cart not found"}, status=404)
        responses.post(f"{BASE}/cart", json={}, status=201)

        with pytest.raises(ApiError) as exc:
            api.add_to_cart("u1", "p1", 10)

        assert exc.value.status_code == 404
        assert len(responses.calls) == 3

    @responses.activate
    def test_other_errors_do_not_retry(self, api):
        responses.post(f"{BASE}/cart/add", json={"detail": "Database error"}, status=500)

        with pytest.raises(ApiError):
            api.add_to_cart("u1", "p1", 10)

        assert len(responses.calls) == 1

    @responses.activate
    def test_cart_count(self, api):
        responses.get(f"{BASE}/cart/u1", json={"product_ids": ["a", "a", "b"]})
        responses.get(f"{BASE}/cart/u2", json={"detail": "Cart not found"}, status=404)

        assert api.cart_count("u1") == 3
        assert api.cart_count("u2") == 0

    @responses.activate
    def test_checkout_link(self, api):
        responses.get(f"{BASE}/cart/u1/checkout", json={"url": "https://wa.me/57?text=hi"})

        assert api.get_checkout_link("u1", "Ana") == "https://wa.me/57?text=hi"
        assert responses.calls[0].request.url == f"{BASE}/cart/u1/checkout?name=Ana"


class TestCallerSession:
    @responses.activate
    def test_injected_session_headers_untouched(self):
        http = requests.Session()
        before = dict(http.headers)
        api = StorefrontClient(base_url=BASE, http=http)
        responses.post(f"{BASE}/categories", json={"_id": "c1"})

        api.create_category({"name": "Lighting"})

        assert dict(http.headers) == before
        assert responses.calls[0].request.headers["Content-Type"] == "application/json"


class TestCartAddErrors:
    @responses.activate
    def test_unknown_product_does_not_create_a_cart(self, api):
        responses.post(f"{BASE}/cart/add", json={"detail": "Product not found"}, status=404)
        responses.post(f"{BASE}/cart", json={}, status=201)

        with pytest.raises(ApiError) as exc:
            api.add_to_cart("u1", "missing")

        assert exc.value.message == "Product not found"
        assert [c.request.url for c in responses.calls] == [f"{BASE}/cart/add"]
