"""
Storefront API Client

Thin wrapper over the storefront HTTP API. Every call returns the decoded
response body or raises ``ApiError``. Credentials live on an explicit
``ClientSession`` rather than in process-wide state.
"""

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests
import structlog

logger = structlog.get_logger(__name__)

DEVELOPMENT_API_URL = "http://localhost:8000"
REQUEST_TIMEOUT = 30  # seconds
PLACEHOLDER_IMAGE = "https://via.placeholder.com/150?text=No+Image"
CART_NOT_FOUND = "Cart not found"


class ApiError(Exception):
    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def resolve_base_url(environ: Optional[Dict[str, str]] = None) -> str:
    """Pick the API base URL: explicit setting first, then the local dev server."""
    environ = os.environ if environ is None else environ
    url = (environ.get("STOREFRONT_API_URL") or "").strip()
    if url:
        return url.rstrip("/")
    if (environ.get("ENVIRONMENT") or "development").lower() == "development":
        return DEVELOPMENT_API_URL
    raise ApiError(None, "STOREFRONT_API_URL must be set outside development")


@dataclass
class ClientSession:
    token: Optional[str] = None
    user: Optional[dict] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.token is not None

    @property
    def is_admin(self) -> bool:
        return bool(self.user) and self.user.get("role") == "admin"

    def clear(self):
        self.token = None
        self.user = None


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:300] or response.reason or "Request failed"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        return " | ".join(str(err.get("msg", err)) if isinstance(err, dict) else str(err) for err in detail)
    return str(detail or body)


class StorefrontClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[ClientSession] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
        http: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = (base_url or resolve_base_url()).rstrip("/")
        self.session = session or ClientSession()
        self.on_unauthorized = on_unauthorized
        self.http = http or requests.Session()
        self.timeout = timeout

    # ---------- transport ----------
    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("api_network_error", method=method, url=url, error=str(exc))
            raise ApiError(None, str(exc)) from exc

        if response.status_code == 401:
            self.session.clear()
            if self.on_unauthorized is not None:
                self.on_unauthorized()
        if not response.ok:
            message = _error_message(response)
            if response.status_code == 400:
                logger.debug("api_validation_error", method=method, url=url, detail=message)
            else:
                logger.error("api_error", method=method, url=url, status=response.status_code, detail=message)
            raise ApiError(response.status_code, message)
        return response.json()

    def image_url(self, path: Optional[str]) -> str:
        if not path:
            return PLACEHOLDER_IMAGE
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/uploads/products/{path}"

    # ---------- products ----------
    def get_products(self) -> List[dict]:
        """List products, falling back to sample data when the API cannot be reached."""
        try:
            return self._request("GET", "/products")
        except ApiError as exc:
            logger.warning("products_fallback", error=exc.message)
            return [dict(p) for p in SAMPLE_PRODUCTS]

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/products/{product_id}")

    def get_related_products(self, category: str, exclude_id: str, limit: int = 4) -> List[dict]:
        products = self.get_products()
        return [
            p for p in products
            if p.get("category") == category and (p.get("_id") or p.get("id")) != exclude_id
        ][:limit]

    def create_product(self, data: dict, cover_image=None, gallery=None) -> dict:
        return self._send_product("POST", "/products", data, cover_image, gallery)

    def update_product(self, product_id: str, data: dict, cover_image=None, gallery=None) -> dict:
        return self._send_product("PUT", f"/products/{product_id}", data, cover_image, gallery)

    def _send_product(self, method, path, data, cover_image, gallery):
        if cover_image is None and not gallery:
            return self._request(method, path, json=data)
        files = []
        if cover_image is not None:
            files.append(("cover_image", cover_image))
        for image in gallery or []:
            files.append(("gallery", image))
        return self._request(method, path, data=data, files=files)

    def delete_product(self, product_id: str) -> dict:
        return self._request("DELETE", f"/products/{product_id}")

    # ---------- users ----------
    def login(self, email: str, password: str) -> dict:
        body = self._request("POST", "/users/login", json={"email": email, "password": password})
        self.session.token = body.get("access_token")
        self.session.user = body.get("user")
        return body

    def logout(self):
        self.session.clear()

    def register(self, name: str, email: str, password: str) -> dict:
        return self._request("POST", "/users/register", json={"name": name, "email": email, "password": password})

    def me(self) -> dict:
        return self._request("GET", "/users/me")

    def get_users(self) -> List[dict]:
        return self._request("GET", "/users")

    def create_user(self, data: dict) -> dict:
        return self._request("POST", "/users", json=data)

    def update_user(self, user_id: str, data: dict) -> dict:
        return self._request("PUT", f"/users/{user_id}", json=data)

    def delete_user(self, user_id: str) -> dict:
        return self._request("DELETE", f"/users/{user_id}")

    # ---------- categories ----------
    def get_categories(self) -> List[dict]:
        return self._request("GET", "/categories")

    def create_category(self, data: dict) -> dict:
        return self._request("POST", "/categories", json=data)

    def update_category(self, category_id: str, data: dict) -> dict:
        return self._request("PUT", f"/categories/{category_id}", json=data)

    def delete_category(self, category_id: str) -> dict:
        return self._request("DELETE", f"/categories/{category_id}")

    # ---------- orders ----------
    def create_order(self, user_id: str, product_ids: List[str], total: float) -> dict:
        return self._request("POST", "/orders", json={"user_id": user_id, "product_ids": product_ids, "total": total})

    def get_orders(self, user_id: Optional[str] = None) -> List[dict]:
        params = {"user_id": user_id} if user_id else None
        return self._request("GET", "/orders", params=params)

    def get_order(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}")

    def delete_order(self, order_id: str) -> dict:
        return self._request("DELETE", f"/orders/{order_id}")

    # ---------- cart ----------
    def create_cart(self, user_id: str) -> dict:
        return self._request("POST", "/cart", json={"user_id": user_id})

    def get_cart(self, user_id: str) -> dict:
        return self._request("GET", f"/cart/{user_id}")

    def add_to_cart(self, user_id: str, product_id: str, price: Optional[float] = None) -> dict:
        """Add one unit; on a missing cart, create it and retry exactly once."""
        payload = {"user_id": user_id, "product_id": product_id, "price": price}
        try:
            return self._request("POST", "/cart/add", json=payload)
        except ApiError as exc:
            if exc.status_code != 404 or exc.message != CART_NOT_FOUND:
                raise
        self.create_cart(user_id)
        return self._request("POST", "/cart/add", json=payload)

    def remove_from_cart(self, user_id: str, product_id: str, price: Optional[float] = None) -> dict:
        return self._request("POST", "/cart/remove", json={"user_id": user_id, "product_id": product_id, "price": price})

    def clear_cart(self, user_id: str) -> dict:
        return self._request("POST", "/cart/clear", json={"user_id": user_id})

    def get_cart_summary(self, user_id: str) -> dict:
        return self._request("GET", f"/cart/{user_id}/summary")

    def get_checkout_link(self, user_id: str, name: Optional[str] = None) -> str:
        params = {"name": name} if name else None
        return self._request("GET", f"/cart/{user_id}/checkout", params=params)["url"]

    def cart_count(self, user_id: str) -> int:
        """Number of units in the cart; a missing cart counts as empty."""
        try:
            return len(self.get_cart(user_id).get("product_ids", []))
        except ApiError as exc:
            if exc.status_code == 404:
                return 0
            raise


# Shown when the product list cannot be fetched at all.
SAMPLE_PRODUCTS = [
    {
        "id": "1",
        "name": "Professional Laptop",
        "price": 2500000,
        "description": "High-performance laptop for professionals and creatives",
        "category": "Electronics",
        "quantity": 15,
        "cover_image": "https://via.placeholder.com/300x225/4A90E2/ffffff?text=Laptop",
    },
    {
        "id": "2",
        "name": "Wireless Mouse",
        "price": 85000,
        "description": "Ergonomic mouse with Bluetooth connection",
        "category": "Accessories",
        "quantity": 45,
        "cover_image": "https://via.placeholder.com/300x225/50C878/ffffff?text=Mouse",
    },
    {
        "id": "3",
        "name": "Mechanical Keyboard",
        "price": 320000,
        "description": "RGB mechanical keyboard for gamers",
        "category": "Accessories",
        "quantity": 8,
        "cover_image": "https://via.placeholder.com/300x225/FF6B6B/ffffff?text=Keyboard",
    },
    {
        "id": "4",
        "name": "27\" Monitor",
        "price": 1200000,
        "description": "Full HD monitor with IPS panel",
        "category": "Electronics",
        "quantity": 12,
        "cover_image": "https://via.placeholder.com/300x225/9B59B6/ffffff?text=Monitor",
    },
    {
        "id": "5",
        "name": "Bluetooth Headphones",
        "price": 280000,
        "description": "Noise-cancelling headphones",
        "category": "Audio",
        "quantity": 0,
        "cover_image": "https://via.placeholder.com/300x225/F39C12/ffffff?text=Headphones",
    },
    {
        "id": "6",
        "name": "HD Webcam",
        "price": 195000,
        "description": "1080p webcam with built-in microphone",
        "category": "Accessories",
        "quantity": 22,
        "cover_image": "https://via.placeholder.com/300x225/1ABC9C/ffffff?text=Webcam",
    },
]
