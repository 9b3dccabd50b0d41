"""
Cart Service

One cart document per user. ``product_ids`` is a multiset: an id repeated n
times means n units of that product. ``total`` tracks the sum of the prices
supplied on add/remove; line subtotals are computed from current product prices.
"""
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote

import structlog
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from database import get_collection, get_document_by_id, get_documents, serialize_doc, to_object_id
from schemas import normalize_document

logger = structlog.get_logger(__name__)

COLLECTION = "cart"


def _serialize_cart(doc: dict) -> dict:
    cart = serialize_doc(normalize_document(COLLECTION, doc))
    cart.setdefault("product_ids", [])
    cart["total"] = round(cart.get("total") or 0, 2)
    return cart


def _find_cart(user_id: str) -> Optional[dict]:
    return get_collection(COLLECTION).find_one({"user_id": user_id})


def _product_price(product_id: str) -> Optional[float]:
    product = get_document_by_id("product", product_id)
    if not product:
        return None
    return float(product.get("price") or 0)


def get_cart(user_id: str) -> dict:
    doc = _find_cart(user_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Cart not found")
    return _serialize_cart(doc)


def get_or_create_cart(user_id: str) -> Tuple[dict, bool]:
    """Return ``(cart, created)``; the cart is created empty when absent."""
    now = datetime.now(timezone.utc)
    carts = get_collection(COLLECTION)
    try:
        result = carts.update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"product_ids": [], "total": 0.0, "created_at": now, "updated_at": now}},
            upsert=True,
        )
    except DuplicateKeyError:
        # another request created it between our match and insert
        result = None
    created = result is not None and result.upserted_id is not None
    if created:
        logger.info("cart_created", user_id=user_id)
    return _serialize_cart(carts.find_one({"user_id": user_id})), created


def add_item(user_id: str, product_id: str, price: Optional[float] = None) -> dict:
    """Append one unit of ``product_id`` and add ``price`` to the total.

    The cart is created in the same write when the user has none yet.
    """
    if price is None:
        price = _product_price(product_id)
        if price is None:
            raise HTTPException(status_code=404, detail="Product not found")
    if price < 0:
        raise HTTPException(status_code=400, detail="Price must be zero or greater")

    now = datetime.now(timezone.utc)
    update = {
        "$push": {"product_ids": product_id},
        "$inc": {"total": price},
        "$set": {"updated_at": now},
        "$setOnInsert": {"created_at": now},
    }
    carts = get_collection(COLLECTION)
    try:
        doc = carts.find_one_and_update({"user_id": user_id}, update, upsert=True, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        # lost the insert race; the cart exists now, so retry once as a plain update
        doc = carts.find_one_and_update({"user_id": user_id}, update, return_document=ReturnDocument.AFTER)
    logger.info("cart_item_added", user_id=user_id, product_id=product_id, price=price)
    return _serialize_cart(doc)


def remove_item(user_id: str, product_id: str, price: Optional[float] = None) -> dict:
    """Remove one occurrence of ``product_id`` and subtract ``price`` from the total."""
    doc = _find_cart(user_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Cart not found")
    product_ids = doc.get("product_ids") or []
    if product_id not in product_ids:
        raise HTTPException(status_code=404, detail="Product not found in the cart")

    if price is None:
        price = _product_price(product_id) or 0.0

    remaining = list(product_ids)
    remaining.remove(product_id)
    total = max(0.0, round((doc.get("total") or 0) - price, 2))
    if not remaining:
        total = 0.0

    result = get_collection(COLLECTION).update_one(
        {"_id": doc["_id"], "product_ids": product_ids},
        {"$set": {"product_ids": remaining, "total": total, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Cart changed concurrently, please retry")
    logger.info("cart_item_removed", user_id=user_id, product_id=product_id, price=price)
    return get_cart(user_id)


def clear_cart(user_id: str) -> dict:
    doc = get_collection(COLLECTION).find_one_and_update(
        {"user_id": user_id},
        {"$set": {"product_ids": [], "total": 0.0, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Cart not found")
    logger.info("cart_cleared", user_id=user_id)
    return _serialize_cart(doc)


def cart_lines(product_ids: List[str]) -> List[dict]:
    """Group a product-id multiset into priced lines, in first-seen order."""
    counts = Counter(product_ids)
    oids = [oid for oid in (to_object_id(pid) for pid in counts) if oid is not None]
    products = {p["_id"]: p for p in get_documents("product", {"_id": {"$in": oids}})} if oids else {}

    lines = []
    for product_id, quantity in counts.items():
        product = products.get(product_id)
        unit_price = float(product.get("price") or 0) if product else 0.0
        lines.append({
            "product_id": product_id,
            "name": product.get("name") if product else None,
            "unit_price": unit_price,
            "quantity": quantity,
            "subtotal": round(unit_price * quantity, 2),
        })
    return lines


def summarize(user_id: str) -> dict:
    cart = get_cart(user_id)
    lines = cart_lines(cart["product_ids"])
    return {
        "user_id": user_id,
        "lines": lines,
        "item_count": len(cart["product_ids"]),
        "total": round(sum(line["subtotal"] for line in lines), 2),
    }


def format_price(value: float) -> str:
    return "${:,.0f}".format(value).replace(",", ".")


def build_checkout_message(customer_name: Optional[str], lines: List[dict], total: float) -> str:
    message = f"Hello! I'm {customer_name or 'a customer'} and I'd like to place the following order:\n\n"
    for index, line in enumerate(lines, start=1):
        message += f"{index}. {line['name'] or 'Unnamed product'}\n"
        message += f"   Quantity: {line['quantity']}\n"
        message += f"   Unit price: {format_price(line['unit_price'])}\n"
        message += f"   Subtotal: {format_price(line['subtotal'])}\n\n"
    message += f"Total: {format_price(total)}\n\n"
    message += "Please confirm availability and the payment process. Thank you!"
    return message


def checkout_link(user_id: str, customer_name: Optional[str] = None) -> str:
    """Deep link to WhatsApp with the order text. The cart is left untouched."""
    summary = summarize(user_id)
    if not summary["lines"]:
        raise HTTPException(status_code=400, detail="Cart is empty")
    message = build_checkout_message(customer_name, summary["lines"], summary["total"])
    return f"https://wa.me/{config.CHECKOUT_PHONE}?text={quote(message)}"
