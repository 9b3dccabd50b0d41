"""
Database Schemas for the Storefront

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
Request payload models used by the endpoints live at the bottom of this file.
"""
from datetime import datetime, timezone
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr, field_validator


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    password: str = Field(..., description="BCrypt password hash")
    role: Literal["user", "admin"] = "user"


class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    category: Optional[str] = Field(None, description="Category name (not a reference)")
    quantity: int = Field(0, ge=0, description="Units in stock")
    cover_image: Optional[str] = None
    gallery: List[str] = Field(default_factory=list)


class Category(BaseModel):
    name: str = Field(..., min_length=1, description="Category name")
    description: Optional[str] = None


class Order(BaseModel):
    user_id: str = Field(..., description="User placing the order")
    product_ids: List[str] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Cart(BaseModel):
    user_id: str = Field(..., description="Owner of the cart (one cart per user)")
    product_ids: List[str] = Field(default_factory=list, description="Multiset; repeats are quantity")
    total: float = 0.0


# ===================== Legacy field normalization =====================
# Older documents were stored with Spanish field names. Canonical names win
# when a document carries both.
LEGACY_FIELDS = {
    "product": {
        "nombre": "name",
        "precio": "price",
        "descripcion": "description",
        "categoria": "category",
        "cantidad": "quantity",
        "stock": "quantity",
        "portada": "cover_image",
        "imagen": "cover_image",
        "image": "cover_image",
        "galeria": "gallery",
    },
    "user": {
        "nombre": "name",
        "correo": "email",
        "contraseña": "password",
        "rol": "role",
    },
    "category": {
        "nombre": "name",
        "descripcion": "description",
    },
    "cart": {
        "usuarioId": "user_id",
        "productos": "product_ids",
    },
    "order": {
        "usuarioId": "user_id",
        "productos": "product_ids",
    },
}

LEGACY_ROLES = {"usuario": "user", "administrador": "admin"}


def normalize_document(collection_name: str, doc: Optional[dict]) -> Optional[dict]:
    """Return a copy of ``doc`` with legacy field names mapped to canonical ones."""
    if not doc:
        return doc
    aliases = LEGACY_FIELDS.get(collection_name, {})
    d = dict(doc)
    for legacy, canonical in aliases.items():
        if legacy not in d:
            continue
        value = d.pop(legacy)
        if d.get(canonical) in (None, "", []):
            d[canonical] = value
    if collection_name == "user" and d.get("role") in LEGACY_ROLES:
        d["role"] = LEGACY_ROLES[d["role"]]
    if collection_name in ("cart", "order") and "product_ids" in d:
        d["product_ids"] = [str(p) for p in d["product_ids"] or []]
    return d


def legacy_keys(collection_name: str, doc: dict) -> List[str]:
    return [k for k in LEGACY_FIELDS.get(collection_name, {}) if k in doc]


# ===================== Request payloads =====================
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserCreate(RegisterRequest):
    role: Literal["user", "admin"] = "user"


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Literal["user", "admin"]] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    cover_image: Optional[str] = None
    gallery: Optional[List[str]] = None

    @field_validator("name", "price", "quantity", "gallery")
    @classmethod
    def not_null(cls, value):
        # omitted fields keep their stored value, null is rejected
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class OrderCreate(BaseModel):
    user_id: str
    product_ids: List[str] = Field(..., min_length=1)
    total: float = Field(..., ge=0)


class CartRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class CartItemRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    price: Optional[float] = Field(None, ge=0, description="Unit price; the stored product price when omitted")
