import os
import shutil
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

import structlog
from fastapi import FastAPI, HTTPException, Depends, File, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

import cart
import config
import database
from database import (
    DatabaseUnavailable,
    create_document,
    delete_document,
    find_document,
    get_document_by_id,
    get_documents,
    update_document,
)
from logging_config import add_context, clear_context, configure_logging
from schemas import (
    CartItemRequest,
    CartRequest,
    Category,
    CategoryUpdate,
    LoginRequest,
    Order,
    OrderCreate,
    Product,
    ProductUpdate,
    RegisterRequest,
    User,
    UserCreate,
    UserUpdate,
    normalize_document,
)
from security import (
    create_access_token,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    verify_password,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    os.makedirs(os.path.join(config.UPLOAD_DIR, "products"), exist_ok=True)
    if database.db is not None:
        database.ensure_indexes()
        if config.MIGRATE_LEGACY_FIELDS:
            database.migrate_legacy_fields()
    else:
        logger.warning("database_not_configured")
    yield


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(config.UPLOAD_URL_PREFIX, StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    clear_context()
    add_context(method=request.method, path=request.url.path)
    return await call_next(request)


# ===================== Error handlers =====================
@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ValidationError)
async def payload_validation_error(request: Request, exc: ValidationError):
    errors = exc.errors(include_url=False, include_context=False)
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable(request: Request, exc: DatabaseUnavailable):
    logger.error("database_unavailable", error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Database not available"})


@app.exception_handler(PyMongoError)
async def database_error(request: Request, exc: PyMongoError):
    logger.exception("database_error")
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
    response["database_name"] = "✅ Set" if config.DATABASE_NAME else "❌ Not Set"
    return response


# ===================== Users =====================
def _email_taken(email: str, exclude_id: Optional[str] = None) -> bool:
    existing = find_document("user", {"email": email})
    return existing is not None and existing["_id"] != exclude_id


def _insert_user(name: str, email: str, password: str, role: str = "user") -> dict:
    if _email_taken(email):
        raise HTTPException(400, "Email already registered")
    user = User(name=name, email=email, password=hash_password(password), role=role)
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(400, "Email already registered")
    logger.info("user_registered", user_id=user_id, role=role)
    return public_user(get_document_by_id("user", user_id))


@app.post("/users/register", status_code=201)
def register(payload: RegisterRequest):
    return _insert_user(payload.name, payload.email, payload.password)


@app.post("/users/login")
def login(payload: LoginRequest):
    user = find_document("user", {"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password")):
        raise HTTPException(400, "Invalid credentials")
    token = create_access_token({"sub": user["_id"], "role": user.get("role", "user")})
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


@app.get("/users/me")
def read_current_user(current_user: dict = Depends(get_current_user)):
    return current_user


@app.get("/users", dependencies=[Depends(require_admin)])
def list_users():
    return [public_user(u) for u in get_documents("user", sort=[["name", 1]])]


@app.post("/users", status_code=201, dependencies=[Depends(require_admin)])
def create_user(payload: UserCreate):
    return _insert_user(payload.name, payload.email, payload.password, payload.role)


@app.get("/users/{user_id}", dependencies=[Depends(require_admin)])
def get_user(user_id: str):
    user = get_document_by_id("user", user_id)
    if not user:
        raise HTTPException(404, "User not found")
    return public_user(user)


@app.put("/users/{user_id}", dependencies=[Depends(require_admin)])
def update_user(user_id: str, payload: UserUpdate):
    patch = payload.model_dump(exclude_unset=True, exclude_none=True)
    # an empty password leaves the stored hash untouched
    password = patch.pop("password", None)
    if password:
        patch["password"] = hash_password(password)
    if "email" in patch and _email_taken(patch["email"], exclude_id=user_id):
        raise HTTPException(400, "Email already registered")
    try:
        user = update_document("user", user_id, patch)
    except DuplicateKeyError:
        raise HTTPException(400, "Email already registered")
    if not user:
        raise HTTPException(404, "User not found")
    return public_user(user)


@app.delete("/users/{user_id}", dependencies=[Depends(require_admin)])
def delete_user(user_id: str):
    ok = delete_document("user", user_id)
    if not ok:
        raise HTTPException(404, "User not found")
    return {"message": "User deleted"}


# ===================== Products =====================
def _save_image(upload: StarletteUploadFile) -> str:
    if not (upload.content_type or "").startswith("image/"):
        raise HTTPException(400, f"{upload.filename or 'File'} is not an image")
    ext = os.path.splitext(upload.filename or "")[1].lower()
    filename = f"{uuid.uuid4().hex}{ext}"
    target_dir = os.path.join(config.UPLOAD_DIR, "products")
    os.makedirs(target_dir, exist_ok=True)
    with open(os.path.join(target_dir, filename), "wb") as fh:
        shutil.copyfileobj(upload.file, fh)
    return filename


async def _read_product_payload(request: Request) -> Tuple[dict, Optional[StarletteUploadFile], List[StarletteUploadFile]]:
    """Read a product body sent either as JSON or as a multipart form with images."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields, cover, gallery = {}, None, []
        for key, value in form.multi_items():
            if isinstance(value, StarletteUploadFile):
                if not value.filename:
                    continue
                if key in ("cover_image", "portada"):
                    cover = value
                elif key in ("gallery", "galeria"):
                    gallery.append(value)
            elif value != "":
                fields[key] = value
    else:
        try:
            fields = await request.json()
        except ValueError:
            raise HTTPException(400, "Body must be JSON or multipart form data")
        if not isinstance(fields, dict):
            raise HTTPException(400, "Body must be a JSON object")
        cover, gallery = None, []
    return normalize_document("product", fields) or {}, cover, gallery


@app.get("/products")
def list_products(category: Optional[str] = None, exclude: Optional[str] = None, limit: Optional[int] = None):
    filt = {}
    if category:
        filt["category"] = category
    if exclude and database.to_object_id(exclude) is not None:
        filt["_id"] = {"$ne": database.to_object_id(exclude)}
    return get_documents("product", filt, limit=limit)


@app.get("/products/{product_id}")
def get_product(product_id: str):
    product = get_document_by_id("product", product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


def _insert_product(fields: dict, cover, gallery) -> dict:
    product = Product(**fields)
    if cover is not None:
        product.cover_image = _save_image(cover)
    if gallery:
        product.gallery = [_save_image(f) for f in gallery]
    product_id = create_document("product", product)
    logger.info("product_created", product_id=product_id)
    return get_document_by_id("product", product_id)


def _patch_product(product_id: str, fields: dict, cover, gallery) -> dict:
    patch = ProductUpdate(**fields).model_dump(exclude_unset=True)
    # a new upload replaces the stored cover; no upload keeps it
    if cover is not None:
        patch["cover_image"] = _save_image(cover)
    if gallery:
        patch["gallery"] = [_save_image(f) for f in gallery]
    product = update_document("product", product_id, patch)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@app.post("/products", status_code=201)
async def create_product(request: Request):
    fields, cover, gallery = await _read_product_payload(request)
    return await run_in_threadpool(_insert_product, fields, cover, gallery)


@app.put("/products/{product_id}")
async def update_product(product_id: str, request: Request):
    fields, cover, gallery = await _read_product_payload(request)
    return await run_in_threadpool(_patch_product, product_id, fields, cover, gallery)


@app.delete("/products/{product_id}")
def delete_product(product_id: str):
    ok = delete_document("product", product_id)
    if not ok:
        raise HTTPException(404, "Product not found")
    return {"message": "Product deleted"}


@app.post("/products/upload/cover")
def upload_cover(cover_image: Optional[UploadFile] = File(None)):
    if cover_image is None or not cover_image.filename:
        raise HTTPException(400, "No image was sent")
    return {"cover_image": _save_image(cover_image)}


@app.post("/products/upload/gallery")
def upload_gallery(gallery: Optional[List[UploadFile]] = File(None)):
    files = [f for f in gallery or [] if f.filename]
    if not files:
        raise HTTPException(400, "No images were sent")
    return {"gallery": [_save_image(f) for f in files]}


# ===================== Categories =====================
@app.get("/categories")
def list_categories():
    return get_documents("category", sort=[["name", 1]])


@app.get("/categories/{category_id}")
def get_category(category_id: str):
    category = get_document_by_id("category", category_id)
    if not category:
        raise HTTPException(404, "Category not found")
    return category


@app.post("/categories", status_code=201)
def create_category(payload: Category):
    category_id = create_document("category", payload)
    return get_document_by_id("category", category_id)


@app.put("/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate):
    category = update_document("category", category_id, payload.model_dump(exclude_unset=True))
    if not category:
        raise HTTPException(404, "Category not found")
    return category


@app.delete("/categories/{category_id}")
def delete_category(category_id: str):
    ok = delete_document("category", category_id)
    if not ok:
        raise HTTPException(404, "Category not found")
    return {"message": "Category deleted"}


# ===================== Orders =====================
@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate):
    order = Order(**payload.model_dump())
    order_id = create_document("order", order)
    logger.info("order_created", order_id=order_id, user_id=order.user_id, total=order.total)
    return get_document_by_id("order", order_id)


@app.get("/orders")
def list_orders(user_id: Optional[str] = None):
    filt = {"user_id": user_id} if user_id else {}
    return get_documents("order", filt, sort=[["created_at", -1]])


@app.get("/orders/{order_id}")
def get_order(order_id: str):
    order = get_document_by_id("order", order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@app.delete("/orders/{order_id}")
def delete_order(order_id: str):
    ok = delete_document("order", order_id)
    if not ok:
        raise HTTPException(404, "Order not found")
    return {"message": "Order deleted"}


# ===================== Cart =====================
@app.get("/cart/{user_id}")
def get_cart(user_id: str):
    return cart.get_cart(user_id)


@app.get("/cart/{user_id}/summary")
def get_cart_summary(user_id: str):
    return cart.summarize(user_id)


@app.get("/cart/{user_id}/checkout")
def get_checkout_link(user_id: str, name: Optional[str] = None):
    return {"url": cart.checkout_link(user_id, name)}


@app.post("/cart", status_code=201)
def create_cart(payload: CartRequest, response: Response):
    user_cart, created = cart.get_or_create_cart(payload.user_id)
    if not created:
        response.status_code = 200
    return user_cart


@app.post("/cart/add")
def add_to_cart(payload: CartItemRequest):
    return cart.add_item(payload.user_id, payload.product_id, payload.price)


@app.post("/cart/remove")
def remove_from_cart(payload: CartItemRequest):
    return cart.remove_item(payload.user_id, payload.product_id, payload.price)


@app.post("/cart/clear")
def clear_cart(payload: CartRequest):
    return cart.clear_cart(payload.user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
