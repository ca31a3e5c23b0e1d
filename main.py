import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, File, Form, Path, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import orders
import reports
import uploads
import wishlist
from catalog import to_int
from database import MAX_SQL_INT, Database
from errors import InternalError, ShopError
from logging_config import add_context, clear_context, configure_logging, get_logger
from schemas import CategoryIn, CategoryUpdate, CreateOrder, LoginRequest, ProfileUpdate, RegisterRequest
from security import Principal, current_user, get_settings, require_admin
from seed import ensure_seeded
from settings import Settings

logger = get_logger("plantshop.api")

RowId = Annotated[int, Path(ge=-MAX_SQL_INT, le=MAX_SQL_INT)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = Settings.from_env()
    db = Database(settings.database_url)
    await db.connect()
    app.state.settings = settings
    app.state.db = db

    if settings.admin_email and settings.admin_password:
        await accounts.ensure_admin(db, settings.admin_email, settings.admin_password)
    if settings.seed_demo_data:
        await ensure_seeded(db)

    logger.info("api_started", dialect=db.dialect, uploads_dir=str(settings.uploads_dir))
    try:
        yield
    finally:
        await db.dispose()
        logger.info("api_stopped")


app = FastAPI(title="Plant Shop API", version="1.0.0", lifespan=lifespan)

# Middleware is fixed before startup, so CORS_ORIGIN is read once at import
# time. Everything else in Settings is loaded by the lifespan.
app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings.from_env().cors_origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Helpers

def get_db(request: Request) -> Database:
    return request.app.state.db


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _store_upload(image: Optional[UploadFile], request: Request, settings: Settings) -> Optional[str]:
    if image is None or not image.filename:
        return None
    filename = await uploads.store_image(image, settings)
    return uploads.public_image_url(str(request.base_url), filename)


# -----------------------
# Middleware / errors
# -----------------------

@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_context()
    add_context(request_id=uuid.uuid4().hex[:12], path=request.url.path)
    started = time.perf_counter()
    response = await call_next(request)
    if not request.url.path.startswith("/uploads/"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    logger.info(
        "request_finished",
        method=request.method,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("request_failed", error=exc.message, exc_info=exc)
        return error_response(exc.status_code, InternalError.default_message)
    logger.info("request_rejected", status=exc.status_code, error=exc.message)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
    else:
        message = "Invalid request"
    logger.info("request_rejected", status=400, error=message)
    return error_response(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", exc_info=exc)
    return error_response(500, InternalError.default_message)


# ---------
# Health
# ---------

@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/health/db")
async def health_db(db: Database = Depends(get_db)):
    response = {
        "backend": "running",
        "database": "unavailable",
        "dialect": db.dialect,
        "database_url": "set" if os.getenv("DATABASE_URL") else "default",
    }
    try:
        if await db.ping():
            response["database"] = "connected"
    except Exception as e:
        logger.warning("database_ping_failed", error=str(e))
        response["database"] = f"error: {str(e)[:50]}"
    return response


# ---------------
# Auth
# ---------------

@app.post("/auth/register", status_code=201)
async def register(
    payload: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)
):
    user, token = await accounts.register(db, settings, payload.email, payload.username, payload.password)
    return {"ok": True, "user": user, "token": token}


@app.post("/auth/login")
async def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user, token = await accounts.login(db, settings, payload.who(), payload.password)
    return {"ok": True, "user": user, "token": token}


# ---------------
# Catalog Endpoints
# ---------------

@app.get("/categories")
async def list_categories(db: Database = Depends(get_db)):
    return {"categories": await catalog.list_categories(db)}


@app.get("/products")
async def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    ids: Optional[str] = None,
    minPrice: Optional[str] = None,
    maxPrice: Optional[str] = None,
    sort: Optional[str] = None,
    page: Optional[str] = None,
    pageSize: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return await catalog.list_products(
        db,
        q=q,
        category=category,
        ids=ids,
        min_price=minPrice,
        max_price=maxPrice,
        sort=sort,
        page=page,
        page_size=pageSize,
    )


@app.get("/products/{product_id}")
async def get_product(product_id: RowId, db: Database = Depends(get_db)):
    return {"product": await catalog.get_product(db, product_id)}


@app.get("/uploads/{filename}")
async def get_upload(filename: str, settings: Settings = Depends(get_settings)):
    path = uploads.resolve_upload(filename, settings)
    return FileResponse(path, headers={"Cache-Control": "public, max-age=31536000, immutable"})


# ---------------
# Admin: dashboard + categories
# ---------------

@app.get("/admin/summary")
async def admin_summary(admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return await catalog.summary(db)


@app.get("/admin/categories")
async def admin_list_categories(admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return {"items": await catalog.admin_list_categories(db)}


@app.post("/admin/categories", status_code=201)
async def admin_create_category(
    payload: CategoryIn, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)
):
    return {"id": await catalog.create_category(db, payload.name, payload.slug)}


@app.put("/admin/categories/{category_id}")
async def admin_update_category(
    category_id: RowId,
    payload: CategoryUpdate,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    await catalog.update_category(db, category_id, payload.name, payload.slug)
    return {"ok": True}


@app.delete("/admin/categories/{category_id}")
async def admin_delete_category(
    category_id: RowId, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)
):
    await catalog.delete_category(db, category_id)
    return {"ok": True}


# ---------------
# Admin: products (multipart, optional image)
# ---------------

@app.get("/admin/products")
async def admin_list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: Optional[str] = None,
    size: Optional[str] = None,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return await catalog.admin_list_products(db, q=q, category=category, page=page, size=size)


def _form_fields(**raw) -> dict:
    return {k: v for k, v in raw.items() if v is not None}


@app.post("/admin/products", status_code=201)
async def admin_create_product(
    request: Request,
    name: Optional[str] = Form(None),
    slug: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    fields = _form_fields(
        name=name, slug=slug, description=description, price=price, stock=stock, category_id=category_id
    )
    catalog.product_values(fields)
    image_url = await _store_upload(image, request, settings)
    try:
        product_id = await catalog.create_product(db, fields, image_url)
    except Exception:
        if image_url:
            await uploads.delete_local_image(image_url, settings)
        raise
    return {"id": product_id}


@app.put("/admin/products/{product_id}")
async def admin_update_product(
    product_id: RowId,
    request: Request,
    name: Optional[str] = Form(None),
    slug: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    fields = _form_fields(
        name=name, slug=slug, description=description, price=price, stock=stock, category_id=category_id
    )
    catalog.product_values(fields, partial=True)
    image_url = await _store_upload(image, request, settings)
    try:
        replaced = await catalog.update_product(db, product_id, fields, image_url)
    except Exception:
        if image_url:
            await uploads.delete_local_image(image_url, settings)
        raise

    if replaced is None:
        # unknown id: nothing changed, drop the orphan upload
        if image_url:
            await uploads.delete_local_image(image_url, settings)
    else:
        for url in replaced:
            await uploads.delete_local_image(url, settings)
    return {"ok": True}


@app.delete("/admin/products/{product_id}")
async def admin_delete_product(
    product_id: RowId,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    for url in await catalog.delete_product(db, product_id):
        await uploads.delete_local_image(url, settings)
    return {"ok": True}


# ---------------
# Admin: orders + reports
# ---------------

@app.get("/admin/orders")
async def admin_list_orders(
    month: Optional[str] = None,
    year: Optional[str] = None,
    q: Optional[str] = None,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    items = await orders.list_orders(db, month=to_int(month, None), year=to_int(year, None), q=q)
    return {"items": items}


@app.post("/admin/orders", status_code=201)
async def admin_create_order(
    payload: CreateOrder, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)
):
    return await orders.create_order(db, payload)


@app.get("/admin/orders/{order_id}")
async def admin_get_order(order_id: RowId, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return {"order": await orders.get_order(db, order_id)}


@app.get("/admin/reports/sales")
async def admin_sales_report(
    month: Optional[str] = None,
    year: Optional[str] = None,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return await reports.daily_sales(db, month=to_int(month, None), year=to_int(year, None))


@app.get("/admin/reports/top-products")
async def admin_top_products(
    month: Optional[str] = None,
    year: Optional[str] = None,
    admin: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return await reports.top_products(db, month=to_int(month, None), year=to_int(year, None))


@app.post("/admin/seed")
async def seed_demo(admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    """Seed categories and sample products if the tables are empty."""
    return {"seeded": await ensure_seeded(db)}


# ---------------
# Profile
# ---------------

@app.get("/me")
async def get_me(user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    return await accounts.get_profile(db, user.id)


@app.put("/me")
async def update_me(payload: ProfileUpdate, user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    await accounts.update_profile(db, user.id, payload.model_dump(exclude_unset=True))
    return {"ok": True}


@app.get("/me/ready")
async def me_ready(user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    return await accounts.profile_readiness(db, user.id)


# ---------------
# Wishlist
# ---------------

@app.get("/wishlist")
async def get_wishlist(user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    return await wishlist.list_wishlist(db, user.id)


@app.post("/wishlist/{product_id}")
async def add_wishlist(product_id: RowId, user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    return await wishlist.add_to_wishlist(db, user.id, product_id)


@app.delete("/wishlist/{product_id}")
async def remove_wishlist(product_id: RowId, user: Principal = Depends(current_user), db: Database = Depends(get_db)):
    return await wishlist.remove_from_wishlist(db, user.id, product_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
