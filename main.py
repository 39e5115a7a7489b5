import logging
import os
from typing import Any, List, Optional

from fastapi import Body, Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import PyMongoError

import catalog
from auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    SESSION_COOKIE,
    SESSION_COOKIE_SECURE,
    authenticate,
    create_access_token,
    get_current_admin,
    get_current_user,
    identity_for,
    load_user,
    public_user,
    register_user,
)
from bulk_import import import_rows, read_rows
from cart import CartSession
from database import get_db, lifespan
from errors import ShopError, ValidationError
from schemas import CamelModel, ProductRef, UserIdentity
from uploads import ImageHost, get_image_host

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("nursery")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Sapling Nursery API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling

@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Store error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Store unavailable"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Utilities

def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def cart_for(db: Database, identity: UserIdentity) -> CartSession:
    return CartSession(db, identity)


# Routes
@app.get("/")
def read_root():
    return {"message": "Sapling Nursery API"}


@app.get("/test")
def store_status(db: Database = Depends(get_db)):
    try:
        collections = sorted(db.list_collection_names())
    except PyMongoError as exc:
        logger.warning("Store health check failed: %s", exc)
        return {"status": "degraded", "database": db.name, "error": str(exc)}
    return {"status": "ok", "database": db.name, "collections": collections}


# Auth
class RegisterInput(BaseModel):
    name: str = ""
    email: EmailStr
    password: str


class LoginInput(BaseModel):
    email: EmailStr
    password: str


def start_session(response: Response, identity: UserIdentity) -> str:
    token = create_access_token(identity)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        path="/",
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return token


@app.post("/auth/register", status_code=201)
def register(payload: RegisterInput, response: Response, db: Database = Depends(get_db)):
    if not payload.password:
        raise ValidationError("Password is required")
    user = register_user(db, payload.name, payload.email, payload.password)
    token = start_session(response, identity_for(user))
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


@app.post("/auth/login")
def login(payload: LoginInput, response: Response, db: Database = Depends(get_db)):
    identity = authenticate(db, payload.email, payload.password)
    token = start_session(response, identity)
    user = load_user(db, identity)
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


@app.api_route("/auth/logout", methods=["GET", "POST"])
def logout(response: Response):
    # The token itself stays valid until it expires; only the cookie goes.
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"success": True}


@app.get("/auth/me")
def me(current_user: UserIdentity = Depends(get_current_user), db: Database = Depends(get_db)):
    return public_user(load_user(db, current_user))


# Products
@app.get("/products")
def list_products(
    category_ids: Optional[str] = Query(default=None, alias="categoryIds"),
    min_price: Optional[float] = Query(default=None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(default=None, alias="maxPrice", ge=0),
    seasons: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    include_unavailable: bool = Query(default=False, alias="includeUnavailable"),
    featured: bool = Query(default=False),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Database = Depends(get_db),
):
    product_filter = catalog.ProductFilter(
        category_ids=split_csv(category_ids),
        min_price=min_price,
        max_price=max_price,
        seasons=catalog.normalize_seasons(split_csv(seasons)),
        search=search or None,
        include_unavailable=include_unavailable,
        featured=featured,
        limit=limit,
    )
    return catalog.list_products(db, product_filter)


@app.post("/products", status_code=201)
def create_product(data: catalog.ProductIn, current_user: UserIdentity = Depends(get_current_admin),
                   db: Database = Depends(get_db)):
    return catalog.create_product(db, data)


@app.post("/products/bulk-upload")
def bulk_upload(file: Optional[UploadFile] = File(default=None),
                current_user: UserIdentity = Depends(get_current_admin),
                db: Database = Depends(get_db)):
    if file is None:
        raise ValidationError("No file provided")
    rows = read_rows(file.filename, file.content_type, file.file.read())
    result = import_rows(db, rows)
    return {"message": result.message, **result.model_dump()}


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.put("/products/{product_id}")
def update_product(product_id: str, data: catalog.ProductIn,
                   current_user: UserIdentity = Depends(get_current_admin),
                   db: Database = Depends(get_db)):
    return catalog.update_product(db, product_id, data)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, current_user: UserIdentity = Depends(get_current_admin),
                   db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"success": True}


# Categories
class CategoryIn(BaseModel):
    name: Optional[str] = None


@app.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@app.post("/categories", status_code=201)
def create_category(data: CategoryIn, current_user: UserIdentity = Depends(get_current_admin),
                    db: Database = Depends(get_db)):
    return catalog.create_category(db, data.name)


@app.get("/categories/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    return catalog.get_category(db, category_id)


@app.put("/categories/{category_id}")
def update_category(category_id: str, data: CategoryIn,
                    current_user: UserIdentity = Depends(get_current_admin),
                    db: Database = Depends(get_db)):
    return catalog.update_category(db, category_id, data.name)


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, current_user: UserIdentity = Depends(get_current_admin),
                    db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return {"success": True}


# Cart
class CartItemIn(CamelModel):
    product_id: str


class CartQuantityIn(CamelModel):
    product_id: str
    # checked by the cart so a bad value reports InvalidQuantity
    quantity: Any = None


@app.get("/cart")
def get_cart(current_user: UserIdentity = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_for(db, current_user).snapshot().model_dump(by_alias=True)


@app.post("/cart/add")
def add_to_cart(item: CartItemIn, current_user: UserIdentity = Depends(get_current_user),
                db: Database = Depends(get_db)):
    snapshot = cart_for(db, current_user).add_item(ProductRef(product_id=item.product_id))
    return snapshot.model_dump(by_alias=True)


@app.put("/cart/update")
def update_cart(item: CartQuantityIn, current_user: UserIdentity = Depends(get_current_user),
                db: Database = Depends(get_db)):
    snapshot = cart_for(db, current_user).set_quantity(item.product_id, item.quantity)
    return snapshot.model_dump(by_alias=True)


@app.delete("/cart/remove")
def remove_from_cart(item: CartItemIn = Body(...), current_user: UserIdentity = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    snapshot = cart_for(db, current_user).remove_item(item.product_id)
    return snapshot.model_dump(by_alias=True)


@app.delete("/cart/clear")
def clear_cart(current_user: UserIdentity = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_for(db, current_user).clear().model_dump(by_alias=True)


# Image upload
@app.post("/upload")
def upload_image(file: Optional[UploadFile] = File(default=None),
                 current_user: UserIdentity = Depends(get_current_admin),
                 image_host: ImageHost = Depends(get_image_host)):
    if file is None:
        raise ValidationError("No file provided")
    return image_host.upload(file.file.read(), file.content_type)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
