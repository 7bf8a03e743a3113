import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm

import database
from auth import (
    AuthContext,
    authenticate,
    create_access_token,
    create_identity,
    get_auth_context,
    get_current_admin,
)
from database import kv_append, kv_delete, kv_get, kv_get_by_prefix, kv_mget, kv_remove, kv_set
from errors import AuthorizationError, NotFoundError, ValidationError, register_error_handlers
from observability import setup_logging
from schemas import Order, OrderCreate, Product, ProductCreate, ProductUpdate, SignupRequest, Token, User

logger = logging.getLogger(__name__)

ALLOW_ADMIN_SIGNUP = os.getenv("ALLOW_ADMIN_SIGNUP", "true").lower() in ("1", "true", "yes")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Fields a product update can never change
PROTECTED_PRODUCT_FIELDS = ("id", "sellerId", "createdAt")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FORMAT", "json"))
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL not set; storage calls will fail")
    logger.info("Marketplace API started")
    yield
    logger.info("Marketplace API shutting down")


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


def new_id() -> str:
    return str(uuid.uuid4())


def get_product_or_404(product_id: str) -> dict:
    product = kv_get(f"products:{product_id}")
    if not product:
        raise NotFoundError("Product not found")
    return product


@app.get("/")
def read_root():
    return {"name": "Marketplace API", "status": "ok"}


@app.get("/test")
def test_database():
    info = {"backend": "running", "database": "disconnected"}
    try:
        database.get_db().list_collection_names()
        info["database"] = "connected"
    except Exception as e:
        info["error"] = str(e)
    return info


# ---------- Auth ----------

@app.post("/signup")
def signup(req: SignupRequest):
    if not req.email or not req.password or not req.name:
        raise ValidationError("Email, password, and name are required")
    role = "admin" if req.role == "admin" and ALLOW_ADMIN_SIGNUP else "user"

    identity = create_identity(req.email, req.password, req.name, role)

    # Identity is not rolled back if these writes fail.
    user = User(id=identity.id, email=identity.email, name=req.name, role=role)
    kv_set(f"users:{user.id}", user.model_dump())
    kv_set(f"user_products:{user.id}", [])
    kv_set(f"user_orders:{user.id}", [])
    logger.info("User signed up", extra={"user_id": user.id})

    return {"success": True, "user": {"id": user.id, "email": user.email, "name": user.name, "role": user.role}}


@app.post("/auth/token", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    identity = authenticate(form_data.username, form_data.password)
    if identity is None:
        raise ValidationError("Incorrect username or password")
    return {"access_token": create_access_token(identity), "token_type": "bearer"}


@app.get("/user")
def me(ctx: AuthContext = Depends(get_auth_context)):
    if not ctx.user:
        raise NotFoundError("User data not found")
    return {"user": ctx.user}


@app.get("/user/products")
def my_products(ctx: AuthContext = Depends(get_auth_context)):
    product_ids = kv_get(f"user_products:{ctx.user_id}") or []
    return {"products": kv_mget([f"products:{pid}" for pid in product_ids])}


# ---------- Products ----------

@app.get("/products")
def list_products():
    return {"products": kv_get_by_prefix("products:")}


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return {"product": get_product_or_404(product_id)}


@app.post("/products")
def create_product(req: ProductCreate, ctx: AuthContext = Depends(get_auth_context)):
    if not req.title or not req.price:
        raise ValidationError("Title and price are required")

    product = Product(
        id=new_id(),
        title=req.title,
        description=req.description or "",
        price=req.price,
        image=req.image or "",
        category=req.category or "Other",
        sellerId=ctx.user_id,
        sellerName=(ctx.user or {}).get("name") or "Unknown",
    ).model_dump()

    kv_set(f"products:{product['id']}", product)
    kv_append(f"user_products:{ctx.user_id}", product["id"])
    logger.info("Product created", extra={"user_id": ctx.user_id, "product_id": product["id"]})

    return {"success": True, "product": product}


@app.put("/products/{product_id}")
def update_product(
    product_id: str,
    updates: ProductUpdate,
    ctx: AuthContext = Depends(get_auth_context),
):
    product = get_product_or_404(product_id)
    if not ctx.can_manage(product):
        raise AuthorizationError("Not authorized to update this product")

    provided = updates.model_fields_set | set(updates.model_extra or {})
    changes = {
        k: v for k, v in updates.model_dump().items()
        if k in provided and k not in PROTECTED_PRODUCT_FIELDS
    }
    if "price" in changes and changes["price"] is None:
        raise ValidationError("Price cannot be empty")
    updated = {**product, **changes}

    kv_set(f"products:{product_id}", updated)
    logger.info("Product updated", extra={"user_id": ctx.user_id, "product_id": product_id})

    return {"success": True, "product": updated}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, ctx: AuthContext = Depends(get_auth_context)):
    product = get_product_or_404(product_id)
    if not ctx.can_manage(product):
        raise AuthorizationError("Not authorized to delete this product")

    kv_delete(f"products:{product_id}")
    kv_remove(f"user_products:{product['sellerId']}", product_id)
    logger.info("Product deleted", extra={"user_id": ctx.user_id, "product_id": product_id})

    return {"success": True}


# ---------- Orders ----------

@app.post("/orders")
def create_order(req: OrderCreate, ctx: AuthContext = Depends(get_auth_context)):
    if not req.productId:
        raise ValidationError("Product ID is required")

    product = get_product_or_404(req.productId)
    if product.get("status") != "available":
        raise ValidationError("Product is not available")

    # Availability is neither flipped nor decremented here.
    quantity = req.quantity or 1
    order = Order(
        id=new_id(),
        productId=req.productId,
        productTitle=product["title"],
        productImage=product.get("image") or "",
        buyerId=ctx.user_id,
        buyerName=(ctx.user or {}).get("name") or "Unknown",
        sellerId=product["sellerId"],
        sellerName=product.get("sellerName", "Unknown"),
        price=product["price"],
        quantity=quantity,
        totalPrice=product["price"] * quantity,
    ).model_dump()

    kv_set(f"orders:{order['id']}", order)
    kv_append(f"user_orders:{ctx.user_id}", order["id"])
    kv_append(f"user_orders:{product['sellerId']}", order["id"])
    logger.info("Order created", extra={"user_id": ctx.user_id, "order_id": order["id"], "product_id": req.productId})

    return {"success": True, "order": order}


@app.get("/orders")
def my_orders(ctx: AuthContext = Depends(get_auth_context)):
    order_ids = kv_get(f"user_orders:{ctx.user_id}") or []
    return {"orders": kv_mget([f"orders:{oid}" for oid in order_ids])}


# ---------- Admin ----------

@app.get("/admin/users")
def admin_users(_: AuthContext = Depends(get_current_admin)):
    return {"users": kv_get_by_prefix("users:")}


@app.get("/admin/orders")
def admin_orders(_: AuthContext = Depends(get_current_admin)):
    return {"orders": kv_get_by_prefix("orders:")}


@app.get("/admin/stats")
def admin_stats(_: AuthContext = Depends(get_current_admin)):
    orders = kv_get_by_prefix("orders:")
    return {
        "users": len(kv_get_by_prefix("users:")),
        "products": len(kv_get_by_prefix("products:")),
        "orders": len(orders),
        "totalRevenue": sum(o.get("totalPrice", 0) for o in orders),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
