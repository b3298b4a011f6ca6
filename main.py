import logging
import os
import re
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart as cart_service
import database
import mailer
import orders as order_service
from auth import (
    COOKIE_NAME,
    clear_auth_cookie,
    create_token,
    generate_otp,
    get_current_admin,
    get_current_user,
    get_optional_user,
    hash_password,
    load_user,
    public_user,
    read_token_claims,
    set_auth_cookie,
    verify_password,
)
from cart import Cart
from notifications import announce_new_order, hub
from schemas import (
    AdminUserCreateBody,
    CartMergeBody,
    CartPatchBody,
    CartQuoteBody,
    CartReplaceBody,
    CheckoutBody,
    LoginBody,
    Order,
    OrderAssignBody,
    OrderItem,
    OrderStatusBody,
    Product as ProductSchema,
    ProductUpdateBody,
    ProfileUpdateBody,
    RegisterBody,
    RoleUpdateBody,
    User as UserSchema,
    VerifyOtpBody,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="1nceMore Thrift Store API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ADMIN_API_PREFIX = "/api/admin"
PROTECTED_PAGES = ("/admin", "/orders", "/order-history", "/cart", "/checkout")


# ----------------------- Utils -----------------------
def users_col():
    return database.db["users"]


def products_col():
    return database.catalog_db["products"]


def _token_from(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header.split(" ", 1)[1]
    return None


def _page_is_protected(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in PROTECTED_PAGES)


def get_product_or_404(product_id: str) -> dict:
    oid = database.parse_object_id(product_id)
    item = products_col().find_one({"_id": oid}) if oid else None
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return item


def get_user_or_404(user_id: str) -> dict:
    oid = database.parse_object_id(user_id)
    user = users_col().find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    return user


# ----------------------- Errors -----------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return JSONResponse({"error": f"{field}: {message}" if field else message}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ----------------------- Route gate -----------------------
@app.middleware("http")
async def route_gate(request: Request, call_next):
    path = request.url.path
    if path.startswith(ADMIN_API_PREFIX):
        claims = read_token_claims(_token_from(request))
        if not claims:
            return JSONResponse({"error": "Not authenticated."}, status_code=401)
        if claims.get("role") != "admin":
            return JSONResponse({"error": "Admin access required."}, status_code=403)
    elif not path.startswith("/api/") and _page_is_protected(path):
        claims = read_token_claims(_token_from(request))
        is_admin_page = path == "/admin" or path.startswith("/admin/")
        if not claims or (is_admin_page and claims.get("role") != "admin"):
            logger.info("Redirecting unauthenticated request for %s to sign-in", path)
            return RedirectResponse(f"/sign-in?redirect_url={path}", status_code=307)
    return await call_next(request)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "1nceMore API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "catalog_database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    try:
        database.catalog_db.list_collection_names()
        response["catalog_database"] = "✅ Connected & Working"
    except Exception as e:
        response["catalog_database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody):
    email = body.email.lower()
    if users_col().find_one({"email": email}):
        raise HTTPException(status_code=409, detail="User already exists.")
    otp = generate_otp()
    user = UserSchema(
        email=email,
        password_hash=hash_password(body.password),
        full_name=body.full_name,
        phone=body.phone,
        address=body.address,
        is_verified=False,
        otp=otp,
    )
    user_id = database.create_document("users", user)
    try:
        mailer.send_otp_email(email, body.full_name, otp)
    except Exception:
        logger.exception("Failed to send OTP email to new user %s", user_id)
        users_col().delete_one({"_id": database.parse_object_id(user_id)})
        raise HTTPException(status_code=500, detail="Registration failed.")
    logger.info("Registered user %s (unverified)", user_id)
    return {"message": "User registered successfully.", "id": user_id}


@app.post("/api/auth/login")
def login(body: LoginBody, response: Response):
    user = users_col().find_one({"email": body.email.lower()})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    if not user.get("is_verified"):
        raise HTTPException(status_code=403, detail="Account not verified. Please check your email for the OTP.")
    if not verify_password(body.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    suser = public_user(user)
    set_auth_cookie(response, create_token(suser))
    return {"message": "Login successful.", "user": suser}


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"message": "Logged out."}


@app.post("/api/auth/verify-otp")
def verify_otp(body: VerifyOtpBody):
    user = users_col().find_one({"email": body.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if user.get("otp") is None or user.get("otp") != body.otp:
        raise HTTPException(status_code=401, detail="Invalid OTP.")
    users_col().update_one(
        {"_id": user["_id"]},
        {"$set": {"is_verified": True, "updated_at": datetime.now(timezone.utc)}, "$unset": {"otp": ""}},
    )
    logger.info("Verified user %s", user["_id"])
    return {"message": "Account verified successfully."}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": user}


@app.patch("/api/auth/me")
def update_me(body: ProfileUpdateBody, user=Depends(get_current_user)):
    update = body.model_dump(exclude_none=True)
    if not update:
        raise HTTPException(status_code=400, detail="Nothing to update.")
    update["updated_at"] = datetime.now(timezone.utc)
    users_col().update_one({"_id": database.parse_object_id(user["id"])}, {"$set": update})
    return {"user": public_user(get_user_or_404(user["id"])), "message": "Profile updated successfully."}


# ----------------------- Cart -----------------------
@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    return {"cart": cart_service.load_cart(user["id"]) or []}


@app.post("/api/cart")
def replace_cart(body: CartReplaceBody, user=Depends(get_current_user)):
    return {"cart": cart_service.replace_cart(user["id"], body.cart)}


@app.patch("/api/cart")
def patch_cart(body: CartPatchBody, user=Depends(get_current_user)):
    if body.action != "clear" and body.item is None:
        raise HTTPException(status_code=400, detail="Invalid item.")
    item = body.item.model_dump(exclude_none=True) if body.item else None
    if body.action == "add" and (item.get("name") is None or item.get("price") is None):
        raise HTTPException(status_code=400, detail="Invalid item.")
    try:
        items = cart_service.apply_cart_action(user["id"], body.action, item)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid item.")
    return {"cart": items}


@app.post("/api/cart/merge")
def merge_cart(body: CartMergeBody, user=Depends(get_current_user)):
    return {"cart": cart_service.merge_guest_cart(user["id"], body.items)}


@app.post("/api/cart/quote")
def quote_cart(body: CartQuoteBody, user=Depends(get_optional_user)):
    if body.items is not None:
        items = body.items
    elif user is not None:
        items = cart_service.load_cart(user["id"]) or []
    else:
        items = []
    quote = Cart(items)
    coupon_error = None
    if body.coupon_code and not quote.apply_coupon(body.coupon_code):
        coupon_error = "Invalid coupon code."
    return {**quote.summary(), "coupon_applied": quote.is_coupon_applied, "coupon_error": coupon_error}


# ----------------------- Products -----------------------
PRODUCT_SORTS = {
    "newest": ("created_at", DESCENDING),
    "price_asc": ("price", ASCENDING),
    "price_desc": ("price", DESCENDING),
}


@app.get("/api/products")
def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    condition: Optional[str] = None,
    active_only: bool = False,
    sort: Literal["newest", "price_asc", "price_desc"] = "newest",
    limit: Optional[int] = Query(None, ge=1, le=200),
):
    filt = {}
    if category and category.lower() != "all":
        filt["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
    if condition and condition.lower() != "all":
        filt["condition"] = {"$regex": f"^{re.escape(condition)}$", "$options": "i"}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}]
    if active_only:
        filt["is_active"] = True
    field, direction = PRODUCT_SORTS[sort]
    cursor = products_col().find(filt).sort(field, direction)
    if limit:
        cursor = cursor.limit(limit)
    products = [database.serialize_doc(p) for p in cursor]
    return {"products": products, "total": len(products), "page": 1, "limit": limit or len(products)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return {"product": database.serialize_doc(get_product_or_404(product_id))}


@app.post("/api/products", status_code=201)
def create_product(body: ProductSchema, user=Depends(get_current_admin)):
    pid = database.create_document("products", body, database=database.catalog_db)
    logger.info("Admin %s created product %s", user["id"], pid)
    return {"id": pid, "message": "Product created successfully"}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(get_current_admin)):
    oid = database.parse_object_id(product_id)
    update = body.model_dump(exclude_none=True)
    if "name" in update:
        update["name"] = update["name"].strip()
    update["updated_at"] = datetime.now(timezone.utc)
    res = products_col().update_one({"_id": oid}, {"$set": update}) if oid else None
    if res is None or res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"message": "Product updated successfully"}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_admin)):
    oid = database.parse_object_id(product_id)
    res = products_col().delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Admin %s deleted product %s", user["id"], product_id)
    return {"message": "Product deleted successfully"}


# ----------------------- Orders -----------------------
@app.post("/api/orders", status_code=201)
def checkout(body: CheckoutBody, background_tasks: BackgroundTasks, user=Depends(get_current_user)):
    priced = Cart(body.items)
    if body.coupon_code and not priced.apply_coupon(body.coupon_code):
        raise HTTPException(status_code=400, detail="Invalid coupon code.")
    order = Order(
        user_id=user["id"],
        user_email=user["email"],
        items=[OrderItem(**line) for line in priced.to_list()],
        total_amount=priced.grand_total,
        shipping_cost=priced.shipping_cost,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        coupon_code=priced.coupon_code or None,
        coupon_discount=priced.coupon_discount,
    )
    created = order_service.create_order(order)
    try:
        cart_service.apply_cart_action(user["id"], "clear")
    except Exception:
        logger.exception("Failed to clear cart for user %s after order %s", user["id"], created["id"])
    background_tasks.add_task(announce_new_order, created)
    return {"order": created}


@app.get("/api/orders")
def my_orders(user=Depends(get_current_user)):
    return {"orders": order_service.get_user_orders(user["id"])}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = order_service.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user_id"] != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not allowed")
    return {"order": order}


# ----------------------- Admin -----------------------
@app.get("/api/admin/orders")
def admin_orders(scope: Literal["all", "assigned", "unassigned"] = "all", admin=Depends(get_current_admin)):
    if scope == "assigned":
        data = order_service.get_assigned_orders(admin["id"])
    elif scope == "unassigned":
        data = order_service.get_unassigned_orders()
    else:
        data = order_service.get_all_orders()
    return {"orders": data}


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusBody, admin=Depends(get_current_admin)):
    updated = order_service.update_order_status(order_id, body.status)
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": updated}


@app.patch("/api/admin/orders/{order_id}/assign")
def admin_assign_order(order_id: str, body: OrderAssignBody, admin=Depends(get_current_admin)):
    assignee = get_user_or_404(body.admin_id)
    if assignee.get("role") != "admin":
        raise HTTPException(status_code=400, detail="Orders can only be assigned to admins.")
    updated = order_service.assign_order(order_id, str(assignee["_id"]), admin["id"])
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": updated}


@app.get("/api/admin/users")
def admin_list_users(admin=Depends(get_current_admin)):
    users = users_col().find({}, {"password_hash": 0, "otp": 0}).sort("created_at", DESCENDING)
    return {"users": [public_user(u) for u in users]}


@app.post("/api/admin/users")
def admin_create_user(body: AdminUserCreateBody, admin=Depends(get_current_admin)):
    email = body.email.lower()
    if users_col().find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User with this email already exists.")
    user = UserSchema(
        email=email,
        password_hash=hash_password(body.password),
        full_name=body.full_name,
        phone=body.phone,
        address=body.address,
        role=body.role,
        is_verified=True,
    )
    user_id = database.create_document("users", user)
    logger.info("Admin %s created %s account %s", admin["id"], body.role, user_id)
    return {"message": "User created successfully.", "user": public_user(get_user_or_404(user_id))}


@app.put("/api/admin/users/{user_id}")
def admin_update_role(user_id: str, body: RoleUpdateBody, admin=Depends(get_current_admin)):
    user = get_user_or_404(user_id)
    if str(user["_id"]) == admin["id"]:
        raise HTTPException(status_code=400, detail="Cannot change your own role.")
    users_col().update_one({"_id": user["_id"]}, {"$set": {"role": body.role, "updated_at": datetime.now(timezone.utc)}})
    logger.info("Admin %s set role of %s to %s", admin["id"], user_id, body.role)
    return {"message": "User role updated successfully.", "user": public_user(get_user_or_404(user_id))}


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(get_current_admin)):
    user = get_user_or_404(user_id)
    if str(user["_id"]) == admin["id"]:
        raise HTTPException(status_code=400, detail="Cannot delete your own account.")
    users_col().delete_one({"_id": user["_id"]})
    logger.info("Admin %s deleted user %s", admin["id"], user_id)
    return {"message": "User deleted successfully."}


@app.get("/api/admin/notifications")
def admin_notifications(admin=Depends(get_current_admin)):
    return {"notifications": order_service.recent_order_notifications(20)}


@app.websocket("/api/admin/notifications/ws")
async def admin_notifications_ws(websocket: WebSocket):
    claims = read_token_claims(websocket.cookies.get(COOKIE_NAME))
    user = await run_in_threadpool(load_user, claims) if claims else None
    if not user or user.get("role") != "admin":
        logger.info("Rejected admin notification socket for %s", claims.get("userId") if claims else None)
        await websocket.close(code=1008)
        return
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)


@app.get("/api/admin/stats")
def admin_stats(admin=Depends(get_current_admin)):
    return {
        "users": users_col().count_documents({}),
        "products": products_col().count_documents({}),
        "orders": database.db["orders"].count_documents({}),
        "pending_orders": database.db["orders"].count_documents({"status": "pending"}),
    }


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Levi's 501 Vintage Denim",
        "description": "Classic straight-leg 90s denim with natural fading.",
        "price": 899,
        "original_price": 3499,
        "images": ["https://images.unsplash.com/photo-1542272604-787c3835535d"],
        "category": "Bottoms",
        "condition": "Vintage",
        "vintage": True,
        "stock": 3,
    },
    {
        "name": "Oversized Flannel Shirt",
        "description": "Soft brushed cotton flannel in red check.",
        "price": 449,
        "original_price": 1299,
        "images": ["https://images.unsplash.com/photo-1596755094514-f87e34085b2c"],
        "category": "Tops",
        "condition": "Excellent",
        "stock": 5,
    },
    {
        "name": "Corduroy Trucker Jacket",
        "description": "Tan corduroy jacket with sherpa collar.",
        "price": 1199,
        "original_price": 4299,
        "images": ["https://images.unsplash.com/photo-1551028719-00167b16eac5"],
        "category": "Outerwear",
        "condition": "Good",
        "stock": 2,
    },
    {
        "name": "Knitted Sweater Vest",
        "description": "Argyle knit vest, lightly worn.",
        "price": 349,
        "original_price": 999,
        "images": ["https://images.unsplash.com/photo-1434389677669-e08b4cac3105"],
        "category": "Tops",
        "condition": "Fair",
        "stock": 4,
    },
    {
        "name": "Leather Crossbody Bag",
        "description": "Genuine leather bag with brass hardware.",
        "price": 699,
        "original_price": 2499,
        "images": ["https://images.unsplash.com/photo-1548036328-c9fa89d128fa"],
        "category": "Accessories",
        "condition": "Excellent",
        "stock": 1,
    },
]


@app.post("/seed")
def seed():
    if products_col().count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        database.create_document("products", ProductSchema(**p), database=database.catalog_db)
    if users_col().count_documents({"role": "admin"}) == 0:
        admin = UserSchema(
            email=os.getenv("SEED_ADMIN_EMAIL", "admin@1ncemore.store"),
            password_hash=hash_password(os.getenv("SEED_ADMIN_PASSWORD", "admin123")),
            full_name="Store Admin",
            role="admin",
            is_verified=True,
        )
        database.create_document("users", admin)
    return {"seeded": True, "products": products_col().count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
