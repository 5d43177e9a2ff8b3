import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Union

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from database import create_document, ensure_indexes, get_db, get_documents, parse_object_id, store_errors
from schemas import Contact, Feedback, Order, Product, User
from sessions import (
    current_session,
    end_session,
    env_flag,
    hash_password,
    require_admin,
    require_login,
    seed_admin,
    start_session,
    verify_password,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("DATABASE_URL not set, running without a database")
    else:
        ensure_indexes()
        seed_admin(database.db)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error responses ----------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail},
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    logger.info("Rejected body for %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"message": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"message": "Something went wrong!"})


@app.get("/")
def read_root():
    return {"message": "Storefront backend running"}


# ---------- Request Models ----------
class Payload(BaseModel):
    """Request bodies arrive camelCased from the storefront pages."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(Payload):
    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None


class LoginRequest(Payload):
    username: Optional[str] = None
    password: Optional[str] = None


class OrderRequest(Payload):
    cart: Optional[List[Any]] = None
    address: Optional[str] = None
    payment_method: Optional[str] = None
    total_cost: Optional[Union[str, int, float]] = None
    total_items: Optional[Union[str, int]] = None


class OrderStatusRequest(Payload):
    order_id: Optional[str] = None
    status: Optional[str] = None


class OrderIdRequest(Payload):
    order_id: Optional[str] = None


class ProductRequest(Payload):
    name: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    image_base64: Optional[str] = None


class ProductUpdateRequest(ProductRequest):
    old_name: Optional[str] = None


class ProductNameRequest(Payload):
    name: Optional[str] = None


class FeedbackRequest(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    rating: Optional[float] = None
    feedback: Optional[str] = None


class FeedbackIdRequest(Payload):
    feedback_id: Optional[str] = None


class ContactRequest(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None


class BanRequest(Payload):
    user_id: Optional[str] = None
    banned: Optional[bool] = None


class UserIdRequest(Payload):
    user_id: Optional[str] = None


# ---------- Helpers ----------
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def to_str_id(doc):
    """Render a stored document for the client: string ids, camelCase keys, no secrets."""
    if doc is None:
        return doc
    d = {}
    for key, value in doc.items():
        if key == "_id":
            d["id"] = str(value)
            continue
        if key == "password_hash":
            continue
        if isinstance(value, ObjectId):
            value = str(value)
        d[to_camel(key)] = value
    return d


def as_text(value) -> Optional[str]:
    return None if value is None else str(value)


# ---------- Auth Endpoints ----------
@app.post("/signup")
def signup(payload: SignupRequest, request: Request, response: Response, db=Depends(get_db)):
    if not payload.username or not payload.password or not payload.email:
        raise HTTPException(status_code=400, detail="All fields are required")

    conflict = "Username or email already exists"
    with store_errors("Error during signup", conflict=conflict):
        existing = db["user"].find_one({"$or": [{"username": payload.username}, {"email": payload.email}]})
        if existing:
            raise HTTPException(status_code=409, detail=conflict)

        user = User(username=payload.username, email=payload.email, password_hash=hash_password(payload.password))
        user_id = create_document("user", user)

    start_session(db, request, response, {"_id": user_id, "username": user.username, "is_admin": False})
    logger.info("New user signed up: %s", user.username)
    return {"message": "Signup successful!", "username": user.username}


@app.post("/login")
def login(payload: LoginRequest, request: Request, response: Response, db=Depends(get_db)):
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password required")

    with store_errors("Login error"):
        user = db["user"].find_one({"username": payload.username})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("banned") and env_flag("BLOCK_BANNED_LOGIN"):
        logger.warning("Banned user %s refused login", payload.username)
        raise HTTPException(status_code=403, detail="Account is banned")

    identity = start_session(db, request, response, user)
    logger.info("User %s logged in", identity["username"])
    message = "Admin login successful!" if identity["is_admin"] else "Login successful!"
    return {"message": message, "username": identity["username"]}


@app.post("/logout")
def logout(request: Request, response: Response, db=Depends(get_db)):
    end_session(db, request, response)
    return {"message": "Logged out"}


@app.get("/me")
def me(identity: Optional[dict] = Depends(current_session)):
    if not identity:
        return None
    return {"id": identity["user_id"], "username": identity["username"], "isAdmin": identity["is_admin"]}


# ---------- Orders ----------
@app.post("/submit-order")
def submit_order(payload: OrderRequest, identity: Optional[dict] = Depends(current_session), db=Depends(get_db)):
    if not payload.cart or not payload.address or not payload.payment_method:
        raise HTTPException(status_code=400, detail="Incomplete order data")

    order = Order(
        user_id=identity["user_id"] if identity else None,
        cart=payload.cart,
        address=payload.address,
        payment_method=payload.payment_method,
        total_cost=as_text(payload.total_cost),
        total_items=as_text(payload.total_items),
    )
    with store_errors("Error saving order"):
        order_id = create_document("order", order)
    logger.info("Order %s placed by %s", order_id, identity["username"] if identity else "guest")
    return {"message": "Order placed successfully!"}


@app.get("/user/orders")
def user_orders(identity: dict = Depends(require_login), db=Depends(get_db)):
    with store_errors("Failed to fetch orders"):
        orders = db["order"].find({"user_id": identity["user_id"]}).sort(NEWEST_FIRST)
        return [to_str_id(o) for o in orders]


@app.get("/admin/orders")
def admin_orders(_: dict = Depends(require_admin), db=Depends(get_db)):
    with store_errors("Failed to fetch orders"):
        orders = list(db["order"].find().sort(NEWEST_FIRST))
        owner_ids = [ObjectId(o["user_id"]) for o in orders if o.get("user_id") and ObjectId.is_valid(o["user_id"])]
        usernames = {
            str(u["_id"]): u["username"]
            for u in db["user"].find({"_id": {"$in": owner_ids}}, {"username": 1})
        }

    result = []
    for o in orders:
        item = to_str_id(o)
        owner = o.get("user_id")
        # guests and deleted accounts both resolve to null
        item["userId"] = {"id": owner, "username": usernames[owner]} if owner in usernames else None
        result.append(item)
    return result


@app.post("/admin/update-order-status")
def update_order_status(payload: OrderStatusRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.order_id or not payload.status:
        raise HTTPException(status_code=400, detail="Order id and status required")
    order_id = parse_object_id(payload.order_id, "Order not found")

    with store_errors("Failed to update order status"):
        res = db["order"].update_one({"_id": order_id}, {"$set": {"status": payload.status}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s moved to %s", payload.order_id, payload.status)
    return {"message": "Order status updated"}


@app.post("/admin/delete-order")
def delete_order(payload: OrderIdRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.order_id:
        raise HTTPException(status_code=400, detail="Order id required")
    order_id = parse_object_id(payload.order_id, "Order not found")

    with store_errors("Failed to delete order"):
        res = db["order"].delete_one({"_id": order_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s deleted", payload.order_id)
    return {"message": "Order deleted successfully"}


# ---------- Catalog ----------
def check_product_fields(payload: ProductRequest):
    if payload.price is not None and payload.price < 0:
        raise HTTPException(status_code=400, detail="Price must not be negative")


@app.get("/api/products")
def list_products(_: Any = Depends(get_db)):
    with store_errors("Error fetching products"):
        return [to_str_id(p) for p in get_documents("product")]


@app.post("/admin/add-product")
def add_product(payload: ProductRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.name or payload.price is None or not payload.category or not payload.image_base64:
        raise HTTPException(status_code=400, detail="Missing required fields")
    check_product_fields(payload)

    product = Product(name=payload.name, price=payload.price, category=payload.category, img=payload.image_base64)
    with store_errors("Error saving product", conflict="Product already exists"):
        create_document("product", product)
    logger.info("Product %s added", product.name)
    return {"message": "Product added successfully"}


@app.post("/admin/update-product")
def update_product(payload: ProductUpdateRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    # name, price and category are always overwritten, so all three must be present
    if not payload.old_name or not payload.name or payload.price is None or not payload.category:
        raise HTTPException(status_code=400, detail="Missing required fields")
    check_product_fields(payload)

    update = {"name": payload.name, "price": payload.price, "category": payload.category}
    if payload.image_base64:
        update["img"] = payload.image_base64

    with store_errors("Error updating product", conflict="Product already exists"):
        res = db["product"].update_one({"name": payload.old_name}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found for update")
    logger.info("Product %s updated", payload.old_name)
    return {"message": "Product updated successfully"}


@app.post("/admin/delete-product")
def delete_product(payload: ProductNameRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Product name required")

    with store_errors("Error deleting product"):
        res = db["product"].delete_one({"name": payload.name})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted", payload.name)
    return {"message": "Product deleted successfully"}


SAMPLE_PRODUCTS = [
    {"name": "Paracetamol", "price": 25, "category": "Medicine", "img": "images/paracetamol.jpg"},
    {"name": "Cough Syrup", "price": 60, "category": "Medicine", "img": "images/syrup.jpg"},
    {"name": "Vitamin C Tablets", "price": 120, "category": "Supplements", "img": "images/vitamin-c.jpg"},
]


@app.post("/admin/seed-products")
def seed_products(_: dict = Depends(require_admin), db=Depends(get_db)):
    with store_errors("Error inserting products"):
        for p in SAMPLE_PRODUCTS:
            db["product"].update_one({"name": p["name"]}, {"$set": Product(**p).model_dump()}, upsert=True)
    return {"message": "Sample products inserted/updated successfully"}


# ---------- Feedback & Contact ----------
@app.post("/submit-feedback")
def submit_feedback(payload: FeedbackRequest, db=Depends(get_db)):
    if not payload.name or not payload.email or payload.rating is None or not payload.feedback:
        raise HTTPException(status_code=400, detail="All feedback fields are required")

    feedback = Feedback(name=payload.name, email=payload.email, rating=payload.rating, feedback=payload.feedback)
    with store_errors("Error submitting feedback"):
        db["feedback"].insert_one(feedback.model_dump())
    return {"message": "Thank you for your feedback!"}


@app.post("/submit-contact")
def submit_contact(payload: ContactRequest, db=Depends(get_db)):
    if not payload.name or not payload.email or not payload.phone or not payload.message:
        raise HTTPException(status_code=400, detail="All contact fields are required")

    contact = Contact(name=payload.name, email=payload.email, phone=payload.phone, message=payload.message)
    with store_errors("Error submitting contact"):
        db["contact"].insert_one(contact.model_dump())
    return {"message": "Thank you for contacting us!"}


@app.get("/admin/feedbacks")
def admin_feedbacks(_: dict = Depends(require_admin)):
    with store_errors("Failed to fetch feedbacks"):
        return [to_str_id(f) for f in get_documents("feedback", sort=[("_id", -1)])]


@app.post("/admin/delete-feedback")
def delete_feedback(payload: FeedbackIdRequest, _: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.feedback_id:
        raise HTTPException(status_code=400, detail="Feedback id required")
    feedback_id = parse_object_id(payload.feedback_id, "Feedback not found")

    with store_errors("Failed to delete feedback"):
        res = db["feedback"].delete_one({"_id": feedback_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return {"message": "Feedback deleted successfully"}


@app.get("/admin/contacts")
def admin_contacts(_: dict = Depends(require_admin)):
    with store_errors("Failed to fetch contacts"):
        return [to_str_id(c) for c in get_documents("contact", sort=[("_id", -1)])]


# ---------- User Administration ----------
@app.get("/admin/users")
def admin_users(_: dict = Depends(require_admin), db=Depends(get_db)):
    fields = {"username": 1, "email": 1, "created_at": 1, "banned": 1}
    with store_errors("Failed to fetch users"):
        return [to_str_id(u) for u in db["user"].find({}, fields).sort(NEWEST_FIRST)]


@app.post("/admin/toggle-ban")
def toggle_ban(payload: BanRequest, admin: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.user_id or payload.banned is None:
        raise HTTPException(status_code=400, detail="User id and banned flag required")
    user_id = parse_object_id(payload.user_id, "User not found")

    # active sessions are left alone
    with store_errors("Failed to update user status"):
        res = db["user"].update_one({"_id": user_id}, {"$set": {"banned": payload.banned}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("%s set banned=%s on user %s", admin["username"], payload.banned, payload.user_id)
    return {"message": "User banned successfully" if payload.banned else "User unbanned successfully"}


@app.post("/admin/delete-user")
def delete_user(payload: UserIdRequest, admin: dict = Depends(require_admin), db=Depends(get_db)):
    if not payload.user_id:
        raise HTTPException(status_code=400, detail="User id required")
    user_id = parse_object_id(payload.user_id, "User not found")

    # orders keep their user_id; admin listings resolve it to null
    with store_errors("Failed to delete user"):
        res = db["user"].delete_one({"_id": user_id})
        if res.deleted_count:
            db["session"].delete_many({"user_id": str(user_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("%s deleted user %s", admin["username"], payload.user_id)
    return {"message": "User deleted successfully"}


# ---------- Dashboard Dumps ----------
@app.get("/api/orders")
def dump_orders(_: dict = Depends(require_admin)):
    with store_errors("Error fetching orders"):
        return [to_str_id(o) for o in get_documents("order", sort=NEWEST_FIRST)]


@app.get("/api/users")
def dump_users(_: dict = Depends(require_admin)):
    with store_errors("Error fetching users"):
        return [to_str_id(u) for u in get_documents("user", sort=NEWEST_FIRST)]


@app.get("/api/feedbacks")
def dump_feedbacks(_: dict = Depends(require_admin)):
    with store_errors("Error fetching feedbacks"):
        return [to_str_id(f) for f in get_documents("feedback", sort=[("_id", -1)])]


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if database.db is None else "✅ Connected",
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
