import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from math import ceil
from typing import Optional, List, Any, Dict

import structlog
from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from jose import jwt, JWTError
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError
from bson import ObjectId
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import db, create_document, ensure_indexes
from ratings import refresh_vendor_rating
from schemas import (
    Role,
    User as UserSchema,
    Product as ProductSchema,
    Cart as CartSchema,
    CartItem as CartItemSchema,
    Order as OrderSchema,
    OrderItem,
    Review as ReviewSchema,
    HelpfulVote,
    Waitlist as WaitlistSchema,
    empty_distribution,
)

# Settings
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 7 * 24 * 60))
REVIEWS_PAGE_SIZE = int(os.getenv("REVIEWS_PAGE_SIZE", 10))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def log_level(name: str) -> int:
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(log_level(LOG_LEVEL)))
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


# App and CORS
app = FastAPI(title="ExpiryEaze API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Auth setup
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

# Error envelope

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"success": False, "error": "Resource already exists"})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"success": False, "error": "Server error"})

# Helpers

def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def canonical_id(id_str: Optional[str]) -> Optional[str]:
    """Lowercase hex form of a valid ObjectId string; anything else is returned as given."""
    if id_str and ObjectId.is_valid(id_str):
        return str(ObjectId(id_str))
    return id_str


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def public_user(doc: Dict) -> Dict:
    d = sanitize(doc)
    if d:
        d.pop("password_hash", None)
    return d


def now() -> datetime:
    return datetime.now(timezone.utc)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None or not ObjectId.is_valid(user_id):
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise credentials_exception
    return public_user(user)


def require_role(*roles: str):
    async def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user
    return role_dep


def is_owner(actor: Dict[str, Any], resource: Dict[str, Any], field: str = "user_id") -> bool:
    """Allow when the actor's id matches the resource's owner reference."""
    actor_id = actor.get("id")
    return bool(actor_id) and str(resource.get(field)) == actor_id


def ensure_owner(actor: Dict[str, Any], resource: Dict[str, Any], field: str = "user_id", action: str = "modify this resource") -> None:
    if not is_owner(actor, resource, field):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action}")


def acting_user_id(current_user: Dict[str, Any], claimed: Optional[str]) -> str:
    # a client-supplied user id must agree with the token
    if claimed and canonical_id(claimed) != current_user["id"]:
        raise HTTPException(status_code=403, detail="Cannot act on behalf of another user")
    return current_user["id"]


def user_names(user_ids) -> Dict[str, Dict]:
    ids = [ObjectId(u) for u in set(user_ids) if ObjectId.is_valid(u)]
    if not ids:
        return {}
    cursor = db["user"].find({"_id": {"$in": ids}}, {"name": 1, "profile_image": 1})
    return {str(u["_id"]): u for u in cursor}


def with_vendor(products: List[Dict]) -> List[Dict]:
    vendors = user_names(p.get("vendor_id") for p in products)
    result = []
    for p in products:
        s = sanitize(p)
        v = vendors.get(p.get("vendor_id"))
        s["vendor"] = {"id": p.get("vendor_id"), "name": v.get("name") if v else None}
        result.append(s)
    return result


def products_by_id(product_ids) -> Dict[str, Dict]:
    ids = [ObjectId(p) for p in set(product_ids) if ObjectId.is_valid(p)]
    if not ids:
        return {}
    return {p["id"]: p for p in with_vendor(list(db["product"].find({"_id": {"$in": ids}})))}


def with_authors(reviews: List[Dict]) -> List[Dict]:
    authors = user_names(r["user_id"] for r in reviews)
    result = []
    for r in reviews:
        s = sanitize(r)
        u = authors.get(r["user_id"])
        s["user"] = {
            "id": r["user_id"],
            "name": u.get("name") if u else None,
            "profile_image": u.get("profile_image") if u else None,
        }
        result.append(s)
    return result


def page_info(page: int, limit: int, total: int, returned: int) -> Dict[str, Any]:
    skip = (page - 1) * limit
    return {
        "current": page,
        "total": ceil(total / limit),
        "has_next": skip + returned < total,
        "has_prev": page > 1,
    }


REVIEW_SORT_FIELDS = ("created_at", "rating")


def review_sort(sort: str):
    direction = -1 if sort.startswith("-") else 1
    field = sort.lstrip("-")
    if field not in REVIEW_SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort reviews by {field}")
    return [(field, direction), ("_id", direction)]


PROFILE_FIELDS = ("name", "email", "phone", "location", "id_document")


def profile_complete(user: Dict[str, Any]) -> bool:
    return all(user.get(f) for f in PROFILE_FIELDS)

# Request/Response Models
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "user"

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class WaitlistRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    location: Optional[str] = None
    role: Role

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    category: str
    expiry_date: datetime
    stock: int = Field(0, ge=0)
    image_url: str = "no-photo.jpg"
    images: List[str] = []
    expiry_photo: Optional[str] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    expiry_date: Optional[datetime] = None
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    expiry_photo: Optional[str] = None

class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    user_id: Optional[str] = None

class CartRemoveRequest(BaseModel):
    item_id: str
    user_id: Optional[str] = None

class PlaceOrderRequest(BaseModel):
    products: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    shipping_address: str = Field(..., min_length=1)
    user_id: Optional[str] = None

class ReviewCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    vendor_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=500)
    images: List[str] = []

class ReviewUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=500)
    images: Optional[List[str]] = None

class HelpfulRequest(BaseModel):
    helpful: bool = True

class VendorProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    id_document: Optional[str] = None
    profile_image: Optional[str] = None

class MedicineAuthRequest(BaseModel):
    pharmacy_license_number: str = Field(..., min_length=1)
    business_name: str = Field(..., min_length=1)
    document_url: Optional[str] = None

# Auth Routes
@app.post("/api/v1/auth/register", status_code=201)
def register(payload: RegisterRequest):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")
    user_doc = UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role,
    ).model_dump()
    uid = create_document("user", user_doc)
    logger.info("user_registered", user_id=uid, role=payload.role)
    return {"success": True, "message": "Registration successful."}

@app.post("/api/v1/auth/login")
def login(payload: LoginRequest):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        # keep response time close to the wrong-password path
        pwd_context.dummy_verify()
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("login_failed")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": str(user["_id"])})
    return {"success": True, "token": token, "user": public_user(user)}

@app.get("/api/v1/auth/me")
def me(current_user=Depends(get_current_user)):
    return {"success": True, "user": current_user}

@app.post("/api/v1/auth/waitlist", status_code=201)
def join_waitlist(payload: WaitlistRequest, response: Response):
    email = payload.email.strip().lower()
    key = {"email": email, "role": payload.role}
    existing = db["waitlist"].find_one(key)
    if existing:
        # repeat signups are answered with the first entry
        response.status_code = 200
        return {"success": True, "data": sanitize(existing)}
    doc = WaitlistSchema(
        name=payload.name,
        email=email,
        phone=payload.phone,
        location=payload.location,
        role=payload.role,
    ).model_dump()
    try:
        entry_id = create_document("waitlist", doc)
    except DuplicateKeyError:
        # a concurrent signup for the same (email, role) won the insert
        response.status_code = 200
        return {"success": True, "data": sanitize(db["waitlist"].find_one(key))}
    logger.info("waitlist_joined", entry_id=entry_id, role=payload.role)
    return {"success": True, "data": sanitize(db["waitlist"].find_one({"_id": ObjectId(entry_id)}))}

@app.get("/api/v1/auth/waitlist/check")
def check_waitlist(email: str, role: Role):
    entry = db["waitlist"].find_one({"email": email.strip().lower(), "role": role})
    return {"joined": entry is not None}

# Products
@app.get("/api/v1/products")
def list_products(category: Optional[str] = None, vendor_id: Optional[str] = None):
    q: Dict[str, Any] = {}
    if category:
        q["category"] = category
    if vendor_id:
        q["vendor_id"] = canonical_id(vendor_id)
    products = with_vendor(list(db["product"].find(q)))
    return {"success": True, "count": len(products), "data": products}

@app.get("/api/v1/products/{product_id}")
def get_product(product_id: str):
    doc = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "data": with_vendor([doc])[0]}

@app.post("/api/v1/products", status_code=201)
def create_product(payload: ProductCreate, vendor=Depends(require_role("vendor"))):
    doc = ProductSchema(vendor_id=vendor["id"], **payload.model_dump()).model_dump()
    pid = create_document("product", doc)
    logger.info("product_created", product_id=pid, vendor_id=vendor["id"])
    return {"success": True, "data": with_vendor([db["product"].find_one({"_id": ObjectId(pid)})])[0]}

@app.put("/api/v1/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, vendor=Depends(require_role("vendor"))):
    doc = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    ensure_owner(vendor, doc, "vendor_id", "update this product")
    supplied = payload.model_dump(exclude_unset=True)
    # an explicit null clears the discount; other nulls leave the field alone
    changes = {k: v for k, v in supplied.items() if v is not None or k == "discounted_price"}
    changes["updated_at"] = now()
    db["product"].update_one({"_id": doc["_id"]}, {"$set": changes})
    return {"success": True, "data": with_vendor([db["product"].find_one({"_id": doc["_id"]})])[0]}

@app.delete("/api/v1/products/{product_id}")
def delete_product(product_id: str, vendor=Depends(require_role("vendor"))):
    doc = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    ensure_owner(vendor, doc, "vendor_id", "delete this product")
    db["product"].delete_one({"_id": doc["_id"]})
    logger.info("product_deleted", product_id=product_id, vendor_id=vendor["id"])
    return {"success": True, "data": {}}

# Cart
def cart_view(cart: Optional[Dict]) -> Optional[Dict]:
    if not cart:
        return None
    c = sanitize(cart)
    products = products_by_id(item["product_id"] for item in c.get("items", []))
    c["items"] = [{**item, "product": products.get(item["product_id"])} for item in c.get("items", [])]
    return c

@app.get("/api/v1/cart")
def get_cart(user_id: Optional[str] = None, current_user=Depends(get_current_user)):
    uid = acting_user_id(current_user, user_id)
    return {"success": True, "cart": cart_view(db["cart"].find_one({"user_id": uid}))}

@app.post("/api/v1/cart")
def add_to_cart(payload: CartAddRequest, current_user=Depends(get_current_user)):
    uid = acting_user_id(current_user, payload.user_id)
    product_id = canonical_id(payload.product_id)
    if not db["product"].find_one({"_id": to_obj_id(product_id)}):
        raise HTTPException(status_code=404, detail="Product not found")
    line = CartItemSchema(id=str(ObjectId()), product_id=product_id, quantity=payload.quantity)
    # each step is a single-document update; a lost race falls through to the next attempt
    for _ in range(3):
        merged = db["cart"].update_one(
            {"user_id": uid, "items.product_id": product_id},
            {"$inc": {"items.$.quantity": payload.quantity}, "$set": {"updated_at": now()}},
        )
        if merged.matched_count:
            break
        pushed = db["cart"].update_one(
            {"user_id": uid, "items.product_id": {"$ne": product_id}},
            {"$push": {"items": line.model_dump()}, "$set": {"updated_at": now()}},
        )
        if pushed.matched_count:
            break
        if db["cart"].find_one({"user_id": uid}) is None:
            try:
                create_document("cart", CartSchema(user_id=uid, items=[line]))
                break
            except DuplicateKeyError:
                continue
    return {"success": True, "cart": cart_view(db["cart"].find_one({"user_id": uid}))}

@app.delete("/api/v1/cart")
def remove_from_cart(payload: CartRemoveRequest, current_user=Depends(get_current_user)):
    uid = acting_user_id(current_user, payload.user_id)
    cart = db["cart"].find_one({"user_id": uid})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$pull": {"items": {"id": canonical_id(payload.item_id)}}, "$set": {"updated_at": now()}},
    )
    return {"success": True, "cart": cart_view(db["cart"].find_one({"_id": cart["_id"]}))}

# Orders
def order_view(order: Dict) -> Dict:
    o = sanitize(order)
    products = products_by_id(line["product_id"] for line in o.get("products", []))
    o["products"] = [{**line, "product": products.get(line["product_id"])} for line in o.get("products", [])]
    return o

@app.post("/api/v1/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, current_user=Depends(get_current_user)):
    uid = acting_user_id(current_user, payload.user_id)
    order = OrderSchema(
        user_id=uid,
        products=[line.model_copy(update={"product_id": canonical_id(line.product_id)}) for line in payload.products],
        total_amount=payload.total_amount,
        shipping_address=payload.shipping_address,
    )
    order_id = create_document("order", order)
    logger.info("order_placed", order_id=order_id, user_id=uid, total_amount=payload.total_amount)
    return {"success": True, "order": order_view(db["order"].find_one({"_id": ObjectId(order_id)}))}

@app.get("/api/v1/orders")
def list_orders(user_id: Optional[str] = None, current_user=Depends(get_current_user)):
    uid = acting_user_id(current_user, user_id)
    orders = [order_view(o) for o in db["order"].find({"user_id": uid}).sort([("created_at", -1), ("_id", -1)])]
    return {"success": True, "orders": orders}

# Reviews
@app.get("/api/v1/reviews/vendor/{vendor_id}")
def list_vendor_reviews(
    vendor_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    sort: str = Query("-created_at"),
):
    limit = limit or REVIEWS_PAGE_SIZE
    vendor_id = canonical_id(vendor_id)
    q = {"vendor_id": vendor_id}
    cursor = db["review"].find(q).sort(review_sort(sort)).skip((page - 1) * limit).limit(limit)
    reviews = with_authors(list(cursor))
    total = db["review"].count_documents(q)
    # served from the vendor's cache, not recomputed here
    vendor = db["user"].find_one({"_id": ObjectId(vendor_id)}) if ObjectId.is_valid(vendor_id) else None
    rating_stats = {
        "average_rating": (vendor or {}).get("average_rating", 0),
        "num_reviews": (vendor or {}).get("num_reviews", 0),
        "rating_distribution": (vendor or {}).get("rating_distribution") or empty_distribution(),
    }
    return {
        "success": True,
        "data": {
            "reviews": reviews,
            "pagination": page_info(page, limit, total, len(reviews)),
            "rating_stats": rating_stats,
        },
    }

@app.get("/api/v1/reviews/vendor/{vendor_id}/my-review")
def get_my_review(vendor_id: str, current_user=Depends(get_current_user)):
    review = db["review"].find_one({"user_id": current_user["id"], "vendor_id": canonical_id(vendor_id)})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return {"success": True, "data": with_authors([review])[0]}

@app.get("/api/v1/reviews")
def list_reviews(
    vendor_id: Optional[str] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("-created_at"),
    current_user=Depends(get_current_user),
):
    q: Dict[str, Any] = {}
    if vendor_id:
        q["vendor_id"] = canonical_id(vendor_id)
    if rating:
        q["rating"] = rating
    cursor = db["review"].find(q).sort(review_sort(sort)).skip((page - 1) * limit).limit(limit)
    reviews = with_authors(list(cursor))
    total = db["review"].count_documents(q)
    return {"success": True, "data": {"reviews": reviews, "pagination": page_info(page, limit, total, len(reviews))}}

@app.post("/api/v1/reviews", status_code=201)
def create_review(payload: ReviewCreate, current_user=Depends(get_current_user)):
    uid = current_user["id"]
    vendor_id = canonical_id(payload.vendor_id)
    if db["review"].find_one({"user_id": uid, "vendor_id": vendor_id}):
        raise HTTPException(status_code=409, detail="You have already reviewed this vendor")
    vendor = None
    if ObjectId.is_valid(vendor_id):
        vendor = db["user"].find_one({"_id": ObjectId(vendor_id), "role": "vendor"})
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    doc = ReviewSchema(
        user_id=uid,
        vendor_id=vendor_id,
        rating=payload.rating,
        title=payload.title,
        comment=payload.comment,
        images=payload.images,
    ).model_dump()
    try:
        review_id = create_document("review", doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="You have already reviewed this vendor")
    refresh_vendor_rating(db, vendor_id)
    logger.info("review_created", review_id=review_id, vendor_id=vendor_id, rating=payload.rating)
    return {"success": True, "data": with_authors([db["review"].find_one({"_id": ObjectId(review_id)})])[0]}

@app.put("/api/v1/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, current_user=Depends(get_current_user)):
    review = db["review"].find_one({"_id": to_obj_id(review_id)})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    ensure_owner(current_user, review, "user_id", "update this review")
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if changes:
        changes["updated_at"] = now()
        db["review"].update_one({"_id": review["_id"]}, {"$set": changes})
    refresh_vendor_rating(db, review["vendor_id"])
    logger.info("review_updated", review_id=review_id, fields=sorted(changes))
    return {"success": True, "data": with_authors([db["review"].find_one({"_id": review["_id"]})])[0]}

@app.delete("/api/v1/reviews/{review_id}")
def delete_review(review_id: str, current_user=Depends(get_current_user)):
    review = db["review"].find_one({"_id": to_obj_id(review_id)})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    ensure_owner(current_user, review, "user_id", "delete this review")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_vendor_rating(db, review["vendor_id"])
    logger.info("review_deleted", review_id=review_id, vendor_id=review["vendor_id"])
    return {"success": True, "data": {}}

@app.post("/api/v1/reviews/{review_id}/helpful")
def mark_helpful(review_id: str, payload: HelpfulRequest, current_user=Depends(get_current_user)):
    review = db["review"].find_one({"_id": to_obj_id(review_id)})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    uid = current_user["id"]
    vote = HelpfulVote(user_id=uid, helpful=payload.helpful).model_dump()
    # overwrite the caller's vote in place, or append it if there is none yet
    for _ in range(2):
        res = db["review"].update_one(
            {"_id": review["_id"], "helpful.user_id": uid},
            {"$set": {"helpful.$.helpful": payload.helpful}},
        )
        if res.matched_count:
            break
        res = db["review"].update_one(
            {"_id": review["_id"], "helpful.user_id": {"$ne": uid}},
            {"$push": {"helpful": vote}},
        )
        if res.matched_count:
            break
    return {"success": True, "data": with_authors([db["review"].find_one({"_id": review["_id"]})])[0]}

# Vendor routes
def current_vendor(current_user: Dict[str, Any]) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": ObjectId(current_user["id"])})
    if not user or user.get("role") != "vendor":
        raise HTTPException(status_code=404, detail="Vendor not found.")
    return user

@app.get("/api/v1/vendors/profile")
def get_vendor_profile(current_user=Depends(get_current_user)):
    return {"success": True, "profile": public_user(current_vendor(current_user))}

@app.api_route("/api/v1/vendors/profile", methods=["PUT", "POST"])
def update_vendor_profile(payload: VendorProfileUpdate, current_user=Depends(get_current_user)):
    user = db["user"].find_one({"_id": ObjectId(current_user["id"])})
    if not user:
        raise HTTPException(status_code=404, detail="User not found. Please log in again.")
    changes: Dict[str, Any] = {k: v for k, v in payload.model_dump().items() if v}
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if changes["email"] != user.get("email") and db["user"].find_one({"email": changes["email"]}):
            raise HTTPException(status_code=409, detail="Email already registered")
    # saving a profile is how an account becomes a vendor
    changes["role"] = "vendor"
    changes["profile_completed"] = profile_complete({**user, **changes})
    changes["updated_at"] = now()
    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    logger.info("vendor_profile_updated", user_id=current_user["id"], profile_completed=changes["profile_completed"])
    return {"success": True, "profile": public_user(db["user"].find_one({"_id": user["_id"]}))}

@app.get("/api/v1/vendors/all-with-products")
def vendors_with_products():
    vendors = [public_user(v) for v in db["user"].find({"role": "vendor"})]
    by_vendor: Dict[str, List[Dict]] = {v["id"]: [] for v in vendors}
    if vendors:
        for p in db["product"].find({"vendor_id": {"$in": list(by_vendor)}}):
            by_vendor[p["vendor_id"]].append(sanitize(p))
    return {"success": True, "data": [{"vendor": v, "products": by_vendor[v["id"]]} for v in vendors]}

@app.post("/api/v1/vendors/medicine-auth")
def medicine_auth(payload: MedicineAuthRequest, current_user=Depends(get_current_user)):
    vendor = current_vendor(current_user)
    db["user"].update_one(
        {"_id": vendor["_id"]},
        {"$set": {
            "is_medicine_verified": True,
            "pharmacy_license_number": payload.pharmacy_license_number,
            "business_name": payload.business_name,
            "document_url": payload.document_url or "",
            "updated_at": now(),
        }},
    )
    logger.info("medicine_vendor_verified", user_id=current_user["id"])
    return {"success": True, "message": "Vendor medicine authentication successful."}

@app.get("/api/v1/vendors/medicine-verification-status")
def medicine_verification_status(current_user=Depends(get_current_user)):
    vendor = current_vendor(current_user)
    verified = vendor.get("is_medicine_verified") is True
    return {
        "success": True,
        "is_verified": verified,
        "message": "Vendor is verified for medicine sales" if verified else "Vendor needs verification for medicine sales",
    }

# Utility endpoints
@app.get("/")
def root():
    return {"message": "ExpiryEaze API running"}

@app.get("/test")
def test_database():
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
