"""
Database Schemas for ExpiryEaze

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: consumers and vendors (vendors also carry their rating cache)
- product: near-expiry listings owned by a vendor
- cart: one cart per user
- order: checkout snapshots
- review: one review per (user, vendor)
- waitlist: pre-signup interest
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "vendor"]
OrderStatus = Literal["Pending", "Shipped", "Delivered", "Cancelled"]


def empty_distribution() -> Dict[str, int]:
    return {str(star): 0 for star in range(1, 6)}


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("user")
    address: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    id_document: Optional[str] = Field(None, description="Identity document number or reference")
    profile_image: Optional[str] = None
    profile_completed: bool = False
    # medicine sales verification
    is_medicine_verified: bool = False
    pharmacy_license_number: Optional[str] = None
    business_name: Optional[str] = None
    document_url: Optional[str] = None
    # rating cache, written only by ratings.refresh_vendor_rating
    average_rating: float = Field(0, ge=0, le=5)
    num_reviews: int = Field(0, ge=0)
    rating_distribution: Dict[str, int] = Field(default_factory=empty_distribution)


class Product(BaseModel):
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
    vendor_id: str = Field(..., description="Reference to user _id (vendor)")


class CartItem(BaseModel):
    id: str = Field(..., description="Line id, distinct from the product id")
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str = Field(..., description="Reference to user _id (owner)")
    items: List[CartItem] = []


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")


class Order(BaseModel):
    user_id: str
    products: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    shipping_address: str = Field(..., min_length=1)
    status: OrderStatus = "Pending"


class HelpfulVote(BaseModel):
    user_id: str
    helpful: bool = True


class Review(BaseModel):
    user_id: str = Field(...)
    vendor_id: str = Field(...)
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., max_length=100)
    comment: str = Field(..., max_length=500)
    images: List[str] = []
    helpful: List[HelpfulVote] = []
    verified: bool = False


class Waitlist(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    location: Optional[str] = None
    role: Role
