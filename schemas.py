"""
Database Schemas for the 1nceMore thrift store

Collections:
- users (db): shoppers and admins, with the embedded cart
- orders (db): immutable order snapshots
- products (catalog_db): the thrift catalog
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
Role = Literal["user", "admin"]
Condition = Literal["Excellent", "Good", "Fair", "Vintage"]


# ------------ Catalog ------------
class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    original_price: float = Field(..., ge=0)
    images: List[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    condition: Condition
    vintage: bool = False
    stock: int = Field(1, ge=0)
    is_active: bool = True
    rating: float = Field(4.5, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    badge: str = "New Arrival"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    condition: Optional[Condition] = None
    vintage: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


# ------------ Users ------------
class CartItem(BaseModel):
    id: str = Field(..., min_length=1, description="Product id")
    name: str
    price: float = Field(..., ge=0)
    image: str = ""
    quantity: int = Field(1, ge=1)


class User(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = "user"
    is_verified: bool = False
    otp: Optional[str] = None
    cart: List[CartItem] = []


# ------------ Orders ------------
class ShippingAddress(BaseModel):
    full_name: str
    mobile_number: str
    street: str
    landmark: Optional[str] = None
    city: str
    state: str
    zip: str
    country: str = "India"


class OrderItem(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    image: str = ""
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: str
    user_email: EmailStr
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    shipping_address: ShippingAddress
    payment_method: str
    coupon_code: Optional[str] = None
    coupon_discount: float = 0
    status: OrderStatus = "pending"
    created_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None


# ------------ Request bodies ------------
class RegisterBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class VerifyOtpBody(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)


class ProfileUpdateBody(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CartReplaceBody(BaseModel):
    cart: List[CartItem] = []


class CartLine(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    quantity: int = 1


class CartPatchBody(BaseModel):
    action: Literal["add", "update", "remove", "clear"]
    item: Optional[CartLine] = None


class CartMergeBody(BaseModel):
    items: List[CartItem] = []


class CartQuoteBody(BaseModel):
    items: Optional[List[CartItem]] = None
    coupon_code: Optional[str] = None


class CheckoutBody(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class OrderAssignBody(BaseModel):
    admin_id: str = Field(..., min_length=1)


class AdminUserCreateBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = "user"


class RoleUpdateBody(BaseModel):
    role: Role
