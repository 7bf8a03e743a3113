"""
Schemas for the Marketplace API

Stored records (JSON values in the key-value store):
- users:{id}          User
- products:{id}       Product
- orders:{id}         Order
- user_products:{id}  list of product ids owned by the user
- user_orders:{id}    list of order ids where the user is buyer or seller

Request bodies leave "required" fields optional; the handlers enforce them
with their own error messages.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["user", "admin"]


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class User(BaseModel):
    id: str
    email: EmailStr = Field(..., description="Email address")
    name: str = Field(..., description="Display name")
    role: Role = Field("user", description="role: admin or user")
    createdAt: str = Field(default_factory=utcnow_iso)


class Product(BaseModel):
    id: str
    title: str = Field(..., description="Product title")
    description: str = ""
    price: float
    image: str = Field("", description="Image URL or empty")
    category: str = "Other"
    sellerId: str
    sellerName: str = "Unknown"
    status: str = "available"
    createdAt: str = Field(default_factory=utcnow_iso)


class Order(BaseModel):
    id: str
    productId: str
    productTitle: str
    productImage: str = ""
    buyerId: str
    buyerName: str
    sellerId: str
    sellerName: str
    price: float
    quantity: int = Field(1, ge=1)
    totalPrice: float
    status: str = "completed"
    createdAt: str = Field(default_factory=utcnow_iso)


# ---------- Request bodies ----------

class SignupRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None


class ProductCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    category: Optional[str] = None


class ProductUpdate(BaseModel):
    """Partial update; unknown fields are merged as-is."""
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None


class OrderCreate(BaseModel):
    productId: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)


class Token(BaseModel):
    access_token: str
    token_type: str
