"""
Database Schemas

MongoDB collection schemas for the storefront, defined with Pydantic models.
These schemas are used for data validation before documents are written.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection
- Order -> "order" collection
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    username: str = Field(..., description="Unique login name")
    email: str = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt hash of the user's password")
    banned: bool = Field(False, description="Set by an administrator")
    is_admin: bool = Field(False, description="Admin privileges")


class Session(BaseModel):
    """
    Server-side sessions
    Collection name: "session"
    """
    token: str = Field(..., description="Opaque token held by the client cookie")
    user_id: str
    username: str
    is_admin: bool = False
    expires_at: datetime


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., description="Product name (unique)")
    price: float = Field(..., ge=0, description="Price in rupees")
    category: str = Field(..., description="Product category")
    img: Optional[str] = Field(None, description="Base64 encoded image data")


class Order(BaseModel):
    """Orders collection schema"""
    user_id: Optional[str] = Field(None, description="Owner id, None for guest checkout")
    cart: List[Any] = Field(..., min_length=1)
    address: str
    payment_method: str
    total_cost: Optional[str] = None
    total_items: Optional[str] = None
    status: str = Field("Pending", description="Free-form workflow status set by admins")


class Feedback(BaseModel):
    name: str
    email: str
    rating: float
    feedback: str


class Contact(BaseModel):
    name: str
    email: str
    phone: str
    message: str
