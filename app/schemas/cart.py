"""
Pydantic schemas for cart operations
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class CartItemAdd(BaseModel):
    """Add a catalog test to the caller's cart"""
    test_id: int = Field(..., ge=1, description="Catalog test id")


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, description="New quantity (at least 1)")


class CartItemResponse(BaseModel):
    test_id: int
    name: str
    price: float
    description: Optional[str]
    category: Optional[str]
    quantity: int

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse] = []
    total: float = 0
