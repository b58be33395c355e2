from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class CartItemInput(BaseModel):
    variant_id: int
    quantity: int = Field(default=1, ge=1, le=100)


class StartCheckoutInput(BaseModel):
    creator_id: str = Field(min_length=1, max_length=64)
    short_link_code: str = Field(min_length=1, max_length=32)
    items: List[CartItemInput] = Field(min_length=1)
    visitor_id: Optional[str] = Field(default=None, max_length=128)


class ConfirmCheckoutInput(BaseModel):
    external_order_ref: str = Field(min_length=1, max_length=255)


class CancelCheckoutInput(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)
