from pydantic import BaseModel, Field
from decimal import Decimal
from typing import List

from elibrary.schemas.book import Book


class CartItem(BaseModel):
    book: Book
    quantity: int = Field(ge=1)


class CartItemResponse(BaseModel):
    book_id: str
    title: str
    price: Decimal
    quantity: int
    available_copies: int
    subtotal: Decimal


class CartSummary(BaseModel):
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    item_count: int


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    summary: CartSummary


class CartItemAdd(BaseModel):
    book_id: str


class CheckoutRequest(BaseModel):
    address_id: str = Field(min_length=1)
