from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional


class Book(BaseModel):
    """Book document as served by the library API (`_id`, `noOfCopies`)."""

    id: str = Field(alias="_id")
    title: str = ""
    author: Optional[str] = None
    price: Decimal = Decimal("0")
    no_of_copies: int = Field(default=0, ge=0, alias="noOfCopies")
    cover_image_url: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"
