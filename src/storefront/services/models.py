"""
Backend Service Models

Pydantic models for the inventory and orders APIs, plus the conversion to
and from stored documents (``id`` in the API, ``_id`` in the store).
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

ModelT = TypeVar("ModelT", bound=BaseModel)


def _new_id() -> str:
    return uuid.uuid4().hex


class Product(BaseModel):
    """A product in the inventory."""
    id: str = Field(default_factory=_new_id, min_length=1)
    name: str
    price: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    category: str = ""


class ProductUpdate(BaseModel):
    """Partial product update; only fields present in the request are changed."""
    name: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None


class Discount(BaseModel):
    """A percentage discount applicable to a set of products during a date range."""
    id: str = Field(default_factory=_new_id, min_length=1)
    name: str
    description: str = ""
    discount_percentage: float = Field(gt=0, le=100)
    applicable_products: List[str] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
    is_active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def validate_period(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProductWithDiscounts(BaseModel):
    """A promoted product and the active discounts that apply to it."""
    product: Product
    discounts: List[Discount]


class PageMetadata(BaseModel):
    total_items: int
    total_pages: int
    current_page: int
    limit: int


class ProductPage(BaseModel):
    products: List[Product]
    metadata: PageMetadata


class Order(BaseModel):
    """A customer order: product id -> quantity."""
    id: str = Field(default_factory=_new_id, min_length=1)
    products: Dict[str, int] = Field(min_length=1)
    status: str = "pending"

    @field_validator("products")
    @classmethod
    def validate_quantities(cls, v: Dict[str, int]) -> Dict[str, int]:
        for product_id, quantity in v.items():
            if quantity < 1:
                raise ValueError(f"Quantity for '{product_id}' must be at least 1")
        return v


class OrderStatusUpdate(BaseModel):
    status: str = Field(min_length=1)


class MessageResponse(BaseModel):
    message: str


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Serialize a model for storage, moving ``id`` to ``_id``."""
    document = model.model_dump()
    document["_id"] = document.pop("id")
    return document


def from_document(model_class: Type[ModelT], document: Dict[str, Any]) -> ModelT:
    """Rebuild a model from a stored document."""
    data = dict(document)
    data["id"] = data.pop("_id")
    return model_class.model_validate(data)
