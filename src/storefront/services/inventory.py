"""
Inventory Service
Products, paginated product listing, discounts and the promotions view
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, status

from storefront.core.config import Settings, get_settings
from storefront.core.logging import setup_logging
from .app import create_service_app, get_store
from .models import (
    Discount, MessageResponse, PageMetadata, Product, ProductPage,
    ProductUpdate, ProductWithDiscounts, from_document, to_document,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)

PRODUCTS = "products"
DISCOUNTS = "discounts"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

router = APIRouter(tags=["inventory"])


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def build_product_filter(category: Optional[str], min_price: Optional[str],
                         max_price: Optional[str]) -> Dict[str, Any]:
    """Translate listing query parameters into a store filter; unparseable prices are ignored"""
    filter: Dict[str, Any] = {}
    if category:
        filter["category"] = category

    price: Dict[str, float] = {}
    low = _parse_float(min_price)
    if low is not None:
        price["$gte"] = low
    high = _parse_float(max_price)
    if high is not None:
        price["$lte"] = high
    if price:
        filter["price"] = price
    return filter


def normalize_paging(page: Optional[str], limit: Optional[str]) -> Tuple[int, int]:
    """Page below 1 becomes 1; limit outside 1..100 falls back to the default"""
    page_number = _parse_int(page, DEFAULT_PAGE)
    page_size = _parse_int(limit, DEFAULT_LIMIT)
    if page_number < 1:
        page_number = DEFAULT_PAGE
    if page_size < 1 or page_size > MAX_LIMIT:
        page_size = DEFAULT_LIMIT
    return page_number, page_size


@router.post("/products", status_code=status.HTTP_201_CREATED, response_model=Product)
async def create_product(product: Product, store: DocumentStore = Depends(get_store)):
    await store.insert_one(PRODUCTS, to_document(product))
    logger.info(f"Created product {product.id}")
    return product


@router.get("/products", response_model=ProductPage)
async def list_products(
    category: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    store: DocumentStore = Depends(get_store)
):
    """List products with optional category and price filters, paginated"""
    filter = build_product_filter(category, min_price, max_price)
    page_number, page_size = normalize_paging(page, limit)

    total_items = await store.count(PRODUCTS, filter)
    total_pages = (total_items + page_size - 1) // page_size
    documents = await store.find(
        PRODUCTS, filter,
        skip=(page_number - 1) * page_size,
        limit=page_size
    )

    return ProductPage(
        products=[from_document(Product, doc) for doc in documents],
        metadata=PageMetadata(
            total_items=total_items,
            total_pages=total_pages,
            current_page=page_number,
            limit=page_size
        )
    )


# Declared before /products/{product_id} so "promotions" is not taken for an id
@router.get("/products/promotions", response_model=List[ProductWithDiscounts])
async def get_products_with_promotion(store: DocumentStore = Depends(get_store)):
    """Products referenced by a currently running discount, each with its applicable discounts"""
    now = datetime.now(timezone.utc)
    documents = await store.find(DISCOUNTS, {
        "is_active": True,
        "start_date": {"$lte": now},
        "end_date": {"$gte": now},
    })
    discounts = [from_document(Discount, doc) for doc in documents]

    product_ids = sorted({pid for discount in discounts for pid in discount.applicable_products})
    if not product_ids:
        return []

    products = [
        from_document(Product, doc)
        for doc in await store.find(PRODUCTS, {"_id": {"$in": product_ids}})
    ]
    return [
        ProductWithDiscounts(
            product=product,
            discounts=[d for d in discounts if product.id in d.applicable_products]
        )
        for product in products
    ]


@router.get("/products/{product_id}", response_model=Product)
async def get_product(product_id: str, store: DocumentStore = Depends(get_store)):
    document = await store.find_one(PRODUCTS, product_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return from_document(Product, document)


@router.patch("/products/{product_id}", response_model=Product)
async def update_product(product_id: str, update: ProductUpdate,
                         store: DocumentStore = Depends(get_store)):
    """Change only the fields given in the request body"""
    fields = update.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    document = await store.update_one(PRODUCTS, product_id, fields)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return from_document(Product, document)


@router.delete("/products/{product_id}", response_model=MessageResponse)
async def delete_product(product_id: str, store: DocumentStore = Depends(get_store)):
    if not await store.delete_one(PRODUCTS, product_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return MessageResponse(message="Product deleted")


@router.post("/discounts", status_code=status.HTTP_201_CREATED, response_model=Discount)
async def create_discount(discount: Discount, store: DocumentStore = Depends(get_store)):
    await store.insert_one(DISCOUNTS, to_document(discount))
    logger.info(f"Created discount {discount.id}")
    return discount


@router.delete("/discounts/{discount_id}", response_model=MessageResponse)
async def delete_discount(discount_id: str, store: DocumentStore = Depends(get_store)):
    if not await store.delete_one(DISCOUNTS, discount_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount not found")
    return MessageResponse(message="Discount deleted")


def create_app(store: Optional[DocumentStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create the inventory service application."""
    return create_service_app(
        title="Storefront Inventory Service",
        service_name="inventory-service",
        routers=[router],
        store=store,
        settings=settings,
    )


def main() -> None:
    """Run the inventory service."""
    settings = get_settings()
    setup_logging(settings)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.INVENTORY_HOST,
        port=settings.INVENTORY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
