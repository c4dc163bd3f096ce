"""
Orders Service
Order creation, lookup, status updates and listing
"""
import logging
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, status

from storefront.core.config import Settings, get_settings
from storefront.core.logging import setup_logging
from .app import create_service_app, get_store
from .models import Order, OrderStatusUpdate, from_document, to_document
from .store import DocumentStore

logger = logging.getLogger(__name__)

ORDERS = "orders"

# Path segments served by other handlers under the root alias; such an order
# could never be fetched through the gateway
RESERVED_ORDER_IDS = frozenset({"orders", "health"})


async def create_order(order: Order, store: DocumentStore = Depends(get_store)):
    if order.id in RESERVED_ORDER_IDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Order id '{order.id}' is reserved")
    await store.insert_one(ORDERS, to_document(order))
    logger.info(f"Created order {order.id}", extra={"order_id": order.id, "items": len(order.products)})
    return order


async def list_orders(store: DocumentStore = Depends(get_store)):
    return [from_document(Order, doc) for doc in await store.find(ORDERS)]


async def get_order(order_id: str, store: DocumentStore = Depends(get_store)):
    document = await store.find_one(ORDERS, order_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return from_document(Order, document)


async def update_order(order_id: str, update: OrderStatusUpdate,
                       store: DocumentStore = Depends(get_store)):
    """Only the order status can change"""
    document = await store.update_one(ORDERS, order_id, {"status": update.status})
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    logger.info(f"Order {order_id} is now {update.status}")
    return from_document(Order, document)


def build_router(collection_path: str) -> APIRouter:
    """
    Order endpoints rooted at ``collection_path``

    The service mounts them at ``/orders`` and again at the root, so the
    gateway's ``/orders`` and ``/orders/{id}`` (forwarded as ``/`` and
    ``/{id}``) reach the same handlers.
    """
    router = APIRouter(tags=["orders"])
    item_path = f"{collection_path.rstrip('/')}/{{order_id}}"

    router.add_api_route(collection_path, create_order, methods=["POST"],
                         status_code=status.HTTP_201_CREATED, response_model=Order)
    router.add_api_route(collection_path, list_orders, methods=["GET"], response_model=List[Order])
    router.add_api_route(item_path, get_order, methods=["GET"], response_model=Order)
    router.add_api_route(item_path, update_order, methods=["PATCH"], response_model=Order)
    return router


def create_app(store: Optional[DocumentStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create the orders service application."""
    return create_service_app(
        title="Storefront Orders Service",
        service_name="orders-service",
        routers=[build_router("/orders"), build_router("/")],
        store=store,
        settings=settings,
    )


def main() -> None:
    """Run the orders service."""
    settings = get_settings()
    setup_logging(settings)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.ORDERS_HOST,
        port=settings.ORDERS_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
