"""
Order API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from reconciliation_service.api.dependencies import get_db, get_engine
from reconciliation_service.exceptions import (
    InsufficientStockError,
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderNotShippableError,
    ProductNotFoundError,
)
from reconciliation_service.schemas.order import (
    AdminCancelRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    SelfCancelRequest,
    ShipOrderRequest,
)
from reconciliation_service.services.order_service import OrderService
from reconciliation_service.services.payment_client import RefundFailedError
from reconciliation_service.services.reconciliation_engine import ReconciliationEngine

router = APIRouter(tags=["orders"])


def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    """Dependency to get OrderService instance"""
    return OrderService(db)


def _cancel(engine: ReconciliationEngine, order_id: int, reason, user_id=None) -> OrderResponse:
    try:
        order = engine.cancel_order(order_id, reason=reason, user_id=user_id)
    except OrderNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id={order_id} not found"
        )
    except OrderNotCancellableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order is not eligible for cancellation: {e}"
        )
    except RefundFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Refund failed, order was not changed: {e}"
        )
    return OrderResponse.model_validate(order)


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED, summary="Create order")
def create_order(
    order_data: OrderCreate,
    service: OrderService = Depends(get_order_service)
):
    """
    Create a new order before payment

    - **items**: Products and quantities; unit prices are captured now
    - **payment_method**: `provider` creates a `pending` order,
      `bank_transfer` a `pending_transfer` order with stock reserved
    """
    try:
        return service.create_order(order_data)
    except ProductNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except InsufficientStockError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )


@router.get("/orders/{order_id}", response_model=OrderResponse, summary="Get order by ID")
def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service)
):
    """
    Retrieve a specific order by ID

    - **order_id**: Order ID
    """
    order = service.get_order_by_id(order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id={order_id} not found"
        )
    return order


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse, summary="Cancel own order")
def cancel_own_order(
    order_id: int,
    request: SelfCancelRequest,
    engine: ReconciliationEngine = Depends(get_engine)
):
    """
    Customer-initiated cancellation of a paid order shortly after approval

    A captured payment is refunded first; if the refund fails nothing changes.

    `user_id` is trusted as given. Behind a gateway it must be taken from the
    authenticated session, not from the client.
    """
    return _cancel(engine, order_id, request.reason, user_id=request.user_id)


@router.get("/admin/orders", response_model=OrderListResponse, summary="Get all orders")
def get_orders(
    skip: int = Query(0, ge=0, description="Number of orders to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of orders to return"),
    service: OrderService = Depends(get_order_service)
):
    """
    Retrieve all orders with pagination
    """
    return service.get_all_orders(skip=skip, limit=limit)


@router.post("/admin/orders/{order_id}/cancel", response_model=OrderResponse, summary="Cancel order")
def cancel_order(
    order_id: int,
    request: AdminCancelRequest,
    engine: ReconciliationEngine = Depends(get_engine)
):
    """
    Administrator-initiated cancellation

    - **order_id**: Order ID
    - **reason**: Optional reason passed on to the customer notification
    """
    return _cancel(engine, order_id, request.reason)


@router.post("/admin/orders/{order_id}/ship", response_model=OrderResponse, summary="Mark order as shipped")
def ship_order(
    order_id: int,
    request: ShipOrderRequest,
    engine: ReconciliationEngine = Depends(get_engine)
):
    """
    Record a tracking number and move an approved order to shipped
    """
    try:
        order = engine.mark_shipped(order_id, request.tracking_number)
    except OrderNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id={order_id} not found"
        )
    except OrderNotShippableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    return OrderResponse.model_validate(order)
