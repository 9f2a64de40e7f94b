"""
Schemas package
"""
from reconciliation_service.schemas.order import (
    OrderItemCreate,
    OrderCreate,
    OrderItemResponse,
    OrderResponse,
    OrderListResponse,
    AdminCancelRequest,
    SelfCancelRequest,
    ShipOrderRequest
)
from reconciliation_service.schemas.webhook import (
    WebhookAck,
    WebhookEventResponse,
    ReprocessResponse
)

__all__ = [
    "OrderItemCreate",
    "OrderCreate",
    "OrderItemResponse",
    "OrderResponse",
    "OrderListResponse",
    "AdminCancelRequest",
    "SelfCancelRequest",
    "ShipOrderRequest",
    "WebhookAck",
    "WebhookEventResponse",
    "ReprocessResponse"
]
