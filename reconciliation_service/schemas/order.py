"""
Pydantic schemas for order request/response validation
"""
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal


class OrderItemCreate(BaseModel):
    """Line item requested at checkout"""
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., gt=0, description="Quantity to order")


class OrderCreate(BaseModel):
    """Schema for creating a new order"""
    user_id: int = Field(..., gt=0, description="Owning user ID")
    customer_email: Optional[EmailStr] = Field(None, description="Customer email address")
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Ordered items")
    shipping_cost: Decimal = Field(Decimal("0"), ge=0, description="Shipping cost")
    payment_method: Literal['provider', 'bank_transfer'] = Field(
        'provider',
        description="provider (checkout) or bank_transfer (manual payment)"
    )


class OrderItemResponse(BaseModel):
    """Schema for order item response"""
    product_id: int
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    """Schema for order response"""
    id: int
    user_id: int
    customer_email: Optional[str]
    total_amount: Decimal
    shipping_cost: Decimal
    payment_method: str
    status: str
    stock_reserved: bool
    provider_transaction_id: Optional[str]
    tracking_number: Optional[str]
    created_at: datetime
    approved_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    items: List[OrderItemResponse]

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    """Schema for list of orders response"""
    orders: list[OrderResponse]
    total: int


class AdminCancelRequest(BaseModel):
    """Administrator-initiated cancellation"""
    reason: Optional[str] = Field(None, max_length=500)


class SelfCancelRequest(BaseModel):
    """Customer-initiated cancellation"""
    user_id: int = Field(..., gt=0, description="Acting user ID")
    reason: Optional[str] = Field(None, max_length=500)


class ShipOrderRequest(BaseModel):
    """Schema for marking an order as shipped"""
    tracking_number: str = Field(..., min_length=1, max_length=100)
