"""Pydantic schemas for the Orders API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from order_escrow.domain.enums import DeliveryOption, ResolutionOutcome

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class ShippingAddress(BaseModel):
    """Destination for a physical shipment."""

    name: str = Field(..., min_length=1, max_length=200)
    line1: str = Field(..., min_length=1, max_length=200)
    line2: str | None = Field(default=None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    region: str | None = Field(default=None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(
        ...,
        min_length=2,
        max_length=2,
        description="ISO 3166-1 alpha-2 country code",
        examples=["US"],
    )


class CreateOrderRequest(BaseModel):
    """Request body for creating an order. The buyer is the calling actor."""

    seller_id: str = Field(..., min_length=1, max_length=64)
    listing_id: str = Field(..., min_length=1, max_length=64)
    price: Decimal = Field(..., gt=0, decimal_places=2, examples=[100.0])
    buyer_fee: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    seller_fee: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    delivery_option: DeliveryOption = Field(
        default=DeliveryOption.SHIP,
        description='"ship" to send directly, "vault" to keep the item in storage',
    )
    shipping_address: ShippingAddress | None = None


class CapturePaymentRequest(BaseModel):
    """Sent by the payment processor once funds are held in escrow."""

    payment_reference: str | None = Field(default=None, max_length=128)


class MarkShippedRequest(BaseModel):
    tracking_number: str | None = Field(default=None, max_length=128)


class OpenDisputeRequest(BaseModel):
    """Request body for escalating an order to human adjudication."""

    reason: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="Why the order is being disputed",
        examples=["item not as described"],
    )


class ShippingRequestBody(BaseModel):
    """Ask for a vault order to be shipped; the address may be supplied now."""

    shipping_address: ShippingAddress | None = None


class ApplyResolutionRequest(BaseModel):
    """Outcome handed back by the admin workflow for a disputed order."""

    outcome: ResolutionOutcome
    note: str | None = Field(default=None, max_length=2000)


class CancelOrderRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: str
    buyer_id: str
    seller_id: str
    price: Decimal
    buyer_fee: Decimal
    seller_fee: Decimal
    escrow_held_amount: Decimal | None
    status: str
    escrow_status: str
    version: int
    paid_at: datetime | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    buyer_confirmed_at: datetime | None
    seller_confirmed_at: datetime | None
    funds_released_at: datetime | None
    refunded_at: datetime | None
    ledger_reference: str | None
    settlement_failed_at: datetime | None
    admin_escalated_at: datetime | None
    escalation_reason: str | None
    resolved_by: str | None
    resolution_note: str | None
    delivery_option: str
    tracking_number: str | None
    shipping_address: dict | None
    shipping_requested_at: datetime | None
    shipping_requested_by: str | None
    buyer_approved_shipping: bool
    seller_approved_shipping: bool
    buyer_shipping_approved_at: datetime | None
    seller_shipping_approved_at: datetime | None
    listing_snapshot: dict | None
    created_at: datetime
    updated_at: datetime


class OrderActionResponse(BaseModel):
    """Response schema for one entry of the audit timeline."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: uuid.UUID
    action_type: str
    actor_id: str | None
    actor_type: str
    details: dict
    created_at: datetime


class EscalationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    escalation_type: str
    escalated_by: str
    reason: str
    created_at: datetime


class OrderStatusResponse(BaseModel):
    """Lightweight status check response."""

    order_id: uuid.UUID
    status: str
    escrow_status: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )
    buyer_confirmed: bool
    seller_confirmed: bool
    settlement: str
    settlement_failed: bool
    shipping_requested: bool
    buyer_approved_shipping: bool
    seller_approved_shipping: bool
    tracking_number: str | None


class ConfirmationResponse(BaseModel):
    """Result of a confirm call."""

    order_id: uuid.UUID
    role: str
    recorded: bool = Field(description="False when this actor had already confirmed")
    outcome: str
    released: bool
    settlement_blocked: bool


class SweepReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    examined: int
    completed: int
    failed: int
    failed_order_ids: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
