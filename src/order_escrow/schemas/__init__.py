"""Pydantic API schemas."""

from order_escrow.schemas.orders import (
    ApplyResolutionRequest,
    CancelOrderRequest,
    CapturePaymentRequest,
    ConfirmationResponse,
    CreateOrderRequest,
    EscalationResponse,
    HealthResponse,
    MarkShippedRequest,
    OpenDisputeRequest,
    OrderActionResponse,
    OrderResponse,
    OrderStatusResponse,
    ShippingAddress,
    ShippingRequestBody,
    SweepReportResponse,
)

__all__ = [
    "ApplyResolutionRequest",
    "CancelOrderRequest",
    "CapturePaymentRequest",
    "ConfirmationResponse",
    "CreateOrderRequest",
    "EscalationResponse",
    "HealthResponse",
    "MarkShippedRequest",
    "OpenDisputeRequest",
    "OrderActionResponse",
    "OrderResponse",
    "OrderStatusResponse",
    "ShippingAddress",
    "ShippingRequestBody",
    "SweepReportResponse",
]
