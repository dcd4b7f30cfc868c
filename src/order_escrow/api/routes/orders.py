"""Order REST API routes.

These endpoints provide the HTTP interface for the order lifecycle, the
dual-confirmation settlement, disputes and the vault shipping handshake.
The calling user is identified by the X-Actor-Id header; admin routes also
require X-Admin-Token.

Routes:
    POST   /api/v1/orders                        — Create an order (caller is the buyer)
    GET    /api/v1/orders                        — List the caller's orders
    GET    /api/v1/orders/{id}                   — Get order details
    GET    /api/v1/orders/{id}/status            — Lightweight status check
    GET    /api/v1/orders/{id}/actions           — Audit timeline
    GET    /api/v1/orders/{id}/escalations       — Dispute escalations (admin)
    POST   /api/v1/orders/{id}/payment           — Payment captured (admin/system)
    POST   /api/v1/orders/{id}/ship              — Seller marks shipped
    POST   /api/v1/orders/{id}/deliver           — Mark delivered
    POST   /api/v1/orders/{id}/confirm           — Confirm the transaction
    POST   /api/v1/orders/{id}/dispute           — Open a dispute
    POST   /api/v1/orders/{id}/shipping-request  — Request vault shipping
    POST   /api/v1/orders/{id}/shipping-approval — Approve vault shipping
    POST   /api/v1/orders/{id}/resolution        — Apply a dispute resolution (admin)
    POST   /api/v1/orders/{id}/cancel            — Cancel before confirmation
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime
from typing import Annotated

from fastapi import APIRouter, Depends

from order_escrow.api.deps import (
    ActorId,
    AdminOnly,
    get_dispute_service,
    get_order_service,
    get_settlement_service,
    get_shipping_service,
    is_admin,
)
from order_escrow.logging_config import get_logger
from order_escrow.schemas.orders import (
    ApplyResolutionRequest,
    CancelOrderRequest,
    CapturePaymentRequest,
    ConfirmationResponse,
    CreateOrderRequest,
    EscalationResponse,
    MarkShippedRequest,
    OpenDisputeRequest,
    OrderActionResponse,
    OrderResponse,
    OrderStatusResponse,
    ShippingRequestBody,
)
from order_escrow.services import (
    DisputeService,
    OrderService,
    SettlementService,
    ShippingService,
)

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])
logger = get_logger(__name__)

Orders = Annotated[OrderService, Depends(get_order_service)]
Settlement = Annotated[SettlementService, Depends(get_settlement_service)]
Disputes = Annotated[DisputeService, Depends(get_dispute_service)]
Shipping = Annotated[ShippingService, Depends(get_shipping_service)]


# ---------------------------------------------------------------------------
# Create / Read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Create an order",
)
async def create_order(request: CreateOrderRequest, actor_id: ActorId, svc: Orders) -> OrderResponse:
    """Create an order in `pending` with the caller as buyer."""
    order = await svc.create_order(
        buyer_id=actor_id,
        seller_id=request.seller_id,
        listing_id=request.listing_id,
        price=request.price,
        buyer_fee=request.buyer_fee,
        seller_fee=request.seller_fee,
        delivery_option=request.delivery_option,
        shipping_address=(
            request.shipping_address.model_dump() if request.shipping_address else None
        ),
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=list[OrderResponse], summary="List the caller's orders")
async def list_orders(actor_id: ActorId, svc: Orders) -> list[OrderResponse]:
    orders = await svc.list_orders_for_user(actor_id)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order details")
async def get_order(order_id: uuid.UUID, actor_id: ActorId, svc: Orders) -> OrderResponse:
    order = await svc.get_order(order_id, actor_id=actor_id)
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/status", response_model=OrderStatusResponse, summary="Get order status")
async def get_order_status(order_id: uuid.UUID, actor_id: ActorId, svc: Orders) -> OrderStatusResponse:
    """Status, allowed state machine events and handshake progress."""
    await svc.get_order(order_id, actor_id=actor_id)
    return OrderStatusResponse(**await svc.get_status(order_id))


@router.get(
    "/{order_id}/actions",
    response_model=list[OrderActionResponse],
    summary="Get audit timeline",
)
async def get_order_actions(
    order_id: uuid.UUID, actor_id: ActorId, svc: Orders
) -> list[OrderActionResponse]:
    """Every recorded action for the order, oldest first."""
    await svc.get_order(order_id, actor_id=actor_id)
    actions = await svc.get_timeline(order_id)
    return [OrderActionResponse.model_validate(a) for a in actions]


@router.get(
    "/{order_id}/escalations",
    response_model=list[EscalationResponse],
    summary="List dispute escalations",
    dependencies=[AdminOnly],
)
async def list_escalations(order_id: uuid.UUID, svc: Orders) -> list[EscalationResponse]:
    escalations = await svc.list_escalations(order_id)
    return [EscalationResponse.model_validate(e) for e in escalations]


# ---------------------------------------------------------------------------
# Fulfilment
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/payment",
    response_model=OrderResponse,
    summary="Record payment capture",
    dependencies=[AdminOnly],
)
async def capture_payment(
    order_id: uuid.UUID, request: CapturePaymentRequest, svc: Orders
) -> OrderResponse:
    """Called by the payment processor integration. Transitions pending -> paid."""
    order = await svc.capture_payment(order_id, payment_reference=request.payment_reference)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/ship", response_model=OrderResponse, summary="Mark as shipped")
async def mark_shipped(
    order_id: uuid.UUID, request: MarkShippedRequest, actor_id: ActorId, svc: Orders
) -> OrderResponse:
    """Seller marks the order shipped. Transitions paid -> shipped."""
    order = await svc.mark_shipped(order_id, actor_id, tracking_number=request.tracking_number)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/deliver", response_model=OrderResponse, summary="Mark as delivered")
async def mark_delivered(order_id: uuid.UUID, actor_id: ActorId, svc: Orders) -> OrderResponse:
    order = await svc.mark_delivered(order_id, actor_id)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/confirm",
    response_model=ConfirmationResponse,
    summary="Confirm the transaction",
)
async def confirm_order(
    order_id: uuid.UUID, actor_id: ActorId, svc: Settlement
) -> ConfirmationResponse:
    """Record the caller's confirmation. Funds are released once both parties confirm."""
    result = await svc.confirm(order_id, actor_id)
    return ConfirmationResponse(
        order_id=result.order_id,
        role=result.role.value,
        recorded=result.recorded,
        outcome=result.outcome.value,
        released=result.released,
        settlement_blocked=result.settlement_blocked,
    )


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/dispute",
    response_model=EscalationResponse,
    status_code=201,
    summary="Open a dispute",
)
async def open_dispute(
    order_id: uuid.UUID, request: OpenDisputeRequest, actor_id: ActorId, svc: Disputes
) -> EscalationResponse:
    """Freeze settlement and escalate the order to an admin."""
    escalation = await svc.open_dispute(order_id, actor_id, request.reason)
    return EscalationResponse.model_validate(escalation)


@router.post(
    "/{order_id}/resolution",
    response_model=OrderResponse,
    summary="Apply a dispute resolution",
    dependencies=[AdminOnly],
)
async def apply_resolution(
    order_id: uuid.UUID, request: ApplyResolutionRequest, actor_id: ActorId, svc: Disputes
) -> OrderResponse:
    """Release to the seller or refund the buyer. The caller is recorded as the admin."""
    order = await svc.apply_resolution(order_id, request.outcome, admin_id=actor_id, note=request.note)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse, summary="Cancel the order")
async def cancel_order(
    order_id: uuid.UUID,
    request: CancelOrderRequest,
    actor_id: ActorId,
    svc: Orders,
    as_admin: Annotated[bool, Depends(is_admin)],
) -> OrderResponse:
    """Cancel a pending or paid order before anyone confirmed; captured funds are refunded."""
    order = await svc.cancel_order(order_id, actor_id, request.reason, as_admin=as_admin)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Vault shipping handshake
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/shipping-request",
    response_model=OrderResponse,
    summary="Request shipping of a vault order",
)
async def request_shipping(
    order_id: uuid.UUID, request: ShippingRequestBody, actor_id: ActorId, svc: Shipping
) -> OrderResponse:
    address = request.shipping_address.model_dump() if request.shipping_address else None
    order = await svc.request_shipping(order_id, actor_id, shipping_address=address)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/shipping-approval",
    response_model=OrderResponse,
    summary="Approve shipping of a vault order",
)
async def approve_shipping(order_id: uuid.UUID, actor_id: ActorId, svc: Shipping) -> OrderResponse:
    """Record the caller's approval; the shipment is created once both parties approved."""
    order = await svc.approve_shipping(order_id, actor_id)
    return OrderResponse.model_validate(order)
