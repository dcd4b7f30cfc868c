"""Tests for the vault shipping-consent handshake."""

from __future__ import annotations

import asyncio

import pytest

from order_escrow.domain.enums import (
    ActionType,
    ActorType,
    DeliveryOption,
    NotificationType,
)
from order_escrow.domain.exceptions import (
    InvalidTransitionError,
    OrderValidationError,
    ShipmentFailedError,
    UnauthorizedActorError,
)

BUYER = "buyer-1"
SELLER = "seller-1"
ADDRESS = {
    "name": "Pat Buyer",
    "line1": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


@pytest.fixture
def make_vault_order(make_order):  # noqa: ANN001, ANN201
    async def _make(**kwargs):  # noqa: ANN003, ANN202
        kwargs.setdefault("shipping_address", ADDRESS)
        return await make_order(delivery_option=DeliveryOption.VAULT, **kwargs)

    return _make


class TestRequestShipping:
    @pytest.mark.asyncio
    async def test_request_is_recorded_once(
        self, make_vault_order, shipping_service, order_service, dispatcher  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()

        first = await shipping_service.request_shipping(order.id, BUYER)
        second = await shipping_service.request_shipping(order.id, SELLER)

        assert first.shipping_requested_at is not None
        assert first.shipping_requested_by == BUYER
        assert second.shipping_requested_by == BUYER
        assert second.shipping_requested_at == first.shipping_requested_at
        # Requesting is not approving.
        assert not second.buyer_approved_shipping

        types = [a.action_type for a in await order_service.get_timeline(order.id)]
        assert types.count(ActionType.SHIPPING_REQUESTED.value) == 1
        assert dispatcher.events_for(SELLER) == [NotificationType.SHIPPING_APPROVAL_REQUIRED.value]

    @pytest.mark.asyncio
    async def test_request_can_supply_address(
        self, make_vault_order, shipping_service  # noqa: ANN001
    ) -> None:
        order = await make_vault_order(shipping_address=None)
        new_address = {**ADDRESS, "line1": "22 Elm St"}

        order = await shipping_service.request_shipping(order.id, BUYER, shipping_address=new_address)

        assert order.shipping_address["line1"] == "22 Elm St"

    @pytest.mark.asyncio
    async def test_request_without_address_is_rejected(
        self, make_vault_order, shipping_service  # noqa: ANN001
    ) -> None:
        order = await make_vault_order(shipping_address=None)

        with pytest.raises(OrderValidationError):
            await shipping_service.request_shipping(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_ship_orders_have_no_handshake(self, make_order, shipping_service) -> None:  # noqa: ANN001
        order = await make_order(shipping_address=ADDRESS)

        with pytest.raises(InvalidTransitionError):
            await shipping_service.request_shipping(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_unpaid_vault_order_cannot_ship(
        self, make_vault_order, shipping_service  # noqa: ANN001
    ) -> None:
        order = await make_vault_order(paid=False)

        with pytest.raises(InvalidTransitionError):
            await shipping_service.request_shipping(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_disputed_vault_order_cannot_ship(
        self, make_vault_order, shipping_service, dispute_service  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await dispute_service.open_dispute(order.id, SELLER, "payment chargeback")

        with pytest.raises(InvalidTransitionError):
            await shipping_service.request_shipping(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_outsider_cannot_request(self, make_vault_order, shipping_service) -> None:  # noqa: ANN001
        order = await make_vault_order()

        with pytest.raises(UnauthorizedActorError):
            await shipping_service.request_shipping(order.id, "stranger-1")


class TestApproveShipping:
    @pytest.mark.asyncio
    async def test_single_approval_does_not_ship(
        self, make_vault_order, shipping_service, carrier  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await shipping_service.request_shipping(order.id, BUYER)

        order = await shipping_service.approve_shipping(order.id, BUYER)

        assert order.buyer_approved_shipping is True
        assert order.buyer_shipping_approved_at is not None
        assert order.seller_approved_shipping is False
        assert order.tracking_number is None
        assert carrier.calls == []

    @pytest.mark.asyncio
    async def test_both_approvals_create_one_shipment(
        self, make_vault_order, shipping_service, order_service, carrier, dispatcher  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await shipping_service.request_shipping(order.id, BUYER)
        await shipping_service.approve_shipping(order.id, BUYER)

        order = await shipping_service.approve_shipping(order.id, SELLER)

        assert len(carrier.calls) == 1
        address, reference = carrier.calls[0]
        assert address == ADDRESS
        assert reference == str(order.id)

        assert order.tracking_number is not None
        assert order.tracking_number.startswith("SIM")
        assert order.shipment_dispatched_at is not None
        assert order.delivery_option == DeliveryOption.SHIP

        timeline = await order_service.get_timeline(order.id)
        created = timeline[-1]
        assert created.action_type == ActionType.SHIPMENT_CREATED
        assert created.actor_type == ActorType.SYSTEM
        assert created.details["tracking_number"] == order.tracking_number
        assert NotificationType.SHIPPING_APPROVED.value in dispatcher.events_for(BUYER)
        assert NotificationType.SHIPPING_APPROVED.value in dispatcher.events_for(SELLER)

    @pytest.mark.asyncio
    async def test_simultaneous_approvals_create_one_shipment(
        self, make_vault_order, shipping_service, order_service, carrier  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await shipping_service.request_shipping(order.id, BUYER)

        await asyncio.gather(
            shipping_service.approve_shipping(order.id, BUYER),
            shipping_service.approve_shipping(order.id, SELLER),
        )

        assert len(carrier.calls) == 1
        order = await order_service.get_order(order.id)
        assert order.buyer_approved_shipping is True
        assert order.seller_approved_shipping is True
        assert order.tracking_number is not None

        types = [a.action_type for a in await order_service.get_timeline(order.id)]
        assert types.count(ActionType.SHIPMENT_CREATED.value) == 1

    @pytest.mark.asyncio
    async def test_repeat_approval_is_noop(
        self, make_vault_order, shipping_service, order_service, carrier  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await shipping_service.request_shipping(order.id, SELLER)
        await shipping_service.approve_shipping(order.id, BUYER)
        await shipping_service.approve_shipping(order.id, SELLER)

        await shipping_service.approve_shipping(order.id, SELLER)
        await shipping_service.approve_shipping(order.id, BUYER)

        assert len(carrier.calls) == 1
        types = [a.action_type for a in await order_service.get_timeline(order.id)]
        assert types.count(ActionType.SHIPPING_APPROVED.value) == 2
        assert types.count(ActionType.SHIPMENT_CREATED.value) == 1

    @pytest.mark.asyncio
    async def test_approval_requires_request(
        self, make_vault_order, shipping_service  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()

        with pytest.raises(InvalidTransitionError):
            await shipping_service.approve_shipping(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_carrier_failure_keeps_approvals(
        self, make_vault_order, shipping_service, order_service, carrier, settings  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await shipping_service.request_shipping(order.id, BUYER)
        await shipping_service.approve_shipping(order.id, BUYER)
        carrier.fail_always = True

        with pytest.raises(ShipmentFailedError):
            await shipping_service.approve_shipping(order.id, SELLER)

        assert len(carrier.calls) == settings.carrier_max_attempts
        order = await order_service.get_order(order.id)
        assert order.buyer_approved_shipping and order.seller_approved_shipping
        assert order.shipment_dispatched_at is not None
        assert order.tracking_number is None

        carrier.fail_always = False
        tracking_number = await shipping_service.resume_shipment(order.id)

        assert tracking_number is not None
        order = await order_service.get_order(order.id)
        assert order.tracking_number == tracking_number

    @pytest.mark.asyncio
    async def test_shipping_allowed_after_settlement(
        self, make_vault_order, shipping_service, settlement_service, carrier  # noqa: ANN001
    ) -> None:
        order = await make_vault_order()
        await settlement_service.confirm(order.id, BUYER)
        await settlement_service.confirm(order.id, SELLER)

        await shipping_service.request_shipping(order.id, BUYER)
        await shipping_service.approve_shipping(order.id, BUYER)
        order = await shipping_service.approve_shipping(order.id, SELLER)

        assert order.tracking_number is not None
        assert len(carrier.calls) == 1
