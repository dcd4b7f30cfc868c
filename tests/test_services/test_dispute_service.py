"""Tests for disputes and admin resolutions."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from order_escrow.domain.enums import (
    ActionType,
    ActorType,
    EscalationType,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    ResolutionOutcome,
)
from order_escrow.domain.exceptions import (
    InvalidTransitionError,
    LedgerFailureError,
    OrderValidationError,
    UnauthorizedActorError,
)

BUYER = "buyer-1"
SELLER = "seller-1"
ADMIN = "admin-1"


class TestOpenDispute:
    @pytest.mark.asyncio
    async def test_buyer_dispute_freezes_escrow(
        self, make_order, dispute_service, order_service, dispatcher  # noqa: ANN001
    ) -> None:
        order = await make_order()

        escalation = await dispute_service.open_dispute(order.id, BUYER, "item not as described")

        assert escalation.escalation_type == EscalationType.BUYER_DISPUTE
        assert escalation.escalated_by == BUYER
        assert escalation.reason == "item not as described"

        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.DISPUTED
        assert order.escrow_status == EscrowStatus.DISPUTED
        assert order.admin_escalated_at is not None
        assert order.escalation_reason == "item not as described"
        assert order.escrow_held_amount is None

        timeline = await order_service.get_timeline(order.id)
        disputed = timeline[-1]
        assert disputed.action_type == ActionType.DISPUTED
        assert disputed.actor_id == BUYER
        assert disputed.details["state_changed"] is True
        assert disputed.details["previous_status"] == OrderStatus.PAID

        assert NotificationType.ORDER_DISPUTED.value in dispatcher.events_for(SELLER)
        assert NotificationType.ADMIN_ESCALATION.value in dispatcher.events_for(ADMIN)

    @pytest.mark.asyncio
    async def test_second_dispute_adds_escalation_without_state_change(
        self, make_order, dispute_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await dispute_service.open_dispute(order.id, BUYER, "item not as described")
        after_first = await order_service.get_order(order.id)

        escalation = await dispute_service.open_dispute(order.id, SELLER, "buyer damaged the item")

        assert escalation.escalation_type == EscalationType.SELLER_DISPUTE
        escalations = await order_service.list_escalations(order.id)
        assert [e.escalated_by for e in escalations] == [BUYER, SELLER]

        after_second = await order_service.get_order(order.id)
        assert after_second.version == after_first.version
        assert after_second.escalation_reason == "item not as described"

        timeline = await order_service.get_timeline(order.id)
        assert timeline[-1].details["state_changed"] is False

    @pytest.mark.asyncio
    async def test_dispute_after_shipping(
        self, make_order, dispute_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await order_service.mark_shipped(order.id, SELLER)

        await dispute_service.open_dispute(order.id, BUYER, "never arrived")

        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_completed_order_cannot_be_disputed(
        self, make_order, dispute_service, settlement_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await settlement_service.confirm(order.id, BUYER)
        await settlement_service.confirm(order.id, SELLER)

        with pytest.raises(InvalidTransitionError):
            await dispute_service.open_dispute(order.id, BUYER, "too late")

    @pytest.mark.asyncio
    async def test_unpaid_order_cannot_be_disputed(self, make_order, dispute_service) -> None:  # noqa: ANN001
        order = await make_order(paid=False)

        with pytest.raises(InvalidTransitionError):
            await dispute_service.open_dispute(order.id, BUYER, "no payment yet")

    @pytest.mark.asyncio
    async def test_dispute_refused_while_release_in_progress(
        self, make_order, dispute_service, settlement_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        ledger.fail_always = True
        await settlement_service.confirm(order.id, BUYER)
        with pytest.raises(LedgerFailureError):
            await settlement_service.confirm(order.id, SELLER)

        with pytest.raises(InvalidTransitionError):
            await dispute_service.open_dispute(order.id, BUYER, "changed my mind")

    @pytest.mark.asyncio
    async def test_dispute_racing_final_confirmation(
        self, make_order, dispute_service, settlement_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await settlement_service.confirm(order.id, BUYER)

        dispute, confirmation = await asyncio.gather(
            dispute_service.open_dispute(order.id, BUYER, "item not as described"),
            settlement_service.confirm(order.id, SELLER),
            return_exceptions=True,
        )

        assert not isinstance(confirmation, Exception)
        order = await order_service.get_order(order.id)
        if order.status == OrderStatus.COMPLETED:
            assert isinstance(dispute, InvalidTransitionError)
            assert order.escrow_status == EscrowStatus.RELEASED
            assert await order_service.list_escalations(order.id) == []
            assert len(ledger.transfer_calls) == 1
        else:
            assert not isinstance(dispute, Exception)
            assert order.status == OrderStatus.DISPUTED
            assert order.escrow_status == EscrowStatus.DISPUTED
            assert order.funds_released_at is None
            assert confirmation.settlement_blocked
            assert ledger.transfer_calls == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_dispute(self, make_order, dispute_service, order_service) -> None:  # noqa: ANN001
        order = await make_order()

        with pytest.raises(UnauthorizedActorError):
            await dispute_service.open_dispute(order.id, "stranger-1", "spam")

        assert await order_service.list_escalations(order.id) == []

    @pytest.mark.asyncio
    async def test_reason_is_required(self, make_order, dispute_service) -> None:  # noqa: ANN001
        order = await make_order()

        with pytest.raises(OrderValidationError):
            await dispute_service.open_dispute(order.id, BUYER, "   ")


class TestApplyResolution:
    @pytest.mark.asyncio
    async def test_release_pays_seller(
        self, make_order, dispute_service, order_service, ledger, dispatcher  # noqa: ANN001
    ) -> None:
        order = await make_order(seller_fee=Decimal("10.00"))
        await dispute_service.open_dispute(order.id, BUYER, "item not as described")

        order = await dispute_service.apply_resolution(
            order.id, ResolutionOutcome.RELEASE, ADMIN, note="photos match listing"
        )

        assert order.status == OrderStatus.COMPLETED
        assert order.escrow_status == EscrowStatus.RELEASED
        assert order.funds_released_at is not None
        assert order.refunded_at is None
        assert ledger.balances[SELLER] == Decimal("90.00")

        timeline = await order_service.get_timeline(order.id)
        admin_entry = timeline[-1]
        assert admin_entry.action_type == ActionType.ADMIN_ACTION
        assert admin_entry.actor_id == ADMIN
        assert admin_entry.actor_type == ActorType.ADMIN
        assert admin_entry.details["outcome"] == "release"
        assert admin_entry.details["note"] == "photos match listing"
        assert NotificationType.DISPUTE_RESOLVED.value in dispatcher.events_for(BUYER)

    @pytest.mark.asyncio
    async def test_refund_returns_held_amount_to_buyer(
        self, make_order, dispute_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order(buyer_fee=Decimal("5.00"))
        await dispute_service.open_dispute(order.id, BUYER, "counterfeit")

        order = await dispute_service.apply_resolution(order.id, ResolutionOutcome.REFUND, ADMIN)

        assert order.status == OrderStatus.REFUNDED
        assert order.escrow_status == EscrowStatus.REFUNDED
        assert order.refunded_at is not None
        assert order.funds_released_at is None
        assert order.escrow_held_amount is None
        assert ledger.balances[BUYER] == Decimal("105.00")
        assert ledger.refund_calls == [f"refund:{order.id}"]

    @pytest.mark.asyncio
    async def test_resolution_requires_dispute(self, make_order, dispute_service) -> None:  # noqa: ANN001
        order = await make_order()

        with pytest.raises(InvalidTransitionError):
            await dispute_service.apply_resolution(order.id, ResolutionOutcome.RELEASE, ADMIN)

    @pytest.mark.asyncio
    async def test_resolution_cannot_be_applied_twice(
        self, make_order, dispute_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await dispute_service.open_dispute(order.id, BUYER, "counterfeit")
        await dispute_service.apply_resolution(order.id, ResolutionOutcome.REFUND, ADMIN)

        with pytest.raises(InvalidTransitionError):
            await dispute_service.apply_resolution(order.id, ResolutionOutcome.RELEASE, ADMIN)
        assert ledger.transfer_calls == []

    @pytest.mark.asyncio
    async def test_failed_resolution_can_be_reapplied(
        self, make_order, dispute_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await dispute_service.open_dispute(order.id, BUYER, "counterfeit")
        ledger.fail_always = True

        with pytest.raises(LedgerFailureError):
            await dispute_service.apply_resolution(order.id, ResolutionOutcome.REFUND, ADMIN)

        stuck = await order_service.get_order(order.id)
        assert stuck.escrow_status == EscrowStatus.DISPUTED
        assert stuck.settlement_failed_at is not None

        with pytest.raises(InvalidTransitionError):
            await dispute_service.apply_resolution(order.id, ResolutionOutcome.RELEASE, ADMIN)

        ledger.fail_always = False
        order = await dispute_service.apply_resolution(order.id, ResolutionOutcome.REFUND, ADMIN)

        assert order.status == OrderStatus.REFUNDED
        assert order.settlement_failed_at is None
        assert len(ledger.entries) == 1
