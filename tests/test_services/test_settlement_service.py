"""Tests for dual confirmation and escrow release.

Covers:
    1. Confirm from one side, then the other, releases exactly once.
    2. Concurrent confirmations release exactly once.
    3. Repeated confirmations are no-ops.
    4. Disputed, pending and terminal orders.
    5. Ledger and notification failures.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from order_escrow.domain.enums import (
    ActionType,
    ActorRole,
    ActorType,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    SettlementOutcome,
)
from order_escrow.domain.exceptions import (
    InvalidTransitionError,
    LedgerFailureError,
    SettlementBlockedError,
    UnauthorizedActorError,
)
from order_escrow.services import SettlementService

BUYER = "buyer-1"
SELLER = "seller-1"


async def _action_types(order_service, order_id) -> list[str]:  # noqa: ANN001
    return [a.action_type for a in await order_service.get_timeline(order_id)]


class TestSequentialConfirmation:
    """Buyer confirms, then seller confirms."""

    @pytest.mark.asyncio
    async def test_first_confirmation_waits_for_counterparty(
        self, make_order, settlement_service, order_service, dispatcher, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()

        result = await settlement_service.confirm(order.id, BUYER)

        assert result.role is ActorRole.BUYER
        assert result.recorded is True
        assert result.outcome is SettlementOutcome.AWAITING_COUNTERPARTY
        assert not result.released

        order = await order_service.get_order(order.id)
        assert order.buyer_confirmed_at is not None
        assert order.seller_confirmed_at is None
        assert order.status == OrderStatus.PAID
        assert order.escrow_status == EscrowStatus.PENDING
        assert ledger.transfer_calls == []
        assert dispatcher.events_for(SELLER) == [NotificationType.CONFIRMATION_PENDING.value]

    @pytest.mark.asyncio
    async def test_second_confirmation_releases_funds(
        self, make_order, settlement_service, order_service, dispatcher, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        assert order.escrow_held_amount == Decimal("100.00")

        await settlement_service.confirm(order.id, BUYER)
        result = await settlement_service.confirm(order.id, SELLER)

        assert result.outcome is SettlementOutcome.RELEASED
        assert result.released

        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.COMPLETED
        assert order.escrow_status == EscrowStatus.RELEASED
        assert order.funds_released_at is not None
        assert order.refunded_at is None
        assert order.escrow_held_amount is None
        assert order.ledger_reference is not None

        types = await _action_types(order_service, order.id)
        assert types.count(ActionType.FUNDS_RELEASED.value) == 1
        assert types[-3:] == [
            ActionType.BUYER_CONFIRMED.value,
            ActionType.SELLER_CONFIRMED.value,
            ActionType.FUNDS_RELEASED.value,
        ]

        assert len(ledger.transfer_calls) == 1
        assert NotificationType.ORDER_COMPLETED.value in dispatcher.events_for(BUYER)
        assert NotificationType.ORDER_COMPLETED.value in dispatcher.events_for(SELLER)

    @pytest.mark.asyncio
    async def test_seller_receives_price_minus_fee(
        self, make_order, settlement_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order(
            price=Decimal("250.00"), buyer_fee=Decimal("12.50"), seller_fee=Decimal("25.00")
        )

        await settlement_service.confirm(order.id, SELLER)
        await settlement_service.confirm(order.id, BUYER)

        assert ledger.balances[SELLER] == Decimal("225.00")
        timeline = await order_service.get_timeline(order.id)
        release = [a for a in timeline if a.action_type == ActionType.FUNDS_RELEASED.value][0]
        assert release.actor_type == ActorType.SYSTEM
        assert release.details["amount"] == "225.00"
        assert release.details["beneficiary"] == SELLER

    @pytest.mark.asyncio
    async def test_confirm_after_shipping(
        self, make_order, settlement_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await order_service.mark_shipped(order.id, SELLER, tracking_number="1Z999")
        await order_service.mark_delivered(order.id, BUYER)

        await settlement_service.confirm(order.id, BUYER)
        result = await settlement_service.confirm(order.id, SELLER)

        assert result.released
        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.COMPLETED


class TestConcurrentConfirmation:
    @pytest.mark.asyncio
    async def test_concurrent_confirms_release_once(
        self, make_order, settlement_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()

        results = await asyncio.gather(
            settlement_service.confirm(order.id, BUYER),
            settlement_service.confirm(order.id, SELLER),
        )

        assert all(r.recorded for r in results)
        assert any(r.released for r in results)

        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.COMPLETED
        assert order.escrow_status == EscrowStatus.RELEASED

        types = await _action_types(order_service, order.id)
        assert types.count(ActionType.FUNDS_RELEASED.value) == 1
        assert len(ledger.transfer_calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirms_from_same_actor_record_once(
        self, make_order, settlement_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()

        results = await asyncio.gather(
            *(settlement_service.confirm(order.id, BUYER) for _ in range(3))
        )

        assert sum(r.recorded for r in results) == 1
        types = await _action_types(order_service, order.id)
        assert types.count(ActionType.BUYER_CONFIRMED.value) == 1


class TestIdempotentConfirmation:
    @pytest.mark.asyncio
    async def test_repeat_confirm_is_noop(
        self, make_order, settlement_service, order_service, dispatcher  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await settlement_service.confirm(order.id, BUYER)
        first = await order_service.get_order(order.id)
        notifications_before = len(dispatcher.sent)

        result = await settlement_service.confirm(order.id, BUYER)

        assert result.recorded is False
        assert result.outcome is SettlementOutcome.AWAITING_COUNTERPARTY
        second = await order_service.get_order(order.id)
        assert second.buyer_confirmed_at == first.buyer_confirmed_at
        assert second.version == first.version
        types = await _action_types(order_service, order.id)
        assert types.count(ActionType.BUYER_CONFIRMED.value) == 1
        assert len(dispatcher.sent) == notifications_before

    @pytest.mark.asyncio
    async def test_confirm_after_release_reports_released(
        self, make_order, settlement_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await settlement_service.confirm(order.id, BUYER)
        await settlement_service.confirm(order.id, SELLER)

        result = await settlement_service.confirm(order.id, BUYER)

        assert result.recorded is False
        assert result.outcome is SettlementOutcome.RELEASED
        assert len(ledger.transfer_calls) == 1


class TestBlockedConfirmation:
    @pytest.mark.asyncio
    async def test_outsider_is_unauthorized(
        self, make_order, settlement_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        before = await _action_types(order_service, order.id)

        with pytest.raises(UnauthorizedActorError):
            await settlement_service.confirm(order.id, "stranger-1")

        after = await order_service.get_order(order.id)
        assert after.buyer_confirmed_at is None
        assert after.seller_confirmed_at is None
        assert after.version == order.version
        assert await _action_types(order_service, order.id) == before

    @pytest.mark.asyncio
    async def test_unpaid_order_cannot_be_confirmed(
        self, make_order, settlement_service  # noqa: ANN001
    ) -> None:
        order = await make_order(paid=False)

        with pytest.raises(InvalidTransitionError):
            await settlement_service.confirm(order.id, BUYER)

    @pytest.mark.asyncio
    async def test_disputed_order_records_but_never_releases(
        self, make_order, settlement_service, dispute_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await dispute_service.open_dispute(order.id, BUYER, "item not as described")

        seller_result = await settlement_service.confirm(order.id, SELLER)
        buyer_result = await settlement_service.confirm(order.id, BUYER)

        assert seller_result.recorded and buyer_result.recorded
        assert seller_result.settlement_blocked
        assert buyer_result.outcome is SettlementOutcome.BLOCKED

        order = await order_service.get_order(order.id)
        assert order.seller_confirmed_at is not None
        assert order.buyer_confirmed_at is not None
        assert order.status == OrderStatus.DISPUTED
        assert order.escrow_status == EscrowStatus.DISPUTED
        assert order.funds_released_at is None
        assert ledger.transfer_calls == []

    @pytest.mark.asyncio
    async def test_refunded_order_rejects_confirmation(
        self, make_order, settlement_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await order_service.cancel_order(order.id, BUYER, "changed my mind")

        with pytest.raises(SettlementBlockedError):
            await settlement_service.confirm(order.id, SELLER)


class TestLedgerFailure:
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(
        self, make_order, settlement_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        ledger.failures_remaining = 2

        await settlement_service.confirm(order.id, BUYER)
        result = await settlement_service.confirm(order.id, SELLER)

        assert result.released
        assert len(ledger.transfer_calls) == 3
        assert len({key for key in ledger.transfer_calls}) == 1
        assert len(ledger.entries) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_flag_order_for_admin(
        self, make_order, settlement_service, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        ledger.fail_always = True
        await settlement_service.confirm(order.id, BUYER)

        with pytest.raises(LedgerFailureError):
            await settlement_service.confirm(order.id, SELLER)

        order = await order_service.get_order(order.id)
        assert order.escrow_status == EscrowStatus.PENDING
        assert order.status == OrderStatus.PAID
        assert order.funds_released_at is None
        assert order.release_token is not None
        assert order.settlement_failed_at is not None
        assert "ledger unavailable" in order.settlement_error

        timeline = await order_service.get_timeline(order.id)
        admin_entries = [a for a in timeline if a.action_type == ActionType.ADMIN_ACTION.value]
        assert len(admin_entries) == 1
        assert admin_entries[0].details["event"] == "settlement_failed"
        assert ActionType.FUNDS_RELEASED.value not in [a.action_type for a in timeline]

        status = await order_service.get_status(order.id)
        assert status["settlement"] == SettlementOutcome.RELEASE_IN_PROGRESS.value
        assert status["settlement_failed"] is True

    @pytest.mark.asyncio
    async def test_confirm_during_stuck_release_reports_in_progress(
        self, make_order, settlement_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        ledger.fail_always = True
        await settlement_service.confirm(order.id, BUYER)
        with pytest.raises(LedgerFailureError):
            await settlement_service.confirm(order.id, SELLER)
        calls = len(ledger.transfer_calls)

        result = await settlement_service.confirm(order.id, BUYER)

        assert result.outcome is SettlementOutcome.RELEASE_IN_PROGRESS
        assert len(ledger.transfer_calls) == calls


class TestNotificationFailure:
    @pytest.mark.asyncio
    async def test_failing_dispatcher_never_blocks_release(
        self, make_order, session_factory, quiet_collaborators, settings, order_service, ledger  # noqa: ANN001
    ) -> None:
        order = await make_order()
        service = SettlementService(session_factory, quiet_collaborators, settings)

        first = await service.confirm(order.id, BUYER)
        second = await service.confirm(order.id, SELLER)

        assert first.recorded
        assert second.released
        order = await order_service.get_order(order.id)
        assert order.status == OrderStatus.COMPLETED
        assert len(ledger.transfer_calls) == 1


class TestAutoConfirm:
    @pytest.mark.asyncio
    async def test_auto_confirm_records_system_action_and_releases(
        self, make_order, settlement_service, order_service  # noqa: ANN001
    ) -> None:
        order = await make_order()
        await settlement_service.confirm(order.id, BUYER)

        outcome = await settlement_service.auto_confirm(order.id, ActorRole.SELLER, "confirmation_timeout")

        assert outcome is SettlementOutcome.RELEASED
        timeline = await order_service.get_timeline(order.id)
        seller_entry = [a for a in timeline if a.action_type == ActionType.SELLER_CONFIRMED.value][0]
        assert seller_entry.actor_id is None
        assert seller_entry.actor_type == ActorType.SYSTEM
        assert seller_entry.details["auto"] is True
