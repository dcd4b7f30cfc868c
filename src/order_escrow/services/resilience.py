"""Retry policies for the engine services.

Two kinds of retry, both built on tenacity:
    - retry_on_conflict: a lost compare-and-set is retried once from a fresh
      read before ConcurrentModificationError reaches the caller.
    - ledger / carrier calls: exponential backoff, sized from settings. Every
      call carries an idempotency key, so a retry can never double-pay or
      double-ship.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    LedgerFailureError,
    ShipmentFailedError,
)
from order_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from order_escrow.config import Settings
    from order_escrow.domain.collaborators import (
        LedgerGateway,
        LedgerResult,
        ShippingCarrier,
    )

logger = get_logger(__name__)

retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrentModificationError),
    stop=stop_after_attempt(2),
    reraise=True,
)


def release_key(order_id: str) -> str:
    return f"release:{order_id}"


def refund_key(order_id: str) -> str:
    return f"refund:{order_id}"


def _ledger_retrying(settings: Settings) -> AsyncRetrying:
    return AsyncRetrying(
        retry=retry_if_exception_type(LedgerFailureError),
        stop=stop_after_attempt(settings.ledger_max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=settings.ledger_retry_wait_min,
            max=settings.ledger_retry_wait_max,
        ),
        reraise=True,
    )


async def _checked(order_id: str, operation: str, call: Any) -> LedgerResult:
    """Await a ledger call, turning failures of any shape into LedgerFailureError."""
    try:
        result = await call
    except LedgerFailureError:
        raise
    except Exception as exc:
        logger.warning("ledger.call_raised", order_id=order_id, operation=operation, error=str(exc))
        raise LedgerFailureError(order_id, str(exc)) from exc
    if not result.success:
        logger.warning("ledger.call_failed", order_id=order_id, operation=operation, error=result.error)
        raise LedgerFailureError(order_id, result.error or "ledger reported failure")
    return result


async def transfer_with_retry(
    ledger: LedgerGateway,
    settings: Settings,
    order_id: str,
    to_account: str,
    amount: Decimal,
) -> LedgerResult:
    """Pay `amount` out of escrow to `to_account`, idempotent per order."""
    async for attempt in _ledger_retrying(settings):
        with attempt:
            return await _checked(
                order_id,
                "transfer",
                ledger.transfer(
                    order_id=order_id,
                    from_account=settings.escrow_account_id,
                    to_account=to_account,
                    amount=amount,
                    idempotency_key=release_key(order_id),
                ),
            )
    raise AssertionError("unreachable")  # pragma: no cover


async def refund_with_retry(
    ledger: LedgerGateway,
    settings: Settings,
    order_id: str,
    to_account: str,
    amount: Decimal,
) -> LedgerResult:
    """Return `amount` from escrow to `to_account`, idempotent per order."""
    async for attempt in _ledger_retrying(settings):
        with attempt:
            return await _checked(
                order_id,
                "refund",
                ledger.refund(
                    order_id=order_id,
                    to_account=to_account,
                    amount=amount,
                    idempotency_key=refund_key(order_id),
                ),
            )
    raise AssertionError("unreachable")  # pragma: no cover


async def create_shipment_with_retry(
    carrier: ShippingCarrier,
    settings: Settings,
    order_id: str,
    address: dict,
    items: list[dict],
) -> str:
    """Ask the carrier for a shipment, retrying transient failures."""
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(ShipmentFailedError),
        stop=stop_after_attempt(settings.carrier_max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=settings.carrier_retry_wait_min,
            max=settings.carrier_retry_wait_max,
        ),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            try:
                tracking_number = await carrier.create_shipment(address, items, reference=order_id)
            except Exception as exc:
                logger.warning("carrier.call_raised", order_id=order_id, error=str(exc))
                raise ShipmentFailedError(order_id, str(exc)) from exc
            if not tracking_number:
                raise ShipmentFailedError(order_id, "carrier returned no tracking number")
            return tracking_number
    raise AssertionError("unreachable")  # pragma: no cover
