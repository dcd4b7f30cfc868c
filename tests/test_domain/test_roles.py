"""Tests for actor role resolution."""

from __future__ import annotations

import pytest

from order_escrow.domain.enums import ActorRole, EscalationType
from order_escrow.domain.exceptions import UnauthorizedActorError
from order_escrow.domain.roles import escalation_type_for, resolve_role


class TestResolveRole:
    def test_buyer(self) -> None:
        assert resolve_role("o-1", "alice", "bob", "alice") is ActorRole.BUYER

    def test_seller(self) -> None:
        assert resolve_role("o-1", "alice", "bob", "bob") is ActorRole.SELLER

    def test_outsider_is_unauthorized(self) -> None:
        with pytest.raises(UnauthorizedActorError) as exc_info:
            resolve_role("o-1", "alice", "bob", "mallory")
        assert exc_info.value.code == "UNAUTHORIZED"
        assert exc_info.value.actor_id == "mallory"


class TestEscalationType:
    def test_escalation_type_follows_role(self) -> None:
        assert escalation_type_for(ActorRole.BUYER) is EscalationType.BUYER_DISPUTE
        assert escalation_type_for(ActorRole.SELLER) is EscalationType.SELLER_DISPUTE
