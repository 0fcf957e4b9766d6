"""Tests for the item registry and exchange asset primitives."""

import pytest

from buyout.errors import (
    InsufficientApproval,
    InsufficientPayment,
    InvalidAmount,
    ItemAlreadyExists,
    NonexistentItem,
)
from buyout.primitives.payment_token import PaymentToken
from buyout.primitives.registry import ItemRegistry, ItemState


class TestItemRegistry:
    def test_mint_and_lookup(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller", ItemState.VERIFIED)
        assert registry.exists(1)
        assert registry.owner_of(1) == "seller"
        assert registry.state_of(1) == ItemState.VERIFIED

    def test_duplicate_mint_rejected(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller")
        with pytest.raises(ItemAlreadyExists):
            registry.mint(1, "other")

    def test_nonexistent_item(self) -> None:
        with pytest.raises(NonexistentItem) as exc:
            ItemRegistry().owner_of(42)
        assert exc.value.item_id == 42
        assert exc.value.code == "NonexistentItem"

    def test_check_out_burns_item(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller", ItemState.CHECKED_IN)
        registry.set_state(1, ItemState.CHECKED_OUT)
        assert not registry.exists(1)

    def test_approve_requires_owner(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller")
        with pytest.raises(InsufficientApproval):
            registry.approve("mallory", "mallory", 1)

    def test_transfer_from_checks_approval(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller")
        with pytest.raises(InsufficientApproval):
            registry.transfer_from("operator", 1, "operator")
        registry.set_approval_for_all("seller", "operator", True)
        registry.transfer_from("operator", 1, "buyer")
        assert registry.owner_of(1) == "buyer"

    def test_transfer_clears_single_approval(self) -> None:
        registry = ItemRegistry()
        registry.mint(1, "seller")
        registry.approve("seller", "operator", 1)
        assert registry.is_approved_or_owner("operator", 1)
        registry.transfer(1, "buyer")
        assert not registry.is_approved_or_owner("operator", 1)


class TestPaymentToken:
    def test_mint_and_transfer(self) -> None:
        token = PaymentToken()
        token.mint("alice", 100)
        token.transfer("alice", "bob", 40)
        assert token.balance_of("alice") == 60
        assert token.balance_of("bob") == 40
        assert token.total_supply == 100

    def test_insufficient_payment(self) -> None:
        token = PaymentToken()
        token.mint("alice", 10)
        with pytest.raises(InsufficientPayment) as exc:
            token.transfer("alice", "bob", 11)
        assert exc.value.balance == 10
        assert exc.value.required == 11

    def test_zero_transfer_is_noop(self) -> None:
        token = PaymentToken()
        token.transfer("nobody", "bob", 0)
        assert token.balances() == {}

    def test_negative_amounts_rejected(self) -> None:
        token = PaymentToken()
        with pytest.raises(InvalidAmount):
            token.mint("alice", 0)
        with pytest.raises(InvalidAmount):
            token.transfer("alice", "bob", -1)
