"""Fractionalization manager — locks items and mints each epoch's supply.

An epoch starts with an *initial* fractionalisation that fixes the
fractions per item, the auction parameters and the vault parameters.
*Subsequent* fractionalisations add more items to the same open epoch on
the same terms. Once every item of an epoch has been redeemed the epoch is
closed and the next initial fractionalisation opens a fresh epoch with its
own ledger, so later supply can never dilute earlier proceeds.

Locking an item moves it into the escrow account. Fractions are minted to
the item's previous owner.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from buyout.collaborators import CustodyVault, NullCustodyVault
from buyout.errors import (
    AccessDenied,
    EpochNotActive,
    InitialFractionalisationOnly,
    InsufficientApproval,
    InvalidAmount,
    InvalidExitPrice,
    InvalidFractionsAmount,
    InvalidLength,
    InvalidPartialAuctionThreshold,
    InvalidPercentage,
    InvalidStateOrCaller,
    OracleNotApproved,
)
from buyout.governance.oracle_registry import PriceOracleRegistry
from buyout.ledger.fraction_ledger import FractionLedger, TransferHook
from buyout.models.auction import HUNDRED_PERCENT, AuctionParameters, VaultParameters
from buyout.models.epoch import Epoch
from buyout.policy.resolver import PolicyResolver
from buyout.primitives.registry import ItemRecord, ItemState
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


class FractionalizationManager:
    """Opens epochs and mints fraction supply against locked items.

    Usage:
        manager = FractionalizationManager(resolver, state)
        epoch = manager.mint_fractions(
            "seller", item_id=1, quantity=1,
            fractions_per_item=5000 * 10**18,
            auction_parameters=AuctionParameters(exit_price=10**17),
        )
        manager.mint_subsequent_fractions("seller", item_id=2, quantity=1)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        state: ProtocolState,
        oracle_registry: Optional[PriceOracleRegistry] = None,
        transfer_hook: Optional[TransferHook] = None,
        custody_vault: Optional[CustodyVault] = None,
    ) -> None:
        self._resolver = resolver
        self._state = state
        self._oracles = oracle_registry or PriceOracleRegistry()
        self._transfer_hook = transfer_hook
        self._custody_vault = custody_vault or NullCustodyVault()
        self._protocol_account = resolver.account("protocol")
        self._custodian_account = resolver.account("custodian")

    # ------------------------------------------------------------------
    # Fractionalisation
    # ------------------------------------------------------------------

    def mint_fractions(
        self,
        caller: str,
        item_id: int,
        quantity: int,
        fractions_per_item: int,
        auction_parameters: AuctionParameters,
        vault_parameters: Optional[VaultParameters] = None,
        additional_deposit: int = 0,
        price_oracle: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Epoch:
        """Initial fractionalisation: open a new epoch and lock ``quantity`` items.

        Zero duration, unlock threshold or top-bid lock time are replaced
        by the configured defaults.

        Raises:
            InitialFractionalisationOnly: The current epoch still has live items.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if quantity <= 0:
            raise InvalidLength(quantity)

        current = self._state.current_epoch()
        if current is not None and not current.closed:
            raise InitialFractionalisationOnly(current.index)

        low, high = self._resolver.fraction_bounds()
        if not low <= fractions_per_item <= high:
            raise InvalidFractionsAmount(fractions_per_item, low, high)
        if auction_parameters.exit_price <= 0:
            raise InvalidExitPrice(auction_parameters.exit_price)
        if not 0 <= auction_parameters.unlock_threshold <= HUNDRED_PERCENT:
            raise InvalidPercentage(auction_parameters.unlock_threshold)

        vault_parameters = vault_parameters or VaultParameters()
        if vault_parameters.liquidation_threshold > vault_parameters.partial_auction_threshold:
            raise InvalidPartialAuctionThreshold(
                vault_parameters.partial_auction_threshold,
                vault_parameters.liquidation_threshold,
            )
        if price_oracle is not None and not self._oracles.is_approved(price_oracle):
            raise OracleNotApproved(price_oracle)

        records = self._check_items(caller, item_id, quantity)
        self._check_deposit(caller, additional_deposit)

        index = len(self._state.epochs)
        epoch = Epoch(
            index=index,
            ledger=FractionLedger(index, transfer_hook=self._transfer_hook),
            auction_parameters=self._with_defaults(auction_parameters),
            vault_parameters=vault_parameters,
            fractions_per_item=fractions_per_item,
            created_utc=now,
            price_oracle=price_oracle,
        )
        self._state.epochs.append(epoch)
        logger.info(
            "Epoch %d opened: %d fractions per item, exit price %d",
            index, fractions_per_item, epoch.exit_price,
        )

        self._lock_items(epoch, records)
        self._pay_deposit(caller, additional_deposit)
        return epoch

    def mint_subsequent_fractions(
        self,
        caller: str,
        item_id: int,
        quantity: int,
        additional_deposit: int = 0,
        now: Optional[datetime] = None,
    ) -> Epoch:
        """Lock further items into the open epoch on its existing terms."""
        if quantity <= 0:
            raise InvalidLength(quantity)
        epoch = self._state.current_epoch()
        if epoch is None or epoch.closed:
            raise InitialFractionalisationOnly(epoch.index if epoch else None)

        records = self._check_items(caller, item_id, quantity)
        self._check_deposit(caller, additional_deposit)

        self._lock_items(epoch, records)
        self._pay_deposit(caller, additional_deposit)
        return epoch

    def mint_additional_fractions(self, caller: str, amount: int) -> int:
        """Custodian-only mint of extra supply into the open epoch.

        The extra supply raises the per-item share used by auctions created
        afterwards. Returns the custodian's new liquid balance.
        """
        if caller != self._custodian_account:
            raise AccessDenied(caller)
        if amount <= 0:
            raise InvalidAmount(amount)
        epoch = self._state.current_epoch()
        if epoch is None or epoch.closed:
            raise EpochNotActive(epoch.index if epoch else None)

        epoch.ledger.mint(caller, amount)
        epoch.additional_minted += amount
        logger.info("Epoch %d: %d additional fractions minted", epoch.index, amount)
        return epoch.ledger.balance_of(caller)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def auction_parameters(self, epoch_index: Optional[int] = None) -> AuctionParameters:
        if epoch_index is None:
            epoch = self._state.current_epoch()
            if epoch is None:
                raise EpochNotActive(None)
            return epoch.auction_parameters
        return self._state.epoch(epoch_index).auction_parameters

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _with_defaults(self, params: AuctionParameters) -> AuctionParameters:
        defaults = self._resolver.auction_defaults()
        return AuctionParameters(
            exit_price=params.exit_price,
            duration=params.duration or defaults.duration,
            unlock_threshold=params.unlock_threshold or defaults.unlock_threshold,
            top_bid_lock_time=params.top_bid_lock_time or defaults.top_bid_lock_time,
        )

    def _check_items(self, caller: str, item_id: int, quantity: int) -> List[ItemRecord]:
        records = []
        for current_id in range(item_id, item_id + quantity):
            record = self._state.registry.get(current_id)
            if (
                record.state != ItemState.VERIFIED
                or record.owner == self._state.escrow_account
            ):
                raise InvalidStateOrCaller(current_id, caller, record.state)
            if (
                caller != self._protocol_account
                and not self._state.registry.is_approved_or_owner(caller, current_id)
            ):
                raise InsufficientApproval(caller, current_id)
            records.append(record)
        return records

    def _check_deposit(self, caller: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount(amount)
        if amount:
            self._state.payment_token.require_balance(caller, amount)

    def _lock_items(self, epoch: Epoch, records: List[ItemRecord]) -> None:
        for record in records:
            owner = record.owner
            self._state.registry.transfer(record.item_id, self._state.escrow_account)
            epoch.ledger.mint(owner, epoch.fractions_per_item)
            epoch.items.append(record.item_id)
            epoch.live_items.add(record.item_id)
            logger.debug(
                "Item %d fractionalised in epoch %d for %s",
                record.item_id, epoch.index, owner,
            )

    def _pay_deposit(self, caller: str, amount: int) -> None:
        if amount:
            self._state.payment_token.transfer(
                caller, self._custody_vault.account_id, amount,
            )
