from __future__ import annotations

import logging

from solders.pubkey import Pubkey

from flywheel.chain import ChainClient, TransactionReceipt, associated_token_accounts
from flywheel.common import log_event, retry_until


def receipt_delta(receipt: TransactionReceipt | None, *, mint: str, owner: str) -> int:
    if receipt is None:
        return 0
    pre = sum(
        entry.amount
        for entry in receipt.pre_token_balances
        if entry.mint == mint and entry.owner == owner
    )
    post = sum(
        entry.amount
        for entry in receipt.post_token_balances
        if entry.mint == mint and entry.owner == owner
    )
    return max(0, post - pre)


class BalanceDeltaMeasurer:
    """Derives tokens received by a submitted transaction from its effect on-chain."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        owner: Pubkey,
        mint: Pubkey,
        receipt_attempts: int = 8,
        receipt_interval_seconds: float = 0.5,
        balance_attempts: int = 10,
        balance_interval_seconds: float = 0.4,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._owner = owner
        self._mint = mint
        self._receipt_attempts = receipt_attempts
        self._receipt_interval_seconds = receipt_interval_seconds
        self._balance_attempts = balance_attempts
        self._balance_interval_seconds = balance_interval_seconds

    async def total_balance(self) -> int:
        total = 0
        for account in associated_token_accounts(self._owner, self._mint).values():
            balance = await self._chain.get_token_account_balance(str(account))
            if balance is not None:
                total += balance.amount
        return total

    async def snapshot(self) -> int:
        try:
            return await self.total_balance()
        except Exception as error:
            log_event(
                self._logger,
                level="warning",
                event="balance_snapshot_failed",
                message="Failed to snapshot token balance before buy",
                error=str(error),
            )
            return 0

    async def measure(self, signature: str, *, before_total: int) -> int:
        mint = str(self._mint)
        owner = str(self._owner)

        async def from_receipt() -> int:
            receipt = await self._chain.get_receipt(signature)
            return receipt_delta(receipt, mint=mint, owner=owner)

        delta = await retry_until(
            from_receipt,
            predicate=lambda value: value > 0,
            attempts=self._receipt_attempts,
            interval_seconds=self._receipt_interval_seconds,
            default=0,
            logger=self._logger,
            event="receipt_poll_failed",
            signature=signature,
        )
        if delta and delta > 0:
            return delta

        async def from_balances() -> int:
            return max(0, await self.total_balance() - before_total)

        delta = await retry_until(
            from_balances,
            predicate=lambda value: value > 0,
            attempts=self._balance_attempts,
            interval_seconds=self._balance_interval_seconds,
            default=0,
            logger=self._logger,
            event="balance_poll_failed",
            signature=signature,
        )
        measured = max(0, delta or 0)
        if measured == 0:
            log_event(
                self._logger,
                level="warning",
                event="buy_delta_unobserved",
                message="No token delta observed for submitted buy",
                signature=signature,
            )
        return measured
