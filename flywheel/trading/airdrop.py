from __future__ import annotations

import logging

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import (
    TransferCheckedParams,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from flywheel.chain import ChainClient, compile_and_sign
from flywheel.common import SubmissionError, log_event, retry_until

from .burn import TokenHolding, probe_holding
from .holders import HolderWeightSelector
from .types import AirdropResult


class AirdropExecutor:
    """Sends the whole purchased balance to one weighted-random holder."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        signer: Keypair,
        mint: Pubkey,
        selector: HolderWeightSelector,
        priority_fee_micro_lamports: int = 2000,
        settle_attempts: int = 10,
        settle_interval_seconds: float = 0.5,
        confirm_timeout_seconds: float = 45.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._signer = signer
        self._mint = mint
        self._selector = selector
        self._priority_fee_micro_lamports = max(0, priority_fee_micro_lamports)
        self._settle_attempts = settle_attempts
        self._settle_interval_seconds = settle_interval_seconds
        self._confirm_timeout_seconds = confirm_timeout_seconds

    async def _probe(self) -> TokenHolding | None:
        return await retry_until(
            lambda: probe_holding(self._chain, owner=self._signer.pubkey(), mint=self._mint),
            predicate=lambda holding: holding is not None,
            attempts=self._settle_attempts,
            interval_seconds=self._settle_interval_seconds,
            logger=self._logger,
            event="airdrop_probe_failed",
        )

    async def airdrop(self) -> AirdropResult | None:
        holding = await self._probe()
        if holding is None:
            log_event(
                self._logger,
                level="info",
                event="airdrop_skipped",
                message="Nothing to airdrop, no positive balance found",
                mint=str(self._mint),
            )
            return None

        selection = await self._selector.select()
        if selection is None:
            return None
        winner, holders_count = selection

        owner = self._signer.pubkey()
        recipient = Pubkey.from_string(winner.owner)
        destination = get_associated_token_address(recipient, self._mint, token_program_id=holding.program_id)
        create_destination = create_idempotent_associated_token_account(
            payer=owner,
            owner=recipient,
            mint=self._mint,
            token_program_id=holding.program_id,
        )
        transfer = transfer_checked(
            TransferCheckedParams(
                program_id=holding.program_id,
                source=holding.account,
                mint=self._mint,
                dest=destination,
                owner=owner,
                amount=holding.balance.amount,
                decimals=holding.balance.decimals,
            )
        )

        latest = await self._chain.get_latest_blockhash()
        transaction = compile_and_sign(
            instructions=[create_destination, transfer],
            signer=self._signer,
            blockhash=latest.blockhash,
            priority_fee_micro_lamports=self._priority_fee_micro_lamports,
        )
        signature = await self._chain.submit(transaction)
        outcome = await self._chain.confirm(
            signature,
            commitment="confirmed",
            timeout_seconds=self._confirm_timeout_seconds,
        )
        if outcome.status == "failed":
            raise SubmissionError(f"Airdrop failed on-chain: {outcome.err}", signature=signature)
        if not outcome.confirmed:
            raise SubmissionError("Airdrop was not confirmed in time", signature=signature)

        result = AirdropResult(
            signature=signature,
            winner=winner.owner,
            amount_raw=holding.balance.amount,
            amount_ui=holding.balance.ui_amount,
            holders_count=holders_count,
            program_id=str(holding.program_id),
        )
        log_event(
            self._logger,
            level="info",
            event="tokens_airdropped",
            message="Purchased tokens airdropped",
            **result.to_dict(),
        )
        return result
