from __future__ import annotations

import logging
from dataclasses import dataclass

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import BurnCheckedParams, burn_checked

from flywheel.chain import ChainClient, TokenAmount, associated_token_accounts, compile_and_sign
from flywheel.common import SubmissionError, guarded_call, log_event, retry_until

from .types import BurnResult


@dataclass(slots=True, frozen=True)
class TokenHolding:
    program_id: Pubkey
    account: Pubkey
    balance: TokenAmount


async def probe_holding(chain: ChainClient, *, owner: Pubkey, mint: Pubkey) -> TokenHolding | None:
    """Token-2022 account wins over the classic one when both hold a balance."""
    for program_id, account in associated_token_accounts(owner, mint).items():
        balance = await chain.get_token_account_balance(str(account))
        if balance is not None and balance.amount > 0:
            return TokenHolding(program_id=program_id, account=account, balance=balance)
    return None


class BurnExecutor:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        signer: Keypair,
        mint: Pubkey,
        priority_fee_micro_lamports: int = 2000,
        settle_attempts: int = 10,
        settle_interval_seconds: float = 0.5,
        confirm_timeout_seconds: float = 45.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._signer = signer
        self._mint = mint
        self._priority_fee_micro_lamports = max(0, priority_fee_micro_lamports)
        self._settle_attempts = settle_attempts
        self._settle_interval_seconds = settle_interval_seconds
        self._confirm_timeout_seconds = confirm_timeout_seconds

    async def probe_once(self) -> TokenHolding | None:
        return await probe_holding(self._chain, owner=self._signer.pubkey(), mint=self._mint)

    async def probe(self) -> TokenHolding | None:
        return await retry_until(
            self.probe_once,
            predicate=lambda holding: holding is not None,
            attempts=self._settle_attempts,
            interval_seconds=self._settle_interval_seconds,
            logger=self._logger,
            event="burn_probe_failed",
        )

    async def burn(self) -> BurnResult | None:
        holding = await self.probe()
        if holding is None:
            log_event(
                self._logger,
                level="info",
                event="burn_skipped",
                message="Nothing to burn, no positive balance found",
                mint=str(self._mint),
            )
            return None

        instruction = burn_checked(
            BurnCheckedParams(
                program_id=holding.program_id,
                mint=self._mint,
                account=holding.account,
                owner=self._signer.pubkey(),
                amount=holding.balance.amount,
                decimals=holding.balance.decimals,
            )
        )
        latest = await self._chain.get_latest_blockhash()
        transaction = compile_and_sign(
            instructions=[instruction],
            signer=self._signer,
            blockhash=latest.blockhash,
            priority_fee_micro_lamports=self._priority_fee_micro_lamports,
        )

        simulation = await guarded_call(
            lambda: self._chain.simulate(transaction),
            logger=self._logger,
            event="burn_simulation_failed",
            message="Burn simulation request failed",
        )
        if simulation is not None and simulation.err is not None:
            log_event(
                self._logger,
                level="warning",
                event="burn_simulation_failed",
                message="Burn simulation reported an error, submitting anyway",
                err=simulation.err,
                logs=simulation.logs[-10:],
            )

        signature = await self._chain.submit(transaction)
        outcome = await self._chain.confirm(
            signature,
            commitment="confirmed",
            timeout_seconds=self._confirm_timeout_seconds,
        )
        if outcome.status == "failed":
            raise SubmissionError(f"Burn failed on-chain: {outcome.err}", signature=signature)
        if not outcome.confirmed:
            raise SubmissionError("Burn was not confirmed in time", signature=signature)

        result = BurnResult(
            signature=signature,
            amount_raw=holding.balance.amount,
            amount_ui=holding.balance.ui_amount,
            program_id=str(holding.program_id),
        )
        log_event(
            self._logger,
            level="info",
            event="tokens_burned",
            message="Purchased tokens burned",
            **result.to_dict(),
        )
        return result
