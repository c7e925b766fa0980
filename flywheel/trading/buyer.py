from __future__ import annotations

import asyncio
import logging

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from flywheel.chain import ChainClient
from flywheel.common import SubmissionError, classify_error, log_event

from .delta import BalanceDeltaMeasurer
from .jupiter import JupiterSwapClient
from .pumpportal import PumpPortalClient
from .types import SOL_MINT, BuyResult, FallbackBuySize

LAMPORTS_PER_SOL = 1_000_000_000
FEE_MARGIN_SOL = 0.0005


def size_fallback_buy(
    *,
    spendable_sol: float,
    min_sol: float,
    target_sol: float = 0.0,
    margin_sol: float = FEE_MARGIN_SOL,
) -> FallbackBuySize:
    amount = max(0.0, spendable_sol)
    if target_sol > 0:
        amount = min(amount, target_sol)
    if amount + margin_sol < min_sol:
        return FallbackBuySize(amount_sol=0.0, skipped=True, reason="below_min_pump_sol")

    amount = max(min_sol, amount - margin_sol)
    amount = max(0.0, min(amount, spendable_sol))
    amount = round(amount, 6)
    if amount <= 0:
        return FallbackBuySize(amount_sol=0.0, skipped=True, reason="nothing_spendable")
    return FallbackBuySize(amount_sol=amount, skipped=False)


class MarketBuyer:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        jupiter: JupiterSwapClient,
        pumpportal: PumpPortalClient,
        measurer: BalanceDeltaMeasurer,
        signer: Keypair,
        mint: str,
        sol_reserve_lamports: int,
        min_swap_lamports: int,
        slippage_bps: int,
        min_pump_sol: float,
        target_pump_sol: float,
        confirm_timeout_seconds: float = 45.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._jupiter = jupiter
        self._pumpportal = pumpportal
        self._measurer = measurer
        self._signer = signer
        self._mint = mint
        self._sol_reserve_lamports = max(0, sol_reserve_lamports)
        self._min_swap_lamports = max(0, min_swap_lamports)
        self._slippage_bps = slippage_bps
        self._min_pump_sol = min_pump_sol
        self._target_pump_sol = target_pump_sol
        self._confirm_timeout_seconds = confirm_timeout_seconds

    async def spendable_lamports(self) -> int:
        balance = await self._chain.get_balance(str(self._signer.pubkey()))
        return max(0, balance - self._sol_reserve_lamports)

    async def _prepare_jupiter(self, spendable: int) -> VersionedTransaction | None:
        try:
            quote = await self._jupiter.quote(
                input_mint=SOL_MINT,
                output_mint=self._mint,
                amount=spendable,
                slippage_bps=self._slippage_bps,
            )
            if quote is None:
                return None
            return await self._jupiter.build_swap(quote, self._signer)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="warning",
                event="jupiter_route_failed",
                message="Primary swap route failed before submission, falling back",
                error=str(error),
                error_kind=classify_error(error).value,
            )
            return None

    async def market_buy(self) -> BuyResult | None:
        spendable = await self.spendable_lamports()
        if spendable < self._min_swap_lamports:
            log_event(
                self._logger,
                level="info",
                event="buy_skipped",
                message="Not enough SOL above reserve to buy",
                spendable_lamports=spendable,
                min_swap_lamports=self._min_swap_lamports,
            )
            return None

        before_total = await self._measurer.snapshot()

        route = "jupiter"
        amount_in_sol = spendable / LAMPORTS_PER_SOL
        transaction = await self._prepare_jupiter(spendable)

        if transaction is not None:
            # no fallback once the swap has been handed to the chain
            signature = await self._chain.submit(transaction)
        else:
            route = "pumpportal"
            sizing = size_fallback_buy(
                spendable_sol=spendable / LAMPORTS_PER_SOL,
                min_sol=self._min_pump_sol,
                target_sol=self._target_pump_sol,
            )
            if sizing.skipped:
                log_event(
                    self._logger,
                    level="info",
                    event="buy_skipped",
                    message="Spendable SOL below fallback minimum",
                    spendable_lamports=spendable,
                    reason=sizing.reason,
                )
                return None
            amount_in_sol = sizing.amount_sol
            signature = await self._pumpportal.buy(
                mint=self._mint,
                amount_sol=sizing.amount_sol,
                signer=self._signer,
            )

        log_event(
            self._logger,
            level="info",
            event="buy_submitted",
            message="Buy transaction submitted",
            route=route,
            signature=signature,
            amount_in_sol=amount_in_sol,
        )

        outcome = await self._chain.confirm(
            signature,
            commitment="confirmed",
            timeout_seconds=self._confirm_timeout_seconds,
        )
        if outcome.status == "failed":
            raise SubmissionError(f"Buy failed on-chain: {outcome.err}", signature=signature)

        tokens_out_raw = await self._measurer.measure(signature, before_total=before_total)
        if not outcome.confirmed and tokens_out_raw == 0:
            raise SubmissionError("Buy transaction not landed", signature=signature)

        return BuyResult(
            signature=signature,
            amount_in_sol=amount_in_sol,
            tokens_out_raw=tokens_out_raw,
            route=route,
        )
