from __future__ import annotations

import logging

from solders.keypair import Keypair

from flywheel.chain import ChainClient
from flywheel.common import SubmissionError, log_event

from .pumpportal import PumpPortalClient
from .types import ClaimResult


class PumpFeeClaimer:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        pumpportal: PumpPortalClient,
        signer: Keypair,
        confirm_timeout_seconds: float = 45.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._pumpportal = pumpportal
        self._signer = signer
        self._confirm_timeout_seconds = confirm_timeout_seconds

    async def claim(self) -> ClaimResult:
        owner = str(self._signer.pubkey())
        before = await self._chain.get_balance(owner)

        signature = await self._pumpportal.collect_creator_fee(self._signer)
        outcome = await self._chain.confirm(
            signature,
            commitment="confirmed",
            timeout_seconds=self._confirm_timeout_seconds,
        )
        if outcome.status == "failed":
            raise SubmissionError(f"Fee claim failed on-chain: {outcome.err}", signature=signature)
        if not outcome.confirmed:
            raise SubmissionError("Fee claim was not confirmed in time", signature=signature)

        after = await self._chain.get_balance(owner)
        # net of the network fee; negative when nothing was claimable
        lamports_claimed = max(0, after - before)
        log_event(
            self._logger,
            level="info",
            event="fees_claimed",
            message="Creator fees claimed",
            signature=signature,
            lamports_claimed=lamports_claimed,
        )
        return ClaimResult(signature=signature, lamports_claimed=lamports_claimed)
