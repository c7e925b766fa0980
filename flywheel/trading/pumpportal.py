from __future__ import annotations

import logging
from typing import Any

import aiohttp
from solders.keypair import Keypair

from flywheel.chain import ChainClient, sign_serialized
from flywheel.common import TransientExternalError, log_event, sanitize_text


class PumpPortalClient:
    """Local-transaction API: returns unsigned transactions that we sign and submit ourselves."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        api_url: str,
        timeout_seconds: float = 8.0,
        slippage_pct: float = 3.0,
        priority_fee_sol: float = 0.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._api_url = api_url
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._slippage_pct = max(0.0, slippage_pct)
        self._priority_fee_sol = max(0.0, priority_fee_sol)
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _build_transaction(self, payload: dict[str, Any]) -> bytes:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("PumpPortal HTTP session is not initialized.")

        async with self._session.post(self._api_url, json=payload) as response:
            status = response.status
            raw = await response.read()

        if status != 200:
            preview = sanitize_text(raw[:240].decode("utf-8", errors="replace"))
            raise TransientExternalError(
                f"PumpPortal {payload.get('action')} failed: status={status} body={preview!r}"
            )
        if not raw:
            raise TransientExternalError(f"PumpPortal {payload.get('action')} returned an empty transaction.")
        return raw

    async def _sign_and_submit(self, raw: bytes, signer: Keypair, *, action: str) -> str:
        transaction = sign_serialized(raw, signer)
        signature = await self._chain.submit(transaction)
        log_event(
            self._logger,
            level="info",
            event="pumpportal_tx_sent",
            message="PumpPortal transaction submitted",
            action=action,
            signature=signature,
        )
        return signature

    async def collect_creator_fee(self, signer: Keypair) -> str:
        raw = await self._build_transaction(
            {
                "publicKey": str(signer.pubkey()),
                "action": "collectCreatorFee",
                "priorityFee": self._priority_fee_sol,
            }
        )
        return await self._sign_and_submit(raw, signer, action="collectCreatorFee")

    async def buy(self, *, mint: str, amount_sol: float, signer: Keypair) -> str:
        raw = await self._build_transaction(
            {
                "publicKey": str(signer.pubkey()),
                "action": "buy",
                "mint": mint,
                "amount": f"{amount_sol:.6f}",
                "denominatedInSol": "true",
                "slippage": self._slippage_pct,
                "priorityFee": self._priority_fee_sol,
                "pool": "auto",
            }
        )
        return await self._sign_and_submit(raw, signer, action="buy")
