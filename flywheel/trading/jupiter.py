from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from flywheel.chain import ChainClient, sign_base64
from flywheel.common import QuoteNoRoutesError, TransientExternalError, log_event, sanitize_text

NO_ROUTE_ERROR_CODES = {"COULD_NOT_FIND_ANY_ROUTE", "NO_ROUTES_FOUND", "TOKEN_NOT_TRADABLE"}


def _body_preview(body: str, limit: int = 240) -> str:
    return sanitize_text(body[:limit])


class JupiterSwapClient:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        quote_url: str,
        swap_url: str,
        api_key: str = "",
        timeout_seconds: float = 8.0,
        prioritization_fee_lamports: int = 0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._quote_url = quote_url
        self._swap_url = swap_url
        self._api_key = api_key
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._prioritization_fee_lamports = max(0, prioritization_fee_lamports)
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Jupiter HTTP session is not initialized.")
        return self._session

    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> dict[str, Any] | None:
        """Best route for ``amount`` base units, or None when no route exists."""
        session = await self._require_session()
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(max(0, int(amount))),
            "slippageBps": str(max(1, int(slippage_bps))),
        }

        async with session.get(self._quote_url, params=params, headers=self._headers()) as response:
            status = response.status
            body = await response.text()

        try:
            payload: Any = json.loads(body) if body else {}
        except json.JSONDecodeError:
            payload = {}

        if status >= 400:
            error_code = str(payload.get("errorCode") or "") if isinstance(payload, dict) else ""
            if error_code in NO_ROUTE_ERROR_CODES:
                log_event(
                    self._logger,
                    level="info",
                    event="jupiter_no_route",
                    message="Jupiter reported no route",
                    output_mint=output_mint,
                    error_code=error_code,
                )
                return None
            raise TransientExternalError(
                f"Jupiter quote failed: status={status} body={_body_preview(body)!r}"
            )

        if not isinstance(payload, dict):
            raise TransientExternalError(f"Unexpected Jupiter quote payload: {_body_preview(body)!r}")

        route_plan = payload.get("routePlan")
        if not route_plan or not str(payload.get("outAmount") or "").strip():
            return None
        return payload

    async def execute(self, quote: dict[str, Any], signer: Keypair) -> str:
        transaction = await self.build_swap(quote, signer)
        return await self._chain.submit(transaction)

    async def build_swap(self, quote: dict[str, Any], signer: Keypair) -> VersionedTransaction:
        """Signed swap transaction for ``quote``; nothing is sent to the chain."""
        if not quote:
            raise QuoteNoRoutesError("Cannot execute an empty quote.")

        session = await self._require_session()
        body: dict[str, Any] = {
            "quoteResponse": quote,
            "userPublicKey": str(signer.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if self._prioritization_fee_lamports > 0:
            body["prioritizationFeeLamports"] = self._prioritization_fee_lamports

        async with session.post(self._swap_url, json=body, headers=self._headers()) as response:
            status = response.status
            raw_text = await response.text()

        if status >= 400:
            raise TransientExternalError(
                f"Jupiter swap build failed: status={status} body={_body_preview(raw_text)!r}"
            )

        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as error:
            raise TransientExternalError("Jupiter swap response is not JSON.") from error

        encoded = payload.get("swapTransaction") if isinstance(payload, dict) else None
        if not isinstance(encoded, str) or not encoded:
            raise TransientExternalError("Jupiter swap response is missing swapTransaction.")

        return sign_base64(encoded, signer)
