from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import aiohttp
from solders.hash import Hash
from solders.transaction import VersionedTransaction

from flywheel.common import RpcMethodError, SubmissionError, log_event

from .transactions import signature_of
from .types import (
    ConfirmationOutcome,
    LargestTokenAccount,
    LatestBlockhash,
    SimulationResult,
    TokenAmount,
    TokenBalanceEntry,
    TransactionReceipt,
)

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}
PREFLIGHT_FAILURE_CODE = -32002
MULTIPLE_ACCOUNTS_CHUNK = 100


def _to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _is_missing_account(error: RpcMethodError) -> bool:
    text = str(error).lower()
    return "could not find account" in text or "invalid param" in text


def _parse_token_balances(raw: Any) -> list[TokenBalanceEntry]:
    if not isinstance(raw, list):
        return []
    entries: list[TokenBalanceEntry] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        ui_amount = item.get("uiTokenAmount")
        amount = _to_int(ui_amount.get("amount"), 0) if isinstance(ui_amount, dict) else 0
        entries.append(
            TokenBalanceEntry(
                account_index=_to_int(item.get("accountIndex"), -1),
                mint=str(item.get("mint") or ""),
                owner=str(item.get("owner") or ""),
                amount=amount,
            )
        )
    return entries


class SolanaRpcClient:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        timeout_seconds: float = 8.0,
        send_max_attempts: int = 3,
        send_retry_backoff_seconds: float = 0.8,
        confirm_timeout_seconds: float = 45.0,
        confirm_poll_interval_seconds: float = 1.0,
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._send_max_attempts = max(1, send_max_attempts)
        self._send_retry_backoff_seconds = max(0.0, send_retry_backoff_seconds)
        self._confirm_timeout_seconds = max(1.0, confirm_timeout_seconds)
        self._confirm_poll_interval_seconds = max(0.05, confirm_poll_interval_seconds)
        self._http_session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError("RPC_URL is required.")
        if self._http_session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        if self._http_session is None:
            await self.connect()
        if self._http_session is None:
            raise RuntimeError("RPC HTTP session is not initialized.")

        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or [],
        }

        async with self._http_session.post(self._rpc_url, json=payload) as response:
            try:
                body = await response.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError) as error:
                preview = (await response.text())[:200]
                raise RpcMethodError(
                    method=method,
                    message=f"Non-JSON RPC response: method={method} status={response.status} body={preview!r}",
                    status=response.status,
                ) from error
            if response.status >= 400:
                raise RpcMethodError(
                    method=method,
                    message=f"RPC call failed: method={method} status={response.status}",
                    status=response.status,
                    data=body,
                )

        if not isinstance(body, dict):
            raise RpcMethodError(method=method, message=f"Invalid RPC response for {method}: {body}")

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            detail = error.get("message") if isinstance(error, dict) else error
            raise RpcMethodError(
                method=method,
                message=f"RPC error for {method}: {detail}",
                code=code if isinstance(code, int) else None,
                data=error.get("data") if isinstance(error, dict) else None,
            )

        return body.get("result")

    async def get_balance(self, pubkey: str) -> int:
        result = await self._rpc_call("getBalance", [pubkey, {"commitment": "confirmed"}])
        if not isinstance(result, dict):
            raise RpcMethodError(method="getBalance", message=f"Unexpected getBalance response: {result}")
        return max(0, _to_int(result.get("value"), 0))

    async def get_token_account_balance(self, account: str) -> TokenAmount | None:
        try:
            result = await self._rpc_call(
                "getTokenAccountBalance",
                [account, {"commitment": "confirmed"}],
            )
        except RpcMethodError as error:
            if _is_missing_account(error):
                return None
            raise

        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            return None
        return TokenAmount(
            amount=max(0, _to_int(value.get("amount"), 0)),
            decimals=_to_int(value.get("decimals"), 0),
        )

    async def get_mint_decimals(self, mint: str) -> int | None:
        result = await self._rpc_call("getTokenSupply", [mint, {"commitment": "confirmed"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict) or value.get("decimals") is None:
            return None
        return _to_int(value.get("decimals"), 0)

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": "confirmed"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RpcMethodError(
                method="getLatestBlockhash",
                message=f"Unexpected getLatestBlockhash payload: {result}",
            )

        blockhash = value.get("blockhash")
        if not isinstance(blockhash, str) or not blockhash:
            raise RpcMethodError(
                method="getLatestBlockhash",
                message=f"Missing blockhash in RPC response: {result}",
            )

        height = value.get("lastValidBlockHeight")
        return LatestBlockhash(
            blockhash=Hash.from_string(blockhash),
            last_valid_block_height=_to_int(height, 0) if height is not None else None,
        )

    async def simulate(self, transaction: VersionedTransaction) -> SimulationResult:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        result = await self._rpc_call(
            "simulateTransaction",
            [encoded, {"encoding": "base64", "commitment": "confirmed", "sigVerify": False}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RpcMethodError(
                method="simulateTransaction",
                message=f"Unexpected simulateTransaction payload: {result}",
            )
        logs = value.get("logs")
        units = value.get("unitsConsumed")
        return SimulationResult(
            err=value.get("err"),
            logs=[str(line) for line in logs] if isinstance(logs, list) else [],
            units_consumed=_to_int(units, 0) if units is not None else None,
        )

    async def submit(self, transaction: VersionedTransaction) -> str:
        signature = signature_of(transaction)
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        params = [
            encoded,
            {
                "encoding": "base64",
                "skipPreflight": False,
                "preflightCommitment": "confirmed",
                "maxRetries": 3,
            },
        ]

        backoff = self._send_retry_backoff_seconds
        last_error: Exception | None = None
        for attempt in range(1, self._send_max_attempts + 1):
            try:
                result = await self._rpc_call("sendTransaction", params)
                returned = str(result or "").strip()
                if returned and returned != signature:
                    log_event(
                        self._logger,
                        level="warning",
                        event="tx_signature_mismatch",
                        message="RPC returned a different signature than the signed transaction",
                        expected=signature,
                        returned=returned,
                    )
                return returned or signature
            except RpcMethodError as error:
                if error.code == PREFLIGHT_FAILURE_CODE:
                    raise SubmissionError(
                        f"Transaction rejected by preflight: {error}",
                        signature=signature,
                    ) from error
                last_error = error
            except (aiohttp.ClientError, asyncio.TimeoutError) as error:
                last_error = error

            log_event(
                self._logger,
                level="warning",
                event="tx_send_retry",
                message="sendTransaction failed, retrying",
                attempt=attempt,
                max_attempts=self._send_max_attempts,
                signature=signature,
                error=str(last_error),
            )
            if attempt < self._send_max_attempts:
                await asyncio.sleep(backoff)
                backoff = min(5.0, backoff * 2)

        raise SubmissionError(f"sendTransaction exhausted retries: {last_error}", signature=signature)

    async def _fetch_signature_status(self, signature: str) -> dict[str, Any] | None:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list) or not value:
            return None
        status = value[0]
        return status if isinstance(status, dict) else None

    async def confirm(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        timeout_seconds: float | None = None,
    ) -> ConfirmationOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout_seconds or self._confirm_timeout_seconds)
        target_rank = COMMITMENT_RANK.get(commitment, 1)

        while True:
            try:
                status = await self._fetch_signature_status(signature)
            except (RpcMethodError, aiohttp.ClientError, asyncio.TimeoutError) as error:
                status = None
                log_event(
                    self._logger,
                    level="debug",
                    event="signature_status_failed",
                    message="Failed to fetch signature status",
                    signature=signature,
                    error=str(error),
                )

            if status is not None:
                if status.get("err") is not None:
                    return ConfirmationOutcome(signature=signature, status="failed", err=status.get("err"))
                reached = COMMITMENT_RANK.get(str(status.get("confirmationStatus") or ""), -1)
                if reached >= target_rank:
                    return ConfirmationOutcome(signature=signature, status="confirmed")

            if loop.time() >= deadline:
                return ConfirmationOutcome(signature=signature, status="timeout")
            await asyncio.sleep(self._confirm_poll_interval_seconds)

    async def get_receipt(self, signature: str) -> TransactionReceipt | None:
        result = await self._rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not isinstance(result, dict):
            return None
        meta = result.get("meta")
        if not isinstance(meta, dict):
            return None
        return TransactionReceipt(
            signature=signature,
            err=meta.get("err"),
            pre_token_balances=_parse_token_balances(meta.get("preTokenBalances")),
            post_token_balances=_parse_token_balances(meta.get("postTokenBalances")),
        )

    async def get_largest_token_accounts(self, mint: str) -> list[LargestTokenAccount]:
        result = await self._rpc_call("getTokenLargestAccounts", [mint, {"commitment": "confirmed"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list):
            raise RpcMethodError(
                method="getTokenLargestAccounts",
                message=f"Unexpected getTokenLargestAccounts payload: {result}",
            )

        accounts: list[LargestTokenAccount] = []
        for item in value:
            if not isinstance(item, dict) or not item.get("address"):
                continue
            accounts.append(
                LargestTokenAccount(
                    address=str(item["address"]),
                    amount=max(0, _to_int(item.get("amount"), 0)),
                    decimals=_to_int(item.get("decimals"), 0),
                )
            )
        return accounts

    async def get_account_owners(self, addresses: list[str]) -> dict[str, str]:
        owners: dict[str, str] = {}
        for start in range(0, len(addresses), MULTIPLE_ACCOUNTS_CHUNK):
            chunk = addresses[start : start + MULTIPLE_ACCOUNTS_CHUNK]
            result = await self._rpc_call(
                "getMultipleAccounts",
                [chunk, {"encoding": "jsonParsed", "commitment": "confirmed"}],
            )
            value = result.get("value") if isinstance(result, dict) else None
            if not isinstance(value, list):
                continue
            for address, account in zip(chunk, value):
                if not isinstance(account, dict):
                    continue
                data = account.get("data")
                parsed = data.get("parsed") if isinstance(data, dict) else None
                info = parsed.get("info") if isinstance(parsed, dict) else None
                owner = info.get("owner") if isinstance(info, dict) else None
                if isinstance(owner, str) and owner:
                    owners[address] = owner
        return owners
