from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from solders.hash import Hash
from solders.transaction import VersionedTransaction


@dataclass(slots=True, frozen=True)
class TokenAmount:
    amount: int
    decimals: int

    @property
    def ui_amount(self) -> float:
        return self.amount / (10**self.decimals) if self.decimals >= 0 else float(self.amount)


@dataclass(slots=True, frozen=True)
class LargestTokenAccount:
    address: str
    amount: int
    decimals: int


@dataclass(slots=True, frozen=True)
class TokenBalanceEntry:
    account_index: int
    mint: str
    owner: str
    amount: int


@dataclass(slots=True, frozen=True)
class TransactionReceipt:
    signature: str
    err: Any
    pre_token_balances: list[TokenBalanceEntry] = field(default_factory=list)
    post_token_balances: list[TokenBalanceEntry] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SimulationResult:
    err: Any
    logs: list[str] = field(default_factory=list)
    units_consumed: int | None = None


@dataclass(slots=True, frozen=True)
class ConfirmationOutcome:
    signature: str
    status: str
    err: Any = None

    @property
    def confirmed(self) -> bool:
        return self.status == "confirmed"


@dataclass(slots=True, frozen=True)
class LatestBlockhash:
    blockhash: Hash
    last_valid_block_height: int | None


class ChainClient(Protocol):
    async def get_balance(self, pubkey: str) -> int: ...

    async def get_token_account_balance(self, account: str) -> TokenAmount | None: ...

    async def get_mint_decimals(self, mint: str) -> int | None: ...

    async def get_latest_blockhash(self) -> LatestBlockhash: ...

    async def simulate(self, transaction: VersionedTransaction) -> SimulationResult: ...

    async def submit(self, transaction: VersionedTransaction) -> str: ...

    async def confirm(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        timeout_seconds: float | None = None,
    ) -> ConfirmationOutcome: ...

    async def get_receipt(self, signature: str) -> TransactionReceipt | None: ...

    async def get_largest_token_accounts(self, mint: str) -> list[LargestTokenAccount]: ...

    async def get_account_owners(self, addresses: list[str]) -> dict[str, str]: ...
