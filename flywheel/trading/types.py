from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

SOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass(slots=True, frozen=True)
class ClaimResult:
    signature: str
    lamports_claimed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class BuyResult:
    signature: str
    amount_in_sol: float
    tokens_out_raw: int
    route: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class BurnResult:
    signature: str
    amount_raw: int
    amount_ui: float
    program_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class AirdropResult:
    signature: str
    winner: str
    amount_raw: int
    amount_ui: float
    holders_count: int
    program_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class HolderWeight:
    owner: str
    weight: float


@dataclass(slots=True, frozen=True)
class FallbackBuySize:
    amount_sol: float
    skipped: bool
    reason: str = ""
