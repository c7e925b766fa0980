from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .helpers import explorer_link, now_iso, now_ms, to_float

HISTORY_LIMIT = 200
HISTORY_TYPES = {"claim", "buy", "burn", "airdrop"}


def _to_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass(slots=True)
class StatsConfig:
    mint: str = ""
    dev: str = ""
    network: str = "mainnet"
    decimals: int | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "StatsConfig":
        data = payload or {}
        decimals_raw = data.get("decimals")
        decimals: int | None = None
        if decimals_raw is not None:
            try:
                decimals = int(decimals_raw)
            except (TypeError, ValueError):
                decimals = None
        return cls(
            mint=str(data.get("mint") or ""),
            dev=str(data.get("dev") or ""),
            network=str(data.get("network") or "mainnet"),
            decimals=decimals,
        )


@dataclass(slots=True)
class Totals:
    claims: int = 0
    sol_spent: float = 0.0
    tokens_bought: float = 0.0
    tokens_burned: float = 0.0
    airdrops: int = 0
    tokens_airdropped: float = 0.0

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "Totals":
        data = payload or {}
        return cls(
            claims=_to_count(data.get("claims")),
            sol_spent=max(0.0, to_float(data.get("sol_spent"), 0.0)),
            tokens_bought=max(0.0, to_float(data.get("tokens_bought"), 0.0)),
            tokens_burned=max(0.0, to_float(data.get("tokens_burned"), 0.0)),
            airdrops=_to_count(data.get("airdrops")),
            tokens_airdropped=max(0.0, to_float(data.get("tokens_airdropped"), 0.0)),
        )


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    ts: int
    type: str
    signature: str
    link: str
    amounts: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ts": self.ts,
            "type": self.type,
            "signature": self.signature,
            "link": self.link,
        }
        payload.update(self.amounts)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "HistoryEntry":
        core = {"ts", "type", "signature", "link"}
        return cls(
            ts=_to_count(payload.get("ts")),
            type=str(payload.get("type") or ""),
            signature=str(payload.get("signature") or ""),
            link=str(payload.get("link") or ""),
            amounts={key: value for key, value in payload.items() if key not in core},
        )


@dataclass(slots=True, frozen=True)
class LastRun:
    kind: str
    status: str
    started_at: str
    finished_at: str

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "LastRun | None":
        if not isinstance(payload, dict):
            return None
        return cls(
            kind=str(payload.get("kind") or ""),
            status=str(payload.get("status") or ""),
            started_at=str(payload.get("started_at") or ""),
            finished_at=str(payload.get("finished_at") or ""),
        )


@dataclass(slots=True)
class Stats:
    config: StatsConfig = field(default_factory=StatsConfig)
    totals: Totals = field(default_factory=Totals)
    history: list[HistoryEntry] = field(default_factory=list)
    last_run: LastRun | None = None

    @classmethod
    def defaults(cls, *, mint: str, dev: str, network: str) -> "Stats":
        return cls(config=StatsConfig(mint=mint, dev=dev, network=network))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Stats":
        if not isinstance(payload, dict):
            raise ValueError(f"Stats document must be an object, got {type(payload).__name__}")

        raw_history = payload.get("history") or []
        if not isinstance(raw_history, list):
            raise ValueError("Stats history must be a list")

        history = [
            HistoryEntry.from_dict(item)
            for item in raw_history
            if isinstance(item, dict) and item.get("type") in HISTORY_TYPES
        ]
        return cls(
            config=StatsConfig.from_dict(payload.get("config")),
            totals=Totals.from_dict(payload.get("totals")),
            history=history,
            last_run=LastRun.from_dict(payload.get("last_run")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": asdict(self.config),
            "totals": asdict(self.totals),
            "history": [entry.to_dict() for entry in self.history],
            "last_run": asdict(self.last_run) if self.last_run is not None else None,
        }

    def _prepend(self, entry_type: str, signature: str, **amounts: Any) -> HistoryEntry:
        entry = HistoryEntry(
            ts=now_ms(),
            type=entry_type,
            signature=signature,
            link=explorer_link(signature, self.config.network),
            amounts={key: value for key, value in amounts.items() if value is not None},
        )
        self.history.insert(0, entry)
        self.trim_history()
        return entry

    def record_claim(self, *, signature: str, lamports_claimed: int | None = None) -> HistoryEntry:
        self.totals.claims += 1
        return self._prepend("claim", signature, lamports_claimed=lamports_claimed)

    def record_buy(
        self,
        *,
        signature: str,
        amount_in_sol: float,
        tokens_out_raw: int,
        tokens_out: float,
        route: str,
    ) -> HistoryEntry:
        self.totals.sol_spent += max(0.0, float(amount_in_sol))
        self.totals.tokens_bought += max(0.0, float(tokens_out))
        return self._prepend(
            "buy",
            signature,
            amount_in_sol=amount_in_sol,
            tokens_out=tokens_out,
            tokens_out_raw=max(0, int(tokens_out_raw)),
            route=route,
        )

    def record_burn(self, *, signature: str, amount_raw: int, amount_ui: float) -> HistoryEntry:
        self.totals.tokens_burned += max(0.0, float(amount_ui))
        return self._prepend(
            "burn",
            signature,
            amount_tokens=amount_ui,
            amount_tokens_raw=max(0, int(amount_raw)),
        )

    def record_airdrop(
        self,
        *,
        signature: str,
        winner: str,
        amount_raw: int,
        amount_ui: float,
        holders_count: int,
    ) -> HistoryEntry:
        self.totals.airdrops += 1
        self.totals.tokens_airdropped += max(0.0, float(amount_ui))
        return self._prepend(
            "airdrop",
            signature,
            winner=winner,
            amount_tokens=amount_ui,
            amount_tokens_raw=max(0, int(amount_raw)),
            holders_count=holders_count,
        )

    def trim_history(self, limit: int = HISTORY_LIMIT) -> None:
        del self.history[max(0, limit):]

    def mark_run(self, *, kind: str, status: str, started_at: str) -> None:
        self.last_run = LastRun(kind=kind, status=status, started_at=started_at, finished_at=now_iso())
