from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from flywheel.common import ConfigurationError

LAMPORTS_PER_SOL = 1_000_000_000
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def sol_to_lamports(value: float) -> int:
    return max(0, int(value * LAMPORTS_PER_SOL))


def split_csv(value: str | None) -> tuple[str, ...]:
    return tuple(item.strip() for item in (value or "").split(",") if item.strip())


def normalize_terminal_policy(value: str) -> str:
    policy = (value or "").strip().lower()
    if policy in {"burn", "airdrop"}:
        return policy
    return "burn"


def normalize_entry_mode(value: str) -> str:
    mode = (value or "").strip().lower()
    if mode in {"holders", "balance", "keyword"}:
        return mode
    return "holders"


def network_from_rpc_url(rpc_url: str) -> str:
    return "devnet" if "devnet" in (rpc_url or "").lower() else "mainnet"


@dataclass(slots=True)
class AppSettings:
    rpc_url: str
    network: str
    signer_secret_key: str
    mint_address: str
    dev_public_key: str
    jupiter_quote_api: str
    jupiter_swap_api: str
    jupiter_api_key: str
    pumpportal_api: str
    http_timeout_seconds: float
    sol_reserve_lamports: int
    min_swap_lamports: int
    slippage_bps: int
    prioritization_fee_lamports: int
    min_pump_sol: float
    target_pump_sol: float
    pump_slippage_pct: float
    priority_fee_sol: float
    priority_fee_micro_lamports: int
    terminal_policy: str
    entry_mode: str
    airdrop_denylist: tuple[str, ...]
    cycle_interval_seconds: float
    enable_scheduler: bool
    run_on_start: bool
    error_backoff_seconds: float
    send_max_attempts: int
    send_retry_backoff_seconds: float
    confirm_timeout_seconds: float
    confirm_poll_interval_seconds: float
    receipt_poll_attempts: int
    receipt_poll_interval_seconds: float
    balance_poll_attempts: int
    balance_poll_interval_seconds: float
    burn_settle_attempts: int
    burn_settle_interval_seconds: float
    decimals_lookup_attempts: int
    admin_bearer_token: str
    admin_rate_limit_requests: int
    admin_rate_limit_window_seconds: float
    frontend_origins: tuple[str, ...]
    host: str
    port: int

    @classmethod
    def from_env(cls) -> "AppSettings":
        rpc_url = os.getenv("RPC_URL", "").strip() or DEFAULT_RPC_URL
        signer_secret_key = (
            os.getenv("SIGNER_SECRET_KEY", "").strip() or os.getenv("DEV_SECRET_KEY", "").strip()
        )
        return cls(
            rpc_url=rpc_url,
            network=network_from_rpc_url(rpc_url),
            signer_secret_key=signer_secret_key,
            mint_address=os.getenv("MINT_ADDRESS", "").strip(),
            dev_public_key=os.getenv("DEV_PUBLIC_KEY", "").strip(),
            jupiter_quote_api=os.getenv("JUPITER_QUOTE_API", "https://api.jup.ag/swap/v1/quote").strip(),
            jupiter_swap_api=os.getenv("JUPITER_SWAP_API", "https://api.jup.ag/swap/v1/swap").strip(),
            jupiter_api_key=os.getenv("JUPITER_API_KEY", "").strip(),
            pumpportal_api=os.getenv("PUMPPORTAL_API", "https://pumpportal.fun/api/trade-local").strip(),
            http_timeout_seconds=max(1.0, to_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 8.0)),
            sol_reserve_lamports=sol_to_lamports(max(0.0, to_float(os.getenv("SOL_RESERVE"), 0.02))),
            min_swap_lamports=sol_to_lamports(max(0.0, to_float(os.getenv("MIN_SWAP_SOL"), 0.001))),
            slippage_bps=max(1, to_int(os.getenv("SLIPPAGE_BPS"), 300)),
            prioritization_fee_lamports=max(0, to_int(os.getenv("PRIORITIZATION_FEE_LAMPORTS"), 0)),
            min_pump_sol=max(0.0, to_float(os.getenv("MIN_PUMP_SOL"), 0.01)),
            target_pump_sol=max(0.0, to_float(os.getenv("TARGET_PUMP_SOL"), 0.0)),
            pump_slippage_pct=max(0.0, to_float(os.getenv("PUMP_SLIPPAGE_PCT"), 3.0)),
            priority_fee_sol=max(0.0, to_float(os.getenv("PRIORITY_FEE_SOL"), 0.0)),
            priority_fee_micro_lamports=max(0, to_int(os.getenv("PRIORITY_FEE_MICROLAMPORTS"), 2000)),
            terminal_policy=normalize_terminal_policy(os.getenv("TERMINAL_POLICY", "burn")),
            entry_mode=normalize_entry_mode(os.getenv("ENTRY_MODE", "holders")),
            airdrop_denylist=split_csv(os.getenv("AIRDROP_DENYLIST")),
            cycle_interval_seconds=max(10.0, to_float(os.getenv("CYCLE_INTERVAL_SECONDS"), 1200.0)),
            enable_scheduler=to_bool(os.getenv("ENABLE_SCHEDULER"), True),
            run_on_start=to_bool(os.getenv("RUN_ON_START"), False),
            error_backoff_seconds=max(1.0, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 5.0)),
            send_max_attempts=max(1, to_int(os.getenv("SEND_MAX_ATTEMPTS"), 3)),
            send_retry_backoff_seconds=max(
                0.1,
                to_float(os.getenv("SEND_RETRY_BACKOFF_SECONDS"), 0.8),
            ),
            confirm_timeout_seconds=max(5.0, to_float(os.getenv("CONFIRM_TIMEOUT_SECONDS"), 45.0)),
            confirm_poll_interval_seconds=max(
                0.25,
                to_float(os.getenv("CONFIRM_POLL_INTERVAL_SECONDS"), 1.0),
            ),
            receipt_poll_attempts=max(1, to_int(os.getenv("RECEIPT_POLL_ATTEMPTS"), 8)),
            receipt_poll_interval_seconds=max(
                0.0,
                to_float(os.getenv("RECEIPT_POLL_INTERVAL_SECONDS"), 0.5),
            ),
            balance_poll_attempts=max(1, to_int(os.getenv("BALANCE_POLL_ATTEMPTS"), 10)),
            balance_poll_interval_seconds=max(
                0.0,
                to_float(os.getenv("BALANCE_POLL_INTERVAL_SECONDS"), 0.4),
            ),
            burn_settle_attempts=max(1, to_int(os.getenv("BURN_SETTLE_ATTEMPTS"), 10)),
            burn_settle_interval_seconds=max(
                0.0,
                to_float(os.getenv("BURN_SETTLE_INTERVAL_SECONDS"), 0.5),
            ),
            decimals_lookup_attempts=max(1, to_int(os.getenv("DECIMALS_LOOKUP_ATTEMPTS"), 3)),
            admin_bearer_token=os.getenv("ADMIN_BEARER_TOKEN", "").strip(),
            admin_rate_limit_requests=max(1, to_int(os.getenv("ADMIN_RATE_LIMIT_REQUESTS"), 10)),
            admin_rate_limit_window_seconds=max(
                1.0,
                to_float(os.getenv("ADMIN_RATE_LIMIT_WINDOW_SECONDS"), 60.0),
            ),
            frontend_origins=split_csv(os.getenv("FRONTEND_ORIGINS")),
            host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
            port=max(1, to_int(os.getenv("PORT"), 8787)),
        )

    def missing_signing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.signer_secret_key:
            missing.append("SIGNER_SECRET_KEY")
        if not self.mint_address:
            missing.append("MINT_ADDRESS")
        if not self.rpc_url:
            missing.append("RPC_URL")
        return missing

    def require_signing(self) -> None:
        missing = self.missing_signing_fields()
        if missing:
            raise ConfigurationError(f"Signing operations require: {', '.join(missing)}")
