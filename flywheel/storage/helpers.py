from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any

MAX_UI_DECIMALS = 12


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or value == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def to_ui(raw_amount: int | float, decimals: int | None) -> float:
    try:
        precision = int(decimals or 0)
    except (TypeError, ValueError):
        precision = 0
    precision = max(0, min(MAX_UI_DECIMALS, precision))
    return float(raw_amount) / (10**precision)


def explorer_link(signature: str, network: str) -> str:
    link = f"https://solscan.io/tx/{signature}"
    if network == "devnet":
        return f"{link}?cluster=devnet"
    return link


def dump_document(document: dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False, indent=2, default=str)
