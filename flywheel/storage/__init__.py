from .gateway import FALLBACK_DECIMALS, StatsBackend, StatsStore, build_backend
from .helpers import explorer_link, now_iso, now_ms, to_ui
from .models import HISTORY_LIMIT, HistoryEntry, LastRun, Stats, StatsConfig, Totals
from .settings import StorageSettings

__all__ = [
    "FALLBACK_DECIMALS",
    "HISTORY_LIMIT",
    "HistoryEntry",
    "LastRun",
    "Stats",
    "StatsBackend",
    "StatsConfig",
    "StatsStore",
    "StorageSettings",
    "Totals",
    "build_backend",
    "explorer_link",
    "now_iso",
    "now_ms",
    "to_ui",
]
