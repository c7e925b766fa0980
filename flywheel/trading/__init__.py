from .airdrop import AirdropExecutor
from .burn import BurnExecutor, TokenHolding, probe_holding
from .buyer import MarketBuyer, size_fallback_buy
from .claim import PumpFeeClaimer
from .delta import BalanceDeltaMeasurer, receipt_delta
from .holders import EntrantRegistry, EntryDecision, HolderWeightSelector, pick_weighted_index
from .jupiter import JupiterSwapClient
from .pumpportal import PumpPortalClient
from .types import (
    SOL_MINT,
    AirdropResult,
    BurnResult,
    BuyResult,
    ClaimResult,
    FallbackBuySize,
    HolderWeight,
)

__all__ = [
    "AirdropExecutor",
    "AirdropResult",
    "BalanceDeltaMeasurer",
    "BurnExecutor",
    "BurnResult",
    "BuyResult",
    "ClaimResult",
    "EntrantRegistry",
    "EntryDecision",
    "FallbackBuySize",
    "HolderWeight",
    "HolderWeightSelector",
    "JupiterSwapClient",
    "MarketBuyer",
    "PumpFeeClaimer",
    "PumpPortalClient",
    "SOL_MINT",
    "TokenHolding",
    "pick_weighted_index",
    "probe_holding",
    "receipt_delta",
    "size_fallback_buy",
]
