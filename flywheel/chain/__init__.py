from .keys import load_keypair, parse_pubkey
from .rpc import SolanaRpcClient
from .transactions import (
    TOKEN_PROGRAMS,
    associated_token_accounts,
    compile_and_sign,
    sign_base64,
    sign_serialized,
    signature_of,
)
from .types import (
    ChainClient,
    ConfirmationOutcome,
    LargestTokenAccount,
    LatestBlockhash,
    SimulationResult,
    TokenAmount,
    TokenBalanceEntry,
    TransactionReceipt,
)

__all__ = [
    "ChainClient",
    "ConfirmationOutcome",
    "LargestTokenAccount",
    "LatestBlockhash",
    "SimulationResult",
    "SolanaRpcClient",
    "TOKEN_PROGRAMS",
    "TokenAmount",
    "TokenBalanceEntry",
    "TransactionReceipt",
    "associated_token_accounts",
    "compile_and_sign",
    "load_keypair",
    "parse_pubkey",
    "sign_base64",
    "sign_serialized",
    "signature_of",
]
