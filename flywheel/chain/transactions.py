from __future__ import annotations

import base64

from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

TOKEN_PROGRAMS: tuple[Pubkey, ...] = (TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID)


def associated_token_accounts(owner: Pubkey, mint: Pubkey) -> dict[Pubkey, Pubkey]:
    """Associated token account per token program, Token-2022 first."""
    return {
        program_id: get_associated_token_address(owner, mint, token_program_id=program_id)
        for program_id in TOKEN_PROGRAMS
    }


def compile_and_sign(
    *,
    instructions: list[Instruction],
    signer: Keypair,
    blockhash: Hash,
    priority_fee_micro_lamports: int = 0,
) -> VersionedTransaction:
    full_instructions = list(instructions)
    if priority_fee_micro_lamports > 0:
        full_instructions.insert(0, set_compute_unit_price(priority_fee_micro_lamports))

    message = MessageV0.try_compile(
        signer.pubkey(),
        full_instructions,
        [],
        blockhash,
    )
    return VersionedTransaction(message, [signer])


def sign_serialized(raw: bytes, signer: Keypair) -> VersionedTransaction:
    unsigned = VersionedTransaction.from_bytes(raw)
    return VersionedTransaction(unsigned.message, [signer])


def sign_base64(encoded: str, signer: Keypair) -> VersionedTransaction:
    return sign_serialized(base64.b64decode(encoded), signer)


def signature_of(transaction: VersionedTransaction) -> str:
    if not transaction.signatures:
        raise RuntimeError("Transaction has no signatures.")
    return str(transaction.signatures[0])

