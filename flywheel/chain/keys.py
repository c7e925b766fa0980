from __future__ import annotations

import json

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from flywheel.common import ConfigurationError


def load_keypair(raw: str) -> Keypair:
    value = raw.strip()
    if not value:
        raise ConfigurationError("SIGNER_SECRET_KEY is empty.")

    if value.startswith("["):
        try:
            arr = json.loads(value)
        except json.JSONDecodeError as error:
            raise ConfigurationError("SIGNER_SECRET_KEY JSON is malformed.") from error
        if not isinstance(arr, list):
            raise ConfigurationError("SIGNER_SECRET_KEY JSON must be an integer array.")
        try:
            return Keypair.from_bytes(bytes(arr))
        except (TypeError, ValueError) as error:
            raise ConfigurationError("SIGNER_SECRET_KEY byte array is invalid.") from error

    try:
        return Keypair.from_bytes(base58.b58decode(value))
    except ValueError as error:
        raise ConfigurationError("Unsupported SIGNER_SECRET_KEY format.") from error


def parse_pubkey(value: str, *, field_name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as error:
        raise ConfigurationError(f"{field_name} is not a valid public key: {value!r}") from error
