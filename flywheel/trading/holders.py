from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass
from typing import Sequence

from solders.pubkey import Pubkey

from flywheel.chain import ChainClient, associated_token_accounts
from flywheel.common import log_event

from .types import HolderWeight

KEYWORD_ALPHABET = string.ascii_uppercase + string.digits
KEYWORD_LENGTH = 4


def pick_weighted_index(weights: Sequence[float], rng: random.Random | None = None) -> int:
    """Index drawn with probability proportional to its weight.

    All-zero (or non-positive) weights fall through to the last index.
    """
    if not weights:
        raise ValueError("weights must not be empty")

    total = sum(weight for weight in weights if weight > 0)
    if total <= 0:
        return len(weights) - 1

    remainder = (rng or random).random() * total
    for index, weight in enumerate(weights):
        if weight <= 0:
            continue
        remainder -= weight
        if remainder <= 0:
            return index
    return len(weights) - 1


@dataclass(slots=True, frozen=True)
class EntryDecision:
    accepted: bool
    reason: str
    entrants: int


class EntrantRegistry:
    def __init__(
        self,
        *,
        chain: ChainClient,
        mint: Pubkey,
        rng: random.Random | None = None,
    ) -> None:
        self._chain = chain
        self._mint = mint
        self._rng = rng or random.Random()
        self._keyword: str | None = None
        self._entrants: set[str] = set()

    @property
    def keyword(self) -> str | None:
        return self._keyword

    @property
    def entrants(self) -> frozenset[str]:
        return frozenset(self._entrants)

    def rotate(self) -> str:
        self._keyword = "".join(self._rng.choice(KEYWORD_ALPHABET) for _ in range(KEYWORD_LENGTH))
        self._entrants = set()
        return self._keyword

    async def _holds_token(self, owner: str) -> bool:
        owner_key = Pubkey.from_string(owner)
        for account in associated_token_accounts(owner_key, self._mint).values():
            balance = await self._chain.get_token_account_balance(str(account))
            if balance is not None and balance.amount > 0:
                return True
        return False

    async def register(self, *, owner: str, message: str) -> EntryDecision:
        if self._keyword is None:
            return EntryDecision(accepted=False, reason="no_active_keyword", entrants=len(self._entrants))
        if self._keyword.lower() not in message.lower():
            return EntryDecision(accepted=False, reason="keyword_not_found", entrants=len(self._entrants))
        try:
            holds = await self._holds_token(owner)
        except ValueError:
            return EntryDecision(accepted=False, reason="invalid_owner", entrants=len(self._entrants))
        if not holds:
            return EntryDecision(accepted=False, reason="must_hold_token", entrants=len(self._entrants))

        self._entrants.add(owner)
        return EntryDecision(accepted=True, reason="registered", entrants=len(self._entrants))


class HolderWeightSelector:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        mint: str,
        own_wallet: str,
        entry_mode: str = "holders",
        denylist: Sequence[str] = (),
        registry: EntrantRegistry | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._mint = mint
        self._excluded = {own_wallet, *denylist}
        self._entry_mode = entry_mode
        self._registry = registry
        self._rng = rng

    @property
    def entry_mode(self) -> str:
        return self._entry_mode

    async def fetch_holders(self) -> list[HolderWeight]:
        largest = await self._chain.get_largest_token_accounts(self._mint)
        funded = [account for account in largest if account.amount > 0]
        if not funded:
            return []

        owners = await self._chain.get_account_owners([account.address for account in funded])
        balances: dict[str, float] = {}
        for account in funded:
            owner = owners.get(account.address)
            if not owner or owner in self._excluded:
                continue
            ui_amount = account.amount / (10**account.decimals)
            balances[owner] = balances.get(owner, 0.0) + ui_amount

        return [HolderWeight(owner=owner, weight=weight) for owner, weight in balances.items()]

    def apply_policy(self, holders: list[HolderWeight]) -> list[HolderWeight]:
        if self._entry_mode == "balance":
            return holders

        candidates = holders
        if self._entry_mode == "keyword" and self._registry is not None and self._registry.entrants:
            allowed = self._registry.entrants
            registered = [holder for holder in holders if holder.owner in allowed]
            if registered:
                candidates = registered
        return [HolderWeight(owner=holder.owner, weight=1.0) for holder in candidates]

    def pick(self, candidates: list[HolderWeight]) -> HolderWeight:
        index = pick_weighted_index([candidate.weight for candidate in candidates], self._rng)
        return candidates[index]

    async def select(self) -> tuple[HolderWeight, int] | None:
        """Winner and size of the candidate pool, or None without eligible holders."""
        candidates = self.apply_policy(await self.fetch_holders())
        if not candidates:
            log_event(
                self._logger,
                level="info",
                event="holders_empty",
                message="No eligible holders for airdrop",
                entry_mode=self._entry_mode,
            )
            return None
        winner = self.pick(candidates)
        log_event(
            self._logger,
            level="info",
            event="holder_selected",
            message="Airdrop winner selected",
            entry_mode=self._entry_mode,
            winner=winner.owner,
            candidates=len(candidates),
        )
        return winner, len(candidates)
