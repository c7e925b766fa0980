from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol

from flywheel.common import StorageError, guarded_call, log_event, retry_until

from .file_ops import FileStatsBackend
from .firestore_ops import FirestoreStatsBackend
from .models import Stats, StatsConfig
from .redis_ops import RedisStatsBackend
from .settings import StorageSettings

FALLBACK_DECIMALS = 6

DecimalsLookup = Callable[[str], Awaitable[int | None]]


class StatsBackend(Protocol):
    name: str

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def read_document(self) -> dict[str, Any] | None: ...

    async def write_document(self, document: dict[str, Any]) -> None: ...


def build_backend(settings: StorageSettings) -> StatsBackend:
    if settings.backend == "redis":
        return RedisStatsBackend(redis_url=settings.redis_url, key=settings.redis_stats_key)
    if settings.backend == "firestore":
        return FirestoreStatsBackend(
            project_id=settings.firestore_project_id,
            doc_path=settings.firestore_stats_doc,
        )
    return FileStatsBackend(settings.db_path)


class StatsStore:
    def __init__(
        self,
        *,
        backend: StatsBackend,
        logger: logging.Logger,
        defaults: StatsConfig,
        decimals_lookup: DecimalsLookup | None = None,
        decimals_attempts: int = 3,
        decimals_interval_seconds: float = 0.5,
    ) -> None:
        self._backend = backend
        self._logger = logger
        self._defaults = defaults
        self._decimals_lookup = decimals_lookup
        self._decimals_attempts = max(1, decimals_attempts)
        self._decimals_interval_seconds = max(0.0, decimals_interval_seconds)
        self._decimals: int | None = None
        self._last_good: Stats | None = None

    @classmethod
    def from_settings(
        cls,
        settings: StorageSettings,
        *,
        logger: logging.Logger,
        defaults: StatsConfig,
        decimals_lookup: DecimalsLookup | None = None,
        decimals_attempts: int = 3,
    ) -> "StatsStore":
        return cls(
            backend=build_backend(settings),
            logger=logger,
            defaults=defaults,
            decimals_lookup=decimals_lookup,
            decimals_attempts=decimals_attempts,
        )

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def default_stats(self) -> Stats:
        return Stats.defaults(
            mint=self._defaults.mint,
            dev=self._defaults.dev,
            network=self._defaults.network,
        )

    async def connect(self) -> None:
        await self._backend.connect()
        log_event(
            self._logger,
            level="info",
            event="stats_backend_connected",
            message="Stats backend connected",
            backend=self._backend.name,
        )

    async def close(self) -> None:
        await self._backend.close()

    async def load(self) -> Stats:
        try:
            document = await self._backend.read_document()
            stats = self.default_stats() if document is None else Stats.from_dict(document)
        except Exception as error:
            log_event(
                self._logger,
                level="warning",
                event="stats_load_failed",
                message="Stats document unreadable, using defaults",
                backend=self._backend.name,
                error=str(error),
            )
            stats = self.default_stats()
            self._fill_config(stats)
            return stats

        self._fill_config(stats)
        self._last_good = stats
        return stats

    async def load_for_update(self) -> Stats:
        """Strict read for writers: an unreadable or corrupt document raises ``StorageError``.

        Only an absent document yields defaults, so a failed read is never
        followed by a save that replaces the stored totals.
        """
        try:
            document = await self._backend.read_document()
        except Exception as error:
            raise StorageError(f"Failed to read stats document: {error}") from error

        if document is None:
            stats = self.default_stats()
        else:
            try:
                stats = Stats.from_dict(document)
            except ValueError as error:
                raise StorageError(f"Stats document is corrupt: {error}") from error

        self._fill_config(stats)
        self._last_good = stats
        return stats

    async def save(self, stats: Stats) -> None:
        try:
            await self._backend.write_document(stats.to_dict())
        except Exception as error:
            log_event(
                self._logger,
                level="error",
                event="stats_save_failed",
                message="Failed to persist stats document",
                backend=self._backend.name,
                error=str(error),
            )
            raise StorageError(f"Failed to persist stats: {error}") from error
        self._last_good = stats

    def snapshot(self) -> Stats:
        """Last document successfully loaded or saved, for public readers."""
        if self._last_good is None:
            return self.default_stats()
        return self._last_good

    async def initialize(self) -> Stats:
        try:
            document = await self._backend.read_document()
        except Exception as error:
            raise StorageError(f"Failed to read stats document: {error}") from error

        if document is None:
            stats = self.default_stats()
            await self.save(stats)
            log_event(
                self._logger,
                level="info",
                event="stats_initialized",
                message="Created stats document",
                backend=self._backend.name,
            )
        else:
            stats = await self.load()

        await guarded_call(
            lambda: self.ensure_decimals(stats),
            logger=self._logger,
            event="decimals_init_failed",
            message="Failed to resolve token decimals at startup",
        )
        return stats

    async def ensure_decimals(self, stats: Stats) -> int:
        if stats.config.decimals is not None:
            self._decimals = stats.config.decimals
            return stats.config.decimals

        if self._decimals is not None:
            stats.config.decimals = self._decimals
            await self.save(stats)
            return self._decimals

        discovered = await self._lookup_decimals(stats.config.mint)
        if discovered is None:
            log_event(
                self._logger,
                level="warning",
                event="decimals_fallback",
                message="Token decimals unavailable, using fallback for this run",
                mint=stats.config.mint,
                fallback=FALLBACK_DECIMALS,
            )
            return FALLBACK_DECIMALS

        self._decimals = discovered
        stats.config.decimals = discovered
        await self.save(stats)
        log_event(
            self._logger,
            level="info",
            event="decimals_resolved",
            message="Token decimals resolved",
            mint=stats.config.mint,
            decimals=discovered,
        )
        return discovered

    async def _lookup_decimals(self, mint: str) -> int | None:
        if self._decimals_lookup is None or not mint:
            return None
        lookup = self._decimals_lookup
        return await retry_until(
            lambda: lookup(mint),
            predicate=lambda value: value is not None,
            attempts=self._decimals_attempts,
            interval_seconds=self._decimals_interval_seconds,
            logger=self._logger,
            event="decimals_lookup_failed",
            mint=mint,
        )

    def _fill_config(self, stats: Stats) -> None:
        config = stats.config
        if not config.mint:
            config.mint = self._defaults.mint
        if not config.dev:
            config.dev = self._defaults.dev
        if not config.network:
            config.network = self._defaults.network
        if config.decimals is None and self._decimals is not None:
            config.decimals = self._decimals
