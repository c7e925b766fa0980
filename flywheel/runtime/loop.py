from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, Sequence

from flywheel.common import classify_error, guarded_call, log_event
from flywheel.pipeline import CycleOrchestrator
from flywheel.storage import StatsStore

from .settings import AppSettings


class Connectable(Protocol):
    async def connect(self) -> None: ...

    async def close(self) -> None: ...


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    store: StatsStore,
    clients: Sequence[Connectable] = (),
) -> None:
    while not stop_event.is_set():
        try:
            await store.connect()
            for client in clients:
                await client.connect()
            await store.initialize()
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            for client in clients:
                await guarded_call(
                    client.close,
                    logger=logger,
                    event="bootstrap_client_close_failed",
                    message="Failed to close client during bootstrap retry",
                    client=type(client).__name__,
                )
            await guarded_call(
                store.close,
                logger=logger,
                event="bootstrap_store_close_failed",
                message="Failed to close stats backend during bootstrap retry",
            )

            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def run_cycle_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    orchestrator: CycleOrchestrator,
) -> None:
    loop = asyncio.get_running_loop()
    interval = app_settings.cycle_interval_seconds
    next_tick = loop.time()

    log_event(
        logger,
        level="info",
        event="scheduler_started",
        message="Cycle scheduler started",
        interval_seconds=interval,
        run_on_start=app_settings.run_on_start,
        terminal_policy=orchestrator.terminal_policy,
    )

    if not app_settings.run_on_start:
        next_tick += interval
        await wait_with_stop(stop_event, interval)

    while not stop_event.is_set():
        failed = False
        try:
            result = await orchestrator.run_cycle()
            summary: dict[str, Any] = result.to_dict(include_errors=False)
            log_event(
                logger,
                level="info",
                event="scheduled_cycle_finished",
                message="Scheduled cycle finished",
                cycle_status=result.status,
                steps=summary["steps"],
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            failed = True
            log_event(
                logger,
                level="error",
                event="scheduled_cycle_error",
                message="Scheduled cycle failed",
                error_kind=classify_error(error).value,
                error=str(error),
            )
        finally:
            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                missed_cycles = int((now - next_tick) / interval) + 1
                next_tick += missed_cycles * interval
                log_event(
                    logger,
                    level="warning",
                    event="scheduler_ticks_missed",
                    message="Cycle overran its interval, skipping missed ticks",
                    missed_cycles=missed_cycles,
                )

            delay_seconds = max(0.0, next_tick - now)
            if failed:
                delay_seconds = max(delay_seconds, app_settings.error_backoff_seconds)

        await wait_with_stop(stop_event, delay_seconds)

    log_event(
        logger,
        level="info",
        event="scheduler_stopped",
        message="Cycle scheduler stopped",
    )
