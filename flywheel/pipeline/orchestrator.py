from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, TypeVar

from flywheel.common import classify_error, guarded_call, is_fatal, log_event
from flywheel.storage import Stats, StatsStore, now_iso, to_ui
from flywheel.trading import (
    AirdropExecutor,
    BurnExecutor,
    EntrantRegistry,
    MarketBuyer,
    PumpFeeClaimer,
)

from .events import EventBroadcaster
from .trace import CycleTrace
from .types import CycleResult, CycleState, StepOutcome, StepStatus

T = TypeVar("T")

FULL_CYCLE = "full"
FORCE_SYNC = "force-sync"


class CycleOrchestrator:
    """Single-flight claim -> buy -> burn/airdrop cycle with per-step persistence."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: StatsStore,
        claimer: PumpFeeClaimer,
        buyer: MarketBuyer,
        burner: BurnExecutor,
        airdropper: AirdropExecutor | None = None,
        terminal_policy: str = "burn",
        registry: EntrantRegistry | None = None,
        broadcaster: EventBroadcaster | None = None,
    ) -> None:
        if terminal_policy == "airdrop" and airdropper is None:
            raise ValueError("Airdrop terminal policy requires an AirdropExecutor.")
        self._logger = logger
        self._store = store
        self._claimer = claimer
        self._buyer = buyer
        self._burner = burner
        self._airdropper = airdropper
        self._terminal_policy = terminal_policy
        self._registry = registry
        self._broadcaster = broadcaster
        self._state = CycleState.IDLE
        self._last_trace: CycleTrace | None = None
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def last_trace(self) -> CycleTrace | None:
        return self._last_trace

    @property
    def last_result(self) -> CycleResult | None:
        return self._last_result

    @property
    def terminal_policy(self) -> str:
        return self._terminal_policy

    def _try_acquire(self) -> bool:
        # no await between check and set
        if self._state is CycleState.RUNNING:
            return False
        self._state = CycleState.RUNNING
        return True

    def _release(self) -> None:
        self._state = CycleState.IDLE

    def _skipped(self, kind: str) -> CycleResult:
        log_event(
            self._logger,
            level="info",
            event="cycle_skipped",
            message="Cycle already running, skipping",
            cycle_kind=kind,
        )
        return CycleResult.skipped(kind)

    async def run_cycle(self) -> CycleResult:
        if not self._try_acquire():
            return self._skipped(FULL_CYCLE)
        try:
            return await self._guarded_run(FULL_CYCLE, self._full_cycle)
        finally:
            self._release()

    async def force_sync(self) -> CycleResult:
        if not self._try_acquire():
            return self._skipped(FORCE_SYNC)
        try:
            return await self._guarded_run(FORCE_SYNC, self._force_sync)
        finally:
            self._release()

    async def _guarded_run(
        self,
        kind: str,
        body: Callable[[CycleTrace, str, list[Stats]], Awaitable[CycleResult]],
    ) -> CycleResult:
        started_at = now_iso()
        trace = CycleTrace(kind=kind, logger=self._logger)
        self._last_trace = trace
        loaded: list[Stats] = []

        try:
            result = await body(trace, started_at, loaded)
        except Exception as error:
            kind_of_error = classify_error(error)
            trace.step("error", error=str(error), error_kind=kind_of_error.value)
            if loaded:
                # never write over a document that could not be read
                await guarded_call(
                    lambda: self._persist_failure(loaded[0], kind, started_at),
                    logger=self._logger,
                    event="cycle_failure_persist_failed",
                    message="Failed to persist failed run summary",
                    level="error",
                )
            self._last_result = CycleResult(
                kind=kind,
                status="failed",
                started_at=started_at,
                finished_at=now_iso(),
            )
            self._broadcast("cycle", {"kind": kind, "status": "failed", "error_kind": kind_of_error.value})
            log_event(
                self._logger,
                level="exception",
                event="cycle_failed",
                message="Cycle failed",
                cycle_kind=kind,
                error_kind=kind_of_error.value,
                error=str(error),
            )
            raise

        self._last_result = result
        return result

    async def _persist_failure(self, stats: Stats, kind: str, started_at: str) -> None:
        stats.mark_run(kind=kind, status="failed", started_at=started_at)
        await self._store.save(stats)

    async def _run_step(
        self,
        name: str,
        action: Callable[[], Awaitable[T | None]],
        trace: CycleTrace,
        *,
        error_step: str | None = None,
    ) -> StepOutcome:
        try:
            result = await action()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            error_kind = classify_error(error)
            if is_fatal(error_kind):
                raise
            trace.step(error_step or f"{name}-error", error=str(error), error_kind=error_kind.value)
            log_event(
                self._logger,
                level="warning",
                event=f"{name.replace('-', '_')}_failed",
                message=f"Cycle step {name} failed",
                error_kind=error_kind.value,
                error=str(error),
            )
            return StepOutcome(name=name, status=StepStatus.FAILED, error_kind=error_kind, error=str(error))

        if result is None:
            return StepOutcome(name=name, status=StepStatus.NOOP)
        return StepOutcome(name=name, status=StepStatus.OK, result=result)

    async def _begin(self, loaded: list[Stats]) -> tuple[Stats, int]:
        stats = await self._store.load_for_update()
        loaded.append(stats)
        decimals = await self._store.ensure_decimals(stats)
        return stats, decimals

    async def _full_cycle(self, trace: CycleTrace, started_at: str, loaded: list[Stats]) -> CycleResult:
        stats, decimals = await self._begin(loaded)
        trace.step("begin", totals=asdict(stats.totals), decimals=decimals)
        outcomes: list[StepOutcome] = []

        claim = await self._run_step("claim", self._claimer.claim, trace)
        outcomes.append(claim)
        trace.step("claim", status=claim.status.value, signature=getattr(claim.result, "signature", None))
        if claim.ok:
            stats.record_claim(
                signature=claim.result.signature,
                lamports_claimed=claim.result.lamports_claimed,
            )
            await self._store.save(stats)

        buy = await self._run_step("buy", self._buyer.market_buy, trace)
        outcomes.append(buy)
        trace.step("buy", **(buy.result.to_dict() if buy.ok else {"status": buy.status.value}))
        if buy.ok:
            out_raw = max(0, int(buy.result.tokens_out_raw))
            out_ui = to_ui(out_raw, decimals)
            stats.record_buy(
                signature=buy.result.signature,
                amount_in_sol=buy.result.amount_in_sol,
                tokens_out_raw=out_raw,
                tokens_out=out_ui,
                route=buy.result.route,
            )
            await self._store.save(stats)
            trace.step("saved-buy", out_raw=out_raw, out_ui=out_ui)

        if self._terminal_policy == "airdrop":
            outcomes.append(await self._airdrop_step(stats, trace))
        else:
            outcomes.append(await self._burn_step(stats, trace, prefix=""))

        if self._registry is not None and self._registry.keyword is not None:
            keyword = self._registry.rotate()
            trace.step("keyword", keyword=keyword)

        return await self._finish(stats, trace, kind=FULL_CYCLE, started_at=started_at, outcomes=outcomes)

    async def _force_sync(self, trace: CycleTrace, started_at: str, loaded: list[Stats]) -> CycleResult:
        stats, _decimals = await self._begin(loaded)
        trace.step("force-sync-start")
        outcome = await self._burn_step(stats, trace, prefix="force-sync-")
        return await self._finish(stats, trace, kind=FORCE_SYNC, started_at=started_at, outcomes=[outcome])

    async def _burn_step(self, stats: Stats, trace: CycleTrace, *, prefix: str) -> StepOutcome:
        outcome = await self._run_step(
            f"{prefix}burn",
            self._burner.burn,
            trace,
            error_step=f"{prefix}error" if prefix else None,
        )
        if outcome.status is StepStatus.FAILED:
            return outcome
        trace.step(f"{prefix}burn", **(outcome.result.to_dict() if outcome.ok else {"status": "noop"}))
        if outcome.ok:
            stats.record_burn(
                signature=outcome.result.signature,
                amount_raw=outcome.result.amount_raw,
                amount_ui=outcome.result.amount_ui,
            )
        return outcome

    async def _airdrop_step(self, stats: Stats, trace: CycleTrace) -> StepOutcome:
        airdropper = self._airdropper
        if airdropper is None:
            raise RuntimeError("AirdropExecutor is not configured.")
        outcome = await self._run_step("airdrop", airdropper.airdrop, trace)
        if outcome.status is StepStatus.FAILED:
            return outcome
        trace.step("airdrop", **(outcome.result.to_dict() if outcome.ok else {"status": "noop"}))
        if outcome.ok:
            stats.record_airdrop(
                signature=outcome.result.signature,
                winner=outcome.result.winner,
                amount_raw=outcome.result.amount_raw,
                amount_ui=outcome.result.amount_ui,
                holders_count=outcome.result.holders_count,
            )
        return outcome

    async def _finish(
        self,
        stats: Stats,
        trace: CycleTrace,
        *,
        kind: str,
        started_at: str,
        outcomes: list[StepOutcome],
    ) -> CycleResult:
        status = "partial" if any(o.status is StepStatus.FAILED for o in outcomes) else "completed"
        stats.trim_history()
        stats.mark_run(kind=kind, status=status, started_at=started_at)
        await self._store.save(stats)
        trace.step("done" if kind == FULL_CYCLE else "force-sync-done", totals=asdict(stats.totals))

        result = CycleResult(
            kind=kind,
            status=status,
            started_at=started_at,
            finished_at=stats.last_run.finished_at if stats.last_run else now_iso(),
            steps=outcomes,
        )
        self._broadcast("cycle", self._public_summary(result, stats))
        return result

    def _public_summary(self, result: CycleResult, stats: Stats) -> dict[str, Any]:
        summary = result.to_dict(include_errors=False)
        summary["totals"] = asdict(stats.totals)
        summary["history"] = [entry.to_dict() for entry in stats.history[:5]]
        if self._registry is not None and self._registry.keyword is not None:
            summary["keyword"] = self._registry.keyword
        return summary

    def _broadcast(self, event: str, payload: dict[str, Any]) -> None:
        if self._broadcaster is None:
            return
        self._broadcaster.publish(event, payload)
