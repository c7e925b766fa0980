from __future__ import annotations

import asyncio
import json
import logging
import random
import unittest
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from solders.pubkey import Pubkey

from flywheel.common import StorageError, SubmissionError, TransientExternalError
from flywheel.pipeline import FORCE_SYNC, CycleOrchestrator, CycleState, EventBroadcaster, StepStatus
from flywheel.storage import StatsConfig, StatsStore
from flywheel.trading import AirdropResult, BurnResult, BuyResult, ClaimResult, EntrantRegistry

LOGGER = logging.getLogger("test.orchestrator")


class MemoryBackend:
    name = "memory"

    def __init__(self) -> None:
        self.document: dict[str, Any] | None = None
        self.writes = 0
        self.fail_writes = False
        self.fail_reads = 0
        self.history_sizes: list[int] = []

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def read_document(self) -> dict[str, Any] | None:
        if self.fail_reads:
            self.fail_reads -= 1
            raise ConnectionError("read timed out")
        if self.document is None:
            return None
        return json.loads(json.dumps(self.document))

    async def write_document(self, document: dict[str, Any]) -> None:
        if self.fail_writes:
            raise OSError("backend unavailable")
        self.document = json.loads(json.dumps(document))
        self.writes += 1
        self.history_sizes.append(len(document["history"]))


def _claim() -> ClaimResult:
    return ClaimResult(signature="claim-sig", lamports_claimed=40_000_000)


def _buy() -> BuyResult:
    return BuyResult(signature="buy-sig", amount_in_sol=0.5, tokens_out_raw=2_000_000, route="jupiter")


def _burn() -> BurnResult:
    return BurnResult(signature="burn-sig", amount_raw=2_000_000, amount_ui=2.0, program_id="prog")


class CycleOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.backend = MemoryBackend()
        self.store = StatsStore(
            backend=self.backend,
            logger=LOGGER,
            defaults=StatsConfig(mint="mint", dev="dev", network="mainnet"),
            decimals_lookup=AsyncMock(return_value=6),
            decimals_interval_seconds=0.0,
        )
        self.claimer = MagicMock()
        self.claimer.claim = AsyncMock(return_value=_claim())
        self.buyer = MagicMock()
        self.buyer.market_buy = AsyncMock(return_value=_buy())
        self.burner = MagicMock()
        self.burner.burn = AsyncMock(return_value=_burn())
        self.broadcaster = EventBroadcaster(logger=LOGGER)
        self.orchestrator = CycleOrchestrator(
            logger=LOGGER,
            store=self.store,
            claimer=self.claimer,
            buyer=self.buyer,
            burner=self.burner,
            broadcaster=self.broadcaster,
        )

    async def test_full_cycle_records_every_step(self) -> None:
        result = await self.orchestrator.run_cycle()

        self.assertEqual(result.status, "completed")
        self.assertEqual(
            self.orchestrator.last_trace.names(),
            ["begin", "claim", "buy", "saved-buy", "burn", "done"],
        )
        document = self.backend.document
        self.assertEqual([entry["type"] for entry in document["history"]], ["burn", "buy", "claim"])
        self.assertEqual(document["totals"]["claims"], 1)
        self.assertAlmostEqual(document["totals"]["sol_spent"], 0.5)
        self.assertAlmostEqual(document["totals"]["tokens_bought"], 2.0)
        self.assertAlmostEqual(document["totals"]["tokens_burned"], 2.0)
        self.assertEqual(document["last_run"]["status"], "completed")
        self.assertEqual(document["config"]["decimals"], 6)
        self.assertEqual(self.orchestrator.state, CycleState.IDLE)

    async def test_buy_is_persisted_before_burn_failure(self) -> None:
        self.burner.burn.side_effect = SubmissionError("burn rejected", signature="burn-sig")

        result = await self.orchestrator.run_cycle()

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.step("burn").status, StepStatus.FAILED)
        self.assertIn("burn-error", self.orchestrator.last_trace.names())
        self.assertEqual([entry["type"] for entry in self.backend.document["history"]], ["buy", "claim"])
        self.assertAlmostEqual(self.backend.document["totals"]["tokens_burned"], 0.0)

    async def test_claim_failure_does_not_stop_buy_and_burn(self) -> None:
        self.claimer.claim.side_effect = TransientExternalError("pumpportal 502")

        result = await self.orchestrator.run_cycle()

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.step("claim").status, StepStatus.FAILED)
        self.assertEqual(result.step("buy").status, StepStatus.OK)
        self.assertEqual(result.step("burn").status, StepStatus.OK)
        self.assertEqual(self.backend.document["totals"]["claims"], 0)

    async def test_noop_steps_leave_history_untouched(self) -> None:
        self.buyer.market_buy.return_value = None
        self.burner.burn.return_value = None

        result = await self.orchestrator.run_cycle()

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.step("buy").status, StepStatus.NOOP)
        self.assertNotIn("saved-buy", self.orchestrator.last_trace.names())
        self.assertEqual([entry["type"] for entry in self.backend.document["history"]], ["claim"])

    async def test_storage_failure_aborts_cycle(self) -> None:
        await self.store.initialize()
        self.backend.fail_writes = True

        with self.assertRaises(StorageError):
            await self.orchestrator.run_cycle()

        self.assertEqual(self.orchestrator.state, CycleState.IDLE)
        self.assertEqual(self.orchestrator.last_result.status, "failed")
        self.assertEqual(self.orchestrator.last_trace.names()[-1], "error")
        self.buyer.market_buy.assert_not_awaited()

    async def test_unreadable_document_aborts_without_overwrite(self) -> None:
        self.backend.document = {
            "config": {"mint": "mint", "dev": "dev", "network": "mainnet", "decimals": 6},
            "totals": {"claims": 50, "sol_spent": 12.5},
            "history": [],
        }
        self.backend.fail_reads = 1

        with self.assertRaises(StorageError):
            await self.orchestrator.run_cycle()

        self.assertEqual(self.backend.writes, 0)
        self.assertEqual(self.backend.document["totals"]["claims"], 50)
        self.claimer.claim.assert_not_awaited()
        self.assertEqual(self.orchestrator.state, CycleState.IDLE)

        await self.orchestrator.run_cycle()

        self.assertEqual(self.backend.document["totals"]["claims"], 51)
        self.assertAlmostEqual(self.backend.document["totals"]["sol_spent"], 13.0)

    async def test_corrupt_document_is_left_in_place(self) -> None:
        self.backend.document = {"totals": {"claims": 7}, "history": "not-a-list"}

        with self.assertRaises(StorageError):
            await self.orchestrator.force_sync()

        self.assertEqual(self.backend.writes, 0)
        self.assertEqual(self.backend.document["history"], "not-a-list")
        self.burner.burn.assert_not_awaited()

    async def test_storage_fault_during_burn_keeps_saved_buy(self) -> None:
        async def burn_then_lose_storage() -> BurnResult:
            self.backend.fail_writes = True
            return _burn()

        self.burner.burn.side_effect = burn_then_lose_storage

        with self.assertRaises(StorageError):
            await self.orchestrator.run_cycle()

        document = self.backend.document
        self.assertEqual([entry["type"] for entry in document["history"]], ["buy", "claim"])
        self.assertEqual(document["totals"]["claims"], 1)
        self.assertAlmostEqual(document["totals"]["tokens_bought"], 2.0)
        self.assertAlmostEqual(document["totals"]["tokens_burned"], 0.0)
        self.assertEqual(self.orchestrator.state, CycleState.IDLE)
        self.assertEqual(self.orchestrator.last_result.status, "failed")

        self.backend.fail_writes = False
        self.burner.burn.side_effect = None
        self.assertEqual((await self.orchestrator.run_cycle()).status, "completed")

    async def test_every_save_respects_history_cap(self) -> None:
        self.backend.document = {
            "config": {"mint": "mint", "dev": "dev", "network": "mainnet", "decimals": 6},
            "totals": {},
            "history": [
                {"ts": index, "type": "burn", "signature": f"old-{index}", "link": ""}
                for index in range(200, 0, -1)
            ],
        }

        await self.orchestrator.run_cycle()

        self.assertEqual(self.backend.history_sizes, [200, 200, 200])
        self.assertEqual(self.backend.document["history"][0]["type"], "burn")
        self.assertEqual(self.backend.document["history"][1]["type"], "buy")

    async def test_concurrent_trigger_is_skipped_without_side_effects(self) -> None:
        release = asyncio.Event()

        async def slow_claim() -> ClaimResult:
            await release.wait()
            return _claim()

        self.claimer.claim.side_effect = slow_claim
        first = asyncio.create_task(self.orchestrator.run_cycle())
        while self.claimer.claim.await_count == 0:
            await asyncio.sleep(0)
        writes_before = self.backend.writes

        skipped = await self.orchestrator.run_cycle()
        forced = await self.orchestrator.force_sync()

        self.assertTrue(skipped.was_skipped)
        self.assertTrue(forced.was_skipped)
        self.assertEqual(self.backend.writes, writes_before)
        release.set()
        result = await first
        self.assertEqual(result.status, "completed")
        self.assertEqual(self.claimer.claim.await_count, 1)
        self.assertEqual(self.burner.burn.await_count, 1)

    async def test_totals_only_grow_across_cycles(self) -> None:
        previous: dict[str, float] = {}
        for _ in range(3):
            await self.orchestrator.run_cycle()
            totals = self.backend.document["totals"]
            for key, value in previous.items():
                self.assertGreaterEqual(totals[key], value)
            previous = dict(totals)
        self.assertEqual(previous["claims"], 3)

    async def test_history_stays_bounded(self) -> None:
        for _ in range(70):
            await self.orchestrator.run_cycle()

        history = self.backend.document["history"]
        self.assertEqual(len(history), 200)
        timestamps = [entry["ts"] for entry in history]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))

    async def test_force_sync_only_burns(self) -> None:
        result = await self.orchestrator.force_sync()

        self.assertEqual(result.kind, FORCE_SYNC)
        self.assertEqual(
            self.orchestrator.last_trace.names(),
            ["force-sync-start", "force-sync-burn", "force-sync-done"],
        )
        self.claimer.claim.assert_not_awaited()
        self.buyer.market_buy.assert_not_awaited()
        self.assertEqual(self.backend.document["last_run"]["kind"], FORCE_SYNC)

    async def test_force_sync_failure_is_traced(self) -> None:
        self.burner.burn.side_effect = SubmissionError("burn rejected")

        result = await self.orchestrator.force_sync()

        self.assertEqual(result.status, "partial")
        self.assertEqual(
            self.orchestrator.last_trace.names(),
            ["force-sync-start", "force-sync-error", "force-sync-done"],
        )

    async def test_cycle_summary_is_broadcast(self) -> None:
        queue = self.broadcaster.subscribe()

        await self.orchestrator.run_cycle()

        message = queue.get_nowait()
        self.assertTrue(message.startswith("event: cycle\n"))
        payload = json.loads(message.split("data: ", 1)[1])
        self.assertEqual(payload["status"], "completed")
        self.assertEqual(payload["totals"]["claims"], 1)


class AirdropPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.backend = MemoryBackend()
        store = StatsStore(
            backend=self.backend,
            logger=LOGGER,
            defaults=StatsConfig(mint="mint", dev="dev", network="devnet"),
            decimals_lookup=AsyncMock(return_value=6),
        )
        claimer = MagicMock()
        claimer.claim = AsyncMock(return_value=_claim())
        buyer = MagicMock()
        buyer.market_buy = AsyncMock(return_value=_buy())
        self.burner = MagicMock()
        self.burner.burn = AsyncMock(return_value=_burn())
        self.airdropper = MagicMock()
        self.airdropper.airdrop = AsyncMock(
            return_value=AirdropResult(
                signature="drop-sig",
                winner="winner-wallet",
                amount_raw=2_000_000,
                amount_ui=2.0,
                holders_count=12,
                program_id="prog",
            )
        )
        self.registry = EntrantRegistry(chain=MagicMock(), mint=Pubkey.new_unique(), rng=random.Random(2))
        self.orchestrator = CycleOrchestrator(
            logger=LOGGER,
            store=store,
            claimer=claimer,
            buyer=buyer,
            burner=self.burner,
            airdropper=self.airdropper,
            terminal_policy="airdrop",
            registry=self.registry,
        )

    async def test_airdrop_replaces_burn_and_rotates_keyword(self) -> None:
        self.registry.rotate()

        result = await self.orchestrator.run_cycle()

        self.assertEqual(result.status, "completed")
        self.burner.burn.assert_not_awaited()
        latest = self.backend.document["history"][0]
        self.assertEqual(latest["type"], "airdrop")
        self.assertEqual(latest["winner"], "winner-wallet")
        self.assertTrue(latest["link"].endswith("?cluster=devnet"))
        self.assertEqual(self.backend.document["totals"]["airdrops"], 1)
        self.assertIsNotNone(self.registry.keyword)
        self.assertEqual(self.registry.entrants, frozenset())
        self.assertIn("keyword", self.orchestrator.last_trace.names())

    async def test_force_sync_still_burns(self) -> None:
        await self.orchestrator.force_sync()

        self.burner.burn.assert_awaited_once()
        self.airdropper.airdrop.assert_not_awaited()

    def test_airdrop_policy_requires_executor(self) -> None:
        with self.assertRaises(ValueError):
            CycleOrchestrator(
                logger=LOGGER,
                store=MagicMock(),
                claimer=MagicMock(),
                buyer=MagicMock(),
                burner=MagicMock(),
                terminal_policy="airdrop",
            )


if __name__ == "__main__":
    unittest.main()
