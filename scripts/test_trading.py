from __future__ import annotations

import logging
import unittest
from unittest.mock import AsyncMock, MagicMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from flywheel.chain import (
    ConfirmationOutcome,
    LatestBlockhash,
    SimulationResult,
    TokenAmount,
    TokenBalanceEntry,
    TransactionReceipt,
    associated_token_accounts,
)
from flywheel.common import SubmissionError, TransientExternalError
from flywheel.trading import (
    AirdropExecutor,
    BalanceDeltaMeasurer,
    BurnExecutor,
    HolderWeight,
    MarketBuyer,
    PumpFeeClaimer,
    probe_holding,
    receipt_delta,
    size_fallback_buy,
)

LOGGER = logging.getLogger("test.trading")


def _confirmed(signature: str) -> ConfirmationOutcome:
    return ConfirmationOutcome(signature=signature, status="confirmed")


def _chain() -> MagicMock:
    chain = MagicMock()
    chain.get_balance = AsyncMock(return_value=0)
    chain.get_token_account_balance = AsyncMock(return_value=None)
    chain.get_receipt = AsyncMock(return_value=None)
    chain.get_latest_blockhash = AsyncMock(
        return_value=LatestBlockhash(blockhash=Hash.default(), last_valid_block_height=100)
    )
    chain.simulate = AsyncMock(return_value=SimulationResult(err=None))
    chain.submit = AsyncMock(return_value="burn-sig")
    chain.confirm = AsyncMock(side_effect=lambda signature, **_kwargs: _confirmed(signature))
    return chain


class FallbackSizingTests(unittest.TestCase):
    def test_keeps_fee_margin(self) -> None:
        sizing = size_fallback_buy(spendable_sol=0.1, min_sol=0.01)

        self.assertFalse(sizing.skipped)
        self.assertAlmostEqual(sizing.amount_sol, 0.0995)

    def test_below_minimum_is_skipped(self) -> None:
        sizing = size_fallback_buy(spendable_sol=0.005, min_sol=0.01)

        self.assertTrue(sizing.skipped)
        self.assertEqual(sizing.reason, "below_min_pump_sol")
        self.assertEqual(sizing.amount_sol, 0.0)

    def test_never_exceeds_spendable(self) -> None:
        sizing = size_fallback_buy(spendable_sol=0.0098, min_sol=0.01)

        self.assertFalse(sizing.skipped)
        self.assertLessEqual(sizing.amount_sol, 0.0098)

    def test_target_caps_amount(self) -> None:
        sizing = size_fallback_buy(spendable_sol=1.0, min_sol=0.01, target_sol=0.05)

        self.assertAlmostEqual(sizing.amount_sol, 0.0495)


class MarketBuyerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.chain = _chain()
        self.chain.get_balance.return_value = 1_020_000_000
        self.jupiter = MagicMock()
        self.jupiter.quote = AsyncMock(return_value={"outAmount": "1000"})
        self.swap_transaction = MagicMock(name="swap_transaction")
        self.jupiter.build_swap = AsyncMock(return_value=self.swap_transaction)
        self.chain.submit.return_value = "jup-sig"
        self.pumpportal = MagicMock()
        self.pumpportal.buy = AsyncMock(return_value="pump-sig")
        self.measurer = MagicMock()
        self.measurer.snapshot = AsyncMock(return_value=100)
        self.measurer.measure = AsyncMock(return_value=5_000)
        self.buyer = MarketBuyer(
            logger=LOGGER,
            chain=self.chain,
            jupiter=self.jupiter,
            pumpportal=self.pumpportal,
            measurer=self.measurer,
            signer=Keypair(),
            mint=str(Pubkey.new_unique()),
            sol_reserve_lamports=20_000_000,
            min_swap_lamports=1_000_000,
            slippage_bps=300,
            min_pump_sol=0.01,
            target_pump_sol=0.0,
            confirm_timeout_seconds=1.0,
        )

    async def test_primary_route_spends_everything_above_reserve(self) -> None:
        result = await self.buyer.market_buy()

        self.assertEqual(result.route, "jupiter")
        self.assertEqual(result.signature, "jup-sig")
        self.assertAlmostEqual(result.amount_in_sol, 1.0)
        self.assertEqual(result.tokens_out_raw, 5_000)
        self.assertEqual(self.jupiter.quote.await_args.kwargs["amount"], 1_000_000_000)
        self.chain.submit.assert_awaited_once_with(self.swap_transaction)
        self.measurer.measure.assert_awaited_once_with("jup-sig", before_total=100)
        self.pumpportal.buy.assert_not_awaited()

    async def test_no_route_falls_back_to_pumpportal(self) -> None:
        self.jupiter.quote.return_value = None

        result = await self.buyer.market_buy()

        self.assertEqual(result.route, "pumpportal")
        self.assertEqual(result.signature, "pump-sig")
        self.assertAlmostEqual(result.amount_in_sol, 0.9995)
        self.jupiter.build_swap.assert_not_awaited()
        self.chain.submit.assert_not_awaited()

    async def test_quote_error_falls_back_to_pumpportal(self) -> None:
        self.jupiter.quote.side_effect = TransientExternalError("quote 503")

        result = await self.buyer.market_buy()

        self.assertEqual(result.route, "pumpportal")

    async def test_swap_build_error_falls_back_to_pumpportal(self) -> None:
        self.jupiter.build_swap.side_effect = ValueError("bad swapTransaction")

        result = await self.buyer.market_buy()

        self.assertEqual(result.route, "pumpportal")
        self.chain.submit.assert_not_awaited()

    async def test_submission_error_does_not_fall_back(self) -> None:
        self.chain.submit.side_effect = SubmissionError("preflight rejected")

        with self.assertRaises(SubmissionError):
            await self.buyer.market_buy()
        self.pumpportal.buy.assert_not_awaited()

    async def test_any_error_after_submission_does_not_fall_back(self) -> None:
        self.chain.submit.side_effect = ValueError("unreadable sendTransaction reply")

        with self.assertRaises(ValueError):
            await self.buyer.market_buy()
        self.pumpportal.buy.assert_not_awaited()

    async def test_dust_balance_skips_buy(self) -> None:
        self.chain.get_balance.return_value = 20_500_000

        self.assertIsNone(await self.buyer.market_buy())
        self.jupiter.quote.assert_not_awaited()
        self.pumpportal.buy.assert_not_awaited()

    async def test_failed_transaction_raises(self) -> None:
        self.chain.confirm.side_effect = None
        self.chain.confirm.return_value = ConfirmationOutcome(signature="jup-sig", status="failed", err={"x": 1})

        with self.assertRaises(SubmissionError):
            await self.buyer.market_buy()
        self.measurer.measure.assert_not_awaited()

    async def test_unconfirmed_buy_with_observed_tokens_is_recorded(self) -> None:
        self.chain.confirm.side_effect = None
        self.chain.confirm.return_value = ConfirmationOutcome(signature="jup-sig", status="timeout")

        result = await self.buyer.market_buy()

        self.assertEqual(result.tokens_out_raw, 5_000)

    async def test_unconfirmed_buy_without_tokens_raises(self) -> None:
        self.chain.confirm.side_effect = None
        self.chain.confirm.return_value = ConfirmationOutcome(signature="jup-sig", status="timeout")
        self.measurer.measure.return_value = 0

        with self.assertRaises(SubmissionError):
            await self.buyer.market_buy()


class DeltaMeasurerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.chain = _chain()
        self.owner = Pubkey.new_unique()
        self.mint = Pubkey.new_unique()
        self.measurer = BalanceDeltaMeasurer(
            logger=LOGGER,
            chain=self.chain,
            owner=self.owner,
            mint=self.mint,
            receipt_attempts=2,
            receipt_interval_seconds=0,
            balance_attempts=2,
            balance_interval_seconds=0,
        )

    def _entry(self, amount: int) -> TokenBalanceEntry:
        return TokenBalanceEntry(account_index=1, mint=str(self.mint), owner=str(self.owner), amount=amount)

    async def test_receipt_delta_wins(self) -> None:
        self.chain.get_receipt.return_value = TransactionReceipt(
            signature="sig",
            err=None,
            pre_token_balances=[self._entry(10)],
            post_token_balances=[self._entry(250)],
        )

        self.assertEqual(await self.measurer.measure("sig", before_total=0), 240)
        self.chain.get_token_account_balance.assert_not_awaited()

    async def test_balance_difference_used_without_receipt(self) -> None:
        self.chain.get_token_account_balance.return_value = TokenAmount(amount=400, decimals=6)

        # both token program accounts report 400
        self.assertEqual(await self.measurer.measure("sig", before_total=500), 300)

    async def test_errors_everywhere_yield_zero(self) -> None:
        self.chain.get_receipt.side_effect = TransientExternalError("rpc down")
        self.chain.get_token_account_balance.side_effect = TransientExternalError("rpc down")

        self.assertEqual(await self.measurer.snapshot(), 0)
        self.assertEqual(await self.measurer.measure("sig", before_total=0), 0)

    def test_receipt_delta_ignores_other_owners_and_never_negative(self) -> None:
        mint = str(self.mint)
        owner = str(self.owner)
        receipt = TransactionReceipt(
            signature="sig",
            err=None,
            pre_token_balances=[self._entry(900)],
            post_token_balances=[
                self._entry(100),
                TokenBalanceEntry(account_index=2, mint=mint, owner="someone-else", amount=10_000),
            ],
        )

        self.assertEqual(receipt_delta(receipt, mint=mint, owner=owner), 0)
        self.assertEqual(receipt_delta(None, mint=mint, owner=owner), 0)


class BurnTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.chain = _chain()
        self.signer = Keypair()
        self.mint = Pubkey.new_unique()
        self.accounts = associated_token_accounts(self.signer.pubkey(), self.mint)
        self.burner = BurnExecutor(
            logger=LOGGER,
            chain=self.chain,
            signer=self.signer,
            mint=self.mint,
            settle_attempts=2,
            settle_interval_seconds=0,
            confirm_timeout_seconds=1.0,
        )

    def _balances(self, *, token_2022: int, classic: int) -> None:
        by_account = {
            str(self.accounts[TOKEN_2022_PROGRAM_ID]): TokenAmount(amount=token_2022, decimals=6),
            str(self.accounts[TOKEN_PROGRAM_ID]): TokenAmount(amount=classic, decimals=6),
        }
        self.chain.get_token_account_balance.side_effect = lambda account: by_account.get(account)

    async def test_token_2022_account_is_preferred(self) -> None:
        self._balances(token_2022=5, classic=7)

        holding = await probe_holding(self.chain, owner=self.signer.pubkey(), mint=self.mint)

        self.assertEqual(holding.program_id, TOKEN_2022_PROGRAM_ID)
        self.assertEqual(holding.balance.amount, 5)

    async def test_classic_account_used_when_token_2022_empty(self) -> None:
        self._balances(token_2022=0, classic=7)

        holding = await probe_holding(self.chain, owner=self.signer.pubkey(), mint=self.mint)

        self.assertEqual(holding.program_id, TOKEN_PROGRAM_ID)

    async def test_nothing_to_burn_is_a_noop(self) -> None:
        self._balances(token_2022=0, classic=0)

        self.assertIsNone(await self.burner.burn())
        self.chain.submit.assert_not_awaited()

    async def test_burns_entire_balance(self) -> None:
        self._balances(token_2022=0, classic=2_500_000)

        result = await self.burner.burn()

        self.assertEqual(result.signature, "burn-sig")
        self.assertEqual(result.amount_raw, 2_500_000)
        self.assertAlmostEqual(result.amount_ui, 2.5)
        self.assertEqual(result.program_id, str(TOKEN_PROGRAM_ID))
        self.chain.submit.assert_awaited_once()

    async def test_simulation_error_does_not_block_submit(self) -> None:
        self._balances(token_2022=10, classic=0)
        self.chain.simulate.side_effect = TransientExternalError("simulate timeout")

        result = await self.burner.burn()

        self.assertEqual(result.amount_raw, 10)

    async def test_unconfirmed_burn_raises(self) -> None:
        self._balances(token_2022=10, classic=0)
        self.chain.confirm.side_effect = None
        self.chain.confirm.return_value = ConfirmationOutcome(signature="burn-sig", status="timeout")

        with self.assertRaises(SubmissionError):
            await self.burner.burn()


class AirdropTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.chain = _chain()
        self.chain.submit.return_value = "drop-sig"
        self.signer = Keypair()
        self.mint = Pubkey.new_unique()
        accounts = associated_token_accounts(self.signer.pubkey(), self.mint)
        classic = str(accounts[TOKEN_PROGRAM_ID])
        self.chain.get_token_account_balance.side_effect = lambda account: (
            TokenAmount(amount=3_000_000, decimals=6) if account == classic else None
        )
        self.winner = str(Pubkey.new_unique())
        self.selector = MagicMock()
        self.selector.select = AsyncMock(return_value=(HolderWeight(owner=self.winner, weight=1.0), 4))
        self.airdropper = AirdropExecutor(
            logger=LOGGER,
            chain=self.chain,
            signer=self.signer,
            mint=self.mint,
            selector=self.selector,
            settle_attempts=1,
            settle_interval_seconds=0,
            confirm_timeout_seconds=1.0,
        )

    async def test_sends_full_balance_to_winner(self) -> None:
        result = await self.airdropper.airdrop()

        self.assertEqual(result.signature, "drop-sig")
        self.assertEqual(result.winner, self.winner)
        self.assertEqual(result.amount_raw, 3_000_000)
        self.assertAlmostEqual(result.amount_ui, 3.0)
        self.assertEqual(result.holders_count, 4)
        self.chain.submit.assert_awaited_once()

    async def test_creates_winner_account_under_holding_program(self) -> None:
        await self.airdropper.airdrop()

        transaction = self.chain.submit.await_args.args[0]
        keys = transaction.message.account_keys
        winner_account = associated_token_accounts(Pubkey.from_string(self.winner), self.mint)[TOKEN_PROGRAM_ID]
        self.assertIn(winner_account, keys)
        self.assertIn(ASSOCIATED_TOKEN_PROGRAM_ID, keys)
        self.assertNotIn(TOKEN_2022_PROGRAM_ID, keys)

    async def test_no_eligible_holders_is_a_noop(self) -> None:
        self.selector.select.return_value = None

        self.assertIsNone(await self.airdropper.airdrop())
        self.chain.submit.assert_not_awaited()

    async def test_empty_wallet_skips_holder_lookup(self) -> None:
        self.chain.get_token_account_balance.side_effect = None
        self.chain.get_token_account_balance.return_value = None

        self.assertIsNone(await self.airdropper.airdrop())
        self.selector.select.assert_not_awaited()


class ClaimTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.chain = _chain()
        self.pumpportal = MagicMock()
        self.pumpportal.collect_creator_fee = AsyncMock(return_value="claim-sig")
        self.claimer = PumpFeeClaimer(
            logger=LOGGER,
            chain=self.chain,
            pumpportal=self.pumpportal,
            signer=Keypair(),
            confirm_timeout_seconds=1.0,
        )

    async def test_claimed_amount_is_balance_increase(self) -> None:
        self.chain.get_balance.side_effect = [1_000, 51_000]

        result = await self.claimer.claim()

        self.assertEqual(result.signature, "claim-sig")
        self.assertEqual(result.lamports_claimed, 50_000)

    async def test_empty_claim_reports_zero(self) -> None:
        self.chain.get_balance.side_effect = [1_000, 995]

        result = await self.claimer.claim()

        self.assertEqual(result.lamports_claimed, 0)

    async def test_failed_claim_raises(self) -> None:
        self.chain.confirm.side_effect = None
        self.chain.confirm.return_value = ConfirmationOutcome(signature="claim-sig", status="failed", err="x")

        with self.assertRaises(SubmissionError):
            await self.claimer.claim()


if __name__ == "__main__":
    unittest.main()
