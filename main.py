from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass

import uvicorn
from dotenv import load_dotenv

from flywheel.api import create_app
from flywheel.chain import SolanaRpcClient, load_keypair, parse_pubkey
from flywheel.common import ConfigurationError, log_event
from flywheel.pipeline import CycleOrchestrator, EventBroadcaster
from flywheel.runtime import AppSettings, bootstrap_dependencies, run_cycle_loop, setup_logger
from flywheel.storage import StatsConfig, StatsStore, StorageSettings
from flywheel.trading import (
    AirdropExecutor,
    BalanceDeltaMeasurer,
    BurnExecutor,
    EntrantRegistry,
    HolderWeightSelector,
    JupiterSwapClient,
    MarketBuyer,
    PumpFeeClaimer,
    PumpPortalClient,
)


@dataclass(slots=True)
class SigningStack:
    orchestrator: CycleOrchestrator
    registry: EntrantRegistry | None
    jupiter: JupiterSwapClient
    pumpportal: PumpPortalClient


def build_signing_stack(
    *,
    logger: logging.Logger,
    settings: AppSettings,
    chain: SolanaRpcClient,
    store: StatsStore,
    broadcaster: EventBroadcaster,
) -> SigningStack:
    settings.require_signing()
    signer = load_keypair(settings.signer_secret_key)
    owner = signer.pubkey()
    mint = parse_pubkey(settings.mint_address, field_name="MINT_ADDRESS")

    jupiter = JupiterSwapClient(
        logger=logger,
        chain=chain,
        quote_url=settings.jupiter_quote_api,
        swap_url=settings.jupiter_swap_api,
        api_key=settings.jupiter_api_key,
        timeout_seconds=settings.http_timeout_seconds,
        prioritization_fee_lamports=settings.prioritization_fee_lamports,
    )
    pumpportal = PumpPortalClient(
        logger=logger,
        chain=chain,
        api_url=settings.pumpportal_api,
        timeout_seconds=settings.http_timeout_seconds,
        slippage_pct=settings.pump_slippage_pct,
        priority_fee_sol=settings.priority_fee_sol,
    )
    measurer = BalanceDeltaMeasurer(
        logger=logger,
        chain=chain,
        owner=owner,
        mint=mint,
        receipt_attempts=settings.receipt_poll_attempts,
        receipt_interval_seconds=settings.receipt_poll_interval_seconds,
        balance_attempts=settings.balance_poll_attempts,
        balance_interval_seconds=settings.balance_poll_interval_seconds,
    )
    claimer = PumpFeeClaimer(
        logger=logger,
        chain=chain,
        pumpportal=pumpportal,
        signer=signer,
        confirm_timeout_seconds=settings.confirm_timeout_seconds,
    )
    buyer = MarketBuyer(
        logger=logger,
        chain=chain,
        jupiter=jupiter,
        pumpportal=pumpportal,
        measurer=measurer,
        signer=signer,
        mint=settings.mint_address,
        sol_reserve_lamports=settings.sol_reserve_lamports,
        min_swap_lamports=settings.min_swap_lamports,
        slippage_bps=settings.slippage_bps,
        min_pump_sol=settings.min_pump_sol,
        target_pump_sol=settings.target_pump_sol,
        confirm_timeout_seconds=settings.confirm_timeout_seconds,
    )
    burner = BurnExecutor(
        logger=logger,
        chain=chain,
        signer=signer,
        mint=mint,
        priority_fee_micro_lamports=settings.priority_fee_micro_lamports,
        settle_attempts=settings.burn_settle_attempts,
        settle_interval_seconds=settings.burn_settle_interval_seconds,
        confirm_timeout_seconds=settings.confirm_timeout_seconds,
    )

    registry: EntrantRegistry | None = None
    airdropper: AirdropExecutor | None = None
    if settings.terminal_policy == "airdrop":
        if settings.entry_mode == "keyword":
            registry = EntrantRegistry(chain=chain, mint=mint)
            registry.rotate()
        selector = HolderWeightSelector(
            logger=logger,
            chain=chain,
            mint=settings.mint_address,
            own_wallet=str(owner),
            entry_mode=settings.entry_mode,
            denylist=settings.airdrop_denylist,
            registry=registry,
        )
        airdropper = AirdropExecutor(
            logger=logger,
            chain=chain,
            signer=signer,
            mint=mint,
            selector=selector,
            priority_fee_micro_lamports=settings.priority_fee_micro_lamports,
            settle_attempts=settings.burn_settle_attempts,
            settle_interval_seconds=settings.burn_settle_interval_seconds,
            confirm_timeout_seconds=settings.confirm_timeout_seconds,
        )

    orchestrator = CycleOrchestrator(
        logger=logger,
        store=store,
        claimer=claimer,
        buyer=buyer,
        burner=burner,
        airdropper=airdropper,
        terminal_policy=settings.terminal_policy,
        registry=registry,
        broadcaster=broadcaster,
    )
    return SigningStack(orchestrator=orchestrator, registry=registry, jupiter=jupiter, pumpportal=pumpportal)


def signer_public_key(settings: AppSettings) -> str:
    if settings.dev_public_key or not settings.signer_secret_key:
        return settings.dev_public_key
    try:
        return str(load_keypair(settings.signer_secret_key).pubkey())
    except ConfigurationError:
        return ""


async def main() -> None:
    load_dotenv()
    logger = setup_logger()

    app_settings = AppSettings.from_env()
    storage_settings = StorageSettings.from_env()

    chain = SolanaRpcClient(
        logger=logger,
        rpc_url=app_settings.rpc_url,
        timeout_seconds=app_settings.http_timeout_seconds,
        send_max_attempts=app_settings.send_max_attempts,
        send_retry_backoff_seconds=app_settings.send_retry_backoff_seconds,
        confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
        confirm_poll_interval_seconds=app_settings.confirm_poll_interval_seconds,
    )
    store = StatsStore.from_settings(
        storage_settings,
        logger=logger,
        defaults=StatsConfig(
            mint=app_settings.mint_address,
            dev=signer_public_key(app_settings),
            network=app_settings.network,
        ),
        decimals_lookup=chain.get_mint_decimals,
        decimals_attempts=app_settings.decimals_lookup_attempts,
    )
    broadcaster = EventBroadcaster(logger=logger)

    stack: SigningStack | None = None
    try:
        stack = build_signing_stack(
            logger=logger,
            settings=app_settings,
            chain=chain,
            store=store,
            broadcaster=broadcaster,
        )
    except ConfigurationError as error:
        log_event(
            logger,
            level="warning",
            event="signing_disabled",
            message="Signing not configured, serving public endpoints only",
            error=str(error),
            missing=app_settings.missing_signing_fields(),
        )

    clients = [chain] if stack is None else [chain, stack.jupiter, stack.pumpportal]
    orchestrator = stack.orchestrator if stack is not None else None

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    await bootstrap_dependencies(
        logger=logger,
        stop_event=stop_event,
        app_settings=app_settings,
        store=store,
        clients=clients,
    )

    app = create_app(
        logger=logger,
        settings=app_settings,
        store=store,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
        registry=stack.registry if stack is not None else None,
    )
    server = uvicorn.Server(
        uvicorn.Config(app, host=app_settings.host, port=app_settings.port, log_config=None)
    )
    # uvicorn would otherwise replace our signal handlers
    server.install_signal_handlers = lambda: None

    log_event(
        logger,
        level="info",
        event="flywheel_started",
        message="Flywheel process started",
        backend=store.backend_name,
        network=app_settings.network,
        signing=orchestrator is not None,
        terminal_policy=app_settings.terminal_policy,
        port=app_settings.port,
    )

    tasks = [asyncio.create_task(server.serve(), name="http")]
    if app_settings.enable_scheduler and orchestrator is not None:
        tasks.append(
            asyncio.create_task(
                run_cycle_loop(
                    logger=logger,
                    stop_event=stop_event,
                    app_settings=app_settings,
                    orchestrator=orchestrator,
                ),
                name="scheduler",
            )
        )

    try:
        stop_waiter = asyncio.create_task(stop_event.wait(), name="stop")
        done, _pending = await asyncio.wait([stop_waiter, *tasks], return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task is not stop_waiter and task.exception() is not None:
                log_event(
                    logger,
                    level="error",
                    event="task_crashed",
                    message="Background task exited with error",
                    task=task.get_name(),
                    error=str(task.exception()),
                )
        stop_event.set()
        stop_waiter.cancel()
    finally:
        server.should_exit = True
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)

        for client in clients:
            with contextlib.suppress(Exception):
                await client.close()
        with contextlib.suppress(Exception):
            await store.close()

        log_event(logger, level="info", event="shutdown_completed", message="Shutdown completed")


if __name__ == "__main__":
    asyncio.run(main())
