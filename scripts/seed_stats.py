#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

from dotenv import load_dotenv

from flywheel.runtime import AppSettings, setup_logger
from flywheel.storage import Stats, StatsConfig, StatsStore, StorageSettings

REPO_ROOT = Path(__file__).resolve().parents[1]


def parse_args(storage_settings: StorageSettings, app_settings: AppSettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or reset the flywheel stats document on the configured backend.",
    )
    parser.add_argument(
        "--backend",
        choices=("file", "redis", "firestore"),
        default=storage_settings.backend,
        help="Stats backend. Defaults to STATS_BACKEND from env.",
    )
    parser.add_argument("--mint", default=app_settings.mint_address)
    parser.add_argument("--dev", default=app_settings.dev_public_key)
    parser.add_argument("--network", choices=("mainnet", "devnet"), default=app_settings.network)
    parser.add_argument("--decimals", type=int, default=None)
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Overwrite an existing document with zeroed totals and empty history.",
    )
    parser.add_argument(
        "--print-only",
        action="store_true",
        help="Print the resolved document without writing it.",
    )
    return parser.parse_args()


def resolve_credentials_path(raw_path: str) -> str:
    path = raw_path.strip()
    if path.startswith("/app/"):
        mapped = REPO_ROOT / path.removeprefix("/app/")
        if mapped.exists():
            return str(mapped)
    return path


async def seed(args: argparse.Namespace, storage_settings: StorageSettings) -> None:
    logger = setup_logger("flywheel.seed")
    storage_settings.backend = args.backend
    store = StatsStore.from_settings(
        storage_settings,
        logger=logger,
        defaults=StatsConfig(mint=args.mint, dev=args.dev, network=args.network),
    )

    payload = Stats.defaults(mint=args.mint, dev=args.dev, network=args.network)
    payload.config.decimals = args.decimals

    print(f"[info] backend={args.backend}")
    print("[info] payload=")
    print(json.dumps(payload.to_dict(), ensure_ascii=False, indent=2))
    if args.print_only:
        print("[info] print-only mode: skipped write")
        return

    await store.connect()
    try:
        existing = await store.load()
        if existing.history or existing.last_run is not None:
            if not args.replace:
                print("[info] stats document already has activity, pass --replace to reset it")
                return
        await store.save(payload)
    finally:
        await store.close()

    print("[ok] stats document seeded")


def main() -> None:
    load_dotenv(REPO_ROOT / ".env")
    credentials_path = resolve_credentials_path(os.getenv("FIREBASE_CREDENTIALS", ""))
    if credentials_path:
        os.environ["FIREBASE_CREDENTIALS"] = credentials_path

    storage_settings = StorageSettings.from_env()
    app_settings = AppSettings.from_env()
    args = parse_args(storage_settings, app_settings)
    if args.backend == "firestore" and not storage_settings.firestore_project_id:
        raise ValueError("FIRESTORE_PROJECT_ID is required for the firestore backend.")
    asyncio.run(seed(args, storage_settings))


if __name__ == "__main__":
    main()
