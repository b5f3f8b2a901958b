"""Seed or inspect entries in the local comparison snapshot."""

from __future__ import annotations

import argparse

from solana_tranche_watch.config.settings import get_app_config
from solana_tranche_watch.core.tranches import classify_market_cap
from solana_tranche_watch.datalake.snapshot_store import JsonSnapshotStore


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Seed a market cap into the snapshot so the next run sees a tranche change."
    )
    parser.add_argument("mint", nargs="?", help="Token mint address")
    parser.add_argument("market_cap", nargs="?", type=float, help="Market cap to record")
    parser.add_argument("--remove", action="store_true", help="Drop the mint from the snapshot instead")
    parser.add_argument("--path", default=None, help="Snapshot path (defaults to storage.snapshot_path)")
    args = parser.parse_args()

    config = get_app_config()
    store = JsonSnapshotStore(args.path or config.storage.snapshot_path)
    snapshot = store.load()

    if args.mint is None:
        for mint, cap in sorted(snapshot.items(), key=lambda item: item[1], reverse=True):
            print(f"{mint}\t{cap}\t{classify_market_cap(cap)}")
        return

    if args.remove:
        if snapshot.pop(args.mint, None) is None:
            raise SystemExit(f"Mint {args.mint} is not in {store.path}")
        store.save(snapshot)
        print(f"Removed {args.mint} from {store.path}")
        return

    if args.market_cap is None:
        raise SystemExit("market_cap is required when seeding a mint")
    snapshot[args.mint] = args.market_cap
    store.save(snapshot)
    print(
        f"Seeded {args.mint} at {args.market_cap} ({classify_market_cap(args.market_cap)})"
        f" in {store.path}"
    )


if __name__ == "__main__":
    main()
