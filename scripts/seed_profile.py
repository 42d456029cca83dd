"""Seed a holder profile (and optionally a position) in the local SQLite state."""

from __future__ import annotations

import argparse
import json
from decimal import Decimal
from pathlib import Path

from valuestor_trader.config.settings import get_app_config
from valuestor_trader.datalake.schemas import HolderProfile, HolderValues, Position
from valuestor_trader.datalake.storage import SQLiteStateStore
from valuestor_trader.utils.constants import utc_now


def main() -> None:
    parser = argparse.ArgumentParser(description="Register a holder for dry-run testing.")
    parser.add_argument("address", help="Holder wallet address")
    parser.add_argument("values_file", type=Path, help="JSON file with the holder's camelCase values document")
    parser.add_argument("--inactive", action="store_true", help="Store the profile as inactive")
    parser.add_argument("--token", default=None, help="Token address for a synthetic position")
    parser.add_argument("--amount", type=Decimal, default=None, help="Token amount for the position")
    parser.add_argument("--price", type=Decimal, default=None, help="Average buy price in ETH")
    args = parser.parse_args()

    config = get_app_config()
    store = SQLiteStateStore(
        config.storage.database_path,
        execution_retention_days=config.storage.execution_retention_days,
    )

    values = HolderValues.from_dict(json.loads(args.values_file.read_text()))
    existing = store.get_profile(args.address)
    profile = HolderProfile(address=args.address, values=values, is_active=not args.inactive)
    if existing is not None:
        profile.id = existing.id
        profile.created_at = existing.created_at
    store.upsert_profile(profile)
    print(
        f"Seeded {'inactive' if args.inactive else 'active'} profile for {args.address}"
        f" (automated={profile.automated})"
    )

    if args.token:
        if args.amount is None or args.price is None:
            raise SystemExit("--amount and --price are required with --token")
        now = utc_now()
        store.upsert_position(
            Position(
                holder=args.address,
                token=args.token,
                amount=args.amount,
                average_buy_price=args.price,
                total_invested=args.amount * args.price,
                first_buy_at=now,
                last_update_at=now,
            )
        )
        print(f"Seeded position of {args.amount} {args.token} at {args.price} ETH")


if __name__ == "__main__":
    main()
