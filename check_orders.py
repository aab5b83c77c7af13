"""Print per-wallet order counts, open value and balances from the ledger."""
import asyncio
import os
import sys

from dotenv import load_dotenv

from gridfleet.orchestrator.queries import FleetQueries
from gridfleet.state.ledger_store import LedgerStore

load_dotenv()


async def main(db_path):
    ledger = LedgerStore(db_path)
    queries = FleetQueries(ledger)
    try:
        wallets = await ledger.list_wallets()
        print(f"Wallets: {len(wallets)}")
        for record in wallets:
            summary = await queries.wallet_summary(record.address)
            print(f"\n[{record.index}] {record.address} {record.trading_pool}")
            print(f"  grid pairs placed: {summary['placed_initial_orders']}")
            for status, n in sorted(summary["orders_by_status"].items()):
                print(f"  {status}: {n}")
            print(f"  open value: ${summary['open_usd_value']:.2f}")
            for symbol, amount in sorted(summary["balances"].items()):
                print(f"  {symbol}: {amount}")

        errors = await queries.recent_errors(limit=10)
        if errors:
            print("\nRecent errors:")
            for e in errors:
                print(f"  {e['error_type']} {e['wallet_address'] or '-'}: {e['message']}")
    finally:
        await ledger.close()


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("GF_DB_PATH", "state/gridfleet.db")
    if not os.path.exists(path):
        print(f"Ledger not found: {path}")
        sys.exit(1)
    asyncio.run(main(path))
