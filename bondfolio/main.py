"""Main entry point for Bondfolio."""
import logging

from bondfolio.core.db import init_db, get_setting
from bondfolio.core.notifier import check_since_last_launch
from bondfolio.core.etfs import ETFStore
from bondfolio.core.store import CashFlowStore
from bondfolio.core.valuations import ValuationStore, take_snapshot
from bondfolio.ui import launch


def main():
    """Initialize and run the application."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("Initializing Bondfolio...")

    # Initialize database
    conn = init_db()
    print(f"✓ Database initialized at: {conn.execute('SELECT current_database()').fetchone()[0]}")

    # Check settings
    print(f"✓ Base currency: {get_setting(conn, 'base_currency')}")
    print(f"✓ Tax rate: {get_setting(conn, 'tax_rate')}")

    store = CashFlowStore(conn)
    bonds = store.list_bonds()
    print(f"✓ Loaded {len(bonds)} bonds")

    # Rebuild schedules so they follow the current generation rules
    failures = store.regenerate_all()
    if failures:
        print(f"⚠ Cash-flow regeneration failed for {len(failures)} bonds:")
        for bond_id, error in failures.items():
            print(f"  - {bond_id}: {error}")
    else:
        print("✓ Cash flows regenerated")

    etf_store = ETFStore(conn)
    print(f"✓ Loaded {len(etf_store.list_etfs())} ETFs")

    # Record where the portfolio stands at every launch
    valuations = take_snapshot(store, etf_store, ValuationStore(conn))
    print(f"✓ Recorded valuation snapshot ({len(valuations)} rows)")

    launch_message = check_since_last_launch(conn, bonds)
    if launch_message:
        print(f"\n{launch_message}")

    conn.close()

    # Launch Gradio UI
    print("\n🚀 Launching Gradio UI...")
    print("Access Bondfolio at: http://localhost:7860")
    launch(share=False, server_port=7860, launch_message=launch_message)


if __name__ == "__main__":
    main()
