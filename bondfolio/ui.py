"""Gradio UI for Bondfolio."""
import logging
import gradio as gr
import pandas as pd
from dataclasses import replace
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from bondfolio.core.db import init_db, get_db_path, get_setting, set_setting
from bondfolio.core.store import CashFlowStore
from bondfolio.core.etfs import ETFStore, lot_annual_yield, refresh_prices
from bondfolio.core.valuations import ValuationStore, take_snapshot
from bondfolio.core.models import ETF, BondSortOption, BondTerms, ETFLot, FlowMode, TaxMode
from bondfolio.core.aggregation import (
    ALL_CUSTODIANS,
    DEFAULT_TAX_RATE,
    active_bonds,
    build_snapshot,
    custodians,
    event_flow,
    events_by_bond,
    filter_by_custodian,
    global_months,
    global_years,
    matured_groups,
    portfolio_summary,
    sort_bonds,
    totals_by_period,
)
from bondfolio.core.ytm_series import build_series
from bondfolio.core.exchange import ETFS_FILE, export_bonds, export_etfs, import_bonds, import_etfs, validate_export
from bondfolio.core.errors import BondfolioError
from bondfolio.core.formatting import format_currency, format_date, format_flow, format_month, format_percent
from bondfolio.adapters import ing_bonds, ing_etfs

logger = logging.getLogger(__name__)

BOND_COLUMNS = ["ID", "Name", "Issuer", "ISIN", "Nominal", "Coupon", "Price", "Acquired", "Maturity", "Custodian", "YTM"]
ETF_COLUMNS = ["ID", "Name", "ISIN", "WKN", "Shares", "Last Price", "Cost", "Value", "Profit", "Gain"]
LOT_COLUMNS = ["ETF", "Acquired", "Shares", "Price", "Cost", "Annual Gain / Share"]
VALUATION_COLUMNS = ["Taken", "Asset", "Custodian", "Invested", "Interest", "Capital Gains"]

# Global stores, sharing one connection
store = None
etf_store = None
valuation_store = None


def get_store() -> CashFlowStore:
    """Get or initialize the bond store."""
    global store
    if store is None:
        store = CashFlowStore(init_db())
    return store


def get_etf_store() -> ETFStore:
    global etf_store
    if etf_store is None:
        etf_store = ETFStore(get_store().conn)
    return etf_store


def get_valuation_store() -> ValuationStore:
    global valuation_store
    if valuation_store is None:
        valuation_store = ValuationStore(get_store().conn)
    return valuation_store


def _currency() -> str:
    return get_setting(get_store().conn, "base_currency") or "EUR"


def _tax_rate() -> Decimal:
    value = get_setting(get_store().conn, "tax_rate")
    return Decimal(value) if value else DEFAULT_TAX_RATE


def _parse_date(text, label: str) -> date:
    try:
        return date.fromisoformat(str(text).strip())
    except ValueError:
        raise BondfolioError(f"{label} must be a date like 2030-06-15, got {text!r}") from None


def _to_decimal(value, label: str) -> Decimal:
    if value is None or value == "":
        raise BondfolioError(f"{label} is required")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise BondfolioError(f"{label} must be a number, got {value!r}") from None


def _custodian_choices():
    return gr.update(choices=custodians(get_store().list_bonds()), value=ALL_CUSTODIANS)


def get_overview_data(custodian=ALL_CUSTODIANS, sort_option=BondSortOption.MATURITY_DATE.value):
    """Get portfolio summary and bond table."""
    store = get_store()
    currency = _currency()

    bonds = filter_by_custodian(active_bonds(store.list_bonds()), custodian)
    bonds = sort_bonds(bonds, BondSortOption(sort_option))
    summary = portfolio_summary(bonds, store.cash_flows())

    summary_text = f"""
## Portfolio Summary

**Number of Bonds:** {summary.bond_count}
**Total Acquisition Cost:** {format_currency(summary.acquisition_cost, currency)}
**Total Principal:** {format_currency(summary.principal, currency)}
**Projected Interest:** {format_currency(summary.projected_interest, currency)}
**Weighted YTM:** {format_percent(summary.weighted_ytm)}
"""

    if not bonds:
        return summary_text, pd.DataFrame(columns=BOND_COLUMNS)

    data = []
    for bond in bonds:
        data.append({
            "ID": bond.id,
            "Name": bond.name,
            "Issuer": bond.issuer,
            "ISIN": bond.isin,
            "Nominal": format_currency(bond.par_value, currency),
            "Coupon": f"{bond.coupon_rate:.2f}%",
            "Price": format_currency(bond.initial_price, currency, 2),
            "Acquired": str(bond.acquisition_date),
            "Maturity": str(bond.maturity_date),
            "Custodian": bond.custodian,
            "YTM": format_percent(bond.yield_at_acquisition),
        })

    return summary_text, pd.DataFrame(data)


def lookup_isin(isin):
    """Prefill the bond form from the ING bond data API."""
    if not isin or not isin.strip():
        return "✗ Enter an ISIN first", gr.update(), gr.update(), gr.update(), gr.update(), gr.update()

    try:
        details = ing_bonds.fetch_bond_details(isin)
    except BondfolioError as e:
        return f"✗ Error: {str(e)}", gr.update(), gr.update(), gr.update(), gr.update(), gr.update()

    maturity = details.get("maturity_date")
    coupon = details.get("coupon_rate")
    return (
        f"✓ Found {details['name']}",
        details["name"],
        details["wkn"],
        details.get("issuer", gr.update()),
        maturity.isoformat() if maturity else gr.update(),
        float(coupon) if coupon is not None else gr.update(),
    )


def _bond_from_form(name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
                    maturity_date, acquisition_date, custodian) -> BondTerms:
    return BondTerms(
        name=(name or "").strip(),
        issuer=(issuer or "").strip(),
        isin=(isin or "").strip().upper(),
        wkn=(wkn or "").strip(),
        par_value=_to_decimal(par_value, "Nominal"),
        coupon_rate=_to_decimal(coupon_rate, "Coupon rate"),
        initial_price=_to_decimal(initial_price, "Acquisition price"),
        maturity_date=_parse_date(maturity_date, "Maturity date"),
        acquisition_date=_parse_date(acquisition_date, "Acquisition date"),
        custodian=(custodian or "").strip(),
    )


def add_bond(name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
             maturity_date, acquisition_date, custodian):
    """Add a new bond and generate its cash flows."""
    try:
        bond = _bond_from_form(name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
                               maturity_date, acquisition_date, custodian)
        events = get_store().add_bond(bond)
        return f"✓ Added bond: {bond.name} ({len(events)} cash flows)"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def load_bond(bond_id):
    """Load a bond into the edit form."""
    try:
        bond = get_store().get_bond((bond_id or "").strip())
    except BondfolioError as e:
        return (f"✗ Error: {str(e)}",) + (gr.update(),) * 10

    return (
        f"✓ Loaded {bond.name}",
        bond.name, bond.issuer, bond.isin, bond.wkn,
        float(bond.par_value), float(bond.coupon_rate), float(bond.initial_price),
        bond.maturity_date.isoformat(), bond.acquisition_date.isoformat(), bond.custodian,
    )


def edit_bond(bond_id, name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
              maturity_date, acquisition_date, custodian):
    """Replace a bond's terms; its cash flows are regenerated."""
    try:
        bond = _bond_from_form(name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
                               maturity_date, acquisition_date, custodian)
        bond = replace(bond, id=(bond_id or "").strip())
        get_store().update_bond(bond)
        return f"✓ Updated bond: {bond.name}"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def delete_bond(bond_id):
    try:
        get_store().delete_bond((bond_id or "").strip())
        return f"✓ Deleted bond {bond_id}"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def get_cash_flow_table(custodian=ALL_CUSTODIANS, view_mode="Monthly", display_option=FlowMode.BOTH.value):
    """Bonds by period matrix with pre-tax, tax and post-tax total rows, read from the stored schedules."""
    store = get_store()
    currency = _currency()
    mode = FlowMode(display_option)
    bonds = filter_by_custodian(active_bonds(store.list_bonds()), custodian)
    events = store.cash_flows()
    by_bond = events_by_bond(events)

    months = global_months(bonds)
    if view_mode == "Monthly":
        periods = months
        labels = [format_month(m) for m in months]
    else:
        periods = global_years(months)
        labels = [str(y) for y in periods]

    if not bonds or not periods:
        return pd.DataFrame(columns=["Bond"])

    rows = []
    for bond in bonds:
        row = {"Bond": bond.name}
        for label, period in zip(labels, periods):
            row[label] = format_flow(event_flow(by_bond.get(bond.id, ()), period).part(mode), currency)
        rows.append(row)

    total_rows = [("Total pre-taxes", TaxMode.NONE)]
    if mode == FlowMode.BOTH:
        total_rows += [("Taxes", TaxMode.TAX_ONLY), ("Total post-taxes", TaxMode.POST_TAX)]

    tax_rate = _tax_rate()
    for title, tax_mode in total_rows:
        row = {"Bond": title}
        totals = totals_by_period(bonds, periods, mode, tax_mode, tax_rate, events=events)
        for label, (_, total) in zip(labels, totals):
            row[label] = format_flow(total, currency)
        rows.append(row)

    return pd.DataFrame(rows)


def get_calendar(custodian=ALL_CUSTODIANS):
    """Upcoming coupons, principals and gains grouped by year, month and bond."""
    store = get_store()
    currency = _currency()
    bonds = filter_by_custodian(active_bonds(store.list_bonds()), custodian)
    today = date.today()

    events = [e for e in store.cash_flows() if e.date >= today]
    snapshot = build_snapshot(events, bonds)

    if not snapshot.years:
        return "No upcoming cash flows"

    lines = [f"## Upcoming Cash Flows ({format_currency(snapshot.total, currency)})"]
    for year_group in snapshot.years:
        lines.append(f"\n### {year_group.year}: {format_currency(year_group.total, currency)}")
        for month_group in year_group.months:
            label = format_month(date(month_group.year, month_group.month, 1))
            lines.append(f"\n**{label}**: {format_currency(month_group.total, currency)}")
            for bond_group in month_group.bonds:
                details = ", ".join(
                    f"{e.nature.value} {format_currency(e.amount, currency, 2)} on {format_date(e.date)}"
                    for e in bond_group.events
                )
                lines.append(f"- {bond_group.bond_name}: {details}")

    return "\n".join(lines)


def get_ytm_series(custodian=ALL_CUSTODIANS):
    """Weighted average YTM over time for the line plot."""
    bonds = filter_by_custodian(active_bonds(get_store().list_bonds()), custodian)
    points = build_series(bonds)
    return pd.DataFrame({
        "Month": [pd.Timestamp(p.date) for p in points],
        "Avg YTM (%)": [p.ytm * 100 for p in points],
    })


def get_matured_bonds():
    currency = _currency()
    groups = matured_groups(get_store().list_bonds())
    if not groups:
        return pd.DataFrame(columns=["ISIN", "Issuer", "Nominal", "Coupon", "Maturity", "Records"])

    data = []
    for group in groups:
        data.append({
            "ISIN": group.isin,
            "Issuer": group.issuer,
            "Nominal": format_currency(group.total_par_value, currency),
            "Coupon": f"{group.coupon_rate:.2f}%",
            "Maturity": str(group.maturity_date),
            "Records": len(group.bond_ids),
        })
    return pd.DataFrame(data)


def delete_matured(isin):
    """Delete every matured bond record with the given ISIN."""
    isin = (isin or "").strip().upper()
    for group in matured_groups(get_store().list_bonds()):
        if group.isin == isin:
            try:
                removed = get_store().delete_bonds(group.bond_ids)
            except BondfolioError as e:
                return f"✗ Error: {str(e)}"
            return f"✓ Deleted {removed} matured records for {isin}"
    return f"✗ No matured bonds with ISIN {isin}"


def get_etf_overview():
    """ETF positions with their lots."""
    currency = _currency()
    positions = get_etf_store().positions()

    if not positions:
        return "No ETFs yet", pd.DataFrame(columns=ETF_COLUMNS), pd.DataFrame(columns=LOT_COLUMNS)

    cost = sum(p.cost for p in positions)
    value = sum(p.market_value for p in positions)
    summary_text = f"""
## ETF Summary

**Total Cost:** {format_currency(cost, currency, 2)}
**Market Value:** {format_currency(value, currency, 2)}
**Profit:** {format_currency(value - cost, currency, 2)}
"""

    etf_rows = []
    lot_rows = []
    for position in positions:
        etf = position.etf
        etf_rows.append({
            "ID": etf.id,
            "Name": etf.name,
            "ISIN": etf.isin,
            "WKN": etf.wkn,
            "Shares": position.shares,
            "Last Price": format_currency(etf.last_price, currency, 2),
            "Cost": format_currency(position.cost, currency, 2),
            "Value": format_currency(position.market_value, currency, 2),
            "Profit": format_currency(position.profit, currency, 2),
            "Gain": f"{position.pct_gain:.2f}%",
        })
        for lot in position.lots:
            lot_rows.append({
                "ETF": etf.name,
                "Acquired": str(lot.acquisition_date),
                "Shares": lot.shares,
                "Price": format_currency(lot.acquisition_price, currency, 2),
                "Cost": format_currency(lot.cost, currency, 2),
                "Annual Gain / Share": format_currency(lot_annual_yield(lot, etf.last_price), currency, 2),
            })

    return summary_text, pd.DataFrame(etf_rows), pd.DataFrame(lot_rows, columns=LOT_COLUMNS)


def add_etf(isin, name, wkn, issuer):
    """Add an ETF; name, WKN and price are looked up by ISIN when the name is empty."""
    isin = (isin or "").strip().upper()
    name = (name or "").strip()
    last_price = Decimal("0")

    try:
        if not name:
            if not isin:
                return "✗ Error: Enter an ISIN or a name"
            header = ing_etfs.fetch_instrument_header(isin)
            name = header["name"]
            wkn = wkn or header["wkn"]
            last_price = header["price"]
        etf = ETF(name=name, isin=isin, wkn=(wkn or "").strip(), issuer=(issuer or "").strip())
        get_etf_store().add_etf(etf)
        if last_price > 0:
            get_etf_store().record_price(etf.id, last_price)
        return f"✓ Added ETF: {etf.name}"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def add_lot(etf_id, acquisition_date, acquisition_price, shares):
    """Record a purchase of ETF shares."""
    try:
        if shares is None or shares != int(shares):
            raise BondfolioError(f"Number of shares must be a whole number, got {shares!r}")
        lot = ETFLot(
            etf_id=(etf_id or "").strip(),
            acquisition_date=_parse_date(acquisition_date, "Acquisition date"),
            acquisition_price=_to_decimal(acquisition_price, "Acquisition price"),
            shares=int(shares),
        )
        get_etf_store().add_lot(lot)
        return f"✓ Added {lot.shares} shares"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def sell_etf_shares(etf_id, shares, price):
    """Sell shares FIFO at the given price, or at the last price when empty."""
    currency = _currency()
    try:
        if shares is None or shares != int(shares):
            raise BondfolioError(f"Number of shares must be a whole number, got {shares!r}")
        sale_price = _to_decimal(price, "Sale price") if price else None
        sale = get_etf_store().sell_shares((etf_id or "").strip(), int(shares), price=sale_price)
        return (
            f"✓ Sold {sale.shares} shares for {format_currency(sale.proceeds, currency, 2)}, "
            f"gain {format_currency(sale.gain, currency, 2)}"
        )
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def delete_etf(etf_id):
    try:
        get_etf_store().delete_etf((etf_id or "").strip())
        return f"✓ Deleted ETF {etf_id}"
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"


def refresh_etf_prices():
    """Fetch the current quote of every ETF."""
    failures = refresh_prices(get_etf_store(), ing_etfs.fetch_price)
    if not failures:
        return f"✓ Prices refreshed for {len(get_etf_store().list_etfs())} ETFs"

    lines = [f"⚠ Price refresh failed for {len(failures)} ETFs:"]
    for etf_id, error in failures.items():
        lines.append(f"- {etf_id}: {error}")
    return "\n".join(lines)


def get_price_history(etf_id):
    """Price history of one ETF for the line plot."""
    points = get_etf_store().price_history((etf_id or "").strip() or None)
    names = {etf.id: etf.name for etf in get_etf_store().list_etfs()}
    return pd.DataFrame({
        "Date": [pd.Timestamp(p.ts) for p in points],
        "Price": [float(p.price) for p in points],
        "ETF": [names.get(p.etf_id, p.etf_id) for p in points],
    })


def snapshot_now():
    try:
        valuations = take_snapshot(get_store(), get_etf_store(), get_valuation_store())
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"
    return f"✓ Recorded {len(valuations)} valuation rows"


def get_valuations():
    """Latest snapshot as a table and the invested capital over time for the plot."""
    currency = _currency()
    history = get_valuation_store().history()

    rows = []
    for v in get_valuation_store().latest():
        rows.append({
            "Taken": v.taken_at.strftime("%Y-%m-%d %H:%M"),
            "Asset": v.asset_type.value,
            "Custodian": v.custodian or "-",
            "Invested": format_currency(v.invested_capital, currency),
            "Interest": format_currency(v.interest_received, currency) if v.interest_received is not None else "-",
            "Capital Gains": format_currency(v.capital_gains, currency),
        })

    series = pd.DataFrame({
        "Taken": [pd.Timestamp(v.taken_at) for v in history],
        "Invested": [float(v.invested_capital) for v in history],
        "Asset": [v.asset_type.value for v in history],
    })
    if not series.empty:
        series = series.groupby(["Taken", "Asset"], as_index=False)["Invested"].sum()

    return pd.DataFrame(rows, columns=VALUATION_COLUMNS), series


def recalculate_cash_flows():
    """Regenerate the schedule of every bond."""
    store = get_store()
    failures = store.regenerate_all()
    if not failures:
        return f"✓ Cash flows recalculated for {len(store.list_bonds())} bonds"

    lines = [f"⚠ Recalculation failed for {len(failures)} bonds:"]
    for bond_id, error in failures.items():
        lines.append(f"- {bond_id}: {error}")
    return "\n".join(lines)


def export_data(folder):
    try:
        path = export_bonds(get_store(), folder)
        etf_path = export_etfs(get_etf_store(), folder)
    except (OSError, BondfolioError) as e:
        return f"✗ Export failed: {str(e)}"

    report = validate_export(get_store(), folder)
    if report.is_valid:
        return f"✓ Exported to {path} and {etf_path}\n✓ JSON matches the database"
    return "\n".join([f"✓ Exported to {path} and {etf_path}", "⚠ Found discrepancies:"] + [f"- {i}" for i in report.issues])


def import_data(folder):
    try:
        count = import_bonds(get_store(), folder)
        etf_path = Path(folder) / ETFS_FILE
        etf_count = import_etfs(get_etf_store(), folder) if etf_path.exists() else 0
        return f"✓ Imported {count} bonds and {etf_count} ETFs"
    except (OSError, ValueError, BondfolioError) as e:
        return f"✗ Import failed: {str(e)}"


def save_settings(base_currency, tax_rate):
    conn = get_store().conn
    try:
        rate = _to_decimal(tax_rate, "Tax rate")
    except BondfolioError as e:
        return f"✗ Error: {str(e)}"
    if not 0 <= rate <= 1:
        return "✗ Error: Tax rate must be between 0 and 1"

    set_setting(conn, "base_currency", (base_currency or "EUR").strip().upper())
    set_setting(conn, "tax_rate", str(rate))
    return "✓ Settings saved"


def get_settings_info():
    """Get current settings."""
    conn = get_store().conn

    return f"""
## Current Settings

**Base Currency:** {get_setting(conn, "base_currency")}
**Tax Rate:** {get_setting(conn, "tax_rate")}
**Last Launch:** {get_setting(conn, "last_launch_date") or "never"}

### Database Info
- **Location:** `{get_db_path()}`
- **Bonds:** {len(get_store().list_bonds())}
- **ETFs:** {len(get_etf_store().list_etfs())}
"""


def _bond_form():
    with gr.Row():
        name = gr.Textbox(label="Name", scale=2)
        issuer = gr.Textbox(label="Issuer", scale=2)
        isin = gr.Textbox(label="ISIN", scale=1)
        wkn = gr.Textbox(label="WKN", scale=1)
    with gr.Row():
        par_value = gr.Number(label="Nominal", scale=1)
        coupon_rate = gr.Number(label="Coupon (%)", scale=1)
        initial_price = gr.Number(label="Acquisition Price", scale=1)
    with gr.Row():
        maturity = gr.Textbox(label="Maturity (YYYY-MM-DD)", scale=1)
        acquisition = gr.Textbox(label="Acquired (YYYY-MM-DD)", value=date.today().isoformat(), scale=1)
        custodian = gr.Textbox(label="Custodian", scale=1)
    return [name, issuer, isin, wkn, par_value, coupon_rate, initial_price, maturity, acquisition, custodian]


def create_ui(launch_message: str | None = None):
    """Create and configure the Gradio interface."""

    with gr.Blocks(title="Bondfolio", theme=gr.themes.Soft()) as demo:
        gr.Markdown("# 🏦 Bondfolio")
        gr.Markdown("Bond holdings, cash flows and yields")

        if launch_message:
            gr.Markdown(launch_message.replace("\n", "  \n"))

        with gr.Row():
            custodian_filter = gr.Dropdown(label="Custodian", choices=[ALL_CUSTODIANS], value=ALL_CUSTODIANS, scale=1)
            recalc_btn = gr.Button("🔄 Recalculate Cash Flows", variant="primary", size="sm")
            recalc_output = gr.Textbox(label="Status", lines=2, interactive=False, scale=2)

        recalc_btn.click(fn=recalculate_cash_flows, outputs=recalc_output)
        demo.load(fn=_custodian_choices, outputs=custodian_filter)

        with gr.Tabs():
            # Portfolio Tab
            with gr.Tab("📊 Portfolio"):
                sort_option = gr.Dropdown(
                    label="Sort by",
                    choices=[o.value for o in BondSortOption],
                    value=BondSortOption.MATURITY_DATE.value,
                )
                summary_md = gr.Markdown()
                bonds_df = gr.DataFrame(label="Bonds")

                for trigger in (sort_option.change, custodian_filter.change):
                    trigger(fn=get_overview_data, inputs=[custodian_filter, sort_option], outputs=[summary_md, bonds_df])
                demo.load(fn=get_overview_data, inputs=[custodian_filter, sort_option], outputs=[summary_md, bonds_df])

            # Add Bond Tab
            with gr.Tab("➕ Add Bond"):
                with gr.Row():
                    lookup_isin_box = gr.Textbox(label="Look up ISIN", scale=2)
                    lookup_btn = gr.Button("Look up", size="sm")
                add_fields = _bond_form()
                add_btn = gr.Button("Add Bond")
                add_output = gr.Textbox(label="Result", interactive=False)

                name, issuer, isin, wkn, _, coupon_rate, _, maturity, _, _ = add_fields
                lookup_btn.click(
                    fn=lookup_isin,
                    inputs=lookup_isin_box,
                    outputs=[add_output, name, wkn, issuer, maturity, coupon_rate],
                ).then(fn=lambda value: value.strip().upper(), inputs=lookup_isin_box, outputs=isin)
                add_btn.click(fn=add_bond, inputs=add_fields, outputs=add_output).then(
                    fn=get_overview_data, inputs=[custodian_filter, sort_option], outputs=[summary_md, bonds_df]
                ).then(fn=_custodian_choices, outputs=custodian_filter)

            # Edit Bond Tab
            with gr.Tab("✏️ Edit Bond"):
                with gr.Row():
                    edit_id = gr.Textbox(label="Bond ID (from the Portfolio table)", scale=3)
                    load_btn = gr.Button("Load", size="sm")
                    delete_btn = gr.Button("Delete", size="sm", variant="stop")
                edit_fields = _bond_form()
                save_btn = gr.Button("Save Changes")
                edit_output = gr.Textbox(label="Result", interactive=False)

                load_btn.click(fn=load_bond, inputs=edit_id, outputs=[edit_output] + edit_fields)
                save_btn.click(fn=edit_bond, inputs=[edit_id] + edit_fields, outputs=edit_output)
                delete_btn.click(fn=delete_bond, inputs=edit_id, outputs=edit_output)

            # Cash Flows Tab
            with gr.Tab("💶 Cash Flows"):
                with gr.Row():
                    view_mode = gr.Radio(label="View", choices=["Monthly", "Yearly"], value="Monthly")
                    display_option = gr.Radio(
                        label="Display",
                        choices=[m.value for m in FlowMode],
                        value=FlowMode.BOTH.value,
                    )
                flows_df = gr.DataFrame(label="Cash Flows")

                flow_inputs = [custodian_filter, view_mode, display_option]
                for trigger in (view_mode.change, display_option.change, custodian_filter.change):
                    trigger(fn=get_cash_flow_table, inputs=flow_inputs, outputs=flows_df)
                demo.load(fn=get_cash_flow_table, inputs=flow_inputs, outputs=flows_df)

            # Calendar Tab
            with gr.Tab("📅 Calendar"):
                calendar_md = gr.Markdown()
                custodian_filter.change(fn=get_calendar, inputs=custodian_filter, outputs=calendar_md)
                recalc_btn.click(fn=get_calendar, inputs=custodian_filter, outputs=calendar_md)
                demo.load(fn=get_calendar, inputs=custodian_filter, outputs=calendar_md)

            # YTM Tab
            with gr.Tab("📈 YTM"):
                ytm_plot = gr.LinePlot(x="Month", y="Avg YTM (%)", title="Avg. YTM Over Time")
                custodian_filter.change(fn=get_ytm_series, inputs=custodian_filter, outputs=ytm_plot)
                demo.load(fn=get_ytm_series, inputs=custodian_filter, outputs=ytm_plot)

            # Matured Tab
            with gr.Tab("⌛ Matured"):
                matured_df = gr.DataFrame(label="Matured Bonds")
                with gr.Row():
                    matured_isin = gr.Textbox(label="ISIN to delete", scale=2)
                    matured_delete_btn = gr.Button("Delete all records", variant="stop", size="sm")
                matured_output = gr.Textbox(label="Result", interactive=False)

                matured_delete_btn.click(fn=delete_matured, inputs=matured_isin, outputs=matured_output).then(
                    fn=get_matured_bonds, outputs=matured_df
                )
                demo.load(fn=get_matured_bonds, outputs=matured_df)

            # ETF Tab
            with gr.Tab("📦 ETFs"):
                etf_summary_md = gr.Markdown()
                etfs_df = gr.DataFrame(label="Positions")
                lots_df = gr.DataFrame(label="Lots")
                with gr.Row():
                    refresh_btn = gr.Button("🔄 Refresh Prices", size="sm")
                    etf_output = gr.Textbox(label="Result", lines=2, interactive=False, scale=3)

                gr.Markdown("### Add ETF")
                with gr.Row():
                    etf_isin = gr.Textbox(label="ISIN", scale=1)
                    etf_name = gr.Textbox(label="Name (empty to look up by ISIN)", scale=2)
                    etf_wkn = gr.Textbox(label="WKN", scale=1)
                    etf_issuer = gr.Textbox(label="Issuer", scale=1)
                    add_etf_btn = gr.Button("Add ETF", size="sm")

                gr.Markdown("### Buy / Sell")
                with gr.Row():
                    lot_etf_id = gr.Textbox(label="ETF ID (from the Positions table)", scale=2)
                    lot_date = gr.Textbox(label="Acquired (YYYY-MM-DD)", value=date.today().isoformat(), scale=1)
                    lot_price = gr.Number(label="Price", scale=1)
                    lot_shares = gr.Number(label="Shares", precision=0, scale=1)
                with gr.Row():
                    add_lot_btn = gr.Button("Buy", size="sm")
                    sell_btn = gr.Button("Sell (FIFO)", size="sm")
                    delete_etf_btn = gr.Button("Delete ETF", size="sm", variant="stop")

                gr.Markdown("### Price History")
                price_plot = gr.LinePlot(x="Date", y="Price", color="ETF", title="ETF Prices")

                etf_views = [etf_summary_md, etfs_df, lots_df]
                refresh_btn.click(fn=refresh_etf_prices, outputs=etf_output).then(
                    fn=get_etf_overview, outputs=etf_views
                ).then(fn=get_price_history, inputs=lot_etf_id, outputs=price_plot)
                add_etf_btn.click(
                    fn=add_etf, inputs=[etf_isin, etf_name, etf_wkn, etf_issuer], outputs=etf_output
                ).then(fn=get_etf_overview, outputs=etf_views)
                add_lot_btn.click(
                    fn=add_lot, inputs=[lot_etf_id, lot_date, lot_price, lot_shares], outputs=etf_output
                ).then(fn=get_etf_overview, outputs=etf_views)
                sell_btn.click(
                    fn=sell_etf_shares, inputs=[lot_etf_id, lot_shares, lot_price], outputs=etf_output
                ).then(fn=get_etf_overview, outputs=etf_views)
                delete_etf_btn.click(fn=delete_etf, inputs=lot_etf_id, outputs=etf_output).then(
                    fn=get_etf_overview, outputs=etf_views
                )
                lot_etf_id.submit(fn=get_price_history, inputs=lot_etf_id, outputs=price_plot)
                demo.load(fn=get_etf_overview, outputs=etf_views)
                demo.load(fn=get_price_history, inputs=lot_etf_id, outputs=price_plot)

            # History Tab
            with gr.Tab("🗂️ History"):
                with gr.Row():
                    snapshot_btn = gr.Button("📸 Record Snapshot", size="sm")
                    snapshot_output = gr.Textbox(label="Result", interactive=False, scale=3)
                valuations_df = gr.DataFrame(label="Latest Snapshot")
                valuation_plot = gr.LinePlot(x="Taken", y="Invested", color="Asset", title="Invested Capital")

                snapshot_btn.click(fn=snapshot_now, outputs=snapshot_output).then(
                    fn=get_valuations, outputs=[valuations_df, valuation_plot]
                )
                demo.load(fn=get_valuations, outputs=[valuations_df, valuation_plot])

            # Settings Tab
            with gr.Tab("⚙️ Settings"):
                settings_md = gr.Markdown()
                with gr.Row():
                    currency_box = gr.Textbox(label="Base Currency", value="EUR", scale=1)
                    tax_box = gr.Number(label="Tax Rate", value=float(DEFAULT_TAX_RATE), scale=1)
                    settings_btn = gr.Button("Save Settings", size="sm")
                settings_output = gr.Textbox(label="Result", interactive=False)

                gr.Markdown("### Export / Import")
                folder_box = gr.Textbox(label="Folder", value="data/export")
                with gr.Row():
                    export_btn = gr.Button("Export to JSON", size="sm", variant="secondary")
                    import_btn = gr.Button("Import from JSON", size="sm", variant="secondary")
                exchange_output = gr.Textbox(label="Result", lines=4, interactive=False)

                settings_btn.click(fn=save_settings, inputs=[currency_box, tax_box], outputs=settings_output).then(
                    fn=get_settings_info, outputs=settings_md
                )
                export_btn.click(fn=export_data, inputs=folder_box, outputs=exchange_output)
                import_btn.click(fn=import_data, inputs=folder_box, outputs=exchange_output).then(
                    fn=_custodian_choices, outputs=custodian_filter
                )
                demo.load(fn=get_settings_info, outputs=settings_md)

    return demo


def launch(share=False, server_port=7860, launch_message=None):
    """Launch the Gradio UI."""
    demo = create_ui(launch_message)
    demo.launch(share=share, server_port=server_port, server_name="0.0.0.0")
