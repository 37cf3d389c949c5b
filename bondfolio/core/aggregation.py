"""Portfolio roll-ups: calendar flows, tax estimates and event snapshots."""
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from bondfolio.core.models import (
    BondGroup,
    BondSortOption,
    BondTerms,
    CashFlowEvent,
    CashFlowNature,
    FlowMode,
    MaturedGroup,
    MonthGroup,
    MonthlyFlow,
    PortfolioSnapshot,
    PortfolioSummary,
    TaxMode,
    YearGroup,
)
from bondfolio.core.ytm_series import weighted_ytm

DEFAULT_TAX_RATE = Decimal("0.25")
ALL_CUSTODIANS = "All"

ZERO = Decimal("0")

Period = date | int


def monthly_flow(bond: BondTerms, month: date) -> MonthlyFlow:
    """
    Coupon and principal a bond pays in a calendar month.

    The coupon is paid every year in the maturity month up to the maturity
    year; the principal only in the maturity month of the maturity year.
    """
    maturity = bond.maturity_date
    if month.year > maturity.year:
        return MonthlyFlow()
    if month.month == maturity.month:
        principal = bond.par_value if month.year == maturity.year else ZERO
        return MonthlyFlow(coupon=bond.annual_coupon, principal=principal)
    return MonthlyFlow()


def yearly_flow(bond: BondTerms, year: int) -> MonthlyFlow:
    if year > bond.maturity_date.year:
        return MonthlyFlow()
    return monthly_flow(bond, date(year, bond.maturity_date.month, 1))


def period_flow(bond: BondTerms, period: Period) -> MonthlyFlow:
    """Dispatch on the period type: an int is a year, a date is a month."""
    if isinstance(period, date):
        return monthly_flow(bond, period)
    return yearly_flow(bond, period)


def tax_estimate(bond: BondTerms, flow: MonthlyFlow, rate: Decimal = DEFAULT_TAX_RATE) -> Decimal:
    """
    Estimated tax on a flow, always zero or negative.

    Coupons are taxed at `rate`; a principal repayment is taxed on its gain
    over the acquisition price. A net credit is never reported.
    """
    coupon_tax = -rate * flow.coupon
    if flow.principal != 0:
        principal_tax = -rate * (flow.principal - bond.initial_price)
    else:
        principal_tax = ZERO
    return min(ZERO, coupon_tax + principal_tax)


def totals_by_period(
    bonds: Sequence[BondTerms],
    periods: Sequence[Period],
    mode: FlowMode = FlowMode.BOTH,
    tax_mode: TaxMode = TaxMode.NONE,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    events: Iterable[CashFlowEvent] | None = None,
) -> List[Tuple[Period, Decimal]]:
    """
    Sum the flows of all bonds for each period.

    Flows come from the maturity-month rule (period_flow) unless persisted
    `events` are given, in which case each bond's flow is read from its
    stored schedule (event_flow).

    Args:
        bonds: Bonds to include
        periods: Months (dates) or years (ints)
        mode: Which part of each flow to sum
        tax_mode: NONE for pre-tax totals, TAX_ONLY for the tax sum alone,
            POST_TAX for pre-tax totals plus the (negative) tax sum
        tax_rate: Rate passed to tax_estimate
        events: Persisted cash-flow events, optional

    Returns:
        List of (period, total) in the order of `periods`
    """
    by_bond = events_by_bond(events) if events is not None else None

    totals = []
    for period in periods:
        if by_bond is None:
            flows = [(bond, period_flow(bond, period)) for bond in bonds]
        else:
            flows = [(bond, event_flow(by_bond.get(bond.id, ()), period)) for bond in bonds]
        pre_tax = sum((flow.part(mode) for _, flow in flows), ZERO)

        if tax_mode == TaxMode.NONE:
            totals.append((period, pre_tax))
            continue

        tax = sum((tax_estimate(bond, flow, tax_rate) for bond, flow in flows), ZERO)
        if tax_mode == TaxMode.TAX_ONLY:
            totals.append((period, tax))
        else:
            totals.append((period, pre_tax + tax))

    return totals


def event_flow(events: Iterable[CashFlowEvent], period: Period, bond_id: str | None = None) -> MonthlyFlow:
    """
    Coupon and principal for a period read from persisted events.

    Unlike monthly_flow, this follows the stored schedule, so coupons before
    the acquisition date are not counted.
    """
    coupon = ZERO
    principal = ZERO
    for event in events:
        if bond_id is not None and event.bond_id != bond_id:
            continue
        if not _in_period(event.date, period):
            continue
        if event.nature == CashFlowNature.INTEREST:
            coupon += event.amount
        elif event.nature == CashFlowNature.PRINCIPAL:
            principal += event.amount
    return MonthlyFlow(coupon=coupon, principal=principal)


def events_by_bond(events: Iterable[CashFlowEvent]) -> Dict[str, List[CashFlowEvent]]:
    grouped: Dict[str, List[CashFlowEvent]] = defaultdict(list)
    for event in events:
        grouped[event.bond_id].append(event)
    return dict(grouped)


def _in_period(day: date, period: Period) -> bool:
    if isinstance(period, date):
        return day.year == period.year and day.month == period.month
    return day.year == period


def _display_amount(event: CashFlowEvent) -> Decimal:
    # Losses stay in the event list but are left out of every total
    if event.nature == CashFlowNature.CAPITAL_LOSS:
        return ZERO
    return event.amount


def build_snapshot(
    events: Iterable[CashFlowEvent],
    bonds: Iterable[BondTerms],
    natures: Iterable[CashFlowNature] | None = None,
) -> PortfolioSnapshot:
    """
    Group events by year, then month, then bond.

    Every level carries a total that excludes capitalLoss amounts. Events
    whose bond is not in `bonds` are dropped, which is how the custodian
    filter reaches the snapshot.
    """
    names = {bond.id: bond.name for bond in bonds}
    wanted = set(natures) if natures is not None else None

    tree: Dict[int, Dict[int, Dict[str, List[CashFlowEvent]]]] = defaultdict(
        lambda: defaultdict(lambda: defaultdict(list))
    )
    for event in events:
        if event.bond_id not in names:
            continue
        if wanted is not None and event.nature not in wanted:
            continue
        tree[event.date.year][event.date.month][event.bond_id].append(event)

    years = []
    for year in sorted(tree):
        months = []
        for month in sorted(tree[year]):
            bond_groups = []
            by_bond = tree[year][month]
            for bond_id in sorted(by_bond, key=lambda b: (names[b].casefold(), b)):
                bond_events = sorted(by_bond[bond_id], key=lambda e: e.date)
                bond_groups.append(BondGroup(
                    bond_id=bond_id,
                    bond_name=names[bond_id],
                    events=bond_events,
                    total=sum((_display_amount(e) for e in bond_events), ZERO),
                ))
            months.append(MonthGroup(
                year=year,
                month=month,
                bonds=bond_groups,
                total=sum((group.total for group in bond_groups), ZERO),
            ))
        years.append(YearGroup(
            year=year,
            months=months,
            total=sum((group.total for group in months), ZERO),
        ))

    return PortfolioSnapshot(years=years, total=sum((group.total for group in years), ZERO))


def global_months(bonds: Sequence[BondTerms], today: date | None = None) -> List[date]:
    """First-of-month dates from the current month through the latest maturity month."""
    if today is None:
        today = date.today()
    start = date(today.year, today.month, 1)
    if not bonds:
        return []

    latest = max(bond.maturity_date for bond in bonds)
    end = date(latest.year, latest.month, 1)

    months = []
    current = start
    while current <= end:
        months.append(current)
        if current.month == 12:
            current = date(current.year + 1, 1, 1)
        else:
            current = date(current.year, current.month + 1, 1)
    return months


def global_years(months: Iterable[date]) -> List[int]:
    return sorted({month.year for month in months})


def active_bonds(bonds: Iterable[BondTerms], today: date | None = None) -> List[BondTerms]:
    """Bonds maturing today or later."""
    if today is None:
        today = date.today()
    return [bond for bond in bonds if bond.maturity_date >= today]


def custodians(bonds: Iterable[BondTerms]) -> List[str]:
    """Filter choices: "All" followed by every custodian, alphabetically."""
    return [ALL_CUSTODIANS] + sorted({bond.custodian for bond in bonds if bond.custodian}, key=str.casefold)


def filter_by_custodian(bonds: Iterable[BondTerms], custodian: str | None) -> List[BondTerms]:
    if not custodian or custodian == ALL_CUSTODIANS:
        return list(bonds)
    return [bond for bond in bonds if bond.custodian == custodian]


def sort_bonds(bonds: Iterable[BondTerms], option: BondSortOption) -> List[BondTerms]:
    bonds = list(bonds)
    if option == BondSortOption.NAME:
        return sorted(bonds, key=lambda b: b.name.casefold())
    if option == BondSortOption.ISSUER:
        return sorted(bonds, key=lambda b: b.issuer.casefold())
    if option == BondSortOption.ACQUISITION_DATE:
        return sorted(bonds, key=lambda b: b.acquisition_date)
    if option == BondSortOption.ACQUISITION_PRICE:
        return sorted(bonds, key=lambda b: b.initial_price)
    if option == BondSortOption.NOMINAL:
        return sorted(bonds, key=lambda b: b.par_value)
    if option == BondSortOption.COUPON:
        # highest first
        return sorted(bonds, key=lambda b: b.coupon_rate, reverse=True)
    if option == BondSortOption.CUSTODIAN:
        return sorted(bonds, key=lambda b: b.custodian.casefold())
    return sorted(bonds, key=lambda b: b.maturity_date)


def portfolio_summary(bonds: Sequence[BondTerms], events: Iterable[CashFlowEvent] = ()) -> PortfolioSummary:
    """
    Portfolio-wide figures.

    projected_interest is the sum of persisted interest events of the given
    bonds.
    """
    ids = {bond.id for bond in bonds}
    projected = sum(
        (e.amount for e in events if e.bond_id in ids and e.nature == CashFlowNature.INTEREST),
        ZERO,
    )
    return PortfolioSummary(
        bond_count=len(bonds),
        acquisition_cost=sum((bond.initial_price for bond in bonds), ZERO),
        principal=sum((bond.par_value for bond in bonds), ZERO),
        weighted_ytm=weighted_ytm(bonds),
        projected_interest=projected,
    )


def matured_groups(bonds: Iterable[BondTerms], today: date | None = None) -> List[MaturedGroup]:
    """Bonds that matured before today, grouped by ISIN and ordered by maturity."""
    if today is None:
        today = date.today()

    grouped: Dict[str, List[BondTerms]] = defaultdict(list)
    for bond in bonds:
        if bond.maturity_date < today:
            grouped[bond.isin].append(bond)

    groups = []
    for isin, members in grouped.items():
        first = members[0]
        groups.append(MaturedGroup(
            isin=isin,
            name=first.name,
            issuer=first.issuer,
            coupon_rate=first.coupon_rate,
            maturity_date=first.maturity_date,
            bond_ids=[bond.id for bond in members],
            total_par_value=sum((bond.par_value for bond in members), ZERO),
        ))
    return sorted(groups, key=lambda g: (g.maturity_date, g.isin))
