"""Tests for calendar flows, tax estimates and portfolio roll-ups."""
from datetime import date
from decimal import Decimal

import pytest

from bondfolio.core.aggregation import (
    active_bonds,
    build_snapshot,
    custodians,
    event_flow,
    events_by_bond,
    filter_by_custodian,
    global_months,
    global_years,
    matured_groups,
    monthly_flow,
    portfolio_summary,
    sort_bonds,
    tax_estimate,
    totals_by_period,
    yearly_flow,
)
from bondfolio.core.cashflows import build_schedule
from bondfolio.core.models import BondSortOption, CashFlowNature, FlowMode, MonthlyFlow, TaxMode


def test_monthly_flow(make_bond):
    bond = make_bond()

    assert monthly_flow(bond, date(2027, 6, 1)) == MonthlyFlow(coupon=Decimal("35"), principal=Decimal("0"))
    assert monthly_flow(bond, date(2030, 6, 1)) == MonthlyFlow(coupon=Decimal("35"), principal=Decimal("1000"))
    assert monthly_flow(bond, date(2027, 5, 1)).total == 0
    assert monthly_flow(bond, date(2031, 6, 1)).total == 0


def test_yearly_flow(make_bond):
    bond = make_bond()
    assert yearly_flow(bond, 2028).total == Decimal("35")
    assert yearly_flow(bond, 2030).total == Decimal("1035")
    assert yearly_flow(bond, 2031).total == 0


def test_tax_on_coupon_only(make_bond):
    bond = make_bond()
    flow = MonthlyFlow(coupon=Decimal("35"))
    assert tax_estimate(bond, flow) == Decimal("-8.75")


def test_tax_on_maturity_includes_gain(make_bond):
    bond = make_bond()
    flow = monthly_flow(bond, date(2030, 6, 1))
    # 25% of the coupon plus 25% of (1000 - 950)
    assert tax_estimate(bond, flow) == Decimal("-21.25")


def test_tax_is_never_a_credit(make_bond):
    bond = make_bond(coupon_rate=Decimal("1"), initial_price=Decimal("1100"))
    flow = monthly_flow(bond, date(2030, 6, 1))
    assert tax_estimate(bond, flow) == 0


@pytest.mark.parametrize("rate", [Decimal("0"), Decimal("0.25"), Decimal("0.5")])
def test_tax_sign(make_bond, rate):
    bond = make_bond()
    for period in (date(2029, 6, 1), date(2030, 6, 1), date(2030, 7, 1)):
        assert tax_estimate(bond, monthly_flow(bond, period), rate) <= 0


def test_totals_by_period_modes(make_bond):
    bonds = [
        make_bond(),
        make_bond(name="OAT 2030", par_value=Decimal("2000"), coupon_rate=Decimal("2"),
                  initial_price=Decimal("2000")),
    ]
    june_2030 = date(2030, 6, 1)

    assert totals_by_period(bonds, [june_2030]) == [(june_2030, Decimal("3075"))]
    assert totals_by_period(bonds, [june_2030], FlowMode.INTEREST) == [(june_2030, Decimal("75"))]
    assert totals_by_period(bonds, [june_2030], FlowMode.PRINCIPAL) == [(june_2030, Decimal("3000"))]

    # -21.25 for the first bond, -10 for the coupon of the second, no gain on par
    assert totals_by_period(bonds, [june_2030], tax_mode=TaxMode.TAX_ONLY) == [(june_2030, Decimal("-31.25"))]
    assert totals_by_period(bonds, [june_2030], tax_mode=TaxMode.POST_TAX) == [(june_2030, Decimal("3043.75"))]


def test_totals_by_year(make_bond):
    bonds = [make_bond()]
    assert totals_by_period(bonds, [2029, 2030, 2031]) == [
        (2029, Decimal("35")),
        (2030, Decimal("1035")),
        (2031, Decimal("0")),
    ]


def test_event_flow_follows_stored_schedule(make_bond):
    bond = make_bond(acquisition_date=date(2028, 7, 1))
    events = build_schedule(bond)

    # No coupon was bought for 2027 even though the bond pays one in June
    assert event_flow(events, date(2027, 6, 1)).total == 0
    assert event_flow(events, 2030) == MonthlyFlow(coupon=Decimal("35"), principal=Decimal("1000"))
    assert event_flow(events, 2030, bond_id="someone-else").total == 0


def test_snapshot_excludes_capital_loss(make_bond):
    loss_bond = make_bond(initial_price=Decimal("1020"))
    gain_bond = make_bond(name="Anleihe B", initial_price=Decimal("990"))
    events = build_schedule(loss_bond) + build_schedule(gain_bond)

    snapshot = build_snapshot(events, [loss_bond, gain_bond])
    june = snapshot.month(2030, 6)
    assert june is not None

    loss_group = next(g for g in june.bonds if g.bond_id == loss_bond.id)
    assert any(e.nature == CashFlowNature.CAPITAL_LOSS for e in loss_group.events)
    # interest + principal + expected profit (35*6 - 20)
    assert loss_group.total == Decimal("35") + Decimal("1000") + Decimal("190")

    expected_total = sum(
        (e.amount for e in events if e.nature != CashFlowNature.CAPITAL_LOSS),
        Decimal("0"),
    )
    assert snapshot.total == expected_total


def test_snapshot_groups_sorted(make_bond):
    bond_b = make_bond(name="b bond")
    bond_a = make_bond(name="A bond")
    events = build_schedule(bond_b) + build_schedule(bond_a)

    snapshot = build_snapshot(events, [bond_a, bond_b])
    assert [y.year for y in snapshot.years] == list(range(2025, 2031))
    assert [g.bond_name for g in snapshot.month(2030, 6).bonds] == ["A bond", "b bond"]


def test_snapshot_drops_unknown_bonds_and_filters_natures(make_bond):
    kept = make_bond()
    dropped = make_bond(custodian="Comdirect")
    events = build_schedule(kept) + build_schedule(dropped)

    snapshot = build_snapshot(events, [kept], natures=[CashFlowNature.INTEREST])
    all_events = [e for y in snapshot.years for m in y.months for g in m.bonds for e in g.events]
    assert all(e.bond_id == kept.id for e in all_events)
    assert all(e.nature == CashFlowNature.INTEREST for e in all_events)
    assert snapshot.total == Decimal("35") * 6


def test_empty_snapshot():
    snapshot = build_snapshot([], [])
    assert snapshot.years == []
    assert snapshot.total == 0
    assert snapshot.month(2030, 1) is None


def test_global_months(make_bond):
    bonds = [make_bond(), make_bond(maturity_date=date(2030, 4, 2))]
    months = global_months(bonds, today=date(2030, 4, 20))
    assert months == [date(2030, 4, 1), date(2030, 5, 1), date(2030, 6, 1)]
    assert global_years(months) == [2030]
    assert global_months([], today=date(2030, 4, 20)) == []


def test_global_months_cross_year(make_bond):
    months = global_months([make_bond(maturity_date=date(2026, 2, 1))], today=date(2025, 11, 5))
    assert months == [date(2025, 11, 1), date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1)]
    assert global_years(months) == [2025, 2026]


def test_active_bonds(make_bond):
    live = make_bond()
    due_today = make_bond(maturity_date=date(2026, 3, 1))
    matured = make_bond(maturity_date=date(2026, 2, 28))
    assert active_bonds([live, due_today, matured], today=date(2026, 3, 1)) == [live, due_today]


def test_custodian_filter(make_bond):
    ing = make_bond()
    comdirect = make_bond(custodian="comdirect")
    bonds = [ing, comdirect]

    assert custodians(bonds) == ["All", "comdirect", "ING"]
    assert filter_by_custodian(bonds, "All") == bonds
    assert filter_by_custodian(bonds, None) == bonds
    assert filter_by_custodian(bonds, "ING") == [ing]


def test_sort_bonds(make_bond):
    low = make_bond(name="zeta", coupon_rate=Decimal("1"), maturity_date=date(2027, 1, 1))
    high = make_bond(name="Alpha", coupon_rate=Decimal("5"), maturity_date=date(2031, 1, 1))
    mid = make_bond(name="beta", coupon_rate=Decimal("3"), maturity_date=date(2029, 1, 1))
    bonds = [mid, high, low]

    assert sort_bonds(bonds, BondSortOption.COUPON) == [high, mid, low]
    assert sort_bonds(bonds, BondSortOption.MATURITY_DATE) == [low, mid, high]
    assert sort_bonds(bonds, BondSortOption.NAME) == [high, mid, low]


def test_portfolio_summary(make_bond):
    first = make_bond()
    second = make_bond(par_value=Decimal("3000"), initial_price=Decimal("3000"), coupon_rate=Decimal("2"))
    events = build_schedule(first) + build_schedule(second)

    summary = portfolio_summary([first, second], events)
    assert summary.bond_count == 2
    assert summary.acquisition_cost == Decimal("3950")
    assert summary.principal == Decimal("4000")
    assert summary.projected_interest == Decimal("35") * 6 + Decimal("60") * 6
    expected = (first.yield_at_acquisition * 1000 + second.yield_at_acquisition * 3000) / 4000
    assert summary.weighted_ytm == pytest.approx(expected)


def test_matured_groups(make_bond):
    lot_1 = make_bond(maturity_date=date(2024, 6, 15), acquisition_date=date(2020, 1, 1))
    lot_2 = make_bond(maturity_date=date(2024, 6, 15), acquisition_date=date(2021, 1, 1),
                      par_value=Decimal("500"))
    other = make_bond(isin="FR0000000001", maturity_date=date(2023, 1, 1), acquisition_date=date(2020, 1, 1))
    live = make_bond()

    groups = matured_groups([lot_1, lot_2, other, live], today=date(2025, 1, 1))
    assert [g.isin for g in groups] == ["FR0000000001", "DE0001102580"]
    assert groups[1].bond_ids == [lot_1.id, lot_2.id]
    assert groups[1].total_par_value == Decimal("1500")


def test_totals_from_stored_events_skip_coupons_before_acquisition(make_bond):
    late_buy = make_bond(acquisition_date=date(2028, 7, 1))
    events = build_schedule(late_buy)

    assert totals_by_period([late_buy], [2027, 2029], events=events) == [
        (2027, Decimal("0")),
        (2029, Decimal("35")),
    ]
    # The maturity-month rule still counts the 2027 coupon
    assert totals_by_period([late_buy], [2027]) == [(2027, Decimal("35"))]
    assert totals_by_period([late_buy], [2027], events=[]) == [(2027, Decimal("0"))]


def test_events_by_bond(make_bond):
    first = make_bond()
    second = make_bond(name="Second")
    grouped = events_by_bond(build_schedule(first) + build_schedule(second))

    assert set(grouped) == {first.id, second.id}
    assert grouped[first.id] == build_schedule(first)
