"""
Tests for the analytics aggregator and KPI helpers.
"""

from datetime import date, datetime

import pytest

from gymdesk.db.store import DataStoreError
from gymdesk.domain.analytics import aggregator
from gymdesk.domain.analytics.aggregator import (
    DateWindow,
    compute_analytics,
    effective_payment_amount,
    summarize_expenses,
    summarize_members,
    summarize_payments,
)
from gymdesk.domain.analytics.kpis import (
    churn_rate,
    compute_kpis,
    cumulative_member_growth,
    franchise_performance,
    monthly_comparison,
    profit_margin,
    retention_rate,
    revenue_per_member,
    safe_ratio,
)
from gymdesk.domain.analytics.models import ExpenseSummary, MemberSummary, Overview, PaymentSummary
from gymdesk.domain.tenancy.scope import TenantScope

JANUARY = DateWindow(date(2024, 1, 1), date(2024, 1, 31))
JAN_FEB = DateWindow(date(2024, 1, 1), date(2024, 2, 29))


class TestDateWindow:
    def test_reversed_window_is_rejected(self):
        with pytest.raises(ValueError):
            DateWindow(date(2024, 2, 1), date(2024, 1, 1))

    def test_end_date_is_inclusive(self):
        assert JANUARY.contains(datetime(2024, 1, 31, 23, 59))
        assert JANUARY.contains("2024-01-01")
        assert not JANUARY.contains(datetime(2024, 2, 1, 0, 0))
        assert not JANUARY.contains(None)

    def test_last_days(self):
        window = DateWindow.last_days(30, today=date(2024, 3, 31))

        assert window == DateWindow(date(2024, 3, 1), date(2024, 3, 31))


class TestSummaries:
    def test_final_amount_wins_over_amount(self):
        payments = [
            {"amount": 120, "final_amount": 100, "paid_at": datetime(2024, 1, 10)},
            {"amount": 50, "final_amount": None, "paid_at": "2024-01-20T10:00:00"},
        ]

        summary = summarize_payments(payments)

        assert summary.total_amount == 150
        assert summary.total_count == 2
        assert summary.average_amount == 75
        assert summary.by_month == {"Jan 2024": 150}
        assert summary.by_plan == {"Unknown": 150}

    def test_zero_final_amount_is_kept(self):
        assert effective_payment_amount({"amount": 100, "final_amount": 0}) == 0

    def test_months_are_chronological(self):
        payments = [
            {"amount": 10, "paid_at": datetime(2024, 2, 1)},
            {"amount": 20, "paid_at": datetime(2023, 12, 1)},
            {"amount": 30, "paid_at": datetime(2024, 1, 1)},
        ]

        assert list(summarize_payments(payments).by_month) == ["Dec 2023", "Jan 2024", "Feb 2024"]

    def test_expense_categories(self):
        expenses = [
            {"amount": 40, "category": "Rent", "created_at": datetime(2024, 1, 15)},
            {"amount": 10, "category": None, "created_at": datetime(2024, 1, 16)},
            {"amount": 5, "category": "  ", "created_at": datetime(2024, 2, 1)},
        ]

        summary = summarize_expenses(expenses)

        assert summary.total_amount == 55
        assert summary.by_category == {"Rent": 40, "Uncategorized": 15}
        assert summary.by_month == {"Jan 2024": 50, "Feb 2024": 5}

    def test_member_churn_and_buckets(self):
        members = [
            {"is_active": True, "gender": "female", "join_date": date(2024, 1, 5), "plan": {"name": "Monthly"}},
            {"is_active": False, "gender": "MALE", "join_date": date(2023, 11, 20), "plan": None},
            {"is_active": False, "gender": None, "join_date": date(2024, 1, 31), "plan": None},
        ]

        summary = summarize_members(members, JANUARY)

        assert summary.total_members == 3
        assert summary.active_members == 1
        assert summary.inactive_members == 2
        assert summary.new_members == 2
        assert summary.churn_rate == pytest.approx(66.67, abs=0.01)
        assert summary.retention_rate == pytest.approx(33.33, abs=0.01)
        assert summary.by_plan == {"Monthly": 1, "No Plan": 2}
        assert summary.by_gender == {"Female": 1, "Male": 1, "Not Specified": 1}
        assert list(summary.by_month) == ["Nov 2023", "Jan 2024"]

    def test_empty_inputs_give_empty_summaries(self):
        assert summarize_payments([]) == PaymentSummary.empty()
        assert summarize_expenses([]) == ExpenseSummary.empty()
        assert summarize_members([], JANUARY) == MemberSummary.empty()


class TestKpis:
    def test_ratios_are_zero_safe(self):
        assert safe_ratio(10, 0) == 0
        assert profit_margin(-50, 0) == 0
        assert revenue_per_member(1000, 0) == 0
        assert churn_rate(0, 0) == 0
        assert retention_rate(0, 0) == 0

    def test_kpis_on_nothing(self):
        kpis = compute_kpis(PaymentSummary.empty(), ExpenseSummary.empty(), MemberSummary.empty(), Overview.empty())

        assert kpis.profit_margin == 0
        assert kpis.revenue_per_member == 0
        assert kpis.monthly_comparison == []
        assert kpis.top_performing_franchise is None
        assert kpis.most_profitable_month is None

    def test_monthly_comparison_covers_months_from_either_side(self):
        rows = monthly_comparison({"Feb 2024": 100.0}, {"Jan 2024": 30.0, "Feb 2024": 20.0})

        assert [(row.month, row.revenue, row.expenses, row.profit) for row in rows] == [
            ("Jan 2024", 0.0, 30.0, -30.0),
            ("Feb 2024", 100.0, 20.0, 80.0),
        ]

    def test_franchise_performance(self):
        rows = franchise_performance({"Andheri": 200.0, "Bandra": 100.0}, {"Andheri": 50.0}, {"Andheri": 3})

        andheri, bandra = rows
        assert andheri.profit == 150
        assert andheri.profit_margin == 75
        assert andheri.members == 3
        assert bandra.expenses == 0
        assert bandra.members == 0

    def test_cumulative_growth(self):
        points = cumulative_member_growth({"Feb 2024": 2, "Jan 2024": 3})

        assert [(point.month, point.cumulative_members) for point in points] == [("Jan 2024", 3), ("Feb 2024", 5)]


@pytest.mark.asyncio
async def test_single_franchise_report(store, seed):
    report = await compute_analytics(store, TenantScope.single(seed.andheri), JANUARY)

    assert report.subaccount_ids == [seed.andheri]
    assert report.failed_sources == []

    assert report.payments.total_amount == 150
    assert report.payments.by_month == {"Jan 2024": 150}
    assert report.payments.by_method == {"Cash": 100, "UPI": 50}
    assert report.payments.by_franchise == {"Andheri": 150}

    assert report.expenses.total_amount == 40
    assert report.expenses.by_category == {"Rent": 40}

    assert report.members.total_members == 3
    assert report.members.new_members == 1
    assert report.members.churn_rate == pytest.approx(66.67, abs=0.01)

    assert report.overview.net_profit == 110
    assert report.kpis.profit_margin == pytest.approx(73.33, abs=0.01)
    assert report.kpis.revenue_per_member == 50


@pytest.mark.asyncio
async def test_all_franchises_report_partitions_add_up(store, seed):
    report = await compute_analytics(store, TenantScope.of([seed.andheri, seed.bandra]), JAN_FEB)

    payments = report.payments
    assert payments.total_amount == 330
    assert payments.by_franchise == {"Andheri": 150, "Bandra": 180}
    for partition in (payments.by_month, payments.by_plan, payments.by_franchise, payments.by_method):
        assert sum(partition.values()) == pytest.approx(payments.total_amount)

    expenses = report.expenses
    assert expenses.total_amount == 80
    for partition in (expenses.by_month, expenses.by_category, expenses.by_franchise):
        assert sum(partition.values()) == pytest.approx(expenses.total_amount)

    members = report.members
    assert members.total_members == 4
    assert members.active_members + members.inactive_members == members.total_members
    for partition in (members.by_plan, members.by_month, members.by_franchise, members.by_gender):
        assert sum(partition.values()) == members.total_members

    assert report.kpis.top_performing_franchise == "Bandra"
    assert [row.month for row in report.kpis.monthly_comparison] == ["Jan 2024", "Feb 2024"]


@pytest.mark.asyncio
async def test_other_accounts_never_leak_in(store, seed):
    report = await compute_analytics(store, TenantScope.of([seed.andheri, seed.bandra]), JANUARY)

    assert 999 not in report.payments.by_franchise.values()
    assert "Elsewhere" not in report.expenses.by_franchise
    assert "Elsewhere" not in report.members.by_franchise


@pytest.mark.asyncio
async def test_failed_source_degrades_to_empty(store, seed, monkeypatch):
    def broken_fetch(*_args, **_kwargs):
        raise DataStoreError("Select on 'expenses' failed: timeout")

    monkeypatch.setattr(aggregator, "fetch_expenses", broken_fetch)

    report = await compute_analytics(store, TenantScope.single(seed.andheri), JANUARY)

    assert report.failed_sources == ["expenses"]
    assert report.expenses == ExpenseSummary.empty()
    assert report.payments.total_amount == 150
    assert report.overview.total_expenses == 0
    assert report.overview.net_profit == 150
