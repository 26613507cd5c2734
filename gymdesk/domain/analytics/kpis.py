"""
Derived KPIs over the summary buckets. Every ratio is 0 when its denominator is 0.
"""
from typing import Dict, List, Optional

from gymdesk.domain.analytics.models import (
    KPIs,
    ExpenseSummary,
    FranchisePerformance,
    MemberGrowthPoint,
    MemberSummary,
    MonthlyComparison,
    Overview,
    PaymentSummary,
)
from gymdesk.utils.date import month_sort_key


def safe_ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def percentage(numerator: float, denominator: float) -> float:
    return safe_ratio(numerator, denominator) * 100


def profit_margin(net_profit: float, revenue: float) -> float:
    return percentage(net_profit, revenue)


def revenue_per_member(revenue: float, members: int) -> float:
    return safe_ratio(revenue, members)


def expense_per_member(expenses: float, members: int) -> float:
    return safe_ratio(expenses, members)


def churn_rate(inactive: int, total: int) -> float:
    return percentage(inactive, total)


def retention_rate(inactive: int, total: int) -> float:
    if not total:
        return 0.0
    return 100.0 - churn_rate(inactive, total)


def _chronological(keys) -> List[str]:
    return sorted(keys, key=month_sort_key)


def monthly_comparison(revenue_by_month: Dict[str, float], expenses_by_month: Dict[str, float]) -> List[MonthlyComparison]:
    """Revenue, expenses and profit for every month seen in either series, oldest first."""
    months = _chronological(set(revenue_by_month) | set(expenses_by_month))
    rows = []
    for month in months:
        revenue = revenue_by_month.get(month, 0.0)
        expenses = expenses_by_month.get(month, 0.0)
        rows.append(MonthlyComparison(month=month, revenue=revenue, expenses=expenses, profit=revenue - expenses))
    return rows


def franchise_performance(
    revenue_by_franchise: Dict[str, float],
    expenses_by_franchise: Dict[str, float],
    members_by_franchise: Dict[str, int],
) -> List[FranchisePerformance]:
    """One entry per franchise that took revenue."""
    rows = []
    for franchise, revenue in revenue_by_franchise.items():
        expenses = expenses_by_franchise.get(franchise, 0.0)
        profit = revenue - expenses
        rows.append(
            FranchisePerformance(
                franchise=franchise,
                revenue=revenue,
                expenses=expenses,
                profit=profit,
                members=members_by_franchise.get(franchise, 0),
                profit_margin=profit_margin(profit, revenue),
            )
        )
    return rows


def cumulative_member_growth(members_by_month: Dict[str, int]) -> List[MemberGrowthPoint]:
    points = []
    running = 0
    for month in _chronological(members_by_month):
        running += members_by_month[month]
        points.append(MemberGrowthPoint(month=month, new_members=members_by_month[month], cumulative_members=running))
    return points


def _top(items, attribute: str, label: str) -> Optional[str]:
    if not items:
        return None
    return getattr(max(items, key=lambda item: getattr(item, attribute)), label)


def compute_kpis(
    payments: PaymentSummary,
    expenses: ExpenseSummary,
    members: MemberSummary,
    overview: Overview,
) -> KPIs:
    months = monthly_comparison(payments.by_month, expenses.by_month)
    franchises = franchise_performance(payments.by_franchise, expenses.by_franchise, members.by_franchise)

    return KPIs(
        profit_margin=profit_margin(overview.net_profit, overview.total_revenue),
        revenue_per_member=revenue_per_member(overview.total_revenue, overview.total_members),
        expense_per_member=expense_per_member(overview.total_expenses, overview.total_members),
        retention_rate=members.retention_rate,
        monthly_comparison=months,
        franchise_performance=franchises,
        top_performing_franchise=_top(franchises, "profit", "franchise"),
        most_profitable_month=_top(months, "profit", "month"),
        highest_expense_month=_top(months, "expenses", "month"),
        cumulative_member_growth=cumulative_member_growth(members.by_month),
    )
