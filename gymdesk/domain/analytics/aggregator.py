"""
Analytics aggregator.

Given a tenant scope and a date window, fetches payments, expenses and members
concurrently and reduces them into summary buckets, an overview and KPIs. A
failing fetch degrades its bucket to the empty shape; the report is always
returned.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from gymdesk.core.config import settings
from gymdesk.db.store import DataStore, ScopedDataStore, gte, lt
from gymdesk.domain.analytics.kpis import churn_rate, compute_kpis, retention_rate, safe_ratio
from gymdesk.domain.analytics.models import AnalyticsReport, ExpenseSummary, MemberSummary, Overview, PaymentSummary
from gymdesk.domain.tenancy.scope import TenantScope
from gymdesk.utils.date import month_key, month_sort_key, parse_iso_date

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
UNCATEGORIZED = "Uncategorized"
NO_PLAN = "No Plan"


class FetchError(Exception):
    """One analytics source could not be fetched."""

    def __init__(self, source: str, cause: BaseException):
        super().__init__(f"{source} fetch failed: {cause}")
        self.source = source
        self.cause = cause


@dataclass(frozen=True)
class DateWindow:
    """Inclusive ``[date_from, date_to]`` at day granularity."""
    date_from: date
    date_to: date

    def __post_init__(self) -> None:
        if self.date_from > self.date_to:
            raise ValueError(f"date_from {self.date_from} is after date_to {self.date_to}")

    @classmethod
    def last_days(cls, days: Optional[int] = None, *, today: Optional[date] = None) -> "DateWindow":
        days = settings.analytics_default_window_days if days is None else days
        end = today or date.today()
        return cls(end - timedelta(days=days), end)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date_from, time.min)

    @property
    def end_exclusive(self) -> datetime:
        return datetime.combine(self.date_to + timedelta(days=1), time.min)

    def contains(self, value: Any) -> bool:
        if isinstance(value, datetime):
            moment = value.replace(tzinfo=None)
        else:
            day = parse_iso_date(value)
            if day is None:
                return False
            moment = datetime.combine(day, time.min)
        return self.start <= moment < self.end_exclusive


def fetch_payments(store: ScopedDataStore, window: DateWindow) -> List[Dict[str, Any]]:
    return store.select(
        "payments",
        filters=(gte("paid_at", window.start), lt("paid_at", window.end_exclusive)),
        embed=("member.subaccount", "plan", "payment_method"),
        order_by="paid_at",
        descending=True,
    )


def fetch_expenses(store: ScopedDataStore, window: DateWindow) -> List[Dict[str, Any]]:
    return store.select(
        "expenses",
        filters=(gte("created_at", window.start), lt("created_at", window.end_exclusive)),
        embed=("subaccount",),
        order_by="created_at",
        descending=True,
    )


def fetch_members(store: ScopedDataStore, window: DateWindow) -> List[Dict[str, Any]]:
    # Not date filtered; new members are counted from join_date afterwards.
    return store.select("members", embed=("plan", "subaccount"), order_by="created_at", descending=True)


def _related_name(related: Optional[Mapping[str, Any]], default: str) -> str:
    return (related or {}).get("name") or default


def _amount(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def effective_payment_amount(payment: Mapping[str, Any]) -> float:
    final_amount = payment.get("final_amount")
    return _amount(final_amount if final_amount is not None else payment.get("amount"))


def _sum_by(frame: pd.DataFrame, key: str, *, chronological: bool = False) -> Dict[str, float]:
    sums = frame.groupby(key, sort=False)["amount"].sum()
    result = {str(label): float(total) for label, total in sums.items()}
    if chronological:
        result = dict(sorted(result.items(), key=lambda item: month_sort_key(item[0])))
    return result


def _count_by(frame: pd.DataFrame, key: str, *, chronological: bool = False) -> Dict[str, int]:
    counts = frame.groupby(key, sort=False).size()
    result = {str(label): int(count) for label, count in counts.items()}
    if chronological:
        result = dict(sorted(result.items(), key=lambda item: month_sort_key(item[0])))
    return result


def summarize_payments(payments: Sequence[Mapping[str, Any]]) -> PaymentSummary:
    if not payments:
        return PaymentSummary.empty()

    frame = pd.DataFrame(
        {
            "amount": [effective_payment_amount(payment) for payment in payments],
            "month": [month_key(payment.get("paid_at")) or UNKNOWN for payment in payments],
            "plan": [_related_name(payment.get("plan"), UNKNOWN) for payment in payments],
            "franchise": [
                _related_name((payment.get("member") or {}).get("subaccount"), UNKNOWN) for payment in payments
            ],
            "method": [_related_name(payment.get("payment_method"), UNKNOWN) for payment in payments],
        }
    )
    total = float(frame["amount"].sum())
    count = len(frame)

    return PaymentSummary(
        total_amount=total,
        total_count=count,
        average_amount=safe_ratio(total, count),
        by_month=_sum_by(frame, "month", chronological=True),
        by_plan=_sum_by(frame, "plan"),
        by_franchise=_sum_by(frame, "franchise"),
        by_method=_sum_by(frame, "method"),
    )


def summarize_expenses(expenses: Sequence[Mapping[str, Any]]) -> ExpenseSummary:
    if not expenses:
        return ExpenseSummary.empty()

    frame = pd.DataFrame(
        {
            "amount": [_amount(expense.get("amount")) for expense in expenses],
            "month": [month_key(expense.get("created_at")) or UNKNOWN for expense in expenses],
            "category": [(expense.get("category") or "").strip() or UNCATEGORIZED for expense in expenses],
            "franchise": [_related_name(expense.get("subaccount"), UNKNOWN) for expense in expenses],
        }
    )
    total = float(frame["amount"].sum())
    count = len(frame)

    return ExpenseSummary(
        total_amount=total,
        total_count=count,
        average_amount=safe_ratio(total, count),
        by_month=_sum_by(frame, "month", chronological=True),
        by_category=_sum_by(frame, "category"),
        by_franchise=_sum_by(frame, "franchise"),
    )


def _gender_bucket(value: Any) -> str:
    gender = (value or "").strip().lower() if isinstance(value, str) else ""
    if not gender:
        return "Not Specified"
    if gender in ("male", "female"):
        return gender.capitalize()
    return "Other"


def summarize_members(members: Sequence[Mapping[str, Any]], window: DateWindow) -> MemberSummary:
    if not members:
        return MemberSummary.empty()

    frame = pd.DataFrame(
        {
            "active": [bool(member.get("is_active")) for member in members],
            "month": [month_key(member.get("join_date")) or UNKNOWN for member in members],
            "plan": [_related_name(member.get("plan"), NO_PLAN) for member in members],
            "franchise": [_related_name(member.get("subaccount"), UNKNOWN) for member in members],
            "gender": [_gender_bucket(member.get("gender")) for member in members],
        }
    )
    total = len(frame)
    active = int(frame["active"].sum())
    inactive = total - active
    new = sum(1 for member in members if window.contains(member.get("join_date")))

    return MemberSummary(
        total_members=total,
        active_members=active,
        inactive_members=inactive,
        new_members=new,
        churn_rate=churn_rate(inactive, total),
        retention_rate=retention_rate(inactive, total),
        by_plan=_count_by(frame, "plan"),
        by_month=_count_by(frame, "month", chronological=True),
        by_franchise=_count_by(frame, "franchise"),
        by_gender=_count_by(frame, "gender"),
    )


def build_overview(payments: PaymentSummary, expenses: ExpenseSummary, members: MemberSummary) -> Overview:
    return Overview(
        total_revenue=payments.total_amount,
        total_expenses=expenses.total_amount,
        net_profit=payments.total_amount - expenses.total_amount,
        total_members=members.total_members,
        active_members=members.active_members,
        inactive_members=members.inactive_members,
        new_members=members.new_members,
        churn_rate=members.churn_rate,
    )


async def compute_analytics(store: DataStore, scope: TenantScope, window: DateWindow) -> AnalyticsReport:
    """
    Build the analytics report for ``scope`` over ``window``.

    The three fetches run concurrently in worker threads. A fetch that raises
    is logged as a ``FetchError`` and its bucket stays empty.
    """
    scoped = ScopedDataStore(store, scope)
    sources = (
        ("payments", fetch_payments),
        ("expenses", fetch_expenses),
        ("members", fetch_members),
    )
    results = await asyncio.gather(
        *[asyncio.to_thread(fetch, scoped, window) for _, fetch in sources],
        return_exceptions=True,
    )

    fetched: Dict[str, List[Dict[str, Any]]] = {}
    failed: List[str] = []
    for (source, _), result in zip(sources, results):
        if isinstance(result, BaseException):
            error = FetchError(source, result)
            logger.error("Analytics %s for scope %s", error, list(scope.subaccount_ids))
            failed.append(source)
            fetched[source] = []
        else:
            fetched[source] = result

    payments = summarize_payments(fetched["payments"])
    expenses = summarize_expenses(fetched["expenses"])
    members = summarize_members(fetched["members"], window)
    overview = build_overview(payments, expenses, members)

    logger.info(
        "Analytics for %d franchise(s) %s..%s: revenue=%.2f expenses=%.2f members=%d",
        len(scope),
        window.date_from,
        window.date_to,
        overview.total_revenue,
        overview.total_expenses,
        overview.total_members,
    )

    return AnalyticsReport(
        subaccount_ids=list(scope.subaccount_ids),
        date_from=window.date_from,
        date_to=window.date_to,
        payments=payments,
        expenses=expenses,
        members=members,
        overview=overview,
        kpis=compute_kpis(payments, expenses, members, overview),
        failed_sources=failed,
    )
