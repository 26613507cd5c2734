"""
Analytics result shapes. Built fresh for every request and never persisted.
"""
from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PaymentSummary(BaseModel):
    total_amount: float = 0.0
    total_count: int = 0
    average_amount: float = 0.0
    by_month: Dict[str, float] = Field(default_factory=dict)
    by_plan: Dict[str, float] = Field(default_factory=dict)
    by_franchise: Dict[str, float] = Field(default_factory=dict)
    by_method: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "PaymentSummary":
        return cls()


class ExpenseSummary(BaseModel):
    total_amount: float = 0.0
    total_count: int = 0
    average_amount: float = 0.0
    by_month: Dict[str, float] = Field(default_factory=dict)
    by_category: Dict[str, float] = Field(default_factory=dict)
    by_franchise: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "ExpenseSummary":
        return cls()


class MemberSummary(BaseModel):
    total_members: int = 0
    active_members: int = 0
    inactive_members: int = 0
    new_members: int = 0
    churn_rate: float = 0.0
    retention_rate: float = 0.0
    by_plan: Dict[str, int] = Field(default_factory=dict)
    by_month: Dict[str, int] = Field(default_factory=dict)
    by_franchise: Dict[str, int] = Field(default_factory=dict)
    by_gender: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "MemberSummary":
        return cls()


class Overview(BaseModel):
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    net_profit: float = 0.0
    total_members: int = 0
    active_members: int = 0
    inactive_members: int = 0
    new_members: int = 0
    churn_rate: float = 0.0

    @classmethod
    def empty(cls) -> "Overview":
        return cls()


class MonthlyComparison(BaseModel):
    month: str
    revenue: float
    expenses: float
    profit: float


class FranchisePerformance(BaseModel):
    franchise: str
    revenue: float
    expenses: float
    profit: float
    members: int
    profit_margin: float


class MemberGrowthPoint(BaseModel):
    month: str
    new_members: int
    cumulative_members: int


class KPIs(BaseModel):
    profit_margin: float = 0.0
    revenue_per_member: float = 0.0
    expense_per_member: float = 0.0
    retention_rate: float = 0.0
    monthly_comparison: List[MonthlyComparison] = Field(default_factory=list)
    franchise_performance: List[FranchisePerformance] = Field(default_factory=list)
    top_performing_franchise: Optional[str] = None
    most_profitable_month: Optional[str] = None
    highest_expense_month: Optional[str] = None
    cumulative_member_growth: List[MemberGrowthPoint] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "KPIs":
        return cls()


class AnalyticsReport(BaseModel):
    subaccount_ids: List[str]
    date_from: date
    date_to: date
    payments: PaymentSummary = Field(default_factory=PaymentSummary)
    expenses: ExpenseSummary = Field(default_factory=ExpenseSummary)
    members: MemberSummary = Field(default_factory=MemberSummary)
    overview: Overview = Field(default_factory=Overview)
    kpis: KPIs = Field(default_factory=KPIs)
    failed_sources: List[str] = Field(default_factory=list)
