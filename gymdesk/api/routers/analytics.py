"""
Analytics endpoint.
"""
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from gymdesk.api.dependencies import get_data_store, tenant_scope
from gymdesk.api.schemas.shared import AnalyticsResponse, CurrencyInfoResponse
from gymdesk.core.config import settings
from gymdesk.db.store import DataStore, ScopeViolationError
from gymdesk.domain.analytics.aggregator import DateWindow, compute_analytics
from gymdesk.domain.tenancy.context import ALL_FRANCHISES, resolve_analytics_scope
from gymdesk.domain.tenancy.currency import DEFAULT_CURRENCY, CurrencyResolver, format_currency

router = APIRouter(tags=["analytics"])


def _window(date_from: Optional[date], date_to: Optional[date]) -> DateWindow:
    end = date_to or date.today()
    start = date_from or end - timedelta(days=settings.analytics_default_window_days)
    try:
        return DateWindow(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    subaccount_id: str,
    account_id: Optional[str] = None,
    user_id: Optional[str] = None,
    franchise: str = ALL_FRANCHISES,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    store: DataStore = Depends(get_data_store),
):
    window = _window(date_from, date_to)

    if account_id:
        try:
            scope = resolve_analytics_scope(
                store,
                user_id=user_id,
                account_id=account_id,
                subaccount_id=subaccount_id,
                selected_franchise=franchise,
            )
        except ScopeViolationError as e:
            raise HTTPException(status_code=403, detail=str(e)) from e
        currency = CurrencyResolver(store).resolve(account_id)
    else:
        scope = tenant_scope(subaccount_id)
        currency = DEFAULT_CURRENCY

    report = await compute_analytics(store, scope, window)
    overview = report.overview

    return AnalyticsResponse(
        success=True,
        report=report,
        currency=CurrencyInfoResponse(code=currency.code, symbol=currency.symbol, name=currency.name),
        formatted_totals={
            "total_revenue": format_currency(overview.total_revenue, currency.code),
            "total_expenses": format_currency(overview.total_expenses, currency.code),
            "net_profit": format_currency(overview.net_profit, currency.code),
        },
    )
