#!/usr/bin/env python3
"""
Console interface for member imports and franchise analytics.

    python -m gymdesk.console import members.csv --subaccount <id>
    python -m gymdesk.console analytics --subaccount <id> --from 2024-01-01 --to 2024-03-31
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gymdesk.core.config import settings
from gymdesk.core.logging_config import configure_logging
from gymdesk.db.session import ensure_tables, get_engine
from gymdesk.db.store import DataStoreError, ScopeViolationError, SqlDataStore
from gymdesk.domain.analytics.aggregator import DateWindow, compute_analytics
from gymdesk.domain.analytics.models import AnalyticsReport
from gymdesk.domain.imports.errors import ImportValidationError
from gymdesk.domain.imports.jobs import ImportJob, ImportStatus
from gymdesk.domain.imports.mapper import DATE_FIELDS
from gymdesk.domain.imports.processors.csv_processor import ImportPreview
from gymdesk.domain.imports.service import MemberImportService, preview_upload
from gymdesk.domain.tenancy.context import resolve_analytics_scope
from gymdesk.domain.tenancy.currency import DEFAULT_CURRENCY, CurrencyInfo, CurrencyResolver, format_currency
from gymdesk.domain.tenancy.scope import TenantScope


class GymConsole:
    """Rich console front end for the import service and the analytics aggregator."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.store = SqlDataStore(get_engine())

    def print_error(self, message: str) -> None:
        self.console.print(Panel(f"[red]❌ {message}[/red]", title="Error", border_style="red"))

    def show_preview(self, preview: ImportPreview) -> None:
        table = Table(title=f"{preview.file_name} ({preview.total_rows} rows)")
        table.add_column("#", style="dim", justify="right")
        for header in preview.headers:
            table.add_column(header, style="white")
        for idx, row in enumerate(preview.preview_rows, 1):
            table.add_row(str(idx), *row[:len(preview.headers)])
        self.console.print(table)

        mapping_table = Table(title="Column Mapping")
        mapping_table.add_column("Column", style="cyan")
        mapping_table.add_column("Field", style="green")
        for index, header in enumerate(preview.headers):
            mapping_table.add_row(header, preview.suggested_mapping.get(index, "[dim]unmapped[/dim]"))
        self.console.print(mapping_table)

        if preview.date_samples:
            samples = ", ".join(f"{field}={value}" for field, value in preview.date_samples.items())
            formats = ", ".join(preview.detected_date_formats) or "none"
            self.console.print(f"[dim]Date samples: {samples} | matching formats: {formats}[/dim]")

    def show_job(self, job: ImportJob) -> None:
        style = "green" if job.status == ImportStatus.COMPLETED else "red"
        summary = (
            f"[{style}]{job.status.value.upper()}[/{style}]\n"
            f"Rows: {job.processed_rows}/{job.total_rows}  "
            f"Imported: {job.success_count}  Failed: {job.error_count}"
        )
        self.console.print(Panel(summary, title=f"Import {job.id}", border_style=style))
        if job.logs:
            self.console.print(Panel("\n".join(job.logs[-20:]), title="Log (latest)", border_style="blue"))

    async def _import(self, service: MemberImportService, **kwargs) -> ImportJob:
        job = await service.launch_import(**kwargs)
        with self.console.status("[bold green]Importing members...", spinner="dots") as status:
            async for snapshot in service.poll_until_terminal(job.id):
                status.update(
                    f"[bold green]Importing members... {snapshot.processed_rows}/{snapshot.total_rows} "
                    f"({snapshot.success_count} ok, {snapshot.error_count} failed)"
                )
                job = snapshot
        return job

    def run_import(
        self,
        path: str,
        *,
        subaccount_id: str,
        mapping_json: Optional[str] = None,
        date_format: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> int:
        with open(path, "rb") as handle:
            content = handle.read()
        file_name = path.replace("\\", "/").rsplit("/", 1)[-1]

        try:
            preview = preview_upload(file_name, content)
        except ImportValidationError as e:
            self.print_error(str(e))
            return 1
        self.show_preview(preview)

        if mapping_json:
            try:
                mapping: Dict = json.loads(mapping_json)
            except json.JSONDecodeError as e:
                self.print_error(f"--mapping is not valid JSON: {e}")
                return 1
            if not isinstance(mapping, dict):
                self.print_error("--mapping must be a JSON object, e.g. {\"0\": \"name\"}")
                return 1
        else:
            mapping = dict(preview.suggested_mapping)
        if not date_format and any(target in DATE_FIELDS for target in mapping.values()):
            if preview.detected_date_formats:
                date_format = preview.detected_date_formats[0]
                self.console.print(f"[yellow]Using detected date format {date_format}[/yellow]")

        service = MemberImportService(self.store.scoped(TenantScope.single(subaccount_id)))
        try:
            job = asyncio.run(
                self._import(
                    service,
                    file_name=file_name,
                    content=content,
                    mapping=mapping,
                    date_format=date_format,
                    uploaded_by=uploaded_by,
                )
            )
        except (ImportValidationError, ScopeViolationError, DataStoreError) as e:
            self.print_error(str(e))
            return 1

        self.show_job(job)
        return 0 if job.status == ImportStatus.COMPLETED else 1

    def show_report(self, report: AnalyticsReport, currency: CurrencyInfo) -> None:
        def money(value: float) -> str:
            return format_currency(value, currency.code)

        overview = report.overview
        header = Text(f"Analytics {report.date_from} to {report.date_to}", style="bold blue")
        self.console.print(
            Panel.fit(
                f"Revenue: [green]{money(overview.total_revenue)}[/green]\n"
                f"Expenses: [red]{money(overview.total_expenses)}[/red]\n"
                f"Net profit: {money(overview.net_profit)} ({report.kpis.profit_margin:.1f}% margin)\n"
                f"Members: {overview.total_members} ({overview.active_members} active, "
                f"{overview.new_members} new, churn {overview.churn_rate:.1f}%)",
                title=header,
                border_style="blue",
            )
        )

        monthly = Table(title="Monthly Comparison")
        monthly.add_column("Month", style="cyan")
        monthly.add_column("Revenue", justify="right")
        monthly.add_column("Expenses", justify="right")
        monthly.add_column("Profit", justify="right")
        for row in report.kpis.monthly_comparison:
            monthly.add_row(row.month, money(row.revenue), money(row.expenses), money(row.profit))
        self.console.print(monthly)

        if len(report.subaccount_ids) > 1:
            franchises = Table(title="Franchise Performance")
            franchises.add_column("Franchise", style="cyan")
            franchises.add_column("Revenue", justify="right")
            franchises.add_column("Expenses", justify="right")
            franchises.add_column("Members", justify="right")
            franchises.add_column("Profit Margin", justify="right")
            for row in report.kpis.franchise_performance:
                franchises.add_row(
                    row.franchise, money(row.revenue), money(row.expenses), str(row.members), f"{row.profit_margin:.1f}%"
                )
            self.console.print(franchises)

        if report.failed_sources:
            self.console.print(f"[yellow]Unavailable sources: {', '.join(report.failed_sources)}[/yellow]")

    def run_analytics(
        self,
        *,
        subaccount_id: str,
        account_id: Optional[str] = None,
        user_id: Optional[str] = None,
        franchise: str = "all",
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> int:
        try:
            if date_from or date_to:
                default = DateWindow.last_days(today=date_to)
                window = DateWindow(date_from or default.date_from, date_to or default.date_to)
            else:
                window = DateWindow.last_days()
        except ValueError as e:
            self.print_error(str(e))
            return 1

        currency = DEFAULT_CURRENCY
        scope = TenantScope.single(subaccount_id)
        if account_id:
            try:
                scope = resolve_analytics_scope(
                    self.store,
                    user_id=user_id,
                    account_id=account_id,
                    subaccount_id=subaccount_id,
                    selected_franchise=franchise,
                )
            except ScopeViolationError as e:
                self.print_error(str(e))
                return 1
            currency = CurrencyResolver(self.store).resolve(account_id)

        with self.console.status("[bold green]Crunching numbers...", spinner="dots"):
            report = asyncio.run(compute_analytics(self.store, scope, window))
        self.show_report(report, currency)
        return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Gymdesk console - member imports and analytics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import members from a CSV file")
    import_parser.add_argument("file", help="Path to the CSV file")
    import_parser.add_argument("--subaccount", required=True, help="Franchise (subaccount) id")
    import_parser.add_argument("--mapping", help='Column mapping JSON, e.g. \'{"0": "name", "1": "email"}\'')
    import_parser.add_argument("--date-format", help="Date format name, e.g. dd/mm/yyyy")
    import_parser.add_argument("--uploaded-by", help="User id recorded on the import job")

    analytics_parser = subparsers.add_parser("analytics", help="Show franchise analytics")
    analytics_parser.add_argument("--subaccount", required=True, help="Current franchise (subaccount) id")
    analytics_parser.add_argument("--account", help="Account id (enables multi-franchise scope for owners)")
    analytics_parser.add_argument("--user", help="User id used for the ownership check")
    analytics_parser.add_argument("--franchise", default="all", help="Franchise id or 'all' (default: all)")
    analytics_parser.add_argument("--from", dest="date_from", type=date.fromisoformat, help="Start date (YYYY-MM-DD)")
    analytics_parser.add_argument("--to", dest="date_to", type=date.fromisoformat, help="End date (YYYY-MM-DD)")

    args = parser.parse_args(argv)
    configure_logging(settings.log_level)
    ensure_tables()

    gym_console = GymConsole()
    if args.command == "import":
        return gym_console.run_import(
            args.file,
            subaccount_id=args.subaccount,
            mapping_json=args.mapping,
            date_format=args.date_format,
            uploaded_by=args.uploaded_by,
        )
    return gym_console.run_analytics(
        subaccount_id=args.subaccount,
        account_id=args.account,
        user_id=args.user,
        franchise=args.franchise,
        date_from=args.date_from,
        date_to=args.date_to,
    )


if __name__ == "__main__":
    sys.exit(main())
