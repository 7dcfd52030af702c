"""CLI command implementations — all commands delegate to LedgerService."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailledger.inbox.spool import SpoolError, load_emails
from mailledger.inbox.types import EmailMessage

if TYPE_CHECKING:
    from mailledger.cli.ledger import LedgerService
    from mailledger.storage.models import PurchaseRecord

logger = logging.getLogger(__name__)
console = Console(width=200)

_TYPE_STYLE = {
    "primary": "cyan",
    "newsletter": "yellow",
    "service_announcement": "magenta",
}


def _format_amount(amount: float, currency: str) -> str:
    if currency == "JPY":
        return f"¥{amount:,.0f}"
    return f"{amount:,.2f} {currency}"


def _purchase_table(purchases: list[PurchaseRecord]) -> Table:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", width=10)
    table.add_column("Date", width=10)
    table.add_column("Vendor", max_width=20)
    table.add_column("Amount", justify="right", width=14)
    table.add_column("Order", max_width=22)
    table.add_column("Status", width=10)
    table.add_column("Category", max_width=16)
    table.add_column("Emails", justify="right", width=6)
    table.add_column("Source", width=6)

    for p in purchases:
        vendor = f"[dim strike]{p.vendor}[/dim strike]" if p.is_excluded else p.vendor
        status = f"[red]{p.exclusion_reason or 'excluded'}[/red]" if p.is_excluded else (p.status or "")
        table.add_row(
            p.id[:8],
            p.date.strftime("%Y-%m-%d"),
            vendor,
            _format_amount(p.amount, p.currency),
            p.order_id or "",
            status,
            p.category or "",
            str(len(p.source_email_ids)),
            "AI" if p.ai_analyzed else "regex",
        )
    return table


# ── classify ───────────────────────────────────────────────────────────────────


@click.command()
@click.option("--subject", required=True, help="Email subject line.")
@click.option("--sender", "sender", default="", help="From header.")
@click.option("--body", default="", help="Email body text.")
@click.pass_obj
def classify(service: LedgerService, subject: str, sender: str, body: str) -> None:
    """Classify one email as primary, newsletter or service announcement."""
    email = EmailMessage(id="cli", subject=subject, sender=sender, body=body)
    result, category = service.classify(email)

    style = _TYPE_STYLE.get(result.type.value, "white")
    lines = [f"[{style}]{result.type.value}[/{style}]  confidence {result.confidence}"]
    if category:
        lines.append(f"Newsletter category: {category}")
    if result.ambiguous:
        lines.append("[yellow]Ambiguous: close to the reclassification threshold[/yellow]")
    lines.extend(f"  • {reason}" for reason in result.reasons)
    console.print(Panel("\n".join(lines), title="[bold]Classification[/bold]", border_style="blue"))


# ── extract ────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print raw extraction responses as JSON.")
@click.pass_obj
def extract(service: LedgerService, path: Path, as_json: bool) -> None:
    """Extract purchases from a JSON file of emails."""
    try:
        emails = load_emails(path)
    except SpoolError as exc:
        raise click.ClickException(str(exc)) from exc

    report = asyncio.run(service.extract(emails))

    if as_json:
        payload = {
            "responses": {k: v.to_dict() for k, v in report.responses.items()},
            "errors": report.errors,
        }
        click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Email", max_width=20)
    table.add_column("Type", width=12)
    table.add_column("Result", width=14)
    table.add_column("Vendor", max_width=20)
    table.add_column("Amount", justify="right", width=14)
    table.add_column("Confidence", justify="right", width=10)

    for email_id, r in report.responses.items():
        if r.is_cancellation:
            outcome = "[red]cancellation[/red]"
        elif not r.extracted:
            outcome = "[dim]no purchase[/dim]"
        elif r.is_new:
            outcome = "[green]new[/green]"
        else:
            outcome = "[yellow]merged[/yellow]" if r.is_duplicate else "already stored"
        p = r.purchase
        table.add_row(
            email_id,
            r.classification.type.value,
            outcome,
            p.vendor if p else "",
            _format_amount(p.amount, p.currency) if p else "",
            f"{r.confidence:.2f}" if r.confidence is not None else "",
        )
    console.print(table)

    for email_id, error in report.errors.items():
        console.print(f"[red]Failed {email_id}: {error}[/red]")
    console.print(
        f"\n{len(report.purchases)} purchase(s) from {len(emails)} email(s), "
        f"{len(report.errors)} error(s)."
    )


# ── purchases / vendors ────────────────────────────────────────────────────────


@click.command()
@click.option("--vendor", default=None, help="Only show this vendor.")
@click.option("--active", is_flag=True, help="Hide excluded purchases.")
@click.pass_obj
def purchases(service: LedgerService, vendor: str | None, active: bool) -> None:
    """List stored purchases with spending totals."""
    rows = service.purchases(vendor=vendor, include_excluded=not active)
    if not rows:
        console.print("[yellow]No purchases stored yet. Run `mailledger extract FILE` first.[/yellow]")
        return

    console.print(_purchase_table(rows))

    summary = service.summary()
    lines = [
        f"Total spent: [bold]{summary.total_spent:,.2f}[/bold] across "
        f"{summary.total_purchases} purchase(s) ({summary.excluded_count} excluded)",
        f"Average purchase: {summary.average_purchase:,.2f}",
    ]
    if summary.category_summary:
        lines.append(
            "By category: "
            + ", ".join(f"{k} {v:,.0f}" for k, v in sorted(summary.category_summary.items()))
        )
    if summary.monthly_spending:
        lines.append(
            "By month: " + ", ".join(f"{k} {v:,.0f}" for k, v in summary.monthly_spending.items())
        )
    console.print(Panel("\n".join(lines), title="[bold]Spending[/bold]", border_style="green"))


@click.command()
@click.pass_obj
def vendors(service: LedgerService) -> None:
    """Spending per vendor, largest first."""
    rows = service.vendors()
    if not rows:
        console.print("[yellow]No purchases stored yet.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Vendor", max_width=30)
    table.add_column("Purchases", justify="right", width=10)
    table.add_column("Total", justify="right", width=16)
    for v in rows:
        table.add_row(v.name, str(v.purchase_count), f"{v.total_spent:,.2f}")
    console.print(table)


# ── exclude / include ──────────────────────────────────────────────────────────


@click.command()
@click.argument("purchase_id")
@click.option("--reason", default="manual", show_default=True, help="Why it is excluded.")
@click.pass_obj
def exclude(service: LedgerService, purchase_id: str, reason: str) -> None:
    """Exclude a purchase from totals (nothing is deleted)."""
    record = service.exclude(purchase_id, reason)
    if record is None:
        raise click.ClickException(f"No purchase with id {purchase_id!r}")
    console.print(f"[green]Excluded[/green] {record.vendor} {_format_amount(record.amount, record.currency)}")


@click.command()
@click.argument("purchase_id")
@click.pass_obj
def include(service: LedgerService, purchase_id: str) -> None:
    """Restore an excluded purchase."""
    record = service.include(purchase_id)
    if record is None:
        raise click.ClickException(f"No purchase with id {purchase_id!r}")
    console.print(f"[green]Included[/green] {record.vendor} {_format_amount(record.amount, record.currency)}")


# ── analysis cache ─────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def newsletters(service: LedgerService) -> None:
    """List emails the analyzer labelled as newsletters."""
    rows = service.newsletters()
    if not rows:
        console.print("[yellow]No newsletters found.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Date", width=10)
    table.add_column("From", max_width=36)
    table.add_column("Subject", max_width=50)
    table.add_column("Filtered", width=8)
    for row in rows:
        table.add_row(
            (row.email_date or "")[:10],
            row.from_address or "",
            row.subject or "",
            "yes" if row.was_filtered else "",
        )
    console.print(table)


@click.command()
@click.pass_obj
def stats(service: LedgerService) -> None:
    """Analysis counts and oracle calls saved by pre-filtering."""
    s = service.stats()
    console.print(
        Panel(
            f"Analysed: [bold]{s.total_analyzed}[/bold] email(s) over {s.days_analyzed} day(s)\n"
            f"Pre-filtered: {s.total_filtered} (≈${s.estimated_cost_saved:.2f} saved)",
            title="[bold]Analysis[/bold]",
            border_style="blue",
        )
    )


@click.command()
@click.option("--days", default=30, show_default=True, type=int, help="Keep analyses newer than this.")
@click.pass_obj
def prune(service: LedgerService, days: int) -> None:
    """Delete stored analyses older than N days."""
    removed = service.prune(days)
    console.print(f"Removed [bold]{removed}[/bold] analysis row(s) older than {days} day(s).")


# ── watch ──────────────────────────────────────────────────────────────────────


@click.command()
@click.option(
    "--spool",
    "spool_dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory of JSON email files (defaults to MAILLEDGER_SPOOL_DIR).",
)
@click.pass_obj
def watch(service: LedgerService, spool_dir: Path | None) -> None:
    """Poll a spool directory and extract purchases until interrupted."""
    from mailledger.agent.watcher import serve

    logging.getLogger().setLevel(logging.INFO)
    console.print(f"Watching [bold]{spool_dir or service.config.spool_dir}[/bold] — Ctrl+C to stop")
    try:
        asyncio.run(serve(service.config, spool_dir))
    except KeyboardInterrupt:
        console.print("Stopped.")
