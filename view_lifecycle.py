#!/usr/bin/env python3
"""
View policies, documents, claims and notifications from the lifecycle database.

Usage:
    python view_lifecycle.py                     # Policies and claims overview
    python view_lifecycle.py POL-xxx             # One policy with its documents and claims
    python view_lifecycle.py CLM-xxx             # One claim with history and messages
    python view_lifecycle.py --notifications     # Latest notifications
    python view_lifecycle.py --audit             # Latest audit entries
"""

import argparse
import os
import sys
from datetime import datetime
from typing import Any, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.claims import status_label
from src.lifecycle import Claim, ClaimStatus, Document, Policy, PolicyStatus
from src.storage import LifecycleStore
from src.utils.config import get_settings

console = Console()

POLICY_COLORS = {
    PolicyStatus.ACTIVE: "green",
    PolicyStatus.EXPIRED: "yellow",
    PolicyStatus.CANCELLED: "red",
}

CLAIM_COLORS = {
    ClaimStatus.SETTLED: "green",
    ClaimStatus.REJECTED: "red",
    ClaimStatus.NEED_MORE_INFO: "yellow",
}


def format_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def truncate(text: Any, max_len: int = 50) -> str:
    """Truncate text with ellipsis."""
    if not text:
        return ""
    text = str(text)
    if len(text) > max_len:
        return text[:max_len-3] + "..."
    return text


def colored(value: str, color: Optional[str]) -> str:
    return f"[{color}]{value}[/{color}]" if color else value


def make_policy_table(policies: List[Policy]) -> Table:
    table = Table(title="Policies", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Policy ID", style="bold")
    table.add_column("Owner")
    table.add_column("Status")
    table.add_column("Payment")
    table.add_column("Premium", justify="right")
    table.add_column("Start", style="dim")
    table.add_column("End", style="dim")
    table.add_column("Docs", justify="right")

    for policy in policies:
        table.add_row(
            policy.policy_id,
            truncate(policy.owner, 20),
            colored(policy.status.value, POLICY_COLORS.get(policy.status)),
            policy.payment_status.value,
            f"{policy.premium:,.2f}",
            format_datetime(policy.start_date),
            format_datetime(policy.end_date),
            str(len(policy.document_refs)),
        )
    return table


def make_document_table(documents: List[Document]) -> Table:
    table = Table(title="Documents", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Number", style="bold")
    table.add_column("Kind")
    table.add_column("Active")
    table.add_column("Size", justify="right")
    table.add_column("Generated", style="dim")
    table.add_column("Location", overflow="fold")

    for doc in documents:
        table.add_row(
            doc.number,
            doc.kind.value,
            "Yes" if doc.is_active else "[dim]superseded[/dim]",
            f"{doc.byte_size:,}",
            format_datetime(doc.generated_at),
            truncate(doc.blob_location, 60),
        )
    return table


def make_claim_table(claims: List[Claim]) -> Table:
    table = Table(title="Claims", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Claim ID", style="bold")
    table.add_column("Policy")
    table.add_column("Status")
    table.add_column("Expert")
    table.add_column("Incident")
    table.add_column("Updated", style="dim")

    for claim in claims:
        table.add_row(
            claim.claim_id,
            claim.policy_ref,
            colored(status_label(claim.status), CLAIM_COLORS.get(claim.status)),
            claim.expert_ref or "-",
            truncate(f"{claim.incident.type}: {claim.incident.description}", 40),
            format_datetime(claim.updated_at),
        )
    return table


def show_policy(store: LifecycleStore, policy_id: str):
    policy = store.get_policy(policy_id)
    if policy is None:
        console.print(f"[red]Policy not found: {policy_id}[/red]")
        return
    console.print(Panel(f"[bold cyan]Policy: {policy.policy_id}[/bold cyan]", expand=False))
    console.print(f"  Owner: {policy.owner}")
    console.print(f"  Status: [bold]{policy.status.value}[/bold]")
    console.print(f"  Payment: {policy.payment_status.value} {policy.transaction_id or ''}")
    console.print(f"  Window: {format_datetime(policy.start_date)} -> {format_datetime(policy.end_date)}")
    console.print(f"  Premium: {policy.premium:,.2f} {get_settings().currency}")
    console.print()
    console.print(make_document_table(store.list_documents_by_policy(policy_id)))
    claims = store.list_claims_by_policy(policy_id)
    if claims:
        console.print(make_claim_table(claims))


def show_claim(store: LifecycleStore, claim_id: str):
    claim = store.get_claim(claim_id)
    if claim is None:
        console.print(f"[red]Claim not found: {claim_id}[/red]")
        return
    console.print(Panel(f"[bold cyan]Claim: {claim.claim_id}[/bold cyan]", expand=False))
    console.print(f"  Policy: {claim.policy_ref}")
    console.print(f"  Status: [bold]{status_label(claim.status)}[/bold]")
    console.print(f"  Expert: {claim.expert_ref or '[dim]none[/dim]'}")
    console.print(f"  Incident: {claim.incident.date:%Y-%m-%d} at {claim.incident.location}")
    console.print(f"    {claim.incident.description}")

    console.print("\n[bold]History[/bold]")
    for entry in claim.history:
        console.print(f"  {format_datetime(entry.at)}  {entry.status.value:<16} {entry.changed_by}  {entry.note}")

    if claim.messages:
        console.print("\n[bold]Messages[/bold]")
        for msg in claim.messages:
            console.print(f"  [cyan]{msg.from_user}[/cyan] ({msg.from_role.value}): {truncate(msg.message, 80)}")

    if claim.attachments:
        console.print("\n[bold]Attachments[/bold]")
        for att in claim.attachments:
            console.print(f"  {att.name}  {att.url}")


def show_notifications(store: LifecycleStore, limit: int):
    table = Table(title="Notifications", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Created", style="dim")
    table.add_column("Recipient")
    table.add_column("Type", style="bold")
    table.add_column("Message")
    for n in store.list_notifications(limit=limit):
        table.add_row(format_datetime(n.created_at), n.recipient_id, n.type.value, truncate(n.message, 60))
    console.print(table)


def show_audit(store: LifecycleStore, limit: int):
    table = Table(title="Audit log", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("At", style="dim")
    table.add_column("Actor")
    table.add_column("Action")
    table.add_column("Entity")
    table.add_column("After", overflow="fold")
    for entry in store.list_audit_entries()[-limit:]:
        table.add_row(
            format_datetime(entry.at),
            entry.actor_id,
            entry.action.value,
            f"{entry.entity_type} {entry.entity_id}",
            truncate(entry.after, 60),
        )
    console.print(table)


def main():
    parser = argparse.ArgumentParser(description="Inspect the lifecycle database")
    parser.add_argument("record_id", nargs="?", help="POL-... or CLM-... identifier")
    parser.add_argument("--notifications", action="store_true", help="Show latest notifications")
    parser.add_argument("--audit", action="store_true", help="Show latest audit entries")
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    settings = get_settings()
    console.print(f"\n[bold]Database:[/bold] {settings.db_path.resolve()}\n")
    if not settings.db_path.exists():
        console.print("[yellow]No database found yet.[/yellow]")
        return

    store = LifecycleStore(settings.db_path)

    if args.notifications:
        show_notifications(store, args.limit)
    elif args.audit:
        show_audit(store, args.limit)
    elif args.record_id and args.record_id.startswith("POL-"):
        show_policy(store, args.record_id)
    elif args.record_id and args.record_id.startswith("CLM-"):
        show_claim(store, args.record_id)
    else:
        console.print(make_policy_table(store.list_policies(limit=args.limit)))
        console.print(make_claim_table(store.list_claims(limit=args.limit)))


if __name__ == "__main__":
    main()
