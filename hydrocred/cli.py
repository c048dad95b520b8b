"""
Command line access to the credit ledger.
"""

import asyncio
import json
import sys

import typer
from rich.console import Console
from rich.table import Table

from hydrocred.cache.cursor_store import RedisCursorStore
from hydrocred.core.exceptions import HydroCredException
from hydrocred.core.logging import setup_logging, get_logger
from hydrocred.indexer.replay import replay_ledger
from hydrocred.services.credit_ledger_service import CreditLedgerService
from hydrocred.utils.formatting import explorer_tx_url, format_token_id, normalize_address


console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="HydroCred credit ledger commands")


def _run(coro):
    setup_logging()
    try:
        return asyncio.run(coro)
    except HydroCredException as e:
        console.print(f"❌ {e.message}")
        sys.exit(1)


@app.command()
def events(
    from_block: int = typer.Option(0, "--from-block", "-f", help="First block to include"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    replay: bool = typer.Option(False, "--replay", help="Also show replayed unit states"),
):
    """Show the merged credit ledger since a block."""
    async def _events():
        async with CreditLedgerService.from_settings() as service:
            return await service.get_credit_events(from_block)

    ledger = _run(_events())

    if as_json:
        console.print_json(json.dumps({
            "events": ledger.to_dicts(),
            "count": len(ledger),
            "fromBlock": ledger.from_block,
            "toBlock": ledger.to_block,
        }))
        return

    table = Table(title=f"Credit ledger (blocks {ledger.from_block}-{ledger.to_block})")
    table.add_column("Block", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Credits")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Tx", overflow="fold")

    for event in ledger:
        data = event.to_dict()
        if data["type"] == "issued":
            credits = f"{format_token_id(data['fromId'])}-{format_token_id(data['toId'])}"
        else:
            credits = format_token_id(data["tokenId"])
        table.add_row(
            str(data["blockNumber"]),
            data["type"],
            credits,
            data.get("from", ""),
            data.get("to", ""),
            explorer_tx_url(data["transactionHash"]),
        )
    console.print(table)
    if ledger.malformed_count:
        console.print(f"⚠️ Skipped {ledger.malformed_count} malformed log entries")

    if replay:
        result = replay_ledger(ledger)
        units = Table(title="Replayed credit units")
        units.add_column("Token", style="cyan")
        units.add_column("Owner")
        units.add_column("Retired")
        for token_id in sorted(result.units):
            unit = result.units[token_id]
            units.add_row(format_token_id(token_id), unit.owner or "", "yes" if unit.retired else "no")
        console.print(units)


@app.command()
def holdings(address: str):
    """Show credits currently held by an address."""
    address = normalize_address(address)

    async def _holdings():
        async with CreditLedgerService.from_settings() as service:
            return await service.get_holdings(address)

    snapshot = _run(_holdings())

    table = Table(title=f"Holdings of {address}")
    table.add_column("Token", style="cyan")
    table.add_column("Status", style="green")
    for holding in snapshot.holdings:
        table.add_row(format_token_id(holding.token_id), "retired" if holding.is_retired else "active")
    console.print(table)
    console.print(
        f"Total: {snapshot.total_credits}  Active: {snapshot.active_credits}  Retired: {snapshot.retired_credits}"
    )


@app.command()
def retired(token_id: int):
    """Check whether a credit has been retired."""
    async def _retired():
        async with CreditLedgerService.from_settings() as service:
            return await service.is_token_retired(token_id)

    flag = _run(_retired())
    console.print(f"{format_token_id(token_id)}: {'retired' if flag else 'active'}")


@app.command()
def owner(token_id: int):
    """Show the current owner of a credit."""
    async def _owner():
        async with CreditLedgerService.from_settings() as service:
            return await service.get_token_owner(token_id)

    console.print(f"{format_token_id(token_id)}: {_run(_owner())}")


@app.command()
def certifier(address: str):
    """Check whether an address holds the certifier role."""
    address = normalize_address(address)

    async def _certifier():
        async with CreditLedgerService.from_settings() as service:
            return await service.is_certifier(address)

    console.print(f"{address}: {'certifier' if _run(_certifier()) else 'not a certifier'}")


@app.command()
def sync(key: str = typer.Option("default", help="Cursor key")):
    """Fetch events after the stored cursor and advance it."""
    async def _sync():
        async with CreditLedgerService.from_settings(cursor_store=RedisCursorStore()) as service:
            return await service.sync(key)

    result = _run(_sync())
    console.print(
        f"✅ Synced {result.new_events} events; cursor {result.previous_cursor} -> {result.cursor}"
    )


@app.command()
def endpoints():
    """Probe the configured RPC endpoints."""
    async def _endpoints():
        async with CreditLedgerService.from_settings() as service:
            try:
                await service.pool.select_endpoint()
            except HydroCredException as e:
                logger.warning("Endpoint selection failed", error=e.message)
            return service.pool.health_report()

    report = _run(_endpoints())

    table = Table(title="RPC endpoints")
    table.add_column("Priority", justify="right")
    table.add_column("URL")
    table.add_column("Health", style="green")
    table.add_column("Active")
    table.add_column("Last error", overflow="fold")
    for row in report:
        table.add_row(
            str(row["priority"]),
            row["url"],
            row["health"],
            "✅" if row["active"] else "",
            row["last_error"] or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
