"""
MarketGate CLI Tool
Command-line interface for the MarketGate API.
"""

import json
import sys
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.table import Table

from .client import MarketGateClient, MarketGateError


console = Console()

PROVENANCE_STYLES = {
    "live": "green",
    "cached": "cyan",
    "fallback": "yellow",
}


def get_client(url: Optional[str]) -> MarketGateClient:
    """Create a client instance."""
    return MarketGateClient(base_url=url)


@click.group()
@click.option("--url", "-u", envvar="MARKETGATE_URL", default="http://localhost:8000", help="API server URL")
@click.pass_context
def cli(ctx, url: str):
    """MarketGate CLI - market quotes with graceful degradation."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url


@cli.command()
@click.pass_context
def health(ctx):
    """Check API server health."""
    with get_client(ctx.obj["url"]) as client:
        try:
            status = client.health()
        except (httpx.HTTPError, MarketGateError) as e:
            console.print(f"❌ [red]Connection failed: {e}[/red]")
            sys.exit(1)

        if status.get("status") == "healthy":
            console.print("✅ [green]API is healthy[/green]")
            configured = "yes" if status.get("provider_configured") else "[red]no[/red]"
            console.print(f"   Provider configured: {configured}")
            cache = status.get("cache", {})
            console.print(f"   Cached quotes: {cache.get('total_entries', 0)}")
        else:
            console.print("⚠️ [yellow]API status unknown[/yellow]")


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def quotes(ctx, symbols: tuple[str, ...], as_json: bool):
    """Show quotes for SYMBOLS."""
    with get_client(ctx.obj["url"]) as client:
        try:
            results = client.get_quotes(list(symbols))
        except (httpx.HTTPError, MarketGateError) as e:
            console.print(f"❌ [red]Error: {e}[/red]")
            sys.exit(1)

    if as_json:
        data = [
            {
                "symbol": q.symbol,
                "price": q.price,
                "change": q.change,
                "changePercent": round(q.change_percent, 2),
                "provenance": q.provenance,
            }
            for q in results
        ]
        console.print(json.dumps(data, indent=2))
        return

    table = Table(title=f"Quotes ({len(results)})")
    table.add_column("Symbol", style="cyan")
    table.add_column("Price", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Range", justify="right")
    table.add_column("Source")

    for q in results:
        change_color = "green" if q.change >= 0 else "red"
        source_style = PROVENANCE_STYLES.get(q.provenance, "white")
        table.add_row(
            q.symbol,
            f"{q.price:,.2f}",
            f"[{change_color}]{q.change:+.2f}[/{change_color}]",
            f"[{change_color}]{q.change_percent:+.2f}%[/{change_color}]",
            f"{q.low:,.2f} - {q.high:,.2f}",
            f"[{source_style}]{q.provenance}[/{source_style}]",
        )

    console.print(table)
    fallback_count = sum(1 for q in results if q.is_fallback)
    if fallback_count:
        console.print(f"[dim]{fallback_count} placeholder quote(s); live data unavailable[/dim]")


@cli.command()
@click.argument("identifier")
@click.option("--fail", "record_failure", is_flag=True, help="Record a failed attempt first")
@click.option("--clear", "clear", is_flag=True, help="Clear the identifier")
@click.option("--max-attempts", type=int, default=None, help="Failures allowed per window")
@click.pass_context
def ratelimit(ctx, identifier: str, record_failure: bool, clear: bool, max_attempts: Optional[int]):
    """Show (or update) the rate limit state of IDENTIFIER."""
    with get_client(ctx.obj["url"]) as client:
        try:
            if clear:
                cleared = client.clear_rate_limit(identifier)
                console.print("🧹 Cleared" if cleared else "[dim]Nothing to clear[/dim]")
            if record_failure:
                status = client.record_failure(identifier, max_attempts=max_attempts)
            else:
                status = client.check_rate_limit(identifier, max_attempts=max_attempts)
        except (httpx.HTTPError, MarketGateError) as e:
            console.print(f"❌ [red]Error: {e}[/red]")
            sys.exit(1)

    if status.allowed:
        console.print(f"✅ [green]Allowed[/green] ({status.remaining_attempts} attempt(s) remaining)")
    else:
        console.print(f"🔒 [red]Locked out[/red] for {status.lockout_minutes} minute(s)")
    if status.message:
        console.print(f"   {status.message}")


def main():
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
