"""
CLI interface for Adventure Forge.

Operator commands for credits, regeneration budgets, the response cache and
one-off scaffold generation.
"""

import json
import logging
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from adventure_forge.config.loader import ForgeConfig, default_config, load_forge_config
from adventure_forge.core.cache import ResponseCache
from adventure_forge.core.errors import (
    AdventureForgeError,
    InsufficientCredits,
    RateLimitExceeded,
    RegenerationLimitReached,
)
from adventure_forge.core.ledger import CreditLedger
from adventure_forge.core.orchestrator import GenerationOrchestrator
from adventure_forge.core.regeneration import RegenerationGovernor
from adventure_forge.core.requests import AdventureContext, Difficulty, ScaffoldRequest, Stakes
from adventure_forge.sdk.openai_client import OpenAICompletionClient
from adventure_forge.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
# Expected, user-facing refusals (no credits, rate limited, budget exhausted)
EXIT_CODE_REFUSED = 2


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """Adventure Forge CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        ctx.obj = load_forge_config(config_path) if config_path else default_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if ctx.invoked_subcommand is None:
        console.print("Adventure Forge - Use --help to see available commands")


def _config(ctx: typer.Context) -> ForgeConfig:
    return ctx.obj if isinstance(ctx.obj, ForgeConfig) else default_config()


@app.command()
def init(ctx: typer.Context):
    """Initialize the Adventure Forge database."""
    config = _config(ctx)
    try:
        initialize_schema(config.storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(ctx: typer.Context, user_id: str = typer.Argument(..., help="User identifier")):
    """Show a user's credit balance."""
    ledger = CreditLedger(_config(ctx).storage.db_path)
    try:
        credits = ledger.get_balance(user_id)
    except AdventureForgeError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"User {user_id}: [bold]{credits}[/] credits")


@app.command("add-credits")
def add_credits(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    amount: int = typer.Argument(..., help="Number of credits to add"),
    source: str = typer.Option(
        "manual",
        "--source",
        "-s",
        help="Credit source; 'purchase' also counts toward lifetime purchases"
    )
):
    """Add credits to a user's balance."""
    ledger = CreditLedger(_config(ctx).storage.db_path)
    try:
        new_balance = ledger.add_credits(user_id, amount, source)
    except (ValueError, AdventureForgeError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Added {amount} credits to {user_id}. New balance: {new_balance}")


@app.command()
def history(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum rows to show")
):
    """Show a user's credit transactions, newest first."""
    ledger = CreditLedger(_config(ctx).storage.db_path)
    try:
        transactions = ledger.get_transactions(user_id, limit)
    except (ValueError, AdventureForgeError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not transactions:
        console.print(f"[dim]No credit transactions for {user_id}.[/]")
        return

    table = Table(title=f"Credit transactions for {user_id}")
    table.add_column("When")
    table.add_column("Kind")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    for transaction in transactions:
        table.add_row(
            transaction.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            transaction.kind.value,
            transaction.credit_type,
            f"{transaction.amount:+d}",
            str(transaction.balance_after)
        )
    console.print(table)


@app.command()
def regenerations(
    ctx: typer.Context,
    adventure_id: str = typer.Argument(..., help="Adventure identifier")
):
    """Show regeneration usage for an adventure."""
    config = _config(ctx)
    governor = RegenerationGovernor(
        config.storage.db_path,
        scaffold_limit=config.regeneration.scaffold_limit,
        expansion_limit=config.regeneration.expansion_limit
    )
    try:
        counts = governor.get_counts(adventure_id)
    except AdventureForgeError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Adventure:[/bold] {adventure_id}")
    console.print(
        f"Scaffold: {counts.scaffold_used}/{governor.scaffold_limit} used, "
        f"{counts.scaffold_remaining} remaining"
    )
    console.print(
        f"Expansion: {counts.expansion_used}/{governor.expansion_limit} used, "
        f"{counts.expansion_remaining} remaining"
    )


@app.command("cache-stats")
def cache_stats(ctx: typer.Context):
    """Show response cache statistics."""
    cache = ResponseCache(_config(ctx).storage.db_path)
    try:
        stats = cache.get_stats()
    except AdventureForgeError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("\n[bold]LLM Response Cache[/bold]")
    console.print("-" * 40)
    console.print(f"Entries: {stats['entries']:,}")
    console.print(f"Hits: {stats['hits']:,}")
    console.print(f"Cached tokens: {stats['total_tokens']:,}")


@app.command()
def scaffold(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User paying for the generation"),
    frame: str = typer.Option(..., "--frame", "-f", help="Setting frame, e.g. witherwild"),
    focus: str = typer.Option(..., "--focus", help="Adventure focus"),
    party_size: int = typer.Option(4, "--party-size", help="Number of player characters"),
    party_level: int = typer.Option(1, "--party-level", help="Party level"),
    difficulty: Difficulty = typer.Option(Difficulty.STANDARD, "--difficulty"),
    stakes: Stakes = typer.Option(Stakes.PERSONAL, "--stakes")
):
    """Generate an adventure scaffold for a user (consumes one credit)."""
    config = _config(ctx)
    try:
        request = ScaffoldRequest(adventure=AdventureContext(
            frame=frame,
            focus=focus,
            party_size=party_size,
            party_level=party_level,
            difficulty=difficulty,
            stakes=stakes
        ))
    except ValueError as e:
        console.print(f"[red]Invalid request:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        llm = OpenAICompletionClient(config.llm.model, timeout=config.llm.timeout_seconds)
        orchestrator = GenerationOrchestrator.from_config(config, llm)
        outcome = orchestrator.generate_scaffold(user_id, request)
    except (InsufficientCredits, RateLimitExceeded, RegenerationLimitReached) as e:
        console.print(f"[yellow]{str(e)}[/]")
        sys.exit(EXIT_CODE_REFUSED)
    except Exception as e:
        console.print(f"[red]Generation failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    source = "cached" if outcome.cached else "generated"
    console.print(f"[green]✓[/] Adventure {outcome.adventure_id} ({source})")
    console.print(f"Credits remaining: {outcome.remaining_credits}")
    console.print_json(json.dumps(outcome.result.to_dict()))


if __name__ == "__main__":
    app()
