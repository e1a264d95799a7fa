"""
CLI interface for Knowledge Gate.

Provides command-line access to queries, the ledger and setup.
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import FloatPrompt, Prompt
from rich.table import Table

from knowledge_gate.config.loader import OrchestratorConfig, load_config, load_model_catalog
from knowledge_gate.core.balance import BalanceService
from knowledge_gate.core.budget import BudgetAuthorizer, derive_token_cap
from knowledge_gate.core.chat import ChatSession, generate_context_token
from knowledge_gate.core.compressor import HistoryCompressor
from knowledge_gate.core.errors import OrchestrationError
from knowledge_gate.core.executor import SingleCallExecutor
from knowledge_gate.core.orchestrator import (
    OutcomeStatus,
    QueryOrchestrator,
    QueryOutcome,
    QueryRequest,
)
from knowledge_gate.core.pricing import Model, ModelCatalog, format_sparks, format_sparks_detailed
from knowledge_gate.core.results import CallResult, CallStatus, CancellationToken, SearchMode
from knowledge_gate.core.transcript import Role, Turn, append_turn
from knowledge_gate.sdk.openai_client import OpenRouterClient
from knowledge_gate.sdk.summarizer import UpstreamSummarizer
from knowledge_gate.storage.repository import SqliteLedger, get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

SPEND_PRESETS = [("Low", 0.5), ("Standard", 1.0), ("High", 2.5)]


class ConsoleConfirmation:
    """Asks for a spend limit on the terminal, one model at a time."""

    def __init__(self, config: OrchestratorConfig):
        self.config = config
        self.cancel_token: Optional[CancellationToken] = None
        self._lock = asyncio.Lock()

    async def request_ceiling(self, model: Model, available_balance: float) -> Optional[float]:
        async with self._lock:
            if self._stopped():
                return None
            ceiling = await asyncio.to_thread(self._ask, model, available_balance)
            # The prompt thread cannot be interrupted; drop its answer once stopped.
            if self._stopped():
                return None
            return ceiling

    def _stopped(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def _ask(self, model: Model, available_balance: float) -> Optional[float]:
        presets = ", ".join(f"{label} {sparks}" for label, sparks in SPEND_PRESETS)
        console.print(
            f"\n[bold]{model.name}[/bold] is in the [bold]{model.tier.value}[/bold] tier. "
            f"Balance: {format_sparks(available_balance)} Sparks. Presets: {presets}"
        )
        ceiling = FloatPrompt.ask("Spend limit in Sparks (0 to cancel)", default=SPEND_PRESETS[1][1])
        if ceiling is None or ceiling <= 0:
            return None
        if ceiling > available_balance:
            console.print("[yellow]Limit exceeds your balance; the request may not be fully paid.[/]")
        cap = derive_token_cap(
            model, ceiling, self.config.pricing.flat_fee_sparks, self.config.pricing.usd_to_sparks_rate
        )
        console.print(f"[dim]Up to {'unlimited' if cap is None else f'{cap:,}'} tokens[/]")
        return ceiling


class Engine:
    """Query orchestrator and chat session sharing one upstream, balance and ledger."""

    def __init__(self, config: OrchestratorConfig, catalog: ModelCatalog, balance: BalanceService):
        pricing = config.pricing
        upstream = OpenRouterClient(
            base_url=config.execution.base_url,
            timeout=config.execution.timeout_seconds,
        )
        self.confirmation = ConsoleConfirmation(config)
        authorizer = BudgetAuthorizer(
            confirmation=self.confirmation,
            flat_fee=pricing.flat_fee_sparks,
            usd_to_sparks_rate=pricing.usd_to_sparks_rate,
        )
        executor = SingleCallExecutor(
            upstream,
            timeout=config.execution.timeout_seconds,
            flat_fee=pricing.flat_fee_sparks,
            usd_to_sparks_rate=pricing.usd_to_sparks_rate,
        )
        ledger = SqliteLedger(config.ledger.db_path)

        self.orchestrator = QueryOrchestrator(
            authorizer,
            executor,
            balance,
            ledger=ledger,
            auxiliary_model=catalog.by_id.get(config.models.auxiliary_model),
            conflict_threshold=config.conflict.min_similarity,
        )
        compressor = HistoryCompressor(
            UpstreamSummarizer(upstream, config.models.auxiliary_model),
            threshold_chars=config.compression.threshold_chars,
            immediate_context=config.compression.immediate_context,
            chunk_size=config.compression.chunk_size,
        )
        self.chat = ChatSession(
            authorizer,
            executor,
            balance,
            compressor,
            catalog,
            ledger=ledger,
            fallback_model_id=config.models.chat_fallback_model,
        )


def _print_update(result: CallResult) -> None:
    if result.status is CallStatus.SUCCESS:
        console.print(f"[green]✓[/] {result.model_name} answered")
    elif result.status is CallStatus.ERROR:
        console.print(f"[red]✗[/] {result.model_name}: {escape(result.error or '')}")
    elif result.status is CallStatus.CANCELLED:
        console.print(f"[dim]- {result.model_name} skipped[/]")


async def _run_query(engine: Engine, request: QueryRequest) -> QueryOutcome:
    token = CancellationToken()
    engine.confirmation.cancel_token = token

    def interrupt() -> None:
        token.cancel()
        console.print("[yellow]Stopping... press Enter if a spend prompt is still open.[/]")

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt)
    except (NotImplementedError, RuntimeError):
        pass
    try:
        return await engine.orchestrator.run(
            request,
            cancel_token=token,
            on_update=_print_update,
            on_status=lambda message: console.print(f"[dim]{message}[/]"),
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


async def _chat_loop(session: ChatSession, query: str, outcome: QueryOutcome) -> None:
    """Keep talking to the model that answered until the user sends a blank line."""
    context_token = generate_context_token(query, outcome.history_results)
    if context_token is None:
        console.print("[yellow]No answer to continue from.[/]")
        return

    answer = next(r for r in outcome.history_results if r.is_success)
    transcript = (Turn(Role.USER, query), Turn(Role.ASSISTANT, answer.text or ""))
    while True:
        text = await asyncio.to_thread(
            Prompt.ask, "\n[bold]You[/bold] (blank to finish)", default="", show_default=False
        )
        if not text.strip():
            return
        try:
            reply = await session.continue_chat(context_token, append_turn(transcript, Turn(Role.USER, text)))
        except OrchestrationError as e:
            console.print(f"[red]Error:[/] {escape(str(e))}")
            continue
        except ValueError as e:
            console.print(f"[red]Error:[/] {escape(str(e))}")
            return
        transcript = reply.transcript
        console.print(f"\n[bold]Gatekeeper[/bold] {escape(reply.turn.text)}")
        console.print(
            f"[dim]{format_sparks_detailed(reply.charge.sparks_charged)} Sparks, "
            f"balance {format_sparks(reply.settlement.balance_after)}[/]"
        )


def _display_outcome(outcome: QueryOutcome) -> None:
    """Display results with per-result status and cost."""
    if outcome.status is OutcomeStatus.CANCELLED:
        console.print("\n[yellow]Search stopped.[/] Nothing was charged.")
        return
    if outcome.status is OutcomeStatus.FAILED:
        console.print(f"\n[red]Error:[/] {escape(outcome.message or '')}")
        return

    for result in outcome.history_results:
        badge = "[red]error[/]" if result.status is CallStatus.ERROR else "[green]ok[/]"
        conflict = " [magenta](in conflict)[/]" if result.in_conflict else ""
        console.print(f"\n[bold]{result.model_name}[/bold] {badge}{conflict}")
        if result.is_success:
            console.print(escape(result.text or ""))
            console.print(
                f"[dim]{result.tokens_used:,} tokens, "
                f"{format_sparks_detailed(result.sparks_spent)} Sparks[/]"
            )
        else:
            console.print(escape(result.error or ""))

    for pair in sorted(outcome.conflicts, key=lambda p: (p.a, p.b)):
        console.print(f"[magenta]Conflict[/] {pair.a} ↔ {pair.b}: {pair.reason}")

    if outcome.fallback and outcome.fallback.fallback_used:
        console.print(f"[dim]Fallback: tried {', '.join(outcome.fallback.attempted)}[/]")

    settlement = outcome.settlement
    if settlement is not None:
        console.print(
            f"\nCharged {format_sparks_detailed(settlement.charged)} Sparks, "
            f"balance {format_sparks(settlement.balance_after)}"
        )
        if settlement.over_budget:
            console.print(
                f"[red]Insufficient Sparks:[/] {format_sparks_detailed(settlement.shortfall)} "
                "Sparks of this query could not be paid for."
            )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine logs"),
):
    """Knowledge Gate CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if ctx.invoked_subcommand is None:
        console.print("Knowledge Gate - Use --help to see available commands")


@app.command()
def init(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
):
    """Initialize the ledger database."""
    try:
        config = load_config(config_path)
        initialize_schema(config.ledger.db_path)
        console.print("[green]✓[/] Ledger initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing ledger:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
    days: int = typer.Option(30, "--days", "-d", help="Days of spend to summarize"),
):
    """Show spend over the last days."""
    config = load_config(config_path)
    initialize_schema(config.ledger.db_path)
    stats = get_repository(config.ledger.db_path).get_spend_stats(days=days)
    console.print(f"[green]✓[/] Ledger at {config.ledger.db_path}")
    console.print(
        f"{stats['total_transactions']} transactions, "
        f"{format_sparks_detailed(stats['total_sparks'])} Sparks, "
        f"${stats['total_cost_usd']:,.4f} in the last {days} days"
    )


@app.command()
def ask(
    query: str = typer.Argument(..., help="What knowledge do you seek?"),
    mode: SearchMode = typer.Option(SearchMode.STANDARD, "--mode", "-m", help="Search mode"),
    catalog_path: str = typer.Option(..., "--catalog", "-c", help="Path to model catalog YAML"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
    balance: Optional[float] = typer.Option(None, "--balance", "-b", help="Available Sparks"),
    models: Optional[List[str]] = typer.Option(None, "--model", help="Model id for custom mode (repeatable)"),
    chat: bool = typer.Option(False, "--chat", help="Continue the conversation after the answer"),
):
    """Ask a question in one of the five search modes."""
    try:
        config = load_config(config_path)
        catalog = load_model_catalog(catalog_path)
        sparks = BalanceService(config.pricing.starting_sparks if balance is None else balance)
        engine = Engine(config, catalog, sparks)
        request = QueryRequest.for_mode(query, mode, catalog, custom_ids=models or ())
        outcome = asyncio.run(_run_query(engine, request))
    except Exception as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    _display_outcome(outcome)
    if outcome.status is OutcomeStatus.FAILED:
        sys.exit(EXIT_CODE_FAIL)
    if chat and outcome.status is OutcomeStatus.COMPLETED:
        asyncio.run(_chat_loop(engine.chat, query, outcome))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ledger(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Filter by search mode"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of transactions"),
):
    """List recent Sparks transactions."""
    config = load_config(config_path)
    initialize_schema(config.ledger.db_path)
    charges = get_repository(config.ledger.db_path).get_recent_charges(mode=mode, limit=limit)
    if not charges:
        console.print("\n[bold yellow]No transactions found[/]")
        return

    table = Table(title="Sparks Transactions")
    table.add_column("Time")
    table.add_column("Model")
    table.add_column("Mode")
    table.add_column("Tokens", justify="right")
    table.add_column("Sparks", justify="right")
    table.add_column("USD", justify="right")
    for charge in charges:
        table.add_row(
            charge.timestamp.strftime("%Y-%m-%d %H:%M"),
            charge.model_id,
            charge.mode,
            f"{charge.tokens_used:,}",
            format_sparks_detailed(charge.sparks_charged),
            f"${charge.cost_usd:.6f}",
        )
    console.print(table)


if __name__ == "__main__":
    app()
