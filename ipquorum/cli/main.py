"""
Command Line Interface for ipquorum.

Usage:
    ipquorum check --disable httpbin --trust ipify=3
    ipquorum run --interval 5m
    ipquorum providers
    ipquorum serve --port 8090
"""

import asyncio
from typing import Optional

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ipquorum.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_ROUND_DEADLINE,
    QuorumContext,
    QuorumSettings,
    build_context,
    parse_duration,
    parse_trust_overrides,
    split_list,
)
from ipquorum.consensus.engine import DEFAULT_RETAIN_ROUNDS
from ipquorum.core import RoundOrchestrator
from ipquorum.errors import ConfigurationError
from ipquorum.logging import configure_logging
from ipquorum.models import CandidateStatus, RoundResult, RoundStatus, VerdictKind

app = typer.Typer(
    name="ipquorum",
    help="Trust-weighted consensus on this host's external IP address",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

EXIT_CONFIRMED = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_INCONCLUSIVE = 3
EXIT_MULTI_CONFIRMED = 4

MIN_RUN_INTERVAL = 30.0

_EXIT_CODES = {
    RoundStatus.CONFIRMED: EXIT_CONFIRMED,
    RoundStatus.INCONCLUSIVE: EXIT_INCONCLUSIVE,
    RoundStatus.MULTI_CONFIRMED: EXIT_MULTI_CONFIRMED,
}

_VERDICT_COLORS = {
    VerdictKind.CONFIRMED: "green",
    VerdictKind.INCONCLUSIVE: "yellow",
    VerdictKind.MULTI_CONFIRMED: "red",
}


# ============================================================================
# Shared options
# ============================================================================

DISABLE = typer.Option(
    None, "--disable", "-d", envvar="IPQUORUM_DISABLE",
    help="Disable a provider (repeatable or comma separated)",
)
TRUST = typer.Option(
    None, "--trust", "-t", envvar="IPQUORUM_TRUST",
    help="Override a trust weight, NAME=VALUE with VALUE in 1..3 (repeatable or comma separated)",
)
THRESHOLD = typer.Option(
    None, "--threshold", envvar="IPQUORUM_THRESHOLD",
    help="Confirmation threshold (default: 2/3 of enabled trust weight)",
)
MIN_PROVIDERS = typer.Option(
    1, "--min-providers", envvar="IPQUORUM_MIN_PROVIDERS",
    help="Distinct providers required to confirm an address",
)
BYPASS = typer.Option(
    False, "--bypass-rate-limits", envvar="IPQUORUM_BYPASS_RATE_LIMITS",
    help="Ignore per-provider rate limits",
)
DEADLINE = typer.Option(
    f"{DEFAULT_ROUND_DEADLINE:g}s", "--deadline", envvar="IPQUORUM_DEADLINE",
    help="Round deadline, e.g. 10s or 1500ms",
)
INTERVAL = typer.Option(
    f"{DEFAULT_POLL_INTERVAL:g}s", "--interval", "-i", envvar="IPQUORUM_INTERVAL",
    help="Time between rounds, e.g. 5m",
)
RETAIN = typer.Option(
    False, "--retain-candidates", envvar="IPQUORUM_RETAIN_CANDIDATES",
    help="Carry unconfirmed candidates into the next round",
)
RETAIN_ROUNDS = typer.Option(
    DEFAULT_RETAIN_ROUNDS, "--retain-rounds", min=1, envvar="IPQUORUM_RETAIN_ROUNDS",
    help="Rounds a retained report keeps counting",
)
PUBLIC_ONLY = typer.Option(
    False, "--public-only", envvar="IPQUORUM_PUBLIC_ONLY",
    help="Treat private, loopback and reserved answers as malformed",
)
LOG_LEVEL = typer.Option("INFO", "--log-level", envvar="IPQUORUM_LOG_LEVEL", help="Log level")
VERBOSE = typer.Option(0, "--verbose", "-v", count=True, help="Debug logging")
QUIET = typer.Option(False, "--quiet", "-q", help="Only log warnings and errors")


def build_orchestrator(context: QuorumContext) -> RoundOrchestrator:
    """Create the orchestrator for a command; uses the built-in HTTP providers."""
    return RoundOrchestrator(context)


def exit_code_for(status: RoundStatus) -> int:
    return _EXIT_CODES[status]


def _load_context(
    disable: Optional[list[str]],
    trust: Optional[list[str]],
    threshold: Optional[int],
    min_providers: int,
    bypass_rate_limits: bool,
    deadline: str,
    interval: str,
    retain_candidates: bool,
    retain_rounds: int,
    public_only: bool,
    log_level: str,
) -> QuorumContext:
    """Turn command line options into a validated context, or exit with code 2."""
    try:
        settings = QuorumSettings(
            disabled=split_list(disable),
            trust=parse_trust_overrides(split_list(trust)),
            threshold=threshold,
            min_providers=min_providers,
            bypass_rate_limits=bypass_rate_limits,
            round_deadline=parse_duration(deadline, "deadline"),
            poll_interval=parse_duration(interval, "interval"),
            retain_candidates=retain_candidates,
            retain_rounds=retain_rounds,
            require_public=public_only,
            log_level=log_level.upper(),
        )
        return build_context(settings)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_CONFIG) from None


# ============================================================================
# Rendering
# ============================================================================

def _result_json(result: RoundResult) -> dict:
    return {
        "round_id": result.round_id,
        "status": result.status.value,
        "threshold": result.outcome.threshold,
        "verdicts": {
            family.value: {
                "kind": verdict.kind.value,
                "addresses": [str(a) for a in verdict.addresses],
            }
            for family, verdict in result.verdicts.items()
        },
        "candidates": [
            {
                "address": str(c.address),
                "score": c.score,
                "contributors": c.contributors,
                "status": c.status.value,
                "reason": c.reason,
            }
            for c in result.outcome.candidates
        ],
        "diagnostics": result.diagnostics.model_dump(mode="json"),
    }


def _print_result(result: RoundResult) -> None:
    color = _VERDICT_COLORS[VerdictKind(result.status.value)]
    console.print(
        Panel.fit(
            f"[bold {color}]{result.status.value.upper()}[/bold {color}]  "
            f"round {result.round_id}, threshold {result.outcome.threshold}",
            title="ipquorum",
        )
    )

    # Verdicts
    table = Table(show_header=True, box=None)
    table.add_column("Family", style="bold")
    table.add_column("Verdict")
    table.add_column("Address")
    for family, verdict in result.verdicts.items():
        vcolor = _VERDICT_COLORS[verdict.kind]
        table.add_row(
            family.value,
            f"[{vcolor}]{verdict.kind.value}[/{vcolor}]",
            ", ".join(str(a) for a in verdict.addresses) or "[dim]-[/dim]",
        )
    console.print(table)

    # Candidates
    if result.outcome.candidates:
        console.print()
        console.print("[bold]Candidates:[/bold]")
        for candidate in sorted(result.outcome.candidates, key=lambda c: -c.score):
            status = "✓" if candidate.status == CandidateStatus.CONFIRMED else "✗"
            reason = f" ({candidate.reason})" if candidate.reason else ""
            console.print(
                f"  {status} {candidate.address}: score {candidate.score} "
                f"from {', '.join(candidate.contributors)}{reason}"
            )

    diagnostics = result.diagnostics
    if diagnostics.errored or diagnostics.skipped_rate_limited:
        console.print()
        for provider_id, kind in diagnostics.errored.items():
            console.print(f"  [dim]{provider_id}: {kind.value}[/dim]")
        for provider_id in diagnostics.skipped_rate_limited:
            console.print(f"  [dim]{provider_id}: skipped (rate limited)[/dim]")


def _print_summary(result: RoundResult) -> None:
    confirmed = ", ".join(
        f"{family.value}={','.join(str(a) for a in addresses)}"
        for family, addresses in result.outcome.confirmed.items()
    )
    color = _VERDICT_COLORS[VerdictKind(result.status.value)]
    console.print(
        f"[dim]{result.completed_at:%Y-%m-%d %H:%M:%S}[/dim] round {result.round_id}: "
        f"[{color}]{result.status.value}[/{color}] {confirmed}"
    )


# ============================================================================
# Commands
# ============================================================================

@app.command()
def check(
    disable: Optional[list[str]] = DISABLE,
    trust: Optional[list[str]] = TRUST,
    threshold: Optional[int] = THRESHOLD,
    min_providers: int = MIN_PROVIDERS,
    bypass_rate_limits: bool = BYPASS,
    deadline: str = DEADLINE,
    retain_candidates: bool = RETAIN,
    retain_rounds: int = RETAIN_ROUNDS,
    public_only: bool = PUBLIC_ONLY,
    log_level: str = LOG_LEVEL,
    verbose: int = VERBOSE,
    quiet: bool = QUIET,
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Run one round and report the confirmed address.

    Exit codes: 0 confirmed, 2 configuration error, 3 inconclusive,
    4 more than one address confirmed.

    Example:
        ipquorum check --disable httpbin --json
    """
    configure_logging(verbose, quiet, log_level)
    context = _load_context(
        disable, trust, threshold, min_providers, bypass_rate_limits,
        deadline, f"{DEFAULT_POLL_INTERVAL:g}", retain_candidates, retain_rounds,
        public_only, log_level,
    )

    try:
        result = asyncio.run(_check_async(context))
    except Exception as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(EXIT_ERROR) from None

    if output_json:
        console.print_json(data=_result_json(result))
    else:
        _print_result(result)

    raise typer.Exit(exit_code_for(result.status))


async def _check_async(context: QuorumContext) -> RoundResult:
    orchestrator = build_orchestrator(context)
    try:
        return await orchestrator.run_round()
    finally:
        await orchestrator.close()


@app.command()
def run(
    disable: Optional[list[str]] = DISABLE,
    trust: Optional[list[str]] = TRUST,
    threshold: Optional[int] = THRESHOLD,
    min_providers: int = MIN_PROVIDERS,
    bypass_rate_limits: bool = BYPASS,
    deadline: str = DEADLINE,
    interval: str = INTERVAL,
    retain_candidates: bool = RETAIN,
    retain_rounds: int = RETAIN_ROUNDS,
    public_only: bool = PUBLIC_ONLY,
    log_level: str = LOG_LEVEL,
    verbose: int = VERBOSE,
    quiet: bool = QUIET,
    max_rounds: Optional[int] = typer.Option(
        None, "--max-rounds", min=1, help="Stop after this many rounds"
    ),
):
    """
    Poll repeatedly until interrupted with Ctrl-C.

    Example:
        ipquorum run --interval 5m --trust cloudflare=3
    """
    configure_logging(verbose, quiet, log_level)
    context = _load_context(
        disable, trust, threshold, min_providers, bypass_rate_limits,
        deadline, interval, retain_candidates, retain_rounds, public_only, log_level,
    )
    if context.poll_interval < MIN_RUN_INTERVAL:
        err_console.print(
            f"[red]Configuration error: interval: must be at least "
            f"{MIN_RUN_INTERVAL:g}s, got {context.poll_interval:g}s[/red]"
        )
        raise typer.Exit(EXIT_CONFIG)

    console.print(
        Panel.fit(
            f"[bold blue]Providers:[/bold blue] "
            f"{', '.join(p.id for p in context.providers() if p.enabled)}\n"
            f"[bold blue]Interval:[/bold blue] {context.poll_interval:g}s\n"
            f"[bold blue]Deadline:[/bold blue] {context.round_deadline:g}s",
            title="ipquorum run",
        )
    )

    try:
        asyncio.run(_run_async(context, max_rounds))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
    except Exception as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(EXIT_ERROR) from None


async def _run_async(context: QuorumContext, max_rounds: Optional[int]) -> None:
    orchestrator = build_orchestrator(context)

    def on_round(result: RoundResult) -> None:
        _print_summary(result)
        if max_rounds is not None and result.round_id >= max_rounds:
            orchestrator.stop()

    try:
        await orchestrator.run_forever(on_round=on_round)
    finally:
        await orchestrator.close()


@app.command()
def providers(
    disable: Optional[list[str]] = DISABLE,
    trust: Optional[list[str]] = TRUST,
    log_level: str = LOG_LEVEL,
    verbose: int = VERBOSE,
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    List providers with their effective trust weight and rate limit.
    """
    configure_logging(verbose, quiet=not verbose, default=log_level)
    context = _load_context(
        disable, trust, None, 1, False, f"{DEFAULT_ROUND_DEADLINE:g}",
        f"{DEFAULT_POLL_INTERVAL:g}", False, DEFAULT_RETAIN_ROUNDS, False, log_level,
    )
    infos = context.providers()

    if output_json:
        console.print_json(data=[info.model_dump() for info in infos])
        return

    table = Table(title="Providers")
    table.add_column("Provider", style="bold")
    table.add_column("Name")
    table.add_column("Trust", justify="right")
    table.add_column("Rate limit")
    table.add_column("Enabled")

    for info in infos:
        rate = f"{info.rate_limit_seconds:g}s" if info.rate_limit_seconds else "unlimited"
        enabled = "[green]✓[/green]" if info.enabled else "[dim]✗[/dim]"
        table.add_row(info.id, info.name, str(info.trust_weight), rate, enabled)

    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", envvar="IPQUORUM_HOST", help="Host to bind to"),
    port: int = typer.Option(8090, "--port", "-p", envvar="IPQUORUM_PORT", help="Port to bind to"),
    disable: Optional[list[str]] = DISABLE,
    trust: Optional[list[str]] = TRUST,
    threshold: Optional[int] = THRESHOLD,
    min_providers: int = MIN_PROVIDERS,
    bypass_rate_limits: bool = BYPASS,
    deadline: str = DEADLINE,
    interval: str = INTERVAL,
    retain_candidates: bool = RETAIN,
    retain_rounds: int = RETAIN_ROUNDS,
    public_only: bool = PUBLIC_ONLY,
    log_level: str = LOG_LEVEL,
    verbose: int = VERBOSE,
):
    """
    Start the status API, polling in the background.

    Example:
        ipquorum serve --port 8090 --interval 5m
    """
    import uvicorn

    from ipquorum.api.server import create_app

    configure_logging(verbose, default=log_level)
    context = _load_context(
        disable, trust, threshold, min_providers, bypass_rate_limits,
        deadline, interval, retain_candidates, retain_rounds, public_only, log_level,
    )

    console.print()
    console.print(
        Panel.fit(
            f"[bold blue]Host:[/bold blue] {host}\n"
            f"[bold blue]Port:[/bold blue] {port}\n"
            f"[bold blue]Docs:[/bold blue] http://{host}:{port}/docs",
            title="Starting ipquorum status API",
        )
    )
    console.print()

    uvicorn.run(create_app(build_orchestrator(context)), host=host, port=port)


@app.command()
def version():
    """
    Show version information.
    """
    from ipquorum import __version__

    console.print(f"[bold]ipquorum[/bold] v{__version__}")


def main():
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
