"""
Command-line interface for the sports feed pipeline.

Uses Typer for commands and Rich for output. Loads a .env file so API keys
and webhook URLs can live outside the YAML config.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
import signal
from typing import Any, Awaitable, Callable

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.table import Table

from .budget import PERIODS, UsageKind
from .config import AppConfig, apply_env_overrides, load_config
from .logging_utils import setup_logging
from .scheduler import Runtime, Scheduler, build_runtime

app = typer.Typer(add_completion=False, help="Sports news polling, scoring and alerting.")
budget_app = typer.Typer(add_completion=False, help="Inspect and adjust the spend ledger.")
errors_app = typer.Typer(add_completion=False, help="Manage the error log.")
app.add_typer(budget_app, name="budget")
app.add_typer(errors_app, name="errors")
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", exists=True, help="YAML config file.")
LogLevelOption = typer.Option(None, "--log-level", help="Logging level.")


def _prepare(config: Path | None, log_level: str | None = None) -> AppConfig:
    load_dotenv()
    if config is None and Path("config.yaml").exists():
        config = Path("config.yaml")
    cfg = apply_env_overrides(load_config(str(config) if config else None))
    if log_level:
        cfg.logging.level = log_level
    setup_logging(cfg.logging, Path(cfg.storage.state_dir))
    return cfg


def _with_runtime(cfg: AppConfig, job: Callable[[Runtime], Awaitable[Any]]) -> Any:
    async def _main() -> Any:
        runtime = build_runtime(cfg)
        try:
            await runtime.orchestrator.load()
            return await job(runtime)
        finally:
            await runtime.aclose()

    return asyncio.run(_main())


@app.command()
def run(config: Path | None = ConfigOption, log_level: str | None = LogLevelOption):
    """Run the scheduler until interrupted."""
    cfg = _prepare(config, log_level)

    async def _job(runtime: Runtime) -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)
        scheduler = Scheduler(runtime.orchestrator, runtime.retry, runtime.budget, cfg)
        console.print(f"Monitoring {len(cfg.sources)} sources every {cfg.monitoring.poll_interval_seconds:.0f}s")
        await scheduler.run(stop)

    _with_runtime(cfg, _job)


@app.command()
def poll(config: Path | None = ConfigOption, log_level: str | None = LogLevelOption):
    """Run one polling cycle and print its report."""
    cfg = _prepare(config, log_level)
    report = _with_runtime(cfg, lambda runtime: runtime.orchestrator.run_cycle())
    if report is None:
        console.print("Cycle skipped: another cycle is running")
        raise typer.Exit(code=1)
    data = report.to_dict()
    table = Table(title="Polling cycle")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key in ("fetched", "new", "duplicates", "processed", "deferred", "discarded", "held", "notified", "errors"):
        table.add_row(key, str(data[key]))
    for route, count in data["routed"].items():
        table.add_row(f"routed.{route}", str(count))
    console.print(table)
    if data["failed_sources"]:
        console.print(f"[yellow]Failed sources:[/yellow] {', '.join(data['failed_sources'])}")


@app.command()
def status(config: Path | None = ConfigOption):
    """Print budget, workflow, error and dedup status as JSON."""
    cfg = _prepare(config)

    async def _job(runtime: Runtime) -> dict[str, Any]:
        return runtime.orchestrator.status()

    console.print_json(data=_with_runtime(cfg, _job))


@app.command()
def retries(config: Path | None = ConfigOption):
    """Process due retry tasks once."""
    cfg = _prepare(config)
    result = _with_runtime(cfg, lambda runtime: runtime.orchestrator.process_retries())
    console.print_json(data=result)


@app.command()
def pause(
    reason: str = typer.Argument("manual", help="Why the pipeline is paused."),
    config: Path | None = ConfigOption,
):
    """Pause all costly work."""
    cfg = _prepare(config)
    changed = _with_runtime(cfg, lambda runtime: runtime.workflow.pause(reason))
    console.print("Pipeline paused" if changed else "Pipeline was already paused")


@app.command()
def resume(config: Path | None = ConfigOption):
    """Resume after a pause."""
    cfg = _prepare(config)
    changed = _with_runtime(cfg, lambda runtime: runtime.workflow.resume("manual"))
    console.print("Pipeline resumed" if changed else "Pipeline was already active")


@app.command()
def digest(
    kind: str = typer.Argument(..., help="hourly or daily"),
    config: Path | None = ConfigOption,
):
    """Send a digest now."""
    if kind not in ("hourly", "daily"):
        raise typer.BadParameter("kind must be hourly or daily")
    cfg = _prepare(config)
    sent = _with_runtime(cfg, lambda runtime: runtime.orchestrator.flush_digest(kind))
    console.print(f"Sent {sent} stories in the {kind} digest")


@budget_app.command("add-usage")
def budget_add_usage(
    kind: UsageKind = typer.Argument(..., help="Usage kind."),
    amount: float = typer.Argument(1.0),
    config: Path | None = ConfigOption,
):
    """Record billable usage and apply its cost."""
    cfg = _prepare(config)

    async def _job(runtime: Runtime) -> dict[str, Any]:
        await runtime.budget.record_usage(kind, amount)
        return runtime.budget.get_status().to_dict()

    console.print_json(data=_with_runtime(cfg, _job))


@budget_app.command("add-cost")
def budget_add_cost(
    amount: float = typer.Argument(...),
    config: Path | None = ConfigOption,
):
    """Add a manual cost entry in dollars."""
    cfg = _prepare(config)

    async def _job(runtime: Runtime) -> dict[str, Any]:
        await runtime.budget.add_cost(amount, source="manual")
        return runtime.budget.get_status().to_dict()

    console.print_json(data=_with_runtime(cfg, _job))


@budget_app.command("reset")
def budget_reset(
    period: str = typer.Argument(..., help="daily, weekly or monthly"),
    config: Path | None = ConfigOption,
):
    """Zero one spend period."""
    if period not in PERIODS:
        raise typer.BadParameter(f"period must be one of: {', '.join(PERIODS)}")
    cfg = _prepare(config)

    async def _job(runtime: Runtime) -> None:
        runtime.budget.reset(period)

    _with_runtime(cfg, _job)
    console.print(f"{period.capitalize()} counters reset")


@errors_app.command("clear-resolved")
def errors_clear_resolved(config: Path | None = ConfigOption):
    """Drop resolved records from the error log."""
    cfg = _prepare(config)

    async def _job(runtime: Runtime) -> int:
        return runtime.retry.clear_resolved()

    removed = _with_runtime(cfg, _job)
    console.print(f"Removed {removed} resolved errors")


if __name__ == "__main__":
    app()
