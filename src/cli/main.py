"""
CLI entry point: paper serve | replay | report.

Every command loads config from --config (default config.yaml; when the
default file is absent, defaults plus environment variables are used).
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv

from config import AppConfig, load_config

load_dotenv()

logger = logging.getLogger("paper.cli")

DEFAULT_CONFIG = "config.yaml"


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _load(ctx: click.Context) -> AppConfig:
    path = ctx.obj["config_path"]
    if path == DEFAULT_CONFIG and not Path(path).exists():
        return load_config(None)
    return load_config(path)


@click.group()
@click.option("--config", "config_path", default=DEFAULT_CONFIG, help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """paper-ledger: paper trading ledger driven by trade-signal webhooks."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- paper serve ----------


@cli.command()
@click.option("--host", default=None, help="Bind address. Defaults to config value.")
@click.option("--port", default=None, type=int, help="Port. Defaults to config value.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the webhook / REST API server."""
    cfg = _load(ctx)
    _setup_logging(cfg.logging.level)
    import uvicorn

    from api import LedgerService, create_app
    from cli.structured_log import StructuredEventLogger

    events = StructuredEventLogger(enabled=cfg.logging.structured_logs, webhook_url=cfg.logging.webhook_url)
    service = LedgerService.from_config(cfg, events)
    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port
    events.server_start(bind_host, bind_port, cfg.ledger.initial_balance, cfg.ledger.commission_rate)
    logger.info("Paper ledger server running on %s:%d", bind_host, bind_port)
    uvicorn.run(create_app(service), host=bind_host, port=bind_port, log_level=cfg.logging.level.lower())


# ---------- paper replay / report ----------


def _read_signals(path: Path) -> list[tuple[int, Any]]:
    """Return (line_no, parsed JSON or None) for each non-empty line."""
    out: list[tuple[int, Any]] = []
    with open(path) as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                out.append((line_no, json.loads(line)))
            except json.JSONDecodeError:
                out.append((line_no, None))
    return out


def _replay(cfg: AppConfig, signals_path: Path, *, echo: bool, events: bool):
    from api.webhook import PayloadError, parse_webhook
    from cli.structured_log import StructuredEventLogger
    from ledger import LedgerEngine, LedgerError

    listener = StructuredEventLogger(webhook_url=cfg.logging.webhook_url).handle if events else None
    engine = LedgerEngine(cfg.ledger.initial_balance, cfg.ledger.commission_rate, listener=listener)
    rejected = 0

    for line_no, payload in _read_signals(signals_path):
        if payload is None:
            rejected += 1
            if echo:
                click.echo(f"  [{line_no}] SKIPPED  not valid JSON")
            continue

        if isinstance(payload, dict) and "tick" in payload:
            tick = payload["tick"] or {}
            try:
                result = engine.resolve_pending_orders(tick["symbol"], tick["price"])
            except (KeyError, TypeError, ValueError) as exc:
                rejected += 1
                if echo:
                    click.echo(f"  [{line_no}] SKIPPED  bad tick: {exc}")
                continue
            if echo:
                click.echo(
                    f"  [{line_no}] TICK     {tick['symbol']} @ {tick['price']}: "
                    f"{result.executed_count} executed, {result.remaining_count} remaining"
                )
            continue

        try:
            command = parse_webhook(payload)
            trades_before = len(engine.get_account().trades)
            snapshot = engine.submit(command)
        except PayloadError as exc:
            rejected += 1
            if echo:
                click.echo(f"  [{line_no}] INVALID  {'; '.join(exc.errors)}")
            continue
        except LedgerError as exc:
            rejected += 1
            if echo:
                click.echo(f"  [{line_no}] REJECTED {exc.code}: {exc.message}")
            continue

        if echo:
            label = f"{command.kind.value} {command.side.value} {command.quantity} {command.symbol}"
            fills = len(snapshot.trades) - trades_before
            click.echo(f"  [{line_no}] OK       {label} -> {fills} fill(s), balance {snapshot.balance:,.2f}")

    return engine, rejected


@cli.command()
@click.argument("signals", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--export", "export_path", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Write a JSON export (with positions and analytics) to this path.")
@click.option("--save", is_flag=True, default=False, help="Write a timestamped JSON export into export.directory from the config.")
@click.option("--events", is_flag=True, default=False, help="Emit structured JSON events to stderr.")
@click.pass_context
def replay(ctx: click.Context, signals: Path, export_path: Path | None, events: bool, save: bool) -> None:
    """Feed a JSON-lines file of webhook payloads through a fresh ledger.

    Lines of the form {"tick": {"symbol": ..., "price": ...}} resolve
    resting limit orders instead of submitting an order.
    """
    cfg = _load(ctx)
    _setup_logging(cfg.logging.level)
    from cli.output import format_account, format_performance_report
    from reporting import export_filename, export_trade_data, portfolio_performance, trade_history

    click.echo(f"Replaying {signals} (balance {cfg.ledger.initial_balance:,.2f}, commission {cfg.ledger.commission_rate}%) ...")
    engine, rejected = _replay(cfg, signals, echo=True, events=events)
    snapshot = engine.get_account()
    click.echo("")
    click.echo(format_account(snapshot))
    click.echo(format_performance_report(portfolio_performance(snapshot, engine.initial_balance)))
    if rejected:
        click.echo(f"{rejected} line(s) rejected or skipped.")

    if save and export_path is None:
        export_path = Path(cfg.export.directory) / export_filename("json")
    if export_path is not None:
        export_path.parent.mkdir(parents=True, exist_ok=True)
        export_path.write_text(
            export_trade_data(
                trade_history(snapshot),
                "json",
                include_positions=True,
                include_analytics=True,
                include_balance_history=True,
            )
        )
        click.echo(f"Export written to {export_path}")


@cli.command()
@click.argument("signals", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def report(ctx: click.Context, signals: Path) -> None:
    """Replay SIGNALS silently and print the performance report."""
    cfg = _load(ctx)
    _setup_logging(cfg.logging.level)
    from cli.output import format_performance_report
    from reporting import portfolio_performance

    engine, _ = _replay(cfg, signals, echo=False, events=False)
    click.echo(format_performance_report(portfolio_performance(engine.get_account(), engine.initial_balance)))


if __name__ == "__main__":
    cli()
