"""
Bidding Engine CLI - operator commands.

Main entry point for all CLI commands.
"""

import json
import logging
from functools import wraps
from pathlib import Path

import click

from bidengine import __version__
from bidengine.utils.logger import get_logger, setup_logging

logger = get_logger("cli")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--env-file", default=None, help="Path to a .env file")
@click.option("--data-dir", default=None, help="Data directory (overrides BIDENGINE_DATA_DIR)")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug, env_file, data_dir):
    """Bidding, commission & settlement engine"""
    from bidengine.core.config import load_config

    overrides = {}
    if data_dir:
        overrides["data_dir"] = Path(data_dir).expanduser()
    config = load_config(env_file, **overrides)

    level = logging.DEBUG if debug else getattr(logging, config.log_level.upper(), logging.INFO)
    setup_logging(level=level, log_dir=str(config.log_dir))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _engine(ctx):
    from bidengine.core.engine import MarketEngine

    if "engine" not in ctx.obj:
        ctx.obj["engine"] = MarketEngine(ctx.obj["config"])
    return ctx.obj["engine"]


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def engine_command(func):
    """Render engine errors as CLI errors."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        from bidengine.core.errors import EngineError

        try:
            return func(*args, **kwargs)
        except EngineError as e:
            raise click.ClickException(f"{e.code}: {e.message}")
    return wrapper


# =============================================================================
# Server Commands
# =============================================================================


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", default=None, type=int, help="Port (default from config)")
@click.option("--ticker/--no-ticker", default=True, help="Run the auction ticker")
@click.pass_context
def serve(ctx, host, port, ticker):
    """Run the HTTP/WebSocket API"""
    import uvicorn
    from bidengine.api.app import create_app

    config = ctx.obj["config"]
    app = create_app(_engine(ctx), run_ticker=ticker)
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port)


@cli.command("tick")
@click.pass_context
@engine_command
def tick(ctx):
    """Run one auction tick (extend / finalize due auctions)"""
    report = _engine(ctx).tick()
    click.echo(f"✓ Extended: {len(report.extended)}  Finalized: {len(report.finalized)}")
    for auction_id in report.extended:
        click.echo(f"  extended  {auction_id}")
    for auction_id in report.finalized:
        click.echo(f"  finalized {auction_id}")


@cli.command("stats")
@click.argument("auction_id")
@click.pass_context
@engine_command
def stats(ctx, auction_id):
    """Show live bidding stats for an auction"""
    _echo_json({"auctionId": auction_id, "bidding_stats": _engine(ctx).live_stats(auction_id).to_dict()})


# =============================================================================
# Ledger Commands
# =============================================================================


@cli.group()
def ledger():
    """Bid ledger commands"""
    pass


@ledger.command("verify")
@click.argument("auction_id")
@click.pass_context
@engine_command
def ledger_verify(ctx, auction_id):
    """Verify an auction's bid hash chain"""
    result = _engine(ctx).bid_ledger.verify_chain(auction_id)
    if result.valid:
        click.echo(f"✓ Chain valid: {result.length} entries, head {(result.head or '-')[:16]}")
    else:
        click.echo(f"✗ Chain broken at entry {result.broken_at}: {result.reason}")
        ctx.exit(1)


# =============================================================================
# Settlement Commands
# =============================================================================


@cli.command("settle")
@click.argument("auction_id")
@click.pass_context
@engine_command
def settle(ctx, auction_id):
    """Settle an ended auction"""
    outcome = _engine(ctx).settlement.settle_auction(auction_id, actor_id="cli")
    _echo_json(outcome.to_dict())


@cli.group()
def commission():
    """Commission settings"""
    pass


@commission.command("show")
@click.pass_context
@engine_command
def commission_show(ctx):
    """Show the active commission settings"""
    _echo_json(_engine(ctx).commission.get_active(force_refresh=True).to_dict())


@commission.command("set")
@click.option("--buyer", "buyer_percent", required=True, type=float, help="Buyer commission %")
@click.option("--seller", "seller_percent", required=True, type=float, help="Seller commission %")
@click.option("--flat", "flat_cents", default=0, type=int, help="Platform flat fee (cents)")
@click.pass_context
@engine_command
def commission_set(ctx, buyer_percent, seller_percent, flat_cents):
    """Replace the active commission settings"""
    settings = _engine(ctx).commission.update_settings(buyer_percent, seller_percent, flat_cents)
    click.echo("✓ Commission settings updated")
    _echo_json(settings.to_dict())


# =============================================================================
# Risk Commands
# =============================================================================


@cli.group()
def risk():
    """Seller risk controls"""
    pass


@risk.command("show")
@click.argument("seller_id")
@click.pass_context
@engine_command
def risk_show(ctx, seller_id):
    """Show a user's risk summary"""
    engine = _engine(ctx)
    summary = engine.risk.get_seller_risk_summary(seller_id)
    if summary is None:
        click.echo(f"{seller_id}: no risk records (unrestricted)")
        return
    _echo_json(summary.to_dict())


@risk.command("penalize")
@click.argument("seller_id")
@click.option("--type", "penalty_type", required=True, help="Penalty type")
@click.option("--severity", required=True, type=click.Choice(["low", "medium", "high"]))
@click.option("--points", default=None, type=int, help="Penalty points (default 1)")
@click.option("--reason", default=None, help="Reason")
@click.option("--cooldown-days", default=None, type=int, help="Override cooldown length")
@click.pass_context
@engine_command
def risk_penalize(ctx, seller_id, penalty_type, severity, points, reason, cooldown_days):
    """Apply a penalty to a user"""
    summary = _engine(ctx).risk.apply_seller_penalty(
        seller_id,
        penalty_type,
        severity,
        points=points,
        reason=reason,
        applied_by="cli",
        cooldown_days=cooldown_days,
    )
    click.echo(f"✓ Penalty applied: {seller_id} is now {summary.status} ({summary.penalty_points} points)")


if __name__ == "__main__":
    cli()
