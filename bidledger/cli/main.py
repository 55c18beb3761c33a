"""
Bid Ledger CLI - Command Line Interface for the auction ledger

Main entry point for all CLI commands. State lives in a SQLite database
under ``--data-dir``; participants may be given as 0x addresses or as
labels (``alice``), which map to deterministic addresses.
"""

import logging
import time
from functools import wraps
from typing import Callable, Optional

import click

from bidledger import __version__
from bidledger.core.config import load_settings
from bidledger.utils.logger import setup_logging


def _now(at: Optional[int]) -> int:
    return at if at is not None else int(time.time())


def _who(name: str) -> str:
    from bidledger.crypto import resolve_identity
    return resolve_identity(name)


def _label(address: Optional[str]) -> str:
    return address if address else "-"


def _storage(ctx):
    from bidledger.core.storage import StorageManager
    return StorageManager(ctx.obj["settings"].data_dir)


def ledger_command(func: Callable):
    """
    Load the selected auction, run one operation, persist the result.

    The wrapped function receives the loaded ledger as its first argument.
    Ledger errors are printed and turn into exit code 1; nothing is saved.
    """
    @click.option("--auction", "auction_id", default=None, help="Auction id (default: most recent)")
    @click.pass_context
    @wraps(func)
    def wrapper(ctx, auction_id, **kwargs):
        from bidledger.core.errors import AuctionError
        from bidledger.core.storage import StorageError

        storage = _storage(ctx)
        auction_id = auction_id or storage.get_current_auction()
        if auction_id is None:
            click.echo("❌ No auction found. Create one with: bidledger auction create")
            ctx.exit(1)

        try:
            ledger = storage.load_ledger(auction_id)
        except StorageError as exc:
            click.echo(f"❌ {exc}")
            ctx.exit(1)

        mark = ledger.events.mark()
        try:
            result = func(ledger, **kwargs)
        except AuctionError as exc:
            click.echo(f"❌ {type(exc).__name__}: {exc}")
            ctx.exit(1)

        if len(ledger.events) > mark or result is not None:
            storage.save_ledger(ledger, events_since=mark)
        for event in ledger.events.since(mark):
            click.echo(f"  ⚡ {type(event).__name__}: {_format_event(event)}")
        return result

    return wrapper


def _format_event(event) -> str:
    from dataclasses import asdict
    return ", ".join(f"{k}={v}" for k, v in asdict(event).items())


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (default: ~/.bidledger)")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="dotenv file with BIDLEDGER_* settings")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug, data_dir, env_file):
    """Bid Ledger - single-item auction with deposits and refunds"""
    settings = load_settings(env_file, data_dir=data_dir)

    level = logging.DEBUG if debug else getattr(logging, settings.log_level)
    setup_logging(level=level, log_dir=settings.log_dir, log_to_file=settings.log_to_file)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    settings.data_dir.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Account Commands
# =============================================================================

@cli.group()
def account():
    """External account commands"""
    pass


@account.command("fund")
@click.argument("name")
@click.argument("amount", type=click.IntRange(min=1))
@click.pass_context
def account_fund(ctx, name, amount):
    """Credit AMOUNT to an account (faucet)"""
    storage = _storage(ctx)
    accounts = storage.load_accounts()
    address = _who(name)
    accounts.mint(address, amount)
    storage.save_accounts(accounts)
    click.echo(f"✓ Funded {name} ({address}) with {amount}")
    click.echo(f"  Balance: {accounts.balance_of(address)}")


@account.command("balance")
@click.argument("name")
@click.pass_context
def account_balance(ctx, name):
    """Show an account's spendable balance"""
    storage = _storage(ctx)
    address = _who(name)
    click.echo(f"Address: {address}")
    click.echo(f"Balance: {storage.load_accounts().balance_of(address)}")


# =============================================================================
# Auction Commands
# =============================================================================

@cli.group()
def auction():
    """Auction commands"""
    pass


@auction.command("create")
@click.option("--owner", required=True, help="Owner name or address")
@click.option("--duration", required=True, type=int, help="Bidding period in minutes")
@click.option("--id", "auction_id", default=None, help="Auction id (random if omitted)")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@click.pass_context
def auction_create(ctx, owner, duration, auction_id, at):
    """Create a new auction"""
    from bidledger.core.auction import AuctionLedger
    from bidledger.core.errors import AuctionError

    settings = ctx.obj["settings"]
    storage = _storage(ctx)
    if auction_id and storage.has_auction(auction_id):
        click.echo(f"❌ Auction {auction_id} already exists")
        ctx.exit(1)

    try:
        ledger = AuctionLedger.create(
            owner=_who(owner),
            duration_minutes=duration,
            now=_now(at),
            accounts=storage.load_accounts(),
            config=settings.auction_config(),
            auction_id=auction_id,
        )
    except AuctionError as exc:
        click.echo(f"❌ {type(exc).__name__}: {exc}")
        ctx.exit(1)

    storage.save_ledger(ledger)
    storage.set_current_auction(ledger.auction_id)
    click.echo(f"✓ Auction created: {ledger.auction_id}")
    click.echo(f"  Owner: {ledger.owner}")
    click.echo(f"  Ends at: {ledger.end_time}")


@auction.command("bid")
@click.argument("bidder")
@click.argument("value", type=int)
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_bid(ledger, bidder, value, at):
    """Place a bid of VALUE from BIDDER"""
    ledger.bid(_who(bidder), value, _now(at))
    click.echo(f"✓ Bid accepted: {value}")
    click.echo(f"  Ends at: {ledger.end_time}")
    click.echo(f"  Next minimum: {ledger.min_next_bid()}")
    return value


@auction.command("end")
@click.argument("caller")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_end(ledger, caller, at):
    """End the auction and sweep refunds (owner only)"""
    report = ledger.end_auction(_who(caller), _now(at))
    winner, amount = ledger.get_winner()
    click.echo(f"✓ Auction ended. Winner: {_label(winner)} ({amount})")
    if report is not None:
        _echo_report(report)
    return True


@auction.command("refund-all")
@click.argument("caller")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_refund_all(ledger, caller, at):
    """Retry the refund sweep (owner only)"""
    report = ledger.refund_all(_who(caller), _now(at))
    _echo_report(report)
    return report


@auction.command("withdraw-refund")
@click.argument("caller")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_withdraw_refund(ledger, caller, at):
    """Pull your own refund after the auction ended"""
    payout = ledger.withdraw_refund(_who(caller), _now(at))
    click.echo(f"✓ Refunded {payout}")
    return payout


@auction.command("partial-refund")
@click.argument("caller")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_partial_refund(ledger, caller, at):
    """Reclaim deposits beyond your latest bid while bidding is open"""
    payout = ledger.partial_refund(_who(caller), _now(at))
    click.echo(f"✓ Partial refund {payout}")
    return payout


@auction.command("withdraw-owner")
@click.argument("caller")
@click.option("--at", type=int, default=None, help="Timestamp (default: now)")
@ledger_command
def auction_withdraw_owner(ledger, caller, at):
    """Withdraw proceeds once all refunds are settled (owner only)"""
    amount = ledger.withdraw_owner_funds(_who(caller), _now(at))
    click.echo(f"✓ Owner withdrew {amount}")
    return amount


@auction.command("show")
@ledger_command
def auction_show(ledger):
    """Show auction state"""
    click.echo(f"Auction {ledger.auction_id}")
    click.echo("-" * 40)
    for key, value in ledger.stats().items():
        click.echo(f"  {key}: {value}")


@auction.command("bids")
@click.option("--user", default=None, help="Only this bidder's bids")
@ledger_command
def auction_bids(ledger, user):
    """List bids"""
    if user:
        address = _who(user)
        bids = ledger.get_user_bids(address)
        click.echo(f"Bids by {address} (deposited: {ledger.get_user_total_amount(address)})")
        for i, b in enumerate(bids):
            click.echo(f"  {i + 1}. {b.amount} at {b.timestamp}")
        return

    for i, b in enumerate(ledger.get_all_bids()):
        click.echo(f"  {i + 1}. {b.bidder} {b.amount} at {b.timestamp}")


@auction.command("events")
@ledger_command
def auction_events(ledger):
    """List emitted events"""
    for event in ledger.events:
        click.echo(f"  {type(event).__name__}: {_format_event(event)}")


@auction.command("list")
@click.pass_context
def auction_list(ctx):
    """List stored auctions"""
    storage = _storage(ctx)
    current = storage.get_current_auction()
    ids = storage.list_auctions()
    if not ids:
        click.echo("No auctions found.")
        return
    for auction_id in ids:
        marker = "*" if auction_id == current else " "
        click.echo(f" {marker} {auction_id}")


def _echo_report(report):
    click.echo(f"  Refunded: {len(report.refunded)} (total {report.total_paid})")
    for user, amount in report.failed.items():
        click.echo(f"  ⚠️  Refund of {amount} to {user} failed; recover with withdraw-refund")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run an in-memory auction from first bid to owner payout"""
    from bidledger.core.accounts import AccountBook
    from bidledger.core.auction import AuctionLedger
    from bidledger.core.errors import AuctionError
    from bidledger.crypto import address_from_label

    click.echo("=" * 60)
    click.echo("  BID LEDGER - DEMO")
    click.echo("=" * 60)
    click.echo()

    owner, alice, bob, carol = (address_from_label(n) for n in ("owner", "alice", "bob", "carol"))
    accounts = AccountBook()
    for who in (alice, bob, carol):
        accounts.mint(who, 1000)

    t0 = 1_700_000_000
    ledger = AuctionLedger.create(owner, duration_minutes=60, now=t0, accounts=accounts)
    click.echo(f"📦 Auction {ledger.auction_id} open until {ledger.end_time}")
    click.echo()

    click.echo("💸 Bidding...")
    steps = [
        ("alice", alice, 100, t0),
        ("bob", bob, 104, t0 + 1),
        ("bob", bob, 105, t0 + 2),
        ("carol", carol, 150, t0 + 60),
        ("alice", alice, 200, t0 + 3595),
    ]
    for name, who, value, at in steps:
        try:
            ledger.bid(who, value, at)
            click.echo(f"  ✓ {name} bids {value} (ends at {ledger.end_time})")
        except AuctionError as exc:
            click.echo(f"  ✗ {name} bids {value}: {exc}")
    click.echo()

    click.echo("🔁 Alice reclaims her superseded deposit...")
    payout = ledger.partial_refund(alice, t0 + 3596)
    click.echo(f"  ✓ Paid {payout}, deposit now {ledger.get_user_total_amount(alice)}")
    click.echo()

    click.echo("⚖️  Ending auction...")
    try:
        ledger.end_auction(owner, t0 + 3600)
    except AuctionError as exc:
        click.echo(f"  ✗ Too early: {exc}")
    report = ledger.end_auction(owner, ledger.end_time)
    click.echo(f"  ✓ Winner: alice ({ledger.highest_bid})")
    click.echo(f"  ✓ Refunds: {report.refunded}")
    click.echo()

    amount = ledger.withdraw_owner_funds(owner, ledger.end_time + 1)
    click.echo(f"🏦 Owner withdrew {amount}")
    click.echo()

    click.echo("📊 Final Statistics:")
    for key, value in ledger.stats().items():
        click.echo(f"  {key}: {value}")
    click.echo()
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
