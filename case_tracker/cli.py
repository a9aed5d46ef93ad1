import asyncio
import logging
import platform
import signal
import sys

import click

from case_tracker.config import POLL_INTERVAL_SECONDS, STORE_PATH
from case_tracker.diff_render import diff_snapshots
from case_tracker.handlers import ConsoleEventHandler
from case_tracker.models import format_dt
from case_tracker.orchestrator import CaseMonitor, open_observer

log = logging.getLogger(__name__)


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--store", type=click.Path(dir_okay=False), default=str(STORE_PATH),
              show_default=True, help="Path of the JSON store file")
@click.option("--cookie", envvar="CASE_TRACKER_COOKIE", default=None,
              help="Session cookie header for my.uscis.gov")
@click.pass_context
def main(ctx: click.Context, debug: bool, store: str, cookie: str | None) -> None:
    """Case Tracker - detect changes in USCIS case data."""
    _setup_logging(debug)
    ctx.obj = {"store": store, "cookie": cookie}


@main.command()
@click.argument("receipt")
@click.option("--diff", "show_diff", is_flag=True, help="Print unified diffs of changed sources")
@click.pass_obj
def check(obj: dict, receipt: str, show_diff: bool) -> None:
    """Fetch RECEIPT once and report what changed since the last check."""

    async def run() -> int:
        async with open_observer(obj["store"], obj["cookie"]) as observer:
            result = await observer.observe(receipt)
        await ConsoleEventHandler(show_diff=False).handle(result)
        if show_diff and result.previous is not None:
            for text in diff_snapshots(result.previous, result.current).values():
                click.echo(text, nl=False)
        return 0 if result.ok else 1

    sys.exit(asyncio.run(run()))


@main.command(name="list")
@click.pass_obj
def list_cases(obj: dict) -> None:
    """List tracked cases."""

    async def run():
        async with open_observer(obj["store"], obj["cookie"]) as observer:
            return await observer.list_tracked()

    entries = asyncio.run(run())
    if not entries:
        click.echo("No tracked cases.")
        return
    for e in entries:
        flag = "CHANGED" if e.has_changes else "-"
        click.echo(f"{e.entity_id:<16} {e.label or '?':<8} {format_dt(e.last_observed_at)}  {flag}")


@main.command()
@click.argument("receipt")
@click.pass_obj
def forget(obj: dict, receipt: str) -> None:
    """Stop tracking RECEIPT and delete its stored history."""

    async def run():
        async with open_observer(obj["store"], obj["cookie"]) as observer:
            await observer.forget(receipt)

    asyncio.run(run())
    click.echo(f"Forgot {receipt}.")


@main.command()
@click.argument("receipts", nargs=-1, required=True)
@click.option("--interval", type=float, default=POLL_INTERVAL_SECONDS, show_default=True,
              help="Seconds between checks of each case")
@click.option("--diff", "show_diff", is_flag=True, help="Print unified diffs of changed sources")
@click.pass_obj
def watch(obj: dict, receipts: tuple[str, ...], interval: float, show_diff: bool) -> None:
    """Re-check RECEIPTS periodically until interrupted."""

    async def run() -> None:
        monitor = CaseMonitor(
            list(receipts),
            store_path=obj["store"],
            cookie=obj["cookie"],
            handler=ConsoleEventHandler(show_diff=show_diff),
            interval=interval,
        )
        loop = asyncio.get_running_loop()

        if platform.system() != "Windows":

            def _shutdown(sig: signal.Signals) -> None:
                log.info("Received %s, shutting down gracefully...", sig.name)
                monitor.stop()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)

        try:
            await monitor.run()
        except (asyncio.CancelledError, KeyboardInterrupt):
            monitor.stop()
            log.info("Monitor stopped.")

    asyncio.run(run())

