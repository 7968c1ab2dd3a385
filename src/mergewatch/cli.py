import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiohttp
import humanize
from tabulate import tabulate
import typer

from mergewatch.config import Settings, load_settings
from mergewatch.exceptions import ConfigError, MergewatchError
from mergewatch.jenkins import Auth, JenkinsClient
from mergewatch.logger import configure_logging
from mergewatch.metric import push_metrics
from mergewatch.storage import DiskHistoryStore, utcnow
from mergewatch.sweep import decruft as decruft_store
from mergewatch.sweep import run_sweep

logger = logging.getLogger("mergewatch")

app = typer.Typer(help="Merge Bitbucket pull requests that carry a merge trigger.")


def _settings(ctx: typer.Context) -> Settings:
    try:
        settings = load_settings(ctx.obj)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)
    configure_logging(settings)
    return settings


@app.callback()
def init(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file"
    ),
):
    ctx.obj = config


@app.command()
def run(ctx: typer.Context):
    """Check own and approved PRs once and merge the ones carrying the trigger."""
    settings = _settings(ctx)
    try:
        result = asyncio.run(run_sweep(settings))
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)
    except MergewatchError as e:
        logger.error("Sweep aborted: %s", e)
        raise typer.Exit(code=1)
    finally:
        push_metrics(settings)

    logger.info(
        "Own PR's checked: %d Approved PR's checked: %d",
        result.own_count,
        result.approved_count,
    )


@app.command()
def decruft(ctx: typer.Context):
    """Remove stale retry histories."""
    settings = _settings(ctx)
    with DiskHistoryStore(settings.DATA_DIR) as store:
        removed = decruft_store(store)
    typer.echo(f"Removed {removed} retry histories")


@app.command()
def history(ctx: typer.Context):
    """Show the stored build retry histories."""
    settings = _settings(ctx)
    now = utcnow()
    with DiskHistoryStore(settings.DATA_DIR) as store:
        rows = []
        for key, record in sorted(store.items()):
            if record is None:
                rows.append((key, "?", "corrupt"))
            else:
                rows.append(
                    (key, record.retry_count, humanize.naturaltime(record.age(now)))
                )
    if len(rows) == 0:
        typer.echo("No retry histories stored")
        return
    typer.echo(
        tabulate(rows, headers=("Commit", "Retries", "Last update"), tablefmt="github")
    )


@app.command()
def rebuild(ctx: typer.Context, url: str):
    """Rebuild a single Jenkins build with its original parameters."""
    settings = _settings(ctx)
    if settings.JENKINS_USERNAME is None or settings.JENKINS_PASSWORD is None:
        typer.echo("Jenkins credentials are not configured", err=True)
        raise typer.Exit(code=1)
    auth = Auth(settings.JENKINS_USERNAME, settings.JENKINS_PASSWORD)

    async def handle():
        async with aiohttp.ClientSession() as session:
            client = JenkinsClient(session, auth, timeout=settings.REQUEST_TIMEOUT)
            await client.rebuild(url)

    try:
        asyncio.run(handle())
    except MergewatchError as e:
        typer.echo(f"Rebuild failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Rebuilt")
