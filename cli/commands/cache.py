"""Cache commands: statistics, clearing and pruning of stored scrapes."""

from typing import Optional

import typer

from scrapecore.cache import FreshnessCache
from scrapecore.config import settings
from scrapecore.db import SqliteScrapeStore

from cli.rendering import render_stats

cache_app = typer.Typer(help="Inspect and maintain the scrape cache.", no_args_is_help=True)


def _open_cache() -> tuple[SqliteScrapeStore, FreshnessCache]:
    store = SqliteScrapeStore.open(settings.db_path)
    return store, FreshnessCache(store)


@cache_app.command("stats")
def cache_stats() -> None:
    """Show entry count, hits, misses and hit rate."""
    store, cache = _open_cache()
    try:
        stats = cache.stats()
    finally:
        store.close()
    typer.echo(f"[cache stats] {settings.db_path}")
    typer.echo(render_stats(stats))


@cache_app.command("clear")
def cache_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every stored scrape and reset the counters."""
    if not yes:
        typer.confirm("Delete all cached scrapes?", abort=True)
    store, cache = _open_cache()
    try:
        removed = cache.clear()
    finally:
        store.close()
    typer.echo(f"[cache clear] Removed {removed} entries.")


@cache_app.command("prune")
def cache_prune(
    max_age: Optional[int] = typer.Option(
        None, "--max-age", help="Drop entries older than this many milliseconds (default: SCRAPE_MAX_AGE_MS)."
    ),
) -> None:
    """Delete entries older than the freshness window."""
    window = max_age if max_age is not None else settings.default_max_age_ms
    store, cache = _open_cache()
    try:
        removed = cache.prune_expired(window)
    finally:
        store.close()
    typer.echo(f"[cache prune] Removed {removed} entries older than {window} ms.")
