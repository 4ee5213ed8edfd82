"""scrapecore CLI: scrape a single URL and maintain the local cache.

Usage:
    python cli/main.py --help

Command groups:
    scrape    → fetch one URL and print / save the requested formats
    cache     → stats | clear | prune
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from scrapecore.xxx import
# ...` works when the CLI is invoked as `python cli/main.py` from any working
# directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import json
from typing import Any, List, Optional

import typer

from scrapecore.config import settings
from scrapecore.db import SqliteScrapeStore
from scrapecore.errors import ScrapeError
from scrapecore.log import configure_logging
from scrapecore.orchestrator import scrape
from scrapecore.output import OUTPUT_FORMATS, OutputError, save_result

from cli.commands.cache import cache_app
from cli.rendering import render_summary

app = typer.Typer(
    name="scrapecore",
    help="Single-URL scrape engine.",
    no_args_is_help=True,
)
app.add_typer(cache_app, name="cache")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine activity (DEBUG)."),
) -> None:
    """Configure logging before any command runs."""
    configure_logging("DEBUG" if verbose else None)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _parse_headers(values: List[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must look like 'Name: value', got {value!r}")
        headers[name.strip()] = content.strip()
    return headers


def _load_json_file(path: Optional[Path], what: str) -> Any:
    if path is None:
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Could not read {what} from {path}: {exc}") from exc


def build_payload(
    url: str,
    formats: List[str],
    *,
    only_main_content: bool = True,
    include_tags: Optional[List[str]] = None,
    exclude_tags: Optional[List[str]] = None,
    headers: Optional[dict[str, str]] = None,
    wait_for: int = 0,
    timeout: Optional[int] = None,
    max_age: Optional[int] = None,
    mobile: bool = False,
    proxy: str = "auto",
    parse_pdf: bool = True,
    store_in_cache: bool = True,
    zero_data_retention: bool = False,
    actions: Optional[list] = None,
    json_prompt: Optional[str] = None,
    json_schema: Optional[dict] = None,
) -> dict[str, Any]:
    """Translate CLI options into a wire-format scrape request."""
    wire_formats: list[Any] = [f for f in formats if f != "json"]
    if json_prompt or json_schema or "json" in formats:
        json_format: dict[str, Any] = {"type": "json"}
        if json_prompt:
            json_format["prompt"] = json_prompt
        if json_schema:
            json_format["schema"] = json_schema
        wire_formats.append(json_format)

    payload: dict[str, Any] = {
        "url": url,
        "formats": wire_formats,
        "onlyMainContent": only_main_content,
        "waitFor": wait_for,
        "mobile": mobile,
        "proxy": proxy,
        "parsers": ["pdf"] if parse_pdf else [],
        "storeInCache": store_in_cache,
        "zeroDataRetention": zero_data_retention,
    }
    if include_tags:
        payload["includeTags"] = include_tags
    if exclude_tags:
        payload["excludeTags"] = exclude_tags
    if headers:
        payload["headers"] = headers
    if timeout is not None:
        payload["timeout"] = timeout
    if max_age is not None:
        payload["maxAge"] = max_age
    if actions:
        payload["actions"] = actions
    return payload


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command("scrape")
def scrape_cmd(
    url: str = typer.Argument(..., help="URL to scrape."),
    formats: List[str] = typer.Option(
        ["markdown"], "--format", "-f", help="Output format (repeatable): markdown, summary, html, "
        "rawHtml, links, images, screenshot, json, branding, changeTracking."
    ),
    only_main_content: bool = typer.Option(
        True, "--main-content/--full-page", help="Keep only the main content."
    ),
    include_tags: Optional[List[str]] = typer.Option(None, "--include-tag", help="CSS selector to keep."),
    exclude_tags: Optional[List[str]] = typer.Option(None, "--exclude-tag", help="CSS selector to drop."),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="'Name: value' request header."),
    wait_for: int = typer.Option(0, "--wait-for", help="Milliseconds to wait after load."),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Overall request timeout in ms."),
    max_age: Optional[int] = typer.Option(None, "--max-age", help="Accept cached results up to this age (ms)."),
    mobile: bool = typer.Option(False, "--mobile", help="Emulate a mobile device."),
    proxy: str = typer.Option("auto", "--proxy", help="Proxy tier: basic | stealth | auto."),
    parse_pdf: bool = typer.Option(True, "--parse-pdf/--raw-pdf", help="Convert PDFs to text."),
    no_cache: bool = typer.Option(False, "--no-store", help="Do not write the result to the cache."),
    zero_data_retention: bool = typer.Option(False, "--zero-retention", help="Persist nothing."),
    actions_file: Optional[Path] = typer.Option(None, "--actions", help="JSON file with an action list."),
    json_prompt: Optional[str] = typer.Option(None, "--json-prompt", help="Prompt for JSON extraction."),
    json_schema_file: Optional[Path] = typer.Option(None, "--json-schema", help="JSON schema file."),
    save: Optional[str] = typer.Option(None, "--save", help="Save as markdown | html | json."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Directory for --save."),
    json_output: bool = typer.Option(False, "--json", help="Print the raw JSON envelope."),
) -> None:
    """Scrape a URL and print the result."""
    if save is not None and save not in OUTPUT_FORMATS:
        typer.echo(f"❌ Unknown --save format {save!r}. Use: {' | '.join(OUTPUT_FORMATS)}", err=True)
        raise typer.Exit(code=1)

    payload = build_payload(
        url,
        formats,
        only_main_content=only_main_content,
        include_tags=include_tags,
        exclude_tags=exclude_tags,
        headers=_parse_headers(header or []),
        wait_for=wait_for,
        timeout=timeout,
        max_age=max_age,
        mobile=mobile,
        proxy=proxy,
        parse_pdf=parse_pdf,
        store_in_cache=not no_cache,
        zero_data_retention=zero_data_retention,
        actions=_load_json_file(actions_file, "actions"),
        json_prompt=json_prompt,
        json_schema=_load_json_file(json_schema_file, "JSON schema"),
    )

    store = SqliteScrapeStore.open(settings.db_path)
    try:
        result = scrape(store, payload)
    except ScrapeError as exc:
        if json_output:
            typer.echo(json.dumps(exc.to_dict(), indent=2))
        else:
            retry = " (retryable)" if exc.retryable else ""
            typer.echo(f"❌ {exc.kind.value}: {exc.message}{retry}", err=True)
        raise typer.Exit(code=1)
    finally:
        store.close()

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        typer.echo(render_summary(result))
        if "markdown" in result.data:
            typer.echo("")
            typer.echo(result.data["markdown"])

    if save:
        try:
            path = save_result(result, url, output_dir or settings.output_dir, save)
        except OutputError as exc:
            typer.echo(f"❌ {exc}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"💾 Saved {save} to {path}")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
