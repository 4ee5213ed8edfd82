"""Format derivation: raw page state → the requested output representations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from bs4 import BeautifulSoup

from scrapecore.errors import ExtractionFailureError
from scrapecore.formats.branding import extract_branding
from scrapecore.formats.markdown import clean_html, html_to_markdown
from scrapecore.formats.page import extract_images, extract_links, extract_metadata, is_noindex
from scrapecore.formats.pdf import read_pdf
from scrapecore.llm import Extractor, LangChainExtractor
from scrapecore.schemas import ChangeTrackingFormat, ScrapeRequest
from scrapecore.scraper.actions import data_uri
from scrapecore.scraper.models import RawPageState
from scrapecore.scraper.session import Deadline

logger = logging.getLogger(__name__)

# Access-refused responses that made it through escalation as ordinary pages.
_RESTRICTED_STATUSES = {401, 403, 451}


@dataclass
class Derivation:
    """Outputs of the pipeline for one page.

    ``data`` holds exactly the requested format keys (plus ``actions`` when
    an action script ran).  ``content`` is the Markdown used for change
    tracking, whether or not ``markdown`` itself was requested.
    """

    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""
    warnings: list[str] = field(default_factory=list)
    num_pages: Optional[int] = None
    noindex: bool = False
    restricted: bool = False
    tracked_json: Optional[dict[str, Any]] = None

    @property
    def warning(self) -> Optional[str]:
        return " ".join(self.warnings) if self.warnings else None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _status_metadata(page: RawPageState, request: ScrapeRequest) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "sourceUrl": request.url,
        "url": page.url,
        "statusCode": page.status_code,
        "contentType": page.content_type,
    }
    if not 200 <= page.status_code < 300:
        phrase = httpx.codes.get_reason_phrase(page.status_code)
        metadata["error"] = f"{page.status_code} {phrase}".strip()
    return metadata


def _document_content(page: RawPageState, request: ScrapeRequest, out: Derivation) -> None:
    if "pdf" in request.parsers:
        pdf = read_pdf(page.document)
        out.content = pdf.to_markdown()
        out.num_pages = pdf.num_pages
        out.metadata.update({"title": pdf.title, "numPages": pdf.num_pages})
    else:
        out.content = data_uri(page.document, "application/pdf")


def _html_content(
    page: RawPageState, request: ScrapeRequest, soup: BeautifulSoup, out: Derivation
) -> None:
    out.metadata.update(extract_metadata(soup, page.url))
    out.noindex = is_noindex(soup, page.headers)
    out.content = html_to_markdown(
        page.html,
        page.url,
        include_tags=request.include_tags,
        exclude_tags=request.exclude_tags,
        only_main_content=request.only_main_content,
        strip_base64_images=request.remove_base64_images,
    )


def _extract(
    out: Derivation, label: str, extractor_call: Any, *args: Any
) -> Optional[Any]:
    """Run an LLM step; on failure record a warning and return ``None``."""
    try:
        return extractor_call(*args)
    except ExtractionFailureError as exc:
        logger.warning("%s extraction failed: %s", label, exc.message)
        out.warnings.append(f"{label} extraction failed: {exc.message}")
        return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def derive_formats(
    page: RawPageState,
    request: ScrapeRequest,
    deadline: Deadline,
    extractor: Optional[Extractor] = None,
) -> Derivation:
    """Derive every format *request* asks for from *page*.

    LLM-backed formats (``summary``, ``json``) degrade gracefully: a failed
    extraction omits the key and adds a warning instead of failing the
    scrape.  ``changeTracking`` is not produced here; only the structured
    extraction it compares (``tracked_json``) is.

    Raises:
        ActionTimeoutError: The deadline expired during an LLM call.
        FetchFailureError:  A downloaded PDF could not be read.
    """
    extractor = extractor or LangChainExtractor()
    out = Derivation(metadata=_status_metadata(page, request))
    out.restricted = page.status_code in _RESTRICTED_STATUSES

    soup: Optional[BeautifulSoup] = None
    if page.is_pdf:
        _document_content(page, request, out)
        out.noindex = is_noindex(None, page.headers)
    else:
        soup = BeautifulSoup(page.html, "html.parser")
        _html_content(page, request, soup, out)

    for fmt in request.formats:
        kind = fmt.type
        if kind == "markdown":
            out.data["markdown"] = out.content
        elif kind == "rawHtml":
            out.data["rawHtml"] = page.html
        elif kind == "html":
            out.data["html"] = "" if soup is None else str(
                clean_html(
                    page.html,
                    page.url,
                    include_tags=request.include_tags,
                    exclude_tags=request.exclude_tags,
                    only_main_content=request.only_main_content,
                )
            )
        elif kind == "links":
            out.data["links"] = [] if soup is None else extract_links(soup, page.url)
        elif kind == "images":
            out.data["images"] = [] if soup is None else extract_images(soup, page.url)
        elif kind == "screenshot":
            if page.screenshot is not None:
                out.data["screenshot"] = page.screenshot
            else:
                out.warnings.append("screenshot is not available for this document.")
        elif kind == "branding":
            out.data["branding"] = extract_branding(
                soup if soup is not None else BeautifulSoup("", "html.parser"), page.url
            )
        elif kind == "summary":
            summary = _extract(out, "summary", extractor.summarize, out.content, deadline)
            if summary is not None:
                out.data["summary"] = summary
        elif kind == "json":
            extracted = _extract(
                out, "json", extractor.extract_json, out.content, fmt.json_schema, fmt.prompt, deadline
            )
            if extracted is not None:
                out.data["json"] = extracted

    tracking = request.get_format("changeTracking")
    if isinstance(tracking, ChangeTrackingFormat):
        if "json" in tracking.modes and (tracking.json_schema or tracking.prompt):
            out.tracked_json = _extract(
                out,
                "changeTracking",
                extractor.extract_json,
                out.content,
                tracking.json_schema,
                tracking.prompt,
                deadline,
            )
        else:
            out.tracked_json = out.data.get("json")

    if page.actions is not None:
        out.data["actions"] = page.actions.to_dict()

    return out
