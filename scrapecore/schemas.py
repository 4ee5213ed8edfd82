"""Request schema for a single scrape.

The wire format mixes bare string tags and parameterized objects inside the
``formats`` list (``["markdown", {"type": "json", "prompt": "..."}]``).  Both
formats and actions are decoded into closed discriminated unions keyed on
``type`` so every consumer can dispatch exhaustively on the concrete class.

Field names are snake_case in Python and camelCase on the wire
(``onlyMainContent`` ↔ ``only_main_content``); both spellings are accepted.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from scrapecore.config import settings
from scrapecore.errors import InvalidRequestError

ProxyTier = Literal["basic", "stealth", "auto"]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class Viewport(_WireModel):
    width: int = Field(gt=0, le=7680)
    height: int = Field(gt=0, le=4320)


class Location(_WireModel):
    country: str = Field(default="US", pattern=r"^[A-Za-z]{2}$")
    languages: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

class MarkdownFormat(_WireModel):
    type: Literal["markdown"] = "markdown"


class SummaryFormat(_WireModel):
    type: Literal["summary"] = "summary"


class HtmlFormat(_WireModel):
    type: Literal["html"] = "html"


class RawHtmlFormat(_WireModel):
    type: Literal["rawHtml"] = "rawHtml"


class LinksFormat(_WireModel):
    type: Literal["links"] = "links"


class ImagesFormat(_WireModel):
    type: Literal["images"] = "images"


class BrandingFormat(_WireModel):
    type: Literal["branding"] = "branding"


class ScreenshotFormat(_WireModel):
    type: Literal["screenshot"] = "screenshot"
    full_page: bool = False
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    viewport: Optional[Viewport] = None


class JsonFormat(_WireModel):
    type: Literal["json"] = "json"
    prompt: Optional[str] = None
    json_schema: Optional[dict[str, Any]] = Field(default=None, alias="schema")

    @model_validator(mode="after")
    def _needs_prompt_or_schema(self) -> "JsonFormat":
        if not self.prompt and not self.json_schema:
            raise ValueError("json format requires a prompt, a schema, or both")
        return self


class ChangeTrackingFormat(_WireModel):
    type: Literal["changeTracking"] = "changeTracking"
    modes: tuple[Literal["git-diff", "json"], ...] = ("git-diff",)
    prompt: Optional[str] = None
    json_schema: Optional[dict[str, Any]] = Field(default=None, alias="schema")
    tag: Optional[str] = None


FormatSpec = Annotated[
    Union[
        MarkdownFormat,
        SummaryFormat,
        HtmlFormat,
        RawHtmlFormat,
        LinksFormat,
        ImagesFormat,
        BrandingFormat,
        ScreenshotFormat,
        JsonFormat,
        ChangeTrackingFormat,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class WaitAction(_WireModel):
    type: Literal["wait"] = "wait"
    milliseconds: Optional[int] = Field(default=None, ge=0)
    selector: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "WaitAction":
        if (self.milliseconds is None) == (self.selector is None):
            raise ValueError("wait action needs exactly one of 'milliseconds' or 'selector'")
        return self


class ScreenshotAction(_WireModel):
    type: Literal["screenshot"] = "screenshot"
    full_page: bool = False
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    viewport: Optional[Viewport] = None


class ClickAction(_WireModel):
    type: Literal["click"] = "click"
    selector: str = Field(min_length=1)


class WriteAction(_WireModel):
    type: Literal["write"] = "write"
    text: str
    selector: Optional[str] = None


class PressAction(_WireModel):
    type: Literal["press"] = "press"
    key: str = Field(min_length=1)


class ScrollAction(_WireModel):
    type: Literal["scroll"] = "scroll"
    direction: Literal["up", "down"] = "down"
    selector: Optional[str] = None


class ScrapeAction(_WireModel):
    type: Literal["scrape"] = "scrape"


class ExecuteJavascriptAction(_WireModel):
    type: Literal["executeJavascript"] = "executeJavascript"
    script: str = Field(min_length=1)


class GeneratePdfAction(_WireModel):
    type: Literal["generatePdf"] = "generatePdf"
    format: Literal["A0", "A1", "A2", "A3", "A4", "A5", "A6", "Letter", "Legal", "Tabloid", "Ledger"] = "Letter"
    landscape: bool = False
    scale: float = Field(default=1.0, ge=0.1, le=2.0)


ActionSpec = Annotated[
    Union[
        WaitAction,
        ScreenshotAction,
        ClickAction,
        WriteAction,
        PressAction,
        ScrollAction,
        ScrapeAction,
        ExecuteJavascriptAction,
        GeneratePdfAction,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

def _tagged(item: Any) -> Any:
    """Turn a bare tag into ``{"type": tag}`` and accept ``kind`` for ``type``."""
    if isinstance(item, str):
        return {"type": item}
    if isinstance(item, dict) and "kind" in item and "type" not in item:
        item = dict(item)
        item["type"] = item.pop("kind")
    return item


class ScrapeRequest(_WireModel):
    url: str
    formats: tuple[FormatSpec, ...] = (MarkdownFormat(),)
    only_main_content: bool = True
    include_tags: Optional[tuple[str, ...]] = None
    exclude_tags: Optional[tuple[str, ...]] = None
    max_age: int = Field(default_factory=lambda: settings.default_max_age_ms, ge=0)
    headers: dict[str, str] = Field(default_factory=dict)
    wait_for: int = Field(default=0, ge=0)
    mobile: bool = False
    skip_tls_verification: bool = True
    timeout: Optional[int] = Field(default=None, gt=0)
    parsers: tuple[Literal["pdf"], ...] = ("pdf",)
    actions: tuple[ActionSpec, ...] = ()
    location: Location = Field(default_factory=Location)
    remove_base64_images: bool = True
    block_ads: bool = True
    proxy: ProxyTier = "auto"
    store_in_cache: bool = True
    zero_data_retention: bool = False

    @model_validator(mode="before")
    @classmethod
    def _zero_retention_disables_cache(cls, data: Any) -> Any:
        if isinstance(data, dict) and (
            data.get("zeroDataRetention") or data.get("zero_data_retention")
        ):
            data = {
                k: v for k, v in data.items() if k not in ("storeInCache", "store_in_cache")
            }
            data["storeInCache"] = False
        return data

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https"):
            raise ValueError("URL must use the http or https scheme")
        if not parsed.hostname:
            raise ValueError("URL must include a host")
        return value

    @field_validator("formats", "actions", mode="before")
    @classmethod
    def _decode_tags(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [_tagged(item) for item in value]
        return value

    @field_validator("formats")
    @classmethod
    def _unique_formats(cls, value: tuple[Any, ...]) -> tuple[Any, ...]:
        seen: set[str] = set()
        for fmt in value:
            if fmt.type in seen:
                raise ValueError(f"format {fmt.type!r} requested more than once")
            seen.add(fmt.type)
        return value

    @model_validator(mode="after")
    def _wait_fits_timeout(self) -> "ScrapeRequest":
        if self.timeout is not None and self.wait_for >= self.timeout:
            raise ValueError("waitFor must be shorter than timeout")
        return self

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    @property
    def timeout_ms(self) -> int:
        return self.timeout or settings.default_timeout_ms

    @property
    def cache_bypassed(self) -> bool:
        """Headers and actions make a scrape session-specific."""
        return bool(self.headers) or bool(self.actions)

    @property
    def cache_writable(self) -> bool:
        return self.store_in_cache and not self.zero_data_retention and not self.cache_bypassed

    @property
    def format_types(self) -> list[str]:
        return [fmt.type for fmt in self.formats]

    def wants(self, format_type: str) -> bool:
        return format_type in self.format_types

    def get_format(self, format_type: str) -> Any:
        """Return the format spec of *format_type*, or ``None``."""
        for fmt in self.formats:
            if fmt.type == format_type:
                return fmt
        return None


def parse_request(payload: ScrapeRequest | dict[str, Any]) -> ScrapeRequest:
    """Validate *payload* into a :class:`ScrapeRequest`.

    Raises:
        InvalidRequestError: With a compact summary of every validation error.
    """
    if isinstance(payload, ScrapeRequest):
        return payload
    try:
        return ScrapeRequest.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidRequestError(f"Invalid scrape request: {problems}") from exc
