"""LLM-backed summary and structured (JSON) extraction.

The chat model is resolved from ``settings.llm_provider`` the same way for
both operations.  Every call runs on a worker thread and is bounded by the
request :class:`~scrapecore.scraper.session.Deadline`.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Optional, Protocol, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage

from scrapecore.config import settings
from scrapecore.errors import ActionTimeoutError, ExtractionFailureError
from scrapecore.scraper.session import Deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SUMMARY_SYSTEM_PROMPT = (
    "You summarize web pages. Reply with a concise, factual summary of the "
    "page content in a few sentences. Do not add information that is not on the page."
)

_EXTRACT_SYSTEM_PROMPT = (
    "You extract structured data from web pages. Reply with a single JSON "
    "object and nothing else."
)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class Extractor(Protocol):
    def summarize(self, markdown: str, deadline: Deadline) -> str: ...

    def extract_json(
        self,
        content: str,
        schema: Optional[dict[str, Any]],
        prompt: Optional[str],
        deadline: Deadline,
    ) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _get_llm() -> Any:
    """Return a LangChain chat model from ``settings``."""
    if settings.llm_provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(model=settings.openai_chat_model, temperature=0)

    from langchain_ollama import ChatOllama

    return ChatOllama(
        model=settings.ollama_chat_model,
        base_url=settings.ollama_base_url,
        temperature=0,
    )


def _bounded(call: Callable[[], T], deadline: Deadline, what: str) -> T:
    """Run *call* on a worker thread, giving up when *deadline* expires."""
    deadline.check(f"starting {what}")
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scrapecore-llm")
    try:
        future = pool.submit(call)
        try:
            return future.result(timeout=deadline.remaining_ms() / 1000)
        except FuturesTimeout as exc:
            future.cancel()
            raise ActionTimeoutError(
                f"Request timed out after {deadline.timeout_ms} ms during {what}"
            ) from exc
    finally:
        pool.shutdown(wait=False)


def _content_of(response: Any) -> str:
    text = response.content if hasattr(response, "content") else str(response)
    return text if isinstance(text, str) else json.dumps(text)


def parse_json_reply(text: str) -> dict[str, Any]:
    """Parse a model reply that should be a JSON object (code fences allowed).

    Raises:
        ExtractionFailureError: If the reply is not a JSON object.
    """
    text = text.strip()
    fenced = _JSON_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionFailureError(f"Model reply is not valid JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise ExtractionFailureError("Model reply is JSON but not an object")
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class LangChainExtractor:
    """Default :class:`Extractor` backed by a LangChain chat model."""

    def __init__(self, llm_factory: Callable[[], Any] = _get_llm) -> None:
        self._llm_factory = llm_factory

    def summarize(self, markdown: str, deadline: Deadline) -> str:
        """Return a short natural-language summary of *markdown*.

        Raises:
            ExtractionFailureError: The model failed or replied with nothing.
            ActionTimeoutError:     The request deadline expired first.
        """
        messages = [
            SystemMessage(content=_SUMMARY_SYSTEM_PROMPT),
            HumanMessage(content=markdown[: settings.extraction_max_chars]),
        ]

        def call() -> str:
            return _content_of(self._llm_factory().invoke(messages))

        try:
            summary = _bounded(call, deadline, "summary generation")
        except (ActionTimeoutError, ExtractionFailureError):
            raise
        except Exception as exc:  # noqa: BLE001
            raise ExtractionFailureError(f"Summary generation failed: {exc}") from exc

        if not summary.strip():
            raise ExtractionFailureError("Summary generation returned no text")
        return summary.strip()

    def extract_json(
        self,
        content: str,
        schema: Optional[dict[str, Any]],
        prompt: Optional[str],
        deadline: Deadline,
    ) -> dict[str, Any]:
        """Extract a JSON object from *content*.

        With a *schema* the model is constrained through
        ``with_structured_output``; with only a *prompt* the reply is parsed
        as free-form JSON.

        Raises:
            ExtractionFailureError: The model failed or its reply was unusable.
            ActionTimeoutError:     The request deadline expired first.
        """
        instruction = prompt or "Extract the data described by the schema."
        messages = [
            SystemMessage(content=_EXTRACT_SYSTEM_PROMPT),
            HumanMessage(
                content=f"{instruction}\n\nPage content:\n{content[: settings.extraction_max_chars]}"
            ),
        ]

        def call() -> dict[str, Any]:
            llm = self._llm_factory()
            if schema:
                titled = schema if "title" in schema else {"title": "extraction", **schema}
                result = llm.with_structured_output(titled).invoke(messages)
                if not isinstance(result, dict):
                    raise ExtractionFailureError("Structured output did not produce an object")
                return result
            return parse_json_reply(_content_of(llm.invoke(messages)))

        try:
            return _bounded(call, deadline, "JSON extraction")
        except (ActionTimeoutError, ExtractionFailureError):
            raise
        except Exception as exc:  # noqa: BLE001
            raise ExtractionFailureError(f"JSON extraction failed: {exc}") from exc
