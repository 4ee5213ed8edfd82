"""PDF text extraction with ``pypdf``."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from scrapecore.errors import FetchFailureError


@dataclass
class PdfDocument:
    """Text of every page of a PDF plus its document title."""

    pages: list[str] = field(default_factory=list)
    title: str = ""

    @property
    def num_pages(self) -> int:
        return len(self.pages)

    def to_markdown(self) -> str:
        return "\n\n".join(page.strip() for page in self.pages if page.strip())


def read_pdf(document: bytes) -> PdfDocument:
    """Extract the text of each page of *document*.

    Pages without a text layer contribute an empty string so the page
    count stays exact.

    Raises:
        FetchFailureError: If the bytes are not a readable PDF.
    """
    try:
        reader = PdfReader(BytesIO(document))
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as exc:
        raise FetchFailureError(f"Downloaded document is not a readable PDF: {exc}") from exc

    title = ""
    if reader.metadata is not None and reader.metadata.title:
        title = str(reader.metadata.title)
    return PdfDocument(pages=pages, title=title)
