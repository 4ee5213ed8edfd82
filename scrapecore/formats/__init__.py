"""Formats package: derivation of markdown, html, links, images, branding and LLM outputs."""

from scrapecore.formats.branding import extract_branding
from scrapecore.formats.markdown import clean_html, html_to_markdown
from scrapecore.formats.page import extract_images, extract_links, extract_metadata, is_noindex
from scrapecore.formats.pdf import PdfDocument, read_pdf
from scrapecore.formats.pipeline import Derivation, derive_formats

__all__ = [
    "Derivation",
    "PdfDocument",
    "clean_html",
    "derive_formats",
    "extract_branding",
    "extract_images",
    "extract_links",
    "extract_metadata",
    "html_to_markdown",
    "is_noindex",
    "read_pdf",
]
