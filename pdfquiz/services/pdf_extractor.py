"""PDF text extraction with per-page character ranges.

Reads PDF bytes with PyMuPDF (fitz), extracts text page by page, cleans it
and returns an :class:`~pdfquiz.models.chunk.ExtractedText` whose page map
locates every page inside the cleaned document text.  The chunker uses that
map to stamp chunks with page numbers.

Cleaning collapses whitespace to single spaces and replaces characters
outside word characters, whitespace and basic punctuation with a space.
Layout is deliberately not preserved.

When a cleaned page cannot be located in the cleaned document text (the
cleaning is not always additive across page joins), the page map falls back
to an even split of the text across the page count.
"""

from __future__ import annotations

import asyncio
import re

import fitz  # PyMuPDF
import structlog

from pdfquiz.models.chunk import ExtractedText, PageRange
from pdfquiz.utils.errors import EmptyDocumentError, PDFExtractionError

logger = structlog.get_logger(logger_name=__name__)

_SPACES_RE = re.compile(r"[ \t]+")
_NEWLINE_INDENT_RE = re.compile(r"\n[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_DISALLOWED_CHARS_RE = re.compile(r"[^\w\s.,!?;:\-()\"'\[\]]")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """Normalise extracted PDF text to single-spaced plain prose."""
    text = _SPACES_RE.sub(" ", text)
    text = _NEWLINE_INDENT_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    text = _DISALLOWED_CHARS_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


class PDFTextExtractor:
    """Extracts cleaned text and a page map from PDF bytes."""

    async def extract(self, data: bytes) -> ExtractedText:
        """Extract text from *data* without blocking the event loop.

        Raises
        ------
        PDFExtractionError
            If the bytes are not a readable PDF.
        EmptyDocumentError
            If the PDF has no extractable text.
        """
        return await asyncio.to_thread(self.extract_sync, data)

    def extract_sync(self, data: bytes) -> ExtractedText:
        pages = self._read_pages(data)
        text = clean_text("\n\n".join(pages))
        if not text:
            raise EmptyDocumentError()

        page_map = self._build_page_map(text, pages)
        logger.info(
            "pdf_text_extracted",
            pages=len(pages),
            characters=len(text),
            mapped=len(page_map),
        )
        return ExtractedText(text=text, total_pages=len(pages), page_map=page_map)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _read_pages(data: bytes) -> list[str]:
        """Return the raw text of every page, in order."""
        if not data:
            raise PDFExtractionError("Failed to process PDF: file is empty")
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise PDFExtractionError(f"Failed to process PDF: {exc}") from exc

        try:
            if doc.needs_pass:
                raise PDFExtractionError("Failed to process PDF: document is encrypted")
            if doc.page_count == 0:
                raise PDFExtractionError("Failed to process PDF: document has no pages")
            return [doc[index].get_text("text") for index in range(len(doc))]
        except RuntimeError as exc:
            raise PDFExtractionError(f"Failed to process PDF: {exc}") from exc
        finally:
            doc.close()

    def _build_page_map(self, text: str, pages: list[str]) -> list[PageRange]:
        """Locate each cleaned page inside *text*.

        Every range runs to the start of the next page so that offsets
        falling on separators still resolve to a page.
        """
        starts: list[int] = []
        cursor = 0
        for page_text in pages:
            cleaned = clean_text(page_text)
            if not cleaned:
                starts.append(cursor)
                continue
            found = text.find(cleaned, cursor)
            if found < 0:
                logger.warning("pdf_page_map_approximated", pages=len(pages))
                return self._approximate_page_map(len(text), len(pages))
            starts.append(found)
            cursor = found + len(cleaned)

        page_map: list[PageRange] = []
        for index, start in enumerate(starts):
            end = starts[index + 1] if index + 1 < len(starts) else len(text)
            page_map.append(
                PageRange(page_number=index + 1, start_index=start, end_index=max(start, end))
            )
        return page_map

    @staticmethod
    def _approximate_page_map(text_length: int, total_pages: int) -> list[PageRange]:
        if total_pages <= 0:
            return []
        average = text_length // total_pages
        return [
            PageRange(
                page_number=index + 1,
                start_index=index * average,
                end_index=text_length if index == total_pages - 1 else (index + 1) * average,
            )
            for index in range(total_pages)
        ]
