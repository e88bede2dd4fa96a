import logging
import textwrap
from typing import List

from studypal.core.errors import DependencyUnavailableError
from studypal.rendering.markdown import render, to_plain_text

logger = logging.getLogger(__name__)

# A4 in points
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
MARGIN = 50
FONT_SIZE = 11
LINE_HEIGHT = 15
TITLE_SIZE = 16
WRAP_WIDTH = 90


def summary_plain_text(summary: str) -> str:
    """The text placed on the clipboard by the copy button."""
    return to_plain_text(render(summary))


def _wrap(text: str) -> List[str]:
    lines: List[str] = []
    for raw in text.split("\n"):
        if not raw.strip():
            lines.append("")
            continue
        indent = raw[: len(raw) - len(raw.lstrip(" "))]
        lines.extend(textwrap.wrap(raw, width=WRAP_WIDTH, subsequent_indent=indent + "  ") or [""])
    return lines


def export_summary_pdf(title: str, summary: str) -> bytes:
    """Lay the summary out on A4 pages and return the PDF bytes."""
    try:
        import fitz  # PyMuPDF
    except ImportError as e:
        raise DependencyUnavailableError("PyMuPDF is required to export PDFs") from e

    pdf_doc = fitz.open()
    try:
        page = pdf_doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        y = MARGIN + TITLE_SIZE
        page.insert_text((MARGIN, y), title, fontsize=TITLE_SIZE)
        y += LINE_HEIGHT * 2

        for line in _wrap(summary_plain_text(summary)):
            if y > PAGE_HEIGHT - MARGIN:
                page = pdf_doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
                y = MARGIN + FONT_SIZE
            if line:
                page.insert_text((MARGIN, y), line, fontsize=FONT_SIZE)
            y += LINE_HEIGHT

        logger.info("[Export] '%s' rendered to %d page(s)", title, len(pdf_doc))
        return pdf_doc.tobytes()
    finally:
        pdf_doc.close()
