import asyncio
import base64
import logging
from typing import List, Optional, Tuple

from studypal.core.config import Config
from studypal.core.errors import DependencyUnavailableError, ExtractionError
from studypal.core.types import (
    ExtractedContent,
    FileReference,
    ImageContent,
    ImagePart,
    SourceKind,
    TextContent,
)

logger = logging.getLogger(__name__)

# Block format: (x0: float, y0: float, x1: float, y1: float, text: str, block_no: int, block_type: int)
BlockTuple = Tuple[float, float, float, float, str, int, int]


def _load_fitz():
    try:
        import fitz  # PyMuPDF
    except ImportError as e:
        raise DependencyUnavailableError(
            "The PDF processing library (PyMuPDF) is not available. Install 'pymupdf' and try again."
        ) from e
    return fitz


def meaningful_char_count(text: str) -> int:
    return sum(1 for ch in text if not ch.isspace())


class DocumentExtractor:
    """
    Turns an uploaded file into something a multimodal model can read.

    Text-bearing PDFs become one text string. Images, and PDFs that look like
    scans, become a list of inline image parts.
    """

    def __init__(
        self,
        min_text_chars: Optional[int] = None,
        max_raster_pages: Optional[int] = None,
        render_scale: Optional[float] = None,
        jpeg_quality: Optional[int] = None,
    ):
        self.min_text_chars = Config.MIN_TEXT_CHARS if min_text_chars is None else min_text_chars
        self.max_raster_pages = Config.MAX_RASTER_PAGES if max_raster_pages is None else max_raster_pages
        self.render_scale = Config.RENDER_SCALE if render_scale is None else render_scale
        self.jpeg_quality = Config.JPEG_QUALITY if jpeg_quality is None else jpeg_quality

    async def extract(self, file: FileReference) -> ExtractedContent:
        kind = file.source_kind
        if kind is SourceKind.IMAGE:
            logger.info("[Extract] %s is an image, sending it inline", file.name)
            return ImageContent(parts=(self._image_part(file),))
        if kind is SourceKind.PDF:
            return await asyncio.to_thread(self._extract_pdf, file)
        raise ExtractionError(f"Unsupported file type: {file.mime_type} ({file.name})")

    async def page_count(self, file: FileReference) -> int:
        if file.source_kind is not SourceKind.PDF:
            return 1
        return await asyncio.to_thread(self._page_count, file)

    async def render_page(self, file: FileReference, page_number: int, scale: Optional[float] = None) -> bytes:
        """Render one 0-based page to PNG bytes for the document preview."""
        if file.source_kind is SourceKind.IMAGE:
            return file.data
        scale = Config.PREVIEW_SCALE if scale is None else scale
        return await asyncio.to_thread(self._render_page_png, file, page_number, scale)

    # --- internals (run in a worker thread) ---

    def _image_part(self, file: FileReference) -> ImagePart:
        return ImagePart(
            mime_type=file.mime_type,
            base64_data=base64.b64encode(file.data).decode("ascii"),
        )

    def _open(self, file: FileReference):
        fitz = _load_fitz()
        try:
            pdf_doc = fitz.open(stream=file.data, filetype="pdf")
        except Exception as e:
            raise ExtractionError(
                f"Failed to read the PDF file {file.name}. It might be corrupted, "
                f"password-protected, or in an unsupported format."
            ) from e
        if pdf_doc.needs_pass:
            pdf_doc.close()
            raise ExtractionError(f"{file.name} is password-protected.")
        return pdf_doc

    def _sort_blocks_spatially(self, blocks: List[BlockTuple]) -> List[BlockTuple]:
        """
        Keep text blocks only and order them top-to-bottom, then left-to-right.

        y0 is rounded to 10pt bands so that blocks on the same visual line sort
        by x instead of by tiny baseline differences.
        """
        text_blocks = [b for b in blocks if b[6] == 0]
        return sorted(text_blocks, key=lambda b: (round(b[1], -1), b[0]))

    def _page_text(self, page) -> str:
        raw_blocks = page.get_text("blocks")
        typed_blocks: List[BlockTuple] = [
            (float(b[0]), float(b[1]), float(b[2]), float(b[3]), str(b[4]), int(b[5]), int(b[6]))
            for b in raw_blocks
        ]
        parts = [b[4].strip() for b in self._sort_blocks_spatially(typed_blocks)]
        return "\n".join(p for p in parts if p)

    def _extract_pdf(self, file: FileReference) -> ExtractedContent:
        pdf_doc = self._open(file)
        try:
            page_texts: List[str] = []
            for page in pdf_doc:
                text = self._page_text(page)
                if text.strip():
                    page_texts.append(text)
            full_text = "\n\n".join(page_texts)

            if meaningful_char_count(full_text) >= self.min_text_chars:
                logger.info("[Extract] %s: %d pages of text (%d chars)", file.name, len(page_texts), len(full_text))
                return TextContent(content=full_text)

            logger.info(
                "[Extract] %s has too little text (%d chars), rasterizing up to %d pages",
                file.name, meaningful_char_count(full_text), self.max_raster_pages,
            )
            parts = self._rasterize(pdf_doc)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to parse PDF {file.name}: {str(e)}") from e
        finally:
            pdf_doc.close()

        if not parts:
            raise ExtractionError("Could not extract any content from the file.")
        return ImageContent(parts=tuple(parts))

    def _rasterize(self, pdf_doc) -> List[ImagePart]:
        fitz = _load_fitz()
        matrix = fitz.Matrix(self.render_scale, self.render_scale)
        parts: List[ImagePart] = []
        for page_num in range(min(len(pdf_doc), self.max_raster_pages)):
            pix = pdf_doc.load_page(page_num).get_pixmap(matrix=matrix, alpha=False)
            jpeg = pix.tobytes(output="jpeg", jpg_quality=self.jpeg_quality)
            parts.append(ImagePart(mime_type="image/jpeg", base64_data=base64.b64encode(jpeg).decode("ascii")))
        return parts

    def _page_count(self, file: FileReference) -> int:
        pdf_doc = self._open(file)
        try:
            return len(pdf_doc)
        finally:
            pdf_doc.close()

    def _render_page_png(self, file: FileReference, page_number: int, scale: float) -> bytes:
        fitz = _load_fitz()
        pdf_doc = self._open(file)
        try:
            if not 0 <= page_number < len(pdf_doc):
                raise ExtractionError(f"Page {page_number + 1} does not exist in {file.name}")
            pix = pdf_doc.load_page(page_number).get_pixmap(matrix=fitz.Matrix(scale, scale))
            return pix.tobytes("png")
        finally:
            pdf_doc.close()
