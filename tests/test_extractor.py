import asyncio
import base64

import pytest

from studypal.core.errors import ExtractionError
from studypal.core.types import FileReference, ImageContent, TextContent
from studypal.ingestion.extractor import DocumentExtractor, meaningful_char_count

from fakes import SAMPLE_TEXT, make_pdf, pdf_file


def test_file_reference_from_path_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileReference.from_path(tmp_path / "non_existent_file.pdf")


def test_file_reference_guesses_mime_type(tmp_path):
    path = tmp_path / "lecture.pdf"
    path.write_bytes(make_pdf([SAMPLE_TEXT]))

    file = FileReference.from_path(path)
    assert file.mime_type == "application/pdf"
    assert file.source_kind.value == "pdf"


def test_text_pdf_extracts_text_across_pages():
    file = pdf_file([SAMPLE_TEXT, "Second page about the Calvin cycle."])

    content = asyncio.run(DocumentExtractor().extract(file))

    assert isinstance(content, TextContent)
    assert "Chlorophyll absorbs sunlight" in content.content
    assert "Calvin cycle" in content.content
    assert "\n\n" in content.content, "Pages should be separated by a blank line."


def test_blank_pages_are_skipped():
    file = pdf_file([SAMPLE_TEXT, "", "Closing remarks on respiration."])

    content = asyncio.run(DocumentExtractor().extract(file))

    assert isinstance(content, TextContent)
    assert "\n\n\n\n" not in content.content


def test_blocks_are_read_top_to_bottom():
    import fitz

    pdf_doc = fitz.open()
    page = pdf_doc.new_page()
    page.insert_text((72, 400), "Lower paragraph")
    page.insert_text((72, 120), "Upper paragraph")
    file = FileReference(name="order.pdf", mime_type="application/pdf", data=pdf_doc.tobytes())
    pdf_doc.close()

    content = asyncio.run(DocumentExtractor(min_text_chars=0).extract(file))

    assert content.content.index("Upper") < content.content.index("Lower")


def test_scanned_pdf_routes_to_images():
    file = pdf_file(["", "", "", "", "", "", ""])

    content = asyncio.run(DocumentExtractor().extract(file))

    assert isinstance(content, ImageContent)
    assert len(content.parts) == 5, "Only the leading pages are rasterized."
    assert all(part.mime_type == "image/jpeg" for part in content.parts)
    assert base64.b64decode(content.parts[0].base64_data)[:2] == b"\xff\xd8"


def test_low_text_pdf_uses_threshold():
    file = pdf_file(["Figure 1"])

    assert isinstance(asyncio.run(DocumentExtractor().extract(file)), ImageContent)
    assert isinstance(asyncio.run(DocumentExtractor(min_text_chars=5).extract(file)), TextContent)


def test_image_file_becomes_single_inline_part():
    data = b"\x89PNG\r\n\x1a\nfake-image-bytes"
    file = FileReference.from_upload("diagram.png", data, "image/png")

    content = asyncio.run(DocumentExtractor().extract(file))

    assert isinstance(content, ImageContent)
    assert len(content.parts) == 1
    assert content.parts[0].mime_type == "image/png"
    assert base64.b64decode(content.parts[0].base64_data) == data


def test_corrupted_pdf_raises_extraction_error():
    file = FileReference(name="broken.pdf", mime_type="application/pdf", data=b"this is not a pdf")

    with pytest.raises(ExtractionError):
        asyncio.run(DocumentExtractor().extract(file))


def test_unsupported_file_type():
    file = FileReference.from_upload("notes.txt", b"plain text", "text/plain")

    with pytest.raises(ExtractionError):
        asyncio.run(DocumentExtractor().extract(file))


def test_render_page_returns_png():
    file = pdf_file([SAMPLE_TEXT, SAMPLE_TEXT])
    extractor = DocumentExtractor()

    assert asyncio.run(extractor.page_count(file)) == 2
    png = asyncio.run(extractor.render_page(file, 1))
    assert png[:8] == b"\x89PNG\r\n\x1a\n"

    with pytest.raises(ExtractionError):
        asyncio.run(extractor.render_page(file, 5))


def test_meaningful_char_count_ignores_whitespace():
    assert meaningful_char_count("  a b\n\tc  ") == 3
