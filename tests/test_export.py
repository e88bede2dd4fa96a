import fitz

from studypal.rendering.export import export_summary_pdf, summary_plain_text

SUMMARY = "## Key Points\n* **Chlorophyll** absorbs *light*\n  * mostly red and blue\n1. Light reactions\n2. Calvin cycle"


def test_plain_text_drops_markdown_markers():
    text = summary_plain_text(SUMMARY)

    assert text == "Key Points\n\n• Chlorophyll absorbs light\n  • mostly red and blue\n\n1. Light reactions\n2. Calvin cycle"
    assert "**" not in text and "#" not in text


def test_pdf_export_contains_summary_text():
    data = export_summary_pdf("Summary: notes.pdf", SUMMARY)

    assert data.startswith(b"%PDF")
    pdf_doc = fitz.open(stream=data, filetype="pdf")
    text = pdf_doc[0].get_text()
    pdf_doc.close()
    assert "Summary: notes.pdf" in text
    assert "Calvin cycle" in text


def test_long_summary_spans_pages():
    summary = "\n\n".join(f"Paragraph {i} about photosynthesis and the light reactions." for i in range(120))

    pdf_doc = fitz.open(stream=export_summary_pdf("Long", summary), filetype="pdf")

    assert len(pdf_doc) > 1
    pdf_doc.close()
