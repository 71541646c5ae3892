from desci.services.text_extractor import extract_pdf_text, extract_text


def test_pdf_text(sample_pdf):
    text = extract_pdf_text(sample_pdf.read_bytes())
    assert "coral reef genomics" in text


def test_pdf_detected_by_extension(sample_pdf):
    text = extract_text(sample_pdf.read_bytes(), None, "paper.pdf")
    assert "RESULTS" in text


def test_plain_text_decoded():
    assert extract_text("naïve results".encode(), "text/plain", "notes.txt") == "naïve results"
    assert extract_text(b"# Title", "text/markdown", "README.md") == "# Title"


def test_binary_formats_have_no_text():
    assert extract_text(b"PK\x03\x04", "application/zip", "bundle.zip") is None
    assert extract_text(b"PK\x03\x04", None, "paper.docx") is None
