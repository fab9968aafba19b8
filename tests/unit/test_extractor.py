import shutil

import pytest

from domains.organizing.errors import ExtractionError
from domains.organizing.extractor import DocumentExtractor, NullExtractor


def test_text_files_are_read_directly(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Meeting\nBudget review", encoding="utf-8")

    result = DocumentExtractor().extract(path)

    assert result.text == "# Meeting\nBudget review"
    assert result.confidence == 1.0


def test_undecodable_text_raises(tmp_path):
    path = tmp_path / "broken.txt"
    path.write_bytes(b"\xff\xfe\xfa binary")

    with pytest.raises(ExtractionError):
        DocumentExtractor().extract(path)


def test_unsupported_type_yields_empty_text(tmp_path):
    path = tmp_path / "archive.zip"
    path.write_bytes(b"PK\x03\x04")

    result = DocumentExtractor().extract(path)

    assert result.text == ""


def test_null_extractor_reads_nothing(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("content")

    assert NullExtractor().extract(path).text == ""


def test_pdf_without_text_layer_is_empty(tmp_path):
    from PyPDF2 import PdfWriter

    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    path = tmp_path / "scan.pdf"
    with open(path, "wb") as handle:
        writer.write(handle)

    assert DocumentExtractor().extract(path).text == ""


def test_corrupt_pdf_raises(tmp_path):
    path = tmp_path / "corrupt.pdf"
    path.write_bytes(b"this is not a pdf")

    with pytest.raises(ExtractionError):
        DocumentExtractor().extract(path)


def test_unreadable_image_raises(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"not an image")

    with pytest.raises(ExtractionError):
        DocumentExtractor().extract(path)


@pytest.mark.skipif(shutil.which("tesseract") is None, reason="tesseract binary not installed")
def test_image_ocr_reads_rendered_text(tmp_path):
    from PIL import Image, ImageDraw

    img = Image.new("RGB", (400, 100), "white")
    ImageDraw.Draw(img).text((10, 40), "INVOICE", fill="black")
    path = tmp_path / "invoice.png"
    img.save(path)

    result = DocumentExtractor(min_confidence=0).extract(path)

    assert 0.0 <= result.confidence <= 1.0
