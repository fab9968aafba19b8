"""
Content extraction for classification.

Pulls text out of documents and images so the classifier sees more than
a file name:
1. Plain text formats are read directly
2. PDFs use their text layer (PyPDF2)
3. Images are OCR'd with Tesseract, with a preprocessed second pass for
   low-confidence results

Unsupported formats yield empty text.
"""

from pathlib import Path
from typing import List, Protocol, Tuple

import pytesseract
from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from app.models.schemas import ExtractionResult
from domains.organizing.errors import ExtractionError

TEXT_EXTENSIONS = {"txt", "md", "csv", "json", "xml", "html"}
IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "tiff", "tif", "bmp", "webp", "gif"}


class ContentExtractor(Protocol):
    """Anything that can turn a file into text."""

    def extract(self, path: Path) -> ExtractionResult:
        ...


class NullExtractor:
    """Extractor that never reads anything."""

    def extract(self, path: Path) -> ExtractionResult:
        return ExtractionResult()


class DocumentExtractor:
    """Text, PDF and image extraction."""

    def __init__(
        self,
        languages: str = "eng",
        min_confidence: float = 30.0,
        pdf_page_limit: int = 10,
        preprocess_below: float = 50.0,
    ):
        """
        Initialize extractor.

        Args:
            languages: Tesseract language string, e.g. "eng+jpn"
            min_confidence: OCR words scoring below this (0-100) are dropped
            pdf_page_limit: Only the first pages of a PDF are read
            preprocess_below: Average OCR confidence that triggers a second pass
        """
        self.languages = languages
        self.min_confidence = min_confidence
        self.pdf_page_limit = pdf_page_limit
        self.preprocess_below = preprocess_below

    def extract(self, path: Path) -> ExtractionResult:
        """
        Extract text from ``path``.

        Raises:
            ExtractionError: The file could not be read or decoded
        """
        extension = path.suffix.lower().lstrip(".")

        if extension in TEXT_EXTENSIONS:
            return self._extract_text(path)
        if extension == "pdf":
            return self._extract_pdf(path)
        if extension in IMAGE_EXTENSIONS:
            return self._extract_image(path)

        return ExtractionResult()

    def _extract_text(self, path: Path) -> ExtractionResult:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionError(f"Could not read {path.name}: {e}") from e
        return ExtractionResult(text=text, confidence=1.0)

    def _extract_pdf(self, path: Path) -> ExtractionResult:
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages[:self.pdf_page_limit]]
        except (OSError, PdfReadError) as e:
            raise ExtractionError(f"Could not read PDF {path.name}: {e}") from e

        text = "\n".join(page.strip() for page in pages if page.strip())
        if not text:
            logger.debug(f"No text layer in {path.name}")
            return ExtractionResult()
        return ExtractionResult(text=text, confidence=1.0)

    def _extract_image(self, path: Path) -> ExtractionResult:
        try:
            with Image.open(path) as img:
                img.load()
                text, confidence = self._ocr(img)

                if confidence < self.preprocess_below:
                    enhanced = ImageOps.autocontrast(ImageOps.grayscale(img))
                    retry_text, retry_confidence = self._ocr(enhanced)
                    if retry_confidence > confidence:
                        text, confidence = retry_text, retry_confidence

        except (OSError, UnidentifiedImageError) as e:
            raise ExtractionError(f"Could not open image {path.name}: {e}") from e
        except pytesseract.TesseractError as e:
            raise ExtractionError(f"Tesseract OCR failed for {path.name}: {e}") from e

        logger.debug(f"Extracted {len(text)} characters from {path.name} ({confidence:.0f}%)")
        return ExtractionResult(text=text, confidence=confidence / 100.0)

    def _ocr(self, img: Image.Image) -> Tuple[str, float]:
        data = pytesseract.image_to_data(
            img, lang=self.languages, output_type=pytesseract.Output.DICT
        )

        words: List[str] = []
        scores: List[float] = []
        for word, conf in zip(data["text"], data["conf"]):
            score = float(conf)
            if not word.strip() or score < self.min_confidence:
                continue
            words.append(word)
            scores.append(score)

        if not scores:
            return "", 0.0
        return " ".join(words), sum(scores) / len(scores)
