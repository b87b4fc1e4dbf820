"""
Text extraction for classification.

Supports:
1. Plain text / markdown read directly
2. PDFs via pdfplumber (native text layer)
3. Images via Tesseract OCR
4. RTF with control words stripped
"""

import re
from pathlib import Path
from typing import Optional

import pdfplumber
import pytesseract
from loguru import logger
from PIL import Image

from app.utils.helpers import get_file_extension

PDF_EXTENSIONS = frozenset({"pdf"})
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "tiff", "tif", "webp"})
TEXT_EXTENSIONS = frozenset({"txt", "md", "markdown"})
RTF_EXTENSIONS = frozenset({"rtf"})

SUPPORTED_EXTENSIONS = PDF_EXTENSIONS | IMAGE_EXTENSIONS | TEXT_EXTENSIONS | RTF_EXTENSIONS

MAX_PDF_PAGES = 10

_RTF_CONTROL = re.compile(r"\\[a-zA-Z]+-?\d* ?|[{}]|\\'[0-9a-fA-F]{2}")
_WHITESPACE_RUNS = re.compile(r"[ \t]+")
_BLANK_LINES = re.compile(r"\n{3,}")


def clean_text(text: str) -> str:
    """Collapse whitespace runs and excess blank lines."""
    text = _WHITESPACE_RUNS.sub(" ", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


class ContentExtractor:
    """Extracts bounded text from supported files; never raises."""

    def __init__(self, max_chars: int = 8000):
        self.max_chars = max_chars

    def is_supported(self, path: Path) -> bool:
        """Check if a file type is supported for text extraction."""
        return get_file_extension(path) in SUPPORTED_EXTENSIONS

    def extract(self, path: Path) -> Optional[str]:
        """
        Extract text from ``path``.

        Returns:
            Text truncated to ``max_chars``, or None if unsupported, empty or failed
        """
        ext = get_file_extension(path)
        if ext not in SUPPORTED_EXTENSIONS:
            logger.debug(f"Unsupported file type for text extraction: {ext}")
            return None

        logger.info(f"Extracting text from: {path.name}")

        try:
            if ext in PDF_EXTENSIONS:
                text = self._extract_pdf(path)
            elif ext in IMAGE_EXTENSIONS:
                text = self._extract_image(path)
            elif ext in RTF_EXTENSIONS:
                text = self._extract_rtf(path)
            else:
                text = path.read_text(encoding="utf-8", errors="ignore")
        except Exception as e:
            logger.error(f"Text extraction failed for {path.name}: {e}")
            return None

        text = clean_text(text or "")
        if not text:
            logger.warning(f"No text extracted from: {path.name}")
            return None

        if len(text) > self.max_chars:
            text = text[:self.max_chars]
        logger.info(f"Extracted {len(text)} characters from: {path.name}")
        return text

    def _extract_pdf(self, path: Path) -> str:
        pages = []
        with pdfplumber.open(path) as pdf:
            for page in pdf.pages[:MAX_PDF_PAGES]:
                page_text = page.extract_text()
                if page_text:
                    pages.append(page_text)
        return "\n".join(pages)

    def _extract_image(self, path: Path) -> str:
        with Image.open(path) as img:
            return pytesseract.image_to_string(img)

    def _extract_rtf(self, path: Path) -> str:
        raw = path.read_text(encoding="utf-8", errors="ignore")
        return _RTF_CONTROL.sub("", raw)
