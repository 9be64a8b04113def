"""Document enrichment pipeline.

Stages:
1. OCR - Extract text from page images (vision LLM or Tesseract)
2. Suggest - Propose titles and tags from the extracted text
"""

from .ocr import (
    LLMVisionExtractor,
    TesseractExtractor,
    TextExtractor,
    extract_page_texts,
    join_pages,
)
from .suggest import (
    LLMCompletion,
    LLMTagSuggester,
    LLMTitleSuggester,
    TagSuggester,
    TitleSuggester,
)

__all__ = [
    "LLMCompletion",
    "LLMTagSuggester",
    "LLMTitleSuggester",
    "LLMVisionExtractor",
    "TagSuggester",
    "TesseractExtractor",
    "TextExtractor",
    "TitleSuggester",
    "extract_page_texts",
    "join_pages",
]
