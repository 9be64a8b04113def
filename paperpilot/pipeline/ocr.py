"""Page text extraction for scanned documents."""

from __future__ import annotations

import base64
import io
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Sequence

from ..exceptions import OperationCancelled, PageExtractionError
from ..logger import get_logger

logger = get_logger(__name__)

PAGE_SEPARATOR = "\n\n"

OCR_PROMPT = (
    "Just transcribe the text in this image and preserve the formatting and layout "
    "(high quality OCR). Do that for ALL the text in the image. Be thorough and pay "
    "attention. This is very important. The image is from a text document so be sure "
    "to continue until the bottom of the page. Thanks a lot! You tend to forget about "
    "some text in the image so please focus! Use markdown format but without a code block."
)


class TextExtractor(ABC):
    """Turns one page image into text."""

    @abstractmethod
    def extract(self, image: bytes) -> str:
        ...


def _image_mime_type(image: bytes) -> str:
    from PIL import Image

    with Image.open(io.BytesIO(image)) as img:
        fmt = (img.format or "JPEG").lower()
    return "image/jpeg" if fmt == "jpeg" else f"image/{fmt}"


class LLMVisionExtractor(TextExtractor):
    """OCR through a vision-capable LLM.

    Providers:
    - openai (also any OpenAI-compatible endpoint such as Ollama via base_url)
    - anthropic
    """

    def __init__(
        self,
        provider: str = "openai",
        model: str = "gpt-4o",
        api_key: str | None = None,
        base_url: str | None = None,
        prompt: str = OCR_PROMPT,
        max_tokens: int = 4096,
    ):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.prompt = prompt
        self.max_tokens = max_tokens
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            if self.provider == "anthropic":
                import anthropic
                self._client = anthropic.Anthropic(api_key=self.api_key)
            elif self.provider == "openai":
                import openai
                self._client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url)
            else:
                raise ValueError(f"Unknown provider: {self.provider}")
        return self._client

    def extract(self, image: bytes) -> str:
        client = self._get_client()
        mime_type = _image_mime_type(image)
        encoded = base64.b64encode(image).decode("ascii")

        if self.provider == "anthropic":
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": mime_type, "data": encoded},
                        },
                        {"type": "text", "text": self.prompt},
                    ],
                }],
            )
            return "".join(block.text for block in response.content if block.type == "text")

        response = client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            }],
        )
        return response.choices[0].message.content or ""


class TesseractExtractor(TextExtractor):
    """Local OCR with Tesseract."""

    def __init__(self, tesseract_cmd: str | None = None, lang: str = "eng"):
        self.tesseract_cmd = tesseract_cmd
        self.lang = lang

    def extract(self, image: bytes) -> str:
        import pytesseract
        from PIL import Image

        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        with Image.open(io.BytesIO(image)) as img:
            return pytesseract.image_to_string(img, lang=self.lang)


def extract_page_texts(
    image_paths: Sequence[Path | str],
    extractor: TextExtractor,
    cancel: threading.Event | None = None,
    on_page: Callable[[int], None] | None = None,
) -> list[str]:
    """Extract text from each page in order.

    Fails fast: the first unreadable page or extraction error raises
    PageExtractionError and no partial result is returned. on_page receives
    the 1-based count of pages done after each success.
    """
    texts = []
    for i, path in enumerate(image_paths, start=1):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"cancelled before page {i}")

        try:
            image = Path(path).read_bytes()
        except OSError as e:
            raise PageExtractionError(i, "read", e) from e

        try:
            text = extractor.extract(image)
        except Exception as e:
            raise PageExtractionError(i, "ocr", e) from e

        texts.append(text)
        logger.debug("Extracted page %d/%d", i, len(image_paths))
        if on_page is not None:
            on_page(i)
    return texts


def join_pages(texts: Sequence[str]) -> str:
    return PAGE_SEPARATOR.join(texts)
