"""Title and tag suggestions from document content using LLMs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from jinja2 import Template

from ..logger import get_logger

logger = get_logger(__name__)

MAX_CONTENT_CHARS = 8000

TITLE_PROMPT = Template(
    """I will provide you with the content of a document that has been partially read by OCR (so it may contain errors).
Your task is to find a suitable document title that I can use as the title in the paperless-ngx program.
Respond only with the title, without any additional information. The content is likely in {{ language }}.

Content:
{{ content }}
"""
)

TAG_PROMPT = Template(
    """I will provide you with the content and the title of a document. Your task is to select appropriate tags for the document from the list of available tags I will provide. Only select tags from the provided list. Respond only with the selected tags as a comma-separated list, without any additional information. The content is likely in {{ language }}.

Available Tags:
{{ available_tags | join(", ") }}

Title:
{{ title }}

Content:
{{ content }}

Please concisely select the {{ language }} tags from the list above that best describe the document.
Be very selective and only choose the most relevant tags since too many tags will make the document less discoverable.
"""
)


class TitleSuggester(ABC):
    @abstractmethod
    def suggest(self, content: str) -> str:
        ...


class TagSuggester(ABC):
    @abstractmethod
    def suggest(self, content: str, title: str, allowed_tags: list[str] | None = None) -> list[str]:
        """Suggested tags; allowed_tags=None means the full vocabulary."""
        ...


def parse_tag_reply(reply: str, allowed: list[str]) -> list[str]:
    """Keep the comma-separated tags from an LLM reply that are in allowed."""
    by_lower = {tag.lower(): tag for tag in allowed}
    tags: list[str] = []
    for raw in reply.split(","):
        name = raw.strip().strip('"').strip("'")
        match = by_lower.get(name.lower())
        if match is not None and match not in tags:
            tags.append(match)
    return tags


class LLMCompletion:
    """Single-prompt chat completion against openai or anthropic."""

    def __init__(
        self,
        provider: str = "openai",
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.0,
        language: str = "English",
    ):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.language = language
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

    def complete(self, prompt: str) -> str:
        client = self._get_client()
        if self.provider == "anthropic":
            response = client.messages.create(
                model=self.model,
                max_tokens=1024,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            return "".join(block.text for block in response.content if block.type == "text")

        response = client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content or ""


class LLMTitleSuggester(TitleSuggester):
    def __init__(self, llm: LLMCompletion):
        self.llm = llm

    def suggest(self, content: str) -> str:
        prompt = TITLE_PROMPT.render(language=self.llm.language, content=content[:MAX_CONTENT_CHARS])
        title = self.llm.complete(prompt).strip().strip('"')
        logger.debug("Suggested title: %s", title)
        return title


class LLMTagSuggester(TagSuggester):
    """Tag suggestions limited to a vocabulary.

    vocabulary is called whenever the caller does not restrict the tag set.
    """

    def __init__(self, llm: LLMCompletion, vocabulary: Callable[[], list[str]]):
        self.llm = llm
        self.vocabulary = vocabulary

    def suggest(self, content: str, title: str, allowed_tags: list[str] | None = None) -> list[str]:
        available = allowed_tags if allowed_tags is not None else self.vocabulary()
        prompt = TAG_PROMPT.render(
            language=self.llm.language,
            available_tags=available,
            title=title,
            content=content[:MAX_CONTENT_CHARS],
        )
        tags = parse_tag_reply(self.llm.complete(prompt), available)
        logger.debug("Suggested tags: %s", tags)
        return tags
