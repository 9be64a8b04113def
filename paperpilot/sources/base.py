"""Base interface for the document repository paperpilot works against."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Document:
    """A document as read from the repository."""

    id: int
    title: str
    content: str
    tags: list[str] = field(default_factory=list)


@dataclass
class DocumentSuggestion:
    """Proposed new state of a document, accumulated by a workflow."""

    id: int
    original: Document
    title: str
    tags: list[str]
    content: str

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentSuggestion":
        return cls(
            id=doc.id,
            original=doc,
            title=doc.title,
            tags=list(doc.tags),
            content=doc.content,
        )


class DocumentSource(ABC):
    """Abstract base for document repositories."""

    @abstractmethod
    def get_page_images(self, document_id: int) -> list[Path]:
        """Ordered page images of a document."""
        ...

    @abstractmethod
    def get_documents_by_tag_names(self, names: list[str]) -> list[Document]:
        """Documents carrying every one of the given tags."""
        ...

    @abstractmethod
    def update_documents(self, suggestions: list[DocumentSuggestion]) -> None:
        """Write suggestions back. Raises on failure."""
        ...

    @abstractmethod
    def get_all_tag_names(self) -> list[str]:
        """The full tag vocabulary."""
        ...


def remove_tags(tags: list[str], to_remove: list[str]) -> list[str]:
    """Tags minus the ones in to_remove, original order kept."""
    drop = set(to_remove)
    return [tag for tag in tags if tag not in drop]
