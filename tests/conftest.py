"""Shared fixtures and fakes for paperpilot tests."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from paperpilot.config import PaperpilotConfig
from paperpilot.db import WorkflowStore, get_engine, get_session_factory, init_db, workflow_from_dict
from paperpilot.exceptions import PaperlessError
from paperpilot.jobs import OCRJobService
from paperpilot.pipeline.ocr import TextExtractor
from paperpilot.pipeline.suggest import TagSuggester, TitleSuggester
from paperpilot.services import Services
from paperpilot.sources.base import Document, DocumentSource, DocumentSuggestion
from paperpilot.workflows import WorkflowEngine


class FakeSource(DocumentSource):
    """In-memory document repository."""

    def __init__(self):
        self.documents: dict[int, Document] = {}
        self.pages: dict[int, list[Path]] = {}
        self.tags = ["A", "B", "C", "invoice", "paperpilot-ocr"]
        self.updates: list[DocumentSuggestion] = []
        self.restored: list[tuple[int, str, str]] = []
        self.failing_updates: set[int] = set()
        self.failing_images: set[int] = set()
        self.failing_queries: set[frozenset[str]] = set()

    def add_document(self, doc_id: int, title: str = "", content: str = "", tags=()) -> Document:
        doc = Document(id=doc_id, title=title, content=content, tags=list(tags))
        self.documents[doc_id] = doc
        return doc

    def get_page_images(self, document_id: int) -> list[Path]:
        if document_id in self.failing_images:
            raise PaperlessError(f"download of document {document_id} failed")
        return list(self.pages.get(document_id, []))

    def get_documents_by_tag_names(self, names: list[str]) -> list[Document]:
        if frozenset(names) in self.failing_queries:
            raise PaperlessError("query failed")
        wanted = set(names)
        return [
            Document(id=d.id, title=d.title, content=d.content, tags=list(d.tags))
            for d in self.documents.values()
            if wanted.issubset(d.tags)
        ]

    def update_documents(self, suggestions: list[DocumentSuggestion]) -> None:
        for suggestion in suggestions:
            if suggestion.id in self.failing_updates:
                raise PaperlessError(f"update of document {suggestion.id} failed")
            self.updates.append(suggestion)

    def get_all_tag_names(self) -> list[str]:
        return sorted(self.tags)

    def restore_field(self, document_id: int, field: str, value: str) -> None:
        self.restored.append((document_id, field, value))


class FakeExtractor(TextExtractor):
    """Returns "text:<image bytes>" for every page.

    Pages whose bytes are in fail_on raise. When gate is set, every call
    waits on it after signalling entered.
    """

    def __init__(self, empty: bool = False):
        self.empty = empty
        self.fail_on: set[bytes] = set()
        self.calls: list[bytes] = []
        self.entered = threading.Event()
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def extract(self, image: bytes) -> str:
        with self._lock:
            self.calls.append(image)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if image in self.fail_on:
            raise RuntimeError("vision model unavailable")
        return "" if self.empty else f"text:{image.decode()}"


class FakeTitleSuggester(TitleSuggester):
    def __init__(self, title: str = "Suggested title"):
        self.title = title
        self.calls: list[str] = []

    def suggest(self, content: str) -> str:
        self.calls.append(content)
        return self.title


class FakeTagSuggester(TagSuggester):
    def __init__(self, tags=("invoice",)):
        self.tags = list(tags)
        self.calls: list[tuple[str, str, list[str] | None]] = []

    def suggest(self, content: str, title: str, allowed_tags: list[str] | None = None) -> list[str]:
        self.calls.append((content, title, allowed_tags))
        return list(self.tags)


class FakeWorkflowStore:
    def __init__(self, definitions: list[dict] | None = None):
        self.definitions = definitions or []
        self.error: Exception | None = None

    def list_workflows_ordered_by_run_order(self):
        if self.error is not None:
            raise self.error
        workflows = [workflow_from_dict(d) for d in self.definitions]
        return sorted(workflows, key=lambda w: w.run_order)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def title_suggester():
    return FakeTitleSuggester()


@pytest.fixture
def tag_suggester():
    return FakeTagSuggester()


@pytest.fixture
def make_pages(tmp_path, source):
    """Write page image files for a document and register them with the source."""

    def _make(document_id: int, *pages: bytes) -> list[Path]:
        doc_dir = tmp_path / f"doc-{document_id}"
        doc_dir.mkdir(exist_ok=True)
        paths = []
        for i, data in enumerate(pages):
            path = doc_dir / f"page{i:03d}.jpg"
            path.write_bytes(data)
            paths.append(path)
        source.pages[document_id] = paths
        return paths

    return _make


@pytest.fixture
def workflow_store():
    return FakeWorkflowStore()


@pytest.fixture
def workflow_engine(workflow_store, source, extractor, title_suggester, tag_suggester):
    return WorkflowEngine(
        store=workflow_store,
        source=source,
        extractor=extractor,
        title_suggester=title_suggester,
        tag_suggester=tag_suggester,
    )


@pytest.fixture
def db_engine():
    engine = get_engine(url="sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(db_engine)


@pytest.fixture
def services(tmp_path, db_engine, session_factory, source, extractor, title_suggester, tag_suggester):
    """Services bundle backed by in-memory SQLite and the fakes above."""
    config = PaperpilotConfig(data_dir=tmp_path)
    return Services(
        config=config,
        engine=db_engine,
        session_factory=session_factory,
        client=source,
        ocr_jobs=OCRJobService(source, extractor, workers=2, queue_capacity=10),
        workflows=WorkflowEngine(
            store=WorkflowStore(session_factory),
            source=source,
            extractor=extractor,
            title_suggester=title_suggester,
            tag_suggester=tag_suggester,
        ),
    )
