"""Rule-based document workflows.

A workflow selects documents with its triggers and runs its actions, in
execution order, against each selected document. Actions never write to the
repository directly: they edit a DocumentSuggestion that is submitted once
at the end of the pipeline.

Trigger and action kinds are looked up in dispatch tables; new kinds are
added with @register_trigger / @register_action.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, ClassVar, Protocol

from .exceptions import (
    DocumentProcessingError,
    OperationCancelled,
    PageExtractionError,
    WorkflowStructuralError,
)
from .logger import get_logger
from .models import MANUAL_REVIEW_RUN_ORDER, ActionKind, TriggerKind, Workflow
from .pipeline.ocr import TextExtractor, extract_page_texts, join_pages
from .pipeline.suggest import TagSuggester, TitleSuggester
from .sources.base import Document, DocumentSource, DocumentSuggestion, remove_tags

if TYPE_CHECKING:
    from .models import WorkflowAction, WorkflowTrigger

logger = get_logger(__name__)

OCR_CONTENT_LABEL = "OCR Content:"


class WorkflowSource(Protocol):
    def list_workflows_ordered_by_run_order(self) -> list[Workflow]: ...


def parse_tag_list(data: str | None, what: str) -> list[str]:
    """Decode a JSON array of tag names."""
    if not data:
        return []
    try:
        value = json.loads(data)
    except json.JSONDecodeError as e:
        raise WorkflowStructuralError(f"failed to unmarshal tags for {what}: {e}") from e
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(tag, str) for tag in value):
        raise WorkflowStructuralError(f"tags for {what} must be a list of strings, got {data!r}")
    return value


# === Triggers ===


TRIGGER_TYPES: dict[str, type["Trigger"]] = {}


def register_trigger(kind: str) -> Callable[[type["Trigger"]], type["Trigger"]]:
    def decorator(cls: type[Trigger]) -> type[Trigger]:
        cls.kind = kind
        TRIGGER_TYPES[kind] = cls
        return cls
    return decorator


class Trigger(ABC):
    kind: ClassVar[str]

    @classmethod
    @abstractmethod
    def parse(cls, data: str | None) -> "Trigger":
        ...

    @abstractmethod
    def find_documents(self, source: DocumentSource) -> list[Document]:
        ...


@register_trigger(TriggerKind.MATCH_TAGS.value)
@dataclass
class MatchTagsTrigger(Trigger):
    """Documents carrying all of the given tags."""

    tags: list[str]

    @classmethod
    def parse(cls, data: str | None) -> "MatchTagsTrigger":
        return cls(tags=parse_tag_list(data, "trigger"))

    def find_documents(self, source: DocumentSource) -> list[Document]:
        if not self.tags:
            logger.warning("Tag trigger without tags matches nothing")
            return []
        return source.get_documents_by_tag_names(self.tags)


# === Actions ===


ACTION_TYPES: dict[str, type["Action"]] = {}


def register_action(kind: str) -> Callable[[type["Action"]], type["Action"]]:
    def decorator(cls: type[Action]) -> type[Action]:
        cls.kind = kind
        ACTION_TYPES[kind] = cls
        return cls
    return decorator


class Action(ABC):
    kind: ClassVar[str]

    @classmethod
    def parse(cls, data: str | None) -> "Action":
        return cls()

    @abstractmethod
    def apply(
        self,
        suggestion: DocumentSuggestion,
        engine: "WorkflowEngine",
        cancel: threading.Event | None,
    ) -> None:
        ...


@register_action(ActionKind.AUTO_TITLE.value)
class AutoTitleAction(Action):
    def apply(self, suggestion, engine, cancel):
        suggestion.title = engine.title_suggester.suggest(suggestion.original.content)
        logger.debug("Generated title for document %d: %s", suggestion.id, suggestion.title)


@register_action(ActionKind.AUTO_TAG.value)
class AutoTagAction(Action):
    def apply(self, suggestion, engine, cancel):
        # None = choose from the full tag vocabulary
        suggestion.tags = list(engine.tag_suggester.suggest(
            suggestion.original.content, suggestion.title, allowed_tags=None
        ))
        logger.debug("Generated tags for document %d: %s", suggestion.id, suggestion.tags)


@register_action(ActionKind.AUTO_OCR.value)
class AutoOCRAction(Action):
    def apply(self, suggestion, engine, cancel):
        text = engine.ocr_document(suggestion.id, cancel)
        if not text:
            logger.warning("OCR produced no text for document %d", suggestion.id)
            return
        if suggestion.content:
            suggestion.content = f"{suggestion.content}\n\n{OCR_CONTENT_LABEL}\n{text}"
        else:
            suggestion.content = text
        logger.debug("Added OCR content for document %d", suggestion.id)


@register_action(ActionKind.APPLY_TAGS.value)
@dataclass
class ApplyTagsAction(Action):
    tags: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, data: str | None) -> "ApplyTagsAction":
        return cls(tags=parse_tag_list(data, "action"))

    def apply(self, suggestion, engine, cancel):
        suggestion.tags.extend(self.tags)
        logger.debug("Applied additional tags to document %d: %s", suggestion.id, self.tags)


# === Compilation ===


@dataclass
class CompiledWorkflow:
    """A workflow whose payloads have been parsed and validated."""

    name: str
    run_order: int
    triggers: list[Trigger]
    actions: list[Action]

    @property
    def trigger_tags(self) -> list[str]:
        """Tags of the first tag trigger, removed from every matched document."""
        for trigger in self.triggers:
            if isinstance(trigger, MatchTagsTrigger):
                return trigger.tags
        return []


def _compile_trigger(trigger: "WorkflowTrigger") -> Trigger | None:
    trigger_type = TRIGGER_TYPES.get(trigger.match_action)
    if trigger_type is None:
        logger.warning("Unknown trigger action: %s", trigger.match_action)
        return None
    return trigger_type.parse(trigger.match_data)


def _compile_action(action: "WorkflowAction") -> Action | None:
    action_type = ACTION_TYPES.get(action.action_type)
    if action_type is None:
        logger.warning("Unknown action type: %s", action.action_type)
        return None
    return action_type.parse(action.action_data)


def compile_workflow(workflow: Workflow) -> CompiledWorkflow:
    """Parse every trigger and action; raises WorkflowStructuralError."""
    try:
        triggers = [t for t in map(_compile_trigger, workflow.triggers) if t is not None]
        ordered = sorted(workflow.actions, key=lambda a: a.execution_order)
        actions = [a for a in map(_compile_action, ordered) if a is not None]
    except WorkflowStructuralError as e:
        raise WorkflowStructuralError(f"workflow {workflow.name}: {e}") from e
    return CompiledWorkflow(
        name=workflow.name,
        run_order=workflow.run_order,
        triggers=triggers,
        actions=actions,
    )


# === Engine ===


@dataclass
class SkippedDocument:
    workflow: str
    document_id: int
    reason: str


@dataclass
class WorkflowRunResult:
    """Outcome of one run: documents updated, documents skipped, abort reason."""

    processed: int = 0
    skipped: list[SkippedDocument] = field(default_factory=list)
    error: WorkflowStructuralError | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


class WorkflowEngine:
    """Runs every automatic workflow once, sequentially."""

    def __init__(
        self,
        store: WorkflowSource,
        source: DocumentSource,
        extractor: TextExtractor,
        title_suggester: TitleSuggester,
        tag_suggester: TagSuggester,
    ):
        self.store = store
        self.source = source
        self.extractor = extractor
        self.title_suggester = title_suggester
        self.tag_suggester = tag_suggester

    def run(self, cancel: threading.Event | None = None) -> WorkflowRunResult:
        result = WorkflowRunResult()

        try:
            workflows = self.store.list_workflows_ordered_by_run_order()
        except WorkflowStructuralError as e:
            result.error = e
        except Exception as e:
            result.error = WorkflowStructuralError(f"failed to get workflows: {e}")
        if result.error is not None:
            logger.error("Workflow run aborted: %s", result.error)
            return result

        for workflow in sorted(workflows, key=lambda w: w.run_order):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            if workflow.run_order == MANUAL_REVIEW_RUN_ORDER:
                logger.debug("Skipping manual review workflow: %s", workflow.name)
                continue

            try:
                compiled = compile_workflow(workflow)
            except WorkflowStructuralError as e:
                logger.error("Workflow run aborted: %s", e)
                result.error = e
                break

            try:
                self._run_workflow(compiled, result, cancel)
            except OperationCancelled:
                result.cancelled = True
                break

        if result.cancelled:
            logger.warning("Workflow run cancelled after %d documents", result.processed)
        else:
            logger.info(
                "Workflow run finished: %d processed, %d skipped",
                result.processed, len(result.skipped),
            )
        return result

    def _run_workflow(
        self,
        workflow: CompiledWorkflow,
        result: WorkflowRunResult,
        cancel: threading.Event | None,
    ) -> None:
        logger.debug("Processing workflow: %s (run_order: %d)", workflow.name, workflow.run_order)

        try:
            documents = self.find_documents(workflow)
        except Exception as e:
            logger.error("Failed to evaluate triggers for workflow %s: %s", workflow.name, e)
            return

        if not documents:
            logger.debug("No documents matched triggers for workflow: %s", workflow.name)
            return
        logger.info("Found %d documents for workflow: %s", len(documents), workflow.name)

        for doc in documents:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("workflow run cancelled")
            try:
                self.process_document(workflow, doc, cancel)
            except DocumentProcessingError as e:
                logger.error(
                    "Error processing document %d with workflow %s: %s", doc.id, workflow.name, e
                )
                result.skipped.append(SkippedDocument(workflow.name, doc.id, str(e)))
                continue
            result.processed += 1

    def find_documents(self, workflow: CompiledWorkflow) -> list[Document]:
        """Documents matched by any trigger, first occurrence of each id kept."""
        seen: set[int] = set()
        documents: list[Document] = []
        for trigger in workflow.triggers:
            logger.debug("Processing trigger: %s", trigger.kind)
            for doc in trigger.find_documents(self.source):
                if doc.id in seen:
                    continue
                seen.add(doc.id)
                documents.append(doc)
        return documents

    def process_document(
        self,
        workflow: CompiledWorkflow,
        doc: Document,
        cancel: threading.Event | None = None,
    ) -> DocumentSuggestion:
        """Run the action pipeline for one document and submit the result."""
        suggestion = DocumentSuggestion.from_document(doc)
        suggestion.tags = remove_tags(suggestion.tags, workflow.trigger_tags)
        logger.debug("Removed trigger tags %s from document %d", workflow.trigger_tags, doc.id)

        for action in workflow.actions:
            logger.debug("Processing action: %s for document %d", action.kind, doc.id)
            try:
                action.apply(suggestion, self, cancel)
            except (OperationCancelled, DocumentProcessingError):
                raise
            except Exception as e:
                raise DocumentProcessingError(doc.id, f"{action.kind} failed: {e}") from e

        try:
            self.source.update_documents([suggestion])
        except Exception as e:
            raise DocumentProcessingError(doc.id, f"failed to update document: {e}") from e

        logger.info("Successfully processed document %d with workflow %s", doc.id, workflow.name)
        return suggestion

    def ocr_document(self, document_id: int, cancel: threading.Event | None = None) -> str:
        """OCR every page synchronously, the same way an OCR job does."""
        try:
            image_paths = self.source.get_page_images(document_id)
        except Exception as e:
            raise DocumentProcessingError(
                document_id, f"error downloading document images for doc {document_id}: {e}"
            ) from e
        try:
            texts = extract_page_texts(image_paths, self.extractor, cancel=cancel)
        except PageExtractionError as e:
            raise DocumentProcessingError(
                document_id, f"error performing OCR for doc {document_id}: {e}"
            ) from e
        return join_pages(texts)
