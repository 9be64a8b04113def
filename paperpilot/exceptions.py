"""Exception types shared across paperpilot.

Workflow runs distinguish two severities: structural errors abort the whole
run, document errors only skip the document being processed.
"""

from __future__ import annotations


class PaperpilotError(Exception):
    """Base class for paperpilot errors."""


class WorkflowStructuralError(PaperpilotError):
    """A workflow run cannot continue (store unavailable, malformed payload)."""


class DocumentProcessingError(PaperpilotError):
    """A single document could not be processed by a workflow."""

    def __init__(self, document_id: int, message: str):
        super().__init__(message)
        self.document_id = document_id


class PageExtractionError(PaperpilotError):
    """Text extraction failed for one page of a document."""

    def __init__(self, page: int, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed on page {page}: {cause}")
        self.page = page
        self.stage = stage  # "read" or "ocr"
        self.cause = cause


class OperationCancelled(PaperpilotError):
    """A cancellation signal was observed."""


class PaperlessError(PaperpilotError):
    """The Paperless-ngx API returned an error or could not be reached."""
