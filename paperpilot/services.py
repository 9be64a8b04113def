"""Application wiring.

build_services() constructs every collaborator once from a config object.
The server and the CLI both work from the resulting Services bundle.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import PaperpilotConfig
from .db import (
    HistoryRecorder,
    WorkflowStore,
    get_all_modifications,
    get_all_workflows,
    get_engine,
    get_modification,
    get_session_factory,
    init_db,
    replace_workflows,
    session_scope,
    set_modification_undone,
    workflow_from_dict,
)
from .exceptions import PaperpilotError
from .jobs import OCRJobService
from .logger import get_logger
from .models import ModificationHistory, Workflow
from .pipeline.ocr import LLMVisionExtractor, TesseractExtractor, TextExtractor
from .pipeline.suggest import LLMCompletion, LLMTagSuggester, LLMTitleSuggester
from .sources.paperless import PaperlessClient
from .workflows import WorkflowEngine

logger = get_logger(__name__)


class ModificationNotFound(PaperpilotError):
    pass


def build_extractor(config: PaperpilotConfig) -> TextExtractor:
    """Create the configured page OCR backend."""
    if config.ocr.backend == "tesseract":
        return TesseractExtractor(
            tesseract_cmd=config.ocr.tesseract_cmd,
            lang=config.ocr.tesseract_lang,
        )
    if config.ocr.backend == "llm":
        return LLMVisionExtractor(
            provider=config.ocr.vision_provider,
            model=config.ocr.vision_model,
            api_key=config.ai.api_key,
            base_url=config.ai.base_url,
        )
    raise ValueError(f"Unknown OCR backend: {config.ocr.backend}")


@dataclass
class Services:
    config: PaperpilotConfig
    engine: Engine
    session_factory: sessionmaker
    client: PaperlessClient
    ocr_jobs: OCRJobService
    workflows: WorkflowEngine

    # === Workflow definitions ===

    def list_workflows(self) -> list[Workflow]:
        with session_scope(self.session_factory) as session:
            return get_all_workflows(session)

    def replace_workflows(self, data: list[dict]) -> list[Workflow]:
        """Replace every stored workflow with the given definitions."""
        workflows = [workflow_from_dict(item) for item in data]
        with session_scope(self.session_factory) as session:
            replace_workflows(session, workflows)
        logger.info("Stored %d workflows", len(workflows))
        return self.list_workflows()

    # === Modification history ===

    def list_modifications(self) -> list[ModificationHistory]:
        with session_scope(self.session_factory) as session:
            return get_all_modifications(session)

    def undo_modification(self, record_id: int) -> ModificationHistory:
        """Write the previous value back to Paperless and mark the record undone."""
        with session_scope(self.session_factory) as session:
            record = get_modification(session, record_id)
            if record is None:
                raise ModificationNotFound(f"Modification {record_id} not found")
            if record.undone:
                return record
            self.client.restore_field(
                record.document_id, record.mod_field, record.previous_value or ""
            )
            set_modification_undone(session, record)
        logger.info(
            "Undid modification %d (%s on document %d)",
            record_id, record.mod_field, record.document_id,
        )
        return record

    # === Lifecycle ===

    def start(self) -> None:
        self.ocr_jobs.start()

    def stop(self) -> None:
        self.ocr_jobs.stop()


def build_services(config: PaperpilotConfig, db_url: str | None = None) -> Services:
    """Construct the database, Paperless client, backends and engines."""
    engine = get_engine(config.db_path, url=db_url)
    init_db(engine)
    session_factory = get_session_factory(engine)

    client = PaperlessClient(
        base_url=config.paperless.base_url,
        api_token=config.paperless.api_token or "",
        image_cache_dir=config.image_cache_dir,
        page_size=config.paperless.page_size,
        image_dpi=config.paperless.image_dpi,
        timeout=config.paperless.timeout,
        history=HistoryRecorder(session_factory),
    )

    extractor = build_extractor(config)
    llm = LLMCompletion(
        provider=config.ai.provider,
        model=config.ai.model,
        api_key=config.ai.api_key,
        base_url=config.ai.base_url,
        temperature=config.ai.temperature,
    )

    ocr_jobs = OCRJobService(
        client,
        extractor,
        workers=config.jobs.workers,
        queue_capacity=config.jobs.queue_capacity,
    )
    workflows = WorkflowEngine(
        store=WorkflowStore(session_factory),
        source=client,
        extractor=extractor,
        title_suggester=LLMTitleSuggester(llm),
        tag_suggester=LLMTagSuggester(llm, vocabulary=client.get_all_tag_names),
    )

    return Services(
        config=config,
        engine=engine,
        session_factory=session_factory,
        client=client,
        ocr_jobs=ocr_jobs,
        workflows=workflows,
    )
