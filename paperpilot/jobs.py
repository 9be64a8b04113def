"""Asynchronous OCR jobs.

A job OCRs every page of one document. Jobs are created in a registry, queued
on a bounded queue and processed by a fixed pool of worker threads. The
registry keeps every job for the life of the process so callers can poll
progress and results.
"""

from __future__ import annotations

import dataclasses
import enum
import itertools
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator
from uuid import uuid4

from .exceptions import OperationCancelled, PageExtractionError
from .logger import get_logger
from .pipeline.ocr import TextExtractor, extract_page_texts, join_pages
from .sources.base import DocumentSource

logger = get_logger(__name__)

DEFAULT_QUEUE_CAPACITY = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        return 0 if self is JobStatus.PENDING else 1 if self is JobStatus.IN_PROGRESS else 2


@dataclass
class Job:
    """An OCR job for one document."""

    id: str
    document_id: int
    status: JobStatus = JobStatus.PENDING
    result: str = ""  # OCR text, or error message when failed
    pages_done: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "status": self.status.value,
            "result": self.result,
            "pages_done": self.pages_done,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class RWLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class JobRegistry:
    """Thread-safe store of job records.

    Records are only ever handed out as copies. Status moves forward only
    (pending -> in_progress -> completed/failed) and terminal jobs are frozen.
    """

    def __init__(self):
        self._lock = RWLock()
        self._jobs: dict[str, Job] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()

    def create(self, document_id: int) -> str:
        now = _utcnow()
        job = Job(id=str(uuid4()), document_id=document_id, created_at=now, updated_at=now)
        with self._lock.write():
            self._jobs[job.id] = job
            self._order[job.id] = next(self._seq)
        logger.info("Job added: %s (document %d)", job.id, document_id)
        return job.id

    def get(self, job_id: str) -> Job | None:
        with self._lock.read():
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job is not None else None

    def list(self) -> list[Job]:
        """All jobs, most recently created first."""
        with self._lock.read():
            jobs = [(job.created_at, self._order[job.id], dataclasses.replace(job))
                    for job in self._jobs.values()]
        jobs.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [job for _, _, job in jobs]

    def set_status(self, job_id: str, status: JobStatus, result: str | None = None) -> None:
        with self._lock.write():
            job = self._jobs.get(job_id)
            if job is None:
                return
            if job.status.is_terminal or status.rank < job.status.rank:
                logger.warning(
                    "Ignoring status change of job %s from %s to %s",
                    job_id, job.status.value, status.value,
                )
                return
            job.status = status
            if result is not None:
                job.result = result
            job.updated_at = _utcnow()
        logger.info("Job %s status updated: %s", job_id, status.value)

    def set_progress(self, job_id: str, pages_done: int) -> None:
        with self._lock.write():
            job = self._jobs.get(job_id)
            if job is None:
                return
            if job.status is not JobStatus.IN_PROGRESS or pages_done < job.pages_done:
                return
            job.pages_done = pages_done
            job.updated_at = _utcnow()
        logger.debug("Job %s pages done: %d", job_id, pages_done)


class JobProcessor:
    """Runs one OCR job: fetch page images, extract each page, store the text."""

    def __init__(self, registry: JobRegistry, source: DocumentSource, extractor: TextExtractor):
        self.registry = registry
        self.source = source
        self.extractor = extractor

    def process(self, job: Job, cancel: threading.Event | None = None) -> None:
        if cancel is not None and cancel.is_set():
            self._fail(job, "Job cancelled")
            return

        try:
            image_paths = self.source.get_page_images(job.document_id)
        except Exception as e:
            self._fail(job, f"Error downloading document images: {e}")
            return

        try:
            texts = extract_page_texts(
                image_paths,
                self.extractor,
                cancel=cancel,
                on_page=lambda done: self.registry.set_progress(job.id, done),
            )
        except OperationCancelled:
            self._fail(job, "Job cancelled")
            return
        except PageExtractionError as e:
            if e.stage == "read":
                self._fail(job, f"Error reading image file for page {e.page}: {e.cause}")
            else:
                self._fail(job, f"Error performing OCR on page {e.page}: {e.cause}")
            return

        self.registry.set_status(job.id, JobStatus.COMPLETED, join_pages(texts))
        logger.info("Job completed: %s (%d pages)", job.id, len(texts))

    def _fail(self, job: Job, message: str) -> None:
        logger.error("Job %s failed: %s", job.id, message)
        self.registry.set_status(job.id, JobStatus.FAILED, message)


class WorkerPool:
    """Fixed set of worker threads draining one bounded job queue.

    put() blocks while the queue is full; that is the only backpressure and
    no job is ever dropped.
    """

    _STOP = None

    def __init__(
        self,
        registry: JobRegistry,
        processor: JobProcessor,
        workers: int = 1,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.registry = registry
        self.processor = processor
        self.num_workers = workers
        self.queue: queue.Queue[str | None] = queue.Queue(maxsize=capacity)
        self.cancel = threading.Event()
        self._threads: list[threading.Thread] = []
        self._stopping = False

    def start(self) -> None:
        if self._threads:
            if self._stopping:
                raise RuntimeError(f"{len(self._threads)} OCR workers from the last run are still shutting down")
            return
        self._stopping = False
        self.cancel.clear()
        for i in range(self.num_workers):
            t = threading.Thread(target=self._worker_loop, args=(i,), name=f"ocr-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info("Started OCR worker pool with %d workers", self.num_workers)

    def put(self, job_id: str) -> None:
        self.queue.put(job_id)

    def drain(self) -> None:
        """Block until every queued job has been processed."""
        self.queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Cancel in-flight work and end the workers.

        Workers that outlive the timeout stay tracked; calling stop again
        waits for them without queueing more stop markers.
        """
        self.cancel.set()
        if not self._stopping:
            self._stopping = True
            for _ in self._threads:
                self.queue.put(self._STOP)
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = [t for t in self._threads if t.is_alive()]
        if self._threads:
            logger.warning("%d OCR workers still running after %ss", len(self._threads), timeout)
            return
        logger.info("OCR worker pool stopped")

    def _worker_loop(self, worker_id: int) -> None:
        logger.debug("Worker %d started", worker_id)
        while True:
            job_id = self.queue.get()
            try:
                if job_id is self._STOP:
                    return
                self.registry.set_status(job_id, JobStatus.IN_PROGRESS)
                job = self.registry.get(job_id)
                if job is None:
                    continue
                logger.info("Worker %d processing job: %s", worker_id, job_id)
                try:
                    self.processor.process(job, cancel=self.cancel)
                except Exception as e:
                    logger.exception("Unexpected error in job %s", job_id)
                    self.registry.set_status(job_id, JobStatus.FAILED, f"Unexpected error: {e}")
            finally:
                self.queue.task_done()


class OCRJobService:
    """Submit, inspect and list OCR jobs."""

    def __init__(
        self,
        source: DocumentSource,
        extractor: TextExtractor,
        workers: int = 1,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
    ):
        self.registry = JobRegistry()
        self.processor = JobProcessor(self.registry, source, extractor)
        self.pool = WorkerPool(self.registry, self.processor, workers=workers, capacity=queue_capacity)

    def start(self) -> None:
        self.pool.start()

    def stop(self) -> None:
        self.pool.stop()

    def submit_job(self, document_id: int) -> str:
        """Queue an OCR job; blocks only while the queue is full."""
        job_id = self.registry.create(document_id)
        self.pool.put(job_id)
        return job_id

    def get_job(self, job_id: str) -> Job | None:
        return self.registry.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.registry.list()

    def wait_idle(self) -> None:
        self.pool.drain()
