"""Paperless-ngx REST API client."""

from __future__ import annotations

import json
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterator, Protocol

import requests

from ..exceptions import PaperlessError
from ..logger import get_logger
from .base import Document, DocumentSource, DocumentSuggestion

logger = get_logger(__name__)


class ModificationRecorder(Protocol):
    def record(self, document_id: int, field: str, previous: str, new: str) -> None: ...


class PaperlessClient(DocumentSource):
    """Talks to a Paperless-ngx instance.

    Tags are names on the paperless side of this client and ids on the wire;
    the client resolves between the two on every call that needs it.
    Page images are rasterized from the original PDF and cached on disk.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None,
        image_cache_dir: Path | str,
        page_size: int = 100,
        image_dpi: int = 300,
        timeout: float = 30.0,
        history: ModificationRecorder | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.image_cache_dir = Path(image_cache_dir)
        self.page_size = page_size
        self.image_dpi = image_dpi
        self.timeout = timeout
        self.history = history
        self._cache_locks: dict[int, threading.Lock] = {}
        self._cache_locks_guard = threading.Lock()
        self.session = session or requests.Session()
        if api_token:
            self.session.headers["Authorization"] = f"Token {api_token}"
        self.session.headers["Accept"] = "application/json"

    # === HTTP ===

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PaperlessError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise PaperlessError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    def _paginate(self, path: str, params: list[tuple[str, Any]] | None = None) -> Iterator[dict]:
        url: str | None = path
        query = list(params or []) + [("page_size", self.page_size)]
        while url:
            payload = self._request("GET", url, params=query).json()
            yield from payload.get("results", [])
            url = payload.get("next")
            query = None  # "next" already carries the query string

    # === Tags ===

    def get_all_tags(self) -> dict[str, int]:
        """Tag name -> id for every tag."""
        return {tag["name"]: tag["id"] for tag in self._paginate("api/tags/")}

    def get_all_tag_names(self) -> list[str]:
        return sorted(self.get_all_tags())

    # === Documents ===

    def get_documents_by_tag_names(self, names: list[str]) -> list[Document]:
        params = [("tags__name__iexact", name) for name in names]
        raw_documents = list(self._paginate("api/documents/", params))
        if not raw_documents:
            return []

        id_to_name = {tag_id: name for name, tag_id in self.get_all_tags().items()}
        documents = []
        for raw in raw_documents:
            documents.append(
                Document(
                    id=raw["id"],
                    title=raw.get("title") or "",
                    content=raw.get("content") or "",
                    tags=[id_to_name[t] for t in raw.get("tags", []) if t in id_to_name],
                )
            )
        return documents

    def download_document(self, document_id: int) -> bytes:
        return self._request("GET", f"api/documents/{document_id}/download/").content

    def _cache_lock(self, document_id: int) -> threading.Lock:
        with self._cache_locks_guard:
            return self._cache_locks.setdefault(document_id, threading.Lock())

    def get_page_images(self, document_id: int) -> list[Path]:
        """Rasterize a document to one JPEG per page, reusing the cache.

        Pages are written to a scratch directory and renamed into place, so a
        concurrent reader sees either no cache entry or a complete one.
        """
        doc_dir = self.image_cache_dir / f"document-{document_id}"
        with self._cache_lock(document_id):
            cached = sorted(doc_dir.glob("page*.jpg")) if doc_dir.is_dir() else []
            if cached:
                return cached

            from pdf2image import convert_from_bytes

            pdf_bytes = self.download_document(document_id)
            images = convert_from_bytes(pdf_bytes, dpi=self.image_dpi)

            self.image_cache_dir.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix=f".document-{document_id}-", dir=self.image_cache_dir))
            try:
                for i, image in enumerate(images):
                    image.convert("RGB").save(scratch / f"page{i:03d}.jpg", "JPEG")
                if doc_dir.exists():
                    # left behind empty by an interrupted run
                    shutil.rmtree(doc_dir)
                scratch.rename(doc_dir)
            except BaseException:
                shutil.rmtree(scratch, ignore_errors=True)
                raise

            paths = sorted(doc_dir.glob("page*.jpg"))
            logger.debug("Rasterized document %d into %d page images", document_id, len(paths))
            return paths

    def update_documents(self, suggestions: list[DocumentSuggestion]) -> None:
        if not suggestions:
            return
        tag_ids = self.get_all_tags()

        for suggestion in suggestions:
            original = suggestion.original
            fields: dict[str, Any] = {}
            changes: list[tuple[str, str, str]] = []

            if suggestion.title and suggestion.title != original.title:
                fields["title"] = suggestion.title
                changes.append(("title", original.title, suggestion.title))

            if suggestion.tags != original.tags:
                ids: list[int] = []
                for name in suggestion.tags:
                    tag_id = tag_ids.get(name)
                    if tag_id is None:
                        logger.warning("Tag '%s' does not exist in paperless-ngx, skipping", name)
                        continue
                    if tag_id not in ids:
                        ids.append(tag_id)
                fields["tags"] = ids
                changes.append(("tags", json.dumps(original.tags), json.dumps(suggestion.tags)))

            if suggestion.content and suggestion.content != original.content:
                fields["content"] = suggestion.content
                changes.append(("content", original.content, suggestion.content))

            if not fields:
                logger.debug("No changes for document %d", suggestion.id)
                continue

            self._request("PATCH", f"api/documents/{suggestion.id}/", json=fields)
            logger.info("Updated document %d (%s)", suggestion.id, ", ".join(fields))

            if self.history is not None:
                for field, previous, new in changes:
                    self.history.record(suggestion.id, field, previous, new)

    def restore_field(self, document_id: int, field: str, value: str) -> None:
        """Write a previous value back, used to undo a modification."""
        if field == "tags":
            tag_ids = self.get_all_tags()
            names = json.loads(value) if value else []
            payload: Any = [tag_ids[n] for n in names if n in tag_ids]
        elif field in ("title", "content"):
            payload = value
        else:
            raise PaperlessError(f"Cannot restore unknown field: {field}")
        self._request("PATCH", f"api/documents/{document_id}/", json={field: payload})
