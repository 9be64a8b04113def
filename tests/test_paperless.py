"""Tests for the Paperless-ngx client."""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from PIL import Image

from paperpilot.exceptions import PaperlessError
from paperpilot.sources.base import Document, DocumentSuggestion
from paperpilot.sources.paperless import PaperlessClient

BASE = "http://paperless.local"

TAGS = {"results": [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}, {"id": 3, "name": "C"}], "next": None}


def response(status: int = 200, payload=None, content: bytes = b"") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.content = content
    resp.text = json.dumps(payload) if payload is not None else ""
    return resp


@pytest.fixture
def session() -> MagicMock:
    s = MagicMock(spec=requests.Session)
    s.headers = {}
    return s


@pytest.fixture
def history() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(session, history, tmp_path) -> PaperlessClient:
    return PaperlessClient(BASE, "secret", tmp_path / "images", page_size=2, history=history, session=session)


def test_token_header(session, client) -> None:
    assert session.headers["Authorization"] == "Token secret"


class TestTags:
    def test_follows_pagination(self, session, client) -> None:
        session.request.side_effect = [
            response(payload={"results": [{"id": 1, "name": "A"}], "next": f"{BASE}/api/tags/?page=2"}),
            response(payload={"results": [{"id": 2, "name": "B"}], "next": None}),
        ]

        assert client.get_all_tags() == {"A": 1, "B": 2}

        first, second = session.request.call_args_list
        assert first.args == ("GET", f"{BASE}/api/tags/")
        assert first.kwargs["params"] == [("page_size", 2)]
        assert second.args == ("GET", f"{BASE}/api/tags/?page=2")
        assert second.kwargs["params"] is None

    def test_names_sorted(self, session, client) -> None:
        session.request.return_value = response(
            payload={"results": [{"id": 2, "name": "zeta"}, {"id": 1, "name": "alpha"}], "next": None}
        )
        assert client.get_all_tag_names() == ["alpha", "zeta"]


class TestDocuments:
    def test_query_by_tag_names(self, session, client) -> None:
        session.request.side_effect = [
            response(payload={"results": [
                {"id": 10, "title": "scan", "content": "body", "tags": [1, 2, 99]},
            ], "next": None}),
            response(payload=TAGS),
        ]

        docs = client.get_documents_by_tag_names(["A", "B"])

        assert docs == [Document(id=10, title="scan", content="body", tags=["A", "B"])]
        params = session.request.call_args_list[0].kwargs["params"]
        assert ("tags__name__iexact", "A") in params
        assert ("tags__name__iexact", "B") in params

    def test_no_matches_skips_tag_lookup(self, session, client) -> None:
        session.request.return_value = response(payload={"results": [], "next": None})
        assert client.get_documents_by_tag_names(["A"]) == []
        assert session.request.call_count == 1

    def test_http_error(self, session, client) -> None:
        session.request.return_value = response(status=500, payload={"detail": "boom"})
        with pytest.raises(PaperlessError, match="500"):
            client.get_documents_by_tag_names(["A"])

    def test_connection_error(self, session, client) -> None:
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PaperlessError, match="refused"):
            client.get_all_tags()


class TestUpdate:
    def _suggestion(self, **changes) -> DocumentSuggestion:
        doc = Document(id=5, title="old", content="text", tags=["A"])
        suggestion = DocumentSuggestion.from_document(doc)
        for key, value in changes.items():
            setattr(suggestion, key, value)
        return suggestion

    def test_patches_changed_fields_only(self, session, client, history) -> None:
        session.request.side_effect = [response(payload=TAGS), response(payload={})]

        client.update_documents([self._suggestion(title="new", tags=["C", "missing", "C"])])

        method, url = session.request.call_args_list[1].args
        assert (method, url) == ("PATCH", f"{BASE}/api/documents/5/")
        assert session.request.call_args_list[1].kwargs["json"] == {"title": "new", "tags": [3]}
        history.record.assert_any_call(5, "title", "old", "new")
        history.record.assert_any_call(5, "tags", '["A"]', '["C", "missing", "C"]')

    def test_empty_title_is_not_sent(self, session, client) -> None:
        session.request.side_effect = [response(payload=TAGS), response(payload={})]

        client.update_documents([self._suggestion(title="", content="text\n\nOCR Content:\nmore")])

        assert session.request.call_args_list[1].kwargs["json"] == {
            "content": "text\n\nOCR Content:\nmore",
        }

    def test_unchanged_document_is_not_patched(self, session, client, history) -> None:
        session.request.return_value = response(payload=TAGS)

        client.update_documents([self._suggestion()])

        assert session.request.call_count == 1
        history.record.assert_not_called()

    def test_failure_raises(self, session, client, history) -> None:
        session.request.side_effect = [response(payload=TAGS), response(status=400, payload={"title": ["bad"]})]
        with pytest.raises(PaperlessError):
            client.update_documents([self._suggestion(title="new")])
        history.record.assert_not_called()


class TestRestore:
    def test_restore_tags_by_name(self, session, client) -> None:
        session.request.side_effect = [response(payload=TAGS), response(payload={})]
        client.restore_field(5, "tags", '["B", "A"]')
        assert session.request.call_args_list[1].kwargs["json"] == {"tags": [2, 1]}

    def test_restore_title(self, session, client) -> None:
        session.request.return_value = response(payload={})
        client.restore_field(5, "title", "old")
        assert session.request.call_args.kwargs["json"] == {"title": "old"}

    def test_unknown_field(self, client) -> None:
        with pytest.raises(PaperlessError):
            client.restore_field(5, "owner", "1")


class TestPageImages:
    def test_rasterizes_and_caches(self, session, client, tmp_path) -> None:
        session.request.return_value = response(content=b"%PDF-1.4 fake")
        pages = [Image.new("RGB", (20, 20), "white"), Image.new("RGB", (20, 20), "black")]

        with patch("pdf2image.convert_from_bytes", return_value=pages) as convert:
            paths = client.get_page_images(8)
            again = client.get_page_images(8)

        convert.assert_called_once_with(b"%PDF-1.4 fake", dpi=300)
        assert [p.name for p in paths] == ["page000.jpg", "page001.jpg"]
        assert all(p.exists() for p in paths)
        assert again == paths
        assert session.request.call_count == 1
        assert session.request.call_args.args == ("GET", f"{BASE}/api/documents/8/download/")

    def test_concurrent_callers_see_complete_cache(self, session, client, tmp_path) -> None:
        session.request.return_value = response(content=b"%PDF-1.4 fake")
        doc_dir = tmp_path / "images" / "document-5"
        seen_during_render: list[bool] = []

        def slow_render(data, dpi):
            seen_during_render.append(doc_dir.exists())
            time.sleep(0.2)
            return [Image.new("RGB", (10, 10), "white") for _ in range(3)]

        results: list[list] = []
        start = threading.Barrier(2)

        def fetch():
            start.wait()
            results.append(client.get_page_images(5))

        with patch("pdf2image.convert_from_bytes", side_effect=slow_render) as convert:
            threads = [threading.Thread(target=fetch) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=5)

        assert convert.call_count == 1
        assert seen_during_render == [False]
        assert len(results) == 2
        for paths in results:
            assert [p.name for p in paths] == ["page000.jpg", "page001.jpg", "page002.jpg"]
            assert all(p.exists() for p in paths)

    def test_failed_render_leaves_no_cache_entry(self, session, client, tmp_path) -> None:
        session.request.return_value = response(content=b"%PDF-1.4 fake")
        broken = MagicMock()
        broken.convert.side_effect = OSError("disk full")
        good = [Image.new("RGB", (10, 10), "white"), broken]

        with patch("pdf2image.convert_from_bytes", return_value=good):
            with pytest.raises(OSError):
                client.get_page_images(6)

        assert list((tmp_path / "images").iterdir()) == []

        pages = [Image.new("RGB", (10, 10), "white")] * 2
        with patch("pdf2image.convert_from_bytes", return_value=pages):
            paths = client.get_page_images(6)
        assert [p.name for p in paths] == ["page000.jpg", "page001.jpg"]
