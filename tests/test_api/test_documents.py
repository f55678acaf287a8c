"""API tests for document submission, status polling and library endpoints."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from folio.api.documents import router
from folio.models.document import Document, Page
from folio.models.parsing import ParseOptions, ParseSource, Requester
from folio.pipeline.documents import DocumentBusyError, DocumentListing, PageNotFoundError
from folio.pipeline.parsing import (
    DocumentAccessDeniedError,
    DocumentNotFoundError,
    DocumentStatusView,
    ParseRequestError,
)

USER_HEADERS = {"X-User-Id": "user-1"}


class FakeOrchestrator:
    """Records submissions and serves scripted status views."""

    def __init__(self, *, reject_with: str | None = None) -> None:
        self.reject_with = reject_with
        self.submissions: list[tuple[ParseSource, str | None, ParseOptions, Requester]] = []
        self.uploaded_bytes: bytes | None = None
        self.views: dict[str, DocumentStatusView] = {}
        self.denied: set[str] = set()

    @property
    def available_parsers(self) -> list[str]:
        return ["llama", "mistral"]

    async def submit_for_parsing(
        self,
        source: ParseSource,
        parser_choice: str | None,
        options: ParseOptions,
        requester: Requester,
    ) -> str:
        if self.reject_with is not None:
            raise ParseRequestError(self.reject_with)
        if source.file_path:
            self.uploaded_bytes = Path(source.file_path).read_bytes()
        self.submissions.append((source, parser_choice, options, requester))
        return f"doc-{len(self.submissions)}"

    async def get_status(self, document_id: str, requester: Requester) -> DocumentStatusView:
        if document_id in self.denied:
            raise DocumentAccessDeniedError(document_id)
        view = self.views.get(document_id)
        if view is None:
            raise DocumentNotFoundError(document_id)
        return view


class FakeLibrary:
    """In-memory library applying the same ownership rules as the real one."""

    def __init__(self, documents: list[Document] | None = None, *, busy: set[str] | None = None) -> None:
        self.items = {document.document_id: document for document in documents or []}
        self.busy = busy or set()
        self.list_calls: list[dict] = []

    def _load(self, document_id: str, requester: Requester) -> Document:
        document = self.items.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not document.is_owned_by(requester.user_id) and not requester.is_elevated:
            raise DocumentAccessDeniedError(document_id)
        return document

    async def list_documents(
        self, requester: Requester, *, page: int, limit: int, search: str | None
    ) -> DocumentListing:
        self.list_calls.append({"user_id": requester.user_id, "page": page, "limit": limit, "search": search})
        own = [document for document in self.items.values() if document.is_owned_by(requester.user_id)]
        return DocumentListing(documents=own, total_documents=len(own), total_pages=1, current_page=page)

    async def get_document(self, document_id: str, requester: Requester) -> Document:
        return self._load(document_id, requester)

    async def get_page(self, document_id: str, page_number: int, requester: Requester) -> tuple[Document, Page]:
        document = self._load(document_id, requester)
        for page in document.pages_data:
            if page.page_number == page_number:
                return document, page
        raise PageNotFoundError(f"Page {page_number} not found")

    async def verify_document(self, document_id: str, requester: Requester) -> Document:
        document = self._load(document_id, requester)
        document.is_verified = True
        return document

    async def delete_document(self, document_id: str, requester: Requester) -> int:
        self._load(document_id, requester)
        if document_id in self.busy:
            raise DocumentBusyError(document_id)
        del self.items[document_id]
        return 3


def _build_app(
    orchestrator: FakeOrchestrator | None,
    upload_dir: Path | None = None,
    library: FakeLibrary | None = None,
) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.state.parsing_orchestrator = orchestrator
    app.state.document_library = library
    if upload_dir is not None:
        app.state.upload_dir = str(upload_dir)
    return app


def test_upload_stores_temp_file_and_returns_processing(tmp_path: Path) -> None:
    orchestrator = FakeOrchestrator()
    client = TestClient(_build_app(orchestrator, tmp_path))

    response = client.post(
        "/api/v1/documents/upload",
        headers={"X-User-Id": "user-1", "X-User-Role": "Admin"},
        files={"document": ("Book.PDF", b"%PDF-1.4 fake", "application/pdf")},
        data={
            "parser": "llama",
            "annotate": "true",
            "table_format": "null",
            "book_name": "Meditations",
        },
    )

    assert response.status_code == 202
    assert response.json() == {
        "document_id": "doc-1",
        "status": "processing",
        "message": "Document accepted for parsing",
    }
    source, parser, options, requester = orchestrator.submissions[0]
    assert parser == "llama"
    assert source.file_name == "Book.PDF"
    assert source.file_size == len(b"%PDF-1.4 fake")
    assert source.content_type == "application/pdf"
    assert Path(source.file_path or "").parent == tmp_path
    assert Path(source.file_path or "").suffix == ".pdf"
    assert orchestrator.uploaded_bytes == b"%PDF-1.4 fake"
    assert options.annotate is True
    assert options.table_format is None
    assert options.book_name == "Meditations"
    assert requester == Requester(user_id="user-1", role="admin")


def test_url_submission_passes_options() -> None:
    orchestrator = FakeOrchestrator()
    client = TestClient(_build_app(orchestrator))

    response = client.post(
        "/api/v1/documents/url",
        headers=USER_HEADERS,
        json={"document_url": " https://example.test/book.pdf ", "parser": "mistral", "table_format": "Markdown"},
    )

    assert response.status_code == 202
    source, parser, options, requester = orchestrator.submissions[0]
    assert source.url == "https://example.test/book.pdf"
    assert source.file_path is None
    assert parser == "mistral"
    assert options.annotate is None
    assert options.table_format == "markdown"
    assert requester.role == "user"


def test_rejected_submission_maps_to_bad_request() -> None:
    orchestrator = FakeOrchestrator(reject_with="Unsupported parser 'tesseract'. Available parsers: llama, mistral")
    client = TestClient(_build_app(orchestrator))

    response = client.post(
        "/api/v1/documents/url",
        headers=USER_HEADERS,
        json={"document_url": "https://example.test/book.pdf", "parser": "tesseract"},
    )

    assert response.status_code == 400
    assert "Unsupported parser" in response.json()["detail"]


def test_missing_identity_is_unauthenticated() -> None:
    client = TestClient(_build_app(FakeOrchestrator()))

    response = client.post("/api/v1/documents/url", json={"document_url": "https://example.test/book.pdf"})

    assert response.status_code == 401


def test_missing_orchestrator_returns_service_unavailable() -> None:
    client = TestClient(_build_app(None))

    response = client.get("/api/v1/documents/doc-1/status", headers=USER_HEADERS)

    assert response.status_code == 503


def test_status_views_and_errors() -> None:
    orchestrator = FakeOrchestrator()
    orchestrator.views["doc-1"] = DocumentStatusView(document_id="doc-1", status="processing")
    orchestrator.views["doc-2"] = DocumentStatusView(document_id="doc-2", status="failed", error="timed out")
    orchestrator.denied.add("doc-3")
    client = TestClient(_build_app(orchestrator))

    processing = client.get("/api/v1/documents/doc-1/status", headers=USER_HEADERS)
    failed = client.get("/api/v1/documents/doc-2/status", headers=USER_HEADERS)
    denied = client.get("/api/v1/documents/doc-3/status", headers=USER_HEADERS)
    missing = client.get("/api/v1/documents/doc-9/status", headers=USER_HEADERS)

    assert processing.status_code == 200
    assert processing.json() == {"document_id": "doc-1", "status": "processing", "result": None, "error": None}
    assert failed.json()["error"] == "timed out"
    assert denied.status_code == 403
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Document not found"


def _library_with_document(make_parsed_document) -> tuple[FakeLibrary, Document]:
    document = make_parsed_document(2, book_name="Meditations")
    return FakeLibrary([document]), document


def test_list_documents_returns_summaries(make_parsed_document) -> None:
    library, document = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))

    response = client.get("/api/v1/documents", headers=USER_HEADERS, params={"page": 2, "limit": 5, "search": "med"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_documents"] == 1
    assert payload["current_page"] == 2
    summary = payload["documents"][0]
    assert summary["document_id"] == document.document_id
    assert summary["parsing_status"] == "completed"
    assert summary["metadata"]["book_name"] == "Meditations"
    assert "pages_data" not in summary
    assert library.list_calls == [{"user_id": "user-1", "page": 2, "limit": 5, "search": "med"}]


def test_list_documents_validates_pagination(make_parsed_document) -> None:
    library, _ = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))

    assert client.get("/api/v1/documents", headers=USER_HEADERS, params={"page": 0}).status_code == 422
    assert client.get("/api/v1/documents", headers=USER_HEADERS, params={"limit": 101}).status_code == 422
    assert library.list_calls == []


def test_get_document_and_pages(make_parsed_document) -> None:
    library, document = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))

    full = client.get(f"/api/v1/documents/{document.document_id}", headers=USER_HEADERS)
    pages = client.get(f"/api/v1/documents/{document.document_id}/pages", headers=USER_HEADERS)
    single = client.get(f"/api/v1/documents/{document.document_id}/pages/2", headers=USER_HEADERS)

    assert full.status_code == 200
    assert len(full.json()["pages_data"]) == 2
    assert pages.status_code == 200
    assert pages.json()["total_pages"] == 2
    assert [page["page_number"] for page in pages.json()["pages"]] == [1, 2]
    assert single.status_code == 200
    assert single.json()["page"]["text"] == "Page 2 body text"


def test_document_reads_map_errors(make_parsed_document) -> None:
    library, document = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))
    base = f"/api/v1/documents/{document.document_id}"

    assert client.get(base, headers={"X-User-Id": "user-2"}).status_code == 403
    assert client.get("/api/v1/documents/missing", headers=USER_HEADERS).status_code == 404
    missing_page = client.get(f"{base}/pages/7", headers=USER_HEADERS)
    assert missing_page.status_code == 404
    assert missing_page.json()["detail"] == "Page 7 not found"
    assert client.get(f"{base}/pages/0", headers=USER_HEADERS).status_code == 422
    assert client.get(base).status_code == 401


def test_verify_document(make_parsed_document) -> None:
    library, document = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))

    denied = client.post(f"/api/v1/documents/{document.document_id}/verify", headers={"X-User-Id": "user-2"})
    response = client.post(f"/api/v1/documents/{document.document_id}/verify", headers=USER_HEADERS)

    assert denied.status_code == 403
    assert response.status_code == 200
    assert response.json()["is_verified"] is True


def test_delete_document_reports_removed_vectors(make_parsed_document) -> None:
    library, document = _library_with_document(make_parsed_document)
    client = TestClient(_build_app(None, library=library))

    response = client.delete(f"/api/v1/documents/{document.document_id}", headers=USER_HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "document_id": document.document_id,
        "deleted_vectors": 3,
        "message": "Document deleted successfully",
    }
    assert document.document_id not in library.items


def test_delete_document_conflicts_while_embedding(make_parsed_document) -> None:
    document = make_parsed_document(1)
    library = FakeLibrary([document], busy={document.document_id})
    client = TestClient(_build_app(None, library=library))

    response = client.delete(
        f"/api/v1/documents/{document.document_id}",
        headers={"X-User-Id": "admin-1", "X-User-Role": "admin"},
    )

    assert response.status_code == 409
    assert document.document_id in library.items


def test_library_endpoints_unavailable_without_library() -> None:
    client = TestClient(_build_app(FakeOrchestrator()))

    assert client.get("/api/v1/documents", headers=USER_HEADERS).status_code == 503
