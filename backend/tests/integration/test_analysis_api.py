"""
Integration Tests — Document Analysis API
═════════════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - Multipart form parsing and option aliases (useAI, maxTokens, ...)
  - Dependency injection chain (persistence, gateway, OCR overridden)
  - Real extractors on generated PDF / PPTX / TXT uploads
  - Structured error bodies and status codes

What is mocked vs real
──────────────────────
  ✅ Real: routing, form parsing, coordinator, worker, extractors,
           persistence layer, exception handlers
  🔲 Mock: PostgreSQL   (InMemoryPersistenceClient)
  🔲 Mock: AI provider  (scripted chat models)
  🔲 Mock: Tesseract    (OCR disabled)

How to run
──────────
  pytest -m integration backend/tests/integration/test_analysis_api.py -v
"""

from __future__ import annotations

import uuid

import pytest

from docanalyzer.core.config import settings
from docanalyzer.services.coordinator import BATCH_JOB_FILES, BATCH_JOBS
from docanalyzer.services.persistence import ANALYSES, DOCUMENTS


def _txt(name: str, data: bytes) -> tuple[str, tuple[str, bytes, str]]:
    return ("documents", (name, data, "text/plain"))


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/analyze
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestAnalyzeEndpoint:

    async def test_txt_without_ai(self, async_client, memory_client, sample_txt_bytes):
        resp = await async_client.post(
            "/api/analyze",
            files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
            data={"useAI": "false"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["filename"] == "notes.txt"
        assert data["fileType"] == ".txt"
        assert data["database_saved"] is True
        assert data["analysis"]["aiAnalysis"] is None
        assert data["analysis"]["statistics"]["totalWords"] > 0
        assert data["options"]["useAI"] is False
        assert data["document_id"] == memory_client.rows(DOCUMENTS)[0]["id"]
        assert body["warning"] is None
        assert resp.headers["X-Request-ID"]

    async def test_pdf_with_ai(self, async_client, memory_client, sample_pdf_bytes):
        resp = await async_client.post(
            "/api/analyze",
            files={"document": ("report.pdf", sample_pdf_bytes, "application/pdf")},
            data={"useAI": "true", "strategy": "accuracy", "documentType": "business", "maxTokens": "900"},
        )

        assert resp.status_code == 200
        analysis = resp.json()["data"]["analysis"]
        ai = analysis["aiAnalysis"]
        for facet in ("sentiment", "classification", "summary", "insights", "recommendations", "quality"):
            assert ai[facet]["fallback"] is False
        assert ai["model"] == "mixtral-8x7b-32768"
        assert analysis["modelSelection"]["strategy"] == "accuracy"
        assert memory_client.rows(ANALYSES)[0]["analysis_type"] == "ai_enhanced"

    async def test_blank_pdf_without_ai_is_basic(self, async_client, memory_client, blank_pdf_bytes):
        resp = await async_client.post(
            "/api/analyze", files={"document": ("blank.pdf", blank_pdf_bytes, "application/pdf")},
        )
        assert resp.status_code == 200
        assert memory_client.rows(ANALYSES)[0]["analysis_type"] == "basic"

    async def test_pptx(self, async_client, sample_pptx_bytes):
        resp = await async_client.post(
            "/api/analyze",
            files={"document": ("deck.pptx", sample_pptx_bytes, "application/octet-stream")},
        )
        assert resp.status_code == 200
        analysis = resp.json()["data"]["analysis"]
        assert analysis["statistics"]["totalSlides"] == 3
        assert analysis["presentation"]["slideTitles"][0] == "Product Roadmap"

    async def test_database_down_still_returns_analysis(self, async_client, memory_client, sample_txt_bytes):
        memory_client.down = True

        resp = await async_client.post(
            "/api/analyze", files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["database_saved"] is False
        assert body["data"]["document_id"] is None
        assert body["data"]["analysis"]["statistics"]["totalWords"] > 0
        assert "connection refused" in body["database_error"]
        assert body["warning"]

    async def test_user_header_scopes_rows(self, async_client, memory_client, sample_txt_bytes):
        await async_client.post(
            "/api/analyze",
            files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
            headers={"X-User-ID": "42"},
        )
        assert set(memory_client.user_ids) == {42}
        assert memory_client.rows(DOCUMENTS)[0]["user_int_id"] == 42


@pytest.mark.integration
class TestAnalyzeValidation:

    async def test_no_file(self, async_client):
        resp = await async_client.post("/api/analyze", data={"useAI": "false"})
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "NO_FILE_UPLOADED"

    async def test_unsupported_type(self, async_client, memory_client):
        resp = await async_client.post(
            "/api/analyze", files={"document": ("letter.docx", b"PK\x03\x04", "application/octet-stream")},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error_code"] == "UNSUPPORTED_FILE_TYPE"
        assert body["details"][0]["field"] == "letter.docx"
        assert memory_client.tables == {}

    @pytest.mark.parametrize("field, value", [
        ("maxTokens", "lots"), ("maxTokens", "0"), ("ocrConfidence", "150"), ("temperature", "hot"),
    ])
    async def test_bad_options(self, async_client, sample_txt_bytes, field, value):
        resp = await async_client.post(
            "/api/analyze",
            files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
            data={field: value},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_OPTIONS"

    async def test_file_too_large(self, async_client, monkeypatch, sample_txt_bytes):
        monkeypatch.setattr(settings, "max_upload_bytes", 10)
        resp = await async_client.post(
            "/api/analyze", files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"

    async def test_corrupt_pdf(self, async_client, memory_client, corrupt_pdf_bytes):
        resp = await async_client.post(
            "/api/analyze", files={"document": ("broken.pdf", corrupt_pdf_bytes, "application/pdf")},
        )
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "EXTRACTION_ERROR"
        assert memory_client.rows(DOCUMENTS) == []

    async def test_corrupt_pptx(self, async_client, corrupt_pptx_bytes):
        resp = await async_client.post(
            "/api/analyze", files={"document": ("deck.pptx", corrupt_pptx_bytes, "application/octet-stream")},
        )
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "EXTRACTION_ERROR"

    async def test_invalid_user_header(self, async_client, sample_txt_bytes):
        resp = await async_client.post(
            "/api/analyze",
            files={"document": ("notes.txt", sample_txt_bytes, "text/plain")},
            headers={"X-User-ID": "abc"},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_USER_ID"


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/batch-analyze
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestBatchAnalyzeEndpoint:

    async def test_mixed_batch(self, async_client, memory_client, sample_txt_bytes, sample_pdf_bytes, sample_pptx_bytes):
        resp = await async_client.post(
            "/api/batch-analyze",
            files=[
                ("documents", ("a.pdf", sample_pdf_bytes, "application/pdf")),
                ("documents", ("b.pptx", sample_pptx_bytes, "application/octet-stream")),
                _txt("c.txt", sample_txt_bytes),
            ],
            data={"jobName": "Quarterly pack", "useAI": "true"},
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["totalFiles"] == 3
        assert data["successful"] == 3
        assert data["failed"] == 0
        assert data["status"] == "completed"
        assert data["database_saved"] is True
        assert [r["filename"] for r in data["results"]] == ["a.pdf", "b.pptx", "c.txt"]
        assert all(r["analysis"]["aiAnalysis"] is not None for r in data["results"])
        assert data["batch_job_id"] == memory_client.rows(BATCH_JOBS)[0]["id"]
        assert memory_client.rows(BATCH_JOBS)[0]["job_name"] == "Quarterly pack"

    async def test_partial_failure(self, async_client, memory_client, sample_txt_bytes, corrupt_pdf_bytes):
        resp = await async_client.post(
            "/api/batch-analyze",
            files=[
                _txt("a.txt", sample_txt_bytes),
                ("documents", ("bad.pdf", corrupt_pdf_bytes, "application/pdf")),
                _txt("c.txt", sample_txt_bytes),
            ],
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "completed"
        assert data["failed"] == 1
        bad = data["results"][1]
        assert bad["success"] is False
        assert bad["error"]
        assert bad["analysis"] is None
        assert len(memory_client.rows(BATCH_JOB_FILES)) == 3

    async def test_all_failed(self, async_client, corrupt_pdf_bytes):
        resp = await async_client.post(
            "/api/batch-analyze",
            files=[("documents", ("bad.pdf", corrupt_pdf_bytes, "application/pdf"))],
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "failed"

    async def test_no_files(self, async_client):
        resp = await async_client.post("/api/batch-analyze", data={"useAI": "false"})
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "NO_FILES_UPLOADED"

    async def test_too_many_files(self, async_client, memory_client, sample_txt_bytes):
        files = [_txt(f"f{n}.txt", sample_txt_bytes) for n in range(11)]
        resp = await async_client.post("/api/batch-analyze", files=files)
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "TOO_MANY_FILES"
        assert memory_client.tables == {}

    async def test_one_unsupported_file_rejects_batch(self, async_client, memory_client, sample_txt_bytes):
        resp = await async_client.post(
            "/api/batch-analyze",
            files=[_txt("a.txt", sample_txt_bytes), ("documents", ("b.exe", b"MZ", "application/octet-stream"))],
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "UNSUPPORTED_FILE_TYPE"
        assert memory_client.tables == {}

    async def test_job_row_failure_is_500(self, async_client, memory_client, sample_txt_bytes):
        memory_client.fail_on.add(BATCH_JOBS)
        resp = await async_client.post("/api/batch-analyze", files=[_txt("a.txt", sample_txt_bytes)])
        assert resp.status_code == 500
        assert resp.json()["error_code"] == "BATCH_ANALYSIS_ERROR"
        assert memory_client.rows(DOCUMENTS) == []

    async def test_database_down_after_job_created(self, async_client, memory_client, sample_txt_bytes):
        original_insert = memory_client.insert

        async def insert_then_go_down(table, row):
            stored = await original_insert(table, row)
            if table == BATCH_JOBS:
                memory_client.down = True
            return stored

        memory_client.insert = insert_then_go_down
        resp = await async_client.post(
            "/api/batch-analyze", files=[_txt("a.txt", sample_txt_bytes), _txt("b.txt", sample_txt_bytes)],
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["successful"] == 2
        assert body["data"]["database_saved"] is False
        assert body["database_error"]
        assert body["warning"]


# ─────────────────────────────────────────────────────────────────────────────
# Read endpoints
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestReadEndpoints:

    async def test_history(self, async_client, sample_txt_bytes):
        for name in ("first.txt", "second.txt"):
            await async_client.post(
                "/api/analyze",
                files={"document": (name, sample_txt_bytes, "text/plain")},
                headers={"X-User-ID": "5"},
            )

        resp = await async_client.get("/api/analysis-history", headers={"X-User-ID": "5"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["user_id"] == 5
        assert body["total"] == 2
        assert [a["filename"] for a in body["analyses"]] == ["second.txt", "first.txt"]
        assert body["analyses"][0]["fileType"] == "txt"
        assert body["analyses"][0]["analysis"]["statistics"]["totalWords"] > 0

        other = await async_client.get("/api/analysis-history", headers={"X-User-ID": "6"})
        assert other.json()["total"] == 0

    async def test_history_database_down(self, async_client, memory_client):
        memory_client.down = True
        resp = await async_client.get("/api/analysis-history")
        assert resp.status_code == 503
        assert resp.json()["error_code"] == "DATABASE_ERROR"

    async def test_batch_jobs(self, async_client, sample_txt_bytes):
        created = await async_client.post(
            "/api/batch-analyze", files=[_txt("a.txt", sample_txt_bytes), _txt("b.txt", sample_txt_bytes)],
        )
        job_id = created.json()["data"]["batch_job_id"]

        listing = await async_client.get("/api/batch-jobs")
        assert listing.status_code == 200
        assert [j["id"] for j in listing.json()["jobs"]] == [job_id]

        detail = await async_client.get(f"/api/batch-jobs/{job_id}")
        assert detail.status_code == 200
        body = detail.json()
        assert body["job"]["status"] == "completed"
        assert [f["original_filename"] for f in body["files"]] == ["a.txt", "b.txt"]

    async def test_unknown_batch_job(self, async_client):
        resp = await async_client.get(f"/api/batch-jobs/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "BATCH_JOB_NOT_FOUND"

    async def test_malformed_batch_job_id(self, async_client):
        resp = await async_client.get("/api/batch-jobs/not-a-uuid")
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    async def test_ai_status(self, async_client, monkeypatch):
        monkeypatch.setattr(settings, "groq_api_key", "")
        monkeypatch.setattr(settings, "chutes_api_key", "")
        resp = await async_client.get("/api/ai/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["groq"]["available"] is False
        assert body["chutes"]["available"] is False


@pytest.mark.integration
class TestOperations:

    async def test_health(self, async_client):
        resp = await async_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_request_id_is_echoed(self, async_client):
        resp = await async_client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
