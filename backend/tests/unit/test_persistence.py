"""
Unit Tests — ResultPersistenceLayer
═══════════════════════════════════
All tests run against InMemoryPersistenceClient (conftest.py).

Coverage targets:
  ✅ stage order: documents → document_analyses → children
  ✅ children written only when their data exists
  ✅ documents failure → nothing else written, report.saved False
  ✅ document_analyses failure → document kept, no children
  ✅ one child failing does not stop the others
  ✅ analysis_type derived from present data
  ✅ load_analysis returns None children for stages never written
  ✅ history is newest first and in the flat shape
"""

from __future__ import annotations

import json

import pytest

from docanalyzer.core.errors import PersistenceError
from docanalyzer.schemas.analysis import (
    AdvancedAnalysis,
    AiAnalysis,
    AnalysisOptions,
    AnalysisResult,
    AnalysisType,
    ClassificationResult,
    DocumentStatistics,
    InsightsResult,
    OcrBlock,
    QualityResult,
    RawAnalysis,
    RecommendationsResult,
    SentimentResult,
    SummaryResult,
)
from docanalyzer.services.persistence import (
    ADVANCED,
    AI,
    ANALYSES,
    BASIC,
    DOCUMENTS,
    METRICS,
    ResultPersistenceLayer,
    derive_analysis_type,
)

USER_ID = 7


def _ai() -> AiAnalysis:
    return AiAnalysis(
        sentiment=SentimentResult(sentiment="positive", confidence=0.9),
        classification=ClassificationResult(primary_category="business", confidence=0.8),
        summary=SummaryResult(summary="Short summary.", word_count=2),
        insights=InsightsResult(main_points=["Growth"]),
        recommendations=RecommendationsResult(next_steps=["Share"]),
        quality=QualityResult(overall_score=7.5, grade="B"),
        model="llama-3.3-70b-versatile",
        tokens_used=600,
        api_calls=6,
        cost_usd=0.00048,
        processing_time_ms=1200.0,
    )


def _result(*, advanced: bool = True, ai: bool = False, ai_invoked: bool | None = None, ocr: bool = False,
            filename: str = "report.pdf") -> AnalysisResult:
    raw = RawAnalysis(
        document_info={"title": "Report"},
        statistics=DocumentStatistics(total_pages=2, total_words=120, total_characters=700),
        content={"fullText": "Revenue grew."},
        structure={"hasHeaders": True},
        advanced=AdvancedAnalysis(language="en", readability_score=61.0, keywords=[{"word": "revenue", "count": 3}])
        if advanced else None,
        ocr=OcrBlock(text="scan", confidence=82.0, pages=1) if ocr else None,
    )
    return AnalysisResult(
        filename=filename,
        file_type=".pdf",
        file_size=2048,
        file_hash="d41d8cd98f00b204e9800998ecf8427e",
        raw=raw,
        ai=_ai() if ai else None,
        ai_invoked=ai if ai_invoked is None else ai_invoked,
        processing_time_ms=1500.0,
    )


@pytest.fixture
def layer(memory_client) -> ResultPersistenceLayer:
    return ResultPersistenceLayer(memory_client)


@pytest.fixture
def options() -> AnalysisOptions:
    return AnalysisOptions(useAI=True, strategy="auto")


@pytest.mark.unit
class TestDeriveAnalysisType:

    def test_precedence(self):
        assert derive_analysis_type(_result(ai=True, ocr=True)) == AnalysisType.AI_ENHANCED
        assert derive_analysis_type(_result(ocr=True)) == AnalysisType.ADVANCED
        assert derive_analysis_type(_result(advanced=False, ocr=True)) == AnalysisType.OCR
        assert derive_analysis_type(_result(advanced=False)) == AnalysisType.BASIC


@pytest.mark.unit
class TestSave:

    async def test_full_result_writes_every_stage_in_order(self, layer, memory_client, options):
        report = await layer.save(_result(ai=True), options, USER_ID, file_path="/tmp/a.pdf")

        assert report.saved is True
        assert report.stages_written == [DOCUMENTS, ANALYSES, BASIC, ADVANCED, AI, METRICS]
        assert memory_client.user_ids == [USER_ID]

        document = memory_client.rows(DOCUMENTS)[0]
        assert document["user_int_id"] == USER_ID
        assert document["file_type"] == "pdf"
        assert document["mime_type"] == "application/pdf"
        assert document["file_path"] == "/tmp/a.pdf"
        assert document["metadata"]["analysis_options"]["useAI"] is True
        assert document["metadata"]["ai_results"]["model"] == "llama-3.3-70b-versatile"

        analysis = memory_client.rows(ANALYSES)[0]
        assert analysis["document_id"] == report.document_id
        assert analysis["analysis_type"] == "ai_enhanced"
        assert analysis["ai_model_used"] == "llama-3.3-70b-versatile"

        for table in (BASIC, ADVANCED, AI, METRICS):
            assert memory_client.rows(table)[0]["analysis_id"] == report.analysis_id

        ai_row = memory_client.rows(AI)[0]
        assert json.loads(ai_row["response_generated"])["tokensUsed"] == 600
        assert memory_client.rows(METRICS)[0]["api_calls_count"] == 6
        assert memory_client.rows(BASIC)[0]["page_count"] == 2

    async def test_basic_only_result(self, layer, memory_client, options):
        report = await layer.save(_result(advanced=False), options, USER_ID)
        assert report.stages_written == [DOCUMENTS, ANALYSES, BASIC]
        assert memory_client.rows(ANALYSES)[0]["analysis_type"] == "basic"
        assert memory_client.rows(ANALYSES)[0]["ai_model_used"] == "none"
        assert memory_client.rows(BASIC)[0]["language_detected"] == "unknown"

    async def test_ai_invoked_without_result_still_writes_metrics(self, layer, memory_client, options):
        report = await layer.save(_result(ai_invoked=True), options, USER_ID)
        assert report.stages_written == [DOCUMENTS, ANALYSES, BASIC, ADVANCED, METRICS]
        assert memory_client.rows(METRICS)[0]["api_calls_count"] == 0

    async def test_batch_job_id_in_metadata(self, layer, memory_client, options):
        await layer.save(_result(), options, USER_ID, batch_job_id="job-1")
        assert memory_client.rows(DOCUMENTS)[0]["metadata"]["batch_job_id"] == "job-1"


@pytest.mark.unit
class TestSaveFailures:

    async def test_document_failure_writes_nothing(self, layer, memory_client, options):
        memory_client.fail_on.add(DOCUMENTS)
        report = await layer.save(_result(ai=True), options, USER_ID)

        assert report.saved is False
        assert report.document_id is None
        assert report.analysis_id is None
        assert report.failed_stage == DOCUMENTS
        assert memory_client.rows(ANALYSES) == []

    async def test_database_down(self, layer, memory_client, options):
        memory_client.down = True
        report = await layer.save(_result(), options, USER_ID)
        assert report.saved is False
        assert report.stages_written == []
        assert "connection refused" in report.error

    async def test_analysis_failure_keeps_document(self, layer, memory_client, options):
        memory_client.fail_on.add(ANALYSES)
        report = await layer.save(_result(ai=True), options, USER_ID)

        assert report.document_id is not None
        assert report.analysis_id is None
        assert report.stages_written == [DOCUMENTS]
        assert report.failed_stage == ANALYSES
        assert memory_client.rows(BASIC) == []

    async def test_child_failure_does_not_stop_siblings(self, layer, memory_client, options):
        memory_client.fail_on.add(ADVANCED)
        report = await layer.save(_result(ai=True), options, USER_ID)

        assert report.saved is False
        assert report.analysis_id is not None
        assert report.failed_stage == ADVANCED
        assert report.stages_written == [DOCUMENTS, ANALYSES, BASIC, AI, METRICS]
        assert memory_client.rows(ADVANCED) == []


@pytest.mark.unit
class TestReads:

    async def test_load_analysis_with_missing_children(self, layer, memory_client, options):
        report = await layer.save(_result(), options, USER_ID)

        stored = await layer.load_analysis(report.analysis_id, USER_ID)

        assert stored.analysis["id"] == report.analysis_id
        assert stored.document["id"] == report.document_id
        assert stored.basic["word_count"] == 120
        assert stored.advanced is not None
        assert stored.ai is None
        assert stored.metrics is None

    async def test_load_unknown_analysis(self, layer):
        assert await layer.load_analysis("00000000-0000-0000-0000-000000000000", USER_ID) is None

    async def test_history_newest_first(self, layer, options):
        await layer.save(_result(filename="first.pdf"), options, USER_ID)
        await layer.save(_result(filename="second.pdf", ai=True), options, USER_ID)
        await layer.save(_result(filename="other-user.pdf"), options, USER_ID + 1)

        items = await layer.list_history(USER_ID)

        assert [i.filename for i in items] == ["second.pdf", "first.pdf"]
        newest = items[0]
        assert newest.file_type == "pdf"
        assert newest.file_size == 2048
        assert newest.processing_time == 1500.0
        assert newest.confidence_score == 61.0
        assert newest.analysis["statistics"]["totalWords"] == 120
        assert newest.analysis["aiAnalysis"]["model"] == "llama-3.3-70b-versatile"

    async def test_history_pagination(self, layer, options):
        for n in range(5):
            await layer.save(_result(filename=f"f{n}.pdf"), options, USER_ID)
        page = await layer.list_history(USER_ID, limit=2, offset=1)
        assert [i.filename for i in page] == ["f3.pdf", "f2.pdf"]

    async def test_history_database_down_raises(self, layer, memory_client):
        memory_client.down = True
        with pytest.raises(PersistenceError):
            await layer.list_history(USER_ID)
