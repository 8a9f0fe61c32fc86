"""
Unit Tests — Provider connectivity checks
Uses httpx.MockTransport; no network.
"""

from __future__ import annotations

import httpx
import pytest

from docanalyzer.core.config import settings
from docanalyzer.llm.connectivity import (
    ConnectivityErrorCode,
    ProviderCheck,
    classify_status,
    verify_primary_provider,
    verify_secondary_provider,
)


def _transport(status_code: int = 200, json_body=None, text: str | None = None, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=json_body if json_body is not None else {})
    return httpx.MockTransport(handler)


def _client(transport) -> ProviderCheck:
    return ProviderCheck("chutes", "https://chutes.test/chutes/", "ck_test", timeout=2, transport=transport)


@pytest.mark.unit
class TestClassifyStatus:

    @pytest.mark.parametrize("status_code, code", [
        (401, ConnectivityErrorCode.API_KEY_INVALID),
        (502, ConnectivityErrorCode.SERVER_DOWN),
        (404, ConnectivityErrorCode.ENDPOINT_NOT_FOUND),
        (500, ConnectivityErrorCode.API_ERROR),
        (429, ConnectivityErrorCode.API_ERROR),
    ])
    def test_mapping(self, status_code, code):
        assert classify_status(status_code)[0] == code


@pytest.mark.unit
class TestProviderCheck:

    async def test_available_counts_items(self):
        status = await _client(_transport(json_body={"items": [{"id": 1}, {"id": 2}]})).check()
        assert status.available is True
        assert status.available_models == 2
        assert status.error_code is None

    async def test_sends_bearer_key(self):
        seen: list[httpx.Request] = []
        await _client(_transport(json_body=[], seen=seen)).check()
        assert seen[0].headers["Authorization"] == "Bearer ck_test"
        assert seen[0].url.path == "/chutes/"

    @pytest.mark.parametrize("status_code, code", [(401, "API_KEY_INVALID"), (502, "SERVER_DOWN"), (404, "ENDPOINT_NOT_FOUND"), (503, "API_ERROR")])
    async def test_http_errors_are_classified(self, status_code, code):
        status = await _client(_transport(status_code, text="nope")).check()
        assert status.available is False
        assert status.error_code == code
        assert status.details == "nope"

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        status = await _client(httpx.MockTransport(handler)).check()
        assert status.error_code == "NETWORK_ERROR"

    async def test_non_json_body_is_unknown_error(self):
        status = await _client(_transport(200, text="<html>")).check()
        assert status.error_code == "UNKNOWN_ERROR"


@pytest.mark.unit
class TestVerifyProviders:

    async def test_unconfigured_providers_make_no_call(self, monkeypatch):
        monkeypatch.setattr(settings, "chutes_api_key", "")
        monkeypatch.setattr(settings, "groq_api_key", "gsk_your_api_key_here")
        seen: list[httpx.Request] = []

        secondary = await verify_secondary_provider(_transport(seen=seen))
        primary = await verify_primary_provider(_transport(seen=seen))

        assert secondary.error_code == primary.error_code == "NOT_CONFIGURED"
        assert seen == []

    async def test_configured_secondary_hits_chutes_listing(self, monkeypatch):
        monkeypatch.setattr(settings, "chutes_api_key", "ck_live")
        seen: list[httpx.Request] = []
        status = await verify_secondary_provider(_transport(json_body={"total": 12}, seen=seen))
        assert status.available is True
        assert status.available_models == 12
        assert str(seen[0].url) == f"{settings.chutes_api_url.rstrip('/')}/chutes/"

    async def test_configured_primary_lists_models(self, monkeypatch):
        monkeypatch.setattr(settings, "groq_api_key", "gsk_live")
        status = await verify_primary_provider(_transport(json_body={"data": [{"id": "m"}]}))
        assert status.provider == "groq"
        assert status.available_models == 1
