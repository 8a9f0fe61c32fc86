"""
Provider Connectivity Checks

The secondary provider (Chutes) exposes no text-analysis endpoint, so it is
used only as a reachability check: GET {base}/chutes/ with a Bearer key.

Failure classification (never raised, always returned as ProviderStatus):

    HTTP 401          → API_KEY_INVALID
    HTTP 502          → SERVER_DOWN
    HTTP 404          → ENDPOINT_NOT_FOUND
    other HTTP error  → API_ERROR
    httpx.RequestError→ NETWORK_ERROR
    anything else     → UNKNOWN_ERROR

The primary provider (Groq) is checked by listing its models, for the
/api/ai/status operations endpoint.
"""

from __future__ import annotations

import logging
from enum import Enum

import httpx

from docanalyzer.core.config import settings
from docanalyzer.schemas.analysis import ProviderStatus

logger = logging.getLogger(__name__)


class ConnectivityErrorCode(str, Enum):
    API_KEY_INVALID    = "API_KEY_INVALID"
    SERVER_DOWN        = "SERVER_DOWN"
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    API_ERROR          = "API_ERROR"
    NETWORK_ERROR      = "NETWORK_ERROR"
    UNKNOWN_ERROR      = "UNKNOWN_ERROR"
    NOT_CONFIGURED     = "NOT_CONFIGURED"


_STATUS_CODES: dict[int, tuple[ConnectivityErrorCode, str]] = {
    401: (ConnectivityErrorCode.API_KEY_INVALID,    "API key is invalid or expired"),
    502: (ConnectivityErrorCode.SERVER_DOWN,        "Provider server is temporarily down"),
    404: (ConnectivityErrorCode.ENDPOINT_NOT_FOUND, "Endpoint not found, the API may have changed"),
}


def classify_status(status_code: int) -> tuple[ConnectivityErrorCode, str]:
    return _STATUS_CODES.get(
        status_code,
        (ConnectivityErrorCode.API_ERROR, f"Provider returned HTTP {status_code}"),
    )


def _count_items(payload: object) -> int:
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        for key in ("items", "data", "chutes"):
            if isinstance(payload.get(key), list):
                return len(payload[key])
        if isinstance(payload.get("total"), int):
            return payload["total"]
    return 0


class ProviderCheck:
    """
    One GET against a provider listing endpoint, classified into ProviderStatus.

    transport is injectable so tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        provider:  str,
        url:       str,
        api_key:   str,
        timeout:   float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider  = provider
        self._url       = url
        self._api_key   = api_key
        self._timeout   = timeout
        self._transport = transport

    async def check(self) -> ProviderStatus:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type":  "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
                resp = await http.get(self._url, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as exc:
            code, message = classify_status(exc.response.status_code)
            logger.warning(
                "ProviderCheck | provider=%s status=%d code=%s",
                self._provider, exc.response.status_code, code.value,
            )
            return ProviderStatus(
                provider=self._provider, available=False,
                error_code=code.value, message=message, details=exc.response.text[:500],
            )
        except httpx.RequestError as exc:
            logger.warning("ProviderCheck | provider=%s network error=%s", self._provider, exc)
            return ProviderStatus(
                provider=self._provider, available=False,
                error_code=ConnectivityErrorCode.NETWORK_ERROR.value,
                message="Network error while contacting provider", details=str(exc),
            )
        except Exception as exc:   # e.g. body was not JSON
            logger.warning("ProviderCheck | provider=%s unexpected error: %s", self._provider, exc)
            return ProviderStatus(
                provider=self._provider, available=False,
                error_code=ConnectivityErrorCode.UNKNOWN_ERROR.value,
                message="Unexpected response from provider", details=str(exc),
            )

        count = _count_items(payload)
        logger.info("ProviderCheck | provider=%s available models=%d", self._provider, count)
        return ProviderStatus(
            provider=self._provider, available=True,
            message="Provider reachable", available_models=count,
        )


def not_configured(provider: str) -> ProviderStatus:
    return ProviderStatus(
        provider=provider, available=False,
        error_code=ConnectivityErrorCode.NOT_CONFIGURED.value, message="API key not configured",
    )


async def verify_secondary_provider(
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderStatus:
    """Reachability of the connectivity-only provider; never raises."""
    if not settings.chutes_configured:
        return not_configured("chutes")
    client = ProviderCheck(
        provider  = "chutes",
        url       = f"{settings.chutes_api_url.rstrip('/')}/chutes/",
        api_key   = settings.chutes_api_key,
        timeout   = settings.chutes_check_timeout,
        transport = transport,
    )
    return await client.check()


async def verify_primary_provider(
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderStatus:
    """Lists models on the chat-completion provider; never raises."""
    if not settings.groq_configured:
        return not_configured("groq")
    client = ProviderCheck(
        provider  = "groq",
        url       = f"{settings.groq_base_url.rstrip('/')}/models",
        api_key   = settings.groq_api_key,
        timeout   = settings.chutes_check_timeout,
        transport = transport,
    )
    return await client.check()
