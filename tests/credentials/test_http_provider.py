"""Tests for HTTPTrustProvider (transport mocked with httpx.MockTransport)."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest
from pydantic import SecretStr

from dgk.core.errors import CredentialExchangeError, CredentialIntegrityError
from dgk.credentials.models import CredentialScope, TrustAssertion
from dgk.credentials.providers import HTTPTrustProvider, TrustProvider
from tests.helpers import ROLE

_ENDPOINT = "https://sts.example.test/exchange"
_SCOPE = CredentialScope.for_environment("dev", ROLE)
_ASSERTION = TrustAssertion(token=SecretStr("ci-jwt"), audience="sts.example.test")


def provider(handler) -> HTTPTrustProvider:
    return HTTPTrustProvider(_ENDPOINT, transport=httpx.MockTransport(handler))


class TestHTTPTrustProvider:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(HTTPTrustProvider(_ENDPOINT), TrustProvider)

    async def test_exchange(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "token": "sts-token",
                    "role": ROLE,
                    "environments": ["dev"],
                    "expires_at": "2026-03-01T13:00:00Z",
                },
            )

        result = await provider(handler).exchange(_ASSERTION, _SCOPE, timedelta(minutes=30))

        assert seen == {
            "assertion": "ci-jwt",
            "audience": "sts.example.test",
            "role": ROLE,
            "environments": ["dev"],
            "duration_seconds": 1800,
        }
        assert result.token.get_secret_value() == "sts-token"
        assert result.scope == _SCOPE
        assert result.expires_at.tzinfo is not None

    async def test_refusal_reports_status_only(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text="denied for assertion ci-jwt")

        with pytest.raises(CredentialExchangeError, match="HTTP 403") as exc_info:
            await provider(handler).exchange(_ASSERTION, _SCOPE, timedelta(minutes=30))
        assert "ci-jwt" not in str(exc_info.value)

    async def test_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(CredentialExchangeError, match="ConnectError"):
            await provider(handler).exchange(_ASSERTION, _SCOPE, timedelta(minutes=30))

    async def test_malformed_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token": "sts-token", "role": "admin"})

        with pytest.raises(CredentialIntegrityError, match="malformed") as exc_info:
            await provider(handler).exchange(_ASSERTION, _SCOPE, timedelta(minutes=30))
        assert "sts-token" not in str(exc_info.value)
