"""Trust providers and assertion sources.

- ``TrustProvider`` — exchanges a trust assertion for short-lived credentials.
- ``HTTPTrustProvider`` — token-exchange endpoint over HTTPS (httpx).
- ``StaticTrustProvider`` — hands back a fixed token; local development and tests.
- ``EnvAssertionSource`` — reads a CI-issued identity token from the environment.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import SecretStr, ValidationError

from dgk.core.errors import CredentialExchangeError, CredentialIntegrityError
from dgk.credentials.models import CredentialScope, IssuedCredential, TrustAssertion

logger = logging.getLogger(__name__)


@runtime_checkable
class TrustProvider(Protocol):
    """Federated identity exchange."""

    async def exchange(
        self,
        assertion: TrustAssertion,
        scope: CredentialScope,
        lifetime: timedelta,
    ) -> IssuedCredential:
        """Exchange *assertion* for credentials limited to *scope* and *lifetime*."""
        ...


@runtime_checkable
class AssertionSource(Protocol):
    """Produces the identity assertion presented to a :class:`TrustProvider`."""

    async def assertion(self) -> TrustAssertion: ...


class EnvAssertionSource:
    """Read the assertion token from an environment variable.

    Satisfies the :class:`AssertionSource` protocol.
    """

    def __init__(self, variable: str, *, subject: str = "", audience: str = "") -> None:
        self._variable = variable
        self._subject = subject
        self._audience = audience

    async def assertion(self) -> TrustAssertion:
        value = os.environ.get(self._variable)
        if not value:
            raise CredentialExchangeError(f"identity token variable {self._variable} is not set")
        return TrustAssertion(token=SecretStr(value), subject=self._subject, audience=self._audience)


class StaticTrustProvider:
    """Issue a fixed token without any remote exchange.

    Satisfies the :class:`TrustProvider` protocol.  By default the issued
    scope mirrors the request; *granted_environments* overrides it, which
    lets tests model a misconfigured trust policy.
    """

    def __init__(
        self,
        token: str | SecretStr,
        *,
        granted_environments: frozenset[str] | None = None,
        granted_role: str | None = None,
    ) -> None:
        self._token = token if isinstance(token, SecretStr) else SecretStr(token)
        self._granted_environments = granted_environments
        self._granted_role = granted_role

    async def exchange(
        self,
        assertion: TrustAssertion,
        scope: CredentialScope,
        lifetime: timedelta,
    ) -> IssuedCredential:
        logger.debug("StaticTrustProvider: issuing credential for %s", scope.describe())
        granted = CredentialScope(
            environments=self._granted_environments or scope.environments,
            role=self._granted_role or scope.role,
        )
        return IssuedCredential(
            token=self._token,
            scope=granted,
            expires_at=datetime.now(UTC) + lifetime,
        )


class HTTPTrustProvider:
    """Exchange an assertion at a token-exchange endpoint.

    Satisfies the :class:`TrustProvider` protocol.

    Request body::

        {"assertion": "...", "audience": "...", "role": "...",
         "environments": ["dev"], "duration_seconds": 3600}

    Expected response::

        {"token": "...", "role": "...", "environments": ["dev"],
         "expires_at": "2026-01-01T00:00:00Z"}
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport

    async def exchange(
        self,
        assertion: TrustAssertion,
        scope: CredentialScope,
        lifetime: timedelta,
    ) -> IssuedCredential:
        payload: dict[str, Any] = {
            "assertion": assertion.token.get_secret_value(),
            "audience": assertion.audience,
            "role": scope.role,
            "environments": sorted(scope.environments),
            "duration_seconds": int(lifetime.total_seconds()),
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._endpoint, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            # The body may echo the assertion; only the status is reported.
            raise CredentialExchangeError(
                f"trust exchange refused with HTTP {exc.response.status_code}"
            ) from None
        except httpx.HTTPError as exc:
            raise CredentialExchangeError(f"trust exchange failed: {type(exc).__name__}") from None

        try:
            body = response.json()
            return IssuedCredential(
                token=SecretStr(body["token"]),
                scope=CredentialScope(
                    environments=frozenset(body["environments"]),
                    role=body["role"],
                ),
                expires_at=body["expires_at"],
            )
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise CredentialIntegrityError(
                f"trust exchange response is malformed: {type(exc).__name__}"
            ) from None
