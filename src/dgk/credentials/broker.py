"""CredentialBroker — turns an ALLOW decision into verified, scoped credentials.

The broker refuses to run for anything but an ALLOW decision, and rejects
credentials broader than requested: a token valid for ``prod+dev`` when
``dev`` was asked for is an integrity failure, not a convenience.  Tokens
are never logged; :meth:`CredentialBroker.session` binds a credential's
lifetime to a single ``async with`` block.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from dgk.core.errors import CredentialIntegrityError, GateBypassError
from dgk.credentials.models import Credential
from dgk.utils.telemetry import ATTR_ENVIRONMENT, get_tracer

if TYPE_CHECKING:
    from dgk.core.models import Decision
    from dgk.credentials.models import CredentialScope, IssuedCredential
    from dgk.credentials.providers import AssertionSource, TrustProvider

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

# Tolerated disagreement between our clock and the provider's.
CLOCK_SKEW = timedelta(seconds=60)


class CredentialBroker:
    """Obtain temporary credentials for an allowed change."""

    def __init__(
        self,
        provider: TrustProvider,
        assertions: AssertionSource,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._assertions = assertions
        self._clock = clock or (lambda: datetime.now(UTC))

    async def obtain(
        self,
        decision: Decision,
        scope: CredentialScope,
        max_lifetime: timedelta,
    ) -> Credential:
        """Exchange a trust assertion for credentials limited to *scope*.

        Raises:
            GateBypassError: If *decision* is not ALLOW.
            CredentialIntegrityError: If the issued credential is broader
                than *scope*, outlives *max_lifetime*, or is already expired.
            CredentialExchangeError: If the exchange itself fails.
        """
        if not decision.allowed:
            raise GateBypassError("credentials requested without an ALLOW decision")

        environment = decision.report.change.environment
        if scope.environments != frozenset({environment}):
            raise CredentialIntegrityError(
                f"requested scope {scope.describe()} does not match target environment {environment}"
            )
        if max_lifetime <= timedelta(0):
            raise CredentialIntegrityError("max credential lifetime must be positive")

        with _tracer.start_as_current_span("credential.obtain") as span:
            span.set_attribute(ATTR_ENVIRONMENT, environment)
            assertion = await self._assertions.assertion()
            issued = await self._provider.exchange(assertion, scope, max_lifetime)
            now = self._clock()
            self._verify(issued, scope, max_lifetime, now)

        logger.info("Obtained credential for %s (expires %s)", scope.describe(), issued.expires_at.isoformat())
        return Credential(
            token=issued.token,
            scope=issued.scope,
            issued_at=now,
            expires_at=issued.expires_at,
        )

    @asynccontextmanager
    async def session(
        self,
        decision: Decision,
        scope: CredentialScope,
        max_lifetime: timedelta,
    ) -> AsyncIterator[Credential]:
        """Yield a credential valid only for the enclosed block."""
        credential = await self.obtain(decision, scope, max_lifetime)
        try:
            yield credential
        finally:
            del credential
            logger.debug("Credential for %s released", scope.describe())

    @staticmethod
    def _verify(
        issued: IssuedCredential,
        requested: CredentialScope,
        max_lifetime: timedelta,
        now: datetime,
    ) -> None:
        if not issued.scope.environments:
            raise CredentialIntegrityError("issued credential names no environment")
        if not issued.scope.within(requested):
            raise CredentialIntegrityError(
                f"issued credential scope {issued.scope.describe()} is broader than "
                f"requested {requested.describe()}"
            )
        expires_at = issued.expires_at
        if expires_at.tzinfo is None:
            raise CredentialIntegrityError("issued credential expiry has no timezone")
        if expires_at <= now:
            raise CredentialIntegrityError("issued credential is already expired")
        if expires_at > now + max_lifetime + CLOCK_SKEW:
            raise CredentialIntegrityError(
                f"issued credential outlives the maximum lifetime of {int(max_lifetime.total_seconds())}s"
            )
