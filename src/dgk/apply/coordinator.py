"""ApplyCoordinator — lock, mutate, unlock.

Protocol for one apply:

1. Acquire the lock for ``<namespace>/<environment>`` (bounded wait;
   :class:`~dgk.core.errors.LockContentionError` on expiry, nothing mutated).
2. Plan and apply through the :class:`~dgk.apply.mutator.Mutator`.
3. Release the lock on every exit path.

A failed mutation is reported as FAILED and never retried here: the
underlying operation is not known to be idempotent.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from dgk.apply.lock import LockKey
from dgk.core.errors import CredentialIntegrityError, GateBypassError
from dgk.core.models import ApplyResult, ApplyStatus
from dgk.utils.telemetry import ATTR_APPLY_STATUS, ATTR_LOCK_KEY, get_tracer

if TYPE_CHECKING:
    from dgk.apply.lock import LockManager
    from dgk.apply.mutator import Mutator
    from dgk.core.models import ChangeDescriptor, Decision
    from dgk.credentials.models import Credential

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

_REDACTED = "***"


class ApplyCoordinator:
    """Run one mutating apply under the target's state lock."""

    def __init__(self, locks: LockManager, mutator: Mutator, *, namespace: str) -> None:
        self._locks = locks
        self._mutator = mutator
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def lock_key(self, change: ChangeDescriptor) -> LockKey:
        return LockKey(namespace=self._namespace, environment=change.environment)

    async def apply(
        self,
        decision: Decision,
        change: ChangeDescriptor,
        credential: Credential,
        *,
        run_id: str = "",
    ) -> ApplyResult:
        """Apply *change* with *credential*.

        Raises:
            GateBypassError: If *decision* is not an ALLOW for this change.
            CredentialIntegrityError: If *credential* does not cover the target.
            LockContentionError: If the lock stays held past the bounded wait.
        """
        if not decision.allowed:
            raise GateBypassError("apply invoked without an ALLOW decision")
        if decision.report.change != change:
            raise GateBypassError("decision was made for a different change")
        if change.environment not in credential.scope.environments:
            raise CredentialIntegrityError(
                f"credential scope {credential.scope.describe()} does not cover {change.environment}"
            )

        key = self.lock_key(change)
        with _tracer.start_as_current_span("apply.run") as span:
            span.set_attribute(ATTR_LOCK_KEY, str(key))
            async with self._locks.hold(key, run_id=run_id):
                result = await self._mutate(change, credential)
            span.set_attribute(ATTR_APPLY_STATUS, result.status.value)
        return result

    async def _mutate(self, change: ChangeDescriptor, credential: Credential) -> ApplyResult:
        started = time.monotonic()
        try:
            diff = await self._mutator.plan(change, credential=credential)
            if not diff.has_changes:
                logger.info("No changes to apply for %s", change.short)
                return ApplyResult(
                    status=ApplyStatus.SUCCEEDED,
                    detail="no changes",
                    plan_summary=diff.summary,
                    duration=time.monotonic() - started,
                )
            summary = await self._mutator.apply(change, diff, credential=credential)
        except Exception as exc:
            detail = _redact(str(exc), credential.secret())
            logger.error("Apply for %s failed: %s", change.short, detail)
            return ApplyResult(
                status=ApplyStatus.FAILED,
                detail=detail,
                duration=time.monotonic() - started,
            )

        logger.info("Applied %s", change.short)
        return ApplyResult(
            status=ApplyStatus.SUCCEEDED,
            detail=_redact(summary, credential.secret()),
            plan_summary=_redact(diff.summary, credential.secret()),
            duration=time.monotonic() - started,
        )


def _redact(text: str, secret: str) -> str:
    return text.replace(secret, _REDACTED) if secret else text
