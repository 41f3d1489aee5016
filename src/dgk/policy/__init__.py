"""Policy subsystem — accepted risks and the ALLOW/BLOCK decision."""

from dgk.policy.engine import PolicyEngine
from dgk.policy.models import AcceptedRisk, ExceptionScope

__all__ = [
    "AcceptedRisk",
    "ExceptionScope",
    "PolicyEngine",
]
