"""Pipeline state machine and its audit log."""

from dgk.pipeline.audit import OutcomeLog
from dgk.pipeline.pipeline import DeploymentTarget, Pipeline

__all__ = ["DeploymentTarget", "OutcomeLog", "Pipeline"]
