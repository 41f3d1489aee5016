"""dgk SDK: programmatic interface for loading and running pipelines."""

from dgk.sdk.models import (
    EnvironmentSettings,
    GateSettings,
    MutatorSettings,
    PipelineSpec,
    TelemetrySettings,
    TrustProviderSettings,
)
from dgk.sdk.runner import (
    PipelineBuilder,
    PipelineLoader,
    check_change,
    collect_accepted_risks,
    load_accepted_risks,
    run_pipeline,
)

__all__ = [
    "EnvironmentSettings",
    "GateSettings",
    "MutatorSettings",
    "PipelineBuilder",
    "PipelineLoader",
    "PipelineSpec",
    "TelemetrySettings",
    "TrustProviderSettings",
    "check_change",
    "collect_accepted_risks",
    "load_accepted_risks",
    "run_pipeline",
]
