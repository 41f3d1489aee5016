"""Deployment Gatekeeper — gated, credential-scoped infrastructure applies."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from dgk.sdk.runner import PipelineBuilder as PipelineBuilder
    from dgk.sdk.runner import PipelineLoader as PipelineLoader
    from dgk.sdk.runner import run_pipeline as run_pipeline

_SDK_EXPORTS = {
    "PipelineBuilder": "dgk.sdk.runner",
    "PipelineLoader": "dgk.sdk.runner",
    "run_pipeline": "dgk.sdk.runner",
}


def __getattr__(name: str) -> object:
    module_path = _SDK_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'dgk' has no attribute {name!r}")
