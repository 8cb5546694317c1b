"""Pipeline orchestration and fallback handling."""

from importlib import import_module

__all__ = ["QueryOrchestrator", "PipelineContext", "PipelineStage", "PartialResultsHandler"]

_LAZY_IMPORTS = {
    "QueryOrchestrator": ("medanswer.services.pipeline.orchestrator", "QueryOrchestrator"),
    "PipelineContext": ("medanswer.services.pipeline.context", "PipelineContext"),
    "PipelineStage": ("medanswer.services.pipeline.context", "PipelineStage"),
    "PartialResultsHandler": ("medanswer.services.pipeline.partial_results", "PartialResultsHandler"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
