"""Answer generation services."""

from importlib import import_module

__all__ = [
    "Extraction",
    "Provenance",
    "LLMClient",
    "TwoPassGenerator",
    "GenerationError",
    "parse_summary_response",
]

_LAZY_IMPORTS = {
    "Extraction": ("medanswer.services.llm.extraction", "Extraction"),
    "Provenance": ("medanswer.services.llm.extraction", "Provenance"),
    "LLMClient": ("medanswer.services.llm.client", "LLMClient"),
    "TwoPassGenerator": ("medanswer.services.llm.generator", "TwoPassGenerator"),
    "GenerationError": ("medanswer.services.llm.generator", "GenerationError"),
    "parse_summary_response": ("medanswer.services.llm.answer_parser", "parse_summary_response"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
