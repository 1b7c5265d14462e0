"""
Exception taxonomy for the analysis pipeline.

A disabled provider is not an error: it just reports is_enabled() == False and
never shows up in a registry's enabled set.
"""
from __future__ import annotations

from typing import Iterable


class PipelineError(Exception):
    """Base class for every error raised by the pipeline itself."""


class ProviderCallFailed(PipelineError):
    """
    A single provider call failed (network, API or parse error).

    Providers report these as a result with status="error"; the stages turn
    each failed attempt into one of these so AllProvidersFailed can carry them.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class AllProvidersFailed(PipelineError):
    """Every enabled provider for a stage failed, or none were enabled."""

    def __init__(self, message: str, failures: Iterable[ProviderCallFailed] = ()) -> None:
        self.failures = list(failures)
        if self.failures:
            message = f"{message}: " + "; ".join(str(f) for f in self.failures)
        super().__init__(message)


class ResponseParseFailed(PipelineError, ValueError):
    """A generation backend returned text that is not the JSON we asked for."""


class BatchItemFailed(PipelineError):
    """One image of a batch failed; siblings are unaffected."""

    def __init__(self, image_url: str, message: str) -> None:
        super().__init__(message)
        self.image_url = image_url
