"""Error taxonomy for the analysis engine.

Provider-level errors are recoverable: the fan-out converts them into failed
outcomes and keeps going. Aggregation and fallback errors decide the terminal
state of a request.
"""

from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for all engine errors."""


class ProviderError(AnalysisError):
    """A single provider call failed."""

    def __init__(self, provider: str, model: str, cause: str) -> None:
        super().__init__(f"{provider}/{model}: {cause}")
        self.provider = provider
        self.model = model
        self.cause = cause


class ProviderInputError(ProviderError):
    """Missing credential or empty input; no call was made."""


class ProviderTransportError(ProviderError):
    """Network failure, timeout or non-2xx status."""

    def __init__(self, provider: str, model: str, cause: str, status_code: Optional[int] = None) -> None:
        super().__init__(provider, model, cause)
        self.status_code = status_code


class ProviderParseError(ProviderError):
    """Response body could not be turned into a valid item payload."""


class ProviderEmptyResultError(ProviderError):
    """Provider answered with a well-formed but empty item list."""


class AggregationEmptyError(AnalysisError):
    """Merging the successful payloads produced no usable items."""


class FallbackExhaustedError(AnalysisError):
    """Both the fan-out and the fallback call failed."""

    def __init__(self, cause: str, providers_attempted: int, request_id: Optional[str] = None) -> None:
        super().__init__(cause)
        self.cause = cause
        self.providers_attempted = providers_attempted
        self.request_id = request_id


class SigningUnavailableError(AnalysisError):
    """The signing capability could not produce an attestation."""


class EngineNotInitializedError(AnalysisError):
    """analyze() was called before initialize() or after shutdown()."""
