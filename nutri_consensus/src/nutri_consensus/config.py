from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import ProviderTarget


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value is not None else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


# Provider targets to fan out to
# Format: "provider1=model1,provider2=model2" or with ";" separators
# Example: "openrouter=google/gemini-2.5-pro,anthropic=claude-3-5-sonnet-latest"
def parse_provider_targets(s: str) -> Tuple[ProviderTarget, ...]:
    """Parse PROVIDER_TARGETS into an ordered tuple of targets."""
    targets = []
    for part in [p.strip() for p in s.replace(";", ",").split(",") if p.strip()]:
        if "=" not in part:
            continue
        provider, model = part.split("=", 1)
        provider = provider.strip().lower()
        model = model.strip()
        if provider and model:
            targets.append(ProviderTarget(provider=provider, model=model))
    return tuple(targets)


# Provider base URLs
# Format: "openrouter=https://openrouter.ai/api/v1;openai=https://api.openai.com/v1"
def parse_provider_endpoints(s: str) -> Dict[str, str]:
    """Parse PROVIDER_ENDPOINTS into {provider: base_url}."""
    mapping = {}
    for part in [p.strip() for p in s.replace(";", ",").split(",") if p.strip()]:
        if "=" not in part:
            continue
        name, url = part.split("=", 1)
        name = name.strip().lower()
        url = url.strip().rstrip("/")
        if name and url:
            mapping[name] = url
    return mapping


DEFAULT_PROVIDER_TARGETS = (
    "openrouter=google/gemini-2.5-pro,"
    "openrouter=anthropic/claude-3.5-sonnet,"
    "openrouter=openai/gpt-4o"
)
DEFAULT_PROVIDER_ENDPOINTS = (
    "openrouter=https://openrouter.ai/api/v1,"
    "openai=https://api.openai.com/v1,"
    "anthropic=https://api.anthropic.com/v1"
)

MERGE_STRATEGIES = {"pairwise", "running_mean"}


@dataclass(frozen=True)
class EngineConfig:
    provider_targets: Tuple[ProviderTarget, ...] = parse_provider_targets(
        _env_str("PROVIDER_TARGETS", DEFAULT_PROVIDER_TARGETS)
    )
    provider_endpoints: Tuple[Tuple[str, str], ...] = tuple(
        parse_provider_endpoints(_env_str("PROVIDER_ENDPOINTS", DEFAULT_PROVIDER_ENDPOINTS)).items()
    )
    fallback_provider: str = (_env_str("FALLBACK_PROVIDER", "openrouter") or "openrouter").strip().lower()
    fallback_model: str = _env_str("FALLBACK_MODEL", "google/gemini-2.5-pro")
    timeout_secs: float = _env_float("PROVIDER_TIMEOUT_SECS", 30.0)
    temperature: float = _env_float("ANALYSIS_TEMPERATURE", 0.3)
    max_tokens: int = _env_int("ANALYSIS_MAX_TOKENS", 1000)
    app_referer: str = _env_str("APP_REFERER", "https://cloe.health")
    app_title: str = _env_str("APP_TITLE", "Cloe - AI Health Assistant")
    merge_strategy: str = (_env_str("MERGE_STRATEGY", "pairwise") or "pairwise").strip().lower()

    def endpoint_for(self, provider: str) -> Optional[str]:
        return dict(self.provider_endpoints).get(provider)

    @property
    def fallback_target(self) -> ProviderTarget:
        return ProviderTarget(provider=self.fallback_provider, model=self.fallback_model)


SIGNING_PRIVATE_KEY = (_env_str("SIGNING_PRIVATE_KEY", "") or "").strip() or None
OPENROUTER_API_KEY = (_env_str("OPENROUTER_API_KEY", "") or "").strip() or None
LOG_LEVEL = (_env_str("LOG_LEVEL", "INFO") or "INFO").upper()
