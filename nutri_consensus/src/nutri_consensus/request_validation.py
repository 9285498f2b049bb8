"""Helpers for sanitising client payloads before they reach the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

DEFAULT_CREDENTIAL_PROVIDER = "openrouter"


def _clean(value: Any) -> Optional[str]:
    """Return a stripped string or None when missing/blank."""
    if value is None:
        return None
    value = value.strip() if isinstance(value, str) else str(value).strip()
    return value or None


def _strip_data_url(image: str) -> str:
    if image.startswith("data:") and ";base64," in image:
        return image.split(";base64,", 1)[1]
    return image


@dataclass
class SanitizedRequest:
    image_base64: Optional[str]
    credentials: Dict[str, str]
    request_id: Optional[str] = None
    missing_fields: list[str] = field(default_factory=list)


def sanitize_analyze_request(raw: Optional[Dict[str, Any]]) -> SanitizedRequest:
    """Ensure analyze requests carry an image and at least one credential."""
    payload = dict(raw) if raw is not None else {}
    missing: list[str] = []

    image = None
    for key in ("image_base64", "imageBase64", "image"):
        image = _clean(payload.get(key))
        if image:
            break
    if image:
        image = _strip_data_url(image)
    else:
        missing.append("image_base64")

    credentials: Dict[str, str] = {}
    for key in ("credentials", "apiKeys", "api_keys"):
        mapping = payload.get(key)
        if isinstance(mapping, dict):
            for provider, secret in mapping.items():
                secret = _clean(secret)
                if secret:
                    credentials[str(provider).strip().lower()] = secret
    single = _clean(payload.get("apiKey") or payload.get("api_key"))
    if single:
        credentials.setdefault(DEFAULT_CREDENTIAL_PROVIDER, single)
    if not credentials:
        missing.append("credentials")

    return SanitizedRequest(
        image_base64=image,
        credentials=credentials,
        request_id=_clean(payload.get("requestId") or payload.get("request_id")),
        missing_fields=missing,
    )
