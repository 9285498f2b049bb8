"""Data model shared by the invoker, aggregator, signer and engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MEASURES = ("calories", "carbs", "fats", "proteins")


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ExecutionMode(str, Enum):
    MULTI_PROVIDER = "multi-provider"
    SINGLE_PROVIDER_FALLBACK = "single-provider-fallback"


class LineItem(BaseModel):
    """One food item identified in the image."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    name: str = Field(min_length=1)
    quantity: float = Field(ge=0)
    unit: str = "g"
    calories: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fats: float = Field(ge=0)
    proteins: float = Field(ge=0)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value

    @property
    def key(self) -> str:
        """Merge key: trimmed, lowercased name."""
        return self.name.strip().lower()


class NutritionTotals(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    calories: float = Field(default=0, ge=0)
    carbs: float = Field(default=0, ge=0)
    fats: float = Field(default=0, ge=0)
    proteins: float = Field(default=0, ge=0)


class ProviderPayload(BaseModel):
    """Strict schema for the JSON object a provider must return."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items: List[LineItem]
    totals: Optional[NutritionTotals] = Field(
        default=None,
        validation_alias=AliasChoices("totals", "totalNutrition"),
    )


@dataclass(frozen=True)
class ProviderTarget:
    provider: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass(frozen=True)
class RequestContext:
    """Caller-owned input for one analyze() invocation."""
    image_base64: str
    credentials: Mapping[str, str]
    request_id: str
    signer: Optional[Any] = None

    def __post_init__(self) -> None:
        # Freeze the credential mapping so concurrent calls cannot mutate it.
        object.__setattr__(self, "credentials", MappingProxyType(dict(self.credentials)))

    def credential_for(self, provider: str) -> str:
        return self.credentials.get(provider, "") or ""


@dataclass
class ProviderOutcome:
    """Result from a single provider call. Never leaves the engine."""
    provider: str
    model: str
    success: bool = False
    payload: Optional[ProviderPayload] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class Attestation:
    digest: str
    signature: str
    public_key: str
    algorithm: str = "ed25519-sha256"

    def to_dict(self) -> Dict[str, str]:
        return {
            "digest": self.digest,
            "signature": self.signature,
            "publicKey": self.public_key,
            "algorithm": self.algorithm,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attestation":
        return cls(
            digest=data["digest"],
            signature=data["signature"],
            public_key=data.get("publicKey") or data.get("public_key", ""),
            algorithm=data.get("algorithm", "ed25519-sha256"),
        )


@dataclass
class AnalysisResult:
    items: List[LineItem]
    totals: NutritionTotals
    providers_used: int
    confidence: Confidence
    mode: ExecutionMode
    timestamp: int
    request_id: Optional[str] = None
    providers_attempted: int = 0
    contributors: List[str] = field(default_factory=list)
    signature: Optional[Attestation] = None

    def signed_fields(self) -> Dict[str, Any]:
        """The part of the result covered by the integrity digest."""
        return {
            "items": [item.model_dump() for item in self.items],
            "totals": self.totals.model_dump(),
            "providersUsed": self.providers_used,
            "confidence": self.confidence.value,
            "mode": self.mode.value,
            "timestamp": self.timestamp,
            "requestId": self.request_id,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.signed_fields()
        out["providersAttempted"] = self.providers_attempted
        out["contributors"] = list(self.contributors)
        out["signature"] = self.signature.to_dict() if self.signature else None
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisResult":
        sig = data.get("signature")
        return cls(
            items=[LineItem.model_validate(i) for i in data.get("items", [])],
            totals=NutritionTotals.model_validate(data.get("totals") or {}),
            providers_used=int(data.get("providersUsed", 0)),
            confidence=Confidence(data["confidence"]),
            mode=ExecutionMode(data["mode"]),
            timestamp=int(data["timestamp"]),
            request_id=data.get("requestId"),
            providers_attempted=int(data.get("providersAttempted", 0)),
            contributors=list(data.get("contributors", [])),
            signature=Attestation.from_dict(sig) if sig else None,
        )
