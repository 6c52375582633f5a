from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ModelSpecialty(str, Enum):
    GENERAL = "general"
    CODING = "coding"
    MATH = "math"
    REASONING = "reasoning"
    CREATIVE_WRITING = "creative_writing"
    SUMMARIZATION = "summarization"
    TRANSLATION = "translation"
    QA = "qa"
    CLASSIFICATION = "classification"
    EXTRACTION = "extraction"


class ModelTier(str, Enum):
    ULTRA_FAST = "ultra_fast"
    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"
    ULTRA_ACCURATE = "ultra_accurate"


@dataclass(slots=True)
class ModelCapabilities:
    max_context_tokens: int
    supports_json: bool = False
    supports_tool_calls: bool = False
    supports_streaming: bool = False
    supports_system_prompts: bool = True
    languages: list[str] = field(default_factory=lambda: ["en"])
    specialties: list[ModelSpecialty] = field(default_factory=list)


@dataclass(slots=True)
class ModelPerformance:
    """Rolling performance snapshot; scores are on a 0-100 scale."""

    average_latency_ms: float
    tokens_per_second: float
    quality_score: float
    reliability_score: float
    accuracy_by_task: dict[ModelSpecialty, float] = field(default_factory=dict)


@dataclass(slots=True)
class ModelPricing:
    """USD prices per 1K tokens plus a flat per-request fee."""

    input_per_1k: float
    output_per_1k: float
    per_request: float = 0.0


@dataclass(slots=True)
class ModelLimits:
    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int
    tokens_per_minute: int
    tokens_per_day: int
    max_concurrent: int


@dataclass(slots=True)
class ModelAvailability:
    regions: list[str] = field(default_factory=list)
    uptime_percent: float = 99.0


@dataclass(slots=True)
class ModelProfile:
    """Domain entity describing one routable model."""

    provider: str
    model_id: str
    display_name: str
    capabilities: ModelCapabilities
    performance: ModelPerformance
    pricing: ModelPricing
    limits: ModelLimits
    availability: ModelAvailability = field(default_factory=ModelAvailability)
    tier: ModelTier = ModelTier.BALANCED

    @property
    def qualified_name(self) -> str:
        return f"{self.provider}:{self.model_id}"

    def accuracy_for(self, task: ModelSpecialty) -> float:
        """Specialty accuracy, falling back to the general quality score."""
        return self.performance.accuracy_by_task.get(task) or self.performance.quality_score
