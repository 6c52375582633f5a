from __future__ import annotations

from collections.abc import Iterable

from orchestrator.core.logging import get_logger
from orchestrator.domain.models import ModelProfile, ModelSpecialty
from orchestrator.domain.services.model_catalog import ModelCatalog

logger = get_logger(__name__)


def _smooth(previous: float, observed: float, alpha: float) -> float:
    return alpha * observed + (1 - alpha) * previous


class InMemoryModelCatalog(ModelCatalog):
    """Process-local model catalog.

    Profiles are keyed by qualified name (``provider:model``). Bare model ids
    are resolved through an alias index built on registration. Profiles are
    never removed during a run.
    """

    def __init__(
        self,
        profiles: Iterable[ModelProfile] = (),
        *,
        smoothing_alpha: float = 0.5,
    ) -> None:
        if not 0.0 < smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        self._models: dict[str, ModelProfile] = {}
        self._aliases: dict[str, str] = {}
        self._alpha = smoothing_alpha
        for profile in profiles:
            self.register(profile)

    def register(self, profile: ModelProfile) -> None:
        key = profile.qualified_name
        replaced = key in self._models
        self._models[key] = profile
        self._aliases.setdefault(profile.model_id, key)
        logger.info(
            "%s model profile %s", "Updated" if replaced else "Registered", key,
        )

    def get_model(self, qualified_name: str) -> ModelProfile | None:
        if ":" not in qualified_name:
            qualified_name = self._aliases.get(qualified_name, qualified_name)
        return self._models.get(qualified_name)

    def list_models(
        self,
        *,
        provider: str | None = None,
        specialty: ModelSpecialty | None = None,
    ) -> list[ModelProfile]:
        results = list(self._models.values())
        if provider:
            results = [m for m in results if m.provider == provider]
        if specialty:
            results = [m for m in results if specialty in m.capabilities.specialties]
        return results

    def update_performance(
        self,
        qualified_name: str,
        *,
        latency_ms: float | None = None,
        quality_score: float | None = None,
        success: bool | None = None,
    ) -> None:
        profile = self.get_model(qualified_name)
        if profile is None:
            return

        perf = profile.performance
        if latency_ms is not None:
            perf.average_latency_ms = _smooth(perf.average_latency_ms, latency_ms, self._alpha)
        if quality_score is not None:
            perf.quality_score = _smooth(perf.quality_score, quality_score, self._alpha)
        if success is not None:
            perf.reliability_score = _smooth(
                perf.reliability_score, 100.0 if success else 0.0, self._alpha,
            )

    def __len__(self) -> int:
        return len(self._models)
