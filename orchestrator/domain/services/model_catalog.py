from __future__ import annotations

from typing import Protocol, runtime_checkable

from orchestrator.domain.models import ModelProfile, ModelSpecialty


@runtime_checkable
class ModelCatalog(Protocol):
    """Protocol for the registry of routable model profiles."""

    def register(self, profile: ModelProfile) -> None:
        """Add a profile or replace the one with the same qualified name."""

    def get_model(self, qualified_name: str) -> ModelProfile | None:
        """Resolve ``provider:model`` (or a bare model id) to a profile.

        Args:
            qualified_name: e.g. 'openai:gpt-4o-mini' or 'gpt-4o-mini'.
        """

    def list_models(
        self,
        *,
        provider: str | None = None,
        specialty: ModelSpecialty | None = None,
    ) -> list[ModelProfile]:
        """List registered profiles with optional filtering."""

    def update_performance(
        self,
        qualified_name: str,
        *,
        latency_ms: float | None = None,
        quality_score: float | None = None,
        success: bool | None = None,
    ) -> None:
        """Fold an observed outcome into the profile's performance snapshot."""
