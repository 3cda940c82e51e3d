# src/app/infra/db/base.py
"""
Abstract base class for the recipe repository seen by the provenance layer.
This interface allows easy swapping between different storage backends.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.app.domain.models import ProvenanceRecord, StoredRecipe


class RecipeRepository(ABC):
    """
    Abstract interface for recipe content + provenance persistence.

    Implementations:
    - SupabaseRecipeRepository: ``recipes`` table with a ``blockchain`` JSON column
    """

    @abstractmethod
    def save_content(
        self,
        recipe_id: str,
        content: dict[str, Any],
        provenance: ProvenanceRecord,
    ) -> None:
        """
        Persist recipe content together with its provisional provenance.

        Args:
            recipe_id: The recipe to write
            content: Content fields (camelCase document)
            provenance: Record whose hash matches ``content``
        """
        pass

    @abstractmethod
    def get_recipe(self, recipe_id: str) -> Optional[StoredRecipe]:
        """
        Load stored content and provenance.

        Returns:
            The recipe, or None if not found
        """
        pass

    @abstractmethod
    def get_provenance(self, recipe_id: str) -> Optional[ProvenanceRecord]:
        pass

    @abstractmethod
    def save_provenance_if_current(
        self,
        recipe_id: str,
        expected_hash: str,
        record: ProvenanceRecord,
    ) -> bool:
        """
        Replace the record only while the stored hash still equals ``expected_hash``.
        Used by anchoring jobs so a late result never overwrites newer content.

        Returns:
            True if the record was written
        """
        pass
