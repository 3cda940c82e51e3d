from __future__ import annotations

import logging
import os
from typing import Any, Optional

from supabase import Client, create_client

from src.app.domain.errors import RecipeRepositoryError
from src.app.domain.models import ProvenanceRecord, StoredRecipe
from src.app.infra.db.base import RecipeRepository

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = (
    "title",
    "summary",
    "content",
    "ingredients",
    "steps",
    "tags",
    "category",
    "prepTime",
    "cookTime",
    "servings",
)


def _create_supabase_client() -> Client:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


def _row_to_recipe(row: dict[str, Any]) -> StoredRecipe:
    return StoredRecipe(
        id=str(row["id"]),
        content={column: row.get(column) for column in CONTENT_COLUMNS},
        provenance=ProvenanceRecord.from_document(row.get("blockchain")),
    )


class SupabaseRecipeRepository(RecipeRepository):
    TABLE_NAME = "recipes"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()
        logger.info("SupabaseRecipeRepository initialized")

    def save_content(
        self,
        recipe_id: str,
        content: dict[str, Any],
        provenance: ProvenanceRecord,
    ) -> None:
        payload = {column: content.get(column) for column in CONTENT_COLUMNS}
        payload["blockchain"] = provenance.to_document()
        try:
            response = (
                self._client.table(self.TABLE_NAME)
                .upsert({"id": recipe_id, **payload})
                .execute()
            )
        except Exception as exc:
            raise RecipeRepositoryError("save_content", str(exc)) from exc
        if not response.data:
            raise RecipeRepositoryError("save_content", f"no row written for recipe {recipe_id}")

    def get_recipe(self, recipe_id: str) -> Optional[StoredRecipe]:
        try:
            response = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("id", recipe_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise RecipeRepositoryError("get_recipe", str(exc)) from exc
        rows = response.data or []
        return _row_to_recipe(rows[0]) if rows else None

    def get_provenance(self, recipe_id: str) -> Optional[ProvenanceRecord]:
        try:
            response = (
                self._client.table(self.TABLE_NAME)
                .select("blockchain")
                .eq("id", recipe_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise RecipeRepositoryError("get_provenance", str(exc)) from exc
        rows = response.data or []
        return ProvenanceRecord.from_document(rows[0].get("blockchain")) if rows else None

    def save_provenance_if_current(
        self,
        recipe_id: str,
        expected_hash: str,
        record: ProvenanceRecord,
    ) -> bool:
        try:
            response = (
                self._client.table(self.TABLE_NAME)
                .update({"blockchain": record.to_document()})
                .eq("id", recipe_id)
                .eq("blockchain->>recipeHash", expected_hash)
                .execute()
            )
        except Exception as exc:
            raise RecipeRepositoryError("save_provenance_if_current", str(exc)) from exc
        return bool(response.data)
