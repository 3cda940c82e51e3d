# src/app/services/recipe_hash.py
"""
Canonical fingerprint of a recipe's content.

Only the content fields feed the digest; ids, status, ratings, views and
timestamps never do. Pure functions, safe to call from any thread.
"""
from __future__ import annotations

import hashlib
import json
import unicodedata
from typing import Any, Mapping, Union

from src.app.schemas.recipes import RecipeContent

RecipeInput = Union[RecipeContent, Mapping[str, Any]]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return unicodedata.normalize("NFC", str(value))


def _number(value: Any) -> int | float:
    if value is None or value == "":
        return 0
    # Integers stay exact; float() would round anything above 2**53.
    if isinstance(value, int):
        return value
    number = value if isinstance(value, float) else float(value)
    return int(number) if number.is_integer() else number


def _coerce(content: RecipeInput) -> RecipeContent:
    if isinstance(content, RecipeContent):
        return content
    return RecipeContent.model_validate(dict(content))


def canonical_recipe_payload(content: RecipeInput) -> dict[str, Any]:
    """Build the fixed-key-order structure that is hashed."""
    recipe = _coerce(content)
    return {
        "title": _text(recipe.title),
        "summary": _text(recipe.summary),
        "content": _text(recipe.content),
        "ingredients": [
            {
                "name": _text(ing.name),
                "amount": _text(ing.amount),
                "unit": _text(ing.unit),
                "notes": _text(ing.notes),
            }
            for ing in recipe.ingredients
        ],
        "steps": [
            {
                "order": _number(step.order),
                "title": _text(step.title),
                "description": _text(step.description),
                "duration": _number(step.duration),
                "temperature": _text(step.temperature),
            }
            for step in recipe.steps
        ],
        "tags": sorted({_text(tag) for tag in recipe.tags}),
        "category": _text(recipe.category),
        "prepTime": _number(recipe.prep_time),
        "cookTime": _number(recipe.cook_time),
        "servings": _number(recipe.servings),
    }


def canonical_recipe_json(content: RecipeInput) -> str:
    # Key order comes from the payload builder, not from sort_keys.
    return json.dumps(
        canonical_recipe_payload(content),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def generate_recipe_hash(content: RecipeInput) -> str:
    """SHA-256 of the canonical JSON, as 64 lowercase hex characters."""
    return hashlib.sha256(canonical_recipe_json(content).encode("utf-8")).hexdigest()


def compare_hashes(first: str | None, second: str | None) -> bool:
    if not first or not second:
        return False
    return first.lower() == second.lower()
