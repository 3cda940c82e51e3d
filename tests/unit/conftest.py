from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

import pytest

from src.app.domain.errors import LedgerFailureKind
from src.app.domain.models import (
    AnchorResult,
    ConnectionStatus,
    HashLookup,
    LedgerInitResult,
    ProvenanceRecord,
    StoredRecipe,
)
from src.app.infra.db.base import RecipeRepository
from src.app.infra.ledger.base import LedgerClient


class LedgerClientStub(LedgerClient):
    def __init__(self) -> None:
        self.register_calls: list[tuple[str, str]] = []
        self.update_calls: list[tuple[str, str, str]] = []
        self.verify_calls: list[str] = []
        self.info_calls: list[str] = []
        self.register_results: list[AnchorResult] = []
        self.update_results: list[AnchorResult] = []
        self.lookup_result = HashLookup(success=True, exists=False)
        self.configured = True
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.register_calls) + len(self.update_calls)

    @property
    def contract_configured(self) -> bool:
        return self.configured

    def check_connection(self) -> ConnectionStatus:
        return ConnectionStatus(success=True, connected=True, network_id="5777", chain_id=1337, url="stub")

    def initialize(self) -> LedgerInitResult:
        return LedgerInitResult(success=True, account="0xstub")

    def register_recipe_hash(self, recipe_hash: str, author_address: str) -> AnchorResult:
        self.register_calls.append((recipe_hash, author_address))
        if self.register_results:
            return self.register_results.pop(0)
        return AnchorResult.confirmed(f"0xtx{len(self.register_calls)}", 10 + len(self.register_calls), 45000)

    def update_recipe_hash(self, old_hash: str, new_hash: str, author_address: str) -> AnchorResult:
        self.update_calls.append((old_hash, new_hash, author_address))
        if self.update_results:
            return self.update_results.pop(0)
        return AnchorResult.confirmed(f"0xupd{len(self.update_calls)}", 20 + len(self.update_calls), 50000)

    def verify_recipe_hash(self, recipe_hash: str) -> HashLookup:
        self.verify_calls.append(recipe_hash)
        return self.lookup_result

    def get_recipe_info(self, recipe_hash: str) -> HashLookup:
        self.info_calls.append(recipe_hash)
        return self.lookup_result

    def close(self) -> None:
        self.closed = True

    def fail_next_register(self, message: str, kind: Optional[LedgerFailureKind] = None) -> None:
        self.register_results.append(AnchorResult.failed(message, kind))


class RecipeRepositoryStub(RecipeRepository):
    def __init__(self) -> None:
        self.recipes: dict[str, StoredRecipe] = {}
        self.saved_content: list[str] = []
        self.conditional_writes: list[tuple[str, str, ProvenanceRecord]] = []
        self.fail_provenance_writes = False

    def save_content(self, recipe_id: str, content: dict[str, Any], provenance: ProvenanceRecord) -> None:
        self.saved_content.append(recipe_id)
        self.recipes[recipe_id] = StoredRecipe(id=recipe_id, content=dict(content), provenance=provenance)

    def get_recipe(self, recipe_id: str) -> Optional[StoredRecipe]:
        return self.recipes.get(recipe_id)

    def get_provenance(self, recipe_id: str) -> Optional[ProvenanceRecord]:
        stored = self.recipes.get(recipe_id)
        return stored.provenance if stored else None

    def save_provenance_if_current(self, recipe_id: str, expected_hash: str, record: ProvenanceRecord) -> bool:
        if self.fail_provenance_writes:
            raise RuntimeError("database unavailable")
        self.conditional_writes.append((recipe_id, expected_hash, record))
        stored = self.recipes.get(recipe_id)
        if stored is None or stored.provenance is None or stored.provenance.recipe_hash != expected_hash:
            return False
        self.recipes[recipe_id] = replace(stored, provenance=record)
        return True


@pytest.fixture
def ledger() -> LedgerClientStub:
    return LedgerClientStub()


@pytest.fixture
def repository() -> RecipeRepositoryStub:
    return RecipeRepositoryStub()
