# src/app/infra/ledger/base.py
"""
Abstract interface for the ledger that anchors recipe hashes.

Implementations must never raise from these methods: every fault is
reported through the returned result object.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from src.app.domain.models import (
    AnchorResult,
    ConnectionStatus,
    HashLookup,
    LedgerInitResult,
)


class LedgerClient(ABC):
    """
    Implementations:
    - Web3LedgerClient: EVM node over JSON-RPC via web3.py
    """

    @abstractmethod
    def check_connection(self) -> ConnectionStatus:
        """Probe the node. Does not need a deployed contract."""
        pass

    @abstractmethod
    def initialize(self) -> LedgerInitResult:
        """
        Load the signing identity and bind the contract.
        Idempotent; a missing contract address is a valid partial state.
        """
        pass

    @abstractmethod
    def register_recipe_hash(self, recipe_hash: str, author_address: str) -> AnchorResult:
        """
        Register a content hash for an author.

        Args:
            recipe_hash: 64-char hex digest
            author_address: Author wallet address

        Returns:
            AnchorResult with transaction info, or a failure
        """
        pass

    @abstractmethod
    def update_recipe_hash(self, old_hash: str, new_hash: str, author_address: str) -> AnchorResult:
        """Move a registered hash to the hash of the new content."""
        pass

    @abstractmethod
    def verify_recipe_hash(self, recipe_hash: str) -> HashLookup:
        """Read-only existence check. No gas."""
        pass

    @abstractmethod
    def get_recipe_info(self, recipe_hash: str) -> HashLookup:
        """Like verify, plus the registering transaction when it can be found."""
        pass

    @property
    @abstractmethod
    def contract_configured(self) -> bool:
        pass

    def close(self) -> None:
        """Release the connection and abort pending receipt waits."""
        return None
