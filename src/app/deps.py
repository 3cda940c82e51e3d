# src/app/deps.py
"""
Process-wide collaborators, exposed as FastAPI dependencies.

The ledger client is built once, explicitly, and injected everywhere it is
needed; ``shutdown_ledger_client()`` releases it.
"""
from __future__ import annotations

import threading

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from supabase import Client, create_client

from src.app.config import settings
from src.app.infra.db.base import RecipeRepository
from src.app.infra.db.supabase_recipes_repo import SupabaseRecipeRepository
from src.app.infra.ledger.base import LedgerClient
from src.app.infra.ledger.web3_client import Web3LedgerClient
from src.app.services.anchor_verifier import AnchorVerifier
from src.app.services.provenance_orchestrator import ProvenanceOrchestrator
from src.app.services.recipe_provenance_service import RecipeProvenanceService
from src.services import anchor_queue

_client: Client | None = None
_ledger: LedgerClient | None = None
_repository: RecipeRepository | None = None
_lock = threading.Lock()


def get_supabase() -> Client:
    global _client
    if _client is None:
        if settings.SUPABASE_URL is None or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
        _client = create_client(str(settings.SUPABASE_URL), settings.SUPABASE_SERVICE_ROLE_KEY)
    return _client


def get_ledger_client() -> LedgerClient:
    global _ledger
    with _lock:
        if _ledger is None:
            _ledger = Web3LedgerClient(settings.ledger())
        return _ledger


def shutdown_ledger_client() -> None:
    global _ledger
    with _lock:
        ledger, _ledger = _ledger, None
    if ledger is not None:
        ledger.close()


def get_recipe_repository() -> RecipeRepository:
    global _repository
    if _repository is None:
        _repository = SupabaseRecipeRepository(get_supabase())
    return _repository


def get_orchestrator() -> ProvenanceOrchestrator:
    return ProvenanceOrchestrator(get_ledger_client())


def get_anchor_verifier() -> AnchorVerifier:
    return AnchorVerifier(get_ledger_client())


def get_recipe_provenance_service() -> RecipeProvenanceService:
    """Write-path service wired for ``ANCHOR_MODE`` (inline or queued)."""
    mode = settings.ANCHOR_MODE
    queue = anchor_queue.get_queue() if mode == "queued" else None
    return RecipeProvenanceService(
        get_recipe_repository(),
        get_orchestrator(),
        queue=queue,
        mode=mode,
    )


auth_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    email: str | None = None


async def get_current_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    supa: Client = Depends(get_supabase),
) -> CurrentUser:
    """
    Resolve ``Authorization: Bearer <access_token>`` against Supabase Auth.
    """
    if cred is None or cred.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    try:
        res = supa.auth.get_user(cred.credentials)
        user = res.user
        if not user:
            raise HTTPException(status_code=401, detail="Invalid token")
        return CurrentUser(id=str(user.id), email=user.email)
    except HTTPException:
        raise
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
