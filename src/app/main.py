# src/app/main.py
from __future__ import annotations
import logging
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.app.config import settings
from src.app.deps import shutdown_ledger_client
from src.app.routers.provenance import router as provenance_router
from src.services import anchor_queue

# Plain stdout logging for dev and containers
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

app = FastAPI(title="Recipe Provenance API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(provenance_router)


@app.on_event("startup")
async def startup() -> None:
    if settings.ANCHOR_MODE == "queued":
        await anchor_queue.start_worker()


@app.on_event("shutdown")
async def shutdown() -> None:
    await anchor_queue.stop_worker()
    shutdown_ledger_client()


@app.get("/health")
def health():
    return {"ok": True}
