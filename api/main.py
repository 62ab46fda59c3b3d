"""
Triage Core: FastAPI application.

Startup sequence:
  1. Load .env
  2. Init DB (create tables)
  3. Include API routers

The circuit-breaker registry is built once per process and kept on app.state.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.routes import requests as requests_router
from db.database import init_db
from stability.circuit_breaker import CircuitBreakerRegistry, CircuitState

logger = logging.getLogger(__name__)
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Triage Core",
    description="Request triage, clinician review lifecycle and audit trail.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.breakers = CircuitBreakerRegistry.default()


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("Triage Core startup: initialising database …")
    init_db()
    logger.info("Triage Core startup: ready.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/health", tags=["meta"])
def health(request: Request) -> dict:
    """
    Liveness / readiness check.
    Reports the state of every dependency circuit breaker; no dependency is called.
    """
    breakers = request.app.state.breakers.get_status()
    degraded = [name for name, status in breakers.items() if status["state"] != CircuitState.CLOSED.value]
    return {
        "status": "degraded" if degraded else "ok",
        "circuit_breakers": breakers,
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(requests_router.router)
