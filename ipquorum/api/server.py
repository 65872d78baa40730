"""
REST API Server for ipquorum.

Polls providers in the background and serves the latest confirmed result.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

# Load environment variables early
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import structlog
import uvicorn

from ipquorum import __version__
from ipquorum.config import QuorumSettings, build_context
from ipquorum.core import RoundOrchestrator
from ipquorum.models import AddressFamily, FamilyVerdict, ProviderInfo, RoundResult

logger = structlog.get_logger()


# ============================================================================
# Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    rounds_completed: int = 0
    providers_enabled: Optional[int] = None
    polling: bool = Field(default=False, description="Background round loop running")


# ============================================================================
# API Application
# ============================================================================

class StatusAPI:
    """Owns the orchestrator and its background round loop."""

    def __init__(self, orchestrator: Optional[RoundOrchestrator] = None, poll: bool = True):
        self.orchestrator = orchestrator
        self.poll = poll
        self._task: Optional[asyncio.Task] = None

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    async def initialize(self):
        if self.orchestrator is None:
            context = build_context(QuorumSettings.from_env())
            self.orchestrator = RoundOrchestrator(context)
        if self.poll:
            self._task = asyncio.create_task(
                self.orchestrator.run_forever(), name="ipquorum-rounds"
            )
        logger.info("Status API initialized", polling=self.poll)

    async def shutdown(self):
        if self.orchestrator is None:
            return
        self.orchestrator.stop()
        if self._task is not None:
            try:
                await self._task
            except Exception as e:
                logger.error(f"Round loop failed: {e}")
            self._task = None
        await self.orchestrator.close()
        logger.info("Status API shutdown")


def create_app(orchestrator: Optional[RoundOrchestrator] = None, poll: bool = True) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        orchestrator: Orchestrator to serve; built from IPQUORUM_* settings if omitted
        poll: Run rounds in the background for the app's lifetime
    """
    api = StatusAPI(orchestrator, poll=poll)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        await api.initialize()
        yield
        await api.shutdown()

    app = FastAPI(
        title="ipquorum",
        description="Trust-weighted consensus on this host's external IP address",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.api = api

    # CORS
    cors_origins = os.getenv("IPQUORUM_CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    def _orchestrator() -> RoundOrchestrator:
        if api.orchestrator is None:
            raise HTTPException(status_code=503, detail="Orchestrator not initialized")
        return api.orchestrator

    def _latest() -> RoundResult:
        result = _orchestrator().latest
        if result is None:
            raise HTTPException(status_code=404, detail="No round has completed yet")
        return result

    # ========================================================================
    # Endpoints
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        orchestrator = api.orchestrator
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            rounds_completed=orchestrator.rounds_completed if orchestrator else 0,
            providers_enabled=(
                len(orchestrator.context.catalog.enabled_providers()) if orchestrator else None
            ),
            polling=api.polling,
        )

    @app.get("/providers", response_model=list[ProviderInfo])
    async def list_providers():
        """Providers with their effective trust weight, rate limit and state."""
        return _orchestrator().context.providers()

    @app.get("/result", response_model=RoundResult)
    async def get_result():
        """The latest completed round."""
        return _latest()

    @app.get("/result/{family}", response_model=FamilyVerdict)
    async def get_family_result(family: AddressFamily):
        """Verdict for one address family in the latest completed round."""
        return _latest().verdicts[family]

    return app


def run_server(host: str = None, port: int = None):
    """Run the API server."""
    if host is None:
        host = os.getenv("IPQUORUM_HOST", "0.0.0.0")
    if port is None:
        port = int(os.getenv("IPQUORUM_PORT", "8090"))

    logger.info("Starting ipquorum status API", host=host, port=port)
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    run_server()
