"""
FastAPI application factory for DocSpace.

Creates and configures the FastAPI app: the backend client, the optional
local form-field generator, the panel store and the routes.

Run with:
    uvicorn docspace.api.app:app --reload
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docspace.agent.generator import LLMFormFieldGenerator
from docspace.agent.llm_provider import get_llm
from docspace.api.routes import configure_routes, router
from docspace.client.backend import BackendClient
from docspace.core.session import PanelSessionStore

# Load environment variables from .env
load_dotenv()

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _is_truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _build_generator(backend: BackendClient):
    """Return a local LLM field generator if enabled, else None (use the backend)."""
    if not _is_truthy(os.getenv("LOCAL_FORM_GENERATION"), default=False):
        return None
    try:
        llm = get_llm()
    except Exception as e:
        logger.warning(
            "Failed to initialize LLM: %s. Falling back to backend form generation.",
            e,
        )
        return None
    logger.info("Local form generation enabled: %s", os.getenv("LLM_API_ENDPOINT", "not set"))
    return LLMFormFieldGenerator(llm, backend)


def create_app(backend: BackendClient | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    backend = backend or BackendClient()
    panel_timeout = int(os.getenv("PANEL_TIMEOUT_SECONDS", "1800"))
    panel_store = PanelSessionStore(timeout_seconds=panel_timeout)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info("DocSpace workspace starting up")
        logger.info("Document backend: %s", backend.base_url)
        logger.info("Panel idle timeout: %d seconds", panel_timeout)
        yield
        panel_store.clear()
        await backend.aclose()

    application = FastAPI(
        title="DocSpace",
        description="PDF document workspace: generated page forms and document chat",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS: allow all origins in development
    allowed_origins = os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configure_routes(panel_store, backend, _build_generator(backend))
    application.include_router(router, prefix="/api")

    return application


# Create the app instance (used by uvicorn)
app = create_app()
