import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from personagen.application import get_event_hub
from personagen.core.artifacts import ArtifactStore, configure_artifact_store
from personagen.core.logconfig import configure_logging
from personagen.infrastructure import (
    DirectoryCollector,
    HttpCollector,
    OpenAIChatClient,
    configure_collector,
    configure_inference_client,
)
from personagen.routes import characters, chat, events, jobs
from personagen.workers.pipeline import get_pipeline_worker

logger = logging.getLogger(__name__)


def _configure_collaborators() -> list:
    """Install collaborators from the environment; returns the clients to close at shutdown."""

    clients: list = []
    collector_url = os.getenv("COLLECTOR_URL")
    source_dir = os.getenv("COLLECTOR_SOURCE_DIR")
    if collector_url:
        collector = HttpCollector(
            collector_url,
            token=os.getenv("COLLECTOR_TOKEN") or None,
            max_pages=int(os.getenv("COLLECTOR_MAX_PAGES") or 5),
        )
        configure_collector(collector)
        clients.append(collector)
        logger.info("collecting from %s", collector_url)
    elif source_dir:
        configure_collector(DirectoryCollector(Path(source_dir)))
        logger.info("collecting from exports in %s", source_dir)

    api_key = os.getenv("OPENAI_API_KEY")
    if api_key:
        inference = OpenAIChatClient(
            api_key,
            model=os.getenv("OPENAI_MODEL") or "gpt-4",
            api_base=os.getenv("OPENAI_API_BASE") or "https://api.openai.com/v1",
        )
        configure_inference_client(inference)
        clients.append(inference)
    return clients


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_pipeline_worker().shutdown()
    get_event_hub().shutdown()
    for client in app.state.http_clients:
        client.close()


def create_app() -> FastAPI:
    configure_logging(os.getenv("LOG_LEVEL") or "INFO", os.getenv("LOG_FORMAT") or "text")

    app = FastAPI(title="Personagen Character API", version="0.1.0", lifespan=lifespan)

    configure_artifact_store(ArtifactStore())
    app.state.http_clients = _configure_collaborators()

    get_event_hub().queue_size = int(os.getenv("EVENT_QUEUE_SIZE") or 256)
    app.state.event_keepalive = float(os.getenv("EVENT_KEEPALIVE_SECONDS") or 15)

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router, prefix="/api")
    app.include_router(characters.router, prefix="/api")
    app.include_router(chat.router, prefix="/api")
    app.include_router(events.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Personagen Character API",
                "docs": "/docs",
                "logs": "/api/logs",
                "health": "/api/jobs",
            }
        )

    return app


app = create_app()
