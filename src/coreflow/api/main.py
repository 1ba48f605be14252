"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coreflow import __version__
from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import build_services
from coreflow.api.error_handlers import register_error_handlers
from coreflow.api.routes import candidates, offers, profile, public, templates, workflows
from coreflow.config import Config, load_config
from coreflow.scheduler import init_scheduler, shutdown_scheduler
from coreflow.tools.email import EmailSender

log = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    sender: EmailSender | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    config = config or load_config()
    services = build_services(config, sender)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            init_scheduler(services.engine, services.offers, config.sweep_interval_seconds)
        yield
        shutdown_scheduler()
        services.db.close()

    app = FastAPI(title="CoreFlow Pipeline API", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    _authenticated = [Depends(get_current_user_id)]

    app.include_router(profile.router, prefix="/api", tags=["profile"], dependencies=_authenticated)
    app.include_router(candidates.router, prefix="/api/candidates", tags=["candidates"], dependencies=_authenticated)
    app.include_router(workflows.router, prefix="/api/workflows", tags=["workflows"], dependencies=_authenticated)
    app.include_router(templates.router, prefix="/api/templates", tags=["templates"], dependencies=_authenticated)
    app.include_router(offers.router, prefix="/api/offers", tags=["offers"], dependencies=_authenticated)
    app.include_router(public.router, prefix="/api/public/offers", tags=["public"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
