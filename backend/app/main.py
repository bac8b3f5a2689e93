from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import HelpdeskException
from app.core.logging import setup_logging
from app.routers import ai, ai_admin
from app.services.ai.learning_worker import start_learning_sweep, stop_learning_sweep
from app.services.ai.pipeline import get_pipeline


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        pipeline = get_pipeline()
        if settings.AI_LEARNING_WORKER_ENABLED:
            pipeline.worker.start()
        await start_learning_sweep(pipeline.learning, pipeline.settings_provider)
        try:
            yield
        finally:
            await stop_learning_sweep()
            pipeline.worker.stop()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ai.router, prefix="/api/ai", tags=["ai"])
    # Administrator-only diagnostics, cost control and knowledge review.
    app.include_router(ai_admin.router, prefix="/api/ai/admin", tags=["ai-admin"])

    @app.exception_handler(HelpdeskException)
    async def handle_helpdesk_exception(_: Request, exc: HelpdeskException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
