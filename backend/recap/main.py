from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler

from recap.config import Settings
from recap.models.base import init_db
from recap.api.integrations import router as integrations_router
from recap.api.meetings import router as meetings_router
from recap.deps import build_pipeline_runner
from recap.services.pipeline import PipelineRunner


def _configure_logging(settings: Settings) -> None:
    log_file = settings.logs_dir / "backend.log"
    root = logging.getLogger()
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
        handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.INFO)


def create_app(settings: Optional[Settings] = None, runner: Optional[PipelineRunner] = None) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(title="Meeting Recap Backend", version="0.1.0")
    app.state.settings = settings
    app.state.pipeline_runner = runner

    # CORS for the local web client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        try:
            _configure_logging(settings)
        except OSError:
            logging.getLogger("recap").warning("File logging unavailable; using default handlers")
        init_db()
        if app.state.pipeline_runner is None:
            app.state.pipeline_runner = build_pipeline_runner(settings)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        runner_ = app.state.pipeline_runner
        if runner_ is not None:
            # In-flight meetings finish; nothing survives a restart
            runner_.shutdown(wait=True)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(meetings_router)
    app.include_router(integrations_router)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("recap.api").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Meeting Recap Backend Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args()

    uvicorn.run(
        "recap.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
