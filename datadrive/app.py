# datadrive/app.py
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import init_db
from .errors import (
    DuplicateNameError,
    NotFoundError,
    ParseError,
    RelocationError,
    RowNotFoundError,
    UnmarshalError,
    UploadError,
)
from .logging import get_logger
from .routers import datasets as datasets_router
from .routers import edit_requests as edit_requests_router
from .routers import media as media_router

logger = get_logger(__name__)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ParseError)
    @app.exception_handler(UploadError)
    async def bad_input(request: Request, exc: Exception):
        return _error(400, exc)

    @app.exception_handler(DuplicateNameError)
    async def duplicate(request: Request, exc: DuplicateNameError):
        return _error(409, exc)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(RelocationError)
    async def relocation_failed(request: Request, exc: RelocationError):
        # request stays pending, the caller may retry
        return _error(502, exc)

    @app.exception_handler(UnmarshalError)
    @app.exception_handler(RowNotFoundError)
    async def store_corruption(request: Request, exc: Exception):
        logger.exception("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    app = FastAPI(title="DataDrive Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_db()

    app.include_router(datasets_router.router)
    app.include_router(edit_requests_router.router)
    app.include_router(media_router.router)
    register_exception_handlers(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
