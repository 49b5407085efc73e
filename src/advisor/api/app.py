"""FastAPI application factory for the advisor JSON API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from advisor.api import routes
from advisor.exceptions import ConflictError, DocumentValidationError


async def _conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(content={"error": str(exc)}, status_code=409)


async def _validation_handler(
    request: Request, exc: DocumentValidationError
) -> JSONResponse:
    return JSONResponse(content={"error": str(exc)}, status_code=422)


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to start and stop the refresh scheduler.

    Returns:
        Configured FastAPI application. Route handlers read components
        (engine, knowledge_store, importer, scheduler, registry, history)
        from ``app.state``.
    """
    app = FastAPI(
        title="Strategy Advisor",
        lifespan=lifespan,
    )

    app.add_exception_handler(ConflictError, _conflict_handler)
    app.add_exception_handler(DocumentValidationError, _validation_handler)

    app.include_router(routes.router, prefix="/api")

    return app
