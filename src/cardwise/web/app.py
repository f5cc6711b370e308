"""FastAPI application for the Cardwise JSON API."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cardwise import __version__
from cardwise.core.errors import CardNotFoundError, InvalidInputError
from cardwise.web.routes import cards_router, review_router, stats_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Cardwise",
        description="Multi-tenant spaced repetition scheduling",
        version=__version__,
    )

    # Routes
    app.include_router(cards_router, prefix="/api/cards", tags=["cards"])
    app.include_router(review_router, prefix="/api", tags=["review"])
    app.include_router(stats_router, prefix="/api/stats", tags=["stats"])

    @app.exception_handler(CardNotFoundError)
    async def card_not_found(request: Request, exc: CardNotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(InvalidInputError)
    async def invalid_input(request: Request, exc: InvalidInputError):
        logger.debug("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=422, content={"error": str(exc)})

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


# Create the app instance for uvicorn
app = create_app()
