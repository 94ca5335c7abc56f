"""
FastAPI application factory.
"""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api import gateway, matches, rooms
from config.settings import settings

logger = logging.getLogger(__name__)


async def http_exception_handler(request, exc: StarletteHTTPException):
    """Render errors as {"error": ...}, including routing 404/405."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request, exc: RequestValidationError):
    """Reject invalid query or path parameters with 400."""
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
    message = f"Invalid value for {field}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


def create_app(lifespan=None) -> FastAPI:
    """
    Build the API application.

    Args:
        lifespan: Lifespan context manager that installs services and
            starts background tasks; tests install services themselves

    Returns:
        FastAPI app
    """
    app = FastAPI(title="Matching API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(rooms.router)
    app.include_router(matches.router)
    app.include_router(gateway.router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
