"""
VetBridge API - FastAPI Application
Cloud side of the legacy practice-management sync bridge
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from vetbridge.api.v1 import bridge
from vetbridge.config import settings
from vetbridge.utils.logging_config import setup_logging

# Configure logging from environment variables (one-time setup)
setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="VetBridge API",
    version="0.1.0",
    description=(
        "Cloud endpoints for the on-premise legacy connector - "
        "idempotent record ingest and the cloud → legacy command mailbox"
    ),
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException as the bridge error envelope {"error": ...}"""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are payload errors (400), not 422"""
    errors = exc.errors()
    message = "Invalid payload"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()))
        message = f"Invalid payload: {location}: {errors[0].get('msg')}"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": "0.1.0",
        "service": "vetbridge-api",
    }


# Include routers
app.include_router(bridge.router)  # Bridge endpoints (ingest, pending exports, command ack)
