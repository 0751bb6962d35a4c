"""Entry point for the outbound call bridge service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from api.schemas import ErrorResponse
from api.twilio_routes import router as twilio_router
from bridge.errors import BridgeError
from bridge.registry import CallSessionRegistry
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.registry = CallSessionRegistry()
    yield
    dropped = await app.state.registry.clear()
    if dropped:
        LOGGER.info("Released %d observer registrations on shutdown", dropped)


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Outbound Call Bridge",
    description="Bridges Twilio media streams to an ElevenLabs conversational agent.",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(twilio_router)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    LOGGER.warning("Rejected request to %s: %s", request.url.path, errors)
    return JSONResponse(status_code=400, content=ErrorResponse(error=detail).model_dump())


def main() -> None:
    LOGGER.info("[Server] Listening on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
