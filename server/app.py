"""
FastAPI server for the Voice Signup agent.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- POST /session: Signaling endpoint; mints an ephemeral OpenAI Realtime session
- WS /ws: Browser signup session
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState
import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
import structlog
import uvicorn

from src.signup.config import get_config, init_config, ConfigError
from src.signup.language import normalize_locale


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_connections: int = 0
    active_connections: int = 0
    sessions_negotiated: int = 0
    signups_completed: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "sessions_negotiated": self.sessions_negotiated,
            "signups_completed": self.signups_completed,
            "errors": self.errors,
        }


metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Voice Signup server...")

    try:
        config = init_config()
        configure_logging(config.log_level)
        logger.info(
            "Server ready",
            port=config.port,
            public_host=config.public_host,
            signaling_url=config.resolved_signaling_url,
        )
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


app = FastAPI(
    title="Voice Signup Agent",
    description="Voice-driven account signup over the OpenAI Realtime API",
    version="1.0.0",
    lifespan=lifespan,
)


class SessionOfferBody(BaseModel):
    # Model, voice and transcription model always come from config; only the
    # instructions are taken from the client.
    model_config = ConfigDict(extra="ignore")

    instructions: str = ""


class SessionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    offer: SessionOfferBody = SessionOfferBody()
    language: Optional[str] = None


class ClientSecret(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: str
    expires_at: Optional[int] = None


class RealtimeSessionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = None
    client_secret: ClientSecret


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_connections": metrics.active_connections,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.post("/session")
async def create_realtime_session(request: Request) -> JSONResponse:
    """
    Signaling endpoint.

    Exchanges the client's session offer for an ephemeral client secret so the
    API key never leaves the server. Answers with the realtime websocket URL.
    """
    config = get_config()

    try:
        body = SessionRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid session offer: {e}"})

    language = normalize_locale(body.language, default=config.default_language)
    model = config.openai_realtime_model
    payload = {
        "model": model,
        "voice": config.openai_realtime_voice,
        "instructions": body.offer.instructions,
        "modalities": ["audio", "text"],
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {
            "model": config.openai_transcription_model,
            "language": language,
        },
        "turn_detection": None,
    }

    try:
        async with httpx.AsyncClient(timeout=config.signaling_timeout_seconds) as client:
            response = await client.post(
                config.openai_sessions_url,
                json=payload,
                headers={"Authorization": f"Bearer {config.openai_api_key}"},
            )
        response.raise_for_status()
        session = RealtimeSessionResponse.model_validate(response.json())
    except httpx.HTTPStatusError as e:
        logger.error("Realtime session rejected", status_code=e.response.status_code)
        metrics.errors += 1
        return JSONResponse(status_code=502, content={"error": "Realtime session rejected"})
    except httpx.HTTPError as e:
        logger.error("Realtime session request failed", error=str(e))
        metrics.errors += 1
        return JSONResponse(status_code=502, content={"error": "Realtime session unavailable"})
    except (ValueError, ValidationError) as e:
        logger.error("Unexpected realtime session response", error=str(e))
        metrics.errors += 1
        return JSONResponse(status_code=502, content={"error": "Unexpected realtime session response"})

    metrics.sessions_negotiated += 1
    logger.info("Realtime session negotiated", model=model, language=language)

    return JSONResponse(
        content={
            "answer": {
                "url": str(httpx.URL(config.openai_realtime_url, params={"model": model})),
                "client_secret": session.client_secret.value,
                "expires_at": session.client_secret.expires_at,
            }
        }
    )


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Browser signup WebSocket endpoint.

    One signup session per connection.
    """
    await websocket.accept()

    metrics.total_connections += 1
    metrics.active_connections += 1

    connection_id = f"signup_{int(time.time() * 1000)}"
    logger.info(
        "WebSocket connected",
        connection_id=connection_id,
        active_connections=metrics.active_connections,
    )

    from src.signup.session import create_session

    session = None

    async def send_message(message: str) -> None:
        """Send a message to the WebSocket."""
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.error("Failed to send WebSocket message", error=str(e))

    try:
        session = await create_session(send_message)

        while True:
            try:
                message = await websocket.receive_text()
                await session.handle_message(message)

            except WebSocketDisconnect:
                logger.info("WebSocket disconnected", connection_id=connection_id)
                break
            except Exception as e:
                logger.error(
                    "Error handling WebSocket message",
                    connection_id=connection_id,
                    error=str(e),
                )
                metrics.errors += 1
                if websocket.client_state != WebSocketState.CONNECTED:
                    break
                continue

    except Exception as e:
        logger.error(
            "WebSocket handler error",
            connection_id=connection_id,
            error=str(e),
        )
        metrics.errors += 1

    finally:
        if session:
            try:
                await session.stop()
                if session.completed:
                    metrics.signups_completed += 1
            except Exception as e:
                logger.error("Error stopping signup session", error=str(e))

        metrics.active_connections -= 1

        logger.info(
            "Signup connection ended",
            connection_id=connection_id,
            active_connections=metrics.active_connections,
        )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
