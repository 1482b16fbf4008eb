"""
Session transport for the OpenAI Realtime speech session.

One `RealtimeTransport` owns one realtime session:

    AudioSource (client mic frames) -> input_audio_buffer.append -> OpenAI Realtime
    OpenAI Realtime server events -> parse_realtime_event -> handler (turn-taking controller)

The session is negotiated through a signaling endpoint that hands back the
websocket URL and an ephemeral client secret, so the long-lived API key never
reaches the transport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
import websockets

from src.signup.audio import AudioSource
from src.signup.realtime_protocol import (
    RealtimeError,
    RealtimeEvent,
    build_session_config,
    create_input_audio_append,
    create_input_audio_clear,
    create_input_audio_commit,
    create_response_cancel,
    create_response_create,
    create_session_update,
    parse_realtime_event,
    serialize,
)

logger = structlog.get_logger(__name__)


class TransportError(Exception):
    """Base class for realtime transport failures."""
    pass


class SignalingError(TransportError):
    """Raised when the signaling endpoint rejects or fails the negotiation."""
    pass


class TransportConnectError(TransportError):
    """Raised when `connect()` fails at any sub-step. The transport is back to idle."""
    pass


class TransportLifecycle(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TEARING_DOWN = "tearing_down"


@dataclass(frozen=True)
class SessionOffer:
    model: str
    voice: str
    transcription_model: str
    instructions: str
    language: str = "en"

    def to_payload(self) -> dict[str, Any]:
        return {
            "offer": {
                "model": self.model,
                "voice": self.voice,
                "transcription_model": self.transcription_model,
                "instructions": self.instructions,
            },
            "language": self.language,
        }


@dataclass(frozen=True)
class SessionAnswer:
    url: str
    client_secret: str
    expires_at: Optional[int] = None


class SignalingClient:
    """
    Negotiates a realtime session with the signaling endpoint.

    No retry policy: a failed negotiation surfaces as `SignalingError` and the
    caller decides whether to try again.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def negotiate(self, offer: SessionOffer) -> SessionAnswer:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=offer.to_payload(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=offer.to_payload())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise SignalingError(f"Signaling endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SignalingError(f"Signaling request failed: {e}") from e
        except ValueError as e:
            raise SignalingError("Signaling endpoint returned invalid JSON") from e

        answer = data.get("answer") if isinstance(data, dict) else None
        if not isinstance(answer, dict) or not answer.get("url") or not answer.get("client_secret"):
            raise SignalingError("Signaling answer is missing url or client_secret")

        expires_at = answer.get("expires_at")
        return SessionAnswer(
            url=str(answer["url"]),
            client_secret=str(answer["client_secret"]),
            expires_at=int(expires_at) if isinstance(expires_at, (int, float)) else None,
        )


EventHandler = Callable[[RealtimeEvent], Awaitable[None]]
WebSocketConnector = Callable[[str, dict[str, str]], Awaitable[Any]]


async def _default_connect_ws(url: str, headers: dict[str, str]) -> Any:
    return await websockets.connect(url, additional_headers=headers, open_timeout=10)


class RealtimeTransport:
    """
    Owns one realtime session: microphone, websocket and the send/receive/audio tasks.

    Every outbound call is a fire-and-forget queue put. Nothing is sent unless
    the lifecycle is CONNECTED.
    """

    def __init__(
        self,
        *,
        audio_source: AudioSource,
        signaling: SignalingClient,
        offer: SessionOffer,
        on_event: EventHandler,
        connect_ws: Optional[WebSocketConnector] = None,
        send_queue_size: int = 2000,
    ):
        self._audio_source = audio_source
        self._signaling = signaling
        self._offer = offer
        self._on_event = on_event
        self._connect_ws = connect_ws or _default_connect_ws
        self._send_queue_size = send_queue_size

        self._lifecycle = TransportLifecycle.IDLE
        self._ws: Optional[Any] = None
        self._send_queue: asyncio.Queue[Optional[dict]] = asyncio.Queue(maxsize=send_queue_size)
        self._send_task: Optional[asyncio.Task] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._audio_task: Optional[asyncio.Task] = None
        self._capture_enabled = False
        self._answer: Optional[SessionAnswer] = None

    @property
    def lifecycle(self) -> TransportLifecycle:
        return self._lifecycle

    @property
    def is_open(self) -> bool:
        return self._lifecycle == TransportLifecycle.CONNECTED and self._ws is not None

    @property
    def capture_enabled(self) -> bool:
        return self._capture_enabled

    async def connect(self) -> None:
        if self._lifecycle == TransportLifecycle.CONNECTED:
            return
        if self._lifecycle != TransportLifecycle.IDLE:
            raise TransportConnectError(f"Cannot connect while {self._lifecycle.value}")

        self._lifecycle = TransportLifecycle.CONNECTING
        try:
            await self._audio_source.acquire()
            self._answer = await self._signaling.negotiate(self._offer)
            headers = {
                "Authorization": f"Bearer {self._answer.client_secret}",
                "OpenAI-Beta": "realtime=v1",
            }
            self._ws = await self._connect_ws(self._answer.url, headers)
        except Exception as e:
            logger.warning("Realtime connect failed", error=str(e), error_type=type(e).__name__)
            await self._release_resources()
            self._lifecycle = TransportLifecycle.IDLE
            raise TransportConnectError(str(e)) from e

        # Fresh queue per connection so a stale poison pill from a previous teardown never remains.
        self._send_queue = asyncio.Queue(maxsize=self._send_queue_size)
        self._capture_enabled = False
        self._lifecycle = TransportLifecycle.CONNECTED

        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._receive_loop())
        self._audio_task = asyncio.create_task(self._audio_pump())

        self.send_instruction(
            build_session_config(
                instructions=self._offer.instructions,
                voice=self._offer.voice,
                transcription_model=self._offer.transcription_model,
                language=self._offer.language,
            )
        )
        logger.info(
            "Realtime session connected",
            model=self._offer.model,
            voice=self._offer.voice,
            language=self._offer.language,
        )

    def send_instruction(self, session: dict[str, Any]) -> bool:
        return self._enqueue(create_session_update(session))

    def request_response(self) -> bool:
        return self._enqueue(create_response_create())

    def cancel_response(self) -> bool:
        return self._enqueue(create_response_cancel())

    def clear_captured_audio(self) -> bool:
        return self._enqueue(create_input_audio_clear())

    def commit_captured_audio(self) -> bool:
        return self._enqueue(create_input_audio_commit())

    def set_capture(self, enabled: bool) -> None:
        self._capture_enabled = bool(enabled) and self.is_open

    def push_audio(self, pcm: bytes) -> None:
        """Hand a client-captured frame to the audio source."""
        if self.is_open:
            self._audio_source.push(pcm)

    async def teardown(self) -> None:
        if self._lifecycle in (TransportLifecycle.IDLE, TransportLifecycle.TEARING_DOWN):
            return

        self._lifecycle = TransportLifecycle.TEARING_DOWN
        self._capture_enabled = False

        current = asyncio.current_task()
        tasks = [t for t in (self._send_task, self._recv_task, self._audio_task) if t and t is not current]
        for task in tasks:
            if not task.done():
                task.cancel()
        try:
            self._send_queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._release_resources()

        self._send_task = None
        self._recv_task = None
        self._audio_task = None
        self._lifecycle = TransportLifecycle.IDLE
        logger.info("Realtime session torn down")

    async def _release_resources(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Realtime websocket close failed", error=str(e))
        try:
            await self._audio_source.release()
        except Exception as e:
            logger.warning("Audio source release failed", error=str(e))

    def _enqueue(self, message: dict[str, Any]) -> bool:
        if not self.is_open:
            logger.debug("Realtime channel not open; dropping event", type=message.get("type"))
            return False
        try:
            self._send_queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Realtime send queue full; dropping event", type=message.get("type"))
            return False
        return True

    async def _send_loop(self) -> None:
        ws = self._ws
        if not ws:
            return

        try:
            while True:
                item = await self._send_queue.get()
                if item is None:
                    break
                try:
                    await ws.send(serialize(item))
                except Exception as e:
                    logger.error("Realtime send failed", error=str(e), type=item.get("type"))
                    break
        except asyncio.CancelledError:
            pass

    async def _receive_loop(self) -> None:
        ws = self._ws
        if not ws:
            return

        close_reason = "Realtime session closed"
        try:
            async for raw in ws:
                try:
                    event = parse_realtime_event(raw)
                except ValueError as e:
                    logger.warning("Dropping malformed realtime event", error=str(e))
                    continue
                if event is None:
                    continue
                try:
                    await self._on_event(event)
                except Exception as e:
                    logger.error("Realtime event handler failed", error=str(e), kind=event.kind.value)
        except asyncio.CancelledError:
            return
        except Exception as e:
            close_reason = f"Realtime session lost: {e}"
            logger.error("Realtime receive loop failed", error=str(e))

        if self._lifecycle != TransportLifecycle.CONNECTED:
            return
        try:
            await self._on_event(RealtimeError(message=close_reason, code="connection_closed", fatal=True))
        except Exception as e:
            logger.error("Realtime close handler failed", error=str(e))

    async def _audio_pump(self) -> None:
        try:
            async for frame in self._audio_source.frames():
                if self._capture_enabled and self.is_open:
                    self._enqueue(create_input_audio_append(frame))
        except asyncio.CancelledError:
            pass
