"""
Turn-taking control over the realtime speech session.

The realtime model is a conversational engine used here as a scripted
announcer. The controller makes sure it only ever speaks when told to:

- `speak()` pushes a verbatim instruction and requests one response.
- After every transcript and every finished utterance the session is locked
  again (cancel + "do not respond" instruction).
- Any output that was not requested is cancelled and never forwarded.

Capture is hold-to-talk: `start_capture()` on press, `stop_capture()` on
release. Holds shorter than `min_hold_ms` are treated as accidental taps.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import time
from typing import Callable, Optional

import structlog

from src.signup.audio import get_audio_duration_ms, pcm16_level
from src.signup.config import Config, get_config
from src.signup.language import Locale
from src.signup.realtime_protocol import (
    AudioDelta,
    RealtimeError,
    RealtimeEvent,
    RealtimeEventKind,
    ResponseCreated,
    SpeechCompleted,
    SpeechTextDelta,
    SpeechTranscriptDone,
    TranscriptCompleted,
)
from src.signup.steps import LOCK_INSTRUCTION, VERBATIM_INSTRUCTION
from src.signup.transport import EventHandler, RealtimeTransport, TransportError

logger = structlog.get_logger(__name__)


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class SpeechKind(str, Enum):
    GREETING = "greeting"
    QUESTION = "question"
    REMARK = "remark"


class CaptureLifecycle(str, Enum):
    IDLE = "idle"
    HOLDING = "holding"
    COMMITTING = "committing"


class TurnTakingListener:
    """
    Receives controller notifications. Every hook defaults to a no-op.
    """

    async def on_status(self, status: ConnectionStatus) -> None:
        pass

    async def on_transcript(self, text: str) -> None:
        pass

    async def on_speech_finished(self, kind: SpeechKind) -> None:
        pass

    async def on_speech_text(self, text: str, final: bool) -> None:
        pass

    async def on_audio(self, pcm: bytes) -> None:
        pass

    async def on_countdown(self, remaining_seconds: int) -> None:
        pass

    async def on_level(self, level: float) -> None:
        pass

    async def on_capture_ended(self, committed: bool) -> None:
        pass

    async def on_transport_failure(self, message: str) -> None:
        pass


TransportFactory = Callable[[EventHandler], RealtimeTransport]
Clock = Callable[[], float]


class TurnTakingController:
    def __init__(
        self,
        transport_factory: TransportFactory,
        listener: TurnTakingListener,
        *,
        config: Optional[Config] = None,
        locale: Locale = "en",
        clock: Clock = time.monotonic,
    ):
        self.config = config or get_config()
        self.locale: Locale = locale
        self._transport_factory = transport_factory
        self._listener = listener
        self._clock = clock

        self._transport: Optional[RealtimeTransport] = None
        self._status = ConnectionStatus.IDLE
        self._intentional = False
        self._speech_kind: Optional[SpeechKind] = None
        self._response_id: Optional[str] = None
        self._drift_cancelled: set[Optional[str]] = set()

        self._capture = CaptureLifecycle.IDLE
        self._hold_started_at = 0.0
        self._captured_ms = 0.0
        self._countdown_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def intentional(self) -> bool:
        return self._intentional

    @property
    def speech_kind(self) -> Optional[SpeechKind]:
        return self._speech_kind

    @property
    def capture(self) -> CaptureLifecycle:
        return self._capture

    @property
    def transport(self) -> Optional[RealtimeTransport]:
        return self._transport

    async def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        await self._listener.on_status(status)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        if self._status == ConnectionStatus.CONNECTING:
            return False
        if self._status != ConnectionStatus.IDLE:
            return True

        await self._set_status(ConnectionStatus.CONNECTING)
        if self._transport is None:
            self._transport = self._transport_factory(self.handle_event)

        try:
            await self._transport.connect()
        except TransportError as e:
            logger.warning("Speech session unavailable", error=str(e))
            await self._set_status(ConnectionStatus.IDLE)
            await self._listener.on_transport_failure(str(e))
            return False

        self._reset_turn()
        await self._set_status(ConnectionStatus.READY)
        return True

    async def reconnect(self) -> bool:
        await self.teardown()
        return await self.connect()

    async def teardown(self) -> None:
        self._cancel_countdown()
        self._capture = CaptureLifecycle.IDLE
        self._reset_turn()

        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.teardown()
        self._status = ConnectionStatus.IDLE

    def _reset_turn(self) -> None:
        self._intentional = False
        self._speech_kind = None
        self._response_id = None
        self._drift_cancelled.clear()

    def _is_open(self) -> bool:
        return self._transport is not None and self._transport.is_open

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def speak(self, text: str, kind: SpeechKind) -> bool:
        """Have the model say exactly `text`. False when the channel is not open."""
        if not text or not self._is_open():
            logger.warning("Cannot speak: speech channel not open", kind=kind.value)
            return False

        self._intentional = True
        self._speech_kind = kind
        self._response_id = None
        self._drift_cancelled.clear()
        await self._set_status(ConnectionStatus.SPEAKING)

        self._transport.send_instruction({"instructions": VERBATIM_INSTRUCTION.format(self.locale, text=text)})
        self._transport.request_response()
        logger.debug("Scripted speech requested", kind=kind.value, chars=len(text))
        return True

    def _lock(self) -> None:
        if not self._is_open():
            return
        self._transport.cancel_response()
        self._transport.send_instruction({"instructions": LOCK_INSTRUCTION.get(self.locale)})

    def _is_foreign(self, response_id: Optional[str]) -> bool:
        return bool(self._response_id and response_id and response_id != self._response_id)

    def _cancel_drift(self, response_id: Optional[str]) -> None:
        if response_id in self._drift_cancelled:
            return
        self._drift_cancelled.add(response_id)
        logger.info("Cancelling unsolicited model output", response_id=response_id)
        if self._is_open():
            self._transport.cancel_response()

    async def _finish_speech(self) -> None:
        kind = self._speech_kind or SpeechKind.REMARK
        self._intentional = False
        self._speech_kind = None
        self._response_id = None
        await self._set_status(ConnectionStatus.READY)
        self._lock()
        await self._listener.on_speech_finished(kind)

    # ------------------------------------------------------------------
    # Realtime events
    # ------------------------------------------------------------------

    async def handle_event(self, event: RealtimeEvent) -> None:
        kind = event.kind

        if kind == RealtimeEventKind.TRANSCRIPT_COMPLETED:
            await self._on_transcript(event)
        elif kind in (RealtimeEventKind.SPEECH_TEXT_DELTA, RealtimeEventKind.SPEECH_TRANSCRIPT_DONE):
            await self._on_speech_text(event)
        elif kind == RealtimeEventKind.AUDIO_DELTA:
            await self._on_audio(event)
        elif kind == RealtimeEventKind.RESPONSE_CREATED:
            self._on_response_created(event)
        elif kind == RealtimeEventKind.SPEECH_COMPLETED:
            await self._on_speech_completed(event)
        elif kind == RealtimeEventKind.ERROR:
            await self._on_error(event)

    async def _on_transcript(self, event: TranscriptCompleted) -> None:
        self._lock()
        self._capture = CaptureLifecycle.IDLE
        if not self._intentional:
            await self._set_status(ConnectionStatus.READY)
        await self._listener.on_transcript(event.text)

    async def _on_speech_text(self, event: SpeechTextDelta | SpeechTranscriptDone) -> None:
        if not self._intentional or self._is_foreign(event.response_id):
            self._cancel_drift(event.response_id)
            return
        final = event.kind == RealtimeEventKind.SPEECH_TRANSCRIPT_DONE
        await self._listener.on_speech_text(event.text, final)

    async def _on_audio(self, event: AudioDelta) -> None:
        if not self._intentional or self._is_foreign(event.response_id):
            self._cancel_drift(event.response_id)
            return
        if event.audio:
            await self._listener.on_audio(event.audio)

    def _on_response_created(self, event: ResponseCreated) -> None:
        if self._intentional and self._response_id is None:
            self._response_id = event.response_id
            return
        if not self._intentional or self._is_foreign(event.response_id):
            self._cancel_drift(event.response_id)

    async def _on_speech_completed(self, event: SpeechCompleted) -> None:
        if not self._intentional or self._is_foreign(event.response_id):
            logger.info("Ignoring unsolicited response completion", response_id=event.response_id)
            self._lock()
            return
        await self._finish_speech()

    async def _on_error(self, event: RealtimeError) -> None:
        if event.is_benign:
            logger.debug("Benign realtime error", code=event.code, message=event.message)
            return

        if event.fatal:
            logger.error("Speech session failed", code=event.code, message=event.message)
            await self.teardown()
            await self._listener.on_status(ConnectionStatus.IDLE)
            await self._listener.on_transport_failure(event.message)
            return

        logger.warning("Realtime error", code=event.code, message=event.message)
        if self._intentional:
            # Treat as finished so the script never stalls on a lost utterance.
            await self._finish_speech()
            return
        if self._status == ConnectionStatus.PROCESSING:
            # The committed utterance will never be transcribed.
            self._capture = CaptureLifecycle.IDLE
            await self._set_status(ConnectionStatus.READY)
            await self._listener.on_capture_ended(False)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def start_capture(self) -> bool:
        if self._status != ConnectionStatus.READY or self._capture != CaptureLifecycle.IDLE:
            return False
        if not self._is_open():
            return False

        self._transport.clear_captured_audio()
        self._transport.set_capture(True)
        self._capture = CaptureLifecycle.HOLDING
        self._hold_started_at = self._clock()
        self._captured_ms = 0.0
        await self._set_status(ConnectionStatus.LISTENING)

        max_seconds = int(self.config.max_record_seconds)
        await self._listener.on_countdown(max_seconds)
        self._countdown_task = asyncio.create_task(self._countdown(max_seconds))
        return True

    async def stop_capture(self, hold_duration_ms: Optional[float] = None) -> bool:
        """
        Release the hold. True when the utterance was committed.

        No-op unless currently holding, so a second release does nothing.
        """
        if self._capture != CaptureLifecycle.HOLDING:
            return False
        self._capture = CaptureLifecycle.COMMITTING
        self._cancel_countdown()

        if hold_duration_ms is None:
            hold_duration_ms = (self._clock() - self._hold_started_at) * 1000

        transport = self._transport
        if transport is not None:
            transport.set_capture(False)

        if hold_duration_ms < self.config.min_hold_ms or transport is None or not transport.is_open:
            if transport is not None:
                transport.clear_captured_audio()
            self._capture = CaptureLifecycle.IDLE
            await self._set_status(ConnectionStatus.READY if self._is_open() else ConnectionStatus.IDLE)
            logger.debug("Hold discarded", hold_ms=int(hold_duration_ms))
            await self._listener.on_capture_ended(False)
            return False

        transport.commit_captured_audio()
        await self._set_status(ConnectionStatus.PROCESSING)
        logger.debug("Hold committed", hold_ms=int(hold_duration_ms), audio_ms=int(self._captured_ms))
        await self._listener.on_capture_ended(True)
        return True

    async def feed_audio(self, pcm: bytes) -> None:
        """Forward a microphone frame while holding and report the input level."""
        if self._capture != CaptureLifecycle.HOLDING or not pcm:
            return
        if self._transport is not None:
            self._transport.push_audio(pcm)
            self._captured_ms += get_audio_duration_ms(pcm)
        await self._listener.on_level(pcm16_level(pcm))

    async def _countdown(self, max_seconds: int) -> None:
        poll_s = max(0.01, self.config.countdown_poll_ms / 1000.0)
        last_reported = max_seconds
        try:
            while self._capture == CaptureLifecycle.HOLDING:
                await asyncio.sleep(poll_s)
                if self._capture != CaptureLifecycle.HOLDING:
                    return
                elapsed = self._clock() - self._hold_started_at
                remaining = max(0, max_seconds - int(elapsed))
                if remaining != last_reported:
                    last_reported = remaining
                    await self._listener.on_countdown(remaining)
                if remaining <= 0:
                    logger.info("Hold reached max record time", max_seconds=max_seconds)
                    await self.stop_capture()
                    return
        except asyncio.CancelledError:
            pass

    def _cancel_countdown(self) -> None:
        task, self._countdown_task = self._countdown_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
