"""
Per-connection signup session.

Connects one browser WebSocket to the interview:

    Browser -> client_protocol -> SignupSession -> SignupOrchestrator
    SignupOrchestrator -> TurnTakingController -> RealtimeTransport -> OpenAI Realtime

The orchestrator is created on the client's "start" message so the session
locale can follow the UI language.
"""

from __future__ import annotations

import random
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

import structlog

from src.signup.accounts import AccountCreator, SupabaseAccountCreator
from src.signup.audio import ClientAudioSource
from src.signup.client_protocol import (
    AudioBlockedMessage,
    AudioMessage,
    AudioUnlockedMessage,
    BeginMessage,
    ConfirmMessage,
    EditChangeMessage,
    EditMessage,
    HoldEndMessage,
    HoldStartMessage,
    ReconnectMessage,
    RetryMessage,
    SkipMessage,
    StartMessage,
    StopMessage,
    SubmitMessage,
    TermsSubmitMessage,
    TermsToggleMessage,
    message_type,
    parse_client_message,
)
from src.signup.config import Config, get_config
from src.signup.language import Locale, normalize_locale
from src.signup.orchestrator import SignupOrchestrator
from src.signup.steps import BASE_INSTRUCTIONS, LOCK_INSTRUCTION, Chooser
from src.signup.transport import (
    EventHandler,
    RealtimeTransport,
    SessionOffer,
    SignalingClient,
    WebSocketConnector,
)
from src.signup.turn_taking import TurnTakingController, TurnTakingListener

logger = structlog.get_logger(__name__)

SendMessage = Callable[[str], Awaitable[None]]


class SessionLifecycle(str, Enum):
    NEW = "new"
    RUNNING = "running"
    STOPPED = "stopped"


def build_offer(config: Config, locale: Locale) -> SessionOffer:
    """Session offer carrying the persona and the initial lock."""
    instructions = " ".join(
        (
            BASE_INSTRUCTIONS.format(locale, agent_name=config.agent_name),
            LOCK_INSTRUCTION.get(locale),
        )
    )
    return SessionOffer(
        model=config.openai_realtime_model,
        voice=config.openai_realtime_voice,
        transcription_model=config.openai_transcription_model,
        instructions=instructions,
        language=locale,
    )


class SignupSession:
    """
    One browser connection.

    `handle_message()` never raises: malformed or out-of-order client messages
    are logged and dropped.
    """

    def __init__(
        self,
        send_message: SendMessage,
        *,
        config: Optional[Config] = None,
        account_creator: Optional[AccountCreator] = None,
        signaling: Optional[SignalingClient] = None,
        connect_ws: Optional[WebSocketConnector] = None,
        choose: Chooser = random.choice,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or get_config()
        self._send_message = send_message
        self._account_creator = account_creator
        self._signaling = signaling
        self._connect_ws = connect_ws
        self._choose = choose
        self._clock = clock

        self._lifecycle = SessionLifecycle.NEW
        self._orchestrator: Optional[SignupOrchestrator] = None
        self._started_at = 0.0

    @property
    def lifecycle(self) -> SessionLifecycle:
        return self._lifecycle

    @property
    def orchestrator(self) -> Optional[SignupOrchestrator]:
        return self._orchestrator

    @property
    def completed(self) -> bool:
        return self._orchestrator is not None and self._orchestrator.state.completed

    def _build_orchestrator(self, locale: Locale) -> SignupOrchestrator:
        config = self.config
        audio_source = ClientAudioSource()
        offer = build_offer(config, locale)
        signaling = self._signaling or SignalingClient(
            config.resolved_signaling_url,
            timeout=config.signaling_timeout_seconds,
        )

        def transport_factory(on_event: EventHandler) -> RealtimeTransport:
            return RealtimeTransport(
                audio_source=audio_source,
                signaling=signaling,
                offer=offer,
                on_event=on_event,
                connect_ws=self._connect_ws,
            )

        def controller_factory(listener: TurnTakingListener) -> TurnTakingController:
            return TurnTakingController(
                transport_factory,
                listener,
                config=config,
                locale=locale,
                clock=self._clock,
            )

        return SignupOrchestrator(
            controller_factory=controller_factory,
            account_creator=self._account_creator or SupabaseAccountCreator.from_config(config),
            send_message=self._send_message,
            config=config,
            locale=locale,
            choose=self._choose,
        )

    async def start(self, language: Optional[str] = None) -> bool:
        """Create the orchestrator and open the speech session. Only the first call counts."""
        if self._lifecycle != SessionLifecycle.NEW:
            return False

        locale = normalize_locale(language, default=self.config.default_language)
        self._orchestrator = self._build_orchestrator(locale)
        self._lifecycle = SessionLifecycle.RUNNING
        self._started_at = time.time()
        logger.info("Signup session started", locale=locale)

        return await self._orchestrator.start()

    async def stop(self) -> None:
        if self._lifecycle == SessionLifecycle.STOPPED:
            return
        self._lifecycle = SessionLifecycle.STOPPED

        if self._orchestrator is not None:
            await self._orchestrator.close()
            logger.info(
                "Signup session stopped",
                completed=self.completed,
                step=self._orchestrator.state.step.id.value,
                duration_seconds=round(time.time() - self._started_at, 2),
            )

    async def handle_message(self, raw_message: Union[str, bytes]) -> None:
        try:
            message = parse_client_message(raw_message)
        except ValueError as e:
            logger.warning("Failed to parse client message", error=str(e))
            return

        try:
            await self._route(message)
        except Exception as e:
            logger.error(
                "Client message handler failed",
                type=message_type(message).value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _route(self, message) -> None:
        if isinstance(message, StartMessage):
            await self.start(message.language)
            return
        if isinstance(message, StopMessage):
            await self.stop()
            return

        orchestrator = self._orchestrator
        if orchestrator is None or self._lifecycle != SessionLifecycle.RUNNING:
            logger.debug("Ignoring client message outside a running session", type=message_type(message).value)
            return

        if isinstance(message, AudioMessage):
            await orchestrator.feed_audio(message.pcm)

        elif isinstance(message, HoldStartMessage):
            await orchestrator.hold_start()

        elif isinstance(message, HoldEndMessage):
            await orchestrator.hold_end(message.duration_ms)

        elif isinstance(message, BeginMessage):
            await orchestrator.begin()

        elif isinstance(message, ConfirmMessage):
            await orchestrator.confirm()

        elif isinstance(message, EditMessage):
            await orchestrator.edit()

        elif isinstance(message, EditChangeMessage):
            await orchestrator.update_edit(message.value)

        elif isinstance(message, RetryMessage):
            await orchestrator.retry()

        elif isinstance(message, SkipMessage):
            await orchestrator.skip()

        elif isinstance(message, SubmitMessage):
            await orchestrator.submit_typed(message.value)

        elif isinstance(message, TermsToggleMessage):
            await orchestrator.toggle_terms(message.checked)

        elif isinstance(message, TermsSubmitMessage):
            await orchestrator.submit_terms()

        elif isinstance(message, ReconnectMessage):
            await orchestrator.reconnect()

        elif isinstance(message, AudioBlockedMessage):
            await orchestrator.audio_blocked()

        elif isinstance(message, AudioUnlockedMessage):
            await orchestrator.unlock_audio()


async def create_session(send_message: SendMessage, **kwargs) -> SignupSession:
    """
    Create a new signup session.

    The speech session opens when the client sends "start".
    """
    return SignupSession(send_message, **kwargs)
