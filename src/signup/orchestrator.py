"""
Step orchestration for the voice signup interview.

The interview is a pure reducer: `reduce(state, message, env)` returns the next
`SignupState` plus a tuple of effects (speak, schedule, create account, report
an error, signal completion). `SignupOrchestrator` is the async driver that
feeds controller events and user actions into the reducer and executes the
effects it returns.

Ordering guarantees kept by the reducer:
- exactly one step is current, and its index only moves through `reduce()`
- a step's prompt is spoken at most once per entry, and only once the speech
  session is ready
- the answer card is revealed only after the prompt finished speaking plus a
  short pause
- transcripts captured for an earlier step are dropped
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
import random
import re
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from src.signup import client_protocol
from src.signup.accounts import (
    AccountCreationResult,
    AccountCreator,
    AccountFields,
    FailureReason,
)
from src.signup.config import Config, get_config
from src.signup.language import Locale, localize
from src.signup.normalize import match_country, normalize_for_step, parse_date_of_birth
from src.signup.steps import (
    ANSWERABLE_STEP_COUNT,
    CREATING_TEXT,
    GREETING_TEXT,
    STEPS,
    WELCOME_TEXT,
    Chooser,
    StepDefinition,
    StepId,
    pick_acknowledgement,
    step_index,
)
from src.signup.turn_taking import (
    ConnectionStatus,
    SpeechKind,
    TurnTakingController,
    TurnTakingListener,
)
from src.signup.validation import ValidationContext, validate

logger = structlog.get_logger(__name__)


class SessionPhase(str, Enum):
    ASKING = "asking"
    LISTENING = "listening"
    CONFIRMING = "confirming"
    EDITING = "editing"


class SpeechPurpose(str, Enum):
    GREETING = "greeting"
    PROMPT = "prompt"
    ACKNOWLEDGEMENT = "acknowledgement"
    WELCOME = "welcome"


@dataclass(frozen=True)
class FormState:
    name: str = ""
    username: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    date_of_birth: str = ""
    country: str = ""
    country_code: str = ""
    city: str = ""
    agreed_to_terms: bool = False

    def to_account_fields(self) -> AccountFields:
        return AccountFields(
            email=self.email,
            password=self.password,
            full_name=self.name,
            username=self.username,
            date_of_birth=self.date_of_birth,
            country=self.country,
            country_code=self.country_code,
            city=self.city,
        )

    def summary(self) -> dict[str, Any]:
        """Collected values for display. Passwords are masked."""
        return {
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "password": "•" * len(self.password),
            "date_of_birth": self.date_of_birth,
            "country": self.country,
            "country_code": self.country_code,
            "city": self.city,
            "agreed_to_terms": self.agreed_to_terms,
        }


@dataclass(frozen=True)
class SignupState:
    locale: Locale = "en"
    step_index: int = 0
    phase: SessionPhase = SessionPhase.ASKING
    captured_value: str = ""
    edit_value: str = ""
    field_error: Optional[str] = None
    form: FormState = field(default_factory=FormState)
    terms_checked: bool = False

    transport_ready: bool = False
    greeting_spoken: bool = False
    begin_available: bool = False
    spoken_for_step: int = -1
    revealed: bool = False
    speaking: Optional[SpeechPurpose] = None
    awaiting_acknowledgement: bool = False

    # Phase to return to when a capture yields nothing.
    resume_phase: SessionPhase = SessionPhase.ASKING
    capture_step: Optional[int] = None

    creating: bool = False
    recovering: bool = False
    completed: bool = False
    error_message: Optional[str] = None
    audio_unlock_required: bool = False

    @property
    def step(self) -> StepDefinition:
        return STEPS[self.step_index]


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class TransportReady:
    pass


@dataclass(frozen=True)
class TransportLost:
    message: str = ""
    report: bool = True


@dataclass(frozen=True)
class SpeechFinished:
    kind: Optional[SpeechKind] = None


@dataclass(frozen=True)
class PromptDue:
    step_index: int


@dataclass(frozen=True)
class RevealDue:
    step_index: int


@dataclass(frozen=True)
class CaptureStarted:
    pass


@dataclass(frozen=True)
class CaptureEnded:
    committed: bool


@dataclass(frozen=True)
class TranscriptReceived:
    text: str


@dataclass(frozen=True)
class BeginPressed:
    pass


@dataclass(frozen=True)
class ConfirmPressed:
    pass


@dataclass(frozen=True)
class EditPressed:
    pass


@dataclass(frozen=True)
class EditChanged:
    value: str


@dataclass(frozen=True)
class RetryPressed:
    pass


@dataclass(frozen=True)
class SkipPressed:
    pass


@dataclass(frozen=True)
class TypedSubmitted:
    value: str


@dataclass(frozen=True)
class TermsToggled:
    checked: bool


@dataclass(frozen=True)
class TermsSubmitted:
    pass


@dataclass(frozen=True)
class AccountCreated:
    result: AccountCreationResult


@dataclass(frozen=True)
class CompletionDue:
    needs_email_confirmation: bool


@dataclass(frozen=True)
class AudioBlocked:
    pass


@dataclass(frozen=True)
class AudioUnlocked:
    pass


Message = Union[
    TransportReady, TransportLost, SpeechFinished, PromptDue, RevealDue, CaptureStarted,
    CaptureEnded, TranscriptReceived, BeginPressed, ConfirmPressed, EditPressed, EditChanged,
    RetryPressed, SkipPressed, TypedSubmitted, TermsToggled, TermsSubmitted, AccountCreated,
    CompletionDue, AudioBlocked, AudioUnlocked,
]


# ----------------------------------------------------------------------
# Effects
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Speak:
    text: str
    kind: SpeechKind
    purpose: SpeechPurpose
    step_index: int


@dataclass(frozen=True)
class Schedule:
    delay_s: float
    message: Message


@dataclass(frozen=True)
class CreateAccount:
    form: FormState


@dataclass(frozen=True)
class ReportError:
    message: str


@dataclass(frozen=True)
class SignalCompletion:
    needs_email_confirmation: bool


Effect = Union[Speak, Schedule, CreateAccount, ReportError, SignalCompletion]


@dataclass(frozen=True)
class Transition:
    state: SignupState
    effects: tuple[Effect, ...] = ()


@dataclass(frozen=True)
class OrchestratorEnv:
    agent_name: str = "Wakti"
    prompt_delay_s: float = 0.6
    reveal_pause_s: float = 0.4
    welcome_delay_s: float = 6.0
    min_password_length: int = 6
    choose: Chooser = random.choice
    today: Optional[date] = None

    @classmethod
    def from_config(cls, config: Config, choose: Chooser = random.choice) -> "OrchestratorEnv":
        return cls(
            agent_name=config.agent_name,
            prompt_delay_s=config.prompt_delay_ms / 1000.0,
            reveal_pause_s=config.reveal_pause_ms / 1000.0,
            welcome_delay_s=config.welcome_delay_seconds,
            min_password_length=config.min_password_length,
            choose=choose,
        )


# ----------------------------------------------------------------------
# Reducer
# ----------------------------------------------------------------------

_PASSWORD_INDEX = step_index(StepId.PASSWORD)
_CREATING_INDEX = step_index(StepId.CREATING)
_WELCOME_INDEX = step_index(StepId.WELCOME)


def _same(state: SignupState) -> Transition:
    return Transition(state)


def can_capture(state: SignupState) -> bool:
    """True when a hold may start: voice step, card revealed, nothing in flight."""
    return (
        state.step.voice
        and state.revealed
        and state.transport_ready
        and state.speaking is None
        and state.phase in (SessionPhase.ASKING, SessionPhase.EDITING)
    )


def _prompt_effects(state: SignupState, env: OrchestratorEnv) -> Transition:
    """Queue the current step's prompt if it has not been spoken for this entry."""
    step = state.step
    if step.is_silent or state.phase != SessionPhase.ASKING:
        return _same(state)
    if state.spoken_for_step == state.step_index or not state.transport_ready:
        return _same(state)
    state = replace(state, spoken_for_step=state.step_index)
    return Transition(state, (Schedule(env.prompt_delay_s, PromptDue(state.step_index)),))


def _enter_step(state: SignupState, index: int, env: OrchestratorEnv) -> Transition:
    state = replace(
        state,
        step_index=index,
        phase=SessionPhase.ASKING,
        captured_value="",
        edit_value="",
        field_error=None,
        revealed=False,
        awaiting_acknowledgement=False,
        capture_step=None,
        resume_phase=SessionPhase.ASKING,
        # A prompt still playing belongs to the step being left.
        speaking=None if state.speaking == SpeechPurpose.PROMPT else state.speaking,
    )
    step = state.step

    if step.id == StepId.CREATING:
        if state.creating:
            return _same(state)
        state = replace(state, creating=True, error_message=None)
        return Transition(state, (CreateAccount(state.form),))

    return _prompt_effects(state, env)


def _next_index(state: SignupState) -> int:
    # After a failed creation the user only re-enters the password pair.
    if state.recovering and state.step.id == StepId.CONFIRM_PASSWORD:
        return _CREATING_INDEX
    return min(state.step_index + 1, len(STEPS) - 1)


def _canonical_value(step_id: StepId, value: str) -> str:
    """Re-normalize a possibly hand-edited answer before validation."""
    value = (value or "").strip()
    if step_id == StepId.USERNAME:
        return re.sub(r"[^a-z0-9_]", "", re.sub(r"\s+", "_", value.lower()))
    if step_id == StepId.EMAIL:
        return value.lower()
    if step_id == StepId.DOB:
        return parse_date_of_birth(value)
    return value


def _commit(form: FormState, step_id: StepId, value: str) -> FormState:
    if step_id == StepId.NAME:
        return replace(form, name=value)
    if step_id == StepId.USERNAME:
        return replace(form, username=value)
    if step_id == StepId.EMAIL:
        return replace(form, email=value)
    if step_id == StepId.PASSWORD:
        return replace(form, password=value)
    if step_id == StepId.CONFIRM_PASSWORD:
        return replace(form, confirm_password=value)
    if step_id == StepId.DOB:
        return replace(form, date_of_birth=value)
    if step_id == StepId.COUNTRY:
        country = match_country(value)
        if country is not None:
            return replace(form, country=country.name, country_code=country.code)
        return replace(form, country=value, country_code="")
    if step_id == StepId.CITY:
        return replace(form, city=value)
    return form


def _validation_context(state: SignupState, env: OrchestratorEnv) -> ValidationContext:
    return ValidationContext(
        locale=state.locale,
        password=state.form.password,
        min_password_length=env.min_password_length,
        today=env.today,
    )


def _on_transport_ready(state: SignupState, env: OrchestratorEnv) -> Transition:
    state = replace(state, transport_ready=True)
    if state.step.id == StepId.GREETING and not state.greeting_spoken:
        state = replace(state, greeting_spoken=True, speaking=SpeechPurpose.GREETING)
        text = GREETING_TEXT.format(state.locale, agent_name=env.agent_name)
        return Transition(state, (Speak(text, SpeechKind.GREETING, SpeechPurpose.GREETING, 0),))
    return _prompt_effects(state, env)


def _on_transport_lost(state: SignupState, message: TransportLost, env: OrchestratorEnv) -> Transition:
    speaking = state.speaking
    state = replace(state, transport_ready=False, speaking=None, capture_step=None)

    if state.phase == SessionPhase.LISTENING:
        state = replace(state, phase=state.resume_phase)
    if speaking == SpeechPurpose.GREETING and not state.begin_available:
        state = replace(state, greeting_spoken=False)
    if not state.revealed and state.step.id not in (StepId.CREATING, StepId.WELCOME):
        # The prompt never finished; speak it again once the session is back.
        state = replace(state, spoken_for_step=-1)

    effects: list[Effect] = []
    if message.report:
        effects.append(
            ReportError(
                localize(
                    state.locale,
                    "Voice connection lost. Tap reconnect to try again.",
                    "انقطع الاتصال الصوتي. اضغط على إعادة الاتصال للمحاولة مرة أخرى.",
                )
            )
        )

    if state.awaiting_acknowledgement:
        # The remark is lost with the session; move on without it.
        advanced = _enter_step(state, _next_index(state), env)
        return Transition(advanced.state, tuple(effects) + advanced.effects)
    return Transition(state, tuple(effects))


def _on_speech_finished(state: SignupState, env: OrchestratorEnv) -> Transition:
    purpose = state.speaking
    state = replace(state, speaking=None)

    if purpose == SpeechPurpose.GREETING:
        return _same(replace(state, begin_available=True))
    if purpose == SpeechPurpose.PROMPT:
        return Transition(state, (Schedule(env.reveal_pause_s, RevealDue(state.step_index)),))
    if purpose == SpeechPurpose.ACKNOWLEDGEMENT and state.awaiting_acknowledgement:
        return _enter_step(state, _next_index(state), env)
    return _same(state)


def _on_transcript(state: SignupState, text: str) -> Transition:
    if state.capture_step is None or state.capture_step != state.step_index:
        return _same(state)
    step = state.step
    if not step.voice or state.phase not in (SessionPhase.LISTENING, SessionPhase.ASKING, SessionPhase.EDITING):
        return _same(replace(state, capture_step=None))

    value = normalize_for_step(step.id.value, text)
    if not value:
        return _same(
            replace(
                state,
                phase=state.resume_phase,
                capture_step=None,
                field_error=localize(
                    state.locale,
                    "Sorry, I didn't catch that. Please hold and try again.",
                    "عذرًا، لم أسمع ذلك. اضغط مطولًا وحاول مرة أخرى.",
                ),
            )
        )

    return _same(
        replace(
            state,
            phase=SessionPhase.CONFIRMING,
            captured_value=value,
            edit_value=value,
            field_error=None,
            capture_step=None,
        )
    )


def _on_confirm(state: SignupState, env: OrchestratorEnv) -> Transition:
    if state.phase not in (SessionPhase.CONFIRMING, SessionPhase.EDITING) or state.awaiting_acknowledgement:
        return _same(state)

    step = state.step
    value = _canonical_value(step.id, state.edit_value)
    error = validate(step.id.value, value, _validation_context(state, env))
    if error:
        return _same(replace(state, field_error=error))

    state = replace(
        state,
        form=_commit(state.form, step.id, value),
        field_error=None,
        captured_value=value,
        edit_value=value,
        phase=SessionPhase.CONFIRMING,
    )

    remark = pick_acknowledgement(step.id, state.locale, env.choose) if step.voice else None
    if remark and state.transport_ready:
        state = replace(state, awaiting_acknowledgement=True, speaking=SpeechPurpose.ACKNOWLEDGEMENT)
        return Transition(
            state, (Speak(remark, SpeechKind.REMARK, SpeechPurpose.ACKNOWLEDGEMENT, state.step_index),)
        )
    return _enter_step(state, _next_index(state), env)


def _on_typed_submit(state: SignupState, value: str, env: OrchestratorEnv) -> Transition:
    step = state.step
    if step.id not in (StepId.PASSWORD, StepId.CONFIRM_PASSWORD):
        return _same(state)
    if state.phase != SessionPhase.ASKING or not state.revealed:
        return _same(state)

    error = validate(step.id.value, value, _validation_context(state, env))
    if error:
        return _same(replace(state, field_error=error))

    state = replace(state, form=_commit(state.form, step.id, value), field_error=None)
    return _enter_step(state, _next_index(state), env)


def _on_terms_submit(state: SignupState, env: OrchestratorEnv) -> Transition:
    if state.step.id != StepId.TERMS or not state.revealed:
        return _same(state)
    error = validate(StepId.TERMS.value, state.terms_checked, _validation_context(state, env))
    if error:
        return _same(replace(state, field_error=error))
    state = replace(state, form=replace(state.form, agreed_to_terms=True), field_error=None)
    return _enter_step(state, _CREATING_INDEX, env)


def _on_account_created(state: SignupState, result: AccountCreationResult, env: OrchestratorEnv) -> Transition:
    if state.step.id != StepId.CREATING or not state.creating:
        return _same(state)

    if result.success:
        state = replace(
            state,
            step_index=_WELCOME_INDEX,
            phase=SessionPhase.ASKING,
            creating=False,
            recovering=False,
            error_message=None,
        )
        effects: list[Effect] = []
        if state.transport_ready:
            state = replace(state, speaking=SpeechPurpose.WELCOME)
            text = WELCOME_TEXT.format(state.locale, agent_name=env.agent_name)
            effects.append(Speak(text, SpeechKind.REMARK, SpeechPurpose.WELCOME, _WELCOME_INDEX))
        effects.append(Schedule(env.welcome_delay_s, CompletionDue(result.needs_email_confirmation)))
        return Transition(state, tuple(effects))

    if result.reason == FailureReason.WEAK_PASSWORD:
        message = localize(
            state.locale,
            "Please choose a different password. Try making it more unique.",
            "يرجى اختيار كلمة مرور مختلفة. حاول جعلها أكثر تميزًا.",
        )
    else:
        message = result.message or localize(
            state.locale, "An unexpected error occurred", "حدث خطأ غير متوقع"
        )

    state = replace(state, creating=False, recovering=True, error_message=message)
    entered = _enter_step(state, _PASSWORD_INDEX, env)
    return Transition(
        replace(entered.state, field_error=message),
        (ReportError(message),) + entered.effects,
    )


def reduce(state: SignupState, message: Message, env: OrchestratorEnv) -> Transition:
    """Compute the next state and the effects to run for one message."""
    if state.completed:
        return _same(state)

    if isinstance(message, TransportReady):
        return _on_transport_ready(state, env)

    if isinstance(message, TransportLost):
        return _on_transport_lost(state, message, env)

    if isinstance(message, SpeechFinished):
        return _on_speech_finished(state, env)

    if isinstance(message, PromptDue):
        if message.step_index != state.step_index or state.phase != SessionPhase.ASKING:
            return _same(state)
        if state.step.is_silent or not state.transport_ready:
            return _same(replace(state, spoken_for_step=-1))
        state = replace(state, speaking=SpeechPurpose.PROMPT)
        text = state.step.prompt.get(state.locale)
        return Transition(state, (Speak(text, SpeechKind.QUESTION, SpeechPurpose.PROMPT, state.step_index),))

    if isinstance(message, RevealDue):
        if message.step_index != state.step_index:
            return _same(state)
        return _same(replace(state, revealed=True))

    if isinstance(message, CaptureStarted):
        if not can_capture(state):
            return _same(state)
        return _same(
            replace(
                state,
                resume_phase=state.phase,
                phase=SessionPhase.LISTENING,
                capture_step=state.step_index,
                field_error=None,
            )
        )

    if isinstance(message, CaptureEnded):
        if state.phase != SessionPhase.LISTENING:
            return _same(state)
        if message.committed:
            return _same(state)
        return _same(replace(state, phase=state.resume_phase, capture_step=None))

    if isinstance(message, TranscriptReceived):
        return _on_transcript(state, message.text)

    if isinstance(message, BeginPressed):
        if state.step.id != StepId.GREETING or not state.begin_available:
            return _same(state)
        return _enter_step(state, step_index(StepId.NAME), env)

    if isinstance(message, ConfirmPressed):
        return _on_confirm(state, env)

    if isinstance(message, EditPressed):
        if state.phase != SessionPhase.CONFIRMING or state.awaiting_acknowledgement:
            return _same(state)
        return _same(replace(state, phase=SessionPhase.EDITING))

    if isinstance(message, EditChanged):
        if state.phase != SessionPhase.EDITING:
            return _same(state)
        return _same(replace(state, edit_value=message.value))

    if isinstance(message, RetryPressed):
        if state.phase not in (SessionPhase.CONFIRMING, SessionPhase.EDITING) or state.awaiting_acknowledgement:
            return _same(state)
        state = replace(
            state,
            phase=SessionPhase.ASKING,
            captured_value="",
            edit_value="",
            field_error=None,
            revealed=False,
            spoken_for_step=-1,
        )
        return _prompt_effects(state, env)

    if isinstance(message, SkipPressed):
        if state.step.required or state.phase != SessionPhase.ASKING or not state.revealed:
            return _same(state)
        return _enter_step(state, _next_index(state), env)

    if isinstance(message, TypedSubmitted):
        return _on_typed_submit(state, message.value, env)

    if isinstance(message, TermsToggled):
        if state.step.id != StepId.TERMS:
            return _same(state)
        return _same(replace(state, terms_checked=bool(message.checked)))

    if isinstance(message, TermsSubmitted):
        return _on_terms_submit(state, env)

    if isinstance(message, AccountCreated):
        return _on_account_created(state, message.result, env)

    if isinstance(message, CompletionDue):
        if state.step.id != StepId.WELCOME:
            return _same(state)
        state = replace(state, completed=True)
        return Transition(state, (SignalCompletion(message.needs_email_confirmation),))

    if isinstance(message, AudioBlocked):
        return _same(replace(state, audio_unlock_required=True))

    if isinstance(message, AudioUnlocked):
        return _same(replace(state, audio_unlock_required=False))

    return _same(state)


def progress(state: SignupState) -> dict[str, Any]:
    """"Step N of M" plus the share of answerable steps already behind the user."""
    done = max(0, min(state.step_index - 1, ANSWERABLE_STEP_COUNT))
    return {
        "step": max(0, min(state.step_index, ANSWERABLE_STEP_COUNT)),
        "total": ANSWERABLE_STEP_COUNT,
        "percent": round(done / ANSWERABLE_STEP_COUNT * 100),
    }


_EMAIL_LOG_RE = re.compile(r"[^\s@]+@[^\s@]+")


def _redact_for_logs(text: str) -> str:
    if not text:
        return ""
    return _EMAIL_LOG_RE.sub("[EMAIL]", text)[:80]


# ----------------------------------------------------------------------
# Driver
# ----------------------------------------------------------------------


class OrchestratorLifecycle(str, Enum):
    RUNNING = "running"
    CLOSED = "closed"


ControllerFactory = Callable[[TurnTakingListener], TurnTakingController]
SendMessage = Callable[[str], Awaitable[None]]


class SignupOrchestrator(TurnTakingListener):
    """
    Async driver around `reduce()`.

    Listens to the turn-taking controller, exposes the user actions, runs the
    effects and pushes a state snapshot to the client after every transition.
    """

    def __init__(
        self,
        *,
        controller_factory: ControllerFactory,
        account_creator: AccountCreator,
        send_message: SendMessage,
        config: Optional[Config] = None,
        locale: Locale = "en",
        choose: Chooser = random.choice,
        env: Optional[OrchestratorEnv] = None,
    ):
        self.config = config or get_config()
        self.env = env or OrchestratorEnv.from_config(self.config, choose=choose)
        self._account_creator = account_creator
        self._send_message = send_message

        self._state = SignupState(locale=locale)
        self._status = ConnectionStatus.IDLE
        self._lifecycle = OrchestratorLifecycle.RUNNING
        self._tasks: set[asyncio.Task] = set()
        self._speech_text = ""

        self.controller = controller_factory(self)

    @property
    def state(self) -> SignupState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def closed(self) -> bool:
        return self._lifecycle == OrchestratorLifecycle.CLOSED

    async def start(self) -> bool:
        await self._publish_state()
        return await self.controller.connect()

    async def dispatch(self, message: Message) -> None:
        if self.closed:
            return

        before = self._state
        transition = reduce(before, message, self.env)
        self._state = transition.state

        if before.step_index != self._state.step_index:
            logger.info(
                "Signup step changed",
                from_step=before.step.id.value,
                to_step=self._state.step.id.value,
                locale=self._state.locale,
            )

        for effect in transition.effects:
            await self._run_effect(effect)
        await self._publish_state()

    async def _run_effect(self, effect: Effect) -> None:
        if self.closed:
            return

        if isinstance(effect, Speak):
            self._speech_text = ""
            spoken = await self.controller.speak(effect.text, effect.kind)
            if not spoken:
                # Nothing will ever complete; unblock the script.
                await self.dispatch(SpeechFinished(effect.kind))
        elif isinstance(effect, Schedule):
            self._spawn(self._dispatch_later(effect.delay_s, effect.message))
        elif isinstance(effect, CreateAccount):
            self._spawn(self._create_account(effect.form))
        elif isinstance(effect, ReportError):
            await self._send(client_protocol.create_error_message(effect.message))
        elif isinstance(effect, SignalCompletion):
            logger.info("Signup complete", needs_email_confirmation=effect.needs_email_confirmation)
            await self._send(client_protocol.create_complete_message(effect.needs_email_confirmation))
            self._spawn(self.close())

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch_later(self, delay_s: float, message: Message) -> None:
        try:
            await asyncio.sleep(delay_s)
            await self.dispatch(message)
        except asyncio.CancelledError:
            pass

    async def _create_account(self, form: FormState) -> None:
        try:
            result = await self._account_creator.create_account(form.to_account_fields())
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error("Account creator raised", error=str(e))
            result = AccountCreationResult.failed(FailureReason.OTHER, "")
        await self.dispatch(AccountCreated(result))

    async def _send(self, message: str) -> None:
        if self.closed:
            return
        try:
            await self._send_message(message)
        except Exception as e:
            logger.warning("Failed to send client message", error=str(e))

    async def _publish_state(self) -> None:
        await self._send(client_protocol.create_state_message(self.view()))

    def view(self) -> dict[str, Any]:
        state = self._state
        step = state.step
        prompt = CREATING_TEXT if step.id == StepId.CREATING else step.prompt
        return {
            "locale": state.locale,
            "step": step.id.value,
            "step_index": state.step_index,
            "progress": progress(state),
            "phase": state.phase.value,
            "status": self._status.value,
            "prompt": prompt.get(state.locale),
            "required": step.required,
            "voice": step.voice,
            "revealed": state.revealed,
            "begin_available": state.begin_available and step.id == StepId.GREETING,
            "can_hold": can_capture(state),
            "can_skip": not step.required and state.revealed and state.phase == SessionPhase.ASKING,
            "captured_value": state.captured_value,
            "edit_value": state.edit_value,
            "field_error": state.field_error,
            "terms_checked": state.terms_checked,
            "speech_text": self._speech_text,
            "summary": state.form.summary(),
            "error": state.error_message,
            "audio_unlock_required": state.audio_unlock_required,
            "completed": state.completed,
        }

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def begin(self) -> None:
        await self.dispatch(BeginPressed())

    async def hold_start(self) -> None:
        if not can_capture(self._state):
            return
        if await self.controller.start_capture():
            await self.dispatch(CaptureStarted())

    async def hold_end(self, hold_duration_ms: Optional[float] = None) -> None:
        await self.controller.stop_capture(hold_duration_ms)

    async def feed_audio(self, pcm: bytes) -> None:
        await self.controller.feed_audio(pcm)

    async def confirm(self) -> None:
        await self.dispatch(ConfirmPressed())

    async def edit(self) -> None:
        await self.dispatch(EditPressed())

    async def update_edit(self, value: str) -> None:
        await self.dispatch(EditChanged(value))

    async def retry(self) -> None:
        await self.dispatch(RetryPressed())

    async def skip(self) -> None:
        await self.dispatch(SkipPressed())

    async def submit_typed(self, value: str) -> None:
        await self.dispatch(TypedSubmitted(value))

    async def toggle_terms(self, checked: bool) -> None:
        await self.dispatch(TermsToggled(checked))

    async def submit_terms(self) -> None:
        await self.dispatch(TermsSubmitted())

    async def reconnect(self) -> bool:
        if self.closed:
            return False
        await self.dispatch(TransportLost(report=False))
        return await self.controller.reconnect()

    async def audio_blocked(self) -> None:
        await self.dispatch(AudioBlocked())
        await self._send(client_protocol.create_audio_unlock_required_message())

    async def unlock_audio(self) -> None:
        await self.dispatch(AudioUnlocked())

    async def close(self) -> None:
        if self.closed:
            return
        self._lifecycle = OrchestratorLifecycle.CLOSED

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
        await self.controller.teardown()
        logger.info("Signup orchestrator closed", step=self._state.step.id.value)

    # ------------------------------------------------------------------
    # TurnTakingListener
    # ------------------------------------------------------------------

    async def on_status(self, status: ConnectionStatus) -> None:
        self._status = status
        if status == ConnectionStatus.READY and not self._state.transport_ready:
            await self.dispatch(TransportReady())
            return
        await self._publish_state()

    async def on_transcript(self, text: str) -> None:
        logger.info(
            "Transcript received",
            step=self._state.step.id.value,
            text=_redact_for_logs(text) if self._state.step.id != StepId.EMAIL else "[EMAIL]",
        )
        await self.dispatch(TranscriptReceived(text))

    async def on_speech_finished(self, kind: SpeechKind) -> None:
        await self.dispatch(SpeechFinished(kind))

    async def on_speech_text(self, text: str, final: bool) -> None:
        self._speech_text = text if final else self._speech_text + text
        await self._send(client_protocol.create_speech_text_message(text, final))

    async def on_audio(self, pcm: bytes) -> None:
        await self._send(client_protocol.create_audio_message(pcm))

    async def on_countdown(self, remaining_seconds: int) -> None:
        await self._send(client_protocol.create_countdown_message(remaining_seconds))

    async def on_level(self, level: float) -> None:
        await self._send(client_protocol.create_level_message(level))

    async def on_capture_ended(self, committed: bool) -> None:
        await self.dispatch(CaptureEnded(committed))

    async def on_transport_failure(self, message: str) -> None:
        await self.dispatch(TransportLost(message))
