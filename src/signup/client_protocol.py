"""
Browser client WebSocket protocol.

The client sends JSON messages tagged by "type":
- start: Session start, optionally announcing the UI language
- audio: Microphone audio as base64 PCM16 24kHz mono
- hold_start / hold_end: Hold-to-talk control pressed / released
- begin: "Let's Begin" pressed after the greeting
- confirm / edit / edit_change / retry / skip: Answer card actions
- submit: Typed value for password-family steps
- terms_toggle / terms_submit: Terms checkbox and its submit button
- reconnect: Retry the speech session after a failure
- audio_unlocked / audio_blocked: Autoplay handshake
- stop: Client is leaving

Outbound messages:
- state: Full orchestrator snapshot
- audio: Model speech as base64 PCM16 24kHz mono
- speech_text: Transcript of the scripted speech (delta or final)
- countdown: Remaining hold seconds
- level: Microphone input level (0..1)
- error: Localized, user-facing error
- audio_unlock_required: Ask the user for a gesture to unlock playback
- complete: Signup finished
"""

from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Optional, Union

import msgspec

encoder = msgspec.json.Encoder()


class ClientEventType(str, Enum):
    START = "start"
    AUDIO = "audio"
    HOLD_START = "hold_start"
    HOLD_END = "hold_end"
    BEGIN = "begin"
    CONFIRM = "confirm"
    EDIT = "edit"
    EDIT_CHANGE = "edit_change"
    RETRY = "retry"
    SKIP = "skip"
    SUBMIT = "submit"
    TERMS_TOGGLE = "terms_toggle"
    TERMS_SUBMIT = "terms_submit"
    RECONNECT = "reconnect"
    AUDIO_UNLOCKED = "audio_unlocked"
    AUDIO_BLOCKED = "audio_blocked"
    STOP = "stop"


class ClientMessage(msgspec.Struct, tag_field="type"):
    pass


class StartMessage(ClientMessage, tag="start"):
    language: Optional[str] = None


class AudioMessage(ClientMessage, tag="audio"):
    audio: str = ""

    @property
    def pcm(self) -> bytes:
        try:
            return base64.b64decode(self.audio)
        except ValueError:
            return b""


class HoldStartMessage(ClientMessage, tag="hold_start"):
    pass


class HoldEndMessage(ClientMessage, tag="hold_end"):
    duration_ms: Optional[float] = None


class BeginMessage(ClientMessage, tag="begin"):
    pass


class ConfirmMessage(ClientMessage, tag="confirm"):
    pass


class EditMessage(ClientMessage, tag="edit"):
    pass


class EditChangeMessage(ClientMessage, tag="edit_change"):
    value: str = ""


class RetryMessage(ClientMessage, tag="retry"):
    pass


class SkipMessage(ClientMessage, tag="skip"):
    pass


class SubmitMessage(ClientMessage, tag="submit"):
    value: str = ""


class TermsToggleMessage(ClientMessage, tag="terms_toggle"):
    checked: bool = False


class TermsSubmitMessage(ClientMessage, tag="terms_submit"):
    pass


class ReconnectMessage(ClientMessage, tag="reconnect"):
    pass


class AudioUnlockedMessage(ClientMessage, tag="audio_unlocked"):
    pass


class AudioBlockedMessage(ClientMessage, tag="audio_blocked"):
    pass


class StopMessage(ClientMessage, tag="stop"):
    pass


InboundMessage = Union[
    StartMessage,
    AudioMessage,
    HoldStartMessage,
    HoldEndMessage,
    BeginMessage,
    ConfirmMessage,
    EditMessage,
    EditChangeMessage,
    RetryMessage,
    SkipMessage,
    SubmitMessage,
    TermsToggleMessage,
    TermsSubmitMessage,
    ReconnectMessage,
    AudioUnlockedMessage,
    AudioBlockedMessage,
    StopMessage,
]

decoder = msgspec.json.Decoder(InboundMessage)


def parse_client_message(raw_message: Union[str, bytes]) -> InboundMessage:
    """
    Parse a raw client WebSocket message.

    Raises:
        ValueError: If the message is not valid JSON or has an unknown type
    """
    try:
        return decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid client message: {e}")


def message_type(message: ClientMessage) -> ClientEventType:
    return ClientEventType(message.__struct_config__.tag)


def _encode(message: dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")


def create_state_message(view: dict[str, Any]) -> str:
    return _encode({"type": "state", "state": view})


def create_audio_message(pcm: bytes) -> str:
    return _encode({"type": "audio", "audio": base64.b64encode(pcm).decode("utf-8")})


def create_speech_text_message(text: str, final: bool) -> str:
    return _encode({"type": "speech_text", "text": text, "final": final})


def create_countdown_message(remaining_seconds: int) -> str:
    return _encode({"type": "countdown", "remaining": remaining_seconds})


def create_level_message(level: float) -> str:
    return _encode({"type": "level", "level": round(level, 3)})


def create_error_message(message: str) -> str:
    return _encode({"type": "error", "message": message})


def create_audio_unlock_required_message() -> str:
    return _encode({"type": "audio_unlock_required"})


def create_complete_message(needs_email_confirmation: bool) -> str:
    return _encode({"type": "complete", "needs_email_confirmation": needs_email_confirmation})
