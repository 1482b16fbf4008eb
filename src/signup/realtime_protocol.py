"""
OpenAI Realtime event protocol.

Inbound server events are parsed into a small tagged union (`RealtimeEvent`)
that the turn-taking controller consumes in a single dispatch. Everything the
signup flow does not care about parses to None and is dropped.

Outbound client events are plain dicts built by the `create_*` helpers and
serialized with the shared msgspec encoder.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import msgspec

decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()


class RealtimeEventKind(str, Enum):
    TRANSCRIPT_COMPLETED = "transcript_completed"
    SPEECH_TEXT_DELTA = "speech_text_delta"
    SPEECH_TRANSCRIPT_DONE = "speech_transcript_done"
    AUDIO_DELTA = "audio_delta"
    RESPONSE_CREATED = "response_created"
    SPEECH_COMPLETED = "speech_completed"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptCompleted:
    text: str
    kind: RealtimeEventKind = RealtimeEventKind.TRANSCRIPT_COMPLETED


@dataclass(frozen=True)
class SpeechTextDelta:
    text: str
    response_id: Optional[str] = None
    kind: RealtimeEventKind = RealtimeEventKind.SPEECH_TEXT_DELTA


@dataclass(frozen=True)
class SpeechTranscriptDone:
    text: str
    response_id: Optional[str] = None
    kind: RealtimeEventKind = RealtimeEventKind.SPEECH_TRANSCRIPT_DONE


@dataclass(frozen=True)
class AudioDelta:
    audio: bytes  # PCM16 24kHz mono
    response_id: Optional[str] = None
    kind: RealtimeEventKind = RealtimeEventKind.AUDIO_DELTA


@dataclass(frozen=True)
class ResponseCreated:
    response_id: Optional[str]
    kind: RealtimeEventKind = RealtimeEventKind.RESPONSE_CREATED


@dataclass(frozen=True)
class SpeechCompleted:
    response_id: Optional[str]
    status: str = "completed"
    kind: RealtimeEventKind = RealtimeEventKind.SPEECH_COMPLETED


@dataclass(frozen=True)
class RealtimeError:
    message: str
    code: str = ""
    fatal: bool = False
    kind: RealtimeEventKind = RealtimeEventKind.ERROR

    @property
    def is_benign(self) -> bool:
        return is_benign_error(self.code, self.message)


RealtimeEvent = Union[
    TranscriptCompleted,
    SpeechTextDelta,
    SpeechTranscriptDone,
    AudioDelta,
    ResponseCreated,
    SpeechCompleted,
    RealtimeError,
]


# Errors the session emits routinely when a lock or clear races an empty buffer.
_BENIGN_ERROR_CODES = frozenset(
    {
        "input_audio_buffer_commit_empty",
        "response_cancel_not_active",
    }
)
_BENIGN_ERROR_MESSAGES = ("buffer too small", "no active response")


def is_benign_error(code: str, message: str) -> bool:
    if code and code in _BENIGN_ERROR_CODES:
        return True
    lower = (message or "").lower()
    return any(marker in lower for marker in _BENIGN_ERROR_MESSAGES)


def _b64decode(data: str) -> bytes:
    try:
        return base64.b64decode(data)
    except (ValueError, TypeError):
        return b""


def _response_id(message: dict[str, Any]) -> Optional[str]:
    response = message.get("response")
    if isinstance(response, dict) and response.get("id"):
        return str(response["id"])
    rid = message.get("response_id")
    return str(rid) if rid else None


def parse_realtime_event(raw: Union[str, bytes]) -> Optional[RealtimeEvent]:
    """
    Parse one raw server event.

    Returns None for events the signup flow ignores.

    Raises:
        ValueError: If the frame is not a JSON object
    """
    try:
        message = decoder.decode(raw.encode("utf-8") if isinstance(raw, str) else raw)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Realtime event is not an object")

    event_type = message.get("type", "")

    if event_type == "conversation.item.input_audio_transcription.completed":
        return TranscriptCompleted(text=str(message.get("transcript") or "").strip())

    if event_type in ("response.audio_transcript.delta", "response.output_audio_transcript.delta"):
        return SpeechTextDelta(text=str(message.get("delta") or ""), response_id=_response_id(message))

    if event_type in ("response.audio_transcript.done", "response.output_audio_transcript.done"):
        return SpeechTranscriptDone(
            text=str(message.get("transcript") or ""), response_id=_response_id(message)
        )

    if event_type in ("response.audio.delta", "response.output_audio.delta"):
        delta = message.get("delta") or message.get("audio") or ""
        return AudioDelta(
            audio=_b64decode(delta) if isinstance(delta, str) else b"",
            response_id=_response_id(message),
        )

    if event_type == "response.created":
        return ResponseCreated(response_id=_response_id(message))

    if event_type == "response.done":
        response = message.get("response")
        status = response.get("status", "completed") if isinstance(response, dict) else "completed"
        return SpeechCompleted(response_id=_response_id(message), status=str(status))

    if event_type == "error":
        error = message.get("error") if isinstance(message.get("error"), dict) else {}
        return RealtimeError(
            message=str(error.get("message") or "unknown realtime error"),
            code=str(error.get("code") or error.get("type") or ""),
        )

    return None


def serialize(message: dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")


def build_session_config(
    *,
    instructions: str,
    voice: str,
    transcription_model: str,
    language: str,
) -> dict[str, Any]:
    """Initial session configuration: scripted speech only, no server turn detection."""
    return {
        "modalities": ["audio", "text"],
        "instructions": instructions,
        "voice": voice,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {"model": transcription_model, "language": language},
        "turn_detection": None,
    }


def create_session_update(session: dict[str, Any]) -> dict[str, Any]:
    return {"type": "session.update", "session": session}


def create_response_create() -> dict[str, Any]:
    return {"type": "response.create", "response": {"modalities": ["audio", "text"]}}


def create_response_cancel() -> dict[str, Any]:
    return {"type": "response.cancel"}


def create_input_audio_clear() -> dict[str, Any]:
    return {"type": "input_audio_buffer.clear"}


def create_input_audio_commit() -> dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def create_input_audio_append(pcm: bytes) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": base64.b64encode(pcm).decode("utf-8")}
