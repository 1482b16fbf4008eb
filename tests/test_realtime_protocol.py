"""
Tests for the OpenAI Realtime event protocol.
"""

import base64
import json

import pytest

from src.signup.realtime_protocol import (
    AudioDelta,
    RealtimeError,
    RealtimeEventKind,
    ResponseCreated,
    SpeechCompleted,
    SpeechTextDelta,
    SpeechTranscriptDone,
    TranscriptCompleted,
    build_session_config,
    create_input_audio_append,
    create_response_create,
    create_session_update,
    is_benign_error,
    parse_realtime_event,
    serialize,
)


class TestEventParsing:
    """Tests for parsing realtime server events."""

    def test_transcription_completed(self):
        raw = json.dumps({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": "item_1",
            "transcript": "  my name is john \n",
        })
        event = parse_realtime_event(raw)
        assert isinstance(event, TranscriptCompleted)
        assert event.text == "my name is john"
        assert event.kind == RealtimeEventKind.TRANSCRIPT_COMPLETED

    def test_empty_transcription_still_parsed(self):
        raw = json.dumps({"type": "conversation.item.input_audio_transcription.completed", "transcript": None})
        event = parse_realtime_event(raw)
        assert isinstance(event, TranscriptCompleted)
        assert event.text == ""

    @pytest.mark.parametrize("event_type", ["response.audio_transcript.delta", "response.output_audio_transcript.delta"])
    def test_speech_text_delta(self, event_type):
        event = parse_realtime_event(json.dumps({"type": event_type, "response_id": "resp_1", "delta": "Hel"}))
        assert isinstance(event, SpeechTextDelta)
        assert event.text == "Hel"
        assert event.response_id == "resp_1"

    def test_speech_transcript_done(self):
        event = parse_realtime_event(
            json.dumps({"type": "response.audio_transcript.done", "response_id": "r", "transcript": "Hello"})
        )
        assert isinstance(event, SpeechTranscriptDone)
        assert event.text == "Hello"

    @pytest.mark.parametrize("event_type", ["response.audio.delta", "response.output_audio.delta"])
    def test_audio_delta_decodes_base64(self, event_type):
        pcm = b"\x01\x00\x02\x00"
        raw = json.dumps({"type": event_type, "response_id": "r", "delta": base64.b64encode(pcm).decode()})
        event = parse_realtime_event(raw)
        assert isinstance(event, AudioDelta)
        assert event.audio == pcm

    def test_response_created_takes_nested_id(self):
        event = parse_realtime_event(json.dumps({"type": "response.created", "response": {"id": "resp_9"}}))
        assert isinstance(event, ResponseCreated)
        assert event.response_id == "resp_9"

    def test_response_done(self):
        raw = json.dumps({"type": "response.done", "response": {"id": "resp_9", "status": "cancelled"}})
        event = parse_realtime_event(raw)
        assert isinstance(event, SpeechCompleted)
        assert event.response_id == "resp_9"
        assert event.status == "cancelled"

    def test_error_event(self):
        raw = json.dumps({"type": "error", "error": {"type": "invalid_request_error", "code": "bad", "message": "Nope"}})
        event = parse_realtime_event(raw)
        assert isinstance(event, RealtimeError)
        assert event.message == "Nope"
        assert event.code == "bad"
        assert not event.fatal
        assert not event.is_benign

    def test_ignored_event_returns_none(self):
        assert parse_realtime_event(json.dumps({"type": "session.updated", "session": {}})) is None

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_realtime_event("{not json")

    def test_non_object_raises(self):
        with pytest.raises(ValueError):
            parse_realtime_event("[1, 2, 3]")


class TestBenignErrors:

    def test_empty_commit_code(self):
        assert is_benign_error("input_audio_buffer_commit_empty", "")

    def test_no_active_response_message(self):
        assert is_benign_error("", "Cancellation failed: no active response found")

    def test_buffer_too_small_message(self):
        assert RealtimeError(message="Error committing input audio buffer: buffer too small").is_benign

    def test_real_error(self):
        assert not is_benign_error("server_error", "Something broke")


class TestOutboundEvents:

    def test_session_config_disables_turn_detection(self):
        config = build_session_config(
            instructions="Stay silent.", voice="shimmer", transcription_model="whisper-1", language="ar"
        )
        assert config["turn_detection"] is None
        assert config["input_audio_format"] == "pcm16"
        assert config["input_audio_transcription"] == {"model": "whisper-1", "language": "ar"}

    def test_session_update_wraps_session(self):
        assert create_session_update({"instructions": "x"}) == {
            "type": "session.update",
            "session": {"instructions": "x"},
        }

    def test_response_create_requests_audio(self):
        assert create_response_create()["response"]["modalities"] == ["audio", "text"]

    def test_audio_append_is_base64(self):
        message = create_input_audio_append(b"\x00\x01")
        assert message["type"] == "input_audio_buffer.append"
        assert base64.b64decode(message["audio"]) == b"\x00\x01"

    def test_serialize_is_compact_json(self):
        assert json.loads(serialize({"type": "response.cancel"})) == {"type": "response.cancel"}
