"""
Tests for the turn-taking controller.
"""

import asyncio

import pytest

from src.signup.config import Config
from src.signup.realtime_protocol import (
    AudioDelta,
    RealtimeError,
    ResponseCreated,
    SpeechCompleted,
    SpeechTextDelta,
    TranscriptCompleted,
)
from src.signup.steps import LOCK_INSTRUCTION
from src.signup.transport import TransportConnectError
from src.signup.turn_taking import (
    CaptureLifecycle,
    ConnectionStatus,
    SpeechKind,
    TurnTakingController,
    TurnTakingListener,
)


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.pushed = []
        self.is_open = False
        self.capture = False
        self.fail = fail

    async def connect(self):
        if self.fail:
            raise TransportConnectError("microphone denied")
        self.is_open = True

    async def teardown(self):
        self.is_open = False
        self.calls.append("teardown")

    def send_instruction(self, session):
        self.calls.append(("instructions", session["instructions"]))
        return True

    def request_response(self):
        self.calls.append("response.create")
        return True

    def cancel_response(self):
        self.calls.append("response.cancel")
        return True

    def clear_captured_audio(self):
        self.calls.append("clear")
        return True

    def commit_captured_audio(self):
        self.calls.append("commit")
        return True

    def set_capture(self, enabled):
        self.capture = enabled

    def push_audio(self, pcm):
        self.pushed.append(pcm)


class RecordingListener(TurnTakingListener):
    def __init__(self):
        self.calls = []

    def named(self, name):
        return [value for call, value in self.calls if call == name]

    async def on_status(self, status):
        self.calls.append(("status", status))

    async def on_transcript(self, text):
        self.calls.append(("transcript", text))

    async def on_speech_finished(self, kind):
        self.calls.append(("speech_finished", kind))

    async def on_speech_text(self, text, final):
        self.calls.append(("speech_text", (text, final)))

    async def on_audio(self, pcm):
        self.calls.append(("audio", pcm))

    async def on_countdown(self, remaining_seconds):
        self.calls.append(("countdown", remaining_seconds))

    async def on_level(self, level):
        self.calls.append(("level", level))

    async def on_capture_ended(self, committed):
        self.calls.append(("capture_ended", committed))

    async def on_transport_failure(self, message):
        self.calls.append(("failure", message))


LOCK = ("instructions", LOCK_INSTRUCTION.get("en"))


def _controller(transport=None, config=None, clock=None):
    transport = transport or FakeTransport()
    listener = RecordingListener()
    kwargs = {"config": config or Config(min_hold_ms=500, max_record_seconds=10)}
    if clock is not None:
        kwargs["clock"] = clock
    controller = TurnTakingController(lambda on_event: transport, listener, **kwargs)
    return controller, transport, listener


async def _ready(transport=None, config=None, clock=None):
    controller, transport, listener = _controller(transport, config, clock)
    assert await controller.connect()
    transport.calls.clear()
    listener.calls.clear()
    return controller, transport, listener


class TestConnection:

    @pytest.mark.asyncio
    async def test_connect_reports_ready(self):
        controller, transport, listener = _controller()
        assert await controller.connect()
        assert listener.named("status") == [ConnectionStatus.CONNECTING, ConnectionStatus.READY]
        assert controller.status == ConnectionStatus.READY

    @pytest.mark.asyncio
    async def test_connect_failure_reports_and_idles(self):
        controller, transport, listener = _controller(FakeTransport(fail=True))
        assert not await controller.connect()
        assert listener.named("status") == [ConnectionStatus.CONNECTING, ConnectionStatus.IDLE]
        assert listener.named("failure") == ["microphone denied"]

    @pytest.mark.asyncio
    async def test_reconnect_tears_down_first(self):
        controller, transport, listener = await _ready()
        assert await controller.reconnect()
        assert transport.calls[0] == "teardown"
        assert controller.status == ConnectionStatus.READY


class TestSpeech:

    @pytest.mark.asyncio
    async def test_speak_sends_verbatim_instruction_then_response(self):
        controller, transport, listener = await _ready()

        assert await controller.speak("What's your name?", SpeechKind.QUESTION)

        assert transport.calls == [
            ("instructions", 'Say EXACTLY this and nothing else: "What\'s your name?"'),
            "response.create",
        ]
        assert controller.status == ConnectionStatus.SPEAKING
        assert controller.intentional

    @pytest.mark.asyncio
    async def test_speak_fails_when_channel_closed(self):
        controller, transport, listener = _controller()
        assert not await controller.speak("Hello", SpeechKind.GREETING)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_requested_speech_forwarded_then_locked(self):
        controller, transport, listener = await _ready()
        await controller.speak("Hello", SpeechKind.GREETING)
        transport.calls.clear()

        await controller.handle_event(ResponseCreated(response_id="r1"))
        await controller.handle_event(SpeechTextDelta(text="Hel", response_id="r1"))
        await controller.handle_event(AudioDelta(audio=b"\x01\x00", response_id="r1"))
        await controller.handle_event(SpeechCompleted(response_id="r1"))

        assert listener.named("speech_text") == [("Hel", False)]
        assert listener.named("audio") == [b"\x01\x00"]
        assert listener.named("speech_finished") == [SpeechKind.GREETING]
        assert transport.calls == ["response.cancel", LOCK]
        assert controller.status == ConnectionStatus.READY
        assert not controller.intentional

    @pytest.mark.asyncio
    async def test_unsolicited_output_cancelled_once_and_never_forwarded(self):
        controller, transport, listener = await _ready()

        await controller.handle_event(ResponseCreated(response_id="drift"))
        await controller.handle_event(AudioDelta(audio=b"\x01\x00", response_id="drift"))
        await controller.handle_event(SpeechTextDelta(text="Sure! Also...", response_id="drift"))

        assert transport.calls.count("response.cancel") == 1
        assert listener.named("audio") == []
        assert listener.named("speech_text") == []

    @pytest.mark.asyncio
    async def test_foreign_response_during_speech_is_cancelled(self):
        controller, transport, listener = await _ready()
        await controller.speak("Hello", SpeechKind.QUESTION)
        await controller.handle_event(ResponseCreated(response_id="r1"))
        transport.calls.clear()

        await controller.handle_event(AudioDelta(audio=b"\x09\x00", response_id="other"))

        assert transport.calls == ["response.cancel"]
        assert listener.named("audio") == []

    @pytest.mark.asyncio
    async def test_unsolicited_completion_only_locks(self):
        controller, transport, listener = await _ready()

        await controller.handle_event(SpeechCompleted(response_id="drift"))

        assert listener.named("speech_finished") == []
        assert transport.calls == ["response.cancel", LOCK]


class TestTranscripts:

    @pytest.mark.asyncio
    async def test_transcript_locks_and_forwards(self):
        controller, transport, listener = await _ready()

        await controller.handle_event(TranscriptCompleted(text="my name is john"))

        assert transport.calls == ["response.cancel", LOCK]
        assert listener.named("transcript") == ["my name is john"]

    @pytest.mark.asyncio
    async def test_empty_transcript_still_forwarded(self):
        controller, transport, listener = await _ready()
        await controller.handle_event(TranscriptCompleted(text=""))
        assert listener.named("transcript") == [""]


class TestErrors:

    @pytest.mark.asyncio
    async def test_benign_error_ignored(self):
        controller, transport, listener = await _ready()
        await controller.handle_event(RealtimeError(message="", code="input_audio_buffer_commit_empty"))
        assert listener.calls == []
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_fatal_error_tears_down_and_reports(self):
        controller, transport, listener = await _ready()

        await controller.handle_event(RealtimeError(message="socket closed", code="connection_closed", fatal=True))

        assert "teardown" in transport.calls
        assert listener.calls == [("status", ConnectionStatus.IDLE), ("failure", "socket closed")]
        assert controller.status == ConnectionStatus.IDLE
        assert controller.transport is None

    @pytest.mark.asyncio
    async def test_error_during_speech_finishes_it(self):
        controller, transport, listener = await _ready()
        await controller.speak("Hello", SpeechKind.REMARK)

        await controller.handle_event(RealtimeError(message="rate limited", code="rate_limit"))

        assert listener.named("speech_finished") == [SpeechKind.REMARK]
        assert controller.status == ConnectionStatus.READY

    @pytest.mark.asyncio
    async def test_error_while_processing_releases_capture(self):
        controller, transport, listener = await _ready()
        await controller.start_capture()
        await controller.stop_capture(hold_duration_ms=900)
        listener.calls.clear()

        await controller.handle_event(RealtimeError(message="transcription failed", code="server_error"))

        assert listener.calls == [("status", ConnectionStatus.READY), ("capture_ended", False)]


class TestCapture:

    @pytest.mark.asyncio
    async def test_start_capture_from_ready(self):
        controller, transport, listener = await _ready()

        assert await controller.start_capture()

        assert transport.calls == ["clear"]
        assert transport.capture
        assert controller.capture == CaptureLifecycle.HOLDING
        assert listener.calls[:2] == [("status", ConnectionStatus.LISTENING), ("countdown", 10)]
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_start_capture_refused_while_speaking(self):
        controller, transport, listener = await _ready()
        await controller.speak("Hello", SpeechKind.QUESTION)
        assert not await controller.start_capture()

    @pytest.mark.asyncio
    async def test_short_hold_is_discarded(self):
        controller, transport, listener = await _ready()
        await controller.start_capture()
        transport.calls.clear()

        assert not await controller.stop_capture(hold_duration_ms=200)

        assert "commit" not in transport.calls
        assert transport.calls == ["clear"]
        assert not transport.capture
        assert listener.named("capture_ended") == [False]
        assert controller.status == ConnectionStatus.READY
        assert controller.capture == CaptureLifecycle.IDLE

    @pytest.mark.asyncio
    async def test_long_hold_commits_once(self):
        controller, transport, listener = await _ready()
        await controller.start_capture()
        transport.calls.clear()

        assert await controller.stop_capture(hold_duration_ms=1500)
        assert not await controller.stop_capture(hold_duration_ms=1500)

        assert transport.calls == ["commit"]
        assert listener.named("capture_ended") == [True]
        assert controller.status == ConnectionStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_feed_audio_only_while_holding(self, loud_pcm):
        controller, transport, listener = await _ready()

        await controller.feed_audio(loud_pcm)
        assert transport.pushed == []

        await controller.start_capture()
        await controller.feed_audio(loud_pcm)

        assert transport.pushed == [loud_pcm]
        assert listener.named("level") == [pytest.approx(1.0, abs=0.001)]
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_countdown_auto_stops_at_max(self):
        now = [0.0]
        config = Config(min_hold_ms=100, max_record_seconds=1, countdown_poll_ms=10)
        controller, transport, listener = await _ready(config=config, clock=lambda: now[0])

        await controller.start_capture()
        now[0] = 1.2
        for _ in range(50):
            await asyncio.sleep(0.01)
            if controller.capture != CaptureLifecycle.HOLDING:
                break

        assert listener.named("countdown") == [1, 0]
        assert "commit" in transport.calls
        assert listener.named("capture_ended") == [True]
        assert controller.status == ConnectionStatus.PROCESSING
