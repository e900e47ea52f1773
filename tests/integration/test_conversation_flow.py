"""End-to-end conversation flow with fake devices and a fake server socket."""

import json

import pytest

from talk2me.audio.playback import AudioPlaybackQueue
from talk2me.audio.vad import VoiceActivityDetector, VADConfig
from talk2me.bus import CONVERSATION_MODE, RECORDING_STATUS
from talk2me.models.session import ConversationMode
from talk2me.services.conversation import ConversationStateMachine
from talk2me.services.recording_service import RecordingSessionController
from talk2me.transport.websocket import Transport

from conftest import FakeCapture, FakePlayer, FakeSession, b64, server_event, wait_until


class Engine:
    """All components wired the way main.Server wires them."""

    def __init__(self, bus, clock, **settings):
        self.bus = bus
        self.session = FakeSession()
        self.transport = Transport("ws://test", bus, reconnect_delay=0.01,
                                   session_factory=lambda: self.session)
        self.capture = FakeCapture(clock=clock)
        self.vad = VoiceActivityDetector(VADConfig(check_interval_ms=1), clock=clock)
        self.recorder = RecordingSessionController(self.capture, self.vad, self.transport, bus)
        self.player = FakePlayer()
        self.queue = AudioPlaybackQueue(self.player)
        self.machine = ConversationStateMachine(
            bus, self.transport, self.recorder, self.queue, self.player,
            clock=clock, **settings)
        self.recorder.mode_provider = self.machine.get_mode

    async def start(self):
        self.machine.start()
        self.transport.connect()
        await wait_until(lambda: self.transport.is_connected)

    async def stop(self):
        await self.machine.shutdown()
        await self.transport.disconnect()

    @property
    def ws(self):
        return self.session.sockets[-1]

    def sent_events(self):
        return [json.loads(frame)["event"] for frame in self.ws.sent_str]

    @property
    def mode(self):
        return self.machine.mode


@pytest.mark.integration
class TestConversationFlow:

    @pytest.mark.asyncio
    async def test_full_turn(self, bus, fake_clock, recorded_events):
        modes = recorded_events(CONVERSATION_MODE)
        engine = Engine(bus, fake_clock, resume_recording_after_reply=False)
        await engine.start()

        # Wake: trigger sent, greeting played, recording opened
        engine.machine.wake()
        await wait_until(lambda: engine.sent_events() == ["client:trigger"])
        engine.capture.script([0.05] * 5 + [0.001] * 16)
        engine.ws.feed_text(server_event("on:trigger:audio", audio=b64(b"greeting")))

        # 5 loud + 15 quiet frames, then VAD stops and the utterance is sent
        await wait_until(lambda: engine.mode == ConversationMode.PROCESSING)
        assert engine.sent_events() == ["client:trigger", "client:record", "client:record:end"]
        assert len(engine.ws.sent_bytes) == 20
        assert engine.capture.release_count == 1

        # Reply stream
        engine.ws.feed_text(server_event("on:llm:processing"))
        engine.ws.feed_text(server_event("on:stream:start"))
        for text in ("Hai", "apa", "kabar"):
            engine.ws.feed_text(server_event("on:stream:chunk", text=text, audio=b64(text.encode())))
        engine.ws.feed_text(server_event("on:stream:complete"))

        await wait_until(lambda: engine.mode == ConversationMode.LISTENING
                         and engine.machine.reply_stream_complete)
        assert engine.player.finished == [b"greeting", b"Hai", b"apa", b"kabar"]
        assert engine.machine.transcript == "Hai apa kabar"

        assert [m.current for m in modes] == [
            ConversationMode.LISTENING,
            ConversationMode.RECORDING,
            ConversationMode.PROCESSING,
            ConversationMode.STREAMING,
            ConversationMode.LISTENING,
        ]
        await engine.stop()

    @pytest.mark.asyncio
    async def test_reply_resumes_recording(self, bus, fake_clock):
        engine = Engine(bus, fake_clock, wait_for_trigger_audio=False)
        await engine.start()
        engine.capture.script([0.05] * 5 + [0.001] * 15)

        engine.machine.wake()
        await wait_until(lambda: engine.mode == ConversationMode.PROCESSING)

        engine.capture.script([0.05] * 1000)
        engine.ws.feed_text(server_event("on:stream:start"))
        engine.ws.feed_text(server_event("on:stream:chunk", text="Lagi?", audio=b64(b"again")))
        engine.ws.feed_text(server_event("on:stream:complete"))

        await wait_until(lambda: engine.mode == ConversationMode.RECORDING)
        assert engine.recorder.sessions_started == 2
        assert engine.sent_events().count("client:record") == 2
        await engine.stop()
        assert engine.capture.is_active is False

    @pytest.mark.asyncio
    async def test_silence_is_discarded(self, bus, fake_clock, recorded_events):
        statuses = recorded_events(RECORDING_STATUS)
        engine = Engine(bus, fake_clock, wait_for_trigger_audio=False)
        await engine.start()
        engine.capture.script([0.001] * 100)

        engine.machine.wake()
        await wait_until(lambda: engine.mode == ConversationMode.STANDBY)

        assert [s.kind for s in statuses][-1] == "discarded"
        assert "client:record:end" not in engine.sent_events()
        assert engine.capture.is_active is False
        await engine.stop()

    @pytest.mark.asyncio
    async def test_second_wake_during_session_ignored(self, bus, fake_clock):
        engine = Engine(bus, fake_clock)
        await engine.start()

        engine.machine.wake()
        engine.machine.wake()
        await wait_until(lambda: engine.sent_events() == ["client:trigger"])
        assert engine.machine.wake() is False
        assert engine.sent_events() == ["client:trigger"]
        await engine.stop()

    @pytest.mark.asyncio
    async def test_connection_drop_mid_recording(self, bus, fake_clock):
        engine = Engine(bus, fake_clock, wait_for_trigger_audio=False)
        await engine.start()
        engine.capture.script([0.05] * 1000)

        engine.machine.wake()
        await wait_until(lambda: engine.mode == ConversationMode.RECORDING)
        first_socket = engine.ws

        first_socket.feed_close()
        await wait_until(lambda: engine.mode == ConversationMode.STANDBY)
        assert engine.recorder.is_active is False
        assert engine.capture.is_active is False

        # Reconnect happens on its own and a new session can start
        await wait_until(lambda: engine.transport.is_connected and engine.ws is not first_socket)
        assert engine.machine.wake() is True
        await engine.stop()

    @pytest.mark.asyncio
    async def test_record_ended_by_server(self, bus, fake_clock):
        engine = Engine(bus, fake_clock, wait_for_trigger_audio=False)
        await engine.start()
        engine.capture.script([0.05] * 1000)

        engine.machine.wake()
        await wait_until(lambda: engine.mode == ConversationMode.RECORDING)
        engine.ws.feed_text(server_event("on:record:ended"))

        await wait_until(lambda: engine.mode == ConversationMode.STANDBY)
        assert engine.capture.is_active is False
        assert engine.machine.wake() is False
        await engine.stop()
