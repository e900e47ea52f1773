"""Conversation state machine: the single owner of the conversation mode.

Inputs arrive as bus events (wake trigger, recording status, transport status,
inbound server messages) and are handled synchronously in arrival order. The
machine reacts by changing mode and issuing commands to the recording
controller, the playback queue and the transport.
"""

import time
import asyncio
import logging
from typing import Optional, List, Set, Callable, Awaitable

from ..audio.playback import AudioPlayer, AudioPlaybackQueue
from ..bus import (
    EventBus,
    Subscription,
    unsubscribe_all,
    WAKE_DETECTED,
    WAKE_STATUS,
    TRANSPORT_STATUS,
    TRANSPORT_MESSAGE,
    RECORDING_STATUS,
    CONVERSATION_MODE,
    CONVERSATION_TRANSCRIPT,
)
from ..models.events import (
    WakeEvent,
    WakeStatusEvent,
    ConnectionEvent,
    RawMessageEvent,
    RecordingStatusEvent,
    ModeChangedEvent,
    TranscriptEvent,
    ServerMessage,
)
from ..models.playback import PlaybackItem
from ..models.session import ConversationMode
from ..transport import protocol
from ..transport.websocket import Transport
from .recording_service import RecordingSessionController

logger = logging.getLogger(__name__)


class ConversationStateMachine:
    """Reconciles wake trigger, recording, transport and playback into one mode."""

    def __init__(self,
                 bus: EventBus,
                 transport: Transport,
                 recorder: RecordingSessionController,
                 playback_queue: AudioPlaybackQueue,
                 player: AudioPlayer,
                 listen_timeout: float = 10.0,
                 wake_cooldown: float = 2.0,
                 wait_for_trigger_audio: bool = True,
                 resume_recording_after_reply: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the state machine.

        Args:
            bus: Event bus shared with the other components
            transport: Channel to the remote service
            recorder: Recording session controller
            playback_queue: Queue for streamed reply fragments
            player: Player for the one-off trigger greeting audio
            listen_timeout: Seconds in bare LISTENING before returning to STANDBY
            wake_cooldown: Seconds wake triggers are ignored after the server ends a session
            wait_for_trigger_audio: Start recording only after the trigger greeting played
            resume_recording_after_reply: Record again as soon as the reply finished playing
            clock: Monotonic time source in seconds
        """
        self.bus = bus
        self.transport = transport
        self.recorder = recorder
        self.playback_queue = playback_queue
        self.player = player
        self.listen_timeout = listen_timeout
        self.wake_cooldown = wake_cooldown
        self.wait_for_trigger_audio = wait_for_trigger_audio
        self.resume_recording_after_reply = resume_recording_after_reply
        self.clock = clock

        self.mode = ConversationMode.STANDBY
        self.transcript = ""
        self.reply_stream_complete = False
        self.last_capture_error = None
        self.wake_word_loaded = False
        self.wake_word_listening = False

        self._subscriptions: List[Subscription] = []
        self._listen_timer: Optional[asyncio.TimerHandle] = None
        self._wake_blocked_until = 0.0
        self._greeting_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self._handlers = {
            protocol.ON_TRIGGER_AUDIO: self._handle_trigger_audio,
            protocol.ON_RECORD_ENDED: self._handle_record_ended,
            protocol.ON_LLM_PROCESSING: self._handle_llm_processing,
            protocol.ON_STREAM_START: self._handle_stream_start,
            protocol.ON_STREAM_CHUNK: self._handle_stream_chunk,
            protocol.ON_STREAM_COMPLETE: self._handle_stream_complete,
        }

    def get_mode(self) -> ConversationMode:
        return self.mode

    def start(self) -> None:
        """Subscribe to the bus topics this machine reacts to."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self.bus.subscribe(WAKE_DETECTED, self._on_wake),
            self.bus.subscribe(WAKE_STATUS, self._on_wake_status),
            self.bus.subscribe(TRANSPORT_STATUS, self._on_connection),
            self.bus.subscribe(TRANSPORT_MESSAGE, self._on_transport_message),
            self.bus.subscribe(RECORDING_STATUS, self._on_recording_status),
        ]
        logger.info("Conversation state machine started")

    async def shutdown(self) -> None:
        """Unsubscribe, cancel timers and tasks, and release capture and playback."""
        unsubscribe_all(self._subscriptions)
        self._cancel_listen_timer()
        self.recorder.stop("shutdown")
        self.playback_queue.stop()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Conversation state machine shut down")

    # ------------------------------------------------------------------
    # Mode bookkeeping
    # ------------------------------------------------------------------

    def _set_mode(self, mode: ConversationMode, reason: str = "") -> None:
        if mode == self.mode:
            return
        previous = self.mode
        self.mode = mode
        logger.info(f"Mode {previous.value} -> {mode.value} ({reason})")

        self._cancel_listen_timer()
        if mode == ConversationMode.LISTENING:
            self._start_listen_timer()
        elif mode == ConversationMode.STANDBY:
            self._cancel_greeting()
            self.recorder.stop("standby")
            self.playback_queue.stop()

        self.bus.publish(CONVERSATION_MODE, ModeChangedEvent(
            previous=previous, current=mode, reason=reason))

    def _start_listen_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._listen_timer = loop.call_later(self.listen_timeout, self._on_listen_timeout)
        logger.debug(f"Started {self.listen_timeout}s inactivity timer")

    def _cancel_listen_timer(self) -> None:
        if self._listen_timer is not None:
            self._listen_timer.cancel()
            self._listen_timer = None

    def _on_listen_timeout(self) -> None:
        self._listen_timer = None
        if self.mode == ConversationMode.LISTENING:
            logger.info(f"{self.listen_timeout}s elapsed without input")
            self._set_mode(ConversationMode.STANDBY, "listen timeout")

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Conversation task failed", exc_info=task.exception())

    def _cancel_greeting(self) -> None:
        task, self._greeting_task = self._greeting_task, None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Wake trigger
    # ------------------------------------------------------------------

    def wake(self) -> bool:
        """Accept a wake trigger; ignored unless in STANDBY and out of cooldown."""
        if self.mode != ConversationMode.STANDBY:
            logger.info(f"Wake trigger ignored: conversation already {self.mode.value}")
            return False
        if self.clock() < self._wake_blocked_until:
            logger.info("Wake trigger ignored: cooling down after session end")
            return False

        logger.info("Wake trigger accepted")
        self.transcript = ""
        self._set_mode(ConversationMode.LISTENING, "wake")
        self._spawn(self._announce_wake())
        return True

    async def _announce_wake(self) -> None:
        await self.transport.send_json(protocol.CLIENT_TRIGGER)
        if not self.wait_for_trigger_audio:
            await self._start_recording()

    def _on_wake(self, event: WakeEvent) -> None:
        logger.debug(f"Wake event from {event.source}")
        self.wake()

    def _on_wake_status(self, event: WakeStatusEvent) -> None:
        self.wake_word_loaded = event.is_loaded
        self.wake_word_listening = event.is_listening
        if event.error:
            logger.warning(f"Wake word source error: {event.error}")

    async def _start_recording(self) -> None:
        if self.mode != ConversationMode.LISTENING:
            logger.info(f"Not starting recording in mode {self.mode.value}")
            return
        await self.recorder.start()

    # ------------------------------------------------------------------
    # Component status
    # ------------------------------------------------------------------

    def _on_recording_status(self, event: RecordingStatusEvent) -> None:
        if event.kind == "started":
            self._set_mode(ConversationMode.RECORDING, "recording started")
        elif event.kind == "completed":
            if self.mode == ConversationMode.RECORDING:
                self._set_mode(ConversationMode.PROCESSING, "utterance sent")
        elif event.kind == "discarded":
            if self.mode == ConversationMode.RECORDING:
                self._set_mode(ConversationMode.STANDBY, "no valid speech")
        elif event.kind == "failed":
            self.last_capture_error = event.error
            kind = getattr(event.error, "value", event.error)
            logger.error(f"Capture unavailable: {kind}")
            self._set_mode(ConversationMode.STANDBY, f"capture unavailable ({kind})")
        elif event.kind == "stopped":
            if self.mode == ConversationMode.RECORDING:
                self._set_mode(ConversationMode.LISTENING, f"recording stopped ({event.reason})")

    def _on_connection(self, event: ConnectionEvent) -> None:
        if event.is_open:
            logger.info(f"Connected to {event.url}")
            return
        logger.warning(f"Connection to {event.url} lost")
        if self.mode != ConversationMode.STANDBY:
            self._set_mode(ConversationMode.STANDBY, "connection lost")

    # ------------------------------------------------------------------
    # Server messages
    # ------------------------------------------------------------------

    def _on_transport_message(self, event: RawMessageEvent) -> None:
        message = protocol.parse_server_message(event.payload)
        if message is None:
            return
        self.handle_server_message(message)

    def handle_server_message(self, message: ServerMessage) -> None:
        """Dispatch one parsed server event."""
        logger.debug(f"Message received: {message.event}")
        handler = self._handlers.get(message.event)
        if handler is None:
            logger.info(f"Unknown server event: {message.event}")
            return
        handler(message.data)

    def _handle_trigger_audio(self, data: dict) -> None:
        audio = protocol.decode_audio(data.get("audio"))
        if audio is None:
            logger.error("on:trigger:audio without usable audio data")
            return
        if self.mode != ConversationMode.LISTENING:
            logger.info(f"Trigger audio ignored in mode {self.mode.value}")
            return
        self._cancel_greeting()
        self._greeting_task = self._spawn(self._play_greeting(audio))

    async def _play_greeting(self, audio: bytes) -> None:
        try:
            await self.player.play(audio)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Trigger audio playback failed: {e}")
        await self._start_recording()

    def _handle_record_ended(self, data: dict) -> None:
        logger.info("Server ended the recording session")
        self._wake_blocked_until = self.clock() + self.wake_cooldown
        self.recorder.stop("remote end")
        self._set_mode(ConversationMode.STANDBY, "record ended by server")

    def _handle_llm_processing(self, data: dict) -> None:
        if self.mode == ConversationMode.STANDBY:
            logger.info("Ignoring on:llm:processing in standby")
            return
        self._set_mode(ConversationMode.PROCESSING, "server processing")
        self.recorder.stop("processing")

    def _handle_stream_start(self, data: dict) -> None:
        if self.mode == ConversationMode.STANDBY:
            logger.info("Ignoring on:stream:start in standby")
            return
        logger.info("Reply stream started")
        self._set_mode(ConversationMode.STREAMING, "reply stream")
        self.recorder.stop("reply stream")
        self.reply_stream_complete = False
        self.transcript = ""
        self.bus.publish(CONVERSATION_TRANSCRIPT, TranscriptEvent(text=""))
        self.playback_queue.set_callbacks(on_completed=self._on_playback_complete)

    def _handle_stream_chunk(self, data: dict) -> None:
        if self.mode != ConversationMode.STREAMING:
            logger.warning(f"Dropping stream chunk received in mode {self.mode.value}")
            return

        text = data.get("text")
        audio = protocol.decode_audio(data.get("audio"))
        if not isinstance(text, str) or not text or audio is None:
            logger.error(f"Invalid stream chunk: has_text={bool(text)}, has_audio={audio is not None}")
            return

        self.playback_queue.enqueue(PlaybackItem(audio_payload=audio, text=text),
                                    on_changed=self._on_fragment_started)

    def _handle_stream_complete(self, data: dict) -> None:
        logger.info("All reply chunks received from server")
        self.reply_stream_complete = True
        if (self.mode == ConversationMode.STREAMING
                and not self.playback_queue.is_playing and not len(self.playback_queue)):
            # Nothing playable arrived or everything already played
            self._on_playback_complete()

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _on_fragment_started(self, text: str) -> None:
        self.transcript = f"{self.transcript} {text}" if self.transcript else text
        self.bus.publish(CONVERSATION_TRANSCRIPT,
                         TranscriptEvent(text=self.transcript, latest_fragment=text))

    def _on_playback_complete(self) -> None:
        if self.mode != ConversationMode.STREAMING:
            return
        if not self.reply_stream_complete:
            # Playback caught up with the server; wait for the remaining chunks
            logger.debug("Playback queue drained before the reply stream completed")
            self.playback_queue.set_callbacks(on_completed=self._on_playback_complete)
            return
        logger.info("Reply playback complete")
        self._set_mode(ConversationMode.LISTENING, "reply finished")
        if self.resume_recording_after_reply:
            self._spawn(self._start_recording())
