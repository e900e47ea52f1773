"""Recording session controller: microphone lifecycle and VAD stop policy."""

import time
import asyncio
import logging
from typing import Optional, Callable

from ..audio.capture import AudioCapture, CaptureUnavailable, CaptureErrorKind
from ..audio.pcm import float_to_pcm16
from ..audio.vad import VoiceActivityDetector
from ..bus import EventBus, RECORDING_STATUS
from ..models.events import RecordingStatusEvent
from ..models.session import ConversationMode, RecordingSession, VADPhase
from ..transport.protocol import CLIENT_RECORD, CLIENT_RECORD_END
from ..transport.websocket import Transport

logger = logging.getLogger(__name__)

# Modes in which a new recording must not start
_BUSY_MODES = (ConversationMode.PROCESSING, ConversationMode.STREAMING)


class RecordingSessionController:
    """Owns the capture device for one utterance at a time.

    Every tick streams the captured PCM to the transport, feeds the newest
    frame to the VAD and ends the session once the VAD says stop. Outcomes
    are published on the ``recording.status`` topic; nothing is raised to
    the caller.
    """

    def __init__(self,
                 capture: AudioCapture,
                 vad: VoiceActivityDetector,
                 transport: Transport,
                 bus: EventBus,
                 mode_provider: Optional[Callable[[], ConversationMode]] = None):
        """Initialize recording controller.

        Args:
            capture: Microphone capture device
            vad: Voice activity detector used as the stop oracle
            transport: Channel that receives PCM frames and record events
            bus: Event bus for recording status events
            mode_provider: Read-only view of the current conversation mode;
                the busy-mode check is skipped while it is None
        """
        self.capture = capture
        self.vad = vad
        self.transport = transport
        self.bus = bus
        self.mode_provider = mode_provider

        self.session: Optional[RecordingSession] = None
        self.last_error: Optional[CaptureErrorKind] = None
        self.sessions_started = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.session is not None

    async def start(self) -> bool:
        """Open a recording session.

        Returns:
            True if capture is running, False if the start was refused or failed
        """
        if self.session is not None:
            logger.info("Start blocked: already recording")
            return False
        if not self.transport.is_connected:
            logger.info("Cannot start recording: not connected")
            return False
        mode = self.mode_provider() if self.mode_provider else None
        if mode in _BUSY_MODES:
            logger.info(f"Start blocked: conversation is {mode.value}")
            return False

        self.sessions_started += 1
        session = RecordingSession(session_id=self.sessions_started,
                                   start_timestamp=time.time())
        self.session = session
        self.last_error = None
        self.vad.start_recording()
        logger.info(f"Starting recording session {session.session_id}")

        self._publish("started", session)
        await self.transport.send_json(CLIENT_RECORD)
        if self.session is not session:
            return False

        try:
            await self.capture.acquire()
        except CaptureUnavailable as e:
            logger.error(f"Failed to start recording: {e}")
            if self.session is session:
                self.last_error = e.kind
                self._teardown()
                self._publish("failed", session, reason=str(e), error=e.kind)
            return False

        if self.session is not session:
            # stop() won the race while the device was opening
            self.capture.release()
            return False

        self._task = asyncio.ensure_future(self._check_loop(session))
        return True

    async def _check_loop(self, session: RecordingSession) -> None:
        interval = self.vad.config.check_interval_ms / 1000.0
        while self.session is session:
            await asyncio.sleep(interval)
            if self.session is not session:
                break
            try:
                await self._tick(session)
            except Exception as e:
                logger.error(f"Recording tick failed: {e}", exc_info=True)

    async def _tick(self, session: RecordingSession) -> None:
        frames = self.capture.read_pending()

        # Streaming out is unconditional; the VAD only drives stop decisions
        for frame in frames:
            if await self.transport.send_bytes(float_to_pcm16(frame.samples)):
                session.frames_sent += 1

        if self.session is not session:
            return

        if frames:
            self.vad.process_audio(frames[-1].samples)
            session.has_detected_speech = self.vad.has_detected_speech
            session.silent_frame_count = self.vad.silent_frame_count

        if self.vad.should_stop():
            await self._finish(session)

    async def _finish(self, session: RecordingSession) -> None:
        valid = self.vad.has_valid_speech()
        duration_ms = int(self.vad.elapsed_ms())
        reason = "silence" if self.vad.phase == VADPhase.SILENCE_AFTER_SPEECH else "max_duration"

        self._teardown()

        if valid:
            logger.info(f"Recording {session.session_id} complete ({duration_ms}ms)")
            await self.transport.send_json(CLIENT_RECORD_END)
            self._publish("completed", session, reason=reason, duration_ms=duration_ms)
        else:
            logger.info(f"Recording {session.session_id} discarded: no valid speech")
            self._publish("discarded", session, reason=reason, duration_ms=duration_ms)

    def stop(self, reason: str = "force") -> None:
        """Release capture and cancel the check loop. No-op without a session."""
        session = self.session
        if session is None:
            return
        duration_ms = int(self.vad.elapsed_ms())
        logger.info(f"Stopping recording {session.session_id} ({reason})")
        self._teardown()
        self._publish("stopped", session, reason=reason, duration_ms=duration_ms)

    def _teardown(self) -> None:
        self.session = None
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.capture.release()
        self.vad.reset()

    def _publish(self, kind: str, session: RecordingSession, reason: str = "",
                 duration_ms: int = 0, error: Optional[CaptureErrorKind] = None) -> None:
        self.bus.publish(RECORDING_STATUS, RecordingStatusEvent(
            kind=kind,
            session_id=session.session_id,
            reason=reason,
            duration_ms=duration_ms,
            error=error,
        ))
