"""Main application entry point for Talk2Me."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from . import __version__
from .audio.capture import AudioCapture
from .audio.playback import AudioPlayer, AudioPlaybackQueue
from .audio.vad import VoiceActivityDetector
from .bus import EventBus
from .config import Talk2MeConfig
from .services.conversation import ConversationStateMachine
from .services.recording_service import RecordingSessionController
from .transport.websocket import Transport
from .ui.status_console import StatusConsole
from .wakeword.keyboard_trigger import KeyboardWakeTrigger

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None,
                 url: Optional[str] = None):
        # Load configuration
        self.config = Talk2MeConfig(config_path)
        if url:
            self.config.set('server.url', url)
        # Command line level wins over the config file
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self._exit_event: Optional[asyncio.Event] = None

    def init(self) -> None:
        logger.info("Initializing services...")

        audio_settings = self.config.get_audio_settings()
        vad_config = self.config.get_vad_config()
        logger.info(f"Audio settings: {audio_settings['sample_rate']}Hz, "
                    f"{audio_settings['chunk_size']} samples/chunk, "
                    f"{audio_settings['channels']} channels")
        logger.info(f"VAD settings: {vad_config}")

        self.bus = EventBus()
        self.transport = Transport(
            url=self.config.get_server_url(),
            bus=self.bus,
            reconnect_delay=self.config.get_reconnect_delay(),
        )
        self.capture = AudioCapture(**audio_settings)
        self.recorder = RecordingSessionController(
            capture=self.capture,
            vad=VoiceActivityDetector(vad_config),
            transport=self.transport,
            bus=self.bus,
        )
        self.player = AudioPlayer(
            output_device_index=self.config.get('audio.output_device_index'))
        self.playback_queue = AudioPlaybackQueue(self.player)
        self.machine = ConversationStateMachine(
            bus=self.bus,
            transport=self.transport,
            recorder=self.recorder,
            playback_queue=self.playback_queue,
            player=self.player,
            **self.config.get_conversation_settings(),
        )
        self.recorder.mode_provider = self.machine.get_mode

        self.status_console = StatusConsole(self.bus)
        self.wake_trigger = KeyboardWakeTrigger(self.bus, on_quit=self.request_exit)

    def request_exit(self) -> None:
        if self._exit_event is not None:
            self._exit_event.set()

    async def run(self) -> None:
        self._exit_event = asyncio.Event()
        try:
            self.status_console.start(self.transport.url)
            self.machine.start()
            self.transport.connect()
            self.wake_trigger.start()
            await self._exit_event.wait()
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        self.wake_trigger.stop()
        await self.machine.shutdown()
        await self.transport.disconnect()
        self.status_console.stop()
        logger.info(f"Shutdown complete. Playback: {self.playback_queue.played_count} played, "
                    f"{self.playback_queue.failed_count} failed; "
                    f"transport: {self.transport.messages_received} messages received, "
                    f"{self.transport.dropped_sends} sends dropped")


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/talk2me.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("Talk2Me application starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for Talk2Me application."""
    parser = argparse.ArgumentParser(
        description="Talk2Me - Voice conversation client",
        epilog="Keys: w/SPACE=Wake, q=Quit"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for talk2me.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--url",
        type=str,
        help="WebSocket URL of the speech service (overrides config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Talk2Me v{__version__}"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level, args.url)
        server.init()
        asyncio.run(server.run())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
