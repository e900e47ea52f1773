"""Terminal status output for the conversation engine."""

import logging
from typing import Optional, List

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..bus import (
    EventBus,
    Subscription,
    unsubscribe_all,
    TRANSPORT_STATUS,
    RECORDING_STATUS,
    CONVERSATION_MODE,
    CONVERSATION_TRANSCRIPT,
)
from ..models.events import (
    ConnectionEvent,
    RecordingStatusEvent,
    ModeChangedEvent,
    TranscriptEvent,
)
from ..models.session import ConversationMode

logger = logging.getLogger(__name__)

MODE_STYLES = {
    ConversationMode.STANDBY: ("💤 Standby", "dim white"),
    ConversationMode.LISTENING: ("👂 Listening", "cyan"),
    ConversationMode.RECORDING: ("🎙️  Recording", "bold red"),
    ConversationMode.PROCESSING: ("🔄 Thinking...", "yellow"),
    ConversationMode.STREAMING: ("🔊 Speaking", "bold green"),
}


class StatusConsole:
    """Prints mode changes, connection state and the reply transcript."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console()
        self._subscriptions: List[Subscription] = []

    def start(self, url: str) -> None:
        title = Text("🗣️  Talk2Me", style="bold blue")
        body = Text(f"Server: {url}\nPress 'w' or SPACE to wake, 'q' to quit, Ctrl+C to force quit",
                    style="white")
        self.console.print(Panel(body, title=title, border_style="bright_blue"))

        self._subscriptions = [
            self.bus.subscribe(CONVERSATION_MODE, self._on_mode),
            self.bus.subscribe(CONVERSATION_TRANSCRIPT, self._on_transcript),
            self.bus.subscribe(TRANSPORT_STATUS, self._on_connection),
            self.bus.subscribe(RECORDING_STATUS, self._on_recording),
        ]

    def stop(self) -> None:
        unsubscribe_all(self._subscriptions)

    def _on_mode(self, event: ModeChangedEvent) -> None:
        label, style = MODE_STYLES[event.current]
        self.console.print(label, style=style)

    def _on_transcript(self, event: TranscriptEvent) -> None:
        if event.latest_fragment:
            self.console.print(f"  {event.latest_fragment}", style="white")

    def _on_connection(self, event: ConnectionEvent) -> None:
        if event.is_open:
            self.console.print(f"✅ Connected to {event.url}", style="green")
        elif event.reconnect_scheduled:
            self.console.print("⚠️  Connection lost, reconnecting...", style="yellow")
        else:
            self.console.print("Disconnected", style="dim white")

    def _on_recording(self, event: RecordingStatusEvent) -> None:
        if event.kind == "failed":
            self.console.print(f"❌ Microphone unavailable: {event.reason}", style="bold red")
        elif event.kind == "discarded":
            self.console.print("No speech detected", style="dim yellow")
