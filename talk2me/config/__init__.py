"""YAML configuration for Talk2Me.

The file is overlaid on DEFAULTS, so a config only needs the keys it changes.
"""

import os
import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from ..audio.vad import VADConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "talk2me.yaml"
DEFAULT_SERVER_URL = "ws://localhost:3001"

DEFAULTS: Dict[str, Any] = {
    "server": {
        "url": DEFAULT_SERVER_URL,
        "reconnect_delay_seconds": 5.0,
    },
    "audio": {
        "sample_rate": 16000,
        "chunk_size": 1024,
        "channels": 1,
        "input_device_index": None,
        "output_device_index": None,
    },
    "vad": {
        "enabled": True,
        "rms_threshold": 0.01,
        "silence_frames": 15,
        "min_audio_duration_ms": 400,
        "max_recording_duration_ms": 10000,
        "check_interval_ms": 150,
    },
    "conversation": {
        "listen_timeout_seconds": 10.0,
        "wake_cooldown_seconds": 2.0,
        "wait_for_trigger_audio": True,
        "resume_recording_after_reply": True,
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/talk2me.log",
        "console_output": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay override onto a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Talk2MeConfig:
    """Talk2Me configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Load configuration.

        Args:
            config_path: Path to YAML config file; talk2me.yaml in the
                         current directory when None.

        Raises:
            FileNotFoundError: the file does not exist
            ValueError: the file is empty, not YAML, or not a mapping
        """
        self.config_file = Path(config_path or DEFAULT_CONFIG_PATH)
        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = _merge(DEFAULTS, self._read_file())
        self._resolve_paths()
        logger.info("Configuration loaded successfully")

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ValueError(f"Failed to load configuration: {e}")

        if not raw:
            raise ValueError("Configuration file is empty")
        if not isinstance(raw, dict):
            raise ValueError("Configuration root must be a mapping")
        return raw

    def _resolve_paths(self) -> None:
        """Make a relative log file path relative to the config file location."""
        log_path = self.get('logging.file_path')
        if log_path and not os.path.isabs(log_path):
            self.set('logging.file_path', str(self.config_file.parent / log_path))

    def get(self, key_path: str, default: Any = None) -> Any:
        """Look up a dot-separated key such as 'vad.rms_threshold'."""
        node = self.config
        for key in key_path.split('.'):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def set(self, key_path: str, value: Any) -> None:
        """Assign a dot-separated key, creating intermediate sections."""
        *parents, leaf = key_path.split('.')
        node = self.config
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_server_url(self) -> str:
        return self.get('server.url')

    def get_reconnect_delay(self) -> float:
        return float(self.get('server.reconnect_delay_seconds'))

    def get_vad_config(self) -> VADConfig:
        """Build the immutable VAD configuration."""
        return VADConfig(
            enabled=bool(self.get('vad.enabled')),
            rms_threshold=float(self.get('vad.rms_threshold')),
            silence_frame_threshold=int(self.get('vad.silence_frames')),
            min_audio_duration_ms=int(self.get('vad.min_audio_duration_ms')),
            max_recording_duration_ms=int(self.get('vad.max_recording_duration_ms')),
            check_interval_ms=int(self.get('vad.check_interval_ms')),
        )

    def get_audio_settings(self) -> Dict[str, Any]:
        """Keyword arguments for AudioCapture."""
        return {
            "sample_rate": int(self.get('audio.sample_rate')),
            "chunk_size": int(self.get('audio.chunk_size')),
            "channels": int(self.get('audio.channels')),
            "input_device_index": self.get('audio.input_device_index'),
        }

    def get_conversation_settings(self) -> Dict[str, Any]:
        """Keyword arguments for ConversationStateMachine."""
        return {
            "listen_timeout": float(self.get('conversation.listen_timeout_seconds')),
            "wake_cooldown": float(self.get('conversation.wake_cooldown_seconds')),
            "wait_for_trigger_audio": bool(self.get('conversation.wait_for_trigger_audio')),
            "resume_recording_after_reply": bool(
                self.get('conversation.resume_recording_after_reply')),
        }
