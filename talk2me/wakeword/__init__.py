"""Wake-word sources."""

from .keyboard_trigger import KeyboardWakeTrigger

__all__ = ["KeyboardWakeTrigger"]
