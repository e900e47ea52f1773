"""Talk2Me - voice conversation client for a remote speech service."""

__version__ = "0.1.0"
