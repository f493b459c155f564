"""Telegram front-end for an OpenCode agent server."""

__version__ = "0.4.0"
