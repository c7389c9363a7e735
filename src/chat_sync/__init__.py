"""Offline-tolerant delivery of chat client events to a remote collector."""

__version__ = "0.1.0"
