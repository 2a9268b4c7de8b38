"""Realtime presence and call signalling core for the Chatwave backend."""

__version__ = "0.1.0"
