"""Chatwave realtime signalling backend."""
