"""Monitoring helpers and metric registry for the signalling service."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
