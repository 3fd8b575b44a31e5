"""Ports: the interfaces the engine consumes from external collaborators."""

from .credentials import CredentialPort, HandshakePort
from .jobs_api import JobQueryPort
from .push import PushMessage, PushTransport, WatchHandle

__all__ = [
    "CredentialPort",
    "HandshakePort",
    "JobQueryPort",
    "PushMessage",
    "PushTransport",
    "WatchHandle",
]
