"""Ports for the credential/session subsystem.

The engine never renews tokens itself: it reads the current token, is told
when a new one arrives and reconnects the push channel.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

Unsubscribe = Callable[[], None]


class CredentialPort(Protocol):
    def get_access_token(self) -> str | None:
        """Current access token, or None when logged out."""

    def on_token_refreshed(self, handler: Callable[[], None]) -> Unsubscribe:
        """Call handler after every token renewal."""

    def is_authenticated(self) -> bool:
        ...


class HandshakePort(Protocol):
    async def fetch_handshake_token(self) -> str:
        """Anti-forgery token, fetched once per connection attempt."""
