"""Shared error types.

Errors stay inside the component that can handle them: transport failures in
the connection manager, malformed payloads in the registry or reconciler,
query failures in the polling loop. Nothing here is meant to reach the UI as
an exception.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class AppError(Exception):
    """Base error for application-level failures."""

    message: str
    cause: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.cause is None:
            return self.message
        return f"{self.message} (cause: {self.cause})"


class ValidationError(AppError):
    """Invalid input, payload or configuration."""


class MessageFormatError(ValidationError):
    """A push message or status event that cannot be interpreted."""


@dataclass(eq=False)
class IntegrationError(AppError):
    """The backend answered with an error response."""

    status_code: int | None = None


class InfrastructureError(AppError):
    """Network or transport failure."""
