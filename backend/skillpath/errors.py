"""Error hierarchy shared by the remote clients, stores and views."""

from __future__ import annotations

from typing import Optional


class SkillpathError(RuntimeError):
    """Base class for recoverable skillpath failures."""


class TransientNetworkError(SkillpathError):
    """Remote unreachable, timed out, or answered with a server error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthExpiredError(SkillpathError):
    """Remote rejected the bearer token; the caller must re-authenticate."""


class MalformedDataError(SkillpathError):
    """A progress source returned a payload that failed validation."""


class RemoteRequestError(SkillpathError):
    """Remote rejected the request for a non-retryable reason (4xx other than 401)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OwnershipError(AssertionError):
    """A learning path owned by another user was handed to this user's session."""


__all__ = [
    "AuthExpiredError",
    "MalformedDataError",
    "OwnershipError",
    "RemoteRequestError",
    "SkillpathError",
    "TransientNetworkError",
]
