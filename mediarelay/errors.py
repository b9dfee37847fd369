"""Failure types raised by the relay clients and converted at the HTTP boundary."""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for every failure the relay knows how to report."""


class ClientInputError(RelayError):
    """The inbound request cannot be turned into a backend call."""


class AuthMissing(RelayError):
    """A provider key required for the call is not configured."""


class BackendUnavailable(RelayError):
    """A backend call failed on the network or answered with a non-2xx status.

    ``body`` keeps the backend's error text for logging. It only reaches the
    caller when ``passthrough`` is set.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
        passthrough: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.passthrough = passthrough


class BackendResponseInvalid(BackendUnavailable):
    """A backend answered 2xx but the body does not have the expected shape."""


class GenerationFailed(RelayError):
    """A phase of the submit/poll/fetch generation flow failed."""


class GenerationTimedOut(GenerationFailed):
    """The submitted job never showed up in the backend history."""


class GenerationCancelled(GenerationFailed):
    """The caller disconnected while the job was still being polled."""
