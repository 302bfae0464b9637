"""
Transport and Protocol Exceptions

Errors raised before the event stream is established: the network could not
be reached, or the server answered with something that is not a usable
event stream.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from eco_stream.core.exceptions.base import EcoStreamError

NETWORK_ERROR_MESSAGE = "Não foi possível conectar ao servidor da Eco. Verifique sua conexão."
INVALID_STREAM_MESSAGE = (
    "Não foi possível iniciar a transmissão da Eco. Tente novamente em instantes."
)

_STATUS_MESSAGES = {
    401: "Faça login para continuar a conversa com a Eco.",
    429: "Muitas requisições. Aguarde alguns segundos antes de tentar novamente.",
    503: NETWORK_ERROR_MESSAGE,
}
_SERVER_UNAVAILABLE_MESSAGE = "A Eco está indisponível no momento. Tente novamente em instantes."


def friendly_status_message(status: int, fallback: str) -> str:
    """Map an HTTP status to the message shown to the end user."""
    if status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if status >= 500:
        return _SERVER_UNAVAILABLE_MESSAGE
    return fallback


class TransportError(EcoStreamError):
    """
    Raised when the network fails before any byte of the response arrived.

    Common causes:
    - DNS or connection failure
    - Connection reset while sending the request
    - Client offline

    The client retries this error once (fresh X-Stream-Id) before surfacing it.
    """
    pass


class ProtocolError(EcoStreamError):
    """
    Raised when the server response cannot be consumed as an event stream.

    Common causes:
    - Non-2xx status (401, 429, 5xx)
    - Content-Type other than text/event-stream
    - Fallback endpoint answered with an error

    Never retried by the session.
    """

    def __init__(
        self,
        message: str,
        stream_id: str | None = None,
        details: dict[str, Any] | None = None,
        status: int | None = None,
        retry_after: str | None = None,
    ):
        super().__init__(message, stream_id=stream_id, details=details)
        self.status = status
        self.retry_after = retry_after
        if status is not None:
            self.details.setdefault("status", status)
        if retry_after:
            self.details.setdefault("retry_after", retry_after)

    @property
    def reason(self) -> str | None:
        """Machine readable reason, e.g. ``invalid_content_type``."""
        return self.details.get("reason")
