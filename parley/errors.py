"""Exception taxonomy shared by the conversation, transport and tool layers."""

from __future__ import annotations


class ParleyError(Exception):
    """Base class for all parley errors."""


class ConfigError(ParleyError):
    """A required setting or credential is missing or invalid."""


class TransportError(ParleyError):
    """The completion service could not be reached or failed server-side.

    ``transient`` marks failures worth retrying (connection reset, timeout, 5xx).
    """

    def __init__(self, message: str, *, status_code: int | None = None, transient: bool = True) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class ClientError(ParleyError):
    """The completion service rejected the request (4xx). Never retried."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ToolError(ParleyError):
    """Raised by tool handlers; converted to in-band data by the executor."""


class PersistenceError(ParleyError):
    """A store read or write failed."""


class ParseError(ParleyError):
    """Tool arguments or pseudo tool-call text could not be parsed."""


class ConversationBusyError(ParleyError):
    """Too many turns are already in flight for one conversation."""

    def __init__(self, conversation_id: str, limit: int) -> None:
        super().__init__(f"Conversation {conversation_id!r} already has {limit} turn(s) in flight")
        self.conversation_id = conversation_id
        self.limit = limit
