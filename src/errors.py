"""Error taxonomy for the booking agent.

Only ``ValidationError``, ``ConflictError`` and ``NotFoundError`` are meant
for the end user: their message is shown verbatim.  Everything else is
absorbed at the layer where it happens so the conversation can continue.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.models import Reservation


class BookingError(Exception):
    """Base class for user-facing domain errors."""


class ValidationError(BookingError):
    """Unparseable time slot, weekday, phone number or period."""


class ConflictError(BookingError):
    """A booking would overlap an active booking of the same tenant."""

    def __init__(self, message: str, existing: Reservation | None = None):
        self.existing = existing
        super().__init__(message)


class NotFoundError(BookingError):
    """Referenced booking or customer does not exist for this tenant."""


class ProviderError(Exception):
    """An LLM backend call failed or returned something we cannot decode."""

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class ToolExecutionError(Exception):
    """A tool handler raised; the text goes back to the model as the result."""

    def __init__(self, tool_name: str, cause: Exception):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"{tool_name} failed: {cause}")


class RoutingFailure(Exception):
    """The tool-selection stage produced nothing usable."""


class ChannelAPIError(Exception):
    """Raised when a messaging-channel API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
