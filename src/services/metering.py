"""Token-usage metering sinks.

Every provider call (routing and execution) produces one
:class:`~src.models.UsageEvent`.  Recording is append-only and never fatal:
:func:`record_safely` logs and swallows sink failures so a metering outage
can't break a conversation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from src.models import UsageEvent
from src.services.datastore import BookingStore
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


class UsageSink(ABC):
    @abstractmethod
    async def record(self, event: UsageEvent) -> None: ...


class LoggingUsageSink(UsageSink):
    """Logs usage only.  Used by the CLI and when no database is configured."""

    async def record(self, event: UsageEvent) -> None:
        logger.info(
            "Usage tenant=%d user=%s %s/%s %s prompt=%d completion=%d total=%d",
            event.tenant_id, event.user_id, event.provider, event.model, event.request_type,
            event.usage.prompt_tokens, event.usage.completion_tokens, event.usage.total_tokens,
        )


class DatabaseUsageSink(UsageSink):
    """Writes to the ``token_usage`` table through the booking store."""

    def __init__(self, store: BookingStore):
        self._store = store

    async def record(self, event: UsageEvent) -> None:
        await self._store.record_usage(event)


async def record_safely(sink: UsageSink | None, event: UsageEvent) -> None:
    """Record ``event`` and publish token metrics; failures are logged, never raised."""
    metrics.record_tokens(
        event.provider, event.model,
        prompt=event.usage.prompt_tokens, completion=event.usage.completion_tokens,
    )
    if sink is None:
        return
    try:
        await sink.record(event)
    except Exception:
        logger.exception("Failed to record token usage for %s:%s", event.tenant_id, event.user_id)
