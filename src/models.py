"""Provider-neutral data model shared by every layer of the agent.

Backend SDK types never leave ``src/providers/``; the router, the
orchestration graph and the session store only ever see the types below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ── Conversation turns ───────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCall:
    """A model-requested function invocation.

    ``arguments`` is already decoded into a dict; providers are responsible
    for parsing whatever wire format the backend uses.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(id=data["id"], name=data["name"], arguments=dict(data.get("arguments") or {}))


@dataclass
class Message:
    """One turn of a conversation.

    ``tool_calls`` is only populated on assistant turns.  ``tool_call_id``
    and ``name`` are only populated on tool-result turns: the id serves
    backends that correlate results by call id, the function name serves
    backends that correlate by name.
    """

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    # ── Constructors ─────────────────────────────────────────────────

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ToolCall] | tuple[ToolCall, ...] = ()) -> Message:
        return cls(role=Role.ASSISTANT, content=content or "", tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, call: ToolCall, content: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=call.id, name=call.name)

    # ── Helpers ──────────────────────────────────────────────────────

    @property
    def has_tool_calls(self) -> bool:
        return self.role is Role.ASSISTANT and bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            content=data.get("content") or "",
            tool_calls=tuple(ToolCall.from_dict(tc) for tc in data.get("tool_calls") or ()),
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class ToolDefinition:
    """A tool registered at start-up.

    ``description`` is the short text shown to the router; ``parameters``
    is the JSON schema sent only in the execution stage.
    """

    name: str
    description: str
    parameters: dict[str, Any]

    def summary(self) -> str:
        return f"{self.name}: {self.description}"


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResult:
    """What a provider returns for one model turn."""

    message: Message
    model: str
    usage: Usage | None = None


# ── Identity ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionKey:
    """Composite conversation identity.

    Two tenants may see the same ``user_id``; they never share a session.
    """

    tenant_id: int
    user_id: str

    def __str__(self) -> str:
        return f"{self.tenant_id}:{self.user_id}"


# ── Booking domain ───────────────────────────────────────────────────


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class Customer:
    id: int
    tenant_id: int
    name: str
    phone_number: str


@dataclass
class Reservation:
    """A booked interval ``[start, end)`` joined with its customer."""

    id: int
    tenant_id: int
    customer_id: int
    customer_name: str
    phone_number: str
    start: datetime
    end: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    price: float | None = None
    notes: str | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval intersection."""
        return start < self.end and end > self.start

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "phone_number": self.phone_number,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status.value,
            "price": self.price,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reservation:
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            customer_id=data["customer_id"],
            customer_name=data["customer_name"],
            phone_number=data["phone_number"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            status=ReservationStatus(data["status"]),
            price=data.get("price"),
            notes=data.get("notes"),
        )


@dataclass
class SalesSummary:
    period: str
    total_reservations: int = 0
    total_hours: float = 0.0
    total_revenue: float = 0.0


@dataclass
class CustomerStats:
    customer_id: int
    name: str
    phone_number: str
    count: int
    total_spent: float | None = None


@dataclass(frozen=True)
class UsageEvent:
    """One provider call, as recorded by the metering sink."""

    tenant_id: int
    user_id: str
    provider: str
    model: str
    request_type: str
    usage: Usage = field(default_factory=Usage)
    created_at: datetime = field(default_factory=datetime.now, compare=False)


@dataclass
class UsageTotals:
    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, usage: Usage) -> None:
        self.requests += 1
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += usage.total_tokens


@dataclass
class ModelUsage:
    provider: str
    model: str
    totals: UsageTotals = field(default_factory=UsageTotals)


@dataclass
class UsageSummary:
    """Token spend since ``since`` (all time when ``None``), optionally for one tenant."""

    tenant_id: int | None
    since: datetime | None
    total: UsageTotals = field(default_factory=UsageTotals)
    by_model: list[ModelUsage] = field(default_factory=list)
