"""
Core data types for the sports feed pipeline.

This module defines the data structures shared by every pipeline stage:
- RawItem: An item as returned by a feed fetcher
- Story: A cleaned, fingerprinted and (later) scored news item
- Operation payloads: Typed payloads for each external operation kind
- RetryTask / ErrorRecord: Retry queue entries and the error audit log
- WorkflowState: The process-wide pause/resume flag
- BudgetSnapshot: A point-in-time view of the spend ledger

All persisted types round-trip through plain dicts (``to_dict``/``from_dict``)
so they can be stored as JSON.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Category(str, Enum):
    """Story categories, in the order their rules are evaluated."""

    TRADE = "Trade"
    INJURY = "Injury"
    SCANDAL = "Scandal"
    RECORD = "Record"
    PERSONNEL = "Personnel"
    RETIREMENT = "Retirement"
    GAME_RESULT = "Game Result"
    GENERAL = "General"


class Route(str, Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    DISCARD = "discard"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"


@dataclass
class RawItem:
    """A feed item before cleaning and fingerprinting.

    Attributes:
        title: Item title, may still contain markup
        description: Item description, may still contain markup
        link: Item URL
        published_at: Publication time if the feed provides one
        guid: Feed-provided unique id, if any
    """

    title: str
    description: str
    link: str
    published_at: datetime | None = None
    guid: str | None = None


@dataclass
class Story:
    """A news story pulled from a source.

    The urgency score and category are computed once by the scorer and
    cannot be replaced afterwards; only rewritten content, the routing
    decision and the processing timestamp are attached later.

    Attributes:
        id: Stable fingerprint used for deduplication
        title: Cleaned title
        description: Cleaned description (possibly empty)
        link: Canonical source URL
        source_name: Name of the feed the story came from
        source_priority: Trust rank of the feed, 1 is the most trusted
        published_at: Publication time, None if the feed gave none
        guid: Feed guid, if any
        urgency_score: 0-10 urgency, None until scored
        category: Category label, None until scored
        route: Routing decision made by the orchestrator
        rewrites: Rewritten variants keyed by style
        processed_at: When the story finished processing
    """

    id: str
    title: str
    description: str
    link: str
    source_name: str
    source_priority: int
    published_at: datetime | None = None
    guid: str | None = None
    urgency_score: float | None = None
    category: Category | None = None
    route: Route | None = None
    rewrites: dict[str, str] = field(default_factory=dict)
    processed_at: datetime | None = None

    @property
    def is_scored(self) -> bool:
        return self.urgency_score is not None

    def with_score(self, score: float, category: Category) -> "Story":
        if self.is_scored:
            raise ValueError(f"story {self.id} is already scored")
        return replace(self, urgency_score=score, category=category, rewrites=dict(self.rewrites))

    def attach_rewrites(self, rewrites: dict[str, str]) -> None:
        self.rewrites.update({style: text for style, text in rewrites.items() if text})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "source_name": self.source_name,
            "source_priority": self.source_priority,
            "published_at": to_iso(self.published_at),
            "guid": self.guid,
            "urgency_score": self.urgency_score,
            "category": self.category.value if self.category else None,
            "route": self.route.value if self.route else None,
            "rewrites": dict(self.rewrites),
            "processed_at": to_iso(self.processed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Story":
        category = data.get("category")
        route = data.get("route")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            link=data.get("link", ""),
            source_name=data.get("source_name", ""),
            source_priority=int(data.get("source_priority", 2)),
            published_at=from_iso(data.get("published_at")),
            guid=data.get("guid"),
            urgency_score=data.get("urgency_score"),
            category=Category(category) if category else None,
            route=Route(route) if route else None,
            rewrites=dict(data.get("rewrites") or {}),
            processed_at=from_iso(data.get("processed_at")),
        )


class OperationKind(str, Enum):
    FETCH = "fetch"
    REWRITE = "rewrite"
    NOTIFY = "notify"
    UPLOAD = "upload"


@dataclass(frozen=True)
class FetchOp:
    """Fetch one news source."""

    kind: ClassVar[OperationKind] = OperationKind.FETCH
    source_name: str
    url: str


@dataclass(frozen=True)
class RewriteOp:
    """Rewrite a story's text in one style."""

    kind: ClassVar[OperationKind] = OperationKind.REWRITE
    story_id: str
    text: str
    style: str
    target_length: str
    language: str


@dataclass(frozen=True)
class NotifyOp:
    """Deliver a message through one notification sink."""

    kind: ClassVar[OperationKind] = OperationKind.NOTIFY
    sink: str
    subject: str
    body: str
    story_ids: list[str] = field(default_factory=list)
    html: str | None = None
    link: str | None = None


@dataclass(frozen=True)
class UploadOp:
    """Upload generated media for a story."""

    kind: ClassVar[OperationKind] = OperationKind.UPLOAD
    story_id: str
    target: str
    metadata: dict[str, Any] = field(default_factory=dict)


Operation = FetchOp | RewriteOp | NotifyOp | UploadOp

_OPERATION_TYPES: dict[OperationKind, type] = {
    OperationKind.FETCH: FetchOp,
    OperationKind.REWRITE: RewriteOp,
    OperationKind.NOTIFY: NotifyOp,
    OperationKind.UPLOAD: UploadOp,
}


def operation_to_dict(op: Operation) -> dict[str, Any]:
    return {"kind": op.kind.value, "payload": asdict(op)}


def operation_from_payload(kind: OperationKind | str, payload: dict[str, Any]) -> Operation:
    """Rebuild a typed operation from its kind and persisted payload."""
    op_type = _OPERATION_TYPES[OperationKind(kind)]
    return op_type(**(payload or {}))


def operation_from_dict(data: dict[str, Any]) -> Operation:
    return operation_from_payload(data["kind"], data.get("payload") or {})


@dataclass
class ErrorRecord:
    """Audit entry for one failure.

    ``resolved`` only ever moves from False to True.
    """

    id: str
    timestamp: datetime
    message: str
    error_type: str
    severity: Severity
    operation: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: datetime | None = None

    def resolve(self, when: datetime) -> bool:
        if self.resolved:
            return False
        self.resolved = True
        self.resolved_at = when
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "message": self.message,
            "error_type": self.error_type,
            "severity": self.severity.value,
            "operation": self.operation,
            "context": self.context,
            "resolved": self.resolved,
            "resolved_at": to_iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorRecord":
        return cls(
            id=data["id"],
            timestamp=from_iso(data.get("timestamp")) or utc_now(),
            message=data.get("message", ""),
            error_type=data.get("error_type", "Exception"),
            severity=Severity(data.get("severity", Severity.LOW.value)),
            operation=data.get("operation"),
            context=dict(data.get("context") or {}),
            resolved=bool(data.get("resolved", False)),
            resolved_at=from_iso(data.get("resolved_at")),
        )


@dataclass
class RetryTask:
    """A deferred re-attempt of a failed external operation.

    ``attempt_count`` counts attempts already made, including the original
    call, and never exceeds ``max_attempts``.
    """

    id: str
    operation: Operation
    max_attempts: int
    next_attempt_at: datetime
    attempt_count: int = 1
    error_id: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    last_error: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def operation_name(self) -> str:
        return self.operation.kind.value

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.PERMANENTLY_FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation": operation_to_dict(self.operation),
            "max_attempts": self.max_attempts,
            "next_attempt_at": to_iso(self.next_attempt_at),
            "attempt_count": self.attempt_count,
            "error_id": self.error_id,
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "last_error": self.last_error,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryTask":
        status = TaskStatus(data.get("status", TaskStatus.PENDING.value))
        # A task persisted mid-attempt is picked up again on the next sweep.
        if status == TaskStatus.ATTEMPTING:
            status = TaskStatus.PENDING
        return cls(
            id=data["id"],
            operation=operation_from_dict(data["operation"]),
            max_attempts=int(data.get("max_attempts", 4)),
            next_attempt_at=from_iso(data.get("next_attempt_at")) or utc_now(),
            attempt_count=int(data.get("attempt_count", 1)),
            error_id=data.get("error_id"),
            status=status,
            created_at=from_iso(data.get("created_at")) or utc_now(),
            last_error=data.get("last_error"),
            context=dict(data.get("context") or {}),
        )


@dataclass
class WorkflowState:
    """Process-wide pause/resume flag.

    ``pause_reason`` is set exactly when ``is_active`` is False.
    """

    is_active: bool = True
    pause_reason: str | None = None
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    pause_count: int = 0
    resume_count: int = 0

    def mark_paused(self, reason: str, when: datetime) -> bool:
        if not self.is_active:
            return False
        self.is_active = False
        self.pause_reason = reason or "unspecified"
        self.paused_at = when
        self.pause_count += 1
        return True

    def mark_resumed(self, when: datetime) -> bool:
        if self.is_active:
            return False
        self.is_active = True
        self.pause_reason = None
        self.resumed_at = when
        self.resume_count += 1
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "pause_reason": self.pause_reason,
            "paused_at": to_iso(self.paused_at),
            "resumed_at": to_iso(self.resumed_at),
            "pause_count": self.pause_count,
            "resume_count": self.resume_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowState":
        is_active = bool(data.get("is_active", True))
        reason = data.get("pause_reason")
        if not is_active and not reason:
            reason = "unspecified"
        return cls(
            is_active=is_active,
            pause_reason=None if is_active else reason,
            paused_at=from_iso(data.get("paused_at")),
            resumed_at=from_iso(data.get("resumed_at")),
            pause_count=int(data.get("pause_count", 0)),
            resume_count=int(data.get("resume_count", 0)),
        )


@dataclass(frozen=True)
class PeriodSpend:
    current: float
    limit: float

    @property
    def percentage(self) -> float:
        if self.limit <= 0:
            return 0.0
        return round(self.current / self.limit * 100, 1)

    def to_dict(self) -> dict[str, float]:
        return {"current": self.current, "limit": self.limit, "percentage": self.percentage}


@dataclass(frozen=True)
class BudgetSnapshot:
    """Point-in-time view of the spend ledger."""

    daily: PeriodSpend
    weekly: PeriodSpend
    monthly: PeriodSpend
    usage: dict[str, float]
    health: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "spending": {
                "daily": self.daily.to_dict(),
                "weekly": self.weekly.to_dict(),
                "monthly": self.monthly.to_dict(),
            },
            "usage": dict(self.usage),
            "budget_health": self.health,
        }
