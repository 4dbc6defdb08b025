"""
Queue query types (``approval_kernel.domain.queue``).

Pure value objects describing how a viewer filters and orders the
approval queue, and the annotated entries the queue returns.  Urgency is
carried on the entry, never on the request: it is recomputed per read
from the viewer's ``UrgencyRules``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from approval_kernel.domain.approval import ApprovalPolicy, ApprovalRequest

STATUS_ALL = "all"
STATUS_OPEN = "open"
TYPE_ALL = "all"


class SortMode(str, Enum):
    """Queue ordering."""

    URGENT = "urgent"
    NEWEST = "newest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class QueueFilter:
    """Viewer-supplied queue filter.

    ``status`` is ``"all"``, ``"open"`` (pending or pending_second) or a
    single ``RequestStatus`` value.
    """

    status: str = STATUS_ALL
    action_type: str = TYPE_ALL
    urgent_only: bool = False
    search_text: str = ""
    scope_id: str | None = None


@dataclass(frozen=True)
class QueueEntry:
    """A request annotated for presentation."""

    request: ApprovalRequest
    policy: ApprovalPolicy | None
    urgent: bool

    @property
    def is_open(self) -> bool:
        return self.request.is_open


@dataclass(frozen=True)
class QueueSummary:
    """Counters shown above the queue."""

    pending: int
    pending_second: int
    urgent: int
    total: int

    @property
    def open(self) -> int:
        return self.pending + self.pending_second
