# bulkdispatch/core/domain.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ============================================================================
# RECIPIENTS
# ============================================================================

class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class RecipientRecord:
    """One row of the recipients work queue, keyed by identifier."""
    identifier: str
    status: RecipientStatus = RecipientStatus.PENDING


@dataclass(frozen=True)
class BulkInsertResult:
    inserted: int
    skipped: int = 0


# ============================================================================
# COMMANDS
# ============================================================================

class RecipientSource(str, Enum):
    RANDOM = "random"
    PASTE = "paste"
    FILE = "file"


@dataclass(frozen=True)
class StartCommand:
    """
    Observer request to start a dispatch session.

    ``image_url`` is accepted for forward compatibility only; attachments
    are never dispatched.
    """
    message: str
    source: RecipientSource
    quantity: Optional[int] = None
    number_list: Optional[str] = None
    image_url: Optional[str] = None


# ============================================================================
# SESSION STATE
# ============================================================================

class DispatchState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    SENDING = "sending"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Progress:
    sent: int
    failed: int
    total: int

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.sent - self.failed)

    def to_dict(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "remaining": self.remaining,
        }


@dataclass
class SessionContext:
    """
    State of one dispatch session, owned by the controller.

    Only the controller mutates it; observers reach it through the
    controller's command channels.
    """
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: DispatchState = DispatchState.IDLE
    is_sending: bool = False
    cancel_requested: bool = False
    sent: int = 0
    failed: int = 0
    total: int = 0

    def record_sent(self) -> None:
        self.sent += 1

    def record_failed(self) -> None:
        self.failed += 1

    def progress(self) -> Progress:
        return Progress(sent=self.sent, failed=self.failed, total=self.total)

    def finish(self, state: DispatchState) -> None:
        self.state = state
        self.is_sending = False
        self.cancel_requested = False


@dataclass(frozen=True)
class SessionResult:
    session_id: str
    state: DispatchState
    progress: Progress
    reason: Optional[str] = None
