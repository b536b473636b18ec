from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import (
    AUTO_CONFIRM_THRESHOLD,
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    DEFAULT_DURATION_MINUTES,
    WORKFLOW_MAX_RETRIES,
    WORKING_DAYS,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class MeetingType(str, Enum):
    URGENT = "urgent"
    REGULAR = "regular"
    FLEXIBLE = "flexible"
    RECURRING = "recurring"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequestStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class WorkflowType(str, Enum):
    DIRECT_SCHEDULE = "direct_schedule"
    NEGOTIATE_TIME = "negotiate_time"
    MULTI_RECIPIENT = "multi_recipient"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ResponseType(str, Enum):
    ACCEPT_TIME = "accept_time"
    REJECT_TIME = "reject_time"
    SUGGEST_ALTERNATIVE = "suggest_alternative"
    DECLINE_MEETING = "decline_meeting"


class ResponseAction(str, Enum):
    ACCEPT = "accept"
    SUGGEST_ALTERNATIVES = "suggest_alternatives"
    REQUEST_MORE_INFO = "request_more_info"
    SHARE_SCHEDULING_LINK = "share_scheduling_link"


class Tone(str, Enum):
    CASUAL = "casual"
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"


class SenderRelationship(str, Enum):
    STRANGER = "stranger"
    NEW_CONTACT = "new_contact"
    KNOWN_CONTACT = "known_contact"


TERMINAL_WORKFLOW_STATUSES = (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED)
BLOCKING_HOLD_STATUSES = (HoldStatus.ACTIVE, HoldStatus.CONFIRMED)


@dataclass(frozen=True)
class ParsedInstant:
    """Result of parsing a free-text date/time. `is_valid` is true exactly when `instant` is set."""
    text: str
    instant: Optional[datetime]
    is_valid: bool
    confidence: int
    error: Optional[str] = None
    strategy: Optional[str] = None
    has_time: bool = False

    def __post_init__(self) -> None:
        if self.is_valid != (self.instant is not None):
            raise ValueError("ParsedInstant.is_valid must be true exactly when instant is set")

    @classmethod
    def invalid(cls, text: str, error: str, strategy: Optional[str] = None) -> "ParsedInstant":
        return cls(text=text, instant=None, is_valid=False, confidence=0, error=error, strategy=strategy)


@dataclass(frozen=True)
class InboundEmail:
    id: str
    sender: str
    subject: str
    body: str
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    category: Optional[str] = None
    received_at: Optional[datetime] = None


@dataclass
class MeetingRequest:
    sender_email: str
    subject: str
    user_id: str = ""
    email_id: Optional[str] = None
    meeting_type: MeetingType = MeetingType.REGULAR
    requested_duration: int = DEFAULT_DURATION_MINUTES
    preferred_dates: List[str] = field(default_factory=list)  # ISO-8601; bare date when no time was given
    attendees: List[str] = field(default_factory=list)
    location_preference: Optional[str] = None
    special_requirements: Optional[str] = None
    urgency_level: Urgency = Urgency.MEDIUM
    detection_confidence: int = 0  # 0..100
    status: RequestStatus = RequestStatus.PENDING
    id: str = field(default_factory=lambda: new_id("mr"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TimeSlotSuggestion:
    start: datetime
    end: datetime
    confidence: int  # 0..100
    reason: str

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass
class CalendarHold:
    meeting_request_id: str
    user_id: str
    start: datetime
    end: datetime
    holder_email: str
    expires_at: datetime
    status: HoldStatus = HoldStatus.ACTIVE
    notes: Optional[str] = None
    # client key of the tentative calendar event backing this hold, if any
    event_key: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("hold"))
    created_at: datetime = field(default_factory=utcnow)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def blocks(self) -> bool:
        return self.status in BLOCKING_HOLD_STATUSES


@dataclass
class SchedulingWorkflow:
    meeting_request_id: str
    workflow_type: WorkflowType
    total_steps: int
    current_step: str = "initializing"
    step_number: int = 1
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    context: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    max_retries: int = WORKFLOW_MAX_RETRIES
    failure_reason: Optional[str] = None
    event_id: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("wf"))
    updated_at: datetime = field(default_factory=utcnow)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES


@dataclass(frozen=True)
class BookingDetails:
    event_id: Optional[str]
    event_status: str  # tentative | not_created
    time_slot: str
    duration: int
    attendee_email: str


@dataclass(frozen=True)
class SchedulingResponse:
    meeting_request_id: str
    recipient: str
    response_type: ResponseType
    action: ResponseAction
    confidence: int
    email_content: str
    suggested_start: Optional[datetime] = None
    suggested_end: Optional[datetime] = None
    alternatives: Tuple[TimeSlotSuggestion, ...] = ()
    booking: Optional[BookingDetails] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BusinessHours:
    start_hour: int = BUSINESS_HOURS_START
    end_hour: int = BUSINESS_HOURS_END
    working_days: Tuple[int, ...] = WORKING_DAYS  # Monday == 0

    def is_working_day(self, weekday: int) -> bool:
        return weekday in self.working_days


@dataclass(frozen=True)
class SchedulingPreferences:
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    auto_confirm_threshold: float = AUTO_CONFIRM_THRESHOLD
