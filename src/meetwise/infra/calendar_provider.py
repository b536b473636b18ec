from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .retry import RetryPolicy, call_with_retry


@dataclass(frozen=True)
class CalendarStamp:
    """A wall-clock time with its zone, as handed to a calendar provider."""
    local_date_time: str  # RFC 3339, e.g. "2026-10-20T14:00:00-07:00"
    zone_id: str          # IANA, e.g. "America/Los_Angeles"

    def as_payload(self) -> Dict[str, str]:
        return {"dateTime": self.local_date_time, "timeZone": self.zone_id}


@dataclass(frozen=True)
class EventDraft:
    summary: str
    start: CalendarStamp
    end: CalendarStamp
    description: str = ""
    attendees: Tuple[str, ...] = ()
    location: Optional[str] = None
    status: str = "confirmed"  # confirmed | tentative
    # client-chosen id so a retried create cannot book the event twice
    event_key: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not isinstance(self.start, CalendarStamp) or not isinstance(self.end, CalendarStamp):
            raise TypeError("event start/end must be zone-stamped CalendarStamp values")
        if not self.start.zone_id or not self.end.zone_id:
            raise ValueError("event start/end must carry an explicit zone id")


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    summary: str
    start: datetime
    end: datetime
    status: str = "confirmed"

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: Tuple[CalendarEvent, ...] = field(default_factory=tuple)


def overlapping(events: List[CalendarEvent], start: datetime, end: datetime) -> List[CalendarEvent]:
    return [e for e in events if e.status != "cancelled" and e.overlaps(start, end)]


class CalendarProvider(ABC):
    @abstractmethod
    def check_availability(self, account: str, start: datetime, end: datetime) -> AvailabilityResult:
        raise NotImplementedError

    @abstractmethod
    def create_event(self, account: str, draft: EventDraft) -> str:
        raise NotImplementedError

    @abstractmethod
    def update_event_status(self, account: str, event_key: str, status: str) -> str:
        """Move the event created under `event_key` to `status` (tentative -> confirmed). Returns its id."""
        raise NotImplementedError

    @abstractmethod
    def list_events(self, account: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        raise NotImplementedError

    @abstractmethod
    def get_timezone(self, account: str) -> str:
        raise NotImplementedError


class RetryingCalendarProvider(CalendarProvider):
    """Applies bounded retry with backoff to every call on the wrapped provider."""

    def __init__(self, inner: CalendarProvider, policy: Optional[RetryPolicy] = None) -> None:
        self.inner = inner
        self.policy = policy or RetryPolicy()

    def check_availability(self, account: str, start: datetime, end: datetime) -> AvailabilityResult:
        return call_with_retry(
            self.inner.check_availability, account, start, end, policy=self.policy, label="calendar.check_availability"
        )

    def create_event(self, account: str, draft: EventDraft) -> str:
        return call_with_retry(self.inner.create_event, account, draft, policy=self.policy, label="calendar.create_event")

    def update_event_status(self, account: str, event_key: str, status: str) -> str:
        return call_with_retry(
            self.inner.update_event_status, account, event_key, status, policy=self.policy, label="calendar.update_event_status"
        )

    def list_events(self, account: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        return call_with_retry(
            self.inner.list_events, account, start, end, policy=self.policy, label="calendar.list_events"
        )

    def get_timezone(self, account: str) -> str:
        return call_with_retry(self.inner.get_timezone, account, policy=self.policy, label="calendar.get_timezone")
