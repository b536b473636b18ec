from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

from meetwise.ai.classifier import IntentClassifier, IntentDetails, IntentResult
from meetwise.context import RequestContext
from meetwise.errors import CalendarProviderError
from meetwise.infra.calendar_provider import (
    AvailabilityResult,
    CalendarEvent,
    CalendarProvider,
    EventDraft,
    overlapping,
)
from meetwise.infra.retry import NO_DELAY
from meetwise.infra.store import InMemorySchedulingStore
from meetwise.scheduling.models import InboundEmail, MeetingRequest

LA = ZoneInfo("America/Los_Angeles")
USER_ID = "user-1"
USER_EMAIL = "owner@example.com"

# Monday 2026-10-19, 08:00 in Los Angeles
NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def local(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=LA)


class FakeCalendarProvider(CalendarProvider):
    """In-memory calendar. `fail_checks` > 0 fails that many checks; < 0 fails every check."""

    def __init__(self, zone: str = "America/Los_Angeles") -> None:
        self.zone = zone
        self.busy: List[Tuple[datetime, datetime]] = []
        self.fail_checks = 0
        self.fail_creates = 0
        self.check_calls = 0
        self.created: List[EventDraft] = []
        self.status_updates: List[Tuple[str, str]] = []

    def add_busy(self, start: datetime, end: datetime) -> None:
        self.busy.append((start, end))

    def _events(self) -> List[CalendarEvent]:
        return [CalendarEvent(id=f"busy-{i}", summary="busy", start=s, end=e) for i, (s, e) in enumerate(self.busy)]

    def check_availability(self, account: str, start: datetime, end: datetime) -> AvailabilityResult:
        self.check_calls += 1
        if self.fail_checks:
            if self.fail_checks > 0:
                self.fail_checks -= 1
            raise CalendarProviderError("freeBusy unavailable", status=503, retryable=True)
        conflicts = overlapping(self._events(), start, end)
        return AvailabilityResult(available=not conflicts, conflicts=tuple(conflicts))

    def create_event(self, account: str, draft: EventDraft) -> str:
        if self.fail_creates:
            if self.fail_creates > 0:
                self.fail_creates -= 1
            raise CalendarProviderError("events.insert unavailable", status=503, retryable=True)
        self.created.append(draft)
        return f"evt-{draft.event_key[:8]}"

    def update_event_status(self, account: str, event_key: str, status: str) -> str:
        if not any(d.event_key == event_key for d in self.created):
            raise CalendarProviderError("event not found", status=404, retryable=False)
        self.status_updates.append((event_key, status))
        return f"evt-{event_key[:8]}"

    def list_events(self, account: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        return overlapping(self._events(), start, end)

    def get_timezone(self, account: str) -> str:
        return self.zone


class ScriptedClassifier(IntentClassifier):
    def __init__(self, result: Optional[IntentResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or IntentResult(is_meeting_request=True, confidence=0.9)
        self.error = error
        self.calls: List[str] = []

    def classify(self, text: str) -> IntentResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result


def meeting_intent(confidence: float = 0.9, **details) -> IntentResult:
    return IntentResult(is_meeting_request=True, confidence=confidence, details=IntentDetails(**details))


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def store() -> InMemorySchedulingStore:
    return InMemorySchedulingStore()


@pytest.fixture
def ctx(provider, store) -> RequestContext:
    return RequestContext(
        user_id=USER_ID,
        user_email=USER_EMAIL,
        provider=provider,
        store=store,
        zone_id="America/Los_Angeles",
        clock=lambda: NOW,
        retry_policy=NO_DELAY,
    )


@pytest.fixture
def make_request(store):
    def build(**overrides) -> MeetingRequest:
        fields = dict(
            user_id=USER_ID,
            sender_email="alice@partner.com",
            subject="Roadmap sync",
            requested_duration=60,
            created_at=NOW,
        )
        fields.update(overrides)
        request = MeetingRequest(**fields)
        store.put_meeting_request(request)
        return request
    return build


@pytest.fixture
def make_email():
    def build(body: str, **overrides) -> InboundEmail:
        fields = dict(
            id=f"msg-{abs(hash(body)) % 10_000}",
            sender="alice@partner.com",
            subject="Quick question",
            body=body,
            received_at=NOW - timedelta(minutes=5),
        )
        fields.update(overrides)
        return InboundEmail(**fields)
    return build
