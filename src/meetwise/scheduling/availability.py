from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Tuple

from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..config import SLOT_INTERVAL_MINUTES
from ..context import RequestContext
from ..errors import CalendarProviderError
from ..infra.calendar_provider import AvailabilityResult
from .models import BusinessHours, TimeSlotSuggestion
from .zones import load_zone

logger = logging.getLogger(__name__)

PREFERRED_RANGE_DAYS = 7
DEFAULT_RANGE_DAYS = 14

MIN_SLOT_SCORE = 5
MAX_SLOT_SCORE = 95
# 10-11am on a working day
OPTIMAL_SLOT_SCORE = 80


def score_slot(start: datetime, business_hours: BusinessHours) -> Tuple[int, str]:
    """Heuristic 0..100 score for a slot starting at `start` (owner-local)."""
    hour = start.hour
    score = 50
    reason = "Available time"

    if 10 <= hour <= 11:
        score += 20
        reason = "Optimal morning time"
    elif 14 <= hour <= 15:
        score += 15
        reason = "Good afternoon slot"
    elif 9 <= hour <= 17:
        score += 10
        reason = "Business hours"

    if business_hours.is_working_day(start.weekday()):
        score += 10
    if hour < 9 or hour > 16:
        score -= 15

    return max(MIN_SLOT_SCORE, min(MAX_SLOT_SCORE, score)), reason


class AvailabilityResolver:
    """Finds free slots for the context's calendar owner, in the owner's zone."""

    def __init__(self, ctx: RequestContext, interval_minutes: int = SLOT_INTERVAL_MINUTES) -> None:
        self.ctx = ctx
        self.interval = timedelta(minutes=interval_minutes)

    def _day_range(self, preferred_date) -> List[date]:
        zone = load_zone(self.ctx.zone_id)
        if preferred_date is None:
            first = self.ctx.now().astimezone(zone).date() + timedelta(days=1)
            span = DEFAULT_RANGE_DAYS
        else:
            if isinstance(preferred_date, datetime):
                first = preferred_date.astimezone(zone).date()
            else:
                first = preferred_date
            span = PREFERRED_RANGE_DAYS
        return [first + timedelta(days=i) for i in range(span + 1)]

    def _candidates(self, duration: int, preferred_date, business_hours: BusinessHours) -> Iterator[TimeSlotSuggestion]:
        zone = load_zone(self.ctx.zone_id)
        now = self.ctx.now()
        length = timedelta(minutes=duration)

        for day in self._day_range(preferred_date):
            if not business_hours.is_working_day(day.weekday()):
                continue
            start = datetime.combine(day, time(business_hours.start_hour), tzinfo=zone)
            day_end = datetime.combine(day, time(0), tzinfo=zone) + timedelta(hours=business_hours.end_hour)
            while start + length <= day_end:
                if start >= now:
                    confidence, reason = score_slot(start, business_hours)
                    yield TimeSlotSuggestion(start=start, end=start + length, confidence=confidence, reason=reason)
                start += self.interval

    def suggest_slots(
        self,
        duration: int,
        preferred_date=None,
        business_hours: Optional[BusinessHours] = None,
        max_suggestions: int = 5,
        exclude_request_id: Optional[str] = None,
    ) -> List[TimeSlotSuggestion]:
        """
        Free slots of `duration` minutes, best first.

        Scores depend only on the slot's start, so candidates are ranked first
        and checked against the calendar in rank order until enough are free.
        """
        if duration <= 0 or max_suggestions <= 0:
            return []
        business_hours = business_hours or BusinessHours()

        ranked = sorted(
            self._candidates(duration, preferred_date, business_hours),
            key=lambda s: (-s.confidence, s.start),
        )

        out: List[TimeSlotSuggestion] = []
        checked = 0
        last_error: Optional[Exception] = None
        for slot in ranked:
            if len(out) >= max_suggestions:
                break
            try:
                result = self.ctx.provider.check_availability(self.ctx.account, slot.start, slot.end)
            except (CalendarProviderError, Urllib3HTTPError) as e:
                logger.warning("[availability] slot check failed, skipping start=%s err=%r", slot.start.isoformat(), e)
                last_error = e
                continue
            checked += 1
            if not result.available:
                continue
            if self.ctx.store.has_conflict(self.ctx.user_id, slot.start, slot.end, exclude_request_id):
                continue
            out.append(slot)

        if ranked and not checked and last_error is not None:
            # no candidate could be checked at all
            raise last_error

        logger.info(
            "[availability] suggestions user_id=%s duration=%d candidates=%d found=%d",
            self.ctx.user_id, duration, len(ranked), len(out),
        )
        return out

    def check_slot(
        self, start: datetime, duration: int, exclude_request_id: Optional[str] = None
    ) -> AvailabilityResult:
        """Provider free/busy plus held slots for one requested time. Provider errors propagate."""
        end = start + timedelta(minutes=duration)
        result = self.ctx.provider.check_availability(self.ctx.account, start, end)
        if not result.available:
            return result
        if self.ctx.store.has_conflict(self.ctx.user_id, start, end, exclude_request_id):
            return AvailabilityResult(available=False)
        return result
