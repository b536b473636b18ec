from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..config import HOLD_EXPIRY_MINUTES
from ..context import RequestContext
from ..errors import MeetwiseError
from ..infra.calendar_provider import EventDraft
from . import templates
from .availability import AvailabilityResolver
from .models import (
    BookingDetails,
    CalendarHold,
    InboundEmail,
    MeetingRequest,
    ResponseAction,
    ResponseType,
    SchedulingResponse,
    SenderRelationship,
    TimeSlotSuggestion,
    Tone,
)
from .zones import format_local, pick_preferred_start, stamp_for_calendar

logger = logging.getLogger(__name__)

CONFIDENCE_ACCEPT = 95
CONFIDENCE_LINK = 90
CONFIDENCE_ALTERNATIVES = 85
CONFIDENCE_MORE_INFO = 75
MAX_ALTERNATIVES = 3

PROVIDER_ERRORS = (MeetwiseError, Urllib3HTTPError)


class ResponseGenerator:
    """Drafts the reply to a meeting request. Never sends anything."""

    def __init__(self, ctx: RequestContext, availability: Optional[AvailabilityResolver] = None) -> None:
        self.ctx = ctx
        self.availability = availability or AvailabilityResolver(ctx)

    def _preferred(self, request: MeetingRequest) -> Optional[Tuple[datetime, bool]]:
        return pick_preferred_start(request.preferred_dates, self.ctx.zone_id)

    def _is_free(self, request: MeetingRequest, start: datetime) -> bool:
        if start < self.ctx.now():
            return False
        try:
            return self.availability.check_slot(start, request.requested_duration, exclude_request_id=request.id).available
        except PROVIDER_ERRORS as e:
            logger.warning("[responder] slot check failed request_id=%s start=%s err=%r", request.id, start, e)
            return False

    def _alternatives(self, request: MeetingRequest, preferred_start: datetime) -> List[TimeSlotSuggestion]:
        prefs = self.ctx.store.get_preferences(self.ctx.user_id, sender=request.sender_email)
        try:
            return self.availability.suggest_slots(
                request.requested_duration,
                preferred_start,
                business_hours=prefs.business_hours,
                max_suggestions=MAX_ALTERNATIVES,
                exclude_request_id=request.id,
            )
        except PROVIDER_ERRORS as e:
            logger.warning("[responder] alternatives unavailable request_id=%s err=%r", request.id, e)
            return []

    def _hold_slot(self, request: MeetingRequest, start: datetime, end: datetime) -> Optional[CalendarHold]:
        """Hold the accepted time. None when another request holds it first."""
        hold = CalendarHold(
            meeting_request_id=request.id,
            user_id=self.ctx.user_id,
            start=start,
            end=end,
            holder_email=request.sender_email,
            expires_at=self.ctx.now() + timedelta(minutes=HOLD_EXPIRY_MINUTES),
            notes=f"Accepted time for {request.meeting_type.value} meeting",
            event_key=uuid.uuid4().hex,
            created_at=self.ctx.now(),
        )
        if not self.ctx.store.create_hold(hold):
            logger.info("[responder] accepted time taken request_id=%s start=%s", request.id, start)
            return None
        return hold

    def _create_tentative_event(self, request: MeetingRequest, hold: CalendarHold) -> Optional[str]:
        attendees: List[str] = []
        for addr in [request.sender_email, *request.attendees]:
            if addr and addr.lower() not in attendees:
                attendees.append(addr.lower())

        description = f"Meeting requested by {request.sender_email}"
        if request.special_requirements:
            description += f"\n\nSpecial Requirements: {request.special_requirements}"

        try:
            draft = EventDraft(
                summary=request.subject or "Meeting",
                start=stamp_for_calendar(hold.start, self.ctx.zone_id),
                end=stamp_for_calendar(hold.end, self.ctx.zone_id),
                description=description,
                attendees=tuple(attendees),
                location=request.location_preference,
                status="tentative",
                event_key=hold.event_key,
            )
            return self.ctx.provider.create_event(self.ctx.account, draft)
        except (*PROVIDER_ERRORS, ValueError) as e:
            logger.warning("[responder] tentative event not created request_id=%s err=%r", request.id, e)
            return None

    def _accept(
        self, email: InboundEmail, request: MeetingRequest, tone: Tone, relationship: SenderRelationship, start: datetime
    ) -> Optional[SchedulingResponse]:
        end = start + timedelta(minutes=request.requested_duration)
        hold = self._hold_slot(request, start, end)
        if hold is None:
            return None

        event_id = self._create_tentative_event(request, hold)
        time_text = format_local(start, self.ctx.zone_id)
        logger.info(
            "[responder] accept request_id=%s start=%s hold_id=%s event_id=%s", request.id, start, hold.id, event_id
        )
        return SchedulingResponse(
            meeting_request_id=request.id,
            recipient=email.sender,
            response_type=ResponseType.ACCEPT_TIME,
            action=ResponseAction.ACCEPT,
            confidence=CONFIDENCE_ACCEPT,
            email_content=templates.acceptance_email(
                tone, relationship, time_text, event_id is not None, request.location_preference
            ),
            suggested_start=start,
            suggested_end=end,
            booking=BookingDetails(
                event_id=event_id,
                event_status="tentative" if event_id else "not_created",
                time_slot=time_text,
                duration=request.requested_duration,
                attendee_email=request.sender_email,
            ),
            created_at=self.ctx.now(),
        )

    def _share_link(self, email: InboundEmail, request: MeetingRequest, content: str) -> SchedulingResponse:
        logger.info("[responder] share scheduling link request_id=%s", request.id)
        return SchedulingResponse(
            meeting_request_id=request.id,
            recipient=email.sender,
            response_type=ResponseType.SUGGEST_ALTERNATIVE,
            action=ResponseAction.SHARE_SCHEDULING_LINK,
            confidence=CONFIDENCE_LINK,
            email_content=content,
            created_at=self.ctx.now(),
        )

    def generate(
        self, email: InboundEmail, request: MeetingRequest, sender_relationship: SenderRelationship
    ) -> SchedulingResponse:
        tone = self.ctx.store.get_tone(self.ctx.user_id)
        link = self.ctx.store.get_scheduling_link(self.ctx.user_id)
        zone_id = self.ctx.zone_id
        preferred = self._preferred(request)

        if preferred is not None:
            start, has_time = preferred

            if has_time and self._is_free(request, start):
                accepted = self._accept(email, request, tone, sender_relationship, start)
                if accepted is not None:
                    return accepted

            if has_time and link:
                return self._share_link(
                    email, request,
                    templates.conflict_link_email(tone, sender_relationship, format_local(start, zone_id), link),
                )

            alternatives = self._alternatives(request, start)
            if alternatives:
                logger.info("[responder] suggest alternatives request_id=%s count=%d", request.id, len(alternatives))
                return SchedulingResponse(
                    meeting_request_id=request.id,
                    recipient=email.sender,
                    response_type=ResponseType.SUGGEST_ALTERNATIVE,
                    action=ResponseAction.SUGGEST_ALTERNATIVES,
                    confidence=CONFIDENCE_ALTERNATIVES,
                    email_content=templates.alternatives_email(tone, sender_relationship, alternatives, zone_id),
                    suggested_start=alternatives[0].start,
                    suggested_end=alternatives[0].end,
                    alternatives=tuple(alternatives),
                    created_at=self.ctx.now(),
                )

        if link:
            return self._share_link(
                email, request, templates.scheduling_link_email(tone, sender_relationship, request.subject, link)
            )

        logger.info("[responder] request more info request_id=%s", request.id)
        return SchedulingResponse(
            meeting_request_id=request.id,
            recipient=email.sender,
            response_type=ResponseType.SUGGEST_ALTERNATIVE,
            action=ResponseAction.REQUEST_MORE_INFO,
            confidence=CONFIDENCE_MORE_INFO,
            email_content=templates.more_info_email(tone, sender_relationship, request.subject, request.requested_duration),
            created_at=self.ctx.now(),
        )
