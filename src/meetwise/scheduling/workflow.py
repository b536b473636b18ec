"""
Scheduling workflow state machine.

One workflow per meeting request. Each step is written to the store before the
step's external call, so a crashed invocation leaves a resumable record. The
request is re-read before every calendar write; a request cancelled or
declined meanwhile aborts the workflow without touching the calendar.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, TypeVar

from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..config import HOLD_EXPIRY_MINUTES
from ..context import RequestContext
from ..errors import CalendarProviderError, HoldConflictError, RecordNotFoundError, WorkflowCancelledError
from ..infra.calendar_provider import EventDraft
from ..infra.serialization import suggestion_from_dict, suggestion_to_dict
from ..infra.store import SchedulingStore
from .availability import OPTIMAL_SLOT_SCORE, AvailabilityResolver
from .models import (
    CalendarHold,
    HoldStatus,
    MeetingRequest,
    RequestStatus,
    SchedulingWorkflow,
    TimeSlotSuggestion,
    Urgency,
    WorkflowStatus,
    WorkflowType,
)
from .zones import pick_preferred_start, stamp_for_calendar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIRECT_MIN_CONFIDENCE = 85
# slot quality is confidence relative to an optimal weekday-morning slot
AUTO_CONFIRM_SLOT_QUALITY = 0.9
MAX_SUGGESTIONS = 5

HOLD_LIMITS = {
    WorkflowType.DIRECT_SCHEDULE: 2,
    WorkflowType.NEGOTIATE_TIME: 3,
    WorkflowType.MULTI_RECIPIENT: 3,
}

# (suggestion step, hold step, final waiting step)
STEP_NAMES = {
    WorkflowType.DIRECT_SCHEDULE: ("generating_suggestions", "creating_holds", "awaiting_confirmation"),
    WorkflowType.NEGOTIATE_TIME: ("generating_options", "creating_multiple_holds", "awaiting_selection"),
    WorkflowType.MULTI_RECIPIENT: ("finding_common_availability", "coordinating_holds", "coordinating_group"),
}

CANCELLING_STATUSES = (RequestStatus.CANCELLED, RequestStatus.DECLINED)
PROVIDER_ERRORS = (CalendarProviderError, Urllib3HTTPError)


class StepFailed(Exception):
    pass


def sweep_expired_holds(store: SchedulingStore, now: datetime) -> List[CalendarHold]:
    """Expire active holds past their expiry. Safe to run repeatedly and concurrently."""
    expired = store.expire_holds(now)
    logger.info("[sweep] expired holds count=%d now=%s", len(expired), now.isoformat())
    for h in expired:
        logger.info("[sweep] hold expired hold_id=%s request_id=%s start=%s", h.id, h.meeting_request_id, h.start)
    return expired


def select_workflow_type(request: MeetingRequest) -> WorkflowType:
    if len(request.attendees) > 2:
        return WorkflowType.MULTI_RECIPIENT
    if request.urgency_level == Urgency.HIGH and request.detection_confidence >= DIRECT_MIN_CONFIDENCE:
        return WorkflowType.DIRECT_SCHEDULE
    return WorkflowType.NEGOTIATE_TIME


class SchedulingWorkflowEngine:
    def __init__(self, ctx: RequestContext, availability: Optional[AvailabilityResolver] = None) -> None:
        self.ctx = ctx
        self.store = ctx.store
        self.availability = availability or AvailabilityResolver(ctx)

    select_workflow_type = staticmethod(select_workflow_type)

    # -------------------------
    # persistence helpers
    # -------------------------

    def _save(self, wf: SchedulingWorkflow) -> None:
        wf.updated_at = self.ctx.now()
        self.store.put_workflow(wf)

    def _advance(self, wf: SchedulingWorkflow, step: str, step_number: int) -> None:
        wf.current_step = step
        wf.step_number = step_number
        self._save(wf)
        logger.info("[workflow] step request_id=%s step=%s n=%d", wf.meeting_request_id, step, step_number)

    def _ensure_active(self, request_id: str) -> MeetingRequest:
        request = self.store.get_meeting_request(request_id)
        if request is None:
            raise RecordNotFoundError(f"meeting request {request_id} not found")
        if request.status in CANCELLING_STATUSES:
            raise WorkflowCancelledError(request_id, request.status.value)
        return request

    def _run_step(self, wf: SchedulingWorkflow, fn: Callable[..., T], *args: Any) -> T:
        """Run one step, re-running it on provider errors until max_retries is used up."""
        while True:
            try:
                return fn(*args)
            except PROVIDER_ERRORS as e:
                wf.retry_count += 1
                if wf.retry_count >= wf.max_retries:
                    raise StepFailed(f"{wf.current_step}: {e}") from e
                logger.warning(
                    "[workflow] step retry request_id=%s step=%s retry=%d/%d err=%r",
                    wf.meeting_request_id, wf.current_step, wf.retry_count, wf.max_retries, e,
                )
                self._save(wf)

    def _fail(self, wf: SchedulingWorkflow, reason: str) -> SchedulingWorkflow:
        wf.status = WorkflowStatus.FAILED
        wf.failure_reason = reason
        self._save(wf)
        logger.error("[workflow] failed request_id=%s step=%s reason=%s", wf.meeting_request_id, wf.current_step, reason)
        return wf

    def _move_active_holds(self, request_id: str, status: HoldStatus) -> int:
        released = 0
        for hold in self.store.list_holds(request_id):
            if hold.status == HoldStatus.ACTIVE and self.store.update_hold_status(hold, status):
                released += 1
        return released

    def _abort(self, wf: SchedulingWorkflow, request_status: str) -> SchedulingWorkflow:
        released = self._move_active_holds(wf.meeting_request_id, HoldStatus.CANCELLED)
        wf.status = WorkflowStatus.CANCELLED
        wf.current_step = "cancelled"
        wf.failure_reason = f"request {request_status}"
        self._save(wf)
        logger.info(
            "[workflow] cancelled request_id=%s request_status=%s holds_released=%d",
            wf.meeting_request_id, request_status, released,
        )
        return wf

    def _new_workflow(self, request: MeetingRequest) -> SchedulingWorkflow:
        wtype = select_workflow_type(request)
        return SchedulingWorkflow(
            meeting_request_id=request.id,
            workflow_type=wtype,
            total_steps=5 if wtype == WorkflowType.MULTI_RECIPIENT else 3,
            context={
                "urgency_level": request.urgency_level.value,
                "meeting_type": request.meeting_type.value,
                "attendee_count": len(request.attendees),
            },
            updated_at=self.ctx.now(),
        )

    # -------------------------
    # steps
    # -------------------------

    def _preferred_start(self, request: MeetingRequest) -> Optional[datetime]:
        picked = pick_preferred_start(request.preferred_dates, self.ctx.zone_id)
        return picked[0] if picked else None

    def _suggest(self, request: MeetingRequest) -> List[TimeSlotSuggestion]:
        prefs = self.store.get_preferences(self.ctx.user_id, sender=request.sender_email)
        return self.availability.suggest_slots(
            request.requested_duration,
            self._preferred_start(request),
            business_hours=prefs.business_hours,
            max_suggestions=MAX_SUGGESTIONS,
            exclude_request_id=request.id,
        )

    def _place_holds(self, request: MeetingRequest, suggestions: List[TimeSlotSuggestion], limit: int) -> List[TimeSlotSuggestion]:
        """Hold up to `limit` slots, walking down the ranking past conflicts. Returns the held slots."""
        self._ensure_active(request.id)
        expires_at = self.ctx.now() + timedelta(minutes=HOLD_EXPIRY_MINUTES)
        held: List[TimeSlotSuggestion] = []
        for slot in suggestions:
            if len(held) >= limit:
                break
            hold = CalendarHold(
                meeting_request_id=request.id,
                user_id=self.ctx.user_id,
                start=slot.start,
                end=slot.end,
                holder_email=request.sender_email,
                expires_at=expires_at,
                notes=f"Auto-generated hold for {request.meeting_type.value} meeting",
                created_at=self.ctx.now(),
            )
            if self.store.create_hold(hold):
                held.append(slot)
                logger.info("[workflow] hold created request_id=%s hold_id=%s start=%s", request.id, hold.id, slot.start)
            else:
                logger.info("[workflow] hold conflict request_id=%s start=%s", request.id, slot.start)
        return held

    def _execute(
        self, wf: SchedulingWorkflow, request: MeetingRequest, offered: Optional[List[TimeSlotSuggestion]] = None
    ) -> SchedulingWorkflow:
        suggest_step, hold_step, wait_step = STEP_NAMES[wf.workflow_type]
        limit = HOLD_LIMITS[wf.workflow_type]

        self._advance(wf, suggest_step, 1)
        if offered:
            # the times already put to the sender are the ones to hold
            suggestions = list(offered)
            limit = len(suggestions)
        else:
            suggestions = self._run_step(wf, self._suggest, request)
        if not suggestions:
            return self._fail(wf, "no available slots")
        wf.context["suggestions"] = [suggestion_to_dict(s) for s in suggestions]

        self._advance(wf, hold_step, 2)
        held = self._run_step(wf, self._place_holds, request, suggestions, limit)
        if not held:
            return self._fail(wf, "no slot could be held")
        wf.context["held_slots"] = [suggestion_to_dict(s) for s in held]

        if wf.workflow_type == WorkflowType.DIRECT_SCHEDULE and self._should_auto_confirm(request, held[0]):
            self._advance(wf, "auto_confirming", 3)
            return self.confirm_scheduling(request.id)

        self._advance(wf, wait_step, 3)
        return wf

    def _should_auto_confirm(self, request: MeetingRequest, top: TimeSlotSuggestion) -> bool:
        prefs = self.store.get_preferences(self.ctx.user_id, sender=request.sender_email)
        quality = min(1.0, top.confidence / OPTIMAL_SLOT_SCORE)
        return (
            request.detection_confidence >= prefs.auto_confirm_threshold * 100
            and quality >= AUTO_CONFIRM_SLOT_QUALITY
        )

    # -------------------------
    # public operations
    # -------------------------

    def start(
        self, request: MeetingRequest, offered: Optional[List[TimeSlotSuggestion]] = None
    ) -> SchedulingWorkflow:
        """Run a workflow for `request`. `offered` are slots already proposed to the sender; they are held as-is."""
        existing = self.store.get_workflow_for_request(request.id)
        if existing is not None:
            logger.info("[workflow] already started request_id=%s status=%s", request.id, existing.status.value)
            return existing

        wf = self._new_workflow(request)
        self._save(wf)
        logger.info("[workflow] started request_id=%s type=%s", request.id, wf.workflow_type.value)
        return self._guarded(wf, self._execute, wf, request, offered)

    def _guarded(self, wf: SchedulingWorkflow, fn: Callable[..., SchedulingWorkflow], *args: Any) -> SchedulingWorkflow:
        try:
            return fn(*args)
        except WorkflowCancelledError as e:
            return self._abort(wf, e.status)
        except (StepFailed, HoldConflictError) as e:
            return self._fail(wf, str(e))

    def confirm_scheduling(self, request_id: str, slot: Optional[datetime] = None) -> SchedulingWorkflow:
        """
        Book the real event and mark everything scheduled.

        `slot` is the start of the chosen time; it defaults to the best-ranked
        active hold. Confirming twice returns the completed workflow unchanged.
        The chosen hold is confirmed and the request's other holds released.

        Raises HoldConflictError when the chosen time cannot be held; the
        workflow and its holds are left as they were so another time can be
        picked.
        """
        request = self.store.get_meeting_request(request_id)
        if request is None:
            raise RecordNotFoundError(f"meeting request {request_id} not found")

        wf = self.store.get_workflow_for_request(request_id)
        if wf is None:
            wf = self._new_workflow(request)
        if wf.status == WorkflowStatus.COMPLETED or request.status == RequestStatus.SCHEDULED:
            logger.info("[workflow] already confirmed request_id=%s", request_id)
            return wf
        if request.status in CANCELLING_STATUSES:
            return self._abort(wf, request.status.value)

        if wf.status != WorkflowStatus.ACTIVE:
            logger.info("[workflow] reopening for confirmation request_id=%s status=%s", request_id, wf.status.value)
            wf.status = WorkflowStatus.ACTIVE
            wf.failure_reason = None
            wf.retry_count = 0

        try:
            return self._confirm(wf, request, slot)
        except WorkflowCancelledError as e:
            return self._abort(wf, e.status)
        except StepFailed as e:
            return self._fail(wf, str(e))

    def _choose_hold(self, wf: SchedulingWorkflow, request: MeetingRequest, slot: Optional[datetime]) -> CalendarHold:
        active = [h for h in self.store.list_holds(request.id) if h.status == HoldStatus.ACTIVE]

        if slot is None:
            if not active:
                raise HoldConflictError(f"no active hold to confirm for request {request.id}")
            ranked = [suggestion_from_dict(s).start for s in wf.context.get("held_slots", [])]
            for start in ranked:
                for h in active:
                    if h.start == start:
                        return h
            return active[0]

        for h in active:
            if h.start == slot:
                return h

        # a time nobody held yet: check it and hold it atomically
        self._ensure_active(request.id)
        check = self.availability.check_slot(slot, request.requested_duration, exclude_request_id=request.id)
        if not check.available:
            raise HoldConflictError(f"slot {slot.isoformat()} is not available")
        hold = CalendarHold(
            meeting_request_id=request.id,
            user_id=self.ctx.user_id,
            start=slot,
            end=slot + timedelta(minutes=request.requested_duration),
            holder_email=request.sender_email,
            expires_at=self.ctx.now() + timedelta(minutes=HOLD_EXPIRY_MINUTES),
            notes=f"Confirmed slot for {request.meeting_type.value} meeting",
            created_at=self.ctx.now(),
        )
        if not self.store.create_hold(hold):
            raise HoldConflictError(f"slot {slot.isoformat()} was taken")
        return hold

    def _event_draft(self, wf: SchedulingWorkflow, request: MeetingRequest, hold: CalendarHold) -> EventDraft:
        attendees: List[str] = []
        for addr in [request.sender_email, *request.attendees]:
            if addr and addr.lower() not in attendees:
                attendees.append(addr.lower())

        description = f"Meeting requested by {request.sender_email}"
        if request.special_requirements:
            description += f"\n\nSpecial Requirements: {request.special_requirements}"

        return EventDraft(
            summary=request.subject or "Meeting",
            start=stamp_for_calendar(hold.start, self.ctx.zone_id),
            end=stamp_for_calendar(hold.end, self.ctx.zone_id),
            description=description,
            attendees=tuple(attendees),
            location=request.location_preference,
            status="confirmed",
            event_key=wf.context["event_key"],
        )

    def _book_event(self, wf: SchedulingWorkflow, request: MeetingRequest, hold: CalendarHold) -> str:
        """Promote the tentative event behind `hold`, or create the event if there is none."""
        self._ensure_active(request.id)
        if hold.event_key:
            try:
                return self.ctx.provider.update_event_status(self.ctx.account, hold.event_key, "confirmed")
            except CalendarProviderError as e:
                if e.status != 404:
                    raise
                logger.info("[workflow] tentative event gone, creating request_id=%s key=%s", request.id, hold.event_key)
        return self.ctx.provider.create_event(self.ctx.account, self._event_draft(wf, request, hold))

    def _confirm(self, wf: SchedulingWorkflow, request: MeetingRequest, slot: Optional[datetime]) -> SchedulingWorkflow:
        hold = self._choose_hold(wf, request, slot)

        # persisted before the call; re-runs reuse the same key
        if hold.event_key:
            wf.context["event_key"] = hold.event_key
        else:
            wf.context.setdefault("event_key", uuid.uuid4().hex)
        wf.context["confirmed_hold_id"] = hold.id
        self._advance(wf, "creating_event", max(wf.step_number, 3))
        event_id = self._run_step(wf, self._book_event, wf, request, hold)

        self.store.update_request_status(request.id, RequestStatus.SCHEDULED)
        self.store.update_hold_status(hold, HoldStatus.CONFIRMED)
        released = self._move_active_holds(request.id, HoldStatus.CANCELLED)

        wf.event_id = event_id
        wf.status = WorkflowStatus.COMPLETED
        wf.current_step = "event_created"
        wf.step_number = wf.total_steps
        self._save(wf)
        logger.info(
            "[workflow] confirmed request_id=%s event_id=%s start=%s holds_released=%d",
            request.id, event_id, hold.start, released,
        )
        return wf

    def cancel(self, request_id: str, status: RequestStatus = RequestStatus.CANCELLED) -> Optional[SchedulingWorkflow]:
        """Mark the request cancelled/declined, release its holds and stop its workflow."""
        status = RequestStatus(status)
        if status not in CANCELLING_STATUSES:
            raise ValueError(f"cannot cancel with status {status.value}")

        self.store.update_request_status(request_id, status)
        wf = self.store.get_workflow_for_request(request_id)
        if wf is None or wf.is_terminal():
            self._move_active_holds(request_id, HoldStatus.CANCELLED)
            return wf
        return self._abort(wf, status.value)
