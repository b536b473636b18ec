from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from dateutil.parser import isoparse

from ..scheduling.models import (
    BookingDetails,
    BusinessHours,
    CalendarHold,
    HoldStatus,
    MeetingRequest,
    MeetingType,
    RequestStatus,
    ResponseAction,
    ResponseType,
    SchedulingPreferences,
    SchedulingResponse,
    SchedulingWorkflow,
    TimeSlotSuggestion,
    Urgency,
    WorkflowStatus,
    WorkflowType,
    utcnow,
)


def to_ddb_safe(x: Any) -> Any:
    """Convert floats to Decimal recursively for DynamoDB compatibility."""
    if isinstance(x, float):
        return Decimal(str(x))
    if isinstance(x, dict):
        return {k: to_ddb_safe(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [to_ddb_safe(v) for v in x]
    return x


def to_json_safe(x: Any) -> Any:
    """Decimal → int/float, datetime → ISO string, Enum → value, recursively."""
    if isinstance(x, Decimal):
        return int(x) if x == x.to_integral_value() else float(x)
    if isinstance(x, datetime):
        return x.isoformat()
    if isinstance(x, Enum):
        return x.value
    if isinstance(x, dict):
        return {k: to_json_safe(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [to_json_safe(v) for v in x]
    return x


def ddb_clean(item: Any) -> Any:
    """
    Remove dict keys whose values are None or empty collections.
    Recurses into nested dicts/lists while preserving list ordering.
    """
    if isinstance(item, dict):
        cleaned = {}
        for k, v in item.items():
            v_clean = ddb_clean(v)
            if v_clean is None:
                continue
            if isinstance(v_clean, (dict, list, tuple, set)) and len(v_clean) == 0:
                continue
            cleaned[k] = v_clean
        return cleaned
    if isinstance(item, (list, tuple)):
        return [ddb_clean(v) for v in item]
    return item


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return isoparse(value)


# -------------------------
# record codecs
# -------------------------

def request_to_dict(r: MeetingRequest) -> Dict[str, Any]:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "email_id": r.email_id,
        "sender_email": r.sender_email,
        "subject": r.subject,
        "meeting_type": r.meeting_type.value,
        "requested_duration": r.requested_duration,
        "preferred_dates": list(r.preferred_dates),
        "attendees": list(r.attendees),
        "location_preference": r.location_preference,
        "special_requirements": r.special_requirements,
        "urgency_level": r.urgency_level.value,
        "detection_confidence": r.detection_confidence,
        "status": r.status.value,
        "created_at": r.created_at.isoformat(),
    }


def request_from_dict(d: Dict[str, Any]) -> MeetingRequest:
    return MeetingRequest(
        id=d["id"],
        user_id=d.get("user_id", ""),
        email_id=d.get("email_id"),
        sender_email=d.get("sender_email", ""),
        subject=d.get("subject", ""),
        meeting_type=MeetingType(d.get("meeting_type", MeetingType.REGULAR.value)),
        requested_duration=int(d.get("requested_duration", 60)),
        preferred_dates=list(d.get("preferred_dates") or []),
        attendees=list(d.get("attendees") or []),
        location_preference=d.get("location_preference"),
        special_requirements=d.get("special_requirements"),
        urgency_level=Urgency(d.get("urgency_level", Urgency.MEDIUM.value)),
        detection_confidence=int(d.get("detection_confidence", 0)),
        status=RequestStatus(d.get("status", RequestStatus.PENDING.value)),
        created_at=parse_iso(d.get("created_at")) or utcnow(),
    )


def hold_to_dict(h: CalendarHold) -> Dict[str, Any]:
    return {
        "id": h.id,
        "meeting_request_id": h.meeting_request_id,
        "user_id": h.user_id,
        "start": h.start.isoformat(),
        "end": h.end.isoformat(),
        "holder_email": h.holder_email,
        "status": h.status.value,
        "expires_at": h.expires_at.isoformat(),
        "notes": h.notes,
        "event_key": h.event_key,
        "created_at": h.created_at.isoformat(),
    }


def hold_from_dict(d: Dict[str, Any]) -> CalendarHold:
    return CalendarHold(
        id=d["id"],
        meeting_request_id=d["meeting_request_id"],
        user_id=d.get("user_id", ""),
        start=parse_iso(d["start"]),
        end=parse_iso(d["end"]),
        holder_email=d.get("holder_email", ""),
        status=HoldStatus(d.get("status", HoldStatus.ACTIVE.value)),
        expires_at=parse_iso(d["expires_at"]),
        notes=d.get("notes"),
        event_key=d.get("event_key"),
        created_at=parse_iso(d.get("created_at")) or parse_iso(d["start"]),
    )


def workflow_to_dict(w: SchedulingWorkflow) -> Dict[str, Any]:
    return {
        "id": w.id,
        "meeting_request_id": w.meeting_request_id,
        "workflow_type": w.workflow_type.value,
        "current_step": w.current_step,
        "total_steps": w.total_steps,
        "step_number": w.step_number,
        "status": w.status.value,
        "context": to_json_safe(w.context),
        "retry_count": w.retry_count,
        "max_retries": w.max_retries,
        "failure_reason": w.failure_reason,
        "event_id": w.event_id,
        "updated_at": w.updated_at.isoformat(),
    }


def workflow_from_dict(d: Dict[str, Any]) -> SchedulingWorkflow:
    return SchedulingWorkflow(
        id=d["id"],
        meeting_request_id=d["meeting_request_id"],
        workflow_type=WorkflowType(d["workflow_type"]),
        current_step=d.get("current_step", "initializing"),
        total_steps=int(d.get("total_steps", 3)),
        step_number=int(d.get("step_number", 1)),
        status=WorkflowStatus(d.get("status", WorkflowStatus.ACTIVE.value)),
        context=dict(d.get("context") or {}),
        retry_count=int(d.get("retry_count", 0)),
        max_retries=int(d.get("max_retries", 3)),
        failure_reason=d.get("failure_reason"),
        event_id=d.get("event_id"),
        updated_at=parse_iso(d.get("updated_at")) or utcnow(),
    )


def suggestion_to_dict(s: TimeSlotSuggestion) -> Dict[str, Any]:
    return {
        "start": s.start.isoformat(),
        "end": s.end.isoformat(),
        "confidence": s.confidence,
        "reason": s.reason,
    }


def suggestion_from_dict(d: Dict[str, Any]) -> TimeSlotSuggestion:
    return TimeSlotSuggestion(
        start=parse_iso(d["start"]),
        end=parse_iso(d["end"]),
        confidence=int(d.get("confidence", 0)),
        reason=d.get("reason", ""),
    )


def response_to_dict(r: SchedulingResponse) -> Dict[str, Any]:
    booking = None
    if r.booking is not None:
        booking = {
            "event_id": r.booking.event_id,
            "event_status": r.booking.event_status,
            "time_slot": r.booking.time_slot,
            "duration": r.booking.duration,
            "attendee_email": r.booking.attendee_email,
        }
    return {
        "meeting_request_id": r.meeting_request_id,
        "recipient": r.recipient,
        "response_type": r.response_type.value,
        "action": r.action.value,
        "confidence": r.confidence,
        "email_content": r.email_content,
        "suggested_start": r.suggested_start.isoformat() if r.suggested_start else None,
        "suggested_end": r.suggested_end.isoformat() if r.suggested_end else None,
        "alternatives": [suggestion_to_dict(s) for s in r.alternatives],
        "booking": booking,
        "created_at": r.created_at.isoformat(),
    }


def response_from_dict(d: Dict[str, Any]) -> SchedulingResponse:
    b = d.get("booking")
    return SchedulingResponse(
        meeting_request_id=d["meeting_request_id"],
        recipient=d.get("recipient", ""),
        response_type=ResponseType(d["response_type"]),
        action=ResponseAction(d["action"]),
        confidence=int(d.get("confidence", 0)),
        email_content=d.get("email_content", ""),
        suggested_start=parse_iso(d.get("suggested_start")),
        suggested_end=parse_iso(d.get("suggested_end")),
        alternatives=tuple(suggestion_from_dict(s) for s in d.get("alternatives") or []),
        booking=BookingDetails(
            event_id=b.get("event_id"),
            event_status=b.get("event_status", "not_created"),
            time_slot=b.get("time_slot", ""),
            duration=int(b.get("duration", 0)),
            attendee_email=b.get("attendee_email", ""),
        ) if b else None,
        created_at=parse_iso(d.get("created_at")) or utcnow(),
    )


def preferences_to_dict(p: SchedulingPreferences) -> Dict[str, Any]:
    return {
        "business_hours": {
            "start_hour": p.business_hours.start_hour,
            "end_hour": p.business_hours.end_hour,
            "working_days": list(p.business_hours.working_days),
        },
        "auto_confirm_threshold": p.auto_confirm_threshold,
    }


def preferences_from_dict(d: Dict[str, Any]) -> SchedulingPreferences:
    defaults = SchedulingPreferences()
    bh = d.get("business_hours") or {}
    return SchedulingPreferences(
        business_hours=BusinessHours(
            start_hour=int(bh.get("start_hour", defaults.business_hours.start_hour)),
            end_hour=int(bh.get("end_hour", defaults.business_hours.end_hour)),
            working_days=tuple(int(x) for x in bh.get("working_days", defaults.business_hours.working_days)),
        ),
        auto_confirm_threshold=float(d.get("auto_confirm_threshold", defaults.auto_confirm_threshold)),
    )
