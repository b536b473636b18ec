from datetime import timedelta

import pytest

from conftest import NOW, USER_ID, local
from meetwise.errors import HoldConflictError
from meetwise.infra.calendar_provider import EventDraft
from meetwise.infra.store import InMemorySchedulingStore
from meetwise.scheduling.availability import AvailabilityResolver
from meetwise.scheduling.models import (
    BusinessHours,
    CalendarHold,
    HoldStatus,
    RequestStatus,
    SchedulingPreferences,
    TimeSlotSuggestion,
    Urgency,
    WorkflowStatus,
    WorkflowType,
)
from meetwise.scheduling.workflow import SchedulingWorkflowEngine, select_workflow_type, sweep_expired_holds
from meetwise.scheduling.zones import stamp_for_calendar


class RecordingStore(InMemorySchedulingStore):
    def __init__(self):
        super().__init__()
        self.steps = []

    def put_workflow(self, workflow):
        self.steps.append(workflow.current_step)
        super().put_workflow(workflow)


class FixedAvailability(AvailabilityResolver):
    def __init__(self, ctx, slots, on_suggest=None):
        super().__init__(ctx)
        self.slots = slots
        self.on_suggest = on_suggest

    def suggest_slots(self, duration, preferred_date=None, business_hours=None, max_suggestions=5, exclude_request_id=None):
        if self.on_suggest:
            self.on_suggest()
        return list(self.slots)[:max_suggestions]


def slot(start, confidence=80, minutes=60):
    return TimeSlotSuggestion(start=start, end=start + timedelta(minutes=minutes), confidence=confidence, reason="test")


def test_select_workflow_type(make_request):
    assert select_workflow_type(make_request(attendees=["a@x.com", "b@x.com", "c@x.com"])) == WorkflowType.MULTI_RECIPIENT
    assert select_workflow_type(make_request(urgency_level=Urgency.HIGH, detection_confidence=90)) == WorkflowType.DIRECT_SCHEDULE
    assert select_workflow_type(make_request(urgency_level=Urgency.HIGH, detection_confidence=70)) == WorkflowType.NEGOTIATE_TIME
    assert select_workflow_type(make_request()) == WorkflowType.NEGOTIATE_TIME


def test_negotiation_holds_three_slots_and_waits(ctx, store, make_request):
    request = make_request()
    wf = SchedulingWorkflowEngine(ctx).start(request)

    assert wf.status == WorkflowStatus.ACTIVE
    assert wf.workflow_type == WorkflowType.NEGOTIATE_TIME
    assert wf.current_step == "awaiting_selection"
    assert wf.step_number == 3
    assert len(wf.context["suggestions"]) == 5
    assert len(wf.context["held_slots"]) == 3

    holds = store.list_holds(request.id)
    assert len(holds) == 3
    assert all(h.status == HoldStatus.ACTIVE for h in holds)
    assert all(h.expires_at == NOW + timedelta(hours=24) for h in holds)
    assert store.get_workflow_for_request(request.id).current_step == "awaiting_selection"


def test_every_step_is_persisted(ctx, provider, make_request):
    ctx.store = RecordingStore()
    request = make_request()
    ctx.store.put_meeting_request(request)

    SchedulingWorkflowEngine(ctx).start(request)
    assert ctx.store.steps == ["initializing", "generating_options", "creating_multiple_holds", "awaiting_selection"]


def test_start_is_idempotent(ctx, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    first = engine.start(request)
    second = engine.start(request)
    assert second.id == first.id
    assert len(store.list_holds(request.id)) == 3


def test_direct_schedule_auto_confirms_high_confidence_slot(ctx, provider, store, make_request):
    request = make_request(urgency_level=Urgency.HIGH, detection_confidence=95, attendees=["bob@partner.com"])
    top = slot(local(2026, 10, 20, 10, 0), confidence=95)
    engine = SchedulingWorkflowEngine(ctx, FixedAvailability(ctx, [top]))

    wf = engine.start(request)

    assert wf.workflow_type == WorkflowType.DIRECT_SCHEDULE
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.current_step == "event_created"
    assert wf.event_id
    assert store.get_meeting_request(request.id).status == RequestStatus.SCHEDULED
    assert [h.status for h in store.list_holds(request.id)] == [HoldStatus.CONFIRMED]

    assert len(provider.created) == 1
    draft = provider.created[0]
    assert draft.status == "confirmed"
    assert draft.start.local_date_time == "2026-10-20T10:00:00-07:00"
    assert draft.start.zone_id == "America/Los_Angeles"
    assert draft.attendees == ("alice@partner.com", "bob@partner.com")
    assert draft.event_key == wf.context["event_key"]


def test_direct_schedule_waits_when_slot_is_not_strong_enough(ctx, provider, make_request):
    request = make_request(urgency_level=Urgency.HIGH, detection_confidence=95)
    engine = SchedulingWorkflowEngine(ctx, FixedAvailability(ctx, [slot(local(2026, 10, 20, 10, 0), confidence=70)]))

    wf = engine.start(request)
    assert wf.status == WorkflowStatus.ACTIVE
    assert wf.current_step == "awaiting_confirmation"
    assert provider.created == []


def test_cancel_before_holds_touches_nothing(ctx, provider, store, make_request):
    request = make_request()

    def cancel_meanwhile():
        store.update_request_status(request.id, RequestStatus.CANCELLED)

    engine = SchedulingWorkflowEngine(ctx, FixedAvailability(ctx, [slot(local(2026, 10, 20, 10, 0))], cancel_meanwhile))
    wf = engine.start(request)

    assert wf.status == WorkflowStatus.CANCELLED
    assert wf.current_step == "cancelled"
    assert store.list_holds(request.id) == []
    assert provider.created == []


def test_cancel_before_event_releases_holds(ctx, provider, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)

    store.update_request_status(request.id, RequestStatus.DECLINED)
    wf = engine.confirm_scheduling(request.id)

    assert wf.status == WorkflowStatus.CANCELLED
    assert provider.created == []
    assert all(h.status == HoldStatus.CANCELLED for h in store.list_holds(request.id))


def test_provider_failures_exhaust_retries(ctx, provider, store, make_request):
    provider.fail_checks = -1
    request = make_request()

    wf = SchedulingWorkflowEngine(ctx).start(request)

    assert wf.status == WorkflowStatus.FAILED
    assert wf.retry_count == wf.max_retries == 3
    assert "generating_options" in wf.failure_reason
    assert store.get_meeting_request(request.id).status == RequestStatus.PENDING
    assert store.list_holds(request.id) == []


def test_transient_failure_is_retried(ctx, provider, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)

    provider.fail_creates = 1
    wf = engine.confirm_scheduling(request.id)

    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.retry_count == 1
    assert len(provider.created) == 1


def test_no_free_slots_fails(ctx, provider, make_request):
    provider.add_busy(NOW, NOW + timedelta(days=30))
    wf = SchedulingWorkflowEngine(ctx).start(make_request())
    assert wf.status == WorkflowStatus.FAILED
    assert wf.failure_reason == "no available slots"


def test_all_slots_taken_fails(ctx, store, make_request):
    taken = local(2026, 10, 20, 10, 0)
    other = make_request()
    SchedulingWorkflowEngine(ctx, FixedAvailability(ctx, [slot(taken)])).start(other)

    wf = SchedulingWorkflowEngine(ctx, FixedAvailability(ctx, [slot(taken)])).start(make_request())
    assert wf.status == WorkflowStatus.FAILED
    assert wf.failure_reason == "no slot could be held"


def test_confirm_books_the_best_hold_once(ctx, provider, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    started = engine.start(request)
    best = started.context["held_slots"][0]["start"]

    wf = engine.confirm_scheduling(request.id)
    again = engine.confirm_scheduling(request.id)

    assert wf.status == WorkflowStatus.COMPLETED
    assert again.event_id == wf.event_id
    assert len(provider.created) == 1
    assert provider.created[0].start.local_date_time == best
    assert store.get_meeting_request(request.id).status == RequestStatus.SCHEDULED
    assert best == "2026-10-20T10:00:00-07:00"
    statuses = {h.start: h.status for h in store.list_holds(request.id)}
    assert statuses.pop(local(2026, 10, 20, 10, 0)) == HoldStatus.CONFIRMED
    assert statuses and all(s == HoldStatus.CANCELLED for s in statuses.values())


def test_confirm_a_specific_held_slot(ctx, provider, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    started = engine.start(request)
    second = started.context["held_slots"][1]["start"]

    wf = engine.confirm_scheduling(request.id, local(2026, 10, 20, 10, 30))

    assert second == "2026-10-20T10:30:00-07:00"
    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.created[0].start.local_date_time == second


def test_confirm_an_unheld_free_slot(ctx, provider, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)
    chosen = local(2026, 10, 23, 15, 0)

    wf = engine.confirm_scheduling(request.id, chosen)

    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.created[0].start.local_date_time == "2026-10-23T15:00:00-07:00"
    assert any(h.start == chosen and h.status == HoldStatus.CONFIRMED for h in store.list_holds(request.id))


def test_confirm_a_busy_slot_leaves_the_workflow_open(ctx, provider, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)
    chosen = local(2026, 10, 23, 15, 0)
    provider.add_busy(chosen, chosen + timedelta(hours=1))

    with pytest.raises(HoldConflictError, match="not available"):
        engine.confirm_scheduling(request.id, chosen)

    wf = store.get_workflow_for_request(request.id)
    assert wf.status == WorkflowStatus.ACTIVE
    assert wf.current_step == "awaiting_selection"
    assert len(store.list_holds(request.id)) == 3
    assert all(h.status == HoldStatus.ACTIVE for h in store.list_holds(request.id))
    assert provider.created == []


def test_cancel_releases_holds(ctx, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)

    wf = engine.cancel(request.id)

    assert wf.status == WorkflowStatus.CANCELLED
    assert store.get_meeting_request(request.id).status == RequestStatus.CANCELLED
    assert all(h.status == HoldStatus.CANCELLED for h in store.list_holds(request.id))
    assert not store.has_conflict(USER_ID, local(2026, 10, 20, 9, 0), local(2026, 10, 20, 17, 0))


def test_cancel_rejects_non_cancelling_status(ctx, make_request):
    with pytest.raises(ValueError):
        SchedulingWorkflowEngine(ctx).cancel(make_request().id, RequestStatus.SCHEDULED)


def test_overlapping_offered_slots_are_all_held(ctx, store, make_request):
    request = make_request()
    wf = SchedulingWorkflowEngine(ctx).start(request)

    starts = sorted(h.start for h in store.list_holds(request.id))
    assert starts == [local(2026, 10, 20, 10, 0), local(2026, 10, 20, 10, 30), local(2026, 10, 20, 11, 0)]
    assert [s["start"] for s in wf.context["held_slots"]] == [
        "2026-10-20T10:00:00-07:00", "2026-10-20T10:30:00-07:00", "2026-10-20T11:00:00-07:00",
    ]


def test_offered_slots_are_held_as_given(ctx, provider, store, make_request):
    request = make_request()
    offered = [slot(local(2026, 10, 21, 14, 0)), slot(local(2026, 10, 22, 9, 0))]

    wf = SchedulingWorkflowEngine(ctx).start(request, offered=offered)

    assert wf.current_step == "awaiting_selection"
    assert sorted(h.start for h in store.list_holds(request.id)) == [s.start for s in offered]
    assert provider.check_calls == 0


def test_unchosen_slots_are_free_after_confirm(ctx, store, make_request):
    request = make_request()
    engine = SchedulingWorkflowEngine(ctx)
    engine.start(request)

    engine.confirm_scheduling(request.id)
    sweep_expired_holds(store, NOW + timedelta(days=30))

    assert store.has_conflict(USER_ID, local(2026, 10, 20, 10, 0), local(2026, 10, 20, 11, 0))
    assert not store.has_conflict(USER_ID, local(2026, 10, 20, 11, 0), local(2026, 10, 20, 12, 0))
    other = make_request(sender_email="carol@partner.com")
    wf = SchedulingWorkflowEngine(ctx).start(other, offered=[slot(local(2026, 10, 20, 11, 0))])
    assert wf.status == WorkflowStatus.ACTIVE


def test_urgent_request_auto_confirms_best_morning_slot(ctx, provider, store, make_request):
    request = make_request(urgency_level=Urgency.HIGH, detection_confidence=90)

    wf = SchedulingWorkflowEngine(ctx, AvailabilityResolver(ctx)).start(request)

    assert wf.workflow_type == WorkflowType.DIRECT_SCHEDULE
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.context["held_slots"][0]["confidence"] == 80
    assert provider.created[0].start.local_date_time == "2026-10-20T10:00:00-07:00"
    assert store.get_meeting_request(request.id).status == RequestStatus.SCHEDULED


def test_urgent_request_waits_for_late_slots(ctx, provider, store, make_request):
    store.put_preferences(USER_ID, SchedulingPreferences(business_hours=BusinessHours(start_hour=17, end_hour=18)))
    request = make_request(urgency_level=Urgency.HIGH, detection_confidence=90)

    wf = SchedulingWorkflowEngine(ctx, AvailabilityResolver(ctx)).start(request)

    assert wf.status == WorkflowStatus.ACTIVE
    assert wf.current_step == "awaiting_confirmation"
    assert wf.context["held_slots"][0]["confidence"] == 55
    assert provider.created == []


def test_preferred_start_uses_first_timed_date(ctx, make_request):
    request = make_request(preferred_dates=["2026-10-22", "2026-10-23T14:00:00-07:00"])
    assert SchedulingWorkflowEngine(ctx)._preferred_start(request) == local(2026, 10, 23, 14, 0)


def test_confirm_promotes_tentative_event(ctx, provider, store, make_request):
    request = make_request()
    start = local(2026, 10, 21, 14, 0)
    hold = CalendarHold(
        meeting_request_id=request.id,
        user_id=USER_ID,
        start=start,
        end=start + timedelta(hours=1),
        holder_email=request.sender_email,
        expires_at=NOW + timedelta(hours=24),
        event_key="tentative-key",
    )
    store.create_hold(hold)
    provider.created.append(EventDraft(
        summary="Roadmap sync",
        start=stamp_for_calendar(start, "America/Los_Angeles"),
        end=stamp_for_calendar(start + timedelta(hours=1), "America/Los_Angeles"),
        status="tentative",
        event_key="tentative-key",
    ))

    wf = SchedulingWorkflowEngine(ctx).confirm_scheduling(request.id)

    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.status_updates == [("tentative-key", "confirmed")]
    assert len(provider.created) == 1
    assert wf.context["event_key"] == "tentative-key"
    assert store.list_holds(request.id)[0].status == HoldStatus.CONFIRMED


def test_confirm_recreates_a_vanished_tentative_event(ctx, provider, store, make_request):
    request = make_request()
    start = local(2026, 10, 21, 14, 0)
    store.create_hold(CalendarHold(
        meeting_request_id=request.id,
        user_id=USER_ID,
        start=start,
        end=start + timedelta(hours=1),
        holder_email=request.sender_email,
        expires_at=NOW + timedelta(hours=24),
        event_key="gone-key",
    ))

    wf = SchedulingWorkflowEngine(ctx).confirm_scheduling(request.id)

    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.status_updates == []
    assert [d.event_key for d in provider.created] == ["gone-key"]
    assert provider.created[0].status == "confirmed"
