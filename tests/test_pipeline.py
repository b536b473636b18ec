from conftest import ScriptedClassifier, local, meeting_intent
from meetwise.scheduling.models import HoldStatus, RequestStatus, ResponseAction, SenderRelationship, WorkflowStatus
from meetwise.scheduling.pipeline import MeetingPipeline, classify_relationship
from meetwise.scheduling.workflow import SchedulingWorkflowEngine


def pipeline(confidence=0.9, **details):
    return MeetingPipeline(ScriptedClassifier(meeting_intent(confidence, **details)))


def test_relationship_buckets():
    assert classify_relationship(0) == SenderRelationship.STRANGER
    assert classify_relationship(3) == SenderRelationship.NEW_CONTACT
    assert classify_relationship(4) == SenderRelationship.KNOWN_CONTACT


def test_free_time_is_accepted_without_workflow(ctx, store, provider, make_email):
    result = pipeline().process(make_email("Can we meet tomorrow at 2pm?"), ctx)

    assert result.status == "processed"
    assert result.response.action == ResponseAction.ACCEPT
    assert result.workflow is None
    assert store.get_meeting_request(result.request.id) is not None
    assert store.get_response(result.request.id).action == ResponseAction.ACCEPT
    assert store.sender_interaction_count(ctx.user_id, "alice@partner.com") == 1
    assert len(provider.created) == 1
    assert result.to_dict()["action"] == "accept"
    assert store.get_meeting_request(result.request.id).status == RequestStatus.PENDING


def test_conflict_starts_workflow_with_holds(ctx, store, provider, make_email):
    provider.add_busy(local(2026, 10, 20, 14, 0), local(2026, 10, 20, 15, 0))

    result = pipeline().process(make_email("Can we meet tomorrow at 2pm?"), ctx)

    assert result.response.action == ResponseAction.SUGGEST_ALTERNATIVES
    assert result.workflow.status == WorkflowStatus.ACTIVE
    assert result.workflow.current_step == "awaiting_selection"
    held = [h.start for h in store.list_holds(result.request.id)]
    assert held == [alt.start for alt in result.response.alternatives]
    assert len(held) == 3


def test_vague_request_creates_no_holds(ctx, store, make_email):
    result = pipeline().process(make_email("I would like to meet with you to discuss the partnership."), ctx)

    assert result.response.action == ResponseAction.REQUEST_MORE_INFO
    assert result.workflow is None
    assert store.list_holds(result.request.id) == []


def test_same_email_is_processed_once(ctx, make_email):
    email = make_email("Can we meet tomorrow at 2pm?")
    p = pipeline()
    assert p.process(email, ctx).status == "processed"
    second = p.process(email, ctx)
    assert second.status == "skipped"
    assert second.reason == "already_processed"


def test_promotional_mail_is_skipped(ctx, make_email):
    classifier = ScriptedClassifier()
    result = MeetingPipeline(classifier).process(make_email("Book a call with our sales team!", category="promotional"), ctx)
    assert result.status == "skipped"
    assert classifier.calls == []


def test_own_mail_is_skipped(ctx, make_email):
    result = pipeline().process(make_email("Can we meet tomorrow?", sender="owner@example.com"), ctx)
    assert result.reason == "from_self"


def test_non_meeting_is_skipped(ctx, store, make_email):
    result = pipeline(confidence=0.2).process(make_email("Can we meet tomorrow?"), ctx)
    assert result.status == "skipped"
    assert result.reason == "not_a_meeting_request"


def test_store_failure_is_reported(ctx, make_email):
    class BrokenStore(type(ctx.store)):
        def put_meeting_request(self, request):
            raise ValueError("disk full")

    ctx.store = BrokenStore()
    result = pipeline().process(make_email("Can we meet tomorrow at 2pm?"), ctx)
    assert result.status == "error"
    assert "disk full" in result.reason


def test_any_offered_time_can_be_confirmed(ctx, store, provider, make_email):
    provider.add_busy(local(2026, 10, 20, 13, 30), local(2026, 10, 20, 15, 0))
    result = pipeline().process(make_email("Can we meet tomorrow at 2pm?"), ctx)
    offered = result.response.alternatives

    wf = SchedulingWorkflowEngine(ctx).confirm_scheduling(result.request.id, offered[1].start)

    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.created[0].start.local_date_time == offered[1].start.isoformat()
    statuses = {h.start: h.status for h in store.list_holds(result.request.id)}
    assert statuses.pop(offered[1].start) == HoldStatus.CONFIRMED
    assert set(statuses.values()) == {HoldStatus.CANCELLED}


def test_accepted_time_is_confirmed_in_place(ctx, store, provider, make_email):
    result = pipeline().process(make_email("Can we meet tomorrow at 2pm?"), ctx)
    [tentative] = provider.created

    wf = SchedulingWorkflowEngine(ctx).confirm_scheduling(result.request.id)

    assert wf.status == WorkflowStatus.COMPLETED
    assert provider.status_updates == [(tentative.event_key, "confirmed")]
    assert provider.created == [tentative]
    assert wf.event_id == result.response.booking.event_id
    assert [h.status for h in store.list_holds(result.request.id)] == [HoldStatus.CONFIRMED]
    assert store.get_meeting_request(result.request.id).status == RequestStatus.SCHEDULED


def test_casual_request_without_dates(ctx, store, provider, make_email):
    result = pipeline().process(make_email("Let's sync sometime, happy to work around you"), ctx)

    assert result.status == "processed"
    assert result.response.action == ResponseAction.REQUEST_MORE_INFO
    assert result.workflow is None
    assert store.list_holds(result.request.id) == []
    assert provider.created == []
