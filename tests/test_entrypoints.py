import base64
import json
from datetime import timedelta

from conftest import NOW, USER_ID, local
from meetwise.email.email_utils import flatten_emails, inbound_from_eml, parse_eml
from meetwise.entrypoints import confirm_handler, handler, sweep_handler
from meetwise.entrypoints.runtime import event_payload
from meetwise.scheduling.models import CalendarHold, WorkflowStatus
from meetwise.scheduling.workflow import SchedulingWorkflowEngine

RAW = (
    "From: Alice Example <Alice@Partner.com>\r\n"
    "To: owner@example.com, Bob <bob@partner.com>\r\n"
    "Subject: Sync next week?\r\n"
    "Message-ID: <abc-123@mail.partner.com>\r\n"
    "Date: Mon, 19 Oct 2026 07:55:00 -0700\r\n"
    "Content-Type: text/plain; charset=utf-8\r\n"
    "\r\n"
    "Can we meet tomorrow at 2pm?\r\n"
).encode("utf-8")


def test_event_payload_shapes():
    assert event_payload({"user_id": "u"}) == {"user_id": "u"}
    assert event_payload('{"user_id": "u"}') == {"user_id": "u"}
    assert event_payload({"body": '{"user_id": "u"}'}) == {"user_id": "u"}
    assert event_payload({"detail": {"user_id": "u"}, "source": "aws.events"}) == {"user_id": "u"}


def test_inbound_from_raw_message():
    email = inbound_from_eml(parse_eml(RAW))
    assert email.id == "abc-123@mail.partner.com"
    assert email.sender == "alice@partner.com"
    assert email.to == ("owner@example.com", "bob@partner.com")
    assert email.body.strip() == "Can we meet tomorrow at 2pm?"
    assert email.received_at.utcoffset() == timedelta(hours=-7)
    assert email.category is None


def test_mailing_list_headers_mark_promotional():
    raw = RAW.replace(b"Subject:", b"List-Unsubscribe: <mailto:unsub@partner.com>\r\nSubject:")
    assert inbound_from_eml(parse_eml(raw)).category == "promotional"


def test_flatten_emails():
    assert flatten_emails("A <A@x.com>, b@y.com") == ["a@x.com", "b@y.com"]
    assert flatten_emails(None) == []


def test_handler_rejects_incomplete_payloads():
    resp = handler.lambda_handler({"email": {"sender": "a@x.com"}}, None)
    assert resp["statusCode"] == 400

    resp = handler.lambda_handler({"user_id": "u"}, None)
    assert resp["statusCode"] == 400

    resp = handler.lambda_handler({"user_id": "u", "raw_email": "***"}, None)
    assert resp["statusCode"] == 400
    assert "base64" in json.loads(resp["body"])["error"]


def test_handler_reports_missing_configuration(monkeypatch):
    monkeypatch.delenv("TABLE_NAME", raising=False)
    monkeypatch.delenv("GOOGLE_OAUTH_SECRET_NAME", raising=False)
    raw = base64.b64encode(RAW).decode("ascii")

    resp = handler.lambda_handler({"user_id": "u", "user_email": "owner@example.com", "raw_email": raw}, None)

    assert resp["statusCode"] == 500
    assert "TABLE_NAME" in json.loads(resp["body"])["error"]


def test_confirm_handler_validates_input():
    assert confirm_handler.lambda_handler({"user_id": "u"}, None)["statusCode"] == 400
    resp = confirm_handler.lambda_handler({"user_id": "u", "request_id": "mr-1", "action": "maybe"}, None)
    assert resp["statusCode"] == 400


def test_confirm_handler_reports_a_taken_slot(monkeypatch, ctx, provider, store, make_request):
    request = make_request()
    SchedulingWorkflowEngine(ctx).start(request)
    provider.add_busy(local(2026, 10, 23, 15, 0), local(2026, 10, 23, 16, 0))
    monkeypatch.setattr(confirm_handler, "require_env", lambda: None)
    monkeypatch.setattr(confirm_handler, "build_runtime_context", lambda user_id, user_email: ctx)

    resp = confirm_handler.handle_event(
        {"user_id": USER_ID, "request_id": request.id, "slot": "2026-10-23T15:00:00-07:00"}
    )

    assert resp["statusCode"] == 409
    assert "not available" in json.loads(resp["body"])["error"]
    assert store.get_workflow_for_request(request.id).status == WorkflowStatus.ACTIVE
    assert provider.created == []


def test_sweep_handler_expires_holds(store):
    stale = CalendarHold(
        meeting_request_id="mr-1",
        user_id=USER_ID,
        start=local(2026, 10, 20, 10, 0),
        end=local(2026, 10, 20, 11, 0),
        holder_email="alice@partner.com",
        expires_at=NOW - timedelta(minutes=1),
    )
    store.create_hold(stale)

    resp = sweep_handler.handle_event({}, store=store, now=NOW)

    body = json.loads(resp["body"])
    assert resp["statusCode"] == 200
    assert body["expired"] == 1
    assert body["hold_ids"] == [stale.id]
