from __future__ import annotations

import json
from typing import Any, Dict

from ..context import RequestContext, build_context
from ..infra.aws_clients import table
from ..infra.calendar_provider import RetryingCalendarProvider
from ..infra.google_calendar import GoogleCalendarProvider
from ..infra.store_ddb import DynamoSchedulingStore


def event_payload(event: Any) -> Dict[str, Any]:
    """Accepts a direct invoke payload, a JSON string, or an API Gateway style {"body": ...}."""
    if isinstance(event, (str, bytes)):
        event = json.loads(event)
    if not isinstance(event, dict):
        raise ValueError("event must be a JSON object")

    body = event.get("body")
    if body is not None:
        parsed = json.loads(body) if isinstance(body, (str, bytes)) else body
        if isinstance(parsed, dict):
            return parsed
    detail = event.get("detail")
    if isinstance(detail, dict) and detail:
        return detail
    return event


def response(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": status, "body": json.dumps(body, default=str)}


def build_runtime_context(user_id: str, user_email: str) -> RequestContext:
    """Per-invocation context on DynamoDB and Google Calendar."""
    return build_context(
        user_id,
        user_email,
        provider=RetryingCalendarProvider(GoogleCalendarProvider()),
        store=DynamoSchedulingStore(table()),
    )
