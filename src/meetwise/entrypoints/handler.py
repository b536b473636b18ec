from __future__ import annotations

import base64
import binascii
import logging

from botocore.exceptions import ClientError

from ..ai.classifier import BedrockIntentClassifier
from ..config import require_env
from ..email.email_utils import inbound_from_eml, parse_eml, safe_json
from ..logs import configure_logging
from ..scheduling.models import InboundEmail, new_id
from ..scheduling.pipeline import MeetingPipeline
from .runtime import build_runtime_context, event_payload, response

logger = logging.getLogger(__name__)


def _inbound_from_payload(payload: dict) -> InboundEmail:
    raw = payload.get("raw_email")
    if raw:
        try:
            raw_bytes = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("raw_email must be base64") from e
        return inbound_from_eml(parse_eml(raw_bytes), category=payload.get("category"))

    msg = payload.get("email")
    if not isinstance(msg, dict):
        raise ValueError("payload needs either 'email' or 'raw_email'")
    return InboundEmail(
        id=str(msg.get("id") or new_id("email")),
        sender=str(msg.get("sender") or msg.get("from") or "").lower(),
        subject=str(msg.get("subject") or ""),
        body=str(msg.get("body") or ""),
        to=tuple(a.lower() for a in msg.get("to") or ()),
        cc=tuple(a.lower() for a in msg.get("cc") or ()),
        category=msg.get("category") or payload.get("category"),
    )


def handle_event(event) -> dict:
    payload = event_payload(event)
    user_id = payload.get("user_id")
    user_email = payload.get("user_email") or ""
    if not user_id:
        return response(400, {"error": "missing user_id"})

    try:
        email = _inbound_from_payload(payload)
    except ValueError as e:
        return response(400, {"error": str(e)})
    if not email.sender:
        return response(400, {"error": "missing sender"})

    require_env()
    logger.info("[handler] inbound user_id=%s email_id=%s subject=%r", user_id, email.id, email.subject)

    ctx = build_runtime_context(user_id, user_email)
    result = MeetingPipeline(BedrockIntentClassifier()).process(email, ctx)
    logger.info("[handler] result=%s", safe_json(result.to_dict()))

    status = 500 if result.status == "error" else 200
    return response(status, {"ok": result.status != "error", **result.to_dict()})


def lambda_handler(event, context):
    configure_logging()
    try:
        return handle_event(event)
    except ClientError as e:
        logger.error("[error] ClientError %r", e)
        return response(500, {"error": str(e)})
    except Exception as e:
        logger.exception("[error] %r", e)
        return response(500, {"error": str(e)})
