from __future__ import annotations

import logging
from typing import Optional

from botocore.exceptions import ClientError
from dateutil.parser import isoparse

from ..config import require_env
from ..errors import HoldConflictError, RecordNotFoundError
from ..logs import configure_logging
from ..scheduling.models import RequestStatus
from ..scheduling.workflow import SchedulingWorkflowEngine
from ..scheduling.zones import load_zone
from .runtime import build_runtime_context, event_payload, response

logger = logging.getLogger(__name__)

ACTIONS = ("confirm", "cancel", "decline")


def _parse_slot(value: Optional[str], zone_id: str):
    if not value:
        return None
    slot = isoparse(value)
    if slot.tzinfo is None:
        slot = slot.replace(tzinfo=load_zone(zone_id))
    return slot


def handle_event(event) -> dict:
    payload = event_payload(event)
    user_id = payload.get("user_id")
    request_id = payload.get("request_id")
    action = (payload.get("action") or "confirm").lower()
    if not user_id or not request_id:
        return response(400, {"error": "user_id and request_id are required"})
    if action not in ACTIONS:
        return response(400, {"error": f"unknown action {action!r}"})

    require_env()
    ctx = build_runtime_context(user_id, payload.get("user_email") or "")
    engine = SchedulingWorkflowEngine(ctx)

    try:
        if action == "confirm":
            wf = engine.confirm_scheduling(request_id, _parse_slot(payload.get("slot"), ctx.zone_id))
        else:
            status = RequestStatus.CANCELLED if action == "cancel" else RequestStatus.DECLINED
            wf = engine.cancel(request_id, status)
    except RecordNotFoundError as e:
        return response(404, {"error": str(e)})
    except HoldConflictError as e:
        return response(409, {"error": str(e)})
    except ValueError as e:
        return response(400, {"error": str(e)})

    logger.info("[confirm] action=%s request_id=%s workflow_status=%s", action, request_id, wf.status.value if wf else None)
    return response(200, {
        "ok": True,
        "action": action,
        "request_id": request_id,
        "workflow_status": wf.status.value if wf else None,
        "workflow_step": wf.current_step if wf else None,
        "event_id": wf.event_id if wf else None,
        "failure_reason": wf.failure_reason if wf else None,
    })


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
