from __future__ import annotations

import logging

from botocore.exceptions import ClientError

from ..config import require_env
from ..infra.aws_clients import table
from ..infra.store_ddb import DynamoSchedulingStore
from ..logs import configure_logging
from ..scheduling.models import utcnow
from ..scheduling.workflow import sweep_expired_holds
from .runtime import response

logger = logging.getLogger(__name__)


def handle_event(event, store=None, now=None) -> dict:
    if store is None:
        require_env("TABLE_NAME")
        store = DynamoSchedulingStore(table())
    expired = sweep_expired_holds(store, now or utcnow())
    return response(200, {"ok": True, "expired": len(expired), "hold_ids": [h.id for h in expired]})


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
