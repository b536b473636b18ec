from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..ai.classifier import IntentClassifier
from ..context import RequestContext
from ..errors import MeetwiseError
from .availability import AvailabilityResolver
from .extractor import MeetingRequestExtractor
from .models import (
    InboundEmail,
    MeetingRequest,
    ResponseAction,
    SchedulingResponse,
    SchedulingWorkflow,
    SenderRelationship,
)
from .responder import ResponseGenerator
from .workflow import SchedulingWorkflowEngine

logger = logging.getLogger(__name__)

SKIPPED_CATEGORIES = ("promotional", "newsletter")
NEW_CONTACT_MAX_INTERACTIONS = 3


@dataclass
class PipelineResult:
    status: str  # processed | skipped | error
    reason: Optional[str] = None
    request: Optional[MeetingRequest] = None
    response: Optional[SchedulingResponse] = None
    workflow: Optional[SchedulingWorkflow] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "request_id": self.request.id if self.request else None,
            "action": self.response.action.value if self.response else None,
            "workflow_status": self.workflow.status.value if self.workflow else None,
            "workflow_step": self.workflow.current_step if self.workflow else None,
        }


def classify_relationship(prior_interactions: int) -> SenderRelationship:
    if prior_interactions <= 0:
        return SenderRelationship.STRANGER
    if prior_interactions <= NEW_CONTACT_MAX_INTERACTIONS:
        return SenderRelationship.NEW_CONTACT
    return SenderRelationship.KNOWN_CONTACT


class MeetingPipeline:
    """Runs one inbound email through detection, reply drafting and the workflow."""

    def __init__(self, classifier: IntentClassifier, extractor: Optional[MeetingRequestExtractor] = None) -> None:
        self.extractor = extractor or MeetingRequestExtractor(classifier)

    def process(self, email: InboundEmail, ctx: RequestContext) -> PipelineResult:
        try:
            return self._process(email, ctx)
        except (MeetwiseError, ClientError, BotoCoreError, ValueError) as e:
            logger.error("[pipeline] failed email_id=%s err=%r", email.id, e)
            return PipelineResult(status="error", reason=str(e))

    def _process(self, email: InboundEmail, ctx: RequestContext) -> PipelineResult:
        store = ctx.store

        if (email.category or "").lower() in SKIPPED_CATEGORIES:
            logger.info("[pipeline] skip category email_id=%s category=%s", email.id, email.category)
            return PipelineResult(status="skipped", reason=f"category:{email.category}")

        if email.sender and email.sender.lower() == (ctx.user_email or "").lower():
            logger.info("[pipeline] skip own message email_id=%s", email.id)
            return PipelineResult(status="skipped", reason="from_self")

        if not store.mark_email_processed(ctx.user_id, email.id):
            logger.info("[pipeline] idempotent skip email_id=%s", email.id)
            return PipelineResult(status="skipped", reason="already_processed")

        request = self.extractor.detect(email, ctx)
        if request is None:
            return PipelineResult(status="skipped", reason="not_a_meeting_request")
        store.put_meeting_request(request)

        relationship = classify_relationship(store.sender_interaction_count(ctx.user_id, email.sender))
        availability = AvailabilityResolver(ctx)

        response = ResponseGenerator(ctx, availability).generate(email, request, relationship)
        store.put_response(response)

        workflow = None
        if response.action == ResponseAction.SUGGEST_ALTERNATIVES:
            workflow = SchedulingWorkflowEngine(ctx, availability).start(request, offered=list(response.alternatives))

        store.record_sender_interaction(ctx.user_id, email.sender)
        logger.info(
            "[pipeline] processed email_id=%s request_id=%s action=%s relationship=%s workflow=%s",
            email.id, request.id, response.action.value, relationship.value,
            workflow.status.value if workflow else None,
        )
        return PipelineResult(status="processed", request=request, response=response, workflow=workflow)
