from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import ClassifierError
from ..infra.retry import RetryPolicy, call_with_retry
from .clients import bedrock_client
from .config import INFERENCE_CONFIG, MODEL_ID
from .parse_utils import converse_text, parse_json_object
from .prompt import build_intent_prompt
from .text_normalize import clean_email_text, normalize_slang
from .validate import validate_intent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntentDetails:
    duration: Optional[str] = None
    time_frame: Optional[str] = None
    purpose: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    location: Optional[str] = None


@dataclass(frozen=True)
class IntentResult:
    is_meeting_request: bool
    confidence: float  # 0..1
    details: IntentDetails = field(default_factory=IntentDetails)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentResult":
        safe = validate_intent(data)
        d = safe["extracted_details"]
        return cls(
            is_meeting_request=safe["is_meeting_request"],
            confidence=safe["confidence"],
            details=IntentDetails(
                duration=d["duration"],
                time_frame=d["time_frame"],
                purpose=d["purpose"],
                attendees=list(d["attendees"]),
                location=d["location"],
            ),
        )


class IntentClassifier(ABC):
    @abstractmethod
    def classify(self, text: str) -> IntentResult:
        raise NotImplementedError


class BedrockIntentClassifier(IntentClassifier):
    """Meeting-intent classification through the Bedrock `converse` API."""

    def __init__(self, client=None, model_id: str = MODEL_ID, policy: Optional[RetryPolicy] = None) -> None:
        self._client = client
        self.model_id = model_id
        self.policy = policy or RetryPolicy()

    @property
    def client(self):
        if self._client is None:
            self._client = bedrock_client()
        return self._client

    def classify(self, text: str) -> IntentResult:
        body = normalize_slang(clean_email_text(text))
        prompt = build_intent_prompt(body, datetime.now(timezone.utc).date().isoformat())
        return call_with_retry(self._call_once, prompt, policy=self.policy, label="classifier.converse")

    def _call_once(self, prompt: str) -> IntentResult:
        # ClientError / BotoCoreError propagate; call_with_retry decides whether to retry
        resp = self.client.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig=INFERENCE_CONFIG,
        )
        out_text = converse_text(resp)
        try:
            data = parse_json_object(out_text)
        except (json.JSONDecodeError, ValueError) as e:
            raise ClassifierError(f"unparseable classifier output: {out_text[:200]!r}") from e
        return IntentResult.from_dict(data)
