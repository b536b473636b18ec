from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..config import RETRY_BASE_DELAY, RETRY_MAX_ATTEMPTS, RETRY_MAX_DELAY
from ..errors import CalendarProviderError, ClassifierError

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ServiceUnavailableException",
    "ModelNotReadyException",
}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY
    max_delay: float = RETRY_MAX_DELAY
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))


NO_DELAY = RetryPolicy(base_delay=0.0, max_delay=0.0, sleep=lambda _s: None)


def is_retryable(err: BaseException) -> bool:
    if isinstance(err, CalendarProviderError):
        return err.retryable
    if isinstance(err, ClassifierError):
        return True
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code", "")
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        return code in THROTTLING_CODES or status >= 500
    if isinstance(err, (BotoCoreError, Urllib3HTTPError)):
        return True
    return False


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    label: str = "call",
    **kwargs: Any,
) -> T:
    """
    Call fn, retrying transient failures with exponential backoff.
    Non-retryable errors and the last failure propagate unchanged.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if not is_retryable(e) or attempt == attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "[retry] label=%s attempt=%d/%d delay=%.2fs err=%r", label, attempt + 1, attempts, delay, e
            )
            policy.sleep(delay)

    raise RuntimeError("unreachable")
