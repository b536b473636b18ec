from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .config import DEFAULT_TIMEZONE
from .infra.calendar_provider import CalendarProvider
from .infra.retry import RetryPolicy
from .infra.store import SchedulingStore
from .scheduling.models import utcnow
from .scheduling.zones import TimezoneResolver, load_zone

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """
    Everything one invocation needs about the calendar owner.

    Built per request and passed explicitly; nothing below it keeps
    per-user state between requests.
    """
    user_id: str
    user_email: str
    provider: CalendarProvider
    store: SchedulingStore
    zone_id: str = DEFAULT_TIMEZONE
    clock: Callable[[], datetime] = utcnow
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    resolver: Optional[TimezoneResolver] = None

    def __post_init__(self) -> None:
        if self.resolver is None:
            self.resolver = TimezoneResolver(provider=self.provider, default_zone=self.zone_id)

    @property
    def account(self) -> str:
        """Calendar account addressed at the provider."""
        return self.user_email or self.user_id

    def now(self) -> datetime:
        return self.clock()

    def local_now(self) -> datetime:
        return self.now().astimezone(load_zone(self.zone_id))


def build_context(
    user_id: str,
    user_email: str,
    *,
    provider: CalendarProvider,
    store: SchedulingStore,
    zone_id: Optional[str] = None,
    clock: Callable[[], datetime] = utcnow,
    retry_policy: Optional[RetryPolicy] = None,
) -> RequestContext:
    """Build a context, looking the owner's zone up at the provider unless one is given."""
    resolver = TimezoneResolver(provider=provider)
    account = user_email or user_id
    zone = zone_id or resolver.resolve_user_zone(account)
    logger.info("[ctx] built user_id=%s zone=%s", user_id, zone)
    return RequestContext(
        user_id=user_id,
        user_email=user_email,
        provider=provider,
        store=store,
        zone_id=zone,
        clock=clock,
        retry_policy=retry_policy or RetryPolicy(),
        resolver=resolver,
    )
