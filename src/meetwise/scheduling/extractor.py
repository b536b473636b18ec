"""
Meeting request detection.

`MeetingRequestExtractor.detect` runs a cheap keyword gate, asks the intent
classifier, then pulls the structured fields out of the email body. Each
field is extracted independently; a failure in one leaves that field at its
default and never drops the request.

Preferred dates are stored as ISO-8601 strings: a full timestamp with the
owner's UTC offset when a clock time was given, a bare date otherwise.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ..ai.classifier import IntentClassifier, IntentResult
from ..ai.config import MIN_MEETING_CONFIDENCE
from ..config import DEFAULT_DURATION_MINUTES
from ..context import RequestContext
from ..errors import MeetwiseError
from ..parsing.clock import DOW_RE, MONTH_RE
from ..parsing.durations import duration_or_default
from ..parsing.time_ranges import TIME_RANGE_RULES, TimeRange, find_time_range
from .models import InboundEmail, MeetingRequest, MeetingType, Urgency
from .zones import extract_zone_from_text, load_zone

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEDULING_KEYWORDS = (
    # meeting words
    "meeting", "meet", "call", "chat", "discussion", "sync", "catch up",
    "conference", "zoom", "teams", "hangout", "video call", "phone call",
    # time words
    "schedule", "available", "availability", "calendar", "time", "when",
    "tomorrow", "next week", "this week", "monday", "tuesday", "wednesday",
    "thursday", "friday", "saturday", "sunday", "weekend", "morning",
    "afternoon", "evening",
    # request phrases
    "would you be", "are you free", "can we", "let's", "shall we", "could you",
    "would like to", "want to meet", "free to chat",
    # booking words
    "book", "slot", "appointment", "invite", "reschedule", "calendly",
)

_KEYWORD_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in sorted(SCHEDULING_KEYWORDS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

DATE_MENTION_PATTERNS = [
    re.compile(r"\b(?:next|this)\s+week\b", re.I),
    re.compile(r"\b(?:day\s+after\s+tomorrow|tomorrow|today|tonight)\b", re.I),
    re.compile(rf"\b(?:(?:next|this)\s+)?{DOW_RE}\b", re.I),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}[/-]\d{1,2}(?:[/-](?:\d{4}|\d{2}))?\b(?![:/-]|\s*(?:a\.?m|p\.?m))", re.I),
    re.compile(rf"\b{MONTH_RE}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b(?!\s*(?:a\.?m|p\.?m|:))", re.I),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{MONTH_RE}\b", re.I),
]

STANDALONE_TIME_RE = re.compile(r"(?:\bat\s+)?\b\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)(?![a-z])", re.I)

RANGE_WINDOW_CHARS = 50
STANDALONE_MIN_DISTANCE = 20

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

LOCATION_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"\bzoom\b", r"\bteams\b", r"\bgoogle\s*meet\b", r"\bvideo\s*call\b", r"\bphone\s*call\b",
        r"\bin\s*person\b", r"\boffice\b", r"\bremote\b", r"\bvirtual\b",
    )
]

REQUIREMENT_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"\bagenda:?\s*([^\n\r.]{10,100})",
        r"\bdiscuss:?\s*([^\n\r.]{10,100})",
        r"\babout:?\s*([^\n\r.]{10,100})",
        r"\bregarding:?\s*([^\n\r.]{10,100})",
    )
]

HIGH_URGENCY = ("urgent", "asap", "emergency", "critical", "immediately", "today", "deadline", "time sensitive")
LOW_URGENCY = ("whenever", "no rush", "flexible", "eventually", "when you can", "no hurry", "at your convenience")


def has_scheduling_keywords(text: str) -> bool:
    return bool(text) and _KEYWORD_RE.search(text) is not None


# -------------------------
# field extractors
# -------------------------

def find_date_mentions(text: str) -> List[Tuple[int, int]]:
    """Non-overlapping (start, end) spans of date words, in text order; longer spans win ties."""
    spans = []
    for pattern in DATE_MENTION_PATTERNS:
        spans.extend((m.start(), m.end()) for m in pattern.finditer(text))
    spans.sort(key=lambda s: (s[0], -(s[1] - s[0])))

    accepted: List[Tuple[int, int]] = []
    for start, end in spans:
        if accepted and start < accepted[-1][1]:
            continue
        accepted.append((start, end))
    return accepted


def _nearest_range(text: str, start: int, end: int) -> Optional[Tuple[TimeRange, Tuple[int, int]]]:
    """Time range closest to the date at text[start:end], within the context window."""
    lo = max(0, start - RANGE_WINDOW_CHARS)
    window = text[lo:end + RANGE_WINDOW_CHARS]

    for rule in TIME_RANGE_RULES:
        found = []
        for m in rule.pattern.finditer(window):
            abs_start, abs_end = lo + m.start(), lo + m.end()
            if abs_start < end and start < abs_end:
                continue
            distance = abs_start - end if abs_start >= end else start - abs_end
            found.append((distance, m, (abs_start, abs_end)))
        for _distance, m, span in sorted(found, key=lambda f: f[0]):
            built = rule.build(m)
            if built is not None:
                return built, span
    return None


def _to_preferred(zoned) -> str:
    local = zoned.absolute_instant.astimezone(load_zone(zoned.zone_id))
    return local.isoformat() if zoned.has_time else local.date().isoformat()


def extract_preferred_dates(text: str, ctx: RequestContext, now: Optional[datetime] = None) -> List[str]:
    """ISO strings for every date (and attached time range) mentioned in `text`, de-duplicated in order."""
    if not text:
        return []
    now = now or ctx.now()
    phrases: List[Tuple[str, str]] = []  # (phrase, zone)
    used: List[Tuple[int, int]] = []

    mentions = find_date_mentions(text)
    for start, end in mentions:
        phrase = text[start:end]
        zone = ctx.zone_id
        nearest = _nearest_range(text, start, end)
        if nearest is not None:
            rng, span = nearest
            phrase = f"{phrase} {rng.canonical()}"
            used.append(span)
            zone = extract_zone_from_text(text[span[0]:span[1] + 8]) or zone
        phrases.append((phrase, zone))

    for m in STANDALONE_TIME_RE.finditer(text):
        if any(m.start() < u_end and u_start < m.end() for u_start, u_end in used):
            continue
        gap = min(
            (max(0, start - m.end(), m.start() - end) for start, end in mentions),
            default=STANDALONE_MIN_DISTANCE + 1,
        )
        if gap <= STANDALONE_MIN_DISTANCE:
            continue
        rng = find_time_range(m.group(0))
        if rng is None:
            continue
        zone = extract_zone_from_text(text[m.start():m.end() + 8]) or ctx.zone_id
        phrases.append((f"today {rng.canonical()}", zone))

    out: List[str] = []
    for phrase, zone in phrases:
        zoned = ctx.resolver.parse_in_zone(phrase, zone, now)
        if zoned is None:
            continue
        value = _to_preferred(zoned)
        if value not in out:
            out.append(value)
    return out


def extract_attendees(body: str, exclude: Sequence[str] = ()) -> List[str]:
    skip = {e.lower() for e in exclude if e}
    out: List[str] = []
    for addr in EMAIL_RE.findall(body or ""):
        low = addr.lower()
        if low in skip or low in out:
            continue
        out.append(low)
    return out


def extract_location(body: str) -> Optional[str]:
    for pattern in LOCATION_PATTERNS:
        m = pattern.search(body or "")
        if m:
            return m.group(0).lower()
    return None


def extract_special_requirements(body: str) -> Optional[str]:
    for pattern in REQUIREMENT_PATTERNS:
        m = pattern.search(body or "")
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def determine_meeting_type(text: str) -> MeetingType:
    t = (text or "").lower()
    if "urgent" in t or "asap" in t:
        return MeetingType.URGENT
    if "weekly" in t or "recurring" in t or "regular" in t:
        return MeetingType.RECURRING
    if "flexible" in t or "whenever" in t:
        return MeetingType.FLEXIBLE
    return MeetingType.REGULAR


def determine_urgency(body: str, subject: str) -> Urgency:
    content = f"{subject or ''} {body or ''}".lower()
    if any(k in content for k in HIGH_URGENCY):
        return Urgency.HIGH
    if any(k in content for k in LOW_URGENCY):
        return Urgency.LOW
    return Urgency.MEDIUM


def _safely(label: str, fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception as e:  # one bad field must not lose the request
        logger.warning("[extract] field failed field=%s err=%r", label, e)
        return default


class MeetingRequestExtractor:
    def __init__(self, classifier: IntentClassifier, min_confidence: float = MIN_MEETING_CONFIDENCE) -> None:
        self.classifier = classifier
        self.min_confidence = min_confidence

    def classify(self, body: str) -> Optional[IntentResult]:
        try:
            return self.classifier.classify(body)
        except (MeetwiseError, ClientError, BotoCoreError) as e:
            logger.warning("[extract] classifier failed, treating as not a meeting err=%r", e)
            return None

    def detect(self, email: InboundEmail, ctx: RequestContext) -> Optional[MeetingRequest]:
        body = email.body or ""
        if not has_scheduling_keywords(body):
            logger.info("[extract] no scheduling keywords email_id=%s", email.id)
            return None

        intent = self.classify(body)
        if intent is None or not intent.is_meeting_request or intent.confidence < self.min_confidence:
            logger.info(
                "[extract] not a meeting request email_id=%s confidence=%s",
                email.id, intent.confidence if intent else None,
            )
            return None

        details = intent.details
        now = ctx.now()

        def dates() -> List[str]:
            found = extract_preferred_dates(details.time_frame or "", ctx, now) if details.time_frame else []
            return found or extract_preferred_dates(body, ctx, now)

        def attendees() -> List[str]:
            exclude = (email.sender, ctx.user_email)
            if details.attendees:
                given = extract_attendees(" ".join(details.attendees), exclude)
                if given:
                    return given
            return extract_attendees(body, exclude)

        request = MeetingRequest(
            user_id=ctx.user_id,
            email_id=email.id,
            sender_email=email.sender,
            subject=email.subject or "",
            meeting_type=_safely(
                "meeting_type",
                lambda: determine_meeting_type(details.purpose or f"{email.subject} {body}"),
                MeetingType.REGULAR,
            ),
            requested_duration=_safely("duration", lambda: duration_or_default(details.duration or body), DEFAULT_DURATION_MINUTES),
            preferred_dates=_safely("preferred_dates", dates, []),
            attendees=_safely("attendees", attendees, []),
            location_preference=_safely("location", lambda: details.location or extract_location(body), None),
            special_requirements=_safely("special_requirements", lambda: extract_special_requirements(body), None),
            urgency_level=_safely("urgency", lambda: determine_urgency(body, email.subject), Urgency.MEDIUM),
            detection_confidence=round(intent.confidence * 100),
        )

        logger.info(
            "[extract] meeting request request_id=%s type=%s duration=%s urgency=%s dates=%d confidence=%d",
            request.id, request.meeting_type.value, request.requested_duration,
            request.urgency_level.value, len(request.preferred_dates), request.detection_confidence,
        )
        return request
