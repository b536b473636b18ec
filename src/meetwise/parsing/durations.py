import re
from typing import Callable, List, Optional, Pattern, Tuple

from ..config import DEFAULT_DURATION_MINUTES

MAX_DURATION_MINUTES = 480

DurationRule = Tuple[str, Pattern, Callable[[re.Match], int]]

# First match wins.
DURATION_RULES: List[DurationRule] = [
    ("hours", re.compile(r"\b(\d{1,2}(?:\.5)?)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE), lambda m: int(float(m.group(1)) * 60)),
    ("minutes", re.compile(r"\b(\d{1,3})\s*(?:min|mins|minute|minutes)\b", re.IGNORECASE), lambda m: int(m.group(1))),
    ("half_hour", re.compile(r"\bhalf\s*(?:an\s+)?hour\b", re.IGNORECASE), lambda m: 30),
    ("quick_chat", re.compile(r"\bquick\s*chat\b", re.IGNORECASE), lambda m: 15),
    ("brief_meeting", re.compile(r"\bbrief\s*meeting\b", re.IGNORECASE), lambda m: 30),
    ("catch_up", re.compile(r"\bcatch\s*-?\s*up\b", re.IGNORECASE), lambda m: 30),
]


def parse_duration_minutes(text: str) -> Optional[int]:
    if not text:
        return None

    for _name, pattern, to_minutes in DURATION_RULES:
        m = pattern.search(text)
        if not m:
            continue
        v = to_minutes(m)
        if 1 <= v <= MAX_DURATION_MINUTES:
            return v

    return None


def duration_or_default(text: str, default: int = DEFAULT_DURATION_MINUTES) -> int:
    return parse_duration_minutes(text) or default
