import re
from typing import Any, Dict, List, Optional

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

DETAIL_KEYS = ("duration", "time_frame", "purpose", "location")


def _short_str(value: Any, limit: int = 200) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:limit] if value else None


def _attendees(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out = []
    for a in value:
        if isinstance(a, str) and _EMAIL_RE.match(a.strip()):
            out.append(a.strip().lower())
    return out


def validate_intent(obj: Any) -> Dict[str, Any]:
    """
    Normalize a classifier reply into a safe shape. Anything malformed collapses
    to "not a meeting request" with zero confidence.
    """
    safe = {
        "is_meeting_request": False,
        "confidence": 0.0,
        "extracted_details": {k: None for k in DETAIL_KEYS} | {"attendees": []},
    }

    if not isinstance(obj, dict):
        return safe

    is_meeting = obj.get("is_meeting_request", obj.get("isMeetingRequest"))
    if not isinstance(is_meeting, bool):
        return safe

    try:
        conf = float(obj.get("confidence", 0.0))
    except (TypeError, ValueError):
        conf = 0.0
    conf = max(0.0, min(1.0, conf))

    raw_details = obj.get("extracted_details", obj.get("extractedDetails"))
    if not isinstance(raw_details, dict):
        raw_details = {}

    details: Dict[str, Any] = {k: _short_str(raw_details.get(k)) for k in DETAIL_KEYS}
    if details["time_frame"] is None:
        details["time_frame"] = _short_str(raw_details.get("timeFrame"))
    details["attendees"] = _attendees(raw_details.get("attendees"))

    return {
        "is_meeting_request": is_meeting,
        "confidence": conf,
        "extracted_details": details,
    }
