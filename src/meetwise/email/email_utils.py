from __future__ import annotations

import email
import json
from email import policy
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import List, Optional

from ..infra.serialization import to_json_safe
from ..scheduling.models import InboundEmail, new_id

PROMOTIONAL_HEADERS = ("List-Unsubscribe", "List-Id")


def flatten_emails(header_value: Optional[str]) -> List[str]:
    if not header_value:
        return []
    return [addr.lower() for _, addr in getaddresses([header_value]) if addr]


def dedupe(seq: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for x in seq:
        if x and x not in seen:
            seen.add(x)
            out.append(x)
    return out


def safe_json(obj) -> str:
    try:
        return json.dumps(to_json_safe(obj), default=str)
    except (TypeError, ValueError):
        return "<unserializable>"


def extract_plaintext_body(eml: email.message.EmailMessage) -> str:
    body_text = ""
    if eml.is_multipart():
        for part in eml.walk():
            if part.get_content_type() == "text/plain":
                body_text = part.get_content()
                break
    else:
        body_text = eml.get_content()
    return body_text or ""


def parse_eml(raw_bytes: bytes) -> email.message.EmailMessage:
    return email.message_from_bytes(raw_bytes, policy=policy.default)


def inbound_from_eml(eml: email.message.EmailMessage, category: Optional[str] = None) -> InboundEmail:
    """InboundEmail for a parsed RFC 822 message. Mailing-list headers mark it promotional."""
    sender = parseaddr(str(eml.get("From") or ""))[1].lower()
    message_id = str(eml.get("Message-ID") or "").strip().strip("<>") or new_id("email")

    received_at = None
    if eml.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(eml.get("Date")))
        except (TypeError, ValueError):
            received_at = None

    if category is None and any(eml.get(h) for h in PROMOTIONAL_HEADERS):
        category = "promotional"

    return InboundEmail(
        id=message_id,
        sender=sender,
        subject=str(eml.get("Subject") or ""),
        body=extract_plaintext_body(eml),
        to=tuple(dedupe(flatten_emails(str(eml.get("To") or "")))),
        cc=tuple(dedupe(flatten_emails(str(eml.get("Cc") or "")))),
        category=category,
        received_at=received_at,
    )
