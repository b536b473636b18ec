from __future__ import annotations

import re
from typing import Optional, Sequence

from .models import SenderRelationship, Tone, TimeSlotSuggestion
from .zones import format_local

_SUBJECT_PREFIX_RE = re.compile(r"^\s*(?:re:|fwd?:|meeting request:?)\s*", re.IGNORECASE)


def greeting(tone: Tone, relationship: SenderRelationship) -> str:
    known = relationship == SenderRelationship.KNOWN_CONTACT
    if tone == Tone.CASUAL:
        return "Hi!" if known else "Hello!"
    if tone == Tone.FRIENDLY:
        return "Hi there!" if known else "Hello!"
    return "Hello,"


def closing(tone: Tone) -> str:
    if tone == Tone.CASUAL:
        return "Looking forward to it!"
    if tone == Tone.FRIENDLY:
        return "Looking forward to speaking with you!"
    return "Best regards"


def confirmation(tone: Tone, time_text: str, event_created: bool) -> str:
    if tone == Tone.CASUAL:
        calendar = "I've created a calendar event for our meeting." if event_created else "I'll send you calendar details shortly."
        return f"Perfect! I'm available at {time_text} and would love to meet. {calendar}"
    if tone == Tone.FRIENDLY:
        calendar = "I've added this to my calendar." if event_created else "I will follow up with calendar details."
        return f"That sounds great! I'm available at {time_text} and look forward to our meeting. {calendar}"
    calendar = "I have created a calendar event for our meeting." if event_created else "I will follow up with calendar details."
    return f"Thank you for reaching out. I confirm my availability for {time_text}. {calendar}"


def meeting_purpose(subject: Optional[str]) -> str:
    purpose = _SUBJECT_PREFIX_RE.sub("", (subject or "").lower()).strip()
    return purpose or "our meeting"


def acceptance_email(
    tone: Tone,
    relationship: SenderRelationship,
    time_text: str,
    event_created: bool,
    location: Optional[str] = None,
) -> str:
    where = (
        f"I'll meet you at {location}."
        if location
        else "Please let me know if you need me to send a calendar invite or if there are any location details to discuss."
    )
    return (
        f"{greeting(tone, relationship)}\n\n"
        f"{confirmation(tone, time_text, event_created)}\n\n"
        f"{where}\n\n"
        f"{closing(tone)}"
    )


def alternatives_email(
    tone: Tone,
    relationship: SenderRelationship,
    alternatives: Sequence[TimeSlotSuggestion],
    zone_id: str,
) -> str:
    options = "\n".join(f"{i}. {format_local(s.start, zone_id)}" for i, s in enumerate(alternatives, start=1))
    return (
        f"{greeting(tone, relationship)}\n\n"
        "Unfortunately, I have a conflict at the time you suggested. "
        "However, I'd be happy to meet at one of these alternative times:\n\n"
        f"{options}\n\n"
        "Please let me know which option works best for you, and I'll send over a calendar invite.\n\n"
        f"{closing(tone)}"
    )


def more_info_email(tone: Tone, relationship: SenderRelationship, subject: Optional[str], duration: int) -> str:
    return (
        f"{greeting(tone, relationship)}\n\n"
        f"I'd be happy to meet with you to discuss {meeting_purpose(subject)}.\n\n"
        "Could you please provide a few preferred time options? I'm generally available during business hours "
        f"and can accommodate meetings of {duration} minutes.\n\n"
        f"{closing(tone)}"
    )


def conflict_link_email(tone: Tone, relationship: SenderRelationship, time_text: str, link: str) -> str:
    return (
        f"{greeting(tone, relationship)}\n\n"
        f"Thank you for reaching out! Unfortunately, I have a conflict at {time_text}.\n\n"
        "However, I'd be happy to meet with you! Please feel free to book a time that works for both of us "
        f"using my scheduling link:\n\n{link}\n\n"
        f"{closing(tone)}"
    )


def scheduling_link_email(tone: Tone, relationship: SenderRelationship, subject: Optional[str], link: str) -> str:
    purpose = meeting_purpose(subject)
    if tone == Tone.CASUAL:
        what = "catch up" if purpose == "our meeting" else f"chat about {purpose}"
        body = f"I'd love to {what}! Feel free to book a time that works for you:\n\n{link}"
    elif tone == Tone.FRIENDLY:
        body = f"I'd be happy to meet regarding {purpose}! Please feel free to schedule a time that's convenient for you:\n\n{link}"
    else:
        body = (
            f"Thank you for reaching out regarding {purpose}. "
            f"Please schedule a meeting at your convenience using the following link:\n\n{link}"
        )
    return f"{greeting(tone, relationship)}\n\n{body}\n\n{closing(tone)}"
