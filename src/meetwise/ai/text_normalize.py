import re

_REPLY_HEADER_RE = re.compile(r"^\s*On .* wrote:\s*$")
_FORWARD_RE = re.compile(r"^\s*-{2,}\s*(Original Message|Forwarded message)\s*-{2,}\s*$", re.IGNORECASE)
_SIGNATURE_RE = re.compile(r"^\s*--\s*$")

MAX_BODY_CHARS = 6000


def clean_email_text(text: str) -> str:
    """Drop quoted replies, forwarded history and the signature block."""
    if not text:
        return ""
    lines = []
    for line in text.replace("\r\n", "\n").splitlines():
        if line.strip().startswith(">"):
            continue
        if _REPLY_HEADER_RE.match(line) or _FORWARD_RE.match(line) or _SIGNATURE_RE.match(line):
            break
        lines.append(line.replace("\u00a0", " "))
    cleaned = "\n".join(lines).strip()
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned[:MAX_BODY_CHARS]


def normalize_slang(text: str) -> str:
    """'2ish' / '2-ish' / '2pm-ish' → 'around 2' so time rules see a plain clock time."""
    if not text:
        return ""

    t = re.sub(r"\b(\d{1,2}(?::\d{2})?\s*(?:am|pm)?)\s*-?\s*ish\b", r"around \1", text, flags=re.IGNORECASE)
    t = re.sub(r"\bnoon\s*-?\s*ish\b", "around noon", t, flags=re.IGNORECASE)
    return t
