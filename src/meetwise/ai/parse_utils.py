import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def converse_text(resp: Dict[str, Any]) -> str:
    """Concatenated text blocks of a Bedrock `converse` response."""
    blocks = resp.get("output", {}).get("message", {}).get("content", []) or []
    return "".join(b["text"] for b in blocks if isinstance(b, dict) and "text" in b).strip()


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a model reply as a JSON object. Tolerates code fences and prose around
    the object; raises json.JSONDecodeError / ValueError otherwise.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        obj = json.loads(cleaned)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not m:
            raise
        obj = json.loads(m.group(0))
    if not isinstance(obj, dict):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    return obj
