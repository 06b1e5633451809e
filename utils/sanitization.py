from typing import Any, Dict, Optional
import json
import re

CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def optional_text(value: Any) -> Optional[str]:
    """Coerce model output to a stripped string, or None when blank/null."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


def extract_json_object(content: str) -> Dict[str, Any]:
    """
    Parses the outermost JSON object in an LLM reply.
    Tolerates Markdown code fences and chatter around the object.
    Raises:
        ValueError: If no JSON object can be decoded.
    """
    text = CODE_FENCE.sub("", content or "").strip()

    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        raise ValueError("No JSON object found in response")

    data = json.loads(text[first:last + 1])
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
