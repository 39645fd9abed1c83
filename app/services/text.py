"""Question text cleanup."""
import html
from typing import List, Optional


def smart_clean(value: Optional[str]) -> str:
    """Decode HTML entities, turn non-breaking spaces into spaces and trim."""
    if not value:
        return ""
    return html.unescape(value).replace("\u00a0", " ").strip()


def clean_all(values: Optional[List[str]]) -> List[str]:
    return [smart_clean(v) for v in (values or [])]
