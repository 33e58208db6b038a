import re
from typing import Iterable, Optional

from ..core.constants import BANNED_WORDS, MAX_TEXT_LEN

def moderate_content(text: str, banned_words: Iterable[str] = BANNED_WORDS) -> Optional[str]:
    """
    Returns None if the text passes, or the reason it was blocked.
    Matching is a case-insensitive substring test.
    """
    lower = (text or "").lower()
    for word in banned_words or ():
        w = str(word).strip().lower()
        if w and w in lower:
            return f"banned_word:{w}"
    return None

def validate_submission_text(text: str, max_len: int = MAX_TEXT_LEN) -> Optional[str]:
    """
    Returns None if valid, or reason string if invalid.
    """
    body = re.sub(r"\s+", " ", text or "").strip()
    if not body:
        return "empty_text"
    if len(body) > max_len:
        return "text_too_long"
    return None

def valid_coordinate(lat, lng) -> bool:
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    # NaN fails both comparisons
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
