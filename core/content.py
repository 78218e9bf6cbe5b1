"""
Content body codec and closed vocabularies.

A content item stores its author's reflection and the generation prompt in a
single `body` column. When a reflection is present the two are joined by a
marker line::

    <reflection>

    --- AI Prompt ---
    <generation>

Bodies without the marker are plain generation prompts.
"""

from enum import Enum
from typing import Optional, Tuple

from core.exceptions import ValidationError

PROMPT_MARKER = "--- AI Prompt ---"
PROMPT_DELIMITER = f"\n\n{PROMPT_MARKER}\n"

CATEGORIES = (
    "ai",
    "math",
    "programming",
    "sports",
    "science",
    "food",
    "fashion",
    "gaming",
    "memes",
    "general",
)

# Values a client sends for "no category"
_EMPTY_CATEGORY_VALUES = {"", "none"}


class OutputKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"
    AUDIO = "audio"


class SortMode(str, Enum):
    RECENT = "recent"
    TRENDING = "trending"
    FOLLOWING = "following"


class NotificationKind(str, Enum):
    LIKE = "like"
    FOLLOW = "follow"
    MESSAGE = "message"
    COMMENT = "comment"


def parse_body(body: Optional[str]) -> Tuple[str, str]:
    """Split a stored body into ``(reflection, generation)``.

    Only the first marker counts; both halves are trimmed.
    """
    if not body:
        return "", ""
    if PROMPT_MARKER not in body:
        return "", body
    reflection, generation = body.split(PROMPT_MARKER, 1)
    return reflection.strip(), generation.strip()


def combine_body(reflection: Optional[str], generation: Optional[str]) -> str:
    """Inverse of :func:`parse_body`."""
    reflection = (reflection or "").strip()
    generation = (generation or "").strip()
    if PROMPT_MARKER in reflection:
        raise ValidationError(
            "reflection", reflection[:40], f"must not contain '{PROMPT_MARKER}'"
        )
    if not reflection:
        # A bare marker would re-parse as a reflection
        if PROMPT_MARKER in generation:
            raise ValidationError(
                "generation", generation[:40], f"must not contain '{PROMPT_MARKER}' without a reflection"
            )
        return generation
    return f"{reflection}{PROMPT_DELIMITER}{generation}"


def count_words(text: Optional[str]) -> int:
    return len((text or "").split())


def accept_words(current: str, proposed: str, limit: int) -> str:
    """Return `proposed` if it fits in `limit` words, else keep `current`."""
    if count_words(proposed) > limit:
        return current
    return proposed


def ensure_word_limit(field: str, text: Optional[str], limit: int) -> None:
    words = count_words(text)
    if words > limit:
        raise ValidationError(field, f"{words} words", f"exceeds {limit} words")


def normalize_category(value: Optional[str]) -> Optional[str]:
    """Map the empty sentinel to ``None`` and reject labels outside the set."""
    if value is None:
        return None
    label = value.strip().lower()
    if label in _EMPTY_CATEGORY_VALUES:
        return None
    if label not in CATEGORIES:
        raise ValidationError("category", value, "unknown category")
    return label
