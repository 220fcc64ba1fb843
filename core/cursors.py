"""
Continuation cursors for the Limbo BBS server

Two kinds of resumable position are handed to clients as opaque tokens:

- PostRange: an inclusive 1-based window of post positions within one
  thread. Open-ended tokens (``"51-"``) are resolved against the thread's
  post count at the time of the request, never at the time of issue.
- ListingCursor: a position in the recency-ordered thread listing,
  "threads last active strictly before T". Threads sharing the same
  timestamp are ordered by id, so the cursor also carries the id of the
  last thread served.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from core.identifiers import canonical_thread_id


logger = logging.getLogger(__name__)

RFC3339_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
RFC3339_MICRO_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'
CURSOR_ID_SEPARATOR = '~'


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_rfc3339(value: datetime, precise: bool = False) -> str:
    """
    Format a naive UTC datetime as RFC-3339.

    Args:
        value: Naive UTC datetime
        precise: Include microseconds (used for cursors)

    Returns:
        Timestamp string such as ``2026-10-18T09:30:00Z``
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(RFC3339_MICRO_FORMAT if precise else RFC3339_FORMAT)


def parse_rfc3339(text: str) -> datetime:
    """
    Parse an RFC-3339 timestamp into a naive UTC datetime.

    Raises:
        ValueError: If the text is not a valid timestamp
    """
    if not text or 'T' not in text:
        raise ValueError(f"Not an RFC-3339 timestamp: {text!r}")
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        raise ValueError(f"RFC-3339 timestamp needs an offset: {text!r}")
    try:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    except OverflowError as e:
        raise ValueError(f"RFC-3339 timestamp out of range: {text!r}") from e


@dataclass(frozen=True)
class PostRange:
    """Inclusive 1-based window of post positions."""
    start: int
    end: int

    @property
    def width(self) -> int:
        """Number of positions past ``start`` covered by the window."""
        return self.end - self.start

    def clamp(self, post_count: int) -> 'PostRange':
        """Return this range with ``end`` limited to ``post_count``."""
        if self.end > post_count:
            return PostRange(self.start, post_count)
        return self

    def to_dict(self) -> dict:
        return {'start': self.start, 'end': self.end}


DEFAULT_RANGE = PostRange(1, 50)


def parse_range_token(
    token: str,
    post_count: int,
    default_range: PostRange = DEFAULT_RANGE
) -> PostRange:
    """
    Decode a thread view token into a PostRange.

    ``"<start>-<end>"`` decodes to exactly that window. ``"<start>-"``
    decodes to one default-width window starting at ``start``, cut short
    at ``post_count``. Anything else falls back to ``default_range``.

    Args:
        token: Token issued by a previous thread view
        post_count: Current number of posts in the thread
        default_range: Range used on parse failure; also sets the window width

    Returns:
        Decoded PostRange
    """
    parts = (token or '').split('-')
    if len(parts) != 2:
        logger.debug(f"Malformed range token {token!r}, using default range")
        return default_range

    try:
        start = int(parts[0])
    except ValueError:
        logger.debug(f"Bad start in range token {token!r}, using default range")
        return default_range

    if parts[1] == '':
        end = start + default_range.width
        if end > post_count:
            end = post_count
        return PostRange(start, end)

    try:
        end = int(parts[1])
    except ValueError:
        logger.debug(f"Bad end in range token {token!r}, using default range")
        return default_range

    return PostRange(start, end)


def next_range_token(served: PostRange) -> str:
    """Open-ended token resuming right after ``served``."""
    return f"{served.end + 1}-"


@dataclass(frozen=True)
class ListingCursor:
    """
    Position in the thread listing.

    Attributes:
        before: Only threads last active before this instant are listed
        thread_id: When set, threads active exactly at ``before`` with a
            smaller id are listed too
    """
    before: datetime
    thread_id: Optional[str] = None

    def encode(self) -> str:
        token = format_rfc3339(self.before, precise=True)
        if self.thread_id:
            token = f"{token}{CURSOR_ID_SEPARATOR}{self.thread_id}"
        return token

    @classmethod
    def decode(cls, token: str) -> 'ListingCursor':
        """
        Decode a listing token.

        Raises:
            ValueError: If the token is not a valid cursor
        """
        stamp, _, thread_id = token.partition(CURSOR_ID_SEPARATOR)
        before = parse_rfc3339(stamp)
        if thread_id:
            thread_id = canonical_thread_id(thread_id)
        return cls(before=before, thread_id=thread_id or None)
