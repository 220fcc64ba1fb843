"""
Listing Engine for the Limbo BBS server

Produces pages of the recency-ordered thread listing, optionally filtered
by a tag query. Pages are resumed with a cursor token rather than an
offset, so threads bumped between requests don't shift later pages.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.cursors import ListingCursor, format_rfc3339, utcnow
from core.tag_query import TagQuery
from core.tag_tree import expand_tags
from models.database import Thread
from models.messages import ThreadSummary


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_ANCHOR_SKEW = timedelta(seconds=5)


@dataclass
class ListingPage:
    """One page of the thread listing."""
    threads: List[ThreadSummary] = field(default_factory=list)
    next_token: Optional[str] = None


def summarize_thread(thread: Thread) -> ThreadSummary:
    """Build the listing entry for a thread."""
    return ThreadSummary(
        id=thread.id,
        title=thread.title,
        author=thread.creator,
        date=format_rfc3339(thread.created_at),
        post_count=thread.post_count or 0,
        tags=thread.tag_names,
        sticky=bool(thread.is_sticky),
        closed=bool(thread.is_closed),
    )


def resolve_cursor(
    token: Optional[str],
    now: Optional[datetime] = None,
    skew: timedelta = DEFAULT_ANCHOR_SKEW
) -> ListingCursor:
    """
    Decode a listing token, falling back to the start of the listing.

    The start of the listing is anchored slightly in the future so threads
    bumped at the instant of the request are not missed.
    """
    if token:
        try:
            return ListingCursor.decode(token)
        except ValueError:
            logger.debug(f"Ignoring malformed listing token {token!r}")

    if now is None:
        now = utcnow()
    return ListingCursor(before=now + skew)


class ListingEngine:
    """
    Pages through threads by last activity, newest first.

    Responsibilities:
    - Resolve continuation tokens into storage cursors
    - Expand tag queries through the tag hierarchy
    - Decide whether to hand out a token for the next page
    """

    def __init__(
        self,
        db_manager,
        page_size: int = DEFAULT_PAGE_SIZE,
        anchor_skew: timedelta = DEFAULT_ANCHOR_SKEW
    ):
        """
        Initialize ListingEngine.

        Args:
            db_manager: Repository providing query_threads and get_tag_children
            page_size: Maximum number of threads per page
            anchor_skew: How far past "now" the first page starts
        """
        self.db = db_manager
        self.page_size = page_size
        self.anchor_skew = anchor_skew

    def _tag_filters(self, tag_query: Optional[TagQuery]):
        if tag_query is None or tag_query.is_empty():
            return [], []

        children: Dict[str, List[str]] = self.db.get_tag_children()
        include = expand_tags(children, tag_query.include)
        exclude = expand_tags(children, tag_query.exclude)
        return include, exclude

    def list_threads(
        self,
        tag_query: Optional[TagQuery] = None,
        token: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ListingPage:
        """
        Return one page of the thread listing.

        A full page is taken as a sign that more threads may follow, and the
        position of its last thread is issued as the next token. The next
        page can therefore come back empty.

        Args:
            tag_query: Optional include/exclude filter
            token: Token from the previous page, if any
            limit: Page size override
            now: Current time override (for the first page anchor)

        Returns:
            ListingPage with summaries and an optional next token
        """
        limit = limit or self.page_size
        cursor = resolve_cursor(token, now, self.anchor_skew)
        include, exclude = self._tag_filters(tag_query)

        threads = self.db.query_threads(
            before=cursor.before,
            include=include,
            exclude=exclude,
            limit=limit,
            before_id=cursor.thread_id,
        )

        page = ListingPage(threads=[summarize_thread(t) for t in threads])

        if len(threads) == limit:
            last = threads[-1]
            page.next_token = ListingCursor(last.last_activity, last.id).encode()

        logger.debug(
            f"Listed {len(threads)} threads before {cursor.before.isoformat()} "
            f"(include={include}, exclude={exclude})"
        )
        return page
