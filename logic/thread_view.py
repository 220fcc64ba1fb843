"""
Thread Rendering Engine for the Limbo BBS server

Turns a stored thread into a windowed view of its posts. Clients page
through long threads with the open-ended ``next`` token, which is resolved
against the thread's post count when it is presented, so replies that
arrive between requests are picked up.
"""

import logging
from typing import List, Optional

from core.cursors import (
    DEFAULT_RANGE,
    PostRange,
    format_rfc3339,
    next_range_token,
    parse_range_token,
)
from models.database import Thread
from models.messages import PostMessage, ThreadView


logger = logging.getLogger(__name__)


def resolve_range(
    thread: Thread,
    post_range: Optional[PostRange] = None,
    token: Optional[str] = None,
    default_range: PostRange = DEFAULT_RANGE
) -> PostRange:
    """
    Pick the window to serve, clamped to the thread's post count.

    An explicit range wins over a token; with neither the default range
    is used.
    """
    post_count = len(thread.posts)

    if post_range is not None:
        chosen = post_range
    elif token:
        chosen = parse_range_token(token, post_count, default_range)
    else:
        chosen = default_range

    return chosen.clamp(post_count)


def window_posts(thread: Thread, served: PostRange) -> List[PostMessage]:
    """
    Render the posts whose 1-based position lies in ``served``.

    Args:
        thread: Thread with posts loaded
        served: Inclusive window of positions

    Returns:
        Posts in thread order, each with id ``"<thread id>:<position>"``
    """
    messages = []
    for position, post in enumerate(thread.posts, start=1):
        if position < served.start:
            continue
        if position > served.end:
            break
        messages.append(PostMessage(
            id=f"{thread.id}:{position}",
            author=post.author,
            date=format_rfc3339(post.created_at),
            body=post.text,
        ))
    return messages


def render_thread(
    thread: Thread,
    post_range: Optional[PostRange] = None,
    token: Optional[str] = None,
    default_range: PostRange = DEFAULT_RANGE,
    text_format: str = 'markdown'
) -> ThreadView:
    """
    Render a window of a thread.

    Args:
        thread: Thread with posts and tags loaded
        post_range: Explicit window requested by the client
        token: ``next`` token from a previous view of this thread
        default_range: Window used when nothing else is given
        text_format: Body format advertised to the client

    Returns:
        ThreadView; ``more`` is set and ``next_token`` issued when posts
        remain after the served window
    """
    served = resolve_range(thread, post_range, token, default_range)
    view = ThreadView(
        id=thread.id,
        title=thread.title,
        tags=thread.tag_names,
        closed=bool(thread.is_closed),
        range=served.to_dict(),
        messages=window_posts(thread, served),
        format=text_format,
    )

    if served.end < len(thread.posts):
        view.more = True
        view.next_token = next_range_token(served)

    logger.debug(
        f"Rendered thread {thread.id} posts {served.start}-{served.end} "
        f"of {len(thread.posts)}"
    )
    return view
