"""
Tag Query Parser for the Limbo BBS server

Parses compact tag expressions such as ``games+rpg-spoilers`` into an
inclusion/exclusion query used to filter thread listings.
"""

from dataclasses import dataclass, field
from typing import List


SIGNS = ('+', '-')


@dataclass
class TagQuery:
    """
    Inclusion/exclusion tag filter.

    Attributes:
        include: Tags a thread must have at least one of (empty = any)
        exclude: Tags a thread must not have
    """
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        """Return True if the query matches every thread."""
        return not self.include and not self.exclude


def parse_tag_query(expr: str) -> TagQuery:
    """
    Parse a tag expression into a TagQuery.

    Tags are separated only by ``+`` and ``-``. Each tag goes to the list
    named by the sign that preceded it; a leading unsigned tag is included.
    Malformed input never raises: an empty segment between two signs
    becomes an empty tag name, which matches no thread.

    Args:
        expr: Tag expression, e.g. ``"a+b-c"``

    Returns:
        TagQuery with included and excluded tag names in input order

    Example:
        >>> parse_tag_query("a-b+c")
        TagQuery(include=['a', 'c'], exclude=['b'])
    """
    query = TagQuery()
    if not expr:
        return query

    buffer: List[str] = []
    sign = '+'
    seen_sign = False

    for ch in expr:
        if ch in SIGNS:
            # The pending tag belongs to the sign read before it
            if buffer or seen_sign:
                _commit(query, sign, ''.join(buffer))
            buffer = []
            sign = ch
            seen_sign = True
        else:
            buffer.append(ch)

    if buffer:
        _commit(query, sign, ''.join(buffer))

    return query


def _commit(query: TagQuery, sign: str, tag: str) -> None:
    if sign == '-':
        query.exclude.append(tag)
    else:
        query.include.append(tag)
