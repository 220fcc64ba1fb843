"""
Tag hierarchy resolution.

Tags may declare child tags; filtering by a tag also matches its
descendants. Tag data is user-editable, so the walk keeps a visited set
and terminates on cycles.
"""

import logging
from typing import Dict, Iterable, List, Set


logger = logging.getLogger(__name__)


def expand_tag(children: Dict[str, List[str]], tag: str) -> List[str]:
    """
    Return ``tag`` followed by all of its descendants, depth-first.

    Args:
        children: Map of lower-cased tag name to child tag names
        tag: Tag to expand

    Returns:
        Lower-cased tag names, each listed once
    """
    nodes: List[str] = []
    visited: Set[str] = set()
    stack = [tag.lower()]

    while stack:
        name = stack.pop()
        if name in visited:
            continue
        visited.add(name)
        nodes.append(name)

        if name not in children:
            if name != tag.lower():
                logger.warning(f"Unknown child tag: {name}")
            continue

        # Reversed so the first child is visited first
        for child in reversed(children[name]):
            child = child.lower()
            if child not in visited:
                stack.append(child)

    return nodes


def expand_tags(children: Dict[str, List[str]], tags: Iterable[str]) -> List[str]:
    """Expand every tag in ``tags`` and merge the results in order."""
    expanded: List[str] = []
    for tag in tags:
        for name in expand_tag(children, tag):
            if name not in expanded:
                expanded.append(name)
    return expanded
