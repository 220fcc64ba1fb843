"""
Wire messages sent from the server to clients.

Each message knows how to turn itself into the plain dict that the wire
codec serializes. Optional fields are left out when unset.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class OKMessage:
    """Command succeeded."""
    wrt: str
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({'cmd': 'ok', 'wrt': self.wrt, 'result': self.result})


@dataclass
class ErrorMessage:
    """Command failed; ``error`` is safe to show to the user."""
    wrt: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {'cmd': 'error', 'wrt': self.wrt, 'error': self.error}


@dataclass
class PostMessage:
    """One post inside a thread view."""
    id: str
    author: str
    date: str
    body: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'author': self.author, 'date': self.date, 'body': self.body}


@dataclass
class ThreadView:
    """A window of posts from one thread."""
    id: str
    title: str
    tags: List[str]
    closed: bool
    range: Dict[str, int]
    messages: List[PostMessage]
    format: str = 'markdown'
    more: bool = False
    next_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            'cmd': 'msg',
            'id': self.id,
            'title': self.title,
            'format': self.format,
            'tags': self.tags,
            'closed': self.closed,
            'range': self.range,
            'messages': [m.to_dict() for m in self.messages],
            'more': self.more or None,
            'next': self.next_token,
        })


@dataclass
class ThreadSummary:
    """One entry of a thread listing."""
    id: str
    title: str
    author: str
    date: str
    post_count: int
    tags: List[str]
    sticky: bool = False
    closed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'date': self.date,
            'posts': self.post_count,
            'tags': self.tags,
            'sticky': self.sticky,
            'closed': self.closed,
        }


@dataclass
class ListMessage:
    """A page of the thread listing."""
    threads: List[ThreadSummary]
    type: str = 'thread'
    query: Optional[str] = None
    next_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            'cmd': 'list',
            'type': self.type,
            'query': self.query,
            'threads': [t.to_dict() for t in self.threads],
            'next': self.next_token,
        })


@dataclass
class HelloMessage:
    """Server greeting describing its capabilities."""
    name: str
    description: str
    server_version: str
    default_range: Dict[str, int]
    guest_commands: List[str] = field(default_factory=list)
    user_commands: List[str] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    formats: List[str] = field(default_factory=list)
    lists: List[str] = field(default_factory=list)
    icon_url: Optional[str] = None
    protocol_version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            'cmd': 'hello',
            'name': self.name,
            'version': self.protocol_version,
            'desc': self.description,
            'server': self.server_version,
            'options': self.options,
            'access': {
                'guest': self.guest_commands,
                'user': self.user_commands,
            },
            'formats': self.formats,
            'lists': self.lists,
            'icon': self.icon_url,
            'default_range': self.default_range,
        })
