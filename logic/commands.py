"""
Client commands.

The protocol has a closed set of commands. Each is a small dataclass built
from the decoded wire payload by ``parse_command``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from core.cursors import PostRange
from core.error_handler import UnknownCommand, ValidationError


@dataclass
class HelloCommand:
    name: str = 'hello'


@dataclass
class RegisterCommand:
    username: str
    password: str
    name: str = 'register'


@dataclass
class LoginCommand:
    username: str
    password: str
    name: str = 'login'


@dataclass
class LogoutCommand:
    name: str = 'logout'


@dataclass
class GetCommand:
    thread_id: str
    range: Optional[PostRange] = None
    token: Optional[str] = None
    format: Optional[str] = None
    name: str = 'get'


@dataclass
class ListCommand:
    type: str = 'thread'
    query: Optional[str] = None
    token: Optional[str] = None
    name: str = 'list'


@dataclass
class PostCommand:
    title: str
    body: str = ''
    format: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    name: str = 'post'


@dataclass
class ReplyCommand:
    thread_id: str
    body: str = ''
    format: Optional[str] = None
    name: str = 'reply'


Command = Union[
    HelloCommand,
    RegisterCommand,
    LoginCommand,
    LogoutCommand,
    GetCommand,
    ListCommand,
    PostCommand,
    ReplyCommand,
]


def _text(payload: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    value = payload.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{key}' must be a string.")
    return value


def _range(payload: Dict[str, Any]) -> Optional[PostRange]:
    value = payload.get('range')
    if value is None:
        return None
    try:
        return PostRange(int(value['start']), int(value['end']))
    except (KeyError, TypeError, ValueError, OverflowError):
        raise ValidationError("Field 'range' needs integer 'start' and 'end'.")


def _tags(payload: Dict[str, Any]) -> List[str]:
    value = payload.get('tags') or []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError("Field 'tags' must be a list of strings.")
    return value


def parse_command(payload: Dict[str, Any]) -> Command:
    """
    Build a command from a decoded wire payload.

    Args:
        payload: Dict with a ``cmd`` key naming the command

    Returns:
        The matching command dataclass

    Raises:
        UnknownCommand: If ``cmd`` is missing or not a known command
        ValidationError: If a field has the wrong type
    """
    if not isinstance(payload, dict):
        raise UnknownCommand("Malformed command.")

    name = payload.get('cmd')

    if name == 'hello':
        return HelloCommand()
    if name == 'register':
        return RegisterCommand(
            username=_text(payload, 'username', ''),
            password=_text(payload, 'password', ''),
        )
    if name == 'login':
        return LoginCommand(
            username=_text(payload, 'username', ''),
            password=_text(payload, 'password', ''),
        )
    if name == 'logout':
        return LogoutCommand()
    if name == 'get':
        return GetCommand(
            thread_id=_text(payload, 'id', ''),
            range=_range(payload),
            token=_text(payload, 'token'),
            format=_text(payload, 'format'),
        )
    if name == 'list':
        return ListCommand(
            type=_text(payload, 'type') or 'thread',
            query=_text(payload, 'query'),
            token=_text(payload, 'token'),
        )
    if name == 'post':
        return PostCommand(
            title=_text(payload, 'title', ''),
            body=_text(payload, 'body') or '',
            format=_text(payload, 'format'),
            tags=_tags(payload),
        )
    if name == 'reply':
        return ReplyCommand(
            thread_id=_text(payload, 'id', ''),
            body=_text(payload, 'body') or '',
            format=_text(payload, 'format'),
        )

    raise UnknownCommand(f"Unknown command: {name}")
