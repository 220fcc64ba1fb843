"""
Core module for the Limbo BBS server.

This module contains the core functionality including:
- Tag query parsing and tag hierarchy resolution
- Continuation cursors for thread views and listings
- Thread identifiers
- Password hashing
- Database operations
- Error taxonomy and handling
- The TCP server front end (core.bbs_server)
"""

__version__ = "0.1.0"

from core.tag_query import TagQuery, parse_tag_query
from core.cursors import PostRange, ListingCursor, DEFAULT_RANGE
from core.identifiers import InvalidIdFormat, new_thread_id, parse_thread_id, render_thread_id
from core.crypto_manager import PasswordHasher, HashError

__all__ = [
    'TagQuery',
    'parse_tag_query',
    'PostRange',
    'ListingCursor',
    'DEFAULT_RANGE',
    'InvalidIdFormat',
    'new_thread_id',
    'parse_thread_id',
    'render_thread_id',
    'PasswordHasher',
    'HashError',
]
