"""
Application Logic Layer for the Limbo BBS server

This module provides the command handling components that sit between the
core infrastructure (storage, cursors, hashing) and the wire server.
"""

from logic.bbs_handler import BBSHandler, ClientSession
from logic.listing import ListingEngine, ListingPage
from logic.thread_view import render_thread
from logic.commands import parse_command

__all__ = [
    'BBSHandler',
    'ClientSession',
    'ListingEngine',
    'ListingPage',
    'render_thread',
    'parse_command',
]
