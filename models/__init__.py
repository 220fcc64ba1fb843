"""
Data models module for the Limbo BBS server.

This module contains:
- SQLAlchemy ORM models for users, threads, posts and tags
- Wire message dataclasses sent to clients
"""
