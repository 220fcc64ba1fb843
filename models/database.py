"""
SQLAlchemy database models for the Limbo BBS server.

This module defines User, Thread, Post, ThreadTag, Tag and TagChild.
Post positions inside a thread are never stored; they follow insertion order.
"""

from datetime import datetime
from typing import List

from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Text, LargeBinary, ForeignKey,
    func, select,
)
from sqlalchemy.orm import declarative_base, relationship, column_property

Base = declarative_base()


class User(Base):
    """
    Represents a registered user.

    The primary key is the lower-cased username so that lookups and
    uniqueness are case-insensitive; ``name`` keeps the original spelling.
    """
    __tablename__ = 'users'

    id = Column(String(32), primary_key=True)  # lower-cased username
    name = Column(String(32), nullable=False)
    password = Column(LargeBinary, nullable=False)
    registered_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    is_admin = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, admin={self.is_admin})>"


class Thread(Base):
    """
    Represents a discussion thread.

    A thread always holds at least one post. ``last_activity`` equals the
    timestamp of the newest post and drives listing order.
    """
    __tablename__ = 'threads'

    id = Column(String(24), primary_key=True)  # 12-byte id as hex
    title = Column(String, nullable=False)
    creator = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)
    last_activity = Column(DateTime, nullable=False, index=True)
    is_sticky = Column(Boolean, default=False, nullable=False)
    is_closed = Column(Boolean, default=False, nullable=False)

    # Relationships
    posts = relationship(
        "Post",
        back_populates="thread",
        order_by="Post.seq",
        cascade="all, delete-orphan",
    )
    tags = relationship(
        "ThreadTag",
        order_by="ThreadTag.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def tag_names(self) -> List[str]:
        """Tag names in the order they were given when posting."""
        return [tag.name for tag in self.tags]

    def __repr__(self):
        return f"<Thread(id={self.id}, title={self.title})>"


class Post(Base):
    """
    Represents a single post within a thread.

    ``seq`` is a storage sequence used only for ordering; the post's
    position is its 1-based index in ``Thread.posts``.
    """
    __tablename__ = 'posts'

    seq = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(24), ForeignKey('threads.id'), nullable=False, index=True)
    author = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)
    text = Column(Text, nullable=False, default="")

    # Relationships
    thread = relationship("Thread", back_populates="posts")

    def __repr__(self):
        return f"<Post(thread_id={self.thread_id}, author={self.author})>"


class ThreadTag(Base):
    """A tag attached to a thread, with a lower-cased key for matching."""
    __tablename__ = 'thread_tags'

    thread_id = Column(String(24), ForeignKey('threads.id'), primary_key=True)
    position = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    key = Column(String, nullable=False, index=True)

    def __repr__(self):
        return f"<ThreadTag(thread_id={self.thread_id}, name={self.name})>"


class Tag(Base):
    """
    A tag definition. Filtering by a tag also matches its child tags.
    """
    __tablename__ = 'tags'

    id = Column(String, primary_key=True)  # lower-cased name
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    children = relationship(
        "TagChild",
        order_by="TagChild.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Tag(id={self.id})>"


class TagChild(Base):
    """Edge from a tag to one of its child tag names."""
    __tablename__ = 'tag_children'

    parent_id = Column(String, ForeignKey('tags.id'), primary_key=True)
    position = Column(Integer, primary_key=True)
    child = Column(String, nullable=False)


Thread.post_count = column_property(
    select(func.count(Post.seq))
    .where(Post.thread_id == Thread.id)
    .correlate_except(Post)
    .scalar_subquery(),
    deferred=False,
)
