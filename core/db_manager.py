"""
Database manager for the Limbo BBS server.

This module provides the DBManager class which handles all database operations
including initialization, the user and thread repository operations used by
the command handlers, and transaction management.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from contextlib import contextmanager
from sqlalchemy import create_engine, event, update, and_, or_
from sqlalchemy.orm import sessionmaker, Session, selectinload

from models.database import (
    Base,
    User,
    Thread,
    Post,
    ThreadTag,
    Tag,
    TagChild,
)


class DBManager:
    """
    Manages database operations for the BBS server.

    Provides methods for initializing the database, saving and retrieving
    users and threads, and managing transactions with automatic rollback on
    errors. Returned objects are detached from their session.
    """

    def __init__(self, db_path: Path):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """
        Initialize the database by creating the schema if it doesn't exist.

        Creates all tables defined in the models and sets up the session factory.
        """
        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with foreign key enforcement
        db_url = f"sqlite:///{self.db_path}"
        self.engine = create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False}
        )

        # Enable foreign key constraints for SQLite
        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Create all tables
        Base.metadata.create_all(self.engine)

        # Create session factory with expire_on_commit=False to avoid detached instance errors
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self.engine is not None:
            self.engine.dispose()

    @contextmanager
    def get_session(self) -> Session:
        """
        Context manager for database sessions with automatic rollback on error.

        Yields:
            Session: SQLAlchemy session object

        Example:
            with db_manager.get_session() as session:
                session.add(thread)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # User operations

    def find_user_by_key(self, key: str) -> Optional[User]:
        """
        Retrieve a user by lower-cased username.

        Args:
            key: Lower-cased username

        Returns:
            User object if found, None otherwise
        """
        with self.get_session() as session:
            user = session.get(User, key)
            if user:
                session.expunge(user)
            return user

    def count_users_by_key(self, key: str) -> int:
        """
        Count users registered under a lower-cased username (0 or 1).

        Args:
            key: Lower-cased username
        """
        with self.get_session() as session:
            return session.query(User).filter(User.id == key).count()

    def insert_user(self, user: User) -> None:
        """
        Save a new user to the database.

        Args:
            user: User object to save

        Raises:
            IntegrityError: If the username is already registered
            OperationalError: If database operation fails
        """
        with self.get_session() as session:
            session.add(user)

    def set_admin(self, key: str, is_admin: bool = True) -> bool:
        """
        Grant or revoke elevated privileges.

        Returns:
            True if the user exists, False otherwise
        """
        with self.get_session() as session:
            result = session.execute(
                update(User).where(User.id == key).values(is_admin=is_admin)
            )
            return result.rowcount > 0

    # Thread operations

    def find_thread_by_id(self, thread_id: str) -> Optional[Thread]:
        """
        Retrieve a thread with all of its posts and tags.

        Args:
            thread_id: Canonical thread identifier

        Returns:
            Thread object if found, None otherwise
        """
        with self.get_session() as session:
            thread = (
                session.query(Thread)
                .options(selectinload(Thread.posts))
                .filter(Thread.id == thread_id)
                .first()
            )
            if thread:
                session.expunge_all()
            return thread

    def insert_thread(self, thread: Thread) -> str:
        """
        Save a new thread together with its posts and tags.

        Args:
            thread: Thread object to save (must carry its first post)

        Returns:
            The thread ID

        Raises:
            IntegrityError: If thread with same ID already exists
            OperationalError: If database operation fails
        """
        with self.get_session() as session:
            session.add(thread)
            session.flush()
            thread_id = thread.id
            session.expunge_all()
        return thread_id

    def append_post_and_touch(self, thread_id: str, post: Post, timestamp: datetime) -> bool:
        """
        Append a post to a thread and bump its last activity, atomically.

        Both writes happen in one transaction; concurrent replies to the same
        thread are serialized by the database rather than read-modify-written.

        Args:
            thread_id: Canonical thread identifier
            post: Post to append (its thread_id is overwritten)
            timestamp: New last-activity time

        Returns:
            True if the thread exists and the post was stored, False otherwise
        """
        with self.get_session() as session:
            result = session.execute(
                update(Thread)
                .where(Thread.id == thread_id)
                .values(last_activity=timestamp)
            )
            if result.rowcount == 0:
                return False

            post.thread_id = thread_id
            session.add(post)
            session.flush()
            session.expunge(post)
            return True

    def set_thread_flags(
        self,
        thread_id: str,
        sticky: Optional[bool] = None,
        closed: Optional[bool] = None
    ) -> bool:
        """
        Change the sticky and/or closed flag of a thread.

        Returns:
            True if the thread exists, False otherwise
        """
        values = {}
        if sticky is not None:
            values['is_sticky'] = sticky
        if closed is not None:
            values['is_closed'] = closed
        if not values:
            return self.find_thread_by_id(thread_id) is not None

        with self.get_session() as session:
            result = session.execute(
                update(Thread).where(Thread.id == thread_id).values(**values)
            )
            return result.rowcount > 0

    def query_threads(
        self,
        before: datetime,
        include: Optional[Sequence[str]] = None,
        exclude: Optional[Sequence[str]] = None,
        limit: int = 50,
        before_id: Optional[str] = None
    ) -> List[Thread]:
        """
        Retrieve threads ordered by last activity (most recent first).

        Ties on last activity are broken by thread id, descending.

        Args:
            before: Only threads last active strictly before this time
            include: Lower-cased tags; when non-empty a thread needs at least one
            exclude: Lower-cased tags; a thread with any of them is skipped
            limit: Maximum number of threads to return
            before_id: Also return threads active exactly at ``before`` whose
                id sorts below this one

        Returns:
            List of Thread objects with tags and post counts loaded
        """
        with self.get_session() as session:
            query = session.query(Thread)

            if before_id:
                query = query.filter(or_(
                    Thread.last_activity < before,
                    and_(Thread.last_activity == before, Thread.id < before_id),
                ))
            else:
                query = query.filter(Thread.last_activity < before)

            if include:
                query = query.filter(
                    Thread.tags.any(ThreadTag.key.in_(list(include)))
                )
            if exclude:
                query = query.filter(
                    ~Thread.tags.any(ThreadTag.key.in_(list(exclude)))
                )

            threads = (
                query.order_by(Thread.last_activity.desc(), Thread.id.desc())
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return threads

    # Tag operations

    def save_tag(self, tag: Tag) -> None:
        """
        Save or replace a tag definition.

        Args:
            tag: Tag object (with children) to save
        """
        with self.get_session() as session:
            existing = session.get(Tag, tag.id)
            if existing:
                session.delete(existing)
                session.flush()
            session.add(tag)

    def get_all_tags(self) -> List[Tag]:
        """
        Retrieve all tag definitions.

        Returns:
            List of Tag objects with their children loaded
        """
        with self.get_session() as session:
            tags = session.query(Tag).order_by(Tag.id).all()
            session.expunge_all()
            return tags

    def get_tag_children(self) -> Dict[str, List[str]]:
        """
        Map every defined tag to its child tag names.

        Returns:
            Dict of lower-cased tag name to lower-cased child names
        """
        return {
            tag.id: [edge.child.lower() for edge in tag.children]
            for tag in self.get_all_tags()
        }
