"""
Unit tests for database operations.

Tests the user and thread repository operations, tag filtering, keyset
ordering of thread queries, and transaction behavior.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError

from core.db_manager import DBManager
from core.identifiers import new_thread_id
from models.database import User, Thread, Post, ThreadTag, Tag, TagChild


BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def db_manager(tmp_path):
    """Create a temporary database for testing."""
    db_path = tmp_path / "test.db"
    manager = DBManager(db_path)
    manager.initialize_database()
    yield manager
    manager.close()


def make_thread(title="Test Thread", minutes=0, tags=(), thread_id=None, posts=1, closed=False):
    """Build an unsaved thread whose posts end at BASE_TIME + minutes."""
    last = BASE_TIME + timedelta(minutes=minutes)
    created = last - timedelta(seconds=posts - 1)
    return Thread(
        id=thread_id or new_thread_id(),
        title=title,
        creator="alice",
        created_at=created,
        last_activity=last,
        is_closed=closed,
        posts=[
            Post(author="alice", created_at=created + timedelta(seconds=i), text=f"post {i + 1}")
            for i in range(posts)
        ],
        tags=[ThreadTag(position=i, name=t, key=t.lower()) for i, t in enumerate(tags)],
    )


class TestUserOperations:
    """Test repository operations for User model."""

    def test_insert_and_find_user(self, db_manager):
        """Test saving a user and finding it by key."""
        db_manager.insert_user(User(id="alice", name="Alice", password=b"hash", registered_at=BASE_TIME))

        user = db_manager.find_user_by_key("alice")
        assert user is not None
        assert user.name == "Alice"
        assert user.password == b"hash"
        assert user.is_admin is False

    def test_find_missing_user(self, db_manager):
        assert db_manager.find_user_by_key("nobody") is None

    def test_count_users_by_key(self, db_manager):
        assert db_manager.count_users_by_key("alice") == 0
        db_manager.insert_user(User(id="alice", name="Alice", password=b"hash"))
        assert db_manager.count_users_by_key("alice") == 1

    def test_duplicate_user_rejected(self, db_manager):
        """Test that duplicate usernames raise IntegrityError."""
        db_manager.insert_user(User(id="alice", name="Alice", password=b"hash"))
        with pytest.raises(IntegrityError):
            db_manager.insert_user(User(id="alice", name="ALICE", password=b"other"))

    def test_set_admin(self, db_manager):
        db_manager.insert_user(User(id="alice", name="Alice", password=b"hash"))
        assert db_manager.set_admin("alice") is True
        assert db_manager.find_user_by_key("alice").is_admin is True
        assert db_manager.set_admin("nobody") is False


class TestThreadOperations:
    """Test repository operations for Thread model."""

    def test_insert_and_find_thread(self, db_manager):
        """Test a thread comes back with its posts and tags in order."""
        thread = make_thread(posts=3, tags=("Games", "news"))
        thread_id = db_manager.insert_thread(thread)

        found = db_manager.find_thread_by_id(thread_id)
        assert found is not None
        assert found.title == "Test Thread"
        assert [p.text for p in found.posts] == ["post 1", "post 2", "post 3"]
        assert found.tag_names == ["Games", "news"]
        assert found.post_count == 3

    def test_find_missing_thread(self, db_manager):
        assert db_manager.find_thread_by_id(new_thread_id()) is None

    def test_append_post_and_touch(self, db_manager):
        """Test appending a post bumps the thread's last activity."""
        thread_id = db_manager.insert_thread(make_thread())
        later = BASE_TIME + timedelta(hours=1)

        stored = db_manager.append_post_and_touch(
            thread_id, Post(author="bob", created_at=later, text="reply"), later
        )

        assert stored is True
        found = db_manager.find_thread_by_id(thread_id)
        assert found.last_activity == later
        assert [p.author for p in found.posts] == ["alice", "bob"]
        assert found.posts[-1].created_at == found.last_activity

    def test_append_to_missing_thread(self, db_manager):
        """Test nothing is stored when the thread does not exist."""
        stored = db_manager.append_post_and_touch(
            new_thread_id(), Post(author="bob", created_at=BASE_TIME, text="reply"), BASE_TIME
        )
        assert stored is False

    def test_set_thread_flags(self, db_manager):
        thread_id = db_manager.insert_thread(make_thread())
        assert db_manager.set_thread_flags(thread_id, sticky=True, closed=True) is True

        found = db_manager.find_thread_by_id(thread_id)
        assert found.is_sticky is True
        assert found.is_closed is True
        assert db_manager.set_thread_flags(new_thread_id(), closed=True) is False


class TestQueryThreads:
    """Test listing queries."""

    def test_ordered_by_activity(self, db_manager):
        """Test that threads are ordered by last activity."""
        db_manager.insert_thread(make_thread("Old Thread", minutes=1))
        db_manager.insert_thread(make_thread("New Thread", minutes=2))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1))
        assert [t.title for t in threads] == ["New Thread", "Old Thread"]

    def test_before_is_strict(self, db_manager):
        db_manager.insert_thread(make_thread("At", minutes=5))
        db_manager.insert_thread(make_thread("Earlier", minutes=4))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(minutes=5))
        assert [t.title for t in threads] == ["Earlier"]

    def test_limit(self, db_manager):
        for i in range(5):
            db_manager.insert_thread(make_thread(f"T{i}", minutes=i))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1), limit=2)
        assert [t.title for t in threads] == ["T4", "T3"]

    def test_ties_broken_by_id(self, db_manager):
        """Threads with the same last activity come back by id, descending."""
        ids = ["000000000000000000000001", "000000000000000000000002", "000000000000000000000003"]
        for thread_id in ids:
            db_manager.insert_thread(make_thread(thread_id=thread_id, minutes=1))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1))
        assert [t.id for t in threads] == list(reversed(ids))

    def test_before_id_resumes_within_tie(self, db_manager):
        ids = ["000000000000000000000001", "000000000000000000000002", "000000000000000000000003"]
        for thread_id in ids:
            db_manager.insert_thread(make_thread(thread_id=thread_id, minutes=1))
        db_manager.insert_thread(make_thread("Older", minutes=0))

        threads = db_manager.query_threads(
            before=BASE_TIME + timedelta(minutes=1), before_id=ids[1]
        )
        assert [t.id for t in threads[:1]] == [ids[0]]
        assert threads[1].title == "Older"

    def test_include_tags(self, db_manager):
        db_manager.insert_thread(make_thread("Games", minutes=1, tags=("Games",)))
        db_manager.insert_thread(make_thread("News", minutes=2, tags=("news",)))
        db_manager.insert_thread(make_thread("Both", minutes=3, tags=("news", "games")))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1), include=["games"])
        assert [t.title for t in threads] == ["Both", "Games"]

    def test_exclude_tags(self, db_manager):
        db_manager.insert_thread(make_thread("Games", minutes=1, tags=("games",)))
        db_manager.insert_thread(make_thread("News", minutes=2, tags=("news",)))
        db_manager.insert_thread(make_thread("Untagged", minutes=3))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1), exclude=["news"])
        assert [t.title for t in threads] == ["Untagged", "Games"]

    def test_empty_tag_never_matches(self, db_manager):
        db_manager.insert_thread(make_thread("Games", minutes=1, tags=("games",)))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1), include=[""])
        assert threads == []

    def test_post_counts_loaded(self, db_manager):
        db_manager.insert_thread(make_thread("Long", minutes=1, posts=4))

        threads = db_manager.query_threads(before=BASE_TIME + timedelta(days=1))
        assert threads[0].post_count == 4


class TestTagOperations:
    """Test tag definition storage."""

    def test_save_and_map_children(self, db_manager):
        db_manager.save_tag(Tag(id="games", name="Games", children=[
            TagChild(position=0, child="RPG"),
            TagChild(position=1, child="strategy"),
        ]))
        db_manager.save_tag(Tag(id="rpg", name="RPG"))

        assert db_manager.get_tag_children() == {
            "games": ["rpg", "strategy"],
            "rpg": [],
        }

    def test_save_tag_replaces_definition(self, db_manager):
        db_manager.save_tag(Tag(id="games", name="Games", children=[TagChild(position=0, child="rpg")]))
        db_manager.save_tag(Tag(id="games", name="Games", description="All games"))

        tags = db_manager.get_all_tags()
        assert len(tags) == 1
        assert tags[0].description == "All games"
        assert db_manager.get_tag_children() == {"games": []}
