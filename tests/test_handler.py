"""
Tests for the command handler.

Tests registration, login, thread views, listings, posting and replying
against a temporary database.
"""

import logging

import pytest
from datetime import timedelta

from core.crypto_manager import PasswordHasher
from core.cursors import PostRange
from core.db_manager import DBManager
from core.error_handler import (
    AuthRequired,
    InvalidThreadID,
    InvalidUsername,
    NoBoards,
    PasswordTooShort,
    ThreadClosed,
    ThreadNotFound,
    TitleRequired,
    UsernameTaken,
)
from core.identifiers import new_thread_id
from logic.bbs_handler import BBSHandler, ClientSession
from logic.commands import (
    GetCommand,
    HelloCommand,
    ListCommand,
    LoginCommand,
    LogoutCommand,
    PostCommand,
    RegisterCommand,
    ReplyCommand,
)
from models.messages import ErrorMessage, HelloMessage, ListMessage, OKMessage, ThreadView


@pytest.fixture
def db_manager(tmp_path):
    """Create and initialize a DBManager instance."""
    db = DBManager(tmp_path / "test.db")
    db.initialize_database()
    yield db
    db.close()


@pytest.fixture
def handler(db_manager):
    """Create a BBSHandler with a fast password hasher."""
    return BBSHandler(
        db_manager,
        PasswordHasher(min_length=3, n=2**10),
        board_name="Test Board",
        board_description="For tests",
        default_range=PostRange(1, 5),
        page_size=3,
    )


@pytest.fixture
def session():
    return ClientSession()


@pytest.fixture
def alice(handler):
    """A logged-in session for a registered user."""
    handler.register(RegisterCommand(username="Alice", password="secret"))
    session = ClientSession()
    assert handler.log_in(session, LoginCommand(username="alice", password="secret"))
    return session


@pytest.fixture
def admin(handler, db_manager):
    """A logged-in session for an administrator."""
    handler.register(RegisterCommand(username="root", password="secret"))
    db_manager.set_admin("root")
    session = ClientSession()
    assert handler.log_in(session, LoginCommand(username="root", password="secret"))
    return session


class TestRegistration:
    """Test user registration."""

    def test_register(self, handler, db_manager):
        result = handler.register(RegisterCommand(username="Alice", password="secret"))
        assert result == OKMessage(wrt='register')

        user = db_manager.find_user_by_key("alice")
        assert user.name == "Alice"
        assert user.password != b"secret"
        assert user.is_admin is False

    def test_username_taken_case_insensitively(self, handler):
        handler.register(RegisterCommand(username="Alice", password="secret"))
        with pytest.raises(UsernameTaken):
            handler.register(RegisterCommand(username="ALICE", password="other"))

    @pytest.mark.parametrize("username", ["", "x" * 33])
    def test_invalid_username(self, handler, username):
        with pytest.raises(InvalidUsername):
            handler.register(RegisterCommand(username=username, password="secret"))

    def test_username_at_length_limit(self, handler):
        handler.register(RegisterCommand(username="x" * 32, password="secret"))

    def test_password_too_short(self, handler, db_manager):
        with pytest.raises(PasswordTooShort):
            handler.register(RegisterCommand(username="bob", password="ab"))
        assert db_manager.find_user_by_key("bob") is None


class TestLogin:
    """Test login and logout."""

    def test_login_binds_session(self, handler, session):
        handler.register(RegisterCommand(username="Alice", password="secret"))

        assert handler.log_in(session, LoginCommand(username="ALICE", password="secret"))
        assert session.is_logged_in
        assert session.username == "Alice"

    def test_wrong_password(self, handler, session):
        handler.register(RegisterCommand(username="Alice", password="secret"))

        assert handler.log_in(session, LoginCommand(username="alice", password="wrong")) is False
        assert not session.is_logged_in

    def test_unknown_user(self, handler, session):
        assert handler.log_in(session, LoginCommand(username="nobody", password="secret")) is False

    def test_failed_login_keeps_previous_user(self, handler, alice):
        assert handler.log_in(alice, LoginCommand(username="alice", password="wrong")) is False
        assert alice.username == "Alice"

    def test_logout(self, handler, alice):
        assert handler.log_out(alice) == OKMessage(wrt='logout')
        assert not alice.is_logged_in


class TestPosting:
    """Test thread creation and replies."""

    def test_post_requires_login(self, handler, session):
        with pytest.raises(AuthRequired):
            handler.post(session, PostCommand(title="Hi", body="there"))

    def test_post_requires_title(self, handler, alice):
        with pytest.raises(TitleRequired):
            handler.post(alice, PostCommand(title="", body="there"))

    def test_post_creates_thread(self, handler, alice, db_manager):
        result = handler.post(alice, PostCommand(title="Hi", body="there", tags=["Games", "", "news"]))

        assert result.wrt == 'post'
        thread = db_manager.find_thread_by_id(result.result)
        assert thread.title == "Hi"
        assert thread.creator == "Alice"
        assert thread.tag_names == ["Games", "news"]
        assert [p.text for p in thread.posts] == ["there"]
        assert thread.created_at == thread.last_activity == thread.posts[0].created_at

    def test_reply_requires_login(self, handler, alice, session):
        thread_id = handler.post(alice, PostCommand(title="Hi")).result
        with pytest.raises(AuthRequired):
            handler.reply(session, ReplyCommand(thread_id=thread_id, body="hello"))

    def test_reply_appends_and_bumps(self, handler, alice, db_manager):
        thread_id = handler.post(alice, PostCommand(title="Hi", body="first")).result
        before = db_manager.find_thread_by_id(thread_id).last_activity

        assert handler.reply(alice, ReplyCommand(thread_id=thread_id, body="second")) == OKMessage(wrt='reply')

        thread = db_manager.find_thread_by_id(thread_id)
        assert [p.text for p in thread.posts] == ["first", "second"]
        assert thread.last_activity >= before
        assert thread.last_activity == thread.posts[-1].created_at

    def test_reply_accepts_uppercase_id(self, handler, alice, db_manager):
        thread_id = handler.post(alice, PostCommand(title="Hi")).result
        handler.reply(alice, ReplyCommand(thread_id=thread_id.upper(), body="again"))
        assert len(db_manager.find_thread_by_id(thread_id).posts) == 2

    def test_reply_invalid_id(self, handler, alice):
        with pytest.raises(InvalidThreadID):
            handler.reply(alice, ReplyCommand(thread_id="123", body="hello"))

    def test_reply_missing_thread(self, handler, alice):
        with pytest.raises(ThreadNotFound):
            handler.reply(alice, ReplyCommand(thread_id=new_thread_id(), body="hello"))

    def test_reply_to_closed_thread(self, handler, alice, db_manager):
        thread_id = handler.post(alice, PostCommand(title="Hi")).result
        db_manager.set_thread_flags(thread_id, closed=True)

        with pytest.raises(ThreadClosed):
            handler.reply(alice, ReplyCommand(thread_id=thread_id, body="hello"))
        assert len(db_manager.find_thread_by_id(thread_id).posts) == 1

    def test_admin_may_reply_to_closed_thread(self, handler, alice, admin, db_manager):
        thread_id = handler.post(alice, PostCommand(title="Hi")).result
        db_manager.set_thread_flags(thread_id, closed=True)

        handler.reply(admin, ReplyCommand(thread_id=thread_id, body="locked"))

        thread = db_manager.find_thread_by_id(thread_id)
        assert [p.author for p in thread.posts] == ["Alice", "root"]
        assert thread.last_activity == thread.posts[-1].created_at


class TestReading:
    """Test thread views and listings."""

    def test_get_thread(self, handler, alice):
        thread_id = handler.post(alice, PostCommand(title="Hi", body="first", tags=["news"])).result
        for i in range(6):
            handler.reply(alice, ReplyCommand(thread_id=thread_id, body=f"reply {i}"))

        view = handler.get(GetCommand(thread_id=thread_id))
        assert isinstance(view, ThreadView)
        assert view.title == "Hi"
        assert view.tags == ["news"]
        assert view.range == {'start': 1, 'end': 5}
        assert view.more is True
        assert view.next_token == "6-"

        rest = handler.get(GetCommand(thread_id=thread_id, token=view.next_token))
        assert [m.body for m in rest.messages] == ["reply 4", "reply 5"]
        assert rest.more is False

    def test_get_with_range(self, handler, alice):
        thread_id = handler.post(alice, PostCommand(title="Hi", body="first")).result
        handler.reply(alice, ReplyCommand(thread_id=thread_id, body="second"))

        view = handler.get(GetCommand(thread_id=thread_id, range=PostRange(2, 2)))
        assert [m.body for m in view.messages] == ["second"]

    def test_get_invalid_id(self, handler):
        with pytest.raises(InvalidThreadID):
            handler.get(GetCommand(thread_id="not-a-thread"))

    def test_get_missing_thread(self, handler):
        with pytest.raises(ThreadNotFound):
            handler.get(GetCommand(thread_id=new_thread_id()))

    def test_list_threads(self, handler, alice):
        for title in ["one", "two", "three", "four"]:
            handler.post(alice, PostCommand(title=title, tags=["odd" if len(title) % 2 else "even"]))

        page = handler.list_threads(ListCommand())
        assert isinstance(page, ListMessage)
        assert len(page.threads) == 3
        assert page.next_token

        rest = handler.list_threads(ListCommand(token=page.next_token))
        seen = {t.title for t in page.threads} | {t.title for t in rest.threads}
        assert seen == {"one", "two", "three", "four"}

    def test_list_with_query(self, handler, alice):
        handler.post(alice, PostCommand(title="a", tags=["Games"]))
        handler.post(alice, PostCommand(title="b", tags=["news"]))

        page = handler.list_threads(ListCommand(query="games"))
        assert [t.title for t in page.threads] == ["a"]
        assert page.query == "games"
        assert page.next_token is None

    def test_list_boards(self, handler):
        with pytest.raises(NoBoards):
            handler.list_threads(ListCommand(type='board'))

    def test_hello(self, handler):
        hello = handler.hello()
        assert isinstance(hello, HelloMessage)
        data = hello.to_dict()
        assert data['cmd'] == 'hello'
        assert data['name'] == "Test Board"
        assert data['desc'] == "For tests"
        assert data['default_range'] == {'start': 1, 'end': 5}
        assert 'post' in data['access']['user']
        assert 'icon' not in data


class TestDispatch:
    """Test handle() turns failures into error messages."""

    def test_hello(self, handler, session):
        assert isinstance(handler.handle(session, HelloCommand()), HelloMessage)

    def test_login_and_logout(self, handler, session):
        handler.handle(session, RegisterCommand(username="Alice", password="secret"))

        assert handler.handle(session, LoginCommand(username="alice", password="secret")) == OKMessage(wrt='login')
        assert session.is_logged_in
        handler.handle(session, LogoutCommand())
        assert not session.is_logged_in

    def test_login_failure(self, handler, session):
        result = handler.handle(session, LoginCommand(username="alice", password="secret"))
        assert result == ErrorMessage(wrt='login', error="Wrong username or password.")

    def test_post_while_anonymous(self, handler, session):
        result = handler.handle(session, PostCommand(title="Hi"))
        assert result == ErrorMessage(wrt='post', error="You need to be logged in.")

    def test_list_boards(self, handler, session):
        result = handler.handle(session, ListCommand(type='board'))
        assert result == ErrorMessage(wrt='list', error="No boards!")

    def test_invalid_thread_id(self, handler, session):
        result = handler.handle(session, GetCommand(thread_id="zzz"))
        assert result == ErrorMessage(wrt='get', error="Invalid thread ID.")

    def test_errors_are_counted(self, handler, session):
        handler.handle(session, GetCommand(thread_id="zzz"))
        handler.handle(session, PostCommand(title="Hi"))
        assert handler.errors.get_error_count() == 2

    def test_storage_failure_hides_details(self, handler, alice, db_manager):
        # Drop the schema so the next write fails inside SQLite
        with db_manager.engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE thread_tags")
            conn.exec_driver_sql("DROP TABLE posts")
            conn.exec_driver_sql("DROP TABLE threads")

        result = handler.handle(alice, PostCommand(title="Hi"))
        assert result == ErrorMessage(wrt='post', error="Couldn't post.")

    def test_unsupported_command_type(self, handler, session):
        with pytest.raises(TypeError):
            handler.handle(session, object())

    @pytest.mark.parametrize("token", ["0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00"])
    def test_out_of_range_listing_token(self, handler, alice, session, token):
        """A timestamp token outside the datetime range lists from the start."""
        handler.post(alice, PostCommand(title="Hi"))

        result = handler.handle(session, ListCommand(token=token))
        assert isinstance(result, ListMessage)
        assert [t.title for t in result.threads] == ["Hi"]

    def test_thread_id_is_logged(self, handler, alice, caplog):
        missing = new_thread_id()
        with caplog.at_level(logging.INFO, logger="core.error_handler"):
            result = handler.handle(alice, ReplyCommand(thread_id=missing, body="hello"))

        assert result == ErrorMessage(wrt='reply', error="No such thread.")
        assert f"thread_id={missing}" in caplog.text


def test_reply_timestamp_not_before_thread_creation(handler, alice, db_manager):
    thread_id = handler.post(alice, PostCommand(title="Hi")).result
    handler.reply(alice, ReplyCommand(thread_id=thread_id, body="later"))

    thread = db_manager.find_thread_by_id(thread_id)
    assert thread.posts[1].created_at - thread.posts[0].created_at >= timedelta(0)
