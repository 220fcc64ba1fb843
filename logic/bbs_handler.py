"""
Command Handler for the Limbo BBS server

Executes client commands against the repository. Connection state lives
in an explicit ClientSession passed to every call; the handler itself is
shared by all connections and holds no per-client state.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.crypto_manager import HashError, PasswordHasher
from core.cursors import DEFAULT_RANGE, PostRange, utcnow
from core.db_manager import DBManager
from core.error_handler import (
    AuthRequired,
    BBSError,
    ErrorHandler,
    InvalidThreadID,
    InvalidUsername,
    LoginFailed,
    NoBoards,
    PasswordTooShort,
    PostFailed,
    ReplyFailed,
    ThreadClosed,
    ThreadNotFound,
    TitleRequired,
    UsernameTaken,
)
from core.identifiers import InvalidIdFormat, canonical_thread_id, new_thread_id
from core.tag_query import parse_tag_query
from logic.commands import (
    Command,
    GetCommand,
    HelloCommand,
    ListCommand,
    LoginCommand,
    LogoutCommand,
    PostCommand,
    RegisterCommand,
    ReplyCommand,
)
from logic.listing import DEFAULT_ANCHOR_SKEW, DEFAULT_PAGE_SIZE, ListingEngine
from logic.thread_view import render_thread
from models.database import Post, Thread, ThreadTag, User
from models.messages import ErrorMessage, HelloMessage, ListMessage, OKMessage, ThreadView


logger = logging.getLogger(__name__)

SERVER_VERSION = "limbo 0.1"
GUEST_COMMANDS = ['hello', 'login', 'logout', 'register', 'get', 'list']
USER_COMMANDS = ['post', 'reply']
TEXT_FORMAT = 'markdown'

Response = Union[OKMessage, ErrorMessage, ThreadView, ListMessage, HelloMessage]


@dataclass
class ClientSession:
    """Authentication state of one client connection."""
    user: Optional[User] = None

    @property
    def is_logged_in(self) -> bool:
        return self.user is not None

    @property
    def username(self) -> Optional[str]:
        return self.user.name if self.user else None

    def log_in(self, user: User) -> None:
        self.user = user

    def log_out(self) -> None:
        self.user = None


class BBSHandler:
    """
    Executes BBS commands.

    Responsibilities:
    - Register users and check logins
    - Serve thread views and thread listings
    - Create threads and append replies
    - Turn failures into error messages for the client
    """

    def __init__(
        self,
        db_manager: DBManager,
        password_hasher: PasswordHasher,
        board_name: str = "limbo",
        board_description: str = "",
        icon_url: Optional[str] = None,
        username_length_limit: int = 32,
        default_range: PostRange = DEFAULT_RANGE,
        page_size: int = DEFAULT_PAGE_SIZE,
        anchor_skew: timedelta = DEFAULT_ANCHOR_SKEW,
        error_handler: Optional[ErrorHandler] = None
    ):
        """
        Initialize BBSHandler.

        Args:
            db_manager: Repository for users and threads
            password_hasher: PasswordHasher for registration and login
            board_name: Name announced in the hello message
            board_description: Description announced in the hello message
            icon_url: Optional icon announced in the hello message
            username_length_limit: Longest accepted username
            default_range: Thread window served when none is requested
            page_size: Threads per listing page
            anchor_skew: Forward skew of the first listing page
            error_handler: ErrorHandler used to build error messages
        """
        self.db = db_manager
        self.hasher = password_hasher
        self.board_name = board_name
        self.board_description = board_description
        self.icon_url = icon_url
        self.username_length_limit = username_length_limit
        self.default_range = default_range
        self.listing = ListingEngine(db_manager, page_size, anchor_skew)
        self.errors = error_handler or ErrorHandler()

    # Dispatch

    def handle(self, session: ClientSession, command: Command) -> Response:
        """
        Execute one command and build the response for the client.

        Never raises for command failures; they come back as ErrorMessage.

        Args:
            session: State of the calling connection
            command: Parsed command

        Returns:
            Response message
        """
        try:
            if isinstance(command, HelloCommand):
                return self.hello()
            if isinstance(command, RegisterCommand):
                return self.register(command)
            if isinstance(command, LoginCommand):
                if self.log_in(session, command):
                    return OKMessage(wrt='login')
                raise LoginFailed()
            if isinstance(command, LogoutCommand):
                return self.log_out(session)
            if isinstance(command, GetCommand):
                return self.get(command)
            if isinstance(command, ListCommand):
                return self.list_threads(command)
            if isinstance(command, PostCommand):
                return self.post(session, command)
            if isinstance(command, ReplyCommand):
                return self.reply(session, command)
        except (BBSError, SQLAlchemyError) as e:
            return self.error_message(
                e, command.name, session, thread_id=getattr(command, 'thread_id', None)
            )

        raise TypeError(f"Unsupported command type: {type(command).__name__}")

    def error_message(
        self,
        error: Exception,
        command_name: str,
        session: Optional[ClientSession] = None,
        thread_id: Optional[str] = None
    ) -> ErrorMessage:
        """Log an error and build the message shown to the client."""
        context = self.errors.handle_error(
            error,
            command_name,
            username=session.username if session else None,
            thread_id=thread_id or None,
        )
        return ErrorMessage(wrt=command_name, error=context.user_message)

    # Commands

    def hello(self) -> HelloMessage:
        return HelloMessage(
            name=self.board_name,
            description=self.board_description,
            server_version=SERVER_VERSION,
            default_range=self.default_range.to_dict(),
            guest_commands=list(GUEST_COMMANDS),
            user_commands=list(USER_COMMANDS),
            options=['filter', 'range', 'tags'],
            formats=[TEXT_FORMAT],
            lists=['thread'],
            icon_url=self.icon_url,
        )

    def validate_username(self, username: str) -> bool:
        return 0 < len(username or '') <= self.username_length_limit

    def register(self, command: RegisterCommand) -> OKMessage:
        """
        Register a new user.

        Raises:
            InvalidUsername: If the username is empty or too long
            UsernameTaken: If the username exists (case-insensitive)
            PasswordTooShort: If the hasher rejects the password
        """
        if not self.validate_username(command.username):
            raise InvalidUsername()

        key = command.username.lower()
        if self.db.count_users_by_key(key) > 0:
            raise UsernameTaken()

        try:
            password_hash = self.hasher.hash_password(command.password)
        except HashError as e:
            raise PasswordTooShort() from e

        user = User(
            id=key,
            name=command.username,
            password=password_hash,
            registered_at=utcnow(),
            is_admin=False,
        )
        try:
            self.db.insert_user(user)
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            raise UsernameTaken() from e

        logger.info(f"Registered user {command.username}")
        return OKMessage(wrt='register')

    def log_in(self, session: ClientSession, command: LoginCommand) -> bool:
        """
        Check credentials and bind the user to the session.

        Returns:
            True on success; False on any mismatch, session unchanged
        """
        if not command.username:
            return False

        user = self.db.find_user_by_key(command.username.lower())
        if user is None:
            return False

        if not self.hasher.verify_password(user.password, command.password):
            logger.info(f"Failed login for {command.username}")
            return False

        session.log_in(user)
        logger.info(f"User {user.name} logged in")
        return True

    def log_out(self, session: ClientSession) -> OKMessage:
        session.log_out()
        return OKMessage(wrt='logout')

    def _canonical_id(self, text: str) -> str:
        try:
            return canonical_thread_id(text)
        except InvalidIdFormat as e:
            raise InvalidThreadID() from e

    def get(self, command: GetCommand) -> ThreadView:
        """
        Serve a window of one thread.

        Raises:
            InvalidThreadID: If the id is malformed
            ThreadNotFound: If no such thread exists
        """
        thread_id = self._canonical_id(command.thread_id)
        thread = self.db.find_thread_by_id(thread_id)
        if thread is None:
            raise ThreadNotFound(f"No such thread: {command.thread_id}")

        return render_thread(
            thread,
            post_range=command.range,
            token=command.token,
            default_range=self.default_range,
            text_format=TEXT_FORMAT,
        )

    def list_threads(self, command: ListCommand) -> ListMessage:
        """
        Serve one page of the thread listing.

        Raises:
            NoBoards: If a board listing is requested
        """
        if command.type == 'board':
            raise NoBoards()

        tag_query = parse_tag_query(command.query) if command.query else None
        page = self.listing.list_threads(tag_query=tag_query, token=command.token)
        return ListMessage(
            threads=page.threads,
            type='thread',
            query=command.query,
            next_token=page.next_token,
        )

    def post(self, session: ClientSession, command: PostCommand) -> OKMessage:
        """
        Start a new thread with its first post.

        Returns:
            OKMessage whose result is the new thread id

        Raises:
            AuthRequired: If the session is anonymous
            TitleRequired: If the title is blank
            PostFailed: If the thread cannot be stored
        """
        if not session.is_logged_in:
            raise AuthRequired()
        if not command.title:
            raise TitleRequired()

        now = utcnow()
        thread_id = new_thread_id()
        tags = [tag for tag in command.tags if tag]
        thread = Thread(
            id=thread_id,
            title=command.title,
            creator=session.user.name,
            created_at=now,
            last_activity=now,
            is_sticky=False,
            is_closed=False,
            posts=[Post(author=session.user.name, created_at=now, text=command.body)],
            tags=[
                ThreadTag(position=i, name=tag, key=tag.lower())
                for i, tag in enumerate(tags)
            ],
        )

        try:
            self.db.insert_thread(thread)
        except SQLAlchemyError as e:
            logger.error(f"New thread error: {e}")
            raise PostFailed() from e

        logger.info(f"User {session.user.name} created thread {thread_id}")
        return OKMessage(wrt='post', result=thread_id)

    def reply(self, session: ClientSession, command: ReplyCommand) -> OKMessage:
        """
        Append a reply to a thread.

        Raises:
            AuthRequired: If the session is anonymous
            InvalidThreadID: If the id is malformed
            ThreadNotFound: If no such thread exists
            ThreadClosed: If the thread is closed and the user is not an admin
            ReplyFailed: If the reply cannot be stored
        """
        if not session.is_logged_in:
            raise AuthRequired()

        thread_id = self._canonical_id(command.thread_id)
        thread = self.db.find_thread_by_id(thread_id)
        if thread is None:
            raise ThreadNotFound("No such thread.")

        if thread.is_closed and not session.user.is_admin:
            raise ThreadClosed()

        now = utcnow()
        post = Post(author=session.user.name, created_at=now, text=command.body)
        try:
            stored = self.db.append_post_and_touch(thread_id, post, now)
        except SQLAlchemyError as e:
            logger.error(f"Reply error on thread {thread_id}: {e}")
            raise ReplyFailed() from e
        if not stored:
            raise ThreadNotFound("No such thread.")

        logger.info(f"User {session.user.name} replied to thread {thread_id}")
        return OKMessage(wrt='reply')
