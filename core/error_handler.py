"""
Error Handler for the Limbo BBS server

Provides centralized error handling with categorization, logging, and
client-facing messages. Handles validation, authentication, lookup and
storage errors raised while executing client commands.
"""

import logging
import threading
import traceback
from enum import Enum
from typing import Optional
from dataclasses import dataclass


logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification."""
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ErrorContext:
    """Context information for an error."""
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    user_message: str
    technical_details: str
    username: Optional[str] = None
    thread_id: Optional[str] = None


# Custom Exception Classes

class BBSError(Exception):
    """Base exception for BBS server errors."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN):
        super().__init__(message)
        self.category = category


class ValidationError(BBSError):
    """Bad input shape; reported to the client, never retried."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class InvalidUsername(ValidationError):
    """Username empty or too long."""

    def __init__(self, message: str = "Invalid username."):
        super().__init__(message)


class PasswordTooShort(ValidationError):
    """Password rejected by the hasher."""

    def __init__(self, message: str = "Password too short."):
        super().__init__(message)


class InvalidThreadID(ValidationError):
    """Thread id is not in canonical form."""

    def __init__(self, message: str = "Invalid thread ID."):
        super().__init__(message)


class TitleRequired(ValidationError):
    """New thread without a title."""

    def __init__(self, message: str = "Thread title can't be blank."):
        super().__init__(message)


class UnknownCommand(ValidationError):
    """Command name not understood."""
    pass


class AuthError(BBSError):
    """Authentication and permission errors."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH)


class AuthRequired(AuthError):
    """Command needs a logged-in session."""

    def __init__(self, message: str = "You need to be logged in."):
        super().__init__(message)


class ThreadClosed(AuthError):
    """Reply to a closed thread by an ordinary user."""

    def __init__(self, message: str = "Can't reply to a closed thread."):
        super().__init__(message)


class LoginFailed(AuthError):
    """Wrong username or password."""

    def __init__(self, message: str = "Wrong username or password."):
        super().__init__(message)


class NotFoundError(BBSError):
    """Requested thread or user does not exist."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NOT_FOUND)


class ThreadNotFound(NotFoundError):
    """No thread with the given id."""
    pass


class NoBoards(NotFoundError):
    """Board listings are not offered; threads are organized by tags."""

    def __init__(self, message: str = "No boards!"):
        super().__init__(message)


class UsernameTaken(ValidationError):
    """Username already registered (case-insensitive)."""

    def __init__(self, message: str = "Username is already taken."):
        super().__init__(message)


class StorageError(BBSError):
    """Storage operation errors."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.STORAGE)


class PostFailed(StorageError):
    """New thread could not be stored."""

    def __init__(self, message: str = "Couldn't post."):
        super().__init__(message)


class ReplyFailed(StorageError):
    """Reply could not be stored."""

    def __init__(self, message: str = "Couldn't add reply."):
        super().__init__(message)


class ErrorHandler:
    """
    Error handler for BBS command execution.

    Provides centralized error handling with:
    - Error categorization (validation, auth, not found, storage)
    - Severity classification
    - Client-facing error messages that never leak storage internals
    - Detailed logging for debugging

    Usage:
        error_handler = ErrorHandler()

        try:
            handler.reply(session, command)
        except BBSError as e:
            context = error_handler.handle_error(e, "reply")
            send_error(context.user_message)
    """

    def __init__(self):
        """Initialize error handler."""
        self._error_count = 0
        self._lock = threading.Lock()

    def handle_error(
        self,
        error: Exception,
        context: str,
        username: Optional[str] = None,
        thread_id: Optional[str] = None
    ) -> ErrorContext:
        """
        Handle an error with appropriate categorization and response.

        Args:
            error: The exception that occurred
            context: Name of the command that failed
            username: Optional user the session was bound to
            thread_id: Optional thread ID if error relates to a thread

        Returns:
            ErrorContext with categorized error information
        """
        with self._lock:
            self._error_count += 1

        if isinstance(error, BBSError):
            category = error.category
        else:
            category = self._categorize_error(error)

        severity = self._determine_severity(error, category)
        user_message = self._generate_user_message(error, category, context)
        technical_details = self._get_technical_details(error)

        error_context = ErrorContext(
            category=category,
            severity=severity,
            operation=context,
            user_message=user_message,
            technical_details=technical_details,
            username=username,
            thread_id=thread_id
        )

        self._log_error(error_context)

        return error_context

    def _categorize_error(self, error: Exception) -> ErrorCategory:
        """
        Categorize a foreign exception based on its type and message.

        Args:
            error: The exception to categorize

        Returns:
            ErrorCategory
        """
        error_type = type(error).__name__.lower()
        error_msg = str(error).lower()

        if any(keyword in error_type or keyword in error_msg for keyword in [
            'database', 'storage', 'disk', 'sqlite', 'integrity', 'operational'
        ]):
            return ErrorCategory.STORAGE

        if isinstance(error, (ValueError, TypeError, KeyError)):
            return ErrorCategory.VALIDATION

        return ErrorCategory.UNKNOWN

    def _determine_severity(
        self,
        error: Exception,
        category: ErrorCategory
    ) -> ErrorSeverity:
        """
        Determine the severity of an error.

        Args:
            error: The exception
            category: Error category

        Returns:
            ErrorSeverity
        """
        # Client mistakes are routine
        if category in (ErrorCategory.VALIDATION, ErrorCategory.NOT_FOUND):
            return ErrorSeverity.INFO

        if category == ErrorCategory.AUTH:
            return ErrorSeverity.WARNING

        if category == ErrorCategory.STORAGE:
            return ErrorSeverity.ERROR

        # Default to ERROR for unknown issues
        return ErrorSeverity.ERROR

    def _generate_user_message(
        self,
        error: Exception,
        category: ErrorCategory,
        context: str
    ) -> str:
        """
        Generate a client-facing error message.

        Args:
            error: The exception
            category: Error category
            context: Command name

        Returns:
            Client-facing error message
        """
        if category == ErrorCategory.STORAGE:
            return self._generate_storage_message(error, context)
        elif isinstance(error, BBSError):
            return str(error)
        elif category == ErrorCategory.VALIDATION:
            return f"Invalid {context} command."
        else:
            return f"An error occurred during {context}. Please try again."

    def _generate_storage_message(self, error: Exception, context: str) -> str:
        """Generate client message for storage errors; the cause stays in the log."""
        if isinstance(error, (PostFailed, ReplyFailed)):
            return str(error)
        return f"Operation failed: {context}."

    def _get_technical_details(self, error: Exception) -> str:
        """
        Get technical details for logging.

        Args:
            error: The exception

        Returns:
            Technical details string
        """
        details = [
            f"Exception Type: {type(error).__name__}",
            f"Message: {str(error)}",
        ]
        cause = error.__cause__
        if cause is not None:
            details.append(f"Caused by: {type(cause).__name__}: {cause}")
        details.append("Traceback:")
        details.append(''.join(traceback.format_exception(error)))
        return "\n".join(details)

    def _log_error(self, error_context: ErrorContext):
        """
        Log error with appropriate level.

        Args:
            error_context: Error context information
        """
        log_message = (
            f"[{error_context.category.value.upper()}] "
            f"{error_context.operation}: {error_context.user_message}"
        )

        extra_info = []
        if error_context.username:
            extra_info.append(f"user={error_context.username}")
        if error_context.thread_id:
            extra_info.append(f"thread_id={error_context.thread_id}")

        if extra_info:
            log_message += f" ({', '.join(extra_info)})"

        if error_context.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
            logger.error(f"Technical details:\n{error_context.technical_details}")
        elif error_context.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_count(self) -> int:
        """
        Get total number of errors handled.

        Returns:
            Error count
        """
        return self._error_count

    def reset_error_count(self):
        """Reset error counter."""
        with self._lock:
            self._error_count = 0
