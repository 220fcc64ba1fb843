"""
Thread identifier codec.

Thread ids are 12 bytes: 4 bytes of big-endian creation seconds followed by
8 random bytes. Their canonical textual form is 24 lower-case hex characters.
"""

import os
import string
import time
from typing import Optional


THREAD_ID_BYTES = 12


class InvalidIdFormat(ValueError):
    """Raised when text is not a canonical thread id."""
    pass


def new_thread_id(timestamp: Optional[float] = None) -> str:
    """
    Generate a new thread id.

    Args:
        timestamp: Creation time in epoch seconds (default: now)

    Returns:
        Canonical 24-character hex id
    """
    seconds = int(time.time() if timestamp is None else timestamp)
    raw = (seconds & 0xFFFFFFFF).to_bytes(4, 'big') + os.urandom(THREAD_ID_BYTES - 4)
    return render_thread_id(raw)


def parse_thread_id(text: str) -> bytes:
    """
    Parse the textual form of a thread id.

    Raises:
        InvalidIdFormat: If ``text`` is not 24 hex characters
    """
    if not isinstance(text, str) or len(text) != THREAD_ID_BYTES * 2:
        raise InvalidIdFormat(f"Invalid thread id: {text!r}")
    if any(ch not in string.hexdigits for ch in text):
        raise InvalidIdFormat(f"Invalid thread id: {text!r}")
    return bytes.fromhex(text)


def render_thread_id(raw: bytes) -> str:
    """Render raw id bytes in canonical textual form."""
    return raw.hex()


def canonical_thread_id(text: str) -> str:
    """
    Normalize a client-supplied id to its canonical form.

    Raises:
        InvalidIdFormat: If ``text`` is not a valid thread id
    """
    return render_thread_id(parse_thread_id(text))
