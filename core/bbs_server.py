"""
BBS Server for the Limbo BBS server

Accepts client connections over TCP and runs their commands through the
BBSHandler. Each frame is a 4-byte big-endian length followed by one
encoded message; messages are JSON objects by default, or CBOR maps.

Each connection gets its own ClientSession and is served strictly in
order. Handlers run in worker threads so a slow database call on one
connection does not stall the others.
"""

import asyncio
import json
import logging
import struct
from typing import Any, Callable, Dict, Optional, Set

try:
    import cbor2
except ImportError:
    raise ImportError("cbor2 is required. Install with: pip install cbor2")

from core.error_handler import BBSError, UnknownCommand
from logic.bbs_handler import BBSHandler, ClientSession
from logic.commands import parse_command


logger = logging.getLogger(__name__)

FRAME_HEADER = struct.Struct('!I')


class ServerError(Exception):
    """Base exception for server errors."""
    pass


class FrameError(ServerError):
    """Raised when a frame cannot be read or decoded."""
    pass


class WireCodec:
    """Encodes and decodes message payloads."""

    def __init__(self, name: str = 'json'):
        """
        Args:
            name: ``"json"`` or ``"cbor"``
        """
        if name not in ('json', 'cbor'):
            raise ValueError(f"Unknown wire codec: {name}")
        self.name = name

    def encode(self, message: Dict[str, Any]) -> bytes:
        if self.name == 'cbor':
            return cbor2.dumps(message)
        return json.dumps(message, ensure_ascii=False).encode('utf-8')

    def decode(self, data: bytes) -> Dict[str, Any]:
        """
        Raises:
            FrameError: If the payload is not a valid message
        """
        try:
            if self.name == 'cbor':
                return cbor2.loads(data)
            return json.loads(data.decode('utf-8'))
        except (ValueError, cbor2.CBORDecodeError) as e:
            raise FrameError(f"Undecodable message: {e}") from e


async def write_frame(writer: asyncio.StreamWriter, data: bytes) -> None:
    """Send one length-prefixed frame."""
    writer.write(FRAME_HEADER.pack(len(data)) + data)
    await writer.drain()


async def read_frame(reader: asyncio.StreamReader, max_size: int) -> bytes:
    """
    Receive one length-prefixed frame.

    Raises:
        asyncio.IncompleteReadError: If the peer closed the connection
        FrameError: If the frame exceeds ``max_size``
    """
    header = await reader.readexactly(FRAME_HEADER.size)
    length = FRAME_HEADER.unpack(header)[0]

    if length > max_size:
        raise FrameError(f"Frame too large: {length} bytes")

    return await reader.readexactly(length)


class BBSServer:
    """
    TCP front end for the BBS.

    Responsibilities:
    - Accept client connections
    - Keep one ClientSession per connection
    - Decode commands, dispatch them, and send the responses
    """

    def __init__(
        self,
        handler: BBSHandler,
        codec: str = 'json',
        max_frame_size: int = 1024 * 1024
    ):
        """
        Initialize BBSServer.

        Args:
            handler: BBSHandler executing the commands
            codec: Wire codec name (``"json"`` or ``"cbor"``)
            max_frame_size: Largest accepted frame in bytes
        """
        self.handler = handler
        self.codec = WireCodec(codec)
        self.max_frame_size = max_frame_size
        self.server: Optional[asyncio.AbstractServer] = None
        self.running = False
        self.connections: Set[asyncio.Task] = set()

        # Callbacks for events
        self.on_client_connected: Optional[Callable[[Any], None]] = None
        self.on_client_disconnected: Optional[Callable[[Any], None]] = None

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (useful when started on port 0)."""
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self, port: int, host: str = '127.0.0.1') -> None:
        """
        Start TCP server and begin listening for connections.

        Args:
            port: Port to listen on (0 picks a free port)
            host: Host address to bind to

        Raises:
            ServerError: If server fails to start
        """
        try:
            self.server = await asyncio.start_server(
                self._handle_connection,
                host,
                port
            )
            self.running = True

            addr = self.server.sockets[0].getsockname()
            logger.info(f"BBS server started on {addr[0]}:{addr[1]}")

        except OSError as e:
            raise ServerError(f"Failed to start server: {e}") from e

    async def stop(self) -> None:
        """Stop the server and close all client connections."""
        self.running = False

        if self.server:
            self.server.close()

        for task in list(self.connections):
            task.cancel()
        if self.connections:
            await asyncio.gather(*self.connections, return_exceptions=True)

        if self.server:
            await self.server.wait_closed()
            logger.info("BBS server stopped")

    async def serve_forever(self) -> None:
        """Serve until cancelled."""
        if not self.server:
            raise ServerError("Server not started")
        async with self.server:
            await self.server.serve_forever()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ) -> None:
        """
        Serve one client connection until it closes.

        Args:
            reader: Stream reader for receiving data
            writer: Stream writer for sending data
        """
        addr = writer.get_extra_info('peername')
        task = asyncio.current_task()
        self.connections.add(task)
        session = ClientSession()
        logger.info(f"Client connected from {addr}")

        if self.on_client_connected:
            self.on_client_connected(addr)

        try:
            while self.running:
                try:
                    data = await read_frame(reader, self.max_frame_size)
                except asyncio.IncompleteReadError:
                    logger.debug(f"Client {addr} closed connection")
                    break

                response = await self.process_frame(session, data)
                await write_frame(writer, self.codec.encode(response))

        except FrameError as e:
            logger.warning(f"Dropping client {addr}: {e}")
        except ConnectionError as e:
            logger.debug(f"Connection to {addr} ended: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Connection handler for {addr} cancelled")
            raise  # Re-raise to properly handle cancellation
        finally:
            self.connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, asyncio.CancelledError):
                pass
            if self.on_client_disconnected:
                self.on_client_disconnected(addr)
            logger.info(f"Client {addr} disconnected")

    async def process_frame(self, session: ClientSession, data: bytes) -> Dict[str, Any]:
        """
        Decode one frame, run the command, and return the response payload.

        Undecodable frames and commands that fail unexpectedly are answered
        with an error instead of dropping the connection.
        """
        try:
            payload = self.codec.decode(data)
        except FrameError as e:
            logger.debug(f"Bad frame: {e}")
            return self.handler.error_message(
                UnknownCommand("Malformed command."), 'unknown', session
            ).to_dict()

        name = payload.get('cmd', 'unknown') if isinstance(payload, dict) else 'unknown'
        try:
            command = parse_command(payload)
            response = await asyncio.to_thread(self.handler.handle, session, command)
        except BBSError as e:
            return self.handler.error_message(e, str(name), session).to_dict()
        except Exception as e:
            # Last resort: answer the client and keep the connection open
            logger.error(f"Unhandled error in {name!s} command: {e}")
            return self.handler.error_message(e, str(name), session).to_dict()

        return response.to_dict()
