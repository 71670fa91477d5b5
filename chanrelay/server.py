"""WebSocket server for chanrelay.

Accepts client sockets with aiohttp, resolves each client's address,
and feeds frames and closes into the Dispatcher. Outbound delivery
goes through a per-socket queue drained by a writer task, so command
handlers never wait on the network and each socket sees its messages
in the order they were issued.

Key classes:
    WebSocketTransport: Queue-backed sender for one socket.
    ChatServer: aiohttp application, listener and config watcher.

Key functions:
    build_context: Wire up the registries and policies from config.
    resolve_address: Client address from the peer or X-Forwarded-For.
"""

import asyncio
from typing import Optional, Set

import aiohttp
import structlog
from aiohttp import web

from .broadcast import BroadcastEngine
from .commands import ServerContext, build_registry
from .config import Config
from .connections import ConnectionRegistry
from .dispatcher import Dispatcher
from .exceptions import ProtocolError
from .logging_config import register_secrets
from .moderation import ModerationPolicy
from .police import RateLimiter

logger = structlog.get_logger("chanrelay.server")

# Frames a socket may fall behind by before it is dropped as a slow consumer
OUTBOUND_QUEUE_LIMIT = 1024


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


def build_context(config: Config) -> ServerContext:
    """Create the shared state for one server instance."""
    police = RateLimiter(
        halflife=config.police_halflife,
        threshold=config.police_threshold,
    )
    connections = ConnectionRegistry()
    return ServerContext(
        config=config,
        police=police,
        connections=connections,
        broadcaster=BroadcastEngine(connections),
        moderation=ModerationPolicy(config, police),
    )


def resolve_address(request: web.Request, x_forwarded_for: bool) -> str:
    """The address a client is rate-limited and banned under.

    Behind a reverse proxy every peer address is the proxy's, so the
    first X-Forwarded-For entry is used instead when enabled.
    """
    if x_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.remote or "unknown"


class WebSocketTransport:
    """Delivers serialized frames to one aiohttp WebSocket.

    ``send_text`` only enqueues; a writer task does the actual sending.
    Closing discards anything still queued. A client that falls
    ``queue_limit`` frames behind is disconnected.
    """

    def __init__(self, ws: web.WebSocketResponse, queue_limit: int = OUTBOUND_QUEUE_LIMIT):
        self._ws = ws
        self._queue: "asyncio.Queue[str]" = asyncio.Queue(maxsize=queue_limit)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and not self._ws.closed

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())
        self._writer.add_done_callback(log_task_exception)

    def send_text(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionResetError("WebSocket is closed")
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning("slow_consumer_dropped", queued=self._queue.qsize())
            self._closed = True
            self._closer = asyncio.create_task(
                self.close(code=aiohttp.WSCloseCode.TRY_AGAIN_LATER)
            )
            self._closer.add_done_callback(log_task_exception)
            raise ConnectionResetError("outbound queue full") from None

    async def _drain(self) -> None:
        try:
            while True:
                data = await self._queue.get()
                try:
                    await self._ws.send_str(data)
                except (ConnectionError, RuntimeError) as e:
                    logger.debug("websocket_send_failed", error=str(e))
                    return
        finally:
            self._closed = True

    async def close(self, code: int = aiohttp.WSCloseCode.OK) -> None:
        self._closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        if not self._ws.closed:
            await self._ws.close(code=code)


class ChatServer:
    """The chat relay's network face.

    Owns the aiohttp application and listener plus a background task
    that picks up edits to settings.yaml.

    Args:
        config: Loaded configuration.
        ctx: Shared state; built from config when omitted.
    """

    def __init__(self, config: Config, ctx: Optional[ServerContext] = None):
        self.config = config
        self.ctx = ctx or build_context(config)
        self.dispatcher = Dispatcher(self.ctx, build_registry(self.ctx))
        self._transports: Set[WebSocketTransport] = set()
        self._runner: Optional[web.AppRunner] = None
        self._reload_task: Optional[asyncio.Task] = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._websocket_handler)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        """Serve one client socket from handshake to close."""
        ws = web.WebSocketResponse(heartbeat=self.config.heartbeat_seconds)
        await ws.prepare(request)

        address = resolve_address(request, self.config.x_forwarded_for)
        transport = WebSocketTransport(ws)
        transport.start()
        self._transports.add(transport)
        connection = self.dispatcher.open(address, transport)

        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    try:
                        self.dispatcher.handle_frame(connection, msg.data)
                    except ProtocolError as e:
                        logger.warning("protocol_violation", address=address, error=str(e))
                        break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("websocket_error", address=address, error=str(ws.exception()))
                    break
        finally:
            self.dispatcher.handle_close(connection)
            self._transports.discard(transport)
            await transport.close(code=aiohttp.WSCloseCode.POLICY_VIOLATION)

        return ws

    async def _on_shutdown(self, app: web.Application) -> None:
        for transport in list(self._transports):
            await transport.close(code=aiohttp.WSCloseCode.GOING_AWAY)

    async def _watch_config(self) -> None:
        """Poll settings.yaml; apply rate-limit and secret changes on reload."""
        try:
            while True:
                await asyncio.sleep(self.config.config_reload_seconds)
                if self.config.reload_if_changed():
                    register_secrets([self.config.salt, self.config.password])
                    police = self.ctx.police
                    police.halflife = self.config.police_halflife
                    police.threshold = self.config.police_threshold
        except asyncio.CancelledError:
            pass

    async def start(self) -> None:
        """Bind the listener and start watching the config file."""
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info("server_started", host=self.config.host, port=self.config.port)

        self._reload_task = asyncio.create_task(self._watch_config())
        self._reload_task.add_done_callback(log_task_exception)

    async def stop(self) -> None:
        """Stop the watcher, close every socket and release the port."""
        if self._reload_task and not self._reload_task.done():
            self._reload_task.cancel()
            try:
                await self._reload_task
            except asyncio.CancelledError:
                pass
            self._reload_task = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("server_stopped")
