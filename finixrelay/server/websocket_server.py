"""WebSocket signaling endpoint and read-only REST API"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web, WSMsgType
import aiohttp_cors

from finixrelay.core import protocol
from finixrelay.exceptions import MalformedMessage

logger = logging.getLogger(__name__)


class Connection:
    """One live WebSocket plus its ordered outbound queue.

    Outbound frames are queued without blocking the caller and written by a
    single writer task, so frames to the same connection keep their order.
    """

    def __init__(self, ws: web.WebSocketResponse, remote: Optional[str] = None,
                 queue_size: int = 256):
        self.id = uuid.uuid4().hex
        self.ws = ws
        self.remote = remote
        self.connected_at = datetime.now(timezone.utc)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.writer: Optional[asyncio.Task] = None

        self.messages_sent = 0
        self.messages_dropped = 0

    @property
    def closed(self) -> bool:
        return self.ws.closed

    def start(self):
        self.writer = asyncio.create_task(self._drain())

    async def stop(self):
        if self.writer is not None and not self.writer.done():
            self.writer.cancel()
            try:
                await self.writer
            except asyncio.CancelledError:
                pass

    def enqueue(self, frame: str) -> bool:
        """Queue a frame for delivery; False if it had to be dropped"""
        if self.closed:
            self.messages_dropped += 1
            logger.debug(f"Connection {self.id[:8]} closed, dropping frame")
            return False
        try:
            self.queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            self.messages_dropped += 1
            logger.warning(f"Send queue full for connection {self.id[:8]}, dropping frame")
            return False

    async def _drain(self):
        while True:
            frame = await self.queue.get()
            try:
                await self.ws.send_str(frame)
                self.messages_sent += 1
            except Exception as e:
                self.messages_dropped += 1
                logger.error(f"Error sending to connection {self.id[:8]}: {e}")

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} from {self.remote}>"


class WebSocketServer:
    """WebSocket server for device sessions.

    Also serves as the core's connection directory (send_to / broadcast_all).
    """

    def __init__(self, app: web.Application, relay_app, ws_path: str = '/ws',
                 send_queue_size: int = 256, heartbeat: Optional[float] = None,
                 trust_forwarded_for: bool = False):
        self.app = app
        self.relay = relay_app
        self.send_queue_size = send_queue_size
        self.heartbeat = heartbeat
        self.trust_forwarded_for = trust_forwarded_for
        self.connections: Dict[str, Connection] = {}

        self.malformed_messages = 0
        # Counters of connections that have already closed
        self.closed_messages_sent = 0
        self.closed_messages_dropped = 0

        # Setup routes
        self.route = self.app.router.add_get(ws_path, self.websocket_handler)
        self.app.on_shutdown.append(self.on_shutdown)

    def remote_address(self, request: web.Request) -> Optional[str]:
        """Source address of the request, honouring X-Forwarded-For when trusted"""
        if self.trust_forwarded_for:
            forwarded = request.headers.get('X-Forwarded-For', '')
            first_hop = forwarded.split(',')[0].strip()
            if first_hop:
                return first_hop
        return request.remote

    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections"""
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        await ws.prepare(request)

        connection = Connection(ws, self.remote_address(request), self.send_queue_size)
        self.connections[connection.id] = connection
        connection.start()
        logger.info(f"Device connected from {connection.remote}. Total connections: {len(self.connections)}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.handle_client_message(connection, msg.data)

                elif msg.type == WSMsgType.BINARY:
                    logger.warning(f"Ignoring binary frame from connection {connection.id[:8]}")

                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")

        finally:
            self.connections.pop(connection.id, None)
            self.closed_messages_sent += connection.messages_sent
            self.closed_messages_dropped += connection.messages_dropped
            try:
                self.relay.lifecycle.disconnect(connection)
            except Exception as e:
                logger.error(f"Error cleaning up connection {connection.id[:8]}: {e}")
            await connection.stop()
            logger.info(f"Device connection closed. Total connections: {len(self.connections)}")

        return ws

    async def handle_client_message(self, connection: Connection, raw: str):
        """Decode one frame and hand it to the core"""
        try:
            event, data = protocol.decode(raw)
        except MalformedMessage as e:
            self.malformed_messages += 1
            logger.warning(f"Malformed message from connection {connection.id[:8]}: {e}")
            return

        logger.debug(f"Received {event} from connection {connection.id[:8]}")
        try:
            self.relay.dispatcher.handle(connection, event, data, source_address=connection.remote)
        except Exception as e:
            logger.error(f"Error handling {event}: {e}")

    def send_to(self, connection: Connection, event: str, payload: Dict[str, Any]) -> bool:
        """Send event to one connection, without waiting for delivery"""
        return connection.enqueue(protocol.encode(event, payload))

    def broadcast_all(self, event: str, payload: Dict[str, Any]) -> int:
        """Send event to every open connection; returns how many were queued"""
        frame = protocol.encode(event, payload)
        reached = 0
        for connection in list(self.connections.values()):
            if connection.enqueue(frame):
                reached += 1
        return reached

    async def on_shutdown(self, app: web.Application):
        for connection in list(self.connections.values()):
            await connection.ws.close(code=1001, message=b'Server shutdown')

    def get_client_count(self) -> int:
        """Get number of open connections"""
        return len(self.connections)

    def get_stats(self) -> dict:
        return {
            'connections': len(self.connections),
            'malformed_messages': self.malformed_messages,
            'messages_sent': self.closed_messages_sent + sum(c.messages_sent for c in self.connections.values()),
            'messages_dropped': self.closed_messages_dropped + sum(c.messages_dropped for c in self.connections.values()),
        }


class APIServer:
    """Read-only REST API"""

    def __init__(self, app: web.Application, relay_app):
        self.app = app
        self.relay = relay_app

        # Setup routes
        self.setup_routes()

    def setup_routes(self):
        """Setup API routes"""
        self.routes = [
            self.app.router.add_get('/api/devices', self.get_devices),
            self.app.router.add_get('/api/status', self.get_status),
            self.app.router.add_get('/api/stats', self.get_stats),
        ]

    async def get_devices(self, request: web.Request) -> web.Response:
        """Get the online device directory"""
        try:
            devices = self.relay.directory.listing()
            return web.json_response({'success': True, 'devices': devices})
        except Exception as e:
            return web.json_response({'error': str(e)}, status=500)

    async def get_status(self, request: web.Request) -> web.Response:
        """Get relay status"""
        try:
            return web.json_response(self.relay.get_status())
        except Exception as e:
            return web.json_response({'error': str(e)}, status=500)

    async def get_stats(self, request: web.Request) -> web.Response:
        """Get relay statistics"""
        try:
            return web.json_response(self.relay.get_stats())
        except Exception as e:
            return web.json_response({'error': str(e)}, status=500)


def create_app(relay_app) -> tuple[web.Application, WebSocketServer, APIServer]:
    """Create aiohttp application with WebSocket and API"""
    config = relay_app.config
    app = web.Application()

    ws_server = WebSocketServer(
        app,
        relay_app,
        ws_path=config.get('server.ws_path', '/ws'),
        send_queue_size=config.get_int('server.send_queue_size', 256),
        heartbeat=config.get('server.heartbeat', 25) or None,
        trust_forwarded_for=config.get_bool('server.trust_forwarded_for', False),
    )
    api_server = APIServer(app, relay_app)

    # Setup CORS on the REST routes; WebSocket upgrades are not subject to CORS
    cors = aiohttp_cors.setup(app, defaults={
        config.get('server.cors_origins', '*'): aiohttp_cors.ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods=["GET", "POST"]
        )
    })
    for route in api_server.routes:
        cors.add(route)

    return app, ws_server, api_server
