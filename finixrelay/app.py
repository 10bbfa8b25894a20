"""
FinixDesk Relay - rendezvous and signaling server
Main application entry point
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from finixrelay.core import (
    ConnectionRegistry,
    DirectorySnapshotProducer,
    EventDispatcher,
    LifecycleManager,
    NegotiationCoordinator,
    PendingNegotiations,
    SignalRelay,
    TunnelAddresses,
)
from finixrelay.exceptions import RelayError
from finixrelay.server.websocket_server import create_app
from finixrelay.utils.config import Config

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class RelayServer:
    """Main relay application: one registry shared by every component"""

    def __init__(self, config: Config):
        logger.info("Initializing relay...")
        self.config = config

        self.addresses = TunnelAddresses(
            public_url_template=config.get('tunnel.public_url_template',
                                           "finixdesk://{tunnel_id}.render.com"),
            peer_url_template=config.get('tunnel.peer_url_template',
                                         "rdp://{device_id}.finixdesk.com:3389"),
        )

        # Web server components (the WebSocket server is also the connection directory)
        self.app, self.ws_server, self.api_server = create_app(self)
        self.web_runner: Optional[web.AppRunner] = None

        # Core components
        self.registry = ConnectionRegistry()
        self.directory = DirectorySnapshotProducer(self.registry, self.ws_server)

        pending = None
        if config.get_bool('negotiation.track_pending', False):
            pending = PendingNegotiations(ttl=config.get_int('negotiation.pending_ttl', 60))
            logger.info("Strict negotiation enabled: accept/reject must answer a pending request")

        self.negotiations = NegotiationCoordinator(
            self.registry, self.ws_server, self.addresses, pending=pending)
        self.relay = SignalRelay(self.registry, self.ws_server)
        self.lifecycle = LifecycleManager(
            self.registry, self.ws_server, self.directory, self.addresses, self.negotiations)
        self.dispatcher = EventDispatcher(self.lifecycle, self.negotiations, self.relay)

        self.started_at = datetime.now(timezone.utc)
        self.running = False

    async def start_web_server(self):
        """Start web server"""
        host = self.config.get('server.host', '0.0.0.0')
        port = self.config.get_int('server.port', 3000)

        logger.info(f"Starting relay on {host}:{port}...")

        self.web_runner = web.AppRunner(self.app)
        await self.web_runner.setup()

        site = web.TCPSite(self.web_runner, host, port)
        await site.start()

        ws_path = self.config.get('server.ws_path', '/ws')
        logger.info(f"Relay listening: ws://{host}:{port}{ws_path}, http://{host}:{port}/api/devices")

    async def stop_web_server(self):
        """Stop web server"""
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            logger.info("Web server stopped")

    def stop(self):
        self.running = False

    async def run(self):
        """Run the relay until stopped"""
        self.running = True
        try:
            await self.start_web_server()
            logger.info("Relay is running. Press Ctrl+C to stop.")

            while self.running:
                await asyncio.sleep(1)

        finally:
            await self.stop_web_server()
            logger.info("Relay stopped")

    def get_status(self) -> dict:
        """Get relay status"""
        return {
            "running": self.running,
            "devices": self.registry.count(),
            "connections": self.ws_server.get_client_count(),
            "started_at": self.started_at.isoformat(),
        }

    def get_stats(self) -> dict:
        """Get comprehensive statistics"""
        uptime = datetime.now(timezone.utc) - self.started_at
        return {
            "uptime_seconds": int(uptime.total_seconds()),
            "registry": self.registry.get_stats(),
            "negotiation": self.negotiations.get_stats(),
            "relay": self.relay.get_stats(),
            "lifecycle": self.lifecycle.get_stats(),
            "events": dict(self.dispatcher.events_by_type),
            "websocket": self.ws_server.get_stats(),
        }


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='FinixDesk Relay - rendezvous and signaling server')
    parser.add_argument('--config', '-c', default='config.json',
                        help='Path to configuration file')
    parser.add_argument('--host', help='Interface to bind (overrides server.host)')
    parser.add_argument('--port', '-p', type=int, help='Port to listen on (overrides server.port)')
    parser.add_argument('--strict-negotiation', action='store_true',
                        help='Only accept/reject connections that answer a pending request')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    config = Config(config_path=args.config)
    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.port', args.port)
    if args.strict_negotiation:
        config.set('negotiation.track_pending', True)
    if args.debug:
        config.set('logging.level', 'DEBUG')
    return config


async def serve(config: Config):
    relay = RelayServer(config)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, relay.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    await relay.run()


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format=LOG_FORMAT)

    try:
        config = build_config(args)
        logging.getLogger().setLevel(config.log_level())
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except RelayError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
