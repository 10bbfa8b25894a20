"""aiohttp transport for the relay"""

from finixrelay.server.websocket_server import APIServer, Connection, WebSocketServer, create_app

__all__ = ['APIServer', 'Connection', 'WebSocketServer', 'create_app']
