#!/usr/bin/env python3
"""
FinixDesk Relay device client

A small reference client for the relay protocol: registers a device, watches
the directory and answers connection requests.

Usage:
    finixrelay-client list  --server http://localhost:3000
    finixrelay-client watch --server ws://localhost:3000/ws --device-id pc-1 --name "Office PC" [--auto-accept]
"""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import websockets

from finixrelay.core import protocol

logger = logging.getLogger(__name__)


def fetch_devices(base_url: str, timeout: float = 5) -> List[Dict[str, Any]]:
    """Fetch the online device listing from the relay's REST API"""
    url = f"{base_url.rstrip('/')}/api/devices"
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()

    result = response.json()
    return result.get('devices', [])


class DeviceClient:
    """One device session against the relay.

    Handlers registered with on() receive the event payload; they may be plain
    functions or coroutine functions.
    """

    def __init__(self, url: str, device_id: str, device_name: str):
        self.url = url
        self.device_id = device_id
        self.device_name = device_name
        self.ws = None

        self.tunnel_id: Optional[str] = None
        self.public_url: Optional[str] = None
        self.devices: List[Dict[str, Any]] = []
        self.handlers: Dict[str, List[Callable]] = defaultdict(list)

    async def connect(self):
        self.ws = await websockets.connect(self.url)
        logger.info(f"Connected to {self.url}")

    async def close(self):
        if self.ws is not None:
            await self.ws.close()
            self.ws = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def on(self, event: str, handler: Callable):
        self.handlers[event].append(handler)

    async def send(self, event: str, payload: Dict[str, Any]):
        await self.ws.send(protocol.encode(event, payload))

    async def register(self):
        await self.send(protocol.REGISTER_DEVICE, {
            'deviceId': self.device_id,
            'deviceName': self.device_name,
        })

    async def request_connection(self, target_device_id: str):
        await self.send(protocol.REQUEST_CONNECTION, {
            'fromDeviceId': self.device_id,
            'fromDeviceName': self.device_name,
            'targetDeviceId': target_device_id,
        })

    async def accept_connection(self, initiator_id: str, request_id: Optional[str] = None):
        payload = {
            'fromDeviceId': initiator_id,
            'targetDeviceId': self.device_id,
            'targetDeviceName': self.device_name,
        }
        if request_id:
            payload['requestId'] = request_id
        await self.send(protocol.ACCEPT_CONNECTION, payload)

    async def reject_connection(self, initiator_id: str, request_id: Optional[str] = None):
        payload = {
            'fromDeviceId': initiator_id,
            'targetDeviceName': self.device_name,
        }
        if request_id:
            payload['requestId'] = request_id
        await self.send(protocol.REJECT_CONNECTION, payload)

    async def relay_signal(self, target_device_id: str, signal: Any):
        await self.send(protocol.RELAY_SIGNAL, {
            'fromDeviceId': self.device_id,
            'targetDeviceId': target_device_id,
            'signal': signal,
        })

    async def receive(self, timeout: Optional[float] = None) -> Tuple[str, Dict[str, Any]]:
        """Read one event, update local state and run its handlers"""
        raw = await asyncio.wait_for(self.ws.recv(), timeout)
        message = json.loads(raw)
        event = message.get('type')
        data = message.get('data') or {}

        if event == protocol.TUNNEL_CREATED:
            self.tunnel_id = data.get('tunnelId')
            self.public_url = data.get('publicUrl')
        elif event == protocol.DEVICES_UPDATED:
            self.devices = data.get('devices', [])

        for handler in self.handlers.get(event, []):
            result = handler(data)
            if inspect.isawaitable(result):
                await result

        return event, data

    async def wait_for(self, event: str, timeout: float = 10) -> Dict[str, Any]:
        """Receive until the given event arrives; other events are still handled"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"no {event} within {timeout}s")
            received, data = await self.receive(timeout=remaining)
            if received == event:
                return data

    async def listen(self):
        """Handle events until the relay closes the connection"""
        try:
            while True:
                await self.receive()
        except websockets.exceptions.ConnectionClosed:
            logger.info("Relay closed the connection")


def _print_devices(devices: List[Dict[str, Any]]):
    if not devices:
        print("No devices online")
        return
    for device in devices:
        print(f"  {device.get('deviceId'):<24} {device.get('deviceName'):<24} "
              f"{device.get('publicIp') or '-':<16} since {device.get('connectionTime')}")


async def watch(args: argparse.Namespace):
    client = DeviceClient(args.server, args.device_id, args.name)

    def on_tunnel(data):
        print(f"[+] Tunnel created: {data.get('publicUrl')}")

    def on_devices(data):
        print(f"[*] Directory updated: {len(data.get('devices', []))} online")
        _print_devices(data.get('devices', []))

    async def on_incoming(data):
        print(f"[?] Connection request from {data.get('fromDeviceName')} ({data.get('fromDeviceId')})")
        if args.auto_accept:
            await client.accept_connection(data['fromDeviceId'], data.get('requestId'))
            print("    accepted")

    def on_accepted(data):
        print(f"[+] {data.get('targetDeviceName')} accepted: {data.get('tunnelUrl')}")

    def on_rejected(data):
        print(f"[-] {data.get('targetDeviceName')} rejected the connection")

    def on_signal(data):
        print(f"[>] Signal from {data.get('fromDeviceId')}: {json.dumps(data.get('signal'))[:120]}")

    client.on(protocol.TUNNEL_CREATED, on_tunnel)
    client.on(protocol.DEVICES_UPDATED, on_devices)
    client.on(protocol.INCOMING_CONNECTION, on_incoming)
    client.on(protocol.CONNECTION_ACCEPTED, on_accepted)
    client.on(protocol.CONNECTION_REJECTED, on_rejected)
    client.on(protocol.RELAY_SIGNAL, on_signal)

    async with client:
        await client.register()
        if args.connect_to:
            await client.request_connection(args.connect_to)
        await client.listen()


def main(argv=None):
    parser = argparse.ArgumentParser(description='FinixDesk Relay device client')
    subparsers = parser.add_subparsers(dest='command', required=True)

    list_parser = subparsers.add_parser('list', help='List online devices')
    list_parser.add_argument('--server', default='http://localhost:3000',
                             help='Relay HTTP base URL')

    watch_parser = subparsers.add_parser('watch', help='Register a device and print relay events')
    watch_parser.add_argument('--server', default='ws://localhost:3000/ws',
                              help='Relay WebSocket URL')
    watch_parser.add_argument('--device-id', required=True)
    watch_parser.add_argument('--name', required=True)
    watch_parser.add_argument('--connect-to', help='Request a connection to this device id')
    watch_parser.add_argument('--auto-accept', action='store_true',
                              help='Accept every incoming connection request')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.command == 'list':
        try:
            devices = fetch_devices(args.server)
        except requests.exceptions.RequestException as e:
            print(f"Error: cannot reach relay: {e}")
            sys.exit(1)
        print(f"{len(devices)} device(s) online")
        _print_devices(devices)
        return

    try:
        asyncio.run(watch(args))
    except KeyboardInterrupt:
        print("\nStopped.")
    except OSError as e:
        print(f"Error: cannot connect to relay: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
