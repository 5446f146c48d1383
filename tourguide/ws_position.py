"""Position source fed by a websocket client (browser map, phone companion app)."""

import asyncio
import json
import queue
import threading
import time
from typing import Optional

import websockets

from .gps import Watchable
from .models import Location


def parse_position_message(message) -> Optional[Location]:
    """Location from a client message, None when it is not a position.

    Accepts ``{"lat": .., "lon": ..}`` or ``{"type": "location", "data": {...}}``.
    """
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    if data.get("type") == "location":
        data = data.get("data") or {}
    elif "type" in data:
        return None
    try:
        return Location(
            lat=float(data["lat"]),
            lon=float(data["lon"]),
            accuracy=data.get("accuracy", 0),
            timestamp=time.time(),
        )
    except (KeyError, TypeError, ValueError):
        return None


class WebSocketPositionSource(Watchable):
    """Runs a websocket server in a background thread and queues received positions.

    Guidance events can be pushed back to connected clients with ``send``.
    """

    def __init__(self, port: int = 8765, host: str = "localhost"):
        self.host = host
        self.port = port
        self.location_queue: queue.Queue = queue.Queue()
        self.connected_clients: set = set()
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0
        self.ws_loop: Optional[asyncio.AbstractEventLoop] = None
        self.ws_thread: Optional[threading.Thread] = None
        self._running = False

    def start(self):
        """Start the websocket server in a background thread"""
        self._running = True
        self.ws_thread = threading.Thread(target=self._run_ws_server, daemon=True)
        self.ws_thread.start()
        print(f"Waiting for positions on ws://{self.host}:{self.port}")

    def _run_ws_server(self):
        self.ws_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.ws_loop)

        async def handler(websocket):
            self.connected_clients.add(websocket)
            try:
                async for message in websocket:
                    location = parse_position_message(message)
                    if location:
                        self.location_queue.put(location)
            finally:
                self.connected_clients.discard(websocket)

        async def main():
            try:
                async with websockets.serve(handler, self.host, self.port):
                    while self._running:
                        await asyncio.sleep(0.1)
            except OSError as e:
                print(f"WebSocket server error: {e}")

        self.ws_loop.run_until_complete(main())

    def send(self, msg_type: str, data: dict):
        """Send a message to all connected clients"""
        if not self.connected_clients or not self.ws_loop:
            return

        message = json.dumps({"type": msg_type, "data": data}, default=str)

        async def send_to_all():
            for client in list(self.connected_clients):
                try:
                    await client.send(message)
                except websockets.ConnectionClosed:
                    self.connected_clients.discard(client)

        asyncio.run_coroutine_threadsafe(send_to_all(), self.ws_loop)

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        """Block until a position arrives or timeout"""
        try:
            location = self.location_queue.get(timeout=timeout)
        except queue.Empty:
            self.consecutive_failures += 1
            return None
        self.last_location = location
        self.consecutive_failures = 0
        self._notify(location)
        return location

    def get_status(self) -> str:
        clients = len(self.connected_clients)
        if self.consecutive_failures:
            return f"WebSocket: {clients} client(s), no position for {self.consecutive_failures} polls"
        return f"WebSocket: {clients} client(s)"

    def stop(self, timeout: float = 1.0):
        self._running = False
        if self.ws_thread is not None:
            self.ws_thread.join(timeout=timeout)
            self.ws_thread = None
