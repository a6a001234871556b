"""
WebSocket Base Manager Module
==============================

Thread-safe foundation for the websocket streams exposed by the engine
(operator logs and live alerts).

Key Features:
-------------
1. **Thread Safety**: Lock-protected client list, so request handlers and
   scheduler threads can broadcast concurrently
2. **Graceful Degradation**: Clients that fail during send are dropped
3. **Cross-Thread Communication**: send_from_thread() lets worker threads
   schedule a broadcast on the main event loop
4. **Fire and Forget**: Broadcasting never raises into the caller

Usage Example:
-------------
    manager = AlertWebSocketManager()
    manager.set_main_loop(asyncio.get_running_loop())

    # From a scheduler thread
    manager.send_from_thread({"event": "alert_escalated", "alert_id": "ALERT-1"})
"""

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional

from fastapi import WebSocket


class WebSocketManager:
    """
    Base websocket manager handling concurrent client connections.

    Attributes:
        clients: Currently active websocket connections
        main_loop: FastAPI's event loop, used to schedule broadcasts from threads
    """

    def __init__(self):
        self.clients: List[WebSocket] = []
        self.main_loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    def set_main_loop(self, loop: asyncio.AbstractEventLoop):
        """
        Register the running event loop. Must be called from the app lifespan,
        otherwise send_from_thread() has nowhere to schedule broadcasts.
        """
        self.main_loop = loop

    async def register(self, ws: WebSocket):
        with self._lock:
            if ws not in self.clients:
                self.clients.append(ws)

        try:
            await ws.accept()
            print(f"[WSBase] Client registered. Total clients: {len(self.clients)}")
        except Exception:
            self.unregister(ws)
            raise

    def unregister(self, ws: WebSocket):
        """Remove a client. Idempotent."""
        with self._lock:
            if ws in self.clients:
                self.clients.remove(ws)
                print(f"[WSBase] Client unregistered. Total clients: {len(self.clients)}")

    @property
    def has_clients(self) -> bool:
        with self._lock:
            return len(self.clients) > 0

    async def broadcast(self, message: Dict[str, Any]):
        """
        Send a JSON message to every client.

        The client list is snapshotted under the lock and the lock released
        before any I/O. Clients that fail are unregistered afterwards.
        """
        to_remove = []

        with self._lock:
            current_clients = list(self.clients)

        payload = json.dumps(message, default=str)
        for ws in current_clients:
            try:
                await ws.send_text(payload)
            except Exception:
                to_remove.append(ws)

        for ws in to_remove:
            self.unregister(ws)

    def send_from_thread(self, message: Dict[str, Any]) -> bool:
        """
        Schedule a broadcast on the main loop from any thread.

        Returns:
            True if the broadcast was scheduled, False if there is no client
            or no loop registered yet.
        """
        if not self.has_clients or self.main_loop is None:
            return False

        asyncio.run_coroutine_threadsafe(self.broadcast(message), self.main_loop)
        return True

    async def handle_message(self, ws: WebSocket, message: str):
        """Hook for client-to-server messages. Subclasses override."""
        print(f"[WSBase] Received message: {message}")
