# safetrip/Core/alert_ws.py
"""
Alert WebSocket Manager

Pushes alert lifecycle events to dashboards connected at /alerts/stream.
This is the default delivery channel used by the notifier; delivery is fire
and forget and a missing or failing client never affects the core operation.

Usage:
    from safetrip.Core.alert_ws import alert_from_thread

    alert_from_thread({"event": "alert_created", "alert_id": "ALERT-...", ...})
"""

from typing import Any, Dict

from fastapi import WebSocket

from .wsBase import WebSocketManager


class AlertWebSocketManager(WebSocketManager):
    """Specialized manager for the live alert stream."""

    async def handle_message(self, ws: WebSocket, message: str):
        # Dashboards are receive-only for now.
        print(f"[ALERT-WS] Received message: {message}")


alert_ws_manager = AlertWebSocketManager()


def alert_from_thread(data: Dict[str, Any]) -> bool:
    """
    Thread-safe broadcast of an alert event.

    Returns:
        True if the event was scheduled for at least one connected client.
    """
    return alert_ws_manager.send_from_thread(data)
