"""
Log WebSocket Management Module
================================

Streams operator-relevant log lines (alerts created or escalated, sessions
expired, sweep failures) to connected monitoring clients at /logs.

Message Format:
--------------
    {
        "msg_type": "log" | "error" | "warning",
        "message": "The log message content"
    }

Usage Example:
-------------
    from safetrip.Core import log_ws

    log_ws.log_from_thread("[SCHEDULER] Expired 3 sessions")
    log_ws.log_from_thread("[SCHEDULER] Escalation sweep failed: ...", "error")
"""

from typing import Any, Dict

from fastapi import WebSocket

from .wsBase import WebSocketManager


class LogWebSocketManager(WebSocketManager):
    """WebSocket manager dedicated to the operator log stream."""

    async def handle_message(self, ws: WebSocket, message: str):
        print(f"[LOG-WS] Received message from client: {message}")


log_ws_manager = LogWebSocketManager()


def log_from_thread(message: str, msg_type: str = "log"):
    """
    Thread-safe entry point for broadcasting a log line.

    Always echoed to the console; additionally broadcast when at least one
    monitoring client is connected.
    """
    print(message)
    payload: Dict[str, Any] = {"msg_type": msg_type, "message": str(message)}
    log_ws_manager.send_from_thread(payload)
