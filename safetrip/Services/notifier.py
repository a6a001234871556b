# safetrip/Services/notifier.py
"""
Notification intent recorder.

The core never delivers notifications itself. For each alert event it:
1. Hands the payload to a fire-and-forget dispatcher (by default the
   /alerts/stream websocket broadcaster)
2. Appends one intent per recipient to alert.notifications:
   {recipient, channel, sentAt, delivered, event}

A dispatcher that raises is logged and reported as not delivered; it never
fails the operation that produced the alert.
"""

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from safetrip.Core.alert_ws import alert_from_thread
from safetrip.Core.clock import Clock, utc_now
from safetrip.Core.log_ws import log_from_thread
from safetrip.Models.alert import Alert

Dispatcher = Callable[[Dict[str, Any]], bool]

DASHBOARD_RECIPIENT = "police_dashboard"


def alert_payload(alert: Alert, event: str) -> Dict[str, Any]:
    return {
        "event": event,
        "alert_id": alert.alert_id,
        "session_id": alert.session_id,
        "tourist_id": alert.tourist_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "status": alert.status,
        "description": alert.description,
        "latitude": alert.latitude,
        "longitude": alert.longitude,
        "detected_at": alert.detected_at,
    }


class Notifier:
    def __init__(self, clock: Clock = utc_now, dispatcher: Dispatcher = alert_from_thread):
        self.clock = clock
        self.dispatcher = dispatcher

    def notify(
        self,
        DB: Session,
        alert: Alert,
        event: str,
        contacts: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        """
        Dispatch an alert event and record the intents on the alert.

        Args:
            event: 'alert_created' | 'alert_escalated' | ...
            contacts: emergency contacts to record SMS intents for (panic only)

        Returns:
            The intents appended by this call.
        """
        now = self.clock()

        try:
            delivered = bool(self.dispatcher(alert_payload(alert, event)))
        except Exception as e:
            log_from_thread(f"[NOTIFY] Dispatch of {event} for {alert.alert_id} failed: {e}", "error")
            delivered = False

        intents = [{
            "recipient": DASHBOARD_RECIPIENT,
            "channel": "socket",
            "sentAt": now.isoformat(),
            "delivered": delivered,
            "event": event,
        }]
        for contact in contacts or []:
            intents.append({
                "recipient": contact.get("phone") or contact.get("email") or contact.get("name"),
                "channel": "sms" if contact.get("phone") else "email",
                "sentAt": now.isoformat(),
                "delivered": False,
                "event": event,
            })

        # Plain UPDATE: recording an intent must not bump the alert version
        (
            DB.query(Alert)
            .filter(Alert.alert_id == alert.alert_id)
            .update(
                {"notifications": list(alert.notifications or []) + intents},
                synchronize_session="evaluate"
            )
        )
        DB.commit()

        return intents


# Global instance (singleton)
notifier = Notifier()
