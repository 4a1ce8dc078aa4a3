"""
Optional external audit webhook.

Mirrors campus arrival and department in/out events to an external logging
endpoint (e.g. a spreadsheet script). Each POST runs on its own daemon thread;
a slow or failing endpoint only produces a warning and never affects the desk
operation that triggered it.
"""

import logging
import threading
from typing import Any, Dict, Optional

import requests

from .events import AUDIT_APPEND, Event, EventBus

logger = logging.getLogger(__name__)

# audit event -> webhook action
ACTIONS: Dict[str, str] = {
    "checkin": "checkin",
    "start": "dept_in",
    "complete": "dept_out",
    "skip": "dept_out",
}


class WebhookNotifier:
    def __init__(self, url: str, *, token: Optional[str] = None, timeout: float = 5.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "WebhookNotifier":
        return cls(settings.webhook_url, token=settings.webhook_token, timeout=settings.webhook_timeout_seconds)

    def attach(self, bus: EventBus):
        return bus.subscribe(self.on_event)

    def build_payload(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Webhook body for an audit entry, or None if the event is not mirrored."""
        action = ACTIONS.get(entry.get("event", ""))
        if action is None:
            return None
        body: Dict[str, Any] = {
            "token": self.token or "",
            "action": action,
            "ticket": entry.get("ticket"),
            "ts": entry.get("ts"),
        }
        if action == "checkin":
            meta = entry.get("meta") or {}
            body["name"] = meta.get("name")
            body["program"] = meta.get("program")
        else:
            body["stepKey"] = entry.get("stepKey")
        return body

    def on_event(self, event: Event) -> None:
        if event.name != AUDIT_APPEND:
            return
        body = self.build_payload(event.payload)
        if body is None:
            return
        threading.Thread(target=self.post, args=(body,), daemon=True).start()

    def post(self, body: Dict[str, Any]) -> bool:
        action = body.get("action")
        try:
            resp = requests.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"[webhook] {action} post failed: {e}")
            return False
        if not resp.ok:
            logger.warning(f"[webhook] {action} -> HTTP {resp.status_code}: {resp.text[:200]}")
            return False
        logger.info(f"[webhook] {action} -> {resp.status_code}")
        return True
