"""Customer notifications (SMS) driven by lifecycle events.

`NotificationDispatcher` subscribes to the event bus and decides *what* to
send; a `MessagingGateway` decides *how*. Gateway failures are logged and
dropped: a queue transition is never undone because an SMS could not be sent.

Messages:
- entry created       -> welcome, with place in line and estimated wait
- entry approved      -> approval, with position and estimated wait
- entry in service    -> "it's your turn"
- near the front      -> "you're next", at most once per entry
"""

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime, timezone
from typing import IO, NamedTuple, Protocol

from .events import ENTRY_APPROVED, ENTRY_CREATED, ENTRY_SERVICE_STARTED, LifecycleEvent
from .models import APPROVED, Business, QueueEntry
from .wait_time import NEAR_FRONT_MINUTES, default_service_time, projected_wait

logger = logging.getLogger(__name__)


class MessagingGateway(Protocol):
    def send(self, phone_number: str, message: str) -> bool: ...


class ConsoleGateway:
    """Writes messages to a stream instead of sending them. Development default."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream or sys.stdout

    def send(self, phone_number: str, message: str) -> bool:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        self.stream.write(f"[sms {timestamp}] to {phone_number}: {message}\n")
        self.stream.flush()
        return True


class TwilioGateway:
    """Sends SMS through Twilio. Needs the `sms` extra (twilio package)."""

    def __init__(self, *, account_sid: str, auth_token: str, from_number: str) -> None:
        if not account_sid or not auth_token or not from_number:
            raise ValueError("Twilio settings not configured correctly")
        from twilio.rest import Client

        self.from_number = from_number
        self.client = Client(account_sid, auth_token)

    def send(self, phone_number: str, message: str) -> bool:
        if not phone_number.startswith("+"):
            phone_number = f"+{phone_number}"
        sent = self.client.messages.create(body=message, from_=self.from_number, to=phone_number)
        logger.info("SMS sent to %s (sid %s)", phone_number, sent.sid)
        return True


class Notification(NamedTuple):
    kind: str
    entry_id: str
    phone_number: str
    message: str


def _label(business: Business | None) -> str:
    return business.name if business is not None else "Your queue"


def _find(entries: tuple[QueueEntry, ...], entry_id: str) -> QueueEntry | None:
    return next((e for e in entries if e.id == entry_id), None)


class NotificationDispatcher:
    def __init__(
        self,
        gateway: MessagingGateway,
        *,
        base_url: str = "http://localhost:5000",
        near_front_minutes: int = NEAR_FRONT_MINUTES,
    ) -> None:
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.near_front_minutes = near_front_minutes

        # business_id -> ids already told "you're next"
        self._near_front_sent: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def __call__(self, event: LifecycleEvent) -> None:
        for note in self.plan(event):
            self._send(note)

    def plan(self, event: LifecycleEvent) -> list[Notification]:
        """Work out which messages an event calls for.

        Records near-front sends, so calling it twice for the same event does
        not plan the "you're next" message twice.
        """
        notes: list[Notification] = []
        entry = event.entry
        name = _label(event.business)

        if event.type == ENTRY_CREATED:
            rank = next((i for i, e in enumerate(event.pending, 1) if e.id == entry.id), len(event.pending))
            wait = projected_wait(event.active, default_service_time(event.business))
            notes.append(
                Notification(
                    "created",
                    entry.id,
                    entry.customer_phone,
                    f"Welcome to {name}! You're #{rank} in line. Estimated wait: {wait} minutes. "
                    f"Track your status: {self.base_url}/queue/{entry.id}",
                )
            )
        elif event.type == ENTRY_APPROVED:
            placed = _find(event.active, entry.id) or entry
            notes.append(
                Notification(
                    "approved",
                    entry.id,
                    entry.customer_phone,
                    f"{name}: You're approved! You're #{placed.position} in line. "
                    f"Estimated wait: {placed.estimated_wait or 0} minutes.",
                )
            )
        elif event.type == ENTRY_SERVICE_STARTED:
            notes.append(
                Notification(
                    "your_turn",
                    entry.id,
                    entry.customer_phone,
                    f"{name}: It's your turn! Please come to the counter now.",
                )
            )

        notes.extend(self._near_front(event, name))
        return notes

    def _near_front(self, event: LifecycleEvent, name: str) -> list[Notification]:
        notes: list[Notification] = []
        with self._lock:
            sent = self._near_front_sent.setdefault(event.business_id, set())
            for e in event.active:
                if e.status != APPROVED or e.id in sent:
                    continue
                if e.estimated_wait is None or e.estimated_wait > self.near_front_minutes:
                    continue
                sent.add(e.id)
                notes.append(
                    Notification(
                        "near_front",
                        e.id,
                        e.customer_phone,
                        f"{name}: You're next! Please head over now.",
                    )
                )
            # Entries that left the active list no longer need a flag.
            sent.intersection_update(e.id for e in event.active)
            if not sent:
                del self._near_front_sent[event.business_id]
        return notes

    def _send(self, note: Notification) -> None:
        try:
            ok = self.gateway.send(note.phone_number, note.message)
        except Exception:
            logger.exception("failed to send %s message for entry %s", note.kind, note.entry_id)
            return
        if not ok:
            logger.warning("gateway rejected %s message for entry %s", note.kind, note.entry_id)
