from __future__ import annotations

# The EnrolmentQueue is the *authoritative brain* of the front desk.
#
# This file contains two layers:
# 1) `EnrolmentQueue` (pure logic, easy to unit test)
# 2) `MqttDeskService` + `main()` (integration with an MQTT broker)
#
# The HTTP API lives in `server.py` and drives the same EnrolmentQueue.

import argparse
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, TYPE_CHECKING

from .audit import AuditEntry, AuditLog, entries_to_csv
from .errors import ConflictError, NotFoundError, QueueError, ValidationError
from .events import AUDIT_APPEND, STATE_UPDATE, STUDENT_UPDATE, Event, EventBus
from .forms import FORM_NORMALIZERS, IDENTITY_FIELDS, Normalizer
from .records import COMPLETE, HOLD, QUEUED, SERVING, StudentRecord
from .stations import StationPipeline
from .tickets import SequentialTicketAllocator, TicketAllocator, make_allocator

if TYPE_CHECKING:
    from .config import DeskSettings
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

Clock = Callable[[], str]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _clean(value: Any) -> str | None:
    """Trimmed string, or None for missing/blank input."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class StationState:
    """In-memory state for one station."""

    key: str
    waiting: list[str] = field(default_factory=list)  # tickets in FIFO order
    serving: str | None = None
    held: list[str] = field(default_factory=list)  # insertion ordered, no duplicates


class EnrolmentQueue:
    """Core business logic (testable without HTTP or MQTT).

    Every public operation runs under one lock, so an operation always
    completes before the next one observes the state. Events are published
    after the lock is released; their payloads are captured while holding it.
    """

    def __init__(
        self,
        pipeline: StationPipeline | None = None,
        *,
        allocator: TicketAllocator | None = None,
        bus: EventBus | None = None,
        forms: Mapping[str, Normalizer] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.pipeline = pipeline or StationPipeline()
        self.bus = bus or EventBus()
        self._allocator = allocator or SequentialTicketAllocator()
        self._forms = dict(FORM_NORMALIZERS if forms is None else forms)
        self._clock = clock

        self._lock = threading.Lock()
        self._students: dict[str, StudentRecord] = {}
        self._stations: dict[str, StationState] = {k: StationState(k) for k in self.pipeline.keys()}
        self._audit = AuditLog()

    @classmethod
    def from_settings(cls, settings: DeskSettings, *, bus: EventBus | None = None) -> EnrolmentQueue:
        allocator = make_allocator(
            settings.ticket_scheme, prefix=settings.ticket_prefix, start=settings.ticket_start
        )
        return cls(allocator=allocator, bus=bus)

    # -------------------- internal helpers --------------------

    def _station(self, key: str) -> StationState:
        st = self._stations.get(key)
        if st is None:
            raise NotFoundError("Unknown step", stepKey=key)
        return st

    def _record(self, ticket: str) -> StudentRecord:
        rec = self._students.get(ticket)
        if rec is None:
            raise NotFoundError("Ticket not found", ticket=ticket)
        return rec

    def _ticket_in_use(self, ticket: str) -> bool:
        # Records are never deleted, so a finished student keeps their ticket too.
        return ticket in self._students

    def _audit_entry(
        self,
        event: str,
        *,
        ts: str,
        step_key: str | None,
        ticket: str | None,
        staff: str | None = None,
        note: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self._audit.append(
            AuditEntry(ts=ts, event=event, step_key=step_key, ticket=ticket, staff=staff, note=note, meta=meta)
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "stations": self.pipeline.to_list(),
            "queues": {k: list(st.waiting) for k, st in self._stations.items()},
            "currentServing": {k: st.serving for k, st in self._stations.items()},
            "holds": {k: len(st.held) for k, st in self._stations.items()},
        }

    def _changes(self, entry: AuditEntry | None, ticket: str | None, *, state: bool = True) -> list[Event]:
        events: list[Event] = []
        if entry is not None:
            events.append(Event(AUDIT_APPEND, entry.to_dict()))
        if state:
            events.append(Event(STATE_UPDATE, self._snapshot()))
        if ticket is not None and ticket in self._students:
            events.append(Event(STUDENT_UPDATE, self._students[ticket].to_dict()))
        return events

    def _emit(self, events: list[Event]) -> None:
        for ev in events:
            self.bus.publish(ev)

    # -------------------- read-only views --------------------

    def status(self) -> dict[str, Any]:
        """Full public snapshot: stations, waiting lists, serving tickets, hold counts."""
        with self._lock:
            return self._snapshot()

    def student(self, ticket: str) -> dict[str, Any]:
        with self._lock:
            rec = self._students.get(ticket)
            if rec is None:
                raise NotFoundError("Not found", ticket=ticket)
            return rec.to_dict()

    def serving(self, station_key: str) -> dict[str, Any]:
        with self._lock:
            st = self._station(station_key)
            rec = self._students.get(st.serving) if st.serving else None
            return {"ticket": st.serving, "student": rec.to_dict() if rec else None}

    def holds(self, station_key: str) -> dict[str, Any]:
        with self._lock:
            st = self._station(station_key)
            return {"stationKey": station_key, "tickets": list(st.held), "count": len(st.held)}

    def logs(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._audit.to_list()

    def logs_csv(self) -> str:
        with self._lock:
            entries = self._audit.entries()
        return entries_to_csv(entries)

    def audit_entries(self) -> list[AuditEntry]:
        with self._lock:
            return self._audit.entries()

    # -------------------- desk operations --------------------

    def checkin(
        self,
        name: Any,
        program: Any,
        *,
        student_id: Any = None,
        email: Any = None,
        staff: Any = None,
    ) -> dict[str, Any]:
        """Register a new student and queue them at the first station."""
        name, program = _clean(name), _clean(program)
        if not name or not program:
            raise ValidationError("name and program are required")
        staff = _clean(staff)

        with self._lock:
            first = self.pipeline.first
            ticket = self._allocator.allocate(self._ticket_in_use)
            ts = self._clock()
            rec = StudentRecord(
                ticket=ticket,
                name=name,
                program=program,
                station_key=first.key,
                created_at=ts,
                student_id=_clean(student_id),
                email=_clean(email),
                status=QUEUED,
            )
            self._students[ticket] = rec
            self._stations[first.key].waiting.append(ticket)
            rec.add_history(first.key, "checkin", ts, staff=staff)
            entry = self._audit_entry(
                "checkin", ts=ts, step_key=first.key, ticket=ticket, staff=staff,
                meta={"name": name, "program": program},
            )
            result = {"ticket": ticket, "stationKey": first.key, "stations": self.pipeline.to_list()}
            events = self._changes(entry, ticket)

        logger.info("checked in %s at %s", ticket, first.key)
        self._emit(events)
        return result

    def start_next(self, station_key: str, *, staff: Any = None) -> dict[str, Any]:
        """Move the head of the station's waiting queue into its serving slot."""
        staff = _clean(staff)
        with self._lock:
            st = self._station(station_key)
            if st.serving:
                raise ConflictError("Already serving a student", ticket=st.serving)
            if not st.waiting:
                # An idle station is normal; nothing changes, displays still refresh.
                events = self._changes(None, None)
                ticket = None
            else:
                ticket = st.waiting.pop(0)
                st.serving = ticket
                ts = self._clock()
                rec = self._students.get(ticket)
                if rec is not None:
                    rec.status = SERVING
                    rec.station_key = station_key
                    rec.add_history(station_key, "start", ts, staff=staff)
                entry = self._audit_entry("start", ts=ts, step_key=station_key, ticket=ticket, staff=staff)
                events = self._changes(entry, ticket)

        self._emit(events)
        return {"ticket": ticket}

    def complete(self, station_key: str, *, staff: Any = None, note: Any = None) -> dict[str, Any]:
        """Finish the serving ticket and pass it to the next station."""
        staff, note = _clean(staff), _clean(note)
        with self._lock:
            st = self._station(station_key)
            ticket = st.serving
            if not ticket:
                raise ConflictError("No student currently serving")
            rec = self._record(ticket)

            ts = self._clock()
            next_key = self.pipeline.next_key(station_key)
            rec.add_history(station_key, "complete", ts, staff=staff, note=note)
            if note:
                rec.add_note(station_key, note, ts, staff=staff)

            st.serving = None
            if next_key is not None:
                rec.station_key = next_key
                rec.status = QUEUED
                self._stations[next_key].waiting.append(ticket)
            else:
                rec.status = COMPLETE

            meta: dict[str, Any] = {"next": next_key}
            if next_key is None:
                meta["record"] = rec.to_dict()
            entry = self._audit_entry(
                "complete", ts=ts, step_key=station_key, ticket=ticket, staff=staff, note=note, meta=meta
            )
            events = self._changes(entry, ticket)

        logger.info("%s completed %s -> %s", ticket, station_key, next_key or "done")
        self._emit(events)
        return {"ok": True, "nextStep": next_key}

    def hold(
        self,
        station_key: str,
        *,
        ticket: Any = None,
        staff: Any = None,
        reason: Any = None,
    ) -> dict[str, Any]:
        """Pull a ticket out of the flow into the station's held set.

        The target is `ticket` if given, else the ticket being served. It
        stays held until `return_ticket` puts it back in the waiting queue.
        """
        staff, reason, requested = _clean(staff), _clean(reason), _clean(ticket)
        with self._lock:
            st = self._station(station_key)
            target = requested or st.serving
            if not target:
                raise ConflictError("No student currently serving and no ticket specified")
            if target in st.held:
                raise ConflictError("Ticket already on hold", ticket=target)
            rec = self._record(target)
            if st.serving == target:
                st.serving = None
            elif target in st.waiting:
                st.waiting.remove(target)
            else:
                raise NotFoundError("Ticket is not queued at this step", ticket=target)

            st.held.append(target)
            ts = self._clock()
            rec.status = HOLD
            rec.station_key = station_key
            rec.add_history(station_key, "hold", ts, staff=staff, note=reason)
            entry = self._audit_entry(
                "hold", ts=ts, step_key=station_key, ticket=target, staff=staff, note=reason,
                meta={"reason": reason} if reason else None,
            )
            events = self._changes(entry, target)

        self._emit(events)
        return {"ok": True, "ticket": target, "held": True}

    def return_ticket(self, station_key: str, ticket: str, *, staff: Any = None) -> dict[str, Any]:
        """Put a held ticket back at the tail of the station's waiting queue."""
        staff = _clean(staff)
        with self._lock:
            st = self._station(station_key)
            if ticket not in st.held:
                raise NotFoundError("Ticket is not on hold at this step", ticket=ticket)
            rec = self._record(ticket)
            st.held.remove(ticket)
            st.waiting.append(ticket)

            ts = self._clock()
            rec.status = QUEUED
            rec.add_history(station_key, "return", ts, staff=staff)
            entry = self._audit_entry("return", ts=ts, step_key=station_key, ticket=ticket, staff=staff)
            events = self._changes(entry, ticket)

        self._emit(events)
        return {"ok": True, "ticket": ticket}

    def skip(self, station_key: str, *, staff: Any = None) -> dict[str, Any]:
        """Send the serving ticket to the back of the same station's queue."""
        staff = _clean(staff)
        with self._lock:
            st = self._station(station_key)
            ticket = st.serving
            if not ticket:
                raise ConflictError("No student currently serving")
            st.serving = None
            st.waiting.append(ticket)

            ts = self._clock()
            rec = self._students.get(ticket)
            if rec is not None:
                rec.status = QUEUED
                rec.add_history(station_key, "skip", ts, staff=staff)
            entry = self._audit_entry("skip", ts=ts, step_key=station_key, ticket=ticket, staff=staff)
            events = self._changes(entry, ticket)

        self._emit(events)
        return {"ok": True, "ticket": ticket}

    def add_note(self, station_key: str, text: Any, *, ticket: Any = None, staff: Any = None) -> dict[str, Any]:
        text, staff, requested = _clean(text), _clean(staff), _clean(ticket)
        if not text:
            raise ValidationError("note text required")
        with self._lock:
            st = self._station(station_key)
            target = requested or st.serving
            if not target:
                raise ConflictError("No ticket specified and none currently serving")
            rec = self._record(target)

            ts = self._clock()
            note = rec.add_note(station_key, text, ts, staff=staff)
            entry = self._audit_entry("note_add", ts=ts, step_key=station_key, ticket=target, staff=staff, note=text)
            events = self._changes(entry, target, state=False)

        self._emit(events)
        return {"ok": True, "note": dict(note)}

    def save_form(
        self,
        station_key: str,
        data: Any,
        *,
        ticket: Any = None,
        staff: Any = None,
    ) -> dict[str, Any]:
        """Normalize and merge a station form into the student's record."""
        staff, requested = _clean(staff), _clean(ticket)
        normalize = self._forms.get(station_key)
        if normalize is None:
            raise NotFoundError("No form for this step", stepKey=station_key)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ValidationError("form data must be an object")

        with self._lock:
            st = self._station(station_key)
            target = requested or st.serving
            if not target:
                raise ConflictError("No ticket specified and none currently serving")
            rec = self._record(target)

            fields = normalize(data)
            form = rec.forms.setdefault(station_key, {})
            form.update(fields)
            if station_key == self.pipeline.first.key:
                for form_key, attr in IDENTITY_FIELDS.items():
                    value = fields.get(form_key)
                    if value is not None:
                        setattr(rec, attr, value)

            ts = self._clock()
            entry = self._audit_entry(
                "form_save", ts=ts, step_key=station_key, ticket=target, staff=staff,
                meta={"fields": sorted(fields)},
            )
            merged = dict(form)
            events = self._changes(entry, target, state=False)

        self._emit(events)
        return {"ok": True, "form": merged}


class MqttDeskService:
    """MQTT adapter around the EnrolmentQueue business logic.

    - answers desk requests on `<ns>/desk/requests`
    - forwards queue events to the state and student broadcast topics
    """

    def __init__(
        self,
        *,
        mqtt: MqttClient,
        queue: EnrolmentQueue,
        namespace: str = "enrolment/v0",
    ) -> None:
        # Local imports so unit tests can import EnrolmentQueue without paho-mqtt.
        from .mqtt_topics import desk_requests, state_updates, student_updates

        self._desk_requests = desk_requests
        self._state_updates = state_updates
        self._student_updates = student_updates

        self.mqtt = mqtt
        self.queue = queue
        self.namespace = namespace
        self._unsubscribe: Callable[[], None] | None = None

        self._ops: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "checkin": self._op_checkin,
            "start_next": lambda m: self.queue.start_next(_station_of(m), staff=m.get("staff")),
            "complete": lambda m: self.queue.complete(_station_of(m), staff=m.get("staff"), note=m.get("note")),
            "hold": lambda m: self.queue.hold(
                _station_of(m), ticket=m.get("ticket"), staff=m.get("staff"), reason=m.get("reason")
            ),
            "return": lambda m: self.queue.return_ticket(
                _station_of(m), str(m.get("ticket") or ""), staff=m.get("staff")
            ),
            "skip": lambda m: self.queue.skip(_station_of(m), staff=m.get("staff")),
            "note": lambda m: self.queue.add_note(
                _station_of(m), m.get("text"), ticket=m.get("ticket"), staff=m.get("staff")
            ),
            "form_save": lambda m: self.queue.save_form(
                _station_of(m), m.get("data"), ticket=m.get("ticket"), staff=m.get("staff")
            ),
            "status": lambda m: self.queue.status(),
            "student": lambda m: {"student": self.queue.student(str(m.get("ticket") or ""))},
            "holds": lambda m: self.queue.holds(_station_of(m)),
        }

    def start(self) -> None:
        self.mqtt.subscribe(self._desk_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)
        self._unsubscribe = self.queue.bus.subscribe(self._on_event)

        # Retained, so a display that connects later gets the current board.
        self._publish_state(self.queue.status())

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _publish_state(self, snapshot: dict[str, Any]) -> None:
        self.mqtt.publish(
            self._state_updates(self.namespace), {"type": "state_update", **snapshot}, retain=True
        )

    def _on_event(self, event: Event) -> None:
        if event.name == STATE_UPDATE:
            self._publish_state(event.payload)
        elif event.name == STUDENT_UPDATE:
            self.mqtt.publish(
                self._student_updates(self.namespace), {"type": "student_update", "student": event.payload}
            )

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _op_checkin(self, msg: dict[str, Any]) -> dict[str, Any]:
        return self.queue.checkin(
            msg.get("name"),
            msg.get("program"),
            student_id=msg.get("studentId"),
            email=msg.get("email"),
            staff=msg.get("staff"),
        )

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        mtype = msg.get("type")
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return

        op = self._ops.get(mtype) if isinstance(mtype, str) else None
        if op is None:
            self._reply(reply_to, corr_id, {"type": "error", "code": "bad_request", "message": f"unknown request: {mtype}"})
            return

        try:
            result = op(msg)
        except QueueError as e:
            self._reply(reply_to, corr_id, {**e.to_response().to_message(), **e.extra})
            return
        except Exception:
            logger.exception("desk request %s failed", mtype)
            self._reply(reply_to, corr_id, {"type": "error", "code": "internal", "message": "internal error"})
            return

        self._reply(reply_to, corr_id, {"type": f"{mtype}_result", **result})


def _station_of(msg: dict[str, Any]) -> str:
    station = msg.get("station")
    if not isinstance(station, str) or not station:
        raise ValidationError("station required")
    return station


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .config import get_settings
    from .mqtt_client import MqttClient

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Enrolment desk service (MQTT only)")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument("--ticket-scheme", choices=("sequential", "rotating"), default=settings.ticket_scheme)
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = settings.model_copy(update={"ticket_scheme": args.ticket_scheme})
    queue = EnrolmentQueue.from_settings(settings)

    if settings.webhook_url:
        from .webhook import WebhookNotifier

        WebhookNotifier.from_settings(settings).attach(queue.bus)

    mqtt_client = MqttClient(client_id="enrolment-desk", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = MqttDeskService(mqtt=mqtt_client, queue=queue, namespace=args.namespace)
    service.start()

    print(f"[manager] connected to MQTT {args.mqtt_host}:{args.mqtt_port}, namespace={args.namespace}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
