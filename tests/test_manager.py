import pytest

from enrolment_queue.errors import ConflictError, NotFoundError, ValidationError
from enrolment_queue.events import AUDIT_APPEND, STATE_UPDATE, STUDENT_UPDATE
from enrolment_queue.manager import EnrolmentQueue
from enrolment_queue.tickets import RotatingTicketAllocator

STATIONS = ["registration", "marketing", "class_registration", "tuition_payment", "student_id"]


def placements(q: EnrolmentQueue, ticket: str) -> list[tuple[str, str]]:
    """Every (station, slot) the ticket currently occupies."""
    snap = q.status()
    found = []
    for key in STATIONS:
        if ticket in snap["queues"][key]:
            found += [(key, "waiting")] * snap["queues"][key].count(ticket)
        if snap["currentServing"][key] == ticket:
            found.append((key, "serving"))
        if ticket in q.holds(key)["tickets"]:
            found.append((key, "held"))
    return found


def assert_single_placement(q: EnrolmentQueue, ticket: str) -> None:
    student = q.student(ticket)
    where = placements(q, ticket)
    if student["status"] == "complete":
        assert where == []
    else:
        assert len(where) == 1
        assert where[0][0] == student["stepKey"]


def test_checkin_start_complete_scenario():
    q = EnrolmentQueue()
    resp = q.checkin("Jane Doe", "BA")
    assert resp["ticket"] == "A1001"
    assert resp["stationKey"] == "registration"
    assert [s["key"] for s in resp["stations"]] == STATIONS

    assert q.start_next("registration") == {"ticket": "A1001"}
    assert q.complete("registration") == {"ok": True, "nextStep": "marketing"}

    student = q.student("A1001")
    assert student["stepKey"] == "marketing"
    assert student["status"] == "queued"
    assert q.status()["queues"]["marketing"] == ["A1001"]


def test_checkin_requires_name_and_program():
    q = EnrolmentQueue()
    with pytest.raises(ValidationError):
        q.checkin("", "BA")
    with pytest.raises(ValidationError):
        q.checkin("Jane", "   ")
    with pytest.raises(ValidationError):
        q.checkin(None, None)

    assert q.logs() == []
    assert q.status()["queues"]["registration"] == []
    # No ticket number was burnt by the rejected check-ins.
    assert q.checkin("Jane", "BA")["ticket"] == "A1001"


def test_waiting_queue_is_fifo():
    q = EnrolmentQueue()
    tickets = [q.checkin(f"S{i}", "BA")["ticket"] for i in range(3)]
    served = []
    for _ in tickets:
        served.append(q.start_next("registration")["ticket"])
        q.complete("registration")
    assert served == tickets
    assert q.status()["queues"]["marketing"] == tickets


def test_start_next_empty_queue_returns_none_without_audit():
    q = EnrolmentQueue()
    assert q.start_next("marketing") == {"ticket": None}
    assert q.logs() == []


def test_start_next_twice_conflicts_with_serving_ticket():
    q = EnrolmentQueue()
    first = q.checkin("A", "BA")["ticket"]
    q.start_next("registration")
    q.checkin("B", "BA")
    before = q.status()

    with pytest.raises(ConflictError) as exc:
        q.start_next("registration")
    assert exc.value.extra["ticket"] == first
    assert q.status() == before


def test_unknown_station_is_not_found():
    q = EnrolmentQueue()
    with pytest.raises(NotFoundError):
        q.start_next("canteen")
    with pytest.raises(NotFoundError):
        q.holds("canteen")


def test_complete_without_serving_conflicts():
    q = EnrolmentQueue()
    q.checkin("A", "BA")
    with pytest.raises(ConflictError):
        q.complete("registration")


def test_complete_all_stations_finishes_and_never_requeues():
    q = EnrolmentQueue()
    t = q.checkin("Jane", "BA")["ticket"]
    for i, key in enumerate(STATIONS):
        assert q.start_next(key)["ticket"] == t
        nxt = q.complete(key, note="done" if key == "student_id" else None)["nextStep"]
        expected = STATIONS[i + 1] if i + 1 < len(STATIONS) else None
        assert nxt == expected
        assert_single_placement(q, t)

    student = q.student(t)
    assert student["status"] == "complete"
    assert placements(q, t) == []
    for key in STATIONS:
        assert q.start_next(key) == {"ticket": None}

    final = q.logs()[-1]
    assert final["event"] == "complete"
    assert final["meta"]["next"] is None
    assert final["meta"]["record"]["status"] == "complete"
    assert final["meta"]["record"]["notes"][0]["text"] == "done"


def test_complete_enqueues_at_tail_of_successor_once():
    q = EnrolmentQueue()
    a = q.checkin("A", "BA")["ticket"]
    b = q.checkin("B", "BA")["ticket"]
    q.start_next("registration")
    q.complete("registration")
    q.start_next("registration")
    q.complete("registration")
    assert q.status()["queues"]["marketing"] == [a, b]


def test_complete_note_goes_to_history_and_notes():
    q = EnrolmentQueue()
    t = q.checkin("A", "BA")["ticket"]
    q.start_next("registration", staff="kim")
    q.complete("registration", staff="kim", note="  docs ok  ")
    student = q.student(t)
    assert student["history"][-1]["action"] == "complete"
    assert student["history"][-1]["note"] == "docs ok"
    assert student["notes"] == [
        {"stepKey": "registration", "text": "docs ok", "staff": "kim", "ts": student["notes"][0]["ts"]}
    ]


def test_hold_then_return_goes_to_tail():
    q = EnrolmentQueue()
    a = q.checkin("A", "BA")["ticket"]
    b = q.checkin("B", "BA")["ticket"]
    q.start_next("registration")

    resp = q.hold("registration", reason="missing passport")
    assert resp == {"ok": True, "ticket": a, "held": True}
    assert q.student(a)["status"] == "hold"
    assert q.status()["currentServing"]["registration"] is None
    assert q.status()["holds"]["registration"] == 1
    assert_single_placement(q, a)

    assert q.return_ticket("registration", a) == {"ok": True, "ticket": a}
    assert q.status()["queues"]["registration"] == [b, a]
    assert q.student(a)["status"] == "queued"
    assert q.holds("registration") == {"stationKey": "registration", "tickets": [], "count": 0}
    assert_single_placement(q, a)


def test_hold_waiting_ticket_by_id():
    q = EnrolmentQueue()
    a = q.checkin("A", "BA")["ticket"]
    b = q.checkin("B", "BA")["ticket"]
    q.hold("registration", ticket=b)
    assert q.status()["queues"]["registration"] == [a]
    assert q.holds("registration")["tickets"] == [b]
    with pytest.raises(ConflictError):
        q.hold("registration", ticket=b)


def test_hold_errors():
    q = EnrolmentQueue()
    with pytest.raises(ConflictError):
        q.hold("registration")
    t = q.checkin("A", "BA")["ticket"]
    with pytest.raises(NotFoundError):
        q.hold("marketing", ticket=t)
    with pytest.raises(NotFoundError):
        q.hold("registration", ticket="Z999")
    with pytest.raises(NotFoundError):
        q.return_ticket("registration", t)


def test_skip_requeues_at_tail():
    q = EnrolmentQueue()
    a = q.checkin("A", "BA")["ticket"]
    b = q.checkin("B", "BA")["ticket"]
    q.start_next("registration")
    assert q.skip("registration") == {"ok": True, "ticket": a}
    assert q.status()["queues"]["registration"] == [b, a]
    assert q.student(a)["status"] == "queued"
    assert q.logs()[-1]["event"] == "skip"

    q.start_next("registration")
    q.start_next("marketing")
    with pytest.raises(ConflictError):
        q.skip("marketing")


def test_note_targets_serving_or_explicit_ticket():
    q = EnrolmentQueue()
    a = q.checkin("A", "BA")["ticket"]
    with pytest.raises(ValidationError):
        q.add_note("registration", "  ")
    with pytest.raises(ConflictError):
        q.add_note("registration", "hello")
    with pytest.raises(NotFoundError):
        q.add_note("registration", "hello", ticket="Q1")

    resp = q.add_note("registration", "called twice", ticket=a, staff="lee")
    assert resp["ok"] is True
    assert resp["note"]["text"] == "called twice"

    q.start_next("registration")
    before = q.status()
    q.add_note("registration", "at desk")
    assert [n["text"] for n in q.student(a)["notes"]] == ["called twice", "at desk"]
    assert q.status() == before


def test_save_form_normalizes_merges_and_mirrors_identity():
    q = EnrolmentQueue()
    t = q.checkin("Jane", "BA")["ticket"]
    q.start_next("registration")

    resp = q.save_form(
        "registration",
        {"name": " Jane Q Doe ", "campus": "sydney", "usi": "ABC123", "documentsVerified": "yes", "bogus": 1},
    )
    assert resp["form"] == {"name": "Jane Q Doe", "campus": "Sydney", "usi": "ABC123", "documentsVerified": True}

    q.save_form("registration", {"intakeDate": "2026-02-01", "campus": "Mars"})
    student = q.student(t)
    assert student["name"] == "Jane Q Doe"
    assert student["usi"] == "ABC123"
    assert student["intakeDate"] == "2026-02-01"
    # invalid value nulls the form field but leaves the mirrored identity alone
    assert student["forms"]["registration"]["campus"] is None
    assert student["campus"] == "Sydney"


def test_save_form_errors():
    q = EnrolmentQueue(forms={"registration": lambda raw: dict(raw)})
    with pytest.raises(NotFoundError):
        q.save_form("marketing", {})
    with pytest.raises(ConflictError):
        q.save_form("registration", {"x": 1})
    t = q.checkin("A", "BA")["ticket"]
    with pytest.raises(ValidationError):
        q.save_form("registration", ["not", "a", "map"], ticket=t)
    with pytest.raises(NotFoundError):
        q.save_form("registration", {}, ticket="nope")


def test_each_mutation_adds_exactly_one_matching_audit_entry():
    q = EnrolmentQueue()

    def check(expected_event, station, fn):
        before = len(q.logs())
        result = fn()
        logs = q.logs()
        assert len(logs) == before + 1
        entry = logs[-1]
        assert entry["event"] == expected_event
        assert entry["stepKey"] == station
        return entry, result

    entry, resp = check("checkin", "registration", lambda: q.checkin("A", "BA", staff="desk"))
    t = resp["ticket"]
    assert entry["ticket"] == t
    assert entry["meta"] == {"name": "A", "program": "BA"}
    assert check("start", "registration", lambda: q.start_next("registration"))[0]["ticket"] == t
    assert check("hold", "registration", lambda: q.hold("registration", reason="r"))[0]["note"] == "r"
    assert check("return", "registration", lambda: q.return_ticket("registration", t))[0]["ticket"] == t
    check("start", "registration", lambda: q.start_next("registration"))
    check("skip", "registration", lambda: q.skip("registration"))
    check("note_add", "registration", lambda: q.add_note("registration", "n", ticket=t))
    check("form_save", "registration", lambda: q.save_form("registration", {"usi": "X"}, ticket=t))
    check("start", "registration", lambda: q.start_next("registration"))
    entry, _ = check("complete", "registration", lambda: q.complete("registration"))
    assert entry["meta"] == {"next": "marketing"}


def test_events_published_after_each_change():
    q = EnrolmentQueue()
    seen = []
    q.bus.subscribe(lambda ev: seen.append(ev))

    t = q.checkin("A", "BA")["ticket"]
    assert [e.name for e in seen] == [AUDIT_APPEND, STATE_UPDATE, STUDENT_UPDATE]
    assert seen[1].payload["queues"]["registration"] == [t]
    assert seen[2].payload["ticket"] == t

    seen.clear()
    q.add_note("registration", "hi", ticket=t)
    assert [e.name for e in seen] == [AUDIT_APPEND, STUDENT_UPDATE]

    seen.clear()
    q.start_next("marketing")
    assert [e.name for e in seen] == [STATE_UPDATE]


def test_failing_listener_does_not_break_operation():
    q = EnrolmentQueue()

    def boom(ev):
        raise RuntimeError("display gone")

    q.bus.subscribe(boom)
    assert q.checkin("A", "BA")["ticket"] == "A1001"


def test_rotating_tickets_never_reuse_a_record():
    q = EnrolmentQueue(allocator=RotatingTicketAllocator(letters="AB", per_letter=2))
    tickets = [q.checkin(f"S{i}", "BA")["ticket"] for i in range(4)]
    assert tickets == ["A1", "A2", "B1", "B2"]

    # Finish A2 only; a finished student still owns their ticket.
    q.hold("registration", ticket="A1")
    for key in STATIONS:
        while True:
            got = q.start_next(key)["ticket"]
            if got is None:
                break
            if got == "A2":
                q.complete(key)
            else:
                q.hold(key)
                q.return_ticket(key, got)
                break
    assert q.student("A2")["status"] == "complete"
    with pytest.raises(ConflictError):
        q.checkin("New", "BA")
    assert q.student("A2")["name"] == "S1"
    assert q.student("A2")["status"] == "complete"


def test_rotating_pool_exhausted_keeps_completed_student():
    q = EnrolmentQueue(allocator=RotatingTicketAllocator(letters="A", per_letter=1))
    assert q.checkin("Jane", "BA")["ticket"] == "A1"
    for key in STATIONS:
        assert q.start_next(key)["ticket"] == "A1"
        q.complete(key)
    assert q.student("A1")["status"] == "complete"

    logged = len(q.logs())
    with pytest.raises(ConflictError):
        q.checkin("Bob", "BA")
    assert q.student("A1")["name"] == "Jane"
    assert len(q.logs()) == logged


def test_fixed_clock_used_for_timestamps():
    q = EnrolmentQueue(clock=lambda: "2026-01-01T00:00:00Z")
    t = q.checkin("A", "BA")["ticket"]
    assert q.student(t)["createdAt"] == "2026-01-01T00:00:00Z"
    assert q.logs()[0]["ts"] == "2026-01-01T00:00:00Z"
