from __future__ import annotations

# Student records.
#
# A record is created at check-in and then only mutated by the queue
# operations in `manager.py`. History and notes are append-only.

from dataclasses import dataclass, field
from typing import Any

QUEUED = "queued"
SERVING = "serving"
HOLD = "hold"
COMPLETE = "complete"


@dataclass
class StudentRecord:
    ticket: str
    name: str
    program: str
    station_key: str
    created_at: str
    student_id: str | None = None
    email: str | None = None
    status: str = QUEUED
    history: list[dict[str, Any]] = field(default_factory=list)
    notes: list[dict[str, Any]] = field(default_factory=list)
    forms: dict[str, dict[str, Any]] = field(default_factory=dict)

    # Mirrored from the registration form.
    date_of_birth: str | None = None
    usi: str | None = None
    campus: str | None = None
    intake_date: str | None = None

    def add_history(self, step_key: str, action: str, ts: str, *, staff: str | None = None,
                    note: str | None = None) -> None:
        entry: dict[str, Any] = {"stepKey": step_key, "action": action, "ts": ts, "staff": staff}
        if note is not None:
            entry["note"] = note
        self.history.append(entry)

    def add_note(self, step_key: str, text: str, ts: str, *, staff: str | None = None) -> dict[str, Any]:
        entry = {"stepKey": step_key, "text": text, "staff": staff, "ts": ts}
        self.notes.append(entry)
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket": self.ticket,
            "name": self.name,
            "studentId": self.student_id,
            "program": self.program,
            "email": self.email,
            "stepKey": self.station_key,
            "status": self.status,
            "history": [dict(h) for h in self.history],
            "notes": [dict(n) for n in self.notes],
            "forms": {k: dict(v) for k, v in self.forms.items()},
            "dateOfBirth": self.date_of_birth,
            "usi": self.usi,
            "campus": self.campus,
            "intakeDate": self.intake_date,
            "createdAt": self.created_at,
        }
