"""Append-only audit log.

Every state-changing desk operation appends exactly one entry. Entries are
never modified; the log is only read for export (JSON or CSV).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator

CSV_HEADER = ("ts", "event", "stepKey", "ticket", "staff", "note", "meta")


@dataclass(frozen=True)
class AuditEntry:
    ts: str
    event: str
    step_key: str | None = None
    ticket: str | None = None
    staff: str | None = None
    note: str | None = None
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.ts,
            "event": self.event,
            "stepKey": self.step_key,
            "ticket": self.ticket,
            "staff": self.staff,
            "note": self.note,
            "meta": self.meta,
        }


class AuditLog:
    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(list(self._entries))

    def append(self, entry: AuditEntry) -> AuditEntry:
        self._entries.append(entry)
        return entry

    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def _quote(text: str) -> str:
    if not text:
        return ""
    return '"' + text.replace('"', '""') + '"'


def entries_to_csv(entries: list[AuditEntry]) -> str:
    """Render entries as CSV with a header row.

    Non-empty cells are quoted, empty cells stay bare. `meta` is written as
    compact JSON.
    """
    lines = [",".join(CSV_HEADER)]
    for e in entries:
        row = (e.ts, e.event, e.step_key, e.ticket, e.staff, e.note, e.meta)
        lines.append(",".join(_quote(_cell(v)) for v in row))
    return "\n".join(lines)
