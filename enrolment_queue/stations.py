from __future__ import annotations

# Station pipeline.
#
# A student walks the stations strictly in order. The order is fixed when the
# pipeline is built and is the only forward path: completing a station moves
# the ticket to the next one, completing the last station finishes enrolment.

from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from .errors import NotFoundError


@dataclass(frozen=True)
class Station:
    key: str
    label: str
    department: str
    prefix: str = "A"
    page: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "dept": self.department,
            "prefix": self.prefix,
        }
        if self.page is not None:
            data["page"] = self.page
        return data


# Keys match the `?dept=` parameter used by the department dashboards.
DEFAULT_STATIONS: tuple[Station, ...] = (
    Station("registration", "Registration", "Enrolment Officer", page="dashboard.html?dept=registration"),
    Station("marketing", "Marketing", "Marketing Department", page="dashboard.html?dept=marketing"),
    Station("class_registration", "Class Registration", "Timetable", page="dashboard.html?dept=class_registration"),
    Station("tuition_payment", "Tuition Payment", "Fees", page="dashboard.html?dept=tuition_payment"),
    Station("student_id", "Student ID", "Library", page="dashboard.html?dept=student_id"),
)


class StationPipeline:
    """Immutable ordered list of stations."""

    def __init__(self, stations: Sequence[Station] = DEFAULT_STATIONS) -> None:
        if not stations:
            raise ValueError("pipeline needs at least one station")
        self._stations: tuple[Station, ...] = tuple(stations)
        self._index: dict[str, int] = {}
        for i, st in enumerate(self._stations):
            if st.key in self._index:
                raise ValueError(f"duplicate station key: {st.key}")
            self._index[st.key] = i

    def __iter__(self) -> Iterator[Station]:
        return iter(self._stations)

    def __len__(self) -> int:
        return len(self._stations)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    @property
    def first(self) -> Station:
        return self._stations[0]

    def keys(self) -> list[str]:
        return [st.key for st in self._stations]

    def is_valid(self, key: str) -> bool:
        return key in self._index

    def index(self, key: str) -> int:
        try:
            return self._index[key]
        except KeyError:
            raise NotFoundError("Unknown step", stepKey=key) from None

    def get(self, key: str) -> Station:
        return self._stations[self.index(key)]

    def next_key(self, key: str) -> str | None:
        """Key of the station after `key`, or None when `key` is the last one."""
        i = self.index(key) + 1
        if i >= len(self._stations):
            return None
        return self._stations[i].key

    def to_list(self) -> list[dict[str, Any]]:
        return [st.to_dict() for st in self._stations]
