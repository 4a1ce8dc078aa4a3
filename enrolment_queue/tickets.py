"""Ticket allocation.

Two schemes are available:

- `SequentialTicketAllocator`: prefix + monotonic counter (A1001, A1002, ...).
  Never repeats during the life of the process.
- `RotatingTicketAllocator`: short tickets for the public display board,
  A1..A100, B1..B100, ..., Z100 and back to A1. A candidate that already
  belongs to a student record is skipped, so a wrap never hands out a ticket
  twice; once every number is taken, check-in is refused.
"""

from __future__ import annotations

import string
from typing import Callable, Protocol

from .errors import ConflictError

InUse = Callable[[str], bool]


class TicketAllocator(Protocol):
    def allocate(self, in_use: InUse) -> str: ...


class SequentialTicketAllocator:
    def __init__(self, *, prefix: str = "A", start: int = 1001) -> None:
        self.prefix = prefix
        self._next = start

    def allocate(self, in_use: InUse) -> str:
        while True:
            ticket = f"{self.prefix}{self._next}"
            self._next += 1
            if not in_use(ticket):
                return ticket


class RotatingTicketAllocator:
    def __init__(self, *, letters: str = string.ascii_uppercase, per_letter: int = 100) -> None:
        if not letters or per_letter <= 0:
            raise ValueError("letters and per_letter must be non-empty/positive")
        self.letters = letters
        self.per_letter = per_letter
        self._letter = 0
        self._number = 1

    def _advance(self) -> str:
        ticket = f"{self.letters[self._letter]}{self._number}"
        self._number += 1
        if self._number > self.per_letter:
            self._number = 1
            self._letter = (self._letter + 1) % len(self.letters)
        return ticket

    def allocate(self, in_use: InUse) -> str:
        for _ in range(len(self.letters) * self.per_letter):
            ticket = self._advance()
            if not in_use(ticket):
                return ticket
        raise ConflictError("No free ticket numbers")


def make_allocator(scheme: str, *, prefix: str = "A", start: int = 1001) -> TicketAllocator:
    if scheme == "sequential":
        return SequentialTicketAllocator(prefix=prefix, start=start)
    if scheme == "rotating":
        return RotatingTicketAllocator()
    raise ValueError(f"unknown ticket scheme: {scheme}")
