"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the value types that flow through the distribution pipeline:
    RevenuePeriod (the window a revenue figure covers), OwnershipShare (one
    line of an ownership snapshot) and AllocatedShare (one line of a computed
    distribution).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - RevenuePeriod.end >= RevenuePeriod.start.
    - period_key is canonical: "YYYY-MM" for an exact calendar month,
      "YYYY-MM-DD..YYYY-MM-DD" otherwise.  Two periods describing the same
      dates always produce the same key.
    - Shares carry integer basis points and integer minor units only.

Failure modes:
    - InvalidPeriodError on malformed month strings or inverted boundaries.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date

from ownership_kernel.exceptions import InvalidPeriodError

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, slots=True)
class RevenuePeriod:
    """
    Inclusive date window a revenue figure was earned in.

    Contract:
        ``start`` and ``end`` are both inclusive calendar dates.

    Guarantees:
        - Immutable and hashable.
        - ``period_key`` is stable for equal (start, end) pairs.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise InvalidPeriodError("start and end must be dates")
        if self.end < self.start:
            raise InvalidPeriodError(
                f"end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )

    @classmethod
    def for_month(cls, month: str) -> RevenuePeriod:
        """Build the period covering one calendar month, e.g. ``"2025-11"``."""
        match = _MONTH_PATTERN.match(month or "")
        if match is None:
            raise InvalidPeriodError(f"month must look like YYYY-MM, got {month!r}")
        year, month_number = int(match.group(1)), int(match.group(2))
        if not 1 <= month_number <= 12:
            raise InvalidPeriodError(f"month out of range in {month!r}")
        last_day = calendar.monthrange(year, month_number)[1]
        return cls(date(year, month_number, 1), date(year, month_number, last_day))

    @classmethod
    def from_key(cls, period_key: str) -> RevenuePeriod:
        """Inverse of ``period_key``."""
        if ".." not in period_key:
            return cls.for_month(period_key)
        start_text, _, end_text = period_key.partition("..")
        try:
            return cls(date.fromisoformat(start_text), date.fromisoformat(end_text))
        except ValueError as exc:
            raise InvalidPeriodError(f"unparseable period key {period_key!r}") from exc

    @property
    def is_calendar_month(self) -> bool:
        last_day = calendar.monthrange(self.start.year, self.start.month)[1]
        return (
            self.start.day == 1
            and self.end.year == self.start.year
            and self.end.month == self.start.month
            and self.end.day == last_day
        )

    @property
    def period_key(self) -> str:
        if self.is_calendar_month:
            return f"{self.start.year:04d}-{self.start.month:02d}"
        return f"{self.start.isoformat()}..{self.end.isoformat()}"

    def __str__(self) -> str:
        return self.period_key


@dataclass(frozen=True, slots=True)
class OwnershipShare:
    """One owner's aggregated fraction of an asset at a point in time."""

    investor_id: str
    basis_points: int


@dataclass(frozen=True, slots=True)
class AllocatedShare:
    """
    One owner's computed cut of a revenue amount.

    ``is_rounding_adjustment`` is True when the owner received one extra
    minor unit from the remainder pass.
    """

    investor_id: str
    basis_points: int
    amount: int
    is_rounding_adjustment: bool = False
