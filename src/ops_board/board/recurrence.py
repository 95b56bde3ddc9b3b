"""Recurrence metadata carried by tasks.

Only the data contract is enforced here: a recurring task always has both a
frequency and an end date, and turning recurrence off clears both together.
Generating the next occurrence is left to an :class:`OccurrenceGenerator`
supplied by the caller; none is bundled.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from ..utils import _to_iso
from .errors import RecurrenceError

if TYPE_CHECKING:
    from .model import Task


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Values written by the legacy document store forms.
_FREQUENCY_ALIASES = {
    "diaria": RecurrenceFrequency.DAILY,
    "semanal": RecurrenceFrequency.WEEKLY,
    "mensal": RecurrenceFrequency.MONTHLY,
}


def parse_frequency(raw: Any) -> Optional[RecurrenceFrequency]:
    if raw is None:
        return None
    if isinstance(raw, RecurrenceFrequency):
        return raw
    value = str(raw).strip().lower()
    if not value:
        return None
    if value in _FREQUENCY_ALIASES:
        return _FREQUENCY_ALIASES[value]
    try:
        return RecurrenceFrequency(value)
    except ValueError:
        raise RecurrenceError(f"Unknown recurrence frequency {raw!r}") from None


@dataclass(frozen=True)
class Recurrence:
    frequency: RecurrenceFrequency
    end_date: str

    def to_dict(self) -> dict[str, Any]:
        return {"frequency": self.frequency.value, "end_date": self.end_date}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recurrence":
        freq = parse_frequency(data.get("frequency"))
        end = _to_iso(data.get("end_date"))
        if freq is None or end is None:
            raise RecurrenceError("Recurrence requires frequency and end_date")
        return cls(frequency=freq, end_date=end)


def recurrence_from_fields(
    is_recurring: bool,
    frequency: Any = None,
    end_date: Any = None,
) -> Optional[Recurrence]:
    """Build the recurrence value for a task from its three flat fields.

    Returns ``None`` when the task is not recurring, dropping any frequency
    or end date that was passed along with it.
    """
    if not is_recurring:
        return None
    freq = parse_frequency(frequency)
    end = _to_iso(end_date)
    if freq is None or end is None:
        missing = [name for name, value in (("frequency", freq), ("end_date", end)) if value is None]
        raise RecurrenceError(f"Recurring tasks require {' and '.join(missing)}")
    return Recurrence(frequency=freq, end_date=end)


def recurrence_patch(
    is_recurring: bool,
    frequency: Any = None,
    end_date: Any = None,
) -> dict[str, Optional[Recurrence]]:
    """Partial-update payload that sets or clears recurrence as one field."""
    return {"recurrence": recurrence_from_fields(is_recurring, frequency, end_date)}


class OccurrenceGenerator(ABC):
    """Extension point for producing the next occurrence of a recurring task."""

    @abstractmethod
    def next_occurrence(self, task: "Task") -> Optional[dict[str, Any]]:
        """Return create-fields for the next occurrence, or ``None`` when the series ended."""
        raise NotImplementedError
