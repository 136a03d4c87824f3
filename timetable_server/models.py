"""
Data models for timetable slots and clarification requests.

This module contains the dataclasses used to represent timetable rows as they
move through normalization, coalescing and formatting.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import typing as t

_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def flag_value(value: t.Any, default: bool) -> bool:
    """Read a boolean that may arrive as text ("false", "0") from a spreadsheet."""
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if not text:
            return default
        return text not in _FALSE_WORDS
    return bool(value)


@dataclass(frozen=True)
class NormalizedSlot:
    """
    A timetable row with every display field trimmed to a string.

    The *_key fields are lowercase copies used only for grouping equality.
    """
    weekday: str = ""
    period: str = ""
    start: str = ""         # "H:MM" or "HH:MM" 24h when well formed
    end: str = ""
    subject: str = ""
    class_name: str = ""
    room: str = ""
    subject_key: str = ""
    class_key: str = ""
    room_key: str = ""

    @property
    def group_key(self) -> tuple[str, str, str]:
        return (self.subject_key, self.class_key, self.room_key)

    def as_row(self) -> dict[str, str]:
        """Return the slot in the raw row shape."""
        return {
            "Weekday": self.weekday,
            "Period": self.period,
            "Start": self.start,
            "End": self.end,
            "Subject": self.subject,
            "Class": self.class_name,
            "Room": self.room,
        }


@dataclass(frozen=True)
class MergedSlot(NormalizedSlot):
    """
    One or more touching slots of the same subject, class and room.

    `period` holds the display label ("3", "1-2" or "1, 3"); `periods` keeps
    the constituent labels in scan order.
    """
    periods: tuple[str, ...] = ()


@dataclass(frozen=True)
class DayGroup:
    """A weekday code with its slots, in the order received."""
    weekday: str
    slots: tuple[t.Any, ...] = ()


@dataclass
class ClarifyDescriptor:
    """
    Signals that a query matched several entities, e.g. two teachers
    sharing a first name, and cannot be answered until disambiguated.
    """
    required: bool = False
    type: str = ""
    input: str = ""
    message: str = ""
    candidates: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: t.Any) -> "ClarifyDescriptor":
        """Build a descriptor leniently; missing or odd values become defaults."""
        if isinstance(data, ClarifyDescriptor):
            return data
        if not isinstance(data, t.Mapping):
            return cls()
        candidates = data.get("candidates") or []
        if isinstance(candidates, (str, bytes)) or not isinstance(candidates, t.Iterable):
            candidates = [candidates]
        return cls(
            required=flag_value(data.get("required"), False),
            type=str(data.get("type") or ""),
            input=str(data.get("input") or ""),
            message=str(data.get("message") or ""),
            candidates=list(candidates),
        )
