"""
Normalization and coalescing of timetable slots.

A day's rows arrive unsorted and possibly malformed. They are normalized,
sorted by start time (then period), and touching rows that share subject,
class and room are folded into single multi-period slots.
"""
from __future__ import annotations

import functools
import re
import typing as t
from dataclasses import dataclass, field

from timetable_server.models import MergedSlot, NormalizedSlot

EMPTY_LABEL = "—"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_INT_RE = re.compile(r"^\d+$")


def to_text(value: t.Any) -> str:
    """Convert a cell value to trimmed text; None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets hand back 3.0 for a period typed as 3
        return str(int(value))
    return str(value).strip()


def normalize_slot(raw: t.Any) -> t.Optional[NormalizedSlot]:
    """
    Clean a raw timetable row into a NormalizedSlot.

    Returns None when the row is not a mapping. Never raises.
    """
    if isinstance(raw, NormalizedSlot):
        raw = raw.as_row()
    if not isinstance(raw, t.Mapping):
        return None

    subject = to_text(raw.get("Subject"))
    class_name = to_text(raw.get("Class"))
    room = to_text(raw.get("Room"))
    return NormalizedSlot(
        weekday=to_text(raw.get("Weekday")),
        period=to_text(raw.get("Period")),
        start=to_text(raw.get("Start")),
        end=to_text(raw.get("End")),
        subject=subject,
        class_name=class_name,
        room=room,
        subject_key=subject.lower(),
        class_key=class_name.lower(),
        room_key=room.lower(),
    )


def time_to_minutes(value: str) -> t.Optional[int]:
    """Minutes since midnight for "H:MM"/"HH:MM", else None."""
    match = _TIME_RE.match(value or "")
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def period_number(label: str) -> t.Optional[int]:
    """Integer value of a purely numeric period label, else None."""
    if not label or not _INT_RE.match(label):
        return None
    return int(label)


def _compare_slots(a: NormalizedSlot, b: NormalizedSlot) -> int:
    a_start, b_start = time_to_minutes(a.start), time_to_minutes(b.start)
    if a_start is not None and b_start is not None and a_start != b_start:
        return -1 if a_start < b_start else 1

    a_period, b_period = period_number(a.period), period_number(b.period)
    if a_period is not None and b_period is not None and a_period != b_period:
        return -1 if a_period < b_period else 1
    return 0


def sort_day_slots(slots: t.Iterable[NormalizedSlot]) -> list[NormalizedSlot]:
    """Stable sort by start time, falling back to period number."""
    return sorted(slots, key=functools.cmp_to_key(_compare_slots))


def period_label(labels: t.Sequence[str]) -> str:
    """
    Reduce constituent period labels to one display label.

    ["1", "2", "3"] -> "1-3", ["1", "3"] -> "1, 3", [] -> "—".
    """
    if not labels:
        return EMPTY_LABEL
    if len(labels) == 1:
        return labels[0]

    numbers = [period_number(label) for label in labels]
    if all(n is not None for n in numbers) and all(
        later == earlier + 1 for earlier, later in zip(numbers, numbers[1:])
    ):
        return f"{labels[0]}-{labels[-1]}"

    return ", ".join(dict.fromkeys(labels))


@dataclass
class _Run:
    """Accumulator for the slot currently being extended."""
    first: NormalizedSlot
    start: str
    end: str
    labels: list[str] = field(default_factory=list)

    @classmethod
    def begin(cls, slot: NormalizedSlot) -> "_Run":
        return cls(
            first=slot,
            start=slot.start,
            end=slot.end,
            labels=[slot.period] if slot.period else [],
        )

    def touches(self, slot: NormalizedSlot) -> bool:
        end_minutes = time_to_minutes(self.end)
        start_minutes = time_to_minutes(slot.start)
        if end_minutes is not None and end_minutes == start_minutes:
            return True

        last = period_number(self.labels[-1]) if self.labels else None
        following = period_number(slot.period)
        return last is not None and following is not None and following == last + 1

    def absorbs(self, slot: NormalizedSlot) -> bool:
        return self.first.group_key == slot.group_key and self.touches(slot)

    def extend(self, slot: NormalizedSlot) -> None:
        self.end = slot.end
        if not self.start:
            self.start = slot.start
        if slot.period:
            self.labels.append(slot.period)

    def close(self) -> MergedSlot:
        first = self.first
        return MergedSlot(
            weekday=first.weekday,
            period=period_label(self.labels),
            start=self.start,
            end=self.end,
            subject=first.subject,
            class_name=first.class_name,
            room=first.room,
            subject_key=first.subject_key,
            class_key=first.class_key,
            room_key=first.room_key,
            periods=tuple(self.labels),
        )


def coalesce_day_slots(raw_slots: t.Iterable[t.Any]) -> list[MergedSlot]:
    """
    Merge one day's rows into contiguous multi-period slots.

    Rows that fail normalization are dropped; unparsable times or periods
    simply never touch. The result keeps the sorted day order.
    """
    if not isinstance(raw_slots, t.Iterable) or isinstance(raw_slots, (str, t.Mapping)):
        return []

    normalized = [slot for slot in map(normalize_slot, raw_slots) if slot is not None]

    merged: list[MergedSlot] = []
    run: t.Optional[_Run] = None
    for slot in sort_day_slots(normalized):
        if run is not None and run.absorbs(slot):
            run.extend(slot)
            continue
        if run is not None:
            merged.append(run.close())
        run = _Run.begin(slot)

    if run is not None:
        merged.append(run.close())
    return merged
