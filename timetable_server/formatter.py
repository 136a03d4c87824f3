"""
Markdown rendering for full-timetable answers and clarification prompts.

Both entry points are pure functions of their input. Malformed rows degrade
to placeholders or are dropped; nothing here raises for odd payloads.
"""
from __future__ import annotations

import typing as t

from timetable_server.models import ClarifyDescriptor, DayGroup, MergedSlot
from timetable_server.slots import EMPTY_LABEL, coalesce_day_slots, to_text

DAY_ORDER = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DAY_NAMES = {
    "Mon": "Monday",
    "Tue": "Tuesday",
    "Wed": "Wednesday",
    "Thu": "Thursday",
    "Fri": "Friday",
    "Sat": "Saturday",
    "Sun": "Sunday",
}
UNKNOWN_DAY = "Unknown"
DEFAULT_TEACHER = "Teacher"

TABLE_COLUMNS = ("Period", "Start", "End", "Subject", "Class", "Room")

_DAY_LOOKUP = {
    **{code.lower(): code for code in DAY_ORDER},
    **{name.lower(): code for code, name in DAY_NAMES.items()},
}


def display_text(value: t.Any) -> str:
    """Render a table cell: None -> "—", numbers as decimals, else trimmed text."""
    if value is None:
        return EMPTY_LABEL
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value).strip() or EMPTY_LABEL


def table_cell(value: t.Any) -> str:
    """display_text, made safe inside a Markdown table row."""
    text = display_text(value)
    text = " ".join(line.strip() for line in text.splitlines() if line.strip()) or EMPTY_LABEL
    return text.replace("|", "\\|")


def canonical_day(code: str) -> t.Optional[str]:
    """Map "Mon", "mon" or "Monday" to "Mon"; None if unrecognized."""
    return _DAY_LOOKUP.get((code or "").strip().lower())


def day_heading(code: str) -> str:
    canonical = canonical_day(code)
    return DAY_NAMES[canonical] if canonical else code


def _day_rank(group: DayGroup) -> int:
    canonical = canonical_day(group.weekday)
    return DAY_ORDER.index(canonical) if canonical else len(DAY_ORDER)


def order_day_groups(groups: t.Iterable[DayGroup]) -> list[DayGroup]:
    """Mon..Sun first, unrecognized codes after, ties kept in input order."""
    return sorted(groups, key=_day_rank)


def _as_slot_list(value: t.Any) -> tuple[t.Any, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return ()


def groups_from_grouped(grouped: t.Any) -> list[DayGroup]:
    """
    Accept pre-grouped data as either {"Mon": [rows]} or
    [{"weekday": "Mon", "slots": [rows]}, ...].
    """
    if isinstance(grouped, t.Mapping):
        return [
            DayGroup(weekday=to_text(day) or UNKNOWN_DAY, slots=_as_slot_list(slots))
            for day, slots in grouped.items()
        ]

    groups: list[DayGroup] = []
    if isinstance(grouped, (list, tuple)):
        for entry in grouped:
            if not isinstance(entry, t.Mapping):
                continue
            day = entry.get("weekday") or entry.get("Weekday") or entry.get("day")
            slots = entry.get("slots", entry.get("rows"))
            groups.append(DayGroup(weekday=to_text(day) or UNKNOWN_DAY, slots=_as_slot_list(slots)))
    return groups


def groups_from_rows(rows: t.Any) -> list[DayGroup]:
    """Partition flat rows by Weekday, first appearance order, blanks under "Unknown"."""
    buckets: dict[str, list[dict[str, t.Any]]] = {}
    for row in _as_slot_list(rows):
        if not isinstance(row, t.Mapping):
            continue
        day = to_text(row.get("Weekday")) or UNKNOWN_DAY
        buckets.setdefault(day, []).append({
            "Weekday": day,
            **{column: "" if row.get(column) is None else row.get(column) for column in TABLE_COLUMNS},
        })
    return [DayGroup(weekday=day, slots=tuple(slots)) for day, slots in buckets.items()]


def resolve_teacher(timetable: t.Mapping[str, t.Any], teachers: t.Any = None) -> str:
    teacher = to_text(timetable.get("teacher"))
    if teacher:
        return teacher
    if isinstance(teachers, str):
        teachers = [teachers]
    if isinstance(teachers, (list, tuple)) and teachers:
        teacher = to_text(teachers[0])
    return teacher or DEFAULT_TEACHER


def _render_table(slots: t.Sequence[MergedSlot]) -> list[str]:
    lines = [
        "| " + " | ".join(TABLE_COLUMNS) + " |",
        "| " + " | ".join("---" for _ in TABLE_COLUMNS) + " |",
    ]
    for slot in slots:
        cells = (slot.period, slot.start, slot.end, slot.subject, slot.class_name, slot.room)
        lines.append("| " + " | ".join(table_cell(cell) for cell in cells) + " |")
    return lines


def format_full_timetable(
    timetable: t.Any,
    title: t.Optional[str] = None,
    notes: t.Optional[str] = None,
    teachers: t.Any = None,
) -> str:
    """
    Render a teacher's week as Markdown, one table per day.

    `timetable` carries either `grouped` (day -> rows) or flat `rows`, plus an
    optional `teacher`. Touching periods with the same subject, class and room
    collapse into one line, e.g. periods 1 and 2 of Math become "1-2".
    """
    if not isinstance(timetable, t.Mapping):
        timetable = {}

    teacher = resolve_teacher(timetable, teachers)
    heading = to_text(title) or f"{teacher} timetable"

    grouped = timetable.get("grouped")
    groups = groups_from_grouped(grouped) if grouped else []
    if not groups:
        groups = groups_from_rows(timetable.get("rows"))
    if not groups:
        return f"No timetable entries found for {teacher}."

    lines = [f"## {heading}", ""]
    notes_text = to_text(notes)
    if notes_text:
        lines += [f"_{notes_text}_", ""]

    for group in order_day_groups(groups):
        merged = coalesce_day_slots(group.slots)
        if not merged:
            continue
        lines += [f"### {day_heading(group.weekday)}", ""]
        lines += _render_table(merged)
        lines.append("")

    return "\n".join(lines).rstrip()


def format_answer_payload(payload: t.Any) -> str:
    """Render a FULL_TIMETABLE envelope from the query service."""
    if not isinstance(payload, t.Mapping):
        payload = {}
    return format_full_timetable(
        payload.get("timetable"),
        title=payload.get("title"),
        notes=payload.get("notes"),
        teachers=payload.get("teachers"),
    )


def _distinct_candidates(candidates: t.Iterable[t.Any]) -> list[str]:
    names = (to_text(candidate) for candidate in candidates if candidate)
    return list(dict.fromkeys(name for name in names if name))


def format_clarify(descriptor: t.Any, question: t.Optional[str] = None) -> str:
    """
    Ask the user to disambiguate, e.g. when "Jane" matches two teachers.

    Lists each distinct candidate once in the order received, or asks for a
    more specific query when there are none.
    """
    clarify = ClarifyDescriptor.from_mapping(descriptor)
    lines = [f"### {to_text(clarify.message) or 'I need a little more detail to answer that.'}"]

    question_text = to_text(question)
    if question_text:
        lines += ["", f"_Question: {question_text}_"]

    candidates = _distinct_candidates(clarify.candidates)
    kind = to_text(clarify.type).lower() or "entry"
    searched = to_text(clarify.input)

    lines.append("")
    if candidates:
        if searched:
            lines.append(f'More than one {kind} matches "{searched}". Please pick one and ask again:')
        else:
            lines.append("Please pick one of the following and ask again:")
        lines.append("")
        lines += [f"- {name}" for name in candidates]
    elif searched:
        lines.append(f'Please be more specific than "{searched}" and ask again.')
    else:
        lines.append("Please be more specific and ask again.")

    return "\n".join(lines).rstrip()
