"""Free-text notes carried by Google tasks.

Notes are parsed line by line with a ``key: value`` grammar: the key is
everything before the first colon (case-insensitive, surrounding spaces
trimmed), the value everything after it. Lines without a colon, with an
empty key or with an empty value are ignored; a later line wins over an
earlier one with the same key. Recognised keys:

* ``company`` / ``company name``
* ``brand``
* ``assigned to`` / ``assignee``
* ``assigned by`` / ``assigner``

The parser is heuristic: it is only as good as what users type into the
Google Tasks notes field, so every value is optional.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from services.task_repository import normalize_email


@dataclass(frozen=True)
class NotesFields:
    company_name: Optional[str] = None
    brand: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None


def parse_key_values(notes: Optional[str]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for raw_line in str(notes or "").splitlines():
        line = raw_line.strip()
        idx = line.find(":")
        if idx <= 0:
            continue
        key = line[:idx].strip().lower()
        value = line[idx + 1:].strip()
        if not key or not value:
            continue
        fields[key] = value
    return fields


def _first(fields: Dict[str, str], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        if fields.get(key):
            return fields[key]
    return None


def parse_notes_fields(notes: Optional[str]) -> NotesFields:
    fields = parse_key_values(notes)
    if not fields:
        return NotesFields()
    assigned_to = _first(fields, ("assigned to", "assignee"))
    assigned_by = _first(fields, ("assigned by", "assigner"))
    return NotesFields(
        company_name=_first(fields, ("company", "company name")),
        brand=_first(fields, ("brand",)),
        assigned_to=normalize_email(assigned_to) or None,
        assigned_by=normalize_email(assigned_by) or None,
    )


def build_notes(task, attendees: Iterable[str] = ()) -> str:
    """Render the notes body written when a local task is first pushed to Google."""
    lines = [
        ("Task", getattr(task, "title", None)),
        ("Company", getattr(task, "company_name", None)),
        ("Brand", getattr(task, "brand", None)),
        ("Priority", getattr(task, "priority", None)),
        ("Task Type", getattr(task, "task_type", None)),
        ("Status", getattr(task, "status", None)),
        ("Assigned By", getattr(task, "assigned_by", None)),
        ("Assigned To", getattr(task, "assigned_to", None)),
    ]
    emails = [normalize_email(e) for e in attendees if normalize_email(e)]
    if emails:
        lines.append(("Attendees", ", ".join(emails)))
    return "\n".join(f"{label}: {value}" for label, value in lines if value)


__all__ = ["NotesFields", "build_notes", "parse_key_values", "parse_notes_fields"]
