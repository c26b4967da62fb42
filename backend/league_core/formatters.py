"""Display helpers shared by the pages and overlays."""

from __future__ import annotations

import re
from typing import Any, Mapping

_ISO_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def format_ms(ms: Any) -> str:
    if ms is None:
        return "—"
    return f"{ms / 1000:.3f}s"


def format_date_maybe(value: str | None) -> str:
    """Trim ISO timestamps to the date part; anything else is shown as-is."""
    if not value:
        return "TBD"
    match = _ISO_DATE.match(value)
    if match:
        return match.group(1)
    return value


def race_number_label(race_number: Any) -> str:
    return f"{int(race_number or 0):02d}"


def race_title(event: Mapping[str, Any]) -> str:
    return f"Race {race_number_label(event.get('race_number'))}: {event.get('name') or 'TBD'}"


def event_option_label(event: Mapping[str, Any]) -> str:
    stage = event.get("stage_number")
    return (
        f"Race {race_number_label(event.get('race_number'))} "
        f"(Stage {stage if stage is not None else '—'}) — {event.get('name') or 'TBD'}"
    )


def format_points(value: Any) -> str:
    if value is None:
        return "—"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_average(value: float | None, digits: int = 1) -> str:
    if value is None:
        return "—"
    return f"{value:.{digits}f}"


def initials(name: str | None) -> str:
    parts = (name or "").split()[:2]
    letters = "".join(part[0].upper() for part in parts if part)
    return letters or "?"
