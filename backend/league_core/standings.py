from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


BONUS_FIELDS = {
    "pole_position": "pole_bonus",
    "most_laps_led": "most_laps_led_bonus",
    "fastest_lap": "fastest_lap_bonus",
    "clean_race": "clean_race_bonus",
}


def to_number(value: Any) -> float:
    """Coerce a view column to a number; missing, invalid or non-finite values count as 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def _breakdown_value(section: Any, key: str) -> float:
    if not isinstance(section, Mapping):
        return 0
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value if math.isfinite(value) else 0


@dataclass
class DriverStageTotals:
    """Stage totals for one driver, summed over the per-race point rows."""

    person_id: str
    driver: str
    stage_number: int
    base_total: float = 0
    pole_bonus: float = 0
    most_laps_led_bonus: float = 0
    fastest_lap_bonus: float = 0
    clean_race_bonus: float = 0
    incidents_penalty: float = 0
    total_points: float = 0
    races: int = 0
    position: int | None = None

    def add(self, row: Mapping[str, Any]) -> None:
        breakdown = row.get("breakdown")
        if not isinstance(breakdown, Mapping):
            breakdown = {}
        bonuses = breakdown.get("bonuses") or {}
        penalties = breakdown.get("penalties") or {}

        self.base_total += to_number(row.get("base_points"))
        self.total_points += to_number(row.get("total_points"))
        for source_key, attr in BONUS_FIELDS.items():
            setattr(self, attr, getattr(self, attr) + _breakdown_value(bonuses, source_key))
        self.incidents_penalty += _breakdown_value(penalties, "incidents")
        self.races += 1

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def aggregate_driver_points(
    rows: Iterable[Mapping[str, Any]],
    names: Mapping[str, str],
    stage: int,
) -> List[DriverStageTotals]:
    """Group per-race point rows by driver and rank the stage totals.

    Only rows flagged ``is_human`` are counted. The result is sorted by total
    descending; drivers on equal points keep the order they first appeared in.
    """
    totals: Dict[str, DriverStageTotals] = {}
    for row in rows:
        if row.get("is_human") is not True:
            continue
        person_id = str(row.get("person_id") or "").strip()
        if not person_id:
            continue
        current = totals.get(person_id)
        if current is None:
            current = DriverStageTotals(
                person_id=person_id,
                driver=names.get(person_id) or "Unknown",
                stage_number=stage,
            )
            totals[person_id] = current
        current.add(row)

    ranked = sorted(totals.values(), key=lambda item: item.total_points, reverse=True)
    for index, item in enumerate(ranked, start=1):
        item.position = index
    return ranked


def rank_by_points(
    rows: Iterable[Mapping[str, Any]],
    points_key: str,
    limit: int | None = None,
) -> List[Dict[str, Any]]:
    """Stable sort by ``points_key`` descending, attaching ``position`` and numeric ``points``."""
    ranked = sorted(
        (dict(row) for row in rows),
        key=lambda item: to_number(item.get(points_key)),
        reverse=True,
    )
    if limit is not None:
        ranked = ranked[:limit]
    for index, item in enumerate(ranked, start=1):
        item["position"] = index
        item["points"] = to_number(item.get(points_key))
    return ranked


def find_position(
    rows: Iterable[Mapping[str, Any]],
    id_key: str,
    id_value: str,
    points_key: str,
) -> Tuple[Optional[int], Optional[float]]:
    for item in rank_by_points(rows, points_key):
        if str(item.get(id_key)) == str(id_value):
            return item["position"], item["points"]
    return None, None


def stage_summary(rows: Iterable[Mapping[str, Any]], points_key: str) -> Dict[str, Any]:
    stages = [
        {"stageNumber": row["stage_number"], "points": to_number(row.get(points_key))}
        for row in rows
        if isinstance(row.get("stage_number"), int) and not isinstance(row.get("stage_number"), bool)
    ]
    stages.sort(key=lambda item: item["stageNumber"])
    return {"stages": stages, "total": sum(item["points"] for item in stages)}


def _numbers(results: Sequence[Mapping[str, Any]], key: str) -> List[float]:
    return [
        row[key]
        for row in results
        if isinstance(row.get(key), (int, float)) and not isinstance(row.get(key), bool)
    ]


def _average(values: List[float]) -> float | None:
    return sum(values) / len(values) if values else None


def driver_stats(results: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    finishes = _numbers(results, "finish_position")
    fast_laps = _numbers(results, "fastest_lap_time_ms")
    return {
        "starts": len(results),
        "avgStart": _average(_numbers(results, "start_position")),
        "avgFinish": _average(finishes),
        "bestFinish": min(finishes) if finishes else None,
        "totalLapsLed": sum(_numbers(results, "laps_led")),
        "bestLapMs": min(fast_laps) if fast_laps else None,
        "avgIncidents": _average(_numbers(results, "incidents")),
    }


@dataclass
class ResultRow:
    person_id: str | None
    display_name: str
    finish_position: int | None
    start_position: int | None
    laps_led: int
    fastest_lap_time_ms: int | None
    incidents: int
    is_ai: bool
    points: float | None = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merge_results_with_points(
    raw: Iterable[Mapping[str, Any]],
    points: Iterable[Mapping[str, Any]],
) -> List[ResultRow]:
    """Join raw finishing rows with awarded points, matching on person id then display name."""
    points_by_key: Dict[str, Any] = {}
    for row in points:
        person = row.get("people") or {}
        key = person.get("id") or person.get("display_name")
        if key:
            points_by_key[str(key)] = row.get("total_points")

    merged: List[ResultRow] = []
    for row in raw:
        person = row.get("people") or {}
        name = person.get("display_name") or "Unknown"
        person_id = person.get("id")
        if person_id and str(person_id) in points_by_key:
            awarded = points_by_key[str(person_id)]
        else:
            awarded = points_by_key.get(name)
        merged.append(
            ResultRow(
                person_id=str(person_id) if person_id else None,
                display_name=name,
                finish_position=row.get("finish_position"),
                start_position=row.get("start_position"),
                laps_led=row.get("laps_led") or 0,
                fastest_lap_time_ms=row.get("fastest_lap_time_ms"),
                incidents=row.get("incidents") or 0,
                is_ai=person.get("is_human") is not True,
                points=awarded,
            )
        )
    return merged


def podium(rows: Iterable[ResultRow]) -> List[ResultRow]:
    placed = [row for row in rows if isinstance(row.finish_position, int) and row.finish_position <= 3]
    return sorted(placed, key=lambda row: row.finish_position)


@dataclass
class RaceHighlights:
    most_led: ResultRow | None = None
    fastest: ResultRow | None = None
    cleanest: ResultRow | None = None


def race_highlights(rows: Sequence[ResultRow]) -> RaceHighlights | None:
    if not rows:
        return None
    humans = [row for row in rows if not row.is_ai]

    by_laps = sorted(humans, key=lambda row: row.laps_led or 0, reverse=True)
    most_led = by_laps[0] if by_laps and (by_laps[0].laps_led or 0) > 0 else None

    timed = [row for row in humans if isinstance(row.fastest_lap_time_ms, int)]
    fastest = min(timed, key=lambda row: row.fastest_lap_time_ms) if timed else None

    cleanest = min(humans, key=lambda row: row.incidents or 0) if humans else None
    return RaceHighlights(most_led=most_led, fastest=fastest, cleanest=cleanest)


def recent_team_races(rows: Iterable[Mapping[str, Any]], limit: int = 10) -> List[Dict[str, Any]]:
    def sort_key(row: Mapping[str, Any]) -> float:
        return to_number(row.get("stage_number")) * 1000 + to_number(row.get("race_number"))

    ordered = sorted((dict(row) for row in rows), key=sort_key, reverse=True)
    return ordered[:limit]


def human_counts_by_team(
    members: Iterable[Mapping[str, Any]],
    people: Iterable[Mapping[str, Any]],
) -> Dict[str, int]:
    humans = {str(person.get("id")) for person in people if person.get("is_human")}
    counts: Dict[str, int] = {}
    for member in members:
        if str(member.get("person_id")) not in humans:
            continue
        team_id = str(member.get("team_id"))
        counts[team_id] = counts.get(team_id, 0) + 1
    return counts


def team_name_by_person(
    members: Iterable[Mapping[str, Any]],
    teams: Iterable[Mapping[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    team_by_id = {str(team.get("id")): team for team in teams}
    mapping: Dict[str, Dict[str, Any]] = {}
    for member in members:
        person_id = member.get("person_id")
        team_id = member.get("team_id")
        if not person_id or not team_id:
            continue
        team = team_by_id.get(str(team_id)) or {}
        mapping[str(person_id)] = {"id": str(team_id), "name": team.get("name") or "Team"}
    return mapping


def filter_by_name(rows: Iterable[Any], needle: str | None, key: str) -> List[Any]:
    """Case-insensitive substring filter over dicts or objects."""
    items = list(rows)
    query = (needle or "").strip().lower()
    if not query:
        return items

    def name_of(item: Any) -> str:
        value = item.get(key) if isinstance(item, Mapping) else getattr(item, key, None)
        return str(value or "").lower()

    return [item for item in items if query in name_of(item)]


@dataclass
class StageGroup:
    label: str
    events: List[Dict[str, Any]] = field(default_factory=list)


def group_events_by_stage(events: Iterable[Mapping[str, Any]]) -> List[StageGroup]:
    groups: Dict[str, StageGroup] = {}
    for event in events:
        stage = event.get("stage_number")
        label = f"Stage {stage if stage is not None else '—'}"
        groups.setdefault(label, StageGroup(label=label)).events.append(dict(event))
    return list(groups.values())


def ticker_text(items: Sequence[Mapping[str, Any]]) -> str:
    if not items:
        return "Standings unavailable"
    return "   •   ".join(f"P{index} {item['name']} {item['pts']}" for index, item in enumerate(items, start=1))
