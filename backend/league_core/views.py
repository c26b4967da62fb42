"""Page models: each function performs a page's reads and returns what it renders.

Read failures never escape. They are reported through the ``error`` key so the
page can show them inline; the next refresh is the retry.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from . import standings
from .formatters import race_title
from .loader import DataStore

logger = logging.getLogger(__name__)

OVERLAY_LIMIT = 15
TICKER_LIMIT = 20
DRIVER_RESULTS_LIMIT = 20
RECENT_TEAM_RACES = 10

_PHOTO_SUFFIX = re.compile(r"\.(jpg|png)$", re.IGNORECASE)


def season_standings(store: DataStore, query: str | None = None) -> Dict[str, Any]:
    model: Dict[str, Any] = {"rows": [], "query": query or "", "error": None}
    try:
        rows = store.fetch_season_standings()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    ranked = standings.rank_by_points(rows, "season_points_counted")
    model["rows"] = standings.filter_by_name(ranked, query, "driver")
    return model


def driver_stage_standings(store: DataStore, stage: int = 1, query: str | None = None) -> Dict[str, Any]:
    """Aggregate per-race point rows into stage totals for human drivers."""
    model: Dict[str, Any] = {"stage": stage, "rows": [], "query": query or "", "error": None}
    try:
        event_ids = store.fetch_stage_event_ids(stage)
        race_ids = store.fetch_race_ids_for_events(event_ids)
        points_rows = store.fetch_race_points(race_ids, humans_only=True)
        person_ids = [row.get("person_id") for row in points_rows]
        people = store.fetch_people_by_ids(person_ids)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    names = {str(person["id"]): person.get("display_name") or "Unknown" for person in people if person.get("id")}
    totals = standings.aggregate_driver_points(points_rows, names, stage)
    model["rows"] = standings.filter_by_name(totals, query, "driver")
    return model


def team_stage_standings(store: DataStore, stage: int = 1, query: str | None = None) -> Dict[str, Any]:
    model: Dict[str, Any] = {"stage": stage, "rows": [], "query": query or "", "error": None}
    try:
        rows = store.fetch_team_stage_standings(stage=stage)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    ranked = standings.rank_by_points(rows, "team_stage_points")
    model["rows"] = standings.filter_by_name(ranked, query, "team")
    return model


def drivers_list(store: DataStore, query: str | None = None) -> Dict[str, Any]:
    model: Dict[str, Any] = {"drivers": [], "query": query or "", "error": None}
    try:
        people = store.fetch_people(humans_only=True)
        teams = store.fetch_teams()
        members = store.fetch_team_members()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    team_by_person = standings.team_name_by_person(members, teams)
    drivers = []
    for person in people:
        if person.get("id") in (None, ""):
            continue
        person_id = str(person["id"])
        team = team_by_person.get(person_id)
        drivers.append(
            {
                "id": person_id,
                "display_name": person.get("display_name"),
                "team_id": team["id"] if team else None,
                "team_name": team["name"] if team else None,
            }
        )
    drivers.sort(key=lambda item: (item["display_name"] or "").lower())
    model["drivers"] = standings.filter_by_name(drivers, query, "display_name")
    return model


def clean_person_id(raw: str | None) -> str:
    return _PHOTO_SUFFIX.sub("", raw or "")


def driver_profile(store: DataStore, raw_person_id: str | None) -> Dict[str, Any]:
    person_id = clean_person_id(raw_person_id)
    model: Dict[str, Any] = {
        "person_id": person_id,
        "person": None,
        "team": None,
        "season_position": None,
        "season_points": None,
        "stages": {"stages": [], "total": 0},
        "results": [],
        "stats": standings.driver_stats([]),
        "error": None,
    }
    if not person_id or person_id == "undefined":
        model["error"] = "Invalid driver link (missing id). Go back and click a driver again."
        return model

    try:
        person = store.fetch_person(person_id)
        if person is None:
            model["error"] = "Driver not found."
            return model
        model["person"] = person

        memberships = store.fetch_team_members(person_id=person_id)
        if memberships:
            model["team"] = store.fetch_team(str(memberships[0]["team_id"]))
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    # Standings views are empty or missing in preseason; the profile still renders.
    try:
        season_rows = store.fetch_season_standings()
    except RuntimeError as exc:
        logger.info("Season standings unavailable for driver %s (%s)", person_id, exc)
    else:
        position, points = standings.find_position(season_rows, "person_id", person_id, "season_points_counted")
        model["season_position"] = position
        model["season_points"] = points

    try:
        stage_rows = store.fetch_stage_standings(person_id=person_id)
    except RuntimeError as exc:
        logger.info("Stage standings unavailable for driver %s (%s)", person_id, exc)
    else:
        model["stages"] = standings.stage_summary(stage_rows, "stage_points_counted")

    try:
        results = store.fetch_driver_results(person_id, limit=DRIVER_RESULTS_LIMIT)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    model["results"] = results
    model["stats"] = standings.driver_stats(results)
    return model


def teams_list(store: DataStore, query: str | None = None) -> Dict[str, Any]:
    model: Dict[str, Any] = {"teams": [], "query": query or "", "error": None}
    try:
        teams = store.fetch_teams()
        members = store.fetch_team_members()
        people = store.fetch_people()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    counts = standings.human_counts_by_team(members, people)
    items = [
        {"id": str(team.get("id")), "name": team.get("name"), "human_count": counts.get(str(team.get("id")), 0)}
        for team in teams
    ]
    items = standings.filter_by_name(items, query, "name")
    items.sort(key=lambda item: (item["name"] or "").lower())
    model["teams"] = items
    return model


def team_profile(store: DataStore, team_id: str | None) -> Dict[str, Any]:
    model: Dict[str, Any] = {
        "team_id": team_id,
        "team": None,
        "members": [],
        "season_position": None,
        "season_points": None,
        "stages": [],
        "recent_races": [],
        "error": None,
    }
    if not team_id or team_id == "undefined":
        model["error"] = "Invalid team link (missing id). Go back and click a team again."
        return model

    try:
        team = store.fetch_team(team_id)
        if team is None:
            model["error"] = "Team not found."
            return model
        model["team"] = team

        member_ids = [row.get("person_id") for row in store.fetch_team_members(team_id=team_id)]
        people = store.fetch_people_by_ids(member_ids)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    model["members"] = [person for person in people if person.get("is_human")]

    try:
        season_rows = store.fetch_team_season_standings()
    except RuntimeError as exc:
        logger.info("Team season standings unavailable for %s (%s)", team_id, exc)
    else:
        position, points = standings.find_position(season_rows, "team_id", team_id, "team_season_points")
        model["season_position"] = position
        model["season_points"] = points

    try:
        stage_rows = store.fetch_team_stage_standings(team_id=team_id)
    except RuntimeError as exc:
        logger.info("Team stage standings unavailable for %s (%s)", team_id, exc)
    else:
        model["stages"] = standings.stage_summary(stage_rows, "team_stage_points")["stages"]

    try:
        race_rows = store.fetch_team_race_points(team_id)
    except RuntimeError as exc:
        logger.info("Team race points unavailable for %s (%s)", team_id, exc)
    else:
        model["recent_races"] = standings.recent_team_races(race_rows, limit=RECENT_TEAM_RACES)
    return model


def race_schedule(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"events": [], "stages": [], "error": None}
    try:
        events = store.fetch_events()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    model["events"] = events
    model["stages"] = standings.group_events_by_stage(events)
    return model


def race_results(store: DataStore, event_id: str) -> Dict[str, Any]:
    model: Dict[str, Any] = {
        "event": None,
        "title": "Race Results",
        "race_id": None,
        "rows": [],
        "podium": [],
        "highlights": None,
        "error": None,
    }
    try:
        event = store.fetch_event(event_id)
        if event is None:
            model["error"] = "Event not found."
            return model
        model["event"] = event
        model["title"] = race_title(event)

        race_id = store.fetch_latest_race_id(event_id)
        if race_id is None:
            return model
        model["race_id"] = race_id

        raw = store.fetch_race_results(race_id)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    # Awarded points are optional; results still render without them.
    try:
        points = store.fetch_points_awarded(race_id)
    except RuntimeError as exc:
        logger.info("Points not available for race %s (%s)", race_id, exc)
        points = []

    rows = standings.merge_results_with_points(raw, points)
    model["rows"] = rows
    model["podium"] = standings.podium(rows)
    model["highlights"] = standings.race_highlights(rows)
    return model


def control_room(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"events": [], "active_event_id": None, "error": None}
    try:
        model["events"] = store.fetch_events()
        model["active_event_id"] = store.fetch_active_event_id()
    except RuntimeError as exc:
        model["error"] = str(exc)
    return model


# ----------------------------------------------------------------------
# Overlays


def overlay_season_standings(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"title": "CHAMPIONSHIP STANDINGS", "rows": [], "error": None}
    try:
        rows = store.fetch_season_standings(limit=OVERLAY_LIMIT)
    except RuntimeError as exc:
        model["error"] = str(exc)
        model["title"] = "STANDINGS UNAVAILABLE"
        return model
    model["rows"] = standings.rank_by_points(rows, "season_points_counted")
    return model


def overlay_stage_standings(store: DataStore, stage: int = 1) -> Dict[str, Any]:
    model: Dict[str, Any] = {"title": f"STAGE {stage} STANDINGS", "stage": stage, "rows": [], "error": None}
    try:
        human_ids = store.fetch_human_ids()
        rows = store.fetch_stage_standings(stage=stage)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    humans = [row for row in rows if row.get("person_id") in human_ids]
    model["rows"] = [
        {"pos": item["position"], "driver": item.get("driver") or "Driver", "pts": item["points"]}
        for item in standings.rank_by_points(humans, "stage_points_counted", limit=OVERLAY_LIMIT)
    ]
    return model


def overlay_team_standings(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"title": "TEAM STANDINGS", "rows": [], "error": None}
    try:
        rows = store.fetch_team_season_standings()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model
    model["rows"] = [
        {"pos": item["position"], "team": item.get("team") or "Team", "pts": item["points"]}
        for item in standings.rank_by_points(rows, "team_season_points", limit=OVERLAY_LIMIT)
    ]
    return model


def overlay_leaderboard(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"title": "LIVE LEADERBOARD", "event_id": None, "rows": [], "error": None}
    try:
        event_id = store.fetch_active_event_id()
        if event_id is None:
            model["title"] = "NO LIVE RACE"
            return model
        model["event_id"] = event_id

        race_id: Optional[str] = store.fetch_latest_race_id(event_id)
        if race_id is None:
            return model
        raw = store.fetch_race_results(race_id)
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    try:
        points = store.fetch_points_awarded(race_id)
    except RuntimeError as exc:
        logger.info("Points not available for live race %s (%s)", race_id, exc)
        points = []

    merged = standings.merge_results_with_points(raw, points)
    model["rows"] = [
        {"pos": row.finish_position, "driver": row.display_name, "inc": row.incidents, "pts": row.points}
        for row in merged[:OVERLAY_LIMIT]
    ]
    return model


def overlay_ticker(store: DataStore) -> Dict[str, Any]:
    model: Dict[str, Any] = {"items": [], "text": standings.ticker_text([]), "error": None}
    try:
        human_ids = store.fetch_human_ids()
        rows = store.fetch_season_standings()
    except RuntimeError as exc:
        model["error"] = str(exc)
        return model

    humans = [row for row in rows if not row.get("person_id") or row.get("person_id") in human_ids]
    items: List[Dict[str, Any]] = [
        {"name": item.get("driver") or "Driver", "pts": item["points"]}
        for item in standings.rank_by_points(humans, "season_points_counted", limit=TICKER_LIMIT)
    ]
    model["items"] = items
    model["text"] = standings.ticker_text(items)
    return model
