from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import httpx


logger = logging.getLogger(__name__)


class BroadcastStoreError(RuntimeError):
    """Raised when the active-event pointer cannot be read or written."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DataStore:
    """Read access to the league tables and views exposed by Supabase."""

    def __init__(self) -> None:
        self.supabase_url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or ""
        self.supabase_key = (
            os.getenv("SUPABASE_ANON_KEY")
            or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
            or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or ""
        )
        # Writes prefer the service role so row level security does not block the pointer update.
        self.supabase_service_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")

        self.people_table = os.getenv("SUPABASE_PEOPLE_TABLE", "people")
        self.teams_table = os.getenv("SUPABASE_TEAMS_TABLE", "teams")
        self.team_members_table = os.getenv("SUPABASE_TEAM_MEMBERS_TABLE", "team_members")
        self.events_table = os.getenv("SUPABASE_EVENTS_TABLE", "events")
        self.races_table = os.getenv("SUPABASE_RACES_TABLE", "iracing_races")
        self.results_table = os.getenv("SUPABASE_RESULTS_TABLE", "iracing_results_raw")
        self.points_awarded_table = os.getenv("SUPABASE_POINTS_AWARDED_TABLE", "iracing_points_awarded")
        self.broadcast_table = os.getenv("SUPABASE_BROADCAST_TABLE", "broadcast_state")

        self.race_points_view = "v_iracing_race_points_calc"
        self.season_standings_view = "v_iracing_season_standings"
        self.stage_standings_view = "v_iracing_stage_standings"
        self.team_season_standings_view = "v_iracing_team_season_standings"
        self.team_stage_standings_view = "v_iracing_team_stage_standings"
        self.team_race_points_view = "v_iracing_team_race_points"

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # People & teams

    def fetch_people(self, humans_only: bool = False) -> List[Dict[str, Any]]:
        filters = {"is_human": "eq.true"} if humans_only else None
        return self._select(
            self.people_table,
            "id,display_name,is_human",
            filters=filters,
            order="display_name.asc",
        )

    def fetch_person(self, person_id: str) -> Optional[Dict[str, Any]]:
        return self._select_one(
            self.people_table,
            "id,display_name,is_human",
            filters={"id": f"eq.{person_id}"},
        )

    def fetch_people_by_ids(self, person_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = _unique(person_ids)
        if not ids:
            return []
        return self._select(
            self.people_table,
            "id,display_name,is_human",
            filters={"id": _in_filter(ids)},
            order="display_name.asc",
        )

    def fetch_human_ids(self) -> set[str]:
        rows = self._select(self.people_table, "id", filters={"is_human": "eq.true"})
        return {str(row["id"]) for row in rows if row.get("id")}

    def fetch_teams(self) -> List[Dict[str, Any]]:
        return self._select(self.teams_table, "id,name", order="name.asc")

    def fetch_team(self, team_id: str) -> Optional[Dict[str, Any]]:
        return self._select_one(self.teams_table, "id,name", filters={"id": f"eq.{team_id}"})

    def fetch_team_members(
        self,
        team_id: str | None = None,
        person_id: str | None = None,
    ) -> List[Dict[str, Any]]:
        filters: Dict[str, str] = {}
        if team_id:
            filters["team_id"] = f"eq.{team_id}"
        if person_id:
            filters["person_id"] = f"eq.{person_id}"
        return self._select(self.team_members_table, "team_id,person_id", filters=filters)

    # ------------------------------------------------------------------
    # Events, race sessions & results

    def fetch_events(self) -> List[Dict[str, Any]]:
        return self._select(
            self.events_table,
            "id,name,race_number,stage_number,event_date,location",
            order="race_number.asc",
        )

    def fetch_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self._select_one(
            self.events_table,
            "id,name,race_number,stage_number,location,event_date",
            filters={"id": f"eq.{event_id}"},
        )

    def fetch_stage_event_ids(self, stage: int) -> List[str]:
        rows = self._select(self.events_table, "id,stage_number", filters={"stage_number": f"eq.{int(stage)}"})
        return [str(row["id"]) for row in rows if row.get("id")]

    def fetch_latest_race_id(self, event_id: str) -> Optional[str]:
        """Return the most recently created race session for an event."""
        row = self._select_one(
            self.races_table,
            "id",
            filters={"event_id": f"eq.{event_id}"},
            order="created_at.desc",
        )
        if not row or not row.get("id"):
            return None
        return str(row["id"])

    def fetch_race_ids_for_events(self, event_ids: Iterable[str]) -> List[str]:
        ids = _unique(event_ids)
        if not ids:
            return []
        rows = self._select(self.races_table, "id,event_id", filters={"event_id": _in_filter(ids)})
        return [str(row["id"]) for row in rows if row.get("id")]

    def fetch_race_results(self, race_id: str) -> List[Dict[str, Any]]:
        return self._select(
            self.results_table,
            "finish_position,start_position,laps_led,fastest_lap_time_ms,incidents,"
            "people!inner(id,display_name,is_human)",
            filters={"race_id": f"eq.{race_id}"},
            order="finish_position.asc",
        )

    def fetch_points_awarded(self, race_id: str) -> List[Dict[str, Any]]:
        return self._select(
            self.points_awarded_table,
            "total_points,people!inner(id,display_name)",
            filters={"race_id": f"eq.{race_id}"},
        )

    def fetch_race_points(self, race_ids: Iterable[str], humans_only: bool = True) -> List[Dict[str, Any]]:
        ids = _unique(race_ids)
        if not ids:
            return []
        filters = {"race_id": _in_filter(ids)}
        if humans_only:
            filters["is_human"] = "eq.true"
        return self._select(
            self.race_points_view,
            "race_id,person_id,is_human,base_points,total_points,breakdown",
            filters=filters,
        )

    def fetch_driver_results(self, person_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return self._select(
            self.results_table,
            "race_id,finish_position,start_position,laps_led,fastest_lap_time_ms,incidents,status,created_at",
            filters={"person_id": f"eq.{person_id}"},
            order="created_at.desc",
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Standings views

    def fetch_season_standings(self, limit: int | None = None) -> List[Dict[str, Any]]:
        return self._select(
            self.season_standings_view,
            "person_id,driver,season_points_counted",
            order="season_points_counted.desc",
            limit=limit,
        )

    def fetch_stage_standings(
        self,
        stage: int | None = None,
        person_id: str | None = None,
    ) -> List[Dict[str, Any]]:
        filters: Dict[str, str] = {}
        if stage is not None:
            filters["stage_number"] = f"eq.{int(stage)}"
        if person_id:
            filters["person_id"] = f"eq.{person_id}"
        return self._select(
            self.stage_standings_view,
            "season_id,stage_number,person_id,driver,stage_points_counted",
            filters=filters,
            order="stage_number.asc",
        )

    def fetch_team_season_standings(self) -> List[Dict[str, Any]]:
        return self._select(self.team_season_standings_view, "team_id,team,team_season_points")

    def fetch_team_stage_standings(
        self,
        stage: int | None = None,
        team_id: str | None = None,
    ) -> List[Dict[str, Any]]:
        filters: Dict[str, str] = {}
        if stage is not None:
            filters["stage_number"] = f"eq.{int(stage)}"
        if team_id:
            filters["team_id"] = f"eq.{team_id}"
        order = "team_stage_points.desc" if stage is not None else "stage_number.asc"
        return self._select(
            self.team_stage_standings_view,
            "season_id,stage_number,team_id,team,team_stage_points",
            filters=filters,
            order=order,
        )

    def fetch_team_race_points(self, team_id: str) -> List[Dict[str, Any]]:
        return self._select(
            self.team_race_points_view,
            "season_id,stage_number,race_number,race_id,team_id,team_name,"
            "team_points_sum,team_top5_bonus,team_total_points",
            filters={"team_id": f"eq.{team_id}"},
            order="stage_number.asc,race_number.asc",
        )

    # ------------------------------------------------------------------
    # Broadcast pointer

    def fetch_active_event_id(self) -> Optional[str]:
        row = self._select_one(self.broadcast_table, "active_event_id")
        if not row or not row.get("active_event_id"):
            return None
        return str(row["active_event_id"])

    def set_active_event(self, event_id: str) -> Dict[str, Any]:
        """Point the single broadcast_state row at ``event_id``.

        The first row is updated in place; a row is inserted only when the
        table is empty.
        """
        if not (self.supabase_url and self.supabase_service_key):
            raise RuntimeError(
                "Missing SUPABASE_URL and/or SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) in env"
            )

        endpoint = self._supabase_endpoint(self.broadcast_table)
        read_headers = self._supabase_headers(key=self.supabase_service_key, include_content_profile=False)
        write_headers = self._supabase_headers("return=minimal", key=self.supabase_service_key)
        write_headers["Content-Type"] = "application/json"
        record = {"active_event_id": event_id}

        with httpx.Client(timeout=10.0) as client:
            try:
                response = client.get(endpoint, params={"select": "id", "limit": "1"}, headers=read_headers)
                response.raise_for_status()
                rows = response.json()
            except httpx.HTTPStatusError as exc:
                raise BroadcastStoreError(
                    f"Select {self.broadcast_table} failed",
                    self._extract_supabase_detail(exc.response) or str(exc),
                ) from exc
            except httpx.HTTPError as exc:
                raise BroadcastStoreError(f"Select {self.broadcast_table} failed", str(exc)) from exc

            existing_id = None
            if isinstance(rows, list) and rows and isinstance(rows[0], dict):
                existing_id = rows[0].get("id")

            if existing_id is None:
                action = "Insert"
                params: Dict[str, Any] = {}
                call = client.post
            else:
                action = "Update"
                params = {"id": f"eq.{existing_id}"}
                call = client.patch

            try:
                response = call(endpoint, params=params, json=record, headers=write_headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise BroadcastStoreError(
                    f"{action} {self.broadcast_table} failed",
                    self._extract_supabase_detail(exc.response) or str(exc),
                ) from exc
            except httpx.HTTPError as exc:
                raise BroadcastStoreError(f"{action} {self.broadcast_table} failed", str(exc)) from exc

        logger.info("Active broadcast event set to %s (%s)", event_id, action.lower())
        return {"id": existing_id, "active_event_id": event_id, "created": existing_id is None}

    # ------------------------------------------------------------------
    # REST helpers

    def _select(
        self,
        table: str,
        select: str,
        filters: Dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        if not self.configured:
            raise RuntimeError("Supabase is not configured (set SUPABASE_URL and SUPABASE_ANON_KEY)")

        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers(include_content_profile=False)
        params: Dict[str, Any] = {"select": select}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.get(endpoint, params=params, headers=headers)
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            logger.warning("Supabase %s query failed (%s)", table, detail or exc)
            raise RuntimeError(detail or f"Failed to query {table}: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s query failed (%s)", table, exc)
            raise RuntimeError(f"Failed to query {table}: {exc}") from exc

        if not isinstance(rows, list):
            raise RuntimeError(f"Unexpected payload from Supabase {table} endpoint")
        return [row for row in rows if isinstance(row, dict)]

    def _select_one(
        self,
        table: str,
        select: str,
        filters: Dict[str, str] | None = None,
        order: str | None = None,
    ) -> Optional[Dict[str, Any]]:
        rows = self._select(table, select, filters=filters, order=order, limit=1)
        return rows[0] if rows else None

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(
        self,
        prefer: str | None = None,
        include_content_profile: bool = True,
        key: str | None = None,
    ) -> Dict[str, str]:
        api_key = key or self.supabase_key
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        if include_content_profile and self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        if isinstance(payload, list) and payload:
            first = payload[0]
            if isinstance(first, dict):
                for key in ("message", "detail", "error", "hint", "code"):
                    value = first.get(key)
                    if isinstance(value, str) and value.strip():
                        return value.strip()
        return None


def _unique(values: Iterable[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


def _in_filter(values: List[str]) -> str:
    quoted = ",".join('"' + value.replace('"', '\\"') + '"' for value in values)
    return f"in.({quoted})"
