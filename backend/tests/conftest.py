from __future__ import annotations

import copy
import itertools
import types
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from league_core import loader as loader_module

SUPABASE_ENV = (
    "SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SCHEMA",
    "SUPABASE_BROADCAST_TABLE",
    "BROADCAST_ADMIN_TOKEN",
)


def _matches(row: Dict[str, Any], column: str, expression: str) -> bool:
    value = row.get(column)
    text = str(value).lower() if isinstance(value, bool) else str(value)
    if expression.startswith("eq."):
        return text == expression[3:]
    if expression.startswith("in.(") and expression.endswith(")"):
        options = [item.strip().strip('"') for item in expression[4:-1].split(",")]
        return text in options
    raise AssertionError(f"Unsupported filter {column}={expression}")


def _apply_order(rows: List[Dict[str, Any]], order: str) -> List[Dict[str, Any]]:
    for clause in reversed(order.split(",")):
        column, _, direction = clause.partition(".")
        present = [row for row in rows if row.get(column) is not None]
        missing = [row for row in rows if row.get(column) is None]
        present.sort(key=lambda row: row[column], reverse=direction == "desc")
        rows = present + missing
    return rows


class FakeSupabase:
    """Just enough of PostgREST to exercise DataStore: eq/in filters, order, limit, insert, patch."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables or {})
        self.failures: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self.requests: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def fail(self, table: str, message: str, method: str = "GET", status: int = 400) -> None:
        self.failures[(method, table)] = (status, message)

    def _table_name(self, endpoint: str) -> str:
        return endpoint.rsplit("/rest/v1/", 1)[1]

    def _failure(self, method: str, endpoint: str) -> Optional[httpx.Response]:
        failure = self.failures.get((method, self._table_name(endpoint)))
        if failure is None:
            return None
        status, message = failure
        return httpx.Response(status, json={"message": message}, request=httpx.Request(method, endpoint))

    def handle(self, method: str, endpoint: str, params: Dict[str, Any], json: Any, headers: Dict[str, str]):
        self.requests.append(
            {"method": method, "endpoint": endpoint, "params": dict(params or {}), "json": json, "headers": headers}
        )
        failure = self._failure(method, endpoint)
        if failure is not None:
            return failure

        table = self.tables.setdefault(self._table_name(endpoint), [])
        request = httpx.Request(method, endpoint)
        filters = {
            key: value for key, value in (params or {}).items() if key not in ("select", "order", "limit")
        }
        selected = [row for row in table if all(_matches(row, col, expr) for col, expr in filters.items())]

        if method == "GET":
            if params.get("order"):
                selected = _apply_order(selected, params["order"])
            if params.get("limit") is not None:
                selected = selected[: int(params["limit"])]
            return httpx.Response(200, json=copy.deepcopy(selected), request=request)
        if method == "POST":
            record = dict(json)
            record.setdefault("id", next(self._ids))
            table.append(record)
            return httpx.Response(201, request=request)
        if method == "PATCH":
            for row in selected:
                row.update(json)
            return httpx.Response(204, request=request)
        raise AssertionError(f"Unexpected method {method}")

    def client_class(self):
        fake = self

        class _Client:
            def __init__(self, *args: Any, **kwargs: Any) -> None:
                pass

            def __enter__(self) -> "_Client":
                return self

            def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean up
                return None

            def get(self, endpoint: str, params: Dict[str, Any], headers: Dict[str, str]):
                return fake.handle("GET", endpoint, params, None, headers)

            def post(self, endpoint: str, params: Dict[str, Any], json: Any, headers: Dict[str, str]):
                return fake.handle("POST", endpoint, params, json, headers)

            def patch(self, endpoint: str, params: Dict[str, Any], json: Any, headers: Dict[str, str]):
                return fake.handle("PATCH", endpoint, params, json, headers)

        return _Client


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in SUPABASE_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def supabase_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")


@pytest.fixture
def fake_supabase(monkeypatch: pytest.MonkeyPatch, supabase_env) -> FakeSupabase:
    fake = FakeSupabase()
    fake_httpx = types.SimpleNamespace(
        Client=fake.client_class(),
        HTTPError=httpx.HTTPError,
        HTTPStatusError=httpx.HTTPStatusError,
        Response=httpx.Response,
    )
    monkeypatch.setattr(loader_module, "httpx", fake_httpx)
    return fake


@pytest.fixture
def league_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "people": [
            {"id": "p-alice", "display_name": "Alice Archer", "is_human": True},
            {"id": "p-bob", "display_name": "Bob Brake", "is_human": True},
            {"id": "p-cara", "display_name": "Cara Corner", "is_human": True},
            {"id": "p-ai", "display_name": "AI Pacer", "is_human": False},
        ],
        "teams": [
            {"id": "t-red", "name": "Red Line"},
            {"id": "t-apex", "name": "Apex Hunters"},
        ],
        "team_members": [
            {"team_id": "t-red", "person_id": "p-alice"},
            {"team_id": "t-red", "person_id": "p-ai"},
            {"team_id": "t-apex", "person_id": "p-bob"},
        ],
        "events": [
            {"id": "e-1", "name": "Road Atlanta", "race_number": 1, "stage_number": 1, "event_date": "2026-03-01T19:00:00Z", "location": "GA"},
            {"id": "e-2", "name": "Laguna Seca", "race_number": 2, "stage_number": 1, "event_date": None, "location": None},
            {"id": "e-3", "name": "Spa", "race_number": 3, "stage_number": 2, "event_date": "2026-04-01", "location": "BE"},
        ],
        "iracing_races": [
            {"id": "r-1", "event_id": "e-1", "created_at": "2026-03-01T21:00:00Z"},
            {"id": "r-1b", "event_id": "e-1", "created_at": "2026-03-01T22:00:00Z"},
            {"id": "r-2", "event_id": "e-2", "created_at": "2026-03-08T21:00:00Z"},
            {"id": "r-3", "event_id": "e-3", "created_at": "2026-04-01T21:00:00Z"},
        ],
        "v_iracing_race_points_calc": [
            {
                "race_id": "r-1", "person_id": "p-alice", "is_human": True, "base_points": 40, "total_points": 47,
                "breakdown": {"bonuses": {"pole_position": 3, "fastest_lap": 2, "clean_race": 2}, "penalties": {}},
            },
            {
                "race_id": "r-1", "person_id": "p-bob", "is_human": True, "base_points": 35, "total_points": 34,
                "breakdown": {"bonuses": {"most_laps_led": 2}, "penalties": {"incidents": -3}},
            },
            {
                "race_id": "r-2", "person_id": "p-bob", "is_human": True, "base_points": 40, "total_points": 45,
                "breakdown": {"bonuses": {"pole_position": 3, "clean_race": 2}},
            },
            {
                "race_id": "r-2", "person_id": "p-alice", "is_human": True, "base_points": 30, "total_points": 30,
                "breakdown": None,
            },
            {
                "race_id": "r-2", "person_id": "p-ai", "is_human": False, "base_points": 50, "total_points": 50,
                "breakdown": None,
            },
            {
                "race_id": "r-3", "person_id": "p-cara", "is_human": True, "base_points": 40, "total_points": 40,
                "breakdown": None,
            },
        ],
        "v_iracing_season_standings": [
            {"person_id": "p-alice", "driver": "Alice Archer", "season_points_counted": 77},
            {"person_id": "p-bob", "driver": "Bob Brake", "season_points_counted": 79},
            {"person_id": "p-ai", "driver": "AI Pacer", "season_points_counted": 90},
        ],
        "v_iracing_stage_standings": [
            {"season_id": "s-1", "stage_number": 1, "person_id": "p-alice", "driver": "Alice Archer", "stage_points_counted": 77},
            {"season_id": "s-1", "stage_number": 1, "person_id": "p-bob", "driver": "Bob Brake", "stage_points_counted": 79},
            {"season_id": "s-1", "stage_number": 1, "person_id": "p-ai", "driver": "AI Pacer", "stage_points_counted": 90},
            {"season_id": "s-1", "stage_number": 2, "person_id": "p-alice", "driver": "Alice Archer", "stage_points_counted": 12},
        ],
        "v_iracing_team_season_standings": [
            {"team_id": "t-red", "team": "Red Line", "team_season_points": "120"},
            {"team_id": "t-apex", "team": "Apex Hunters", "team_season_points": 140},
        ],
        "v_iracing_team_stage_standings": [
            {"season_id": "s-1", "stage_number": 1, "team_id": "t-red", "team": "Red Line", "team_stage_points": 120},
            {"season_id": "s-1", "stage_number": 1, "team_id": "t-apex", "team": "Apex Hunters", "team_stage_points": 140},
        ],
        "v_iracing_team_race_points": [
            {"season_id": "s-1", "stage_number": 1, "race_number": 1, "race_id": "r-1", "team_id": "t-red",
             "team_name": "Red Line", "team_points_sum": 47, "team_top5_bonus": 5, "team_total_points": 52},
            {"season_id": "s-1", "stage_number": 1, "race_number": 2, "race_id": "r-2", "team_id": "t-red",
             "team_name": "Red Line", "team_points_sum": 30, "team_top5_bonus": 0, "team_total_points": 30},
        ],
        "iracing_results_raw": [
            {"race_id": "r-1b", "person_id": "p-alice", "finish_position": 1, "start_position": 2, "laps_led": 10,
             "fastest_lap_time_ms": 81234, "incidents": 0, "status": "Running", "created_at": "2026-03-01T22:30:00Z",
             "people": {"id": "p-alice", "display_name": "Alice Archer", "is_human": True}},
            {"race_id": "r-1b", "person_id": "p-ai", "finish_position": 2, "start_position": 1, "laps_led": 20,
             "fastest_lap_time_ms": 80000, "incidents": 0, "status": "Running", "created_at": "2026-03-01T22:30:00Z",
             "people": {"id": "p-ai", "display_name": "AI Pacer", "is_human": False}},
            {"race_id": "r-1b", "person_id": "p-bob", "finish_position": 3, "start_position": 3, "laps_led": 0,
             "fastest_lap_time_ms": 81000, "incidents": 4, "status": "Running", "created_at": "2026-03-01T22:30:00Z",
             "people": {"id": "p-bob", "display_name": "Bob Brake", "is_human": True}},
            {"race_id": "r-2", "person_id": "p-alice", "finish_position": 4, "start_position": 5, "laps_led": None,
             "fastest_lap_time_ms": None, "incidents": 2, "status": "Running", "created_at": "2026-03-08T22:30:00Z",
             "people": {"id": "p-alice", "display_name": "Alice Archer", "is_human": True}},
        ],
        "iracing_points_awarded": [
            {"race_id": "r-1b", "total_points": 47, "people": {"id": "p-alice", "display_name": "Alice Archer"}},
            {"race_id": "r-1b", "total_points": 34, "people": {"id": None, "display_name": "Bob Brake"}},
        ],
    }


@pytest.fixture
def league(fake_supabase: FakeSupabase, league_tables) -> FakeSupabase:
    fake_supabase.tables.update(copy.deepcopy(league_tables))
    return fake_supabase
