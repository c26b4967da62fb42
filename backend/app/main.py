from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field

from league_core import DataStore, broadcast, formatters, photos, views

logger = logging.getLogger(__name__)

app = FastAPI(title="Race League Broadcast API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

TEMPLATES_DIR = Path(__file__).parent / "templates"
PHOTOS_DIR = Path(os.getenv("DRIVER_PHOTOS_DIR", "public/drivers-photos"))
PHOTOS_URL = "/drivers-photos"

if PHOTOS_DIR.is_dir():
    app.mount(PHOTOS_URL, StaticFiles(directory=str(PHOTOS_DIR)), name="drivers-photos")

NAV_ITEMS = [
    ("/", "Home"),
    ("/standings", "Standings"),
    ("/races", "Races"),
    ("/drivers", "Drivers"),
    ("/teams", "Teams"),
]
ADMIN_NAV_ITEMS = [("/control-room", "Control Room")]

# Seconds between automatic refreshes; the refresh doubles as the retry after a failed read.
REFRESH_SECONDS = {
    "overlay_standings": 3,
    "overlay_leaderboard": 3,
    "overlay_stage_standings": 6,
    "overlay_team_standings": 6,
    "overlay_ticker": 6,
    "teams": 10,
    "team_profile": 12,
}

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals["nav_items"] = NAV_ITEMS
templates.env.globals["admin_nav_items"] = ADMIN_NAV_ITEMS
templates.env.globals["format_ms"] = formatters.format_ms
templates.env.globals["format_date"] = formatters.format_date_maybe
templates.env.globals["format_points"] = formatters.format_points
templates.env.globals["format_average"] = formatters.format_average
templates.env.globals["race_number_label"] = formatters.race_number_label
templates.env.globals["event_option_label"] = formatters.event_option_label


class SeasonStandingRowModel(BaseModel):
    position: int
    person_id: Optional[str] = Field(default=None, alias="personId")
    driver: Optional[str] = None
    points: float

    model_config = ConfigDict(populate_by_name=True)


class SeasonStandingsResponse(BaseModel):
    rows: List[SeasonStandingRowModel]
    error: Optional[str] = None


class DriverStageRowModel(BaseModel):
    position: Optional[int] = None
    person_id: str = Field(alias="personId")
    driver: str
    stage_number: int = Field(alias="stageNumber")
    base_total: float = Field(alias="baseTotal")
    pole_bonus: float = Field(alias="poleBonus")
    most_laps_led_bonus: float = Field(alias="mostLapsLedBonus")
    fastest_lap_bonus: float = Field(alias="fastestLapBonus")
    clean_race_bonus: float = Field(alias="cleanRaceBonus")
    incidents_penalty: float = Field(alias="incidentsPenalty")
    total_points: float = Field(alias="totalPoints")
    races: int

    model_config = ConfigDict(populate_by_name=True)


class DriverStageStandingsResponse(BaseModel):
    stage: int
    rows: List[DriverStageRowModel]
    error: Optional[str] = None


class TeamStandingRowModel(BaseModel):
    position: int
    team_id: Optional[str] = Field(default=None, alias="teamId")
    team: Optional[str] = None
    stage_number: Optional[int] = Field(default=None, alias="stageNumber")
    points: float

    model_config = ConfigDict(populate_by_name=True)


class TeamStageStandingsResponse(BaseModel):
    stage: int
    rows: List[TeamStandingRowModel]
    error: Optional[str] = None


class ActiveEventResponse(BaseModel):
    active_event_id: Optional[str] = Field(default=None, alias="activeEventId")

    model_config = ConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def store() -> DataStore:
    return DataStore()


def driver_photos() -> Dict[str, str]:
    return photos.load_manifest(PHOTOS_DIR / photos.MANIFEST_NAME)


def _render(request: Request, template: str, context: Dict[str, Any], refresh: int | None = None) -> HTMLResponse:
    context = {"current_path": request.url.path, "refresh": refresh, **context}
    return templates.TemplateResponse(request, template, context)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# JSON API


@app.get("/api/standings", response_model=SeasonStandingsResponse)
def api_season_standings(q: Optional[str] = Query(default=None)):
    model = views.season_standings(store(), q)
    return SeasonStandingsResponse(
        rows=[
            SeasonStandingRowModel(
                position=row["position"],
                personId=row.get("person_id"),
                driver=row.get("driver"),
                points=row["points"],
            )
            for row in model["rows"]
        ],
        error=model["error"],
    )


@app.get("/api/stage-standings/drivers", response_model=DriverStageStandingsResponse)
def api_driver_stage_standings(stage: int = Query(default=1, ge=1), q: Optional[str] = Query(default=None)):
    model = views.driver_stage_standings(store(), stage, q)
    return DriverStageStandingsResponse(
        stage=stage,
        rows=[DriverStageRowModel(**row.as_dict()) for row in model["rows"]],
        error=model["error"],
    )


@app.get("/api/stage-standings/teams", response_model=TeamStageStandingsResponse)
def api_team_stage_standings(stage: int = Query(default=1, ge=1), q: Optional[str] = Query(default=None)):
    model = views.team_stage_standings(store(), stage, q)
    return TeamStageStandingsResponse(
        stage=stage,
        rows=[
            TeamStandingRowModel(
                position=row["position"],
                teamId=row.get("team_id"),
                team=row.get("team"),
                stageNumber=row.get("stage_number"),
                points=row["points"],
            )
            for row in model["rows"]
        ],
        error=model["error"],
    )


@app.get("/api/drivers")
def api_drivers(q: Optional[str] = Query(default=None)):
    return jsonable_encoder(views.drivers_list(store(), q))


@app.get("/api/drivers/{person_id}")
def api_driver_profile(person_id: str):
    model = views.driver_profile(store(), person_id)
    model["avatar"] = photos.avatar(model["person_id"], (model["person"] or {}).get("display_name"), driver_photos())
    return jsonable_encoder(model)


@app.get("/api/teams")
def api_teams(q: Optional[str] = Query(default=None)):
    return jsonable_encoder(views.teams_list(store(), q))


@app.get("/api/teams/{team_id}")
def api_team_profile(team_id: str):
    return jsonable_encoder(views.team_profile(store(), team_id))


@app.get("/api/races")
def api_races():
    return jsonable_encoder(views.race_schedule(store()))


@app.get("/api/races/{event_id}")
def api_race_results(event_id: str):
    return jsonable_encoder(views.race_results(store(), event_id))


@app.get("/api/broadcast/active-event", response_model=ActiveEventResponse)
def api_active_event():
    try:
        return ActiveEventResponse(activeEventId=store().fetch_active_event_id())
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/broadcast/set-active-event")
async def api_set_active_event(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    try:
        result = broadcast.set_active_event(
            store(),
            request.headers,
            body,
            os.getenv("BROADCAST_ADMIN_TOKEN"),
        )
    except Exception as exc:
        logger.exception("Unexpected failure setting the active event")
        return JSONResponse({"ok": False, "error": str(exc) or "Unknown error"}, status_code=500)
    return JSONResponse(result.payload, status_code=result.status_code)


# ----------------------------------------------------------------------
# Pages


@app.get("/", response_class=HTMLResponse)
def home_page(request: Request):
    return _render(request, "home.html", {})


@app.get("/standings", response_class=HTMLResponse)
def standings_page(request: Request, q: Optional[str] = Query(default=None)):
    return _render(request, "standings.html", views.season_standings(store(), q))


@app.get("/stage-standings", response_class=HTMLResponse)
def stage_standings_index(request: Request):
    return _render(request, "stage_standings.html", {})


@app.get("/stage-standings/drivers", response_class=HTMLResponse)
def driver_stage_standings_page(
    request: Request,
    stage: int = Query(default=1, ge=1),
    q: Optional[str] = Query(default=None),
):
    return _render(request, "stage_standings_drivers.html", views.driver_stage_standings(store(), stage, q))


@app.get("/stage-standings/teams", response_class=HTMLResponse)
def team_stage_standings_page(
    request: Request,
    stage: int = Query(default=1, ge=1),
    q: Optional[str] = Query(default=None),
):
    return _render(request, "stage_standings_teams.html", views.team_stage_standings(store(), stage, q))


@app.get("/drivers", response_class=HTMLResponse)
def drivers_page(request: Request, q: Optional[str] = Query(default=None)):
    return _render(request, "drivers.html", views.drivers_list(store(), q))


@app.get("/drivers/{person_id}", response_class=HTMLResponse)
def driver_profile_page(request: Request, person_id: str):
    model = views.driver_profile(store(), person_id)
    model["avatar"] = photos.avatar(model["person_id"], (model["person"] or {}).get("display_name"), driver_photos())
    return _render(request, "driver_profile.html", model)


@app.get("/teams", response_class=HTMLResponse)
def teams_page(request: Request, q: Optional[str] = Query(default=None)):
    return _render(request, "teams.html", views.teams_list(store(), q), refresh=REFRESH_SECONDS["teams"])


@app.get("/teams/{team_id}", response_class=HTMLResponse)
def team_profile_page(request: Request, team_id: str):
    return _render(
        request,
        "team_profile.html",
        views.team_profile(store(), team_id),
        refresh=REFRESH_SECONDS["team_profile"],
    )


@app.get("/races", response_class=HTMLResponse)
def races_page(request: Request):
    return _render(request, "races.html", views.race_schedule(store()))


@app.get("/races/{event_id}", response_class=HTMLResponse)
def race_results_page(request: Request, event_id: str):
    return _render(request, "race_results.html", views.race_results(store(), event_id))


@app.get("/control-room", response_class=HTMLResponse)
def control_room_page(request: Request):
    return _render(request, "control_room.html", views.control_room(store()))


# ----------------------------------------------------------------------
# Overlays


@app.get("/overlay/standings", response_class=HTMLResponse)
def overlay_standings(request: Request):
    return _render(
        request,
        "overlay/standings.html",
        views.overlay_season_standings(store()),
        refresh=REFRESH_SECONDS["overlay_standings"],
    )


@app.get("/overlay/stage-standings/drivers", response_class=HTMLResponse)
def overlay_stage_standings(request: Request, stage: int = Query(default=1, ge=1)):
    return _render(
        request,
        "overlay/board.html",
        {**views.overlay_stage_standings(store(), stage), "name_key": "driver"},
        refresh=REFRESH_SECONDS["overlay_stage_standings"],
    )


@app.get("/overlay/team-standings", response_class=HTMLResponse)
def overlay_team_standings(request: Request):
    return _render(
        request,
        "overlay/board.html",
        {**views.overlay_team_standings(store()), "name_key": "team"},
        refresh=REFRESH_SECONDS["overlay_team_standings"],
    )


@app.get("/overlay/leaderboard", response_class=HTMLResponse)
def overlay_leaderboard(request: Request):
    return _render(
        request,
        "overlay/leaderboard.html",
        views.overlay_leaderboard(store()),
        refresh=REFRESH_SECONDS["overlay_leaderboard"],
    )


@app.get("/overlay/ticker", response_class=HTMLResponse)
def overlay_ticker(request: Request):
    return _render(
        request,
        "overlay/ticker.html",
        views.overlay_ticker(store()),
        refresh=REFRESH_SECONDS["overlay_ticker"],
    )
