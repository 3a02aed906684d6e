import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from sse_starlette.sse import EventSourceResponse

from src.transit_graph.application import TransitRouting
from src.transit_graph.exceptions import (
    GraphNotReadyError,
    InsufficientDiskSpaceError,
    MissingInputFilesError,
    UnreadableInputFilesError,
)
from src.transit_graph.schemas.route import TravelMode

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

routing = TransitRouting()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    routing.shutdown(wait=False)


app = FastAPI(title="Transit Graph API", lifespan=lifespan)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Pydantic Schemas (The JSON Contract) ---
# from_attributes lets the API read the frozen dataclasses, @property fields included.


class InstructionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    text: str
    distance_meters: float
    duration_seconds: int


class LegSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    mode: TravelMode
    instructions: List[InstructionSchema]
    distance_meters: float
    duration_seconds: int


class RouteCoordinateSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    latitude: float
    longitude: float


class ItinerarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    legs: List[LegSchema]
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    distance_meters: float
    duration_seconds: int
    route_coordinates: List[RouteCoordinateSchema]
    num_legs: int  # Captures @property


class ImportJobSchema(BaseModel):
    name: str
    state: str
    progress_percent: int
    failure_message: Optional[str] = None
    cancelled: bool = False


class CacheStatusSchema(BaseModel):
    state: Optional[Dict] = None
    ready: bool
    import_running: bool
    missing_files: List[str]
    input_last_modified: Dict[str, Optional[int]]
    job: Optional[ImportJobSchema] = None


class RouteRequest(BaseModel):
    start_lat: float = Field(ge=-90, le=90)
    start_lon: float = Field(ge=-180, le=180)
    end_lat: float = Field(ge=-90, le=90)
    end_lon: float = Field(ge=-180, le=180)
    departure_time: Optional[datetime] = None
    mode: TravelMode = TravelMode.FOOT


class ImportMissingRequest(BaseModel):
    source_dir: Optional[str] = None


# --- API Endpoints ---


@app.get("/cache/status", response_model=CacheStatusSchema)
async def cache_status():
    state = routing.current_state
    job = routing.job_snapshot()
    return CacheStatusSchema(
        state=state.to_dict() if state is not None else None,
        ready=routing.is_ready,
        import_running=routing.is_import_running(),
        missing_files=routing.get_missing_files(),
        input_last_modified=routing.get_input_last_modified(),
        job=ImportJobSchema(**job.to_dict()) if job is not None else None,
    )


@app.post("/cache/start")
async def cache_start():
    """
    SSE streaming endpoint for one cache lifecycle session.

    Emits one 'state' event per state entered, ending in ready,
    missing_files or error.
    """
    return EventSourceResponse(stream_cache_states())


async def stream_cache_states():
    """Generator that yields SSE events while the coordinator runs."""
    loop = asyncio.get_event_loop()
    states = routing.start()

    # start() blocks between states (file checks, readiness wait)
    while True:
        state = await loop.run_in_executor(None, next, states, None)
        if state is None:
            break
        yield {"event": "state", "data": json.dumps(state.to_dict())}


@app.post("/cache/rebuild", status_code=202)
async def cache_rebuild():
    loop = asyncio.get_event_loop()
    try:
        # Wipes the cache directory, which can be several GB
        job = await loop.run_in_executor(None, routing.force_rebuild)
    except (MissingInputFilesError, UnreadableInputFilesError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InsufficientDiskSpaceError as e:
        raise HTTPException(status_code=507, detail=str(e))
    return {"submitted": True, "job": job.snapshot().to_dict()}


@app.post("/cache/refresh-check")
async def cache_refresh_check():
    loop = asyncio.get_event_loop()
    submitted = await loop.run_in_executor(None, routing.force_refresh_check)
    return {"submitted": submitted}


@app.post("/cache/import-missing")
async def cache_import_missing(request: ImportMissingRequest):
    loop = asyncio.get_event_loop()
    copied = await loop.run_in_executor(None, routing.import_missing_files, request.source_dir)
    return {"copied": copied, "missing_files": routing.get_missing_files()}


@app.post("/route", response_model=ItinerarySchema)
async def calculate_route(request: RouteRequest):
    loop = asyncio.get_event_loop()
    try:
        itinerary = await loop.run_in_executor(
            None,
            lambda: routing.calculate_route(
                start_lat=request.start_lat,
                start_lon=request.start_lon,
                end_lat=request.end_lat,
                end_lon=request.end_lon,
                departure_time=request.departure_time,
                mode=request.mode,
            ),
        )
    except GraphNotReadyError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if itinerary is None:
        raise HTTPException(status_code=404, detail="No route found")

    return ItinerarySchema.model_validate(itinerary)
