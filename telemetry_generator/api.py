"""FastAPI endpoints for starting, tracking and reading telemetry runs."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, status

from telemetry_generator.config import DEFAULT_RECORD_LIMIT, MAX_RECORD_LIMIT
from telemetry_generator.errors import ConfigError
from telemetry_generator.manager import RunHandle, RunManager
from telemetry_generator.models import (
    RecordsResponse,
    RunAcceptedResponse,
    RunRequest,
    RunStatus,
    RunStatusResponse,
)
from telemetry_generator.storage import read_records

router = APIRouter()
manager = RunManager()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup and shutdown."""
    # Startup
    await manager.start()
    yield
    # Shutdown: every active run is stopped and its files finalized
    await manager.stop()


def _get_run(run_id: str) -> RunHandle:
    handle = manager.get(run_id)
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown run {run_id}",
        )
    return handle


@router.post(
    "/runs",
    response_model=RunAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a telemetry run",
    description="Validate a run configuration and generate its files in the background",
)
async def start_run(request: RunRequest) -> RunAcceptedResponse:
    """
    Start generating a launch in the background.

    The configuration is validated and its output paths checked before the
    run starts, so a bad request never leaves files behind.
    """
    try:
        handle = await manager.submit(request.config)
    except ConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}",
        )
    return RunAcceptedResponse(
        run_id=handle.run_id,
        status=handle.status,
        estimated_records=handle.config.estimated_records,
    )


@router.get(
    "/runs/{run_id}",
    response_model=RunStatusResponse,
    summary="Run status",
    description="Progress counters while running, summary once finished",
)
async def get_run(run_id: str) -> RunStatusResponse:
    return _get_run(run_id).to_response()


@router.delete(
    "/runs/{run_id}",
    response_model=RunStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Stop a run early",
    description="Stop generation at the next record; files written so far stay valid",
)
async def cancel_run(run_id: str) -> RunStatusResponse:
    _get_run(run_id)
    return manager.cancel(run_id).to_response()


@router.get(
    "/runs/{run_id}/records",
    response_model=RecordsResponse,
    summary="Read back records",
    description="Read records of a finished run, optionally filtered by sensor and time range",
)
async def get_records(
    run_id: str,
    destination: Optional[str] = None,
    sensor_id: Optional[str] = None,
    start_ns: Optional[int] = Query(None, ge=0, description="Inclusive lower bound on time since launch"),
    end_ns: Optional[int] = Query(None, ge=0, description="Inclusive upper bound on time since launch"),
    limit: int = Query(DEFAULT_RECORD_LIMIT, ge=1, le=MAX_RECORD_LIMIT),
) -> RecordsResponse:
    """
    Read records back from one output file of a finished run.

    ``destination`` may be omitted when the run wrote a single file.
    """
    handle = _get_run(run_id)
    if handle.status in (RunStatus.RUNNING, RunStatus.FAILED):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {run_id} is {handle.status.value}",
        )

    if start_ns is not None and end_ns is not None and start_ns > end_ns:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_ns must not be after end_ns",
        )

    if destination is None:
        if len(handle.destinations) != 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Run wrote several files, pick a destination: {sorted(handle.destinations)}",
            )
        destination = next(iter(handle.destinations))
    path = handle.destinations.get(destination)
    if path is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Run {run_id} has no destination {destination}",
        )

    try:
        frame = read_records(path, sensor_id=sensor_id, start_ns=start_ns, end_ns=end_ns, limit=limit)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}",
        )

    records = [
        {**row, "timestamp": row["timestamp"].isoformat()}
        for row in frame.to_dicts()
    ]
    return RecordsResponse(
        run_id=run_id,
        destination=destination,
        count=len(records),
        records=records,
    )


@router.get("/health", summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "telemetry-generator"}
