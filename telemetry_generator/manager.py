"""Background runs started through the API."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from telemetry_generator.errors import ConfigError
from telemetry_generator.models import (
    RunConfig,
    RunStatus,
    RunStatusResponse,
    RunSummary,
    Termination,
    load_config,
)
from telemetry_generator.pipeline import RunState, prepare_destinations, run_async

logger = logging.getLogger(__name__)

_TERMINATION_STATUS = {
    Termination.COMPLETED: RunStatus.COMPLETED,
    Termination.INTERRUPTED: RunStatus.INTERRUPTED,
    Termination.ROW_LIMIT: RunStatus.ROW_LIMIT,
}


@dataclass
class RunHandle:
    """A submitted run and the task driving it."""

    run_id: str
    config: RunConfig
    state: RunState
    task: Optional[asyncio.Task] = None
    summary: Optional[RunSummary] = None
    error: Optional[str] = None
    destinations: Dict[str, Path] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    @property
    def status(self) -> RunStatus:
        if self.error is not None:
            return RunStatus.FAILED
        if self.summary is not None:
            return _TERMINATION_STATUS[self.summary.termination]
        return RunStatus.RUNNING

    def to_response(self) -> RunStatusResponse:
        return RunStatusResponse(
            run_id=self.run_id,
            status=self.status,
            records_generated=self.state.records_generated,
            records_written=self.state.records_written,
            summary=self.summary,
            error=self.error,
        )


class RunManager:
    """Starts runs as asyncio tasks and tracks them until shutdown."""

    def __init__(self) -> None:
        self.runs: Dict[str, RunHandle] = {}

    async def submit(self, data: Mapping[str, Any]) -> RunHandle:
        """
        Validate a configuration and start generating it in the background.

        Raises:
            ConfigError: the configuration is invalid or its output paths are
                unusable; nothing is started
        """
        config = load_config(data)
        destinations = config.destinations()
        prepare_destinations(destinations.values())
        if self._paths_in_use(destinations.values()):
            raise ConfigError("output path is already being written by another run")

        run_id = uuid.uuid4().hex
        handle = RunHandle(
            run_id=run_id,
            config=config,
            state=RunState.for_config(config),
            destinations=destinations,
        )
        handle.task = asyncio.create_task(self._drive(handle))
        self.runs[run_id] = handle
        logger.info("Run %s submitted for launch %s", run_id, config.launch_id)
        return handle

    def _paths_in_use(self, paths) -> bool:
        wanted = {Path(p).resolve() for p in paths}
        for handle in self.runs.values():
            if handle.done:
                continue
            if wanted & {p.resolve() for p in handle.destinations.values()}:
                return True
        return False

    async def _drive(self, handle: RunHandle) -> None:
        try:
            handle.summary = await run_async(handle.config, state=handle.state)
        except asyncio.CancelledError:
            handle.error = "run was cancelled before it could finish"
            raise
        except Exception as e:
            logger.exception("Run %s failed", handle.run_id)
            handle.error = str(e)

    def get(self, run_id: str) -> Optional[RunHandle]:
        return self.runs.get(run_id)

    def cancel(self, run_id: str) -> Optional[RunHandle]:
        """Request an early stop; the run still finalizes its files."""
        handle = self.runs.get(run_id)
        if handle is not None and not handle.done:
            handle.state.request_stop()
        return handle

    async def wait(self, run_id: str) -> Optional[RunHandle]:
        handle = self.runs.get(run_id)
        if handle is not None and handle.task is not None:
            await asyncio.wait({handle.task})
        return handle

    async def start(self) -> None:
        logger.info("Run manager started")

    async def stop(self) -> None:
        """Stop all active runs and wait for their files to be finalized."""
        active: List[asyncio.Task] = []
        for handle in self.runs.values():
            if not handle.done:
                handle.state.request_stop()
                if handle.task is not None:
                    active.append(handle.task)
        if active:
            logger.info("Waiting for %d active runs to finalize", len(active))
            await asyncio.wait(active)
