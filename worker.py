#!/usr/bin/env python3
"""
Stream Worker Service
Runs the automation pipeline behind a small HTTP API so a host can start,
watch and stop a stream.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from core.models import SpreadsheetContext, StreamOptions, StreamResult, StreamStatus
from orchestrator import Orchestrator, build_automation_context
from stages import StreamScheduler
from ui.progress import ProgressTracker
from config import settings


logger = logging.getLogger(__name__)

app = FastAPI(title="AutoAI Stream Worker")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RunRequest(BaseModel):
    """Body of POST /runs"""
    workbook: str
    sheet_gid: Optional[str] = None
    test_mode: bool = False
    tab_id: Optional[int] = None
    max_windows: Optional[int] = None


class LogProgress(ProgressTracker):
    """Progress tracker that writes to the worker log"""

    def start_stage(self, stage_num: int, stage_name: str):
        logger.info(f"Stage {stage_num}: {stage_name} started")

    def complete_stage(self, stage_num: int):
        logger.info(f"Stage {stage_num} complete")

    def fail(self, stage_num: int, message: str):
        logger.error(f"Stage {stage_num} failed: {message}")

    def complete(self):
        logger.info("Pipeline complete")

    def report_status(self, status: StreamStatus):
        logger.info(
            f"processed {status.processed_cells}, pending {status.pending_cells}, "
            f"errored {status.errored_cells}, windows {status.active_windows}"
        )


class WorkerState:
    """The one stream this worker owns"""

    def __init__(self):
        self.orchestrator: Optional[Orchestrator] = None
        self.run: Optional[asyncio.Task] = None
        self.last_result: Optional[StreamResult] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.run is not None and not self.run.done()

    def build(self, request: RunRequest) -> Orchestrator:
        options = StreamOptions(test_mode=request.test_mode, tab_id=request.tab_id)
        context = build_automation_context(Path(request.workbook), options)
        scheduler = StreamScheduler(context, max_concurrent_windows=request.max_windows)
        return Orchestrator(progress=LogProgress(), context=context, scheduler=scheduler)

    async def execute(self, spreadsheet: SpreadsheetContext, options: StreamOptions):
        try:
            ctx = await self.orchestrator.run(spreadsheet, options)
            self.last_result = ctx.stream
        except Exception as e:
            logger.exception(f"Run on {spreadsheet.spreadsheet_id} failed")
            self.last_error = str(e)


state = WorkerState()


def get_state() -> WorkerState:
    return state


def verify_api_key(authorization: Optional[str] = Header(None)):
    """Verify the bearer key when WORKER_API_KEY is configured"""
    expected_key = settings.WORKER_API_KEY
    if not expected_key:
        return None

    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    # Extract token from "Bearer <token>"
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format. Expected 'Bearer <token>'")

    token = authorization.replace("Bearer ", "").strip()
    if token != expected_key:
        logger.warning(f"API key mismatch. Token length: {len(token)}, Expected length: {len(expected_key)}")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return token


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "stream-worker"}


@app.get("/status")
async def status(
    worker: WorkerState = Depends(get_state),
    api_key: Optional[str] = Depends(verify_api_key),
):
    """Scheduler snapshot plus the outcome of the last finished run"""
    snapshot = worker.orchestrator.scheduler.get_status() if worker.orchestrator else StreamStatus()
    return {
        "running": worker.running,
        "status": snapshot.model_dump(mode="json"),
        "last_result": worker.last_result.model_dump(mode="json") if worker.last_result else None,
        "last_error": worker.last_error,
    }


@app.post("/runs", status_code=202)
async def start_run(
    request: RunRequest,
    worker: WorkerState = Depends(get_state),
    api_key: Optional[str] = Depends(verify_api_key),
):
    """Start streaming a workbook in the background"""
    if worker.running:
        raise HTTPException(status_code=409, detail="A stream is already running")
    if not Path(request.workbook).exists():
        raise HTTPException(status_code=404, detail=f"Workbook not found: {request.workbook}")

    worker.orchestrator = worker.build(request)
    worker.last_result = None
    worker.last_error = None

    spreadsheet = SpreadsheetContext(spreadsheet_id=request.workbook, sheet_gid=request.sheet_gid)
    options = StreamOptions(test_mode=request.test_mode, tab_id=request.tab_id)
    worker.run = asyncio.create_task(worker.execute(spreadsheet, options))
    logger.info(f"Run started on {request.workbook}")
    return {"status": "started", "workbook": request.workbook}


@app.post("/stop")
async def stop_run(
    worker: WorkerState = Depends(get_state),
    api_key: Optional[str] = Depends(verify_api_key),
):
    """Cancel in-flight work and close every window"""
    if worker.orchestrator is None:
        return {"status": "idle"}

    await worker.orchestrator.stop()
    if worker.run is not None:
        await worker.run
    return {"status": "stopped"}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="info")
