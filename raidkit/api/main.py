"""
FastAPI main application.

Read-only views of drives, plans and existing arrays. Nothing here mutates
hardware; building and removing arrays is done with the CLI.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from raidkit import __version__
from raidkit.api.models import ArrayListResponse, DriveListResponse, PlanListResponse, PlanResponse
from raidkit.api.services import array_service, drive_service
from raidkit.core.exceptions import PlanNotFoundError, ScanError

app = FastAPI(title="raidkit API", description="Read-only REST API for drive planning and array status", version=__version__)
logger = logging.getLogger(__name__)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    request_id = str(uuid.uuid4())
    logger.exception("Unhandled error (request_id=%s, path=%s)", request_id, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "request_id": request_id,
            "status": "error",
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
        },
    )


@app.exception_handler(ScanError)
async def scan_error_handler(request: Request, exc: ScanError) -> JSONResponse:
    """Drive inventory unavailable."""
    request_id = str(uuid.uuid4())
    logger.error("Scan failed (request_id=%s): %s", request_id, exc.message)
    return JSONResponse(
        status_code=503,
        content={
            "request_id": request_id,
            "status": "error",
            "error": {"code": "SCAN_FAILED", "message": exc.message, "details": {"remedy": exc.remedy}},
        },
    )


# Drive endpoints


@app.get("/v1/drives", response_model=DriveListResponse)
def list_drives() -> Dict[str, Any]:
    """
    List physical disks.
    """
    request_id = str(uuid.uuid4())
    items = drive_service.list_drives()
    return {"request_id": request_id, "status": "ok", "data": {"items": items}}


# Plan endpoints


@app.get("/v1/plans", response_model=PlanListResponse)
def list_plans(
    tolerance_pct: Optional[float] = Query(None, ge=0, le=50, description="Size tolerance in percent"),
) -> Dict[str, Any]:
    """
    List feasible plans, recommended first.
    """
    request_id = str(uuid.uuid4())
    try:
        result = drive_service.list_plans(tolerance_pct)
        return {"request_id": request_id, "status": "ok", "data": result}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/v1/plans/{plan_id}", response_model=PlanResponse)
def get_plan(
    plan_id: str,
    tolerance_pct: Optional[float] = Query(None, ge=0, le=50, description="Size tolerance in percent"),
) -> Dict[str, Any]:
    """
    Get one plan by id.
    """
    request_id = str(uuid.uuid4())
    try:
        result = drive_service.get_plan(plan_id, tolerance_pct)
        return {"request_id": request_id, "status": "ok", "data": {"plan": result}}
    except PlanNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"{e.message}. {e.remedy}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# Array endpoints


@app.get("/v1/arrays", response_model=ArrayListResponse)
def list_arrays() -> Dict[str, Any]:
    """
    List md arrays with their SYSTEM/DATA classification.
    """
    request_id = str(uuid.uuid4())
    items = array_service.list_arrays()
    return {"request_id": request_id, "status": "ok", "data": {"items": items}}
